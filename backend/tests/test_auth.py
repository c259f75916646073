from conftest import PASSWORD


def test_login_with_email(client, org):
    employee = org["users"]["employee"]
    response = client.post("/api/auth/login", json={"email": employee["email"], "password": PASSWORD})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["token"]
    assert body["data"]["user"]["email"] == employee["email"]
    assert "password" not in body["data"]["user"]
    assert body["data"]["user"]["permissions"] == ["view_employees"]


def test_login_with_extension(client, org):
    response = client.post("/api/auth/login", json={"identifier": "1000", "password": PASSWORD})
    assert response.status_code == 200
    assert response.json()["data"]["user"]["role"] == "admin"


def test_login_requires_both_fields(client, org):
    response = client.post("/api/auth/login", json={"email": "admin1@qcc.com.sa"})
    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "message": "Please provide username/email and password",
        "errors": None,
        "timestamp": response.json()["timestamp"],
    }


def test_unknown_user_is_rejected_and_audited(client, org, db, run):
    response = client.post("/api/auth/login", json={"email": "ghost@qcc.com.sa", "password": PASSWORD})
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid credentials"

    entry = run(db["audit_logs"].find_one, {"action": "LOGIN_FAILED"})
    assert entry is not None
    assert entry["details"]["identifier"] == "ghost@qcc.com.sa"


def test_account_locks_after_repeated_failures(client, org, db, run):
    employee = org["users"]["employee"]
    for _ in range(6):
        response = client.post("/api/auth/login", json={"email": employee["email"], "password": "wrong-pass"})
        assert response.status_code == 401

    stored = run(db["users"].find_one, {"_id": employee["_id"]})
    assert stored["accountLocked"] is True

    response = client.post("/api/auth/login", json={"email": employee["email"], "password": PASSWORD})
    assert response.status_code == 401
    assert "locked" in response.json()["message"]

    locked_entry = run(db["audit_logs"].find_one, {"action": "ACCOUNT_LOCKED"})
    assert locked_entry["severity"] == "high"


def test_inactive_account_cannot_login(client, make_user):
    user = make_user("employee", isActive=False)
    response = client.post("/api/auth/login", json={"email": user["email"], "password": PASSWORD})
    assert response.status_code == 403
    assert response.json()["message"] == "Account is deactivated"


def test_verify_returns_current_user(client, org):
    response = client.get("/api/auth/verify", headers=org["headers"]["manager"])
    assert response.status_code == 200
    user = response.json()["data"]["user"]
    assert user["_id"] == str(org["users"]["manager"]["_id"])
    assert "view_analytics" in user["permissions"]


def test_missing_token(client, org):
    response = client.get("/api/auth/verify")
    assert response.status_code == 401
    assert response.json()["message"] == "Access denied. No token provided."


def test_garbage_token(client, org):
    response = client.get("/api/auth/verify", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_logout_blacklists_token(client, org):
    headers = org["headers"]["employee"]
    assert client.post("/api/auth/logout", headers=headers).status_code == 200
    assert client.get("/api/auth/verify", headers=headers).status_code == 401


def test_change_password(client, org):
    employee = org["users"]["employee"]
    headers = org["headers"]["employee"]

    wrong = client.put("/api/auth/change-password", headers=headers,
                       json={"currentPassword": "nope-nope", "newPassword": "newpass1"})
    assert wrong.status_code == 400

    ok = client.put("/api/auth/change-password", headers=headers,
                    json={"currentPassword": PASSWORD, "newPassword": "newpass1"})
    assert ok.status_code == 200

    login = client.post("/api/auth/login", json={"email": employee["email"], "password": "newpass1"})
    assert login.status_code == 200


def test_permissions_endpoint(client, org):
    response = client.get("/api/users/permissions", headers=org["headers"]["hr"])
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["role"] == "hr"
    assert "export_data" in data["permissions"]
    assert "delete_employees" not in data["permissions"]


def test_me_alias(client, org):
    response = client.get("/api/auth/me", headers=org["headers"]["admin"])
    assert response.status_code == 200
    assert response.json()["data"]["user"]["role"] == "admin"
