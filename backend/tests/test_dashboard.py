from datetime import datetime


def test_admin_sees_organization(client, org):
    response = client.get("/api/dashboard/stats", headers=org["headers"]["admin"])
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["role"] == "admin"
    assert data["totalEmployees"] == 6
    assert data["totalDepartments"] == 3
    assert data["recentHires"] == 6
    assert len(data["recentEmployees"]) == 5
    assert data["roleDistribution"] == {"admin": 1, "hr": 1, "manager": 1, "employee": 3}


def test_manager_sees_team(client, org):
    client.post("/api/messages", headers=org["headers"]["admin"], json={"toRole": "manager", "text": "Staff meeting at 10"})
    data = client.get("/api/dashboard/stats", headers=org["headers"]["manager"]).json()["data"]
    assert data["role"] == "manager"
    assert data["department"]["name"] == "Information Technology"
    assert data["totalEmployees"] == 3
    assert data["teamSize"] == 2
    assert data["schedulePublished"] is False
    assert data["scheduleId"] is None
    assert data["unreadMessages"] == 1


def test_employee_sees_own_week(client, org):
    employee = org["users"]["employee"]
    schedule = client.post("/api/schedules", headers=org["headers"]["manager"], json={
        "department": str(org["departments"]["it"]["_id"]),
        "weekStart": datetime.utcnow().isoformat(),
        "shifts": [{"employee": str(employee["_id"]), "monday": {"startTime": "10:00", "endTime": "16:00"}}],
    }).json()["data"]
    client.post(f"/api/schedules/{schedule['_id']}/publish", headers=org["headers"]["manager"])
    client.post("/api/messages", headers=org["headers"]["colleague"], json={
        "toRole": "employee", "text": "Coffee?", "participants": [str(employee["_id"])]
    })
    client.post("/api/messages", headers=org["headers"]["admin"], json={"toRole": "employee", "text": "Holiday notice"})

    data = client.get("/api/dashboard/stats", headers=org["headers"]["employee"]).json()["data"]
    assert data["role"] == "employee"
    assert data["unreadChannelMessages"] == 1
    assert data["conversations"] == 1
    assert data["unreadConversationMessages"] == 1
    assert data["thisWeekShifts"]["monday"]["startTime"] == "10:00"

    other = client.get("/api/dashboard/stats", headers=org["headers"]["colleague"]).json()["data"]
    assert other["thisWeekShifts"] is None
