def _schedule_body(org, **overrides):
    it = org["departments"]["it"]
    body = {
        "department": str(it["_id"]),
        "weekStart": "2026-10-21T10:00:00",
        "shifts": [
            {
                "employee": str(org["users"]["employee"]["_id"]),
                "monday": {"startTime": "09:00", "endTime": "15:00"},
                "friday": {"isWorking": False},
            },
            {"employee": str(org["users"]["colleague"]["_id"])},
        ],
    }
    body.update(overrides)
    return body


def _create(client, org, headers_key="manager", **overrides):
    return client.post("/api/schedules", headers=org["headers"][headers_key], json=_schedule_body(org, **overrides))


def test_manager_creates_department_schedule(client, org):
    response = _create(client, org)
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["isPublished"] is False
    assert data["department"]["name"] == "Information Technology"
    # Normalised to Monday of that week
    assert data["weekStart"].startswith("2026-10-19T00:00:00")
    assert data["weekEnd"].startswith("2026-10-25T23:59:59")

    shift = data["shifts"][0]
    assert shift["employee"]["name"] == "Omar Ali"
    assert shift["monday"] == {"startTime": "09:00", "endTime": "15:00", "isWorking": True}
    assert shift["friday"]["isWorking"] is False
    assert shift["saturday"]["isWorking"] is False
    assert data["schedule"]["monday"] == {"start": "08:00", "end": "17:00", "breaks": []}


def test_second_save_updates_the_active_schedule(client, org, db, run):
    first = _create(client, org).json()["data"]
    response = _create(client, org, shifts=[{"employee": str(org["users"]["employee"]["_id"])}])
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["_id"] == first["_id"]
    assert len(data["shifts"]) == 1
    assert run(db["schedules"].count_documents, {"isActive": True}) == 1


def test_shift_employee_must_belong_to_department(client, org):
    response = _create(client, org, shifts=[{"employee": str(org["users"]["outsider"]["_id"])}])
    assert response.status_code == 400


def test_shift_end_must_follow_start(client, org):
    shifts = [{"employee": str(org["users"]["employee"]["_id"]), "tuesday": {"startTime": "14:00", "endTime": "09:00"}}]
    response = _create(client, org, shifts=shifts)
    assert response.status_code == 400
    assert "Tuesday" in response.json()["message"]


def test_invalid_time_format(client, org):
    shifts = [{"employee": str(org["users"]["employee"]["_id"]), "monday": {"startTime": "25:00"}}]
    assert _create(client, org, shifts=shifts).status_code == 422


def test_duplicate_shift_employee(client, org):
    employee_id = str(org["users"]["employee"]["_id"])
    response = _create(client, org, shifts=[{"employee": employee_id}, {"employee": employee_id}])
    assert response.status_code == 422


def test_manager_cannot_schedule_other_department(client, org):
    body = _schedule_body(org, department=str(org["departments"]["finance"]["_id"]), shifts=[])
    response = client.post("/api/schedules", headers=org["headers"]["manager"], json=body)
    assert response.status_code == 403


def test_employee_cannot_create(client, org):
    assert _create(client, org, headers_key="employee").status_code == 403


def test_employees_only_see_published(client, org):
    schedule = _create(client, org).json()["data"]
    hidden = client.get("/api/schedules", headers=org["headers"]["employee"])
    assert hidden.json()["total"] == 0

    published = client.post(f"/api/schedules/{schedule['_id']}/publish", headers=org["headers"]["manager"])
    assert published.status_code == 200
    assert published.json()["data"]["isPublished"] is True
    assert published.json()["data"]["publishedAt"]

    visible = client.get("/api/schedules", headers=org["headers"]["employee"])
    assert visible.json()["total"] == 1


def test_edit_returns_schedule_to_draft(client, org):
    schedule = _create(client, org).json()["data"]
    client.post(f"/api/schedules/{schedule['_id']}/publish", headers=org["headers"]["admin"])
    updated = _create(client, org, headers_key="admin").json()["data"]
    assert updated["isPublished"] is False


def test_save_can_publish_directly(client, org):
    schedule = _create(client, org).json()["data"]
    updated = _create(client, org, isPublished=True)
    assert updated.status_code == 200
    data = updated.json()["data"]
    assert data["_id"] == schedule["_id"]
    assert data["isPublished"] is True
    assert data["publishedAt"] is not None


def test_retired_schedule_makes_room_for_a_new_one(client, org, db, run):
    first = _create(client, org).json()["data"]

    retired = _create(client, org, isActive=False)
    assert retired.status_code == 200
    assert retired.json()["data"]["_id"] == first["_id"]
    assert retired.json()["data"]["isActive"] is False

    fresh = _create(client, org, weekStart="2026-10-28T08:00:00")
    assert fresh.status_code == 201
    assert fresh.json()["data"]["_id"] != first["_id"]
    assert fresh.json()["data"]["isActive"] is True
    assert run(db["schedules"].count_documents, {"isActive": True}) == 1
    assert run(db["schedules"].count_documents, {}) == 2


def test_department_schedule_scoping(client, org):
    _create(client, org)
    it = org["departments"]["it"]
    finance = org["departments"]["finance"]

    ok = client.get(f"/api/schedules/department/{it['_id']}", headers=org["headers"]["manager"])
    assert ok.status_code == 200
    denied = client.get(f"/api/schedules/department/{finance['_id']}", headers=org["headers"]["manager"])
    assert denied.status_code == 403
    missing = client.get(f"/api/schedules/department/{finance['_id']}", headers=org["headers"]["admin"])
    assert missing.status_code == 404


def test_employee_schedule_shows_only_own_shift(client, org):
    schedule = _create(client, org).json()["data"]
    client.post(f"/api/schedules/{schedule['_id']}/publish", headers=org["headers"]["manager"])
    employee = org["users"]["employee"]

    response = client.get(f"/api/schedules/employee/{employee['_id']}", headers=org["headers"]["employee"])
    assert response.status_code == 200
    data = response.json()["data"]
    assert len(data) == 1
    assert [s["employee"]["_id"] for s in data[0]["shifts"]] == [str(employee["_id"])]

    other = client.get(f"/api/schedules/employee/{org['users']['colleague']['_id']}", headers=org["headers"]["employee"])
    assert other.status_code == 403


def test_history_records_changes(client, org):
    schedule = _create(client, org).json()["data"]
    _create(client, org)
    client.post(f"/api/schedules/{schedule['_id']}/publish", headers=org["headers"]["manager"])

    response = client.get(f"/api/schedules/{schedule['_id']}/history", headers=org["headers"]["admin"])
    assert response.status_code == 200
    actions = [entry["action"] for entry in response.json()["data"]]
    assert sorted(actions) == ["schedule.create", "schedule.publish", "schedule.update"]
    assert response.json()["data"][0]["actor"]["name"] == "Majed Manager"

    assert client.get(f"/api/schedules/{schedule['_id']}/history", headers=org["headers"]["employee"]).status_code == 403


def test_publish_unknown_schedule(client, org):
    response = client.post("/api/schedules/64b7f0c2a1b2c3d4e5f60718/publish", headers=org["headers"]["admin"])
    assert response.status_code == 404


def test_publish_notifies_scheduled_employees(client, org):
    schedule = _create(client, org).json()["data"]
    token = org["headers"]["employee"]["Authorization"].split()[1]
    with client.websocket_connect(f"/ws?token={token}") as ws:
        ws.send_json({"event": "ping"})
        assert ws.receive_json()["event"] == "pong"
        client.post(f"/api/schedules/{schedule['_id']}/publish", headers=org["headers"]["manager"])
        event = ws.receive_json()
    assert event["event"] == "schedule:published"
    assert event["data"]["scheduleId"] == schedule["_id"]
