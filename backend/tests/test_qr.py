import base64
import io
import json

import pytest
from PIL import Image

from app.services import qr_service


def _decode(data_uri):
    prefix = "data:image/png;base64,"
    assert data_uri.startswith(prefix)
    return Image.open(io.BytesIO(base64.b64decode(data_uri[len(prefix):])))


def test_data_uri_has_requested_size():
    image = _decode(qr_service.generate_qr_data_uri("hello", 300))
    assert image.size == (300, 300)


def test_payloads(org):
    employee = org["users"]["employee"]
    department = org["departments"]["it"]
    manager = org["users"]["manager"]

    info = json.loads(qr_service.employee_payload(employee, department, manager))
    assert info["name"] == "Omar Ali"
    assert info["department"] == "Information Technology"
    assert info["manager"] == "Majed Manager"

    vcard = qr_service.contact_payload(employee, department).splitlines()
    assert vcard[0] == "BEGIN:VCARD"
    assert "FN:Omar Ali" in vcard
    assert vcard[-1] == "END:VCARD"

    card = json.loads(qr_service.card_payload(employee, department))
    assert card["employeeCode"] == employee["employeeCode"]
    assert card["validUntil"] > card["generatedAt"]


def test_unknown_type_in_service(org):
    with pytest.raises(ValueError):
        qr_service.build_qr("badge", org["users"]["employee"])


@pytest.mark.parametrize("qr_type, action, size", [
    ("employee", "GENERATE_QR", 256),
    ("contact", "GENERATE_CONTACT_QR", 256),
    ("card", "GENERATE_CARD_QR", 300),
])
def test_generate_employee_qr(client, org, db, run, qr_type, action, size):
    employee = org["users"]["employee"]
    response = client.get(f"/api/qr/{qr_type}/{employee['_id']}", headers=org["headers"]["colleague"])
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["type"] == qr_type
    assert data["employee"] == {
        "id": str(employee["_id"]),
        "name": "Omar Ali",
        "extension": employee["extension"],
        "department": "Information Technology",
    }
    assert _decode(data["qrCode"]).size == (size, size)

    entry = run(db["audit_logs"].find_one, {"action": action})
    assert entry["targetId"] == str(employee["_id"])


def test_invalid_qr_type(client, org):
    employee = org["users"]["employee"]
    response = client.get(f"/api/qr/badge/{employee['_id']}", headers=org["headers"]["admin"])
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid QR code type"


def test_unknown_employee(client, org):
    response = client.get("/api/qr/employee/64b7f0c2a1b2c3d4e5f60718", headers=org["headers"]["admin"])
    assert response.status_code == 404


def test_bulk_generation(client, org, db, run):
    ids = [str(org["users"]["employee"]["_id"]), str(org["users"]["outsider"]["_id"]), "not-an-id"]
    response = client.post("/api/qr/bulk", headers=org["headers"]["hr"], json={"employeeIds": ids, "type": "contact"})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["count"] == 2
    assert data["type"] == "contact"
    assert {q["employeeName"] for q in data["qrCodes"]} == {"Omar Ali", "Faisal Qasim"}

    entry = run(db["audit_logs"].find_one, {"action": "GENERATE_BULK_QR"})
    assert entry["details"] == {"type": "contact", "requested": 3, "generated": 2}


def test_bulk_requires_ids_and_export_permission(client, org):
    empty = client.post("/api/qr/bulk", headers=org["headers"]["admin"], json={"employeeIds": ["nope"]})
    assert empty.status_code == 400

    ids = [str(org["users"]["employee"]["_id"])]
    denied = client.post("/api/qr/bulk", headers=org["headers"]["manager"], json={"employeeIds": ids})
    assert denied.status_code == 403
