import base64
import io
import json
from datetime import datetime, timedelta
from typing import Optional

import qrcode
from PIL import Image

from app import config
from app.services.employee_service import full_name

DARK_COLOR = "#1e3a8a"
LIGHT_COLOR = "#ffffff"
QR_BORDER = 2
EMPLOYEE_QR_SIZE = 256
CARD_QR_SIZE = 300
CARD_VALIDITY = timedelta(days=365)

QR_TYPES = ("employee", "contact", "card")


def generate_qr_data_uri(payload: str, size: int = EMPLOYEE_QR_SIZE) -> str:
    """Render `payload` as a square PNG of `size` px and return it as a data URI."""
    qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_M, border=QR_BORDER)
    qr.add_data(payload)
    qr.make(fit=True)
    modules = qr.modules_count + 2 * QR_BORDER
    qr.box_size = max(1, size // modules)

    image = qr.make_image(fill_color=DARK_COLOR, back_color=LIGHT_COLOR).get_image()
    image = image.resize((size, size), Image.NEAREST)

    buf = io.BytesIO()
    image.save(buf, format="PNG")
    b64 = base64.b64encode(buf.getvalue()).decode()
    return f"data:image/png;base64,{b64}"


def employee_payload(employee: dict, department: Optional[dict], manager: Optional[dict]) -> str:
    return json.dumps({
        "id": str(employee["_id"]),
        "name": full_name(employee),
        "extension": employee.get("extension"),
        "email": employee.get("email"),
        "phone": employee.get("phone"),
        "position": employee.get("position"),
        "department": department.get("name") if department else None,
        "manager": full_name(manager) if manager else None,
        "qrGeneratedAt": datetime.utcnow().isoformat(),
    })


def contact_payload(employee: dict, department: Optional[dict]) -> str:
    lines = [
        "BEGIN:VCARD",
        "VERSION:3.0",
        f"FN:{full_name(employee)}",
        f"ORG:{config.ORGANIZATION_NAME}",
        f"TITLE:{employee.get('position') or ''}",
        f"TEL;TYPE=WORK:{employee.get('extension') or ''}",
        f"EMAIL:{employee.get('email') or ''}",
        f"NOTE:Department: {department.get('name') if department else ''}",
        "END:VCARD",
    ]
    return "\n".join(lines)


def card_payload(employee: dict, department: Optional[dict]) -> str:
    now = datetime.utcnow()
    return json.dumps({
        "type": "employee_card",
        "employeeId": str(employee["_id"]),
        "employeeCode": employee.get("employeeCode"),
        "name": full_name(employee),
        "extension": employee.get("extension"),
        "department": department.get("name") if department else None,
        "position": employee.get("position"),
        "avatar": employee.get("avatar"),
        "generatedAt": now.isoformat(),
        "validUntil": (now + CARD_VALIDITY).isoformat(),
    })


def build_qr(qr_type: str, employee: dict, department: Optional[dict] = None, manager: Optional[dict] = None) -> str:
    if qr_type == "employee":
        return generate_qr_data_uri(employee_payload(employee, department, manager), EMPLOYEE_QR_SIZE)
    if qr_type == "contact":
        return generate_qr_data_uri(contact_payload(employee, department), EMPLOYEE_QR_SIZE)
    if qr_type in ("card", "employee_card"):
        return generate_qr_data_uri(card_payload(employee, department), CARD_QR_SIZE)
    raise ValueError(f"Unsupported QR type: {qr_type}")
