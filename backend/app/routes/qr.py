from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from typing import Any, List, Literal
from bson import ObjectId
from app.db import get_db
from app.services import qr_service
from app.services.audit_service import audit_service, AuditAction, AuditTarget
from app.services.employee_service import full_name, get_department_map, get_employee_or_404
from app.utils.auth import require_permission
from app.utils.responses import success_response
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

QR_AUDIT_ACTIONS = {
    "employee": AuditAction.GENERATE_QR,
    "contact": AuditAction.GENERATE_CONTACT_QR,
    "card": AuditAction.GENERATE_CARD_QR,
}


class BulkQRRequest(BaseModel):
    employeeIds: List[Any]
    type: Literal["employee_card", "contact"] = "employee_card"


async def _load_context(employee: dict):
    departments = await get_department_map([employee.get("department")])
    department = departments.get(str(employee.get("department")))
    manager = None
    if department and department.get("head"):
        manager = await get_db()["users"].find_one({"_id": department["head"]})
    return department, manager


@router.get("/{qr_type}/{employee_id}", response_model=dict)
async def generate_employee_qr(
    qr_type: str,
    employee_id: str,
    request: Request,
    current_user: dict = Depends(require_permission("view_employees"))
):
    if qr_type not in qr_service.QR_TYPES:
        raise HTTPException(status_code=400, detail="Invalid QR code type")

    employee = await get_employee_or_404(employee_id)
    department, manager = await _load_context(employee)
    qr_code = qr_service.build_qr(qr_type, employee, department, manager)

    await audit_service.log_request(
        request, current_user, QR_AUDIT_ACTIONS[qr_type], AuditTarget.EMPLOYEE, employee["_id"],
        details={"type": qr_type}
    )
    return success_response({
        "qrCode": qr_code,
        "employee": {
            "id": str(employee["_id"]),
            "name": full_name(employee),
            "extension": employee.get("extension"),
            "department": department.get("name") if department else None,
        },
        "type": qr_type
    })


@router.post("/bulk", response_model=dict)
async def generate_bulk_qr(
    body: BulkQRRequest,
    request: Request,
    current_user: dict = Depends(require_permission("export_data"))
):
    ids = [ObjectId(str(i)) for i in body.employeeIds if ObjectId.is_valid(str(i))]
    if not ids:
        raise HTTPException(status_code=400, detail="Employee IDs array is required")

    employees = await get_db()["users"].find({"_id": {"$in": ids}}).to_list(None)
    departments = await get_department_map(e.get("department") for e in employees)

    qr_codes = []
    for employee in employees:
        department = departments.get(str(employee.get("department")))
        qr_codes.append({
            "employeeId": str(employee["_id"]),
            "employeeName": full_name(employee),
            "qrCode": qr_service.build_qr(body.type, employee, department),
        })

    await audit_service.log_request(
        request, current_user, AuditAction.GENERATE_BULK_QR, AuditTarget.EMPLOYEE,
        details={"type": body.type, "requested": len(body.employeeIds), "generated": len(qr_codes)}
    )
    logger.info(f"Generated {len(qr_codes)} {body.type} QR codes for user {current_user['_id']}")
    return success_response({"qrCodes": qr_codes, "count": len(qr_codes), "type": body.type})
