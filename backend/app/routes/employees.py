from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import Response
from typing import Any, List, Optional
from bson import ObjectId
from datetime import datetime
from pydantic import ValidationError
from app.db import get_db
from app.schemas.user import (
    EmployeeCreate, EmployeeUpdate, ProfileUpdate, BulkEmployeeRequest,
    BulkUpdateData, BulkUpdateRequest, BulkToggleRequest, BulkAssignRequest, DocumentReview
)
from app.schemas.auth import AdminPasswordReset
from app.models.user import BULK_PROTECTED_FIELDS
from app.services.auth_service import hash_password, verify_password
from app.services.audit_service import audit_service, AuditAction, AuditTarget, AuditSeverity
from app.services.employee_service import (
    present_employee, present_employees, get_employee_or_404, require_department,
    ensure_unique_identity, next_employee_code, split_name, touch
)
from app.services.export_service import find_employees_for_export, export_employees
from app.utils.auth import get_current_user, require_permission
from app.utils.mongo import regex_filter, to_object_id
from app.utils.permissions import scope_employee_filter
from app.utils.responses import success_response, paginated_response, pagination_params
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

SORTABLE_FIELDS = ("firstName", "lastName", "extension", "email", "position", "createdAt", "hireDate", "employeeCode")


def _search_clause(search: str) -> list:
    term = regex_filter(search)
    return [
        {"firstName": term},
        {"lastName": term},
        {"extension": term},
        {"position": term},
        {"email": term},
    ]


def _parse_bulk_ids(employee_ids: List[Any]) -> List[ObjectId]:
    if not employee_ids or not isinstance(employee_ids, list):
        raise HTTPException(status_code=400, detail="employeeIds must be a non-empty array")
    if any(not ObjectId.is_valid(str(i)) for i in employee_ids):
        raise HTTPException(status_code=400, detail="Invalid employee ID in employeeIds")
    return list({ObjectId(str(i)) for i in employee_ids})


def _excluding_self(ids: List[ObjectId], current_user: dict) -> List[ObjectId]:
    return [i for i in ids if i != current_user["_id"]]


async def _reports_to(value: Optional[str]) -> Optional[ObjectId]:
    if not value:
        return None
    manager = await get_employee_or_404(value)
    return manager["_id"]


# --------------------------------------------------------------------------
# Listing and search
# --------------------------------------------------------------------------
@router.get("/", response_model=dict)
@router.get("", response_model=dict, include_in_schema=False)
async def list_employees(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1),
    search: Optional[str] = None,
    department: Optional[str] = None,
    isActive: Optional[bool] = None,
    role: Optional[str] = None,
    sortBy: str = "firstName",
    sortOrder: str = "asc",
    current_user: dict = Depends(require_permission("view_employees"))
):
    db = get_db()
    page, limit, skip = pagination_params(page, limit)

    filter_dict = {}
    if search and search.strip():
        filter_dict["$or"] = _search_clause(search)
    if department:
        filter_dict["department"] = to_object_id(department, "department")
    if isActive is not None:
        filter_dict["isActive"] = isActive
    if role:
        filter_dict["role"] = role
    filter_dict = scope_employee_filter(current_user, filter_dict)

    sort_field = sortBy if sortBy in SORTABLE_FIELDS else "firstName"
    direction = -1 if sortOrder.lower() == "desc" else 1

    total = await db["users"].count_documents(filter_dict)
    users = await db["users"].find(filter_dict) \
        .sort(sort_field, direction) \
        .skip(skip) \
        .limit(limit) \
        .to_list(None)

    return paginated_response(await present_employees(users), page, limit, total)


@router.get("/search", response_model=dict)
async def search_employees(
    q: str = Query("", description="Name, extension, position or email"),
    limit: int = Query(20, ge=1, le=20),
    current_user: dict = Depends(require_permission("view_employees"))
):
    if not q.strip():
        return success_response([], count=0)
    db = get_db()
    filter_dict = scope_employee_filter(current_user, {"$or": _search_clause(q)})
    users = await db["users"].find(filter_dict).sort("firstName", 1).limit(limit).to_list(None)
    data = await present_employees(users)
    return success_response(data, count=len(data))


@router.get("/team", response_model=dict)
async def get_team(
    departmentId: Optional[str] = None,
    current_user: dict = Depends(get_current_user)
):
    role = current_user.get("role")
    if role == "admin":
        department_id = departmentId or current_user.get("department")
    elif role == "manager":
        department_id = current_user.get("department")
    else:
        raise HTTPException(status_code=403, detail="Only managers and admins can view teams")

    if not department_id:
        raise HTTPException(status_code=400, detail="Department is required")

    department = await require_department(department_id)
    db = get_db()
    members = await db["users"].find({"department": department["_id"], "isActive": True}) \
        .sort([("firstName", 1), ("lastName", 1)]) \
        .to_list(None)
    data = await present_employees(members)
    return success_response(
        data,
        count=len(data),
        department={"_id": str(department["_id"]), "name": department.get("name")}
    )


async def employee_export_response(
    request: Request,
    current_user: dict,
    export_type: str,
    department: Optional[str],
    is_active: Optional[bool],
    search: Optional[str]
) -> Response:
    if export_type not in ("csv", "excel"):
        raise HTTPException(status_code=400, detail="Invalid export type. Use csv or excel")

    employees = await find_employees_for_export(current_user, department, is_active, search)
    if not employees:
        raise HTTPException(status_code=404, detail="No employees found")

    content, media_type, filename = await export_employees(employees, export_type)
    await audit_service.log_request(
        request, current_user, AuditAction.EXPORT, AuditTarget.EMPLOYEE,
        details={"type": export_type, "count": len(employees), "filters": {
            "department": department, "isActive": is_active, "search": search
        }}
    )
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@router.get("/export")
async def export_employee_list(
    request: Request,
    type: str = "csv",
    department: Optional[str] = None,
    isActive: Optional[bool] = None,
    search: Optional[str] = None,
    current_user: dict = Depends(require_permission("export_data"))
):
    return await employee_export_response(request, current_user, type, department, isActive, search)


# --------------------------------------------------------------------------
# Self-service profile
# --------------------------------------------------------------------------
@router.get("/me", response_model=dict)
async def get_my_profile(current_user: dict = Depends(get_current_user)):
    return success_response(await present_employee(current_user))


@router.put("/me", response_model=dict)
async def update_my_profile(
    profile: ProfileUpdate,
    request: Request,
    current_user: dict = Depends(get_current_user)
):
    db = get_db()
    update_data = profile.dict(exclude_unset=True)
    current_password = update_data.pop("currentPassword", None)
    new_password = update_data.pop("newPassword", None)

    if new_password:
        if not current_password:
            raise HTTPException(status_code=400, detail="Current password is required to set a new password")
        if not verify_password(current_password, current_user.get("password")):
            raise HTTPException(status_code=400, detail="Current password is incorrect")
        update_data["password"] = hash_password(new_password)

    if "email" in update_data and update_data["email"]:
        update_data["email"] = update_data["email"].lower()
        await ensure_unique_identity(email=update_data["email"], exclude_id=current_user["_id"])

    for field in ("idFrontUrl", "idBackUrl"):
        if field in update_data and update_data[field] != current_user.get(field):
            # New ID documents need a fresh review
            update_data["documentsStatus"] = "pending"
            update_data["documentsApprovedBy"] = None
            update_data["documentsApprovedAt"] = None

    if not update_data:
        raise HTTPException(status_code=400, detail="No fields to update")

    await db["users"].update_one({"_id": current_user["_id"]}, {"$set": touch(update_data)})
    updated = await db["users"].find_one({"_id": current_user["_id"]})

    await audit_service.log_request(
        request, current_user, AuditAction.UPDATE, AuditTarget.EMPLOYEE, current_user["_id"],
        details={"fields": sorted(k for k in update_data if k != "updatedAt"), "self": True}
    )
    return success_response(await present_employee(updated), message="Profile updated successfully")


# --------------------------------------------------------------------------
# Bulk operations (declared before /{employee_id} so the paths win)
# --------------------------------------------------------------------------
@router.delete("/bulk", response_model=dict)
async def bulk_delete_employees(
    body: BulkEmployeeRequest,
    request: Request,
    current_user: dict = Depends(require_permission("delete_employees"))
):
    ids = _excluding_self(_parse_bulk_ids(body.employeeIds), current_user)
    db = get_db()
    result = await db["users"].delete_many({"_id": {"$in": ids}})
    await db["departments"].update_many({"head": {"$in": ids}}, {"$set": {"head": None}})

    await audit_service.log_request(
        request, current_user, AuditAction.BULK_DELETE, AuditTarget.EMPLOYEE,
        details={"employeeIds": [str(i) for i in ids], "deletedCount": result.deleted_count},
        severity=AuditSeverity.HIGH
    )
    return success_response(
        {"deletedCount": result.deleted_count},
        message=f"{result.deleted_count} employees deleted"
    )


@router.put("/bulk", response_model=dict)
async def bulk_update_employees(
    body: BulkUpdateRequest,
    request: Request,
    current_user: dict = Depends(require_permission("edit_employees"))
):
    ids = _parse_bulk_ids(body.employeeIds)
    raw = dict(body.updateData or {})
    blocked = [f for f in raw if f in BULK_PROTECTED_FIELDS]
    if blocked:
        raise HTTPException(status_code=400, detail=f"Cannot bulk update: {', '.join(blocked)}")
    if not raw:
        raise HTTPException(status_code=400, detail="updateData is required")
    for unique_field in ("email", "extension", "username"):
        if unique_field in raw and len(ids) > 1:
            raise HTTPException(status_code=400, detail=f"Cannot set the same {unique_field} on several employees")

    try:
        update_data = BulkUpdateData.model_validate(raw).dict(exclude_unset=True)
    except ValidationError as e:
        raise RequestValidationError([
            {**err, "loc": ("body", "updateData", *err.get("loc", ()))} for err in e.errors()
        ])

    if update_data.get("email"):
        update_data["email"] = update_data["email"].lower()
    if len(ids) == 1:
        await ensure_unique_identity(
            email=update_data.get("email"),
            extension=update_data.get("extension"),
            username=update_data.get("username"),
            exclude_id=ids[0]
        )
    if "department" in update_data:
        update_data["department"] = (await require_department(update_data["department"]))["_id"]
    if "reportsTo" in update_data:
        update_data["reportsTo"] = await _reports_to(update_data["reportsTo"])

    filter_dict = {"_id": {"$in": ids}}
    if current_user.get("role") != "admin":
        filter_dict["role"] = {"$ne": "admin"}

    db = get_db()
    result = await db["users"].update_many(filter_dict, {"$set": touch(update_data)})

    await audit_service.log_request(
        request, current_user, AuditAction.BULK_UPDATE, AuditTarget.EMPLOYEE,
        details={"employeeIds": [str(i) for i in ids], "fields": sorted(k for k in update_data if k != "updatedAt")}
    )
    return success_response(
        {"modifiedCount": result.modified_count, "matchedCount": result.matched_count},
        message=f"{result.modified_count} employees updated"
    )


@router.patch("/bulk/toggle-status", response_model=dict)
async def bulk_toggle_status(
    body: BulkToggleRequest,
    request: Request,
    current_user: dict = Depends(require_permission("edit_employees"))
):
    ids = _excluding_self(_parse_bulk_ids(body.employeeIds), current_user)
    if not isinstance(body.isActive, bool):
        raise HTTPException(status_code=400, detail="isActive must be a boolean")

    db = get_db()
    result = await db["users"].update_many(
        {"_id": {"$in": ids}},
        {"$set": touch({"isActive": body.isActive})}
    )
    await audit_service.log_request(
        request, current_user, AuditAction.BULK_TOGGLE_STATUS, AuditTarget.EMPLOYEE,
        details={"employeeIds": [str(i) for i in ids], "isActive": body.isActive}
    )
    state = "activated" if body.isActive else "deactivated"
    return success_response(
        {"modifiedCount": result.modified_count},
        message=f"{result.modified_count} employees {state}"
    )


@router.patch("/bulk/assign-department", response_model=dict)
async def bulk_assign_department(
    body: BulkAssignRequest,
    request: Request,
    current_user: dict = Depends(require_permission("edit_employees"))
):
    ids = _parse_bulk_ids(body.employeeIds)
    if not body.departmentId:
        raise HTTPException(status_code=400, detail="departmentId is required")
    department = await require_department(body.departmentId, status_code=404)

    db = get_db()
    result = await db["users"].update_many(
        {"_id": {"$in": ids}},
        {"$set": touch({"department": department["_id"]})}
    )
    await audit_service.log_request(
        request, current_user, AuditAction.BULK_ASSIGN_DEPARTMENT, AuditTarget.EMPLOYEE,
        details={"employeeIds": [str(i) for i in ids], "departmentId": str(department["_id"])}
    )
    return success_response(
        {"modifiedCount": result.modified_count},
        message=f"{result.modified_count} employees assigned to {department['name']}"
    )


# --------------------------------------------------------------------------
# Single employee CRUD
# --------------------------------------------------------------------------
@router.post("/", response_model=dict, status_code=201)
@router.post("", response_model=dict, status_code=201, include_in_schema=False)
async def create_employee(
    employee: EmployeeCreate,
    request: Request,
    current_user: dict = Depends(require_permission("create_employees"))
):
    db = get_db()
    data = employee.dict(exclude={"name", "password"})

    if not data.get("firstName") and employee.name:
        data["firstName"], data["lastName"] = split_name(employee.name)
    if not data.get("firstName"):
        raise HTTPException(status_code=400, detail="First name is required")

    if data["role"] == "admin" and current_user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Only admins can create admin accounts")

    data["email"] = data["email"].lower()
    await ensure_unique_identity(
        email=data["email"], extension=data["extension"], username=data.get("username")
    )
    data["department"] = (await require_department(data["department"]))["_id"]
    data["reportsTo"] = await _reports_to(data.get("reportsTo"))

    now = datetime.utcnow()
    data.update({
        "password": hash_password(employee.password),
        "employeeCode": await next_employee_code(),
        "loginAttempts": 0,
        "accountLocked": False,
        "documentsStatus": "pending",
        "createdAt": now,
        "updatedAt": now,
    })
    if not data.get("username"):
        data.pop("username", None)

    result = await db["users"].insert_one(data)
    created = await db["users"].find_one({"_id": result.inserted_id})

    await audit_service.log_request(
        request, current_user, AuditAction.CREATE, AuditTarget.EMPLOYEE, result.inserted_id,
        details={"extension": data["extension"], "email": data["email"], "role": data["role"]}
    )
    logger.info("Employee %s created by %s", result.inserted_id, current_user["_id"])
    return success_response(await present_employee(created), message="Employee created successfully")


@router.get("/{employee_id}", response_model=dict)
async def get_employee(
    employee_id: str,
    current_user: dict = Depends(require_permission("view_employees"))
):
    user = await get_employee_or_404(employee_id, scope_employee_filter(current_user, {}))
    return success_response(await present_employee(user))


@router.put("/{employee_id}", response_model=dict)
async def update_employee(
    employee_id: str,
    employee: EmployeeUpdate,
    request: Request,
    current_user: dict = Depends(require_permission("edit_employees"))
):
    db = get_db()
    target = await get_employee_or_404(employee_id)
    is_admin = current_user.get("role") == "admin"

    if target.get("role") == "admin" and not is_admin:
        raise HTTPException(status_code=403, detail="Cannot edit admin accounts")
    if current_user.get("role") == "manager" and target.get("department") != current_user.get("department"):
        raise HTTPException(status_code=403, detail="Managers can only edit employees in their department")

    update_data = employee.dict(exclude_unset=True)
    if ("role" in update_data or "permissions" in update_data) and not is_admin:
        raise HTTPException(status_code=403, detail="Only admins can change roles or permissions")

    if update_data.get("email"):
        update_data["email"] = update_data["email"].lower()
    await ensure_unique_identity(
        email=update_data.get("email"),
        extension=update_data.get("extension"),
        username=update_data.get("username"),
        exclude_id=target["_id"]
    )
    if "department" in update_data:
        update_data["department"] = (await require_department(update_data["department"]))["_id"]
    if "reportsTo" in update_data:
        update_data["reportsTo"] = await _reports_to(update_data["reportsTo"])
    if update_data.get("password"):
        update_data["password"] = hash_password(update_data["password"])
    else:
        update_data.pop("password", None)

    if not update_data:
        raise HTTPException(status_code=400, detail="No fields to update")

    await db["users"].update_one({"_id": target["_id"]}, {"$set": touch(update_data)})
    updated = await db["users"].find_one({"_id": target["_id"]})

    await audit_service.log_request(
        request, current_user, AuditAction.UPDATE, AuditTarget.EMPLOYEE, target["_id"],
        details={"fields": sorted(k for k in update_data if k != "updatedAt")}
    )
    return success_response(await present_employee(updated), message="Employee updated successfully")


@router.delete("/{employee_id}", response_model=dict)
async def delete_employee(
    employee_id: str,
    request: Request,
    current_user: dict = Depends(require_permission("delete_employees"))
):
    target = await get_employee_or_404(employee_id)
    if target["_id"] == current_user["_id"]:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")

    db = get_db()
    await db["users"].delete_one({"_id": target["_id"]})
    await db["departments"].update_many({"head": target["_id"]}, {"$set": {"head": None}})

    await audit_service.log_request(
        request, current_user, AuditAction.DELETE, AuditTarget.EMPLOYEE, target["_id"],
        details={"extension": target.get("extension"), "email": target.get("email")},
        severity=AuditSeverity.MEDIUM
    )
    return success_response(message="Employee deleted successfully")


@router.patch("/{employee_id}/toggle-status", response_model=dict)
async def toggle_employee_status(
    employee_id: str,
    request: Request,
    current_user: dict = Depends(require_permission("edit_employees"))
):
    target = await get_employee_or_404(employee_id)
    if target["_id"] == current_user["_id"]:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")

    new_state = not target.get("isActive", True)
    db = get_db()
    await db["users"].update_one({"_id": target["_id"]}, {"$set": touch({"isActive": new_state})})
    target["isActive"] = new_state

    await audit_service.log_request(
        request, current_user, AuditAction.UPDATE, AuditTarget.EMPLOYEE, target["_id"],
        details={"isActive": new_state}
    )
    state = "activated" if new_state else "deactivated"
    return success_response(await present_employee(target), message=f"Employee {state} successfully")


@router.put("/{employee_id}/password", response_model=dict)
async def reset_employee_password(
    employee_id: str,
    body: AdminPasswordReset,
    request: Request,
    current_user: dict = Depends(require_permission("manage_users"))
):
    target = await get_employee_or_404(employee_id)
    db = get_db()
    # A reset also lifts a lockout
    await db["users"].update_one(
        {"_id": target["_id"]},
        {"$set": touch({
            "password": hash_password(body.newPassword),
            "loginAttempts": 0,
            "accountLocked": False
        })}
    )
    await audit_service.log_request(
        request, current_user, AuditAction.CHANGE_PASSWORD, AuditTarget.EMPLOYEE, target["_id"],
        details={"resetByAdmin": True}, severity=AuditSeverity.MEDIUM
    )
    return success_response(message="Password updated successfully")


async def _review_documents(employee_id: str, approved: bool, reason: Optional[str], request: Request, current_user: dict):
    target = await get_employee_or_404(employee_id)
    is_admin = current_user.get("role") == "admin"
    is_line_manager = target.get("reportsTo") is not None and target.get("reportsTo") == current_user["_id"]
    if not (is_admin or is_line_manager):
        raise HTTPException(status_code=403, detail="Only an admin or the employee's manager can review documents")

    status = "approved" if approved else "rejected"
    update = {
        "documentsStatus": status,
        "documentsApprovedBy": current_user["_id"],
        "documentsApprovedAt": datetime.utcnow(),
    }
    if reason:
        update["documentsRejectionReason"] = reason

    db = get_db()
    await db["users"].update_one({"_id": target["_id"]}, {"$set": touch(update)})
    updated = await db["users"].find_one({"_id": target["_id"]})

    await audit_service.log_request(
        request, current_user,
        AuditAction.APPROVE_DOCUMENTS if approved else AuditAction.REJECT_DOCUMENTS,
        AuditTarget.EMPLOYEE, target["_id"],
        details={"reason": reason} if reason else None
    )
    return success_response(await present_employee(updated), message=f"Documents {status}")


@router.post("/{employee_id}/documents/approve", response_model=dict)
async def approve_documents(
    employee_id: str,
    request: Request,
    current_user: dict = Depends(get_current_user)
):
    return await _review_documents(employee_id, True, None, request, current_user)


@router.post("/{employee_id}/documents/reject", response_model=dict)
async def reject_documents(
    employee_id: str,
    request: Request,
    body: Optional[DocumentReview] = None,
    current_user: dict = Depends(get_current_user)
):
    return await _review_documents(employee_id, False, body.reason if body else None, request, current_user)
