from fastapi import APIRouter, Depends, HTTPException, Query, Request
from typing import Optional
from bson import ObjectId
from datetime import datetime
import re
from app.db import get_db
from app.schemas.department import DepartmentCreate, DepartmentUpdate, ManagerAssignment
from app.services.audit_service import audit_service, AuditAction, AuditTarget, AuditSeverity
from app.services.employee_service import (
    get_employee_or_404, get_user_map, present_employees, require_department, touch
)
from app.utils.auth import get_current_user, require_admin, require_permission
from app.utils.mongo import regex_filter, serialize, to_object_id
from app.utils.permissions import is_department_scoped
from app.utils.responses import success_response, paginated_response, pagination_params
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


def _exact_name(name: str) -> dict:
    return {"$regex": f"^{re.escape(name.strip())}$", "$options": "i"}


async def _present_departments(departments: list) -> list:
    db = get_db()
    heads = await get_user_map(d.get("head") for d in departments)
    result = []
    for department in departments:
        doc = serialize(department)
        doc["head"] = heads.get(str(department.get("head"))) if department.get("head") else None
        doc["employeeCount"] = await db["users"].count_documents({
            "department": department["_id"],
            "isActive": True
        })
        result.append(doc)
    return result


async def _check_unique(name: Optional[str], code: Optional[str], exclude_id: Optional[ObjectId] = None):
    db = get_db()
    not_self = {"_id": {"$ne": exclude_id}} if exclude_id else {}
    if name and await db["departments"].find_one({"name": _exact_name(name), **not_self}):
        raise HTTPException(status_code=400, detail="Department name already exists")
    if code and await db["departments"].find_one({"organizationalCode": code, **not_self}):
        raise HTTPException(status_code=400, detail="Organizational code already exists")


async def _check_head(head_id: Optional[str], department_id: Optional[ObjectId] = None) -> Optional[ObjectId]:
    """Validate a prospective head: must exist and not already lead another department."""
    if not head_id:
        return None
    head = await get_employee_or_404(head_id)
    db = get_db()
    query = {"head": head["_id"]}
    if department_id:
        query["_id"] = {"$ne": department_id}
    other = await db["departments"].find_one(query)
    if other:
        raise HTTPException(
            status_code=400,
            detail=f"This employee already manages the {other['name']} department"
        )
    return head["_id"]


async def _check_parent(parent_id: Optional[str], department_id: Optional[ObjectId] = None) -> Optional[ObjectId]:
    """Validate a prospective parent. Walking up from it must never reach the department itself."""
    if not parent_id:
        return None
    parent = await require_department(parent_id)
    if department_id is None:
        return parent["_id"]
    if parent["_id"] == department_id:
        raise HTTPException(status_code=400, detail="A department cannot be its own parent")

    db = get_db()
    seen = {parent["_id"]}
    ancestor_id = parent.get("parentDepartment")
    while ancestor_id is not None and ancestor_id not in seen:
        if ancestor_id == department_id:
            raise HTTPException(
                status_code=400,
                detail="A department cannot be placed under one of its own sub-departments"
            )
        seen.add(ancestor_id)
        ancestor = await db["departments"].find_one({"_id": ancestor_id}, {"parentDepartment": 1})
        ancestor_id = ancestor.get("parentDepartment") if ancestor else None
    return parent["_id"]


@router.get("/", response_model=dict)
@router.get("", response_model=dict, include_in_schema=False)
async def list_departments(
    includeInactive: bool = False,
    current_user: dict = Depends(get_current_user)
):
    db = get_db()
    filter_dict = {} if includeInactive else {"isActive": {"$ne": False}}
    departments = await db["departments"].find(filter_dict).sort("name", 1).to_list(None)
    data = await _present_departments(departments)
    return success_response(data, count=len(data))


@router.get("/hierarchy", response_model=dict)
async def get_department_hierarchy(current_user: dict = Depends(get_current_user)):
    db = get_db()
    departments = await db["departments"].find({"isActive": {"$ne": False}}).sort("name", 1).to_list(None)

    nodes = {}
    for department in departments:
        node = serialize(department)
        node["children"] = []
        nodes[node["_id"]] = node

    roots = []
    for node in nodes.values():
        parent = nodes.get(node.get("parentDepartment")) if node.get("parentDepartment") else None
        if parent is not None:
            parent["children"].append(node)
        else:
            roots.append(node)
    return success_response(roots)


@router.get("/{department_id}", response_model=dict)
async def get_department(department_id: str, current_user: dict = Depends(get_current_user)):
    department = await require_department(department_id, status_code=404)
    return success_response((await _present_departments([department]))[0])


@router.post("/", response_model=dict, status_code=201)
@router.post("", response_model=dict, status_code=201, include_in_schema=False)
async def create_department(
    department: DepartmentCreate,
    request: Request,
    current_user: dict = Depends(require_admin)
):
    db = get_db()
    data = department.dict()
    await _check_unique(data["name"], data.get("organizationalCode"))
    data["head"] = await _check_head(data.get("head"))
    data["parentDepartment"] = await _check_parent(data.get("parentDepartment"))

    now = datetime.utcnow()
    data.update({"createdAt": now, "updatedAt": now})
    if not data.get("organizationalCode"):
        data.pop("organizationalCode", None)

    result = await db["departments"].insert_one(data)
    created = await db["departments"].find_one({"_id": result.inserted_id})

    await audit_service.log_request(
        request, current_user, AuditAction.CREATE, AuditTarget.DEPARTMENT, result.inserted_id,
        details={"name": data["name"]}
    )
    return success_response((await _present_departments([created]))[0], message="Department created successfully")


@router.put("/{department_id}", response_model=dict)
async def update_department(
    department_id: str,
    department: DepartmentUpdate,
    request: Request,
    current_user: dict = Depends(require_admin)
):
    db = get_db()
    existing = await require_department(department_id, status_code=404)
    update_data = department.dict(exclude_unset=True)

    await _check_unique(update_data.get("name"), update_data.get("organizationalCode"), existing["_id"])
    if "head" in update_data:
        update_data["head"] = await _check_head(update_data["head"], existing["_id"])
    if "parentDepartment" in update_data:
        update_data["parentDepartment"] = await _check_parent(update_data["parentDepartment"], existing["_id"])
    if "name" in update_data and update_data["name"]:
        update_data["name"] = update_data["name"].strip()

    if not update_data:
        raise HTTPException(status_code=400, detail="No fields to update")

    changes = {"$set": touch(dict(update_data))}
    # A null code clears it; the sparse unique index ignores missing fields but not nulls
    if "organizationalCode" in update_data and update_data["organizationalCode"] is None:
        del changes["$set"]["organizationalCode"]
        changes["$unset"] = {"organizationalCode": ""}
    await db["departments"].update_one({"_id": existing["_id"]}, changes)
    updated = await db["departments"].find_one({"_id": existing["_id"]})

    await audit_service.log_request(
        request, current_user, AuditAction.UPDATE, AuditTarget.DEPARTMENT, existing["_id"],
        details={"fields": sorted(k for k in update_data if k != "updatedAt")}
    )
    return success_response((await _present_departments([updated]))[0], message="Department updated successfully")


@router.put("/{department_id}/manager", response_model=dict)
async def assign_department_manager(
    department_id: str,
    body: ManagerAssignment,
    request: Request,
    current_user: dict = Depends(require_admin)
):
    db = get_db()
    department = await require_department(department_id, status_code=404)

    head_id = None
    if body.managerId:
        manager = await get_employee_or_404(body.managerId)
        if manager.get("role") != "manager":
            raise HTTPException(status_code=400, detail="Selected employee must have the manager role")
        head_id = await _check_head(body.managerId, department["_id"])
        # The manager works in the department they lead
        await db["users"].update_one(
            {"_id": head_id},
            {"$set": touch({"department": department["_id"]})}
        )

    await db["departments"].update_one({"_id": department["_id"]}, {"$set": touch({"head": head_id})})
    updated = await db["departments"].find_one({"_id": department["_id"]})

    await audit_service.log_request(
        request, current_user, AuditAction.UPDATE, AuditTarget.DEPARTMENT, department["_id"],
        details={"head": str(head_id) if head_id else None, "previousHead": department.get("head")}
    )
    message = "Department manager assigned successfully" if head_id else "Department manager removed successfully"
    return success_response((await _present_departments([updated]))[0], message=message)


@router.delete("/{department_id}", response_model=dict)
async def delete_department(
    department_id: str,
    request: Request,
    current_user: dict = Depends(require_admin)
):
    db = get_db()
    department = await require_department(department_id, status_code=404)

    employee_count = await db["users"].count_documents({"department": department["_id"]})
    if employee_count:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot delete department with {employee_count} employees. Reassign them first."
        )
    if await db["departments"].count_documents({"parentDepartment": department["_id"]}):
        raise HTTPException(status_code=400, detail="Cannot delete a department that has sub-departments")

    await db["departments"].delete_one({"_id": department["_id"]})
    await db["schedules"].update_many({"department": department["_id"]}, {"$set": {"isActive": False}})

    await audit_service.log_request(
        request, current_user, AuditAction.DELETE, AuditTarget.DEPARTMENT, department["_id"],
        details={"name": department.get("name")}, severity=AuditSeverity.MEDIUM
    )
    return success_response(message="Department deleted successfully")


@router.get("/{department_id}/employees", response_model=dict)
async def list_department_employees(
    department_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1),
    search: Optional[str] = None,
    current_user: dict = Depends(require_permission("view_employees"))
):
    department_oid = to_object_id(department_id, "department")
    if is_department_scoped(current_user) and current_user.get("department") != department_oid:
        raise HTTPException(status_code=403, detail="Access denied to this department")
    await require_department(department_oid, status_code=404)

    db = get_db()
    page, limit, skip = pagination_params(page, limit)
    filter_dict = {"department": department_oid}
    if current_user.get("role") == "employee":
        filter_dict["isActive"] = True
    if search and search.strip():
        term = regex_filter(search)
        filter_dict["$or"] = [
            {"firstName": term}, {"lastName": term}, {"extension": term},
            {"position": term}, {"email": term},
        ]

    total = await db["users"].count_documents(filter_dict)
    users = await db["users"].find(filter_dict).sort("firstName", 1).skip(skip).limit(limit).to_list(None)
    return paginated_response(await present_employees(users), page, limit, total)
