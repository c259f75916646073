import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from bson import ObjectId
from fastapi import HTTPException
from pymongo import ReturnDocument
from app.db import get_db
from app.utils.mongo import serialize, to_object_id

logger = logging.getLogger(__name__)

PRIVATE_FIELDS = ("password", "loginAttempts", "accountLocked", "_token")
EMPLOYEE_CODE_COUNTER = "employeeCode"


def full_name(user: dict) -> str:
    name = " ".join(p for p in [user.get("firstName"), user.get("lastName")] if p)
    return name or user.get("name") or user.get("username") or ""


def split_name(name: str):
    parts = (name or "").strip().split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def public_employee(user: dict, department: Optional[dict] = None) -> dict:
    """Strip credentials and lock state, stringify ids and attach the display name."""
    doc = {k: v for k, v in user.items() if k not in PRIVATE_FIELDS}
    doc["name"] = full_name(user)
    if department is not None:
        doc["department"] = department_summary(department)
    return serialize(doc)


def department_summary(department: dict) -> dict:
    return {
        "_id": str(department["_id"]),
        "name": department.get("name"),
        "organizationalCode": department.get("organizationalCode"),
    }


def user_summary(user: dict) -> dict:
    return {
        "_id": str(user["_id"]),
        "name": full_name(user),
        "email": user.get("email"),
        "role": user.get("role"),
        "extension": user.get("extension"),
        "avatar": user.get("avatar"),
    }


async def next_employee_code() -> str:
    """Allocate the next EMP-000123 style code from the shared counter."""
    db = get_db()
    counter = await db["counters"].find_one_and_update(
        {"_id": EMPLOYEE_CODE_COUNTER},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER
    )
    return f"EMP-{counter['seq']:06d}"


async def get_department_map(ids: Iterable[Any]) -> Dict[str, dict]:
    db = get_db()
    object_ids = list({i for i in ids if isinstance(i, ObjectId)})
    if not object_ids:
        return {}
    departments = await db["departments"].find({"_id": {"$in": object_ids}}).to_list(None)
    return {str(d["_id"]): d for d in departments}


async def get_user_map(ids: Iterable[Any]) -> Dict[str, dict]:
    """Bulk-load users by id and return {id: summary}."""
    db = get_db()
    object_ids = list({i for i in ids if isinstance(i, ObjectId)})
    if not object_ids:
        return {}
    users = await db["users"].find(
        {"_id": {"$in": object_ids}},
        {"password": 0}
    ).to_list(None)
    return {str(u["_id"]): user_summary(u) for u in users}


async def present_employees(users: List[dict]) -> List[dict]:
    """Public projection of several employees with departments expanded."""
    departments = await get_department_map(u.get("department") for u in users)
    result = []
    for user in users:
        department = departments.get(str(user.get("department")))
        result.append(public_employee(user, department))
    return result


async def present_employee(user: dict) -> dict:
    return (await present_employees([user]))[0]


async def get_employee_or_404(employee_id: Any, extra_filter: Optional[dict] = None) -> dict:
    db = get_db()
    query = {"_id": to_object_id(employee_id, "employee")}
    if extra_filter:
        query.update(extra_filter)
    user = await db["users"].find_one(query)
    if not user:
        raise HTTPException(status_code=404, detail="Employee not found")
    return user


async def require_department(department_id: Any, status_code: int = 400) -> dict:
    db = get_db()
    department = await db["departments"].find_one({"_id": to_object_id(department_id, "department")})
    if not department:
        raise HTTPException(status_code=status_code, detail="Department not found")
    return department


async def ensure_unique_identity(
    email: Optional[str] = None,
    extension: Optional[str] = None,
    username: Optional[str] = None,
    exclude_id: Optional[ObjectId] = None
):
    """Reject an email, extension or username another employee already uses."""
    db = get_db()
    checks = [
        ("email", email, "Email already exists"),
        ("extension", extension, "Extension already exists"),
        ("username", username, "Username already exists"),
    ]
    for field, value, message in checks:
        if not value:
            continue
        query = {field: value}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        if await db["users"].find_one(query, {"_id": 1}):
            raise HTTPException(status_code=400, detail=message)


def touch(update: dict) -> dict:
    update["updatedAt"] = datetime.utcnow()
    return update
