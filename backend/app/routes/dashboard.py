from fastapi import APIRouter, Depends
from app.db import get_db
from app.models.schedule import week_bounds
from app.services import message_service
from app.services.employee_service import department_summary, present_employees
from app.utils.auth import get_current_user
from app.utils.mongo import serialize
from app.utils.responses import success_response
from datetime import datetime, timedelta

router = APIRouter()

RECENT_HIRE_DAYS = 30


async def _role_distribution(filter_dict: dict) -> dict:
    users = await get_db()["users"].find(filter_dict, {"role": 1}).to_list(None)
    distribution = {}
    for user in users:
        role = user.get("role") or "employee"
        distribution[role] = distribution.get(role, 0) + 1
    return distribution


async def _organization_stats() -> dict:
    db = get_db()
    since = datetime.utcnow() - timedelta(days=RECENT_HIRE_DAYS)
    recent = await db["users"].find({"createdAt": {"$gte": since}}, {"password": 0}) \
        .sort("createdAt", -1) \
        .limit(5) \
        .to_list(None)
    total = await db["users"].count_documents({})
    active = await db["users"].count_documents({"isActive": True})
    return {
        "totalEmployees": total,
        "activeEmployees": active,
        "inactiveEmployees": total - active,
        "totalDepartments": await db["departments"].count_documents({"isActive": {"$ne": False}}),
        "recentHires": await db["users"].count_documents({"createdAt": {"$gte": since}}),
        "recentEmployees": await present_employees(recent),
        "roleDistribution": await _role_distribution({}),
    }


async def _manager_stats(current_user: dict) -> dict:
    db = get_db()
    department_id = current_user.get("department")
    department = await db["departments"].find_one({"_id": department_id}) if department_id else None
    schedule = await db["schedules"].find_one({"department": department_id, "isActive": True}) \
        if department_id else None
    feed = await message_service.get_role_feed(current_user, "manager", limit=1)
    return {
        "department": department_summary(department) if department else None,
        "totalEmployees": await db["users"].count_documents({"department": department_id}) if department_id else 0,
        "teamSize": await db["users"].count_documents({
            "department": department_id, "isActive": True, "_id": {"$ne": current_user["_id"]}
        }) if department_id else 0,
        "schedulePublished": bool(schedule and schedule.get("isPublished")),
        "scheduleId": str(schedule["_id"]) if schedule else None,
        "unreadMessages": feed["unreadCount"],
    }


async def _employee_stats(current_user: dict) -> dict:
    db = get_db()
    department_id = current_user.get("department")
    department = await db["departments"].find_one({"_id": department_id}) if department_id else None

    feed = await message_service.get_role_feed(current_user, "employee", limit=1)
    conversations = await message_service.list_user_conversations(current_user["_id"])

    week_start, week_end = week_bounds()
    schedule = await db["schedules"].find_one({
        "shifts.employee": current_user["_id"],
        "isActive": True,
        "isPublished": True,
        "weekStart": {"$lte": week_end},
        "weekEnd": {"$gte": week_start},
    })
    shifts = None
    if schedule:
        mine = next((s for s in schedule.get("shifts", []) if s.get("employee") == current_user["_id"]), None)
        shifts = serialize(mine) if mine else None

    return {
        "department": department_summary(department) if department else None,
        "unreadChannelMessages": feed["unreadCount"],
        "unreadConversationMessages": sum(c["unreadCount"] for c in conversations),
        "conversations": len(conversations),
        "thisWeekShifts": shifts,
    }


@router.get("/stats", response_model=dict)
async def get_dashboard_stats(current_user: dict = Depends(get_current_user)):
    role = current_user.get("role")
    if role in ("admin", "hr"):
        stats = await _organization_stats()
    elif role == "manager":
        stats = await _manager_stats(current_user)
    else:
        stats = await _employee_stats(current_user)
    return success_response({"role": role, **stats})
