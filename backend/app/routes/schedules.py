from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from typing import Optional
from datetime import datetime, timedelta
from app.db import get_db
from app.models.schedule import WEEK_DAYS, week_bounds, default_day_hours, default_shift_day
from app.schemas.schedule import ScheduleUpsert
from app.services.audit_service import audit_service, AuditAction, AuditTarget
from app.services.employee_service import get_department_map, get_user_map, require_department, get_employee_or_404
from app.utils.auth import get_current_user, verify_role
from app.utils.mongo import naive_utc, serialize, to_object_id
from app.utils.permissions import is_department_scoped
from app.utils.responses import success_response, paginated_response, pagination_params
from app.utils.ws_manager import manager, user_room
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

SCHEDULE_PUBLISHED_EVENT = "schedule:published"


def _minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


def _build_shift(entry: dict) -> dict:
    shift = {"employee": entry["employee"]}
    for day in WEEK_DAYS:
        value = default_shift_day(day)
        given = entry.get(day) or {}
        value.update({k: v for k, v in given.items() if v is not None})
        if value["isWorking"] and _minutes(value["endTime"]) <= _minutes(value["startTime"]):
            raise HTTPException(
                status_code=400,
                detail=f"{day.capitalize()} shift must end after it starts"
            )
        shift[day] = value
    return shift


def _build_hours(schedule: Optional[dict], existing: Optional[dict] = None) -> dict:
    hours = dict(existing or {day: default_day_hours() for day in WEEK_DAYS})
    for day, value in (schedule or {}).items():
        if value is not None:
            hours[day] = {**default_day_hours(), **(hours.get(day) or {}), **value}
    return hours


async def _present_schedules(schedules: list, only_employee=None) -> list:
    departments = await get_department_map(s.get("department") for s in schedules)
    people = await get_user_map(
        shift.get("employee") for s in schedules for shift in s.get("shifts", [])
    )
    result = []
    for schedule in schedules:
        shifts = schedule.get("shifts", [])
        if only_employee is not None:
            shifts = [s for s in shifts if s.get("employee") == only_employee]
        doc = serialize({**schedule, "shifts": shifts})
        department = departments.get(str(schedule.get("department")))
        if department:
            doc["department"] = {"_id": str(department["_id"]), "name": department.get("name")}
        for shift in doc["shifts"]:
            shift["employee"] = people.get(shift["employee"], {"_id": shift["employee"]})
        result.append(doc)
    return result


def _assert_department_access(current_user: dict, department_id):
    if is_department_scoped(current_user) and current_user.get("department") != department_id:
        raise HTTPException(status_code=403, detail="Access denied to this department's schedule")


async def _assert_can_manage(current_user: dict, department: dict):
    if current_user.get("role") == "admin":
        return
    if department.get("head") != current_user["_id"]:
        raise HTTPException(status_code=403, detail="Only the department manager can manage its schedule")


async def _get_schedule_or_404(schedule_id: str) -> dict:
    db = get_db()
    schedule = await db["schedules"].find_one({"_id": to_object_id(schedule_id, "schedule")})
    if not schedule:
        raise HTTPException(status_code=404, detail="Schedule not found")
    return schedule


async def _notify_published(schedule: dict, presented: dict) -> int:
    rooms = [user_room(shift["employee"]) for shift in schedule.get("shifts", [])]
    delivered = await manager.emit_to_rooms(rooms, SCHEDULE_PUBLISHED_EVENT, {
        "scheduleId": presented["_id"],
        "department": presented["department"],
        "weekStart": presented["weekStart"],
        "weekEnd": presented["weekEnd"],
    })
    logger.info("Schedule %s published, %d sockets notified", schedule["_id"], delivered)
    return delivered


@router.get("/", response_model=dict)
@router.get("", response_model=dict, include_in_schema=False)
async def list_schedules(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    department: Optional[str] = None,
    weekStart: Optional[datetime] = None,
    current_user: dict = Depends(get_current_user)
):
    db = get_db()
    page, limit, skip = pagination_params(page, limit)

    filter_dict = {"isActive": True}
    if department:
        filter_dict["department"] = to_object_id(department, "department")
    if weekStart:
        start = naive_utc(weekStart).replace(hour=0, minute=0, second=0, microsecond=0)
        filter_dict["weekStart"] = {"$gte": start, "$lt": start + timedelta(days=7)}

    # Employees and managers only see their own department's schedules
    if is_department_scoped(current_user):
        filter_dict["department"] = current_user.get("department")
    if current_user.get("role") == "employee":
        filter_dict["isPublished"] = True

    total = await db["schedules"].count_documents(filter_dict)
    schedules = await db["schedules"].find(filter_dict) \
        .sort("weekStart", -1) \
        .skip(skip) \
        .limit(limit) \
        .to_list(None)
    return paginated_response(await _present_schedules(schedules), page, limit, total)


@router.get("/department/{department_id}", response_model=dict)
async def get_department_schedule(
    department_id: str,
    current_user: dict = Depends(get_current_user)
):
    department_oid = to_object_id(department_id, "department")
    _assert_department_access(current_user, department_oid)

    filter_dict = {"department": department_oid, "isActive": True}
    if current_user.get("role") == "employee":
        filter_dict["isPublished"] = True

    db = get_db()
    schedule = await db["schedules"].find_one(filter_dict)
    if not schedule:
        raise HTTPException(status_code=404, detail="No schedule found for this department")
    return success_response((await _present_schedules([schedule]))[0])


@router.get("/employee/{employee_id}", response_model=dict)
async def get_employee_schedule(
    employee_id: str,
    current_user: dict = Depends(get_current_user)
):
    employee_oid = to_object_id(employee_id, "employee")
    role = current_user.get("role")
    if role == "employee" and employee_oid != current_user["_id"]:
        raise HTTPException(status_code=403, detail="You can only view your own schedule")
    if role == "manager":
        employee = await get_employee_or_404(employee_oid)
        _assert_department_access(current_user, employee.get("department"))

    filter_dict = {"shifts.employee": employee_oid, "isActive": True}
    if role == "employee":
        filter_dict["isPublished"] = True

    db = get_db()
    schedules = await db["schedules"].find(filter_dict).sort("weekStart", -1).to_list(None)
    data = await _present_schedules(schedules, only_employee=employee_oid)
    return success_response(data, count=len(data))


@router.post("/", response_model=dict, status_code=201)
@router.post("", response_model=dict, status_code=201, include_in_schema=False)
async def save_schedule(
    body: ScheduleUpsert,
    request: Request,
    current_user: dict = Depends(verify_role(["admin", "manager"]))
):
    """Create the department's active schedule, or update it if one exists."""
    db = get_db()
    department = await require_department(body.department)
    await _assert_can_manage(current_user, department)

    data = body.dict(exclude_unset=True)
    week_start, week_end = week_bounds(naive_utc(body.weekStart))

    shifts = None
    if body.shifts is not None:
        employee_ids = [to_object_id(s.employee, "employee") for s in body.shifts]
        members = await db["users"].count_documents({
            "_id": {"$in": employee_ids},
            "department": department["_id"]
        })
        if members != len(employee_ids):
            raise HTTPException(status_code=400, detail="All scheduled employees must belong to the department")
        shifts = [
            _build_shift({**entry, "employee": oid})
            for entry, oid in zip(data["shifts"], employee_ids)
        ]

    existing = await db["schedules"].find_one({"department": department["_id"], "isActive": True})
    now = datetime.utcnow()
    publish = bool(body.isPublished)

    if existing:
        update = {
            "weekStart": week_start if body.weekStart else existing["weekStart"],
            "weekEnd": week_end if body.weekStart else existing["weekEnd"],
            "schedule": _build_hours(data.get("schedule"), existing.get("schedule")),
            "lastModifiedBy": current_user["_id"],
            # Edits go back to draft unless the same request publishes them
            "isPublished": publish,
            "updatedAt": now,
        }
        if publish:
            update["publishedAt"] = now
        if body.isActive is not None:
            update["isActive"] = body.isActive
        if shifts is not None:
            update["shifts"] = shifts
        await db["schedules"].update_one({"_id": existing["_id"]}, {"$set": update})
        schedule = await db["schedules"].find_one({"_id": existing["_id"]})
        action, status_code, message = AuditAction.SCHEDULE_UPDATE, 200, "Schedule updated successfully"
    else:
        schedule = {
            "department": department["_id"],
            "weekStart": week_start,
            "weekEnd": week_end,
            "schedule": _build_hours(data.get("schedule")),
            "shifts": shifts or [],
            "createdBy": current_user["_id"],
            "lastModifiedBy": current_user["_id"],
            "isPublished": publish,
            "publishedAt": now if publish else None,
            "isActive": body.isActive if body.isActive is not None else True,
            "createdAt": now,
            "updatedAt": now,
        }
        result = await db["schedules"].insert_one(schedule)
        schedule["_id"] = result.inserted_id
        action, status_code, message = AuditAction.SCHEDULE_CREATE, 201, "Schedule created successfully"

    await audit_service.log_request(
        request, current_user, action, AuditTarget.SCHEDULE, schedule["_id"],
        details={
            "department": str(department["_id"]),
            "weekStart": schedule["weekStart"].isoformat(),
            "shiftCount": len(schedule.get("shifts", [])),
            "isPublished": schedule["isPublished"],
            "isActive": schedule["isActive"]
        }
    )
    presented = (await _present_schedules([schedule]))[0]
    if publish and schedule["isActive"]:
        await _notify_published(schedule, presented)
    body_out = success_response(presented, message=message)
    return JSONResponse(status_code=status_code, content=body_out)


@router.post("/{schedule_id}/publish", response_model=dict)
async def publish_schedule(
    schedule_id: str,
    request: Request,
    current_user: dict = Depends(verify_role(["admin", "manager"]))
):
    db = get_db()
    schedule = await _get_schedule_or_404(schedule_id)
    department = await require_department(schedule["department"], status_code=404)
    await _assert_can_manage(current_user, department)

    now = datetime.utcnow()
    await db["schedules"].update_one(
        {"_id": schedule["_id"]},
        {"$set": {
            "isPublished": True,
            "publishedAt": now,
            "lastModifiedBy": current_user["_id"],
            "updatedAt": now
        }}
    )
    schedule = await db["schedules"].find_one({"_id": schedule["_id"]})

    await audit_service.log_request(
        request, current_user, AuditAction.SCHEDULE_PUBLISH, AuditTarget.SCHEDULE, schedule["_id"],
        details={"department": str(department["_id"]), "weekStart": schedule["weekStart"].isoformat()}
    )

    presented = (await _present_schedules([schedule]))[0]
    await _notify_published(schedule, presented)

    return success_response(presented, message="Schedule published successfully")


@router.get("/{schedule_id}/history", response_model=dict)
async def get_schedule_history(
    schedule_id: str,
    current_user: dict = Depends(verify_role(["admin", "manager"]))
):
    schedule = await _get_schedule_or_404(schedule_id)
    _assert_department_access(current_user, schedule["department"])

    entries = await audit_service.get_target_history(AuditTarget.SCHEDULE, schedule["_id"], limit=50)
    actors = await get_user_map(e.get("user") for e in entries)
    data = []
    for entry in entries:
        doc = serialize(entry)
        actor = actors.get(str(entry.get("user")))
        doc["actor"] = {"_id": actor["_id"], "name": actor["name"], "email": actor["email"]} if actor else None
        data.append(doc)
    return success_response(data, count=len(data))
