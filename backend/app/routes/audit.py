"""
Audit Log API Routes
Browsing, statistics and vocabulary for the audit trail
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
from datetime import datetime
from app.services.audit_service import audit_service, AuditAction, AuditTarget, AuditSeverity
from app.services.employee_service import get_user_map
from app.utils.auth import get_current_user, require_permission
from app.utils.mongo import naive_utc, serialize, to_object_id
from app.utils.permissions import has_permission
from app.utils.responses import success_response, pagination_params
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


def _actor(users: dict, user_id) -> Optional[dict]:
    summary = users.get(str(user_id)) if user_id else None
    if not summary:
        return None
    return {k: summary.get(k) for k in ("_id", "name", "email", "role")}


async def _present_logs(logs: list) -> list:
    users = await get_user_map(log.get("user") for log in logs)
    result = []
    for log in logs:
        doc = serialize(log)
        doc["user"] = _actor(users, log.get("user"))
        result.append(doc)
    return result


@router.get("/", response_model=dict)
@router.get("", response_model=dict, include_in_schema=False)
async def get_audit_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1),
    userId: Optional[str] = None,
    action: Optional[str] = None,
    resource: Optional[str] = None,
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    search: Optional[str] = None,
    current_user: dict = Depends(get_current_user)
):
    """
    Browse the audit trail. Users without view_audit_logs only see their own entries.
    """
    page, limit, skip = pagination_params(page, limit)
    user_filter = to_object_id(userId, "user") if userId else None

    if not has_permission(current_user, "view_audit_logs"):
        if user_filter and user_filter != current_user["_id"]:
            raise HTTPException(status_code=403, detail="You can only view your own audit logs")
        user_filter = current_user["_id"]

    logs, total = await audit_service.get_audit_logs(
        user_id=user_filter,
        action=action,
        target=resource,
        start_date=naive_utc(startDate),
        end_date=naive_utc(endDate),
        search=search,
        limit=limit,
        skip=skip
    )
    pages = (total + limit - 1) // limit
    return success_response({
        "logs": await _present_logs(logs),
        "pagination": {"current": page, "pages": pages, "total": total}
    })


@router.get("/stats", response_model=dict)
async def get_audit_statistics(
    days: int = Query(30, ge=1, le=365),
    current_user: dict = Depends(require_permission("view_audit_logs"))
):
    stats = await audit_service.get_statistics(days)
    users = await get_user_map(s["_id"] for s in stats["userStats"])
    stats["userStats"] = [
        {"_id": str(s["_id"]), "count": s["count"], "user": _actor(users, s["_id"])}
        for s in stats["userStats"]
    ]
    return success_response(stats)


@router.get("/actions", response_model=dict)
async def get_audit_vocabulary(current_user: dict = Depends(get_current_user)):
    return success_response({
        "actions": [a.value for a in AuditAction],
        "targets": [t.value for t in AuditTarget],
        "severities": [s.value for s in AuditSeverity]
    })


@router.get("/{log_id}", response_model=dict)
async def get_audit_log(log_id: str, current_user: dict = Depends(get_current_user)):
    log = await audit_service.get_audit_log(to_object_id(log_id, "audit log"))
    if not log:
        raise HTTPException(status_code=404, detail="Audit log not found")
    if not has_permission(current_user, "view_audit_logs") and log.get("user") != current_user["_id"]:
        raise HTTPException(status_code=403, detail="Access denied")
    return success_response((await _present_logs([log]))[0])
