"""
Audit Trail Service
Records who did what to which record (employees, departments, schedules,
conversations, messages) and serves the audit log views and statistics.
"""

from datetime import datetime, timedelta
from typing import List, Dict, Any, Optional, Tuple
from bson import ObjectId
from fastapi import Request
from app.db import get_db
from app.utils.logger import log_error
from app.utils.mongo import regex_filter
import logging
from enum import Enum

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = ("password", "token", "secret", "key")
REDACTED = "[REDACTED]"


class AuditAction(str, Enum):
    """Enumeration of audited actions"""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    LOGIN_FAILED = "LOGIN_FAILED"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    EXPORT = "EXPORT"
    CHANGE_PASSWORD = "CHANGE_PASSWORD"
    GENERATE_QR = "GENERATE_QR"
    GENERATE_CONTACT_QR = "GENERATE_CONTACT_QR"
    GENERATE_CARD_QR = "GENERATE_CARD_QR"
    GENERATE_BULK_QR = "GENERATE_BULK_QR"
    BULK_DELETE = "BULK_DELETE"
    BULK_UPDATE = "BULK_UPDATE"
    BULK_TOGGLE_STATUS = "BULK_TOGGLE_STATUS"
    BULK_ASSIGN_DEPARTMENT = "BULK_ASSIGN_DEPARTMENT"
    APPROVE_DOCUMENTS = "APPROVE_DOCUMENTS"
    REJECT_DOCUMENTS = "REJECT_DOCUMENTS"
    VIEW_AUDIT_LOGS = "VIEW_AUDIT_LOGS"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    SCHEDULE_CREATE = "schedule.create"
    SCHEDULE_UPDATE = "schedule.update"
    SCHEDULE_PUBLISH = "schedule.publish"


class AuditTarget(str, Enum):
    EMPLOYEE = "EMPLOYEE"
    DEPARTMENT = "DEPARTMENT"
    SCHEDULE = "SCHEDULE"
    CONVERSATION = "CONVERSATION"
    MESSAGE = "MESSAGE"
    USER = "USER"
    AUDIT = "AUDIT"
    SYSTEM = "SYSTEM"


class AuditSeverity(str, Enum):
    """Severity levels for audit events"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def sanitize_details(value: Any) -> Any:
    """Mask credentials anywhere inside a details payload."""
    if isinstance(value, dict):
        cleaned = {}
        for key, item in value.items():
            if any(word in str(key).lower() for word in SENSITIVE_KEYS):
                cleaned[key] = REDACTED
            else:
                cleaned[key] = sanitize_details(item)
        return cleaned
    if isinstance(value, (list, tuple)):
        return [sanitize_details(v) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    return value


def client_info(request: Optional[Request]) -> Tuple[Optional[str], Optional[str]]:
    if request is None:
        return None, None
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("User-Agent")


class AuditService:
    """
    Service for audit logging and activity statistics
    """

    @property
    def collection(self):
        db = get_db()
        return db["audit_logs"] if db is not None else None

    async def log_event(
        self,
        action: AuditAction,
        target: AuditTarget = AuditTarget.SYSTEM,
        user_id: Optional[Any] = None,
        target_id: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        severity: AuditSeverity = AuditSeverity.LOW
    ) -> str:
        """
        Log an audit event. Never raises: a failed write must not fail the request.
        """
        try:
            collection = self.collection
            if collection is None:
                logger.error("Database connection not available for audit logging")
                return ""

            entry = {
                "user": ObjectId(str(user_id)) if user_id and ObjectId.is_valid(str(user_id)) else None,
                "action": AuditAction(action).value,
                "target": AuditTarget(target).value,
                "targetId": str(target_id) if target_id is not None else None,
                "details": sanitize_details(details or {}),
                "ipAddress": ip_address,
                "userAgent": user_agent,
                "severity": AuditSeverity(severity).value,
                "createdAt": datetime.utcnow(),
            }
            result = await collection.insert_one(entry)

            if severity in (AuditSeverity.HIGH, AuditSeverity.CRITICAL):
                logger.warning(
                    "Audit %s on %s %s by %s from %s",
                    entry["action"], entry["target"], entry["targetId"], user_id, ip_address
                )
            return str(result.inserted_id)

        except Exception as e:
            log_error("Failed to write audit entry", e, str(user_id) if user_id else None)
            return ""

    async def log_request(
        self,
        request: Optional[Request],
        user: Optional[dict],
        action: AuditAction,
        target: AuditTarget,
        target_id: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: AuditSeverity = AuditSeverity.LOW
    ) -> str:
        """Shortcut used by routes: pulls actor and client info from the request."""
        ip_address, user_agent = client_info(request)
        return await self.log_event(
            action=action,
            target=target,
            user_id=user.get("_id") if user else None,
            target_id=target_id,
            details=details,
            ip_address=ip_address,
            user_agent=user_agent,
            severity=severity
        )

    async def get_audit_logs(
        self,
        user_id: Optional[ObjectId] = None,
        action: Optional[str] = None,
        target: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        search: Optional[str] = None,
        limit: int = 50,
        skip: int = 0
    ) -> Tuple[List[Dict[str, Any]], int]:
        """
        Retrieve audit logs with filtering, newest first
        """
        query_filter: Dict[str, Any] = {}

        if user_id:
            query_filter["user"] = user_id
        if action:
            query_filter["action"] = action
        if target:
            query_filter["target"] = target.upper()

        if start_date or end_date:
            created_filter = {}
            if start_date:
                created_filter["$gte"] = start_date
            if end_date:
                created_filter["$lte"] = end_date
            query_filter["createdAt"] = created_filter

        if search and search.strip():
            term = regex_filter(search)
            query_filter["$or"] = [
                {"action": term},
                {"target": term},
                {"targetId": term},
                {"ipAddress": term},
            ]

        total = await self.collection.count_documents(query_filter)
        cursor = self.collection.find(query_filter) \
            .sort("createdAt", -1) \
            .skip(skip) \
            .limit(limit)
        logs = await cursor.to_list(None)
        return logs, total

    async def get_audit_log(self, log_id: ObjectId) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one({"_id": log_id})

    async def get_target_history(self, target: AuditTarget, target_id: Any, limit: int = 50) -> List[Dict[str, Any]]:
        cursor = self.collection.find({
            "target": target.value,
            "targetId": str(target_id)
        }).sort("createdAt", -1).limit(limit)
        return await cursor.to_list(None)

    async def get_statistics(self, days: int = 30) -> Dict[str, Any]:
        """
        Action, user and per-day counts for the last `days` days
        """
        end_date = datetime.utcnow()
        start_date = end_date - timedelta(days=days)
        match = {"$match": {"createdAt": {"$gte": start_date, "$lte": end_date}}}

        action_stats = await self.collection.aggregate([
            match,
            {"$group": {"_id": "$action", "count": {"$sum": 1}}},
            {"$sort": {"count": -1}}
        ]).to_list(None)

        user_stats = await self.collection.aggregate([
            match,
            {"$match": {"user": {"$ne": None}}},
            {"$group": {"_id": "$user", "count": {"$sum": 1}}},
            {"$sort": {"count": -1}},
            {"$limit": 10}
        ]).to_list(None)

        daily = await self.collection.aggregate([
            match,
            {
                "$group": {
                    "_id": {
                        "year": {"$year": "$createdAt"},
                        "month": {"$month": "$createdAt"},
                        "day": {"$dayOfMonth": "$createdAt"}
                    },
                    "count": {"$sum": 1}
                }
            }
        ]).to_list(None)
        daily_stats = sorted(
            (
                {
                    "_id": f"{d['_id']['year']:04d}-{d['_id']['month']:02d}-{d['_id']['day']:02d}",
                    "count": d["count"]
                }
                for d in daily
            ),
            key=lambda d: d["_id"]
        )

        return {
            "actionStats": action_stats,
            "userStats": user_stats,
            "dailyStats": daily_stats,
            "totalLogs": sum(a["count"] for a in action_stats),
            "period": {
                "days": days,
                "startDate": start_date.isoformat(),
                "endDate": end_date.isoformat()
            }
        }


# Global instance
audit_service = AuditService()
