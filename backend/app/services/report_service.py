"""
Report builders behind /api/reports/{type}.

Each builder returns a dict of JSON sections plus the sheets used for the
xlsx rendering, one sheet per section.
"""

from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from app.db import get_db
from app.services.export_service import EMPLOYEE_COLUMNS, Sheet, employee_rows
from app.services.employee_service import full_name, get_department_map, get_user_map
from app.utils.logger import log_debug
from app.utils.permissions import is_department_scoped

REPORT_TYPES = ("overview", "employees", "departments", "analytics")


def _per_day(dates: List[datetime]) -> List[dict]:
    counts = Counter(d.strftime("%Y-%m-%d") for d in dates if isinstance(d, datetime))
    return [{"date": day, "count": counts[day]} for day in sorted(counts)]


def _distribution(values) -> Dict[str, int]:
    return dict(Counter(v for v in values if v))


class ReportContext:
    """Time window and role scope shared by every report builder."""

    def __init__(self, user: dict, date_range: int = 30):
        self.user = user
        self.end = datetime.utcnow()
        self.start = self.end - timedelta(days=date_range)
        self.date_range = date_range

    @property
    def scoped_department(self):
        if is_department_scoped(self.user):
            return self.user.get("department")
        return None

    def employee_filter(self, extra: Optional[dict] = None) -> dict:
        filter_dict = dict(extra or {})
        if self.scoped_department is not None:
            filter_dict["department"] = self.scoped_department
        return filter_dict

    def department_filter(self) -> dict:
        if self.scoped_department is not None:
            return {"_id": self.scoped_department}
        return {}

    def in_range(self, field: str = "createdAt") -> dict:
        return {field: {"$gte": self.start, "$lte": self.end}}


async def overview_report(ctx: ReportContext) -> Tuple[dict, List[Sheet]]:
    db = get_db()
    users = db["users"]
    total = await users.count_documents(ctx.employee_filter())
    active = await users.count_documents(ctx.employee_filter({"isActive": True}))
    departments = await db["departments"].count_documents(ctx.department_filter())
    recent_hires = await users.count_documents(ctx.employee_filter(ctx.in_range()))
    with_extension = await users.count_documents(
        ctx.employee_filter({"extension": {"$nin": [None, ""]}})
    )
    roles = await users.find(ctx.employee_filter(), {"role": 1}).to_list(None)

    summary = {
        "totalEmployees": total,
        "activeEmployees": active,
        "inactiveEmployees": total - active,
        "totalDepartments": departments,
        "recentHires": recent_hires,
        "extensionCoverage": round(with_extension / total * 100, 1) if total else 0,
    }
    role_distribution = _distribution(r.get("role") for r in roles)

    data = {"summary": summary, "roleDistribution": role_distribution}
    sheets = [
        ("Summary", ["Metric", "Value"], list(summary.items())),
        ("Roles", ["Role", "Employees"], sorted(role_distribution.items())),
    ]
    return data, sheets


async def employees_report(ctx: ReportContext) -> Tuple[dict, List[Sheet]]:
    db = get_db()
    employees = await db["users"].find(ctx.employee_filter(), {"password": 0}) \
        .sort([("firstName", 1), ("lastName", 1)]) \
        .to_list(None)
    departments = await get_department_map(e.get("department") for e in employees)
    rows = employee_rows(employees, departments)
    data = {
        "employees": [dict(zip(EMPLOYEE_COLUMNS, row)) for row in rows],
        "total": len(rows),
    }
    return data, [("Employees", EMPLOYEE_COLUMNS, rows)]


async def departments_report(ctx: ReportContext) -> Tuple[dict, List[Sheet]]:
    db = get_db()
    departments = await db["departments"].find(ctx.department_filter()).sort("name", 1).to_list(None)
    heads = await get_user_map(d.get("head") for d in departments)

    entries = []
    for department in departments:
        entries.append({
            "name": department.get("name"),
            "code": department.get("organizationalCode") or "",
            "level": department.get("level") or "",
            "head": heads[str(department["head"])]["name"] if str(department.get("head")) in heads else "",
            "employeeCount": await db["users"].count_documents({"department": department["_id"]}),
            "activeCount": await db["users"].count_documents({"department": department["_id"], "isActive": True}),
            "hasManager": bool(department.get("head")),
        })

    headers = ["Name", "Code", "Level", "Head", "Employees", "Active", "Has Manager"]
    rows = [
        [e["name"], e["code"], e["level"], e["head"], e["employeeCount"], e["activeCount"],
         "Yes" if e["hasManager"] else "No"]
        for e in entries
    ]
    return {"departments": entries, "total": len(entries)}, [("Departments", headers, rows)]


async def analytics_report(ctx: ReportContext) -> Tuple[dict, List[Sheet]]:
    db = get_db()
    hires = await db["users"].find(ctx.employee_filter(ctx.in_range()), {"createdAt": 1}).to_list(None)

    audit_filter = ctx.in_range()
    message_filter = ctx.in_range()
    if ctx.scoped_department is not None:
        members = await db["users"].find({"department": ctx.scoped_department}, {"_id": 1}).to_list(None)
        member_ids = [m["_id"] for m in members]
        audit_filter["user"] = {"$in": member_ids}
        message_filter["from"] = {"$in": member_ids}

    audit_entries = await db["audit_logs"].find(audit_filter, {"action": 1}).to_list(None)
    messages = await db["messages"].find(message_filter, {"createdAt": 1}).to_list(None)
    statuses = await db["users"].find(ctx.employee_filter(), {"isActive": 1}).to_list(None)

    hires_per_day = _per_day([h.get("createdAt") for h in hires])
    messages_per_day = _per_day([m.get("createdAt") for m in messages])
    audit_actions = _distribution(a.get("action") for a in audit_entries)
    status_distribution = _distribution(
        "active" if s.get("isActive", True) else "inactive" for s in statuses
    )

    data = {
        "hiresPerDay": hires_per_day,
        "auditActions": audit_actions,
        "messagesPerDay": messages_per_day,
        "statusDistribution": status_distribution,
    }
    sheets = [
        ("Hires", ["Date", "Hires"], [[d["date"], d["count"]] for d in hires_per_day]),
        ("Audit Actions", ["Action", "Count"], sorted(audit_actions.items())),
        ("Messages", ["Date", "Messages"], [[d["date"], d["count"]] for d in messages_per_day]),
        ("Status", ["Status", "Employees"], sorted(status_distribution.items())),
    ]
    return data, sheets


BUILDERS = {
    "overview": overview_report,
    "employees": employees_report,
    "departments": departments_report,
    "analytics": analytics_report,
}


async def build_report(report_type: str, user: dict, date_range: int = 30) -> Tuple[dict, List[Sheet]]:
    ctx = ReportContext(user, date_range)
    data, sheets = await BUILDERS[report_type](ctx)
    data["period"] = {
        "days": date_range,
        "startDate": ctx.start.isoformat(),
        "endDate": ctx.end.isoformat(),
    }
    data["generatedBy"] = full_name(user)
    log_debug(f"Built {report_type} report", {"user": str(user.get("_id")), "sheets": len(sheets)})
    return data, sheets


def report_filename(report_type: str) -> str:
    return f"qced_{report_type}_report_{datetime.utcnow().strftime('%Y%m%d')}.xlsx"
