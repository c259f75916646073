from typing import Dict, List

ROLES = ["admin", "hr", "manager", "employee"]

ROLE_PERMISSIONS: Dict[str, List[str]] = {
    "admin": [
        "view_employees", "create_employees", "edit_employees", "delete_employees",
        "view_departments", "create_departments", "edit_departments", "delete_departments",
        "view_analytics", "export_data", "manage_users", "view_audit_logs", "system_settings",
    ],
    "hr": [
        "view_employees", "create_employees", "edit_employees",
        "view_departments", "view_analytics", "export_data",
    ],
    "manager": [
        "view_employees", "edit_employees", "view_departments", "view_analytics",
    ],
    "employee": [
        "view_employees",
    ],
}

ALL_PERMISSIONS = sorted({p for perms in ROLE_PERMISSIONS.values() for p in perms})


def effective_permissions(user: dict) -> List[str]:
    own = user.get("permissions") or []
    if "*" in own:
        return list(ALL_PERMISSIONS)
    return sorted(set(own) | set(ROLE_PERMISSIONS.get(user.get("role"), [])))


def has_permission(user: dict, permission: str) -> bool:
    own = user.get("permissions") or []
    if "*" in own or permission in own:
        return True
    return permission in ROLE_PERMISSIONS.get(user.get("role"), [])


def is_department_scoped(user: dict) -> bool:
    # admin and hr see the whole organisation
    return user.get("role") in ("manager", "employee")


def scope_employee_filter(user: dict, filter_dict: dict) -> dict:
    """Restrict an employee query to what the caller's role may see."""
    scoped = dict(filter_dict)
    if is_department_scoped(user):
        scoped["department"] = user.get("department")
    if user.get("role") == "employee":
        scoped["isActive"] = True
    return scoped
