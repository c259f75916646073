from fastapi import APIRouter, Depends, Request
from typing import Optional
from app.routes.employees import employee_export_response
from app.utils.auth import require_permission

router = APIRouter()


@router.get("/employees")
async def export_employees(
    request: Request,
    type: str = "csv",
    department: Optional[str] = None,
    isActive: Optional[bool] = None,
    search: Optional[str] = None,
    current_user: dict = Depends(require_permission("export_data"))
):
    """Same export as /api/employees/export, kept at its own path for download links."""
    return await employee_export_response(request, current_user, type, department, isActive, search)
