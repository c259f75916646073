from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response
from app.services.audit_service import audit_service, AuditAction, AuditTarget
from app.services.export_service import XLSX_MEDIA_TYPE, to_xlsx
from app.services.report_service import REPORT_TYPES, build_report, report_filename
from app.utils.auth import require_permission
from app.utils.responses import success_response

router = APIRouter()


@router.get("/{report_type}")
async def get_report(
    report_type: str,
    request: Request,
    dateRange: int = Query(30, ge=1, le=365),
    format: str = "xlsx",
    current_user: dict = Depends(require_permission("view_analytics"))
):
    if report_type not in REPORT_TYPES:
        raise HTTPException(status_code=400, detail="Invalid report type")
    if format not in ("xlsx", "json"):
        raise HTTPException(status_code=400, detail="Invalid format. Use xlsx or json")

    data, sheets = await build_report(report_type, current_user, dateRange)

    await audit_service.log_request(
        request, current_user, AuditAction.EXPORT, AuditTarget.SYSTEM,
        details={"report": report_type, "format": format, "dateRange": dateRange}
    )

    if format == "json":
        return success_response(data)

    return Response(
        content=to_xlsx(sheets),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{report_filename(report_type)}"'}
    )
