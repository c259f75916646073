"""
Spreadsheet export helpers.

CSV is written with the standard csv module; Excel workbooks with openpyxl
(bold header row on a lavender fill, auto-sized columns).
"""

import csv
import io
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from app.db import get_db
from app.services.employee_service import full_name, get_department_map
from app.utils.mongo import regex_filter, to_object_id
from app.utils.permissions import scope_employee_filter

CSV_MEDIA_TYPE = "text/csv; charset=utf-8"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

HEADER_FILL = "FFE6E6FA"

EMPLOYEE_COLUMNS = [
    "Employee Code",
    "Employee Name",
    "Extension",
    "Department",
    "Position",
    "Email",
    "Phone",
    "Role",
    "Status",
    "Created Date",
    "Last Updated",
]

Sheet = Tuple[str, Sequence[str], Iterable[Sequence]]


def _fmt_date(value) -> str:
    return value.strftime("%Y-%m-%d") if isinstance(value, datetime) else ""


def employee_rows(employees: List[dict], departments: dict) -> List[list]:
    rows = []
    for employee in employees:
        department = departments.get(str(employee.get("department")))
        rows.append([
            employee.get("employeeCode", ""),
            full_name(employee),
            employee.get("extension", ""),
            department.get("name", "") if department else "",
            employee.get("position", "") or "",
            employee.get("email", ""),
            employee.get("phone", "") or "",
            employee.get("role", ""),
            "Active" if employee.get("isActive", True) else "Inactive",
            _fmt_date(employee.get("createdAt")),
            _fmt_date(employee.get("updatedAt")),
        ])
    return rows


def to_csv(headers: Sequence[str], rows: Iterable[Sequence]) -> bytes:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(headers)
    for row in rows:
        writer.writerow(row)
    # BOM so Excel picks up UTF-8 (Arabic names)
    return output.getvalue().encode("utf-8-sig")


def to_xlsx(sheets: List[Sheet]) -> bytes:
    wb = openpyxl.Workbook()
    wb.remove(wb.active)

    header_font = Font(bold=True)
    header_fill = PatternFill(start_color=HEADER_FILL, end_color=HEADER_FILL, fill_type="solid")

    for title, headers, rows in sheets:
        # Excel caps sheet titles at 31 characters
        ws = wb.create_sheet(title=title[:31])

        for col_num, header in enumerate(headers, 1):
            cell = ws.cell(row=1, column=col_num, value=header)
            cell.font = header_font
            cell.fill = header_fill
            cell.alignment = Alignment(horizontal="center", vertical="center")

        for row_num, row in enumerate(rows, start=2):
            for col_num, value in enumerate(row, 1):
                ws.cell(row=row_num, column=col_num, value=value)

        # ----- Auto-size columns -----
        for col_num in range(1, len(headers) + 1):
            col_letter = get_column_letter(col_num)
            max_length = len(str(headers[col_num - 1]))
            for column in ws.iter_rows(min_row=2, min_col=col_num, max_col=col_num):
                for cell in column:
                    if cell.value is not None:
                        max_length = max(max_length, len(str(cell.value)))
            ws.column_dimensions[col_letter].width = min(max_length + 4, 50)

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


async def find_employees_for_export(
    user: dict,
    department: Optional[str] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None
) -> List[dict]:
    filter_dict = {}
    if department:
        filter_dict["department"] = to_object_id(department, "department")
    if is_active is not None:
        filter_dict["isActive"] = is_active
    if search and search.strip():
        term = regex_filter(search)
        filter_dict["$or"] = [
            {"firstName": term},
            {"lastName": term},
            {"extension": term},
            {"position": term},
            {"email": term},
        ]
    filter_dict = scope_employee_filter(user, filter_dict)

    db = get_db()
    return await db["users"].find(filter_dict, {"password": 0}) \
        .sort([("firstName", 1), ("lastName", 1)]) \
        .to_list(None)


async def export_employees(employees: List[dict], export_type: str) -> Tuple[bytes, str, str]:
    """Render employees and return (content, media type, filename)."""
    departments = await get_department_map(e.get("department") for e in employees)
    rows = employee_rows(employees, departments)
    stamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S")

    if export_type == "excel":
        content = to_xlsx([("Employees", EMPLOYEE_COLUMNS, rows)])
        return content, XLSX_MEDIA_TYPE, f"employees_export_{stamp}.xlsx"

    return to_csv(EMPLOYEE_COLUMNS, rows), CSV_MEDIA_TYPE, f"employees_export_{stamp}.csv"
