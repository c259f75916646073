from datetime import datetime
from typing import Any, Optional, Tuple

MAX_PAGE_SIZE = 100


def success_response(data: Any = None, message: Optional[str] = None, **extra) -> dict:
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


def error_body(message: str, errors: Any = None) -> dict:
    return {
        "success": False,
        "message": message,
        "errors": errors,
        "timestamp": datetime.utcnow().isoformat()
    }


def pagination_params(page: int, limit: int, max_limit: int = MAX_PAGE_SIZE) -> Tuple[int, int, int]:
    """Clamp page/limit and return (page, limit, skip)."""
    page = max(1, page or 1)
    limit = min(max(1, limit or 1), max_limit)
    return page, limit, (page - 1) * limit


def build_pagination(page: int, limit: int, total: int) -> dict:
    pages = (total + limit - 1) // limit if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": pages,
        "hasNext": page < pages,
        "hasPrev": page > 1
    }


def paginated_response(items: list, page: int, limit: int, total: int, **extra) -> dict:
    pagination = build_pagination(page, limit, total)
    return success_response(
        items,
        count=len(items),
        total=total,
        page=page,
        pages=pagination["pages"],
        pagination=pagination,
        **extra
    )
