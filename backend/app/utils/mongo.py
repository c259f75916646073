import re
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional
from bson import ObjectId
from fastapi import HTTPException


def to_object_id(value: Any, label: str = "") -> ObjectId:
    """Parse a path/body id or fail with 400 "Invalid <label> ID"."""
    if isinstance(value, ObjectId):
        return value
    if value is None or not ObjectId.is_valid(str(value)):
        detail = f"Invalid {label} ID" if label else "Invalid ID"
        raise HTTPException(status_code=400, detail=detail)
    return ObjectId(str(value))


def to_object_ids(values: Optional[Iterable[Any]], label: str = "") -> List[ObjectId]:
    return [to_object_id(v, label) for v in (values or [])]


def serialize(value: Any) -> Any:
    """Recursively turn a Mongo document into JSON-safe data."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    return value


def regex_filter(term: str) -> dict:
    """Case-insensitive literal match for free-text search boxes."""
    return {"$regex": re.escape(term.strip()), "$options": "i"}


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Mongo stores naive UTC; fold aware query datetimes into that."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
