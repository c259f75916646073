from datetime import datetime, timedelta
from typing import Optional

WEEK_DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
WORKING_DAYS = WEEK_DAYS[:5]

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"

DEFAULT_START = "08:00"
DEFAULT_END = "17:00"


def week_bounds(reference: Optional[datetime] = None):
    """Monday 00:00 and Sunday 23:59:59.999 (UTC) of the week containing `reference`."""
    reference = reference or datetime.utcnow()
    monday = (reference - timedelta(days=reference.weekday())).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    sunday = monday + timedelta(days=6, hours=23, minutes=59, seconds=59, microseconds=999000)
    return monday, sunday


def default_day_hours() -> dict:
    return {"start": DEFAULT_START, "end": DEFAULT_END, "breaks": []}


def default_shift_day(day: str) -> dict:
    return {
        "startTime": DEFAULT_START,
        "endTime": DEFAULT_END,
        "isWorking": day in WORKING_DAYS,
    }
