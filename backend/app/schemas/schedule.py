from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from typing import List, Optional
from app.models.schedule import TIME_PATTERN, DEFAULT_START, DEFAULT_END


class BreakPeriod(BaseModel):
    start: str = Field(..., pattern=TIME_PATTERN)
    end: str = Field(..., pattern=TIME_PATTERN)
    label: Optional[str] = None


class DayHours(BaseModel):
    start: str = Field(DEFAULT_START, pattern=TIME_PATTERN)
    end: str = Field(DEFAULT_END, pattern=TIME_PATTERN)
    breaks: List[BreakPeriod] = []


class WeekHours(BaseModel):
    monday: Optional[DayHours] = None
    tuesday: Optional[DayHours] = None
    wednesday: Optional[DayHours] = None
    thursday: Optional[DayHours] = None
    friday: Optional[DayHours] = None
    saturday: Optional[DayHours] = None
    sunday: Optional[DayHours] = None


class ShiftDay(BaseModel):
    startTime: str = Field(DEFAULT_START, pattern=TIME_PATTERN)
    endTime: str = Field(DEFAULT_END, pattern=TIME_PATTERN)
    isWorking: Optional[bool] = None


class ShiftEntry(BaseModel):
    employee: str
    monday: Optional[ShiftDay] = None
    tuesday: Optional[ShiftDay] = None
    wednesday: Optional[ShiftDay] = None
    thursday: Optional[ShiftDay] = None
    friday: Optional[ShiftDay] = None
    saturday: Optional[ShiftDay] = None
    sunday: Optional[ShiftDay] = None


class ScheduleUpsert(BaseModel):
    department: str
    weekStart: Optional[datetime] = None
    schedule: Optional[WeekHours] = None
    shifts: Optional[List[ShiftEntry]] = None
    isPublished: Optional[bool] = None
    isActive: Optional[bool] = None

    @model_validator(mode="after")
    def unique_shift_employees(self):
        if self.shifts:
            ids = [s.employee for s in self.shifts]
            if len(ids) != len(set(ids)):
                raise ValueError("Each employee may appear only once in shifts")
        return self
