"""Availability domain schemas - Pydantic models for validation"""

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ...shared.validators import validate_time_range, validate_time_string


class AvailabilityRuleIn(BaseModel):
    """One weekly window. Several rules may share a day (split shifts)."""

    dayOfWeek: int = Field(ge=0, le=6)  # 0=Sunday
    startTime: str
    endTime: str

    @field_validator("startTime", "endTime")
    @classmethod
    def validate_time(cls, v):
        return validate_time_string(v)

    @model_validator(mode="after")
    def validate_range(self):
        validate_time_range(self.startTime, self.endTime)
        return self


class WeeklyScheduleUpdate(BaseModel):
    """Full replacement of an owner's weekly rules"""

    rules: list[AvailabilityRuleIn]


class AvailabilityRuleResponse(BaseModel):
    id: int
    dayOfWeek: int
    startTime: str
    endTime: str


class DateOverrideIn(BaseModel):
    """Block a date, or replace its weekly rules with custom hours"""

    isAvailable: bool = False
    startTime: Optional[str] = None
    endTime: Optional[str] = None
    reason: Optional[str] = None

    @field_validator("startTime", "endTime")
    @classmethod
    def validate_time(cls, v):
        if v is not None:
            return validate_time_string(v)
        return v

    @model_validator(mode="after")
    def validate_hours(self):
        if self.isAvailable:
            if not (self.startTime and self.endTime):
                raise ValueError("Custom hours require both startTime and endTime")
            validate_time_range(self.startTime, self.endTime)
        elif self.startTime or self.endTime:
            raise ValueError("A blocked date cannot carry custom hours")
        return self


class DateOverrideResponse(BaseModel):
    id: int
    date: date
    isAvailable: bool
    startTime: Optional[str] = None
    endTime: Optional[str] = None
    reason: Optional[str] = None


class Holiday(BaseModel):
    date: date
    name: str = Field(min_length=1, max_length=255)


class HolidayBlockRequest(BaseModel):
    """Explicit holidays, or None to block the owner's public holidays for year"""

    holidays: Optional[list[Holiday]] = None
    year: Optional[int] = Field(default=None, ge=1970, le=2100)


class HolidayListResponse(BaseModel):
    country: Optional[str] = None
    year: int
    holidays: list[Holiday]


class WorkDaysResponse(BaseModel):
    workDays: list[int]  # 0=Sunday
    country: Optional[str] = None
    timezone: str


class TimeWindowResponse(BaseModel):
    start: str
    end: str
