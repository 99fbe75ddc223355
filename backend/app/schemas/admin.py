# backend/app/schemas/admin.py
"""
Pydantic schemas for the admin read/write surface.
"""

import re
from datetime import date
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _check_time(v: Optional[str]) -> Optional[str]:
    if v is not None and not TIME_RE.match(v):
        raise ValueError("Time must be in HH:MM format")
    return v


# ── Weekly schedule ──────────────────────────────────────────────────────────

class BusinessHoursDay(BaseModel):
    weekday: int = Field(ge=0, le=6, description="0 = Monday, 6 = Sunday")
    is_open: bool
    open_time: str = "09:00"
    close_time: str = "18:00"

    model_config = {"from_attributes": True}

    @field_validator("open_time", "close_time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        return _check_time(v)

    @model_validator(mode="after")
    def check_range(self):
        if self.is_open and self.open_time >= self.close_time:
            raise ValueError("open_time must be before close_time")
        return self


class ScheduleUpdate(BaseModel):
    days: list[BusinessHoursDay] = Field(min_length=1, max_length=7)

    @field_validator("days")
    @classmethod
    def unique_weekdays(cls, v: list[BusinessHoursDay]) -> list[BusinessHoursDay]:
        if len({d.weekday for d in v}) != len(v):
            raise ValueError("Each weekday may appear only once")
        return v


class ScheduleRead(BaseModel):
    days: list[BusinessHoursDay]


# ── Blocked periods ──────────────────────────────────────────────────────────

class BlockedPeriodCreate(BaseModel):
    date_start: date
    date_end: date
    stylist_id: Optional[int] = None  # None = salon-wide
    time_start: Optional[str] = None  # None = whole day
    time_end: Optional[str] = None
    reason: Optional[str] = None

    @field_validator("time_start", "time_end")
    @classmethod
    def validate_time(cls, v: Optional[str]) -> Optional[str]:
        return _check_time(v)

    @model_validator(mode="after")
    def check_ranges(self):
        if self.date_end < self.date_start:
            raise ValueError("date_end must not be before date_start")
        if (self.time_start is None) != (self.time_end is None):
            raise ValueError("time_start and time_end must be given together")
        if self.time_start is not None and self.time_start >= self.time_end:
            raise ValueError("time_start must be before time_end")
        return self


class BlockedPeriodRead(BaseModel):
    id: int
    date_start: str
    date_end: str
    stylist_id: Optional[int] = None
    time_start: Optional[str] = None
    time_end: Optional[str] = None
    reason: Optional[str] = None

    model_config = {"from_attributes": True}


# ── Deposit policy ───────────────────────────────────────────────────────────

class DepositPolicyRead(BaseModel):
    deposit_enabled: bool
    deposit_percentage: int
    deposit_trust_threshold: int

    model_config = {"from_attributes": True}


class DepositPolicyUpdate(BaseModel):
    deposit_enabled: Optional[bool] = None
    deposit_percentage: Optional[int] = Field(None, ge=0, le=100)
    deposit_trust_threshold: Optional[int] = Field(None, ge=0)


# ── Calendar connection ──────────────────────────────────────────────────────

class CalendarStatusRead(BaseModel):
    stylist_id: int
    is_connected: bool
    sync_enabled: bool = False
    needs_reconnect: bool = False
    calendar_id: Optional[str] = None
    last_sync_at: Optional[str] = None


# ── Sweeps ───────────────────────────────────────────────────────────────────

class SweepResult(BaseModel):
    processed: int
    changed: Optional[int] = None
    sent: Optional[int] = None
    failed: int = 0
    skipped: bool = False
