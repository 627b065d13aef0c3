"""
Provider and supply-side data models for the Provider Planning Engine.

This module defines the 'Supply' side of the planner:
1. Providers (the professionals whose time is scheduled)
2. Availability windows (recurring weekly or one-off dates)
3. Absences (closed periods that override availability)
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, model_validator, ConfigDict
from datetime import date, datetime, time, timedelta


def minutes_of(value: time) -> int:
    """Minutes elapsed since midnight."""
    return value.hour * 60 + value.minute


class Provider(BaseModel):
    """A service professional with a schedulable agenda."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Unique identifier")
    name: str = Field(min_length=1, description="Display name of the professional")
    home_address: Optional[str] = Field(
        default=None,
        description="Default starting point for route optimization"
    )


class Availability(BaseModel):
    """
    A window of time when a provider accepts bookings.

    Recurring windows repeat every week on `day_of_week`.
    One-off windows apply only on `specific_date`.
    """

    id: Optional[str] = Field(default=None, description="Assigned by the store on save")
    provider_id: str = Field(description="Owner of the window")
    day_of_week: int = Field(ge=0, le=6, description="0=Monday, 6=Sunday")
    specific_date: Optional[date] = Field(
        default=None,
        description="If set, the window only applies on this calendar date"
    )
    start_time: time = Field(description="Window start")
    end_time: time = Field(description="Window end (exclusive)")
    is_recurring: bool = Field(default=True)
    is_active: bool = Field(default=True, description="Soft on/off switch")
    updated_at: Optional[datetime] = Field(default=None)

    @model_validator(mode='after')
    def validate_window(self):
        if self.start_time >= self.end_time:
            raise ValueError("End time must be strictly after start time")
        if self.specific_date is not None and self.specific_date.weekday() != self.day_of_week:
            raise ValueError("day_of_week must match the weekday of specific_date")
        if not self.is_recurring and self.specific_date is None:
            raise ValueError("A one-off window requires a specific_date")
        return self

    @property
    def duration_minutes(self) -> int:
        return minutes_of(self.end_time) - minutes_of(self.start_time)

    def applies_on(self, day: date) -> bool:
        """True if this active window is open on the given calendar date."""
        if not self.is_active:
            return False
        if self.specific_date is not None:
            return self.specific_date == day
        return self.is_recurring and self.day_of_week == day.weekday()

    def bounds_on(self, day: date) -> tuple:
        """The window as concrete datetimes on `day`."""
        return datetime.combine(day, self.start_time), datetime.combine(day, self.end_time)

    model_config = ConfigDict(frozen=True, json_schema_extra={
        "example": {
            "id": "av_001",
            "provider_id": "prov_01",
            "day_of_week": 0,
            "start_time": "09:00:00",
            "end_time": "12:00:00",
            "is_recurring": True,
            "is_active": True
        }
    })


class AbsenceStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


class Absence(BaseModel):
    """
    Closed period (vacation, illness) overriding any availability.
    Dates are inclusive whole days.
    """

    id: Optional[str] = Field(default=None)
    provider_id: str
    start_date: date
    end_date: date
    reason: str = Field(min_length=1, description="e.g. 'vacation', 'sick_leave'")
    description: Optional[str] = Field(default=None)
    status: AbsenceStatus = Field(default=AbsenceStatus.ACTIVE)
    cancelled_at: Optional[datetime] = Field(default=None)
    updated_at: Optional[datetime] = Field(default=None)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode='after')
    def validate_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("Absence end date cannot be before start date")
        return self

    @property
    def is_active(self) -> bool:
        return self.status == AbsenceStatus.ACTIVE

    @property
    def start_at(self) -> datetime:
        return datetime.combine(self.start_date, time(0, 0))

    @property
    def end_at(self) -> datetime:
        """Exclusive end: midnight after the last absent day."""
        return datetime.combine(self.end_date + timedelta(days=1), time(0, 0))

    @property
    def total_days(self) -> int:
        return (self.end_date - self.start_date).days + 1
