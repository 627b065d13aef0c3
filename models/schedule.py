"""
Schedule data models for the Provider Planning Engine.

This module defines the derived 'Output' values of the engine:
bookable time slots, produced on demand and never persisted.
"""

from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, model_validator
from datetime import date as date_type, datetime


class TimeSlot(BaseModel):
    """
    A half-open interval [start, end) a booking could occupy.
    """

    start: datetime = Field(description="Inclusive start")
    end: datetime = Field(description="Exclusive end")
    availability_id: Optional[str] = Field(
        default=None,
        description="Window the slot was cut from (None for intersections)"
    )

    model_config = ConfigDict(frozen=True, json_schema_extra={
        "example": {
            "start": "2025-01-13T09:00:00",
            "end": "2025-01-13T10:00:00",
            "availability_id": "av_001"
        }
    })

    @model_validator(mode='after')
    def validate_bounds(self):
        if self.end <= self.start:
            raise ValueError("Slot end must be after slot start")
        return self

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    @property
    def date(self) -> date_type:
        return self.start.date()

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and start < self.end

    def contains(self, start: datetime, end: datetime) -> bool:
        return self.start <= start and end <= self.end
