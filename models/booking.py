"""
Booking data model for the Provider Planning Engine.

Bookings are owned by the booking subsystem. The planner only reads them
as located intervals, except for 'blocked' placeholders it creates through
the booking store.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict
from datetime import date as date_type, datetime, timedelta


class BookingStatus(str, Enum):
    """Lifecycle state of a booking, as reported by the booking subsystem."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    BLOCKED = "blocked"  # Slot held without a client


# Statuses that no longer occupy the provider's time
INACTIVE_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.NO_SHOW})


class Booking(BaseModel):
    """A committed (or held) appointment at a client address."""

    id: str = Field(description="Unique identifier from the booking subsystem")
    provider_id: str = Field(description="Assigned provider")
    scheduled_start: datetime = Field(description="Start of the intervention")
    duration_minutes: int = Field(gt=0, le=1440, description="Length of the intervention")
    address: str = Field(default="", description="Where the intervention takes place")
    status: BookingStatus = Field(default=BookingStatus.CONFIRMED)

    # The client asked for this exact time; optimizers must not move it
    preferred_time: bool = Field(default=False)

    client_name: Optional[str] = Field(default=None)
    notes: Optional[str] = Field(default=None)

    model_config = ConfigDict(frozen=True, json_schema_extra={
        "example": {
            "id": "bk_1042",
            "provider_id": "prov_01",
            "scheduled_start": "2025-01-13T10:00:00",
            "duration_minutes": 90,
            "address": "12 rue des Lilas, Lyon",
            "status": "confirmed",
            "preferred_time": False,
            "client_name": "M. Durand"
        }
    })

    @property
    def end(self) -> datetime:
        return self.scheduled_start + timedelta(minutes=self.duration_minutes)

    @property
    def day(self) -> date_type:
        return self.scheduled_start.date()

    @property
    def is_committed(self) -> bool:
        """True if the booking still occupies the provider's time."""
        return self.status not in INACTIVE_STATUSES

    def shifted_to(self, start: datetime) -> "Booking":
        """Return a copy of this booking starting at `start`."""
        return self.model_copy(update={"scheduled_start": start})
