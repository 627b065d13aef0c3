"""
Contracts for the collaborators the planning engine reads from.

Persistence, the booking subsystem and geocoding live outside this package;
the engine only depends on these protocols. `planning.state.PlanningState`
is the in-memory implementation used by tests and the demo runner.
"""

from dataclasses import dataclass
from datetime import date as date_type, datetime
from typing import ContextManager, List, Optional, Protocol, runtime_checkable

from models import Absence, Availability, Booking, Provider


@dataclass(frozen=True)
class TravelEstimate:
    """Distance and driving time between two addresses."""
    distance_km: float
    travel_time_minutes: float


@runtime_checkable
class TravelFunction(Protocol):
    """(origin, destination) -> TravelEstimate"""

    def __call__(self, origin: str, destination: str) -> TravelEstimate:
        ...


@runtime_checkable
class PlanningStore(Protocol):
    """Providers, availability windows and absences."""

    def transaction(self) -> ContextManager[None]:
        """Scope in which a conflict check and the following write are atomic."""
        ...

    def get_provider(self, provider_id: str) -> Optional[Provider]:
        ...

    # --- Availability ---
    def get_availability(self, availability_id: str) -> Optional[Availability]:
        ...

    def list_availabilities(self, provider_id: str) -> List[Availability]:
        ...

    def find_active_for_day(self, provider_id: str, day: date_type) -> List[Availability]:
        """Active windows that apply on `day`, ordered by start time."""
        ...

    def save_availability(self, availability: Availability) -> Availability:
        """Insert or replace; assigns an id when missing."""
        ...

    def delete_availability(self, availability_id: str) -> None:
        ...

    # --- Absence ---
    def get_absence(self, absence_id: str) -> Optional[Absence]:
        ...

    def find_absences(self, provider_id: str, start: datetime, end: datetime,
                      include_cancelled: bool = False) -> List[Absence]:
        """Absences overlapping [start, end), ordered by start date."""
        ...

    def save_absence(self, absence: Absence) -> Absence:
        ...


@runtime_checkable
class BookingStore(Protocol):
    """Read access to the booking subsystem plus slot blocking."""

    def find_bookings(self, provider_id: str, start: datetime, end: datetime) -> List[Booking]:
        """Committed bookings overlapping [start, end), ordered by start."""
        ...

    def find_overlapping_bookings(self, provider_id: str, start: datetime, end: datetime,
                                  exclude_id: Optional[str] = None) -> List[Booking]:
        ...

    def find_future_bookings(self, provider_id: str, after: datetime) -> List[Booking]:
        ...

    def block_slot(self, provider_id: str, start: datetime, end: datetime, reason: str = "") -> Booking:
        ...

    def unblock_slot(self, booking_id: str) -> None:
        ...


@runtime_checkable
class ReplacementCounter(Protocol):
    """Bridge to the replacement subsystem."""

    def count_replacements_for_absence(self, absence_id: str) -> int:
        ...
