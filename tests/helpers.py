"""Shared builders for planning tests."""

from contextlib import contextmanager
from datetime import date, datetime, time
from typing import Iterator, List

from models import Booking
from planning.repository import TravelEstimate
from planning.state import PlanningState

MONDAY = date(2025, 1, 13)
NOW = datetime(2025, 1, 10, 8, 0)  # The Friday before MONDAY


def at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute))


def make_booking(booking_id: str, start: datetime, minutes: int = 60, address: str = "km0",
                 provider_id: str = "prov_01", **extra) -> Booking:
    return Booking(
        id=booking_id,
        provider_id=provider_id,
        scheduled_start=start,
        duration_minutes=minutes,
        address=address,
        **extra
    )


class LineTravel:
    """Addresses 'kmN' sit on one straight road, driven at 2 minutes per km."""

    def __call__(self, origin: str, destination: str) -> TravelEstimate:
        distance = abs(_km(origin) - _km(destination))
        return TravelEstimate(distance_km=float(distance), travel_time_minutes=float(distance * 2))


def _km(address: str) -> int:
    return int(address[2:])


class TransactionAwareState(PlanningState):
    """Records, for each dependency read, whether a store transaction was open."""

    def __init__(self):
        super().__init__()
        self.depth = 0
        self.reads = []

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with super().transaction():
            self.depth += 1
            try:
                yield
            finally:
                self.depth -= 1

    def find_future_bookings(self, provider_id: str, after: datetime) -> List[Booking]:
        self.reads.append(("future_bookings", self.depth > 0))
        return super().find_future_bookings(provider_id, after)

    def count_replacements_for_absence(self, absence_id: str) -> int:
        self.reads.append(("replacements", self.depth > 0))
        return super().count_replacements_for_absence(absence_id)
