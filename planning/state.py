"""
In-memory Planning State.

This module acts as the 'Memory' of the system. It implements every store
protocol from `planning.repository` so the engine can run without a
database:
1. Providers, Availability Windows & Absences (PlanningStore).
2. Bookings & Blocked Slots (BookingStore).
3. Replacement counts (ReplacementCounter).
"""

import itertools
import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import date as date_type, datetime, timedelta
from typing import Any, Dict, Iterator, List, Optional

from models import Absence, Availability, Booking, BookingStatus, Provider
from .exceptions import ConflictError, NotFoundError
from .intervals import do_intervals_overlap


class PlanningState:
    """
    Holds planning records for any number of providers.
    All writes are serialized by a re-entrant lock; `transaction()` lets a
    caller hold that lock across a check and the following write.
    """

    def __init__(self):
        """Initialize empty state."""
        self._lock = threading.RLock()
        self._ids = itertools.count(1)

        self.providers: Dict[str, Provider] = {}
        self.availabilities: Dict[str, Availability] = {}
        self.absences: Dict[str, Absence] = {}
        self.bookings: Dict[str, Booking] = {}

        # Resource Indices: provider_id -> record ids
        self.provider_availabilities: Dict[str, List[str]] = defaultdict(list)
        self.provider_absences: Dict[str, List[str]] = defaultdict(list)
        self.provider_bookings: Dict[str, List[str]] = defaultdict(list)

        # absence_id -> number of replacements arranged for it
        self.replacements: Dict[str, int] = defaultdict(int)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            yield

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids):04d}"

    # --- Providers ---

    def add_provider(self, provider: Provider) -> Provider:
        with self._lock:
            self.providers[provider.id] = provider
        return provider

    def get_provider(self, provider_id: str) -> Optional[Provider]:
        return self.providers.get(provider_id)

    # --- Availability ---

    def get_availability(self, availability_id: str) -> Optional[Availability]:
        return self.availabilities.get(availability_id)

    def list_availabilities(self, provider_id: str) -> List[Availability]:
        windows = [self.availabilities[i] for i in self.provider_availabilities.get(provider_id, [])]
        return sorted(windows, key=lambda a: (a.day_of_week, a.specific_date or date_type.min, a.start_time))

    def find_active_for_day(self, provider_id: str, day: date_type) -> List[Availability]:
        windows = [a for a in self.list_availabilities(provider_id) if a.applies_on(day)]
        return sorted(windows, key=lambda a: a.start_time)

    def save_availability(self, availability: Availability) -> Availability:
        with self._lock:
            if availability.id is None:
                availability = availability.model_copy(update={"id": self._next_id("av")})
            if availability.id not in self.availabilities:
                self.provider_availabilities[availability.provider_id].append(availability.id)
            self.availabilities[availability.id] = availability
        return availability

    def delete_availability(self, availability_id: str) -> None:
        with self._lock:
            availability = self.availabilities.pop(availability_id, None)
            if availability is None:
                raise NotFoundError(f"Availability {availability_id} not found", availability_id=availability_id)
            self.provider_availabilities[availability.provider_id].remove(availability_id)

    # --- Absences ---

    def get_absence(self, absence_id: str) -> Optional[Absence]:
        return self.absences.get(absence_id)

    def find_absences(self, provider_id: str, start: datetime, end: datetime,
                      include_cancelled: bool = False) -> List[Absence]:
        found = []
        for absence_id in self.provider_absences.get(provider_id, []):
            absence = self.absences[absence_id]
            if not include_cancelled and not absence.is_active:
                continue
            if do_intervals_overlap(absence.start_at, absence.end_at, start, end):
                found.append(absence)
        return sorted(found, key=lambda a: a.start_date)

    def save_absence(self, absence: Absence) -> Absence:
        with self._lock:
            if absence.id is None:
                absence = absence.model_copy(update={"id": self._next_id("abs")})
            if absence.id not in self.absences:
                self.provider_absences[absence.provider_id].append(absence.id)
            self.absences[absence.id] = absence
        return absence

    # --- Bookings (normally written by the booking subsystem) ---

    def add_booking(self, booking: Booking) -> Booking:
        with self._lock:
            if booking.id not in self.bookings:
                self.provider_bookings[booking.provider_id].append(booking.id)
            self.bookings[booking.id] = booking
        return booking

    def _committed(self, provider_id: str) -> List[Booking]:
        bookings = [self.bookings[i] for i in self.provider_bookings.get(provider_id, [])]
        return sorted((b for b in bookings if b.is_committed), key=lambda b: (b.scheduled_start, b.id))

    def find_bookings(self, provider_id: str, start: datetime, end: datetime) -> List[Booking]:
        return [b for b in self._committed(provider_id)
                if do_intervals_overlap(b.scheduled_start, b.end, start, end)]

    def find_overlapping_bookings(self, provider_id: str, start: datetime, end: datetime,
                                  exclude_id: Optional[str] = None) -> List[Booking]:
        return [b for b in self.find_bookings(provider_id, start, end) if b.id != exclude_id]

    def find_future_bookings(self, provider_id: str, after: datetime) -> List[Booking]:
        return [b for b in self._committed(provider_id) if b.scheduled_start >= after]

    def block_slot(self, provider_id: str, start: datetime, end: datetime, reason: str = "") -> Booking:
        minutes = int((end - start) / timedelta(minutes=1))
        with self._lock:
            booking = Booking(
                id=self._next_id("blk"),
                provider_id=provider_id,
                scheduled_start=start,
                duration_minutes=minutes,
                status=BookingStatus.BLOCKED,
                notes=reason or None
            )
            return self.add_booking(booking)

    def unblock_slot(self, booking_id: str) -> None:
        with self._lock:
            booking = self.bookings.get(booking_id)
            if booking is None:
                raise NotFoundError(f"Booking {booking_id} not found", booking_id=booking_id)
            if booking.status != BookingStatus.BLOCKED:
                raise ConflictError(f"Booking {booking_id} is not a blocked slot", booking_id=booking_id)
            del self.bookings[booking_id]
            self.provider_bookings[booking.provider_id].remove(booking_id)

    # --- Replacements ---

    def record_replacement(self, absence_id: str) -> None:
        with self._lock:
            self.replacements[absence_id] += 1

    def count_replacements_for_absence(self, absence_id: str) -> int:
        return self.replacements.get(absence_id, 0)

    # --- Reporting Methods ---

    def get_statistics(self) -> Dict[str, Any]:
        """Record counts per provider, for the demo report."""
        stats = {}
        for provider_id in self.providers:
            stats[provider_id] = {
                "availabilities": len(self.provider_availabilities.get(provider_id, [])),
                "active_absences": sum(1 for i in self.provider_absences.get(provider_id, [])
                                       if self.absences[i].is_active),
                "committed_bookings": len(self._committed(provider_id)),
            }
        return stats

    def clear(self) -> None:
        """Reset state (useful for testing or re-loading data)."""
        with self._lock:
            self.providers.clear()
            self.availabilities.clear()
            self.absences.clear()
            self.bookings.clear()
            self.provider_availabilities.clear()
            self.provider_absences.clear()
            self.provider_bookings.clear()
            self.replacements.clear()
