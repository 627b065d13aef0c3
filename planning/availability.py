"""
Availability Window Management.

Owns a provider's recurring and one-off availability windows:
create / update / delete with conflict validation, slot generation,
occupancy rate and multi-provider common slots.
"""

import logging
from dataclasses import dataclass, field
from datetime import date as date_type, datetime, time as time_type, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from models import Availability, Booking, BookingStatus, TimeSlot
from .config import DEFAULT_SETTINGS, SchedulingSettings
from .constraints import ConflictDetector
from .exceptions import ConflictError, NotFoundError, ValidationError
from .intervals import (
    day_bounds, do_intervals_overlap, generate_slots, intersect_slots,
    iter_days, overlap_minutes, period_bounds,
)
from .repository import BookingStore, PlanningStore

logger = logging.getLogger(__name__)

DAY_NAMES = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}


@dataclass
class DeletionCheck:
    """Outcome of the first step of the delete protocol."""
    deletable: bool
    blocking_reason: Optional[str] = None
    blocking_booking_ids: List[str] = field(default_factory=list)


class AvailabilityManager:
    """
    Window CRUD plus the slot and occupancy queries built on top of it.
    """

    def __init__(
        self,
        store: PlanningStore,
        bookings: BookingStore,
        detector: ConflictDetector,
        settings: Optional[SchedulingSettings] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.store = store
        self.bookings = bookings
        self.detector = detector
        self.settings = settings or DEFAULT_SETTINGS
        self.clock = clock

    # --- Lookups ---

    def get_availability(self, availability_id: str) -> Availability:
        window = self.store.get_availability(availability_id)
        if window is None:
            raise NotFoundError(f"Availability {availability_id} not found", availability_id=availability_id)
        return window

    def get_provider_availabilities(self, provider_id: str, active_only: bool = False) -> List[Availability]:
        windows = self.store.list_availabilities(provider_id)
        if active_only:
            windows = [w for w in windows if w.is_active]
        return windows

    def has_availabilities(self, provider_id: str) -> bool:
        return any(w.is_active for w in self.store.list_availabilities(provider_id))

    def get_available_days_of_week(self, provider_id: str) -> List[int]:
        """Weekdays (0=Monday) covered by at least one active recurring window."""
        return sorted({
            w.day_of_week for w in self.store.list_availabilities(provider_id)
            if w.is_active and w.is_recurring and w.specific_date is None
        })

    # --- Mutations ---

    def create_availability(
        self,
        provider_id: str,
        day_of_week: Optional[int],
        start_time: time_type,
        end_time: time_type,
        is_recurring: bool = True,
        specific_date: Optional[date_type] = None
    ) -> Availability:
        """
        Validate and persist a new window.

        Raises ValidationError on a malformed window and ConflictError if an
        active window of the same provider already overlaps it on that day.
        """
        self._require_provider(provider_id)
        day_of_week = self._resolve_day(day_of_week, specific_date, is_recurring)
        self._validate_window(start_time, end_time)

        with self.store.transaction():
            if self.detector.has_availability_overlap(provider_id, day_of_week, specific_date, start_time, end_time):
                raise ConflictError(
                    "This window overlaps an existing availability",
                    provider_id=provider_id, day_of_week=day_of_week, specific_date=specific_date
                )
            saved = self.store.save_availability(Availability(
                provider_id=provider_id,
                day_of_week=day_of_week,
                specific_date=specific_date,
                start_time=start_time,
                end_time=end_time,
                is_recurring=is_recurring,
                is_active=True,
                updated_at=self.clock()
            ))

        logger.info(
            f"Availability created for {provider_id}: day {day_of_week} "
            f"{start_time:%H:%M}-{end_time:%H:%M} ({saved.id})"
        )
        return saved

    def update_availability(self, availability_id: str, new_start: time_type, new_end: time_type) -> Availability:
        """
        Move or resize a window. A committed future booking must never end up
        outside availability as a side effect.
        """
        window = self.get_availability(availability_id)
        self._validate_window(new_start, new_end)

        with self.store.transaction():
            if window.is_active and self.detector.has_availability_overlap(
                window.provider_id, window.day_of_week, window.specific_date, new_start, new_end, exclude_id=window.id
            ):
                raise ConflictError("The new hours overlap another availability", availability_id=availability_id)

            stranded = self._stranded_bookings(window, (new_start, new_end))
            if stranded:
                raise ConflictError(
                    "Cannot change hours: existing bookings would fall outside availability",
                    availability_id=availability_id,
                    booking_ids=[b.id for b in stranded]
                )

            updated = self.store.save_availability(window.model_copy(update={
                "start_time": new_start,
                "end_time": new_end,
                "updated_at": self.clock(),
            }))

        logger.info(f"Availability {availability_id} updated to {new_start:%H:%M}-{new_end:%H:%M}")
        return updated

    def check_deletable(self, availability_id: str) -> DeletionCheck:
        window = self.get_availability(availability_id)
        stranded = self._stranded_bookings(window, None)
        if not stranded:
            return DeletionCheck(deletable=True)
        return DeletionCheck(
            deletable=False,
            blocking_reason=f"{len(stranded)} future booking(s) depend on this window",
            blocking_booking_ids=[b.id for b in stranded]
        )

    def delete_availability(self, availability_id: str, force: bool = False) -> None:
        with self.store.transaction():
            check = self.check_deletable(availability_id)
            if not check.deletable:
                if not force:
                    raise ConflictError(
                        f"Cannot delete: {check.blocking_reason}",
                        availability_id=availability_id, booking_ids=check.blocking_booking_ids
                    )
                logger.warning(
                    f"Force-deleting availability {availability_id} with dependent bookings {check.blocking_booking_ids}"
                )
            self.store.delete_availability(availability_id)

        logger.info(f"Availability {availability_id} deleted")

    def disable_availability(self, availability_id: str, force: bool = False) -> Availability:
        """Soft delete. Follows the same dependency check as a hard delete."""
        with self.store.transaction():
            check = self.check_deletable(availability_id)
            if not check.deletable and not force:
                raise ConflictError(
                    f"Cannot disable: {check.blocking_reason}",
                    availability_id=availability_id, booking_ids=check.blocking_booking_ids
                )

            window = self.get_availability(availability_id)
            disabled = self.store.save_availability(window.model_copy(update={
                "is_active": False,
                "updated_at": self.clock(),
            }))

        logger.info(f"Availability {availability_id} disabled")
        return disabled

    def block_dates(self, provider_id: str, start: date_type, end: date_type, reason: str = "") -> List[date_type]:
        """
        Disable every active window that applies on a date of [start, end].
        Returns the dates on which at least one window was disabled.
        Windows with dependent future bookings are disabled all the same.
        """
        if end < start:
            raise ValidationError("End date cannot be before start date", start=start, end=end)
        self._require_provider(provider_id)

        blocked = []
        with self.store.transaction():
            for day in iter_days(start, end):
                windows = self.store.find_active_for_day(provider_id, day)
                for window in windows:
                    self.disable_availability(window.id, force=True)
                if windows:
                    blocked.append(day)

        logger.info(f"Dates blocked for {provider_id}: {start} to {end} ({reason or 'no reason'})")
        return blocked

    def enable_availability(self, availability_id: str) -> Availability:
        window = self.get_availability(availability_id)
        if window.is_active:
            return window

        with self.store.transaction():
            if self.detector.has_availability_overlap(
                window.provider_id, window.day_of_week, window.specific_date,
                window.start_time, window.end_time, exclude_id=window.id
            ):
                raise ConflictError("Cannot enable: overlaps an active availability", availability_id=availability_id)
            enabled = self.store.save_availability(window.model_copy(update={
                "is_active": True,
                "updated_at": self.clock(),
            }))

        logger.info(f"Availability {availability_id} enabled")
        return enabled

    def create_recurring_availabilities(self, provider_id: str, week_schedule: Dict[str, List[str]]) -> List[Availability]:
        """
        Bulk creation from {"monday": ["09:00-12:00", "14:00-18:00"], ...}.
        Either every window is created or none is.
        """
        self._require_provider(provider_id)

        planned: List[Tuple[int, time_type, time_type]] = []
        for day_name, ranges in week_schedule.items():
            day_of_week = DAY_NAMES.get(day_name.strip().lower())
            if day_of_week is None:
                raise ValidationError(f"Unknown day '{day_name}'", day=day_name)
            for text in ranges:
                start, end = _parse_range(text)
                self._validate_window(start, end)
                planned.append((day_of_week, start, end))

        # Overlaps inside the batch itself
        for i, (day_a, start_a, end_a) in enumerate(planned):
            for day_b, start_b, end_b in planned[i + 1:]:
                if day_a == day_b and start_a < end_b and start_b < end_a:
                    raise ConflictError(
                        "Overlapping windows in the weekly schedule",
                        day_of_week=day_a
                    )

        created = []
        with self.store.transaction():
            for day_of_week, start, end in planned:
                if self.detector.has_availability_overlap(provider_id, day_of_week, None, start, end):
                    raise ConflictError(
                        "This window overlaps an existing availability",
                        provider_id=provider_id, day_of_week=day_of_week
                    )
            for day_of_week, start, end in planned:
                created.append(self.store.save_availability(Availability(
                    provider_id=provider_id,
                    day_of_week=day_of_week,
                    start_time=start,
                    end_time=end,
                    is_recurring=True,
                    updated_at=self.clock()
                )))

        logger.info(f"Created {len(created)} recurring windows for {provider_id}")
        return created

    # --- Queries ---

    def is_available(self, provider_id: str, instant: datetime, duration_minutes: int) -> bool:
        """An active window covers [instant, instant + duration) and no booking overlaps it."""
        if duration_minutes <= 0:
            raise ValidationError("Duration must be positive", duration_minutes=duration_minutes)
        end = instant + timedelta(minutes=duration_minutes)
        if not self.detector.is_within_availability(provider_id, instant, end):
            return False
        return not self.detector.has_booking_conflict(provider_id, instant, end)

    def get_available_slots(
        self,
        provider_id: str,
        period_start: date_type,
        period_end: date_type,
        slot_duration: Optional[int] = None
    ) -> List[TimeSlot]:
        """
        Fixed-length slots tiled over every active window in the period,
        minus those overlapping a booking or an absence.
        """
        if slot_duration is None:
            slot_duration = self.settings.default_slot_minutes
        if slot_duration <= 0:
            raise ValidationError("Slot duration must be positive", slot_duration=slot_duration)

        slots = []
        for day in iter_days(period_start, period_end):
            windows = self.store.find_active_for_day(provider_id, day)
            if not windows:
                continue

            day_start, day_end = day_bounds(day)
            busy = [(b.scheduled_start, b.end) for b in self.bookings.find_bookings(provider_id, day_start, day_end)]
            busy.extend((a.start_at, a.end_at) for a in self.store.find_absences(provider_id, day_start, day_end))

            for window in windows:
                for slot in generate_slots(window, day, slot_duration):
                    if any(do_intervals_overlap(slot.start, slot.end, s, e) for s, e in busy):
                        continue
                    slots.append(slot)
        return slots

    def total_available_minutes(self, provider_id: str, period_start: date_type, period_end: date_type) -> int:
        return sum(
            window.duration_minutes
            for day in iter_days(period_start, period_end)
            for window in self.store.find_active_for_day(provider_id, day)
        )

    def total_booked_minutes(self, provider_id: str, period_start: date_type, period_end: date_type) -> float:
        """Booked minutes clipped to the period. Blocked placeholders are not work."""
        start, end = period_bounds(period_start, period_end)
        return sum(
            overlap_minutes(b.scheduled_start, b.end, start, end)
            for b in self.bookings.find_bookings(provider_id, start, end)
            if b.status != BookingStatus.BLOCKED
        )

    def calculate_occupancy_rate(self, provider_id: str, period_start: date_type, period_end: date_type) -> float:
        """Booked minutes as a percentage of available minutes, in [0, 100]."""
        available = self.total_available_minutes(provider_id, period_start, period_end)
        if available == 0:
            return 0.0

        booked = self.total_booked_minutes(provider_id, period_start, period_end)
        rate = booked / available * 100
        return round(min(100.0, max(0.0, rate)), 2)

    def find_common_availabilities(
        self,
        provider_ids: Sequence[str],
        period_start: date_type,
        period_end: date_type,
        duration: int
    ) -> List[TimeSlot]:
        """
        Slots every provider has free, by iterative pairwise intersection.
        The result can only shrink as providers are added.
        """
        if not provider_ids:
            return []

        common = self.get_available_slots(provider_ids[0], period_start, period_end, duration)
        for provider_id in provider_ids[1:]:
            if not common:
                break
            common = intersect_slots(common, self.get_available_slots(provider_id, period_start, period_end, duration))
        return common

    # --- Helpers ---

    def _require_provider(self, provider_id: str) -> None:
        if self.store.get_provider(provider_id) is None:
            raise NotFoundError(f"Provider {provider_id} not found", provider_id=provider_id)

    def _resolve_day(self, day_of_week: Optional[int], specific_date: Optional[date_type], is_recurring: bool) -> int:
        if not is_recurring and specific_date is None:
            raise ValidationError("A one-off window requires a specific date")

        if day_of_week is None:
            if specific_date is None:
                raise ValidationError("Either day_of_week or specific_date is required")
            return specific_date.weekday()

        if isinstance(day_of_week, bool) or not isinstance(day_of_week, int) or not 0 <= day_of_week <= 6:
            raise ValidationError(f"Invalid day of week: {day_of_week!r}", day_of_week=day_of_week)
        if specific_date is not None and specific_date.weekday() != day_of_week:
            raise ValidationError(
                "day_of_week does not match the weekday of specific_date",
                day_of_week=day_of_week, specific_date=specific_date
            )
        return day_of_week

    def _validate_window(self, start: time_type, end: time_type) -> None:
        if start >= end:
            raise ValidationError("End time must be after start time", start=start, end=end)

        minutes = (end.hour * 60 + end.minute) - (start.hour * 60 + start.minute)
        if minutes < self.settings.min_window_minutes:
            raise ValidationError(
                f"A window must last at least {self.settings.min_window_minutes} minutes", minutes=minutes
            )
        if minutes > self.settings.max_window_minutes:
            raise ValidationError(
                f"A window cannot last more than {self.settings.max_window_minutes} minutes", minutes=minutes
            )

    def _stranded_bookings(
        self,
        window: Availability,
        new_hours: Optional[Tuple[time_type, time_type]]
    ) -> List[Booking]:
        """
        Future bookings covered by `window` today that would be covered by no
        active window once it is changed to `new_hours` (or removed when None).
        """
        stranded = []
        for booking in self.bookings.find_future_bookings(window.provider_id, self.clock()):
            if booking.status == BookingStatus.BLOCKED or not window.applies_on(booking.day):
                continue

            w_start, w_end = window.bounds_on(booking.day)
            if not (w_start <= booking.scheduled_start and booking.end <= w_end):
                continue

            if new_hours is not None:
                n_start = datetime.combine(booking.day, new_hours[0])
                n_end = datetime.combine(booking.day, new_hours[1])
                if n_start <= booking.scheduled_start and booking.end <= n_end:
                    continue

            others = [w for w in self.store.find_active_for_day(window.provider_id, booking.day) if w.id != window.id]
            if any(_covers(w, booking) for w in others):
                continue
            stranded.append(booking)
        return stranded


def _covers(window: Availability, booking: Booking) -> bool:
    w_start, w_end = window.bounds_on(booking.day)
    return w_start <= booking.scheduled_start and booking.end <= w_end


def _parse_range(text: str) -> Tuple[time_type, time_type]:
    """'09:00-12:00' -> (09:00, 12:00)"""
    parts = text.split("-")
    if len(parts) != 2:
        raise ValidationError(f"Malformed time range '{text}'", value=text)
    try:
        start = datetime.strptime(parts[0].strip(), "%H:%M").time()
        end = datetime.strptime(parts[1].strip(), "%H:%M").time()
    except ValueError as e:
        raise ValidationError(f"Malformed time range '{text}'", value=text) from e
    return start, end
