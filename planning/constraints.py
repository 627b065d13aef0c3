"""
Conflict Detection Logic.

This module answers the question: "Can the provider be booked at Time Y?"
It enforces physical reality (two bookings can't happen at once), absences,
availability windows and the working-time rules (travel, daily/weekly hours,
mandatory breaks).

The detector is a leaf: it only reads from the stores and never calls the
availability manager or the optimizer.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date as date_type, datetime, time as time_type
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from models import Availability, Booking, BookingStatus
from .config import DEFAULT_SETTINGS, SchedulingSettings
from .exceptions import ValidationError
from .intervals import do_intervals_overlap, minutes_between, overlap_minutes, period_bounds, day_bounds
from .repository import BookingStore, PlanningStore, TravelFunction
from .travel import FlatRateTravelEstimator

logger = logging.getLogger(__name__)


class ConflictKind(str, Enum):
    DOUBLE_BOOKING = "double_booking"
    ABSENCE_OVERLAP = "absence_overlap"
    OUTSIDE_AVAILABILITY = "outside_availability"
    TRAVEL_TIME = "travel_time"
    MAX_HOURS_EXCEEDED = "max_hours_exceeded"
    BREAK_MISSING = "break_missing"


# A booking carrying one of these can never be honoured as-is
BLOCKING_KINDS = frozenset({
    ConflictKind.DOUBLE_BOOKING,
    ConflictKind.ABSENCE_OVERLAP,
    ConflictKind.OUTSIDE_AVAILABILITY,
})


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


SEVERITY_ORDER = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


@dataclass
class Conflict:
    """Detailed reason a booking (or a proposed interval) is problematic."""
    kind: ConflictKind
    severity: Severity
    date: date_type
    message: str
    entity_ids: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_blocking(self) -> bool:
        return self.kind in BLOCKING_KINDS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "severity": self.severity.value,
            "date": self.date.isoformat(),
            "message": self.message,
            "entity_ids": list(self.entity_ids),
            "details": dict(self.details),
        }


@dataclass
class Resolution:
    action: str
    description: str
    priority: int  # 1 = try first


@dataclass
class ConflictReport:
    provider_id: str
    period_start: date_type
    period_end: date_type
    conflicts: List[Conflict]
    generated_at: datetime

    @property
    def total(self) -> int:
        return len(self.conflicts)

    @property
    def by_severity(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in Severity}
        for c in self.conflicts:
            counts[c.severity.value] += 1
        return counts

    @property
    def by_kind(self) -> Dict[str, int]:
        counts: Dict[str, int] = defaultdict(int)
        for c in self.conflicts:
            counts[c.kind.value] += 1
        return dict(counts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "period": {"start": self.period_start.isoformat(), "end": self.period_end.isoformat()},
            "summary": {"total_conflicts": self.total, **self.by_severity},
            "by_kind": self.by_kind,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "generated_at": self.generated_at.isoformat(),
        }


@dataclass
class BookingValidation:
    index: int
    booking: Booking
    conflicts: List[Conflict]


@dataclass
class ScheduleValidation:
    valid: bool
    errors: List[BookingValidation]
    total_bookings: int

    @property
    def valid_bookings(self) -> int:
        return self.total_bookings - len(self.errors)


# Ranked remediation actions per conflict kind
RESOLUTIONS = {
    ConflictKind.DOUBLE_BOOKING: [
        ("cancel_one", "Choose which booking to keep"),
        ("reschedule", "Move one of the bookings to a free slot"),
        ("assign_replacement", "Assign a replacement provider to one of them"),
    ],
    ConflictKind.ABSENCE_OVERLAP: [
        ("reschedule", "Move the booking outside the absence"),
        ("assign_replacement", "Assign a replacement provider for the absence"),
    ],
    ConflictKind.OUTSIDE_AVAILABILITY: [
        ("add_availability", "Add an availability window covering this slot"),
        ("reschedule", "Move the booking into an available slot"),
    ],
    ConflictKind.TRAVEL_TIME: [
        ("adjust_time", "Shift the start time to leave room for travel"),
        ("optimize_route", "Reorder the day's bookings"),
    ],
    ConflictKind.MAX_HOURS_EXCEEDED: [
        ("reschedule", "Move some bookings to another day"),
        ("assign_replacement", "Hand some bookings over to another provider"),
    ],
    ConflictKind.BREAK_MISSING: [
        ("add_break", "Insert a break between bookings"),
        ("adjust_schedule", "Rearrange the day to include breaks"),
    ],
}


class ConflictDetector:
    """
    Read-only conflict queries over bookings, absences and availability windows.
    """

    def __init__(
        self,
        store: PlanningStore,
        bookings: BookingStore,
        travel: Optional[TravelFunction] = None,
        settings: Optional[SchedulingSettings] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.store = store
        self.bookings = bookings
        self.settings = settings or DEFAULT_SETTINGS
        self.travel = travel or FlatRateTravelEstimator(minutes=float(self.settings.default_travel_minutes))
        self.clock = clock

    # --- Point queries ---

    @staticmethod
    def do_intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
        return do_intervals_overlap(a_start, a_end, b_start, b_end)

    def has_conflict(
        self,
        provider_id: str,
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[str] = None
    ) -> bool:
        """
        True if [start, end) overlaps a committed booking or an active absence,
        or is not fully covered by a single active availability window.
        """
        _require_interval(start, end)
        if self.has_booking_conflict(provider_id, start, end, exclude_booking_id):
            return True
        if self.has_absence_conflict(provider_id, start, end):
            return True
        return not self.is_within_availability(provider_id, start, end)

    def has_booking_conflict(
        self,
        provider_id: str,
        start: datetime,
        end: datetime,
        exclude_booking_id: Optional[str] = None
    ) -> bool:
        return bool(self.bookings.find_overlapping_bookings(provider_id, start, end, exclude_id=exclude_booking_id))

    def has_absence_conflict(self, provider_id: str, start: datetime, end: datetime) -> bool:
        return bool(self.store.find_absences(provider_id, start, end))

    def is_within_availability(self, provider_id: str, start: datetime, end: datetime) -> bool:
        windows = self.store.find_active_for_day(provider_id, start.date())
        return _covering_window(windows, start, end) is not None

    def find_overlapping_availabilities(
        self,
        provider_id: str,
        day_of_week: int,
        specific_date: Optional[date_type],
        start_time: time_type,
        end_time: time_type,
        exclude_id: Optional[str] = None
    ) -> List[Availability]:
        """Active windows that share a day with the candidate and overlap its hours."""
        found = []
        for window in self.store.list_availabilities(provider_id):
            if not window.is_active or window.id == exclude_id:
                continue
            if not _share_day(day_of_week, specific_date, window):
                continue
            if start_time < window.end_time and window.start_time < end_time:
                found.append(window)
        return found

    def has_availability_overlap(
        self,
        provider_id: str,
        day_of_week: int,
        specific_date: Optional[date_type],
        start_time: time_type,
        end_time: time_type,
        exclude_id: Optional[str] = None
    ) -> bool:
        return bool(self.find_overlapping_availabilities(
            provider_id, day_of_week, specific_date, start_time, end_time, exclude_id
        ))

    # --- Period scan ---

    def detect_all_conflicts(self, provider_id: str, period_start: date_type, period_end: date_type) -> List[Conflict]:
        """
        Every conflict among the provider's committed bookings between the two
        dates (inclusive), sorted by date then severity.
        """
        start_dt, end_dt = period_bounds(period_start, period_end)
        bookings = self.bookings.find_bookings(provider_id, start_dt, end_dt)
        conflicts = self.detect_conflicts_in(provider_id, bookings, period_start, period_end)

        logger.info(
            f"Conflicts detected for {provider_id} "
            f"({period_start.isoformat()} to {period_end.isoformat()}): {len(conflicts)}"
        )
        return conflicts

    def detect_conflicts_in(
        self,
        provider_id: str,
        bookings: Iterable[Booking],
        period_start: date_type,
        period_end: date_type
    ) -> List[Conflict]:
        """Same checks as `detect_all_conflicts`, over a caller-supplied booking list."""
        start_dt, end_dt = period_bounds(period_start, period_end)
        committed = sorted(
            (b for b in bookings
             if b.is_committed and do_intervals_overlap(b.scheduled_start, b.end, start_dt, end_dt)),
            key=lambda b: (b.scheduled_start, b.id)
        )
        if not committed:
            return []

        # Blocked placeholders occupy time but carry no client, address or workload
        client_bookings = [b for b in committed if b.status != BookingStatus.BLOCKED]

        conflicts = []
        conflicts.extend(self._check_double_bookings(committed))
        conflicts.extend(self._check_absences(provider_id, committed, start_dt, end_dt))
        conflicts.extend(self._check_outside_availability(provider_id, client_bookings))
        conflicts.extend(self._check_travel_time(client_bookings))
        conflicts.extend(self._check_max_hours(client_bookings))
        conflicts.extend(self._check_breaks(client_bookings))

        conflicts.sort(key=lambda c: (c.date, SEVERITY_ORDER[c.severity]))
        return conflicts

    # --- Proposed bookings ---

    def would_create_conflict(
        self,
        provider_id: str,
        start: datetime,
        end: datetime,
        address: Optional[str] = None,
        exclude_booking_id: Optional[str] = None
    ) -> List[Conflict]:
        """Conflicts a new booking on [start, end) would introduce."""
        _require_interval(start, end)
        day = start.date()
        conflicts = []

        for other in self.bookings.find_overlapping_bookings(provider_id, start, end, exclude_id=exclude_booking_id):
            conflicts.append(Conflict(
                ConflictKind.DOUBLE_BOOKING, Severity.CRITICAL, day,
                "Another booking already occupies this slot",
                entity_ids=[other.id],
                details={"existing_start": other.scheduled_start.isoformat(), "existing_end": other.end.isoformat()}
            ))

        for absence in self.store.find_absences(provider_id, start, end):
            conflicts.append(Conflict(
                ConflictKind.ABSENCE_OVERLAP, Severity.CRITICAL, day,
                "Provider is absent during this slot",
                entity_ids=[absence.id],
                details={"reason": absence.reason}
            ))

        if not self.is_within_availability(provider_id, start, end):
            conflicts.append(Conflict(
                ConflictKind.OUTSIDE_AVAILABILITY, Severity.HIGH, day,
                "No availability window covers this slot",
                details={"start": start.isoformat(), "end": end.isoformat()}
            ))

        day_start, day_end = day_bounds(day)
        same_day = [
            b for b in self.bookings.find_bookings(provider_id, day_start, day_end)
            if b.id != exclude_booking_id and b.status != BookingStatus.BLOCKED
        ]

        if address:
            conflicts.extend(self._check_travel_for_new(same_day, start, end, address))

        existing_minutes = sum(b.duration_minutes for b in same_day)
        new_minutes = minutes_between(start, end)
        total_hours = (existing_minutes + new_minutes) / 60
        if total_hours > self.settings.max_daily_hours:
            conflicts.append(Conflict(
                ConflictKind.MAX_HOURS_EXCEEDED, Severity.HIGH, day,
                "This booking would exceed the maximum daily hours",
                details={
                    "current_hours": round(existing_minutes / 60, 2),
                    "new_booking_hours": round(new_minutes / 60, 2),
                    "total_hours": round(total_hours, 2),
                    "max_hours": self.settings.max_daily_hours,
                }
            ))

        if new_minutes > self.settings.max_consecutive_minutes:
            conflicts.append(Conflict(
                ConflictKind.BREAK_MISSING, Severity.LOW, day,
                "Long booking: plan a break",
                details={
                    "duration_minutes": new_minutes,
                    "recommended_break_minutes": self.settings.min_break_minutes,
                }
            ))

        return conflicts

    def validate_schedule(self, provider_id: str, proposed: List[Booking]) -> ScheduleValidation:
        """Check each proposed booking individually against the stored schedule."""
        ordered = sorted(proposed, key=lambda b: (b.scheduled_start, b.id))
        errors = []
        for index, booking in enumerate(ordered):
            conflicts = self.would_create_conflict(
                provider_id, booking.scheduled_start, booking.end,
                address=booking.address or None,
                exclude_booking_id=booking.id
            )
            if conflicts:
                errors.append(BookingValidation(index=index, booking=booking, conflicts=conflicts))

        return ScheduleValidation(valid=not errors, errors=errors, total_bookings=len(ordered))

    def suggest_resolutions(self, conflict: Conflict) -> List[Resolution]:
        return [
            Resolution(action=action, description=description, priority=rank)
            for rank, (action, description) in enumerate(RESOLUTIONS.get(conflict.kind, []), start=1)
        ]

    def generate_conflict_report(self, provider_id: str, period_start: date_type, period_end: date_type) -> ConflictReport:
        conflicts = self.detect_all_conflicts(provider_id, period_start, period_end)
        return ConflictReport(
            provider_id=provider_id,
            period_start=period_start,
            period_end=period_end,
            conflicts=conflicts,
            generated_at=self.clock()
        )

    # --- Individual checks ---

    def _check_double_bookings(self, bookings: List[Booking]) -> List[Conflict]:
        """Pairwise overlap. `bookings` is sorted by start."""
        conflicts = []
        for i, first in enumerate(bookings):
            for second in bookings[i + 1:]:
                if second.scheduled_start >= first.end:
                    break
                conflicts.append(Conflict(
                    ConflictKind.DOUBLE_BOOKING, Severity.CRITICAL, first.day,
                    "Two bookings overlap",
                    entity_ids=[first.id, second.id],
                    details={
                        "overlap_minutes": overlap_minutes(
                            first.scheduled_start, first.end, second.scheduled_start, second.end
                        )
                    }
                ))
        return conflicts

    def _check_absences(self, provider_id: str, bookings: List[Booking], start: datetime, end: datetime) -> List[Conflict]:
        absences = self.store.find_absences(provider_id, start, end)
        conflicts = []
        for booking in bookings:
            for absence in absences:
                if do_intervals_overlap(booking.scheduled_start, booking.end, absence.start_at, absence.end_at):
                    conflicts.append(Conflict(
                        ConflictKind.ABSENCE_OVERLAP, Severity.CRITICAL, booking.day,
                        "Booking falls inside an absence",
                        entity_ids=[booking.id, absence.id],
                        details={"reason": absence.reason}
                    ))
        return conflicts

    def _check_outside_availability(self, provider_id: str, bookings: List[Booking]) -> List[Conflict]:
        windows_by_day: Dict[date_type, List[Availability]] = {}
        conflicts = []
        for booking in bookings:
            if booking.day not in windows_by_day:
                windows_by_day[booking.day] = self.store.find_active_for_day(provider_id, booking.day)
            if _covering_window(windows_by_day[booking.day], booking.scheduled_start, booking.end) is None:
                conflicts.append(Conflict(
                    ConflictKind.OUTSIDE_AVAILABILITY, Severity.HIGH, booking.day,
                    "Booking outside availability windows",
                    entity_ids=[booking.id],
                    details={"start": booking.scheduled_start.isoformat(), "end": booking.end.isoformat()}
                ))
        return conflicts

    def _check_travel_time(self, bookings: List[Booking]) -> List[Conflict]:
        """Consecutive same-day bookings must leave room for the drive between them."""
        conflicts = []
        for current, following in zip(bookings, bookings[1:]):
            if current.day != following.day:
                continue
            available = minutes_between(current.end, following.scheduled_start)
            if available < 0:
                continue  # Reported as a double booking

            required = self.travel(current.address, following.address).travel_time_minutes
            if available < required:
                conflicts.append(Conflict(
                    ConflictKind.TRAVEL_TIME, Severity.MEDIUM, current.day,
                    "Not enough travel time between two bookings",
                    entity_ids=[current.id, following.id],
                    details={
                        "available_minutes": round(available),
                        "required_minutes": round(required),
                        "missing_minutes": round(required - available),
                    }
                ))
        return conflicts

    def _check_max_hours(self, bookings: List[Booking]) -> List[Conflict]:
        conflicts = []

        by_day: Dict[date_type, List[Booking]] = defaultdict(list)
        for b in bookings:
            by_day[b.day].append(b)

        for day, day_bookings in by_day.items():
            total_hours = sum(b.duration_minutes for b in day_bookings) / 60
            if total_hours > self.settings.max_daily_hours:
                conflicts.append(Conflict(
                    ConflictKind.MAX_HOURS_EXCEEDED, Severity.HIGH, day,
                    "Maximum daily hours exceeded",
                    entity_ids=[b.id for b in day_bookings],
                    details={
                        "scope": "day",
                        "total_hours": round(total_hours, 2),
                        "max_hours": self.settings.max_daily_hours,
                        "excess_hours": round(total_hours - self.settings.max_daily_hours, 2),
                        "booking_count": len(day_bookings),
                    }
                ))

        # ISO weeks
        by_week: Dict[tuple, List[Booking]] = defaultdict(list)
        for b in bookings:
            iso = b.day.isocalendar()
            by_week[(iso[0], iso[1])].append(b)

        for (year, week), week_bookings in by_week.items():
            total_hours = sum(b.duration_minutes for b in week_bookings) / 60
            if total_hours > self.settings.max_weekly_hours:
                conflicts.append(Conflict(
                    ConflictKind.MAX_HOURS_EXCEEDED, Severity.HIGH, week_bookings[0].day,
                    "Maximum weekly hours exceeded",
                    entity_ids=[b.id for b in week_bookings],
                    details={
                        "scope": "week",
                        "week": f"{year}-W{week:02d}",
                        "total_hours": round(total_hours, 2),
                        "max_hours": self.settings.max_weekly_hours,
                        "excess_hours": round(total_hours - self.settings.max_weekly_hours, 2),
                    }
                ))
        return conflicts

    def _check_breaks(self, bookings: List[Booking]) -> List[Conflict]:
        """
        Flags each run of work longer than `max_consecutive_minutes` that is
        never interrupted by a gap of at least `min_break_minutes`.
        """
        conflicts = []
        consecutive = 0
        last_end: Optional[datetime] = None
        flagged = False

        for booking in bookings:
            new_run = (
                last_end is None
                or last_end.date() != booking.day
                or minutes_between(last_end, booking.scheduled_start) >= self.settings.min_break_minutes
            )
            if new_run:
                consecutive = booking.duration_minutes
                flagged = False
            else:
                consecutive += booking.duration_minutes

            if consecutive > self.settings.max_consecutive_minutes and not flagged:
                conflicts.append(Conflict(
                    ConflictKind.BREAK_MISSING, Severity.MEDIUM, booking.day,
                    f"Mandatory break missing after {self.settings.max_consecutive_minutes // 60} hours of work",
                    entity_ids=[booking.id],
                    details={"consecutive_minutes": consecutive}
                ))
                flagged = True

            last_end = booking.end
        return conflicts

    def _check_travel_for_new(self, same_day: List[Booking], start: datetime, end: datetime, address: str) -> List[Conflict]:
        conflicts = []
        before = [b for b in same_day if b.end <= start]
        after = [b for b in same_day if b.scheduled_start >= end]

        if before:
            previous = max(before, key=lambda b: b.end)
            available = minutes_between(previous.end, start)
            required = self.travel(previous.address, address).travel_time_minutes
            if available < required:
                conflicts.append(Conflict(
                    ConflictKind.TRAVEL_TIME, Severity.MEDIUM, start.date(),
                    "Not enough travel time from the previous booking",
                    entity_ids=[previous.id],
                    details={"available_minutes": round(available), "required_minutes": round(required)}
                ))

        if after:
            following = min(after, key=lambda b: b.scheduled_start)
            available = minutes_between(end, following.scheduled_start)
            required = self.travel(address, following.address).travel_time_minutes
            if available < required:
                conflicts.append(Conflict(
                    ConflictKind.TRAVEL_TIME, Severity.MEDIUM, start.date(),
                    "Not enough travel time to the next booking",
                    entity_ids=[following.id],
                    details={"available_minutes": round(available), "required_minutes": round(required)}
                ))
        return conflicts


def _require_interval(start: datetime, end: datetime) -> None:
    if start >= end:
        raise ValidationError("Interval start must be before its end", start=start, end=end)


def _covering_window(windows: List[Availability], start: datetime, end: datetime) -> Optional[Availability]:
    """The first window that contains [start, end) entirely, if any."""
    for window in windows:
        w_start, w_end = window.bounds_on(start.date())
        if w_start <= start and end <= w_end:
            return window
    return None


def _share_day(day_of_week: int, specific_date: Optional[date_type], window: Availability) -> bool:
    """Dated windows compare by date when both are dated, by weekday otherwise."""
    if specific_date is not None and window.specific_date is not None:
        return specific_date == window.specific_date
    return day_of_week == window.day_of_week
