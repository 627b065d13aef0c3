"""
Planning Service (orchestrator).

The single entry point for callers such as a booking-creation flow or an
admin planning screen. It composes the conflict detector, the availability
manager and the schedule optimizer, owns absence bookkeeping and assembles
whole-period schedules. It is the only component allowed to call all three.
"""

import calendar
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date as date_type, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from models import Absence, AbsenceStatus, Availability, Booking, BookingStatus, TimeSlot
from .availability import AvailabilityManager, DeletionCheck
from .config import DEFAULT_SETTINGS, SchedulingSettings
from .constraints import Conflict, ConflictDetector, ConflictReport, Resolution, ScheduleValidation
from .exceptions import ConflictError, NotFoundError, ValidationError
from .export import schedule_to_csv
from .intervals import day_bounds, iter_days, period_bounds
from .optimizer import (
    BalanceReport, CapacityReport, OptimizationOptions, OptimizationResult,
    PeriodOptimization, RouteResult, ScheduleOptimizer, TimeWindowReport,
)
from .repository import BookingStore, PlanningStore, ReplacementCounter, TravelFunction
from .scoring import SlotPreferences, Suggestion
from .travel import FlatRateTravelEstimator

logger = logging.getLogger(__name__)

PRIORITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}

# Default for optional updates that distinguishes "not given" from None
UNCHANGED = object()


@dataclass
class CompleteSchedule:
    provider_id: str
    period_start: date_type
    period_end: date_type
    availabilities: List[Availability]
    bookings: List[Booking]
    absences: List[Absence]
    conflicts: List[Conflict]


@dataclass
class BookingCheck:
    """Answer to 'can this booking be added?'. Non-blocking conflicts are warnings."""
    conflicts: List[Conflict]

    @property
    def can_add(self) -> bool:
        return not any(c.is_blocking for c in self.conflicts)

    @property
    def warnings(self) -> List[Conflict]:
        return [c for c in self.conflicts if not c.is_blocking]


@dataclass
class PlanningStats:
    provider_id: str
    period_start: date_type
    period_end: date_type
    total_bookings: int
    total_absence_days: int
    occupancy_rate: float
    available_minutes: int
    booked_minutes: float


@dataclass
class Recommendation:
    kind: str
    priority: str  # critical | high | medium | low
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


class AvailabilityService:
    """
    Facade over the planning engine for one store / booking subsystem pair.
    """

    def __init__(
        self,
        store: PlanningStore,
        bookings: BookingStore,
        travel: Optional[TravelFunction] = None,
        settings: Optional[SchedulingSettings] = None,
        replacements: Optional[ReplacementCounter] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.store = store
        self.bookings = bookings
        self.settings = settings or DEFAULT_SETTINGS
        self.travel = travel or FlatRateTravelEstimator(minutes=float(self.settings.default_travel_minutes))
        self.clock = clock

        if replacements is None and isinstance(store, ReplacementCounter):
            replacements = store
        self.replacements = replacements

        # Initialize Components
        self.detector = ConflictDetector(store, bookings, self.travel, self.settings, clock)
        self.manager = AvailabilityManager(store, bookings, self.detector, self.settings, clock)
        self.optimizer = ScheduleOptimizer(store, bookings, self.detector, self.travel, self.settings)

    # --- Availability (delegated to the manager) ---

    def create_availability(self, provider_id: str, day_of_week: Optional[int], start_time, end_time,
                            is_recurring: bool = True, specific_date: Optional[date_type] = None) -> Availability:
        return self.manager.create_availability(provider_id, day_of_week, start_time, end_time, is_recurring, specific_date)

    def update_availability(self, availability_id: str, new_start, new_end) -> Availability:
        return self.manager.update_availability(availability_id, new_start, new_end)

    def check_deletable(self, availability_id: str) -> DeletionCheck:
        return self.manager.check_deletable(availability_id)

    def delete_availability(self, availability_id: str, force: bool = False) -> None:
        self.manager.delete_availability(availability_id, force)

    def disable_availability(self, availability_id: str, force: bool = False) -> Availability:
        return self.manager.disable_availability(availability_id, force)

    def enable_availability(self, availability_id: str) -> Availability:
        return self.manager.enable_availability(availability_id)

    def create_recurring_availabilities(self, provider_id: str, week_schedule: Dict[str, List[str]]) -> List[Availability]:
        return self.manager.create_recurring_availabilities(provider_id, week_schedule)

    def is_available(self, provider_id: str, instant: datetime, duration_minutes: int) -> bool:
        return self.manager.is_available(provider_id, instant, duration_minutes)

    def get_available_slots(self, provider_id: str, period_start: date_type, period_end: date_type,
                            slot_duration: Optional[int] = None) -> List[TimeSlot]:
        return self.manager.get_available_slots(provider_id, period_start, period_end, slot_duration)

    def calculate_occupancy_rate(self, provider_id: str, period_start: date_type, period_end: date_type) -> float:
        return self.manager.calculate_occupancy_rate(provider_id, period_start, period_end)

    def find_common_availabilities(self, provider_ids: Sequence[str], period_start: date_type,
                                   period_end: date_type, duration: int) -> List[TimeSlot]:
        return self.manager.find_common_availabilities(provider_ids, period_start, period_end, duration)

    def has_availabilities(self, provider_id: str) -> bool:
        return self.manager.has_availabilities(provider_id)

    def get_available_days_of_week(self, provider_id: str) -> List[int]:
        return self.manager.get_available_days_of_week(provider_id)

    def block_dates(self, provider_id: str, start: date_type, end: date_type, reason: str = "") -> List[date_type]:
        return self.manager.block_dates(provider_id, start, end, reason)

    # --- Conflicts (delegated to the detector) ---

    def has_conflict(self, provider_id: str, start: datetime, end: datetime,
                     exclude_booking_id: Optional[str] = None) -> bool:
        return self.detector.has_conflict(provider_id, start, end, exclude_booking_id)

    def detect_all_conflicts(self, provider_id: str, period_start: date_type, period_end: date_type) -> List[Conflict]:
        return self.detector.detect_all_conflicts(provider_id, period_start, period_end)

    def generate_conflict_report(self, provider_id: str, period_start: date_type, period_end: date_type) -> ConflictReport:
        return self.detector.generate_conflict_report(provider_id, period_start, period_end)

    def suggest_resolutions(self, conflict: Conflict) -> List[Resolution]:
        return self.detector.suggest_resolutions(conflict)

    def validate_schedule(self, provider_id: str, proposed: List[Booking]) -> ScheduleValidation:
        return self.detector.validate_schedule(provider_id, proposed)

    def can_add_booking(self, provider_id: str, start: datetime, end: datetime,
                        address: Optional[str] = None) -> BookingCheck:
        return BookingCheck(conflicts=self.detector.would_create_conflict(provider_id, start, end, address))

    # --- Optimization (delegated to the optimizer) ---

    def optimize_daily_schedule(
        self,
        provider_id: str,
        day: date_type,
        bookings: Optional[List[Booking]] = None,
        options: Optional[OptimizationOptions] = None
    ) -> OptimizationResult:
        """Optimize the given bookings, or the stored ones of that day when omitted."""
        if bookings is None:
            bookings = self.bookings.find_bookings(provider_id, *day_bounds(day))
        return self.optimizer.optimize_daily_schedule(provider_id, bookings, day, options)

    def optimize_schedule(self, provider_id: str, period_start: date_type, period_end: date_type,
                          options: Optional[OptimizationOptions] = None) -> PeriodOptimization:
        return self.optimizer.optimize_schedule(provider_id, period_start, period_end, options)

    def suggest_optimal_slot(self, provider_id: str, preferred_date: date_type, duration: int, address: str,
                             preferences: Optional[SlotPreferences] = None) -> List[Suggestion]:
        return self.optimizer.suggest_optimal_slot(provider_id, preferred_date, duration, address, preferences)

    def balance_weekly_workload(self, provider_id: str, week_start: date_type) -> BalanceReport:
        return self.optimizer.balance_weekly_workload(provider_id, week_start)

    def optimize_routes(self, provider_id: str, bookings: Sequence[Booking],
                        start_location: Optional[str] = None, end_location: Optional[str] = None) -> RouteResult:
        return self.optimizer.optimize_routes(provider_id, bookings, start_location, end_location)

    def analyze_capacity(self, provider_id: str, period_start: date_type, period_end: date_type) -> CapacityReport:
        return self.optimizer.analyze_capacity(provider_id, period_start, period_end)

    def find_most_efficient_time_windows(self, provider_id: str, period_start: date_type,
                                         period_end: date_type) -> TimeWindowReport:
        return self.optimizer.find_most_efficient_time_windows(provider_id, period_start, period_end)

    # --- Absences ---

    def get_absence(self, absence_id: str) -> Absence:
        absence = self.store.get_absence(absence_id)
        if absence is None:
            raise NotFoundError(f"Absence {absence_id} not found", absence_id=absence_id)
        return absence

    def get_absences_in_period(self, provider_id: str, period_start: date_type, period_end: date_type) -> List[Absence]:
        """Active absences overlapping the period."""
        return self.store.find_absences(provider_id, *period_bounds(period_start, period_end))

    def create_absence(
        self,
        provider_id: str,
        start_date: date_type,
        end_date: date_type,
        reason: str,
        description: Optional[str] = None
    ) -> Absence:
        """
        Record a closed period. Refused when it overlaps another active
        absence or a committed booking.
        """
        if self.store.get_provider(provider_id) is None:
            raise NotFoundError(f"Provider {provider_id} not found", provider_id=provider_id)
        self._validate_absence(start_date, end_date, reason)

        with self.store.transaction():
            self._check_absence_conflicts(provider_id, start_date, end_date)
            absence = self.store.save_absence(Absence(
                provider_id=provider_id,
                start_date=start_date,
                end_date=end_date,
                reason=reason,
                description=description,
                updated_at=self.clock()
            ))

        logger.info(f"Absence {absence.id} created for {provider_id}: {start_date} to {end_date} ({reason})")
        return absence

    def update_absence(
        self,
        absence_id: str,
        start_date: Optional[date_type] = None,
        end_date: Optional[date_type] = None,
        reason: Optional[str] = None,
        description: Any = UNCHANGED
    ) -> Absence:
        """
        Fields left as None keep their value. `description` keeps its value
        unless given; passing None clears it.
        """
        absence = self.get_absence(absence_id)
        if not absence.is_active:
            raise ConflictError("A cancelled absence cannot be modified", absence_id=absence_id)

        new_start = absence.start_date if start_date is None else start_date
        new_end = absence.end_date if end_date is None else end_date
        new_reason = absence.reason if reason is None else reason
        new_description = absence.description if description is UNCHANGED else description
        self._validate_absence(new_start, new_end, new_reason)

        with self.store.transaction():
            self._check_absence_conflicts(absence.provider_id, new_start, new_end, exclude_id=absence.id)
            updated = self.store.save_absence(absence.model_copy(update={
                "start_date": new_start,
                "end_date": new_end,
                "reason": new_reason,
                "description": new_description,
                "updated_at": self.clock(),
            }))

        logger.info(f"Absence {absence_id} updated")
        return updated

    def cancel_absence(self, absence_id: str) -> Absence:
        """Status transition only. Refused once replacements have been arranged."""
        absence = self.get_absence(absence_id)
        if not absence.is_active:
            raise ConflictError("Absence is already cancelled", absence_id=absence_id)

        with self.store.transaction():
            replacement_count = self.replacements.count_replacements_for_absence(absence_id) if self.replacements else 0
            if replacement_count > 0:
                raise ConflictError(
                    f"Cannot cancel: {replacement_count} replacement(s) already arranged",
                    absence_id=absence_id, replacements=replacement_count
                )

            now = self.clock()
            cancelled = self.store.save_absence(absence.model_copy(update={
                "status": AbsenceStatus.CANCELLED,
                "cancelled_at": now,
                "updated_at": now,
            }))

        logger.info(f"Absence {absence_id} cancelled")
        return cancelled

    # --- Schedule assembly ---

    def get_bookings_in_period(self, provider_id: str, period_start: date_type, period_end: date_type) -> List[Booking]:
        return self.bookings.find_bookings(provider_id, *period_bounds(period_start, period_end))

    def is_period_free(self, provider_id: str, start: datetime, end: datetime) -> bool:
        """No absence, no booking, and an active window covering [start, end)."""
        if start >= end:
            raise ValidationError("Period start must be before its end", start=start, end=end)
        if self.store.find_absences(provider_id, start, end):
            return False
        if self.bookings.find_bookings(provider_id, start, end):
            return False
        duration = int((end - start) / timedelta(minutes=1))
        return self.manager.is_available(provider_id, start, duration)

    def get_complete_schedule(self, provider_id: str, period_start: date_type, period_end: date_type) -> CompleteSchedule:
        days = list(iter_days(period_start, period_end))
        windows = [
            w for w in self.manager.get_provider_availabilities(provider_id, active_only=True)
            if any(w.applies_on(d) for d in days)
        ]
        return CompleteSchedule(
            provider_id=provider_id,
            period_start=period_start,
            period_end=period_end,
            availabilities=windows,
            bookings=self.get_bookings_in_period(provider_id, period_start, period_end),
            absences=self.get_absences_in_period(provider_id, period_start, period_end),
            conflicts=self.detector.detect_all_conflicts(provider_id, period_start, period_end)
        )

    def get_weekly_schedule(self, provider_id: str, week_start: date_type) -> CompleteSchedule:
        return self.get_complete_schedule(provider_id, week_start, week_start + timedelta(days=6))

    def get_monthly_schedule(self, provider_id: str, year: int, month: int) -> CompleteSchedule:
        last_day = calendar.monthrange(year, month)[1]
        return self.get_complete_schedule(provider_id, date_type(year, month, 1), date_type(year, month, last_day))

    def get_planning_stats(self, provider_id: str, period_start: date_type, period_end: date_type) -> PlanningStats:
        bookings = [b for b in self.get_bookings_in_period(provider_id, period_start, period_end)
                    if b.status != BookingStatus.BLOCKED]

        # Absence days are counted inside the period only
        absence_days = 0
        for absence in self.get_absences_in_period(provider_id, period_start, period_end):
            first = max(absence.start_date, period_start)
            last = min(absence.end_date, period_end)
            absence_days += (last - first).days + 1

        return PlanningStats(
            provider_id=provider_id,
            period_start=period_start,
            period_end=period_end,
            total_bookings=len(bookings),
            total_absence_days=absence_days,
            occupancy_rate=self.manager.calculate_occupancy_rate(provider_id, period_start, period_end),
            available_minutes=self.manager.total_available_minutes(provider_id, period_start, period_end),
            booked_minutes=self.manager.total_booked_minutes(provider_id, period_start, period_end)
        )

    def find_next_available_slot(
        self,
        provider_id: str,
        duration_minutes: int,
        after: Optional[datetime] = None
    ) -> Optional[TimeSlot]:
        """First free slot of that length starting at or after `after` (default: now)."""
        after = after or self.clock()
        horizon_end = after.date() + timedelta(days=self.settings.next_slot_horizon_days)
        for slot in self.manager.get_available_slots(provider_id, after.date(), horizon_end, duration_minutes):
            if slot.start >= after:
                return slot
        return None

    def suggest_optimizations(self, provider_id: str, period_start: date_type, period_end: date_type) -> List[Recommendation]:
        """
        Human-readable recommendations from occupancy, conflicts and workload
        distribution, most urgent first.
        """
        recommendations = []

        occupancy = self.manager.calculate_occupancy_rate(provider_id, period_start, period_end)
        if occupancy < self.settings.low_occupancy_rate:
            recommendations.append(Recommendation(
                kind="low_occupancy", priority="high",
                message="Occupancy is low. Consider promoting your services.",
                details={"occupancy_rate": occupancy}
            ))

        conflicts = self.detector.detect_all_conflicts(provider_id, period_start, period_end)
        if conflicts:
            recommendations.append(Recommendation(
                kind="conflicts_detected", priority="critical",
                message="Conflicts were detected in the schedule.",
                details={"conflict_count": len(conflicts), "blocking": sum(1 for c in conflicts if c.is_blocking)}
            ))

        per_day = Counter(
            b.day for b in self.get_bookings_in_period(provider_id, period_start, period_end)
            if b.status != BookingStatus.BLOCKED
        )
        if per_day:
            max_per_day = max(per_day.values())
            avg_per_day = sum(per_day.values()) / len(per_day)
            if max_per_day > avg_per_day * 2:
                recommendations.append(Recommendation(
                    kind="unbalanced_distribution", priority="medium",
                    message="Bookings are concentrated on a few days. Consider rebalancing.",
                    details={"max_per_day": max_per_day, "avg_per_day": round(avg_per_day, 2)}
                ))

        # Weekly balance signal, once the period covers a full week
        if (period_end - period_start).days >= 6:
            balance = self.optimizer.balance_weekly_workload(provider_id, period_start)
            urgent = [r for r in balance.recommendations if r.priority == "high"]
            if urgent:
                recommendations.append(Recommendation(
                    kind="workload_imbalance", priority="medium",
                    message="Some days deviate strongly from the weekly average.",
                    details={
                        "balance_score": balance.balance_score,
                        "days": {r.day.isoformat(): r.action for r in urgent},
                    }
                ))

        recommendations.sort(key=lambda r: PRIORITY_ORDER[r.priority])
        return recommendations

    def export_schedule_csv(self, provider_id: str, period_start: date_type, period_end: date_type) -> str:
        return schedule_to_csv(self.get_complete_schedule(provider_id, period_start, period_end))

    # --- Slot blocking (written through the booking store) ---

    def block_slot(self, provider_id: str, start: datetime, end: datetime, reason: str = "") -> Booking:
        if start >= end:
            raise ValidationError("Slot start must be before its end", start=start, end=end)

        with self.store.transaction():
            if self.detector.has_booking_conflict(provider_id, start, end):
                raise ConflictError("Slot overlaps an existing booking", provider_id=provider_id)
            if self.detector.has_absence_conflict(provider_id, start, end):
                raise ConflictError("Slot overlaps an absence", provider_id=provider_id)
            blocked = self.bookings.block_slot(provider_id, start, end, reason)

        logger.info(f"Slot blocked for {provider_id}: {start:%Y-%m-%d %H:%M}-{end:%H:%M} ({blocked.id})")
        return blocked

    def unblock_slot(self, booking_id: str) -> None:
        self.bookings.unblock_slot(booking_id)
        logger.info(f"Slot {booking_id} unblocked")

    # --- Helpers ---

    def _validate_absence(self, start_date: date_type, end_date: date_type, reason: str) -> None:
        if end_date < start_date:
            raise ValidationError("Absence end date cannot be before start date", start=start_date, end=end_date)
        if not reason or not reason.strip():
            raise ValidationError("An absence requires a reason")

    def _check_absence_conflicts(
        self,
        provider_id: str,
        start_date: date_type,
        end_date: date_type,
        exclude_id: Optional[str] = None
    ) -> None:
        start, end = period_bounds(start_date, end_date)

        overlapping = [a for a in self.store.find_absences(provider_id, start, end) if a.id != exclude_id]
        if overlapping:
            raise ConflictError(
                "Overlaps an existing absence",
                absence_ids=[a.id for a in overlapping]
            )

        booked = [b for b in self.bookings.find_bookings(provider_id, start, end) if b.status != BookingStatus.BLOCKED]
        if booked:
            raise ConflictError(
                f"{len(booked)} booking(s) already scheduled during this absence",
                booking_ids=[b.id for b in booked]
            )
