"""
The Schedule Optimization Engine.

This module implements the advisory "Solver" logic for a provider's day.
It combines five strategies:
1. Greedy Ordering (Nearest Neighbour) - Solves the "Which client next?" problem.
2. Re-timing Chains - Packs the day from the first window start, leaving room to drive.
3. Weighted Slot Scoring - Ranks free slots for a new booking (see `scoring`).
4. Balance & Capacity Statistics - Spreads the week and exposes free time.
5. Time-band Efficiency - Compares mornings, afternoons and evenings.

Nothing here writes to a store. Every result is a *proposed* schedule; applying
it goes through the same conflict-checked path as any other booking change.

Nearest-neighbour ordering is a greedy approximation of the travelling-salesman
problem: it is locally greedy and NOT guaranteed optimal. Ties between
equidistant candidates go to the earliest current start, then the lowest id.
Ordering and matrix construction are O(n^2) in the number of bookings.
"""

import bisect
import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date as date_type, datetime, timedelta
from typing import Any, Dict, FrozenSet, List, Optional, Sequence

from models import Booking, BookingStatus
from .config import DEFAULT_SETTINGS, SchedulingSettings
from .constraints import Conflict, ConflictDetector
from .exceptions import InfeasibleOptimizationError, ValidationError
from .intervals import Interval, day_bounds, do_intervals_overlap, iter_days, minutes_between, period_bounds, subtract
from .repository import BookingStore, PlanningStore, TravelEstimate, TravelFunction
from .scoring import SlotPreferences, SlotScorer, Suggestion

logger = logging.getLogger(__name__)

NO_BOOKINGS = "no_bookings"

# (name, first hour, end hour) matched against the booking start hour
TIME_BANDS = (
    ("morning", 8, 12),
    ("afternoon", 13, 17),
    ("evening", 18, 21),
)
LOW_BAND_EFFICIENCY = 50.0


@dataclass
class OptimizationOptions:
    """Caller knobs for ordering and re-timing."""
    start_location: Optional[str] = None
    end_location: Optional[str] = None
    # Bookings that must keep their time, on top of client-preferred ones
    pinned_booking_ids: FrozenSet[str] = field(default_factory=frozenset)


@dataclass
class ScheduleMetrics:
    total_bookings: int = 0
    total_work_time: float = 0.0
    total_travel_time: float = 0.0
    total_distance: float = 0.0
    total_gaps: float = 0.0
    average_gap: float = 0.0
    efficiency_ratio: float = 0.0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_bookings": self.total_bookings,
            "total_work_time": self.total_work_time,
            "total_travel_time": self.total_travel_time,
            "total_distance": round(self.total_distance, 2),
            "total_gaps": self.total_gaps,
            "average_gap": round(self.average_gap, 2),
            "efficiency_ratio": round(self.efficiency_ratio, 4),
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
        }


@dataclass
class ScheduleChange:
    booking_id: str
    from_time: datetime
    to_time: datetime


@dataclass
class Feasibility:
    is_feasible: bool
    conflicts: List[Conflict] = field(default_factory=list)

    @property
    def requires_changes(self) -> bool:
        return bool(self.conflicts)


@dataclass
class OptimizationResult:
    date: date_type
    status: str
    original_schedule: List[Booking] = field(default_factory=list)
    optimized_schedule: List[Booking] = field(default_factory=list)
    current_metrics: ScheduleMetrics = field(default_factory=ScheduleMetrics)
    optimized_metrics: ScheduleMetrics = field(default_factory=ScheduleMetrics)
    time_saved_minutes: float = 0.0
    distance_saved_km: float = 0.0
    # Relative change of efficiency_ratio in percent; negative when worse
    efficiency_gain: float = 0.0
    changes: List[ScheduleChange] = field(default_factory=list)
    feasibility: Feasibility = field(default_factory=lambda: Feasibility(is_feasible=True))

    def require_feasible(self) -> "OptimizationResult":
        """Return self, or raise if the proposal breaks a blocking constraint."""
        if not self.feasibility.is_feasible:
            raise InfeasibleOptimizationError(
                f"Optimized schedule for {self.date.isoformat()} is not feasible",
                conflicts=self.feasibility.conflicts,
                date=self.date
            )
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "status": self.status,
            "original_schedule": [_format_booking(b) for b in self.original_schedule],
            "optimized_schedule": [_format_booking(b) for b in self.optimized_schedule],
            "current_metrics": self.current_metrics.to_dict(),
            "optimized_metrics": self.optimized_metrics.to_dict(),
            "savings": {
                "time_minutes": self.time_saved_minutes,
                "distance_km": round(self.distance_saved_km, 2),
            },
            "efficiency_gain": round(self.efficiency_gain, 2),
            "changes": [
                {"booking_id": c.booking_id, "from": c.from_time.strftime("%H:%M"), "to": c.to_time.strftime("%H:%M")}
                for c in self.changes
            ],
            "feasibility": {
                "is_feasible": self.feasibility.is_feasible,
                "conflicts": [c.to_dict() for c in self.feasibility.conflicts],
            },
        }


@dataclass
class DayRecommendation:
    date: date_type
    kind: str
    message: str
    priority: str
    action: Optional[str] = None


@dataclass
class PeriodOptimization:
    provider_id: str
    period_start: date_type
    period_end: date_type
    daily: Dict[date_type, OptimizationResult]
    total_bookings: int
    time_saved_minutes: float
    distance_saved_km: float
    efficiency_gain: float
    recommendations: List[DayRecommendation]


@dataclass
class DayWorkload:
    day: date_type
    booking_count: int
    total_minutes: int

    @property
    def total_hours(self) -> float:
        return round(self.total_minutes / 60, 2)


@dataclass
class RebalanceAction:
    day: date_type
    current_hours: float
    target_hours: float
    action: str  # 'reduce' | 'increase'
    priority: str  # 'high' | 'medium'


@dataclass
class BalanceReport:
    week_start: date_type
    status: str
    distribution: List[DayWorkload]
    average_hours: float = 0.0
    stddev_hours: float = 0.0
    recommendations: List[RebalanceAction] = field(default_factory=list)
    balance_score: float = 0.0


@dataclass
class RouteStop:
    position: int
    address: str
    booking_id: Optional[str] = None  # None for start/end anchors
    distance_from_previous_km: float = 0.0
    travel_time_from_previous: float = 0.0


@dataclass
class RouteResult:
    status: str
    route: List[RouteStop] = field(default_factory=list)
    original_distance: float = 0.0
    optimized_distance: float = 0.0
    original_time: float = 0.0
    optimized_time: float = 0.0

    @property
    def distance_saved_km(self) -> float:
        return round(self.original_distance - self.optimized_distance, 2)

    @property
    def time_saved_minutes(self) -> float:
        return self.original_time - self.optimized_time


@dataclass
class DayCapacity:
    date: date_type
    available_minutes: int
    booked_minutes: int
    occupancy_rate: float
    booking_count: int
    free_blocks: List[Interval] = field(default_factory=list)

    @property
    def free_minutes(self) -> int:
        return max(0, self.available_minutes - self.booked_minutes)

    @property
    def largest_free_block_minutes(self) -> float:
        return max((minutes_between(s, e) for s, e in self.free_blocks), default=0.0)

    @property
    def can_accept_more(self) -> bool:
        return bool(self.free_blocks)


@dataclass
class CapacityReport:
    period_start: date_type
    period_end: date_type
    days: List[DayCapacity]
    recommendations: List[DayRecommendation]


@dataclass
class TimeBandStats:
    name: str
    start_hour: int
    end_hour: int
    booking_count: int
    average_duration: float
    efficiency_score: float  # percent of work in work + travel + idle time
    recommendation: str


@dataclass
class BandRecommendation:
    kind: str  # 'best_window' | 'low_efficiency'
    message: str
    action: str
    band: Optional[str] = None


@dataclass
class TimeWindowReport:
    period_start: date_type
    period_end: date_type
    bands: List[TimeBandStats]
    best_window: Optional[str]
    recommendations: List[BandRecommendation]


class ScheduleOptimizer:
    """
    Advisory optimization over a provider's bookings.
    Reads through the stores and the detector; never calls the availability manager.
    """

    def __init__(
        self,
        store: PlanningStore,
        bookings: BookingStore,
        detector: ConflictDetector,
        travel: TravelFunction,
        settings: Optional[SchedulingSettings] = None,
        scorer: Optional[SlotScorer] = None
    ):
        self.store = store
        self.bookings = bookings
        self.detector = detector
        self.travel = travel
        self.settings = settings or DEFAULT_SETTINGS
        self.scorer = scorer or SlotScorer(travel, self.settings)

    # --- Analysis ---

    def analyze_schedule(self, bookings: Sequence[Booking]) -> ScheduleMetrics:
        """
        Work, travel and idle time of the bookings in chronological order.
        Blocked placeholders and cancelled bookings are left out.
        Idle gap = next start - (previous end + travel), counted when positive.
        """
        ordered = sorted((b for b in bookings if _is_client_booking(b)), key=_chronological)
        if not ordered:
            return ScheduleMetrics()

        work = float(sum(b.duration_minutes for b in ordered))
        travel_time = 0.0
        distance = 0.0
        gaps = []

        for current, following in zip(ordered, ordered[1:]):
            leg = self.travel(current.address, following.address)
            travel_time += leg.travel_time_minutes
            distance += leg.distance_km

            gap = minutes_between(current.end, following.scheduled_start) - leg.travel_time_minutes
            if gap > 0:
                gaps.append(gap)

        total_gaps = float(sum(gaps))
        denominator = work + travel_time + total_gaps
        return ScheduleMetrics(
            total_bookings=len(ordered),
            total_work_time=work,
            total_travel_time=travel_time,
            total_distance=distance,
            total_gaps=total_gaps,
            average_gap=total_gaps / len(gaps) if gaps else 0.0,
            efficiency_ratio=work / denominator if denominator > 0 else 0.0,
            start_time=ordered[0].scheduled_start,
            end_time=max(b.end for b in ordered)
        )

    # --- Ordering & Re-timing ---

    def optimize_booking_order(
        self,
        bookings: Sequence[Booking],
        options: Optional[OptimizationOptions] = None
    ) -> List[Booking]:
        """
        Fixed bookings keep their chronological order. Each flexible booking
        joins the segment its current start falls in (before the first fixed
        booking, between two, or after the last) and every segment is ordered
        by nearest neighbour from its anchor address.
        """
        options = options or OptimizationOptions()
        if len(bookings) <= 1:
            return list(bookings)

        fixed = sorted((b for b in bookings if self._is_fixed(b, options)), key=_chronological)
        flexible = sorted((b for b in bookings if not self._is_fixed(b, options)), key=_chronological)

        if not fixed:
            anchor = options.start_location or flexible[0].address
            return self._nearest_neighbour(flexible, anchor)

        # segments[0] precedes fixed[0]; segments[k] follows fixed[k-1]
        fixed_starts = [b.scheduled_start for b in fixed]
        segments: List[List[Booking]] = [[] for _ in range(len(fixed) + 1)]
        for b in flexible:
            segments[bisect.bisect_right(fixed_starts, b.scheduled_start)].append(b)

        result = []
        if segments[0]:
            anchor = options.start_location or segments[0][0].address
            result.extend(self._nearest_neighbour(segments[0], anchor))

        for index, fixed_booking in enumerate(fixed):
            result.append(fixed_booking)
            result.extend(self._nearest_neighbour(segments[index + 1], fixed_booking.address))
        return result

    def optimize_time_slots(
        self,
        provider_id: str,
        ordered: Sequence[Booking],
        day: date_type,
        options: Optional[OptimizationOptions] = None,
        held: Sequence[Booking] = ()
    ) -> List[Booking]:
        """
        Chain the ordered bookings from the earliest window start:
        next_start = previous_end + travel + ideal gap. Fixed bookings keep
        their own start. Blocked slots (stored ones, `held` and any in
        `ordered`) are not placed; a flexible booking that would overlap one
        moves past it. Without any window the order is returned unchanged.
        """
        options = options or OptimizationOptions()
        work = [b for b in ordered if b.status != BookingStatus.BLOCKED]
        windows = self.store.find_active_for_day(provider_id, day)
        if not windows or not work:
            return work

        blocked = {b.id: b for b in self.bookings.find_bookings(provider_id, *day_bounds(day))
                   if b.status == BookingStatus.BLOCKED}
        blocked.update((b.id, b) for b in held)
        blocked.update((b.id, b) for b in ordered if b.status == BookingStatus.BLOCKED)
        busy = sorted((b.scheduled_start, b.end) for b in blocked.values())

        current = min(w.bounds_on(day)[0] for w in windows)
        gap = timedelta(minutes=self.settings.ideal_booking_gap_minutes)

        result = []
        for index, booking in enumerate(work):
            if self._is_fixed(booking, options):
                start = booking.scheduled_start
            else:
                start = _first_free_start(current, booking.duration_minutes, busy)
            placed = booking if start == booking.scheduled_start else booking.shifted_to(start)
            result.append(placed)

            if index < len(work) - 1:
                following = work[index + 1]
                travel_minutes = self.travel(booking.address, following.address).travel_time_minutes
                current = placed.end + timedelta(minutes=travel_minutes) + gap
        return result

    # --- Daily & Period Optimization ---

    def optimize_daily_schedule(
        self,
        provider_id: str,
        bookings: Sequence[Booking],
        day: date_type,
        options: Optional[OptimizationOptions] = None
    ) -> OptimizationResult:
        """
        Reorder and re-time the client bookings of one day. Blocked slots
        only hold time: they stay where they are, are not part of the
        metrics and take part in the feasibility check.
        """
        clients = [b for b in bookings if _is_client_booking(b)]
        held = [b for b in bookings if b.is_committed and b.status == BookingStatus.BLOCKED]
        if not clients:
            return OptimizationResult(date=day, status=NO_BOOKINGS)

        current_metrics = self.analyze_schedule(clients)
        ordered = self.optimize_booking_order(clients, options)
        optimized = self.optimize_time_slots(provider_id, ordered, day, options, held=held)
        optimized_metrics = self.analyze_schedule(optimized)

        result = OptimizationResult(
            date=day,
            status="optimized",
            original_schedule=sorted(clients, key=_chronological),
            optimized_schedule=optimized,
            current_metrics=current_metrics,
            optimized_metrics=optimized_metrics,
            time_saved_minutes=current_metrics.total_travel_time - optimized_metrics.total_travel_time,
            distance_saved_km=current_metrics.total_distance - optimized_metrics.total_distance,
            efficiency_gain=_efficiency_gain(current_metrics, optimized_metrics),
            changes=_detect_changes(clients, optimized),
            feasibility=self.check_feasibility(provider_id, optimized + held, day)
        )

        logger.info(
            f"Optimized {provider_id} on {day.isoformat()}: {len(result.changes)} change(s), "
            f"gain {result.efficiency_gain:.1f}%, feasible={result.feasibility.is_feasible}"
        )
        return result

    def check_feasibility(self, provider_id: str, optimized: Sequence[Booking], day: date_type) -> Feasibility:
        """Re-run conflict detection with the proposal in place of the stored bookings."""
        day_start, day_end = day_bounds(day)
        proposed_ids = {b.id for b in optimized}
        others = [b for b in self.bookings.find_bookings(provider_id, day_start, day_end) if b.id not in proposed_ids]

        conflicts = self.detector.detect_conflicts_in(provider_id, others + list(optimized), day, day)
        blocking = [c for c in conflicts if c.is_blocking]
        if blocking:
            logger.warning(f"Proposed schedule for {provider_id} on {day.isoformat()} has {len(blocking)} blocking conflict(s)")
        return Feasibility(is_feasible=not blocking, conflicts=conflicts)

    def optimize_schedule(
        self,
        provider_id: str,
        period_start: date_type,
        period_end: date_type,
        options: Optional[OptimizationOptions] = None
    ) -> PeriodOptimization:
        """Per-day optimization over a period, with totals and recommendations."""
        logger.info(f"Starting schedule optimization for {provider_id} ({period_start} to {period_end})")

        start_dt, end_dt = period_bounds(period_start, period_end)
        by_day: Dict[date_type, List[Booking]] = defaultdict(list)
        for b in self.bookings.find_bookings(provider_id, start_dt, end_dt):
            if period_start <= b.day <= period_end:
                by_day[b.day].append(b)

        daily = {}
        recommendations = []
        for day in sorted(by_day):
            result = self.optimize_daily_schedule(provider_id, by_day[day], day, options)
            daily[day] = result

            if result.efficiency_gain > 20:
                recommendations.append(DayRecommendation(
                    date=day, kind="high_improvement", priority="high",
                    message=f"Efficiency gain of {result.efficiency_gain:.1f}% possible"
                ))
            if result.time_saved_minutes > 60:
                recommendations.append(DayRecommendation(
                    date=day, kind="time_saving", priority="medium",
                    message=f"{round(result.time_saved_minutes)} minutes of travel can be saved"
                ))

        return PeriodOptimization(
            provider_id=provider_id,
            period_start=period_start,
            period_end=period_end,
            daily=daily,
            total_bookings=sum(1 for v in by_day.values() for b in v if _is_client_booking(b)),
            time_saved_minutes=sum(r.time_saved_minutes for r in daily.values()),
            distance_saved_km=round(sum(r.distance_saved_km for r in daily.values()), 2),
            efficiency_gain=sum(r.efficiency_gain for r in daily.values()),
            recommendations=recommendations
        )

    # --- Slot Suggestion ---

    def suggest_optimal_slot(
        self,
        provider_id: str,
        preferred_date: date_type,
        duration: int,
        address: str,
        preferences: Optional[SlotPreferences] = None
    ) -> List[Suggestion]:
        """
        Candidate starts every `suggestion_step_minutes` inside each active
        window, minus booking/absence conflicts, ranked by weighted score.
        """
        if duration <= 0:
            raise ValidationError("Duration must be positive", duration=duration)

        windows = self.store.find_active_for_day(provider_id, preferred_date)
        if not windows:
            return []

        day_start, day_end = day_bounds(preferred_date)
        day_bookings = self.bookings.find_bookings(provider_id, day_start, day_end)
        busy = [(b.scheduled_start, b.end) for b in day_bookings]
        busy.extend((a.start_at, a.end_at) for a in self.store.find_absences(provider_id, day_start, day_end))
        client_bookings = [b for b in day_bookings if b.status != BookingStatus.BLOCKED]

        length = timedelta(minutes=duration)
        step = timedelta(minutes=self.settings.suggestion_step_minutes)

        suggestions = []
        for window in windows:
            current, window_end = window.bounds_on(preferred_date)
            while current + length <= window_end:
                end = current + length
                if not any(do_intervals_overlap(current, end, s, e) for s, e in busy):
                    suggestions.append(self.scorer.score_slot(current, end, address, client_bookings, preferences))
                current += step

        return self.scorer.rank(suggestions)

    # --- Workload Balance ---

    def balance_weekly_workload(self, provider_id: str, week_start: date_type) -> BalanceReport:
        """
        Booked hours for each of the 7 days, their mean and population
        standard deviation. Days further than the threshold from the mean
        become rebalancing candidates.
        """
        days = [week_start + timedelta(days=i) for i in range(7)]
        start_dt, end_dt = period_bounds(days[0], days[-1])

        minutes: Dict[date_type, int] = defaultdict(int)
        counts: Dict[date_type, int] = defaultdict(int)
        for b in self.bookings.find_bookings(provider_id, start_dt, end_dt):
            if b.status == BookingStatus.BLOCKED or b.day not in days:
                continue
            minutes[b.day] += b.duration_minutes
            counts[b.day] += 1

        distribution = [DayWorkload(day=d, booking_count=counts[d], total_minutes=minutes[d]) for d in days]
        if not any(counts.values()):
            return BalanceReport(week_start=week_start, status=NO_BOOKINGS, distribution=distribution)

        hours = [d.total_hours for d in distribution]
        mean = sum(hours) / len(hours)
        variance = sum((h - mean) ** 2 for h in hours) / len(hours)
        stddev = math.sqrt(variance)

        recommendations = []
        for workload in distribution:
            deviation = workload.total_hours - mean
            if abs(deviation) > self.settings.rebalance_threshold_hours:
                recommendations.append(RebalanceAction(
                    day=workload.day,
                    current_hours=workload.total_hours,
                    target_hours=round(mean, 2),
                    action="reduce" if deviation > 0 else "increase",
                    priority="high" if abs(deviation) > self.settings.rebalance_high_priority_hours else "medium"
                ))

        return BalanceReport(
            week_start=week_start,
            status="analyzed",
            distribution=distribution,
            average_hours=round(mean, 2),
            stddev_hours=round(stddev, 2),
            recommendations=recommendations,
            balance_score=round(max(0.0, 100 - stddev * 10), 2)
        )

    # --- Routing ---

    def optimize_routes(
        self,
        provider_id: str,
        bookings: Sequence[Booking],
        start_location: Optional[str] = None,
        end_location: Optional[str] = None
    ) -> RouteResult:
        """
        Full pairwise matrix over the stops, then nearest neighbour.
        The original route is the chronological order. Only client bookings
        are stops; blocked and cancelled ones are skipped.
        """
        chronological = sorted((b for b in bookings if _is_client_booking(b)), key=_chronological)
        if not chronological:
            return RouteResult(status=NO_BOOKINGS)
        locations: List[str] = []
        if start_location:
            locations.append(start_location)
        offset = len(locations)
        locations.extend(b.address for b in chronological)
        if end_location:
            locations.append(end_location)

        matrix = self._build_matrix(locations)
        booking_indices = list(range(offset, offset + len(chronological)))

        # Nearest neighbour over matrix indices; ties -> chronological position
        remaining = list(booking_indices)
        current = 0 if start_location else booking_indices[0]
        optimized_indices = []
        while remaining:
            nearest = min(remaining, key=lambda i: (matrix[current][i].distance_km, i))
            optimized_indices.append(nearest)
            remaining.remove(nearest)
            current = nearest

        def with_anchors(indices: List[int]) -> List[int]:
            path = ([0] if start_location else []) + indices
            if end_location:
                path.append(len(locations) - 1)
            return path

        original_path = with_anchors(booking_indices)
        optimized_path = with_anchors(optimized_indices)

        route = []
        previous = None
        for position, index in enumerate(optimized_path):
            leg = matrix[previous][index] if previous is not None else TravelEstimate(0.0, 0.0)
            booking_id = chronological[index - offset].id if index in booking_indices else None
            route.append(RouteStop(
                position=position,
                address=locations[index],
                booking_id=booking_id,
                distance_from_previous_km=leg.distance_km,
                travel_time_from_previous=leg.travel_time_minutes
            ))
            previous = index

        result = RouteResult(
            status="optimized",
            route=route,
            original_distance=round(_path_total(matrix, original_path, "distance_km"), 2),
            optimized_distance=round(_path_total(matrix, optimized_path, "distance_km"), 2),
            original_time=_path_total(matrix, original_path, "travel_time_minutes"),
            optimized_time=_path_total(matrix, optimized_path, "travel_time_minutes")
        )
        logger.info(f"Route for {provider_id}: {len(chronological)} stops, {result.distance_saved_km} km saved")
        return result

    # --- Capacity ---

    def analyze_capacity(self, provider_id: str, period_start: date_type, period_end: date_type) -> CapacityReport:
        """Per-day available / booked minutes and the free blocks left in each window."""
        days = []
        recommendations = []
        for current in iter_days(period_start, period_end):
            capacity = self._day_capacity(provider_id, current)
            days.append(capacity)

            if capacity.available_minutes > 0:
                if capacity.occupancy_rate < self.settings.low_occupancy_rate:
                    recommendations.append(DayRecommendation(
                        date=current, kind="underutilized", priority="low", action="increase_bookings",
                        message=f"Underused day ({capacity.occupancy_rate:.0f}%): promote these slots"
                    ))
                elif capacity.occupancy_rate > self.settings.high_occupancy_rate:
                    recommendations.append(DayRecommendation(
                        date=current, kind="overbooked", priority="medium", action="limit_bookings",
                        message="Day almost full: limit new bookings"
                    ))

        return CapacityReport(
            period_start=period_start,
            period_end=period_end,
            days=days,
            recommendations=recommendations
        )

    # --- Time-band Efficiency ---

    def find_most_efficient_time_windows(
        self,
        provider_id: str,
        period_start: date_type,
        period_end: date_type
    ) -> TimeWindowReport:
        """
        Client bookings grouped by the band their start hour falls in.
        A band's score is its work time over work, travel and idle time,
        each day analysed on its own. Bands are returned best first.
        """
        start_dt, end_dt = period_bounds(period_start, period_end)
        bookings = [
            b for b in self.bookings.find_bookings(provider_id, start_dt, end_dt)
            if _is_client_booking(b) and period_start <= b.day <= period_end
        ]

        bands = []
        for name, start_hour, end_hour in TIME_BANDS:
            in_band = [b for b in bookings if start_hour <= b.scheduled_start.hour < end_hour]
            bands.append(TimeBandStats(
                name=name,
                start_hour=start_hour,
                end_hour=end_hour,
                booking_count=len(in_band),
                average_duration=round(sum(b.duration_minutes for b in in_band) / len(in_band), 2) if in_band else 0.0,
                efficiency_score=self._band_efficiency(in_band),
                recommendation=_band_usage(len(in_band))
            ))
        bands.sort(key=lambda band: band.efficiency_score, reverse=True)

        best = bands[0].name if any(band.booking_count for band in bands) else None
        recommendations = []
        if best is not None:
            recommendations.append(BandRecommendation(
                kind="best_window", band=best, action="focus_marketing",
                message=f"The {best} band is the most efficient"
            ))
        for band in bands:
            if band.booking_count and band.efficiency_score < LOW_BAND_EFFICIENCY:
                recommendations.append(BandRecommendation(
                    kind="low_efficiency", band=band.name, action="reduce_availability",
                    message=f"The {band.name} band is inefficient ({band.efficiency_score:.0f}%)"
                ))

        logger.info(f"Time bands for {provider_id} ({period_start} to {period_end}): best={best}")
        return TimeWindowReport(
            period_start=period_start,
            period_end=period_end,
            bands=bands,
            best_window=best,
            recommendations=recommendations
        )

    # --- Helpers ---

    def _day_capacity(self, provider_id: str, day: date_type) -> DayCapacity:
        windows = self.store.find_active_for_day(provider_id, day)
        day_start, day_end = day_bounds(day)
        day_bookings = self.bookings.find_bookings(provider_id, day_start, day_end)
        client_bookings = [b for b in day_bookings if b.status != BookingStatus.BLOCKED]

        available = sum(w.duration_minutes for w in windows)
        booked = sum(b.duration_minutes for b in client_bookings)

        busy = [(b.scheduled_start, b.end) for b in day_bookings]
        busy.extend((a.start_at, a.end_at) for a in self.store.find_absences(provider_id, day_start, day_end))
        free_blocks = []
        for window in windows:
            free_blocks.extend(subtract(window.bounds_on(day), busy))

        rate = booked / available * 100 if available else 0.0
        return DayCapacity(
            date=day,
            available_minutes=available,
            booked_minutes=booked,
            occupancy_rate=round(min(100.0, rate), 2),
            booking_count=len(client_bookings),
            free_blocks=sorted(free_blocks)
        )

    def _is_fixed(self, booking: Booking, options: OptimizationOptions) -> bool:
        return (
            booking.preferred_time
            or booking.id in options.pinned_booking_ids
            or booking.status == BookingStatus.BLOCKED
        )

    def _nearest_neighbour(self, bookings: List[Booking], anchor: Optional[str]) -> List[Booking]:
        """Repeatedly visit the closest remaining booking from the current address."""
        remaining = sorted(bookings, key=_chronological)
        ordered = []
        current = anchor
        while remaining:
            if current is None:
                nearest = remaining[0]
            else:
                nearest = min(
                    remaining,
                    key=lambda b: (self.travel(current, b.address).distance_km, b.scheduled_start, b.id)
                )
            ordered.append(nearest)
            remaining.remove(nearest)
            current = nearest.address
        return ordered

    def _band_efficiency(self, bookings: Sequence[Booking]) -> float:
        by_day: Dict[date_type, List[Booking]] = defaultdict(list)
        for b in bookings:
            by_day[b.day].append(b)

        work = 0.0
        elapsed = 0.0
        for day_bookings in by_day.values():
            metrics = self.analyze_schedule(day_bookings)
            work += metrics.total_work_time
            elapsed += metrics.total_work_time + metrics.total_travel_time + metrics.total_gaps
        return round(work / elapsed * 100, 2) if elapsed else 0.0

    def _build_matrix(self, locations: List[str]) -> List[List[TravelEstimate]]:
        zero = TravelEstimate(distance_km=0.0, travel_time_minutes=0.0)
        return [
            [zero if i == j else self.travel(a, b) for j, b in enumerate(locations)]
            for i, a in enumerate(locations)
        ]


def _is_client_booking(booking: Booking) -> bool:
    return booking.is_committed and booking.status != BookingStatus.BLOCKED


def _first_free_start(start: datetime, minutes: int, busy: Sequence[Interval]) -> datetime:
    """Earliest start >= `start` whose interval overlaps none of `busy` (sorted by start)."""
    length = timedelta(minutes=minutes)
    for busy_start, busy_end in busy:
        if do_intervals_overlap(start, start + length, busy_start, busy_end):
            start = busy_end
    return start


def _band_usage(count: int) -> str:
    if count == 0:
        return "No bookings: promote this band"
    if count < 3:
        return "Low usage: increase visibility"
    if count > 5:
        return "High demand: optimal band"
    return "Normal usage"


def _chronological(booking: Booking):
    return booking.scheduled_start, booking.id


def _efficiency_gain(current: ScheduleMetrics, optimized: ScheduleMetrics) -> float:
    """Relative change in percent. Not clamped: a worse schedule gives a negative gain."""
    if current.efficiency_ratio == 0:
        return 0.0
    return (optimized.efficiency_ratio - current.efficiency_ratio) / current.efficiency_ratio * 100


def _detect_changes(original: Sequence[Booking], optimized: Sequence[Booking]) -> List[ScheduleChange]:
    before = {b.id: b.scheduled_start for b in original}
    changes = []
    for booking in optimized:
        old_start = before.get(booking.id)
        if old_start is not None and old_start != booking.scheduled_start:
            changes.append(ScheduleChange(booking_id=booking.id, from_time=old_start, to_time=booking.scheduled_start))
    return changes


def _path_total(matrix: List[List[TravelEstimate]], path: List[int], attribute: str) -> float:
    return float(sum(getattr(matrix[a][b], attribute) for a, b in zip(path, path[1:])))


def _format_booking(booking: Booking) -> Dict[str, Any]:
    return {
        "id": booking.id,
        "start": booking.scheduled_start.strftime("%H:%M"),
        "end": booking.end.strftime("%H:%M"),
        "duration": booking.duration_minutes,
        "address": booking.address,
        "client": booking.client_name,
    }
