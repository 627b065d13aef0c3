"""
Heuristic Slot Scoring.

This module determines the 'Quality' of a free time slot for a new booking.
Unlike conflict checks (binary Yes/No), this provides a gradient to guide
callers toward slots that keep the provider's day compact and drivable:

    score = 100 + w_travel * travel + w_efficiency * efficiency
                + w_preference * preference + w_break * break

Each factor lies roughly in [-10, +10]; the total is clamped at 0.
"""

from dataclasses import dataclass, field
from datetime import datetime, time as time_type, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from models import Booking, minutes_of
from .config import DEFAULT_SETTINGS, SchedulingSettings
from .intervals import minutes_between
from .repository import TravelFunction


@dataclass
class SlotPreferences:
    """Client wishes for the new booking. Empty means 'no preference'."""
    preferred_start: Optional[time_type] = None
    preferred_end: Optional[time_type] = None

    @property
    def has_window(self) -> bool:
        return self.preferred_start is not None and self.preferred_end is not None


@dataclass
class Suggestion:
    start: datetime
    end: datetime
    score: float
    reasons: List[str] = field(default_factory=list)
    travel_time_before: float = 0.0
    travel_time_after: float = 0.0
    factors: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "score": round(self.score, 2),
            "reasons": list(self.reasons),
            "travel_time_before": self.travel_time_before,
            "travel_time_after": self.travel_time_after,
            "factors": {k: round(v, 2) for k, v in self.factors.items()},
        }


class SlotScorer:
    """
    Evaluates candidate slots against the bookings already on that day.
    Stateless: the same inputs always give the same score.
    """

    def __init__(self, travel: TravelFunction, settings: Optional[SchedulingSettings] = None):
        self.travel = travel
        self.settings = settings or DEFAULT_SETTINGS

    def score_slot(
        self,
        start: datetime,
        end: datetime,
        address: str,
        day_bookings: Sequence[Booking],
        preferences: Optional[SlotPreferences] = None
    ) -> Suggestion:
        """
        Master scoring function.
        `day_bookings` are the committed client bookings of the slot's day.
        """
        preferences = preferences or SlotPreferences()
        reasons: List[str] = []
        previous, following = _neighbours(start, end, day_bookings)

        # 1. Travel Minimization (+/- 10)
        travel, before, after = self._score_travel(start, end, address, previous, following, reasons)

        # 2. Time-of-day Efficiency & Clustering (+/- 10)
        efficiency = self._score_efficiency(start, end, day_bookings, reasons)

        # 3. Client Preference (+/- 10)
        preference = self._score_preference(start, end, preferences, reasons)

        # 4. Break Quality / Buffer (+/- 10)
        break_quality = self._score_buffer_zones(start, end, day_bookings)

        factors = {
            "travel": travel,
            "efficiency": efficiency,
            "preference": preference,
            "break": break_quality,
        }
        weights = self.settings.slot_weights
        score = 100.0 + sum(weights[name] * value for name, value in factors.items())

        return Suggestion(
            start=start,
            end=end,
            score=max(0.0, score),
            reasons=reasons,
            travel_time_before=before,
            travel_time_after=after,
            factors=factors
        )

    def rank(self, suggestions: List[Suggestion]) -> List[Suggestion]:
        """Best first; earlier start wins ties. Keeps the top `max_suggestions`."""
        ordered = sorted(suggestions, key=lambda s: (-s.score, s.start))
        return ordered[:self.settings.max_suggestions]

    def _score_travel(
        self,
        start: datetime,
        end: datetime,
        address: str,
        previous: Optional[Booking],
        following: Optional[Booking],
        reasons: List[str]
    ) -> Tuple[float, float, float]:
        if previous is None and following is None:
            reasons.append("No neighbouring booking to travel from")
            return 10.0, 0.0, 0.0

        before = self.travel(previous.address, address).travel_time_minutes if previous else 0.0
        after = self.travel(address, following.address).travel_time_minutes if following else 0.0

        # Unreachable from the previous booking
        if previous and minutes_between(previous.end, start) < before:
            reasons.append("Not enough time to travel from the previous booking")
            return -10.0, before, after
        if following and minutes_between(end, following.scheduled_start) < after:
            reasons.append("Not enough time to reach the next booking")
            return -10.0, before, after

        total = before + after
        if total <= 15:
            reasons.append("Minimal travel time")
        return max(-10.0, min(10.0, 10.0 - total / 6)), before, after

    def _score_efficiency(
        self,
        start: datetime,
        end: datetime,
        day_bookings: Sequence[Booking],
        reasons: List[str]
    ) -> float:
        day = start.date()
        office_start = datetime.combine(day, time_type(self.settings.preferred_start_hour, 0))
        if self.settings.preferred_end_hour == 24:
            office_end = datetime.combine(day + timedelta(days=1), time_type(0, 0))
        else:
            office_end = datetime.combine(day, time_type(self.settings.preferred_end_hour, 0))

        if office_start <= start and end <= office_end:
            score = 5.0
            reasons.append("Within preferred working hours")
        else:
            score = -5.0

        # Clustering: reward slots that touch an existing booking
        tolerance = timedelta(minutes=self.settings.ideal_booking_gap_minutes)
        for b in day_bookings:
            if abs(b.end - start) < tolerance or abs(end - b.scheduled_start) < tolerance:
                reasons.append("Grouped with an existing booking")
                score += 5.0
                break
        return score

    def _score_preference(
        self,
        start: datetime,
        end: datetime,
        preferences: SlotPreferences,
        reasons: List[str]
    ) -> float:
        """
        Parabolic scoring to prefer the center of the client's window.
        """
        if not preferences.has_window:
            return 5.0  # Neutral

        window_start = minutes_of(preferences.preferred_start)
        window_end = minutes_of(preferences.preferred_end)
        slot_start = minutes_of(start.time())
        slot_end = slot_start + minutes_between(start, end)

        window_duration = window_end - window_start
        if window_duration <= 0:
            return 5.0

        if slot_start < window_start or slot_end > window_end:
            return -5.0

        # Normalize position 0.0 -> 1.0
        pos = (slot_start - window_start) / window_duration

        # Parabolic curve: Peak (1.0) at 0.5 (center), drops to 0.0 at edges
        fit_quality = 1.0 - 4.0 * ((pos - 0.5) ** 2)
        reasons.append("Matches the client's preferred time")
        return 5.0 + 5.0 * fit_quality

    def _score_buffer_zones(self, start: datetime, end: datetime, day_bookings: Sequence[Booking]) -> float:
        """
        Scores the resilience of the day based on gaps around the slot.

        Logic:
        - 0-15 mins gap:   Penalty (High risk of cascading delays).
        - 15-45 mins gap:  Reward (Ideal buffer for travel/rest).
        - 45-90 mins gap:  Neutral (Acceptable).
        - 90+ mins gap:    No reward (Fragmentation/Dead time).
        """
        if not day_bookings:
            return 10.0  # First booking of the day is always resilient

        gap_before = float('inf')
        gap_after = float('inf')
        for b in day_bookings:
            if b.end <= start:
                gap_before = min(gap_before, minutes_between(b.end, start))
            if end <= b.scheduled_start:
                gap_after = min(gap_after, minutes_between(end, b.scheduled_start))

        relevant_gap = min(gap_before, gap_after)
        if relevant_gap == float('inf'):
            return 10.0

        # DANGER ZONE: High risk of overlap if the previous booking runs late
        if relevant_gap < 15:
            # Linear penalty: 0 min = -10 pts, 14 min = ~0 pts
            return -10.0 + (relevant_gap / 1.5)
        elif relevant_gap <= 45:
            return 10.0
        elif relevant_gap <= 90:
            return 5.0
        else:
            return 0.0


def _neighbours(start: datetime, end: datetime, bookings: Sequence[Booking]) -> Tuple[Optional[Booking], Optional[Booking]]:
    """Latest booking ending before `start` and earliest starting after `end`."""
    previous = None
    following = None
    for b in bookings:
        if b.end <= start and (previous is None or b.end > previous.end):
            previous = b
        elif b.scheduled_start >= end and (following is None or b.scheduled_start < following.scheduled_start):
            following = b
    return previous, following
