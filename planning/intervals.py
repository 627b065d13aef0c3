"""
Interval arithmetic over half-open [start, end) datetime ranges.

Pure functions only; every result is a new value.
"""

from datetime import date as date_type, datetime, timedelta
from typing import Iterator, List, Optional, Sequence, Tuple

from models import Availability, TimeSlot

Interval = Tuple[datetime, datetime]


def do_intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Standard overlap logic: StartA < EndB and StartB < EndA."""
    return a_start < b_end and b_start < a_end


def intersect(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> Optional[Interval]:
    """Common part of two intervals, or None when they do not overlap."""
    if not do_intervals_overlap(a_start, a_end, b_start, b_end):
        return None
    return max(a_start, b_start), min(a_end, b_end)


def minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60


def overlap_minutes(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> float:
    common = intersect(a_start, a_end, b_start, b_end)
    if common is None:
        return 0.0
    return minutes_between(*common)


def iter_days(start: date_type, end: date_type) -> Iterator[date_type]:
    """Every calendar date from start to end, both inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def day_bounds(day: date_type) -> Interval:
    start = datetime.combine(day, datetime.min.time())
    return start, start + timedelta(days=1)


def period_bounds(start: date_type, end: date_type) -> Interval:
    """[start 00:00, end + 1 day 00:00) for an inclusive date range."""
    return day_bounds(start)[0], day_bounds(end)[1]


def subtract(base: Interval, blocks: Sequence[Interval]) -> List[Interval]:
    """
    Remove every block from `base`.
    Returns the remaining free pieces in chronological order.
    """
    free = [base]
    for b_start, b_end in sorted(blocks):
        remaining = []
        for f_start, f_end in free:
            if not do_intervals_overlap(f_start, f_end, b_start, b_end):
                remaining.append((f_start, f_end))
                continue
            if f_start < b_start:
                remaining.append((f_start, b_start))
            if b_end < f_end:
                remaining.append((b_end, f_end))
        free = remaining
    return free


def generate_slots(window: Availability, day: date_type, slot_minutes: int, step_minutes: Optional[int] = None) -> List[TimeSlot]:
    """
    Cut a window into fixed-length slots on a given day.

    Slot k starts at window_start + k * step (step defaults to the slot
    length, giving a non-overlapping tiling). Partial trailing slots are
    dropped.
    """
    step = timedelta(minutes=step_minutes or slot_minutes)
    length = timedelta(minutes=slot_minutes)
    window_start, window_end = window.bounds_on(day)

    slots = []
    current = window_start
    while current + length <= window_end:
        slots.append(TimeSlot(start=current, end=current + length, availability_id=window.id))
        current += step
    return slots


def intersect_slots(first: Sequence[TimeSlot], second: Sequence[TimeSlot]) -> List[TimeSlot]:
    """Pairwise intersection of two slot sets, [max(starts), min(ends))."""
    result = []
    for a in first:
        for b in second:
            common = intersect(a.start, a.end, b.start, b.end)
            if common:
                result.append(TimeSlot(start=common[0], end=common[1]))
    result.sort(key=lambda s: (s.start, s.end))
    return result
