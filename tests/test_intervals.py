from datetime import date, time, timedelta

from models import Availability, TimeSlot
from planning.intervals import (
    do_intervals_overlap, generate_slots, intersect, intersect_slots, iter_days,
    overlap_minutes, period_bounds, subtract,
)

from tests.helpers import MONDAY, at


def _window(start, end, day_of_week=0):
    return Availability(id="av_t", provider_id="prov_01", day_of_week=day_of_week, start_time=start, end_time=end)


def test_touching_intervals_do_not_overlap():
    assert not do_intervals_overlap(at(MONDAY, 9), at(MONDAY, 10), at(MONDAY, 10), at(MONDAY, 11))
    assert do_intervals_overlap(at(MONDAY, 9), at(MONDAY, 10, 1), at(MONDAY, 10), at(MONDAY, 11))


def test_intersect_and_overlap_minutes():
    assert intersect(at(MONDAY, 9), at(MONDAY, 11), at(MONDAY, 10), at(MONDAY, 12)) == (at(MONDAY, 10), at(MONDAY, 11))
    assert intersect(at(MONDAY, 9), at(MONDAY, 10), at(MONDAY, 10), at(MONDAY, 11)) is None
    assert overlap_minutes(at(MONDAY, 9), at(MONDAY, 11), at(MONDAY, 10, 30), at(MONDAY, 12)) == 30
    assert overlap_minutes(at(MONDAY, 9), at(MONDAY, 10), at(MONDAY, 11), at(MONDAY, 12)) == 0


def test_iter_days_is_inclusive():
    days = list(iter_days(MONDAY, MONDAY + timedelta(days=6)))
    assert len(days) == 7
    assert days[0] == MONDAY and days[-1] == date(2025, 1, 19)
    assert list(iter_days(MONDAY, MONDAY - timedelta(days=1))) == []


def test_period_bounds_cover_whole_days():
    start, end = period_bounds(MONDAY, MONDAY)
    assert start == at(MONDAY, 0)
    assert end == at(MONDAY + timedelta(days=1), 0)


def test_subtract_splits_around_blocks():
    base = (at(MONDAY, 9), at(MONDAY, 12))
    free = subtract(base, [(at(MONDAY, 10), at(MONDAY, 11))])
    assert free == [(at(MONDAY, 9), at(MONDAY, 10)), (at(MONDAY, 11), at(MONDAY, 12))]

    assert subtract(base, [(at(MONDAY, 8), at(MONDAY, 13))]) == []
    assert subtract(base, []) == [base]


def test_generate_slots_tiles_the_window():
    slots = generate_slots(_window(time(9, 0), time(12, 0)), MONDAY, 60)
    assert [(s.start.hour, s.end.hour) for s in slots] == [(9, 10), (10, 11), (11, 12)]
    assert all(s.availability_id == "av_t" for s in slots)


def test_generate_slots_drops_partial_trailing_slot():
    slots = generate_slots(_window(time(9, 0), time(11, 30)), MONDAY, 60)
    assert len(slots) == 2


def test_generate_slots_with_step():
    slots = generate_slots(_window(time(9, 0), time(12, 0)), MONDAY, 60, step_minutes=30)
    assert [s.start.strftime("%H:%M") for s in slots] == ["09:00", "09:30", "10:00", "10:30", "11:00"]


def test_intersect_slots():
    first = [TimeSlot(start=at(MONDAY, 9), end=at(MONDAY, 11))]
    second = [
        TimeSlot(start=at(MONDAY, 10), end=at(MONDAY, 12)),
        TimeSlot(start=at(MONDAY, 11), end=at(MONDAY, 12)),
    ]
    common = intersect_slots(first, second)
    assert len(common) == 1
    assert (common[0].start, common[0].end) == (at(MONDAY, 10), at(MONDAY, 11))
    assert common[0].availability_id is None
