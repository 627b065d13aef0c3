from datetime import time, timedelta

import pytest

from models import Absence, BookingStatus
from planning import (
    AvailabilityService, ConflictKind, FlatRateTravelEstimator, SchedulingSettings, Severity, ValidationError,
)

from tests.helpers import MONDAY, NOW, at, make_booking


def _kinds(conflicts):
    return [c.kind for c in conflicts]


@pytest.fixture
def morning(service):
    return service.create_availability("prov_01", 0, time(9, 0), time(12, 0))


# --- Point queries ---

def test_has_conflict(service, state, morning):
    state.add_booking(make_booking("bk_1", at(MONDAY, 10)))

    assert service.has_conflict("prov_01", at(MONDAY, 10, 30), at(MONDAY, 11))
    assert service.has_conflict("prov_01", at(MONDAY, 11, 30), at(MONDAY, 12, 30))
    assert not service.has_conflict("prov_01", at(MONDAY, 9), at(MONDAY, 10))
    assert not service.has_conflict("prov_01", at(MONDAY, 10, 30), at(MONDAY, 11), exclude_booking_id="bk_1")


def test_has_conflict_rejects_empty_interval(service):
    with pytest.raises(ValidationError):
        service.has_conflict("prov_01", at(MONDAY, 10), at(MONDAY, 10))


def test_absence_is_a_conflict(service, morning):
    service.create_absence("prov_01", MONDAY, MONDAY, "vacation")
    assert service.detector.has_absence_conflict("prov_01", at(MONDAY, 9), at(MONDAY, 10))
    assert service.has_conflict("prov_01", at(MONDAY, 9), at(MONDAY, 10))


def test_cancelled_bookings_are_ignored(service, state, morning):
    state.add_booking(make_booking("bk_1", at(MONDAY, 10), status=BookingStatus.CANCELLED))
    assert not service.has_conflict("prov_01", at(MONDAY, 10), at(MONDAY, 11))


# --- Period scan ---

def test_double_booking_is_critical(service, state, morning):
    state.add_booking(make_booking("bk_1", at(MONDAY, 10)))
    state.add_booking(make_booking("bk_2", at(MONDAY, 10, 30)))

    conflicts = service.detect_all_conflicts("prov_01", MONDAY, MONDAY)
    doubles = [c for c in conflicts if c.kind == ConflictKind.DOUBLE_BOOKING]
    assert len(doubles) == 1
    assert doubles[0].severity == Severity.CRITICAL
    assert doubles[0].entity_ids == ["bk_1", "bk_2"]
    assert doubles[0].details["overlap_minutes"] == 30
    assert doubles[0].is_blocking


def test_booking_during_absence(service, state, morning):
    state.add_booking(make_booking("bk_1", at(MONDAY, 10)))
    absence = state.save_absence(Absence(provider_id="prov_01", start_date=MONDAY, end_date=MONDAY, reason="sick_leave"))

    conflicts = service.detect_all_conflicts("prov_01", MONDAY, MONDAY)
    assert _kinds(conflicts) == [ConflictKind.ABSENCE_OVERLAP]
    assert conflicts[0].entity_ids == ["bk_1", absence.id]


def test_booking_outside_availability(service, state, morning):
    state.add_booking(make_booking("bk_1", at(MONDAY, 13)))
    conflicts = service.detect_all_conflicts("prov_01", MONDAY, MONDAY)
    assert _kinds(conflicts) == [ConflictKind.OUTSIDE_AVAILABILITY]
    assert conflicts[0].severity == Severity.HIGH


def test_travel_time_between_bookings(service, state, morning):
    state.add_booking(make_booking("bk_1", at(MONDAY, 9), address="A"))
    state.add_booking(make_booking("bk_2", at(MONDAY, 10, 5), minutes=55, address="B"))

    conflicts = service.detect_all_conflicts("prov_01", MONDAY, MONDAY)
    assert _kinds(conflicts) == [ConflictKind.TRAVEL_TIME]
    assert conflicts[0].details == {"available_minutes": 5, "required_minutes": 15, "missing_minutes": 10}
    assert not conflicts[0].is_blocking


def test_same_address_needs_no_travel(service, state, morning):
    state.add_booking(make_booking("bk_1", at(MONDAY, 9), address="12 rue des Lilas"))
    state.add_booking(make_booking("bk_2", at(MONDAY, 10), address="12  Rue des Lilas"))
    assert service.detect_all_conflicts("prov_01", MONDAY, MONDAY) == []


def test_max_daily_hours_and_missing_break(service, state):
    service.create_availability("prov_01", 0, time(7, 0), time(19, 0))
    for hour in range(7, 18):
        state.add_booking(make_booking(f"bk_{hour}", at(MONDAY, hour)))

    conflicts = service.detect_all_conflicts("prov_01", MONDAY, MONDAY)
    hours = [c for c in conflicts if c.kind == ConflictKind.MAX_HOURS_EXCEEDED]
    breaks = [c for c in conflicts if c.kind == ConflictKind.BREAK_MISSING]

    assert len(hours) == 1
    assert hours[0].details["scope"] == "day"
    assert hours[0].details["total_hours"] == 11
    assert hours[0].details["excess_hours"] == 1
    assert len(breaks) == 1
    assert breaks[0].entity_ids == ["bk_13"]


def test_a_real_break_resets_the_run(service, state):
    service.create_availability("prov_01", 0, time(7, 0), time(19, 0))
    for hour in (7, 8, 9, 10):
        state.add_booking(make_booking(f"am_{hour}", at(MONDAY, hour)))
    for hour in (12, 13, 14, 15):
        state.add_booking(make_booking(f"pm_{hour}", at(MONDAY, hour)))

    kinds = _kinds(service.detect_all_conflicts("prov_01", MONDAY, MONDAY))
    assert ConflictKind.BREAK_MISSING not in kinds


def test_max_weekly_hours(state):
    service = AvailabilityService(
        state, state, FlatRateTravelEstimator(), SchedulingSettings(max_weekly_hours=5), clock=lambda: NOW
    )
    service.create_recurring_availabilities("prov_01", {"monday": ["08:00-12:00"], "tuesday": ["08:00-12:00"]})
    state.add_booking(make_booking("bk_1", at(MONDAY, 8), minutes=180))
    state.add_booking(make_booking("bk_2", at(MONDAY + timedelta(days=1), 8), minutes=180))

    conflicts = service.detect_all_conflicts("prov_01", MONDAY, MONDAY + timedelta(days=6))
    weekly = [c for c in conflicts if c.details.get("scope") == "week"]
    assert len(weekly) == 1
    assert weekly[0].details["week"] == "2025-W03"
    assert weekly[0].details["total_hours"] == 6


def test_blocked_slots_only_count_for_overlaps(service, state, morning):
    service.block_slot("prov_01", at(MONDAY, 13), at(MONDAY, 14), "lunch")
    assert service.detect_all_conflicts("prov_01", MONDAY, MONDAY) == []

    state.add_booking(make_booking("bk_1", at(MONDAY, 13, 30), address="B"))
    kinds = _kinds(service.detect_all_conflicts("prov_01", MONDAY, MONDAY))
    assert ConflictKind.DOUBLE_BOOKING in kinds


def test_conflicts_are_sorted_by_date_then_severity(service, state, morning):
    tuesday = MONDAY + timedelta(days=1)
    state.add_booking(make_booking("bk_t", at(tuesday, 10)))
    state.add_booking(make_booking("bk_1", at(MONDAY, 9), address="A"))
    state.add_booking(make_booking("bk_2", at(MONDAY, 10, 5), minutes=55, address="B"))
    state.add_booking(make_booking("bk_3", at(MONDAY, 11, 30)))

    conflicts = service.detect_all_conflicts("prov_01", MONDAY, tuesday)
    assert [(c.date, c.kind) for c in conflicts] == [
        (MONDAY, ConflictKind.OUTSIDE_AVAILABILITY),
        (MONDAY, ConflictKind.TRAVEL_TIME),
        (tuesday, ConflictKind.OUTSIDE_AVAILABILITY),
    ]


def test_accepted_bookings_never_double_book(service, state, morning):
    candidates = [(9, 0), (9, 30), (10, 0), (10, 45), (11, 0)]
    for index, (hour, minute) in enumerate(candidates):
        start = at(MONDAY, hour, minute)
        if service.can_add_booking("prov_01", start, start + timedelta(minutes=60)).can_add:
            state.add_booking(make_booking(f"bk_{index}", start))

    bookings = state.find_bookings("prov_01", at(MONDAY, 0), at(MONDAY, 23))
    assert len(bookings) == 3
    for i, first in enumerate(bookings):
        for second in bookings[i + 1:]:
            assert not service.detector.do_intervals_overlap(first.scheduled_start, first.end,
                                                             second.scheduled_start, second.end)


# --- Proposed bookings ---

def test_can_add_free_slot(service, morning):
    check = service.can_add_booking("prov_01", at(MONDAY, 9), at(MONDAY, 10), "A")
    assert check.can_add
    assert check.conflicts == []


def test_can_add_rejects_overlap(service, state, morning):
    state.add_booking(make_booking("bk_1", at(MONDAY, 10)))
    check = service.can_add_booking("prov_01", at(MONDAY, 10, 30), at(MONDAY, 11, 30))
    assert not check.can_add
    assert ConflictKind.DOUBLE_BOOKING in _kinds(check.conflicts)


def test_travel_is_a_warning_in_both_directions(service, state, morning):
    state.add_booking(make_booking("bk_1", at(MONDAY, 9), address="A"))
    state.add_booking(make_booking("bk_2", at(MONDAY, 11), address="B"))

    after_first = service.can_add_booking("prov_01", at(MONDAY, 10, 5), at(MONDAY, 10, 30), "C")
    assert after_first.can_add
    assert [c.entity_ids for c in after_first.warnings] == [["bk_1"]]

    before_second = service.can_add_booking("prov_01", at(MONDAY, 10, 15), at(MONDAY, 10, 55), "C")
    assert [c.entity_ids for c in before_second.warnings] == [["bk_2"]]


def test_long_booking_gets_break_warning(service):
    service.create_availability("prov_01", 0, time(8, 0), time(18, 0))
    check = service.can_add_booking("prov_01", at(MONDAY, 8), at(MONDAY, 15))
    assert check.can_add
    breaks = [c for c in check.warnings if c.kind == ConflictKind.BREAK_MISSING]
    assert len(breaks) == 1
    assert breaks[0].severity == Severity.LOW


def test_validate_schedule(service, state, morning):
    state.add_booking(make_booking("bk_stored", at(MONDAY, 10, 30)))
    proposal = [
        make_booking("new_2", at(MONDAY, 10)),
        make_booking("new_1", at(MONDAY, 9), minutes=45),
    ]

    result = service.validate_schedule("prov_01", proposal)
    assert not result.valid
    assert result.total_bookings == 2
    assert result.valid_bookings == 1
    assert result.errors[0].booking.id == "new_2"
    assert result.errors[0].index == 1


# --- Reporting ---

def test_suggest_resolutions(service):
    conflict = service.detector.would_create_conflict("prov_01", at(MONDAY, 9), at(MONDAY, 10))[0]
    resolutions = service.suggest_resolutions(conflict)
    assert resolutions[0].action == "add_availability"
    assert [r.priority for r in resolutions] == list(range(1, len(resolutions) + 1))


def test_conflict_report(service, state, morning):
    state.add_booking(make_booking("bk_1", at(MONDAY, 10)))
    state.add_booking(make_booking("bk_2", at(MONDAY, 10, 30), minutes=120))
    state.add_booking(make_booking("bk_3", at(MONDAY, 13)))

    report = service.generate_conflict_report("prov_01", MONDAY, MONDAY)
    assert report.total == 3
    assert report.by_severity == {"critical": 1, "high": 2, "medium": 0, "low": 0}
    assert report.by_kind == {"double_booking": 1, "outside_availability": 2}
    assert report.generated_at == NOW

    payload = report.to_dict()
    assert payload["summary"]["total_conflicts"] == 3
    assert payload["conflicts"][0]["kind"] == "double_booking"
