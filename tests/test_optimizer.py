from datetime import time, timedelta

import pytest

from models import BookingStatus
from planning import InfeasibleOptimizationError, OptimizationOptions, ValidationError

from tests.helpers import MONDAY, at, make_booking


@pytest.fixture
def optimizer(line_service):
    return line_service.optimizer


@pytest.fixture
def spread_day(state):
    """Chronological order zig-zags along the road: km0, km10, km1, km11."""
    bookings = [
        make_booking("bk_a", at(MONDAY, 9), address="km0"),
        make_booking("bk_b", at(MONDAY, 10, 30), address="km10"),
        make_booking("bk_c", at(MONDAY, 12), address="km1"),
        make_booking("bk_d", at(MONDAY, 13, 30), address="km11"),
    ]
    for b in bookings:
        state.add_booking(b)
    return bookings


# --- Analysis ---

def test_analyze_empty_schedule(optimizer):
    metrics = optimizer.analyze_schedule([])
    assert metrics.total_bookings == 0
    assert metrics.efficiency_ratio == 0.0
    assert metrics.start_time is None


def test_analyze_schedule(optimizer):
    bookings = [
        make_booking("bk_2", at(MONDAY, 11), address="km10"),
        make_booking("bk_1", at(MONDAY, 9), address="km0"),
    ]
    metrics = optimizer.analyze_schedule(bookings)

    assert metrics.total_bookings == 2
    assert metrics.total_work_time == 120
    assert metrics.total_travel_time == 20
    assert metrics.total_distance == 10
    assert metrics.total_gaps == 40
    assert metrics.average_gap == 40
    assert metrics.efficiency_ratio == pytest.approx(120 / 180)
    assert metrics.start_time == at(MONDAY, 9)
    assert metrics.end_time == at(MONDAY, 12)


def test_analyze_schedule_is_repeatable(optimizer, spread_day):
    assert optimizer.analyze_schedule(spread_day) == optimizer.analyze_schedule(spread_day)


# --- Ordering & re-timing ---

def test_nearest_neighbour_order(optimizer, spread_day):
    ordered = optimizer.optimize_booking_order(spread_day)
    assert [b.id for b in ordered] == ["bk_a", "bk_c", "bk_b", "bk_d"]


def test_fixed_bookings_keep_their_place(optimizer, spread_day):
    options = OptimizationOptions(pinned_booking_ids=frozenset({"bk_b"}))
    ordered = optimizer.optimize_booking_order(spread_day, options)
    # bk_a precedes the pinned booking; bk_c and bk_d follow it
    assert [b.id for b in ordered] == ["bk_a", "bk_b", "bk_d", "bk_c"]


def test_time_slots_chain_from_window_start(line_service, optimizer, spread_day):
    line_service.create_availability("prov_01", 0, time(8, 0), time(18, 0))
    ordered = optimizer.optimize_booking_order(spread_day)
    placed = optimizer.optimize_time_slots("prov_01", ordered, MONDAY)

    assert [b.scheduled_start for b in placed] == [
        at(MONDAY, 8),
        at(MONDAY, 9, 17),   # 60 min work + 2 min travel + 15 min gap
        at(MONDAY, 10, 50),  # + 18 min travel
        at(MONDAY, 12, 7),
    ]
    # Inputs are left untouched
    assert spread_day[0].scheduled_start == at(MONDAY, 9)


def test_time_slots_without_window_keep_times(optimizer, spread_day):
    placed = optimizer.optimize_time_slots("prov_01", spread_day, MONDAY)
    assert [b.scheduled_start for b in placed] == [b.scheduled_start for b in spread_day]


def test_preferred_time_is_never_moved(line_service, optimizer, state):
    line_service.create_availability("prov_01", 0, time(8, 0), time(18, 0))
    fixed = make_booking("bk_fixed", at(MONDAY, 14), address="km3", preferred_time=True)
    flexible = make_booking("bk_flex", at(MONDAY, 10), address="km3")

    result = optimizer.optimize_daily_schedule("prov_01", [fixed, flexible], MONDAY)
    by_id = {b.id: b for b in result.optimized_schedule}
    assert by_id["bk_fixed"].scheduled_start == at(MONDAY, 14)
    assert by_id["bk_flex"].scheduled_start == at(MONDAY, 8)


# --- Daily optimization ---

def test_optimize_daily_schedule(line_service, optimizer, spread_day):
    line_service.create_availability("prov_01", 0, time(8, 0), time(18, 0))
    result = optimizer.optimize_daily_schedule("prov_01", spread_day, MONDAY)

    assert result.status == "optimized"
    assert result.current_metrics.total_travel_time == 58
    assert result.optimized_metrics.total_travel_time == 22
    assert result.time_saved_minutes == 36
    assert result.distance_saved_km == 18
    assert result.efficiency_gain > 0
    assert {c.booking_id for c in result.changes} == {"bk_a", "bk_b", "bk_c", "bk_d"}
    assert result.feasibility.is_feasible
    assert result.require_feasible() is result

    payload = result.to_dict()
    assert payload["optimized_schedule"][0]["start"] == "08:00"
    assert payload["savings"]["time_minutes"] == 36


def test_worse_schedule_reports_negative_gain(line_service, optimizer):
    line_service.create_availability("prov_01", 0, time(9, 0), time(12, 0))
    compact = [
        make_booking("bk_1", at(MONDAY, 9), address="km0"),
        make_booking("bk_2", at(MONDAY, 10), address="km0"),
    ]
    result = optimizer.optimize_daily_schedule("prov_01", compact, MONDAY)
    assert result.efficiency_gain < 0


def test_infeasible_result_only_raises_on_request(optimizer, spread_day):
    result = optimizer.optimize_daily_schedule("prov_01", spread_day, MONDAY)
    assert not result.feasibility.is_feasible
    assert result.feasibility.requires_changes

    with pytest.raises(InfeasibleOptimizationError) as excinfo:
        result.require_feasible()
    assert excinfo.value.conflicts


def test_no_bookings(optimizer):
    result = optimizer.optimize_daily_schedule("prov_01", [], MONDAY)
    assert result.status == "no_bookings"
    assert result.efficiency_gain == 0


def test_optimize_schedule_over_period(line_service, spread_day):
    line_service.create_availability("prov_01", 0, time(8, 0), time(18, 0))
    period = line_service.optimize_schedule("prov_01", MONDAY, MONDAY + timedelta(days=6))

    assert list(period.daily) == [MONDAY]
    assert period.total_bookings == 4
    assert period.time_saved_minutes == 36
    assert period.distance_saved_km == 18


# --- Slot suggestion ---

def test_suggest_optimal_slot_skips_busy_time(line_service, state):
    line_service.create_availability("prov_01", 0, time(9, 0), time(12, 0))
    state.add_booking(make_booking("bk_1", at(MONDAY, 10), address="km0"))

    suggestions = line_service.suggest_optimal_slot("prov_01", MONDAY, 60, "km0")
    assert [s.start for s in suggestions] == [at(MONDAY, 9), at(MONDAY, 11)]
    assert suggestions[0].score == suggestions[1].score


def test_suggestions_are_capped_and_ranked(line_service):
    line_service.create_availability("prov_01", 0, time(9, 0), time(12, 0))
    suggestions = line_service.suggest_optimal_slot("prov_01", MONDAY, 60, "km0")

    assert len(suggestions) == 5
    scores = [s.score for s in suggestions]
    assert scores == sorted(scores, reverse=True)


def test_suggest_optimal_slot_edge_cases(line_service):
    assert line_service.suggest_optimal_slot("prov_01", MONDAY, 60, "km0") == []
    with pytest.raises(ValidationError):
        line_service.suggest_optimal_slot("prov_01", MONDAY, 0, "km0")


# --- Balance, routes, capacity ---

def test_balance_without_bookings(line_service):
    report = line_service.balance_weekly_workload("prov_01", MONDAY)
    assert report.status == "no_bookings"
    assert len(report.distribution) == 7


def test_balance_weekly_workload(line_service, state):
    for hour in range(8, 14):
        state.add_booking(make_booking(f"bk_{hour}", at(MONDAY, hour)))

    report = line_service.balance_weekly_workload("prov_01", MONDAY)
    assert report.status == "analyzed"
    assert report.distribution[0].total_hours == 6
    assert report.average_hours == pytest.approx(0.86)
    assert report.stddev_hours == pytest.approx(2.1)
    assert report.balance_score == pytest.approx(79.0, abs=0.01)

    assert len(report.recommendations) == 1
    action = report.recommendations[0]
    assert (action.day, action.action, action.priority) == (MONDAY, "reduce", "high")


def test_optimize_routes(line_service, spread_day):
    route = line_service.optimize_routes("prov_01", spread_day[:3])
    assert [stop.booking_id for stop in route.route] == ["bk_a", "bk_c", "bk_b"]
    assert route.original_distance == 19
    assert route.optimized_distance == 10
    assert route.distance_saved_km == 9


def test_optimize_routes_with_anchors(line_service, spread_day):
    route = line_service.optimize_routes("prov_01", spread_day[:3], start_location="km5", end_location="km5")
    assert route.route[0].booking_id is None
    assert route.route[-1].booking_id is None
    assert [stop.booking_id for stop in route.route[1:-1]] == ["bk_c", "bk_a", "bk_b"]
    assert route.optimized_distance == 20
    assert line_service.optimize_routes("prov_01", []).status == "no_bookings"


def test_analyze_capacity(line_service, state):
    line_service.create_availability("prov_01", 0, time(9, 0), time(12, 0))
    state.add_booking(make_booking("bk_1", at(MONDAY, 10)))

    report = line_service.analyze_capacity("prov_01", MONDAY, MONDAY + timedelta(days=1))
    monday, tuesday = report.days

    assert monday.available_minutes == 180
    assert monday.booked_minutes == 60
    assert monday.occupancy_rate == 33.33
    assert monday.free_minutes == 120
    assert monday.free_blocks == [(at(MONDAY, 9), at(MONDAY, 10)), (at(MONDAY, 11), at(MONDAY, 12))]
    assert monday.largest_free_block_minutes == 60
    assert monday.can_accept_more

    assert tuesday.available_minutes == 0
    assert not tuesday.can_accept_more
    assert [(r.date, r.kind) for r in report.recommendations] == [(MONDAY, "underutilized")]


# --- Blocked slots ---

def test_analysis_ignores_blocked_and_cancelled(optimizer):
    bookings = [
        make_booking("bk_1", at(MONDAY, 9), address="km0"),
        make_booking("hold", at(MONDAY, 10), address="", status=BookingStatus.BLOCKED),
        make_booking("gone", at(MONDAY, 11), address="km40", status=BookingStatus.CANCELLED),
    ]
    metrics = optimizer.analyze_schedule(bookings)
    assert metrics.total_bookings == 1
    assert metrics.total_work_time == 60
    assert metrics.total_travel_time == 0


def test_daily_optimization_works_around_blocked_slots(line_service, state):
    line_service.create_availability("prov_01", 0, time(8, 0), time(18, 0))
    state.add_booking(make_booking("bk_1", at(MONDAY, 9), address="km0"))
    state.add_booking(make_booking("bk_2", at(MONDAY, 14), address="km0"))
    blocked = line_service.block_slot("prov_01", at(MONDAY, 8), at(MONDAY, 9), "admin")

    result = line_service.optimize_daily_schedule("prov_01", MONDAY)

    assert result.current_metrics.total_work_time == 120
    assert result.current_metrics.total_travel_time == 0
    assert result.current_metrics.total_distance == 0
    assert result.optimized_metrics.total_work_time == 120
    assert [b.id for b in result.optimized_schedule] == ["bk_1", "bk_2"]
    # bk_1 cannot move into the blocked hour; bk_2 follows after the ideal gap
    assert [b.scheduled_start for b in result.optimized_schedule] == [at(MONDAY, 9), at(MONDAY, 10, 15)]
    assert [c.booking_id for c in result.changes] == ["bk_2"]
    assert blocked.id not in {b.id for b in result.original_schedule}
    assert result.feasibility.is_feasible


def test_blocked_only_day_has_nothing_to_optimize(line_service):
    line_service.block_slot("prov_01", at(MONDAY, 8), at(MONDAY, 9))
    assert line_service.optimize_daily_schedule("prov_01", MONDAY).status == "no_bookings"


def test_routes_skip_blocked_slots(line_service, state):
    state.add_booking(make_booking("bk_1", at(MONDAY, 9), address="km0"))
    state.add_booking(make_booking("bk_2", at(MONDAY, 14), address="km4"))
    line_service.block_slot("prov_01", at(MONDAY, 11), at(MONDAY, 12))

    stored = state.find_bookings("prov_01", at(MONDAY, 0), at(MONDAY, 23))
    route = line_service.optimize_routes("prov_01", stored)

    assert [stop.booking_id for stop in route.route] == ["bk_1", "bk_2"]
    assert route.optimized_distance == 4
    blocked_only = [b for b in stored if b.status == BookingStatus.BLOCKED]
    assert line_service.optimize_routes("prov_01", blocked_only).status == "no_bookings"


# --- Time bands ---

def test_most_efficient_time_windows(line_service, state):
    tuesday = MONDAY + timedelta(days=1)
    state.add_booking(make_booking("am_1", at(MONDAY, 9), address="km0"))
    state.add_booking(make_booking("am_2", at(MONDAY, 10), address="km0"))
    state.add_booking(make_booking("am_3", at(tuesday, 9), address="km0"))
    state.add_booking(make_booking("pm_1", at(MONDAY, 14), address="km0"))
    state.add_booking(make_booking("pm_2", at(MONDAY, 16, 45), minutes=15, address="km10"))
    state.add_booking(make_booking("lunch", at(MONDAY, 12), address="km0"))
    line_service.block_slot("prov_01", at(MONDAY, 19), at(MONDAY, 20))

    report = line_service.find_most_efficient_time_windows("prov_01", MONDAY, MONDAY + timedelta(days=6))

    assert [b.name for b in report.bands] == ["morning", "afternoon", "evening"]
    morning, afternoon, evening = report.bands
    assert (morning.booking_count, morning.efficiency_score) == (3, 100.0)
    # 75 min of work, 20 min of driving, 85 min idle
    assert (afternoon.booking_count, afternoon.efficiency_score) == (2, 41.67)
    assert afternoon.average_duration == 37.5
    assert evening.booking_count == 0
    assert evening.recommendation.startswith("No bookings")

    assert report.best_window == "morning"
    assert [(r.kind, r.band) for r in report.recommendations] == [
        ("best_window", "morning"),
        ("low_efficiency", "afternoon"),
    ]


def test_time_windows_without_bookings(line_service):
    report = line_service.find_most_efficient_time_windows("prov_01", MONDAY, MONDAY)
    assert report.best_window is None
    assert report.recommendations == []
    assert all(b.efficiency_score == 0 for b in report.bands)
