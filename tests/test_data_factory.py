from generators.data_factory import DataGenerator
from planning import AvailabilityService, FlatRateTravelEstimator, HaversineTravelEstimator, PlanningState

from tests.helpers import MONDAY, NOW


def _seed(data):
    state = PlanningState()
    for provider in data["providers"]:
        state.add_provider(provider)
    for window in data["availabilities"]:
        state.save_availability(window)
    for booking in data["bookings"]:
        state.add_booking(booking)
    for absence in data["absences"]:
        state.save_absence(absence)
    return state


def test_same_seed_same_data():
    first = DataGenerator(seed=7).generate_dataset(provider_count=2, start_date=MONDAY)
    second = DataGenerator(seed=7).generate_dataset(provider_count=2, start_date=MONDAY)
    assert [b.model_dump() for b in first["bookings"]] == [b.model_dump() for b in second["bookings"]]
    assert first["coordinates"] == second["coordinates"]


def test_generated_week_has_no_blocking_conflicts():
    data = DataGenerator(seed=3).generate_dataset(provider_count=3, start_date=MONDAY)
    state = _seed(data)
    travel = HaversineTravelEstimator(data["coordinates"], fallback=FlatRateTravelEstimator())
    service = AvailabilityService(state, state, travel, clock=lambda: NOW)

    assert len(data["providers"]) == 3
    assert data["bookings"]
    for provider in data["providers"]:
        conflicts = service.detect_all_conflicts(provider.id, MONDAY, MONDAY.replace(day=19))
        assert not [c for c in conflicts if c.is_blocking]


def test_every_address_has_coordinates():
    data = DataGenerator(seed=11).generate_dataset(provider_count=1, start_date=MONDAY)
    for booking in data["bookings"]:
        assert booking.address in data["coordinates"]
