import pytest

from models import Provider
from planning import AvailabilityService, FlatRateTravelEstimator, PlanningState

from tests.helpers import NOW, LineTravel


@pytest.fixture
def state():
    s = PlanningState()
    s.add_provider(Provider(id="prov_01", name="Alice Martin", home_address="km0"))
    s.add_provider(Provider(id="prov_02", name="Bruno Petit"))
    return s


@pytest.fixture
def service(state):
    """Flat 15 minute / 10 km travel between distinct addresses."""
    return AvailabilityService(
        state, state,
        travel=FlatRateTravelEstimator(minutes=15.0, distance_km=10.0),
        clock=lambda: NOW
    )


@pytest.fixture
def line_service(state):
    return AvailabilityService(state, state, travel=LineTravel(), clock=lambda: NOW)
