"""
Planning engine for the Provider Planning Engine.

This package exports the public surface used by callers:
1. The orchestrator (AvailabilityService) and its result types
2. The components it composes (detector, manager, optimizer)
3. Store contracts, the in-memory store and travel estimators
4. Settings and the error taxonomy
"""

from .config import (
    DEFAULT_SETTINGS,
    SchedulingSettings
)

from .exceptions import (
    SchedulingError,
    ValidationError,
    ConflictError,
    NotFoundError,
    InfeasibleOptimizationError
)

from .repository import (
    BookingStore,
    PlanningStore,
    ReplacementCounter,
    TravelEstimate,
    TravelFunction
)

from .constraints import (
    Conflict,
    ConflictDetector,
    ConflictKind,
    ConflictReport,
    Resolution,
    Severity
)

from .availability import (
    AvailabilityManager,
    DeletionCheck
)

from .scoring import (
    SlotPreferences,
    SlotScorer,
    Suggestion
)

from .optimizer import (
    OptimizationOptions,
    OptimizationResult,
    ScheduleOptimizer,
    TimeWindowReport
)

from .service import (
    AvailabilityService,
    BookingCheck,
    CompleteSchedule,
    PlanningStats,
    Recommendation
)

from .state import PlanningState
from .travel import FlatRateTravelEstimator, HaversineTravelEstimator

__all__ = [
    # --- Orchestration ---
    "AvailabilityService",
    "BookingCheck",
    "CompleteSchedule",
    "PlanningStats",
    "Recommendation",

    # --- Components ---
    "ConflictDetector",
    "Conflict",
    "ConflictKind",
    "ConflictReport",
    "Resolution",
    "Severity",
    "AvailabilityManager",
    "DeletionCheck",
    "ScheduleOptimizer",
    "OptimizationOptions",
    "OptimizationResult",
    "TimeWindowReport",
    "SlotScorer",
    "SlotPreferences",
    "Suggestion",

    # --- Collaborators ---
    "PlanningStore",
    "BookingStore",
    "ReplacementCounter",
    "TravelFunction",
    "TravelEstimate",
    "PlanningState",
    "FlatRateTravelEstimator",
    "HaversineTravelEstimator",

    # --- Settings & Errors ---
    "SchedulingSettings",
    "DEFAULT_SETTINGS",
    "SchedulingError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "InfeasibleOptimizationError",
]
