"""
Error taxonomy of the planning engine.

Callers translate these into protocol responses (e.g. 409 for ConflictError,
422 for ValidationError); the engine itself never formats transport errors.
"""

from typing import Any, Dict, List, Optional


class SchedulingError(Exception):
    """Base class for every error raised by the planning engine."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def __str__(self) -> str:
        return self.message


class ValidationError(SchedulingError, ValueError):
    """Malformed interval, out-of-bounds duration or bad day-of-week."""


class ConflictError(SchedulingError):
    """The requested change would overlap existing windows, bookings or absences."""


class NotFoundError(SchedulingError, LookupError):
    """A referenced provider, availability or absence does not exist."""


class InfeasibleOptimizationError(SchedulingError):
    """
    An optimized schedule violates availability constraints.

    Optimizers report infeasibility through a feasibility flag; this error is
    only raised when a caller explicitly asks for a feasible result.
    """

    def __init__(self, message: str, conflicts: Optional[List[Any]] = None, **context: Any):
        super().__init__(message, **context)
        self.conflicts = conflicts or []
