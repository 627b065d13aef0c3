"""
Data models package for the Provider Planning Engine.

This package exports the three core pillars of the data architecture:
1. Supply (Provider, Availability, Absence)
2. Demand (Booking, BookingStatus)
3. Output (TimeSlot)
"""

from .resource import (
    Provider,
    Availability,
    Absence,
    AbsenceStatus,
    minutes_of
)

from .booking import (
    Booking,
    BookingStatus,
    INACTIVE_STATUSES
)

from .schedule import (
    TimeSlot
)

__all__ = [
    # --- Supply Models ---
    "Provider",
    "Availability",
    "Absence",
    "AbsenceStatus",
    "minutes_of",

    # --- Demand Models ---
    "Booking",
    "BookingStatus",
    "INACTIVE_STATUSES",

    # --- Output Models ---
    "TimeSlot",
]
