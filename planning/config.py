"""
Tunable constants of the planning engine.

Defaults reproduce the production behaviour. Any field can be overridden
through a `SCHEDULING_<FIELD>` environment variable.
"""

import logging
import os
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)

ENV_PREFIX = "SCHEDULING_"


class SchedulingSettings(BaseModel):
    """All knobs used by the detector, the manager and the optimizer."""

    # --- Availability windows ---
    min_window_minutes: int = Field(default=30, ge=1)
    max_window_minutes: int = Field(default=720, ge=1)
    default_slot_minutes: int = Field(default=60, ge=5)

    # --- Working time limits (conflict detection) ---
    max_daily_hours: float = Field(default=10.0, gt=0)
    max_weekly_hours: float = Field(default=48.0, gt=0)
    min_break_minutes: int = Field(default=30, ge=0)
    max_consecutive_minutes: int = Field(default=360, ge=1)
    default_travel_minutes: int = Field(default=15, ge=0)

    # --- Schedule optimization ---
    ideal_booking_gap_minutes: int = Field(default=15, ge=0)
    min_booking_gap_minutes: int = Field(default=10, ge=0)
    preferred_start_hour: int = Field(default=9, ge=0, le=23)
    preferred_end_hour: int = Field(default=17, ge=1, le=24)
    max_travel_distance_km: float = Field(default=30.0, gt=0)

    # Weighted sum used to rank candidate slots
    weight_travel_time: float = 3.0
    weight_time_efficiency: float = 2.0
    weight_client_preference: float = 1.5
    weight_break_optimization: float = 1.0

    max_suggestions: int = Field(default=5, ge=1)
    suggestion_step_minutes: int = Field(default=15, ge=1)

    # --- Workload balance ---
    rebalance_threshold_hours: float = Field(default=2.0, ge=0)
    rebalance_high_priority_hours: float = Field(default=3.0, ge=0)

    # --- Service level ---
    next_slot_horizon_days: int = Field(default=30, ge=1)
    low_occupancy_rate: float = Field(default=50.0, ge=0, le=100)
    high_occupancy_rate: float = Field(default=90.0, ge=0, le=100)

    @model_validator(mode='after')
    def validate_ranges(self):
        if self.min_window_minutes > self.max_window_minutes:
            raise ValueError("min_window_minutes cannot exceed max_window_minutes")
        if self.preferred_start_hour >= self.preferred_end_hour:
            raise ValueError("preferred_start_hour must be before preferred_end_hour")
        return self

    @property
    def slot_weights(self) -> Dict[str, float]:
        return {
            "travel": self.weight_travel_time,
            "efficiency": self.weight_time_efficiency,
            "preference": self.weight_client_preference,
            "break": self.weight_break_optimization,
        }

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SchedulingSettings":
        """Build settings from `SCHEDULING_*` variables; unknown keys are ignored."""
        environ = os.environ if environ is None else environ
        overrides = {}
        for name in cls.model_fields:
            key = ENV_PREFIX + name.upper()
            if key in environ:
                overrides[name] = environ[key]
        if overrides:
            logger.info(f"Scheduling settings overridden from environment: {sorted(overrides)}")
        return cls.model_validate(overrides)


DEFAULT_SETTINGS = SchedulingSettings()
