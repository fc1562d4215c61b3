"""
Data models for vital sign measurements and their reference types.

- VitalSignType: shared, read-only configuration of a measurable quantity
- Measurement: one timestamped reading owned by a subject
- ReadingContext: optional patient context used to relax thresholds
"""

import uuid
from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..clock import Clock, ensure_utc
from ..exceptions import InvalidRangeConfigurationError


class MeasurementMethod(str, Enum):
    """How a reading was captured."""
    MANUAL = "manual"
    DEVICE = "device"
    ESTIMATED = "estimated"


class VitalSignType(BaseModel):
    """Reference configuration for a vital sign (units and thresholds)."""

    model_config = {"frozen": True}

    id: str
    name: str
    display_name: str
    unit_primary: str
    unit_secondary: Optional[str] = None
    has_secondary_value: bool = False

    normal_range_min: float
    normal_range_max: float
    warning_range_min: float
    warning_range_max: float

    # Input bounds for entry forms; plausibility is checked per profile
    min_value: Optional[float] = None
    max_value: Optional[float] = None

    def check_ranges(self) -> None:
        """Ensure normal ⊆ warning and that each range is ordered.

        Raises:
            InvalidRangeConfigurationError: If the ranges are inconsistent
        """
        ranges = {
            "normal_range_min": self.normal_range_min,
            "normal_range_max": self.normal_range_max,
            "warning_range_min": self.warning_range_min,
            "warning_range_max": self.warning_range_max,
        }
        if self.normal_range_min > self.normal_range_max:
            raise InvalidRangeConfigurationError(self.name, "normal range is inverted", ranges)
        if self.warning_range_min > self.warning_range_max:
            raise InvalidRangeConfigurationError(self.name, "warning range is inverted", ranges)
        if (
            self.warning_range_min > self.normal_range_min
            or self.warning_range_max < self.normal_range_max
        ):
            raise InvalidRangeConfigurationError(
                self.name, "warning range does not contain the normal range", ranges
            )

    def is_value_normal(self, value: float) -> bool:
        return self.normal_range_min <= value <= self.normal_range_max

    def is_value_in_warning_range(self, value: float) -> bool:
        return self.warning_range_min <= value <= self.warning_range_max


class Measurement(BaseModel):
    """A single vital sign reading."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    subject_id: str
    vital_sign_type_id: str
    value_primary: float
    value_secondary: Optional[float] = None
    unit: str
    measured_at: datetime
    measurement_method: MeasurementMethod = MeasurementMethod.MANUAL
    device_name: Optional[str] = None
    notes: Optional[str] = None

    # Set by the validator
    is_flagged: bool = False
    flag_reason: Optional[str] = None

    @field_validator("measured_at")
    @classmethod
    def _normalize_measured_at(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @property
    def display_value(self) -> str:
        """Format the value for messages, e.g. ``120/80 mmHg``."""
        primary = f"{self.value_primary:g}"
        if self.value_secondary is not None:
            return f"{primary}/{self.value_secondary:g} {self.unit}"
        return f"{primary} {self.unit}"


class ReadingContext(BaseModel):
    """Optional patient context that may relax warning thresholds."""

    age: Optional[int] = Field(default=None, ge=0, le=130)
    medications: List[str] = Field(default_factory=list)

    @classmethod
    def from_birth_date(
        cls,
        birth_date: date,
        clock: Clock,
        medications: Optional[List[str]] = None,
    ) -> "ReadingContext":
        """Build a context computing age from a birth date at the clock's 'now'."""
        today = clock.now().date()
        age = today.year - birth_date.year - (
            (today.month, today.day) < (birth_date.month, birth_date.day)
        )
        return cls(age=age, medications=medications or [])

    def takes_any(self, medication_names: frozenset) -> bool:
        """Check if any active medication is in the given (lower-case) set."""
        return any(m.strip().lower() in medication_names for m in self.medications)
