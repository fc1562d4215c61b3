"""
Reading validation and flagging.

Classifies a single reading against its type's normal and warning ranges,
applies the blood-pressure diastolic and pulse-pressure checks, then relaxes
warnings using patient context (age, medication). The physiological
plausibility gate runs first and raises instead of flagging.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from ..exceptions import PhysiologicallyImplausibleValueError
from ..models.vital_signs import ReadingContext, VitalSignType
from .profiles import TypeProfile, get_profile
from .samples import Sample, chronological
from .statistics import coefficient_of_variation


logger = logging.getLogger(__name__)


BETA_BLOCKERS = frozenset({"metoprolol", "atenolol", "carvedilol", "propranolol"})
ANTIHYPERTENSIVES = frozenset({"lisinopril", "amlodipine", "losartan", "hydrochlorothiazide"})

# Context relaxation limits
SENIOR_AGE = 65
SENIOR_SYSTOLIC_MAX = 150.0
MINOR_AGE = 18
MINOR_HEART_RATE_MAX = 110.0
BETA_BLOCKER_HEART_RATE_MIN = 50.0
ANTIHYPERTENSIVE_SYSTOLIC_MIN = 110.0

REASON_CRITICAL = "Critical reading outside safe range"
REASON_OUTSIDE_NORMAL = "Reading outside normal range"
REASON_CRITICAL_DIASTOLIC = "Critical diastolic pressure"
REASON_DIASTOLIC_OUTSIDE_NORMAL = "Diastolic pressure outside normal range"
REASON_PULSE_PRESSURE = "Abnormal pulse pressure"

# Readings this close together are "short-term" for rapid change checks
RAPID_CHANGE_WINDOW = timedelta(hours=24)
MIN_SEQUENCE_SAMPLES = 3
MIN_CONSISTENCY_SAMPLES = 5


class WarningLevel(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class ValidationResult:
    """Outcome of validating one reading."""
    vital_sign_type: str
    value_primary: float
    value_secondary: Optional[float] = None
    is_normal: bool = True
    is_flagged: bool = False
    warning_level: WarningLevel = WarningLevel.NORMAL
    flag_reason: Optional[str] = None
    # Context relaxations that fired, in order
    adjustments: List[str] = field(default_factory=list)

    @property
    def is_critical(self) -> bool:
        return self.warning_level == WarningLevel.CRITICAL

    def _relax(self, adjustment: str) -> None:
        self.warning_level = WarningLevel.NORMAL
        self.is_normal = True
        self.flag_reason = None
        self.adjustments.append(adjustment)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vital_sign_type": self.vital_sign_type,
            "value_primary": self.value_primary,
            "value_secondary": self.value_secondary,
            "is_normal": self.is_normal,
            "is_flagged": self.is_flagged,
            "warning_level": self.warning_level.value,
            "flag_reason": self.flag_reason,
            "adjustments": list(self.adjustments),
        }


@dataclass
class SequenceValidationResult:
    """Warnings raised by a run of readings rather than a single one."""
    vital_sign_type: str
    sample_count: int
    warnings: List[str] = field(default_factory=list)
    rapid_changes: List[Dict[str, Any]] = field(default_factory=list)
    coefficient_of_variation: Optional[float] = None

    @property
    def is_valid(self) -> bool:
        return not self.warnings

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vital_sign_type": self.vital_sign_type,
            "sample_count": self.sample_count,
            "is_valid": self.is_valid,
            "warnings": list(self.warnings),
            "rapid_changes": list(self.rapid_changes),
            "coefficient_of_variation": (
                round(self.coefficient_of_variation, 2)
                if self.coefficient_of_variation is not None else None
            ),
        }


def check_physiological_limits(
    vital_sign_type: VitalSignType,
    primary: float,
    secondary: Optional[float] = None,
    profile: Optional[TypeProfile] = None,
) -> None:
    """
    Reject readings that cannot be real (probable data-entry errors).

    Raises:
        PhysiologicallyImplausibleValueError: If the reading is implausible
    """
    profile = profile or get_profile(vital_sign_type.name)
    low, high = profile.plausible_range()

    if (low is not None and primary < low) or (high is not None and primary > high):
        raise PhysiologicallyImplausibleValueError(
            vital_sign_type.name, primary, secondary,
            reason=f"primary value outside plausible range {low}-{high}",
        )

    bounds = profile.secondary
    if bounds is None or secondary is None:
        return

    if secondary < bounds.plausible_min or secondary > bounds.plausible_max:
        raise PhysiologicallyImplausibleValueError(
            vital_sign_type.name, primary, secondary,
            reason=f"secondary value outside {bounds.plausible_min:g}-{bounds.plausible_max:g}",
        )
    if primary <= secondary:
        raise PhysiologicallyImplausibleValueError(
            vital_sign_type.name, primary, secondary,
            reason="systolic must be greater than diastolic",
        )


def _classify_primary(vital_sign_type: VitalSignType, result: ValidationResult) -> None:
    primary = result.value_primary
    if vital_sign_type.is_value_normal(primary):
        return

    result.is_normal = False
    if not vital_sign_type.is_value_in_warning_range(primary):
        result.is_flagged = True
        result.warning_level = WarningLevel.CRITICAL
        result.flag_reason = REASON_CRITICAL
    else:
        result.warning_level = WarningLevel.WARNING
        result.flag_reason = REASON_OUTSIDE_NORMAL


def _classify_secondary(profile: TypeProfile, result: ValidationResult) -> bool:
    """Apply the diastolic and pulse-pressure checks; True when either failed."""
    bounds = profile.secondary
    secondary = result.value_secondary
    if bounds is None or secondary is None:
        return False

    abnormal = False
    if not bounds.normal_min <= secondary <= bounds.normal_max:
        abnormal = True
        result.is_normal = False
        if secondary < bounds.critical_min or secondary > bounds.critical_max:
            result.is_flagged = True
            result.warning_level = WarningLevel.CRITICAL
            result.flag_reason = REASON_CRITICAL_DIASTOLIC
        elif result.warning_level == WarningLevel.NORMAL:
            result.warning_level = WarningLevel.WARNING
            result.flag_reason = REASON_DIASTOLIC_OUTSIDE_NORMAL

    if not bounds.pulse_pressure_ok(result.value_primary, secondary):
        abnormal = True
        result.is_normal = False
        if result.warning_level == WarningLevel.NORMAL:
            result.warning_level = WarningLevel.WARNING
            result.flag_reason = REASON_PULSE_PRESSURE
    return abnormal


def _apply_context(
    vital_sign_type: VitalSignType,
    context: ReadingContext,
    result: ValidationResult,
    secondary_abnormal: bool = False,
) -> None:
    # Relaxations only ever move a primary-driven warning -> normal
    if result.warning_level != WarningLevel.WARNING or secondary_abnormal:
        return

    primary = result.value_primary
    name = vital_sign_type.name

    if context.age is not None:
        if name == "blood_pressure" and context.age >= SENIOR_AGE and primary <= SENIOR_SYSTOLIC_MAX:
            result._relax(f"Blood pressure tolerance extended for age {context.age}")
            return
        if name == "heart_rate" and context.age < MINOR_AGE and primary <= MINOR_HEART_RATE_MAX:
            result._relax(f"Heart rate tolerance extended for age {context.age}")
            return

    if name == "heart_rate" and context.takes_any(BETA_BLOCKERS):
        if primary >= BETA_BLOCKER_HEART_RATE_MIN:
            result._relax("Heart rate adjusted for beta blocker medication")
        return

    if name == "blood_pressure" and context.takes_any(ANTIHYPERTENSIVES):
        if primary >= ANTIHYPERTENSIVE_SYSTOLIC_MIN:
            result._relax("Blood pressure adjusted for hypertension medication")


def validate_reading(
    vital_sign_type: VitalSignType,
    primary: float,
    secondary: Optional[float] = None,
    context: Optional[ReadingContext] = None,
    profile: Optional[TypeProfile] = None,
) -> ValidationResult:
    """
    Classify a reading as normal, warning or critical.

    Range boundaries are inclusive: a value equal to the normal max is normal,
    and a value equal to the warning max is a warning.

    Args:
        vital_sign_type: Reference type with normal and warning ranges
        primary: Primary value (systolic for blood pressure)
        secondary: Optional secondary value (diastolic)
        context: Optional patient context used to relax warnings
        profile: Per-type rules; resolved from the type name when omitted

    Returns:
        ValidationResult with the warning level, flag and any adjustments

    Raises:
        PhysiologicallyImplausibleValueError: If the reading cannot be real
    """
    profile = profile or get_profile(vital_sign_type.name)
    primary = float(primary)
    secondary = float(secondary) if secondary is not None else None

    check_physiological_limits(vital_sign_type, primary, secondary, profile)

    result = ValidationResult(
        vital_sign_type=vital_sign_type.name,
        value_primary=primary,
        value_secondary=secondary,
    )
    _classify_primary(vital_sign_type, result)
    secondary_abnormal = _classify_secondary(profile, result)

    if context is not None:
        _apply_context(vital_sign_type, context, result, secondary_abnormal)

    if result.adjustments:
        logger.debug(
            f"Relaxed {vital_sign_type.name} reading {primary:g}: {', '.join(result.adjustments)}"
        )
    return result


def validate_reading_sequence(
    samples: Sequence[Sample],
    vital_sign_type: VitalSignType,
    profile: Optional[TypeProfile] = None,
) -> SequenceValidationResult:
    """
    Check a run of readings for rapid swings and inconsistent measurement.

    - Rapid change: consecutive readings less than 24h apart that differ by
      more than the type's rapid change threshold
    - Inconsistency: coefficient of variation above the type's volatility
      threshold (needs at least five readings)

    Fewer than three readings produce no warnings.
    """
    profile = profile or get_profile(vital_sign_type.name)
    ordered = chronological(samples)
    result = SequenceValidationResult(
        vital_sign_type=vital_sign_type.name,
        sample_count=len(ordered),
    )
    if len(ordered) < MIN_SEQUENCE_SAMPLES:
        return result

    for previous, current in zip(ordered, ordered[1:]):
        change = abs(current.value - previous.value)
        elapsed = current.measured_at - previous.measured_at
        if change > profile.rapid_change_threshold and elapsed < RAPID_CHANGE_WINDOW:
            result.rapid_changes.append({
                "from_measurement_id": previous.measurement_id,
                "to_measurement_id": current.measurement_id,
                "change": round(change, 2),
                "hours_apart": round(elapsed.total_seconds() / 3600, 2),
            })
    if result.rapid_changes:
        result.warnings.append("Rapid changes detected in recent readings")

    if len(ordered) >= MIN_CONSISTENCY_SAMPLES:
        cv = coefficient_of_variation([s.value for s in ordered])
        result.coefficient_of_variation = cv
        if cv > profile.volatility_cv_pct:
            result.warnings.append("Inconsistent measurement patterns detected")

    return result
