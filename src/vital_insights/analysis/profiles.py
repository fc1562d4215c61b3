"""
Per-type analysis profiles.

Every rule that depends on the kind of vital sign (concerning trend
magnitudes, volatility thresholds, improvement direction, plausibility
limits, blood-pressure secondary bounds) lives on a TypeProfile. Profiles are
built once at import time and looked up by type name; unknown types resolve
to DEFAULT_PROFILE.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple


class ImprovementRule(str, Enum):
    """How 'getting better' is judged for a vital sign."""
    LOWER_IS_BETTER = "lower_is_better"
    HIGHER_IS_BETTER = "higher_is_better"
    CLOSER_TO_TARGET = "closer_to_target"


@dataclass(frozen=True)
class SecondaryBounds:
    """Bounds applied to the secondary value (diastolic pressure)."""
    normal_min: float
    normal_max: float
    critical_min: float
    critical_max: float
    plausible_min: float
    plausible_max: float
    # Acceptable pulse pressure (primary - secondary)
    pulse_pressure_min: float = 25.0
    pulse_pressure_max: float = 60.0

    def pulse_pressure_ok(self, primary: float, secondary: float) -> bool:
        return self.pulse_pressure_min <= primary - secondary <= self.pulse_pressure_max


@dataclass(frozen=True)
class TypeProfile:
    """Analysis rules for one vital sign type."""

    name: str

    # Percentage change that makes a trend worth flagging
    concerning_increase_pct: float = 15.0
    concerning_decrease_pct: float = 15.0

    # Coefficient of variation (%) above which a series is volatile/inconsistent
    volatility_cv_pct: float = 20.0

    improvement_rule: ImprovementRule = ImprovementRule.LOWER_IS_BETTER
    target: Optional[float] = None

    # Physiological plausibility gate for the primary value
    plausible_min: Optional[float] = None
    plausible_max: Optional[float] = None

    secondary: Optional[SecondaryBounds] = None

    # Largest expected change between readings less than 24h apart
    rapid_change_threshold: float = 10.0

    def concerning_threshold(self, increasing: bool) -> float:
        return self.concerning_increase_pct if increasing else self.concerning_decrease_pct

    def plausible_range(self) -> Tuple[Optional[float], Optional[float]]:
        return self.plausible_min, self.plausible_max

    def is_improvement(self, earlier: float, later: float) -> bool:
        """Decide whether moving from ``earlier`` to ``later`` is an improvement."""
        if self.improvement_rule == ImprovementRule.LOWER_IS_BETTER:
            return later < earlier
        if self.improvement_rule == ImprovementRule.HIGHER_IS_BETTER:
            return later >= earlier
        if self.target is None:
            return False
        return abs(later - self.target) < abs(earlier - self.target)


DEFAULT_PROFILE = TypeProfile(name="default")


BLOOD_PRESSURE_SECONDARY = SecondaryBounds(
    normal_min=60.0,
    normal_max=100.0,
    critical_min=40.0,
    critical_max=120.0,
    plausible_min=30.0,
    plausible_max=200.0,
)


PROFILES: Dict[str, TypeProfile] = {
    profile.name: profile
    for profile in (
        TypeProfile(
            name="blood_pressure",
            concerning_increase_pct=10.0,
            concerning_decrease_pct=15.0,
            volatility_cv_pct=15.0,
            improvement_rule=ImprovementRule.LOWER_IS_BETTER,
            plausible_min=50.0,
            plausible_max=300.0,
            secondary=BLOOD_PRESSURE_SECONDARY,
            rapid_change_threshold=20.0,
        ),
        TypeProfile(
            name="heart_rate",
            concerning_increase_pct=15.0,
            concerning_decrease_pct=15.0,
            volatility_cv_pct=20.0,
            improvement_rule=ImprovementRule.CLOSER_TO_TARGET,
            target=75.0,
            plausible_min=20.0,
            plausible_max=250.0,
            rapid_change_threshold=15.0,
        ),
        TypeProfile(
            name="weight",
            concerning_increase_pct=5.0,
            concerning_decrease_pct=5.0,
            volatility_cv_pct=5.0,
            improvement_rule=ImprovementRule.LOWER_IS_BETTER,
            plausible_min=20.0,
            plausible_max=300.0,
            rapid_change_threshold=2.0,
        ),
        TypeProfile(
            name="blood_glucose",
            concerning_increase_pct=20.0,
            concerning_decrease_pct=20.0,
            volatility_cv_pct=25.0,
            improvement_rule=ImprovementRule.CLOSER_TO_TARGET,
            target=90.0,
            plausible_min=20.0,
            plausible_max=600.0,
            rapid_change_threshold=50.0,
        ),
        TypeProfile(
            name="oxygen_saturation",
            concerning_increase_pct=5.0,
            concerning_decrease_pct=3.0,
            improvement_rule=ImprovementRule.HIGHER_IS_BETTER,
            plausible_min=50.0,
            plausible_max=100.0,
        ),
        TypeProfile(
            name="body_temperature",
            concerning_increase_pct=3.0,
            concerning_decrease_pct=3.0,
            improvement_rule=ImprovementRule.CLOSER_TO_TARGET,
            target=37.0,
            plausible_min=30.0,
            plausible_max=45.0,
        ),
    )
}


def get_profile(type_name: Optional[str]) -> TypeProfile:
    """Look up the profile for a type name, falling back to DEFAULT_PROFILE."""
    if not type_name:
        return DEFAULT_PROFILE
    return PROFILES.get(type_name, DEFAULT_PROFILE)
