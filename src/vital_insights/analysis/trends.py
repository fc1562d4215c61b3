"""
Vital Sign Trend Detection

Derive direction, percentage change and a least-squares fit from a
chronologically ordered series, and compare periods against each other.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..exceptions import InsufficientDataError
from .profiles import DEFAULT_PROFILE, ImprovementRule, TypeProfile, get_profile
from .samples import Sample, chronological
from .statistics import (
    StatisticsSummary,
    coefficient_of_variation,
    moving_average,
    summarize,
)


# |percentage change| at or below this is "stable"
STABLE_THRESHOLD_PCT = 5.0

# Average change between periods that counts as improvement/deterioration
TIMEFRAME_CHANGE_PCT = 5.0

# Consistency scores closer than this are "similar"
CONSISTENCY_DELTA = 10.0

# Confidence damping: confidence = r_squared * n / (n + CONFIDENCE_DAMPING)
CONFIDENCE_DAMPING = 5

DEFAULT_MOVING_AVERAGE_WINDOW = 7


class TrendDirection(str, Enum):
    """Classification of a time-ordered series."""
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"
    VOLATILE = "volatile"
    INSUFFICIENT_DATA = "insufficient_data"
    NO_DATA = "no_data"

    @property
    def is_directional(self) -> bool:
        return self in (TrendDirection.INCREASING, TrendDirection.DECREASING)


class ConfidenceLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class RegressionResult:
    """Ordinary least squares fit of value against position 1..n."""
    slope: float
    intercept: float
    r_squared: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slope": round(self.slope, 4),
            "intercept": round(self.intercept, 4),
            "r_squared": round(self.r_squared, 4),
        }


@dataclass
class TrendResult:
    """Trend of one vital sign over a window. Recomputed on every request."""

    direction: TrendDirection
    sample_count: int = 0
    percentage_change: float = 0.0
    slope: float = 0.0
    intercept: float = 0.0
    r_squared: float = 0.0
    confidence: float = 0.0
    coefficient_of_variation: float = 0.0
    trend_consistency: float = 0.0
    first_value: Optional[float] = None
    last_value: Optional[float] = None
    zero_baseline: bool = False
    window_days: Optional[int] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    vital_sign_type: Optional[str] = None
    statistics: StatisticsSummary = field(default_factory=StatisticsSummary)

    @property
    def has_data(self) -> bool:
        return self.direction not in (TrendDirection.NO_DATA, TrendDirection.INSUFFICIENT_DATA)

    def exceeds_concerning_threshold(self, profile: TypeProfile) -> bool:
        """True if a directional change is at least the type's concerning magnitude."""
        if not self.direction.is_directional:
            return False
        threshold = profile.concerning_threshold(self.direction == TrendDirection.INCREASING)
        return abs(self.percentage_change) >= threshold

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "direction": self.direction.value,
            "vital_sign_type": self.vital_sign_type,
            "sample_count": self.sample_count,
            "percentage_change": round(self.percentage_change, 2),
            "slope": round(self.slope, 4),
            "intercept": round(self.intercept, 4),
            "r_squared": round(self.r_squared, 4),
            "confidence": round(self.confidence, 4),
            "coefficient_of_variation": round(self.coefficient_of_variation, 2),
            "trend_consistency": round(self.trend_consistency, 2),
            "first_value": self.first_value,
            "last_value": self.last_value,
            "zero_baseline": self.zero_baseline,
            "window_days": self.window_days,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "statistics": self.statistics.to_dict(),
        }


@dataclass
class Projection:
    """Naive N-day-ahead projection from a trend."""
    days_ahead: int
    predicted_value: float
    direction: TrendDirection
    confidence_level: ConfidenceLevel
    sample_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "days_ahead": self.days_ahead,
            "predicted_value": round(self.predicted_value, 2),
            "direction": self.direction.value,
            "confidence_level": self.confidence_level.value,
            "sample_count": self.sample_count,
        }


@dataclass
class TimeframeComparison:
    """Comparison of a recent period against a baseline period."""
    trend_comparison: str           # 'improvement', 'deterioration', 'no_change'
    average_change_pct: float
    record_count_change: int
    consistency_change: str         # 'similar', 'more_consistent', 'less_consistent'
    recent: TrendResult
    baseline: TrendResult

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trend_comparison": self.trend_comparison,
            "average_change_pct": round(self.average_change_pct, 2),
            "record_count_change": self.record_count_change,
            "consistency_change": self.consistency_change,
            "recent": self.recent.to_dict(),
            "baseline": self.baseline.to_dict(),
        }


@dataclass
class TypeProgress:
    """Per-type slice of a progress summary."""
    vital_sign_type: str
    record_count: int
    flagged_count: int
    direction: TrendDirection
    percentage_change: float
    statistics: StatisticsSummary
    latest_value: Optional[str] = None
    latest_measured_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vital_sign_type": self.vital_sign_type,
            "record_count": self.record_count,
            "flagged_count": self.flagged_count,
            "trend_direction": self.direction.value,
            "percentage_change": round(self.percentage_change, 2),
            "statistics": self.statistics.to_dict(),
            "latest_value": self.latest_value,
            "latest_measured_at": (
                self.latest_measured_at.isoformat() if self.latest_measured_at else None
            ),
        }


def linear_regression(values: Sequence[float]) -> RegressionResult:
    """
    Fit values against positions 1..n with ordinary least squares.

    A constant series has slope 0 and R² = 1 (the flat line explains it fully).

    Raises:
        InsufficientDataError: If fewer than two values are given
    """
    n = len(values)
    if n < 2:
        raise InsufficientDataError("linear_regression", required=2, actual=n)

    xs = range(1, n + 1)
    sum_x = sum(xs)
    sum_y = sum(values)
    sum_xy = sum(x * y for x, y in zip(xs, values))
    sum_x2 = sum(x * x for x in xs)

    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_x2 - sum_x * sum_x)
    intercept = (sum_y - slope * sum_x) / n

    mean_y = sum_y / n
    ss_tot = sum((y - mean_y) ** 2 for y in values)
    if ss_tot == 0:
        return RegressionResult(slope=0.0, intercept=mean_y, r_squared=1.0)

    ss_res = sum((y - (intercept + slope * x)) ** 2 for x, y in zip(xs, values))
    r_squared = max(0.0, min(1.0, 1 - ss_res / ss_tot))
    return RegressionResult(slope=slope, intercept=intercept, r_squared=r_squared)


def trend_confidence(r_squared: float, sample_count: int) -> float:
    """Confidence in [0, 1], increasing in both R² and sample count."""
    if sample_count < 2:
        return 0.0
    return r_squared * sample_count / (sample_count + CONFIDENCE_DAMPING)


def trend_consistency(values: Sequence[float]) -> float:
    """
    Percentage of adjacent deltas sharing the majority sign.

    Zero deltas count toward neither sign but stay in the denominator.
    Returns 0 for fewer than three values.
    """
    if len(values) < 3:
        return 0.0
    deltas = [b - a for a, b in zip(values, values[1:])]
    rising = sum(1 for d in deltas if d > 0)
    falling = sum(1 for d in deltas if d < 0)
    return max(rising, falling) / len(deltas) * 100


def _percentage_change(first: float, last: float) -> float:
    if first == 0:
        return 0.0
    return (last - first) / first * 100


def _classify(
    percentage_change: float,
    cv: float,
    profile: TypeProfile,
    stable_threshold_pct: float,
) -> TrendDirection:
    # Volatility overrides the monotonic test
    if cv > profile.volatility_cv_pct:
        return TrendDirection.VOLATILE
    if abs(percentage_change) <= stable_threshold_pct:
        return TrendDirection.STABLE
    return TrendDirection.INCREASING if percentage_change > 0 else TrendDirection.DECREASING


def detect_trend(
    samples: Sequence[Sample],
    profile: TypeProfile = DEFAULT_PROFILE,
    window_days: Optional[int] = None,
    stable_threshold_pct: float = STABLE_THRESHOLD_PCT,
) -> TrendResult:
    """
    Detect the trend of a sample series.

    Args:
        samples: Samples for a single vital sign (sorted here if needed)
        profile: Per-type rules (volatility threshold)
        window_days: Lookback window the samples were drawn from
        stable_threshold_pct: Largest |percentage change| still called stable

    Returns:
        TrendResult; ``no_data`` for no samples, ``insufficient_data`` for one
    """
    ordered = chronological(samples)
    values = [s.value for s in ordered]
    n = len(values)

    if n == 0:
        return TrendResult(
            direction=TrendDirection.NO_DATA,
            window_days=window_days,
            vital_sign_type=profile.name,
        )

    if n < 2:
        return TrendResult(
            direction=TrendDirection.INSUFFICIENT_DATA,
            sample_count=n,
            first_value=values[0],
            last_value=values[0],
            window_days=window_days,
            start=ordered[0].measured_at,
            end=ordered[0].measured_at,
            vital_sign_type=profile.name,
            statistics=summarize(values),
        )

    first, last = values[0], values[-1]
    percentage_change = _percentage_change(first, last)
    cv = coefficient_of_variation(values)
    regression = linear_regression(values)

    return TrendResult(
        direction=_classify(percentage_change, cv, profile, stable_threshold_pct),
        sample_count=n,
        percentage_change=percentage_change,
        slope=regression.slope,
        intercept=regression.intercept,
        r_squared=regression.r_squared,
        confidence=trend_confidence(regression.r_squared, n),
        coefficient_of_variation=cv,
        trend_consistency=trend_consistency(values),
        first_value=first,
        last_value=last,
        zero_baseline=first == 0,
        window_days=window_days,
        start=ordered[0].measured_at,
        end=ordered[-1].measured_at,
        vital_sign_type=profile.name,
        statistics=summarize(values),
    )


def _confidence_level(sample_count: int) -> ConfidenceLevel:
    if sample_count < 7:
        return ConfidenceLevel.LOW
    if sample_count < 14:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.HIGH


def project(trend: TrendResult, days_ahead: int) -> Optional[Projection]:
    """
    Project the value ``days_ahead`` into the future.

    predicted = mean + slope * days_ahead

    Returns:
        Projection, or None if the trend has fewer than two samples
    """
    if days_ahead < 1:
        raise ValueError("days_ahead must be at least 1")
    if not trend.has_data:
        return None

    return Projection(
        days_ahead=days_ahead,
        predicted_value=trend.statistics.mean + trend.slope * days_ahead,
        direction=trend.direction,
        confidence_level=_confidence_level(trend.sample_count),
        sample_count=trend.sample_count,
    )


def calculate_moving_averages(
    samples: Sequence[Sample],
    window: int = DEFAULT_MOVING_AVERAGE_WINDOW,
) -> List[Dict[str, Any]]:
    """Moving averages keyed by the timestamp of the last sample in each window."""
    ordered = chronological(samples)
    averages = moving_average([s.value for s in ordered], window)
    return [
        {
            "measured_at": ordered[i + window - 1].measured_at.isoformat(),
            "average": round(avg, 2),
        }
        for i, avg in enumerate(averages)
    ]


def _period_key(moment: datetime, group_by: str) -> str:
    if group_by == "week":
        iso = moment.isocalendar()
        return f"{iso[0]}-W{iso[1]:02d}"
    if group_by == "month":
        return moment.strftime("%Y-%m")
    return moment.strftime("%Y-%m-%d")


def calculate_min_max(samples: Sequence[Sample], group_by: str = "day") -> List[Dict[str, Any]]:
    """
    Min/max/count of values per calendar period.

    Args:
        samples: Samples in any order
        group_by: 'day', 'week' (ISO week) or 'month'; anything else means 'day'
    """
    groups: "OrderedDict[str, List[float]]" = OrderedDict()
    for sample in chronological(samples):
        groups.setdefault(_period_key(sample.measured_at, group_by), []).append(sample.value)

    return [
        {"period": period, "min": min(values), "max": max(values), "count": len(values)}
        for period, values in groups.items()
    ]


def calculate_recording_consistency(samples: Sequence[Sample], days: int) -> float:
    """Unique calendar days with a reading as a percentage of ``days``."""
    if not samples or days <= 0:
        return 0.0
    unique_days = {s.measured_at.date() for s in samples}
    return round(len(unique_days) / days * 100, 2)


def compare_timeframes(
    recent: TrendResult,
    baseline: TrendResult,
    profile: TypeProfile = DEFAULT_PROFILE,
) -> TimeframeComparison:
    """
    Compare a recent period's trend against a baseline period's.

    The average change is (recent mean - baseline mean) / baseline mean * 100.
    A change beyond ±5% is labelled improvement or deterioration using the
    profile's improvement rule.
    """
    recent_mean = recent.statistics.mean
    baseline_mean = baseline.statistics.mean

    average_change = 0.0
    if recent_mean > 0 and baseline_mean > 0:
        average_change = (recent_mean - baseline_mean) / baseline_mean * 100

    comparison = "no_change"
    if abs(average_change) > TIMEFRAME_CHANGE_PCT:
        improved = profile.is_improvement(baseline_mean, recent_mean)
        comparison = "improvement" if improved else "deterioration"

    difference = recent.trend_consistency - baseline.trend_consistency
    if abs(difference) < CONSISTENCY_DELTA:
        consistency = "similar"
    else:
        consistency = "more_consistent" if difference > 0 else "less_consistent"

    return TimeframeComparison(
        trend_comparison=comparison,
        average_change_pct=average_change,
        record_count_change=recent.sample_count - baseline.sample_count,
        consistency_change=consistency,
        recent=recent,
        baseline=baseline,
    )


def _worsening_direction(profile: TypeProfile) -> Optional[TrendDirection]:
    if profile.improvement_rule == ImprovementRule.LOWER_IS_BETTER:
        return TrendDirection.INCREASING
    if profile.improvement_rule == ImprovementRule.HIGHER_IS_BETTER:
        return TrendDirection.DECREASING
    return None


def calculate_health_score(progress: Mapping[str, TypeProgress]) -> int:
    """
    Overall 0-100 score averaged over vital sign types.

    Each type starts at 100, loses up to 50 points for the flagged share of its
    readings, and up to 20 points when it trends in its worsening direction.
    """
    if not progress:
        return 0

    total = 0.0
    for type_name, item in progress.items():
        score = 100.0
        if item.flagged_count > 0 and item.record_count > 0:
            score -= min(50.0, item.flagged_count / item.record_count * 100)

        worsening = _worsening_direction(get_profile(type_name))
        if worsening is not None and item.direction == worsening:
            score -= min(20.0, abs(item.percentage_change))

        total += max(0.0, score)

    return int(total / len(progress))
