"""
Pattern detection over a vital sign sample collection.

Flags consecutive runs, high variability, IQR outliers and time-of-day skew.
Samples may arrive in any order; they are sorted by measured_at first.
"""

from dataclasses import dataclass, field
from datetime import timezone, tzinfo
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from .samples import Sample, chronological
from .statistics import coefficient_of_variation, detect_outliers, mean
from .trends import trend_consistency


MIN_PATTERN_SAMPLES = 3

# A run is reported once it spans this many rising/falling steps
MIN_RUN_LENGTH = 3

HIGH_VARIABILITY_CV_PCT = 20.0

# Time-of-day buckets, [start_hour, end_hour)
MORNING_HOURS = (6, 12)
EVENING_HOURS = (18, 24)
MIN_BUCKET_SAMPLES = 3
TIME_OF_DAY_DIFF_PCT = 10.0


class PatternType(str, Enum):
    CONSECUTIVE_INCREASING = "consecutive_increasing"
    CONSECUTIVE_DECREASING = "consecutive_decreasing"
    HIGH_VARIABILITY = "high_variability"
    OUTLIERS_DETECTED = "outliers_detected"
    MORNING_ELEVATION = "morning_elevation"
    EVENING_ELEVATION = "evening_elevation"


@dataclass
class PatternResult:
    """Patterns found in a sample collection."""
    sample_count: int
    sufficient_data: bool = True
    patterns: List[PatternType] = field(default_factory=list)
    insights: List[str] = field(default_factory=list)
    coefficient_of_variation: float = 0.0
    outliers: List[float] = field(default_factory=list)
    longest_increasing_run: int = 0
    longest_decreasing_run: int = 0
    trend_consistency: float = 0.0
    morning_average: Optional[float] = None
    evening_average: Optional[float] = None

    @property
    def outlier_count(self) -> int:
        return len(self.outliers)

    def has(self, pattern: PatternType) -> bool:
        return pattern in self.patterns

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sample_count": self.sample_count,
            "sufficient_data": self.sufficient_data,
            "patterns_detected": [p.value for p in self.patterns],
            "insights": list(self.insights),
            "statistics": {
                "coefficient_of_variation": round(self.coefficient_of_variation, 2),
                "outlier_count": self.outlier_count,
                "outliers": list(self.outliers),
                "longest_increasing_run": self.longest_increasing_run,
                "longest_decreasing_run": self.longest_decreasing_run,
                "trend_consistency": round(self.trend_consistency, 2),
                "morning_average": self.morning_average,
                "evening_average": self.evening_average,
            },
        }


def longest_run(values: Sequence[float], increasing: bool) -> int:
    """
    Length of the longest strictly monotonic run, counted in steps.

    [1, 2, 3, 4] has an increasing run of 3 (three rising steps).
    """
    longest = 0
    current = 0
    for previous, value in zip(values, values[1:]):
        moved = value > previous if increasing else value < previous
        if moved:
            current += 1
            longest = max(longest, current)
        else:
            current = 0
    return longest


def _in_hours(sample: Sample, hours: tuple, tz: tzinfo) -> bool:
    start, end = hours
    return start <= sample.measured_at.astimezone(tz).hour < end


def _time_of_day_skew(samples: Sequence[Sample], result: PatternResult, tz: tzinfo) -> None:
    morning = [s.value for s in samples if _in_hours(s, MORNING_HOURS, tz)]
    evening = [s.value for s in samples if _in_hours(s, EVENING_HOURS, tz)]
    if len(morning) < MIN_BUCKET_SAMPLES or len(evening) < MIN_BUCKET_SAMPLES:
        return

    morning_avg = mean(morning)
    evening_avg = mean(evening)
    result.morning_average = round(morning_avg, 2)
    result.evening_average = round(evening_avg, 2)

    if morning_avg <= 0:
        return
    diff_pct = abs(morning_avg - evening_avg) / morning_avg * 100
    if diff_pct <= TIME_OF_DAY_DIFF_PCT:
        return

    if morning_avg > evening_avg:
        result.patterns.append(PatternType.MORNING_ELEVATION)
        result.insights.append("Readings tend to be higher in the morning")
    else:
        result.patterns.append(PatternType.EVENING_ELEVATION)
        result.insights.append("Readings tend to be higher in the evening")


def detect_patterns(
    samples: Sequence[Sample],
    variability_threshold_pct: float = HIGH_VARIABILITY_CV_PCT,
    tz: tzinfo = timezone.utc,
) -> PatternResult:
    """
    Detect patterns in a sample collection.

    Args:
        samples: Samples in any order
        variability_threshold_pct: CV above which ``high_variability`` is flagged
        tz: Time zone the morning and evening buckets are read in

    Returns:
        PatternResult; with fewer than three samples, no patterns and
        ``sufficient_data`` False
    """
    ordered = chronological(samples)
    n = len(ordered)
    if n < MIN_PATTERN_SAMPLES:
        return PatternResult(
            sample_count=n,
            sufficient_data=False,
            insights=["Insufficient data for pattern analysis"],
        )

    values = [s.value for s in ordered]
    result = PatternResult(
        sample_count=n,
        coefficient_of_variation=coefficient_of_variation(values),
        outliers=detect_outliers(values),
        longest_increasing_run=longest_run(values, increasing=True),
        longest_decreasing_run=longest_run(values, increasing=False),
        trend_consistency=trend_consistency(values),
    )

    if result.longest_increasing_run >= MIN_RUN_LENGTH:
        result.patterns.append(PatternType.CONSECUTIVE_INCREASING)
        result.insights.append(
            f"Detected {result.longest_increasing_run} consecutive increasing readings"
        )
    if result.longest_decreasing_run >= MIN_RUN_LENGTH:
        result.patterns.append(PatternType.CONSECUTIVE_DECREASING)
        result.insights.append(
            f"Detected {result.longest_decreasing_run} consecutive decreasing readings"
        )

    if result.coefficient_of_variation > variability_threshold_pct:
        result.patterns.append(PatternType.HIGH_VARIABILITY)
        result.insights.append("High variability detected in readings")

    if result.outliers:
        result.patterns.append(PatternType.OUTLIERS_DETECTED)
        result.insights.append(f"{result.outlier_count} potential outlier(s) detected")

    _time_of_day_skew(ordered, result, tz)
    return result
