"""
Statistics kernel for vital sign samples.

Pure, side-effect-free functions over finite numeric sequences. None of them
assume the input is ordered; outlier detection sorts internally.

Empty input:
- scalar functions (mean, median, min, max, ...) raise InsufficientDataError
- ``summarize`` returns an empty StatisticsSummary (count == 0)
"""

import math
import statistics
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..exceptions import InsufficientDataError


# IQR fence multiplier
IQR_MULTIPLIER = 1.5

# Quartile-based outlier detection needs at least this many samples
MIN_OUTLIER_SAMPLES = 4


@dataclass
class StatisticsSummary:
    """Descriptive statistics for one sample set."""
    count: int = 0
    mean: float = 0.0
    median: float = 0.0
    min: float = 0.0
    max: float = 0.0
    range: float = 0.0
    variance: float = 0.0
    standard_deviation: float = 0.0
    coefficient_of_variation: float = 0.0
    outliers: List[float] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.count == 0

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        for key in ("mean", "median", "variance", "standard_deviation", "coefficient_of_variation"):
            d[key] = round(d[key], 2)
        return d


def _require(values: Sequence[float], operation: str, minimum: int = 1) -> List[float]:
    data = [float(v) for v in values]
    if len(data) < minimum:
        raise InsufficientDataError(operation, required=minimum, actual=len(data))
    return data


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean."""
    return statistics.fmean(_require(values, "mean"))


def median(values: Sequence[float]) -> float:
    """Middle value; the average of the two middle values for an even count."""
    return float(statistics.median(_require(values, "median")))


def variance(values: Sequence[float]) -> float:
    """Sample variance (n - 1 denominator); 0 for fewer than two samples."""
    data = _require(values, "variance")
    if len(data) < 2:
        return 0.0
    return statistics.variance(data)


def standard_deviation(values: Sequence[float]) -> float:
    """Sample standard deviation; 0 for fewer than two samples."""
    data = _require(values, "standard deviation")
    if len(data) < 2:
        return 0.0
    return statistics.stdev(data)


def minimum(values: Sequence[float]) -> float:
    return min(_require(values, "minimum"))


def maximum(values: Sequence[float]) -> float:
    return max(_require(values, "maximum"))


def value_range(values: Sequence[float]) -> float:
    """max - min."""
    data = _require(values, "range")
    return max(data) - min(data)


def quartiles(values: Sequence[float]) -> Tuple[float, float]:
    """First and third quartiles taken at sorted positions floor(0.25n) and floor(0.75n).

    Raises:
        InsufficientDataError: If fewer than four samples are given
    """
    data = sorted(_require(values, "quartiles", MIN_OUTLIER_SAMPLES))
    count = len(data)
    return data[int(count * 0.25)], data[int(count * 0.75)]


def outlier_bounds(values: Sequence[float]) -> Optional[Tuple[float, float]]:
    """Return the (lower, upper) IQR fences, or None below four samples."""
    if len(values) < MIN_OUTLIER_SAMPLES:
        return None
    q1, q3 = quartiles(values)
    iqr = q3 - q1
    return q1 - IQR_MULTIPLIER * iqr, q3 + IQR_MULTIPLIER * iqr


def detect_outliers(values: Sequence[float]) -> List[float]:
    """
    Detect outliers with the interquartile-range method.

    A value is an outlier when it lies outside
    [Q1 - 1.5 * IQR, Q3 + 1.5 * IQR].

    Args:
        values: Numeric samples in any order

    Returns:
        Outlying values in ascending order; empty when fewer than 4 samples
    """
    bounds = outlier_bounds(values)
    if bounds is None:
        return []
    lower, upper = bounds
    return [float(v) for v in sorted(values) if v < lower or v > upper]


def coefficient_of_variation(values: Sequence[float]) -> float:
    """Standard deviation as a percentage of |mean|; 0 when the mean is 0."""
    avg = mean(values)
    if avg == 0:
        return 0.0
    return standard_deviation(values) / abs(avg) * 100


def moving_average(values: Sequence[float], window: int) -> List[float]:
    """
    Simple trailing moving average.

    Args:
        values: Chronologically ordered samples
        window: Number of samples per window

    Returns:
        One average per full window (len(values) - window + 1 items);
        empty if there are fewer samples than the window
    """
    if window < 1:
        raise ValueError("window must be at least 1")
    data = [float(v) for v in values]
    if len(data) < window:
        return []
    return [
        math.fsum(data[i - window + 1:i + 1]) / window
        for i in range(window - 1, len(data))
    ]


def summarize(values: Sequence[float]) -> StatisticsSummary:
    """Compute every descriptive statistic at once.

    Returns the empty summary for an empty input instead of raising.
    """
    if not values:
        return StatisticsSummary()

    data = [float(v) for v in values]
    return StatisticsSummary(
        count=len(data),
        mean=mean(data),
        median=median(data),
        min=min(data),
        max=max(data),
        range=max(data) - min(data),
        variance=variance(data),
        standard_deviation=standard_deviation(data),
        coefficient_of_variation=coefficient_of_variation(data),
        outliers=detect_outliers(data),
    )
