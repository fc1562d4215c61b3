"""Pure analysis functions: statistics, trends, patterns and reading validation."""

from .profiles import DEFAULT_PROFILE, ImprovementRule, TypeProfile, get_profile
from .samples import Sample, to_samples
from .statistics import StatisticsSummary, summarize
from .trends import (
    TrendDirection,
    TrendResult,
    Projection,
    TimeframeComparison,
    TypeProgress,
    detect_trend,
    project,
    compare_timeframes,
    calculate_health_score,
)
from .patterns import PatternType, PatternResult, detect_patterns
from .validation import (
    WarningLevel,
    ValidationResult,
    SequenceValidationResult,
    check_physiological_limits,
    validate_reading,
    validate_reading_sequence,
)

__all__ = [
    "DEFAULT_PROFILE",
    "ImprovementRule",
    "TypeProfile",
    "get_profile",
    "Sample",
    "to_samples",
    "StatisticsSummary",
    "summarize",
    "TrendDirection",
    "TrendResult",
    "Projection",
    "TimeframeComparison",
    "TypeProgress",
    "detect_trend",
    "project",
    "compare_timeframes",
    "calculate_health_score",
    "PatternType",
    "PatternResult",
    "detect_patterns",
    "WarningLevel",
    "ValidationResult",
    "SequenceValidationResult",
    "check_physiological_limits",
    "validate_reading",
    "validate_reading_sequence",
]
