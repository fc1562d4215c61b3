"""Vital sign trend analysis and recommendation engine."""

__version__ = "0.1.0"

from vital_insights.clock import Clock, FrozenClock, SystemClock
from vital_insights.config import Settings, get_settings
from vital_insights.db import HealthDatabase, HealthStore, TypeCatalog
from vital_insights.models import (
    Measurement,
    MeasurementMethod,
    Priority,
    ReadingContext,
    Recommendation,
    RecommendationStatus,
    RecommendationType,
    VitalSignType,
)
from vital_insights.analysis import (
    TrendDirection,
    TrendResult,
    PatternResult,
    ValidationResult,
    WarningLevel,
    detect_trend,
    detect_patterns,
    validate_reading,
)
from vital_insights.recommendations import GenerationOptions, RecommendationGenerator
from vital_insights.services import GenerationJob, VitalInsightsEngine, get_engine

__all__ = [
    "__version__",
    "Clock",
    "FrozenClock",
    "SystemClock",
    "Settings",
    "get_settings",
    "HealthDatabase",
    "HealthStore",
    "TypeCatalog",
    "Measurement",
    "MeasurementMethod",
    "Priority",
    "ReadingContext",
    "Recommendation",
    "RecommendationStatus",
    "RecommendationType",
    "VitalSignType",
    "TrendDirection",
    "TrendResult",
    "PatternResult",
    "ValidationResult",
    "WarningLevel",
    "detect_trend",
    "detect_patterns",
    "validate_reading",
    "GenerationOptions",
    "RecommendationGenerator",
    "GenerationJob",
    "VitalInsightsEngine",
    "get_engine",
]
