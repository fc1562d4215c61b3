"""Pydantic models for measurements, reference types and recommendations."""

from .vital_signs import (
    MeasurementMethod,
    VitalSignType,
    Measurement,
    ReadingContext,
)
from .recommendations import (
    RecommendationType,
    Priority,
    PRIORITY_WEIGHTS,
    ExpiryClass,
    RecommendationStatus,
    Recommendation,
)

__all__ = [
    "MeasurementMethod",
    "VitalSignType",
    "Measurement",
    "ReadingContext",
    "RecommendationType",
    "Priority",
    "PRIORITY_WEIGHTS",
    "ExpiryClass",
    "RecommendationStatus",
    "Recommendation",
]
