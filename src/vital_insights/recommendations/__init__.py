"""Recommendation generation and lifecycle management."""

from .generator import (
    ALL_RECOMMENDATION_TYPES,
    AnalysisSnapshot,
    GenerationOptions,
    ReadingAssessment,
    RecommendationGenerator,
    prioritize,
)
from .lifecycle import (
    CleanupReport,
    CleanupResult,
    PersistResult,
    RecommendationLifecycleManager,
    RecommendationPage,
    sort_by_priority,
)

__all__ = [
    "ALL_RECOMMENDATION_TYPES",
    "AnalysisSnapshot",
    "GenerationOptions",
    "ReadingAssessment",
    "RecommendationGenerator",
    "prioritize",
    "CleanupReport",
    "CleanupResult",
    "PersistResult",
    "RecommendationLifecycleManager",
    "RecommendationPage",
    "sort_by_priority",
]
