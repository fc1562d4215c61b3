"""Engine facade and batch jobs."""

from .engine import (
    GenerationOutcome,
    ProgressSummary,
    VitalInsightsEngine,
    get_engine,
    reset_engine,
)
from .generation_job import GenerationJob, GenerationReport, SubjectGenerationResult

__all__ = [
    "GenerationOutcome",
    "ProgressSummary",
    "VitalInsightsEngine",
    "get_engine",
    "reset_engine",
    "GenerationJob",
    "GenerationReport",
    "SubjectGenerationResult",
]
