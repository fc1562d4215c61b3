"""Batch recommendation generation.

Runs generation for one subject or for every subject with readings in the
lookback window:
- Optional force mode dismisses a subject's month-old active recommendations first
- Storage errors are retried a bounded number of times per subject
- A failing subject is logged and reported without stopping the batch
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from ..exceptions import DatabaseError
from ..recommendations.generator import GenerationOptions
from .engine import GenerationOutcome, VitalInsightsEngine

logger = logging.getLogger(__name__)


FORCE_DISMISS_AFTER_DAYS = 30
FORCE_DISMISSAL_REASON = "auto_cleanup"
DEFAULT_MAX_ATTEMPTS = 3


@dataclass
class SubjectGenerationResult:
    """Outcome of generation for one subject."""

    subject_id: str
    success: bool
    created: int = 0
    suppressed: int = 0
    candidates: int = 0
    dismissed: int = 0
    attempts: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "subject_id": self.subject_id,
            "success": self.success,
            "created": self.created,
            "suppressed": self.suppressed,
            "candidates": self.candidates,
            "dismissed": self.dismissed,
            "attempts": self.attempts,
            "error": self.error,
        }


@dataclass
class GenerationReport:
    """Complete report of a batch generation run."""

    timestamp: str
    dry_run: bool
    results: List[SubjectGenerationResult] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def processed_subjects(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed_subjects(self) -> List[str]:
        return [r.subject_id for r in self.results if not r.success]

    @property
    def total_created(self) -> int:
        return sum(r.created for r in self.results)

    @property
    def total_candidates(self) -> int:
        return sum(r.candidates for r in self.results)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp,
            "dry_run": self.dry_run,
            "results": [r.to_dict() for r in self.results],
            "processed_subjects": self.processed_subjects,
            "failed_subjects": self.failed_subjects,
            "total_created": self.total_created,
            "total_candidates": self.total_candidates,
            "duration_seconds": self.duration_seconds,
        }


class GenerationJob:
    """Generates recommendations for many subjects.

    Usage:
        job = GenerationJob(engine, GenerationOptions(lookback_days=14))
        report = job.run()
    """

    def __init__(
        self,
        engine: VitalInsightsEngine,
        options: Optional[GenerationOptions] = None,
        force: bool = False,
        dry_run: bool = False,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        """Initialize the job.

        Args:
            engine: Engine to generate with.
            options: Generation options; engine defaults when omitted.
            force: Dismiss active recommendations older than 30 days before generating.
            dry_run: Generate without persisting or dismissing anything.
            max_attempts: Attempts per subject when storage fails.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._engine = engine
        self._options = options or engine.default_options()
        self._force = force
        self._dry_run = dry_run
        self._max_attempts = max_attempts

    @property
    def options(self) -> GenerationOptions:
        return self._options

    def subjects(self) -> List[str]:
        """Subjects with at least one reading inside the lookback window."""
        since = self._engine.clock.now() - timedelta(days=self._options.lookback_days)
        return self._engine.store.list_subjects_with_measurements(since)

    def run(self, subject_id: Optional[str] = None) -> GenerationReport:
        """Run generation for one subject, or for every subject with recent readings.

        Args:
            subject_id: Restrict the run to this subject.

        Returns:
            GenerationReport with one result per subject.
        """
        started = time.monotonic()
        report = GenerationReport(
            timestamp=self._engine.clock.now().isoformat(),
            dry_run=self._dry_run,
        )

        subject_ids = [subject_id] if subject_id is not None else self.subjects()
        logger.info(
            f"Starting recommendation generation for {len(subject_ids)} subjects "
            f"(lookback {self._options.lookback_days} days, force={self._force}, "
            f"dry_run={self._dry_run})"
        )

        for current in subject_ids:
            report.results.append(self._run_subject(current))

        report.duration_seconds = round(time.monotonic() - started, 2)
        if report.failed_subjects:
            logger.warning(
                f"Generation completed with errors: {report.total_created} recommendations "
                f"created, failed subjects: {report.failed_subjects}"
            )
        else:
            logger.info(
                f"Generation completed: {report.processed_subjects} subjects processed, "
                f"{report.total_created} recommendations created in {report.duration_seconds}s"
            )
        return report

    def _run_subject(self, subject_id: str) -> SubjectGenerationResult:
        result = SubjectGenerationResult(subject_id=subject_id, success=False)

        while result.attempts < self._max_attempts:
            result.attempts += 1
            try:
                if self._force and not self._dry_run:
                    result.dismissed += self._engine.lifecycle.dismiss_older_than(
                        subject_id, FORCE_DISMISS_AFTER_DAYS, FORCE_DISMISSAL_REASON
                    )
                outcome = self._engine.run_generation(subject_id, self._options, self._dry_run)
            except DatabaseError as e:
                result.error = str(e)
                logger.warning(
                    f"Storage error generating for subject {subject_id} "
                    f"(attempt {result.attempts}/{self._max_attempts}): {e}"
                )
                continue
            except Exception as e:
                result.error = str(e)
                logger.error(f"Failed to generate recommendations for subject {subject_id}: {e}")
                return result

            return self._record(result, outcome)

        logger.error(
            f"Giving up on subject {subject_id} after {result.attempts} attempts: {result.error}"
        )
        return result

    @staticmethod
    def _record(result: SubjectGenerationResult, outcome: GenerationOutcome) -> SubjectGenerationResult:
        result.success = True
        result.error = None
        result.candidates = len(outcome.candidates)
        result.created = len(outcome.recommendations) if not outcome.dry_run else 0
        result.suppressed = outcome.suppressed_count
        return result
