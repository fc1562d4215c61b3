"""
Vital Insights engine.

The facade callers use: it wires the storage collaborator, the type catalog,
the pure analysis functions, the recommendation generator and the lifecycle
manager together behind one object.

Usage:
    engine = VitalInsightsEngine()
    engine.record_measurement("subject-1", "blood_pressure", 128, 82)
    trend = engine.analyze_trend("subject-1", "blood_pressure", window_days=30)
    recommendations = engine.generate_recommendations("subject-1")
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from ..analysis.patterns import PatternResult, detect_patterns
from ..analysis.profiles import get_profile
from ..analysis.samples import Sample, to_samples
from ..analysis.statistics import summarize
from ..analysis.trends import (
    TimeframeComparison,
    TrendResult,
    TypeProgress,
    calculate_health_score,
    calculate_min_max,
    calculate_moving_averages,
    calculate_recording_consistency,
    compare_timeframes,
    detect_trend,
)
from ..analysis.validation import (
    SequenceValidationResult,
    ValidationResult,
    validate_reading,
    validate_reading_sequence,
)
from ..clock import Clock, SystemClock, ensure_utc
from ..config import Settings, get_settings
from ..db.base import HealthStore, TypeRepository
from ..db.catalog import TypeCatalog
from ..db.database import HealthDatabase
from ..exceptions import (
    FutureMeasurementError,
    MissingSecondaryValueError,
    PhysiologicallyImplausibleValueError,
)
from ..models.recommendations import Priority, Recommendation, RecommendationStatus, RecommendationType
from ..models.vital_signs import Measurement, MeasurementMethod, ReadingContext, VitalSignType
from ..recommendations.generator import GenerationOptions, RecommendationGenerator
from ..recommendations.lifecycle import (
    CleanupReport,
    PersistResult,
    RecommendationLifecycleManager,
    RecommendationPage,
)


TypeRef = Union[str, VitalSignType]


@dataclass
class GenerationOutcome:
    """Result of one generation run for a subject."""
    subject_id: str
    dry_run: bool
    candidates: List[Recommendation] = field(default_factory=list)
    persisted: Optional[PersistResult] = None
    analyzed_types: List[str] = field(default_factory=list)
    skipped_types: List[str] = field(default_factory=list)

    @property
    def recommendations(self) -> List[Recommendation]:
        """Created recommendations, or the candidates of a dry run."""
        if self.persisted is None:
            return list(self.candidates)
        return list(self.persisted.created)

    @property
    def suppressed_count(self) -> int:
        return len(self.persisted.suppressed) if self.persisted else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "dry_run": self.dry_run,
            "recommendations": [r.to_dict() for r in self.recommendations],
            "suppressed_count": self.suppressed_count,
            "analyzed_types": self.analyzed_types,
            "skipped_types": self.skipped_types,
        }


@dataclass
class ProgressSummary:
    """Per-type progress over a period plus an overall health score."""
    subject_id: str
    period_days: int
    start: datetime
    end: datetime
    total_records: int
    flagged_records: int
    health_score: int
    recording_consistency: float
    types: Dict[str, TypeProgress] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "period_days": self.period_days,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "total_records": self.total_records,
            "flagged_records": self.flagged_records,
            "health_score": self.health_score,
            "recording_consistency": self.recording_consistency,
            "types": {name: item.to_dict() for name, item in self.types.items()},
        }


class VitalInsightsEngine:
    """
    Trend analysis and recommendation engine for one storage backend.

    Safe to share across threads: analysis is pure, generation for a subject
    is serialized by the lifecycle manager's per-subject lock.
    """

    def __init__(
        self,
        store: Optional[HealthStore] = None,
        catalog: Optional[TypeRepository] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            store: Storage collaborator; defaults to a HealthDatabase at the
                   configured path
            catalog: Vital sign type lookup; defaults to a snapshot of the store's types
            settings: Engine settings; defaults to get_settings()
            clock: Time source; defaults to the system clock
            logger: Optional logger
        """
        self._settings = settings or get_settings()
        self._store = store if store is not None else HealthDatabase(self._settings.db_path)
        self._catalog = catalog if catalog is not None else TypeCatalog.from_repository(self._store)
        self._clock = clock or SystemClock()
        self._logger = logger or logging.getLogger(__name__)
        self.generator = RecommendationGenerator(self._settings)
        self.lifecycle = RecommendationLifecycleManager(self._store, self._settings, self._clock)

    @property
    def store(self) -> HealthStore:
        return self._store

    @property
    def catalog(self) -> TypeRepository:
        return self._catalog

    @property
    def clock(self) -> Clock:
        return self._clock

    def resolve_type(self, type_ref: TypeRef) -> VitalSignType:
        """Resolve a type id or name to its VitalSignType."""
        if isinstance(type_ref, VitalSignType):
            return type_ref
        return self._catalog.fetch_vital_sign_type(type_ref)

    def _window(self, days: int) -> Tuple[datetime, datetime]:
        end = self._clock.now()
        return end - timedelta(days=days), end

    def _fetch_samples(
        self,
        subject_id: str,
        vital_sign_type: VitalSignType,
        window_days: int,
    ) -> List[Sample]:
        start, end = self._window(window_days)
        return to_samples(self._store.fetch_measurements(subject_id, vital_sign_type.id, start, end))

    # =========================================================================
    # Measurements
    # =========================================================================

    def record_measurement(
        self,
        subject_id: str,
        type_ref: TypeRef,
        value_primary: float,
        value_secondary: Optional[float] = None,
        measured_at: Optional[datetime] = None,
        measurement_method: MeasurementMethod = MeasurementMethod.MANUAL,
        device_name: Optional[str] = None,
        notes: Optional[str] = None,
        context: Optional[ReadingContext] = None,
    ) -> Tuple[Measurement, ValidationResult]:
        """
        Validate and store a new reading.

        Args:
            subject_id: Owner of the reading
            type_ref: Vital sign type id or name
            value_primary: Primary value (systolic for blood pressure)
            value_secondary: Secondary value (diastolic), required when the
                             type has one
            measured_at: When the reading was taken; defaults to now
            measurement_method: How the reading was captured
            device_name: Optional device label
            notes: Optional free text
            context: Optional patient context used to relax warnings

        Returns:
            The stored measurement (flag fields set) and its validation result

        Raises:
            FutureMeasurementError: If measured_at is after now
            MissingSecondaryValueError: If the type needs a secondary value
            PhysiologicallyImplausibleValueError: If the reading cannot be real
            VitalSignTypeNotFoundError: If the type is unknown
        """
        vital_sign_type = self.resolve_type(type_ref)
        now = self._clock.now()
        measured_at = ensure_utc(measured_at) if measured_at is not None else now

        if measured_at > now:
            raise FutureMeasurementError(measured_at.isoformat(), now.isoformat())
        if vital_sign_type.has_secondary_value and value_secondary is None:
            raise MissingSecondaryValueError(vital_sign_type.name)

        validation = validate_reading(vital_sign_type, value_primary, value_secondary, context)
        measurement = self._store.save_measurement(Measurement(
            subject_id=subject_id,
            vital_sign_type_id=vital_sign_type.id,
            value_primary=value_primary,
            value_secondary=value_secondary,
            unit=vital_sign_type.unit_primary,
            measured_at=measured_at,
            measurement_method=measurement_method,
            device_name=device_name,
            notes=notes,
            is_flagged=validation.is_flagged,
            flag_reason=validation.flag_reason,
        ))

        if validation.is_flagged:
            self._logger.info(
                f"Flagged {vital_sign_type.name} reading {measurement.display_value} for subject "
                f"{subject_id}: {validation.flag_reason}"
            )
        return measurement, validation

    def reflag_measurements(
        self,
        subject_id: str,
        type_ref: Optional[TypeRef] = None,
        context: Optional[ReadingContext] = None,
    ) -> int:
        """
        Re-run the validator over stored readings and persist changed flags.

        Useful after a subject's context (age, medications) changes.

        Returns:
            Number of measurements whose flag fields changed
        """
        types = [self.resolve_type(type_ref)] if type_ref is not None else self._catalog.list_vital_sign_types()
        changed = 0
        for vital_sign_type in types:
            for measurement in self._store.fetch_measurements(subject_id, vital_sign_type.id):
                try:
                    validation = validate_reading(
                        vital_sign_type,
                        measurement.value_primary,
                        measurement.value_secondary,
                        context,
                    )
                except PhysiologicallyImplausibleValueError as e:
                    self._logger.warning(f"Skipping measurement {measurement.id}: {e.message}")
                    continue
                if (validation.is_flagged, validation.flag_reason) != (
                    measurement.is_flagged, measurement.flag_reason
                ):
                    self._store.persist_measurement_flags(
                        measurement.id, validation.is_flagged, validation.flag_reason
                    )
                    changed += 1
        if changed:
            self._logger.info(f"Updated flags on {changed} measurements for subject {subject_id}")
        return changed

    # =========================================================================
    # Analysis
    # =========================================================================

    def analyze_trend(
        self,
        subject_id: str,
        type_ref: TypeRef,
        window_days: Optional[int] = None,
    ) -> TrendResult:
        """Trend of a subject's readings of one type over the last ``window_days``."""
        vital_sign_type = self.resolve_type(type_ref)
        window_days = window_days or self._settings.default_lookback_days
        samples = self._fetch_samples(subject_id, vital_sign_type, window_days)
        return detect_trend(
            samples,
            get_profile(vital_sign_type.name),
            window_days=window_days,
            stable_threshold_pct=self._settings.stable_threshold_pct,
        )

    def detect_patterns(self, samples: Sequence[Sample]) -> PatternResult:
        return detect_patterns(
            samples, self._settings.variability_threshold_pct, self._settings.bucket_timezone
        )

    def analyze_patterns(
        self,
        subject_id: str,
        type_ref: TypeRef,
        window_days: Optional[int] = None,
    ) -> PatternResult:
        """Patterns in a subject's readings of one type over the last ``window_days``."""
        vital_sign_type = self.resolve_type(type_ref)
        window_days = window_days or self._settings.default_lookback_days
        return self.detect_patterns(self._fetch_samples(subject_id, vital_sign_type, window_days))

    def validate_reading(
        self,
        type_ref: TypeRef,
        value_primary: float,
        value_secondary: Optional[float] = None,
        context: Optional[ReadingContext] = None,
    ) -> ValidationResult:
        """Classify a reading without storing it."""
        return validate_reading(self.resolve_type(type_ref), value_primary, value_secondary, context)

    def validate_reading_sequence(
        self,
        subject_id: str,
        type_ref: TypeRef,
        window_days: Optional[int] = None,
    ) -> SequenceValidationResult:
        """Check a subject's recent readings for rapid swings and inconsistency."""
        vital_sign_type = self.resolve_type(type_ref)
        window_days = window_days or self._settings.default_lookback_days
        return validate_reading_sequence(
            self._fetch_samples(subject_id, vital_sign_type, window_days),
            vital_sign_type,
        )

    def get_moving_averages(
        self,
        subject_id: str,
        type_ref: TypeRef,
        window_days: Optional[int] = None,
        window: int = 7,
    ) -> List[Dict[str, Any]]:
        vital_sign_type = self.resolve_type(type_ref)
        window_days = window_days or self._settings.default_lookback_days
        return calculate_moving_averages(
            self._fetch_samples(subject_id, vital_sign_type, window_days), window
        )

    def get_min_max(
        self,
        subject_id: str,
        type_ref: TypeRef,
        window_days: Optional[int] = None,
        group_by: str = "day",
    ) -> List[Dict[str, Any]]:
        vital_sign_type = self.resolve_type(type_ref)
        window_days = window_days or self._settings.default_lookback_days
        return calculate_min_max(
            self._fetch_samples(subject_id, vital_sign_type, window_days), group_by
        )

    def compare_timeframes(
        self,
        subject_id: str,
        type_ref: TypeRef,
        recent_days: int = 7,
        baseline_days: int = 30,
    ) -> TimeframeComparison:
        """
        Compare the last ``recent_days`` against the ``baseline_days`` before them.

        Args:
            subject_id: Owner of the readings
            type_ref: Vital sign type id or name
            recent_days: Length of the recent period ending now
            baseline_days: Length of the baseline period ending where the
                           recent period starts
        """
        if recent_days < 1 or baseline_days < 1:
            raise ValueError("recent_days and baseline_days must be at least 1")

        vital_sign_type = self.resolve_type(type_ref)
        profile = get_profile(vital_sign_type.name)
        now = self._clock.now()
        recent_start = now - timedelta(days=recent_days)
        baseline_start = recent_start - timedelta(days=baseline_days)

        samples = to_samples(self._store.fetch_measurements(
            subject_id, vital_sign_type.id, baseline_start, now
        ))
        recent = [s for s in samples if s.measured_at >= recent_start]
        baseline = [s for s in samples if s.measured_at < recent_start]

        stable = self._settings.stable_threshold_pct
        return compare_timeframes(
            detect_trend(recent, profile, recent_days, stable),
            detect_trend(baseline, profile, baseline_days, stable),
            profile,
        )

    def get_progress_summary(self, subject_id: str, days: int = 30) -> ProgressSummary:
        """
        Summarize a subject's readings over the last ``days`` across every type.

        A reading counts as flagged when it was stored flagged or the validator
        flags it now.
        """
        start, end = self._window(days)
        progress: Dict[str, TypeProgress] = {}
        all_samples: List[Sample] = []

        for vital_sign_type in self._catalog.list_vital_sign_types():
            measurements = self._store.fetch_measurements(subject_id, vital_sign_type.id, start, end)
            if not measurements:
                continue

            flagged = 0
            for measurement in measurements:
                try:
                    validation = validate_reading(
                        vital_sign_type, measurement.value_primary, measurement.value_secondary
                    )
                    flagged_now = validation.is_flagged
                except PhysiologicallyImplausibleValueError:
                    flagged_now = True
                if measurement.is_flagged or flagged_now:
                    flagged += 1

            samples = to_samples(measurements)
            all_samples.extend(samples)
            trend = detect_trend(
                samples,
                get_profile(vital_sign_type.name),
                window_days=days,
                stable_threshold_pct=self._settings.stable_threshold_pct,
            )
            latest = measurements[-1]
            progress[vital_sign_type.name] = TypeProgress(
                vital_sign_type=vital_sign_type.name,
                record_count=len(measurements),
                flagged_count=flagged,
                direction=trend.direction,
                percentage_change=trend.percentage_change,
                statistics=summarize([s.value for s in samples]),
                latest_value=latest.display_value,
                latest_measured_at=latest.measured_at,
            )

        return ProgressSummary(
            subject_id=subject_id,
            period_days=days,
            start=start,
            end=end,
            total_records=sum(p.record_count for p in progress.values()),
            flagged_records=sum(p.flagged_count for p in progress.values()),
            health_score=calculate_health_score(progress),
            recording_consistency=calculate_recording_consistency(all_samples, days),
            types=progress,
        )

    # =========================================================================
    # Recommendations
    # =========================================================================

    def default_options(self) -> GenerationOptions:
        return GenerationOptions(
            lookback_days=self._settings.default_lookback_days,
            min_readings=self._settings.min_readings,
        )

    def run_generation(
        self,
        subject_id: str,
        options: Optional[GenerationOptions] = None,
        dry_run: bool = False,
    ) -> GenerationOutcome:
        """
        Generate recommendations for a subject and persist the new ones.

        Only types with at least ``options.min_readings`` readings in the
        lookback window are analyzed. The subject's lock is held from the
        measurement fetch until the last insert.

        Args:
            subject_id: Subject to analyze
            options: Generation options; defaults come from settings
            dry_run: Generate candidates without persisting them

        Returns:
            GenerationOutcome with candidates and what was persisted
        """
        options = options or self.default_options()
        if options.vital_sign_type_ids:
            types = [self.resolve_type(t) for t in options.vital_sign_type_ids]
        else:
            types = self._catalog.list_vital_sign_types()

        outcome = GenerationOutcome(subject_id=subject_id, dry_run=dry_run)
        with self.lifecycle.subject_lock(subject_id):
            start, end = self._window(options.lookback_days)
            measurements_by_type: List[Tuple[VitalSignType, List[Measurement]]] = []
            for vital_sign_type in types:
                measurements = self._store.fetch_measurements(
                    subject_id, vital_sign_type.id, start, end
                )
                if len(measurements) < options.min_readings:
                    if measurements:
                        outcome.skipped_types.append(vital_sign_type.name)
                    continue
                measurements_by_type.append((vital_sign_type, measurements))
                outcome.analyzed_types.append(vital_sign_type.name)

            outcome.candidates = self.generator.generate_for_types(
                subject_id, measurements_by_type, options
            )
            if not dry_run:
                outcome.persisted = self.lifecycle.persist_candidates(subject_id, outcome.candidates)

        self._logger.info(
            f"Generated {len(outcome.candidates)} candidates for subject {subject_id} "
            f"across {len(outcome.analyzed_types)} types"
            + (" (dry run)" if dry_run else "")
        )
        return outcome

    def generate_recommendations(
        self,
        subject_id: str,
        options: Optional[GenerationOptions] = None,
        dry_run: bool = False,
    ) -> List[Recommendation]:
        """Generate and persist recommendations; returns the ones created."""
        return self.run_generation(subject_id, options, dry_run).recommendations

    def cleanup_expired_recommendations(self, subject_id: Optional[str] = None) -> int:
        """Expire stale recommendations and purge old ones; returns records affected."""
        return self.cleanup_recommendations(subject_id).total_affected

    def cleanup_recommendations(self, subject_id: Optional[str] = None) -> CleanupReport:
        return self.lifecycle.cleanup(subject_id)

    def mark_recommendation_read(self, recommendation_id: str) -> Recommendation:
        return self.lifecycle.mark_read(recommendation_id)

    def dismiss_recommendation(
        self,
        recommendation_id: str,
        reason: Optional[str] = None,
    ) -> Recommendation:
        return self.lifecycle.dismiss(recommendation_id, reason)

    def get_active_recommendations(
        self,
        subject_id: str,
        recommendation_type: Optional[RecommendationType] = None,
        limit: Optional[int] = None,
    ) -> List[Recommendation]:
        return self.lifecycle.get_active(subject_id, recommendation_type, limit)

    def list_recommendations(
        self,
        subject_id: str,
        recommendation_type: Optional[RecommendationType] = None,
        status: Optional[RecommendationStatus] = None,
        priority: Optional[Priority] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> RecommendationPage:
        return self.lifecycle.list_recommendations(
            subject_id, recommendation_type, status, priority, page, page_size
        )


# ============================================================================
# Factory function for dependency injection
# ============================================================================

_engine: Optional[VitalInsightsEngine] = None


def get_engine() -> VitalInsightsEngine:
    """Get or create the engine singleton."""
    global _engine
    if _engine is None:
        _engine = VitalInsightsEngine()
    return _engine


def reset_engine() -> None:
    """Reset the engine singleton (for testing)."""
    global _engine
    _engine = None
