"""
Recommendation generation.

Composes the statistics, trend, pattern and validation outputs for one
subject into typed recommendation candidates:

- health_alert: flagged and critical readings
- lifestyle: monitoring frequency, gaps and measurement variability
- trend_observation: directional or volatile trends and variability patterns
- goal_progress: share of normal readings and first-half vs second-half improvement

Each sub-generator runs in isolation; one failing is logged and does not stop
the others. Candidates are not persisted here (see RecommendationLifecycleManager).
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from ..config import Settings, get_settings
from ..exceptions import PhysiologicallyImplausibleValueError
from ..models.recommendations import Priority, Recommendation, RecommendationType
from ..models.vital_signs import Measurement, ReadingContext, VitalSignType
from ..analysis.patterns import PatternResult, PatternType, detect_patterns
from ..analysis.profiles import TypeProfile, get_profile
from ..analysis.samples import Sample, to_samples
from ..analysis.statistics import mean
from ..analysis.trends import TrendDirection, TrendResult, detect_trend, project
from ..analysis.validation import ValidationResult, validate_reading


ALL_RECOMMENDATION_TYPES: Tuple[RecommendationType, ...] = (
    RecommendationType.HEALTH_ALERT,
    RecommendationType.LIFESTYLE,
    RecommendationType.TREND_OBSERVATION,
    RecommendationType.GOAL_PROGRESS,
)

MIN_LOOKBACK_DAYS = 1
MAX_LOOKBACK_DAYS = 365
MIN_READINGS_LOWER = 1
MIN_READINGS_UPPER = 50

MULTIPLE_FLAGGED_THRESHOLD = 3
GOAL_PROGRESS_MIN_SAMPLES = 5
PROJECTION_DAYS = 7


class GenerationOptions(BaseModel):
    """Options for a generation run. Out-of-range values raise pydantic's ValidationError."""

    lookback_days: int = Field(default=30, ge=MIN_LOOKBACK_DAYS, le=MAX_LOOKBACK_DAYS)
    recommendation_types: List[RecommendationType] = Field(
        default_factory=lambda: list(ALL_RECOMMENDATION_TYPES)
    )
    min_readings: int = Field(default=3, ge=MIN_READINGS_LOWER, le=MIN_READINGS_UPPER)
    # Restrict to these vital sign type ids; None means every type with data
    vital_sign_type_ids: Optional[List[str]] = None
    context: Optional[ReadingContext] = None


@dataclass
class ReadingAssessment:
    """A measurement together with its validation outcome."""
    measurement: Measurement
    validation: ValidationResult

    @property
    def is_flagged(self) -> bool:
        return self.measurement.is_flagged or self.validation.is_flagged


@dataclass
class AnalysisSnapshot:
    """Everything the sub-generators need for one subject and vital sign type."""
    subject_id: str
    vital_sign_type: VitalSignType
    profile: TypeProfile
    assessments: List[ReadingAssessment]
    samples: List[Sample]
    trend: TrendResult
    patterns: PatternResult
    lookback_days: int
    skipped_measurement_ids: List[str] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.vital_sign_type.display_name

    @property
    def count(self) -> int:
        return len(self.assessments)

    @property
    def latest_measured_at(self) -> Optional[datetime]:
        return self.samples[-1].measured_at if self.samples else None


@dataclass
class _Candidate:
    recommendation: Recommendation
    # Time of the newest reading behind the candidate, used to break priority ties
    observed_at: Optional[datetime]


def prioritize(candidates: Iterable[_Candidate]) -> List[Recommendation]:
    """
    Collapse duplicates by (type, title), keeping the higher priority, then
    order by priority (highest first) and most recent observation.
    """
    by_key: Dict[tuple, _Candidate] = {}
    for candidate in candidates:
        key = candidate.recommendation.dedup_key()
        existing = by_key.get(key)
        if existing is None or (
            candidate.recommendation.priority_weight > existing.recommendation.priority_weight
        ):
            by_key[key] = candidate

    ordered = sorted(
        by_key.values(),
        key=lambda c: c.observed_at.timestamp() if c.observed_at else float("-inf"),
        reverse=True,
    )
    ordered.sort(key=lambda c: c.recommendation.priority_weight, reverse=True)
    return [c.recommendation for c in ordered]


class RecommendationGenerator:
    """
    Generates recommendation candidates from a snapshot of measurements.

    Usage:
        generator = RecommendationGenerator()
        recs = generator.generate("subject-1", bp_type, measurements, GenerationOptions())
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._logger = logger or logging.getLogger(__name__)
        self._generators: Dict[RecommendationType, Callable[[AnalysisSnapshot], List[_Candidate]]] = {
            RecommendationType.HEALTH_ALERT: self._generate_health_alerts,
            RecommendationType.LIFESTYLE: self._generate_lifestyle,
            RecommendationType.TREND_OBSERVATION: self._generate_trend_observations,
            RecommendationType.GOAL_PROGRESS: self._generate_goal_progress,
        }

    # =========================================================================
    # Entry points
    # =========================================================================

    def build_snapshot(
        self,
        subject_id: str,
        vital_sign_type: VitalSignType,
        measurements: Sequence[Measurement],
        options: GenerationOptions,
    ) -> AnalysisSnapshot:
        """Validate every measurement and run the trend and pattern detectors once."""
        profile = get_profile(vital_sign_type.name)
        assessments: List[ReadingAssessment] = []
        skipped: List[str] = []

        for measurement in sorted(measurements, key=lambda m: m.measured_at):
            try:
                validation = validate_reading(
                    vital_sign_type,
                    measurement.value_primary,
                    measurement.value_secondary,
                    options.context,
                    profile,
                )
            except PhysiologicallyImplausibleValueError as e:
                self._logger.warning(f"Skipping measurement {measurement.id}: {e.message}")
                skipped.append(measurement.id)
                continue
            assessments.append(ReadingAssessment(measurement, validation))

        samples = to_samples(a.measurement for a in assessments)
        return AnalysisSnapshot(
            subject_id=subject_id,
            vital_sign_type=vital_sign_type,
            profile=profile,
            assessments=assessments,
            samples=samples,
            trend=detect_trend(
                samples,
                profile,
                window_days=options.lookback_days,
                stable_threshold_pct=self._settings.stable_threshold_pct,
            ),
            patterns=detect_patterns(
                samples, self._settings.variability_threshold_pct, self._settings.bucket_timezone
            ),
            lookback_days=options.lookback_days,
            skipped_measurement_ids=skipped,
        )

    def generate(
        self,
        subject_id: str,
        vital_sign_type: VitalSignType,
        measurements: Sequence[Measurement],
        options: Optional[GenerationOptions] = None,
    ) -> List[Recommendation]:
        """
        Generate prioritized candidates for one vital sign type.

        Args:
            subject_id: Owner of the measurements
            vital_sign_type: Type of every measurement given
            measurements: Measurements within the lookback window
            options: Generation options (defaults apply when omitted)

        Returns:
            Deduplicated candidates, highest priority first
        """
        options = options or GenerationOptions()
        snapshot = self.build_snapshot(subject_id, vital_sign_type, measurements, options)
        return prioritize(self._run(snapshot, options))

    def generate_for_types(
        self,
        subject_id: str,
        measurements_by_type: Sequence[Tuple[VitalSignType, Sequence[Measurement]]],
        options: Optional[GenerationOptions] = None,
    ) -> List[Recommendation]:
        """Generate across several vital sign types and merge into one ranked list."""
        options = options or GenerationOptions()
        candidates: List[_Candidate] = []
        for vital_sign_type, measurements in measurements_by_type:
            snapshot = self.build_snapshot(subject_id, vital_sign_type, measurements, options)
            candidates.extend(self._run(snapshot, options))
        return prioritize(candidates)

    def _run(self, snapshot: AnalysisSnapshot, options: GenerationOptions) -> List[_Candidate]:
        candidates: List[_Candidate] = []
        for recommendation_type in options.recommendation_types:
            generator = self._generators[recommendation_type]
            try:
                candidates.extend(generator(snapshot))
            except Exception as e:
                self._logger.error(
                    f"{recommendation_type.value} generator failed for subject "
                    f"{snapshot.subject_id} ({snapshot.vital_sign_type.name}): {e}",
                    exc_info=True,
                )
        self._logger.debug(
            f"Generated {len(candidates)} candidates for subject {snapshot.subject_id} "
            f"({snapshot.vital_sign_type.name})"
        )
        return candidates

    def _candidate(
        self,
        snapshot: AnalysisSnapshot,
        recommendation_type: RecommendationType,
        title: str,
        message: str,
        priority: Priority,
        evidence: dict,
        action_required: bool = False,
        source_measurement_id: Optional[str] = None,
        observed_at: Optional[datetime] = None,
    ) -> _Candidate:
        evidence = dict(evidence)
        evidence.setdefault("vital_sign_type", snapshot.vital_sign_type.name)
        return _Candidate(
            recommendation=Recommendation(
                subject_id=snapshot.subject_id,
                recommendation_type=recommendation_type,
                title=title,
                message=message,
                priority=priority,
                action_required=action_required,
                evidence=evidence,
                source_measurement_id=source_measurement_id,
                vital_sign_type_id=snapshot.vital_sign_type.id,
            ),
            observed_at=observed_at or snapshot.latest_measured_at,
        )

    # =========================================================================
    # Health alerts
    # =========================================================================

    def _generate_health_alerts(self, snapshot: AnalysisSnapshot) -> List[_Candidate]:
        candidates: List[_Candidate] = []
        name = snapshot.display_name

        flagged = [a for a in snapshot.assessments if a.is_flagged]
        if flagged:
            latest = flagged[-1].measurement
            evidence = {
                "flagged_count": len(flagged),
                "total_readings": snapshot.count,
                "flagged_measurement_ids": [a.measurement.id for a in flagged],
                "latest_flagged_id": latest.id,
                "latest_flagged_value": latest.display_value,
            }
            if len(flagged) >= MULTIPLE_FLAGGED_THRESHOLD:
                candidates.append(self._candidate(
                    snapshot,
                    RecommendationType.HEALTH_ALERT,
                    title=f"Multiple Abnormal {name} Readings",
                    message=(
                        f"You have {len(flagged)} abnormal readings in the recent period. "
                        "Please consult with your healthcare provider to discuss these "
                        "concerning values."
                    ),
                    priority=Priority.HIGH,
                    action_required=True,
                    evidence=evidence,
                    observed_at=latest.measured_at,
                ))
            else:
                candidates.append(self._candidate(
                    snapshot,
                    RecommendationType.HEALTH_ALERT,
                    title=f"Abnormal {name} Detected",
                    message=(
                        "Recent readings show values outside the normal range. Monitor "
                        "closely and consider consulting with a healthcare professional."
                    ),
                    priority=Priority.MEDIUM,
                    evidence=evidence,
                    observed_at=latest.measured_at,
                ))

        critical = [a for a in snapshot.assessments if a.validation.is_critical]
        if critical:
            latest = critical[-1].measurement
            candidates.append(self._candidate(
                snapshot,
                RecommendationType.HEALTH_ALERT,
                title=f"Critical {name} Reading",
                message=(
                    f"A critical reading of {latest.display_value} was recorded on "
                    f"{latest.measured_at:%Y-%m-%d %H:%M} UTC and requires prompt "
                    "medical attention."
                ),
                priority=Priority.HIGH,
                action_required=True,
                source_measurement_id=latest.id,
                evidence={
                    "critical_count": len(critical),
                    "critical_measurement_ids": [a.measurement.id for a in critical],
                    "value": latest.value_primary,
                    "value_secondary": latest.value_secondary,
                    "measured_at": latest.measured_at.isoformat(),
                    "flag_reason": critical[-1].validation.flag_reason,
                },
                observed_at=latest.measured_at,
            ))

        return candidates

    # =========================================================================
    # Lifestyle
    # =========================================================================

    def _generate_lifestyle(self, snapshot: AnalysisSnapshot) -> List[_Candidate]:
        candidates: List[_Candidate] = []
        name = snapshot.display_name
        window = snapshot.lookback_days

        unique_days = len({s.measured_at.date() for s in snapshot.samples})
        if unique_days < window * self._settings.monitoring_coverage_ratio:
            candidates.append(self._candidate(
                snapshot,
                RecommendationType.LIFESTYLE,
                title=f"Improve Regular Monitoring of {name}",
                message=(
                    f"You recorded {name.lower()} on {unique_days} of the last {window} days. "
                    "Regular monitoring helps track your health progress better. Try to "
                    "record your vital signs at least 3 times per week for more accurate "
                    "trend analysis."
                ),
                priority=Priority.LOW,
                evidence={
                    "days_with_readings": unique_days,
                    "lookback_days": window,
                    "recommended_days": math.ceil(window * 0.5),
                },
            ))

        longest_gap = self._longest_gap_days(snapshot.samples)
        if longest_gap is not None and longest_gap > self._settings.max_recording_gap_days:
            candidates.append(self._candidate(
                snapshot,
                RecommendationType.LIFESTYLE,
                title=f"Gaps in {name} Monitoring",
                message=(
                    f"There was a gap of {longest_gap:.0f} days between {name.lower()} "
                    "readings. Consistent recording makes changes easier to spot early."
                ),
                priority=Priority.LOW,
                evidence={
                    "longest_gap_days": round(longest_gap, 1),
                    "max_gap_days": self._settings.max_recording_gap_days,
                },
            ))

        if snapshot.patterns.has(PatternType.HIGH_VARIABILITY):
            candidates.append(self._candidate(
                snapshot,
                RecommendationType.LIFESTYLE,
                title=f"Reduce {name} Variability",
                message=(
                    "Your readings show high variability. Consider taking measurements at "
                    "consistent times of day and under similar conditions for more "
                    "reliable tracking."
                ),
                priority=Priority.LOW,
                evidence={
                    "coefficient_of_variation": round(snapshot.patterns.coefficient_of_variation, 2),
                },
            ))

        return candidates

    @staticmethod
    def _longest_gap_days(samples: Sequence[Sample]) -> Optional[float]:
        if len(samples) < 2:
            return None
        return max(
            (b.measured_at - a.measured_at).total_seconds() / 86400
            for a, b in zip(samples, samples[1:])
        )

    # =========================================================================
    # Trend observations
    # =========================================================================

    def _generate_trend_observations(self, snapshot: AnalysisSnapshot) -> List[_Candidate]:
        candidates: List[_Candidate] = []
        if snapshot.count < self._settings.trend_min_samples:
            return candidates

        name = snapshot.display_name
        trend = snapshot.trend

        if trend.has_data and trend.direction != TrendDirection.STABLE:
            change = abs(trend.percentage_change)
            concerning = trend.exceeds_concerning_threshold(snapshot.profile)
            if trend.direction == TrendDirection.VOLATILE:
                message = (
                    f"Your {name} readings have been volatile over the past "
                    f"{snapshot.lookback_days} days, with a coefficient of variation of "
                    f"{trend.coefficient_of_variation:.1f}%."
                )
            else:
                message = (
                    f"Your {name} shows a {trend.direction.value} trend over the past "
                    f"{snapshot.lookback_days} days ({trend.percentage_change:+.1f}%)."
                )
                if concerning:
                    message += (
                        " A change of this size is worth discussing with your healthcare provider."
                    )

            projection = project(trend, PROJECTION_DAYS)
            candidates.append(self._candidate(
                snapshot,
                RecommendationType.TREND_OBSERVATION,
                title=f"{trend.direction.value.capitalize()} Trend in {name}",
                message=message,
                priority=(
                    Priority.MEDIUM
                    if change > self._settings.significant_change_pct
                    else Priority.LOW
                ),
                evidence={
                    "trend_direction": trend.direction.value,
                    "percentage_change": round(trend.percentage_change, 2),
                    "slope": round(trend.slope, 4),
                    "r_squared": round(trend.r_squared, 4),
                    "confidence": round(trend.confidence, 4),
                    "total_records": trend.sample_count,
                    "concerning": concerning,
                    "projection": projection.to_dict() if projection else None,
                },
            ))

        if snapshot.patterns.has(PatternType.HIGH_VARIABILITY):
            candidates.append(self._candidate(
                snapshot,
                RecommendationType.TREND_OBSERVATION,
                title=f"Variability Pattern in {name}",
                message=(
                    "Your readings show high variability patterns. Understanding these "
                    "patterns can help you better manage your health."
                ),
                priority=Priority.LOW,
                evidence={
                    "patterns_detected": [p.value for p in snapshot.patterns.patterns],
                    "insights": list(snapshot.patterns.insights),
                },
            ))

        return candidates

    # =========================================================================
    # Goal progress
    # =========================================================================

    def _generate_goal_progress(self, snapshot: AnalysisSnapshot) -> List[_Candidate]:
        candidates: List[_Candidate] = []
        total = snapshot.count
        if total < GOAL_PROGRESS_MIN_SAMPLES:
            return candidates

        name = snapshot.display_name
        normal_count = sum(1 for a in snapshot.assessments if a.validation.is_normal)
        normal_pct = normal_count / total * 100
        evidence = {
            "normal_percentage": round(normal_pct, 2),
            "normal_readings": normal_count,
            "total_readings": total,
        }

        if normal_pct >= self._settings.excellent_control_pct:
            candidates.append(self._candidate(
                snapshot,
                RecommendationType.GOAL_PROGRESS,
                title=f"Excellent {name} Control",
                message=(
                    f"Congratulations! You're maintaining excellent control of your {name} "
                    f"with {normal_pct:.0f}% of readings in the normal range. Keep up the "
                    "great work!"
                ),
                priority=Priority.LOW,
                evidence={"performance": "excellent", **evidence},
            ))
        elif normal_pct >= self._settings.good_control_pct:
            candidates.append(self._candidate(
                snapshot,
                RecommendationType.GOAL_PROGRESS,
                title=f"Good {name} Progress",
                message=(
                    f"You're making good progress with {normal_pct:.0f}% of your readings "
                    "in the normal range. Consider small adjustments to reach even better "
                    "control."
                ),
                priority=Priority.LOW,
                evidence={"performance": "good", **evidence},
            ))

        if total >= self._settings.improvement_min_samples:
            half = total // 2
            values = [s.value for s in snapshot.samples]
            first_avg = mean(values[:half])
            second_avg = mean(values[half:])
            if snapshot.profile.is_improvement(first_avg, second_avg):
                candidates.append(self._candidate(
                    snapshot,
                    RecommendationType.GOAL_PROGRESS,
                    title=f"Improving {name} Trend",
                    message=(
                        "Your recent readings show improvement compared to earlier in the "
                        "period. This positive trend indicates your health management "
                        "efforts are working!"
                    ),
                    priority=Priority.LOW,
                    evidence={
                        "performance": "improving",
                        "first_half_average": round(first_avg, 2),
                        "second_half_average": round(second_avg, 2),
                        "improvement_rule": snapshot.profile.improvement_rule.value,
                    },
                ))

        return candidates
