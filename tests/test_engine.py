"""Tests for the engine facade."""

from datetime import timedelta

import pytest

from vital_insights.analysis.trends import TrendDirection
from vital_insights.analysis.validation import WarningLevel
from vital_insights.config import get_settings
from vital_insights.exceptions import (
    FutureMeasurementError,
    MissingSecondaryValueError,
    PhysiologicallyImplausibleValueError,
    VitalSignTypeNotFoundError,
)
from vital_insights.models.recommendations import Priority, RecommendationType
from vital_insights.models.vital_signs import ReadingContext
from vital_insights.recommendations.generator import GenerationOptions
from vital_insights.services.engine import get_engine, reset_engine

from conftest import NOW, SUBJECT, make_measurement


def record_series(engine, type_id, values, start, step, secondary=None):
    """Record one reading per step; returns the stored measurements."""
    return [
        engine.record_measurement(SUBJECT, type_id, value, secondary, measured_at=start + step * i)[0]
        for i, value in enumerate(values)
    ]


def record_rising_blood_pressure(engine):
    return record_series(
        engine,
        "blood_pressure",
        [110 + 2 * i for i in range(15)],
        NOW - timedelta(days=28),
        timedelta(days=2),
        secondary=80,
    )


def record_heart_rate_spike(engine):
    return record_series(
        engine, "heart_rate", [72, 75, 125, 130, 74], NOW - timedelta(days=5), timedelta(days=1)
    )


class TestRecordMeasurement:
    """Tests for record_measurement."""

    def test_records_normal_reading(self, engine):
        """Test a normal reading is stored unflagged with the type's unit."""
        measurement, validation = engine.record_measurement(SUBJECT, "blood_pressure", 120, 80)
        assert validation.warning_level == WarningLevel.NORMAL
        assert measurement.unit == "mmHg"
        assert measurement.measured_at == NOW
        assert not measurement.is_flagged
        assert engine.store.fetch_measurements(SUBJECT)[0].id == measurement.id

    def test_critical_reading_is_flagged(self, engine):
        """Test a critical reading is stored with its flag."""
        measurement, _ = engine.record_measurement(SUBJECT, "heart_rate", 130)
        stored = engine.store.fetch_measurements(SUBJECT)[0]
        assert measurement.is_flagged
        assert stored.is_flagged
        assert stored.flag_reason == "Critical reading outside safe range"

    def test_future_measurement(self, engine):
        """Test readings after now are rejected."""
        with pytest.raises(FutureMeasurementError):
            engine.record_measurement(SUBJECT, "heart_rate", 72, measured_at=NOW + timedelta(minutes=1))

    def test_missing_secondary(self, engine):
        """Test blood pressure requires a diastolic value."""
        with pytest.raises(MissingSecondaryValueError):
            engine.record_measurement(SUBJECT, "blood_pressure", 120)

    def test_implausible_reading_not_stored(self, engine):
        """Test implausible readings raise and are not stored."""
        with pytest.raises(PhysiologicallyImplausibleValueError):
            engine.record_measurement(SUBJECT, "heart_rate", 300)
        assert engine.store.fetch_measurements(SUBJECT) == []

    def test_unknown_type(self, engine):
        """Test unknown types raise."""
        with pytest.raises(VitalSignTypeNotFoundError):
            engine.record_measurement(SUBJECT, "respiration_rate", 16)

    def test_context_is_applied(self, engine):
        """Test patient context relaxes the stored classification."""
        _, validation = engine.record_measurement(
            SUBJECT, "heart_rate", 55, context=ReadingContext(medications=["metoprolol"])
        )
        assert validation.warning_level == WarningLevel.NORMAL

    def test_reflag_measurements(self, engine, db):
        """Test stale flags are rewritten."""
        db.save_measurement(make_measurement("heart_rate", 130, NOW - timedelta(hours=1)))
        db.save_measurement(make_measurement("heart_rate", 72, NOW - timedelta(hours=2), is_flagged=True))
        assert engine.reflag_measurements(SUBJECT, "heart_rate") == 2
        flags = [m.is_flagged for m in db.fetch_measurements(SUBJECT)]
        assert flags == [False, True]
        assert engine.reflag_measurements(SUBJECT) == 0


class TestAnalysis:
    """Tests for the analysis entry points."""

    def test_analyze_trend_uses_window(self, engine):
        """Test readings outside the window are ignored."""
        engine.record_measurement(SUBJECT, "weight", 90, measured_at=NOW - timedelta(days=60))
        record_series(engine, "weight", [70, 70.2, 70.1, 70.3, 70.2], NOW - timedelta(days=5), timedelta(days=1))
        trend = engine.analyze_trend(SUBJECT, "weight", window_days=30)
        assert trend.sample_count == 5
        assert trend.direction == TrendDirection.STABLE
        assert trend.window_days == 30

    def test_analyze_trend_no_data(self, engine):
        """Test no readings give no_data."""
        assert engine.analyze_trend(SUBJECT, "weight").direction == TrendDirection.NO_DATA

    def test_analyze_patterns(self, engine):
        """Test pattern detection over stored readings."""
        record_series(engine, "heart_rate", [70, 72, 74, 76], NOW - timedelta(days=4), timedelta(days=1))
        result = engine.analyze_patterns(SUBJECT, "heart_rate")
        assert result.longest_increasing_run == 3

    def test_validate_reading_sequence(self, engine):
        """Test stored readings are checked for rapid swings."""
        record_series(engine, "heart_rate", [70, 90, 72], NOW - timedelta(hours=3), timedelta(hours=1))
        result = engine.validate_reading_sequence(SUBJECT, "heart_rate", window_days=1)
        assert len(result.rapid_changes) == 2

    def test_moving_averages_and_min_max(self, engine):
        """Test the aggregation helpers read from storage."""
        record_series(engine, "weight", [70, 71, 72, 73], NOW - timedelta(days=4), timedelta(days=1))
        averages = engine.get_moving_averages(SUBJECT, "weight", window=2)
        assert [a["average"] for a in averages] == [70.5, 71.5, 72.5]
        groups = engine.get_min_max(SUBJECT, "weight", group_by="month")
        assert groups == [{"period": "2026-03", "min": 70.0, "max": 73.0, "count": 4}]

    def test_compare_timeframes(self, engine):
        """Test a recent drop in blood pressure is an improvement."""
        for days in (20, 15, 10):
            engine.record_measurement(SUBJECT, "blood_pressure", 140, 85, measured_at=NOW - timedelta(days=days))
        for days in (5, 3, 1):
            engine.record_measurement(SUBJECT, "blood_pressure", 120, 80, measured_at=NOW - timedelta(days=days))

        result = engine.compare_timeframes(SUBJECT, "blood_pressure", recent_days=7, baseline_days=30)
        assert result.trend_comparison == "improvement"
        assert result.recent.sample_count == 3
        assert result.baseline.sample_count == 3
        assert result.average_change_pct == pytest.approx(-100 / 7)

    def test_compare_timeframes_rejects_empty_periods(self, engine):
        """Test period lengths must be positive."""
        with pytest.raises(ValueError):
            engine.compare_timeframes(SUBJECT, "blood_pressure", recent_days=0)

    def test_progress_summary(self, engine):
        """Test per-type progress and the overall score."""
        record_series(engine, "blood_pressure", [120] * 5, NOW - timedelta(days=5), timedelta(days=1), secondary=80)
        record_series(engine, "heart_rate", [72, 130, 74], NOW - timedelta(days=3), timedelta(days=1))

        summary = engine.get_progress_summary(SUBJECT, days=30)
        assert set(summary.types) == {"blood_pressure", "heart_rate"}
        assert summary.total_records == 8
        assert summary.flagged_records == 1
        assert summary.health_score == 83
        assert summary.recording_consistency == pytest.approx(16.67)
        assert summary.types["heart_rate"].latest_value == "74 bpm"
        assert summary.to_dict()["types"]["blood_pressure"]["trend_direction"] == "stable"

    def test_progress_summary_empty(self, engine):
        """Test a subject with no readings scores 0."""
        summary = engine.get_progress_summary(SUBJECT)
        assert summary.total_records == 0
        assert summary.health_score == 0


class TestGeneration:
    """End-to-end generation through storage."""

    def test_rising_blood_pressure(self, engine):
        """Test a month of rising readings yields a medium trend observation."""
        record_rising_blood_pressure(engine)
        recs = engine.generate_recommendations(SUBJECT)

        trends = [r for r in recs if r.recommendation_type == RecommendationType.TREND_OBSERVATION]
        assert [r.title for r in trends] == ["Increasing Trend in Blood Pressure"]
        assert trends[0].priority == Priority.MEDIUM
        assert trends[0].created_at == NOW
        assert trends[0].expires_at == NOW + timedelta(days=14)

    def test_heart_rate_spike(self, engine):
        """Test critical heart rates raise a high-priority alert tied to the reading."""
        measurements = record_heart_rate_spike(engine)
        recs = engine.generate_recommendations(SUBJECT)
        critical = next(r for r in recs if r.title == "Critical Heart Rate Reading")
        assert critical.priority == Priority.HIGH
        assert critical.source_measurement_id == measurements[3].id
        assert critical.expires_at == NOW + timedelta(days=3)

    def test_second_run_creates_nothing(self, engine):
        """Test regenerating within 24 hours creates no duplicates."""
        record_heart_rate_spike(engine)
        first = engine.run_generation(SUBJECT)
        second = engine.run_generation(SUBJECT)
        assert first.persisted.created
        assert second.recommendations == []
        assert second.suppressed_count == len(first.persisted.created)
        assert len(engine.get_active_recommendations(SUBJECT)) == len(first.persisted.created)

    def test_dry_run_persists_nothing(self, engine):
        """Test dry runs return candidates without storing them."""
        record_heart_rate_spike(engine)
        outcome = engine.run_generation(SUBJECT, dry_run=True)
        assert outcome.persisted is None
        assert outcome.recommendations
        assert engine.get_active_recommendations(SUBJECT) == []

    def test_types_below_min_readings_skipped(self, engine):
        """Test types with too few readings are reported as skipped."""
        record_series(engine, "weight", [70, 71], NOW - timedelta(days=2), timedelta(days=1))
        outcome = engine.run_generation(SUBJECT)
        assert outcome.skipped_types == ["weight"]
        assert outcome.analyzed_types == []
        assert outcome.candidates == []

    def test_vital_sign_filter(self, engine):
        """Test generation can be restricted to some vital signs."""
        record_heart_rate_spike(engine)
        record_rising_blood_pressure(engine)
        options = GenerationOptions(vital_sign_type_ids=["blood_pressure"])
        outcome = engine.run_generation(SUBJECT, options)
        assert outcome.analyzed_types == ["blood_pressure"]
        assert {r.vital_sign_type_id for r in outcome.recommendations} == {"blood_pressure"}

    def test_lookback_window(self, engine, clock):
        """Test readings older than the lookback window are ignored."""
        record_heart_rate_spike(engine)
        clock.advance(days=20)
        outcome = engine.run_generation(SUBJECT, GenerationOptions(lookback_days=7))
        assert outcome.analyzed_types == []

    def test_recommendation_transitions(self, engine, clock):
        """Test read, dismiss and expiry through the facade."""
        record_heart_rate_spike(engine)
        recs = engine.generate_recommendations(SUBJECT)
        target = recs[0]

        assert engine.mark_recommendation_read(target.id).read_at == NOW
        dismissed = engine.dismiss_recommendation(target.id, "seen it")
        assert not dismissed.is_active
        assert target.id not in {r.id for r in engine.get_active_recommendations(SUBJECT)}

        clock.advance(days=15)
        assert engine.cleanup_expired_recommendations(SUBJECT) == len(recs) - 1
        assert engine.get_active_recommendations(SUBJECT) == []

    def test_list_recommendations(self, engine):
        """Test the paginated listing."""
        record_heart_rate_spike(engine)
        recs = engine.generate_recommendations(SUBJECT)
        page = engine.list_recommendations(SUBJECT, page_size=2)
        assert page.total == len(recs)
        assert len(page.items) == min(2, len(recs))
        high = engine.list_recommendations(SUBJECT, priority=Priority.HIGH)
        assert [r.title for r in high.items] == ["Critical Heart Rate Reading"]


class TestEngineSingleton:
    """Tests for get_engine and reset_engine."""

    @pytest.fixture(autouse=True)
    def isolated(self, temp_db_path, monkeypatch):
        monkeypatch.setenv("VITAL_INSIGHTS_DB_PATH", temp_db_path)
        get_settings.cache_clear()
        reset_engine()
        yield
        reset_engine()
        get_settings.cache_clear()

    def test_singleton(self, temp_db_path):
        """Test the same engine is returned until reset."""
        first = get_engine()
        assert get_engine() is first
        assert str(first.store.db_path) == temp_db_path
        reset_engine()
        assert get_engine() is not first
