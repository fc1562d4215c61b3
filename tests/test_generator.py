"""Tests for recommendation generation."""

import logging
from datetime import timedelta

import pydantic
import pytest

from vital_insights.config import Settings
from vital_insights.models.recommendations import Priority, RecommendationType
from vital_insights.models.vital_signs import ReadingContext
from vital_insights.recommendations.generator import (
    GenerationOptions,
    RecommendationGenerator,
)

from conftest import NOW, SUBJECT, daily_measurements, make_measurement


@pytest.fixture
def generator():
    return RecommendationGenerator(Settings())


@pytest.fixture
def heart_rate(catalog):
    return catalog.fetch_vital_sign_type("heart_rate")


@pytest.fixture
def blood_pressure(catalog):
    return catalog.fetch_vital_sign_type("blood_pressure")


def titles(recommendations):
    return [r.title for r in recommendations]


def rising_blood_pressure():
    """15 readings from 110 to 138 mmHg every other day over 28 days."""
    return daily_measurements(
        "blood_pressure",
        [110 + 2 * i for i in range(15)],
        start=NOW - timedelta(days=28),
        step=timedelta(days=2),
        secondary=80,
    )


class TestGenerationOptions:
    """Tests for GenerationOptions validation."""

    def test_defaults(self):
        """Test the default options cover every type."""
        options = GenerationOptions()
        assert options.lookback_days == 30
        assert options.min_readings == 3
        assert len(options.recommendation_types) == 4

    @pytest.mark.parametrize("kwargs", [
        {"lookback_days": 0},
        {"lookback_days": 366},
        {"min_readings": 0},
        {"min_readings": 51},
    ])
    def test_out_of_range(self, kwargs):
        """Test out-of-range options are rejected."""
        with pytest.raises(pydantic.ValidationError):
            GenerationOptions(**kwargs)

    def test_type_strings_are_coerced(self):
        """Test recommendation types may be given as strings."""
        options = GenerationOptions(recommendation_types=["lifestyle"])
        assert options.recommendation_types == [RecommendationType.LIFESTYLE]


class TestTrendObservations:
    """Tests for trend observation candidates."""

    def test_rising_blood_pressure(self, generator, blood_pressure):
        """Test a steady 25% rise gives one medium trend observation."""
        recs = generator.generate(SUBJECT, blood_pressure, rising_blood_pressure())

        trends = [r for r in recs if r.recommendation_type == RecommendationType.TREND_OBSERVATION]
        assert len(trends) == 1
        trend = trends[0]
        assert trend.title == "Increasing Trend in Blood Pressure"
        assert trend.priority == Priority.MEDIUM
        assert trend.evidence["trend_direction"] == "increasing"
        assert trend.evidence["concerning"] is True
        assert trend.evidence["projection"]["confidence_level"] == "high"

    def test_no_alerts_for_normal_readings(self, generator, blood_pressure):
        """Test normal readings give no health alerts."""
        recs = generator.generate(SUBJECT, blood_pressure, rising_blood_pressure())
        assert not [r for r in recs if r.recommendation_type == RecommendationType.HEALTH_ALERT]

    def test_needs_minimum_samples(self, generator, heart_rate):
        """Test no trend observation below five readings."""
        measurements = daily_measurements("heart_rate", [60, 70, 80, 90], NOW - timedelta(days=4))
        recs = generator.generate(SUBJECT, heart_rate, measurements)
        assert not [r for r in recs if r.recommendation_type == RecommendationType.TREND_OBSERVATION]


class TestHealthAlerts:
    """Tests for health alert candidates."""

    def test_critical_reading(self, generator, heart_rate):
        """Test two critical heart rates give an abnormal and a critical alert."""
        measurements = daily_measurements("heart_rate", [72, 75, 125, 130, 74], NOW - timedelta(days=5))
        recs = generator.generate(SUBJECT, heart_rate, measurements)
        by_title = {r.title: r for r in recs}

        abnormal = by_title["Abnormal Heart Rate Detected"]
        assert abnormal.priority == Priority.MEDIUM
        assert abnormal.evidence["flagged_count"] == 2

        critical = by_title["Critical Heart Rate Reading"]
        assert critical.priority == Priority.HIGH
        assert critical.action_required
        assert critical.source_measurement_id == measurements[3].id

    def test_multiple_abnormal(self, generator, heart_rate):
        """Test three or more flagged readings escalate to high priority."""
        measurements = daily_measurements("heart_rate", [130, 135, 140, 72], NOW - timedelta(days=4))
        recs = generator.generate(SUBJECT, heart_rate, measurements)
        alert = next(r for r in recs if r.title == "Multiple Abnormal Heart Rate Readings")
        assert alert.priority == Priority.HIGH
        assert alert.action_required

    def test_stored_flag_counts(self, generator, heart_rate):
        """Test a reading stored as flagged counts even if it validates normal."""
        measurements = daily_measurements("heart_rate", [72, 74, 73], NOW - timedelta(days=3))
        measurements[1] = measurements[1].model_copy(update={"is_flagged": True})
        recs = generator.generate(SUBJECT, heart_rate, measurements)
        assert "Abnormal Heart Rate Detected" in titles(recs)

    def test_context_relaxes_alerts(self, generator, heart_rate):
        """Test patient context suppresses relaxed warnings."""
        measurements = daily_measurements("heart_rate", [55, 56, 54, 55, 57], NOW - timedelta(days=5))
        options = GenerationOptions(context=ReadingContext(medications=["atenolol"]))
        recs = generator.generate(SUBJECT, heart_rate, measurements, options)
        assert "Excellent Heart Rate Control" in titles(recs)

    def test_implausible_reading_skipped(self, generator, heart_rate, caplog):
        """Test a stored implausible reading is skipped with a warning."""
        measurements = daily_measurements("heart_rate", [72, 300, 74, 73], NOW - timedelta(days=4))
        with caplog.at_level(logging.WARNING):
            snapshot = generator.build_snapshot(SUBJECT, heart_rate, measurements, GenerationOptions())
        assert snapshot.count == 3
        assert snapshot.skipped_measurement_ids == [measurements[1].id]
        assert "Skipping measurement" in caplog.text


class TestLifestyle:
    """Tests for lifestyle candidates."""

    def test_sparse_monitoring(self, generator, heart_rate):
        """Test readings ten days apart suggest more regular monitoring."""
        measurements = daily_measurements(
            "heart_rate", [72, 74, 73], NOW - timedelta(days=25), step=timedelta(days=10)
        )
        recs = generator.generate(SUBJECT, heart_rate, measurements)
        assert "Improve Regular Monitoring of Heart Rate" in titles(recs)
        gap = next(r for r in recs if r.title == "Gaps in Heart Rate Monitoring")
        assert gap.evidence["longest_gap_days"] == 10.0

    def test_regular_monitoring(self, generator, blood_pressure):
        """Test every-other-day readings need no monitoring advice."""
        recs = generator.generate(SUBJECT, blood_pressure, rising_blood_pressure())
        assert not [r for r in recs if r.recommendation_type == RecommendationType.LIFESTYLE]

    def test_high_variability(self, generator, catalog):
        """Test variable readings suggest consistent measurement conditions."""
        glucose = catalog.fetch_vital_sign_type("blood_glucose")
        measurements = daily_measurements("blood_glucose", [60, 130, 65, 135, 70, 128], NOW - timedelta(days=6))
        recs = generator.generate(SUBJECT, glucose, measurements)
        assert "Reduce Blood Glucose Variability" in titles(recs)
        assert "Variability Pattern in Blood Glucose" in titles(recs)


class TestGoalProgress:
    """Tests for goal progress candidates."""

    def test_excellent_control(self, generator, blood_pressure):
        """Test all-normal readings are excellent control."""
        recs = generator.generate(SUBJECT, blood_pressure, rising_blood_pressure())
        goal = next(r for r in recs if r.title == "Excellent Blood Pressure Control")
        assert goal.evidence["performance"] == "excellent"
        assert goal.evidence["normal_percentage"] == 100.0

    def test_improving_heart_rate(self, generator, heart_rate):
        """Test heart rate moving toward 75 bpm is an improvement."""
        measurements = daily_measurements("heart_rate", [95] * 5 + [76] * 5, NOW - timedelta(days=10))
        recs = generator.generate(SUBJECT, heart_rate, measurements)
        improving = next(r for r in recs if r.title == "Improving Heart Rate Trend")
        assert improving.evidence["first_half_average"] == 95.0
        assert improving.evidence["second_half_average"] == 76.0

    def test_rising_blood_pressure_is_not_improving(self, generator, blood_pressure):
        """Test a rising lower-is-better series is not an improvement."""
        recs = generator.generate(SUBJECT, blood_pressure, rising_blood_pressure())
        assert "Improving Blood Pressure Trend" not in titles(recs)


class TestOrchestration:
    """Tests for filtering, ordering and failure isolation."""

    def test_type_filter(self, generator, heart_rate):
        """Test only requested recommendation types are produced."""
        measurements = daily_measurements("heart_rate", [72, 75, 125, 130, 74], NOW - timedelta(days=5))
        options = GenerationOptions(recommendation_types=[RecommendationType.GOAL_PROGRESS])
        recs = generator.generate(SUBJECT, heart_rate, measurements, options)
        assert {r.recommendation_type for r in recs} <= {RecommendationType.GOAL_PROGRESS}

    def test_priority_order(self, generator, heart_rate):
        """Test candidates come out highest priority first."""
        measurements = daily_measurements("heart_rate", [72, 75, 125, 130, 74], NOW - timedelta(days=5))
        recs = generator.generate(SUBJECT, heart_rate, measurements)
        weights = [r.priority_weight for r in recs]
        assert weights == sorted(weights, reverse=True)
        assert recs[0].title == "Critical Heart Rate Reading"

    def test_candidates_are_unsaved(self, generator, blood_pressure):
        """Test candidates carry no lifecycle timestamps."""
        recs = generator.generate(SUBJECT, blood_pressure, rising_blood_pressure())
        assert all(r.created_at is None and r.expires_at is None for r in recs)
        assert all(r.subject_id == SUBJECT for r in recs)
        assert all(r.vital_sign_type_id == "blood_pressure" for r in recs)

    def test_failing_generator_is_isolated(self, generator, blood_pressure, monkeypatch, caplog):
        """Test one failing sub-generator does not stop the others."""
        def boom(snapshot):
            raise RuntimeError("boom")

        monkeypatch.setitem(generator._generators, RecommendationType.TREND_OBSERVATION, boom)
        with caplog.at_level(logging.ERROR):
            recs = generator.generate(SUBJECT, blood_pressure, rising_blood_pressure())

        assert "Excellent Blood Pressure Control" in titles(recs)
        assert not [r for r in recs if r.recommendation_type == RecommendationType.TREND_OBSERVATION]
        assert "trend_observation generator failed" in caplog.text

    def test_generate_for_types_merges(self, generator, heart_rate, blood_pressure):
        """Test several types merge into one ranked list."""
        hr = daily_measurements("heart_rate", [72, 75, 125, 130, 74], NOW - timedelta(days=5))
        recs = generator.generate_for_types(
            SUBJECT, [(blood_pressure, rising_blood_pressure()), (heart_rate, hr)]
        )
        type_ids = {r.vital_sign_type_id for r in recs}
        assert type_ids == {"blood_pressure", "heart_rate"}
        assert recs[0].priority == Priority.HIGH

    def test_empty_measurements(self, generator, heart_rate):
        """Test no measurements give no candidates except monitoring advice."""
        recs = generator.generate(SUBJECT, heart_rate, [])
        assert titles(recs) == ["Improve Regular Monitoring of Heart Rate"]

    def test_single_measurement(self, generator, heart_rate):
        """Test a single reading is handled."""
        recs = generator.generate(SUBJECT, heart_rate, [make_measurement("heart_rate", 72, NOW)])
        assert all(r.recommendation_type == RecommendationType.LIFESTYLE for r in recs)
