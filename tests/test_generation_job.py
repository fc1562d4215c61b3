"""Tests for batch recommendation generation."""

from datetime import timedelta

import pytest

from vital_insights.exceptions import DatabaseError
from vital_insights.models.recommendations import Recommendation, RecommendationType
from vital_insights.services.generation_job import GenerationJob

from conftest import NOW, SUBJECT


def seed_heart_rate(engine, subject_id, days_ago=5):
    for i, value in enumerate([72, 75, 125, 130, 74]):
        engine.record_measurement(
            subject_id, "heart_rate", value, measured_at=NOW - timedelta(days=days_ago - i)
        )


def store_old_recommendation(db, days_old):
    created_at = NOW - timedelta(days=days_old)
    return db.create_recommendation(Recommendation(
        subject_id=SUBJECT,
        recommendation_type=RecommendationType.LIFESTYLE,
        title="Old advice",
        message="message",
        created_at=created_at,
    ))


class TestGenerationJob:
    """Tests for GenerationJob."""

    def test_runs_every_recent_subject(self, engine):
        """Test every subject with readings in the window is processed."""
        seed_heart_rate(engine, SUBJECT)
        seed_heart_rate(engine, "subject-2")
        seed_heart_rate(engine, "inactive", days_ago=60)

        report = GenerationJob(engine).run()

        assert [r.subject_id for r in report.results] == [SUBJECT, "subject-2"]
        assert report.processed_subjects == 2
        assert report.failed_subjects == []
        assert report.total_created > 0
        assert report.to_dict()["processed_subjects"] == 2

    def test_single_subject(self, engine):
        """Test a run can be limited to one subject."""
        seed_heart_rate(engine, SUBJECT)
        seed_heart_rate(engine, "subject-2")
        report = GenerationJob(engine).run(SUBJECT)
        assert [r.subject_id for r in report.results] == [SUBJECT]

    def test_dry_run(self, engine):
        """Test dry runs count candidates but create nothing."""
        seed_heart_rate(engine, SUBJECT)
        report = GenerationJob(engine, dry_run=True).run()
        assert report.dry_run
        assert report.total_created == 0
        assert report.total_candidates > 0
        assert engine.get_active_recommendations(SUBJECT) == []

    def test_force_dismisses_month_old(self, engine, db):
        """Test force mode dismisses active recommendations older than 30 days."""
        seed_heart_rate(engine, SUBJECT)
        old = store_old_recommendation(db, 40)
        recent = store_old_recommendation(db, 10)

        report = GenerationJob(engine, force=True).run(SUBJECT)

        assert report.results[0].dismissed == 1
        assert db.get_recommendation(old.id).dismissal_reason == "auto_cleanup"
        assert db.get_recommendation(recent.id).dismissed_at is None

    def test_force_dry_run_dismisses_nothing(self, engine, db):
        """Test dry runs never dismiss."""
        seed_heart_rate(engine, SUBJECT)
        old = store_old_recommendation(db, 40)
        GenerationJob(engine, force=True, dry_run=True).run(SUBJECT)
        assert db.get_recommendation(old.id).dismissed_at is None

    def test_retries_storage_errors(self, engine, monkeypatch):
        """Test storage errors are retried until one attempt succeeds."""
        seed_heart_rate(engine, SUBJECT)
        real = engine.run_generation
        calls = []

        def flaky(*args, **kwargs):
            calls.append(1)
            if len(calls) < 3:
                raise DatabaseError("database is locked")
            return real(*args, **kwargs)

        monkeypatch.setattr(engine, "run_generation", flaky)
        result = GenerationJob(engine).run(SUBJECT).results[0]

        assert result.success
        assert result.attempts == 3
        assert result.error is None

    def test_gives_up_after_max_attempts(self, engine, monkeypatch):
        """Test a subject failing every attempt is reported as failed."""
        def broken(*args, **kwargs):
            raise DatabaseError("database is locked")

        monkeypatch.setattr(engine, "run_generation", broken)
        report = GenerationJob(engine, max_attempts=2).run(SUBJECT)

        assert report.failed_subjects == [SUBJECT]
        assert report.results[0].attempts == 2
        assert "database is locked" in report.results[0].error

    def test_failure_is_isolated(self, engine, monkeypatch):
        """Test one failing subject does not stop the others."""
        seed_heart_rate(engine, SUBJECT)
        seed_heart_rate(engine, "subject-2")
        real = engine.run_generation

        def selective(subject_id, *args, **kwargs):
            if subject_id == SUBJECT:
                raise RuntimeError("unexpected")
            return real(subject_id, *args, **kwargs)

        monkeypatch.setattr(engine, "run_generation", selective)
        report = GenerationJob(engine).run()

        assert report.failed_subjects == [SUBJECT]
        assert report.processed_subjects == 1
        assert report.results[0].attempts == 1

    def test_invalid_attempts(self, engine):
        """Test at least one attempt is required."""
        with pytest.raises(ValueError):
            GenerationJob(engine, max_attempts=0)
