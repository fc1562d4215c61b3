"""Pytest configuration and fixtures."""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

import pytest

from vital_insights.analysis.samples import Sample
from vital_insights.clock import FrozenClock
from vital_insights.config import Settings
from vital_insights.db.catalog import TypeCatalog
from vital_insights.db.database import HealthDatabase
from vital_insights.models.vital_signs import Measurement
from vital_insights.services.engine import VitalInsightsEngine


NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
SUBJECT = "subject-1"


@pytest.fixture
def clock():
    """Clock frozen at NOW."""
    return FrozenClock(NOW)


@pytest.fixture
def temp_db_path():
    """Create a temporary database file path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    yield db_path
    try:
        os.unlink(db_path)
    except OSError:
        pass


@pytest.fixture
def settings(temp_db_path):
    """Default settings pointing at the temporary database."""
    return Settings(db_path=temp_db_path)


@pytest.fixture
def db(temp_db_path):
    """Seeded SQLite store."""
    return HealthDatabase(temp_db_path)


@pytest.fixture
def catalog():
    return TypeCatalog()


@pytest.fixture
def engine(db, settings, clock):
    """Engine over the temporary database with a frozen clock."""
    return VitalInsightsEngine(store=db, settings=settings, clock=clock)


def make_measurement(
    type_id: str,
    value: float,
    measured_at: datetime,
    secondary: Optional[float] = None,
    subject_id: str = SUBJECT,
    unit: str = "unit",
    is_flagged: bool = False,
) -> Measurement:
    """Build an unsaved measurement."""
    return Measurement(
        subject_id=subject_id,
        vital_sign_type_id=type_id,
        value_primary=value,
        value_secondary=secondary,
        unit=unit,
        measured_at=measured_at,
        is_flagged=is_flagged,
    )


def daily_measurements(
    type_id: str,
    values: Sequence[float],
    start: datetime,
    step: timedelta = timedelta(days=1),
    secondary: Optional[float] = None,
    subject_id: str = SUBJECT,
) -> List[Measurement]:
    """One measurement per ``step`` starting at ``start``."""
    return [
        make_measurement(type_id, value, start + step * i, secondary, subject_id)
        for i, value in enumerate(values)
    ]


def make_samples(
    values: Sequence[float],
    start: datetime = NOW - timedelta(days=30),
    step: timedelta = timedelta(days=1),
) -> List[Sample]:
    """Evenly spaced samples."""
    return [Sample.at(start + step * i, value) for i, value in enumerate(values)]
