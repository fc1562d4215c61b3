"""Timestamped sample points consumed by the trend and pattern detectors."""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from ..clock import ensure_utc
from ..models.vital_signs import Measurement


@dataclass(frozen=True)
class Sample:
    """One primary value observed at a point in time."""
    value: float
    measured_at: datetime
    secondary: Optional[float] = None
    measurement_id: Optional[str] = None

    @classmethod
    def from_measurement(cls, measurement: Measurement) -> "Sample":
        return cls(
            value=float(measurement.value_primary),
            measured_at=measurement.measured_at,
            secondary=measurement.value_secondary,
            measurement_id=measurement.id,
        )

    @classmethod
    def at(cls, measured_at: datetime, value: float) -> "Sample":
        """Shorthand used by callers that only have (time, value) pairs."""
        return cls(value=float(value), measured_at=ensure_utc(measured_at))


def to_samples(measurements: Iterable[Measurement]) -> List[Sample]:
    """Convert measurements to samples in chronological order."""
    return chronological([Sample.from_measurement(m) for m in measurements])


def chronological(samples: Iterable[Sample]) -> List[Sample]:
    """Sort samples by measured_at (stable for equal timestamps)."""
    return sorted(samples, key=lambda s: s.measured_at)
