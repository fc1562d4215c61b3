"""
Data models for generated health recommendations.

The canonical taxonomy is health_alert / lifestyle / trend_observation /
goal_progress. The older alert / warning / suggestion / congratulation
vocabulary survives only as ``ExpiryClass``, which decides how long a
recommendation stays active.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from ..clock import ensure_utc


class RecommendationType(str, Enum):
    """What produced the recommendation."""
    HEALTH_ALERT = "health_alert"
    LIFESTYLE = "lifestyle"
    TREND_OBSERVATION = "trend_observation"
    GOAL_PROGRESS = "goal_progress"


class Priority(str, Enum):
    """Recommendation priority / severity."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


PRIORITY_WEIGHTS: Dict[Priority, int] = {
    Priority.LOW: 1,
    Priority.MEDIUM: 2,
    Priority.HIGH: 3,
    Priority.CRITICAL: 4,
}


class ExpiryClass(str, Enum):
    """Lifetime class of a recommendation."""
    ALERT = "alert"                  # +3 days
    WARNING = "warning"              # +7 days
    SUGGESTION = "suggestion"        # +14 days
    CONGRATULATION = "congratulation"  # +7 days


class RecommendationStatus(str, Enum):
    """Derived lifecycle state."""
    ACTIVE = "active"
    READ = "read"
    DISMISSED = "dismissed"
    EXPIRED = "expired"


class Recommendation(BaseModel):
    """A generated, prioritized, time-bounded advisory."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    subject_id: str
    recommendation_type: RecommendationType
    title: str
    message: str
    priority: Priority = Priority.LOW
    action_required: bool = False
    evidence: Dict[str, Any] = Field(default_factory=dict)

    source_measurement_id: Optional[str] = None
    vital_sign_type_id: Optional[str] = None

    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    dismissed_at: Optional[datetime] = None
    dismissal_reason: Optional[str] = None
    is_active: bool = True

    @field_validator("created_at", "expires_at", "read_at", "dismissed_at")
    @classmethod
    def _normalize_timestamps(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    @property
    def priority_weight(self) -> int:
        return PRIORITY_WEIGHTS[self.priority]

    @property
    def expiry_class(self) -> ExpiryClass:
        """Map the recommendation onto its lifetime class."""
        if self.recommendation_type == RecommendationType.HEALTH_ALERT:
            return ExpiryClass.ALERT if self.action_required else ExpiryClass.WARNING
        if self.recommendation_type == RecommendationType.GOAL_PROGRESS:
            return ExpiryClass.CONGRATULATION
        return ExpiryClass.SUGGESTION

    @property
    def is_read(self) -> bool:
        return self.read_at is not None

    @property
    def is_dismissed(self) -> bool:
        return self.dismissed_at is not None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now

    def status(self, now: datetime) -> RecommendationStatus:
        if self.is_dismissed:
            return RecommendationStatus.DISMISSED
        if self.is_expired(now) or not self.is_active:
            return RecommendationStatus.EXPIRED
        if self.is_read:
            return RecommendationStatus.READ
        return RecommendationStatus.ACTIVE

    def dedup_key(self) -> tuple:
        return (self.recommendation_type.value, self.title)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
