"""
Storage protocols.

The engine depends on these interfaces, not on SQLite. ``HealthDatabase``
is the shipped implementation.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from ..models.recommendations import (
    Priority,
    Recommendation,
    RecommendationStatus,
    RecommendationType,
)
from ..models.vital_signs import Measurement, VitalSignType


@dataclass
class RecommendationFilter:
    """Criteria for listing or deleting recommendations. Unset fields match anything."""
    subject_id: Optional[str] = None
    recommendation_type: Optional[RecommendationType] = None
    priority: Optional[Priority] = None
    vital_sign_type_id: Optional[str] = None
    source_measurement_id: Optional[str] = None
    is_active: Optional[bool] = None
    created_before: Optional[datetime] = None
    # Derived status, evaluated at ``as_of``
    status: Optional[RecommendationStatus] = None
    as_of: Optional[datetime] = None


@runtime_checkable
class TypeRepository(Protocol):
    """Read-only lookup of vital sign types."""

    def fetch_vital_sign_type(self, type_id: str) -> VitalSignType:
        """Get a type by id. Raises VitalSignTypeNotFoundError."""
        ...

    def list_vital_sign_types(self) -> List[VitalSignType]:
        """Get every configured type."""
        ...


@runtime_checkable
class HealthStore(TypeRepository, Protocol):
    """Protocol for measurement and recommendation persistence."""

    def fetch_measurements(
        self,
        subject_id: str,
        type_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Measurement]:
        """Get a subject's measurements ordered by measured_at ascending."""
        ...

    def save_measurement(self, measurement: Measurement) -> Measurement:
        """Insert a measurement."""
        ...

    def persist_measurement_flags(
        self,
        measurement_id: str,
        is_flagged: bool,
        flag_reason: Optional[str],
    ) -> None:
        """Update the validator-owned flag fields of a measurement."""
        ...

    def list_subjects_with_measurements(
        self,
        since: Optional[datetime] = None,
    ) -> List[str]:
        """Get the ids of subjects with at least one measurement since ``since``."""
        ...

    def create_recommendation(self, recommendation: Recommendation) -> Recommendation:
        """Insert a recommendation."""
        ...

    def create_recommendation_if_absent(
        self,
        recommendation: Recommendation,
        within_hours: int,
        now: datetime,
    ) -> Tuple[Recommendation, bool]:
        """
        Atomically insert unless an equivalent recommendation exists.

        Returns:
            (stored recommendation, created) where ``created`` is False when
            an existing one was found and returned instead
        """
        ...

    def update_recommendation(self, recommendation_id: str, fields: Dict[str, Any]) -> Recommendation:
        """Update fields of a recommendation. Raises RecommendationNotFoundError."""
        ...

    def get_recommendation(self, recommendation_id: str) -> Recommendation:
        """Get a recommendation by id. Raises RecommendationNotFoundError."""
        ...

    def list_recommendations(
        self,
        criteria: RecommendationFilter,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Recommendation]:
        """List matching recommendations, newest first."""
        ...

    def count_recommendations(self, criteria: RecommendationFilter) -> int:
        ...

    def delete_recommendations(self, criteria: RecommendationFilter) -> int:
        """Delete matching recommendations and return how many were removed."""
        ...

    def expire_recommendations(self, now: datetime, subject_id: Optional[str] = None) -> int:
        """Mark active recommendations past their expiry as inactive."""
        ...

    def find_recent_recommendation(
        self,
        subject_id: str,
        source_record_id: str,
        within_hours: int,
        now: datetime,
    ) -> Optional[Recommendation]:
        """Get a recommendation for the same source measurement created within the window."""
        ...

    def find_recent_recommendation_by_title(
        self,
        subject_id: str,
        recommendation_type: RecommendationType,
        title: str,
        within_hours: int,
        now: datetime,
    ) -> Optional[Recommendation]:
        """Get a recommendation with the same type and title created within the window."""
        ...

