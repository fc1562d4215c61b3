"""
Recommendation lifecycle management.

Persists generated candidates with dedup and expiry, applies the read and
dismiss transitions, and runs the expiry and retention sweeps.

State machine:
    active -> read                  (idempotent, read_at set once)
    active | read -> dismissed      (idempotent, is_active = False)
    active | read -> expired        (sweep, when expires_at < now)
    any -> deleted                  (retention, created_at older than 90 days)
"""

import logging
import math
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterator, List, Optional, Sequence

from ..clock import Clock, SystemClock
from ..config import Settings, get_settings
from ..db.base import HealthStore, RecommendationFilter
from ..models.recommendations import (
    ExpiryClass,
    Priority,
    Recommendation,
    RecommendationStatus,
    RecommendationType,
)


@dataclass
class PersistResult:
    """Outcome of persisting a batch of candidates."""
    created: List[Recommendation] = field(default_factory=list)
    suppressed: List[Recommendation] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "created": [r.to_dict() for r in self.created],
            "suppressed": [r.to_dict() for r in self.suppressed],
        }


@dataclass
class CleanupResult:
    """Result of a cleanup operation."""

    category: str
    records_affected: int
    cutoff_date: str
    success: bool
    error: Optional[str] = None


@dataclass
class CleanupReport:
    """Complete report of all cleanup operations."""

    timestamp: str
    results: List[CleanupResult]
    subject_id: Optional[str] = None

    @property
    def total_affected(self) -> int:
        return sum(r.records_affected for r in self.results)

    @property
    def success(self) -> bool:
        return all(r.success for r in self.results)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp,
            "subject_id": self.subject_id,
            "results": [
                {
                    "category": r.category,
                    "records_affected": r.records_affected,
                    "cutoff_date": r.cutoff_date,
                    "success": r.success,
                    "error": r.error,
                }
                for r in self.results
            ],
            "total_affected": self.total_affected,
        }


@dataclass
class RecommendationPage:
    """One page of a recommendation listing."""
    items: List[Recommendation]
    total: int
    page: int
    page_size: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.total else 0

    def to_dict(self) -> dict:
        return {
            "items": [r.to_dict() for r in self.items],
            "total": self.total,
            "page": self.page,
            "page_size": self.page_size,
            "pages": self.pages,
        }


def sort_by_priority(recommendations: Sequence[Recommendation]) -> List[Recommendation]:
    """Highest priority first; newest first within a priority."""
    ordered = sorted(
        recommendations,
        key=lambda r: r.created_at.timestamp() if r.created_at else float("-inf"),
        reverse=True,
    )
    ordered.sort(key=lambda r: r.priority_weight, reverse=True)
    return ordered


@dataclass
class _SubjectLock:
    lock: threading.RLock = field(default_factory=threading.RLock)
    # Callers holding or waiting on the lock
    users: int = 0


class RecommendationLifecycleManager:
    """
    Owns every state transition of stored recommendations.

    Persisting for a subject holds that subject's lock, and the store's
    check-then-insert is itself atomic, so concurrent generation runs can not
    both insert the same deduplicated recommendation.
    """

    def __init__(
        self,
        store: HealthStore,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._settings = settings or get_settings()
        self._clock = clock or SystemClock()
        self._logger = logger or logging.getLogger(__name__)
        self._locks: Dict[str, _SubjectLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def subject_lock(self, subject_id: str) -> Iterator[None]:
        """
        Hold the lock serializing generation for one subject.

        Reentrant. The lock is dropped from the registry once no caller holds
        or waits on it.
        """
        with self._locks_guard:
            entry = self._locks.get(subject_id)
            if entry is None:
                entry = self._locks[subject_id] = _SubjectLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[subject_id]

    # =========================================================================
    # Expiry
    # =========================================================================

    def expiry_days(self, expiry_class: ExpiryClass) -> int:
        return {
            ExpiryClass.ALERT: self._settings.alert_expiry_days,
            ExpiryClass.WARNING: self._settings.warning_expiry_days,
            ExpiryClass.SUGGESTION: self._settings.suggestion_expiry_days,
            ExpiryClass.CONGRATULATION: self._settings.congratulation_expiry_days,
        }[expiry_class]

    def expires_at_for(self, recommendation: Recommendation, created_at: datetime) -> datetime:
        return created_at + timedelta(days=self.expiry_days(recommendation.expiry_class))

    # =========================================================================
    # Creation
    # =========================================================================

    def persist_candidates(
        self,
        subject_id: str,
        candidates: Sequence[Recommendation],
    ) -> PersistResult:
        """
        Persist candidates, suppressing any with an equivalent recommendation
        created within the dedup window.

        Equivalent means the same source measurement for candidates that have
        one, and the same type and title otherwise.

        Args:
            subject_id: Owner; every candidate must belong to it
            candidates: Recommendations without created_at / expires_at

        Returns:
            PersistResult listing created and suppressed candidates
        """
        result = PersistResult()
        window = self._settings.dedup_window_hours

        with self.subject_lock(subject_id):
            now = self._clock.now()
            for candidate in candidates:
                if candidate.subject_id != subject_id:
                    raise ValueError(
                        f"Recommendation {candidate.id} belongs to {candidate.subject_id}, "
                        f"not {subject_id}"
                    )
                stamped = candidate.model_copy(update={
                    "created_at": now,
                    "expires_at": self.expires_at_for(candidate, now),
                    "is_active": True,
                })
                stored, created = self._store.create_recommendation_if_absent(stamped, window, now)
                if created:
                    result.created.append(stored)
                else:
                    self._logger.debug(
                        f"Suppressed duplicate '{candidate.title}' for subject {subject_id} "
                        f"(existing {stored.id})"
                    )
                    result.suppressed.append(candidate)

        self._logger.info(
            f"Persisted {len(result.created)} recommendations for subject {subject_id} "
            f"({len(result.suppressed)} suppressed as duplicates)"
        )
        return result

    # =========================================================================
    # User transitions
    # =========================================================================

    def mark_read(self, recommendation_id: str) -> Recommendation:
        """
        Mark a recommendation as read. No-op if already read or dismissed.

        Raises:
            RecommendationNotFoundError: If it does not exist
        """
        recommendation = self._store.get_recommendation(recommendation_id)
        if recommendation.is_read or recommendation.is_dismissed:
            return recommendation
        return self._store.update_recommendation(
            recommendation_id, {"read_at": self._clock.now()}
        )

    def dismiss(self, recommendation_id: str, reason: Optional[str] = None) -> Recommendation:
        """
        Dismiss a recommendation. No-op if already dismissed.

        Raises:
            RecommendationNotFoundError: If it does not exist
        """
        recommendation = self._store.get_recommendation(recommendation_id)
        if recommendation.is_dismissed:
            return recommendation
        return self._store.update_recommendation(recommendation_id, {
            "dismissed_at": self._clock.now(),
            "dismissal_reason": reason,
            "is_active": False,
        })

    def dismiss_older_than(
        self,
        subject_id: str,
        days: int,
        reason: str = "auto_cleanup",
    ) -> int:
        """Dismiss a subject's still-active recommendations created more than ``days`` ago."""
        cutoff = self._clock.now() - timedelta(days=days)
        stale = self._store.list_recommendations(RecommendationFilter(
            subject_id=subject_id,
            is_active=True,
            created_before=cutoff,
        ))
        dismissed = 0
        for recommendation in stale:
            if not recommendation.is_dismissed:
                self.dismiss(recommendation.id, reason)
                dismissed += 1
        if dismissed:
            self._logger.info(f"Dismissed {dismissed} stale recommendations for subject {subject_id}")
        return dismissed

    # =========================================================================
    # Sweeps
    # =========================================================================

    def expire_stale(self, subject_id: Optional[str] = None) -> int:
        """Mark active recommendations past expires_at as inactive."""
        count = self._store.expire_recommendations(self._clock.now(), subject_id)
        if count:
            self._logger.info(f"Expired {count} recommendations")
        return count

    def cleanup(self, subject_id: Optional[str] = None) -> CleanupReport:
        """
        Expire stale recommendations, then delete any older than the retention period.

        Args:
            subject_id: Restrict to one subject; None sweeps everyone

        Returns:
            CleanupReport with one result per sweep
        """
        now = self._clock.now()
        results = [
            self._run_sweep(
                "expired",
                now,
                lambda: self.expire_stale(subject_id),
            ),
        ]

        cutoff = now - timedelta(days=self._settings.retention_days)
        results.append(self._run_sweep(
            "retention",
            cutoff,
            lambda: self._store.delete_recommendations(
                RecommendationFilter(subject_id=subject_id, created_before=cutoff)
            ),
        ))

        report = CleanupReport(timestamp=now.isoformat(), results=results, subject_id=subject_id)
        self._logger.info(
            f"Recommendation cleanup affected {report.total_affected} records "
            f"(subject: {subject_id or 'all'})"
        )
        return report

    def _run_sweep(self, category: str, cutoff: datetime, sweep) -> CleanupResult:
        try:
            affected = sweep()
            return CleanupResult(
                category=category,
                records_affected=affected,
                cutoff_date=cutoff.isoformat(),
                success=True,
            )
        except Exception as e:
            self._logger.error(f"Failed to run {category} recommendation sweep: {e}")
            return CleanupResult(
                category=category,
                records_affected=0,
                cutoff_date=cutoff.isoformat(),
                success=False,
                error=str(e),
            )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_active(
        self,
        subject_id: str,
        recommendation_type: Optional[RecommendationType] = None,
        limit: Optional[int] = None,
    ) -> List[Recommendation]:
        """Unexpired, undismissed recommendations (read or not), highest priority first."""
        now = self._clock.now()
        candidates = self._store.list_recommendations(RecommendationFilter(
            subject_id=subject_id,
            recommendation_type=recommendation_type,
            is_active=True,
        ))
        active = [
            r for r in candidates
            if r.status(now) in (RecommendationStatus.ACTIVE, RecommendationStatus.READ)
        ]
        ordered = sort_by_priority(active)
        return ordered[:limit] if limit is not None else ordered

    def list_recommendations(
        self,
        subject_id: str,
        recommendation_type: Optional[RecommendationType] = None,
        status: Optional[RecommendationStatus] = None,
        priority: Optional[Priority] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> RecommendationPage:
        """Paginated listing of a subject's recommendations, newest first."""
        if page < 1 or page_size < 1:
            raise ValueError("page and page_size must be positive")
        criteria = RecommendationFilter(
            subject_id=subject_id,
            recommendation_type=recommendation_type,
            priority=priority,
            status=status,
            as_of=self._clock.now(),
        )
        return RecommendationPage(
            items=self._store.list_recommendations(
                criteria, limit=page_size, offset=(page - 1) * page_size
            ),
            total=self._store.count_recommendations(criteria),
            page=page,
            page_size=page_size,
        )
