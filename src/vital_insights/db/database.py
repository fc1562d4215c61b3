"""SQLite store for vital sign measurements and recommendations."""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from ..clock import ensure_utc
from ..exceptions import (
    DatabaseError,
    NotFoundError,
    RecommendationNotFoundError,
    VitalSignTypeNotFoundError,
)
from ..models.recommendations import (
    Priority,
    Recommendation,
    RecommendationStatus,
    RecommendationType,
)
from ..models.vital_signs import Measurement, MeasurementMethod, VitalSignType
from .base import RecommendationFilter
from .catalog import DEFAULT_VITAL_SIGN_TYPES
from .schema import SCHEMA


logger = logging.getLogger(__name__)


# Columns update_recommendation may touch
UPDATABLE_RECOMMENDATION_FIELDS = frozenset({
    "title",
    "message",
    "priority",
    "action_required",
    "evidence",
    "expires_at",
    "read_at",
    "dismissed_at",
    "dismissal_reason",
    "is_active",
})


def _to_db_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Serialize as fixed-width UTC ISO-8601 so text order is time order."""
    if value is None:
        return None
    return ensure_utc(value).isoformat(timespec="microseconds")


def _from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def _to_db_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return _to_db_timestamp(value)
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (RecommendationType, Priority)):
        return value.value
    if isinstance(value, dict):
        return json.dumps(value, default=str)
    return value


class HealthDatabase:
    """
    SQLite-backed HealthStore.

    Each call opens its own connection, so one instance can be shared across
    threads. The dedup-check-then-insert path runs inside BEGIN IMMEDIATE,
    which takes the database write lock before the check.
    """

    def __init__(
        self,
        db_path: Optional[Union[str, Path]] = None,
        seed_types: bool = True,
        timeout: float = 30.0,
    ):
        """
        Initialize the database.

        Args:
            db_path: Path to SQLite database file. If None, uses the
                     configured ``db_path`` setting.
            seed_types: Insert the default vital sign types when none exist
            timeout: Seconds to wait for a locked database
        """
        if db_path is None:
            from ..config import get_settings
            db_path = get_settings().db_path
        self.db_path = Path(db_path)
        self.timeout = timeout
        self._init_db(seed_types)

    # =========================================================================
    # Connection handling
    # =========================================================================

    @contextmanager
    def _get_connection(self):
        """Get database connection with context manager."""
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise DatabaseError(f"Database operation failed: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def _immediate_transaction(self):
        """Connection holding the write lock from the first statement until commit."""
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise DatabaseError(f"Database transaction failed: {e}", operation="transaction") from e
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _init_db(self, seed_types: bool) -> None:
        """Initialize database tables."""
        with self._get_connection() as conn:
            conn.executescript(SCHEMA)
            if seed_types:
                count = conn.execute("SELECT COUNT(*) FROM vital_sign_types").fetchone()[0]
                if count == 0:
                    for vital_sign_type in DEFAULT_VITAL_SIGN_TYPES:
                        self._insert_type(conn, vital_sign_type)
                    logger.info(f"Seeded {len(DEFAULT_VITAL_SIGN_TYPES)} vital sign types")

    # =========================================================================
    # Vital sign types
    # =========================================================================

    def _insert_type(self, conn: sqlite3.Connection, vital_sign_type: VitalSignType) -> None:
        conn.execute("""
            INSERT OR REPLACE INTO vital_sign_types
            (id, name, display_name, unit_primary, unit_secondary, has_secondary_value,
             normal_range_min, normal_range_max, warning_range_min, warning_range_max,
             min_value, max_value)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            vital_sign_type.id,
            vital_sign_type.name,
            vital_sign_type.display_name,
            vital_sign_type.unit_primary,
            vital_sign_type.unit_secondary,
            1 if vital_sign_type.has_secondary_value else 0,
            vital_sign_type.normal_range_min,
            vital_sign_type.normal_range_max,
            vital_sign_type.warning_range_min,
            vital_sign_type.warning_range_max,
            vital_sign_type.min_value,
            vital_sign_type.max_value,
        ))

    def _row_to_type(self, row: sqlite3.Row) -> VitalSignType:
        return VitalSignType(
            id=row["id"],
            name=row["name"],
            display_name=row["display_name"],
            unit_primary=row["unit_primary"],
            unit_secondary=row["unit_secondary"],
            has_secondary_value=bool(row["has_secondary_value"]),
            normal_range_min=row["normal_range_min"],
            normal_range_max=row["normal_range_max"],
            warning_range_min=row["warning_range_min"],
            warning_range_max=row["warning_range_max"],
            min_value=row["min_value"],
            max_value=row["max_value"],
        )

    def upsert_vital_sign_type(self, vital_sign_type: VitalSignType) -> VitalSignType:
        """Insert or replace a vital sign type after checking its ranges."""
        vital_sign_type.check_ranges()
        with self._get_connection() as conn:
            self._insert_type(conn, vital_sign_type)
        return vital_sign_type

    def fetch_vital_sign_type(self, type_id: str) -> VitalSignType:
        """
        Get a vital sign type by id or name.

        Raises:
            VitalSignTypeNotFoundError: If no type matches
        """
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM vital_sign_types WHERE id = ? OR name = ?",
                (type_id, type_id),
            ).fetchone()
        if row is None:
            raise VitalSignTypeNotFoundError(type_id)
        return self._row_to_type(row)

    def list_vital_sign_types(self) -> List[VitalSignType]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM vital_sign_types ORDER BY name").fetchall()
        return [self._row_to_type(row) for row in rows]

    # =========================================================================
    # Measurements
    # =========================================================================

    def _row_to_measurement(self, row: sqlite3.Row) -> Measurement:
        return Measurement(
            id=row["id"],
            subject_id=row["subject_id"],
            vital_sign_type_id=row["vital_sign_type_id"],
            value_primary=row["value_primary"],
            value_secondary=row["value_secondary"],
            unit=row["unit"],
            measured_at=_from_db_timestamp(row["measured_at"]),
            measurement_method=MeasurementMethod(row["measurement_method"] or "manual"),
            device_name=row["device_name"],
            notes=row["notes"],
            is_flagged=bool(row["is_flagged"]),
            flag_reason=row["flag_reason"],
        )

    def save_measurement(self, measurement: Measurement) -> Measurement:
        """Insert a measurement."""
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO measurements
                (id, subject_id, vital_sign_type_id, value_primary, value_secondary, unit,
                 measured_at, measurement_method, device_name, notes, is_flagged, flag_reason)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                measurement.id,
                measurement.subject_id,
                measurement.vital_sign_type_id,
                measurement.value_primary,
                measurement.value_secondary,
                measurement.unit,
                _to_db_timestamp(measurement.measured_at),
                measurement.measurement_method.value,
                measurement.device_name,
                measurement.notes,
                1 if measurement.is_flagged else 0,
                measurement.flag_reason,
            ))
        return measurement

    def fetch_measurements(
        self,
        subject_id: str,
        type_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Measurement]:
        """
        Get a subject's measurements in chronological order.

        Args:
            subject_id: Owner of the measurements
            type_id: Restrict to one vital sign type
            start: Inclusive lower bound on measured_at
            end: Inclusive upper bound on measured_at
        """
        query = "SELECT * FROM measurements WHERE subject_id = ?"
        params: List[Any] = [subject_id]
        if type_id is not None:
            query += " AND vital_sign_type_id = ?"
            params.append(type_id)
        if start is not None:
            query += " AND measured_at >= ?"
            params.append(_to_db_timestamp(start))
        if end is not None:
            query += " AND measured_at <= ?"
            params.append(_to_db_timestamp(end))
        query += " ORDER BY measured_at ASC, id ASC"

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_measurement(row) for row in rows]

    def persist_measurement_flags(
        self,
        measurement_id: str,
        is_flagged: bool,
        flag_reason: Optional[str],
    ) -> None:
        """
        Update the flag fields of a measurement.

        Raises:
            NotFoundError: If the measurement does not exist
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE measurements SET is_flagged = ?, flag_reason = ? WHERE id = ?",
                (1 if is_flagged else 0, flag_reason, measurement_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Measurement", measurement_id)

    def list_subjects_with_measurements(self, since: Optional[datetime] = None) -> List[str]:
        query = "SELECT DISTINCT subject_id FROM measurements"
        params: List[Any] = []
        if since is not None:
            query += " WHERE measured_at >= ?"
            params.append(_to_db_timestamp(since))
        query += " ORDER BY subject_id"
        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [row["subject_id"] for row in rows]

    # =========================================================================
    # Recommendations
    # =========================================================================

    def _row_to_recommendation(self, row: sqlite3.Row) -> Recommendation:
        evidence = row["evidence"]
        return Recommendation(
            id=row["id"],
            subject_id=row["subject_id"],
            recommendation_type=RecommendationType(row["recommendation_type"]),
            title=row["title"],
            message=row["message"],
            priority=Priority(row["priority"]),
            action_required=bool(row["action_required"]),
            evidence=json.loads(evidence) if evidence else {},
            source_measurement_id=row["source_measurement_id"],
            vital_sign_type_id=row["vital_sign_type_id"],
            created_at=_from_db_timestamp(row["created_at"]),
            expires_at=_from_db_timestamp(row["expires_at"]),
            read_at=_from_db_timestamp(row["read_at"]),
            dismissed_at=_from_db_timestamp(row["dismissed_at"]),
            dismissal_reason=row["dismissal_reason"],
            is_active=bool(row["is_active"]),
        )

    def _insert_recommendation(self, conn: sqlite3.Connection, recommendation: Recommendation) -> None:
        if recommendation.created_at is None:
            raise ValueError("recommendation.created_at must be set before persisting")
        conn.execute("""
            INSERT INTO recommendations
            (id, subject_id, recommendation_type, title, message, priority, action_required,
             evidence, source_measurement_id, vital_sign_type_id, created_at, expires_at,
             read_at, dismissed_at, dismissal_reason, is_active)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            recommendation.id,
            recommendation.subject_id,
            recommendation.recommendation_type.value,
            recommendation.title,
            recommendation.message,
            recommendation.priority.value,
            1 if recommendation.action_required else 0,
            json.dumps(recommendation.evidence, default=str),
            recommendation.source_measurement_id,
            recommendation.vital_sign_type_id,
            _to_db_timestamp(recommendation.created_at),
            _to_db_timestamp(recommendation.expires_at),
            _to_db_timestamp(recommendation.read_at),
            _to_db_timestamp(recommendation.dismissed_at),
            recommendation.dismissal_reason,
            1 if recommendation.is_active else 0,
        ))

    def create_recommendation(self, recommendation: Recommendation) -> Recommendation:
        """Insert a recommendation (created_at must be set)."""
        with self._get_connection() as conn:
            self._insert_recommendation(conn, recommendation)
        return recommendation

    def _select_recent_by_source(
        self,
        conn: sqlite3.Connection,
        subject_id: str,
        source_measurement_id: str,
        since: datetime,
    ) -> Optional[sqlite3.Row]:
        return conn.execute("""
            SELECT * FROM recommendations
            WHERE subject_id = ? AND source_measurement_id = ? AND created_at >= ?
            ORDER BY created_at DESC LIMIT 1
        """, (subject_id, source_measurement_id, _to_db_timestamp(since))).fetchone()

    def _select_recent_by_title(
        self,
        conn: sqlite3.Connection,
        subject_id: str,
        recommendation_type: RecommendationType,
        title: str,
        since: datetime,
    ) -> Optional[sqlite3.Row]:
        return conn.execute("""
            SELECT * FROM recommendations
            WHERE subject_id = ? AND recommendation_type = ? AND title = ? AND created_at >= ?
            ORDER BY created_at DESC LIMIT 1
        """, (subject_id, recommendation_type.value, title, _to_db_timestamp(since))).fetchone()

    def _find_equivalent(
        self,
        conn: sqlite3.Connection,
        recommendation: Recommendation,
        since: datetime,
    ) -> Optional[sqlite3.Row]:
        if recommendation.source_measurement_id:
            return self._select_recent_by_source(
                conn, recommendation.subject_id, recommendation.source_measurement_id, since
            )
        return self._select_recent_by_title(
            conn,
            recommendation.subject_id,
            recommendation.recommendation_type,
            recommendation.title,
            since,
        )

    def create_recommendation_if_absent(
        self,
        recommendation: Recommendation,
        within_hours: int,
        now: datetime,
    ) -> Tuple[Recommendation, bool]:
        """
        Insert a recommendation unless an equivalent one exists in the window.

        Equivalent means the same source measurement when the recommendation
        has one, otherwise the same type and title. Check and insert share a
        single BEGIN IMMEDIATE transaction.

        Returns:
            (recommendation, True) if inserted, (existing, False) otherwise
        """
        since = now - timedelta(hours=within_hours)
        with self._immediate_transaction() as conn:
            existing = self._find_equivalent(conn, recommendation, since)
            if existing is not None:
                return self._row_to_recommendation(existing), False
            self._insert_recommendation(conn, recommendation)
        return recommendation, True

    def get_recommendation(self, recommendation_id: str) -> Recommendation:
        """
        Get a recommendation by id.

        Raises:
            RecommendationNotFoundError: If it does not exist
        """
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM recommendations WHERE id = ?", (recommendation_id,)
            ).fetchone()
        if row is None:
            raise RecommendationNotFoundError(recommendation_id)
        return self._row_to_recommendation(row)

    def update_recommendation(self, recommendation_id: str, fields: Dict[str, Any]) -> Recommendation:
        """
        Update selected fields of a recommendation.

        Raises:
            ValueError: If a field is not updatable
            RecommendationNotFoundError: If it does not exist
        """
        unknown = set(fields) - UPDATABLE_RECOMMENDATION_FIELDS
        if unknown:
            raise ValueError(f"Cannot update recommendation fields: {sorted(unknown)}")

        if fields:
            assignments = ", ".join(f"{name} = ?" for name in fields)
            params = [_to_db_value(value) for value in fields.values()]
            params.append(recommendation_id)
            with self._get_connection() as conn:
                cursor = conn.execute(
                    f"UPDATE recommendations SET {assignments} WHERE id = ?", params
                )
                if cursor.rowcount == 0:
                    raise RecommendationNotFoundError(recommendation_id)

        return self.get_recommendation(recommendation_id)

    def _build_where(self, criteria: RecommendationFilter) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []

        simple = (
            ("subject_id", criteria.subject_id),
            ("recommendation_type", criteria.recommendation_type),
            ("priority", criteria.priority),
            ("vital_sign_type_id", criteria.vital_sign_type_id),
            ("source_measurement_id", criteria.source_measurement_id),
            ("is_active", criteria.is_active),
        )
        for column, value in simple:
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(_to_db_value(value))

        if criteria.created_before is not None:
            clauses.append("created_at < ?")
            params.append(_to_db_timestamp(criteria.created_before))

        if criteria.status is not None:
            if criteria.as_of is None:
                raise ValueError("status filter requires as_of")
            as_of = _to_db_timestamp(criteria.as_of)
            if criteria.status == RecommendationStatus.DISMISSED:
                clauses.append("dismissed_at IS NOT NULL")
            elif criteria.status == RecommendationStatus.EXPIRED:
                clauses.append(
                    "dismissed_at IS NULL AND "
                    "(is_active = 0 OR (expires_at IS NOT NULL AND expires_at < ?))"
                )
                params.append(as_of)
            else:
                read_clause = (
                    "read_at IS NOT NULL"
                    if criteria.status == RecommendationStatus.READ
                    else "read_at IS NULL"
                )
                clauses.append(
                    "dismissed_at IS NULL AND is_active = 1 AND "
                    f"(expires_at IS NULL OR expires_at >= ?) AND {read_clause}"
                )
                params.append(as_of)

        where = " WHERE " + " AND ".join(f"({c})" for c in clauses) if clauses else ""
        return where, params

    def list_recommendations(
        self,
        criteria: RecommendationFilter,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Recommendation]:
        """List recommendations matching the filter, newest first."""
        where, params = self._build_where(criteria)
        query = f"SELECT * FROM recommendations{where} ORDER BY created_at DESC, id ASC"
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])
        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_recommendation(row) for row in rows]

    def count_recommendations(self, criteria: RecommendationFilter) -> int:
        where, params = self._build_where(criteria)
        with self._get_connection() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM recommendations{where}", params).fetchone()[0]

    def delete_recommendations(self, criteria: RecommendationFilter) -> int:
        """Delete recommendations matching the filter. Returns the number deleted."""
        where, params = self._build_where(criteria)
        with self._get_connection() as conn:
            cursor = conn.execute(f"DELETE FROM recommendations{where}", params)
            return cursor.rowcount

    def expire_recommendations(self, now: datetime, subject_id: Optional[str] = None) -> int:
        """Mark active, undismissed recommendations past expires_at as inactive."""
        query = """
            UPDATE recommendations SET is_active = 0
            WHERE is_active = 1 AND dismissed_at IS NULL
              AND expires_at IS NOT NULL AND expires_at < ?
        """
        params: List[Any] = [_to_db_timestamp(now)]
        if subject_id is not None:
            query += " AND subject_id = ?"
            params.append(subject_id)
        with self._get_connection() as conn:
            return conn.execute(query, params).rowcount

    def find_recent_recommendation(
        self,
        subject_id: str,
        source_record_id: str,
        within_hours: int,
        now: datetime,
    ) -> Optional[Recommendation]:
        """Most recent recommendation for the source measurement within the window."""
        with self._get_connection() as conn:
            row = self._select_recent_by_source(
                conn, subject_id, source_record_id, now - timedelta(hours=within_hours)
            )
        return self._row_to_recommendation(row) if row else None

    def find_recent_recommendation_by_title(
        self,
        subject_id: str,
        recommendation_type: RecommendationType,
        title: str,
        within_hours: int,
        now: datetime,
    ) -> Optional[Recommendation]:
        with self._get_connection() as conn:
            row = self._select_recent_by_title(
                conn, subject_id, recommendation_type, title, now - timedelta(hours=within_hours)
            )
        return self._row_to_recommendation(row) if row else None
