"""
Synthesis Store
===============

Persistence for SynthesisRecord, one row per subject id.

Backends:
    - InMemorySynthesisStore: dict behind a lock (tests, local runs)
    - PostgresSynthesisStore: psycopg2, JSONB columns for nested aggregates

Both enforce the same integrity rules:
    - create() refuses a second record for the same subject id
    - save() refuses a write that would shrink the processing log
"""

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, ContextManager, Dict, List, Optional

from .models import DEFAULT_REFRESH_WINDOW, RecordStatus, SynthesisRecord

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base exception for store failures."""
    pass


class StoreIntegrityError(StoreError):
    """Write rejected: duplicate subject or shrinking processing log."""
    pass


class SynthesisStore(ABC):
    """Storage interface used by the orchestrator and the scheduler."""

    @abstractmethod
    def get(self, subject_id: int) -> Optional[SynthesisRecord]:
        pass

    @abstractmethod
    def create(self, record: SynthesisRecord) -> SynthesisRecord:
        """Insert a new record. Raises StoreIntegrityError if one exists."""
        pass

    @abstractmethod
    def save(self, record: SynthesisRecord) -> SynthesisRecord:
        """Replace an existing record. Raises StoreIntegrityError on log shrink."""
        pass

    @abstractmethod
    def find_stale(
        self,
        now: datetime,
        window: timedelta = DEFAULT_REFRESH_WINDOW,
        limit: int = 10,
    ) -> List[SynthesisRecord]:
        """Records needing refresh, highest popularity first."""
        pass

    @abstractmethod
    def count_by_status(self) -> Dict[str, int]:
        pass

    def ping(self) -> bool:
        return True


class InMemorySynthesisStore(SynthesisStore):

    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[int, SynthesisRecord] = {}

    def get(self, subject_id: int) -> Optional[SynthesisRecord]:
        with self._lock:
            return self._records.get(subject_id)

    def create(self, record: SynthesisRecord) -> SynthesisRecord:
        with self._lock:
            if record.subject_id in self._records:
                raise StoreIntegrityError(f"Synthesis for {record.subject_id} already exists")
            self._records[record.subject_id] = record
            return record

    def save(self, record: SynthesisRecord) -> SynthesisRecord:
        with self._lock:
            current = self._records.get(record.subject_id)
            if current is None:
                raise StoreError(f"No synthesis for {record.subject_id}")
            if len(record.processing_log) < len(current.processing_log):
                raise StoreIntegrityError(
                    f"Refusing to shrink processing log for {record.subject_id} "
                    f"({len(current.processing_log)} -> {len(record.processing_log)})"
                )
            self._records[record.subject_id] = record
            return record

    def find_stale(
        self,
        now: datetime,
        window: timedelta = DEFAULT_REFRESH_WINDOW,
        limit: int = 10,
    ) -> List[SynthesisRecord]:
        with self._lock:
            stale = [r for r in self._records.values() if r.needs_refresh(now, window)]
        stale.sort(key=lambda r: (-r.popularity_score, r.last_updated or datetime.min.replace(tzinfo=now.tzinfo)))
        return stale[:limit]

    def count_by_status(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in RecordStatus}
        with self._lock:
            for record in self._records.values():
                counts[record.status.value] += 1
        return counts

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


# =============================================================================
# POSTGRES
# =============================================================================

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS review_synthesis (
    subject_id        BIGINT PRIMARY KEY,
    title             TEXT NOT NULL DEFAULT '',
    year              INTEGER,
    summary           TEXT NOT NULL,
    sentiment         JSONB NOT NULL,
    aspects           JSONB NOT NULL,
    themes            JSONB NOT NULL DEFAULT '[]'::jsonb,
    ratings           JSONB NOT NULL,
    review_count      INTEGER NOT NULL DEFAULT 0,
    sources           JSONB NOT NULL,
    featured_reviews  JSONB NOT NULL DEFAULT '[]'::jsonb,
    status            TEXT NOT NULL DEFAULT 'pending'
                      CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
    processing_log    JSONB NOT NULL DEFAULT '[]'::jsonb,
    last_updated      TIMESTAMPTZ,
    needs_update      BOOLEAN NOT NULL DEFAULT FALSE,
    popularity_score  INTEGER NOT NULL DEFAULT 0,
    created_at        TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_review_synthesis_status
    ON review_synthesis (status);
CREATE INDEX IF NOT EXISTS idx_review_synthesis_needs_update
    ON review_synthesis (needs_update);
CREATE INDEX IF NOT EXISTS idx_review_synthesis_popularity
    ON review_synthesis (popularity_score DESC);
CREATE INDEX IF NOT EXISTS idx_review_synthesis_status_needs_update
    ON review_synthesis (status, needs_update);
CREATE INDEX IF NOT EXISTS idx_review_synthesis_popularity_updated
    ON review_synthesis (popularity_score DESC, last_updated);
"""

_COLUMNS = (
    "subject_id", "title", "year", "summary", "sentiment", "aspects", "themes",
    "ratings", "review_count", "sources", "featured_reviews", "status",
    "processing_log", "last_updated", "needs_update", "popularity_score", "created_at",
)
_JSON_COLUMNS = frozenset({
    "sentiment", "aspects", "themes", "ratings", "sources", "featured_reviews", "processing_log",
})
_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM review_synthesis"


def _default_connection():
    from ..api.db import get_connection
    return get_connection()


class PostgresSynthesisStore(SynthesisStore):
    """
    PostgreSQL-backed store.

    The processing log guard is enforced in SQL so concurrent writers
    cannot shrink the log either.
    """

    def __init__(self, connection_factory: Callable[[], ContextManager] = _default_connection):
        self._connection_factory = connection_factory

    @contextmanager
    def _transaction(self):
        from psycopg2.extras import RealDictCursor

        with self._connection_factory() as conn:
            try:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    yield cur
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def ensure_schema(self) -> None:
        with self._transaction() as cur:
            cur.execute(SCHEMA_SQL)
        logger.info("review_synthesis schema ensured")

    def _params(self, record: SynthesisRecord) -> Dict:
        from psycopg2.extras import Json

        data = record.to_dict()
        data["last_updated"] = record.last_updated
        data["created_at"] = record.created_at
        return {
            col: Json(data[col]) if col in _JSON_COLUMNS else data[col]
            for col in _COLUMNS
        }

    def get(self, subject_id: int) -> Optional[SynthesisRecord]:
        with self._transaction() as cur:
            cur.execute(f"{_SELECT} WHERE subject_id = %s", (subject_id,))
            row = cur.fetchone()
        return SynthesisRecord.from_dict(dict(row)) if row else None

    def create(self, record: SynthesisRecord) -> SynthesisRecord:
        placeholders = ", ".join(f"%({col})s" for col in _COLUMNS)
        with self._transaction() as cur:
            cur.execute(
                f"INSERT INTO review_synthesis ({', '.join(_COLUMNS)}) VALUES ({placeholders}) "
                f"ON CONFLICT (subject_id) DO NOTHING",
                self._params(record),
            )
            inserted = cur.rowcount
        if inserted == 0:
            raise StoreIntegrityError(f"Synthesis for {record.subject_id} already exists")
        return record

    def save(self, record: SynthesisRecord) -> SynthesisRecord:
        assignments = ", ".join(f"{col} = %({col})s" for col in _COLUMNS if col != "subject_id")
        params = self._params(record)
        params["log_length"] = len(record.processing_log)

        with self._transaction() as cur:
            cur.execute(
                f"UPDATE review_synthesis SET {assignments} "
                f"WHERE subject_id = %(subject_id)s "
                f"AND jsonb_array_length(processing_log) <= %(log_length)s",
                params,
            )
            updated = cur.rowcount

        if updated == 0:
            if self.get(record.subject_id) is None:
                raise StoreError(f"No synthesis for {record.subject_id}")
            raise StoreIntegrityError(f"Refusing to shrink processing log for {record.subject_id}")
        return record

    def find_stale(
        self,
        now: datetime,
        window: timedelta = DEFAULT_REFRESH_WINDOW,
        limit: int = 10,
    ) -> List[SynthesisRecord]:
        with self._transaction() as cur:
            cur.execute(
                f"{_SELECT} "
                f"WHERE needs_update = TRUE OR last_updated IS NULL OR last_updated < %s "
                f"ORDER BY popularity_score DESC, last_updated ASC NULLS FIRST "
                f"LIMIT %s",
                (now - window, limit),
            )
            rows = cur.fetchall()
        return [SynthesisRecord.from_dict(dict(row)) for row in rows]

    def count_by_status(self) -> Dict[str, int]:
        counts = {s.value: 0 for s in RecordStatus}
        with self._transaction() as cur:
            cur.execute("SELECT status, COUNT(*) AS n FROM review_synthesis GROUP BY status")
            for row in cur.fetchall():
                counts[row["status"]] = row["n"]
        return counts

    def ping(self) -> bool:
        try:
            with self._transaction() as cur:
                cur.execute("SELECT 1")
            return True
        except Exception as e:
            logger.warning(f"Synthesis store ping failed: {e}")
            return False
