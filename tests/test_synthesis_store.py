"""
Tests for synthesis records, the processing guard and the stores.

Usage:
    pytest tests/test_synthesis_store.py -v
"""

from datetime import datetime, timedelta, timezone

import pytest

from src.reviews.review_models import ASPECT_NAMES, EMPTY_STATE_SUMMARY
from src.synthesis import (
    InMemorySynthesisStore,
    LogStatus,
    PostgresSynthesisStore,
    ProcessingGuard,
    RecordStatus,
    StoreError,
    StoreIntegrityError,
    SynthesisRecord,
    compute_popularity_score,
)


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_record(subject_id=1, **overrides):
    return SynthesisRecord(subject_id=subject_id, created_at=NOW, **overrides)


# ============================================================================
# RECORD
# ============================================================================

class TestPopularityScore:

    def test_reference_value(self):
        assert compute_popularity_score(8.0, 1000, 50.0, 20) == 4

    def test_zero_inputs(self):
        assert compute_popularity_score(0.0, 0, 0.0, 0) == 0

    def test_monotonic_in_each_input(self):
        base = compute_popularity_score(5.0, 100, 10.0, 5)
        assert compute_popularity_score(9.0, 100, 10.0, 5) >= base
        assert compute_popularity_score(5.0, 100000, 10.0, 5) >= base
        assert compute_popularity_score(5.0, 100, 10000.0, 5) >= base
        assert compute_popularity_score(5.0, 100, 10.0, 5000) >= base


class TestSynthesisRecord:

    def test_defaults(self):
        record = make_record()
        assert record.status == RecordStatus.PENDING
        assert record.summary == EMPTY_STATE_SUMMARY
        assert record.review_count == 0
        assert record.positive_percentage == 0
        assert set(record.aspects) == set(ASPECT_NAMES)

    def test_freshness(self):
        window = timedelta(days=7)
        assert make_record(last_updated=NOW - timedelta(days=8)).needs_refresh(NOW, window)
        assert not make_record(last_updated=NOW - timedelta(days=6)).needs_refresh(NOW, window)
        assert make_record(last_updated=None).needs_refresh(NOW, window)
        assert make_record(last_updated=NOW, needs_update=True).needs_refresh(NOW, window)

    def test_with_log_appends(self):
        record = make_record()
        updated = record.with_log("started", LogStatus.INFO, "go", NOW).with_log("collection", LogStatus.INFO, "fetch", NOW)

        assert record.processing_log == ()
        assert [e.step for e in updated.processing_log] == ["started", "collection"]

    def test_recent_log(self):
        record = make_record()
        for step in ("a", "b", "c", "d"):
            record = record.with_log(step, LogStatus.INFO, step, NOW)
        assert [e.step for e in record.recent_log(3)] == ["b", "c", "d"]
        assert record.recent_log(0) == ()

    def test_dict_roundtrip(self):
        record = make_record(
            title="Fight Club",
            year=1999,
            status=RecordStatus.COMPLETED,
            last_updated=NOW,
            popularity_score=4,
        ).with_log("completed", LogStatus.SUCCESS, "done", NOW)

        restored = SynthesisRecord.from_dict(record.to_dict())

        assert restored.title == "Fight Club"
        assert restored.status == RecordStatus.COMPLETED
        assert restored.last_updated == NOW
        assert restored.processing_log == record.processing_log
        assert restored.popularity_score == 4


# ============================================================================
# GUARD
# ============================================================================

class TestProcessingGuard:

    def setup_method(self):
        self.guard = ProcessingGuard()

    def test_single_admission(self):
        assert self.guard.try_acquire(1) is True
        assert self.guard.try_acquire(1) is False
        assert self.guard.try_acquire(2) is True
        self.guard.release(1)
        assert self.guard.try_acquire(1) is True

    def test_admit_releases_on_error(self):
        with pytest.raises(RuntimeError):
            with self.guard.admit(7) as admitted:
                assert admitted
                assert self.guard.is_running(7)
                raise RuntimeError("boom")
        assert not self.guard.is_running(7)

    def test_rejected_admit_keeps_holder(self):
        with self.guard.admit(7) as first:
            with self.guard.admit(7) as second:
                assert first and not second
            assert self.guard.is_running(7)
        assert self.guard.in_progress == set()


# ============================================================================
# IN-MEMORY STORE
# ============================================================================

class TestInMemoryStore:

    def setup_method(self):
        self.store = InMemorySynthesisStore()

    def test_create_and_get(self):
        self.store.create(make_record(5))
        assert self.store.get(5).subject_id == 5
        assert self.store.get(6) is None

    def test_duplicate_create_rejected(self):
        self.store.create(make_record(5))
        with pytest.raises(StoreIntegrityError):
            self.store.create(make_record(5))
        assert len(self.store) == 1

    def test_save_unknown_record(self):
        with pytest.raises(StoreError):
            self.store.save(make_record(5))

    def test_log_shrink_rejected(self):
        record = make_record(5).with_log("started", LogStatus.INFO, "go", NOW)
        self.store.create(record)

        with pytest.raises(StoreIntegrityError):
            self.store.save(make_record(5))

        grown = record.with_log("collection", LogStatus.INFO, "fetch", NOW)
        self.store.save(grown)
        assert len(self.store.get(5).processing_log) == 2

    def test_find_stale_orders_by_popularity(self):
        for i in range(50):
            self.store.create(make_record(i, popularity_score=i))

        stale = self.store.find_stale(NOW, limit=10)

        assert [r.subject_id for r in stale] == list(range(49, 39, -1))

    def test_find_stale_skips_fresh(self):
        self.store.create(make_record(1, popularity_score=9, last_updated=NOW))
        self.store.create(make_record(2, popularity_score=1, last_updated=NOW - timedelta(days=30)))
        self.store.create(make_record(3, popularity_score=5, last_updated=NOW, needs_update=True))

        assert [r.subject_id for r in self.store.find_stale(NOW)] == [3, 2]

    def test_find_stale_tie_breaks_on_age(self):
        self.store.create(make_record(1, popularity_score=3, last_updated=NOW - timedelta(days=10)))
        self.store.create(make_record(2, popularity_score=3, last_updated=NOW - timedelta(days=20)))
        self.store.create(make_record(3, popularity_score=3))

        assert [r.subject_id for r in self.store.find_stale(NOW)] == [3, 2, 1]

    def test_count_by_status(self):
        self.store.create(make_record(1))
        self.store.create(make_record(2, status=RecordStatus.COMPLETED))
        counts = self.store.count_by_status()
        assert counts["pending"] == 1
        assert counts["completed"] == 1
        assert counts["failed"] == 0


# ============================================================================
# POSTGRES STORE (fake connection)
# ============================================================================

class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.rowcount = conn.rowcount

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        self.conn.executed.append((sql, params))
        if self.conn.fail:
            raise RuntimeError("connection lost")

    def fetchone(self):
        return self.conn.rows[0] if self.conn.rows else None

    def fetchall(self):
        return list(self.conn.rows)


class FakeConnection:
    def __init__(self, rows=None, rowcount=1, fail=False):
        self.rows = rows or []
        self.rowcount = rowcount
        self.fail = fail
        self.executed = []
        self.commits = 0
        self.rollbacks = 0

    def cursor(self, cursor_factory=None):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


class FakeConnectionContext:
    def __init__(self, conn):
        self.conn = conn

    def __enter__(self):
        return self.conn

    def __exit__(self, *exc):
        return False


def postgres_store(conn):
    return PostgresSynthesisStore(connection_factory=lambda: FakeConnectionContext(conn))


class TestPostgresStore:

    def test_create_conflict(self):
        conn = FakeConnection(rowcount=0)
        with pytest.raises(StoreIntegrityError):
            postgres_store(conn).create(make_record(1))
        assert "ON CONFLICT" in conn.executed[0][0]

    def test_save_guards_log_length(self):
        conn = FakeConnection(rowcount=1)
        record = make_record(1).with_log("started", LogStatus.INFO, "go", NOW)

        postgres_store(conn).save(record)

        sql, params = conn.executed[0]
        assert "jsonb_array_length(processing_log) <=" in sql
        assert params["log_length"] == 1
        assert conn.commits == 1

    def test_save_rejected_when_row_exists(self):
        existing = make_record(1).to_dict()
        conn = FakeConnection(rows=[existing], rowcount=0)
        with pytest.raises(StoreIntegrityError):
            postgres_store(conn).save(make_record(1))

    def test_get_parses_row(self):
        row = make_record(9, title="Heat", status=RecordStatus.COMPLETED).to_dict()
        record = postgres_store(FakeConnection(rows=[row])).get(9)
        assert record.title == "Heat"
        assert record.status == RecordStatus.COMPLETED

    def test_rollback_on_error(self):
        conn = FakeConnection(fail=True)
        with pytest.raises(RuntimeError):
            postgres_store(conn).get(1)
        assert conn.rollbacks == 1
        assert conn.commits == 0

    def test_ping(self):
        assert postgres_store(FakeConnection()).ping() is True
        assert postgres_store(FakeConnection(fail=True)).ping() is False

    def test_count_by_status(self):
        conn = FakeConnection(rows=[{"status": "completed", "n": 3}])
        counts = postgres_store(conn).count_by_status()
        assert counts["completed"] == 3
        assert counts["pending"] == 0
