"""
Tests for the synthesis orchestrator.

- Single admission per subject id under concurrent triggers
- Processing log sequences for success / empty / failure runs
- Metadata errors (not found, timeout, outage)
- Cached vs forced runs
- Stale-while-revalidate reads feeding the refresh queue

Usage:
    pytest tests/test_synthesis_orchestrator.py -v
"""

import asyncio
import time
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from src.data.tmdb_client import MovieDetails, TmdbAPIError, TmdbNotFoundError
from src.orchestrator.refresh_queue import RefreshQueue
from src.orchestrator.synthesis_orchestrator import (
    PipelineFailure,
    RunOutcome,
    SubjectNotFound,
    SynthesisOrchestrator,
)
from src.reviews.review_models import (
    EMPTY_STATE_SUMMARY,
    RawReview,
    ReviewAnalysis,
    ReviewSource,
)
from src.synthesis import InMemorySynthesisStore, ProcessingGuard, RecordStatus, SynthesisRecord


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

REVIEWS = [
    RawReview(source=ReviewSource.TMDB, author="a", content="Loved every minute.", rating=9.0),
    RawReview(source=ReviewSource.REDDIT, author="b", content="Solid but long.", rating=7.0),
]


# ============================================================================
# FAKES
# ============================================================================

class FakeMetadata:
    def __init__(self, error=None, delay=0.0):
        self.error = error
        self.delay = delay
        self.calls = 0

    def fetch_details(self, movie_id):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return MovieDetails(
            movie_id=movie_id,
            title="Fight Club",
            release_date="1999-10-15",
            vote_average=8.0,
            vote_count=1000,
            popularity=50.0,
        )


class FakeCollector:
    def __init__(self, reviews=None):
        self.reviews = list(reviews or [])
        self.calls = []

    async def collect_all(self, subject_id, title, year=None):
        self.calls.append((subject_id, title, year))
        return list(self.reviews)


class GatedCollector(FakeCollector):
    """Blocks inside collect_all until the test opens the gate."""

    def __init__(self, reviews=None):
        super().__init__(reviews)
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def collect_all(self, subject_id, title, year=None):
        self.calls.append((subject_id, title, year))
        self.entered.set()
        await self.gate.wait()
        return list(self.reviews)


class FakeAnalyzer:
    def __init__(self, error=None):
        self.error = error
        self.calls = 0

    async def analyze_reviews(self, reviews):
        self.calls += 1
        if self.error:
            raise self.error
        return replace(
            ReviewAnalysis.empty(),
            summary="Viewers loved it.",
            review_count=len(reviews),
        )


def build(collector=None, metadata=None, analyzer=None, queue=None, store=None):
    store = store or InMemorySynthesisStore()
    guard = ProcessingGuard()
    orchestrator = SynthesisOrchestrator(
        store=store,
        guard=guard,
        metadata_provider=metadata or FakeMetadata(),
        collector=collector or FakeCollector(REVIEWS),
        analyzer=analyzer or FakeAnalyzer(),
        refresh_queue=queue,
        metadata_timeout=1.0,
        clock=lambda: NOW,
    )
    return orchestrator, store, guard


def steps(record):
    return [entry.step for entry in record.processing_log]


# ============================================================================
# GENERATION
# ============================================================================

class TestGenerateSynthesis:

    def test_successful_run(self):
        orchestrator, store, guard = build()

        run = asyncio.run(orchestrator.generate_synthesis(550))

        assert run.outcome == RunOutcome.COMPLETED
        assert run.admitted
        record = store.get(550)
        assert record.status == RecordStatus.COMPLETED
        assert record.title == "Fight Club"
        assert record.year == 1999
        assert record.summary == "Viewers loved it."
        assert record.review_count == 2
        assert record.last_updated == NOW
        assert record.needs_update is False
        assert steps(record) == ["started", "collection", "analysis", "completed"]
        assert guard.in_progress == set()

    def test_zero_reviews(self):
        analyzer = FakeAnalyzer()
        orchestrator, store, _ = build(collector=FakeCollector([]), analyzer=analyzer)

        run = asyncio.run(orchestrator.generate_synthesis(550))

        assert run.outcome == RunOutcome.EMPTY
        record = store.get(550)
        assert record.status == RecordStatus.COMPLETED
        assert record.summary == EMPTY_STATE_SUMMARY
        assert record.review_count == 0
        assert record.popularity_score == 4
        assert record.processing_log[-1].status.value == "warning"
        assert steps(record) == ["started", "collection", "collection"]
        assert analyzer.calls == 0

    def test_concurrent_triggers_admit_one_run(self):
        async def scenario():
            collector = GatedCollector(REVIEWS)
            orchestrator, store, guard = build(collector=collector)

            first = asyncio.create_task(orchestrator.generate_synthesis(550, force=True))
            await collector.entered.wait()

            second = await orchestrator.generate_synthesis(550, force=True)
            third = await orchestrator.generate_synthesis(550)

            collector.gate.set()
            return await first, second, third, collector, store

        first, second, third, collector, store = asyncio.run(scenario())

        assert first.outcome == RunOutcome.COMPLETED
        assert second.outcome == RunOutcome.ALREADY_RUNNING
        assert third.outcome == RunOutcome.ALREADY_RUNNING
        assert not second.admitted
        assert len(collector.calls) == 1
        assert steps(store.get(550)).count("started") == 1

    def test_distinct_subjects_run_concurrently(self):
        async def scenario():
            orchestrator, _, _ = build()
            return await asyncio.gather(
                orchestrator.generate_synthesis(1),
                orchestrator.generate_synthesis(2),
            )

        runs = asyncio.run(scenario())
        assert [r.outcome for r in runs] == [RunOutcome.COMPLETED, RunOutcome.COMPLETED]

    def test_cached_when_fresh(self):
        orchestrator, _, _ = build()
        asyncio.run(orchestrator.generate_synthesis(550))

        run = asyncio.run(orchestrator.generate_synthesis(550))

        assert run.outcome == RunOutcome.CACHED
        assert not run.admitted

    def test_force_regenerates_fresh_record(self):
        orchestrator, store, _ = build()
        asyncio.run(orchestrator.generate_synthesis(550))

        run = asyncio.run(orchestrator.generate_synthesis(550, force=True))

        assert run.outcome == RunOutcome.COMPLETED
        assert steps(store.get(550)).count("started") == 2


class TestGenerateFailures:

    def test_subject_not_found_creates_nothing(self):
        metadata = FakeMetadata(error=TmdbNotFoundError("missing", 404))
        orchestrator, store, guard = build(metadata=metadata)

        with pytest.raises(SubjectNotFound) as exc_info:
            asyncio.run(orchestrator.generate_synthesis(999))

        assert str(exc_info.value) == "Movie 999 not found"
        assert store.get(999) is None
        assert not guard.is_running(999)

    def test_subject_not_found_on_existing_record(self):
        metadata = FakeMetadata(error=TmdbNotFoundError("missing", 404))
        orchestrator, store, _ = build(metadata=metadata)
        store.create(SynthesisRecord(subject_id=999, created_at=NOW))

        with pytest.raises(SubjectNotFound):
            asyncio.run(orchestrator.generate_synthesis(999))

        record = store.get(999)
        assert record.status == RecordStatus.FAILED
        assert steps(record) == ["started", "error"]
        assert record.processing_log[-1].message == "Movie 999 not found"

    def test_metadata_outage(self):
        orchestrator, store, _ = build(metadata=FakeMetadata(error=TmdbAPIError("503", 503)))
        store.create(SynthesisRecord(subject_id=550, created_at=NOW))

        with pytest.raises(PipelineFailure):
            asyncio.run(orchestrator.generate_synthesis(550))

        assert store.get(550).status == RecordStatus.FAILED

    def test_metadata_outage_for_new_subject(self):
        orchestrator, store, _ = build(metadata=FakeMetadata(error=TmdbAPIError("503", 503)))

        with pytest.raises(PipelineFailure):
            asyncio.run(orchestrator.generate_synthesis(550))

        assert store.get(550) is None

    def test_metadata_timeout(self):
        orchestrator, store, guard = build(metadata=FakeMetadata(delay=0.5))
        orchestrator.metadata_timeout = 0.05
        store.create(SynthesisRecord(subject_id=550, created_at=NOW))

        with pytest.raises(PipelineFailure) as exc_info:
            asyncio.run(orchestrator.generate_synthesis(550))

        record = store.get(550)
        assert "timed out" in str(exc_info.value)
        assert record.status == RecordStatus.FAILED
        assert "timed out" in record.processing_log[-1].message
        assert guard.in_progress == set()

    def test_malformed_metadata_marks_failed(self):
        orchestrator, store, guard = build(metadata=FakeMetadata(error=TypeError("unexpected keyword 'foo'")))
        store.create(completed_record(550, age_days=8))

        with pytest.raises(PipelineFailure):
            asyncio.run(orchestrator.generate_synthesis(550, force=True))

        record = store.get(550)
        assert record.status == RecordStatus.FAILED
        assert steps(record) == ["started", "error"]
        assert "TypeError" in record.processing_log[-1].message
        assert not guard.is_running(550)

    def test_analyzer_failure(self):
        orchestrator, store, guard = build(analyzer=FakeAnalyzer(error=RuntimeError("model exploded")))

        with pytest.raises(PipelineFailure):
            asyncio.run(orchestrator.generate_synthesis(550))

        record = store.get(550)
        assert record.status == RecordStatus.FAILED
        assert steps(record) == ["started", "collection", "analysis", "error"]
        assert record.processing_log[-1].message == "model exploded"
        assert not guard.is_running(550)

    def test_failed_record_recovers_on_next_run(self):
        analyzer = FakeAnalyzer(error=RuntimeError("boom"))
        orchestrator, store, _ = build(analyzer=analyzer)
        with pytest.raises(PipelineFailure):
            asyncio.run(orchestrator.generate_synthesis(550))

        analyzer.error = None
        run = asyncio.run(orchestrator.generate_synthesis(550))

        assert run.outcome == RunOutcome.COMPLETED
        assert store.get(550).status == RecordStatus.COMPLETED
        assert "error" in steps(store.get(550))


# ============================================================================
# READ PATH
# ============================================================================

def completed_record(subject_id, age_days, **overrides):
    return SynthesisRecord(
        subject_id=subject_id,
        created_at=NOW - timedelta(days=30),
        title="Fight Club",
        status=RecordStatus.COMPLETED,
        last_updated=NOW - timedelta(days=age_days),
        **overrides,
    )


class TestGetSynthesis:

    def test_missing_record_generated_synchronously(self):
        orchestrator, store, _ = build()

        record = asyncio.run(orchestrator.get_synthesis(550))

        assert record.status == RecordStatus.COMPLETED
        assert store.get(550) is not None

    def test_fresh_record_served(self):
        collector = FakeCollector(REVIEWS)
        orchestrator, store, _ = build(collector=collector)
        store.create(completed_record(550, age_days=1))

        record = asyncio.run(orchestrator.get_synthesis(550))

        assert record.last_updated == NOW - timedelta(days=1)
        assert collector.calls == []

    def test_stale_record_served_and_queued(self):
        async def scenario():
            queue = RefreshQueue(maxsize=10)
            collector = FakeCollector(REVIEWS)
            orchestrator, store, _ = build(collector=collector, queue=queue)
            store.create(completed_record(550, age_days=8))

            first = await orchestrator.get_synthesis(550)
            second = await orchestrator.get_synthesis(550)
            return first, second, queue, collector, store

        first, second, queue, collector, store = asyncio.run(scenario())

        assert first.last_updated == NOW - timedelta(days=8)
        assert second.last_updated == NOW - timedelta(days=8)
        assert store.get(550).needs_update is True
        assert queue.depth() == 1
        assert queue.is_pending(550)
        assert collector.calls == []

    def test_processing_record_returned_as_is(self):
        collector = FakeCollector(REVIEWS)
        orchestrator, store, _ = build(collector=collector)
        store.create(SynthesisRecord(subject_id=550, created_at=NOW, status=RecordStatus.PROCESSING))

        record = asyncio.run(orchestrator.get_synthesis(550))

        assert record.status == RecordStatus.PROCESSING
        assert collector.calls == []

    def test_failed_record_regenerated(self):
        orchestrator, store, _ = build()
        store.create(SynthesisRecord(subject_id=550, created_at=NOW, status=RecordStatus.FAILED))

        record = asyncio.run(orchestrator.get_synthesis(550))

        assert record.status == RecordStatus.COMPLETED

    def test_failed_refresh_serves_last_good_value(self):
        async def scenario():
            queue = RefreshQueue(maxsize=10)
            analyzer = FakeAnalyzer()
            orchestrator, store, _ = build(analyzer=analyzer, queue=queue)
            await orchestrator.generate_synthesis(550)

            analyzer.error = RuntimeError("boom")
            with pytest.raises(PipelineFailure):
                await orchestrator.generate_synthesis(550, force=True)

            record = await orchestrator.get_synthesis(550)
            return record, analyzer, queue, store

        record, analyzer, queue, store = asyncio.run(scenario())

        assert record.status == RecordStatus.FAILED
        assert record.summary == "Viewers loved it."
        assert record.last_updated == NOW
        assert analyzer.calls == 2
        assert queue.is_pending(550)
        assert store.get(550).needs_update is True

    def test_not_found_propagates(self):
        orchestrator, _, _ = build(metadata=FakeMetadata(error=TmdbNotFoundError("missing", 404)))
        with pytest.raises(SubjectNotFound):
            asyncio.run(orchestrator.get_synthesis(999))

    def test_unknown_subject_never_selected_for_refresh(self):
        metadata = FakeMetadata(error=TmdbNotFoundError("missing", 404))
        orchestrator, store, _ = build(metadata=metadata)

        for _ in range(3):
            with pytest.raises(SubjectNotFound):
                asyncio.run(orchestrator.get_synthesis(999999))

        assert metadata.calls == 3
        assert store.get(999999) is None
        assert store.find_stale(NOW + timedelta(days=365)) == []


class TestMarkForUpdate:

    def test_unknown_subject(self):
        orchestrator, _, _ = build()
        assert asyncio.run(orchestrator.mark_for_update(1)) is False

    def test_flags_record(self):
        orchestrator, store, _ = build()
        store.create(completed_record(1, age_days=1))

        assert asyncio.run(orchestrator.mark_for_update(1)) is True
        assert store.get(1).needs_update is True
        assert store.find_stale(NOW)[0].subject_id == 1
