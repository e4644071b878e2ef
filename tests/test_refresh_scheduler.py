"""
Tests for the refresh queue and the refresh scheduler.

Usage:
    pytest tests/test_refresh_scheduler.py -v
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from apscheduler.triggers.cron import CronTrigger

from src.orchestrator.refresh_queue import RefreshQueue
from src.orchestrator.scheduler import (
    JOB_ID,
    RefreshScheduler,
    SchedulerConfig,
    TickResult,
)
from src.orchestrator.synthesis_orchestrator import PipelineFailure, RunOutcome, SynthesisRun
from src.synthesis import InMemorySynthesisStore, RecordStatus, SynthesisRecord


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeOrchestrator:
    """Records forced runs; raises PipelineFailure for ids in `failing`."""

    def __init__(self, failing=(), running=()):
        self.refresh_window = timedelta(days=7)
        self.failing = set(failing)
        self.running = set(running)
        self.calls = []

    def clock(self):
        return NOW

    async def generate_synthesis(self, subject_id, force=False):
        self.calls.append((subject_id, force))
        if subject_id in self.failing:
            raise PipelineFailure(subject_id, "boom")
        if subject_id in self.running:
            return SynthesisRun(subject_id=subject_id, outcome=RunOutcome.ALREADY_RUNNING)
        return SynthesisRun(subject_id=subject_id, outcome=RunOutcome.COMPLETED)


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def stale_record(subject_id, popularity):
    return SynthesisRecord(
        subject_id=subject_id,
        created_at=NOW - timedelta(days=30),
        status=RecordStatus.COMPLETED,
        last_updated=NOW - timedelta(days=10),
        popularity_score=popularity,
    )


def make_scheduler(orchestrator, store=None, queue=None, **config):
    sleep = SleepRecorder()
    scheduler = RefreshScheduler(
        orchestrator,
        store if store is not None else InMemorySynthesisStore(),
        queue or RefreshQueue(maxsize=5),
        config=SchedulerConfig(**config),
        sleep=sleep,
    )
    return scheduler, sleep


# ============================================================================
# QUEUE
# ============================================================================

class TestRefreshQueue:

    def test_dedupes_pending(self):
        async def scenario():
            queue = RefreshQueue(maxsize=5)
            results = [queue.submit(1), queue.submit(1), queue.submit(2)]
            return queue, results

        queue, results = asyncio.run(scenario())
        assert results == [True, False, True]
        assert queue.depth() == 2

    def test_drops_when_full(self):
        async def scenario():
            queue = RefreshQueue(maxsize=2)
            results = [queue.submit(i) for i in range(3)]
            return queue, results

        queue, results = asyncio.run(scenario())
        assert results == [True, True, False]
        assert queue.dropped == 1
        assert not queue.is_pending(2)

    def test_resubmit_after_done(self):
        async def scenario():
            queue = RefreshQueue()
            queue.submit(1)
            subject_id = await queue.get()
            queue.done(subject_id)
            return queue, queue.submit(1)

        queue, resubmitted = asyncio.run(scenario())
        assert resubmitted is True

    def test_depth_before_use(self):
        assert RefreshQueue().depth() == 0


# ============================================================================
# CONFIG / RESULTS
# ============================================================================

class TestSchedulerConfig:

    def test_defaults(self):
        config = SchedulerConfig()
        assert config.interval_hours == 6
        assert config.batch_limit == 10

    def test_invalid(self):
        with pytest.raises(ValueError):
            SchedulerConfig(interval_hours=0)
        with pytest.raises(ValueError):
            SchedulerConfig(interval_hours=5)
        with pytest.raises(ValueError):
            SchedulerConfig(pacing_seconds=-1)


class TestTickResult:

    def test_status(self):
        assert TickResult(succeeded=[1]).status == "completed"
        assert TickResult(succeeded=[1], failed=[2]).status == "partial_failure"
        assert TickResult(failed=[2]).status == "failed"
        assert TickResult().status == "completed"


# ============================================================================
# TICKS
# ============================================================================

class TestRunOnce:

    def test_processes_top_records_in_popularity_order(self):
        store = InMemorySynthesisStore()
        for i in range(15):
            store.create(stale_record(i, popularity=i))
        orchestrator = FakeOrchestrator()
        scheduler, sleep = make_scheduler(orchestrator, store=store, pacing_seconds=2.0)

        result = asyncio.run(scheduler.run_once())

        assert [c[0] for c in orchestrator.calls] == list(range(14, 4, -1))
        assert all(force for _, force in orchestrator.calls)
        assert len(result.succeeded) == 10
        assert sleep.delays == [2.0] * 9

    def test_failures_isolated(self):
        store = InMemorySynthesisStore()
        for i in range(3):
            store.create(stale_record(i, popularity=i))
        orchestrator = FakeOrchestrator(failing={1})
        scheduler, _ = make_scheduler(orchestrator, store=store)

        result = asyncio.run(scheduler.run_once())

        assert result.succeeded == [2, 0]
        assert result.failed == [1]
        assert result.status == "partial_failure"
        history = scheduler.get_run_history()
        assert history.total_runs == 1
        assert history.total_failures == 1

    def test_already_running_counted_as_skipped(self):
        store = InMemorySynthesisStore()
        store.create(stale_record(1, popularity=1))
        scheduler, _ = make_scheduler(FakeOrchestrator(running={1}), store=store)

        result = asyncio.run(scheduler.run_once())

        assert result.skipped == [1]
        assert result.status == "completed"

    def test_explicit_limit(self):
        store = InMemorySynthesisStore()
        for i in range(5):
            store.create(stale_record(i, popularity=i))
        orchestrator = FakeOrchestrator()
        scheduler, sleep = make_scheduler(orchestrator, store=store, pacing_seconds=0)

        result = asyncio.run(scheduler.run_once(limit=2))

        assert result.selected == [4, 3]
        assert sleep.delays == []

    def test_zero_limit_selects_nothing(self):
        store = InMemorySynthesisStore()
        for i in range(3):
            store.create(stale_record(i, popularity=i))
        orchestrator = FakeOrchestrator()
        scheduler, _ = make_scheduler(orchestrator, store=store)

        result = asyncio.run(scheduler.run_once(limit=0))

        assert result.selected == []
        assert orchestrator.calls == []

    def test_nothing_stale(self):
        scheduler, sleep = make_scheduler(FakeOrchestrator())
        result = asyncio.run(scheduler.run_once())
        assert result.selected == []
        assert result.status == "completed"


# ============================================================================
# QUEUE WORK & LIFECYCLE
# ============================================================================

class TestQueueProcessing:

    def test_drain_queue(self):
        async def scenario():
            orchestrator = FakeOrchestrator(failing={2})
            queue = RefreshQueue()
            scheduler, _ = make_scheduler(orchestrator, queue=queue)
            queue.submit(1)
            queue.submit(2)
            processed = await scheduler.drain_queue()
            return processed, orchestrator, queue, scheduler

        processed, orchestrator, queue, scheduler = asyncio.run(scenario())

        assert processed == 2
        assert orchestrator.calls == [(1, True), (2, True)]
        assert queue.depth() == 0
        assert not queue.is_pending(1)
        history = scheduler.get_run_history()
        assert history.queue_processed == 2
        assert history.queue_failures == 1

    def test_worker_consumes_queue(self):
        async def scenario():
            orchestrator = FakeOrchestrator()
            queue = RefreshQueue()
            scheduler, _ = make_scheduler(orchestrator, queue=queue)
            scheduler.start(periodic=False)
            queue.submit(7)
            await asyncio.wait_for(queue.join(), timeout=2.0)
            status = scheduler.get_status()
            await scheduler.stop()
            return orchestrator, status, scheduler

        orchestrator, status, scheduler = asyncio.run(scenario())

        assert orchestrator.calls == [(7, True)]
        assert status["worker_running"] is True
        assert status["is_running"] is False
        assert scheduler.get_status()["worker_running"] is False

    def test_start_schedules_cron_job(self):
        async def scenario():
            scheduler, _ = make_scheduler(FakeOrchestrator(), interval_hours=6)
            scheduler.start()
            job = scheduler._scheduler.get_job(JOB_ID)
            status = scheduler.get_status()
            await scheduler.stop()
            return job, status, scheduler

        job, status, scheduler = asyncio.run(scenario())

        assert job is not None
        assert isinstance(job.trigger, CronTrigger)
        fields = {f.name: str(f) for f in job.trigger.fields}
        assert fields["hour"] == "*/6"
        assert fields["minute"] == "0"
        assert job.next_run_time.minute == 0
        assert job.next_run_time.hour % 6 == 0
        assert job.max_instances == 1
        assert job.coalesce is True
        assert status["is_running"] is True
        assert status["next_run"] is not None
        assert scheduler.is_running is False
