"""
Review Synthesis Refresh Scheduler
==================================

Periodic, popularity-ordered refresh of stale synthesis records, plus the
single worker consuming the RefreshQueue.

Features:
    - Tick every 6 hours on the clock, 00:00, 06:00, ... UTC (APScheduler cron trigger)
    - Stale records processed highest popularity first, one at a time
    - Fixed pacing delay between items to bound external API load
    - Per-item failures isolated and counted
    - Queue work and tick work share one execution lane
    - Run history for health monitoring

Usage:
    # Start scheduler daemon
    python -m src.orchestrator.cli schedule

    # Or use programmatically (inside a running event loop)
    scheduler = RefreshScheduler(orchestrator, store, refresh_queue)
    scheduler.start()

Configuration:
    SCHEDULER_INTERVAL_HOURS: Hours between ticks, a divisor of 24 (default: 6)
    SCHEDULER_BATCH_LIMIT: Max records per tick (default: 10)
    SCHEDULER_PACING_SECONDS: Delay between items (default: 2.0)
"""

import asyncio
import logging
import signal
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
    JobExecutionEvent,
)
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from ..data.config import get_env_bool, get_env_float, get_env_int
from ..synthesis.store import SynthesisStore
from .refresh_queue import RefreshQueue
from .synthesis_orchestrator import RunOutcome, SynthesisError, SynthesisOrchestrator

logger = logging.getLogger(__name__)

JOB_ID = "synthesis_refresh"


@dataclass
class SchedulerConfig:
    """Scheduler configuration."""

    interval_hours: int = field(default_factory=lambda: get_env_int("SCHEDULER_INTERVAL_HOURS", 6))
    batch_limit: int = field(default_factory=lambda: get_env_int("SCHEDULER_BATCH_LIMIT", 10))
    pacing_seconds: float = field(default_factory=lambda: get_env_float("SCHEDULER_PACING_SECONDS", 2.0))

    # Seconds a missed tick may still run late
    misfire_grace_time: int = field(default_factory=lambda: get_env_int("SCHEDULER_MISFIRE_GRACE", 3600))

    queue_max_size: int = field(default_factory=lambda: get_env_int("REFRESH_QUEUE_MAX_SIZE", 100))
    run_on_start: bool = field(default_factory=lambda: get_env_bool("SCHEDULER_RUN_ON_START", False))

    def __post_init__(self):
        if self.interval_hours <= 0 or 24 % self.interval_hours:
            raise ValueError("interval_hours must be a positive divisor of 24")
        if self.batch_limit <= 0:
            raise ValueError("batch_limit must be positive")
        if self.pacing_seconds < 0:
            raise ValueError("pacing_seconds cannot be negative")


@dataclass
class TickResult:
    """Outcome of one refresh tick."""
    selected: List[int] = field(default_factory=list)
    succeeded: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def status(self) -> str:
        if not self.failed:
            return "completed"
        if self.succeeded:
            return "partial_failure"
        return "failed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "selected": len(self.selected),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class RunHistory:
    """Tracks scheduler run history."""
    last_run_at: Optional[datetime] = None
    last_run_status: Optional[str] = None
    last_run_duration: Optional[float] = None
    consecutive_failures: int = 0
    total_runs: int = 0
    total_successes: int = 0
    total_failures: int = 0
    queue_processed: int = 0
    queue_failures: int = 0

    def record_tick(self, result: TickResult):
        """Record a refresh tick."""
        self.last_run_at = datetime.now(timezone.utc)
        self.last_run_status = result.status
        self.last_run_duration = result.duration_seconds
        self.total_runs += 1
        self.total_successes += len(result.succeeded)
        self.total_failures += len(result.failed)

        if result.status == "failed":
            self.consecutive_failures += 1
        else:
            self.consecutive_failures = 0

    def record_queue_item(self, succeeded: bool):
        self.queue_processed += 1
        if not succeeded:
            self.queue_failures += 1

    def to_dict(self) -> Dict[str, Any]:
        attempted = self.total_successes + self.total_failures
        return {
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_run_status": self.last_run_status,
            "last_run_duration": self.last_run_duration,
            "consecutive_failures": self.consecutive_failures,
            "total_runs": self.total_runs,
            "total_successes": self.total_successes,
            "total_failures": self.total_failures,
            "queue_processed": self.queue_processed,
            "queue_failures": self.queue_failures,
            "success_rate": (
                self.total_successes / attempted * 100
                if attempted > 0 else 0
            ),
        }


class RefreshScheduler:
    """
    Drives background regeneration.

    Must be started from inside a running event loop (FastAPI lifespan or
    serve_forever()).
    """

    def __init__(
        self,
        orchestrator: SynthesisOrchestrator,
        store: SynthesisStore,
        refresh_queue: RefreshQueue,
        config: Optional[SchedulerConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.orchestrator = orchestrator
        self.store = store
        self.refresh_queue = refresh_queue
        self.config = config or SchedulerConfig()
        self._sleep = sleep
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._worker_task: Optional[asyncio.Task] = None
        self._lane: Optional[asyncio.Lock] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._history = RunHistory()

        logger.info(
            f"RefreshScheduler initialized: every {self.config.interval_hours}h, "
            f"batch={self.config.batch_limit}, pacing={self.config.pacing_seconds}s"
        )

    @property
    def lane(self) -> asyncio.Lock:
        # One generation at a time across ticks and queue work
        if self._lane is None:
            self._lane = asyncio.Lock()
        return self._lane

    @property
    def is_running(self) -> bool:
        if self._scheduler is None:
            return False
        return self._scheduler.running

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self, periodic: bool = True):
        """
        Start the queue worker and, if periodic, the cron job.

        Args:
            periodic: Schedule refresh ticks (False runs the queue worker only)
        """
        if self._worker_task is None or self._worker_task.done():
            self._worker_task = asyncio.get_running_loop().create_task(self._worker())

        if not periodic:
            return

        if self._scheduler is not None and self._scheduler.running:
            logger.warning("Scheduler is already running")
            return

        job_kwargs = {}
        if self.config.run_on_start:
            job_kwargs["next_run_time"] = datetime.now(timezone.utc)

        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._scheduler.add_job(
            self.run_once,
            trigger=self._build_trigger(),
            id=JOB_ID,
            name="Review Synthesis Refresh",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self.config.misfire_grace_time,
            **job_kwargs,
        )
        self._scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED)
        self._scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)
        self._scheduler.add_listener(self._on_job_missed, EVENT_JOB_MISSED)

        self._scheduler.start()
        logger.info(f"Scheduler started. Next run at: {self._get_next_run_time()}")

    async def stop(self):
        """Stop the cron job and the queue worker."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Scheduler stopped")

        if self._worker_task is not None:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            self._worker_task = None

        if self._stop_event is not None:
            self._stop_event.set()

    async def serve_forever(self):
        """Run until SIGINT/SIGTERM."""
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, self._stop_event.set)

        self.start()
        logger.info("Scheduler running in blocking mode. Press Ctrl+C to stop.")
        await self._stop_event.wait()
        await self.stop()

    # =========================================================================
    # WORK
    # =========================================================================

    async def run_once(self, limit: Optional[int] = None) -> TickResult:
        """
        Refresh the most popular stale records, sequentially.

        Args:
            limit: Max records this tick (defaults to config.batch_limit)
        """
        if limit is None:
            limit = self.config.batch_limit
        start = time.monotonic()
        result = TickResult()

        async with self.lane:
            now = self.orchestrator.clock()
            stale = await asyncio.to_thread(
                self.store.find_stale, now, self.orchestrator.refresh_window, limit,
            )
            result.selected = [r.subject_id for r in stale]
            logger.info(f"Found {len(stale)} records needing update")

            for index, record in enumerate(stale):
                if index > 0 and self.config.pacing_seconds > 0:
                    await self._sleep(self.config.pacing_seconds)

                outcome = await self._refresh(record.subject_id)
                if outcome == RunOutcome.FAILED:
                    result.failed.append(record.subject_id)
                elif outcome == RunOutcome.ALREADY_RUNNING:
                    result.skipped.append(record.subject_id)
                else:
                    result.succeeded.append(record.subject_id)

        result.duration_seconds = round(time.monotonic() - start, 3)
        self._history.record_tick(result)
        logger.info(
            f"Refresh tick {result.status}: {len(result.succeeded)} ok, "
            f"{len(result.failed)} failed, {len(result.skipped)} skipped",
            extra={"outcome": result.status, "duration": result.duration_seconds},
        )
        return result

    async def _refresh(self, subject_id: int) -> RunOutcome:
        """Forced regeneration of one subject; failures are logged, not raised."""
        try:
            run = await self.orchestrator.generate_synthesis(subject_id, force=True)
            return run.outcome
        except SynthesisError as e:
            logger.warning(f"Failed to update {subject_id}: {e}", extra={"subject_id": subject_id})
        except Exception as e:
            logger.exception(f"Unexpected error updating {subject_id}: {e}", extra={"subject_id": subject_id})
        return RunOutcome.FAILED

    async def process_queued(self, subject_id: int) -> RunOutcome:
        async with self.lane:
            outcome = await self._refresh(subject_id)
        self._history.record_queue_item(outcome != RunOutcome.FAILED)
        return outcome

    async def drain_queue(self) -> int:
        """Process everything currently queued. Returns the number processed."""
        processed = 0
        while self.refresh_queue.depth() > 0:
            subject_id = self.refresh_queue.queue.get_nowait()
            try:
                await self.process_queued(subject_id)
            finally:
                self.refresh_queue.done(subject_id)
            processed += 1
        return processed

    async def _worker(self):
        logger.info("Refresh queue worker started")
        while True:
            subject_id = await self.refresh_queue.get()
            try:
                await self.process_queued(subject_id)
            finally:
                self.refresh_queue.done(subject_id)

    # =========================================================================
    # EVENTS
    # =========================================================================

    def _build_trigger(self) -> CronTrigger:
        # Wall-clock slots: 00:00, 06:00, 12:00, 18:00 UTC by default
        hour = "0" if self.config.interval_hours == 24 else f"*/{self.config.interval_hours}"
        return CronTrigger(hour=hour, minute=0, timezone="UTC")

    def _get_next_run_time(self) -> Optional[datetime]:
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(JOB_ID)
        if job is None:
            return None
        return job.next_run_time

    def _on_job_executed(self, event: JobExecutionEvent):
        logger.info(f"Job {event.job_id} executed successfully")

    def _on_job_error(self, event: JobExecutionEvent):
        logger.error(f"Job {event.job_id} raised an exception: {event.exception}")

    def _on_job_missed(self, event: JobExecutionEvent):
        logger.warning(f"Job {event.job_id} missed its scheduled time")

    # =========================================================================
    # STATUS
    # =========================================================================

    def get_status(self) -> Dict[str, Any]:
        next_run = self._get_next_run_time()
        return {
            "is_running": self.is_running,
            "worker_running": self._worker_task is not None and not self._worker_task.done(),
            "config": {
                "interval_hours": self.config.interval_hours,
                "batch_limit": self.config.batch_limit,
                "pacing_seconds": self.config.pacing_seconds,
            },
            "next_run": next_run.isoformat() if next_run else None,
            "queue_depth": self.refresh_queue.depth(),
            "queue_dropped": self.refresh_queue.dropped,
            "history": self._history.to_dict(),
        }

    def get_run_history(self) -> RunHistory:
        return self._history
