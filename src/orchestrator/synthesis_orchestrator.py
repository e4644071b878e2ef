"""
Review Synthesis Orchestrator
=============================

Per-subject state machine tying metadata, collection, analysis and the
store together.

    pending -> processing -> completed | failed
    completed | failed -> processing (next run)

At most one run per subject id is admitted at a time (ProcessingGuard).
Reads never wait on a refresh: a stale completed record is returned as is
and its regeneration is handed to the RefreshQueue.

Processing log of a successful run:
    started -> collection -> analysis -> completed

Usage:
    orchestrator = SynthesisOrchestrator(store, guard, tmdb_client, collector, analyzer)
    record = await orchestrator.get_synthesis(550)
    run = await orchestrator.generate_synthesis(550, force=True)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional

from ..data.tmdb_client import MovieDetails, TmdbAPIError, TmdbNotFoundError
from ..reviews.review_models import ReviewAnalysis
from ..synthesis.guard import ProcessingGuard
from ..synthesis.models import (
    DEFAULT_REFRESH_WINDOW,
    LogStatus,
    RecordStatus,
    SynthesisRecord,
    compute_popularity_score,
)
from ..synthesis.store import StoreError, StoreIntegrityError, SynthesisStore
from .refresh_queue import RefreshQueue

logger = logging.getLogger(__name__)


class SynthesisError(Exception):
    """Base exception for synthesis runs."""

    def __init__(self, subject_id: int, message: str):
        super().__init__(message)
        self.subject_id = subject_id


class SubjectNotFound(SynthesisError):
    """The metadata provider does not know the subject id."""
    pass


class PipelineFailure(SynthesisError):
    """A run failed after admission; the record was marked failed."""
    pass


class RunOutcome(str, Enum):
    COMPLETED = "completed"
    EMPTY = "empty"                      # completed with zero reviews
    FAILED = "failed"
    CACHED = "cached"                    # fresh record, nothing to do
    ALREADY_RUNNING = "already_running"  # another run holds the guard


@dataclass(frozen=True)
class SynthesisRun:
    """Result of a generate_synthesis call."""
    subject_id: int
    outcome: RunOutcome
    record: Optional[SynthesisRecord] = None
    duration_seconds: float = 0.0

    @property
    def admitted(self) -> bool:
        return self.outcome not in (RunOutcome.ALREADY_RUNNING, RunOutcome.CACHED)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SynthesisOrchestrator:

    def __init__(
        self,
        store: SynthesisStore,
        guard: ProcessingGuard,
        metadata_provider: Any,
        collector: Any,
        analyzer: Any,
        refresh_queue: Optional[RefreshQueue] = None,
        refresh_window: timedelta = DEFAULT_REFRESH_WINDOW,
        metadata_timeout: float = 15.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.guard = guard
        self.metadata_provider = metadata_provider
        self.collector = collector
        self.analyzer = analyzer
        self.refresh_queue = refresh_queue
        self.refresh_window = refresh_window
        self.metadata_timeout = metadata_timeout
        self.clock = clock

    # =========================================================================
    # STORE ACCESS (blocking backends run in a worker thread)
    # =========================================================================

    async def _get(self, subject_id: int) -> Optional[SynthesisRecord]:
        return await asyncio.to_thread(self.store.get, subject_id)

    async def _create(self, record: SynthesisRecord) -> SynthesisRecord:
        return await asyncio.to_thread(self.store.create, record)

    async def _save(self, record: SynthesisRecord) -> SynthesisRecord:
        return await asyncio.to_thread(self.store.save, record)

    # =========================================================================
    # READ PATH
    # =========================================================================

    async def get_synthesis(self, subject_id: int) -> SynthesisRecord:
        """
        Current synthesis for a subject.

        - No record, or one that never completed: generate synchronously.
        - Processing: return as is.
        - Completed but stale, or failed after an earlier success: flag,
          queue a refresh, return the existing record (last good value).

        Raises:
            SubjectNotFound: Unknown subject on a synchronous generation
            PipelineFailure: Synchronous generation failed
        """
        record = await self._get(subject_id)

        if record is None:
            run = await self.generate_synthesis(subject_id)
            return run.record or SynthesisRecord(subject_id=subject_id, created_at=self.clock())

        if record.status == RecordStatus.PROCESSING or self.guard.is_running(subject_id):
            return record

        # last_updated is only set by a completed run
        if record.last_updated is None:
            run = await self.generate_synthesis(subject_id)
            return run.record or record

        if record.status == RecordStatus.FAILED or record.needs_refresh(self.clock(), self.refresh_window):
            record = await self._flag_for_refresh(record)
            if self.refresh_queue is not None:
                self.refresh_queue.submit(subject_id)

        return record

    async def _flag_for_refresh(self, record: SynthesisRecord) -> SynthesisRecord:
        if record.needs_update:
            return record
        try:
            return await self._save(replace(record, needs_update=True))
        except StoreIntegrityError:
            # A run wrote a newer record in between; serve what we have
            logger.debug(f"Skipped needs_update flag for {record.subject_id}, record changed")
            return record

    async def mark_for_update(self, subject_id: int) -> bool:
        """Flag an existing record for refresh (e.g. a new internal review). False if none."""
        record = await self._get(subject_id)
        if record is None:
            return False
        if record.needs_update:
            return True
        try:
            await self._save(replace(record, needs_update=True))
        except StoreIntegrityError:
            record = await self._get(subject_id)
            await self._save(replace(record, needs_update=True))
        logger.info(f"Marked {subject_id} for update", extra={"subject_id": subject_id})
        return True

    # =========================================================================
    # GENERATION
    # =========================================================================

    async def generate_synthesis(self, subject_id: int, force: bool = False) -> SynthesisRun:
        """
        Run the synthesis pipeline for one subject.

        Returns ALREADY_RUNNING without touching the record when another run
        for the same subject is in flight.

        Raises:
            SubjectNotFound: Metadata provider reports the subject unknown
            PipelineFailure: Any other failure after admission
        """
        start = time.monotonic()

        with self.guard.admit(subject_id) as admitted:
            if not admitted:
                return SynthesisRun(
                    subject_id=subject_id,
                    outcome=RunOutcome.ALREADY_RUNNING,
                    record=await self._get(subject_id),
                )

            record = await self._get(subject_id)
            if (
                record is not None
                and not force
                and record.status == RecordStatus.COMPLETED
                and not record.needs_refresh(self.clock(), self.refresh_window)
            ):
                logger.debug(f"Using cached synthesis for {subject_id}")
                return SynthesisRun(subject_id=subject_id, outcome=RunOutcome.CACHED, record=record)

            if record is None:
                # Nothing is persisted for an id the metadata provider rejects
                details = await self._fetch_metadata(subject_id, None)
                record = await self._create(SynthesisRecord(subject_id=subject_id, created_at=self.clock()))
                record = await self._log_started(record)
            else:
                record = await self._log_started(record)
                details = await self._fetch_metadata(subject_id, record)

            try:
                record, outcome = await self._run_pipeline(record, details)
            except Exception as e:
                await self._mark_failed(subject_id, record, str(e) or type(e).__name__)
                raise PipelineFailure(subject_id, f"Synthesis failed for {subject_id}: {e}") from e

        duration = round(time.monotonic() - start, 3)
        logger.info(
            f"Synthesis {outcome.value} for {record.title or subject_id}: "
            f"{record.review_count} reviews in {duration}s",
            extra={"subject_id": subject_id, "outcome": outcome.value, "duration": duration},
        )
        return SynthesisRun(subject_id=subject_id, outcome=outcome, record=record, duration_seconds=duration)

    async def _log_started(self, record: SynthesisRecord) -> SynthesisRecord:
        record = await self._save(record.with_log(
            "started", LogStatus.INFO, "Started review synthesis process", self.clock(),
        ))
        logger.info(
            f"Synthesis started for {record.subject_id}",
            extra={"subject_id": record.subject_id, "step": "started"},
        )
        return record

    async def _fetch_metadata(self, subject_id: int, record: Optional[SynthesisRecord]) -> MovieDetails:
        """
        Metadata lookup. With an existing record, a failure is logged on it
        and the record is marked failed; without one, nothing is written.
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.metadata_provider.fetch_details, subject_id),
                timeout=self.metadata_timeout,
            )
        except TmdbNotFoundError as e:
            message = f"Movie {subject_id} not found"
            await self._metadata_failed(subject_id, record, message)
            raise SubjectNotFound(subject_id, message) from e
        except asyncio.TimeoutError as e:
            message = f"Metadata lookup timed out after {self.metadata_timeout}s"
            await self._metadata_failed(subject_id, record, message)
            raise PipelineFailure(subject_id, message) from e
        except TmdbAPIError as e:
            await self._metadata_failed(subject_id, record, f"Metadata lookup failed: {e}")
            raise PipelineFailure(subject_id, f"Metadata lookup failed for {subject_id}: {e}") from e
        except Exception as e:
            # Malformed cache entry or payload
            message = f"Metadata lookup failed: {type(e).__name__}: {e}"
            await self._metadata_failed(subject_id, record, message)
            raise PipelineFailure(subject_id, f"Metadata lookup failed for {subject_id}: {e}") from e

    async def _metadata_failed(self, subject_id: int, record: Optional[SynthesisRecord], message: str) -> None:
        if record is not None:
            await self._mark_failed(subject_id, record, message)
        else:
            logger.warning(
                f"Metadata lookup for new subject {subject_id} failed: {message}",
                extra={"subject_id": subject_id, "step": "started", "outcome": RunOutcome.FAILED.value},
            )

    async def _run_pipeline(self, record: SynthesisRecord, details: MovieDetails):
        """collect -> analyze -> persist. Returns (record, outcome)."""
        subject_id = record.subject_id

        record = replace(
            record,
            title=details.title,
            year=details.year,
            status=RecordStatus.PROCESSING,
        ).with_log("collection", LogStatus.INFO, "Collecting reviews from sources", self.clock())
        record = await self._save(record)

        reviews = await self.collector.collect_all(subject_id, details.title, details.year)

        if not reviews:
            record = record.with_analysis(ReviewAnalysis.empty()).with_log(
                "collection", LogStatus.WARNING, "No reviews found from any source", self.clock(),
            )
            outcome = RunOutcome.EMPTY
        else:
            record = await self._save(record.with_log(
                "analysis", LogStatus.INFO, f"Analyzing {len(reviews)} reviews", self.clock(),
            ))
            analysis = await self.analyzer.analyze_reviews(reviews)
            record = record.with_analysis(analysis).with_log(
                "completed", LogStatus.SUCCESS, f"Successfully processed {len(reviews)} reviews", self.clock(),
            )
            outcome = RunOutcome.COMPLETED

        record = replace(
            record,
            status=RecordStatus.COMPLETED,
            last_updated=self.clock(),
            needs_update=False,
            popularity_score=compute_popularity_score(
                details.vote_average, details.vote_count, details.popularity, len(reviews),
            ),
        )
        return await self._save(record), outcome

    async def _mark_failed(self, subject_id: int, record: SynthesisRecord, message: str) -> None:
        """Append an error entry and set status failed. Never raises."""
        try:
            current = await self._get(subject_id) or record
            await self._save(
                current.with_log("error", LogStatus.ERROR, message, self.clock())
                .with_status(RecordStatus.FAILED)
            )
        except StoreError as e:
            logger.error(f"Could not record failure for {subject_id}: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error recording failure for {subject_id}: {e}")
        logger.error(
            f"Synthesis failed for {subject_id}: {message}",
            extra={"subject_id": subject_id, "step": "error", "outcome": RunOutcome.FAILED.value},
        )
