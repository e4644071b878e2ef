"""
Refresh Queue
=============

Bounded, deduplicated queue of subject ids awaiting a forced regeneration.

Producers (stale reads, the admin endpoint) submit without blocking; the
scheduler's single worker consumes. A subject stays "pending" from
submission until the worker marks it done, so repeated reads of a stale
record enqueue it only once. When the queue is full the submission is
dropped: the record keeps its needs_update flag and the next scheduler
tick picks it up.
"""

import asyncio
import logging
from typing import Optional, Set

logger = logging.getLogger(__name__)


DEFAULT_MAX_SIZE = 100


class RefreshQueue:

    def __init__(self, maxsize: int = DEFAULT_MAX_SIZE):
        self.maxsize = maxsize
        self._queue: Optional[asyncio.Queue] = None
        self._pending: Set[int] = set()
        self.dropped = 0

    @property
    def queue(self) -> asyncio.Queue:
        # Created lazily so it binds to the running event loop
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.maxsize)
        return self._queue

    def submit(self, subject_id: int) -> bool:
        """Enqueue a regeneration. False if already pending or the queue is full."""
        if subject_id in self._pending:
            return False
        try:
            self.queue.put_nowait(subject_id)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                f"Refresh queue full ({self.maxsize}), dropping {subject_id}",
                extra={"subject_id": subject_id},
            )
            return False
        self._pending.add(subject_id)
        logger.debug(f"Queued refresh for {subject_id}", extra={"subject_id": subject_id})
        return True

    async def get(self) -> int:
        return await self.queue.get()

    def done(self, subject_id: int) -> None:
        self._pending.discard(subject_id)
        self.queue.task_done()

    def is_pending(self, subject_id: int) -> bool:
        return subject_id in self._pending

    def depth(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def join(self) -> None:
        await self.queue.join()
