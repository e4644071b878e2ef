"""
Processing Guard
================

Process-wide set of subject ids with a generation in flight. Admission is
an atomic check-and-insert, so at most one run per subject id exists at a
time regardless of who triggered it (request path, queue worker, scheduler).
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Set

logger = logging.getLogger(__name__)


class ProcessingGuard:

    def __init__(self):
        self._lock = threading.Lock()
        self._in_progress: Set[int] = set()

    def try_acquire(self, subject_id: int) -> bool:
        """Admit subject_id unless a run for it is already in flight."""
        with self._lock:
            if subject_id in self._in_progress:
                return False
            self._in_progress.add(subject_id)
            return True

    def release(self, subject_id: int) -> None:
        with self._lock:
            self._in_progress.discard(subject_id)

    def is_running(self, subject_id: int) -> bool:
        with self._lock:
            return subject_id in self._in_progress

    @property
    def in_progress(self) -> Set[int]:
        with self._lock:
            return set(self._in_progress)

    @contextmanager
    def admit(self, subject_id: int) -> Iterator[bool]:
        """
        Yields True when admitted; the slot is released on every exit path.

        Yields False (and releases nothing) when a run is already in flight.
        """
        admitted = self.try_acquire(subject_id)
        if not admitted:
            logger.info(f"Synthesis already running for {subject_id}", extra={"subject_id": subject_id})
        try:
            yield admitted
        finally:
            if admitted:
                self.release(subject_id)
