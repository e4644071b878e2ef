"""
Review Synthesis Records
========================

Persisted synthesis records, their storage, and the per-subject
concurrency guard.

Modules:
    models  - SynthesisRecord, ProcessingLogEntry, popularity score
    guard   - ProcessingGuard (at most one run per subject id)
    store   - SynthesisStore interface, in-memory and PostgreSQL backends
"""

from .guard import ProcessingGuard
from .models import (
    LogStatus,
    ProcessingLogEntry,
    RecordStatus,
    SynthesisRecord,
    compute_popularity_score,
)
from .store import (
    InMemorySynthesisStore,
    PostgresSynthesisStore,
    StoreError,
    StoreIntegrityError,
    SynthesisStore,
)

__all__ = [
    "ProcessingGuard",
    "LogStatus",
    "ProcessingLogEntry",
    "RecordStatus",
    "SynthesisRecord",
    "compute_popularity_score",
    "InMemorySynthesisStore",
    "PostgresSynthesisStore",
    "StoreError",
    "StoreIntegrityError",
    "SynthesisStore",
]
