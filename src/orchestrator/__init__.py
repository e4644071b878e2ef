"""
Review Synthesis Orchestrator Module
====================================

Orchestration layer for the synthesis engine.

Components:
    - SynthesisOrchestrator: per-subject state machine
    - RefreshQueue: bounded queue of pending regenerations
    - RefreshScheduler: periodic popularity-ordered refresh + queue worker
    - CLI: Command-line interface

Usage:
    from src.orchestrator import SynthesisOrchestrator

    record = await orchestrator.get_synthesis(550)
"""

from .refresh_queue import RefreshQueue
from .synthesis_orchestrator import (
    PipelineFailure,
    RunOutcome,
    SubjectNotFound,
    SynthesisError,
    SynthesisOrchestrator,
    SynthesisRun,
)
from .scheduler import (
    RefreshScheduler,
    RunHistory,
    SchedulerConfig,
    TickResult,
)

__all__ = [
    "RefreshQueue",
    "PipelineFailure",
    "RunOutcome",
    "SubjectNotFound",
    "SynthesisError",
    "SynthesisOrchestrator",
    "SynthesisRun",
    "RefreshScheduler",
    "RunHistory",
    "SchedulerConfig",
    "TickResult",
]
