"""
Review Synthesis Services
=========================

Wires the engine's components from settings. The API lifespan, the CLI and
tests all build their object graph through build_services().
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from ..cache.redis_cache import get_cache
from ..data.config import Settings, get_settings
from ..data.tmdb_client import TmdbClient
from ..orchestrator.refresh_queue import RefreshQueue
from ..orchestrator.scheduler import RefreshScheduler, SchedulerConfig
from ..orchestrator.synthesis_orchestrator import SynthesisOrchestrator
from ..reviews.collector import ReviewCollector
from ..reviews.review_analyzer import ReviewAnalyzer
from ..reviews.summarizer import Summarizer, get_summary_provider
from ..synthesis.guard import ProcessingGuard
from ..synthesis.store import InMemorySynthesisStore, PostgresSynthesisStore, SynthesisStore

logger = logging.getLogger(__name__)


@dataclass
class SynthesisServices:
    """Everything a request handler or the CLI needs."""
    settings: Settings
    store: SynthesisStore
    guard: ProcessingGuard
    refresh_queue: RefreshQueue
    orchestrator: SynthesisOrchestrator
    scheduler: RefreshScheduler


def build_store(settings: Settings) -> SynthesisStore:
    if settings.synthesis.store_backend == "memory":
        logger.info("Using in-memory synthesis store")
        return InMemorySynthesisStore()
    return PostgresSynthesisStore()


def build_services(
    settings: Optional[Settings] = None,
    store: Optional[SynthesisStore] = None,
    scheduler_config: Optional[SchedulerConfig] = None,
) -> SynthesisServices:
    settings = settings or get_settings()
    store = store if store is not None else build_store(settings)
    scheduler_config = scheduler_config or SchedulerConfig()

    tmdb_client = TmdbClient(settings.tmdb, cache=get_cache())
    collector = ReviewCollector.from_settings(settings, tmdb_client)
    analyzer = ReviewAnalyzer(
        summarizer=Summarizer(get_summary_provider(settings.summarizer), settings.summarizer),
        featured_count=settings.synthesis.featured_count,
    )

    guard = ProcessingGuard()
    refresh_queue = RefreshQueue(maxsize=scheduler_config.queue_max_size)
    orchestrator = SynthesisOrchestrator(
        store=store,
        guard=guard,
        metadata_provider=tmdb_client,
        collector=collector,
        analyzer=analyzer,
        refresh_queue=refresh_queue,
        refresh_window=timedelta(days=settings.synthesis.refresh_window_days),
        metadata_timeout=settings.synthesis.metadata_timeout,
    )
    scheduler = RefreshScheduler(orchestrator, store, refresh_queue, scheduler_config)

    return SynthesisServices(
        settings=settings,
        store=store,
        guard=guard,
        refresh_queue=refresh_queue,
        orchestrator=orchestrator,
        scheduler=scheduler,
    )
