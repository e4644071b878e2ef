"""
Review Collector
================

Fans out to every configured review source concurrently and merges the
results. A source that raises, times out, or returns garbage contributes
nothing; collection as a whole never fails.

Usage:
    collector = ReviewCollector.from_settings(settings, tmdb_client)
    reviews = await collector.collect_all(550, "Fight Club", 1999)
"""

import asyncio
import logging
import time
from typing import List, Optional, Sequence

from ..data.config import Settings, get_settings
from ..data.tmdb_client import TmdbClient
from .review_models import RawReview
from .sources import (
    BaseReviewSource,
    InternalReviewSource,
    LetterboxdReviewSource,
    RedditReviewSource,
    SourceFetchError,
    SourceQuery,
    TmdbReviewSource,
)

logger = logging.getLogger(__name__)


class ReviewCollector:
    """Concurrent, failure-isolating fan-out over review sources."""

    def __init__(self, sources: Sequence[BaseReviewSource], source_timeout: float = 45.0):
        self.sources = list(sources)
        self.source_timeout = source_timeout

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        tmdb_client: Optional[TmdbClient] = None,
    ) -> "ReviewCollector":
        settings = settings or get_settings()
        tmdb_client = tmdb_client or TmdbClient(settings.tmdb)
        sources = [
            TmdbReviewSource(tmdb_client),
            RedditReviewSource(settings.sources),
            LetterboxdReviewSource(settings.sources),
            InternalReviewSource(),
        ]
        return cls(sources, source_timeout=settings.sources.source_timeout)

    async def _fetch_one(self, source: BaseReviewSource, query: SourceQuery) -> List[RawReview]:
        start = time.monotonic()
        try:
            items = await asyncio.wait_for(
                asyncio.to_thread(source.fetch_items, query),
                timeout=self.source_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Source {source.name} timed out after {self.source_timeout}s",
                extra={"subject_id": query.subject_id, "source": source.name},
            )
            return []
        except SourceFetchError as e:
            logger.warning(
                f"Source {source.name} failed: {e}",
                extra={"subject_id": query.subject_id, "source": source.name},
            )
            return []
        except Exception as e:
            logger.exception(
                f"Unexpected error in source {source.name}: {e}",
                extra={"subject_id": query.subject_id, "source": source.name},
            )
            return []

        if not isinstance(items, list):
            logger.warning(f"Source {source.name} returned {type(items).__name__}, ignoring")
            return []

        valid = [item for item in items if isinstance(item, RawReview)]
        logger.info(
            f"Source {source.name}: {len(valid)} reviews",
            extra={
                "subject_id": query.subject_id,
                "source": source.name,
                "duration": round(time.monotonic() - start, 3),
            },
        )
        return valid

    async def collect_all(
        self,
        subject_id: int,
        title: str,
        year: Optional[int] = None,
    ) -> List[RawReview]:
        """Merged reviews from all sources, in source order. Never raises."""
        query = SourceQuery(subject_id=subject_id, title=title, year=year)
        logger.info(f"Collecting reviews for: {title} ({year})", extra={"subject_id": subject_id})

        results = await asyncio.gather(
            *(self._fetch_one(source, query) for source in self.sources),
            return_exceptions=True,
        )

        merged: List[RawReview] = []
        for source, result in zip(self.sources, results):
            if isinstance(result, BaseException):
                logger.error(f"Source {source.name} crashed: {result}")
                continue
            merged.extend(result)

        logger.info(
            f"Collected {len(merged)} reviews from {len(self.sources)} sources",
            extra={"subject_id": subject_id},
        )
        return merged
