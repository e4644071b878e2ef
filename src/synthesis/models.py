"""
Synthesis Record Models
=======================

The persisted unit of the engine: one SynthesisRecord per subject id,
refreshed in place. Records are immutable values; every transition
returns a new record and the orchestrator saves it.
"""

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..reviews.review_models import (
    ASPECT_NAMES,
    AspectScore,
    EMPTY_STATE_SUMMARY,
    FeaturedReview,
    OverallSentiment,
    RatingBreakdown,
    ReviewAnalysis,
    ReviewSource,
    SentimentClass,
    Theme,
)


DEFAULT_REFRESH_WINDOW = timedelta(days=7)


class RecordStatus(str, Enum):
    """Processing state of a synthesis record."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class LogStatus(str, Enum):
    INFO = "info"
    WARNING = "warning"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class ProcessingLogEntry:
    """One append-only step of a record's processing history."""
    step: str
    status: LogStatus
    message: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "status": self.status.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProcessingLogEntry":
        return cls(
            step=data["step"],
            status=LogStatus(data["status"]),
            message=data.get("message", ""),
            timestamp=_parse_datetime(data["timestamp"]),
        )


def compute_popularity_score(
    vote_average: float,
    vote_count: int,
    popularity: float,
    review_count: int,
) -> int:
    """
    Refresh priority of a subject, rounded half up.

    0.3 * vote average + 0.3 * log10(votes + 1)
    + 0.2 * log10(popularity + 1) + 0.2 * log10(reviews + 1)
    """
    score = (
        0.3 * vote_average
        + 0.3 * math.log10(max(vote_count, 0) + 1)
        + 0.2 * math.log10(max(popularity, 0) + 1)
        + 0.2 * math.log10(max(review_count, 0) + 1)
    )
    return int(math.floor(score + 0.5))


@dataclass(frozen=True)
class SynthesisRecord:
    """Synthesized review data for one subject."""
    subject_id: int
    created_at: datetime
    title: str = ""
    year: Optional[int] = None
    summary: str = EMPTY_STATE_SUMMARY
    sentiment: OverallSentiment = field(default_factory=OverallSentiment)
    aspects: Dict[str, AspectScore] = field(
        default_factory=lambda: {name: AspectScore() for name in ASPECT_NAMES}
    )
    themes: Tuple[Theme, ...] = ()
    ratings: RatingBreakdown = field(default_factory=RatingBreakdown.empty)
    review_count: int = 0
    sources: Dict[str, int] = field(default_factory=lambda: {s.value: 0 for s in ReviewSource})
    featured_reviews: Tuple[FeaturedReview, ...] = ()
    status: RecordStatus = RecordStatus.PENDING
    processing_log: Tuple[ProcessingLogEntry, ...] = ()
    last_updated: Optional[datetime] = None
    needs_update: bool = False
    popularity_score: int = 0

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def with_log(self, step: str, status: LogStatus, message: str, at: datetime) -> "SynthesisRecord":
        entry = ProcessingLogEntry(step=step, status=status, message=message, timestamp=at)
        return replace(self, processing_log=self.processing_log + (entry,))

    def with_status(self, status: RecordStatus) -> "SynthesisRecord":
        return replace(self, status=status)

    def with_analysis(self, analysis: ReviewAnalysis) -> "SynthesisRecord":
        return replace(
            self,
            summary=analysis.summary,
            sentiment=analysis.sentiment,
            aspects=dict(analysis.aspects),
            themes=tuple(analysis.themes),
            ratings=analysis.ratings,
            review_count=analysis.review_count,
            sources=dict(analysis.sources),
            featured_reviews=tuple(analysis.featured_reviews),
        )

    # =========================================================================
    # ACCESSORS
    # =========================================================================

    @property
    def positive_percentage(self) -> int:
        breakdown = self.sentiment.breakdown
        total = sum(breakdown.values())
        if total == 0:
            return 0
        positive = (
            breakdown.get(SentimentClass.VERY_POSITIVE.value, 0)
            + breakdown.get(SentimentClass.POSITIVE.value, 0)
        )
        return int(math.floor(positive / total * 100 + 0.5))

    def needs_refresh(self, now: datetime, window: timedelta = DEFAULT_REFRESH_WINDOW) -> bool:
        """Flagged for update, never completed, or older than the window."""
        if self.needs_update or self.last_updated is None:
            return True
        return self.last_updated < now - window

    def recent_log(self, n: int = 3) -> Tuple[ProcessingLogEntry, ...]:
        if n <= 0:
            return ()
        return self.processing_log[-n:]

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "title": self.title,
            "year": self.year,
            "summary": self.summary,
            "sentiment": self.sentiment.to_dict(),
            "aspects": {name: score.to_dict() for name, score in self.aspects.items()},
            "themes": [t.to_dict() for t in self.themes],
            "ratings": self.ratings.to_dict(),
            "review_count": self.review_count,
            "sources": dict(self.sources),
            "featured_reviews": [r.to_dict() for r in self.featured_reviews],
            "status": self.status.value,
            "processing_log": [e.to_dict() for e in self.processing_log],
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "needs_update": self.needs_update,
            "popularity_score": self.popularity_score,
            "positive_percentage": self.positive_percentage,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SynthesisRecord":
        aspects = {name: AspectScore() for name in ASPECT_NAMES}
        for name, score in (data.get("aspects") or {}).items():
            aspects[name] = AspectScore.from_dict(score)

        sources = {s.value: 0 for s in ReviewSource}
        sources.update(data.get("sources") or {})

        last_updated = data.get("last_updated")
        return cls(
            subject_id=int(data["subject_id"]),
            created_at=_parse_datetime(data["created_at"]),
            title=data.get("title") or "",
            year=data.get("year"),
            summary=data.get("summary") or EMPTY_STATE_SUMMARY,
            sentiment=OverallSentiment.from_dict(data.get("sentiment") or {}),
            aspects=aspects,
            themes=tuple(Theme(t["theme"], t["count"]) for t in data.get("themes") or []),
            ratings=RatingBreakdown.from_dict(data.get("ratings") or {}),
            review_count=data.get("review_count", 0),
            sources=sources,
            featured_reviews=tuple(
                FeaturedReview.from_dict(r) for r in data.get("featured_reviews") or []
            ),
            status=RecordStatus(data.get("status", RecordStatus.PENDING.value)),
            processing_log=tuple(
                ProcessingLogEntry.from_dict(e) for e in data.get("processing_log") or []
            ),
            last_updated=_parse_datetime(last_updated) if last_updated else None,
            needs_update=bool(data.get("needs_update", False)),
            popularity_score=int(data.get("popularity_score") or 0),
        )


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))
