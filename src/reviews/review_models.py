"""
Review Data Models
==================

Value types flowing through the review synthesis pipeline:
raw reviews from sources, sentiment-scored reviews, and the
per-aspect / theme / rating aggregates computed from them.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


class ReviewSource(str, Enum):
    """Review source variants."""
    TMDB = "tmdb"                # primary catalog
    REDDIT = "reddit"            # forum
    LETTERBOXD = "letterboxd"    # community critic
    INTERNAL = "internal"        # discussions posted in the app


class SentimentClass(str, Enum):
    """Sentiment classification, ordered from most to least positive."""
    VERY_POSITIVE = "very_positive"
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"
    VERY_NEGATIVE = "very_negative"


# Canonical summary for a subject with no collected reviews
EMPTY_STATE_SUMMARY = "No reviews found for this title yet."

RATING_BANDS = ("9-10", "7-8", "5-6", "3-4", "1-2")

ASPECT_NAMES = ("plot", "acting", "direction", "visuals", "audio", "pacing", "overall")


@dataclass(frozen=True)
class RawReview:
    """A single opinion item as returned by a source."""
    source: ReviewSource
    author: str
    content: str
    rating: Optional[float] = None      # normalized 0-10
    timestamp: Optional[datetime] = None
    url: str = ""
    helpfulness: Optional[int] = None

    @property
    def quality_score(self) -> float:
        """Ranking score used to pick featured / summarized reviews."""
        return (self.helpfulness or 0) + len(self.content) / 100


@dataclass(frozen=True)
class SentimentResult:
    """Lexicon sentiment of a piece of text."""
    score: float
    comparative: float
    positive_hits: List[str]
    negative_hits: List[str]
    classification: SentimentClass


@dataclass(frozen=True)
class ScoredReview:
    """A RawReview with its sentiment attached."""
    review: RawReview
    sentiment: SentimentResult

    @property
    def content(self) -> str:
        return self.review.content

    @property
    def source(self) -> ReviewSource:
        return self.review.source

    @property
    def rating(self) -> Optional[float]:
        return self.review.rating

    @property
    def is_positive(self) -> bool:
        return self.sentiment.classification in (
            SentimentClass.VERY_POSITIVE, SentimentClass.POSITIVE,
        )


@dataclass
class AspectScore:
    """Accumulated sentiment for one topical aspect."""
    mentions: int = 0
    total_sentiment: float = 0.0
    positive_count: int = 0
    negative_count: int = 0
    keywords: List[str] = field(default_factory=list)

    @property
    def average_sentiment(self) -> float:
        if self.mentions == 0:
            return 0.0
        return self.total_sentiment / self.mentions

    def to_dict(self) -> Dict:
        return {
            "mentions": self.mentions,
            "total_sentiment": round(self.total_sentiment, 4),
            "average_sentiment": round(self.average_sentiment, 4),
            "positive_count": self.positive_count,
            "negative_count": self.negative_count,
            "keywords": list(self.keywords),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "AspectScore":
        return cls(
            mentions=data.get("mentions", 0),
            total_sentiment=data.get("total_sentiment", 0.0),
            positive_count=data.get("positive_count", 0),
            negative_count=data.get("negative_count", 0),
            keywords=list(data.get("keywords", [])),
        )


@dataclass(frozen=True)
class Theme:
    """A stemmed keyword and how often it appears."""
    theme: str
    count: int

    def to_dict(self) -> Dict:
        return {"theme": self.theme, "count": self.count}


@dataclass(frozen=True)
class RatingBreakdown:
    """Rating average and histogram over fixed bands."""
    average: Optional[float]
    distribution: Dict[str, int]
    total_ratings: int

    @classmethod
    def empty(cls) -> "RatingBreakdown":
        return cls(average=None, distribution={band: 0 for band in RATING_BANDS}, total_ratings=0)

    def to_dict(self) -> Dict:
        return {
            "average": self.average,
            "distribution": dict(self.distribution),
            "total_ratings": self.total_ratings,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "RatingBreakdown":
        distribution = {band: 0 for band in RATING_BANDS}
        distribution.update(data.get("distribution") or {})
        return cls(
            average=data.get("average"),
            distribution=distribution,
            total_ratings=data.get("total_ratings", 0),
        )


@dataclass(frozen=True)
class FeaturedReview:
    """A top-ranked review surfaced (truncated) in the synthesis."""
    source: str
    author: str
    content: str
    sentiment: str
    rating: Optional[float] = None
    helpfulness: Optional[int] = None

    def to_dict(self) -> Dict:
        return {
            "source": self.source,
            "author": self.author,
            "content": self.content,
            "sentiment": self.sentiment,
            "rating": self.rating,
            "helpfulness": self.helpfulness,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "FeaturedReview":
        return cls(
            source=data.get("source", ""),
            author=data.get("author", ""),
            content=data.get("content", ""),
            sentiment=data.get("sentiment", SentimentClass.NEUTRAL.value),
            rating=data.get("rating"),
            helpfulness=data.get("helpfulness"),
        )


@dataclass(frozen=True)
class OverallSentiment:
    """Overall sentiment across all analyzed reviews."""
    classification: SentimentClass = SentimentClass.NEUTRAL
    score: float = 0.0
    breakdown: Dict[str, int] = field(
        default_factory=lambda: {c.value: 0 for c in SentimentClass}
    )

    def to_dict(self) -> Dict:
        return {
            "overall": self.classification.value,
            "score": self.score,
            "breakdown": dict(self.breakdown),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "OverallSentiment":
        breakdown = {c.value: 0 for c in SentimentClass}
        breakdown.update(data.get("breakdown") or {})
        return cls(
            classification=SentimentClass(data.get("overall", SentimentClass.NEUTRAL.value)),
            score=data.get("score", 0.0),
            breakdown=breakdown,
        )


@dataclass(frozen=True)
class ReviewAnalysis:
    """Complete output of the analysis pipeline for one subject."""
    summary: str
    sentiment: OverallSentiment
    aspects: Dict[str, AspectScore]
    themes: List[Theme]
    ratings: RatingBreakdown
    review_count: int
    sources: Dict[str, int]
    featured_reviews: List[FeaturedReview]

    @classmethod
    def empty(cls) -> "ReviewAnalysis":
        return cls(
            summary=EMPTY_STATE_SUMMARY,
            sentiment=OverallSentiment(),
            aspects={name: AspectScore() for name in ASPECT_NAMES},
            themes=[],
            ratings=RatingBreakdown.empty(),
            review_count=0,
            sources={s.value: 0 for s in ReviewSource},
            featured_reviews=[],
        )


def with_rating(review: RawReview, rating: Optional[float]) -> RawReview:
    """Return a copy of the review carrying a new rating."""
    return replace(review, rating=rating)
