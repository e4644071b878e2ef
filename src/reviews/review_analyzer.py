"""
Review Synthesis Analyzer
=========================

Runs the full analysis pipeline over the merged reviews of one subject:

    1. Sentiment per review
    2. Aspect attribution per sentence
    3. Key themes (stemmed keyword frequency)
    4. Rating breakdown
    5. Summary (provider or deterministic fallback)
    6. Overall sentiment, per-source counts, featured reviews

Usage:
    analyzer = ReviewAnalyzer()
    analysis = await analyzer.analyze_reviews(reviews)
"""

import logging
from typing import Dict, List, Optional

from .aspects import AspectExtractor
from .review_models import (
    FeaturedReview,
    OverallSentiment,
    RATING_BANDS,
    RatingBreakdown,
    RawReview,
    ReviewAnalysis,
    ReviewSource,
    ScoredReview,
    SentimentClass,
)
from .sentiment import SentimentAnalyzer, classify_sentiment
from .summarizer import Summarizer
from .themes import ThemeExtractor

logger = logging.getLogger(__name__)


FEATURED_MIN_CHARS = 100
FEATURED_MAX_CHARS = 300


def rating_band(rating: float) -> str:
    """Histogram band of a 0-10 rating."""
    if rating >= 9:
        return "9-10"
    if rating >= 7:
        return "7-8"
    if rating >= 5:
        return "5-6"
    if rating >= 3:
        return "3-4"
    return "1-2"


def generate_rating_breakdown(reviews: List[RawReview]) -> RatingBreakdown:
    """Average and band histogram over reviews carrying a rating."""
    ratings = [r.rating for r in reviews if r.rating is not None]
    if not ratings:
        return RatingBreakdown.empty()

    distribution = {band: 0 for band in RATING_BANDS}
    for rating in ratings:
        distribution[rating_band(rating)] += 1

    average = sum(ratings) / len(ratings)
    return RatingBreakdown(
        average=round(average, 1),
        distribution=distribution,
        total_ratings=len(ratings),
    )


def select_featured_reviews(reviews: List[ScoredReview], count: int = 3) -> List[FeaturedReview]:
    """Top reviews by helpfulness and length, content truncated for display."""
    candidates = [r for r in reviews if len(r.content) > FEATURED_MIN_CHARS]
    candidates.sort(key=lambda r: r.review.quality_score, reverse=True)

    featured = []
    for scored in candidates[:count]:
        content = scored.content
        if len(content) > FEATURED_MAX_CHARS:
            content = content[:FEATURED_MAX_CHARS] + "..."
        featured.append(FeaturedReview(
            source=scored.source.value,
            author=scored.review.author,
            content=content,
            sentiment=scored.sentiment.classification.value,
            rating=scored.rating,
            helpfulness=scored.review.helpfulness,
        ))
    return featured


def sentiment_breakdown(reviews: List[ScoredReview]) -> Dict[str, int]:
    breakdown = {c.value: 0 for c in SentimentClass}
    for review in reviews:
        breakdown[review.sentiment.classification.value] += 1
    return breakdown


def source_breakdown(reviews: List[RawReview]) -> Dict[str, int]:
    sources = {s.value: 0 for s in ReviewSource}
    for review in reviews:
        sources[review.source.value] += 1
    return sources


def overall_sentiment(reviews: List[ScoredReview]) -> OverallSentiment:
    """Mean comparative score across reviews, classified."""
    if not reviews:
        return OverallSentiment()
    average = sum(r.sentiment.comparative for r in reviews) / len(reviews)
    return OverallSentiment(
        classification=classify_sentiment(average),
        score=round(average, 3),
        breakdown=sentiment_breakdown(reviews),
    )


class ReviewAnalyzer:
    """Composes the analysis components into one pipeline."""

    def __init__(
        self,
        sentiment_analyzer: Optional[SentimentAnalyzer] = None,
        aspect_extractor: Optional[AspectExtractor] = None,
        theme_extractor: Optional[ThemeExtractor] = None,
        summarizer: Optional[Summarizer] = None,
        featured_count: int = 3,
    ):
        self.sentiment_analyzer = sentiment_analyzer or SentimentAnalyzer()
        self.aspect_extractor = aspect_extractor or AspectExtractor(self.sentiment_analyzer)
        self.theme_extractor = theme_extractor or ThemeExtractor()
        self.summarizer = summarizer or Summarizer()
        self.featured_count = featured_count

    async def analyze_reviews(self, reviews: List[RawReview]) -> ReviewAnalysis:
        """
        Analyze the merged reviews of a subject.

        Returns:
            ReviewAnalysis; the canonical empty result when there are no reviews.
        """
        if not reviews:
            return ReviewAnalysis.empty()

        logger.info(f"Analyzing {len(reviews)} reviews")

        scored = self.sentiment_analyzer.analyze_sentiment(reviews)
        aspects = self.aspect_extractor.analyze_aspects(reviews)
        themes = self.theme_extractor.extract_key_themes(reviews)
        ratings = generate_rating_breakdown(reviews)
        summary = await self.summarizer.summarize(scored, aspects=aspects)

        return ReviewAnalysis(
            summary=summary,
            sentiment=overall_sentiment(scored),
            aspects=aspects,
            themes=themes,
            ratings=ratings,
            review_count=len(reviews),
            sources=source_breakdown(reviews),
            featured_reviews=select_featured_reviews(scored, self.featured_count),
        )
