"""
Review Collection & Analysis
============================

Collects audience reviews of a movie from several sources and turns them
into sentiment, aspect, theme and rating aggregates plus a short summary.

Modules:
    review_models   - Value types (RawReview, ScoredReview, AspectScore, ...)
    sources         - One fetcher per review source (TMDb, Reddit, Letterboxd, internal)
    collector       - Concurrent, failure-isolating fan-out over the sources
    sentiment       - Lexicon sentiment scoring and classification
    aspects         - Per-aspect sentiment attribution
    themes          - Stemmed keyword themes
    summarizer      - Provider summaries with deterministic fallback
    review_analyzer - The full analysis pipeline
"""

from .review_models import (
    EMPTY_STATE_SUMMARY,
    RawReview,
    ReviewAnalysis,
    ReviewSource,
    ScoredReview,
    SentimentClass,
)
from .collector import ReviewCollector
from .review_analyzer import ReviewAnalyzer
from .sentiment import SentimentAnalyzer, classify_sentiment
from .sources import SourceFetchError, extract_rating_from_text
