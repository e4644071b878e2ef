"""
Review Sentiment Analyzer (Deterministic)
=========================================

Lexicon-based sentiment scoring of reviews and sentences.

Each lower-cased word found in the VADER valence lexicon contributes its
valence to the score (sign flipped after a negator such as "not").
The comparative score normalizes the total by the number of words, so
long and short reviews land on the same scale.

Usage:
    analyzer = SentimentAnalyzer()
    scored = analyzer.analyze_sentiment(reviews)
    result = analyzer.score_text("Great acting, boring plot.")
"""

import logging
import re
from typing import Dict, List, Optional

from vaderSentiment.vaderSentiment import NEGATE, SentimentIntensityAnalyzer

from .review_models import RawReview, ScoredReview, SentimentClass, SentimentResult

logger = logging.getLogger(__name__)


# Classification thresholds on the comparative score (inclusive lower bounds)
SENTIMENT_THRESHOLDS = (
    (0.5, SentimentClass.VERY_POSITIVE),
    (0.1, SentimentClass.POSITIVE),
    (-0.1, SentimentClass.NEUTRAL),
    (-0.5, SentimentClass.NEGATIVE),
)

_WORD_RE = re.compile(r"[a-z0-9']+")

# Built once, shared by every analyzer instance
_LEXICON: Optional[Dict[str, float]] = None


def _default_lexicon() -> Dict[str, float]:
    global _LEXICON
    if _LEXICON is None:
        _LEXICON = SentimentIntensityAnalyzer().lexicon
    return _LEXICON


def classify_sentiment(comparative: float) -> SentimentClass:
    """Map a comparative score to a sentiment class."""
    for threshold, classification in SENTIMENT_THRESHOLDS:
        if comparative >= threshold:
            return classification
    return SentimentClass.VERY_NEGATIVE


def tokenize(text: str) -> List[str]:
    """Lower-cased word tokens used for sentiment scoring."""
    return _WORD_RE.findall(text.lower())


class SentimentAnalyzer:
    """
    Scores reviews and sentences against a valence lexicon.

    The lexicon defaults to the one shipped with vaderSentiment; tests and
    callers can inject a smaller word -> valence mapping.
    """

    def __init__(self, lexicon: Optional[Dict[str, float]] = None):
        self.lexicon = lexicon if lexicon is not None else _default_lexicon()
        self.negators = frozenset(w.replace("'", "") for w in NEGATE) | frozenset(NEGATE)

    def score_text(self, text: str) -> SentimentResult:
        """Score a single piece of text."""
        tokens = tokenize(text)
        score = 0.0
        positive_hits: List[str] = []
        negative_hits: List[str] = []

        for i, token in enumerate(tokens):
            valence = self.lexicon.get(token)
            if valence is None:
                continue
            if i > 0 and tokens[i - 1] in self.negators:
                valence = -valence
            score += valence
            if valence > 0:
                positive_hits.append(token)
            elif valence < 0:
                negative_hits.append(token)

        comparative = score / len(tokens) if tokens else 0.0

        return SentimentResult(
            score=round(score, 4),
            comparative=comparative,
            positive_hits=positive_hits,
            negative_hits=negative_hits,
            classification=classify_sentiment(comparative),
        )

    def analyze_sentiment(self, reviews: List[RawReview]) -> List[ScoredReview]:
        """Attach a sentiment result to every review."""
        scored = [ScoredReview(review=r, sentiment=self.score_text(r.content)) for r in reviews]
        logger.debug(f"Scored sentiment for {len(scored)} reviews")
        return scored
