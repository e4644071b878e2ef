"""
Aspect Extractor (Deterministic)
================================

Attributes sentence-level sentiment to a fixed set of film aspects
using a keyword lexicon. A sentence mentioning several aspects
("great cast but the story drags") counts for each of them.
"""

import logging
import re
from typing import Dict, List, Optional, Pattern, Tuple

from .review_models import ASPECT_NAMES, AspectScore, RawReview
from .sentiment import SentimentAnalyzer

logger = logging.getLogger(__name__)


# =============================================================================
# ASPECT LEXICON
# =============================================================================
# Keywords match at a word start, so plurals and inflections count
# ("characters", "visuals", "paced").

ASPECT_LEXICON: Dict[str, List[str]] = {
    "plot": ["story", "plot", "narrative", "script", "storyline", "writing"],
    "acting": ["acting", "performance", "actor", "actress", "cast", "character"],
    "direction": ["direction", "director", "directing", "filmmaker"],
    "visuals": ["visual", "cinematography", "effects", "cgi", "graphics", "imagery"],
    "audio": ["music", "soundtrack", "audio", "sound", "score"],
    "pacing": ["pace", "pacing", "length", "duration", "boring", "slow", "fast"],
    "overall": ["overall", "general", "movie", "film", "recommend", "worth"],
}

_SENTENCE_SPLIT = re.compile(r"[.!?]+")


def split_sentences(text: str) -> List[str]:
    """Split text into non-empty sentences."""
    return [s.strip() for s in _SENTENCE_SPLIT.split(text) if s.strip()]


class AspectExtractor:
    """Accumulates per-aspect sentiment over a set of reviews."""

    def __init__(
        self,
        sentiment_analyzer: Optional[SentimentAnalyzer] = None,
        lexicon: Optional[Dict[str, List[str]]] = None,
    ):
        self.sentiment_analyzer = sentiment_analyzer or SentimentAnalyzer()
        self.lexicon = lexicon or ASPECT_LEXICON
        self._patterns: Dict[str, List[Tuple[str, Pattern]]] = {
            aspect: [(kw, re.compile(rf"\b{re.escape(kw)}", re.IGNORECASE)) for kw in keywords]
            for aspect, keywords in self.lexicon.items()
        }

    def matched_keywords(self, aspect: str, sentence: str) -> List[str]:
        """Keywords of an aspect found in the sentence, in lexicon order."""
        return [kw for kw, pattern in self._patterns[aspect] if pattern.search(sentence)]

    def analyze_aspects(self, reviews: List[RawReview]) -> Dict[str, AspectScore]:
        """
        Compute per-aspect mention counts and sentiment.

        Returns:
            Dict aspect -> AspectScore, always containing every aspect.
        """
        scores = {aspect: AspectScore() for aspect in self.lexicon}

        for review in reviews:
            for sentence in split_sentences(review.content):
                comparative = None
                for aspect in self.lexicon:
                    keywords = self.matched_keywords(aspect, sentence)
                    if not keywords:
                        continue

                    # Score lazily: most sentences mention no aspect
                    if comparative is None:
                        comparative = self.sentiment_analyzer.score_text(sentence).comparative

                    score = scores[aspect]
                    score.mentions += 1
                    score.total_sentiment += comparative
                    if comparative > 0:
                        score.positive_count += 1
                    elif comparative < 0:
                        score.negative_count += 1
                    for kw in keywords:
                        if kw not in score.keywords:
                            score.keywords.append(kw)

        mentioned = [a for a in ASPECT_NAMES if a in scores and scores[a].mentions]
        logger.debug(f"Aspects mentioned across {len(reviews)} reviews: {mentioned}")
        return scores
