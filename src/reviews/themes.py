"""
Theme Extractor
===============

Frequency-based keyword theming: the most frequent stemmed content
words across all reviews of a subject.
"""

import logging
from collections import Counter
from typing import List, Optional

from nltk.stem import PorterStemmer
from nltk.tokenize import RegexpTokenizer

from .review_models import RawReview, Theme

logger = logging.getLogger(__name__)


MAX_THEMES = 10
MIN_TOKEN_LENGTH = 4

# English stopwords. Only words longer than three characters matter here,
# shorter ones are dropped by length before the lookup.
THEME_STOPWORDS = frozenset({
    "about", "above", "after", "again", "against", "all", "also", "although",
    "among", "another", "anyone", "anything", "because", "been", "before",
    "being", "below", "between", "both", "cannot", "could", "couldn", "does",
    "doesn", "doing", "down", "during", "each", "either", "else", "enough",
    "even", "ever", "every", "everything", "from", "further", "have", "haven",
    "having", "here", "hers", "herself", "himself", "however", "into", "itself",
    "just", "last", "least", "less", "like", "made", "make", "many", "might",
    "more", "most", "much", "must", "myself", "neither", "never", "nothing",
    "once", "only", "other", "others", "ours", "ourselves", "over", "own",
    "quite", "rather", "really", "same", "should", "shouldn", "since", "some",
    "something", "still", "such", "than", "that", "their", "theirs", "them",
    "themselves", "then", "there", "these", "they", "thing", "things", "this",
    "those", "though", "through", "thus", "together", "under", "until", "upon",
    "very", "wasn", "well", "were", "weren", "what", "whatever", "when",
    "where", "whether", "which", "while", "whom", "whose", "will", "with",
    "within", "without", "would", "wouldn", "your", "yours", "yourself",
    "yourselves",
})


def _is_numeric(token: str) -> bool:
    try:
        float(token)
        return True
    except ValueError:
        return False


class ThemeExtractor:
    """Counts stemmed content words and returns the top themes."""

    def __init__(self, stopwords: Optional[frozenset] = None, max_themes: int = MAX_THEMES):
        self.stopwords = stopwords if stopwords is not None else THEME_STOPWORDS
        self.max_themes = max_themes
        self.stemmer = PorterStemmer()
        self.tokenizer = RegexpTokenizer(r"\w+")

    def extract_key_themes(self, reviews: List[RawReview]) -> List[Theme]:
        """
        Top themes by descending count.

        Ties are broken by the stem in ascending order so results are
        reproducible.
        """
        combined = " ".join(r.content for r in reviews).lower()
        counts: Counter = Counter()

        for token in self.tokenizer.tokenize(combined):
            if len(token) < MIN_TOKEN_LENGTH or token in self.stopwords or _is_numeric(token):
                continue
            counts[self.stemmer.stem(token)] += 1

        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [Theme(theme=stem, count=count) for stem, count in ranked[: self.max_themes]]
