"""
Review Sources
==============

One fetcher per review source variant:

    - TmdbReviewSource: catalog reviews from the TMDb API
    - RedditReviewSource: review-like self posts from movie subreddits
    - LetterboxdReviewSource: scraped community reviews (search page, then reviews page)
    - InternalReviewSource: discussions posted in the app with category 'review'

Every fetcher is blocking (requests / psycopg2) and is run in a worker thread
by the ReviewCollector. A fetcher raises SourceFetchError on failure; the
collector turns that into an empty contribution.
"""

import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import quote

import requests
from bs4 import BeautifulSoup

from ..data.config import SourcesConfig
from ..data.tmdb_client import TmdbAPIError, TmdbClient
from .review_models import RawReview, ReviewSource

logger = logging.getLogger(__name__)


# Ordered: first match wins. Second element rescales the value to 0-10.
RATING_PATTERNS = (
    (re.compile(r"(\d+(?:\.\d+)?)\s*/\s*10", re.IGNORECASE), 1.0),
    (re.compile(r"(\d+(?:\.\d+)?)\s*/\s*5", re.IGNORECASE), 2.0),
    (re.compile(r"(\d+(?:\.\d+)?)\s*stars?", re.IGNORECASE), 2.0),
    (re.compile(r"(\d+(?:\.\d+)?)\s*out\s*of\s*10", re.IGNORECASE), 1.0),
)

REVIEW_KEYWORDS = (
    "review", "rating", "stars", "recommend", "opinion",
    "thought", "watched", "movie", "film", "cinema",
)

_LETTERBOXD_RATED_RE = re.compile(r"rated-(\d+)")


def clamp_rating(value: float) -> float:
    return min(10.0, max(0.0, value))


def extract_rating_from_text(text: str) -> Optional[float]:
    """
    Find a rating in free text and normalize it to 0-10.

    "8/10" -> 8.0, "4/5" -> 8.0, "4 stars" -> 8.0, "9 out of 10" -> 9.0
    """
    if not text:
        return None
    for pattern, multiplier in RATING_PATTERNS:
        match = pattern.search(text)
        if match:
            return clamp_rating(float(match.group(1)) * multiplier)
    return None


def is_review_content(text: str, title: str) -> bool:
    """Review-like vocabulary plus a mention of the title's first word."""
    lower_text = text.lower()
    words = title.lower().split()
    if not words:
        return False
    has_keyword = any(keyword in lower_text for keyword in REVIEW_KEYWORDS)
    return has_keyword and words[0] in lower_text


class SourceFetchError(Exception):
    """A review source could not produce results."""

    def __init__(self, source: ReviewSource, message: str):
        super().__init__(f"{source.value}: {message}")
        self.source = source


@dataclass(frozen=True)
class SourceQuery:
    """What a source needs to look a subject up."""
    subject_id: int
    title: str
    year: Optional[int] = None

    @property
    def search_text(self) -> str:
        return f"{self.title} {self.year}" if self.year else self.title


class BaseReviewSource(ABC):
    """
    Base class for review fetchers.

    Subclasses issuing several requests call _pace() before each one so
    consecutive requests are at least `request_delay` seconds apart.
    """

    source: ReviewSource

    def __init__(
        self,
        request_delay: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.request_delay = request_delay
        self._sleep = sleep
        self._last_request: Optional[float] = None

    @property
    def name(self) -> str:
        return self.source.value

    def _pace(self) -> None:
        if self._last_request is not None and self.request_delay > 0:
            wait = self.request_delay - (time.monotonic() - self._last_request)
            if wait > 0:
                self._sleep(wait)
        self._last_request = time.monotonic()

    @abstractmethod
    def fetch_items(self, query: SourceQuery) -> List[RawReview]:
        """Fetch reviews for a subject. Raises SourceFetchError."""
        pass


# =============================================================================
# TMDB
# =============================================================================

class TmdbReviewSource(BaseReviewSource):
    """Catalog reviews (first page) with the author's own rating."""

    source = ReviewSource.TMDB

    def __init__(self, client: TmdbClient, **kwargs):
        super().__init__(**kwargs)
        self.client = client

    def fetch_items(self, query: SourceQuery) -> List[RawReview]:
        try:
            results = self.client.fetch_reviews(query.subject_id)
        except TmdbAPIError as e:
            raise SourceFetchError(self.source, str(e)) from e

        reviews = []
        for item in results:
            content = (item.get("content") or "").strip()
            if not content:
                continue
            details = item.get("author_details") or {}
            rating = details.get("rating")
            reviews.append(RawReview(
                source=self.source,
                author=item.get("author") or details.get("username") or "Anonymous",
                content=content,
                rating=clamp_rating(float(rating)) if rating is not None else None,
                timestamp=_parse_iso(item.get("created_at")),
                url=item.get("url") or "",
            ))
        return reviews


# =============================================================================
# REDDIT
# =============================================================================

class RedditReviewSource(BaseReviewSource):
    """Searches a fixed set of subreddits for long, review-like self posts."""

    source = ReviewSource.REDDIT
    SEARCH_URL = "https://www.reddit.com/r/{subreddit}/search.json"

    def __init__(
        self,
        config: SourcesConfig,
        session: Optional[requests.Session] = None,
        **kwargs,
    ):
        kwargs.setdefault("request_delay", config.reddit_request_delay)
        super().__init__(**kwargs)
        self.config = config
        self.session = session or requests.Session()

    def _search(self, subreddit: str, query: SourceQuery) -> List[Dict[str, Any]]:
        self._pace()
        try:
            response = self.session.get(
                self.SEARCH_URL.format(subreddit=subreddit),
                params={
                    "q": f"{query.search_text} review",
                    "restrict_sr": 1,
                    "sort": "relevance",
                    "limit": self.config.reddit_search_limit,
                },
                headers={"User-Agent": self.config.user_agent},
                timeout=self.config.request_timeout,
            )
        except requests.RequestException as e:
            raise SourceFetchError(self.source, f"r/{subreddit} request failed: {e}") from e

        if response.status_code != 200:
            raise SourceFetchError(self.source, f"r/{subreddit} returned {response.status_code}")

        try:
            children = response.json()["data"]["children"]
        except (ValueError, KeyError, TypeError) as e:
            raise SourceFetchError(self.source, f"malformed r/{subreddit} payload") from e

        return [child.get("data") or {} for child in children]

    def fetch_items(self, query: SourceQuery) -> List[RawReview]:
        reviews: List[RawReview] = []
        seen_permalinks = set()

        for subreddit in self.config.reddit_subreddits:
            for post in self._search(subreddit, query):
                text = post.get("selftext") or ""
                permalink = post.get("permalink") or ""
                if len(text) <= self.config.reddit_min_length:
                    continue
                if not is_review_content(text, query.title):
                    continue
                if permalink in seen_permalinks:
                    continue
                seen_permalinks.add(permalink)

                created = post.get("created_utc")
                reviews.append(RawReview(
                    source=self.source,
                    author=post.get("author") or "Anonymous",
                    content=text,
                    rating=extract_rating_from_text(text),
                    timestamp=datetime.fromtimestamp(created, tz=timezone.utc) if created else None,
                    url=f"https://reddit.com{permalink}" if permalink else "",
                    helpfulness=post.get("score"),
                ))

                if len(reviews) >= self.config.reddit_max_items:
                    return reviews

        return reviews


# =============================================================================
# LETTERBOXD
# =============================================================================

class LetterboxdReviewSource(BaseReviewSource):
    """Scrapes the first film match's reviews page."""

    source = ReviewSource.LETTERBOXD
    BASE_URL = "https://letterboxd.com"

    def __init__(
        self,
        config: SourcesConfig,
        session: Optional[requests.Session] = None,
        **kwargs,
    ):
        kwargs.setdefault("request_delay", config.letterboxd_request_delay)
        super().__init__(**kwargs)
        self.config = config
        self.session = session or requests.Session()

    def _fetch_html(self, url: str) -> str:
        self._pace()
        try:
            response = self.session.get(
                url,
                headers={"User-Agent": f"Mozilla/5.0 (compatible; {self.config.user_agent})"},
                timeout=self.config.request_timeout,
            )
        except requests.RequestException as e:
            raise SourceFetchError(self.source, f"request failed: {e}") from e

        if response.status_code != 200:
            raise SourceFetchError(self.source, f"{url} returned {response.status_code}")
        return response.text

    def find_film_path(self, query: SourceQuery) -> Optional[str]:
        html = self._fetch_html(f"{self.BASE_URL}/search/{quote(query.title)}/")
        soup = BeautifulSoup(html, "html.parser")
        link = soup.select_one(".film-title-wrapper a")
        if link is None:
            return None
        return link.get("href")

    def parse_reviews(self, html: str, url: str) -> List[RawReview]:
        soup = BeautifulSoup(html, "html.parser")
        reviews = []

        for element in soup.select(".film-detail-content .review, .film-detail .review"):
            text_node = element.select_one(".review-text") or element
            text = text_node.get_text(" ", strip=True)
            if len(text) <= self.config.letterboxd_min_length:
                continue

            author_node = element.select_one(".review-author")
            reviews.append(RawReview(
                source=self.source,
                author=author_node.get_text(strip=True) if author_node else "Anonymous",
                content=text,
                rating=_letterboxd_rating(element),
                timestamp=datetime.now(timezone.utc),
                url=url,
            ))

            if len(reviews) >= self.config.letterboxd_max_items:
                break

        return reviews

    def fetch_items(self, query: SourceQuery) -> List[RawReview]:
        film_path = self.find_film_path(query)
        if not film_path:
            logger.info(f"No Letterboxd match for '{query.title}'")
            return []

        url = f"{self.BASE_URL}{film_path.rstrip('/')}/reviews/"
        return self.parse_reviews(self._fetch_html(url), url)


def _letterboxd_rating(element) -> Optional[float]:
    """Rating from the `rated-N` class (N is already on a 0-10 scale)."""
    node = element.select_one(".rating")
    if node is None:
        return None
    for css_class in node.get("class") or []:
        match = _LETTERBOXD_RATED_RE.fullmatch(css_class)
        if match:
            return clamp_rating(float(match.group(1)))
    return None


# =============================================================================
# INTERNAL
# =============================================================================

DISCUSSIONS_QUERY = """
    SELECT id, author_name, content, likes_count, created_at
    FROM discussions
    WHERE movie_id = %s AND category = 'review'
    ORDER BY created_at DESC
"""


def load_discussions(subject_id: int) -> List[Dict[str, Any]]:
    """Review discussions for a movie from the app database."""
    from psycopg2.extras import RealDictCursor
    from ..api.db import get_connection

    with get_connection() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(DISCUSSIONS_QUERY, (subject_id,))
            return [dict(row) for row in cur.fetchall()]


class InternalReviewSource(BaseReviewSource):
    """Discussions posted in the app with category 'review'."""

    source = ReviewSource.INTERNAL

    def __init__(
        self,
        loader: Callable[[int], Iterable[Dict[str, Any]]] = load_discussions,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.loader = loader

    def fetch_items(self, query: SourceQuery) -> List[RawReview]:
        try:
            rows = list(self.loader(query.subject_id))
        except Exception as e:
            raise SourceFetchError(self.source, f"discussions query failed: {e}") from e

        reviews = []
        for row in rows:
            content = (row.get("content") or "").strip()
            if not content:
                continue
            reviews.append(RawReview(
                source=self.source,
                author=row.get("author_name") or "Anonymous",
                content=content,
                rating=None,
                timestamp=row.get("created_at"),
                url=f"/discussion/{row.get('id')}",
                helpfulness=row.get("likes_count") or 0,
            ))
        return reviews


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
