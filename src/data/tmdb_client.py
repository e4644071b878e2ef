"""
TMDb API Client
===============

Metadata provider and primary review catalog.

    - fetch_details(movie_id): title, release date, genres, vote stats, popularity
    - fetch_reviews(movie_id): first page of catalog reviews

Details are cached (Redis, 24h by default) since they change rarely and are
looked up on every synthesis run.

Configuration:
    TMDB_API_KEY: TMDb v3 API key (from .env)
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from ..cache.redis_cache import RedisCache
from .config import TmdbConfig, get_settings

logger = logging.getLogger(__name__)


class TmdbAPIError(Exception):
    """Base exception for TMDb API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TmdbNotFoundError(TmdbAPIError):
    """Movie id unknown to TMDb."""
    pass


class TmdbUnauthorizedError(TmdbAPIError):
    """Missing or invalid API key."""
    pass


class TmdbRateLimitError(TmdbAPIError):
    """Rate limit exceeded (HTTP 429)."""
    pass


class TmdbTimeoutError(TmdbAPIError):
    """Request did not complete within the configured timeout."""
    pass


@dataclass(frozen=True)
class MovieDetails:
    """The subset of TMDb movie details the synthesis needs."""
    movie_id: int
    title: str
    release_date: Optional[str] = None
    genres: List[str] = field(default_factory=list)
    vote_average: float = 0.0
    vote_count: int = 0
    popularity: float = 0.0

    @property
    def year(self) -> Optional[int]:
        if not self.release_date or len(self.release_date) < 4:
            return None
        try:
            return int(self.release_date[:4])
        except ValueError:
            return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "movie_id": self.movie_id,
            "title": self.title,
            "release_date": self.release_date,
            "genres": list(self.genres),
            "vote_average": self.vote_average,
            "vote_count": self.vote_count,
            "popularity": self.popularity,
        }

    @classmethod
    def from_api(cls, movie_id: int, data: Dict[str, Any]) -> "MovieDetails":
        return cls(
            movie_id=movie_id,
            title=data.get("title") or data.get("original_title") or "",
            release_date=data.get("release_date") or None,
            genres=[g.get("name", "") for g in data.get("genres") or [] if isinstance(g, dict)],
            vote_average=float(data.get("vote_average") or 0.0),
            vote_count=int(data.get("vote_count") or 0),
            popularity=float(data.get("popularity") or 0.0),
        )


class TmdbClient:
    """
    Thin TMDb v3 client built on requests.

    HTTP errors are mapped to the TmdbAPIError hierarchy so callers can tell
    an unknown movie from an outage.
    """

    def __init__(
        self,
        config: Optional[TmdbConfig] = None,
        cache: Optional[RedisCache] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config or get_settings().tmdb
        self.cache = cache
        self.session = session or requests.Session()
        self._requests_made = 0

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.config.api_key:
            raise TmdbUnauthorizedError("TMDb API key not configured. Set TMDB_API_KEY in .env")

        query = {"api_key": self.config.api_key, "language": self.config.language}
        query.update(params or {})
        url = f"{self.config.base_url.rstrip('/')}{path}"

        try:
            response = self.session.get(url, params=query, timeout=self.config.request_timeout)
        except requests.Timeout as e:
            raise TmdbTimeoutError(f"TMDb request timed out: {path}") from e
        except requests.RequestException as e:
            raise TmdbAPIError(f"TMDb request failed: {e}") from e

        self._requests_made += 1

        if response.status_code == 404:
            raise TmdbNotFoundError(f"TMDb resource not found: {path}", 404)
        if response.status_code == 401:
            raise TmdbUnauthorizedError("Invalid TMDb API key", 401)
        if response.status_code == 429:
            raise TmdbRateLimitError("TMDb rate limit exceeded", 429)
        if response.status_code != 200:
            raise TmdbAPIError(
                f"TMDb error: {response.status_code} - {response.text[:200]}",
                response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise TmdbAPIError(f"Invalid JSON from TMDb: {e}") from e

    def fetch_details(self, movie_id: int) -> MovieDetails:
        """
        Movie details, served from cache when available.

        Raises:
            TmdbNotFoundError: Unknown movie id
            TmdbAPIError: Any other provider failure
        """
        cache_key = f"tmdb:details:{movie_id}"
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached:
                logger.debug(f"TMDb details cache hit for {movie_id}")
                return MovieDetails(**cached)

        data = self._get(f"/movie/{movie_id}")
        details = MovieDetails.from_api(movie_id, data)

        if self.cache is not None:
            self.cache.set(cache_key, details.to_dict(), ttl_hours=self.config.cache_ttl_hours)

        return details

    def fetch_reviews(self, movie_id: int, page: int = 1) -> List[Dict[str, Any]]:
        """Raw review payloads from /movie/{id}/reviews."""
        data = self._get(f"/movie/{movie_id}/reviews", {"page": page})
        results = data.get("results")
        if not isinstance(results, list):
            raise TmdbAPIError(f"Malformed TMDb reviews payload for {movie_id}")
        return results

    def get_stats(self) -> Dict[str, Any]:
        return {
            "requests_made": self._requests_made,
            "cache_backend": self.cache.backend if self.cache is not None else None,
        }
