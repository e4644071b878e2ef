"""
Review Synthesis Data Module
============================

Configuration and the TMDb metadata client.

Quick Start:
    from src.data import TmdbClient, get_settings

    client = TmdbClient(get_settings().tmdb)
    details = client.fetch_details(550)

Configuration:
    Set environment variables or create a .env file.
    See .env.example for all available options.
"""

from .config import get_settings, Settings
from .tmdb_client import (
    MovieDetails,
    TmdbClient,
    TmdbAPIError,
    TmdbNotFoundError,
    TmdbRateLimitError,
    TmdbTimeoutError,
    TmdbUnauthorizedError,
)

__all__ = [
    "get_settings",
    "Settings",
    "MovieDetails",
    "TmdbClient",
    "TmdbAPIError",
    "TmdbNotFoundError",
    "TmdbRateLimitError",
    "TmdbTimeoutError",
    "TmdbUnauthorizedError",
]
