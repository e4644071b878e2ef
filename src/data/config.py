"""
Review Synthesis Configuration Module
=====================================

Centralized configuration management using environment variables.
Supports both .env files and system environment variables.

Environment Variables:
    TMDB_API_KEY: TMDb API key (required for metadata + catalog reviews)
    TMDB_BASE_URL: TMDb API base URL (default: https://api.themoviedb.org/3)
    TMDB_TIMEOUT: Request timeout in seconds (default: 8)

    SOURCE_TIMEOUT: Overall budget per review source in seconds (default: 45)
    REDDIT_SUBREDDITS: Comma-separated subreddits (default: movies,MovieReviews,flicks,TrueFilm)
    REDDIT_REQUEST_DELAY: Seconds between Reddit requests (default: 2.0)
    LETTERBOXD_REQUEST_DELAY: Seconds between Letterboxd requests (default: 3.0)

    SUMMARIZER_PROVIDER: huggingface | anthropic | none (default: huggingface)
    HF_API_URL: Hugging Face inference endpoint
    HF_API_TOKEN: Hugging Face token (optional)

    SYNTHESIS_REFRESH_DAYS: Staleness window in days (default: 7)
    SYNTHESIS_STORE: postgres | memory (default: postgres)

    DATABASE_HOST / DATABASE_PORT / DATABASE_NAME / DATABASE_USER / DATABASE_PASSWORD

    SYNTHESIS_ADMIN_TOKEN: Token required by the privileged regeneration endpoint
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional
from pathlib import Path
from dotenv import load_dotenv


# Load environment variables from .env file if present
env_path = Path(__file__).parent.parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


def get_env(key: str, default: Optional[str] = None, required: bool = False) -> Optional[str]:
    """
    Get environment variable with optional default and required validation.

    Raises:
        ValueError: If required=True and variable is not set
    """
    value = os.getenv(key, default)
    if required and value is None:
        raise ValueError(f"Required environment variable '{key}' is not set")
    return value


def get_env_int(key: str, default: int) -> int:
    """Get environment variable as integer."""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable '{key}' must be an integer, got: {value}")


def get_env_float(key: str, default: float) -> float:
    """Get environment variable as float."""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Environment variable '{key}' must be a float, got: {value}")


def get_env_bool(key: str, default: bool) -> bool:
    """Get environment variable as boolean."""
    value = os.getenv(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def get_env_list(key: str, default: List[str]) -> List[str]:
    """Get comma-separated environment variable as a list of strings."""
    value = os.getenv(key)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class TmdbConfig:
    """TMDb API configuration (metadata provider + primary catalog reviews)."""

    api_key: str = field(default_factory=lambda: get_env("TMDB_API_KEY", ""))
    base_url: str = field(default_factory=lambda: get_env("TMDB_BASE_URL", "https://api.themoviedb.org/3"))
    language: str = field(default_factory=lambda: get_env("TMDB_LANGUAGE", "en-US"))
    request_timeout: float = field(default_factory=lambda: get_env_float("TMDB_TIMEOUT", 8.0))

    # Metadata cache TTL
    cache_ttl_hours: int = field(default_factory=lambda: get_env_int("TMDB_CACHE_TTL_HOURS", 24))

    def __post_init__(self):
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")


@dataclass
class SourcesConfig:
    """Review source collection settings."""

    # Overall budget for one source (all of its paged requests)
    source_timeout: float = field(default_factory=lambda: get_env_float("SOURCE_TIMEOUT", 45.0))
    request_timeout: float = field(default_factory=lambda: get_env_float("SOURCE_REQUEST_TIMEOUT", 10.0))
    user_agent: str = field(default_factory=lambda: get_env("SOURCE_USER_AGENT", "ReviewSynthesis/1.0"))

    # Reddit (forum)
    reddit_subreddits: List[str] = field(default_factory=lambda: get_env_list(
        "REDDIT_SUBREDDITS", ["movies", "MovieReviews", "flicks", "TrueFilm"]
    ))
    reddit_request_delay: float = field(default_factory=lambda: get_env_float("REDDIT_REQUEST_DELAY", 2.0))
    reddit_search_limit: int = field(default_factory=lambda: get_env_int("REDDIT_SEARCH_LIMIT", 25))
    reddit_max_items: int = field(default_factory=lambda: get_env_int("REDDIT_MAX_ITEMS", 40))
    reddit_min_length: int = field(default_factory=lambda: get_env_int("REDDIT_MIN_LENGTH", 200))

    # Letterboxd (community critic)
    letterboxd_request_delay: float = field(default_factory=lambda: get_env_float("LETTERBOXD_REQUEST_DELAY", 3.0))
    letterboxd_max_items: int = field(default_factory=lambda: get_env_int("LETTERBOXD_MAX_ITEMS", 20))
    letterboxd_min_length: int = field(default_factory=lambda: get_env_int("LETTERBOXD_MIN_LENGTH", 100))

    def __post_init__(self):
        if self.source_timeout <= 0:
            raise ValueError("source_timeout must be positive")
        if self.reddit_request_delay < 0 or self.letterboxd_request_delay < 0:
            raise ValueError("request delays cannot be negative")


@dataclass
class SummarizerConfig:
    """Summarization provider settings."""

    provider: str = field(default_factory=lambda: get_env("SUMMARIZER_PROVIDER", "huggingface"))
    hf_api_url: str = field(default_factory=lambda: get_env(
        "HF_API_URL", "https://api-inference.huggingface.co/models/facebook/bart-large-cnn"
    ))
    hf_api_token: Optional[str] = field(default_factory=lambda: get_env("HF_API_TOKEN"))
    anthropic_model: str = field(default_factory=lambda: get_env("SUMMARIZER_ANTHROPIC_MODEL", "claude-3-haiku-20240307"))

    timeout: float = field(default_factory=lambda: get_env_float("SUMMARIZER_TIMEOUT", 10.0))
    input_cap: int = field(default_factory=lambda: get_env_int("SUMMARIZER_INPUT_CAP", 1024))
    max_length: int = field(default_factory=lambda: get_env_int("SUMMARIZER_MAX_LENGTH", 500))
    min_length: int = field(default_factory=lambda: get_env_int("SUMMARIZER_MIN_LENGTH", 50))

    def __post_init__(self):
        if self.provider not in ("huggingface", "anthropic", "none"):
            raise ValueError(f"Unknown summarizer provider: {self.provider}")
        if self.min_length > self.max_length:
            raise ValueError("min_length cannot exceed max_length")


@dataclass
class SynthesisConfig:
    """Orchestrator settings."""

    refresh_window_days: int = field(default_factory=lambda: get_env_int("SYNTHESIS_REFRESH_DAYS", 7))
    metadata_timeout: float = field(default_factory=lambda: get_env_float("SYNTHESIS_METADATA_TIMEOUT", 15.0))
    featured_count: int = field(default_factory=lambda: get_env_int("SYNTHESIS_FEATURED_COUNT", 3))
    store_backend: str = field(default_factory=lambda: get_env("SYNTHESIS_STORE", "postgres"))

    def __post_init__(self):
        if self.refresh_window_days <= 0:
            raise ValueError("refresh_window_days must be positive")
        if self.store_backend not in ("postgres", "memory"):
            raise ValueError(f"Unknown store backend: {self.store_backend}")


@dataclass
class DatabaseConfig:
    """PostgreSQL database configuration."""

    host: str = field(default_factory=lambda: get_env("DATABASE_HOST", "localhost"))
    port: int = field(default_factory=lambda: get_env_int("DATABASE_PORT", 5432))
    name: str = field(default_factory=lambda: get_env("DATABASE_NAME", "review_synthesis"))
    user: str = field(default_factory=lambda: get_env("DATABASE_USER", "postgres"))
    password: str = field(default_factory=lambda: get_env("DATABASE_PASSWORD", ""))

    # Connection pool settings
    pool_min_size: int = field(default_factory=lambda: get_env_int("DATABASE_POOL_MIN", 1))
    pool_max_size: int = field(default_factory=lambda: get_env_int("DATABASE_POOL_MAX", 10))

    connect_timeout: int = field(default_factory=lambda: get_env_int("DATABASE_CONNECT_TIMEOUT", 10))

    # SSL mode: disable, allow, prefer, require, verify-ca, verify-full
    ssl_mode: str = field(default_factory=lambda: get_env("DATABASE_SSL_MODE", "prefer"))

    @property
    def connection_dict(self) -> dict:
        """Connection parameters as dictionary for psycopg2."""
        return {
            "host": self.host,
            "port": self.port,
            "dbname": self.name,
            "user": self.user,
            "password": self.password,
            "sslmode": self.ssl_mode,
            "connect_timeout": self.connect_timeout,
        }

    def __post_init__(self):
        if self.pool_min_size > self.pool_max_size:
            raise ValueError("pool_min_size cannot exceed pool_max_size")


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = field(default_factory=lambda: get_env("LOG_LEVEL", "INFO"))
    log_file: Optional[str] = field(default_factory=lambda: get_env("LOG_FILE"))
    json_logs: bool = field(default_factory=lambda: get_env_bool("LOG_JSON", False))


@dataclass
class ApiConfig:
    """HTTP surface configuration."""

    admin_token: Optional[str] = field(default_factory=lambda: get_env("SYNTHESIS_ADMIN_TOKEN"))
    cors_origins: List[str] = field(default_factory=lambda: get_env_list(
        "CORS_ORIGINS", ["http://localhost:3000", "http://127.0.0.1:3000"]
    ))
    run_scheduler: bool = field(default_factory=lambda: get_env_bool("API_RUN_SCHEDULER", True))


@dataclass
class Settings:
    """Main application settings container."""

    tmdb: TmdbConfig = field(default_factory=TmdbConfig)
    sources: SourcesConfig = field(default_factory=SourcesConfig)
    summarizer: SummarizerConfig = field(default_factory=SummarizerConfig)
    synthesis: SynthesisConfig = field(default_factory=SynthesisConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    api: ApiConfig = field(default_factory=ApiConfig)

    app_version: str = "0.1.0"


def load_settings() -> Settings:
    """
    Load and validate all application settings.

    Raises:
        ValueError: If configuration is invalid
    """
    return Settings()


# Global settings instance (lazy-loaded)
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance (singleton pattern)."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
