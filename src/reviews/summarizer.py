"""
Review Summarizer
=================

Produces the short synthesis text for a subject.

The best reviews (long, helpful) are concatenated and sent to an external
summarization provider. Any provider failure, a timeout, or too little
input falls back to a deterministic templated summary built from the
sentiment classification of every analyzed review.

Providers:
    - HuggingFaceProvider: Inference API (facebook/bart-large-cnn)
    - AnthropicProvider: Claude messages API
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import requests

from ..data.config import SummarizerConfig
from .review_models import AspectScore, EMPTY_STATE_SUMMARY, RawReview, ScoredReview

logger = logging.getLogger(__name__)


SUMMARY_MIN_INPUT_CHARS = 100
SUMMARY_MIN_REVIEW_CHARS = 100
SUMMARY_MAX_REVIEWS = 5


class SummarizationError(Exception):
    """Summarization provider failure."""
    pass


class SummaryProvider(ABC):
    """External summarization provider."""

    @abstractmethod
    def summarize(self, text: str, max_length: int) -> str:
        """Summarize text. Raises SummarizationError on failure."""
        pass


class HuggingFaceProvider(SummaryProvider):
    """Hugging Face Inference API summarization."""

    def __init__(self, config: SummarizerConfig):
        self.config = config

    def summarize(self, text: str, max_length: int) -> str:
        headers = {"Content-Type": "application/json"}
        if self.config.hf_api_token:
            headers["Authorization"] = f"Bearer {self.config.hf_api_token}"

        try:
            response = requests.post(
                self.config.hf_api_url,
                json={
                    "inputs": text,
                    "parameters": {
                        "max_length": max_length,
                        "min_length": min(self.config.min_length, max_length),
                        "do_sample": False,
                    },
                },
                headers=headers,
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            raise SummarizationError(f"Hugging Face request failed: {e}") from e

        if response.status_code != 200:
            raise SummarizationError(
                f"Hugging Face error: {response.status_code} - {response.text[:200]}"
            )

        try:
            payload = response.json()
            summary = payload[0].get("summary_text", "")
        except (ValueError, IndexError, KeyError, AttributeError, TypeError) as e:
            raise SummarizationError(f"Unexpected Hugging Face payload: {e}") from e

        if not summary or not summary.strip():
            raise SummarizationError("Empty summary returned")
        return summary.strip()


class AnthropicProvider(SummaryProvider):
    """Claude-based summarization."""

    SYSTEM = (
        "You summarize audience reviews of a film. Write one neutral paragraph "
        "describing what reviewers liked and disliked. No spoilers, no preamble."
    )

    def __init__(self, config: SummarizerConfig, api_key: Optional[str] = None):
        self.config = config
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        self._client = None

        if not self.api_key:
            raise SummarizationError("ANTHROPIC_API_KEY not set")

    def _get_client(self):
        if self._client is None:
            import anthropic
            self._client = anthropic.Anthropic(api_key=self.api_key, timeout=self.config.timeout)
        return self._client

    def summarize(self, text: str, max_length: int) -> str:
        try:
            response = self._get_client().messages.create(
                model=self.config.anthropic_model,
                max_tokens=max(64, max_length // 3),
                system=self.SYSTEM,
                messages=[{"role": "user", "content": text}],
                temperature=0.3,
            )
            summary = response.content[0].text
        except Exception as e:
            raise SummarizationError(f"Anthropic summarization failed: {e}") from e

        if not summary or not summary.strip():
            raise SummarizationError("Empty summary returned")
        return summary.strip()[:max_length]


def get_summary_provider(config: SummarizerConfig) -> Optional[SummaryProvider]:
    """
    Factory for the configured provider.

    Returns None when summarization is disabled or the provider cannot be
    initialized; the Summarizer then always uses its fallback.
    """
    if config.provider == "none":
        return None
    if config.provider == "anthropic":
        try:
            return AnthropicProvider(config)
        except SummarizationError as e:
            logger.warning(f"Anthropic summarizer unavailable, using fallback summaries: {e}")
            return None
    return HuggingFaceProvider(config)


def select_reviews_for_summary(
    reviews: List[RawReview],
    max_reviews: int = SUMMARY_MAX_REVIEWS,
) -> List[RawReview]:
    """Longest/most helpful reviews with more than 100 characters."""
    candidates = [r for r in reviews if len(r.content) > SUMMARY_MIN_REVIEW_CHARS]
    candidates.sort(key=lambda r: r.quality_score, reverse=True)
    return candidates[:max_reviews]


def fallback_summary(
    reviews: List[ScoredReview],
    aspects: Optional[Dict[str, AspectScore]] = None,
) -> str:
    """Deterministic summary built from sentiment classifications."""
    if not reviews:
        return EMPTY_STATE_SUMMARY

    total = len(reviews)
    positive = sum(1 for r in reviews if r.is_positive)
    positive_pct = int(positive / total * 100 + 0.5)

    summary = (
        f"Based on {total} reviews analyzed, {positive_pct}% of viewers "
        f"had a positive opinion."
    )

    if aspects:
        discussed = sorted(
            (name for name, score in aspects.items() if score.mentions > 0),
            key=lambda name: (-aspects[name].mentions, name),
        )[:3]
        if discussed:
            summary += f" The most discussed aspects are {', '.join(discussed)}."

    return summary


class Summarizer:
    """Provider-backed summarization with a deterministic fallback."""

    def __init__(
        self,
        provider: Optional[SummaryProvider] = None,
        config: Optional[SummarizerConfig] = None,
    ):
        self.config = config or SummarizerConfig()
        self.provider = provider

    def combine_reviews(self, reviews: List[RawReview]) -> str:
        selected = select_reviews_for_summary(reviews)
        return " ".join(r.content for r in selected)[: self.config.input_cap]

    async def summarize(
        self,
        reviews: List[ScoredReview],
        max_length: Optional[int] = None,
        aspects: Optional[Dict[str, AspectScore]] = None,
    ) -> str:
        """
        Summarize scored reviews.

        Never raises: every failure path returns the fallback summary.
        """
        max_length = max_length or self.config.max_length
        combined = self.combine_reviews([r.review for r in reviews])

        if len(combined) < SUMMARY_MIN_INPUT_CHARS or self.provider is None:
            return fallback_summary(reviews, aspects)

        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.provider.summarize, combined, max_length),
                timeout=self.config.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Summarization timed out after {self.config.timeout}s, using fallback")
        except SummarizationError as e:
            logger.warning(f"Summarization failed, using fallback: {e}")
        except Exception as e:
            logger.exception(f"Unexpected summarization error, using fallback: {e}")

        return fallback_summary(reviews, aspects)
