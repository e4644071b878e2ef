"""
Review Synthesis API Models
===========================

Pydantic models for API request/response validation.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SentimentModel(BaseModel):
    """Overall sentiment across all analyzed reviews."""
    overall: str
    score: float
    breakdown: Dict[str, int]


class AspectModel(BaseModel):
    mentions: int = 0
    total_sentiment: float = 0.0
    average_sentiment: float = 0.0
    positive_count: int = 0
    negative_count: int = 0
    keywords: List[str] = Field(default_factory=list)


class ThemeModel(BaseModel):
    theme: str
    count: int


class RatingsModel(BaseModel):
    average: Optional[float] = None
    distribution: Dict[str, int]
    total_ratings: int = 0


class FeaturedReviewModel(BaseModel):
    source: str
    author: str
    content: str
    sentiment: str
    rating: Optional[float] = None
    helpfulness: Optional[int] = None


class ProcessingLogModel(BaseModel):
    step: str
    status: str
    message: str
    timestamp: datetime


class SynthesisResponse(BaseModel):
    """Current review synthesis of a movie."""
    subject_id: int
    title: str
    year: Optional[int] = None
    summary: str
    sentiment: SentimentModel
    aspects: Dict[str, AspectModel]
    themes: List[ThemeModel]
    ratings: RatingsModel
    review_count: int
    sources: Dict[str, int]
    featured_reviews: List[FeaturedReviewModel]
    status: str
    last_updated: Optional[datetime] = None
    needs_update: bool = False
    popularity_score: int = 0
    positive_percentage: int = 0
    created_at: datetime


class SynthesisStatusResponse(BaseModel):
    """Processing status and the most recent log entries."""
    subject_id: int
    status: str
    last_updated: Optional[datetime] = None
    needs_update: bool = False
    processing_log: List[ProcessingLogModel] = Field(default_factory=list)


class RegenerateResponse(BaseModel):
    """Acknowledgment of a queued regeneration."""
    subject_id: int
    status: str = "accepted"
    queued: bool
    message: str


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    store: str
    store_backend: str
    records: Dict[str, int] = Field(default_factory=dict)
    in_progress: List[int] = Field(default_factory=list)
    queue_depth: int = 0
    scheduler: Dict[str, Any] = Field(default_factory=dict)
