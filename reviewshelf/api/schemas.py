"""Pydantic schemas for API requests and responses."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from reviewshelf.domain.entities import RecommendationSource


# ---------------------------------------------------------------------------
# Reviews & favorites
# ---------------------------------------------------------------------------
class ReviewCreateRequest(BaseModel):
    rating: float = Field(..., ge=1, le=5)
    text: str = Field("", max_length=2000)


class ReviewResponse(BaseModel):
    id: UUID
    user_id: UUID
    book_id: UUID
    rating: float
    text: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class FavoriteResponse(BaseModel):
    id: UUID
    user_id: UUID
    book_id: UUID
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------
class RecommendationItemResponse(BaseModel):
    title: str
    author: str
    genre: Optional[str] = None
    reason: str
    confidence: float = Field(..., ge=0, le=1)
    source: RecommendationSource
    average_rating: Optional[float] = None
    review_count: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class PreferenceSnapshotResponse(BaseModel):
    favorite_genres: list[str]
    average_rating: float
    total_reviews: int
    has_enough_data: bool

    model_config = ConfigDict(from_attributes=True)


class RecommendationMetadataResponse(BaseModel):
    user_id: UUID
    generated_at: datetime
    source: RecommendationSource
    user_preferences: PreferenceSnapshotResponse
    processing_time_ms: int
    cache_hit: bool = False
    model: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class RecommendationResponse(BaseModel):
    recommendations: list[RecommendationItemResponse]
    metadata: RecommendationMetadataResponse

    model_config = ConfigDict(from_attributes=True)


class RecommendationHistoryResponse(BaseModel):
    id: UUID
    created_at: datetime
    expires_at: datetime
    is_active: bool
    response: RecommendationResponse

    model_config = ConfigDict(from_attributes=True)


class CacheStatsEntry(BaseModel):
    user_id: UUID
    expires_in_ms: int


class CacheStatsResponse(BaseModel):
    size: int
    entries: list[CacheStatsEntry]


class SystemHealthResponse(BaseModel):
    status: str  # "healthy" | "degraded"
    openai_available: bool
    fallback_working: bool
    cache_working: bool


class SourceAnalyticsResponse(BaseModel):
    source: str
    count: int
    avg_processing_time_ms: float
    avg_confidence: float


class MessageResponse(BaseModel):
    message: str
