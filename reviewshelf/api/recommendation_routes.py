"""Recommendation API routes."""

import logging
from datetime import datetime
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from reviewshelf.api.schemas import (
    CacheStatsResponse,
    MessageResponse,
    RecommendationHistoryResponse,
    RecommendationResponse,
    SourceAnalyticsResponse,
    SystemHealthResponse,
)
from reviewshelf.core.dependencies import get_current_user, get_recommendation_service
from reviewshelf.domain.entities import User
from reviewshelf.domain.services import IRecommendationService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/recommendations", tags=["recommendations"])


@router.get("", response_model=RecommendationResponse)
async def get_user_recommendations(
    current_user: Annotated[User, Depends(get_current_user)],
    recommendation_service: Annotated[IRecommendationService, Depends(get_recommendation_service)],
) -> RecommendationResponse:
    """Get up to three personalised book suggestions for the current user.

    Served from cache when a fresh set exists (``metadata.cache_hit``).
    Otherwise the LLM is asked first when the user has enough activity, and
    rule-based picks fill in whatever it could not supply
    (``metadata.source`` is ``ai``, ``hybrid`` or ``fallback``).
    """
    result = await recommendation_service.get_recommendations(current_user.id)
    return RecommendationResponse.model_validate(result)


@router.delete("/cache", response_model=MessageResponse)
async def invalidate_my_cache(
    current_user: Annotated[User, Depends(get_current_user)],
    recommendation_service: Annotated[IRecommendationService, Depends(get_recommendation_service)],
) -> MessageResponse:
    await recommendation_service.invalidate_user_cache(current_user.id)
    return MessageResponse(message="Recommendation cache cleared")


@router.get("/history", response_model=list[RecommendationHistoryResponse])
async def get_recommendation_history(
    current_user: Annotated[User, Depends(get_current_user)],
    recommendation_service: Annotated[IRecommendationService, Depends(get_recommendation_service)],
    limit: Annotated[int, Query(ge=1, le=50)] = 10,
) -> list[RecommendationHistoryResponse]:
    """Past recommendation sets for the current user, newest first."""
    records = await recommendation_service.get_history(current_user.id, limit=limit)
    return [RecommendationHistoryResponse.model_validate(r) for r in records]


@router.get(
    "/health",
    response_model=SystemHealthResponse,
    responses={503: {"model": SystemHealthResponse}},
)
async def recommendation_health(
    current_user: Annotated[User, Depends(get_current_user)],
    recommendation_service: Annotated[IRecommendationService, Depends(get_recommendation_service)],
):
    """Self-test of the LLM backend, the fallback generator and the cache.

    Returns 503 when the fallback generator or the cache is broken; an
    unavailable LLM alone only means recommendations are rule-based.
    """
    health = await recommendation_service.test_system_health()
    body = SystemHealthResponse(
        status="healthy" if health.healthy else "degraded",
        openai_available=health.openai_available,
        fallback_working=health.fallback_working,
        cache_working=health.cache_working,
    )
    if not health.healthy:
        logger.warning("Recommendation system degraded: %s", body.model_dump())
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body.model_dump()
        )
    return body


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def get_cache_stats(
    current_user: Annotated[User, Depends(get_current_user)],
    recommendation_service: Annotated[IRecommendationService, Depends(get_recommendation_service)],
) -> CacheStatsResponse:
    return CacheStatsResponse.model_validate(recommendation_service.get_cache_stats())


@router.delete("/cache/all", response_model=MessageResponse)
async def clear_all_caches(
    current_user: Annotated[User, Depends(get_current_user)],
    recommendation_service: Annotated[IRecommendationService, Depends(get_recommendation_service)],
) -> MessageResponse:
    logger.info("Recommendation cache cleared by %s", current_user.id)
    await recommendation_service.clear_cache()
    return MessageResponse(message="All recommendation caches cleared")


@router.get("/analytics", response_model=list[SourceAnalyticsResponse])
async def get_recommendation_analytics(
    current_user: Annotated[User, Depends(get_current_user)],
    recommendation_service: Annotated[IRecommendationService, Depends(get_recommendation_service)],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> list[SourceAnalyticsResponse]:
    """Per-source counts, average latency and average confidence."""
    rows = await recommendation_service.get_analytics(start, end)
    return [SourceAnalyticsResponse.model_validate(row) for row in rows]
