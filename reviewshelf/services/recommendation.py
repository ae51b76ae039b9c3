"""Recommendation orchestrator for ReviewShelf.

Decides between the LLM-backed generator and the rule-based fallback, pads
short AI answers with fallback picks, and owns the two-tier cache:

  1. Cache lookup (memory, then persistent)  -> hit: return as-is
  2. Miss: preference profile + eligibility gate + already-reviewed books
  3. Eligible and backend available          -> AI, padded to 3 (hybrid)
     Any primary-generation error            -> full fallback
  4. Otherwise                               -> fallback
  5. Assemble, write through the cache, return

The response always carries between one and three items.
"""

import logging
import time
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID, uuid4

from reviewshelf.domain.entities import (
    PreferenceProfile,
    PreferenceSnapshot,
    RecommendationHistoryRecord,
    RecommendationItem,
    RecommendationMetadata,
    RecommendationResponse,
    RecommendationSource,
    SystemHealth,
)
from reviewshelf.domain.exceptions import RecommendationError, RecommendationGenerationError
from reviewshelf.domain.services import IPreferenceService, IRecommendationService
from reviewshelf.services.ai_recommendation import AIRecommendationGenerator
from reviewshelf.services.fallback_recommendation import (
    FallbackRecommendationGenerator,
    is_excluded,
)
from reviewshelf.services.recommendation_cache import RecommendationCache

logger = logging.getLogger(__name__)

TARGET_RECOMMENDATIONS = 3


class RecommendationService(IRecommendationService):
    """Cache-first hybrid recommendation engine.

    All collaborators are injected so tests can build isolated instances and
    inspect the cache directly.
    """

    def __init__(
        self,
        preference_service: IPreferenceService,
        ai_generator: AIRecommendationGenerator,
        fallback_generator: FallbackRecommendationGenerator,
        cache: RecommendationCache,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.preference_service = preference_service
        self.ai_generator = ai_generator
        self.fallback_generator = fallback_generator
        self.cache = cache
        self.clock = clock

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------
    async def get_recommendations(self, user_id: UUID) -> RecommendationResponse:
        cached = await self.cache.get(user_id)
        if cached is not None:
            logger.info("Returning cached recommendations for %s", user_id)
            return RecommendationResponse(
                recommendations=list(cached.recommendations),
                metadata=replace(cached.metadata, cache_hit=True),
            )

        started = time.perf_counter()
        logger.info("Starting recommendation generation for %s", user_id)

        profile = await self.preference_service.analyze(user_id)
        has_enough_data = await self.preference_service.has_enough_data_for_personalization(
            user_id
        )
        reviewed_books = await self.preference_service.get_user_reviewed_books(user_id)

        model: Optional[str] = None
        if has_enough_data and self.ai_generator.is_available():
            try:
                items, source = await self._ai_recommendations(user_id, profile, reviewed_books)
                model = self.ai_generator.model
            except RecommendationGenerationError as exc:
                logger.warning(
                    "AI recommendations failed for %s, falling back to algorithmic approach: %s",
                    user_id,
                    exc,
                )
                items = await self._fallback_recommendations(user_id, profile, reviewed_books)
                source = RecommendationSource.FALLBACK
        else:
            logger.info(
                "Using fallback recommendations for %s (enough_data=%s, ai_available=%s)",
                user_id,
                has_enough_data,
                self.ai_generator.is_available(),
            )
            items = await self._fallback_recommendations(user_id, profile, reviewed_books)
            source = RecommendationSource.FALLBACK

        response = self._assemble(
            user_id, items, source, profile, has_enough_data, started, model
        )
        await self.cache.put(user_id, response)

        logger.info(
            "Recommendations generated for %s: source=%s, count=%d, processing_time=%dms",
            user_id,
            source.value,
            len(response.recommendations),
            response.metadata.processing_time_ms,
        )
        return response

    async def _ai_recommendations(
        self, user_id: UUID, profile: PreferenceProfile, reviewed_books: list[str]
    ) -> tuple[list[RecommendationItem], RecommendationSource]:
        generated = await self.ai_generator.generate(profile)
        items = [i for i in generated if not is_excluded(i.identifier, reviewed_books)]
        if len(items) < len(generated):
            logger.info(
                "Dropped %d AI recommendations already reviewed by %s",
                len(generated) - len(items),
                user_id,
            )

        if len(items) >= TARGET_RECOMMENDATIONS:
            return items[:TARGET_RECOMMENDATIONS], RecommendationSource.AI

        exclude = reviewed_books + [i.identifier for i in items]
        padding = await self.fallback_generator.generate(user_id, profile, exclude)
        chosen = {i.identifier.lower() for i in items}
        for item in padding:
            if len(items) >= TARGET_RECOMMENDATIONS:
                break
            if item.identifier.lower() in chosen or is_excluded(item.identifier, reviewed_books):
                continue
            items.append(item)
            chosen.add(item.identifier.lower())
        if not items:
            # Only the fallback's last-resort pick is left.
            items = padding[:TARGET_RECOMMENDATIONS]

        has_ai = any(i.source == RecommendationSource.AI for i in items)
        source = RecommendationSource.HYBRID if has_ai else RecommendationSource.FALLBACK
        logger.info(
            "Padded AI recommendations for %s with fallback picks (source=%s)",
            user_id,
            source.value,
        )
        return items, source

    async def _fallback_recommendations(
        self, user_id: UUID, profile: PreferenceProfile, reviewed_books: list[str]
    ) -> list[RecommendationItem]:
        return await self.fallback_generator.generate(user_id, profile, reviewed_books)

    def _assemble(
        self,
        user_id: UUID,
        items: list[RecommendationItem],
        source: RecommendationSource,
        profile: PreferenceProfile,
        has_enough_data: bool,
        started: float,
        model: Optional[str],
    ) -> RecommendationResponse:
        if not items:
            raise RecommendationError(f"No recommendations could be produced for {user_id}")
        return RecommendationResponse(
            recommendations=items[:TARGET_RECOMMENDATIONS],
            metadata=RecommendationMetadata(
                user_id=user_id,
                generated_at=self.clock(),
                source=source,
                user_preferences=PreferenceSnapshot(
                    favorite_genres=list(profile.favorite_genres),
                    average_rating=profile.average_rating,
                    total_reviews=profile.total_reviews,
                    has_enough_data=has_enough_data,
                ),
                processing_time_ms=int((time.perf_counter() - started) * 1000),
                cache_hit=False,
                model=model,
            ),
        )

    # ------------------------------------------------------------------
    # Cache administration
    # ------------------------------------------------------------------
    async def invalidate_user_cache(self, user_id: UUID) -> None:
        await self.cache.invalidate(user_id)

    async def clear_cache(self) -> None:
        await self.cache.clear_all()

    def get_cache_stats(self) -> dict:
        return self.cache.stats()

    async def get_history(
        self, user_id: UUID, limit: int = 10
    ) -> list[RecommendationHistoryRecord]:
        return await self.cache.history_repo.get_user_history(user_id, limit=limit)

    async def get_analytics(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> list[dict]:
        return await self.cache.history_repo.get_analytics(start, end)

    # ------------------------------------------------------------------
    # Self-test
    # ------------------------------------------------------------------
    async def test_system_health(self) -> SystemHealth:
        """Exercise every component without touching real user data."""
        try:
            openai_available = (
                self.ai_generator.is_available() and await self.ai_generator.test_connection()
            )
        except Exception as exc:
            logger.error("AI health check failed: %s", exc, exc_info=True)
            openai_available = False

        sample_profile = PreferenceProfile(
            favorite_genres=["Fiction"], recent_genres=["Fiction"], average_rating=4.0
        )
        try:
            sample_items = await self.fallback_generator.generate(uuid4(), sample_profile, [])
            fallback_working = len(sample_items) > 0
        except Exception as exc:
            logger.error("Fallback health check failed: %s", exc, exc_info=True)
            fallback_working = False

        check_user = uuid4()
        try:
            check_response = RecommendationResponse(
                recommendations=[],
                metadata=RecommendationMetadata(
                    user_id=check_user,
                    generated_at=self.clock(),
                    source=RecommendationSource.FALLBACK,
                    user_preferences=PreferenceSnapshot(),
                ),
            )
            await self.cache.put(check_user, check_response, persist=False)
            cache_working = await self.cache.get(check_user) is check_response
        except Exception as exc:
            logger.error("Cache health check failed: %s", exc, exc_info=True)
            cache_working = False
        finally:
            self.cache.evict(check_user)

        health = SystemHealth(
            openai_available=openai_available,
            fallback_working=fallback_working,
            cache_working=cache_working,
        )
        logger.info(
            "Recommendation system health: openai=%s, fallback=%s, cache=%s",
            openai_available,
            fallback_working,
            cache_working,
        )
        return health
