"""Domain-level application service interfaces (ports).

These abstract classes define the contracts that the API layer depends on.
Concrete implementations live in ``reviewshelf/services/`` and are wired
together by the composition root in ``reviewshelf/core/dependencies.py``.
Route handlers import from ``reviewshelf.domain`` only, and every service can
be replaced with a test double via FastAPI's ``app.dependency_overrides``.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from uuid import UUID

from reviewshelf.domain.entities import (
    Favorite,
    PreferenceProfile,
    RecommendationHistoryRecord,
    RecommendationResponse,
    Review,
    SystemHealth,
)


class IPreferenceService(ABC):

    @abstractmethod
    async def analyze(self, user_id: UUID) -> PreferenceProfile:
        """Build the scored preference profile of a user.

        Raises ``DataAccessError`` when reviews or favorites cannot be read.
        """
        pass

    @abstractmethod
    async def has_enough_data_for_personalization(self, user_id: UUID) -> bool:
        """Eligibility gate; fails closed (``False``) on data-access errors."""
        pass

    @abstractmethod
    async def get_user_reviewed_books(self, user_id: UUID) -> list[str]:
        """``"Title by Author"`` for every reviewed book; ``[]`` on error."""
        pass


class IRecommendationService(ABC):

    @abstractmethod
    async def get_recommendations(self, user_id: UUID) -> RecommendationResponse:
        pass

    @abstractmethod
    async def invalidate_user_cache(self, user_id: UUID) -> None:
        pass

    @abstractmethod
    async def clear_cache(self) -> None:
        pass

    @abstractmethod
    def get_cache_stats(self) -> dict:
        """``{"size": int, "entries": [{"user_id", "expires_in_ms"}]}``."""
        pass

    @abstractmethod
    async def test_system_health(self) -> SystemHealth:
        pass

    @abstractmethod
    async def get_history(
        self, user_id: UUID, limit: int = 10
    ) -> list[RecommendationHistoryRecord]:
        pass

    @abstractmethod
    async def get_analytics(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> list[dict]:
        """Per-source volume, latency and confidence of generated sets."""
        pass


class IActivityService(ABC):
    """Review/favorite mutations that keep the recommendation cache fresh."""

    @abstractmethod
    async def create_review(
        self, user_id: UUID, book_id: UUID, rating: float, text: str
    ) -> Review:
        pass

    @abstractmethod
    async def delete_review(self, user_id: UUID, review_id: UUID) -> bool:
        pass

    @abstractmethod
    async def add_favorite(self, user_id: UUID, book_id: UUID) -> Favorite:
        pass

    @abstractmethod
    async def remove_favorite(self, user_id: UUID, book_id: UUID) -> bool:
        pass
