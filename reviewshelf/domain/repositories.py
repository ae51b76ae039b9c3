"""Repository interfaces (ports) for dependency inversion."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from uuid import UUID

from reviewshelf.domain.entities import (
    CatalogBook,
    Favorite,
    RecommendationHistoryRecord,
    RecommendationResponse,
    Review,
    User,
)


class IUserRepository(ABC):

    @abstractmethod
    async def get_by_id(self, user_id: UUID) -> Optional[User]:
        pass


class IUserActivityRepository(ABC):
    """Reviews and favorites of a user, joined with their books.

    Every method raises :class:`~reviewshelf.domain.exceptions.DataAccessError`
    when the underlying store fails.
    """

    @abstractmethod
    async def find_reviews_by_user(
        self, user_id: UUID, limit: Optional[int] = None, newest_first: bool = True
    ) -> list[Review]:
        pass

    @abstractmethod
    async def find_favorites_by_user(self, user_id: UUID) -> list[Favorite]:
        pass

    @abstractmethod
    async def count_reviews(self, user_id: UUID) -> int:
        pass

    @abstractmethod
    async def count_favorites(self, user_id: UUID) -> int:
        pass

    @abstractmethod
    async def get_user_book_ids(self, user_id: UUID) -> set[UUID]:
        """IDs of every book the user has reviewed or favorited."""
        pass

    @abstractmethod
    async def find_similar_readers(
        self,
        user_id: UUID,
        genres: list[str],
        min_average_rating: float,
        min_common_books: int = 3,
        limit: int = 10,
    ) -> list[UUID]:
        """Other users with at least ``min_common_books`` reviews rated 4+ in
        ``genres``, averaging at least ``min_average_rating``; most overlap first.
        """
        pass

    @abstractmethod
    async def find_high_ratings_by_users(
        self, user_ids: list[UUID], exclude_book_ids: set[UUID], min_rating: float = 4.0
    ) -> list[Review]:
        pass

    @abstractmethod
    async def create_review(self, review: Review) -> Review:
        pass

    @abstractmethod
    async def get_review(self, review_id: UUID) -> Optional[Review]:
        pass

    @abstractmethod
    async def delete_review(self, review_id: UUID) -> bool:
        pass

    @abstractmethod
    async def add_favorite(self, favorite: Favorite) -> Favorite:
        pass

    @abstractmethod
    async def remove_favorite(self, user_id: UUID, book_id: UUID) -> bool:
        pass


class IBookCatalogRepository(ABC):

    @abstractmethod
    async def list_books_with_stats(
        self,
        limit: int = 50,
        genres: Optional[list[str]] = None,
        exclude_ids: Optional[set[UUID]] = None,
        min_average_rating: Optional[float] = None,
        min_review_count: Optional[int] = None,
    ) -> list[CatalogBook]:
        """Reviewed books with aggregate stats, best rated first.

        Every filter is applied before ``limit``; ``genres`` matches books sharing
        any of the given genres.
        """
        pass

    @abstractmethod
    async def exists(self, book_id: UUID) -> bool:
        pass


class IRecommendationHistoryRepository(ABC):
    """Persistent tier of the recommendation cache."""

    @abstractmethod
    async def create(
        self, user_id: UUID, response: RecommendationResponse, expires_at: datetime
    ) -> RecommendationHistoryRecord:
        pass

    @abstractmethod
    async def find_active_for_user(
        self, user_id: UUID, now: datetime
    ) -> Optional[RecommendationHistoryRecord]:
        """Newest active, unexpired record for the user."""
        pass

    @abstractmethod
    async def deactivate_for_user(self, user_id: UUID) -> int:
        """Mark every active record of the user inactive; return the count."""
        pass

    @abstractmethod
    async def delete_all(self) -> int:
        pass

    @abstractmethod
    async def delete_expired(self, now: datetime) -> int:
        pass

    @abstractmethod
    async def count_active(self, now: datetime) -> int:
        pass

    @abstractmethod
    async def get_user_history(
        self, user_id: UUID, limit: int = 10, skip: int = 0
    ) -> list[RecommendationHistoryRecord]:
        pass

    @abstractmethod
    async def get_analytics(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> list[dict]:
        """Per-source counts and averages over the given creation window."""
        pass


class ITextGenerationBackend(ABC):
    """External text-generation (LLM) backend."""

    model: str = ""

    @abstractmethod
    def is_available(self) -> bool:
        pass

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> str:
        """Return the raw reply text.

        Raises :class:`~reviewshelf.domain.exceptions.ServiceUnavailableError`
        when not configured and
        :class:`~reviewshelf.domain.exceptions.UpstreamError` on failure.
        """
        pass

    @abstractmethod
    async def test_connection(self) -> bool:
        pass
