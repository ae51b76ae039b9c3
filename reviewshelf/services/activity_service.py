"""Review and favorite mutations.

Every successful change invalidates the user's recommendation cache, so a
profile that no longer matches the user's activity is never served.
"""

import logging
from datetime import datetime
from uuid import UUID, uuid4

from reviewshelf.domain.entities import Favorite, Review
from reviewshelf.domain.repositories import IBookCatalogRepository, IUserActivityRepository
from reviewshelf.domain.services import IActivityService, IRecommendationService

logger = logging.getLogger(__name__)

MIN_RATING = 1.0
MAX_RATING = 5.0


class ActivityService(IActivityService):

    def __init__(
        self,
        activity_repository: IUserActivityRepository,
        catalog_repository: IBookCatalogRepository,
        recommendation_service: IRecommendationService,
    ):
        self.activity_repository = activity_repository
        self.catalog_repository = catalog_repository
        self.recommendation_service = recommendation_service

    async def create_review(
        self, user_id: UUID, book_id: UUID, rating: float, text: str = ""
    ) -> Review:
        if not MIN_RATING <= rating <= MAX_RATING:
            raise ValueError("Rating must be between 1 and 5")
        if not await self.catalog_repository.exists(book_id):
            raise ValueError("Book not found")

        existing = await self.activity_repository.find_reviews_by_user(user_id)
        if any(r.book_id == book_id for r in existing):
            raise ValueError("You have already reviewed this book")

        review = Review(
            id=uuid4(),
            user_id=user_id,
            book_id=book_id,
            rating=rating,
            text=text,
            created_at=datetime.utcnow(),
        )
        created = await self.activity_repository.create_review(review)
        logger.info("Review created: %s for book %s", created.id, book_id)
        await self.recommendation_service.invalidate_user_cache(user_id)
        return created

    async def delete_review(self, user_id: UUID, review_id: UUID) -> bool:
        review = await self.activity_repository.get_review(review_id)
        if review is None:
            return False
        if review.user_id != user_id:
            raise PermissionError("You can only delete your own reviews")

        deleted = await self.activity_repository.delete_review(review_id)
        if deleted:
            logger.info("Review deleted: %s", review_id)
            await self.recommendation_service.invalidate_user_cache(user_id)
        return deleted

    async def add_favorite(self, user_id: UUID, book_id: UUID) -> Favorite:
        if not await self.catalog_repository.exists(book_id):
            raise ValueError("Book not found")

        favorites = await self.activity_repository.find_favorites_by_user(user_id)
        if any(f.book_id == book_id for f in favorites):
            raise ValueError("Book is already in your favorites")

        favorite = await self.activity_repository.add_favorite(
            Favorite(id=uuid4(), user_id=user_id, book_id=book_id, created_at=datetime.utcnow())
        )
        logger.info("Favorite added: book %s for user %s", book_id, user_id)
        await self.recommendation_service.invalidate_user_cache(user_id)
        return favorite

    async def remove_favorite(self, user_id: UUID, book_id: UUID) -> bool:
        removed = await self.activity_repository.remove_favorite(user_id, book_id)
        if removed:
            logger.info("Favorite removed: book %s for user %s", book_id, user_id)
            await self.recommendation_service.invalidate_user_cache(user_id)
        return removed
