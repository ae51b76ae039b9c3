"""Rule-based recommendation generator.

Used whenever the LLM path is unavailable, fails, or comes up short. It only
reads the local catalog, so it is always available; if even the catalog is
unreachable it answers from a small static list of widely read books.
"""

import logging
from typing import Awaitable, Callable, Iterable, Optional
from uuid import UUID

from reviewshelf.domain.entities import (
    CatalogBook,
    PreferenceProfile,
    RecommendationItem,
    RecommendationSource,
    Review,
)
from reviewshelf.domain.exceptions import DataAccessError
from reviewshelf.domain.repositories import IBookCatalogRepository, IUserActivityRepository

logger = logging.getLogger(__name__)

MAX_RECOMMENDATIONS = 3
MAX_GENRE_MATCHES = 2
CATALOG_CANDIDATE_LIMIT = 50
DEFAULT_CONFIDENCE = 0.25
MIN_SIMILAR_READERS = 2
SIMILAR_READER_RATING_SLACK = 0.5

# Last-resort corpus when the catalog cannot fill the slots.
DEFAULT_BOOKS: list[CatalogBook] = [
    CatalogBook(title="To Kill a Mockingbird", author="Harper Lee", genres=["Classic"]),
    CatalogBook(title="1984", author="George Orwell", genres=["Dystopian"]),
    CatalogBook(title="Pride and Prejudice", author="Jane Austen", genres=["Romance"]),
    CatalogBook(title="The Hobbit", author="J.R.R. Tolkien", genres=["Fantasy"]),
    CatalogBook(title="Dune", author="Frank Herbert", genres=["Science Fiction"]),
    CatalogBook(title="The Great Gatsby", author="F. Scott Fitzgerald", genres=["Classic"]),
]

Strategy = Callable[
    [UUID, PreferenceProfile, set[UUID]], Awaitable[list[RecommendationItem]]
]


def is_excluded(identifier: str, exclude_titles: Iterable[str]) -> bool:
    """Case-insensitive match in either direction against ``exclude_titles``."""
    candidate = identifier.lower()
    for title in exclude_titles:
        excluded = title.lower()
        if not excluded:
            continue
        if candidate == excluded or excluded in candidate or candidate in excluded:
            return True
    return False


def _matches_genre(book: CatalogBook, profile: PreferenceProfile) -> bool:
    return any(genre in profile.favorite_genres for genre in book.genres)


# ---------------------------------------------------------------------------
# Confidence scoring
# ---------------------------------------------------------------------------
def genre_confidence(book: CatalogBook, profile: PreferenceProfile) -> float:
    confidence = 0.6
    if _matches_genre(book, profile):
        confidence += 0.2
    if book.average_rating >= 4.5:
        confidence += 0.1
    elif book.average_rating >= 4.0:
        confidence += 0.05
    if book.review_count >= 50:
        confidence += 0.05
    return min(0.9, confidence)


def rating_confidence(book: CatalogBook, profile: PreferenceProfile) -> float:
    confidence = 0.5
    if book.average_rating >= 4.5:
        confidence += 0.2
    elif book.average_rating >= 4.0:
        confidence += 0.1
    if _matches_genre(book, profile):
        confidence += 0.15
    if profile.reading_patterns.is_selective_reader and book.average_rating >= 4.0:
        confidence += 0.1
    return min(0.85, confidence)


def popularity_confidence(book: CatalogBook, profile: PreferenceProfile) -> float:
    confidence = 0.4
    if _matches_genre(book, profile):
        confidence += 0.2
    if book.review_count >= 100:
        confidence += 0.1
    elif book.review_count >= 50:
        confidence += 0.05
    if book.average_rating >= 4.0:
        confidence += 0.1
    return min(0.75, confidence)


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------
class FallbackRecommendationGenerator:
    """Fills up to three slots, strategy by strategy.

    Order: favorite-genre matches (at most two), highly rated, popular, books
    loved by similar readers, well reviewed, then the static list. Each catalog
    strategy runs its own filtered query, with the user's own books removed
    before the candidate limit.
    """

    def __init__(
        self,
        catalog_repo: IBookCatalogRepository,
        activity_repo: IUserActivityRepository,
    ):
        self.catalog_repo = catalog_repo
        self.activity_repo = activity_repo

    async def generate(
        self,
        user_id: UUID,
        profile: PreferenceProfile,
        exclude_titles: Optional[list[str]] = None,
    ) -> list[RecommendationItem]:
        exclude_titles = list(exclude_titles or [])
        logger.info(
            "Generating fallback recommendations for %s (excluding %d titles)",
            user_id,
            len(exclude_titles),
        )
        try:
            items = await self._generate(user_id, profile, exclude_titles)
        except Exception as exc:
            logger.error(
                "Fallback generation failed for %s, serving defaults: %s",
                user_id,
                exc,
                exc_info=True,
            )
            items = [self._default_item(book) for book in DEFAULT_BOOKS[:MAX_RECOMMENDATIONS]]

        if items:
            logger.info(
                "Fallback recommendations generated for %s: count=%d, avg_confidence=%.2f",
                user_id,
                len(items),
                sum(i.confidence for i in items) / len(items),
            )
        return items

    async def _generate(
        self, user_id: UUID, profile: PreferenceProfile, exclude_titles: list[str]
    ) -> list[RecommendationItem]:
        owned = await self._owned_book_ids(user_id)

        chosen: list[RecommendationItem] = []
        strategies: list[tuple[Strategy, int]] = [
            (self._genre_matches, MAX_GENRE_MATCHES),
            (self._highly_rated, MAX_RECOMMENDATIONS),
            (self._popular, MAX_RECOMMENDATIONS),
            (self._similar_readers, MAX_RECOMMENDATIONS),
            (self._well_reviewed, MAX_RECOMMENDATIONS),
            (self._defaults, MAX_RECOMMENDATIONS),
        ]
        for strategy, limit in strategies:
            slots = min(limit, MAX_RECOMMENDATIONS - len(chosen))
            if slots <= 0:
                break
            taken = 0
            for item in await strategy(user_id, profile, owned):
                if taken >= slots:
                    break
                if self._is_taken(item, chosen, exclude_titles):
                    continue
                chosen.append(item)
                taken += 1

        if not chosen:
            # Everything, defaults included, was excluded.
            logger.warning("All fallback candidates excluded for %s; serving first default", user_id)
            chosen.append(self._default_item(DEFAULT_BOOKS[0]))

        chosen.sort(key=lambda item: -item.confidence)
        return chosen[:MAX_RECOMMENDATIONS]

    async def _owned_book_ids(self, user_id: UUID) -> set[UUID]:
        try:
            return await self.activity_repo.get_user_book_ids(user_id)
        except DataAccessError as exc:
            logger.warning("Could not load books owned by %s: %s", user_id, exc)
            return set()

    async def _catalog(self, owned: set[UUID], **filters) -> list[CatalogBook]:
        try:
            return await self.catalog_repo.list_books_with_stats(
                limit=CATALOG_CANDIDATE_LIMIT, exclude_ids=owned, **filters
            )
        except DataAccessError as exc:
            logger.warning("Catalog unavailable for fallback recommendations: %s", exc)
            return []

    @staticmethod
    def _is_taken(
        item: RecommendationItem, chosen: list[RecommendationItem], exclude_titles: list[str]
    ) -> bool:
        identifier = item.identifier.lower()
        if any(c.identifier.lower() == identifier for c in chosen):
            return True
        return is_excluded(item.identifier, exclude_titles)

    # ------------------------------------------------------------------
    # Strategies, in priority order
    # ------------------------------------------------------------------
    async def _genre_matches(self, user_id, profile, owned) -> list[RecommendationItem]:
        if not profile.favorite_genres:
            return []
        books = await self._catalog(owned, genres=profile.favorite_genres)
        return [self._genre_item(b, profile) for b in books]

    async def _highly_rated(self, user_id, profile, owned) -> list[RecommendationItem]:
        books = await self._catalog(owned, min_average_rating=4.0, min_review_count=10)
        return [self._highly_rated_item(b, profile) for b in books]

    async def _popular(self, user_id, profile, owned) -> list[RecommendationItem]:
        books = await self._catalog(
            owned, genres=profile.favorite_genres or None, min_review_count=20
        )
        return [self._popular_item(b, profile) for b in books]

    async def _similar_readers(self, user_id, profile, owned) -> list[RecommendationItem]:
        """Books rated 4+ by at least two readers who like the same genres."""
        if not profile.favorite_genres:
            return []
        try:
            readers = await self.activity_repo.find_similar_readers(
                user_id,
                profile.favorite_genres,
                min_average_rating=profile.average_rating - SIMILAR_READER_RATING_SLACK,
            )
            if not readers:
                return []
            reviews = await self.activity_repo.find_high_ratings_by_users(readers, owned)
        except DataAccessError as exc:
            logger.warning("Similar-reader lookup failed for %s: %s", user_id, exc)
            return []

        liked: dict[UUID, list[Review]] = {}
        for review in reviews:
            if review.book is not None:
                liked.setdefault(review.book_id, []).append(review)

        ranked = sorted(
            (r for r in liked.values() if len(r) >= MIN_SIMILAR_READERS),
            key=lambda r: (-len(r), -sum(x.rating for x in r) / len(r)),
        )
        return [self._similar_reader_item(r) for r in ranked]

    async def _well_reviewed(self, user_id, profile, owned) -> list[RecommendationItem]:
        books = await self._catalog(owned, min_average_rating=3.5, min_review_count=5)
        return [self._well_reviewed_item(b) for b in books]

    async def _defaults(self, user_id, profile, owned) -> list[RecommendationItem]:
        return [self._default_item(b) for b in DEFAULT_BOOKS]

    # ------------------------------------------------------------------
    # Item builders
    # ------------------------------------------------------------------
    @staticmethod
    def _item(book: CatalogBook, reason: str, confidence: float) -> RecommendationItem:
        return RecommendationItem(
            title=book.title,
            author=book.author,
            genre=book.primary_genre,
            reason=reason,
            confidence=round(confidence, 4),
            source=RecommendationSource.FALLBACK,
            average_rating=book.average_rating if book.review_count else None,
            review_count=book.review_count if book.review_count else None,
        )

    def _genre_item(self, book: CatalogBook, profile: PreferenceProfile) -> RecommendationItem:
        reason = (
            f"Recommended because you enjoy {book.primary_genre} books. This book has an "
            f"average rating of {book.average_rating:.1f}/5.0 from {book.review_count} reviews."
        )
        return self._item(book, reason, genre_confidence(book, profile))

    def _highly_rated_item(self, book: CatalogBook, profile: PreferenceProfile) -> RecommendationItem:
        reason = (
            f"Highly rated book with {book.average_rating:.1f}/5.0 stars from "
            f"{book.review_count} reviews. Great choice for readers who appreciate "
            "quality literature."
        )
        return self._item(book, reason, rating_confidence(book, profile))

    def _popular_item(self, book: CatalogBook, profile: PreferenceProfile) -> RecommendationItem:
        reason = (
            f"Popular choice with {book.review_count} reviews and a "
            f"{book.average_rating:.1f}/5.0 rating. Many readers in your preferred "
            "genres have enjoyed this book."
        )
        return self._item(book, reason, popularity_confidence(book, profile))

    def _similar_reader_item(self, reviews: list[Review]) -> RecommendationItem:
        book = reviews[0].book
        count = len(reviews)
        average = sum(r.rating for r in reviews) / count
        reason = (
            f"Recommended by {count} readers with similar preferences. They gave it "
            f"an average rating of {average:.1f}/5.0."
        )
        candidate = CatalogBook(
            title=book.title,
            author=book.author,
            genres=list(book.genres),
            average_rating=average,
            review_count=count,
            book_id=book.id,
        )
        return self._item(candidate, reason, min(0.8, 0.4 + count * 0.1))

    def _well_reviewed_item(self, book: CatalogBook) -> RecommendationItem:
        reason = (
            f"Well-reviewed book with a {book.average_rating:.1f}/5.0 rating. "
            "A solid choice for expanding your reading horizons."
        )
        return self._item(book, reason, 0.3)

    def _default_item(self, book: CatalogBook) -> RecommendationItem:
        reason = "A widely read classic that many readers on the platform start with."
        return self._item(book, reason, DEFAULT_CONFIDENCE)
