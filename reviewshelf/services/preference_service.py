"""Preference analyzer: turns raw reading activity into a ranked profile.

Signals and weights
-------------------
Genres are scored from two sources:

* every review adds +1 to each genre of the reviewed book, and another +1
  when the rating is 4 or more;
* every favorite adds +2 to each genre of the favorited book.

The top five genres become ``favorite_genres``. Reviews from the last six
months are scored again without the rating bonus to produce ``recent_genres``.

Reviews and favorites whose book can no longer be joined (deleted book,
dangling reference) still count toward the rating statistics but are left
out of everything that needs the book itself.
"""

import logging
import math
from calendar import monthrange
from collections import defaultdict
from datetime import datetime
from typing import Callable, Iterable
from uuid import UUID

from reviewshelf.domain.entities import (
    Favorite,
    HighRatedBook,
    PreferenceProfile,
    ReadingPatterns,
    Review,
)
from reviewshelf.domain.exceptions import DataAccessError
from reviewshelf.domain.repositories import IUserActivityRepository
from reviewshelf.domain.services import IPreferenceService

logger = logging.getLogger(__name__)

MAX_REVIEWS_ANALYZED = 50
MAX_FAVORITE_GENRES = 5
MAX_RECENT_GENRES = 3
MAX_HIGH_RATED_BOOKS = 10
MAX_PREFERRED_AUTHORS = 5
RECENT_WINDOW_MONTHS = 6

HIGH_RATING = 4
REVIEW_GENRE_WEIGHT = 1
HIGH_RATING_BONUS = 1
FAVORITE_GENRE_WEIGHT = 2

MIN_REVIEWS_FOR_PERSONALIZATION = 3
MIN_FAVORITES_FOR_PERSONALIZATION = 2


def months_before(moment: datetime, months: int) -> datetime:
    """Same wall-clock time ``months`` calendar months earlier (day clamped)."""
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(moment.day, monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def rating_bucket(rating: float) -> int:
    """Round half-up to the nearest star and clamp into 1..5."""
    return max(1, min(5, math.floor(rating + 0.5)))


def top_keys(scores: dict[str, float], limit: int) -> list[str]:
    # sorted() is stable, so ties keep first-seen order
    return [key for key, _ in sorted(scores.items(), key=lambda kv: -kv[1])[:limit]]


class PreferenceService(IPreferenceService):
    """Builds :class:`PreferenceProfile` objects from the user-activity store."""

    def __init__(
        self,
        activity_repo: IUserActivityRepository,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.activity_repo = activity_repo
        self.clock = clock

    # -----------------------------------------------------------------------
    # Profile
    # -----------------------------------------------------------------------

    async def analyze(self, user_id: UUID) -> PreferenceProfile:
        logger.info("Analyzing user preferences for %s", user_id)
        reviews = await self.activity_repo.find_reviews_by_user(
            user_id, limit=MAX_REVIEWS_ANALYZED, newest_first=True
        )
        favorites = await self.activity_repo.find_favorites_by_user(user_id)

        profile = self.build_profile(reviews, favorites)
        logger.info(
            "Preferences for %s: reviews=%d, genres=%d, avg_rating=%.2f",
            user_id,
            profile.total_reviews,
            len(profile.favorite_genres),
            profile.average_rating,
        )
        return profile

    def build_profile(
        self, reviews: list[Review], favorites: list[Favorite]
    ) -> PreferenceProfile:
        """Pure aggregation step; ``reviews`` must be newest first."""
        reviews = reviews[:MAX_REVIEWS_ANALYZED]
        total_reviews = len(reviews)
        average_rating = (
            sum(r.rating for r in reviews) / total_reviews if total_reviews else 0.0
        )

        genre_scores = self._score_genres(reviews, favorites)
        cutoff = months_before(self.clock(), RECENT_WINDOW_MONTHS)
        recent_scores = self._score_genres(
            (r for r in reviews if r.created_at > cutoff), (), rating_bonus=False
        )

        return PreferenceProfile(
            favorite_genres=top_keys(genre_scores, MAX_FAVORITE_GENRES),
            recent_genres=top_keys(recent_scores, MAX_RECENT_GENRES),
            high_rated_books=self._high_rated_books(reviews),
            preferred_authors=self._preferred_authors(reviews),
            average_rating=average_rating,
            total_reviews=total_reviews,
            rating_distribution=self._rating_distribution(reviews),
            reading_patterns=self._reading_patterns(
                total_reviews, average_rating, self._genre_occurrences(reviews, favorites)
            ),
        )

    @staticmethod
    def _score_genres(
        reviews: Iterable[Review],
        favorites: Iterable[Favorite],
        rating_bonus: bool = True,
    ) -> dict[str, float]:
        scores: dict[str, float] = {}
        for review in reviews:
            if review.book is None:
                continue
            for genre in review.book.genres:
                scores[genre] = scores.get(genre, 0) + REVIEW_GENRE_WEIGHT
                if rating_bonus and review.rating >= HIGH_RATING:
                    scores[genre] += HIGH_RATING_BONUS
        for favorite in favorites:
            if favorite.book is None:
                continue
            for genre in favorite.book.genres:
                scores[genre] = scores.get(genre, 0) + FAVORITE_GENRE_WEIGHT
        return scores

    @staticmethod
    def _high_rated_books(reviews: list[Review]) -> list[HighRatedBook]:
        books = [
            HighRatedBook(
                title=r.book.title,
                author=r.book.author,
                rating=r.rating,
                genre=r.book.genres[0] if r.book.genres else None,
            )
            for r in reviews
            if r.rating >= HIGH_RATING and r.book is not None
        ]
        return books[:MAX_HIGH_RATED_BOOKS]

    @staticmethod
    def _preferred_authors(reviews: list[Review]) -> list[str]:
        ratings: dict[str, list[float]] = defaultdict(list)
        for review in reviews:
            if review.book is not None and review.book.author:
                ratings[review.book.author].append(review.rating)

        qualified = [
            (author, sum(values) / len(values), len(values))
            for author, values in ratings.items()
            if len(values) >= 2 and sum(values) / len(values) >= HIGH_RATING
        ]
        qualified.sort(key=lambda a: (-a[1], -a[2]))
        return [author for author, _, _ in qualified[:MAX_PREFERRED_AUTHORS]]

    @staticmethod
    def _rating_distribution(reviews: list[Review]) -> dict[int, int]:
        distribution = {1: 0, 2: 0, 3: 0, 4: 0, 5: 0}
        for review in reviews:
            distribution[rating_bucket(review.rating)] += 1
        return distribution

    @staticmethod
    def _genre_occurrences(
        reviews: Iterable[Review], favorites: Iterable[Favorite]
    ) -> dict[str, int]:
        """Unweighted genre tags across every joined reviewed or favorited book."""
        occurrences: dict[str, int] = {}
        for record in [*reviews, *favorites]:
            if record.book is None:
                continue
            for genre in record.book.genres:
                occurrences[genre] = occurrences.get(genre, 0) + 1
        return occurrences

    @staticmethod
    def _reading_patterns(
        total_reviews: int, average_rating: float, genre_occurrences: dict[str, int]
    ) -> ReadingPatterns:
        """``has_genre_preference``: at most three distinct genres, or the top
        genre holds 40% or more of the raw genre occurrences (score weights
        are not applied).
        """
        occurrences = sum(genre_occurrences.values())
        top_share = max(genre_occurrences.values()) / occurrences if occurrences else 0.0
        return ReadingPatterns(
            is_selective_reader=average_rating >= 4.0,
            is_active_reviewer=total_reviews >= 10,
            has_genre_preference=len(genre_occurrences) <= 3 or top_share >= 0.4,
        )

    # -----------------------------------------------------------------------
    # Eligibility & de-duplication helpers
    # -----------------------------------------------------------------------

    async def has_enough_data_for_personalization(self, user_id: UUID) -> bool:
        try:
            review_count = await self.activity_repo.count_reviews(user_id)
            favorite_count = await self.activity_repo.count_favorites(user_id)
        except DataAccessError as exc:
            logger.error("Error checking data sufficiency for %s: %s", user_id, exc)
            return False
        return (
            review_count >= MIN_REVIEWS_FOR_PERSONALIZATION
            or favorite_count >= MIN_FAVORITES_FOR_PERSONALIZATION
        )

    async def get_user_reviewed_books(self, user_id: UUID) -> list[str]:
        try:
            reviews = await self.activity_repo.find_reviews_by_user(user_id)
        except DataAccessError as exc:
            logger.error("Error getting reviewed books for %s: %s", user_id, exc)
            return []
        return [r.book.identifier for r in reviews if r.book is not None]
