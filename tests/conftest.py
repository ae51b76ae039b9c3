"""Shared fixtures: in-memory repositories and a scriptable LLM backend.

No database, broker or network is needed; async code is driven with
``asyncio.run`` from plain pytest functions.
"""

import json
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID, uuid4

import pytest

from reviewshelf.domain.entities import (
    Book,
    CatalogBook,
    Favorite,
    RecommendationHistoryRecord,
    RecommendationResponse,
    Review,
)
from reviewshelf.domain.exceptions import DataAccessError, UpstreamError
from reviewshelf.domain.repositories import (
    IBookCatalogRepository,
    IRecommendationHistoryRepository,
    ITextGenerationBackend,
    IUserActivityRepository,
)
from reviewshelf.services.ai_recommendation import AIRecommendationGenerator
from reviewshelf.services.fallback_recommendation import FallbackRecommendationGenerator
from reviewshelf.services.preference_service import PreferenceService
from reviewshelf.services.recommendation import RecommendationService
from reviewshelf.services.recommendation_cache import RecommendationCache

NOW = datetime(2025, 6, 15, 12, 0, 0)


class FakeClock:
    """Manually advanced clock; every call returns the current instant."""

    def __init__(self, start: datetime = NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class TickingClock(FakeClock):
    """Moves forward one millisecond on every read."""

    def __call__(self) -> datetime:
        self.now += timedelta(milliseconds=1)
        return self.now


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------
def make_book(title: str, author: str, *genres: str) -> Book:
    return Book(id=uuid4(), title=title, author=author, genres=list(genres))


def make_review(
    user_id: UUID,
    book: Optional[Book],
    rating: float,
    created_at: datetime = NOW,
) -> Review:
    return Review(
        id=uuid4(),
        user_id=user_id,
        book_id=book.id if book else uuid4(),
        rating=rating,
        book=book,
        created_at=created_at,
    )


def make_favorite(user_id: UUID, book: Optional[Book], created_at: datetime = NOW) -> Favorite:
    return Favorite(
        id=uuid4(),
        user_id=user_id,
        book_id=book.id if book else uuid4(),
        book=book,
        created_at=created_at,
    )


def ai_reply(*items: dict) -> str:
    return json.dumps({"recommendations": list(items)})


def ai_item(title: str, author: str, confidence: float = 0.8, genre: str = "Fantasy") -> dict:
    return {
        "title": title,
        "author": author,
        "genre": genre,
        "reason": f"Because you will enjoy {title}.",
        "confidence": confidence,
    }


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------
class FakeActivityRepository(IUserActivityRepository):

    def __init__(self):
        self.reviews: list[Review] = []
        self.favorites: list[Favorite] = []
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise DataAccessError("activity store offline")

    async def find_reviews_by_user(self, user_id, limit=None, newest_first=True):
        self._check()
        reviews = sorted(
            (r for r in self.reviews if r.user_id == user_id),
            key=lambda r: r.created_at,
            reverse=newest_first,
        )
        return reviews[:limit] if limit is not None else reviews

    async def find_favorites_by_user(self, user_id):
        self._check()
        return [f for f in self.favorites if f.user_id == user_id]

    async def count_reviews(self, user_id):
        self._check()
        return sum(1 for r in self.reviews if r.user_id == user_id)

    async def count_favorites(self, user_id):
        self._check()
        return sum(1 for f in self.favorites if f.user_id == user_id)

    async def get_user_book_ids(self, user_id):
        self._check()
        return {r.book_id for r in self.reviews if r.user_id == user_id} | {
            f.book_id for f in self.favorites if f.user_id == user_id
        }

    async def find_similar_readers(
        self, user_id, genres, min_average_rating, min_common_books=3, limit=10
    ):
        self._check()
        ratings: dict[UUID, list[float]] = {}
        for r in self.reviews:
            if r.user_id == user_id or r.rating < 4 or r.book is None:
                continue
            if any(g in genres for g in r.book.genres):
                ratings.setdefault(r.user_id, []).append(r.rating)
        readers = [
            (uid, values) for uid, values in ratings.items()
            if len(values) >= min_common_books
            and sum(values) / len(values) >= min_average_rating
        ]
        readers.sort(key=lambda pair: -len(pair[1]))
        return [uid for uid, _ in readers[:limit]]

    async def find_high_ratings_by_users(self, user_ids, exclude_book_ids, min_rating=4.0):
        self._check()
        return [
            r for r in self.reviews
            if r.user_id in user_ids and r.book_id not in exclude_book_ids and r.rating >= min_rating
        ]

    async def create_review(self, review):
        self._check()
        self.reviews.append(review)
        return review

    async def get_review(self, review_id):
        self._check()
        return next((r for r in self.reviews if r.id == review_id), None)

    async def delete_review(self, review_id):
        self._check()
        before = len(self.reviews)
        self.reviews = [r for r in self.reviews if r.id != review_id]
        return len(self.reviews) < before

    async def add_favorite(self, favorite):
        self._check()
        self.favorites.append(favorite)
        return favorite

    async def remove_favorite(self, user_id, book_id):
        self._check()
        before = len(self.favorites)
        self.favorites = [
            f for f in self.favorites if not (f.user_id == user_id and f.book_id == book_id)
        ]
        return len(self.favorites) < before


class FakeCatalogRepository(IBookCatalogRepository):

    def __init__(self, books: Optional[list[CatalogBook]] = None):
        self.books = list(books or [])
        self.fail = False

    async def list_books_with_stats(
        self,
        limit=50,
        genres=None,
        exclude_ids=None,
        min_average_rating=None,
        min_review_count=None,
    ):
        if self.fail:
            raise DataAccessError("catalog offline")
        exclude_ids = exclude_ids or set()
        matches = [
            b for b in self.books
            if b.review_count > 0
            and (not genres or any(g in genres for g in b.genres))
            and b.book_id not in exclude_ids
            and (min_average_rating is None or b.average_rating >= min_average_rating)
            and (min_review_count is None or b.review_count >= min_review_count)
        ]
        ranked = sorted(matches, key=lambda b: (-b.average_rating, -b.review_count))
        return ranked[:limit]

    async def exists(self, book_id):
        if self.fail:
            raise DataAccessError("catalog offline")
        return any(b.book_id == book_id for b in self.books)


class FakeHistoryRepository(IRecommendationHistoryRepository):

    def __init__(self):
        self.records: list[RecommendationHistoryRecord] = []
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise DataAccessError("history store offline")

    async def create(self, user_id, response: RecommendationResponse, expires_at):
        self._check()
        record = RecommendationHistoryRecord(
            id=uuid4(),
            user_id=user_id,
            response=response,
            expires_at=expires_at,
            is_active=True,
            created_at=response.metadata.generated_at,
        )
        self.records.append(record)
        return record

    async def find_active_for_user(self, user_id, now):
        self._check()
        active = [
            r for r in self.records
            if r.user_id == user_id and r.is_active and r.expires_at > now
        ]
        return active[-1] if active else None

    async def deactivate_for_user(self, user_id):
        self._check()
        count = 0
        for record in self.records:
            if record.user_id == user_id and record.is_active:
                record.is_active = False
                count += 1
        return count

    async def delete_all(self):
        self._check()
        count = len(self.records)
        self.records = []
        return count

    async def delete_expired(self, now):
        self._check()
        before = len(self.records)
        self.records = [r for r in self.records if r.expires_at > now]
        return before - len(self.records)

    async def count_active(self, now):
        self._check()
        return sum(1 for r in self.records if r.is_active and r.expires_at > now)

    async def get_user_history(self, user_id, limit=10, skip=0):
        self._check()
        mine = [r for r in reversed(self.records) if r.user_id == user_id]
        return mine[skip:skip + limit]

    async def get_analytics(self, start=None, end=None):
        self._check()
        by_source: dict[str, list[RecommendationHistoryRecord]] = {}
        for record in self.records:
            if start is not None and record.created_at < start:
                continue
            if end is not None and record.created_at > end:
                continue
            by_source.setdefault(record.response.metadata.source.value, []).append(record)
        return [
            {
                "source": source,
                "count": len(records),
                "avg_processing_time_ms": 0.0,
                "avg_confidence": 0.0,
            }
            for source, records in sorted(by_source.items())
        ]


class FakeTextBackend(ITextGenerationBackend):
    """Replies with ``reply`` or raises ``error``; counts calls."""

    model = "fake-model"

    def __init__(self, reply: str = "", available: bool = True, error: Optional[Exception] = None):
        self.reply = reply
        self.available = available
        self.error = error
        self.calls = 0
        self.last_prompts: Optional[tuple[str, str]] = None

    def is_available(self) -> bool:
        return self.available

    async def complete(self, system_prompt, user_prompt, max_tokens, temperature):
        self.calls += 1
        self.last_prompts = (system_prompt, user_prompt)
        if self.error is not None:
            raise self.error
        return self.reply

    async def test_connection(self) -> bool:
        if self.error is not None:
            raise UpstreamError("connection test failed")
        return self.available


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


@pytest.fixture
def activity_repo() -> FakeActivityRepository:
    return FakeActivityRepository()


@pytest.fixture
def catalog_books() -> list[CatalogBook]:
    return [
        CatalogBook("The Way of Kings", "Brandon Sanderson", ["Fantasy"], 4.7, 120, uuid4()),
        CatalogBook("Mistborn", "Brandon Sanderson", ["Fantasy"], 4.5, 60, uuid4()),
        CatalogBook("Project Hail Mary", "Andy Weir", ["Science Fiction"], 4.6, 80, uuid4()),
        CatalogBook("Gone Girl", "Gillian Flynn", ["Thriller", "Mystery"], 4.1, 30, uuid4()),
        CatalogBook("Educated", "Tara Westover", ["Memoir"], 3.9, 12, uuid4()),
        CatalogBook("Beach Read", "Emily Henry", ["Romance"], 3.6, 6, uuid4()),
    ]


@pytest.fixture
def catalog_repo(catalog_books) -> FakeCatalogRepository:
    return FakeCatalogRepository(catalog_books)


@pytest.fixture
def history_repo() -> FakeHistoryRepository:
    return FakeHistoryRepository()


@pytest.fixture
def backend() -> FakeTextBackend:
    return FakeTextBackend(
        reply=ai_reply(
            ai_item("The Name of the Wind", "Patrick Rothfuss", 0.9),
            ai_item("The Lies of Locke Lamora", "Scott Lynch", 0.85),
            ai_item("Piranesi", "Susanna Clarke", 0.8),
        )
    )


@pytest.fixture
def cache(history_repo, clock) -> RecommendationCache:
    return RecommendationCache(history_repo, ttl_seconds=3600, clock=clock)


@pytest.fixture
def fallback_generator(catalog_repo, activity_repo) -> FallbackRecommendationGenerator:
    return FallbackRecommendationGenerator(catalog_repo, activity_repo)


@pytest.fixture
def make_service(activity_repo, fallback_generator, cache, clock):
    """Build a ``RecommendationService`` around a given backend."""

    def _build(text_backend: ITextGenerationBackend) -> RecommendationService:
        return RecommendationService(
            preference_service=PreferenceService(activity_repo, clock=clock),
            ai_generator=AIRecommendationGenerator(text_backend, timeout_seconds=1.0),
            fallback_generator=fallback_generator,
            cache=cache,
            clock=clock,
        )

    return _build


@pytest.fixture
def engaged_user(user_id, activity_repo):
    """A user with enough activity to be eligible for AI recommendations."""
    fantasy = [make_book(f"Fantasy {i}", "Some Author", "Fantasy") for i in range(3)]
    for i, book in enumerate(fantasy):
        activity_repo.reviews.append(
            make_review(user_id, book, 5, created_at=NOW - timedelta(days=i + 1))
        )
    return user_id
