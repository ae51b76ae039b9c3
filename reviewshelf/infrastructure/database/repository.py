"""Repository implementations.

Repositories are handed an ``async_sessionmaker`` rather than a session: the
recommendation service and its cache live for the whole process, so each
call opens (and closes) its own short-lived session. Every SQLAlchemy failure
is re-raised as :class:`DataAccessError`.
"""

import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reviewshelf.domain.entities import (
    Book,
    CatalogBook,
    Favorite,
    PreferenceSnapshot,
    RecommendationHistoryRecord,
    RecommendationItem,
    RecommendationMetadata,
    RecommendationResponse,
    RecommendationSource,
    Review,
    User,
)
from reviewshelf.domain.exceptions import DataAccessError
from reviewshelf.domain.repositories import (
    IBookCatalogRepository,
    IRecommendationHistoryRepository,
    IUserActivityRepository,
    IUserRepository,
)
from reviewshelf.infrastructure.database.models import (
    BookModel,
    FavoriteModel,
    RecommendationHistoryModel,
    ReviewModel,
    UserModel,
)

logger = logging.getLogger(__name__)


class _SessionRepository:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error("Database operation failed in %s: %s", type(self).__name__, exc)
            raise DataAccessError(str(exc)) from exc


def _book_to_entity(model: Optional[BookModel]) -> Optional[Book]:
    if model is None:
        return None
    return Book(
        id=model.id,
        title=model.title,
        author=model.author,
        genres=list(model.genres or []),
        published_year=model.published_year,
    )


# ---------------------------------------------------------------------------
# User Repository
# ---------------------------------------------------------------------------
class UserRepository(_SessionRepository, IUserRepository):

    async def get_by_id(self, user_id: UUID) -> Optional[User]:
        async with self._session() as session:
            result = await session.execute(select(UserModel).where(UserModel.id == user_id))
            db_user = result.scalar_one_or_none()
            return self._to_entity(db_user) if db_user else None

    @staticmethod
    def _to_entity(model: UserModel) -> User:
        return User(
            id=model.id,
            username=model.username,
            email=model.email,
            is_active=model.is_active,
            created_at=model.created_at,
        )


# ---------------------------------------------------------------------------
# User Activity Repository (reviews + favorites)
# ---------------------------------------------------------------------------
class UserActivityRepository(_SessionRepository, IUserActivityRepository):

    async def find_reviews_by_user(
        self, user_id: UUID, limit: Optional[int] = None, newest_first: bool = True
    ) -> list[Review]:
        order = ReviewModel.created_at.desc() if newest_first else ReviewModel.created_at.asc()
        stmt = select(ReviewModel).where(ReviewModel.user_id == user_id).order_by(order)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session() as session:
            result = await session.execute(stmt)
            return [self._review_to_entity(r) for r in result.scalars().all()]

    async def find_favorites_by_user(self, user_id: UUID) -> list[Favorite]:
        async with self._session() as session:
            result = await session.execute(
                select(FavoriteModel)
                .where(FavoriteModel.user_id == user_id)
                .order_by(FavoriteModel.created_at.desc())
            )
            return [self._favorite_to_entity(f) for f in result.scalars().all()]

    async def count_reviews(self, user_id: UUID) -> int:
        async with self._session() as session:
            result = await session.execute(
                select(func.count()).select_from(ReviewModel).where(ReviewModel.user_id == user_id)
            )
            return result.scalar_one()

    async def count_favorites(self, user_id: UUID) -> int:
        async with self._session() as session:
            result = await session.execute(
                select(func.count())
                .select_from(FavoriteModel)
                .where(FavoriteModel.user_id == user_id)
            )
            return result.scalar_one()

    async def get_user_book_ids(self, user_id: UUID) -> set[UUID]:
        async with self._session() as session:
            reviewed = await session.execute(
                select(ReviewModel.book_id).where(ReviewModel.user_id == user_id)
            )
            favorited = await session.execute(
                select(FavoriteModel.book_id).where(FavoriteModel.user_id == user_id)
            )
            return set(reviewed.scalars().all()) | set(favorited.scalars().all())

    async def find_similar_readers(
        self,
        user_id: UUID,
        genres: list[str],
        min_average_rating: float,
        min_common_books: int = 3,
        limit: int = 10,
    ) -> list[UUID]:
        if not genres:
            return []
        common_books = func.count(ReviewModel.id)
        stmt = (
            select(ReviewModel.user_id)
            .join(BookModel, BookModel.id == ReviewModel.book_id)
            .where(
                ReviewModel.user_id != user_id,
                ReviewModel.rating >= 4,
                BookModel.genres.overlap(list(genres)),
            )
            .group_by(ReviewModel.user_id)
            .having(
                common_books >= min_common_books,
                func.avg(ReviewModel.rating) >= min_average_rating,
            )
            .order_by(common_books.desc())
            .limit(limit)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def find_high_ratings_by_users(
        self, user_ids: list[UUID], exclude_book_ids: set[UUID], min_rating: float = 4.0
    ) -> list[Review]:
        if not user_ids:
            return []
        stmt = select(ReviewModel).where(
            ReviewModel.user_id.in_(list(user_ids)),
            ReviewModel.rating >= min_rating,
        )
        if exclude_book_ids:
            stmt = stmt.where(ReviewModel.book_id.notin_(list(exclude_book_ids)))
        async with self._session() as session:
            result = await session.execute(stmt)
            return [self._review_to_entity(r) for r in result.scalars().all()]

    async def create_review(self, review: Review) -> Review:
        async with self._session() as session:
            db_review = ReviewModel(
                id=review.id,
                user_id=review.user_id,
                book_id=review.book_id,
                rating=review.rating,
                text=review.text,
                created_at=review.created_at,
            )
            session.add(db_review)
            await session.commit()
            await session.refresh(db_review, attribute_names=["book"])
            return self._review_to_entity(db_review)

    async def get_review(self, review_id: UUID) -> Optional[Review]:
        async with self._session() as session:
            result = await session.execute(select(ReviewModel).where(ReviewModel.id == review_id))
            db_review = result.scalar_one_or_none()
            return self._review_to_entity(db_review) if db_review else None

    async def delete_review(self, review_id: UUID) -> bool:
        async with self._session() as session:
            result = await session.execute(delete(ReviewModel).where(ReviewModel.id == review_id))
            await session.commit()
            return result.rowcount > 0

    async def add_favorite(self, favorite: Favorite) -> Favorite:
        async with self._session() as session:
            db_favorite = FavoriteModel(
                id=favorite.id,
                user_id=favorite.user_id,
                book_id=favorite.book_id,
                created_at=favorite.created_at,
            )
            session.add(db_favorite)
            await session.commit()
            await session.refresh(db_favorite, attribute_names=["book"])
            return self._favorite_to_entity(db_favorite)

    async def remove_favorite(self, user_id: UUID, book_id: UUID) -> bool:
        async with self._session() as session:
            result = await session.execute(
                delete(FavoriteModel).where(
                    FavoriteModel.user_id == user_id,
                    FavoriteModel.book_id == book_id,
                )
            )
            await session.commit()
            return result.rowcount > 0

    @staticmethod
    def _review_to_entity(model: ReviewModel) -> Review:
        return Review(
            id=model.id,
            user_id=model.user_id,
            book_id=model.book_id,
            rating=model.rating,
            text=model.text or "",
            book=_book_to_entity(model.book),
            created_at=model.created_at,
        )

    @staticmethod
    def _favorite_to_entity(model: FavoriteModel) -> Favorite:
        return Favorite(
            id=model.id,
            user_id=model.user_id,
            book_id=model.book_id,
            book=_book_to_entity(model.book),
            created_at=model.created_at,
        )


# ---------------------------------------------------------------------------
# Book Catalog Repository
# ---------------------------------------------------------------------------
class BookCatalogRepository(_SessionRepository, IBookCatalogRepository):

    async def list_books_with_stats(
        self,
        limit: int = 50,
        genres: Optional[list[str]] = None,
        exclude_ids: Optional[set[UUID]] = None,
        min_average_rating: Optional[float] = None,
        min_review_count: Optional[int] = None,
    ) -> list[CatalogBook]:
        review_count = func.count(ReviewModel.id).label("review_count")
        average_rating = func.avg(ReviewModel.rating).label("average_rating")
        stmt = (
            select(BookModel, review_count, average_rating)
            .join(ReviewModel, ReviewModel.book_id == BookModel.id)
            .group_by(BookModel.id)
            .having(func.count(ReviewModel.id) > 0)
        )
        if genres:
            stmt = stmt.where(BookModel.genres.overlap(list(genres)))
        if exclude_ids:
            stmt = stmt.where(BookModel.id.notin_(list(exclude_ids)))
        if min_average_rating is not None:
            stmt = stmt.having(func.avg(ReviewModel.rating) >= min_average_rating)
        if min_review_count is not None:
            stmt = stmt.having(func.count(ReviewModel.id) >= min_review_count)
        stmt = stmt.order_by(average_rating.desc(), review_count.desc()).limit(limit)
        async with self._session() as session:
            result = await session.execute(stmt)
            return [
                CatalogBook(
                    title=book.title,
                    author=book.author,
                    genres=list(book.genres or []),
                    average_rating=float(avg or 0.0),
                    review_count=int(count),
                    book_id=book.id,
                )
                for book, count, avg in result.all()
            ]

    async def exists(self, book_id: UUID) -> bool:
        async with self._session() as session:
            result = await session.execute(select(BookModel.id).where(BookModel.id == book_id))
            return result.scalar_one_or_none() is not None


# ---------------------------------------------------------------------------
# Recommendation History Repository (persistent cache tier)
# ---------------------------------------------------------------------------
class RecommendationHistoryRepository(_SessionRepository, IRecommendationHistoryRepository):

    async def create(
        self, user_id: UUID, response: RecommendationResponse, expires_at: datetime
    ) -> RecommendationHistoryRecord:
        db_record = RecommendationHistoryModel(
            id=uuid4(),
            user_id=user_id,
            recommendations=[self._item_to_document(i) for i in response.recommendations],
            meta=self._metadata_to_document(response.metadata),
            source=response.metadata.source.value,
            created_at=datetime.utcnow(),
            expires_at=expires_at,
            is_active=True,
        )
        async with self._session() as session:
            session.add(db_record)
            await session.commit()
            await session.refresh(db_record)
            return self._to_entity(db_record)

    async def find_active_for_user(
        self, user_id: UUID, now: datetime
    ) -> Optional[RecommendationHistoryRecord]:
        async with self._session() as session:
            result = await session.execute(
                select(RecommendationHistoryModel)
                .where(
                    RecommendationHistoryModel.user_id == user_id,
                    RecommendationHistoryModel.is_active.is_(True),
                    RecommendationHistoryModel.expires_at > now,
                )
                .order_by(RecommendationHistoryModel.created_at.desc())
                .limit(1)
            )
            db_record = result.scalar_one_or_none()
            return self._to_entity(db_record) if db_record else None

    async def deactivate_for_user(self, user_id: UUID) -> int:
        async with self._session() as session:
            result = await session.execute(
                update(RecommendationHistoryModel)
                .where(
                    RecommendationHistoryModel.user_id == user_id,
                    RecommendationHistoryModel.is_active.is_(True),
                )
                .values(is_active=False)
            )
            await session.commit()
            return result.rowcount

    async def delete_all(self) -> int:
        async with self._session() as session:
            result = await session.execute(delete(RecommendationHistoryModel))
            await session.commit()
            return result.rowcount

    async def delete_expired(self, now: datetime) -> int:
        async with self._session() as session:
            result = await session.execute(
                delete(RecommendationHistoryModel).where(
                    RecommendationHistoryModel.expires_at <= now
                )
            )
            await session.commit()
            return result.rowcount

    async def count_active(self, now: datetime) -> int:
        async with self._session() as session:
            result = await session.execute(
                select(func.count())
                .select_from(RecommendationHistoryModel)
                .where(
                    RecommendationHistoryModel.is_active.is_(True),
                    RecommendationHistoryModel.expires_at > now,
                )
            )
            return result.scalar_one()

    async def get_user_history(
        self, user_id: UUID, limit: int = 10, skip: int = 0
    ) -> list[RecommendationHistoryRecord]:
        async with self._session() as session:
            result = await session.execute(
                select(RecommendationHistoryModel)
                .where(RecommendationHistoryModel.user_id == user_id)
                .order_by(RecommendationHistoryModel.created_at.desc())
                .offset(skip)
                .limit(limit)
            )
            return [self._to_entity(r) for r in result.scalars().all()]

    async def get_analytics(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> list[dict]:
        stmt = select(RecommendationHistoryModel)
        if start is not None:
            stmt = stmt.where(RecommendationHistoryModel.created_at >= start)
        if end is not None:
            stmt = stmt.where(RecommendationHistoryModel.created_at <= end)
        async with self._session() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()

        times: dict[str, list[float]] = defaultdict(list)
        confidences: dict[str, list[float]] = defaultdict(list)
        for row in rows:
            times[row.source].append(float((row.meta or {}).get("processing_time_ms", 0)))
            items = row.recommendations or []
            if items:
                confidences[row.source].append(
                    sum(float(i.get("confidence", 0.0)) for i in items) / len(items)
                )
        return [
            {
                "source": source,
                "count": len(values),
                "avg_processing_time_ms": round(sum(values) / len(values), 2),
                "avg_confidence": (
                    round(sum(confidences[source]) / len(confidences[source]), 3)
                    if confidences[source]
                    else 0.0
                ),
            }
            for source, values in sorted(times.items())
        ]

    # -- (de)serialisation --------------------------------------------------

    @staticmethod
    def _item_to_document(item: RecommendationItem) -> dict:
        return {
            "title": item.title,
            "author": item.author,
            "genre": item.genre,
            "reason": item.reason,
            "confidence": item.confidence,
            "source": item.source.value,
            "average_rating": item.average_rating,
            "review_count": item.review_count,
        }

    @staticmethod
    def _metadata_to_document(meta: RecommendationMetadata) -> dict:
        prefs = meta.user_preferences
        return {
            "user_id": str(meta.user_id),
            "generated_at": meta.generated_at.isoformat(),
            "source": meta.source.value,
            "user_preferences": {
                "favorite_genres": list(prefs.favorite_genres),
                "average_rating": prefs.average_rating,
                "total_reviews": prefs.total_reviews,
                "has_enough_data": prefs.has_enough_data,
            },
            "processing_time_ms": meta.processing_time_ms,
            "cache_hit": meta.cache_hit,
            "model": meta.model,
        }

    @classmethod
    def _to_entity(cls, model: RecommendationHistoryModel) -> RecommendationHistoryRecord:
        meta = model.meta or {}
        prefs = meta.get("user_preferences") or {}
        response = RecommendationResponse(
            recommendations=[
                RecommendationItem(
                    title=doc["title"],
                    author=doc["author"],
                    genre=doc.get("genre"),
                    reason=doc["reason"],
                    confidence=float(doc["confidence"]),
                    source=RecommendationSource(doc["source"]),
                    average_rating=doc.get("average_rating"),
                    review_count=doc.get("review_count"),
                )
                for doc in (model.recommendations or [])
            ],
            metadata=RecommendationMetadata(
                user_id=model.user_id,
                source=RecommendationSource(meta.get("source", model.source)),
                user_preferences=PreferenceSnapshot(
                    favorite_genres=list(prefs.get("favorite_genres", [])),
                    average_rating=float(prefs.get("average_rating", 0.0)),
                    total_reviews=int(prefs.get("total_reviews", 0)),
                    has_enough_data=bool(prefs.get("has_enough_data", False)),
                ),
                processing_time_ms=int(meta.get("processing_time_ms", 0)),
                cache_hit=bool(meta.get("cache_hit", False)),
                model=meta.get("model"),
                generated_at=(
                    datetime.fromisoformat(meta["generated_at"])
                    if meta.get("generated_at")
                    else model.created_at
                ),
            ),
        )
        return RecommendationHistoryRecord(
            id=model.id,
            user_id=model.user_id,
            response=response,
            expires_at=model.expires_at,
            is_active=model.is_active,
            created_at=model.created_at,
        )
