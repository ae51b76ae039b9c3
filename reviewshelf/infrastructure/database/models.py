"""SQLAlchemy database models."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSON, UUID
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    pass


class UserModel(Base):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    username = Column(String(100), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    reviews = relationship("ReviewModel", back_populates="user", lazy="noload")
    favorites = relationship("FavoriteModel", back_populates="user", lazy="noload")


class BookModel(Base):
    __tablename__ = "books"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False, index=True)
    author = Column(String(255), nullable=False, index=True)
    genres = Column(ARRAY(String), default=list, nullable=False)
    published_year = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ReviewModel(Base):
    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint("user_id", "book_id", name="uq_user_book_review"),
        Index("ix_reviews_user_created", "user_id", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    # No FK: a deleted book leaves the review behind with a dangling reference.
    book_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    rating = Column(Float, nullable=False)
    text = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("UserModel", back_populates="reviews")
    book = relationship(
        "BookModel",
        primaryjoin="foreign(ReviewModel.book_id) == BookModel.id",
        lazy="selectin",
        viewonly=True,
    )


class FavoriteModel(Base):
    __tablename__ = "favorites"
    __table_args__ = (UniqueConstraint("user_id", "book_id", name="uq_user_book_favorite"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    book_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("UserModel", back_populates="favorites")
    book = relationship(
        "BookModel",
        primaryjoin="foreign(FavoriteModel.book_id) == BookModel.id",
        lazy="selectin",
        viewonly=True,
    )


class RecommendationHistoryModel(Base):
    """Persistent tier of the recommendation cache.

    Writing a new set for a user deactivates the previous one, so at most one
    row per user has ``is_active = true``. Deactivated rows are kept as
    history until their ``expires_at`` passes and the sweep removes them.
    """

    __tablename__ = "recommendation_history"
    __table_args__ = (
        Index("ix_rec_history_user_created", "user_id", "created_at"),
        Index("ix_rec_history_user_active", "user_id", "is_active"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    recommendations = Column(JSON, nullable=False)  # [{title, author, reason, confidence, …}]
    meta = Column("metadata", JSON, nullable=False)  # {source, generatedAt, processingTime, …}
    source = Column(String(20), nullable=False, index=True)  # ai | fallback | hybrid
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
