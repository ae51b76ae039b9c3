"""Domain entities for ReviewShelf."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID


class RecommendationSource(str, Enum):
    AI = "ai"
    FALLBACK = "fallback"
    HYBRID = "hybrid"


@dataclass
class User:
    id: UUID
    username: str
    email: str
    is_active: bool = True
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Book:
    id: UUID
    title: str
    author: str
    genres: list[str] = field(default_factory=list)
    published_year: Optional[int] = None

    @property
    def identifier(self) -> str:
        """``"Title by Author"``, the key used for de-duplication."""
        return f"{self.title} by {self.author}"


@dataclass
class Review:
    """A user's rating of a book.

    ``book`` is the joined catalog record; it is ``None`` when the book has
    been deleted or the reference is malformed.
    """

    id: UUID
    user_id: UUID
    book_id: UUID
    rating: float
    text: str = ""
    book: Optional[Book] = None
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Favorite:
    id: UUID
    user_id: UUID
    book_id: UUID
    book: Optional[Book] = None
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class CatalogBook:
    """A recommendation candidate with its aggregated review statistics."""

    title: str
    author: str
    genres: list[str] = field(default_factory=list)
    average_rating: float = 0.0
    review_count: int = 0
    book_id: Optional[UUID] = None

    @property
    def identifier(self) -> str:
        return f"{self.title} by {self.author}"

    @property
    def primary_genre(self) -> str:
        return self.genres[0] if self.genres else "Unknown"


# ---------------------------------------------------------------------------
# Preference profile
# ---------------------------------------------------------------------------
@dataclass
class HighRatedBook:
    title: str
    author: str
    rating: float
    genre: Optional[str] = None


@dataclass
class ReadingPatterns:
    is_selective_reader: bool = False  # average rating >= 4.0
    is_active_reviewer: bool = False  # 10+ reviews
    has_genre_preference: bool = False  # concentrated in few genres


@dataclass
class PreferenceProfile:
    """Scored preference profile derived from a user's reviews and favorites.

    Never persisted on its own; recomputed on every cache miss.
    """

    favorite_genres: list[str] = field(default_factory=list)
    recent_genres: list[str] = field(default_factory=list)
    high_rated_books: list[HighRatedBook] = field(default_factory=list)
    preferred_authors: list[str] = field(default_factory=list)
    average_rating: float = 0.0
    total_reviews: int = 0
    rating_distribution: dict[int, int] = field(
        default_factory=lambda: {1: 0, 2: 0, 3: 0, 4: 0, 5: 0}
    )
    reading_patterns: ReadingPatterns = field(default_factory=ReadingPatterns)


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------
@dataclass
class RecommendationItem:
    title: str
    author: str
    reason: str
    confidence: float
    source: RecommendationSource
    genre: Optional[str] = None
    average_rating: Optional[float] = None
    review_count: Optional[int] = None

    @property
    def identifier(self) -> str:
        return f"{self.title} by {self.author}"


@dataclass
class PreferenceSnapshot:
    """The summary fields of a profile that travel with a response."""

    favorite_genres: list[str] = field(default_factory=list)
    average_rating: float = 0.0
    total_reviews: int = 0
    has_enough_data: bool = False


@dataclass
class RecommendationMetadata:
    user_id: UUID
    source: RecommendationSource
    user_preferences: PreferenceSnapshot
    processing_time_ms: int = 0
    cache_hit: bool = False
    model: Optional[str] = None
    generated_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class RecommendationResponse:
    recommendations: list[RecommendationItem]
    metadata: RecommendationMetadata


@dataclass
class CacheEntry:
    """Memory-tier cache record."""

    response: RecommendationResponse
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass
class RecommendationHistoryRecord:
    """Persistent-tier cache row. Only one row per user is active at a time."""

    id: UUID
    user_id: UUID
    response: RecommendationResponse
    expires_at: datetime
    is_active: bool = True
    created_at: datetime = field(default_factory=datetime.utcnow)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass
class SystemHealth:
    openai_available: bool
    fallback_working: bool
    cache_working: bool

    @property
    def healthy(self) -> bool:
        return self.fallback_working and self.cache_working
