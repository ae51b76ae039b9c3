"""Primary (LLM-backed) recommendation generator.

The backend reply is untrusted text. It is parsed once, at this boundary,
into strict pydantic models; anything that does not fit the exact item shape
fails the whole parse rather than leaking loosely-typed data further in.
"""

import asyncio
import json
import logging
import math
import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from reviewshelf.domain.entities import PreferenceProfile, RecommendationItem, RecommendationSource
from reviewshelf.domain.exceptions import (
    MalformedResponseError,
    ServiceUnavailableError,
    UpstreamError,
)
from reviewshelf.domain.repositories import ITextGenerationBackend
from reviewshelf.infrastructure.llm.prompts import BOOK_RECOMMENDATION_PROMPT

logger = logging.getLogger(__name__)

MAX_AI_RECOMMENDATIONS = 3
MAX_PROMPT_BOOKS = 5
MAX_REASON_LENGTH = 500
DEFAULT_CONFIDENCE = 0.5

_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


# ---------------------------------------------------------------------------
# Boundary models
# ---------------------------------------------------------------------------
class AIRecommendationEntry(BaseModel):
    """One recommendation exactly as the model must return it."""

    model_config = ConfigDict(extra="ignore")

    title: str
    author: str
    reason: str
    genre: Optional[str] = None
    confidence: float = DEFAULT_CONFIDENCE

    @field_validator("title", "author", "reason", mode="before")
    @classmethod
    def _required_text(cls, value: Any) -> str:
        if value is None or isinstance(value, (dict, list, bool)):
            raise ValueError("missing required field")
        text = str(value).strip()
        if not text:
            raise ValueError("missing required field")
        return text

    @field_validator("reason")
    @classmethod
    def _truncate_reason(cls, value: str) -> str:
        return value[:MAX_REASON_LENGTH]

    @field_validator("genre", mode="before")
    @classmethod
    def _optional_genre(cls, value: Any) -> Optional[str]:
        if value is None or isinstance(value, (dict, list)):
            return None
        text = str(value).strip()
        return text or None

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        try:
            score = float(value)
        except (TypeError, ValueError):
            return DEFAULT_CONFIDENCE
        if math.isnan(score):
            return DEFAULT_CONFIDENCE
        return max(0.0, min(1.0, score))


class AIRecommendationPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    recommendations: list[AIRecommendationEntry]

    @field_validator("recommendations", mode="before")
    @classmethod
    def _first_three(cls, value: Any) -> Any:
        # Entries past the third are dropped before validation.
        if isinstance(value, list):
            return value[:MAX_AI_RECOMMENDATIONS]
        return value


def parse_recommendations(reply: str) -> list[RecommendationItem]:
    """Parse a raw backend reply into at most three AI-sourced items.

    Raises :class:`MalformedResponseError` on any structural problem, on a
    missing title/author/reason in any considered entry, or when no entry is
    present at all.
    """
    text = reply.strip()
    fenced = _CODE_FENCE.match(text)
    if fenced:
        text = fenced.group(1)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedResponseError(f"Reply is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedResponseError("Reply is not a JSON object")

    try:
        payload = AIRecommendationPayload.model_validate(data)
    except ValidationError as exc:
        raise MalformedResponseError(
            f"Invalid recommendation payload: {exc.error_count()} error(s)"
        ) from exc

    if not payload.recommendations:
        raise MalformedResponseError("No valid recommendations found in response")

    return [
        RecommendationItem(
            title=entry.title,
            author=entry.author,
            genre=entry.genre,
            reason=entry.reason,
            confidence=entry.confidence,
            source=RecommendationSource.AI,
        )
        for entry in payload.recommendations
    ]


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------
class AIRecommendationGenerator:
    """Asks the text-generation backend for three personalised picks."""

    def __init__(
        self,
        backend: ITextGenerationBackend,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        timeout_seconds: float = 30.0,
    ):
        self.backend = backend
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds

    @property
    def model(self) -> str:
        return self.backend.model

    def is_available(self) -> bool:
        return self.backend.is_available()

    @staticmethod
    def build_prompt(profile: PreferenceProfile) -> tuple[str, str]:
        """Render ``(system_prompt, user_prompt)`` for a preference profile."""
        favorite_genres = (
            ", ".join(profile.favorite_genres)
            if profile.favorite_genres
            else "No specific genre preferences"
        )
        recent_genres = (
            ", ".join(profile.recent_genres)
            if profile.recent_genres
            else "No recent reading patterns"
        )
        high_rated_books = (
            ", ".join(
                f'"{book.title}" by {book.author} (rated {book.rating:g}/5)'
                for book in profile.high_rated_books[:MAX_PROMPT_BOOKS]
            )
            if profile.high_rated_books
            else "No previous high-rated books"
        )
        return BOOK_RECOMMENDATION_PROMPT.render_pair(
            favorite_genres=favorite_genres,
            recent_genres=recent_genres,
            high_rated_books=high_rated_books,
            average_rating=f"{profile.average_rating:.1f}",
            total_reviews=profile.total_reviews,
        )

    async def generate(self, profile: PreferenceProfile) -> list[RecommendationItem]:
        if not self.backend.is_available():
            raise ServiceUnavailableError("Text-generation backend is not configured")

        system_prompt, user_prompt = self.build_prompt(profile)
        logger.info(
            "Generating AI recommendations (genres=%d, high_rated=%d, avg_rating=%.1f)",
            len(profile.favorite_genres),
            len(profile.high_rated_books),
            profile.average_rating,
        )
        try:
            reply = await asyncio.wait_for(
                self.backend.complete(
                    system_prompt, user_prompt, self.max_tokens, self.temperature
                ),
                timeout=self.timeout_seconds,
            )
        except (ServiceUnavailableError, UpstreamError):
            raise
        except asyncio.TimeoutError as exc:
            raise UpstreamError(
                f"Text generation timed out after {self.timeout_seconds:g}s"
            ) from exc
        except Exception as exc:
            raise UpstreamError(f"Text generation failed: {exc}") from exc

        try:
            items = parse_recommendations(reply)
        except MalformedResponseError as exc:
            logger.error("Error parsing AI reply: %s (reply=%r)", exc, reply[:500])
            raise

        logger.info(
            "AI recommendations generated: count=%d, avg_confidence=%.2f",
            len(items),
            sum(i.confidence for i in items) / len(items),
        )
        return items

    async def test_connection(self) -> bool:
        if not self.backend.is_available():
            return False
        try:
            return await asyncio.wait_for(
                self.backend.test_connection(), timeout=self.timeout_seconds
            )
        except Exception as exc:
            logger.warning("Text-generation connection test failed: %s", exc)
            return False
