"""Dependency injection container."""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reviewshelf.core.config import Settings, settings
from reviewshelf.core.security import decode_access_token
from reviewshelf.domain.entities import User
from reviewshelf.domain.repositories import (
    IBookCatalogRepository,
    ITextGenerationBackend,
    IUserActivityRepository,
    IUserRepository,
)
from reviewshelf.domain.services import IActivityService, IRecommendationService
from reviewshelf.infrastructure.database.connection import async_session_maker
from reviewshelf.infrastructure.database.repository import (
    BookCatalogRepository,
    RecommendationHistoryRepository,
    UserActivityRepository,
    UserRepository,
)
from reviewshelf.infrastructure.llm.services import (
    DisabledTextBackend,
    MockTextBackend,
    OllamaTextBackend,
    OpenAITextBackend,
)
from reviewshelf.services.activity_service import ActivityService
from reviewshelf.services.ai_recommendation import AIRecommendationGenerator
from reviewshelf.services.fallback_recommendation import FallbackRecommendationGenerator
from reviewshelf.services.preference_service import PreferenceService
from reviewshelf.services.recommendation import RecommendationService
from reviewshelf.services.recommendation_cache import RecommendationCache

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


# ---------------------------------------------------------------------------
# Infrastructure providers
# ---------------------------------------------------------------------------
def get_text_backend(config: Optional[Settings] = None) -> ITextGenerationBackend:
    """Return the configured text-generation provider."""
    config = config or settings
    if config.llm_provider == "none":
        return DisabledTextBackend()
    elif config.llm_provider == "mock":
        return MockTextBackend()
    elif config.llm_provider == "ollama":
        return OllamaTextBackend(
            base_url=config.llm_base_url,
            model=config.llm_model,
            timeout=config.llm_timeout_seconds,
        )
    elif config.llm_provider == "openai":
        return OpenAITextBackend(
            api_key=config.llm_api_key,
            model=config.llm_model,
            timeout=config.llm_timeout_seconds,
        )
    raise ValueError(f"Unknown LLM provider: {config.llm_provider}")


def build_recommendation_service(
    session_factory: async_sessionmaker[AsyncSession] = async_session_maker,
    config: Optional[Settings] = None,
) -> IRecommendationService:
    """Wire the long-lived recommendation engine (called once per process)."""
    config = config or settings
    activity_repo = UserActivityRepository(session_factory)
    return RecommendationService(
        preference_service=PreferenceService(activity_repo),
        ai_generator=AIRecommendationGenerator(
            get_text_backend(config),
            max_tokens=config.llm_max_tokens,
            temperature=config.llm_temperature,
            timeout_seconds=config.llm_timeout_seconds,
        ),
        fallback_generator=FallbackRecommendationGenerator(
            BookCatalogRepository(session_factory), activity_repo
        ),
        cache=RecommendationCache(
            RecommendationHistoryRepository(session_factory),
            ttl_seconds=config.recommendation_cache_ttl_seconds,
        ),
    )


# ---------------------------------------------------------------------------
# Repository providers
# ---------------------------------------------------------------------------
def get_user_repository() -> IUserRepository:
    return UserRepository(async_session_maker)


def get_activity_repository() -> IUserActivityRepository:
    return UserActivityRepository(async_session_maker)


def get_catalog_repository() -> IBookCatalogRepository:
    return BookCatalogRepository(async_session_maker)


# ---------------------------------------------------------------------------
# Service providers
# ---------------------------------------------------------------------------
def get_recommendation_service(request: Request) -> IRecommendationService:
    """The process-wide engine built in the application lifespan."""
    return request.app.state.recommendation_service


def get_activity_service(
    activity_repo: Annotated[IUserActivityRepository, Depends(get_activity_repository)],
    catalog_repo: Annotated[IBookCatalogRepository, Depends(get_catalog_repository)],
    recommendation_service: Annotated[
        IRecommendationService, Depends(get_recommendation_service)
    ],
) -> IActivityService:
    return ActivityService(
        activity_repository=activity_repo,
        catalog_repository=catalog_repo,
        recommendation_service=recommendation_service,
    )


# ---------------------------------------------------------------------------
# Auth dependency
# ---------------------------------------------------------------------------
async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    user_repo: Annotated[IUserRepository, Depends(get_user_repository)],
) -> User:
    """Decode the bearer JWT and return the authenticated, active user."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    payload = decode_access_token(token)
    if payload is None:
        raise credentials_exception

    user_id_str = payload.get("sub")
    if user_id_str is None:
        raise credentials_exception
    try:
        user_id = UUID(user_id_str)
    except (TypeError, ValueError):
        raise credentials_exception
    user = await user_repo.get_by_id(user_id)
    if user is None or not user.is_active:
        raise credentials_exception
    return user
