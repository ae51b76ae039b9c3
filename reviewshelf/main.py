"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from reviewshelf.api.activity_routes import router as activity_router
from reviewshelf.api.recommendation_routes import router as recommendation_router
from reviewshelf.core.config import settings
from reviewshelf.core.dependencies import build_recommendation_service
from reviewshelf.domain.exceptions import DataAccessError, RecommendationError
from reviewshelf.infrastructure.database.connection import dispose_db, init_db

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting ReviewShelf application")
    await init_db()
    logger.info("Database initialized")
    app.state.recommendation_service = build_recommendation_service()
    logger.info("Recommendation engine ready (llm_provider=%s)", settings.llm_provider)
    yield
    logger.info("Shutting down ReviewShelf application")
    await dispose_db()


def create_app(use_lifespan: bool = True) -> FastAPI:
    application = FastAPI(
        title="ReviewShelf",
        description="Book reviews with cached, LLM-backed recommendations",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else None,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(recommendation_router)
    application.include_router(activity_router)

    @application.exception_handler(DataAccessError)
    async def data_access_error_handler(request: Request, exc: DataAccessError):
        logger.error("Data access failure on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Unable to generate recommendations at this time"},
        )

    @application.exception_handler(RecommendationError)
    async def recommendation_error_handler(request: Request, exc: RecommendationError):
        logger.error("Recommendation failure on %s: %s", request.url.path, exc, exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Failed to generate recommendations"},
        )

    @application.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return application


app = create_app()
