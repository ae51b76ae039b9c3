"""Review and favorite API routes.

Each successful change drops the caller's cached recommendations.
"""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status

from reviewshelf.api.schemas import FavoriteResponse, ReviewCreateRequest, ReviewResponse
from reviewshelf.core.dependencies import get_activity_service, get_current_user
from reviewshelf.domain.entities import User
from reviewshelf.domain.services import IActivityService

logger = logging.getLogger(__name__)
router = APIRouter(tags=["activity"])


@router.post(
    "/books/{book_id}/reviews",
    response_model=ReviewResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_review(
    book_id: UUID,
    body: ReviewCreateRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    activity_service: Annotated[IActivityService, Depends(get_activity_service)],
) -> ReviewResponse:
    """Submit a review (one per user and book)."""
    try:
        review = await activity_service.create_review(
            user_id=current_user.id, book_id=book_id, rating=body.rating, text=body.text
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return ReviewResponse.model_validate(review)


@router.delete("/reviews/{review_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_review(
    review_id: UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    activity_service: Annotated[IActivityService, Depends(get_activity_service)],
) -> Response:
    try:
        deleted = await activity_service.delete_review(current_user.id, review_id)
    except PermissionError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Review not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/books/{book_id}/favorite",
    response_model=FavoriteResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_favorite(
    book_id: UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    activity_service: Annotated[IActivityService, Depends(get_activity_service)],
) -> FavoriteResponse:
    try:
        favorite = await activity_service.add_favorite(current_user.id, book_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return FavoriteResponse.model_validate(favorite)


@router.delete("/books/{book_id}/favorite", status_code=status.HTTP_204_NO_CONTENT)
async def remove_favorite(
    book_id: UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    activity_service: Annotated[IActivityService, Depends(get_activity_service)],
) -> Response:
    removed = await activity_service.remove_favorite(current_user.id, book_id)
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Favorite not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
