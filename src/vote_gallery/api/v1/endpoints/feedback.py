# src/vote_gallery/api/v1/endpoints/feedback.py
"""Favorite and comment endpoints for the Vote Gallery API."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Header, HTTPException, status

from vote_gallery.api.v1.dependencies import FeedbackServiceDep
from vote_gallery.core.votes import normalize_id
from vote_gallery.schemas.feedback import (
    CommentCreate,
    CommentOut,
    CommentsOut,
    FavoritesOut,
    FavoriteToggle,
)

router = APIRouter(prefix="/images", tags=["feedback"])


@router.get("/{image_id}/favorites", response_model=FavoritesOut, response_model_exclude_none=True)
async def get_favorites(image_id: str, feedback: FeedbackServiceDep) -> FavoritesOut:
    """Return the voters who favorited an image."""
    image_id = normalize_id(image_id)
    favorites = await feedback.get_favorites(image_id)
    return FavoritesOut(image_id=image_id, favorites=favorites)


@router.post("/{image_id}/favorites", response_model=FavoritesOut)
async def toggle_favorite(
    image_id: str,
    toggle: FavoriteToggle,
    feedback: FeedbackServiceDep,
    x_voter: Annotated[str | None, Header()] = None,
) -> FavoritesOut:
    """Flip the caller's favorite flag on an image."""
    image_id = normalize_id(image_id)
    voter = toggle.voter or x_voter
    result = await feedback.toggle_favorite(image_id, voter)
    return FavoritesOut(
        image_id=image_id,
        favorites=result.favorites,
        favorited=result.favorited_by(feedback.resolve_voter(voter)),
    )


@router.get("/{image_id}/comments", response_model=CommentsOut)
async def get_comments(image_id: str, feedback: FeedbackServiceDep) -> CommentsOut:
    """Return an image's comments, oldest first."""
    image_id = normalize_id(image_id)
    comments = await feedback.get_comments(image_id)
    return CommentsOut(
        image_id=image_id,
        comments=[CommentOut(**comment.to_dict()) for comment in comments],
    )


@router.post(
    "/{image_id}/comments",
    response_model=CommentOut,
    status_code=status.HTTP_201_CREATED,
)
async def add_comment(
    image_id: str,
    comment_data: CommentCreate,
    feedback: FeedbackServiceDep,
    x_voter: Annotated[str | None, Header()] = None,
) -> CommentOut:
    """Leave a comment on an image."""
    if not normalize_id(comment_data.text):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Comment text must not be blank",
        )
    comment = await feedback.add_comment(
        normalize_id(image_id), comment_data.text, comment_data.voter or x_voter
    )
    if comment is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Comment could not be stored",
        )
    return CommentOut(**comment.to_dict())
