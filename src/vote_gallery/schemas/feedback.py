# src/vote_gallery/schemas/feedback.py
"""Favorite and comment Pydantic schemas."""

from pydantic import BaseModel, Field


class FavoriteToggle(BaseModel):
    """Schema for flipping a voter's favorite flag."""

    voter: str | None = Field(
        default=None,
        description="Voter name; defaults to the X-Voter header or the session user",
    )


class FavoritesOut(BaseModel):
    """Voters who marked an image as a favorite."""

    image_id: str
    favorites: list[str]
    favorited: bool | None = None


class CommentCreate(BaseModel):
    """Schema for leaving a comment on an image."""

    text: str = Field(..., description="Comment text; blank text is rejected")
    voter: str | None = Field(default=None, description="Author; defaults like votes do")


class CommentOut(BaseModel):
    """A stored comment."""

    user: str
    text: str
    timestamp: int


class CommentsOut(BaseModel):
    """Comments of an image, oldest first."""

    image_id: str
    comments: list[CommentOut]
