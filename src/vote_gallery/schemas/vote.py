# src/vote_gallery/schemas/vote.py
"""Vote-related Pydantic schemas."""

from pydantic import BaseModel, Field


class VoteCast(BaseModel):
    """Schema for casting (or toggling off) a vote."""

    vote: str = Field(..., description='"like", "unsure" or "dislike"; unknown values are ignored')
    voter: str | None = Field(
        default=None,
        description="Voter name; defaults to the X-Voter header or the session user",
    )


class VoteMapOut(BaseModel):
    """Current votes of an image with their derived labels."""

    image_id: str
    votes: dict[str, str]
    category: str
    score: int
    tier: str
    applied: bool | None = None
