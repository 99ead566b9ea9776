# src/vote_gallery/schemas/results.py
"""Schemas for grouped result views."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ImageDescriptor(BaseModel):
    """Read-only catalog entry supplied by the caller."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)
    room: str | None = None


class ResultsQuery(BaseModel):
    """Images to aggregate, optionally seen through one voter's cells."""

    images: list[ImageDescriptor] = Field(default_factory=list)
    voter: str | None = None
    view: str = Field(default="all", description="Named rating filter applied before grouping")


class CategoryResults(BaseModel):
    """Images bucketed by consensus category."""

    voter: str | None
    view: str
    groups: dict[str, list[dict[str, Any]]]
    counts: dict[str, int]


class TierResults(BaseModel):
    """Images bucketed by score tier, best first."""

    tiers: dict[str, list[dict[str, Any]]]
    counts: dict[str, int]


class VotersOut(BaseModel):
    voters: list[str]
