"""Pydantic schemas for the Vote Gallery API."""

from .feedback import CommentCreate, CommentOut, CommentsOut, FavoritesOut, FavoriteToggle
from .results import (
    CategoryResults,
    ImageDescriptor,
    ResultsQuery,
    TierResults,
    VotersOut,
)
from .vote import VoteCast, VoteMapOut

__all__ = [
    "CategoryResults",
    "CommentCreate",
    "CommentOut",
    "CommentsOut",
    "FavoriteToggle",
    "FavoritesOut",
    "ImageDescriptor",
    "ResultsQuery",
    "TierResults",
    "VoteCast",
    "VoteMapOut",
    "VotersOut",
]
