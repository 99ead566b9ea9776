# src/vote_gallery/services/__init__.py
"""Vote store backends, the rating sync engine, feedback and aggregation."""

from .feedback import Comment, FeedbackService, ImageFeedback, build_feedback_service
from .rating_sync import RatingChanged, RatingSync, Subscription, build_rating_sync
from .store import (
    LocalVoteStore,
    StoreUnavailableError,
    VoteStore,
    VoteStoreError,
    build_vote_store,
)

__all__ = [
    "Comment",
    "FeedbackService",
    "ImageFeedback",
    "LocalVoteStore",
    "RatingChanged",
    "RatingSync",
    "StoreUnavailableError",
    "Subscription",
    "VoteStore",
    "VoteStoreError",
    "build_feedback_service",
    "build_rating_sync",
    "build_vote_store",
]
