"""Shared API dependencies."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from vote_gallery.services.feedback import FeedbackService
from vote_gallery.services.rating_sync import RatingSync


def get_rating_sync(request: Request) -> RatingSync:
    """Return the engine created at application startup.

    Raises:
        HTTPException: If the application has not finished starting
    """
    engine: RatingSync | None = getattr(request.app.state, "rating_sync", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Rating engine not started",
        )
    return engine


def get_feedback_service(request: Request) -> FeedbackService:
    """Return the favorites and comments service created at startup."""
    feedback: FeedbackService | None = getattr(request.app.state, "feedback", None)
    if feedback is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Feedback service not started",
        )
    return feedback


# Type alias for rating engine dependency
RatingSyncDep = Annotated[RatingSync, Depends(get_rating_sync)]
FeedbackServiceDep = Annotated[FeedbackService, Depends(get_feedback_service)]
