"""Endpoint routers for API v1."""

from .feedback import router as feedback_router
from .results import router as results_router
from .system import router as system_router
from .votes import router as votes_router

__all__ = ["feedback_router", "results_router", "system_router", "votes_router"]
