# src/vote_gallery/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import feedback_router, results_router, system_router, votes_router

__all__ = [
    "votes_router",
    "feedback_router",
    "results_router",
    "system_router",
]
