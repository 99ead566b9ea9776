# src/vote_gallery/main.py
"""Main entry point for the Vote Gallery application."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from vote_gallery.api.v1 import feedback_router, results_router, system_router, votes_router
from vote_gallery.core.settings import settings
from vote_gallery.db.session import create_tables
from vote_gallery.services.feedback import FeedbackService, build_feedback_service
from vote_gallery.services.rating_sync import RatingSync, build_rating_sync

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Shared three-way voting on a gallery of images",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(votes_router, prefix="/api/v1")
app.include_router(feedback_router, prefix="/api/v1")
app.include_router(results_router, prefix="/api/v1")
app.include_router(system_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    if getattr(app.state, "rating_sync", None) is None:
        create_tables()
        app.state.rating_sync = build_rating_sync(settings)
    if getattr(app.state, "feedback", None) is None:
        app.state.feedback = build_feedback_service(app.state.rating_sync, settings)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    # Feedback shares the engine's remote client, so it closes first.
    feedback: FeedbackService | None = getattr(app.state, "feedback", None)
    if feedback is not None:
        await feedback.aclose()
    app.state.feedback = None

    engine: RatingSync | None = getattr(app.state, "rating_sync", None)
    if engine is not None:
        await engine.aclose()
    app.state.rating_sync = None


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("vote_gallery.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
