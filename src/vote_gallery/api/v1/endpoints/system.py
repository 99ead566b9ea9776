"""System status endpoints for the Vote Gallery API."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from vote_gallery.api.v1.dependencies import RatingSyncDep
from vote_gallery.core.settings import settings
from vote_gallery.services.remote_store import RemoteVoteStore

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/status")
async def get_status(engine: RatingSyncDep) -> dict[str, Any]:
    """Return engine and vote store state.

    Excludes secrets and connection strings.
    """
    store: dict[str, Any] = {"kind": engine.store.kind}
    if isinstance(engine.store, RemoteVoteStore):
        store["circuit_breaker"] = engine.store.get_circuit_breaker_status()
    return {
        "app": {
            "name": settings.app_name,
            "version": settings.app_version,
            "debug": settings.debug,
        },
        "store": store,
        "engine": engine.status(),
        "current_user": engine.current_user,
    }
