# src/vote_gallery/api/v1/endpoints/votes.py
"""Vote-related endpoints for the Vote Gallery API."""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated

from fastapi import APIRouter, Header, WebSocket, WebSocketDisconnect, status

from vote_gallery.api.v1.dependencies import RatingSyncDep
from vote_gallery.core.votes import Vote, VoteMap, dump_vote_map, normalize_id
from vote_gallery.schemas.vote import VoteCast, VoteMapOut
from vote_gallery.services.aggregation import classify, score, tier_for

router = APIRouter(prefix="/images", tags=["votes"])

logger = logging.getLogger(__name__)

# Close code asking the client to retry later
WS_TRY_AGAIN_LATER = 1013


def _vote_map_out(image_id: str, votes: VoteMap, applied: bool | None = None) -> VoteMapOut:
    return VoteMapOut(
        image_id=image_id,
        votes=dump_vote_map(votes),
        category=classify(votes).value,
        score=score(votes),
        tier=tier_for(votes).value,
        applied=applied,
    )


@router.get("/{image_id}/votes", response_model=VoteMapOut, response_model_exclude_none=True)
async def get_votes(image_id: str, engine: RatingSyncDep) -> VoteMapOut:
    """Return every vote recorded for an image."""
    image_id = normalize_id(image_id)
    votes = await engine.get_votes(image_id)
    return _vote_map_out(image_id, votes)


@router.post("/{image_id}/votes", response_model=VoteMapOut, status_code=status.HTTP_200_OK)
async def cast_vote(
    image_id: str,
    vote_data: VoteCast,
    engine: RatingSyncDep,
    x_voter: Annotated[str | None, Header()] = None,
) -> VoteMapOut:
    """Cast a vote; casting the vote you already hold retracts it.

    Unknown vote values leave the map untouched and report ``applied: false``.
    """
    image_id = normalize_id(image_id)
    applied = Vote.parse(vote_data.vote) is not None
    votes = await engine.set_vote(image_id, vote_data.vote, voter=vote_data.voter or x_voter)
    return _vote_map_out(image_id, votes, applied=applied)


async def _stop_sender(sender: asyncio.Task[None], image_id: str) -> None:
    """Cancel the frame pump and collect its outcome."""
    sender.cancel()
    (outcome,) = await asyncio.gather(sender, return_exceptions=True)
    if isinstance(outcome, Exception):
        logger.warning("Vote stream for %s stopped sending: %s", image_id, outcome)


@router.websocket("/{image_id}/votes/stream")
async def stream_votes(websocket: WebSocket, image_id: str) -> None:
    """Push the image's VoteMap now and after every change."""
    engine = getattr(websocket.app.state, "rating_sync", None)
    if engine is None:
        await websocket.close(code=WS_TRY_AGAIN_LATER)
        return

    image_id = normalize_id(image_id)
    await websocket.accept()
    queue: asyncio.Queue[VoteMap] = asyncio.Queue()

    async def _pump() -> None:
        while True:
            votes = await queue.get()
            await websocket.send_json({"image_id": image_id, "votes": dump_vote_map(votes)})

    with engine.subscribe(image_id, queue.put_nowait):
        sender = asyncio.create_task(_pump())
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.debug("Vote stream for %s closed by client", image_id)
        finally:
            await _stop_sender(sender, image_id)
