# tests/v1/test_votes.py
"""Tests for vote-related endpoints."""

import asyncio
import json
import logging

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from vote_gallery.api.v1.endpoints.votes import _stop_sender
from vote_gallery.models import KeyValueRecord


def test_get_votes_for_unrated_image(client: TestClient) -> None:
    """An image nobody voted on returns an empty map."""
    r = client.get("/api/v1/images/img-1/votes")
    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert data == {
        "image_id": "img-1",
        "votes": {},
        "category": "unrated",
        "score": 0,
        "tier": "unrated",
    }


def test_cast_vote_then_toggle_off(client: TestClient) -> None:
    """Casting the same vote twice retracts it."""
    r = client.post("/api/v1/images/img-1/votes", json={"vote": "like", "voter": "Ann"})
    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert data["votes"] == {"Ann": "like"}
    assert data["score"] == 2
    assert data["applied"] is True

    r = client.post("/api/v1/images/img-1/votes", json={"vote": "like", "voter": "Ann"})
    assert r.json()["votes"] == {}

    r = client.get("/api/v1/images/img-1/votes")
    assert r.json()["votes"] == {}


def test_changing_vote_overwrites(client: TestClient) -> None:
    """A different vote replaces the voter's cell."""
    client.post("/api/v1/images/img-1/votes", json={"vote": "like", "voter": "Ann"})
    r = client.post("/api/v1/images/img-1/votes", json={"vote": "dislike", "voter": "Ann"})
    assert r.json()["votes"] == {"Ann": "dislike"}


def test_consensus_is_reported(client: TestClient) -> None:
    """Two likes make a consensus favorite once an unsure vote joins."""
    client.post("/api/v1/images/img-1/votes", json={"vote": "like", "voter": "Ann"})
    client.post("/api/v1/images/img-1/votes", json={"vote": "like", "voter": "Bree"})
    r = client.post("/api/v1/images/img-1/votes", json={"vote": "unsure", "voter": "Cal"})
    data = r.json()
    assert data["category"] == "consensus"
    assert data["score"] == 5
    assert data["tier"] == "favorites"


def test_unknown_vote_value_is_ignored(client: TestClient) -> None:
    """Unknown vote values leave the map untouched."""
    client.post("/api/v1/images/img-1/votes", json={"vote": "like", "voter": "Ann"})
    r = client.post("/api/v1/images/img-1/votes", json={"vote": "love", "voter": "Ann"})
    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert data["applied"] is False
    assert data["votes"] == {"Ann": "like"}


def test_unknown_vote_reports_stored_map(client: TestClient, local_store, session_factory) -> None:
    """An ignored vote on an image not read yet still reports its stored votes."""
    with session_factory() as db:
        db.add(
            KeyValueRecord(
                key=local_store.storage_key,
                value=json.dumps({"img-9": {"Bree": "like"}}),
            )
        )
        db.commit()

    r = client.post("/api/v1/images/img-9/votes", json={"vote": "meh", "voter": "Ann"})
    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert data["applied"] is False
    assert data["votes"] == {"Bree": "like"}
    assert data["score"] == 2


def test_missing_vote_field_is_rejected(client: TestClient) -> None:
    """The request body must carry a vote."""
    r = client.post("/api/v1/images/img-1/votes", json={"voter": "Ann"})
    assert r.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_voter_from_header(client: TestClient) -> None:
    """The X-Voter header names the voter when the body does not."""
    r = client.post(
        "/api/v1/images/img-1/votes",
        json={"vote": "unsure"},
        headers={"X-Voter": "Dee"},
    )
    assert r.json()["votes"] == {"Dee": "unsure"}


def test_fallback_voter_when_unnamed(client: TestClient) -> None:
    """Anonymous votes are recorded under the fallback voter."""
    r = client.post("/api/v1/images/img-1/votes", json={"vote": "dislike"})
    assert r.json()["votes"] == {"Guest": "dislike"}


def test_stream_pushes_current_map_and_changes(client: TestClient) -> None:
    """The vote stream sends the map on connect and after each vote."""
    with client.websocket_connect("/api/v1/images/img-1/votes/stream") as ws:
        first = ws.receive_json()
        assert first == {"image_id": "img-1", "votes": {}}

        client.post("/api/v1/images/img-1/votes", json={"vote": "like", "voter": "Ann"})

        frame = first
        for _ in range(3):
            frame = ws.receive_json()
            if frame["votes"]:
                break
        assert frame == {"image_id": "img-1", "votes": {"Ann": "like"}}


@pytest.mark.asyncio
async def test_stopping_stream_collects_sender_failure(caplog) -> None:
    """A pump that already failed is reaped and logged, not left unretrieved."""

    async def broken_pump() -> None:
        raise RuntimeError("socket gone")

    sender = asyncio.create_task(broken_pump())
    await asyncio.sleep(0)

    with caplog.at_level(logging.WARNING, logger="vote_gallery.api.v1.endpoints.votes"):
        await _stop_sender(sender, "img-1")

    assert sender.done()
    assert "socket gone" in caplog.text


@pytest.mark.asyncio
async def test_stopping_stream_cancels_running_sender() -> None:
    sender = asyncio.create_task(asyncio.Event().wait())
    await asyncio.sleep(0)

    await _stop_sender(sender, "img-1")

    assert sender.cancelled()
