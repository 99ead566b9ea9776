# tests/v1/test_feedback.py
"""Tests for favorite and comment endpoints."""

from fastapi import status
from fastapi.testclient import TestClient

from vote_gallery.services.store import StoreUnavailableError


def test_favorites_start_empty(client: TestClient) -> None:
    """An image nobody favorited lists no voters."""
    r = client.get("/api/v1/images/img-1/favorites")
    assert r.status_code == status.HTTP_200_OK
    assert r.json() == {"image_id": "img-1", "favorites": []}


def test_toggle_favorite_on_and_off(client: TestClient) -> None:
    """Posting twice for the same voter removes the favorite again."""
    r = client.post("/api/v1/images/img-1/favorites", json={"voter": "Ann"})
    assert r.status_code == status.HTTP_200_OK
    assert r.json() == {"image_id": "img-1", "favorites": ["Ann"], "favorited": True}

    client.post("/api/v1/images/img-1/favorites", json={}, headers={"X-Voter": "Bree"})
    r = client.post("/api/v1/images/img-1/favorites", json={"voter": "Ann"})
    assert r.json() == {"image_id": "img-1", "favorites": ["Bree"], "favorited": False}

    r = client.get("/api/v1/images/img-1/favorites")
    assert r.json()["favorites"] == ["Bree"]


def test_anonymous_favorite_uses_fallback_voter(client: TestClient) -> None:
    """Unnamed callers favorite as the fallback voter."""
    r = client.post("/api/v1/images/img-1/favorites", json={})
    assert r.json()["favorites"] == ["Guest"]


def test_favorites_do_not_touch_votes(client: TestClient) -> None:
    """Favorites are kept apart from the vote map."""
    client.post("/api/v1/images/img-1/favorites", json={"voter": "Ann"})
    r = client.get("/api/v1/images/img-1/votes")
    assert r.json()["votes"] == {}


def test_add_and_list_comments(client: TestClient) -> None:
    """Comments come back oldest first with their authors."""
    r = client.post(
        "/api/v1/images/img-1/comments",
        json={"text": "  Love the porch  ", "voter": "Ann"},
    )
    assert r.status_code == status.HTTP_201_CREATED
    first = r.json()
    assert first["user"] == "Ann"
    assert first["text"] == "Love the porch"
    assert first["timestamp"] > 0

    client.post(
        "/api/v1/images/img-1/comments",
        json={"text": "Too dark"},
        headers={"X-Voter": "Bree"},
    )

    r = client.get("/api/v1/images/img-1/comments")
    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert data["image_id"] == "img-1"
    assert [(c["user"], c["text"]) for c in data["comments"]] == [
        ("Ann", "Love the porch"),
        ("Bree", "Too dark"),
    ]
    assert client.get("/api/v1/images/img-2/comments").json()["comments"] == []


def test_blank_comment_is_rejected(client: TestClient) -> None:
    """Whitespace-only text is not stored."""
    r = client.post("/api/v1/images/img-1/comments", json={"text": "   ", "voter": "Ann"})
    assert r.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert client.get("/api/v1/images/img-1/comments").json()["comments"] == []


def test_comment_store_failure_reports_unavailable(client: TestClient, mocker) -> None:
    """A comment no store accepted is reported as a 503."""
    mocker.patch(
        "vote_gallery.services.feedback.LocalFeedbackStore.add_comment",
        side_effect=StoreUnavailableError("disk gone"),
    )
    r = client.post("/api/v1/images/img-1/comments", json={"text": "hello", "voter": "Ann"})
    assert r.status_code == status.HTTP_503_SERVICE_UNAVAILABLE


def test_feedback_unavailable_before_startup(client: TestClient) -> None:
    """Requests fail with 503 while the feedback service is missing."""
    feedback = client.app.state.feedback
    client.app.state.feedback = None
    try:
        r = client.get("/api/v1/images/img-1/favorites")
        assert r.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    finally:
        client.app.state.feedback = feedback
