"""Per-image favorites and comments.

Favorites are a per-voter toggle kept as ``{voter: true}``; comments are
an append-only list of ``{user, text, timestamp}`` entries. Both live
next to the ratings: on the image document of the remote service when
it is configured, in the local key-value table otherwise, and in the
local table whenever the remote service can't be reached.

Unlike votes there is no optimistic cache here; every read goes to the
store and every write is confirmed before observers are refreshed.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import asdict, dataclass, field
from functools import partial
from typing import Any
from urllib.parse import quote

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from vote_gallery.core.settings import Settings, settings
from vote_gallery.core.votes import normalize_id
from vote_gallery.services.rating_sync import RatingSync, Subscription
from vote_gallery.services.remote_store import (
    HTTP_BAD_REQUEST,
    HTTP_NOT_FOUND,
    RemoteVoteStore,
    image_path,
)
from vote_gallery.services.store import (
    StoreUnavailableError,
    Unwatch,
    VoteStoreError,
    load_json_record,
    save_json_record,
)

# Configure logger for this module
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Comment:
    """A single comment left on an image."""

    user: str
    text: str
    timestamp: int  # milliseconds since the epoch

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Any) -> Comment | None:
        """Build a comment from stored data, or None when it is unusable."""
        if not isinstance(raw, Mapping):
            return None
        user = normalize_id(raw.get("user"))
        text = normalize_id(raw.get("text"))
        if not user or not text:
            return None
        try:
            timestamp = int(raw.get("timestamp") or 0)
        except (TypeError, ValueError):
            return None
        return cls(user=user, text=text, timestamp=timestamp)


@dataclass(frozen=True)
class ImageFeedback:
    """Favorites and comments of one image."""

    favorites: list[str] = field(default_factory=list)
    comments: list[Comment] = field(default_factory=list)

    def favorited_by(self, voter: str) -> bool:
        return voter in self.favorites


FeedbackCallback = Callable[[ImageFeedback], None]


def clean_favorites(raw: Any) -> list[str]:
    """Return the sorted names whose favorite flag is set."""
    if isinstance(raw, Mapping):
        names = (normalize_id(name) for name, flag in raw.items() if flag)
    elif isinstance(raw, (list, tuple)):
        names = (normalize_id(name) for name in raw)
    else:
        return []
    return sorted({name for name in names if name})


def clean_comments(raw: Any) -> list[Comment]:
    """Return the valid comments, oldest first."""
    if not isinstance(raw, (list, tuple)):
        return []
    comments = [comment for comment in map(Comment.from_dict, raw) if comment is not None]
    return sorted(comments, key=lambda comment: comment.timestamp)


def parse_feedback(payload: Any) -> ImageFeedback:
    """Turn an image document body into ImageFeedback."""
    if not isinstance(payload, Mapping):
        return ImageFeedback()
    return ImageFeedback(
        favorites=clean_favorites(payload.get("favorites")),
        comments=clean_comments(payload.get("comments")),
    )


def _now_ms() -> int:
    return int(time.time() * 1000)


def _noop() -> None:
    return None


class FeedbackStore(ABC):
    """Persistence of favorite flags and comments per image."""

    kind: str = "abstract"

    @abstractmethod
    async def read(self, image_id: str) -> ImageFeedback:
        """Return the favorites and comments of an image (empty when unknown)."""

    @abstractmethod
    async def set_favorite(self, image_id: str, voter: str, favorited: bool) -> None:
        """Set or clear one voter's favorite flag."""

    @abstractmethod
    async def add_comment(self, image_id: str, comment: Comment) -> None:
        """Append a comment."""

    def watch(self, image_id: str, on_change: FeedbackCallback) -> Unwatch:
        """Register a live feed; backends without push return a no-op handle."""
        return _noop

    async def close(self) -> None:
        return None


class LocalFeedbackStore(FeedbackStore):
    """Favorites and comments kept as two JSON records in the key-value table."""

    kind = "local"

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        favorites_key: str | None = None,
        comments_key: str | None = None,
    ) -> None:
        if session_factory is None:
            from vote_gallery.db.session import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory
        self.favorites_key = favorites_key or settings.local_favorites_key
        self.comments_key = comments_key or settings.local_comments_key

    async def read(self, image_id: str) -> ImageFeedback:
        try:
            with self._session_factory() as db:
                favorites = load_json_record(db, self.favorites_key)
                comments = load_json_record(db, self.comments_key)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Local feedback store unreadable: {exc}") from exc
        return ImageFeedback(
            favorites=clean_favorites(favorites.get(image_id)),
            comments=clean_comments(comments.get(image_id)),
        )

    async def set_favorite(self, image_id: str, voter: str, favorited: bool) -> None:
        try:
            with self._session_factory() as db:
                data = load_json_record(db, self.favorites_key)
                entry = data.get(image_id)
                entry = dict(entry) if isinstance(entry, dict) else {}
                if favorited:
                    entry[voter] = True
                else:
                    entry.pop(voter, None)
                data[image_id] = entry
                save_json_record(db, self.favorites_key, data)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Local feedback store unwritable: {exc}") from exc

    async def add_comment(self, image_id: str, comment: Comment) -> None:
        try:
            with self._session_factory() as db:
                data = load_json_record(db, self.comments_key)
                entry = data.get(image_id)
                entry = list(entry) if isinstance(entry, list) else []
                entry.append(comment.to_dict())
                data[image_id] = entry
                save_json_record(db, self.comments_key, data)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Local feedback store unwritable: {exc}") from exc


class RemoteFeedbackStore(FeedbackStore):
    """Favorites and comments on the image documents of the remote service.

    Shares the HTTP client, authentication and circuit breaker of the
    remote vote store it wraps; that store owns and closes the client.
    """

    kind = "remote"

    def __init__(self, remote: RemoteVoteStore) -> None:
        self._remote = remote

    @staticmethod
    def _check(status_code: int, action: str, image_id: str) -> None:
        if status_code >= HTTP_BAD_REQUEST:
            raise VoteStoreError(
                f"Unexpected vote store response ({status_code}) {action} {image_id}",
            )

    async def read(self, image_id: str) -> ImageFeedback:
        response = await self._remote.request("GET", f"{image_path(image_id)}/feedback")
        if response.status_code == HTTP_NOT_FOUND:
            return ImageFeedback()
        self._check(response.status_code, "reading feedback of", image_id)
        try:
            payload = response.json()
        except ValueError as exc:
            raise VoteStoreError(f"Malformed feedback payload for {image_id}") from exc
        return parse_feedback(payload)

    async def set_favorite(self, image_id: str, voter: str, favorited: bool) -> None:
        path = f"{image_path(image_id)}/favorites/{quote(voter, safe='')}"
        if favorited:
            response = await self._remote.request("PUT", path, json_data={"value": True})
        else:
            response = await self._remote.request("DELETE", path)
            if response.status_code == HTTP_NOT_FOUND:
                return
        self._check(response.status_code, "updating favorites of", image_id)

    async def add_comment(self, image_id: str, comment: Comment) -> None:
        response = await self._remote.request(
            "POST",
            f"{image_path(image_id)}/comments",
            json_data=comment.to_dict(),
        )
        self._check(response.status_code, "commenting on", image_id)

    def watch(self, image_id: str, on_change: FeedbackCallback) -> Unwatch:
        return self._remote.watch_path(
            f"{image_path(image_id)}/feedback/watch", parse_feedback, on_change
        )


class FeedbackService:
    """Favorites toggle, comments and their live observers.

    Writes go to the primary store and, when it is unavailable, to the
    fallback store. Reads fall back the same way and treat an unreadable
    image as having no feedback.
    """

    def __init__(
        self,
        store: FeedbackStore,
        fallback: FeedbackStore | None = None,
        *,
        resolve_voter: Callable[[str | None], str] | None = None,
    ) -> None:
        self.store = store
        self.fallback = fallback
        self._resolve_voter = resolve_voter
        self._tokens = itertools.count(1)
        self._subscribers: dict[str, dict[int, FeedbackCallback]] = {}
        self._feeds: dict[str, Unwatch] = {}
        self._refreshes: set[asyncio.Task[None]] = set()
        self._closed = False

    def resolve_voter(self, voter: str | None = None) -> str:
        if self._resolve_voter is not None:
            return self._resolve_voter(voter)
        return normalize_id(voter) or settings.fallback_voter

    # --- Reads ----------------------------------------------------------------------
    async def get_feedback(self, image_id: str) -> ImageFeedback:
        image_id = normalize_id(image_id)
        if not image_id:
            return ImageFeedback()
        try:
            return await self.store.read(image_id)
        except VoteStoreError as exc:
            logger.warning("Reading feedback for %s failed: %s", image_id, exc)

        if self.fallback is None:
            return ImageFeedback()
        try:
            return await self.fallback.read(image_id)
        except VoteStoreError as exc:
            logger.warning("Fallback feedback read for %s failed: %s", image_id, exc)
            return ImageFeedback()

    async def get_favorites(self, image_id: str) -> list[str]:
        return (await self.get_feedback(image_id)).favorites

    async def get_comments(self, image_id: str) -> list[Comment]:
        return (await self.get_feedback(image_id)).comments

    # --- Writes ---------------------------------------------------------------------
    async def toggle_favorite(self, image_id: str, voter: str | None = None) -> ImageFeedback:
        """Flip the voter's favorite flag and return the resulting feedback."""
        image_id = normalize_id(image_id)
        if not image_id:
            return ImageFeedback()
        name = self.resolve_voter(voter)
        current = await self.get_feedback(image_id)
        favorited = not current.favorited_by(name)

        stored = await self._write(
            image_id, lambda store: store.set_favorite(image_id, name, favorited)
        )
        if not stored:
            return current

        names = set(current.favorites)
        if favorited:
            names.add(name)
        else:
            names.discard(name)
        updated = ImageFeedback(favorites=sorted(names), comments=current.comments)
        self._publish(image_id, updated)
        return updated

    async def add_comment(
        self,
        image_id: str,
        text: str,
        voter: str | None = None,
    ) -> Comment | None:
        """Store a comment; blank text or a failed write returns None."""
        image_id = normalize_id(image_id)
        body = normalize_id(text)
        if not image_id or not body:
            return None
        comment = Comment(user=self.resolve_voter(voter), text=body, timestamp=_now_ms())

        stored = await self._write(image_id, lambda store: store.add_comment(image_id, comment))
        if not stored:
            return None
        if self._subscribers.get(image_id):
            self._publish(image_id, await self.get_feedback(image_id))
        return comment

    async def _write(
        self,
        image_id: str,
        operation: Callable[[FeedbackStore], Awaitable[None]],
    ) -> bool:
        try:
            await operation(self.store)
            return True
        except VoteStoreError as exc:
            logger.warning("Writing feedback for %s failed: %s", image_id, exc)

        if self.fallback is None:
            return False
        try:
            await operation(self.fallback)
            return True
        except VoteStoreError as exc:
            logger.error("Feedback for %s was not stored; fallback failed: %s", image_id, exc)
            return False

    # --- Observers ------------------------------------------------------------------
    def subscribe(self, image_id: str, callback: FeedbackCallback) -> Subscription:
        """Receive the image's feedback once loaded and after every change.

        Must be called from the running event loop.
        """
        image_id = normalize_id(image_id)
        if not image_id or not callable(callback) or self._closed:
            return Subscription()

        token = next(self._tokens)
        subscribers = self._subscribers.setdefault(image_id, {})
        first = not subscribers
        subscribers[token] = callback
        if first:
            self._feeds[image_id] = self.store.watch(image_id, partial(self._publish, image_id))

        task = asyncio.get_running_loop().create_task(self._deliver_current(image_id, token))
        self._refreshes.add(task)
        task.add_done_callback(self._refreshes.discard)
        return Subscription(partial(self._unsubscribe, image_id, token))

    async def _deliver_current(self, image_id: str, token: int) -> None:
        feedback = await self.get_feedback(image_id)
        callback = self._subscribers.get(image_id, {}).get(token)
        if callback is None:
            return
        try:
            callback(feedback)
        except Exception:
            logger.warning("Feedback subscriber for %s failed", image_id, exc_info=True)

    def _unsubscribe(self, image_id: str, token: int) -> None:
        subscribers = self._subscribers.get(image_id)
        if subscribers is None:
            return
        subscribers.pop(token, None)
        if subscribers:
            return
        del self._subscribers[image_id]
        unwatch = self._feeds.pop(image_id, None)
        if unwatch is not None:
            unwatch()

    def _publish(self, image_id: str, feedback: ImageFeedback) -> None:
        for callback in list(self._subscribers.get(image_id, {}).values()):
            try:
                callback(feedback)
            except Exception:
                logger.warning("Feedback subscriber for %s failed", image_id, exc_info=True)

    def subscriber_count(self, image_id: str) -> int:
        return len(self._subscribers.get(normalize_id(image_id), {}))

    # --- Lifecycle ------------------------------------------------------------------
    async def aclose(self) -> None:
        """Release every subscription, live feed and store resource."""
        if self._closed:
            return
        self._closed = True

        tasks = list(self._refreshes)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        for unwatch in list(self._feeds.values()):
            unwatch()
        self._feeds.clear()
        self._subscribers.clear()

        await self.store.close()
        if self.fallback is not None and self.fallback is not self.store:
            await self.fallback.close()


def build_feedback_service(
    rating_sync: RatingSync,
    config: Settings | None = None,
    *,
    session_factory: sessionmaker[Session] | None = None,
) -> FeedbackService:
    """Pair a feedback service with the engine's backend and identity chain."""
    config = config or settings
    local = LocalFeedbackStore(
        session_factory,
        favorites_key=config.local_favorites_key,
        comments_key=config.local_comments_key,
    )
    if isinstance(rating_sync.store, RemoteVoteStore):
        return FeedbackService(
            RemoteFeedbackStore(rating_sync.store),
            local,
            resolve_voter=rating_sync.resolve_voter,
        )
    return FeedbackService(local, resolve_voter=rating_sync.resolve_voter)
