"""Rating cache and synchronization engine.

This module provides the RatingSync class, the single owner of the
in-memory ``imageId -> VoteMap`` state. It handles:

- Cached reads with de-duplicated hydration from the vote store
- Optimistic, toggle-aware writes that notify observers before persistence
- Fallback to the local store when the primary store is unavailable
- Per-image subscriptions bridged to the store's push feed
- A process-wide change event for derived caches

All mutation happens on the event loop thread; the only suspension
points are store reads, store writes and push-feed deliveries.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
from typing import Any

from vote_gallery.core.settings import Settings, settings
from vote_gallery.core.votes import Vote, VoteMap, normalize_id
from vote_gallery.services.store import (
    LocalVoteStore,
    Unwatch,
    VoteStore,
    VoteStoreError,
    build_vote_store,
)

# Configure logger for this module
logger = logging.getLogger(__name__)

SOURCE_LOCAL = "local"
SOURCE_REMOTE = "remote"

VotesCallback = Callable[[VoteMap], None]
IdentityResolver = Callable[[], Any]


@dataclass(frozen=True)
class RatingChanged:
    """Broadcast whenever the cached VoteMap of an image changes."""

    image_id: str
    votes: VoteMap
    version: int
    source: str


@dataclass
class _LocalCell:
    """Last value this process wrote for one voter on one image."""

    version: int
    vote: Vote | None
    pending: bool = True


class Subscription:
    """Handle releasing a registration exactly once.

    Calling it, closing it, or leaving its ``with`` block all release the
    registration; repeated releases are no-ops.
    """

    def __init__(self, release: Callable[[], None] | None = None) -> None:
        self._release = release

    @property
    def closed(self) -> bool:
        return self._release is None

    def close(self) -> None:
        release, self._release = self._release, None
        if release is not None:
            release()

    __call__ = close

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class RatingSync:
    """In-memory mirror of vote maps kept in sync with a vote store.

    Create one instance per session and dispose of it with :meth:`aclose`
    (or ``async with``), which releases every subscription and live feed.
    """

    def __init__(
        self,
        store: VoteStore,
        fallback: VoteStore | None = None,
        *,
        identity: IdentityResolver | None = None,
        fallback_voter: str | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Primary vote store, selected once by the caller.
            fallback: Store receiving writes the primary store rejected.
            identity: Optional resolver returning the current voter.
            fallback_voter: Identity used when nothing else resolves.
        """
        self.store = store
        self.fallback = fallback
        self._identity = identity
        self._bound_user: str | None = None
        self._fallback_voter = normalize_id(fallback_voter) or settings.fallback_voter

        self._cache: dict[str, VoteMap] = {}
        self._versions: dict[str, int] = {}
        self._local_cells: dict[str, dict[str, _LocalCell]] = {}
        self._inflight: dict[str, asyncio.Task[VoteMap]] = {}

        self._tokens = itertools.count(1)
        self._subscribers: dict[str, dict[int, VotesCallback]] = {}
        self._feeds: dict[str, Unwatch] = {}
        self._listeners: dict[int, Callable[[RatingChanged], None]] = {}
        self._registered_voters: set[str] = set()
        self._closed = False

    async def __aenter__(self) -> RatingSync:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # --- Identity -------------------------------------------------------------------
    def bind_user(self, voter: str | None) -> None:
        """Bind (or clear, with None) the process-wide current voter."""
        self._bound_user = normalize_id(voter) or None

    @property
    def current_user(self) -> str:
        return self.resolve_voter()

    def resolve_voter(self, voter: str | None = None) -> str:
        """Return the explicit voter, the bound user, the resolver's answer or the fallback."""
        name = normalize_id(voter) or self._bound_user
        if name:
            return name
        if self._identity is not None:
            try:
                name = normalize_id(self._identity())
            except Exception:
                logger.warning("Voter identity resolver failed", exc_info=True)
                name = ""
            if name:
                return name
        return self._fallback_voter

    # --- Reads ----------------------------------------------------------------------
    async def get_votes(self, image_id: str) -> VoteMap:
        """Return the VoteMap for an image, hydrating the cache on first use."""
        image_id = normalize_id(image_id)
        if not image_id:
            return {}
        task = self._inflight.get(image_id)
        if task is None:
            cached = self._cache.get(image_id)
            if cached is not None:
                return dict(cached)
            task = self._start_fetch(image_id)
        return dict(await asyncio.shield(task))

    def peek(self, image_id: str) -> VoteMap | None:
        """Return a copy of the cached map without touching the store."""
        cached = self._cache.get(normalize_id(image_id))
        return None if cached is None else dict(cached)

    def snapshot(self) -> dict[str, VoteMap]:
        """Return a copy of every cached VoteMap."""
        return {image_id: dict(votes) for image_id, votes in self._cache.items()}

    def _start_fetch(self, image_id: str) -> asyncio.Task[VoteMap]:
        task = self._inflight.get(image_id)
        if task is None:
            since = self._versions.get(image_id, 0)
            task = asyncio.get_running_loop().create_task(self._fetch(image_id, since))
            self._inflight[image_id] = task
            task.add_done_callback(partial(self._fetch_done, image_id))
        return task

    def _fetch_done(self, image_id: str, task: asyncio.Task[VoteMap]) -> None:
        if self._inflight.get(image_id) is task:
            del self._inflight[image_id]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Hydrating votes for %s failed", image_id, exc_info=exc)

    async def _fetch(self, image_id: str, since: int) -> VoteMap:
        snapshot = await self._read(image_id)
        self._apply_snapshot(image_id, snapshot, since=since)
        return dict(self._cache[image_id])

    async def _read(self, image_id: str) -> VoteMap:
        try:
            return await self.store.read_all(image_id)
        except VoteStoreError as exc:
            logger.warning("Reading votes for %s failed: %s", image_id, exc)

        if self.fallback is None:
            return {}
        try:
            return await self.fallback.read_all(image_id)
        except VoteStoreError as exc:
            logger.warning("Fallback read for %s failed; treating as unrated: %s", image_id, exc)
            return {}

    # --- Writes ---------------------------------------------------------------------
    async def set_vote(
        self,
        image_id: str,
        vote: Vote | str | None,
        voter: str | None = None,
    ) -> VoteMap:
        """Cast, change or retract a vote and return the resulting VoteMap.

        Casting the vote the voter already holds retracts it. The cache is
        updated and observers are notified before the first suspension
        point, so store latency never delays them. An image that is not
        cached yet starts from an empty map while its hydration runs in the
        background; the pending cell is overlaid onto the hydrated map.
        Malformed votes are ignored and the current map is returned.
        """
        image_id = normalize_id(image_id)
        parsed = Vote.parse(vote)
        if not image_id or parsed is None:
            logger.debug("Ignoring malformed vote %r for image %r", vote, image_id)
            return await self.get_votes(image_id)

        name = self.resolve_voter(voter)
        if image_id not in self._cache:
            self._start_fetch(image_id)

        current = self._cache.get(image_id, {})
        updated = dict(current)
        if current.get(name) == parsed:
            updated.pop(name, None)
            target: Vote | None = None
        else:
            updated[name] = parsed
            target = parsed

        version = self._bump(image_id)
        self._local_cells.setdefault(image_id, {})[name] = _LocalCell(version, target)
        self._publish(image_id, updated, version, SOURCE_LOCAL)

        await self._persist(image_id, name, target, version)
        return dict(updated)

    async def _persist(self, image_id: str, voter: str, vote: Vote | None, version: int) -> None:
        await self._register_voter(voter)
        try:
            await self._write(self.store, image_id, voter, vote)
        except VoteStoreError as exc:
            logger.warning(
                "Persisting vote for %s failed, falling back to local store: %s", image_id, exc
            )
            await self._write_fallback(image_id, voter, vote)
            return

        cell = self._local_cells.get(image_id, {}).get(voter)
        if cell is not None and cell.version == version:
            cell.pending = False

    async def _write_fallback(self, image_id: str, voter: str, vote: Vote | None) -> None:
        if self.fallback is None:
            logger.error("Vote for %s by %s kept in memory only; no fallback store", image_id, voter)
            return
        try:
            await self._write(self.fallback, image_id, voter, vote)
        except VoteStoreError as exc:
            logger.error(
                "Vote for %s by %s kept in memory only; fallback failed: %s", image_id, voter, exc
            )

    @staticmethod
    async def _write(store: VoteStore, image_id: str, voter: str, vote: Vote | None) -> None:
        if vote is None:
            await store.delete_one(image_id, voter)
        else:
            await store.write_one(image_id, voter, vote)

    async def _register_voter(self, voter: str) -> None:
        if voter in self._registered_voters:
            return
        self._registered_voters.add(voter)
        try:
            await self.store.register_voter(voter)
        except VoteStoreError as exc:
            logger.warning("Could not register voter %s: %s", voter, exc)

    # --- Cache state ----------------------------------------------------------------
    def _bump(self, image_id: str) -> int:
        version = self._versions.get(image_id, 0) + 1
        self._versions[image_id] = version
        return version

    def version(self, image_id: str) -> int:
        """Return the current cache version of an image (0 when never touched)."""
        return self._versions.get(normalize_id(image_id), 0)

    def _apply_snapshot(self, image_id: str, snapshot: VoteMap, *, since: int) -> None:
        """Apply a store snapshot without losing newer local writes.

        Cells written after ``since`` or still unacknowledged by the
        primary store win over the snapshot.
        """
        merged = dict(snapshot)
        for voter, cell in self._local_cells.get(image_id, {}).items():
            if cell.pending or cell.version > since:
                if cell.vote is None:
                    merged.pop(voter, None)
                else:
                    merged[voter] = cell.vote
        self._publish(image_id, merged, self._bump(image_id), SOURCE_REMOTE)

    def _on_remote_snapshot(self, image_id: str, snapshot: VoteMap) -> None:
        if self._closed or image_id not in self._feeds:
            return
        self._apply_snapshot(image_id, snapshot, since=self._versions.get(image_id, 0))

    def _publish(self, image_id: str, votes: VoteMap, version: int, source: str) -> None:
        self._cache[image_id] = votes
        for callback in list(self._subscribers.get(image_id, {}).values()):
            try:
                callback(dict(votes))
            except Exception:
                logger.warning("Rating subscriber for %s failed", image_id, exc_info=True)

        event = RatingChanged(image_id=image_id, votes=dict(votes), version=version, source=source)
        for listener in list(self._listeners.values()):
            try:
                listener(event)
            except Exception:
                logger.warning("Rating change listener failed for %s", image_id, exc_info=True)

    # --- Observers ------------------------------------------------------------------
    def subscribe(self, image_id: str, callback: VotesCallback) -> Subscription:
        """Receive the current VoteMap now and every change after.

        Must be called from the running event loop. The first subscriber
        of an image opens the store's live feed; the last one closes it.
        """
        image_id = normalize_id(image_id)
        if not image_id or not callable(callback) or self._closed:
            return Subscription()

        token = next(self._tokens)
        subscribers = self._subscribers.setdefault(image_id, {})
        first = not subscribers
        subscribers[token] = callback

        try:
            callback(dict(self._cache.get(image_id, {})))
        except Exception:
            logger.warning("Rating subscriber for %s failed", image_id, exc_info=True)

        if first:
            self._feeds[image_id] = self.store.watch(
                image_id, partial(self._on_remote_snapshot, image_id)
            )
        if image_id not in self._cache:
            self._start_fetch(image_id)

        return Subscription(partial(self._unsubscribe, image_id, token))

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

    def on_change(self, listener: Callable[[RatingChanged], None]) -> Subscription:
        """Register a process-wide listener for RatingChanged events."""
        token = next(self._tokens)
        self._listeners[token] = listener
        return Subscription(partial(self._listeners.pop, token, None))

    def subscriber_count(self, image_id: str) -> int:
        return len(self._subscribers.get(normalize_id(image_id), {}))

    def watched_images(self) -> list[str]:
        return sorted(self._feeds)

    def status(self) -> dict[str, Any]:
        """Summarize engine state for health reporting."""
        return {
            "backend": self.store.kind,
            "fallback": self.fallback.kind if self.fallback is not None else None,
            "cached_images": len(self._cache),
            "watched_images": len(self._feeds),
            "subscribers": sum(len(subs) for subs in self._subscribers.values()),
            "pending_writes": sum(
                1
                for cells in self._local_cells.values()
                for cell in cells.values()
                if cell.pending
            ),
        }

    # --- Lifecycle ------------------------------------------------------------------
    async def aclose(self) -> None:
        """Release every subscription, live feed and store resource."""
        if self._closed:
            return
        self._closed = True

        tasks = list(self._inflight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        for unwatch in list(self._feeds.values()):
            unwatch()
        self._feeds.clear()
        self._subscribers.clear()
        self._listeners.clear()

        await self.store.close()
        if self.fallback is not None and self.fallback is not self.store:
            await self.fallback.close()


def build_rating_sync(
    config: Settings | None = None,
    *,
    identity: IdentityResolver | None = None,
) -> RatingSync:
    """Construct an engine with the configured store and its local fallback."""
    config = config or settings
    store = build_vote_store(config)
    fallback: VoteStore | None = None
    if store.kind != LocalVoteStore.kind:
        fallback = LocalVoteStore(storage_key=config.local_storage_key)
    return RatingSync(
        store,
        fallback,
        identity=identity,
        fallback_voter=config.fallback_voter,
    )
