"""Vote store contract and the local single-writer backend.

A vote store persists individual ``(image, voter)`` cells. Two backends
satisfy the contract: the remote document service in
:mod:`vote_gallery.services.remote_store` and :class:`LocalVoteStore`,
which keeps the whole ``imageId -> VoteMap`` structure as one serialized
record in a SQL key-value table.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from vote_gallery.core.settings import Settings, settings
from vote_gallery.core.votes import Vote, VoteMap, clean_vote_map, dump_vote_map
from vote_gallery.models import KeyValueRecord

# Configure logger for this module
logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[VoteMap], None]
Unwatch = Callable[[], None]


class VoteStoreError(RuntimeError):
    """Base exception raised for vote store failures."""


class StoreUnavailableError(VoteStoreError):
    """Raised when a backend cannot be reached or answers with a server error."""


def _noop() -> None:
    return None


def load_json_record(db: Session, key: str) -> dict[str, Any]:
    """Return the JSON object stored under ``key`` (empty when missing or corrupt)."""
    record = db.get(KeyValueRecord, key)
    if record is None or not record.value:
        return {}
    try:
        data = json.loads(record.value)
    except json.JSONDecodeError:
        logger.warning("Local record %r is corrupt; starting empty", key)
        return {}
    return data if isinstance(data, dict) else {}


def save_json_record(db: Session, key: str, data: dict[str, Any]) -> None:
    """Rewrite the record stored under ``key`` and commit."""
    payload = json.dumps(data, sort_keys=True)
    record = db.get(KeyValueRecord, key)
    if record is None:
        db.add(KeyValueRecord(key=key, value=payload))
    else:
        record.value = payload
    db.commit()


class VoteStore(ABC):
    """Durable persistence of vote cells addressed by ``(image_id, voter)``.

    Writes are cell-scoped: each call touches exactly one voter's entry,
    so concurrent writers on different cells never race each other.
    """

    kind: str = "abstract"
    supports_watch: bool = False

    @abstractmethod
    async def read_all(self, image_id: str) -> VoteMap:
        """Return the VoteMap for an image (empty when nothing was recorded)."""

    @abstractmethod
    async def write_one(self, image_id: str, voter: str, vote: Vote) -> None:
        """Upsert a single cell."""

    @abstractmethod
    async def delete_one(self, image_id: str, voter: str) -> None:
        """Remove a single cell; a missing cell is not an error."""

    def watch(self, image_id: str, on_change: SnapshotCallback) -> Unwatch:
        """Register a live feed of snapshots for an image.

        Backends without push notification return a no-op handle.
        """
        return _noop

    async def register_voter(self, voter: str) -> None:
        """Record that an identity has voted. Optional for backends."""
        return None

    async def close(self) -> None:
        """Release backend resources."""
        return None


class LocalVoteStore(VoteStore):
    """Single-writer key-value backend scoped to this device.

    Every operation reads and rewrites one JSON record stored under a
    fixed key. There is no partial-write protocol; the backend has a
    single writer running on the event loop thread.
    """

    kind = "local"

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        storage_key: str | None = None,
    ) -> None:
        if session_factory is None:
            from vote_gallery.db.session import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory
        self.storage_key = storage_key or settings.local_storage_key

    def _load(self, db: Session) -> dict[str, Any]:
        return load_json_record(db, self.storage_key)

    def _save(self, db: Session, data: dict[str, Any]) -> None:
        save_json_record(db, self.storage_key, data)

    def snapshot(self) -> dict[str, VoteMap]:
        """Return the whole persisted structure."""
        try:
            with self._session_factory() as db:
                data = self._load(db)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Local vote store unreadable: {exc}") from exc
        return {
            str(image_id): clean_vote_map(votes)
            for image_id, votes in data.items()
            if isinstance(votes, dict)
        }

    async def read_all(self, image_id: str) -> VoteMap:
        try:
            with self._session_factory() as db:
                data = self._load(db)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Local vote store unreadable: {exc}") from exc
        entry = data.get(image_id)
        return clean_vote_map(entry if isinstance(entry, dict) else None)

    async def write_one(self, image_id: str, voter: str, vote: Vote) -> None:
        try:
            with self._session_factory() as db:
                data = self._load(db)
                entry = data.get(image_id)
                votes = clean_vote_map(entry if isinstance(entry, dict) else None)
                votes[voter] = Vote.coerce(vote)
                data[image_id] = dump_vote_map(votes)
                self._save(db, data)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Local vote store unwritable: {exc}") from exc

    async def delete_one(self, image_id: str, voter: str) -> None:
        try:
            with self._session_factory() as db:
                data = self._load(db)
                entry = data.get(image_id)
                if not isinstance(entry, dict) or voter not in entry:
                    return
                entry.pop(voter, None)
                data[image_id] = entry
                self._save(db, data)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Local vote store unwritable: {exc}") from exc


def build_vote_store(config: Settings | None = None) -> VoteStore:
    """Select the configured backend once, at construction time."""
    config = config or settings
    if config.remote_enabled:
        from vote_gallery.services.remote_store import RemoteVoteStore, load_remote_config

        return RemoteVoteStore(load_remote_config(config))
    if config.storage_backend == "remote":
        logger.warning("Remote vote store selected without a base URL; using local store")
    return LocalVoteStore(storage_key=config.local_storage_key)
