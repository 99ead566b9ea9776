"""Remote multi-writer vote store backed by an HTTP document service.

The service keeps one collection of rating documents per image, laid
out as ``images/{imageId}/ratings/{voter}``. This module provides:

- HTTP client with service authentication
- Circuit breaker so an unreachable service fails fast
- A streaming watch feed that pushes map snapshots for an image
- A voter registry (``users/{voter}``) updated on first vote
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from urllib.parse import quote

import httpx
from jose import jwt

from vote_gallery.core.settings import Settings, settings
from vote_gallery.core.votes import Vote, VoteMap, clean_vote_map
from vote_gallery.services.store import (
    SnapshotCallback,
    StoreUnavailableError,
    Unwatch,
    VoteStore,
    VoteStoreError,
)

# Configure logger for this module
logger = logging.getLogger(__name__)

# HTTP status codes
HTTP_NOT_FOUND = 404
HTTP_INTERNAL_SERVER_ERROR = 500
HTTP_BAD_REQUEST = 400

MAX_WATCH_BACKOFF_SECONDS = 30.0


class CircuitState(Enum):
    """Circuit breaker states for fault tolerance."""

    CLOSED = "closed"      # Normal operation - requests allowed
    OPEN = "open"          # Circuit is open - requests blocked
    HALF_OPEN = "half_open"  # Testing if service is back - limited requests allowed


@dataclass
class CircuitBreaker:
    """Circuit breaker for document service operations."""

    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    success_threshold: int = 3

    _state: CircuitState = CircuitState.CLOSED
    _failure_count: int = 0
    _success_count: int = 0
    _last_failure_time: float = 0.0

    def is_open(self) -> bool:
        """Check if circuit is open."""
        if self._state == CircuitState.OPEN:
            if time.time() - self._last_failure_time > self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
            return self._state == CircuitState.OPEN
        return False

    def record_success(self) -> None:
        """Record a successful operation."""
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.success_threshold:
                self._state = CircuitState.CLOSED
                self._failure_count = 0
        elif self._state == CircuitState.CLOSED:
            self._failure_count = 0

    def record_failure(self) -> None:
        """Record a failed operation."""
        self._failure_count += 1
        self._last_failure_time = time.time()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN

    def get_state(self) -> CircuitState:
        """Get the current circuit breaker state."""
        return self._state


@dataclass(frozen=True)
class RemoteStoreConfig:
    """Immutable configuration for the document service client."""

    base_url: str
    instance_id: str
    shared_secret: str | None
    audience: str
    token_ttl_seconds: int
    timeout_seconds: float
    watch_retry_seconds: float


def load_remote_config(config: Settings | None = None) -> RemoteStoreConfig:
    """Build configuration object from settings."""
    config = config or settings
    if not config.remote_base_url:
        raise VoteStoreError("Remote vote store requires REMOTE_STORE_BASE_URL")

    return RemoteStoreConfig(
        base_url=config.remote_base_url,
        instance_id=config.remote_instance_id,
        shared_secret=config.remote_shared_secret,
        audience=config.remote_audience,
        token_ttl_seconds=config.remote_token_ttl_seconds,
        timeout_seconds=float(config.remote_http_timeout_seconds),
        watch_retry_seconds=float(config.remote_watch_retry_seconds),
    )


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def image_path(image_id: str) -> str:
    """Return the URL-quoted document path of an image."""
    return f"/images/{quote(image_id, safe='')}"


def _ratings_path(image_id: str, voter: str | None = None) -> str:
    path = f"{image_path(image_id)}/ratings"
    if voter is not None:
        path = f"{path}/{quote(voter, safe='')}"
    return path


def parse_snapshot(payload: Any) -> VoteMap:
    """Turn a ratings response body into a VoteMap."""
    if not isinstance(payload, Mapping):
        return {}
    ratings = payload.get("ratings", payload)
    if not isinstance(ratings, Mapping):
        return {}
    return clean_vote_map(ratings)


class RemoteVoteStore(VoteStore):
    """HTTP client wrapper for the remote rating document service."""

    kind = "remote"
    supports_watch = True

    def __init__(
        self,
        config: RemoteStoreConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._circuit_breaker = CircuitBreaker()
        self._watch_tasks: set[asyncio.Task[None]] = set()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url,
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    def _build_auth_headers(self) -> dict[str, str]:
        headers = {"X-Instance-Id": self.config.instance_id}

        if self.config.shared_secret:
            now = int(time.time())
            payload = {
                "iss": self.config.instance_id,
                "aud": self.config.audience,
                "iat": now,
                "exp": now + max(1, self.config.token_ttl_seconds),
                "jti": secrets.token_hex(8),
            }
            token = jwt.encode(payload, self.config.shared_secret, algorithm="HS256")
            headers["Authorization"] = f"Bearer {token}"

        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        json_data: Any | None = None,
    ) -> httpx.Response:
        if self._circuit_breaker.is_open():
            raise StoreUnavailableError("Vote store circuit breaker is open - service unavailable")

        client = await self._ensure_client()
        try:
            response = await client.request(
                method,
                path,
                json=json_data,
                headers=self._build_auth_headers(),
            )
        except httpx.HTTPError as exc:
            self._circuit_breaker.record_failure()
            raise StoreUnavailableError(f"Vote store request failed: {exc}") from exc

        if response.status_code >= HTTP_INTERNAL_SERVER_ERROR:
            self._circuit_breaker.record_failure()
            raise StoreUnavailableError(f"Vote store responded with {response.status_code}")

        self._circuit_breaker.record_success()
        return response

    async def read_all(self, image_id: str) -> VoteMap:
        response = await self.request("GET", _ratings_path(image_id))
        if response.status_code == HTTP_NOT_FOUND:
            return {}
        if response.status_code >= HTTP_BAD_REQUEST:
            raise VoteStoreError(
                f"Unexpected vote store response ({response.status_code}) reading {image_id}",
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise VoteStoreError(f"Malformed ratings payload for {image_id}") from exc
        return parse_snapshot(payload)

    async def write_one(self, image_id: str, voter: str, vote: Vote) -> None:
        response = await self.request(
            "PUT",
            _ratings_path(image_id, voter),
            json_data={"value": Vote.coerce(vote).value, "updated_at": _utcnow_iso()},
        )
        if response.status_code >= HTTP_BAD_REQUEST:
            raise VoteStoreError(
                f"Unexpected vote store response ({response.status_code}) writing {image_id}",
            )

    async def delete_one(self, image_id: str, voter: str) -> None:
        response = await self.request("DELETE", _ratings_path(image_id, voter))
        if response.status_code == HTTP_NOT_FOUND:
            return
        if response.status_code >= HTTP_BAD_REQUEST:
            raise VoteStoreError(
                f"Unexpected vote store response ({response.status_code}) deleting {image_id}",
            )

    async def register_voter(self, voter: str) -> None:
        response = await self.request(
            "PUT",
            f"/users/{quote(voter, safe='')}",
            json_data={"created_at": _utcnow_iso()},
        )
        if response.status_code >= HTTP_BAD_REQUEST:
            raise VoteStoreError(
                f"Unexpected vote store response ({response.status_code}) registering voter",
            )

    def watch(self, image_id: str, on_change: SnapshotCallback) -> Unwatch:
        """Stream snapshots for ``image_id`` until the returned handle is called."""
        return self.watch_path(f"{_ratings_path(image_id)}/watch", parse_snapshot, on_change)

    def watch_path(
        self,
        path: str,
        parse: Callable[[Any], Any],
        on_frame: Callable[[Any], None],
    ) -> Unwatch:
        """Follow a newline-delimited JSON feed, passing each parsed frame on.

        The feed reconnects with back-off until the returned handle is
        called or the store is closed.
        """
        task = asyncio.get_running_loop().create_task(self._watch_loop(path, parse, on_frame))
        self._watch_tasks.add(task)
        task.add_done_callback(self._watch_tasks.discard)

        def unwatch() -> None:
            if not task.done():
                task.cancel()

        return unwatch

    async def _watch_loop(
        self,
        path: str,
        parse: Callable[[Any], Any],
        on_frame: Callable[[Any], None],
    ) -> None:
        interval = max(0.1, self.config.watch_retry_seconds)
        delay = interval

        while True:
            try:
                client = await self._ensure_client()
                async with client.stream(
                    "GET",
                    path,
                    headers=self._build_auth_headers(),
                    timeout=httpx.Timeout(self.config.timeout_seconds, read=None),
                ) as response:
                    if response.status_code >= HTTP_BAD_REQUEST:
                        raise StoreUnavailableError(
                            f"Watch feed responded with {response.status_code}"
                        )
                    delay = interval
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        try:
                            frame = parse(json.loads(line))
                        except ValueError:
                            logger.warning("Dropping malformed watch frame from %s", path)
                            continue
                        on_frame(frame)
            except asyncio.CancelledError:
                raise
            except (httpx.HTTPError, VoteStoreError) as exc:
                logger.warning("Watch feed %s interrupted: %s", path, exc)
            await asyncio.sleep(delay)
            delay = min(delay * 2, MAX_WATCH_BACKOFF_SECONDS)

    def get_circuit_breaker_status(self) -> dict[str, Any]:
        """Get the current circuit breaker status."""
        return {
            "state": self._circuit_breaker.get_state().value,
            "is_open": self._circuit_breaker.is_open(),
        }

    async def close(self) -> None:
        """Cancel live feeds and clean up underlying HTTP client resources."""
        tasks = list(self._watch_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
