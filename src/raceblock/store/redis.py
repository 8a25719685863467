"""Redis store adapter for raceblock.

Provides the handful of async Redis operations the election composes
(GET, SET, DEL, EXPIRE, TTL). Each command is atomic on its own; the
adapter offers no cross-command atomicity.

Connectivity failures are logged and re-raised as ``StoreConnectionError``;
the adapter never retries.

A ``redis.asyncio`` client belongs to the event loop that first used it.
Shared and dedicated clients are therefore kept per running loop, so sync
callers that go through ``asyncio.run`` from several threads or one after
another each get a client bound to their own loop.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import weakref
from collections.abc import Awaitable
from enum import Enum
from typing import TYPE_CHECKING, Callable, TypeVar, cast

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from raceblock.errors import StoreConnectionError
from raceblock.settings import settings
from raceblock.store.keys import BlockKeys

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Module-level connection pools, one per event loop
_redis_clients: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Redis] = (
    weakref.WeakKeyDictionary()
)
_clients_lock = threading.Lock()

# Redis TTL replies for keys without a usable TTL
_TTL_NO_EXPIRY = -1
_TTL_ABSENT = -2


class TtlStatus(str, Enum):
    """TTL states that are not a number of seconds."""

    NO_EXPIRY = "no_expiry"
    ABSENT = "absent"


class StoreConnectionState(str, Enum):
    """Connection state of a ``RedisStore``."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    FAILED = "failed"


def _create_client(url: str | None = None, timeout: float | None = None) -> Redis:
    timeout = settings.redis_timeout if timeout is None else timeout
    url = url or settings.redis_url
    if url:
        return redis.from_url(  # type: ignore[no-untyped-call]
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
    return redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        decode_responses=True,
        socket_timeout=timeout,
        socket_connect_timeout=timeout,
    )


async def get_redis() -> Redis:
    """Get or create the shared Redis client for the running event loop.

    Uses connection pooling for efficient connection management.
    """
    return _client_for_loop(_redis_clients, _create_client)


async def close_redis() -> None:
    """Close the running loop's shared client and forget the others."""
    with _clients_lock:
        client = _redis_clients.pop(asyncio.get_running_loop(), None)
        _redis_clients.clear()
    if client is not None:
        await client.aclose()


def _client_for_loop(
    clients: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Redis],
    factory: Callable[[], Redis],
) -> Redis:
    loop = asyncio.get_running_loop()
    with _clients_lock:
        # Clients of finished loops can no longer be used or closed
        for stale in [other for other in clients if other.is_closed()]:
            del clients[stale]
        client = clients.get(loop)
        if client is None:
            client = clients[loop] = factory()
        return client


class RedisStore:
    """Store adapter for election entries.

    Args:
        client: Existing Redis client (the shared pooled client if None)
        url: Redis URL for a dedicated client
        timeout: Connect/socket timeout for a dedicated client
    """

    def __init__(
        self,
        client: Redis | None = None,
        url: str | None = None,
        timeout: float | None = None,
    ):
        self._client = client
        self._url = url
        self._timeout = timeout
        self._owns_client = client is None and (url is not None or timeout is not None)
        self._own_clients: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Redis] = (
            weakref.WeakKeyDictionary()
        )
        self._state = StoreConnectionState.DISCONNECTED

    @property
    def state(self) -> StoreConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == StoreConnectionState.CONNECTED

    async def _get_client(self) -> Redis:
        if self._client is not None:
            return self._client
        if self._owns_client:
            return _client_for_loop(
                self._own_clients, lambda: _create_client(self._url, self._timeout)
            )
        return await get_redis()

    async def _call(self, command: str, key: str, op: Callable[[Redis], Awaitable[T]]) -> T:
        client = await self._get_client()
        try:
            result = await op(client)
        except (RedisConnectionError, RedisTimeoutError) as e:
            self._state = StoreConnectionState.FAILED
            logger.error(f"Redis {command} failed for '{key}': {e}")
            raise StoreConnectionError(f"Redis {command} failed for '{key}': {e}") from e
        self._state = StoreConnectionState.CONNECTED
        return result

    async def connect(self) -> bool:
        """Open the connection and verify it with PING.

        A failure is logged and leaves the store in the FAILED state; the
        next operation surfaces it as ``StoreConnectionError``.

        Returns:
            True if Redis answered, False otherwise.
        """
        try:
            await self.ping()
        except StoreConnectionError:
            logger.error("Could not connect to Redis, store left disconnected")
            return False
        logger.info("Connected to Redis")
        return True

    async def close(self) -> None:
        """Close the running loop's dedicated client; the shared pool is left alone."""
        if self._owns_client:
            with _clients_lock:
                client = self._own_clients.pop(asyncio.get_running_loop(), None)
                self._own_clients.clear()
            if client is not None:
                await client.aclose()
        self._state = StoreConnectionState.DISCONNECTED

    async def ping(self) -> bool:
        return await self._call(
            "PING", "-", lambda c: cast(Awaitable[bool], c.ping())
        )

    async def get(self, key: str) -> str | None:
        return await self._call(
            "GET", key, lambda c: cast(Awaitable[str | None], c.get(key))
        )

    async def set(
        self,
        key: str,
        value: str,
        *,
        ttl: int | None = None,
        only_if_absent: bool = False,
    ) -> bool:
        """SET the key, optionally with EX and NX.

        Returns:
            True if the value was written (False when NX found the key).
        """
        result = await self._call(
            "SET",
            key,
            lambda c: cast(
                Awaitable[bool | None],
                c.set(key, value, ex=ttl, nx=only_if_absent),
            ),
        )
        return bool(result)

    async def delete(self, key: str) -> int:
        return await self._call("DEL", key, lambda c: cast(Awaitable[int], c.delete(key)))

    async def expire(self, key: str, seconds: int) -> bool:
        """Set the key's TTL. Missing keys are left untouched (returns False)."""
        result = await self._call(
            "EXPIRE", key, lambda c: cast(Awaitable[bool], c.expire(key, seconds))
        )
        return bool(result)

    async def ttl(self, key: str) -> int | TtlStatus:
        """Seconds until the key expires, or a ``TtlStatus``."""
        remaining = await self._call("TTL", key, lambda c: cast(Awaitable[int], c.ttl(key)))
        if remaining == _TTL_NO_EXPIRY:
            return TtlStatus.NO_EXPIRY
        if remaining == _TTL_ABSENT:
            return TtlStatus.ABSENT
        return int(remaining)

    async def block_keys(self) -> list[str]:
        """Logical keys that currently hold an election entry."""

        async def scan(client: Redis) -> list[str]:
            found: list[str] = []
            async for store_key in client.scan_iter(match=BlockKeys.pattern()):
                logical = BlockKeys.parse_key(store_key)
                if logical is not None:
                    found.append(logical)
            return found

        return await self._call("SCAN", BlockKeys.pattern(), scan)
