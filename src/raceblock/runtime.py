"""Runtime wiring for the process-wide default ``RaceBlock``.

Most callers only need the module-level helpers:

    import raceblock

    raceblock.config(sleep_delay=1.5)
    value = await raceblock.start("nightly-report", generate_report)
    await raceblock.reset("nightly-report")

Callers that need isolated settings build their own ``RaceBlock`` instead.
Sync code, such as a cron entry point or a worker thread, goes through
``asyncio.run(raceblock.start(...))``; each loop gets its own Redis client.
"""

from __future__ import annotations

import logging
import threading
from types import SimpleNamespace
from typing import Any, Awaitable, Callable, TypeVar

from raceblock.election import RaceBlock
from raceblock.observers import (
    CompositeObserver,
    ElectionObserver,
    LoggingObserver,
    MetricsObserver,
)
from raceblock.settings import ConfigHandle, ElectionConfig, settings
from raceblock.store.redis import RedisStore, close_redis

logger = logging.getLogger(__name__)

R = TypeVar("R")

_config_handle: ConfigHandle | None = None
_race_block: RaceBlock | None = None
_lock = threading.RLock()


def get_config_handle() -> ConfigHandle:
    """Get the process-wide configuration handle."""
    global _config_handle
    with _lock:
        if _config_handle is None:
            _config_handle = ConfigHandle()
        return _config_handle


def default_observer() -> ElectionObserver:
    """Logging, plus Prometheus counters when metrics are enabled."""
    if settings.enable_metrics:
        return CompositeObserver(LoggingObserver(), MetricsObserver())
    return LoggingObserver()


def get_race_block() -> RaceBlock:
    """Get the process-wide ``RaceBlock``, creating it on first use."""
    global _race_block
    with _lock:
        if _race_block is None:
            _race_block = RaceBlock(
                store=RedisStore(),
                config=get_config_handle(),
                observer=default_observer(),
            )
        return _race_block


def configure(
    store: RedisStore | None = None,
    observer: ElectionObserver | None = None,
) -> RaceBlock:
    """Replace the default instance's store and/or observer.

    The configuration handle is kept, so settings survive reconfiguration.
    """
    global _race_block
    with _lock:
        current = get_race_block()
        _race_block = RaceBlock(
            store=store or current.client,
            config=get_config_handle(),
            observer=observer or current.observer,
        )
        return _race_block


def config(
    mutator: Callable[[SimpleNamespace], None] | None = None, **changes: Any
) -> ElectionConfig:
    """Read, or update and read, the process-wide election settings.

    Example:
        raceblock.config(lambda c: setattr(c, "expire", 14))
        raceblock.config(sleep_delay=1.5, expiration_delay=4)
        current = raceblock.config()
    """
    handle = get_config_handle()
    if mutator is None and not changes:
        return handle.get()
    return handle.update(mutator, **changes)


def reset_config() -> ElectionConfig:
    """Restore the process-wide election settings to their defaults."""
    return get_config_handle().reset()


def client() -> RedisStore:
    """The store adapter of the default instance."""
    return get_race_block().client


async def connect() -> bool:
    """Verify the default store connection; failures are logged, not raised."""
    return await client().connect()


async def start(key: str, work: Callable[[], Awaitable[R] | R], **overrides: Any) -> R | None:
    """Run ``work`` if elected for ``key``; see ``RaceBlock.start``."""
    return await get_race_block().start(key, work, **overrides)


async def reset(key: str) -> None:
    """Delete the election entry for ``key``."""
    await get_race_block().reset(key)


async def shutdown() -> None:
    """Close connections and drop the default instance."""
    global _race_block
    if _race_block is not None:
        await _race_block.client.close()
        _race_block = None
    await close_redis()
    logger.info("raceblock runtime stopped")
