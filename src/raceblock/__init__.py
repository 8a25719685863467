"""Cooperative, best-effort distributed mutex backed by Redis.

Lets many processes that fire the same unit of work at nearly the same
instant agree, without talking to each other, that only one of them runs
it:
- Token election through Redis GET/SET/EXPIRE/TTL
- Cooldown window after the work finishes
- Self-healing of entries left without a TTL

Example:
    import raceblock

    value = await raceblock.start("nightly-report", generate_report)

    block = raceblock.RaceBlock(config=raceblock.ElectionConfig(sleep_delay=1))
    result = await block.run("cleanup", run_cleanup)
"""

from raceblock.election import (
    BlockGuard,
    ElectionResult,
    NotRunReason,
    RaceBlock,
    race_block,
)
from raceblock.errors import (
    ConfigurationError,
    InvalidKeyError,
    RaceBlockError,
    StoreConnectionError,
)
from raceblock.observers import (
    CompositeObserver,
    ElectionEvent,
    ElectionObserver,
    ElectionOutcome,
    LoggingObserver,
    MetricsObserver,
)
from raceblock.runtime import (
    client,
    config,
    configure,
    connect,
    get_race_block,
    reset,
    reset_config,
    shutdown,
    start,
)
from raceblock.settings import ConfigHandle, ElectionConfig, Settings
from raceblock.store import BlockKeys, RedisStore, StoreConnectionState, TtlStatus

__version__ = "0.1.0"


def key(logical_key: str) -> str:
    """Store key for a logical key."""
    return BlockKeys.key(logical_key)


__all__ = [
    # Election
    "RaceBlock",
    "BlockGuard",
    "ElectionResult",
    "NotRunReason",
    "race_block",
    # Default instance
    "start",
    "reset",
    "config",
    "reset_config",
    "configure",
    "connect",
    "client",
    "get_race_block",
    "shutdown",
    "key",
    # Configuration
    "ConfigHandle",
    "ElectionConfig",
    "Settings",
    # Store
    "BlockKeys",
    "RedisStore",
    "StoreConnectionState",
    "TtlStatus",
    # Observers
    "ElectionEvent",
    "ElectionObserver",
    "ElectionOutcome",
    "LoggingObserver",
    "MetricsObserver",
    "CompositeObserver",
    # Errors
    "RaceBlockError",
    "InvalidKeyError",
    "StoreConnectionError",
    "ConfigurationError",
]
