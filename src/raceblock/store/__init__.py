"""Store layer for raceblock.

Wraps the Redis commands the election relies on:
- GET / SET / DEL on a namespaced key
- EXPIRE and TTL for the entry lifecycle
- Connection bootstrap that logs instead of crashing setup
"""

from raceblock.store.keys import BlockKeys
from raceblock.store.redis import (
    RedisStore,
    StoreConnectionState,
    TtlStatus,
    close_redis,
    get_redis,
)

__all__ = [
    "BlockKeys",
    "RedisStore",
    "StoreConnectionState",
    "TtlStatus",
    "get_redis",
    "close_redis",
]
