"""Store key schema for raceblock.

Key format: race_block_{logical_key}

The prefix is a constant, so the mapping is injective: two distinct
logical keys never share a store key.
"""

from __future__ import annotations


class BlockKeys:
    """Store key generator for election entries."""

    PREFIX = "race_block_"

    @classmethod
    def key(cls, logical_key: str) -> str:
        """Store key for a logical key."""
        return f"{cls.PREFIX}{logical_key}"

    @classmethod
    def parse_key(cls, store_key: str) -> str | None:
        """Recover the logical key from a store key.

        Returns None if the key doesn't carry the prefix.
        """
        if not store_key.startswith(cls.PREFIX) or store_key == cls.PREFIX:
            return None
        return store_key[len(cls.PREFIX) :]

    @classmethod
    def pattern(cls) -> str:
        """SCAN pattern matching every election entry."""
        return f"{cls.PREFIX}*"
