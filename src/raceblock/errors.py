"""Exception taxonomy for raceblock.

Losing an election is a routine outcome and is reported through
``ElectionResult``; only precondition violations, configuration mistakes
and store connectivity problems are raised.
"""

from __future__ import annotations


class RaceBlockError(Exception):
    """Base class for all raceblock errors."""


class InvalidKeyError(RaceBlockError, ValueError):
    """Raised when an empty or missing logical key is supplied."""

    def __init__(self, message: str = "A key must be provided to start a RaceBlock"):
        super().__init__(message)


class ConfigurationError(RaceBlockError, ValueError):
    """Raised for unknown or invalid election settings."""


class StoreConnectionError(RaceBlockError, ConnectionError):
    """Raised when the Redis store cannot be reached.

    The original redis-py exception is available as ``__cause__``.
    """
