"""Configuration for raceblock.

Two layers:
- ``Settings``: environment-driven process settings (Redis connection,
  logging, metrics and the default election timings).
- ``ElectionConfig`` / ``ConfigHandle``: the election tunables. A
  ``ConfigHandle`` is a shared, thread-safe holder that every ``RaceBlock``
  built on it observes live; per-call overrides never touch it.

Example:
    handle = ConfigHandle()
    handle.update(sleep_delay=1.5, expire=14)
    handle.update(lambda c: setattr(c, "expiration_delay", 4))
    handle.reset()
"""

from __future__ import annotations

import math
import threading
from types import SimpleNamespace
from typing import Any, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from raceblock.errors import ConfigurationError

ElectionStrategy = Literal["timing", "atomic"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RACEBLOCK_", env_file=".env", extra="ignore")

    # Redis
    redis_url: str | None = Field(default=None, validation_alias="REDIS_URL")
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_timeout: float = 5.0

    # Election defaults
    expire: int = 60
    expiration_delay: int = 3
    sleep_delay: float = 0.5
    desync_tokens: float = 0.0
    desync_jitter: bool = False
    guard_ttl: int = 10
    settle_margin: int = 15
    strategy: ElectionStrategy = "timing"
    cooldown_on_store_error: bool = False

    # Observability
    log_level: str = "INFO"
    log_json: bool = False
    enable_metrics: bool = True


class ElectionConfig(BaseModel):
    """Immutable snapshot of the election tunables."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    expire: int = Field(default=60, ge=0)
    expiration_delay: int = Field(default=3, ge=0)
    sleep_delay: float = Field(default=0.5, ge=0)
    desync_tokens: float = Field(default=0.0, ge=0)
    desync_jitter: bool = False
    guard_ttl: int = Field(default=10, gt=0)
    settle_margin: int = Field(default=15, ge=0)
    strategy: ElectionStrategy = "timing"
    cooldown_on_store_error: bool = False

    @classmethod
    def from_settings(cls, source: Settings) -> ElectionConfig:
        """Build the defaults from environment settings."""
        return cls(
            expire=source.expire,
            expiration_delay=source.expiration_delay,
            sleep_delay=source.sleep_delay,
            desync_tokens=source.desync_tokens,
            desync_jitter=source.desync_jitter,
            guard_ttl=source.guard_ttl,
            settle_margin=source.settle_margin,
            strategy=source.strategy,
            cooldown_on_store_error=source.cooldown_on_store_error,
        )

    @property
    def settle_ttl(self) -> int:
        """TTL of a freshly written candidate token (at least one second)."""
        return max(1, math.ceil(self.sleep_delay + self.settle_margin))

    def merged(self, **overrides: Any) -> ElectionConfig:
        """Return a copy with ``overrides`` applied.

        ``None`` values are ignored so callers can forward optional
        keyword arguments untouched.

        Raises:
            ConfigurationError: On unknown names or invalid values.
        """
        changes = {name: value for name, value in overrides.items() if value is not None}
        if not changes:
            return self
        return _validate({**self.model_dump(), **changes})


def _validate(data: dict[str, Any]) -> ElectionConfig:
    unknown = set(data) - set(ElectionConfig.model_fields)
    if unknown:
        raise ConfigurationError(f"Unknown election settings: {', '.join(sorted(unknown))}")
    try:
        return ElectionConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e


class ConfigHandle:
    """Thread-safe shared holder for an ``ElectionConfig``.

    Args:
        defaults: Snapshot restored by ``reset()`` (built from the
            environment settings when omitted)
    """

    def __init__(self, defaults: ElectionConfig | None = None):
        self._defaults = defaults or ElectionConfig.from_settings(settings)
        self._current = self._defaults
        self._lock = threading.Lock()

    @property
    def defaults(self) -> ElectionConfig:
        return self._defaults

    def get(self) -> ElectionConfig:
        """Return the current snapshot."""
        with self._lock:
            return self._current

    def update(
        self,
        mutator: Callable[[SimpleNamespace], None] | None = None,
        **changes: Any,
    ) -> ElectionConfig:
        """Apply a mutator and/or keyword changes atomically.

        The mutator receives an attribute draft of the current snapshot;
        the result is validated before it replaces the current snapshot.
        """
        with self._lock:
            draft = SimpleNamespace(**self._current.model_dump())
            if mutator is not None:
                mutator(draft)
            for name, value in changes.items():
                setattr(draft, name, value)
            self._current = _validate(vars(draft))
            return self._current

    def reset(self) -> ElectionConfig:
        """Restore the defaults."""
        with self._lock:
            self._current = self._defaults
            return self._current


settings = Settings()
