"""Token election for cooperative, best-effort mutual exclusion.

Many processes may fire the same unit of work at almost the same instant
(the same cron job on every instance of a fleet, duplicated webhooks).
``RaceBlock`` lets them agree, through Redis alone, that only one of them
runs it:

1. If the entry exists without a TTL (a previous holder died between
   writing its token and setting the TTL), force a short TTL on it.
2. If the entry exists at all, someone is running or ran recently: back off.
3. Optionally wait a desync delay to stagger simultaneous callers.
4. Write a fresh random token with a TTL that outlives the settling wait.
5. Sleep ``sleep_delay`` so every candidate that wrote at about the same
   time finishes writing. Redis serializes writes, so only the last token
   survives.
6. Re-read: the candidate whose token is still there won. It extends the
   TTL to ``expire``, runs the work, then sets the TTL to
   ``expiration_delay`` (a cooldown that suppresses new elections), even
   if the work raised.

This is a last-writer-wins election, not a compare-and-set lock. Its
guarantees are probabilistic: nobody may run, or (rarely) two callers may.
The ``atomic`` strategy replaces steps 4-6 with a single SET NX.

Example:
    block = RaceBlock(store=RedisStore())

    result = await block.run("nightly-report", generate_report)
    if result.ran:
        print(result.value)

    # Or as a context manager
    async with block.guard("cleanup") as guard:
        if guard.should_run:
            await run_cleanup()

    # Or as decorator
    @race_block("daily-digest")
    async def send_digest():
        ...
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import random
import secrets
import time
from dataclasses import dataclass, field
from enum import Enum
from types import TracebackType
from typing import Any, Awaitable, Callable, Generic, ParamSpec, TypeVar
from uuid import uuid4

from raceblock.errors import InvalidKeyError, StoreConnectionError
from raceblock.observability.logging import LogContext
from raceblock.observers import ElectionEvent, ElectionObserver, ElectionOutcome, LoggingObserver
from raceblock.settings import ConfigHandle, ElectionConfig
from raceblock.store.keys import BlockKeys
from raceblock.store.redis import RedisStore, TtlStatus

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

# Token entropy in bytes (128 bits)
TOKEN_BYTES = 16


class NotRunReason(str, Enum):
    """Why an election attempt did not run the work."""

    ALREADY_HELD = "already_held"
    TOKEN_DESYNCED = "token_desynced"


@dataclass(frozen=True)
class ElectionResult(Generic[R]):
    """Outcome of one election attempt."""

    ran: bool
    value: R | None = None
    reason: NotRunReason | None = None

    @classmethod
    def ran_with(cls, value: R) -> ElectionResult[R]:
        return cls(ran=True, value=value)

    @classmethod
    def not_run(cls, reason: NotRunReason) -> ElectionResult[R]:
        return cls(ran=False, reason=reason)


@dataclass
class _Attempt:
    """State owned by a single election attempt."""

    key: str
    store_key: str
    config: ElectionConfig
    attempt_id: str = field(default_factory=lambda: uuid4().hex[:8])
    token: str | None = None
    written: bool = False


class RaceBlock:
    """Runs a block of work on at most one of many concurrent callers.

    Args:
        store: Store adapter (a ``RedisStore`` on the shared client if None)
        config: Shared ``ConfigHandle`` or a fixed ``ElectionConfig``
        observer: Callable receiving every ``ElectionEvent``
            (a ``LoggingObserver`` if None)
    """

    def __init__(
        self,
        store: RedisStore | None = None,
        config: ConfigHandle | ElectionConfig | None = None,
        observer: ElectionObserver | None = None,
    ):
        self._store = store or RedisStore()
        if isinstance(config, ElectionConfig):
            config = ConfigHandle(config)
        self._config = config or ConfigHandle()
        self._observer = observer or LoggingObserver()

    @property
    def client(self) -> RedisStore:
        """The store adapter used for every election."""
        return self._store

    @property
    def config(self) -> ConfigHandle:
        return self._config

    @property
    def observer(self) -> ElectionObserver:
        """Callable receiving every ``ElectionEvent``."""
        return self._observer

    @staticmethod
    def key(logical_key: str) -> str:
        """Store key for a logical key."""
        return BlockKeys.key(logical_key)

    async def run(
        self, key: str, work: Callable[[], Awaitable[R] | R], **overrides: Any
    ) -> ElectionResult[R]:
        """Hold an election for ``key`` and run ``work`` if elected.

        Args:
            key: Logical key naming the coordination domain
            work: Sync callable or coroutine function
            **overrides: ``ElectionConfig`` fields for this call only

        Returns:
            ``ElectionResult`` carrying the work's value, or why it didn't run.

        Raises:
            InvalidKeyError: If ``key`` is empty.
            StoreConnectionError: If Redis is unreachable.
        """
        attempt = self._begin(key, overrides)
        with LogContext(election_key=key, attempt_id=attempt.attempt_id):
            reason = await self._elect(attempt)
            if reason is not None:
                return ElectionResult.not_run(reason)
            value = await self._run_elected(attempt, work)
        return ElectionResult.ran_with(value)

    async def start(
        self, key: str, work: Callable[[], Awaitable[R] | R], **overrides: Any
    ) -> R | None:
        """Like ``run`` but returns the work's value, or None if not elected."""
        result = await self.run(key, work, **overrides)
        return result.value

    def guard(self, key: str, **overrides: Any) -> BlockGuard:
        """Election as an async context manager.

        Example:
            async with block.guard("cleanup") as guard:
                if guard.should_run:
                    await run_cleanup()
        """
        return BlockGuard(self, key, overrides)

    async def reset(self, key: str) -> None:
        """Delete the entry for ``key`` regardless of its state."""
        _check_key(key)
        await self._store.delete(BlockKeys.key(key))
        logger.debug(f"Reset election entry for '{key}'")

    async def held_keys(self) -> list[str]:
        """Logical keys with an entry in the store (running or cooling down)."""
        return await self._store.block_keys()

    # -------------------------------------------------------------------------
    # Protocol steps
    # -------------------------------------------------------------------------

    def _begin(self, key: str, overrides: dict[str, Any]) -> _Attempt:
        _check_key(key)
        return _Attempt(
            key=key,
            store_key=BlockKeys.key(key),
            config=self._config.get().merged(**overrides),
        )

    async def _elect(self, attempt: _Attempt) -> NotRunReason | None:
        """Steps 1-6 up to the TTL extension; None means elected."""
        store = self._store
        config = attempt.config

        await self._apply_guard(attempt)

        if await store.get(attempt.store_key) is not None:
            self._emit(attempt, ElectionOutcome.ALREADY_HELD)
            return NotRunReason.ALREADY_HELD

        await asyncio.sleep(_desync_delay(config))

        attempt.token = secrets.token_hex(TOKEN_BYTES)
        try:
            if config.strategy == "atomic":
                won = await store.set(
                    attempt.store_key,
                    attempt.token,
                    ttl=config.settle_ttl,
                    only_if_absent=True,
                )
                attempt.written = won
            else:
                await store.set(attempt.store_key, attempt.token)
                attempt.written = True
                await store.expire(attempt.store_key, config.settle_ttl)
                await asyncio.sleep(config.sleep_delay)
                won = await store.get(attempt.store_key) == attempt.token

            if not won:
                self._emit(attempt, ElectionOutcome.TOKEN_DESYNCED)
                return NotRunReason.TOKEN_DESYNCED

            await store.expire(attempt.store_key, config.expire)
        except StoreConnectionError:
            await self._cooldown_after_store_error(attempt)
            raise

        return None

    async def _apply_guard(self, attempt: _Attempt) -> None:
        if await self._store.ttl(attempt.store_key) == TtlStatus.NO_EXPIRY:
            await self._store.expire(attempt.store_key, attempt.config.guard_ttl)
            self._emit(
                attempt,
                ElectionOutcome.GUARD_APPLIED,
                guard_ttl=attempt.config.guard_ttl,
            )

    async def _run_elected(self, attempt: _Attempt, work: Callable[[], Awaitable[R] | R]) -> R:
        self._emit(attempt, ElectionOutcome.RAN)
        started = time.perf_counter()
        try:
            result = work()
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            self._emit(
                attempt,
                ElectionOutcome.FAILED,
                error=repr(e),
                duration=time.perf_counter() - started,
            )
            raise
        finally:
            await self._cooldown(attempt)

        self._emit(attempt, ElectionOutcome.COMPLETED, duration=time.perf_counter() - started)
        return result  # type: ignore[return-value]

    async def _cooldown(self, attempt: _Attempt) -> None:
        await self._store.expire(attempt.store_key, attempt.config.expiration_delay)

    async def _cooldown_after_store_error(self, attempt: _Attempt) -> None:
        if not (attempt.config.cooldown_on_store_error and attempt.written):
            return
        try:
            await self._cooldown(attempt)
        except StoreConnectionError as e:
            logger.warning(f"Could not apply cooldown to '{attempt.key}' after store error: {e}")

    def _emit(self, attempt: _Attempt, outcome: ElectionOutcome, **detail: Any) -> None:
        event = ElectionEvent(
            key=attempt.key,
            store_key=attempt.store_key,
            attempt_id=attempt.attempt_id,
            outcome=outcome,
            detail=detail,
        )
        try:
            self._observer(event)
        except Exception:
            logger.exception(f"Election observer failed on {outcome.value} for '{attempt.key}'")


class BlockGuard:
    """Async context manager form of an election.

    On entry the election is held; ``should_run`` tells the body whether it
    won. On exit the winner's cooldown TTL is applied, also when the body
    raised. A guard may be entered again once it has exited; every entry
    is a fresh attempt.
    """

    def __init__(self, block: RaceBlock, key: str, overrides: dict[str, Any]):
        self._block = block
        self._overrides = overrides
        self._attempt = block._begin(key, overrides)
        self._reason: NotRunReason | None = None
        self._elected = False
        self._entered = False
        self._active = False
        self._started = 0.0
        self._log_context = LogContext()

    @property
    def should_run(self) -> bool:
        """True if this attempt won the election."""
        return self._elected

    @property
    def reason(self) -> NotRunReason | None:
        """Why the body should not run (None when elected)."""
        return self._reason

    async def __aenter__(self) -> BlockGuard:
        if self._active:
            raise RuntimeError(f"Guard for '{self._attempt.key}' is already entered")
        if self._entered:
            self._attempt = self._block._begin(self._attempt.key, self._overrides)
        self._entered = True
        self._active = True
        self._reason = None
        self._elected = False

        self._log_context = LogContext(
            election_key=self._attempt.key, attempt_id=self._attempt.attempt_id
        )
        self._log_context.__enter__()
        try:
            self._reason = await self._block._elect(self._attempt)
        except BaseException:
            self._log_context.__exit__()
            self._active = False
            raise
        if self._reason is None:
            self._elected = True
            self._started = time.perf_counter()
            self._block._emit(self._attempt, ElectionOutcome.RAN)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        try:
            if self._elected:
                duration = time.perf_counter() - self._started
                if exc_val is None:
                    self._block._emit(self._attempt, ElectionOutcome.COMPLETED, duration=duration)
                else:
                    self._block._emit(
                        self._attempt,
                        ElectionOutcome.FAILED,
                        error=repr(exc_val),
                        duration=duration,
                    )
                await self._block._cooldown(self._attempt)
        finally:
            self._log_context.__exit__()
            self._active = False


def race_block(
    key: str, block: RaceBlock | None = None, **overrides: Any
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R | None]]]:
    """Decorator that makes a function only run when elected for ``key``.

    Args:
        key: Logical key naming the coordination domain
        block: ``RaceBlock`` to use (the process-wide default if None)
        **overrides: ``ElectionConfig`` fields for every call

    Example:
        @race_block("daily-report", expiration_delay=30)
        async def generate_daily_report():
            # Runs on one instance only
            ...
    """
    _check_key(key)

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R | None]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R | None:
            if block is None:
                from raceblock.runtime import get_race_block

                target = get_race_block()
            else:
                target = block

            result = await target.run(key, lambda: func(*args, **kwargs), **overrides)
            if not result.ran:
                logger.debug(f"Skipping {func.__name__} - not elected for '{key}'")
            return result.value

        return wrapper

    return decorator


def _check_key(key: str | None) -> None:
    if not isinstance(key, str) or not key:
        raise InvalidKeyError()


def _desync_delay(config: ElectionConfig) -> float:
    if config.desync_jitter:
        return random.uniform(0, config.desync_tokens)  # nosec B311 - not security related
    return config.desync_tokens
