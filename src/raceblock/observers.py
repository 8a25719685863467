"""Observers for election decisions.

Every election reports what happened to an observer: a plain callable
receiving an ``ElectionEvent``. Losing an election is routine, so losses
are reported here rather than raised.

Example:
    events: list[ElectionEvent] = []
    block = RaceBlock(observer=CompositeObserver(LoggingObserver(), events.append))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from raceblock.observability.metrics import ElectionMetrics, get_metrics


class ElectionOutcome(str, Enum):
    """Decision points reported during an election."""

    GUARD_APPLIED = "guard_applied"  # Entry had no TTL, a short one was forced
    ALREADY_HELD = "already_held"
    TOKEN_DESYNCED = "token_desynced"
    RAN = "ran"  # Elected, work about to run
    COMPLETED = "completed"
    FAILED = "failed"  # Work raised


@dataclass(frozen=True)
class ElectionEvent:
    """A single decision reported by an election attempt."""

    key: str
    store_key: str
    attempt_id: str
    outcome: ElectionOutcome
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    detail: dict[str, Any] = field(default_factory=dict)


ElectionObserver = Callable[[ElectionEvent], None]


class LoggingObserver:
    """Write election decisions to a logger."""

    MESSAGES: dict[ElectionOutcome, tuple[int, str]] = {
        ElectionOutcome.GUARD_APPLIED: (logging.INFO, "Forced expiry on key without TTL"),
        ElectionOutcome.ALREADY_HELD: (logging.DEBUG, "Token already exists"),
        ElectionOutcome.TOKEN_DESYNCED: (logging.DEBUG, "Token out of sync"),
        ElectionOutcome.RAN: (logging.DEBUG, "Running block"),
        ElectionOutcome.COMPLETED: (logging.DEBUG, "Block finished"),
        ElectionOutcome.FAILED: (logging.WARNING, "Block raised"),
    }

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger("raceblock")

    def __call__(self, event: ElectionEvent) -> None:
        level, message = self.MESSAGES[event.outcome]
        self.logger.log(
            level,
            message,
            extra={"outcome": event.outcome.value, "store_key": event.store_key, **event.detail},
        )


class MetricsObserver:
    """Count election outcomes in Prometheus."""

    def __init__(self, metrics: ElectionMetrics | None = None):
        self.metrics = metrics or get_metrics()

    def __call__(self, event: ElectionEvent) -> None:
        self.metrics.elections_total.labels(outcome=event.outcome.value).inc()
        duration = event.detail.get("duration")
        if duration is not None:
            self.metrics.work_duration_seconds.observe(duration)


class CompositeObserver:
    """Fan an event out to several observers, in order."""

    def __init__(self, *observers: ElectionObserver):
        self.observers = list(observers)

    def __call__(self, event: ElectionEvent) -> None:
        for observer in self.observers:
            observer(event)
