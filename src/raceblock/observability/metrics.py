"""Prometheus metrics for raceblock.

Provides:
- Election outcome counts (ran, already held, token desynced, ...)
- Work duration histogram for elected runs

Usage:
    from raceblock.observability.metrics import get_metrics

    metrics = get_metrics()
    metrics.elections_total.labels(outcome="ran").inc()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram, generate_latest

from raceblock.settings import settings

logger = logging.getLogger(__name__)


class NoOpMetric:
    """No-op metric for when metrics are disabled."""

    def labels(self, **kwargs: Any) -> "NoOpMetric":
        """Return self for chaining."""
        return self

    def inc(self, amount: float = 1) -> None:
        pass

    def observe(self, value: float) -> None:
        pass


@dataclass
class ElectionMetrics:
    """Registry for election metrics."""

    elections_total: Any = None
    work_duration_seconds: Any = None

    enabled: bool = True
    _initialized: bool = field(default=False, repr=False)
    _registry: CollectorRegistry | None = field(default=None, repr=False)

    def initialize(self, registry: CollectorRegistry | None = None) -> None:
        """Create the Prometheus collectors (once)."""
        if self._initialized:
            return

        if not self.enabled:
            logger.info("Metrics are disabled")
            self.elections_total = NoOpMetric()
            self.work_duration_seconds = NoOpMetric()
            self._initialized = True
            return

        self._registry = registry or REGISTRY

        self.elections_total = Counter(
            "raceblock_elections_total",
            "Election outcomes",
            ["outcome"],
            registry=self._registry,
        )

        self.work_duration_seconds = Histogram(
            "raceblock_work_duration_seconds",
            "Duration of elected work in seconds",
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0),
            registry=self._registry,
        )

        self._initialized = True
        logger.info("Prometheus metrics initialized")

    def generate_latest(self) -> bytes:
        """Generate Prometheus metrics in exposition format."""
        if not self.enabled or self._registry is None:
            return b"# Metrics disabled\n"
        return generate_latest(self._registry)


# Global metrics registry
metrics_registry = ElectionMetrics(enabled=settings.enable_metrics)


def get_metrics() -> ElectionMetrics:
    """Get the global metrics registry.

    Initializes metrics on first access.
    """
    if not metrics_registry._initialized:
        metrics_registry.initialize()
    return metrics_registry
