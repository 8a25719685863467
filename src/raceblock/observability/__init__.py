"""Observability for raceblock.

Provides structured logging and metrics for election decisions:
- JSON / console log formatting with election context
- Prometheus counters for election outcomes
"""

from raceblock.observability.logging import (
    LogContext,
    attempt_id_var,
    configure_logging,
    election_key_var,
)
from raceblock.observability.metrics import (
    ElectionMetrics,
    get_metrics,
    metrics_registry,
)

__all__ = [
    # Logging
    "configure_logging",
    "LogContext",
    "election_key_var",
    "attempt_id_var",
    # Metrics
    "ElectionMetrics",
    "get_metrics",
    "metrics_registry",
]
