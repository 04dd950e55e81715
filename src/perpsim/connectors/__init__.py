"""Connectors: upstream backoff/circuit breaking and the metrics endpoint."""

from perpsim.connectors.backoff import (
    BackoffConfig,
    BackoffState,
    CircuitBreaker,
    CircuitState,
    compute_backoff_delay,
    parse_retry_after_ms,
)
from perpsim.connectors.exporter import REQUIRED_METRIC_NAMES, SimulationMetricsExporter

__all__ = [
    "REQUIRED_METRIC_NAMES",
    "BackoffConfig",
    "BackoffState",
    "CircuitBreaker",
    "CircuitState",
    "SimulationMetricsExporter",
    "compute_backoff_delay",
    "parse_retry_after_ms",
]
