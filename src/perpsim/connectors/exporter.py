"""
Prometheus metrics exporter for simulation sessions.

Exports low-cardinality metrics only: no session id, agent name or market id
labels. Counters are fed from snapshot totals by delta, so the exporter can
be updated from any snapshot at any rate.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prometheus_client import Counter, Gauge
from prometheus_client.registry import CollectorRegistry

from perpsim.contracts.base import e6_to_float

if TYPE_CHECKING:
    from perpsim.contracts.session import SessionSnapshot


# Labels that would cause cardinality explosion
FORBIDDEN_LABELS = frozenset(
    {
        "session_id",
        "market_id",
        "agent",
        "intent_id",
        "account_index",
        "feed",
        "url",
    }
)


class SimulationMetricsExporter:
    """
    Prometheus exporter for the session slot.

    Metric families:
    - perpsim_session_* : slot state
    - perpsim_price_*   : engine output
    - perpsim_trades_*  : executor outcomes
    - perpsim_*_dropped : samples/results dropped along the way

    Usage:
        registry = CollectorRegistry()
        exporter = SimulationMetricsExporter(registry=registry)
        exporter.update(manager.get_state())
        # generate_latest(registry) -> bytes for /metrics endpoint
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or CollectorRegistry()

        self._session_running = Gauge(
            "perpsim_session_running",
            "1 while a simulation session is running",
            registry=self._registry,
        )
        self._session_uptime_ms = Gauge(
            "perpsim_session_uptime_ms",
            "Uptime of the current session in milliseconds",
            registry=self._registry,
        )
        self._price_current = Gauge(
            "perpsim_price_current",
            "Current simulated oracle price",
            registry=self._registry,
        )
        self._price_updates = Counter(
            "perpsim_price_updates",
            "Total price ticks published",
            registry=self._registry,
        )
        self._bots_count = Gauge(
            "perpsim_bots_count",
            "Number of agents in the current fleet",
            registry=self._registry,
        )
        self._intents_in_flight = Gauge(
            "perpsim_intents_in_flight",
            "Trade intents handed to the executor and not yet settled",
            registry=self._registry,
        )
        self._trades_executed = Counter(
            "perpsim_trades_executed",
            "Total trade intents accepted by the executor",
            registry=self._registry,
        )
        self._trades_failed = Counter(
            "perpsim_trades_failed",
            "Total trade intents rejected or errored by the executor",
            registry=self._registry,
        )
        self._samples_dropped = Counter(
            "perpsim_samples_dropped",
            "Total invalid price samples dropped before reaching agents",
            registry=self._registry,
        )
        self._subscriber_drops = Counter(
            "perpsim_subscriber_drops",
            "Total samples dropped from full subscriber queues",
            registry=self._registry,
        )
        self._late_results_dropped = Counter(
            "perpsim_late_results_dropped",
            "Total executor results dropped for stopped or replaced sessions",
            registry=self._registry,
        )

        self._tracked_session_id: str | None = None
        self.reset_counter_tracking()

    @property
    def registry(self) -> CollectorRegistry:
        """Get the Prometheus CollectorRegistry."""
        return self._registry

    def update(self, snapshot: SessionSnapshot) -> None:
        """
        Sync metrics from a session snapshot.

        A snapshot for a different session restarts counter tracking from
        zero, since per-session totals restart too.
        """
        if snapshot.session_id is not None and snapshot.session_id != self._tracked_session_id:
            self.reset_counter_tracking()
            self._tracked_session_id = snapshot.session_id

        self._session_running.set(1 if snapshot.running else 0)
        self._session_uptime_ms.set(snapshot.uptime_ms)

        engine = snapshot.engine
        if engine is not None:
            self._price_current.set(e6_to_float(engine.current_price_e6))
            self._last_updates = self._inc_delta(self._price_updates, engine.updates_count, self._last_updates)
            self._last_subscriber_drops = self._inc_delta(
                self._subscriber_drops, engine.subscriber_drops, self._last_subscriber_drops
            )

        fleet = snapshot.fleet
        if fleet is None:
            self._bots_count.set(0)
            self._intents_in_flight.set(0)
            return

        self._bots_count.set(len(fleet.bots))
        self._intents_in_flight.set(fleet.in_flight)
        self._last_executed = self._inc_delta(
            self._trades_executed, fleet.total_trades_executed, self._last_executed
        )
        self._last_failed = self._inc_delta(self._trades_failed, fleet.total_trades_failed, self._last_failed)
        self._last_samples_dropped = self._inc_delta(
            self._samples_dropped, fleet.samples_dropped, self._last_samples_dropped
        )
        self._last_late_dropped = self._inc_delta(
            self._late_results_dropped, fleet.late_results_dropped, self._last_late_dropped
        )

    @staticmethod
    def _inc_delta(counter: Counter, current: int, last: int) -> int:
        delta = current - last
        if delta > 0:
            counter.inc(delta)
        return current

    def reset_counter_tracking(self) -> None:
        """
        Reset internal counter tracking.

        Does NOT reset the Prometheus counters themselves.
        """
        self._last_updates = 0
        self._last_subscriber_drops = 0
        self._last_executed = 0
        self._last_failed = 0
        self._last_samples_dropped = 0
        self._last_late_dropped = 0


# Counters are exported with _total suffix by prometheus_client
REQUIRED_METRIC_NAMES: frozenset[str] = frozenset(
    {
        # Gauges
        "perpsim_session_running",
        "perpsim_session_uptime_ms",
        "perpsim_price_current",
        "perpsim_bots_count",
        "perpsim_intents_in_flight",
        # Counters
        "perpsim_price_updates_total",
        "perpsim_trades_executed_total",
        "perpsim_trades_failed_total",
        "perpsim_samples_dropped_total",
        "perpsim_subscriber_drops_total",
        "perpsim_late_results_dropped_total",
    }
)
