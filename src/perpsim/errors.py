"""Error taxonomy for the simulation core.

Every error carries a stable ``code`` so the outer command surface can map it
to a response without string matching on messages.

Propagation:
- AlreadyRunning / NotRunning / UnknownScenario / InvalidConfig are raised
  synchronously to the caller and never touch running state.
- InvalidPriceSample is handled where it is detected (sample dropped, warning).
- ExecutorFailure is recorded against the originating agent, never retried by
  the fleet.
- UpstreamFeedUnavailable degrades to the cached value, then a static price.
"""

from __future__ import annotations

from typing import Any


class SimulationError(Exception):
    """Base class for all simulation core errors."""

    code: str = "SIMULATION_ERROR"

    def to_dict(self) -> dict[str, Any]:
        """Serializable form for outer surfaces."""
        return {"code": self.code, "message": str(self)}


class AlreadyRunningError(SimulationError):
    """Raised by start() while a session is active."""

    code = "ALREADY_RUNNING"

    def __init__(self, message: str = "Simulation already running", session_id: str | None = None) -> None:
        super().__init__(message)
        self.session_id = session_id


class NotRunningError(SimulationError):
    """Raised by operations that need an active session."""

    code = "NOT_RUNNING"

    def __init__(self, message: str = "No simulation running") -> None:
        super().__init__(message)


class UnknownScenarioError(SimulationError):
    """Raised when a scenario name is not in the catalog."""

    code = "UNKNOWN_SCENARIO"

    def __init__(self, name: str, available: list[str] | None = None) -> None:
        available = sorted(available or [])
        super().__init__(f"Unknown scenario: {name!r} (available: {', '.join(available)})")
        self.name = name
        self.available = available


class InvalidConfigError(SimulationError, ValueError):
    """Raised for rejected configuration (bad price, unknown model, unknown keys)."""

    code = "INVALID_CONFIG"

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class InvalidPriceSampleError(SimulationError):
    """A non-positive or non-finite price reached the fleet."""

    code = "INVALID_PRICE_SAMPLE"

    def __init__(self, price: Any) -> None:
        super().__init__(f"Invalid price sample: {price!r}")
        self.price = price


class ExecutorFailureError(SimulationError):
    """The injected executor rejected or errored on a trade intent."""

    code = "EXECUTOR_FAILURE"

    def __init__(self, agent: str, intent_id: str, reason: str = "rejected") -> None:
        super().__init__(f"Executor failed for {agent} intent {intent_id}: {reason}")
        self.agent = agent
        self.intent_id = intent_id
        self.reason = reason


class UpstreamFeedUnavailableError(SimulationError):
    """The external price reference could not be fetched."""

    code = "UPSTREAM_FEED_UNAVAILABLE"

    def __init__(self, feed: str, reason: str = "", status_code: int | None = None) -> None:
        message = f"Price feed {feed} unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.feed = feed
        self.reason = reason
        self.status_code = status_code
