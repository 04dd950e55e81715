"""
Tests for the error taxonomy.
"""

from __future__ import annotations

import pytest

from perpsim.errors import (
    AlreadyRunningError,
    ExecutorFailureError,
    InvalidConfigError,
    InvalidPriceSampleError,
    NotRunningError,
    SimulationError,
    UnknownScenarioError,
    UpstreamFeedUnavailableError,
)


class TestErrorCodes:
    @pytest.mark.parametrize(
        ("error", "code"),
        [
            (AlreadyRunningError(), "ALREADY_RUNNING"),
            (NotRunningError(), "NOT_RUNNING"),
            (UnknownScenarioError("moon"), "UNKNOWN_SCENARIO"),
            (InvalidConfigError("bad"), "INVALID_CONFIG"),
            (InvalidPriceSampleError(-1), "INVALID_PRICE_SAMPLE"),
            (ExecutorFailureError("mm-1", "mm-1"), "EXECUTOR_FAILURE"),
            (UpstreamFeedUnavailableError("SOL/USD"), "UPSTREAM_FEED_UNAVAILABLE"),
        ],
    )
    def test_code(self, error: SimulationError, code: str) -> None:
        assert isinstance(error, SimulationError)
        assert error.code == code
        assert error.to_dict() == {"code": code, "message": str(error)}


class TestErrorDetails:
    def test_already_running_keeps_session(self) -> None:
        error = AlreadyRunningError(session_id="sim_a")
        assert error.session_id == "sim_a"
        assert str(error) == "Simulation already running"

    def test_unknown_scenario_lists_available_sorted(self) -> None:
        error = UnknownScenarioError("moon", ["pump", "crash", "flash_crash"])
        assert error.available == ["crash", "flash_crash", "pump"]
        assert "'moon'" in str(error)
        assert "crash, flash_crash, pump" in str(error)

    def test_invalid_config_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            raise InvalidConfigError("price must be positive", field="start_price_e6")

    def test_invalid_config_field(self) -> None:
        assert InvalidConfigError("bad", field="interval_ms").field == "interval_ms"
        assert InvalidConfigError("bad").field is None

    def test_executor_failure_message(self) -> None:
        error = ExecutorFailureError("whale", "whale-3", "timeout")
        assert error.agent == "whale"
        assert error.intent_id == "whale-3"
        assert str(error) == "Executor failed for whale intent whale-3: timeout"

    def test_upstream_feed_message(self) -> None:
        assert str(UpstreamFeedUnavailableError("SOL/USD")) == "Price feed SOL/USD unavailable"
        error = UpstreamFeedUnavailableError("SOL/USD", "HTTP 503", status_code=503)
        assert str(error) == "Price feed SOL/USD unavailable: HTTP 503"
        assert error.status_code == 503

    def test_invalid_price_sample_keeps_value(self) -> None:
        error = InvalidPriceSampleError(0)
        assert error.price == 0
        assert str(error) == "Invalid price sample: 0"
