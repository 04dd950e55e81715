"""
Tests for session contracts: SessionConfig parsing, snapshots, credentials.
"""

from __future__ import annotations

import orjson
import pytest
from pydantic import ValidationError

from perpsim.contracts.base import SCHEMA_VERSION, e6_to_float, float_to_e6, new_session_id
from perpsim.contracts.bots import BotConfig
from perpsim.contracts.model_params import MeanRevertParams, RandomWalkParams
from perpsim.contracts.price import PriceEngineState
from perpsim.contracts.session import (
    DEFAULT_INTERVAL_MS,
    FinalSessionSnapshot,
    SessionConfig,
    SessionCredentials,
    SessionSnapshot,
)
from perpsim.contracts.types import BotType, PriceModelKind


def _bot(name: str = "mm", market: str = "sim-market") -> dict[str, object]:
    return {"type": "market-maker", "name": name, "targetMarketId": market, "maxPositionSize": 1_000}


class TestSessionConfig:
    """start() input parsing."""

    def test_defaults(self) -> None:
        config = SessionConfig.model_validate({})
        assert config.market_id == "sim-market"
        assert config.start_price_e6 == 100_000_000
        assert config.model is PriceModelKind.RANDOM_WALK
        assert isinstance(config.params, RandomWalkParams)
        assert config.interval_ms == DEFAULT_INTERVAL_MS
        assert config.seed is None
        assert config.bots == []

    def test_camel_case_aliases(self) -> None:
        config = SessionConfig.model_validate(
            {"marketId": "m-1", "startPriceE6": 150_000_000, "intervalMs": 500, "maxDurationMs": 10_000}
        )
        assert config.market_id == "m-1"
        assert config.start_price_e6 == 150_000_000
        assert config.interval_ms == 500
        assert config.max_duration_ms == 10_000

    def test_snake_case_accepted(self) -> None:
        assert SessionConfig.model_validate({"market_id": "m-2"}).market_id == "m-2"

    def test_legacy_params_for_model(self) -> None:
        config = SessionConfig.model_validate({"model": "mean-revert", "params": {"revertSpeed": 0.5}})
        assert config.model is PriceModelKind.MEAN_REVERT
        assert isinstance(config.params, MeanRevertParams)
        assert config.params.revert_speed == 0.5

    @pytest.mark.parametrize(
        "raw",
        [
            {"startPriceE6": 0},
            {"startPriceE6": -5},
            {"intervalMs": 99},
            {"model": "brownian"},
            {"params": {"crashMagnitude": 0.3}},
            {"unknownKey": 1},
            {"maxDurationMs": 0},
        ],
    )
    def test_rejects_invalid(self, raw: dict[str, object]) -> None:
        with pytest.raises(ValidationError):
            SessionConfig.model_validate(raw)

    def test_bots_parsed(self) -> None:
        config = SessionConfig.model_validate({"bots": [_bot("mm-1"), _bot("mm-2")]})
        assert [b.name for b in config.bots] == ["mm-1", "mm-2"]
        assert config.bots[0].type is BotType.MARKET_MAKER

    def test_duplicate_bot_names_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Duplicate bot name"):
            SessionConfig.model_validate({"bots": [_bot("mm"), _bot("mm")]})

    def test_bot_for_other_market_rejected(self) -> None:
        with pytest.raises(ValidationError, match="targets other"):
            SessionConfig.model_validate({"bots": [_bot("mm", market="other")]})

    def test_max_updates(self) -> None:
        assert SessionConfig.model_validate({}).max_updates is None
        assert SessionConfig.model_validate({"intervalMs": 100, "maxDurationMs": 350}).max_updates == 3
        assert SessionConfig.model_validate({"intervalMs": 1_000, "maxDurationMs": 10}).max_updates == 1

    def test_frozen(self) -> None:
        config = SessionConfig.model_validate({})
        with pytest.raises(ValidationError):
            config.seed = 1  # type: ignore[misc]


class TestSessionCredentials:
    def test_authority_is_secret(self) -> None:
        creds = SessionCredentials(market_id="m-1", oracle_authority="authority-bytes")  # type: ignore[arg-type]
        assert creds.oracle_authority.get_secret_value() == "authority-bytes"
        assert "authority-bytes" not in repr(creds)
        assert b"authority-bytes" not in creds.to_json()

    def test_market_required(self) -> None:
        with pytest.raises(ValidationError):
            SessionCredentials(market_id="", oracle_authority="x")  # type: ignore[arg-type]


class TestSnapshots:
    def test_idle_snapshot(self) -> None:
        snapshot = SessionSnapshot()
        assert snapshot.schema_version == SCHEMA_VERSION
        assert snapshot.running is False
        assert snapshot.session_id is None

    def test_to_json_sorted(self) -> None:
        data = SessionSnapshot(session_id="sim_a").to_json()
        keys = list(orjson.loads(data).keys())
        assert keys == sorted(keys)

    def test_price_change_pct(self) -> None:
        engine = PriceEngineState(
            session_id="sim_a",
            market_id="m-1",
            running=False,
            current_price_e6=90_000_000,
            start_price_e6=100_000_000,
            high_price_e6=100_000_000,
            low_price_e6=90_000_000,
            model=PriceModelKind.RANDOM_WALK,
            base_model=PriceModelKind.RANDOM_WALK,
            interval_ms=1_000,
            updates_count=3,
        )
        final = FinalSessionSnapshot(
            session_id="sim_a",
            market_id="m-1",
            stopped_at=5_000,
            elapsed_ms=3_000,
            total_updates=3,
            start_price_e6=100_000_000,
            end_price_e6=90_000_000,
            high_price_e6=100_000_000,
            low_price_e6=90_000_000,
            engine=engine,
        )
        assert final.price_change_pct == pytest.approx(-10.0)


class TestFixedPoint:
    def test_conversions(self) -> None:
        assert e6_to_float(101_500_000) == 101.5
        assert float_to_e6(101.5) == 101_500_000

    def test_new_session_id(self) -> None:
        session_id = new_session_id()
        assert session_id.startswith("sim_")
        assert len(session_id) == 16
        assert new_session_id() != session_id


class TestBotConfigInSession:
    def test_bot_config_instances_accepted(self) -> None:
        bot = BotConfig.model_validate(_bot("mm"))
        config = SessionConfig(bots=[bot])  # type: ignore[call-arg]
        assert config.bots == [bot]
