"""
Tests for fleet presets and YAML loading.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from perpsim.bots.fleet import BotFleet
from perpsim.bots.presets import default_fleet, load_fleet_config, parse_fleet_config
from perpsim.contracts.bot_params import MarketMakerParams
from perpsim.contracts.types import BotType
from perpsim.errors import InvalidConfigError

FLEET_YAML = """\
bots:
  - type: market-maker
    name: mm-1
    maxPositionSize: 1000
    tradeIntervalMs: 1500
    params:
      spreadBps: 40
  - type: whale
    name: whale-1
    maxPositionSize: 5000
"""


class TestDefaultFleet:
    def test_one_of_each_archetype(self) -> None:
        configs = default_fleet("m-1")
        assert {c.type for c in configs} == set(BotType)
        assert len({c.name for c in configs}) == len(configs)
        assert all(c.target_market_id == "m-1" for c in configs)

    def test_builds_a_fleet(self) -> None:
        fleet = BotFleet("m-1", default_fleet("m-1"))
        assert len(fleet.bots) == 6


class TestLoadFleetConfig:
    """YAML presets."""

    def test_load_with_market_fill_in(self, tmp_path: Path) -> None:
        path = tmp_path / "fleet.yaml"
        path.write_text(FLEET_YAML, encoding="utf-8")

        configs = load_fleet_config(path, market_id="m-1")

        assert [c.name for c in configs] == ["mm-1", "whale-1"]
        assert all(c.target_market_id == "m-1" for c in configs)
        assert configs[0].trade_interval_ms == 1_500
        assert isinstance(configs[0].params, MarketMakerParams)
        assert configs[0].params.spread_bps == 40

    def test_explicit_market_kept(self) -> None:
        data = {"bots": [{"type": "degen", "name": "d", "targetMarketId": "m-2", "maxPositionSize": 10}]}
        configs = parse_fleet_config(data, market_id="m-1")
        assert configs[0].target_market_id == "m-2"

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.yaml"
        path.write_text("bots: [unclosed", encoding="utf-8")
        with pytest.raises(InvalidConfigError):
            load_fleet_config(path)

    @pytest.mark.parametrize("data", [None, [], {"bots": "mm"}, {"robots": []}])
    def test_bad_structure(self, data: object) -> None:
        with pytest.raises(InvalidConfigError) as exc_info:
            parse_fleet_config(data)
        assert exc_info.value.field == "bots"

    def test_bad_entry_names_index(self) -> None:
        data = {"bots": [{"type": "degen", "name": "d", "maxPositionSize": 0}]}
        with pytest.raises(InvalidConfigError) as exc_info:
            parse_fleet_config(data, market_id="m-1")
        assert exc_info.value.field == "bots[0]"

    def test_non_mapping_entry(self) -> None:
        with pytest.raises(InvalidConfigError) as exc_info:
            parse_fleet_config({"bots": ["mm-1"]})
        assert exc_info.value.field == "bots[0]"

    def test_duplicate_names(self) -> None:
        entry = {"type": "degen", "name": "d", "maxPositionSize": 10}
        with pytest.raises(InvalidConfigError) as exc_info:
            parse_fleet_config({"bots": [entry, dict(entry)]}, market_id="m-1")
        assert "d" in str(exc_info.value)
