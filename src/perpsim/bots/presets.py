"""
Fleet presets.

load_fleet_config() reads a YAML file of the form:

    bots:
      - type: market-maker
        name: mm-1
        maxPositionSize: 1000
        params:
          spreadBps: 40

target_market_id may be omitted per bot and supplied by the caller.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from perpsim.contracts.bots import BotConfig
from perpsim.errors import InvalidConfigError


def default_fleet(market_id: str) -> list[BotConfig]:
    """One agent per archetype for a market."""
    return [
        BotConfig(
            type="market-maker",
            name="mm-1",
            target_market_id=market_id,
            trade_interval_ms=2_000,
            max_position_size=1_000,
            capital_allocation=10_000,
            params={"spread_bps": 50, "rebalance_threshold": 0.3},
        ),
        BotConfig(
            type="trend-follower",
            name="trend-1",
            target_market_id=market_id,
            trade_interval_ms=4_000,
            max_position_size=500,
            capital_allocation=5_000,
            params={},
        ),
        BotConfig(
            type="degen",
            name="degen-1",
            target_market_id=market_id,
            trade_interval_ms=3_000,
            max_position_size=200,
            capital_allocation=1_000,
            params={"max_leverage": 10},
        ),
        BotConfig(
            type="lp-provider",
            name="lp-1",
            target_market_id=market_id,
            trade_interval_ms=10_000,
            max_position_size=1_000,
            capital_allocation=0,
            params={},
        ),
        BotConfig(
            type="whale",
            name="whale-1",
            target_market_id=market_id,
            trade_interval_ms=2_000,
            max_position_size=5_000,
            capital_allocation=50_000,
            params={"only_on_trigger": True},
        ),
        BotConfig(
            type="liquidation-hunter",
            name="liq-1",
            target_market_id=market_id,
            trade_interval_ms=2_000,
            max_position_size=1_000,
            capital_allocation=10_000,
            params={},
        ),
    ]


def parse_fleet_config(data: Any, *, market_id: str | None = None) -> list[BotConfig]:
    """
    Validate a parsed fleet document.

    Raises:
        InvalidConfigError: Structure or any bot config is invalid.
    """
    if not isinstance(data, dict) or not isinstance(data.get("bots"), list):
        raise InvalidConfigError("Fleet config must be a mapping with a 'bots' list", field="bots")

    configs: list[BotConfig] = []
    for i, raw in enumerate(data["bots"]):
        if not isinstance(raw, dict):
            raise InvalidConfigError(f"bots[{i}] must be a mapping", field=f"bots[{i}]")
        entry = dict(raw)
        if market_id is not None and "targetMarketId" not in entry:
            entry.setdefault("target_market_id", market_id)
        entry.setdefault("params", {})
        try:
            configs.append(BotConfig.model_validate(entry))
        except ValidationError as e:
            raise InvalidConfigError(f"bots[{i}]: {e.errors(include_url=False)}", field=f"bots[{i}]") from e

    names = [c.name for c in configs]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise InvalidConfigError(f"Duplicate bot names: {duplicates}", field="bots")
    return configs


def load_fleet_config(path: str | Path, *, market_id: str | None = None) -> list[BotConfig]:
    """Load and validate a YAML fleet preset."""
    with Path(path).open(encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise InvalidConfigError(f"Invalid YAML in {path}: {e}", field="bots") from e
    return parse_fleet_config(data, market_id=market_id)
