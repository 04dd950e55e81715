"""Agent contracts.

BotConfig: caller-supplied agent configuration, immutable for the agent's life.
BotState: snapshot of an agent's bookkeeping.
TradeIntent: proposed position change, consumed once by the executor.
FleetState: fleet-level snapshot.
AccountHealth: market-state reader view of one account.
"""

from __future__ import annotations

from typing import Any

from pydantic import ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from perpsim.contracts.base import FrozenModel, SimContractBase
from perpsim.contracts.bot_params import BotParams, parse_bot_params
from perpsim.contracts.types import BotType, IntentKind


class BotConfig(FrozenModel):
    """Agent configuration."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        str_strip_whitespace=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    type: BotType = Field(description="Archetype")
    name: str = Field(min_length=1, description="Unique agent name within a fleet")
    target_market_id: str = Field(min_length=1)
    trade_interval_ms: int = Field(default=0, ge=0, description="Minimum time between decisions")
    max_position_size: int = Field(gt=0, description="Position cap (base units)")
    capital_allocation: int = Field(default=0, ge=0, description="Capital backing the agent (quote units)")
    params: BotParams

    @model_validator(mode="before")
    @classmethod
    def coerce_params(cls, data: Any) -> Any:
        """Resolve params into the archetype's params model."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        bot_type = data.get("type")
        raw = data.get("params")
        if bot_type is not None:
            data["params"] = parse_bot_params(bot_type, raw)
        return data


class BotState(FrozenModel):
    """Snapshot of one agent."""

    name: str
    type: BotType
    running: bool
    account_index: int = Field(ge=0)
    position_size: int = Field(description="Signed position; positive = long")
    entry_price_e6: int = Field(ge=0, description="Weighted average entry; 0 when flat")
    pnl_estimate: float = Field(description="Unrealized PnL estimate (quote units)")
    trades_executed: int = Field(default=0, ge=0)
    trades_failed: int = Field(default=0, ge=0)
    intents_emitted: int = Field(default=0, ge=0)
    last_trade_at: int | None = Field(default=None, description="Last executed trade (ms)")
    details: dict[str, Any] = Field(default_factory=dict, description="Archetype-specific state")


class TradeIntent(SimContractBase):
    """Proposed position change emitted by an agent."""

    intent_id: str = Field(min_length=1)
    target_market_id: str
    account_index: int = Field(ge=0, description="Account whose position changes")
    counterparty_index: int = Field(ge=0, description="Account on the other side")
    size: int = Field(description="Signed; positive increases long exposure")
    kind: IntentKind = IntentKind.TRADE
    originating_agent_name: str
    price_e6: int = Field(gt=0, description="Price the agent decided at")
    created_at_ms: int = Field(ge=0)

    @field_validator("size")
    @classmethod
    def validate_size(cls, v: int) -> int:
        """A zero-size intent is not an intent."""
        if v == 0:
            raise ValueError("size must be non-zero")
        return v

    @property
    def is_buy(self) -> bool:
        """Check if the intent increases long exposure."""
        return self.size > 0


class FleetState(FrozenModel):
    """Snapshot of a fleet."""

    running: bool
    target_market_id: str
    session_id: str | None = None
    bots: list[BotState] = Field(default_factory=list)
    total_trades_executed: int = 0
    total_trades_failed: int = 0
    in_flight: int = 0
    samples_dropped: int = 0
    late_results_dropped: int = 0
    last_price_e6: int | None = None
    started_at: int | None = None


class AccountHealth(FrozenModel):
    """One account as seen by the market-state reader."""

    account_index: int = Field(ge=0)
    position_size: int
    entry_price_e6: int = Field(default=0, ge=0)
    capital: float = Field(ge=0, description="Deposited capital (quote units)")
    pnl: float = Field(default=0.0, description="Unrealized PnL (quote units)")

    @property
    def equity(self) -> float:
        """Capital plus unrealized PnL."""
        return self.capital + self.pnl

    def notional(self, price_e6: int) -> float:
        """Absolute position notional at a price (quote units)."""
        return abs(self.position_size) * price_e6 / 1_000_000
