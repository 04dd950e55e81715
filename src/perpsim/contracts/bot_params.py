"""Per-archetype agent parameters.

Each archetype has a closed params model; unknown keys are rejected and
legacy camelCase keys are accepted, as for price model params.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from perpsim.contracts.model_params import normalize_keys
from perpsim.contracts.types import BotType
from perpsim.errors import InvalidConfigError


class _BotParamsBase(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class MarketMakerParams(_BotParamsBase):
    """Quote both sides, keep net position near flat."""

    spread_bps: int = Field(default=50, ge=0, description="Take-profit target in bps of entry")
    rebalance_threshold: float = Field(
        default=0.3,
        gt=0,
        le=1,
        description="|position| / max above which the maker halves its position",
    )
    reduce_bias: float = Field(default=0.7, ge=0, le=1, description="Probability of trading toward flat")
    min_size_frac: float = Field(default=0.1, gt=0, le=1)
    max_size_frac: float = Field(default=0.3, gt=0, le=1)


class TrendFollowerParams(_BotParamsBase):
    """Follow the trailing least-squares slope."""

    window: int = Field(default=10, ge=2, le=100)
    sensitivity: float = Field(default=20.0, gt=0, description="Size multiplier on momentum")
    min_momentum: float = Field(default=0.001, ge=0, description="Momentum below which no trade is made")
    stop_loss_bps: int = Field(default=200, gt=0)
    take_profit_bps: int = Field(default=500, gt=0)


class DegenParams(_BotParamsBase):
    """Random leveraged entries with short holds."""

    max_leverage: int = Field(default=10, ge=1)
    double_down_chance: float = Field(default=0.2, ge=0, le=1)
    entry_chance: float = Field(default=0.4, ge=0, le=1)
    loss_trigger_bps: int = Field(default=100, ge=0, description="Unrealized loss that allows doubling down")
    min_hold_ticks: int = Field(default=1, ge=1)
    max_hold_ticks: int = Field(default=5, ge=1)


class LpParams(_BotParamsBase):
    """Manage pool liquidity toward a target size."""

    deposit_size: int = Field(default=1_000_000_000, gt=0)
    withdraw_threshold: float = Field(default=0.1, ge=0, le=1, description="Utilization below which to withdraw")
    target_lp_size: int = Field(default=10_000_000_000, gt=0)
    withdraw_fraction: float = Field(default=0.2, gt=0, le=1)
    boost_fraction: float = Field(default=0.5, gt=0)
    volatility_threshold: float = Field(default=0.02, ge=0, description="Coefficient of variation trigger")
    volatility_window: int = Field(default=20, ge=2)
    min_volatility_samples: int = Field(default=10, ge=2)


class WhaleParams(_BotParamsBase):
    """Large accumulate/dump cycles, usually on external trigger."""

    only_on_trigger: bool = True
    manipulation_mode: bool = False
    idle_action_chance: float = Field(default=0.05, ge=0, le=1)


class LiquidationHunterParams(_BotParamsBase):
    """Close undercollateralized accounts."""

    maintenance_margin_bps: int = Field(default=500, gt=0)
    equity_capital_ratio: float = Field(default=0.5, gt=0, le=1)
    cooldown_ticks: int = Field(default=5, ge=0)


BotParams = (
    MarketMakerParams
    | TrendFollowerParams
    | DegenParams
    | LpParams
    | WhaleParams
    | LiquidationHunterParams
)

BOT_PARAMS_BY_TYPE: dict[BotType, type[_BotParamsBase]] = {
    BotType.MARKET_MAKER: MarketMakerParams,
    BotType.TREND_FOLLOWER: TrendFollowerParams,
    BotType.DEGEN: DegenParams,
    BotType.LP_PROVIDER: LpParams,
    BotType.WHALE: WhaleParams,
    BotType.LIQUIDATION_HUNTER: LiquidationHunterParams,
}


def parse_bot_type(value: Any) -> BotType:
    """Parse a bot type name, raising InvalidConfigError for unknown types."""
    if isinstance(value, BotType):
        return value
    try:
        return BotType(value)
    except ValueError:
        valid = ", ".join(t.value for t in BotType)
        raise InvalidConfigError(f"Unknown bot type: {value!r} (valid: {valid})", field="type") from None


def parse_bot_params(bot_type: Any, raw: Mapping[str, Any] | BaseModel | None = None) -> BotParams:
    """Validate raw params for an archetype.

    Raises:
        InvalidConfigError: Unknown type, unknown key, or out-of-range value.
    """
    kind = parse_bot_type(bot_type)
    cls = BOT_PARAMS_BY_TYPE[kind]
    if isinstance(raw, cls):
        return raw  # type: ignore[return-value]
    if isinstance(raw, BaseModel):
        raise InvalidConfigError(
            f"{type(raw).__name__} given for bot type {kind.value!r}",
            field="params",
        )
    try:
        return cls.model_validate(normalize_keys(cls, raw or {}))  # type: ignore[return-value]
    except ValidationError as exc:
        raise InvalidConfigError(
            f"Invalid {kind.value} params: {exc.errors(include_url=False)}",
            field="params",
        ) from exc
