"""Simulation data contracts.

All contracts follow these invariants:
- Instances are immutable snapshots (frozen)
- No extra fields allowed (extra='forbid')
- Prices are fixed-point integers with 6 implied decimals (``*_e6``)
- Session-scoped contracts carry schema_version and session_id
"""

from perpsim.contracts.base import PRICE_SCALE, SCHEMA_VERSION, e6_to_float, float_to_e6, new_session_id
from perpsim.contracts.bot_params import (
    BotParams,
    DegenParams,
    LiquidationHunterParams,
    LpParams,
    MarketMakerParams,
    TrendFollowerParams,
    WhaleParams,
    parse_bot_params,
)
from perpsim.contracts.bots import AccountHealth, BotConfig, BotState, FleetState, TradeIntent
from perpsim.contracts.model_params import (
    DEFAULT_MAX_PRICE_E6,
    DEFAULT_MIN_PRICE_E6,
    CrashParams,
    CustomParams,
    MeanRevertParams,
    ModelParams,
    RandomWalkParams,
    SqueezeParams,
    TrendingParams,
    merge_model_params,
    parse_model_params,
    with_bounds,
)
from perpsim.contracts.price import PriceEngineState, PriceSample, ScenarioDefinition
from perpsim.contracts.session import (
    DEFAULT_INTERVAL_MS,
    MIN_INTERVAL_MS,
    FinalSessionSnapshot,
    ScenarioEcho,
    SessionConfig,
    SessionCredentials,
    SessionSnapshot,
)
from perpsim.contracts.types import BotType, IntentKind, PriceModelKind, WhaleAction, WhalePhase

__all__ = [
    "DEFAULT_INTERVAL_MS",
    "DEFAULT_MAX_PRICE_E6",
    "DEFAULT_MIN_PRICE_E6",
    "MIN_INTERVAL_MS",
    "PRICE_SCALE",
    "SCHEMA_VERSION",
    "AccountHealth",
    "BotConfig",
    "BotParams",
    "BotState",
    "BotType",
    "CrashParams",
    "CustomParams",
    "DegenParams",
    "FinalSessionSnapshot",
    "FleetState",
    "IntentKind",
    "LiquidationHunterParams",
    "LpParams",
    "MarketMakerParams",
    "MeanRevertParams",
    "ModelParams",
    "PriceEngineState",
    "PriceModelKind",
    "PriceSample",
    "RandomWalkParams",
    "ScenarioDefinition",
    "ScenarioEcho",
    "SessionConfig",
    "SessionCredentials",
    "SessionSnapshot",
    "SqueezeParams",
    "TradeIntent",
    "TrendFollowerParams",
    "TrendingParams",
    "WhaleAction",
    "WhalePhase",
    "e6_to_float",
    "float_to_e6",
    "merge_model_params",
    "new_session_id",
    "parse_bot_params",
    "parse_model_params",
    "with_bounds",
]
