"""Trading agents: archetype strategies, fleet coordination, executors."""

from perpsim.bots.base import (
    ACCOUNT_INDEX_ADMIN,
    ACCOUNT_INDEX_LP,
    FIRST_BOT_ACCOUNT_INDEX,
    TradingBot,
    seeded_rng,
)
from perpsim.bots.degen import DegenBot
from perpsim.bots.executor import (
    BoundedRetryExecutor,
    SimulatedExecutor,
    TradeExecutor,
    WebhookTradeExecutor,
)
from perpsim.bots.fleet import BOT_CLASSES, BotFleet, validate_price
from perpsim.bots.liquidation import LiquidationBot
from perpsim.bots.lp import LPBot
from perpsim.bots.market_maker import MarketMakerBot
from perpsim.bots.market_state import MarketStateReader, SimulatedMarketState, StaticMarketState
from perpsim.bots.presets import default_fleet, load_fleet_config, parse_fleet_config
from perpsim.bots.trend_follower import TrendFollowerBot
from perpsim.bots.whale import WhaleBot

__all__ = [
    "ACCOUNT_INDEX_ADMIN",
    "ACCOUNT_INDEX_LP",
    "BOT_CLASSES",
    "FIRST_BOT_ACCOUNT_INDEX",
    "BotFleet",
    "BoundedRetryExecutor",
    "DegenBot",
    "LPBot",
    "LiquidationBot",
    "MarketMakerBot",
    "MarketStateReader",
    "SimulatedExecutor",
    "SimulatedMarketState",
    "StaticMarketState",
    "TradeExecutor",
    "TradingBot",
    "TrendFollowerBot",
    "WebhookTradeExecutor",
    "WhaleBot",
    "default_fleet",
    "load_fleet_config",
    "parse_fleet_config",
    "seeded_rng",
    "validate_price",
]
