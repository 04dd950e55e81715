"""Simulation contract enums.

All enums are strict string enums; values are the wire names used by the
command surface and stored session records.
"""

from enum import Enum


class PriceModelKind(str, Enum):
    """Price generation model."""

    RANDOM_WALK = "random-walk"
    MEAN_REVERT = "mean-revert"
    TRENDING = "trending"
    CRASH = "crash"
    SQUEEZE = "squeeze"
    CUSTOM = "custom"


class BotType(str, Enum):
    """Agent behavioral archetype."""

    MARKET_MAKER = "market-maker"
    TREND_FOLLOWER = "trend-follower"
    DEGEN = "degen"
    LP_PROVIDER = "lp-provider"
    WHALE = "whale"
    LIQUIDATION_HUNTER = "liquidation-hunter"


class IntentKind(str, Enum):
    """What the executor is asked to do with an intent."""

    TRADE = "TRADE"
    LP_DEPOSIT = "LP_DEPOSIT"
    LP_WITHDRAW = "LP_WITHDRAW"
    LIQUIDATION = "LIQUIDATION"


class WhalePhase(str, Enum):
    """Whale state machine phase."""

    IDLE = "idle"
    ACCUMULATE = "accumulate"
    DUMP = "dump"


class WhaleAction(str, Enum):
    """External trigger accepted by whale agents."""

    BUY = "buy"
    SELL = "sell"
    MANIPULATE = "manipulate"
