"""
Agent fleet.

Owns the agents of one market: fans each validated price out to every
agent, fans emitted intents in, and hands each intent to the injected
executor as its own task so a slow submission never delays the tick.

Executor results for a stopped fleet, or for a session the fleet has since
been rebound away from, are dropped.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections import deque
from typing import TYPE_CHECKING

from perpsim.bots.base import ACCOUNT_INDEX_LP, FIRST_BOT_ACCOUNT_INDEX, TradingBot
from perpsim.bots.degen import DegenBot
from perpsim.bots.liquidation import LiquidationBot
from perpsim.bots.lp import LPBot
from perpsim.bots.market_maker import MarketMakerBot
from perpsim.bots.market_state import SimulatedMarketState
from perpsim.bots.trend_follower import TrendFollowerBot
from perpsim.bots.whale import WhaleBot
from perpsim.contracts.bots import AccountHealth, BotConfig, FleetState
from perpsim.contracts.types import BotType, WhaleAction
from perpsim.errors import ExecutorFailureError, InvalidConfigError, InvalidPriceSampleError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Mapping
    from typing import Any

    from perpsim.bots.market_state import MarketStateReader
    from perpsim.contracts.bots import TradeIntent
    from perpsim.contracts.price import PriceSample

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 100

BOT_CLASSES: dict[BotType, type[TradingBot]] = {
    BotType.MARKET_MAKER: MarketMakerBot,
    BotType.TREND_FOLLOWER: TrendFollowerBot,
    BotType.DEGEN: DegenBot,
    BotType.LP_PROVIDER: LPBot,
    BotType.WHALE: WhaleBot,
    BotType.LIQUIDATION_HUNTER: LiquidationBot,
}


def validate_price(price_e6: object) -> int:
    """
    Check a price sample before it reaches any agent.

    Raises:
        InvalidPriceSampleError: Not a positive finite integer price.
    """
    if isinstance(price_e6, bool) or not isinstance(price_e6, (int, float)):
        raise InvalidPriceSampleError(price_e6)
    if isinstance(price_e6, float):
        if not math.isfinite(price_e6) or not price_e6.is_integer():
            raise InvalidPriceSampleError(price_e6)
        price_e6 = int(price_e6)
    if price_e6 <= 0:
        raise InvalidPriceSampleError(price_e6)
    return price_e6


class BotFleet:
    """Collection of agents trading one market."""

    def __init__(
        self,
        market_id: str,
        bots: Iterable[BotConfig | Mapping[str, Any]] = (),
        executor: Callable[[TradeIntent], Awaitable[bool]] | None = None,
        *,
        session_id: str = "unbound",
        market_state: MarketStateReader | None = None,
        history_size: int = DEFAULT_HISTORY_SIZE,
        time_fn: Callable[[], int] | None = None,
    ) -> None:
        """
        Initialize the fleet (stopped).

        Args:
            market_id: Market every agent must target.
            bots: Agent configs (validated BotConfig or raw mappings).
            executor: Async callback resolving True when an intent was accepted.
            session_id: Session the fleet acts for.
            market_state: Reader for utilization/account health; defaults to a
                seeded proxy built from this fleet's own agents.
            history_size: Rolling price history bound.
            time_fn: Millisecond clock, injectable for tests.

        Raises:
            InvalidConfigError: Bad config, duplicate name or wrong market.
        """
        if history_size <= 0:
            raise InvalidConfigError(f"history_size must be positive, got {history_size}", field="history_size")

        self._market_id = market_id
        self._executor = executor
        self._session_id = session_id
        self._time_fn = time_fn
        self._market_state: MarketStateReader = market_state or SimulatedMarketState(
            seed=market_id, accounts_fn=self.account_views
        )

        self._bots: dict[str, TradingBot] = {}
        self._next_account_index = FIRST_BOT_ACCOUNT_INDEX
        self._history: deque[int] = deque(maxlen=history_size)

        self._running = False
        self._discarded = False
        self._started_at: int | None = None
        self._in_flight: set[asyncio.Task[None]] = set()

        self._total_executed = 0
        self._total_failed = 0
        self._samples_dropped = 0
        self._late_results_dropped = 0

        for config in bots:
            self._create_bot(config)

    def _now_ms(self) -> int:
        if self._time_fn is not None:
            return self._time_fn()
        return int(time.time() * 1000)

    @property
    def market_id(self) -> str:
        return self._market_id

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def running(self) -> bool:
        return self._running

    @property
    def bots(self) -> list[TradingBot]:
        return list(self._bots.values())

    @property
    def history(self) -> list[int]:
        return list(self._history)

    @property
    def current_price_e6(self) -> int | None:
        return self._history[-1] if self._history else None

    # ------------------------------------------------------------ membership

    def _create_bot(self, config: BotConfig | Mapping[str, Any]) -> TradingBot:
        if not isinstance(config, BotConfig):
            try:
                config = BotConfig.model_validate(config)
            except ValueError as e:
                raise InvalidConfigError(f"Invalid bot config: {e}", field="bots") from e

        if config.target_market_id != self._market_id:
            raise InvalidConfigError(
                f"Bot {config.name} targets {config.target_market_id}, fleet market is {self._market_id}",
                field="target_market_id",
            )
        if config.name in self._bots:
            raise InvalidConfigError(f"Duplicate bot name: {config.name}", field="name")

        if config.type == BotType.LP_PROVIDER:
            holder = next((b.name for b in self._bots.values() if b.account_index == ACCOUNT_INDEX_LP), None)
            if holder is not None:
                raise InvalidConfigError(
                    f"Bot {config.name} needs the LP account already held by {holder}",
                    field="type",
                )
            account_index = ACCOUNT_INDEX_LP
        else:
            account_index = self._next_account_index
            self._next_account_index += 1

        bot = BOT_CLASSES[config.type](config, account_index, market_state=self._market_state)
        bot.bind_session(self._session_id)
        self._bots[config.name] = bot
        return bot

    def add_bot(self, config: BotConfig | Mapping[str, Any]) -> TradingBot:
        """
        Add an agent; a running fleet primes it with the current price and starts it.

        Raises:
            InvalidConfigError: Bad config, duplicate name or wrong market.
        """
        bot = self._create_bot(config)
        if self._running:
            if self._history:
                bot.prime(self._history[-1])
            bot.start()
        logger.info(
            "Bot added",
            extra={"agent": bot.name, "bot_type": bot.bot_type.value, "account_index": bot.account_index},
        )
        return bot

    def remove_bot(self, name: str) -> bool:
        """Stop and remove an agent. Returns False if no such agent."""
        bot = self._bots.pop(name, None)
        if bot is None:
            return False
        bot.stop()
        logger.info("Bot removed", extra={"agent": name})
        return True

    def get_bot(self, name: str) -> TradingBot | None:
        return self._bots.get(name)

    def get_bots_by_type(self, bot_type: BotType | str) -> list[TradingBot]:
        kind = BotType(bot_type)
        return [b for b in self._bots.values() if b.bot_type == kind]

    def trigger_whales(self, action: WhaleAction | str) -> int:
        """Trigger every whale. Returns the number triggered."""
        whales = [b for b in self._bots.values() if isinstance(b, WhaleBot)]
        for whale in whales:
            whale.trigger(action)
        return len(whales)

    # ------------------------------------------------------------- lifecycle

    def bind_session(self, session_id: str) -> None:
        """Act for a (new) session; results tagged with the old id become stale."""
        self._session_id = session_id
        self._discarded = False
        for bot in self._bots.values():
            bot.bind_session(session_id)

    def start(self) -> None:
        self._running = True
        self._discarded = False
        self._started_at = self._now_ms()
        for bot in self._bots.values():
            bot.start()
        logger.info(
            "Fleet started",
            extra={"session_id": self._session_id, "market_id": self._market_id, "bots": len(self._bots)},
        )

    def stop(self) -> None:
        """Stop every agent; in-flight executions may finish but are not applied."""
        self._running = False
        self._discarded = True
        for bot in self._bots.values():
            bot.stop()
        logger.info(
            "Fleet stopped",
            extra={
                "session_id": self._session_id,
                "trades_executed": self._total_executed,
                "trades_failed": self._total_failed,
                "in_flight": len(self._in_flight),
            },
        )

    async def drain(self) -> None:
        """Wait for in-flight executions to settle."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    # ---------------------------------------------------------------- prices

    def on_price(self, sample: PriceSample) -> None:
        """Engine subscriber callback."""
        if sample.session_id != self._session_id:
            logger.debug(
                "Ignoring sample from another session",
                extra={"session_id": self._session_id, "sample_session_id": sample.session_id},
            )
            return
        self.update_price(sample.price_e6, sample.timestamp_ms)

    def update_price(self, price_e6: Any, timestamp_ms: int | None = None) -> list[TradeIntent]:
        """
        Validate a price, relay it to every agent and dispatch their intents.

        Invalid prices are dropped with a warning and never reach agents.

        Returns:
            Intents emitted on this tick.
        """
        try:
            price = validate_price(price_e6)
        except InvalidPriceSampleError as e:
            self._samples_dropped += 1
            logger.warning(
                "Invalid price sample dropped",
                extra={"session_id": self._session_id, "code": e.code, "price": repr(e.price)},
            )
            return []

        self._history.append(price)
        now_ms = timestamp_ms if timestamp_ms is not None else self._now_ms()
        history = list(self._history)

        intents: list[TradeIntent] = []
        for bot in list(self._bots.values()):
            intent = bot.on_price(price, history, now_ms)
            if intent is None:
                continue
            intents.append(intent)
            self._dispatch(bot, intent)
        return intents

    # ------------------------------------------------------------- execution

    def _dispatch(self, bot: TradingBot, intent: TradeIntent) -> None:
        executor = self._executor
        if executor is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                "No running event loop, intent not executed",
                extra={"agent": bot.name, "intent_id": intent.intent_id},
            )
            return
        task = loop.create_task(self._execute(executor, bot.name, intent, self._session_id))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _execute(
        self,
        executor: Callable[[TradeIntent], Awaitable[bool]],
        agent: str,
        intent: TradeIntent,
        session_id: str,
    ) -> None:
        reason = "rejected"
        try:
            ok = bool(await executor(intent))
        except Exception as e:
            ok = False
            reason = f"{type(e).__name__}: {e}"

        if self._discarded or session_id != self._session_id:
            self._late_results_dropped += 1
            logger.info(
                "Dropping executor result for stale session",
                extra={"agent": agent, "intent_id": intent.intent_id, "session_id": session_id, "ok": ok},
            )
            return

        bot = self._bots.get(agent)
        if bot is None:
            return

        bot.record_result(ok, self._now_ms())
        if ok:
            self._total_executed += 1
            return

        self._total_failed += 1
        err = ExecutorFailureError(agent, intent.intent_id, reason)
        logger.warning(
            "Trade intent failed: %s",
            err,
            extra={"agent": agent, "intent_id": intent.intent_id, "code": err.code, "reason": reason},
        )

    # ----------------------------------------------------------------- state

    def account_views(self) -> list[AccountHealth]:
        """Agents' positions as market accounts (feeds the simulated reader)."""
        return [
            AccountHealth(
                account_index=b.account_index,
                position_size=b.position_size,
                entry_price_e6=b.entry_price_e6,
                capital=float(b.config.capital_allocation),
                pnl=b.pnl_estimate,
            )
            for b in self._bots.values()
            if b.bot_type != BotType.LP_PROVIDER
        ]

    def get_state(self) -> FleetState:
        return FleetState(
            running=self._running,
            target_market_id=self._market_id,
            session_id=self._session_id,
            bots=[b.get_state() for b in self._bots.values()],
            total_trades_executed=self._total_executed,
            total_trades_failed=self._total_failed,
            in_flight=len(self._in_flight),
            samples_dropped=self._samples_dropped,
            late_results_dropped=self._late_results_dropped,
            last_price_e6=self.current_price_e6,
            started_at=self._started_at,
        )
