"""
Base agent.

Every archetype implements decide(price_e6, history) -> TradeIntent | None.
The fleet calls on_price() instead, which:
- self-throttles by trade_interval_ms using the sample timestamp
- calls decide()
- applies position bookkeeping as soon as an intent is emitted

Bookkeeping is never rolled back: the simulation is price-taking, so the
agent already assumed the fill when it emitted the intent. Executor outcomes
only touch the executed/failed counters.
"""

from __future__ import annotations

import hashlib
import logging
import random
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar

from perpsim.contracts.bots import BotState, TradeIntent
from perpsim.contracts.types import BotType, IntentKind
from perpsim.errors import InvalidConfigError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from perpsim.bots.market_state import MarketStateReader
    from perpsim.contracts.bots import BotConfig

logger = logging.getLogger(__name__)

# Account slots: 0 = market admin, 1 = LP; agents start at 2
ACCOUNT_INDEX_ADMIN = 0
ACCOUNT_INDEX_LP = 1
FIRST_BOT_ACCOUNT_INDEX = 2


def seeded_rng(name: str) -> random.Random:
    """Deterministic generator keyed by an agent name."""
    digest = hashlib.sha256(name.encode("utf-8")).digest()
    return random.Random(int.from_bytes(digest[:8], "big"))


def sign(value: float) -> int:
    return (value > 0) - (value < 0)


class TradingBot(ABC):
    """Base class for all agent archetypes."""

    bot_type: ClassVar[BotType]

    def __init__(
        self,
        config: BotConfig,
        account_index: int,
        *,
        market_state: MarketStateReader | None = None,
        rng: random.Random | None = None,
        counterparty_index: int = ACCOUNT_INDEX_LP,
    ) -> None:
        if config.type != self.bot_type:
            raise InvalidConfigError(
                f"{type(self).__name__} cannot run a {config.type.value} config",
                field="type",
            )
        self.config = config
        self.account_index = account_index
        self.counterparty_index = counterparty_index
        self._market_state = market_state
        self._rng = rng or seeded_rng(config.name)

        self.running = False
        self.position_size = 0
        self.entry_price_e6 = 0
        self.pnl_estimate = 0.0
        self.trades_executed = 0
        self.trades_failed = 0
        self.intents_emitted = 0
        self.last_trade_at: int | None = None

        self._session_id = "unbound"
        self._last_decision_at: int | None = None
        self._last_price_e6: int | None = None
        self._now_ms = 0
        self._intent_seq = 0

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def market_id(self) -> str:
        return self.config.target_market_id

    @property
    def last_price_e6(self) -> int | None:
        return self._last_price_e6

    def bind_session(self, session_id: str) -> None:
        """Tag subsequent intents with a session id."""
        self._session_id = session_id

    def start(self) -> None:
        self.running = True

    def stop(self) -> None:
        self.running = False

    def prime(self, price_e6: int) -> None:
        """Seed the last price (and PnL) for a bot joining a running fleet."""
        self._last_price_e6 = price_e6
        self._update_pnl(price_e6)

    # ---------------------------------------------------------------- update

    def on_price(self, price_e6: int, history: Sequence[int], now_ms: int) -> TradeIntent | None:
        """
        Fleet update hook, called once per validated tick.

        Args:
            price_e6: Current price (validated > 0 by the fleet).
            history: Rolling price history, oldest first, including price_e6.
            now_ms: Sample timestamp.

        Returns:
            The emitted intent, if any.
        """
        if not self.running:
            return None

        self._last_price_e6 = price_e6
        self._now_ms = now_ms
        self._update_pnl(price_e6)

        interval = self.config.trade_interval_ms
        if interval > 0 and self._last_decision_at is not None and now_ms - self._last_decision_at < interval:
            return None
        self._last_decision_at = now_ms

        intent = self.decide(price_e6, history)
        if intent is None:
            return None

        self.intents_emitted += 1
        self.apply_intent(intent)
        return intent

    @abstractmethod
    def decide(self, price_e6: int, history: Sequence[int]) -> TradeIntent | None:
        """Return 0 or 1 intents for this tick. Must not raise on ordinary input."""
        ...

    def apply_intent(self, intent: TradeIntent) -> None:
        """Assume the fill of an emitted intent."""
        if intent.kind == IntentKind.TRADE:
            self._apply_position_change(intent.size, intent.price_e6)

    def record_result(self, ok: bool, at_ms: int) -> None:
        """Record the executor outcome of an earlier intent."""
        if ok:
            self.trades_executed += 1
            self.last_trade_at = at_ms
        else:
            self.trades_failed += 1

    # ----------------------------------------------------------- bookkeeping

    def _apply_position_change(self, size: int, price_e6: int) -> None:
        old = self.position_size
        new = old + size

        if new == 0:
            self.entry_price_e6 = 0
        elif old == 0 or sign(old) == sign(size):
            # Adding: weighted average entry
            self.entry_price_e6 = round((self.entry_price_e6 * abs(old) + price_e6 * abs(size)) / abs(new))
        elif sign(new) != sign(old):
            # Flipped through zero: the remainder was opened at this price
            self.entry_price_e6 = price_e6

        self.position_size = new
        self._update_pnl(price_e6)

    def _update_pnl(self, price_e6: int) -> None:
        if self.position_size == 0 or self.entry_price_e6 == 0:
            self.pnl_estimate = 0.0
            return
        self.pnl_estimate = (price_e6 - self.entry_price_e6) * self.position_size / 1_000_000

    def pnl_bps(self, price_e6: int) -> float:
        """Unrealized PnL in bps of entry, signed by position direction."""
        if self.position_size == 0 or self.entry_price_e6 == 0:
            return 0.0
        move = (price_e6 - self.entry_price_e6) / self.entry_price_e6 * 10_000
        return move * sign(self.position_size)

    def _intent(
        self,
        size: int,
        price_e6: int,
        *,
        kind: IntentKind = IntentKind.TRADE,
        account_index: int | None = None,
        counterparty_index: int | None = None,
    ) -> TradeIntent | None:
        """Build an intent; zero size means no intent."""
        if size == 0:
            return None
        self._intent_seq += 1
        return TradeIntent(
            session_id=self._session_id,
            intent_id=f"{self.name}-{self._intent_seq}",
            target_market_id=self.market_id,
            account_index=self.account_index if account_index is None else account_index,
            counterparty_index=self.counterparty_index if counterparty_index is None else counterparty_index,
            size=size,
            kind=kind,
            originating_agent_name=self.name,
            price_e6=price_e6,
            created_at_ms=self._now_ms,
        )

    def _close_position(self, price_e6: int) -> TradeIntent | None:
        return self._intent(-self.position_size, price_e6)

    # -------------------------------------------------------------- snapshot

    def details(self) -> dict[str, Any]:
        """Archetype-specific state for snapshots."""
        return {}

    def get_state(self) -> BotState:
        return BotState(
            name=self.name,
            type=self.bot_type,
            running=self.running,
            account_index=self.account_index,
            position_size=self.position_size,
            entry_price_e6=self.entry_price_e6,
            pnl_estimate=self.pnl_estimate,
            trades_executed=self.trades_executed,
            trades_failed=self.trades_failed,
            intents_emitted=self.intents_emitted,
            last_trade_at=self.last_trade_at,
            details=self.details(),
        )
