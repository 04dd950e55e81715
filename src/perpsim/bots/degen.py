"""
Degen agent: random leveraged entries, short random holds, doubles down
on losing positions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from perpsim.bots.base import TradingBot, sign
from perpsim.contracts.types import BotType

if TYPE_CHECKING:
    from collections.abc import Sequence

    from perpsim.contracts.bot_params import DegenParams
    from perpsim.contracts.bots import TradeIntent


class DegenBot(TradingBot):
    """Aggressive random trader."""

    bot_type = BotType.DEGEN

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._hold_ticks_left = 0
        self._leverage = 0

    @property
    def params(self) -> DegenParams:
        return self.config.params  # type: ignore[return-value]

    @property
    def position_cap(self) -> int:
        return self.config.max_position_size * self.params.max_leverage

    def decide(self, price_e6: int, history: Sequence[int]) -> TradeIntent | None:
        p = self.params
        pos = self.position_size

        if pos != 0:
            self._hold_ticks_left -= 1
            if self._hold_ticks_left <= 0:
                self._leverage = 0
                return self._close_position(price_e6)

            if self.pnl_bps(price_e6) <= -p.loss_trigger_bps and self._rng.random() < p.double_down_chance:
                add = min(abs(pos), self.position_cap - abs(pos))
                return self._intent(sign(pos) * add, price_e6)
            return None

        if self._rng.random() >= p.entry_chance:
            return None

        self._leverage = self._rng.randint(1, p.max_leverage)
        direction = 1 if self._rng.random() < 0.5 else -1
        base = max(1, int(self.config.max_position_size * self._rng.uniform(0.2, 1.0)))
        self._hold_ticks_left = self._rng.randint(p.min_hold_ticks, max(p.min_hold_ticks, p.max_hold_ticks))
        return self._intent(direction * base * self._leverage, price_e6)

    def details(self) -> dict[str, Any]:
        return {"leverage": self._leverage, "hold_ticks_left": self._hold_ticks_left}
