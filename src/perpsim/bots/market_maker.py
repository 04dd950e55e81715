"""
Market maker agent.

Keeps net position near flat:
- closes the whole position once |PnL| reaches the spread target
- halves the position once it drifts past rebalance_threshold * max
- otherwise quotes a small random side, biased toward reducing exposure
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from perpsim.bots.base import TradingBot, sign
from perpsim.contracts.types import BotType

if TYPE_CHECKING:
    from collections.abc import Sequence

    from perpsim.contracts.bot_params import MarketMakerParams
    from perpsim.contracts.bots import TradeIntent


class MarketMakerBot(TradingBot):
    """Flat-seeking liquidity taker on both sides."""

    bot_type = BotType.MARKET_MAKER

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._last_side = -1

    @property
    def params(self) -> MarketMakerParams:
        return self.config.params  # type: ignore[return-value]

    def decide(self, price_e6: int, history: Sequence[int]) -> TradeIntent | None:
        if len(history) < 2:
            return None

        p = self.params
        max_size = self.config.max_position_size
        pos = self.position_size

        if pos != 0 and abs(self.pnl_bps(price_e6)) >= p.spread_bps:
            return self._close_position(price_e6)

        if abs(pos) / max_size > p.rebalance_threshold:
            return self._intent(-sign(pos) * (abs(pos) // 2), price_e6)

        size = max(1, int(max_size * self._rng.uniform(p.min_size_frac, p.max_size_frac)))
        if pos == 0:
            side = -self._last_side
        elif self._rng.random() < p.reduce_bias:
            side = -sign(pos)
        else:
            side = sign(pos)
        self._last_side = side

        # Never quote past the position cap
        target = max(-max_size, min(max_size, pos + side * size))
        return self._intent(target - pos, price_e6)
