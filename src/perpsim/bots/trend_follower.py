"""
Trend follower agent.

Fits a least-squares line to the trailing window and trades in the slope's
direction, sized by momentum (slope over the window relative to the mean
price). Stop-loss and take-profit exits take precedence.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from perpsim.bots.base import TradingBot
from perpsim.contracts.types import BotType

if TYPE_CHECKING:
    from collections.abc import Sequence

    from perpsim.contracts.bot_params import TrendFollowerParams
    from perpsim.contracts.bots import TradeIntent


def window_momentum(history: Sequence[int], window: int) -> float | None:
    """Fractional price change implied by the trailing slope.

    Returns:
        slope * (window - 1) / mean over the last ``window`` samples, or None
        when there is not enough history.
    """
    if window < 2 or len(history) < window:
        return None
    y = np.asarray(history[-window:], dtype=np.float64)
    mean = float(y.mean())
    if mean <= 0:
        return None
    x = np.arange(window, dtype=np.float64)
    slope = float(np.polyfit(x, y, 1)[0])
    return slope * (window - 1) / mean


class TrendFollowerBot(TradingBot):
    """Momentum trader."""

    bot_type = BotType.TREND_FOLLOWER

    @property
    def params(self) -> TrendFollowerParams:
        return self.config.params  # type: ignore[return-value]

    def decide(self, price_e6: int, history: Sequence[int]) -> TradeIntent | None:
        p = self.params

        if self.position_size != 0:
            bps = self.pnl_bps(price_e6)
            if bps <= -p.stop_loss_bps or bps >= p.take_profit_bps:
                return self._close_position(price_e6)

        momentum = window_momentum(history, p.window)
        if momentum is None or abs(momentum) < p.min_momentum:
            return None

        max_size = self.config.max_position_size
        size = int(max_size * min(1.0, abs(momentum) * p.sensitivity))
        direction = 1 if momentum > 0 else -1

        target = max(-max_size, min(max_size, self.position_size + direction * size))
        return self._intent(target - self.position_size, price_e6)
