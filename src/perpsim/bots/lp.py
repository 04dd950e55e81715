"""
Liquidity provider agent.

Not a directional trader: manages pool liquidity through LP_DEPOSIT /
LP_WITHDRAW intents.
- deposits min(deposit_size, remaining) while under target_lp_size
- withdraws withdraw_fraction of the pool when utilization < withdraw_threshold
- boosts by boost_fraction * deposit_size when trailing volatility
  (coefficient of variation) exceeds volatility_threshold, up to 1.5x target
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np

from perpsim.bots.base import ACCOUNT_INDEX_ADMIN, TradingBot
from perpsim.contracts.types import BotType, IntentKind

if TYPE_CHECKING:
    from collections.abc import Sequence

    from perpsim.contracts.bot_params import LpParams
    from perpsim.contracts.bots import TradeIntent

BOOST_CAP_MULTIPLE = 1.5


def coefficient_of_variation(history: Sequence[int], window: int, min_samples: int) -> float | None:
    """std / mean over the last ``window`` samples; None below min_samples."""
    if len(history) < min_samples:
        return None
    y = np.asarray(history[-window:], dtype=np.float64)
    mean = float(y.mean())
    if mean <= 0:
        return None
    return float(y.std()) / mean


class LPBot(TradingBot):
    """Pool liquidity manager."""

    bot_type = BotType.LP_PROVIDER

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("counterparty_index", ACCOUNT_INDEX_ADMIN)
        super().__init__(*args, **kwargs)
        self.lp_size = 0
        self.deposits = 0
        self.withdrawals = 0

    @property
    def params(self) -> LpParams:
        return self.config.params  # type: ignore[return-value]

    def utilization(self) -> float:
        """Reader utilization, else a seeded synthetic signal."""
        if self._market_state is not None:
            value = self._market_state.utilization(self.market_id)
            if value is not None:
                return value
        return self._rng.random()

    def decide(self, price_e6: int, history: Sequence[int]) -> TradeIntent | None:
        p = self.params
        current = self.lp_size

        if current < p.target_lp_size:
            amount = min(p.deposit_size, p.target_lp_size - current)
            return self._intent(amount, price_e6, kind=IntentKind.LP_DEPOSIT)

        if self.utilization() < p.withdraw_threshold:
            amount = int(current * p.withdraw_fraction)
            if amount > 0:
                return self._intent(-amount, price_e6, kind=IntentKind.LP_WITHDRAW)
            return None

        cv = coefficient_of_variation(history, p.volatility_window, p.min_volatility_samples)
        if cv is not None and cv > p.volatility_threshold and current < p.target_lp_size * BOOST_CAP_MULTIPLE:
            amount = int(p.deposit_size * p.boost_fraction)
            return self._intent(amount, price_e6, kind=IntentKind.LP_DEPOSIT)

        return None

    def apply_intent(self, intent: TradeIntent) -> None:
        if intent.kind == IntentKind.LP_DEPOSIT:
            self.lp_size += intent.size
            self.deposits += 1
        elif intent.kind == IntentKind.LP_WITHDRAW:
            self.lp_size = max(0, self.lp_size + intent.size)
            self.withdrawals += 1
        else:
            super().apply_intent(intent)

    def details(self) -> dict[str, Any]:
        return {
            "lp_size": self.lp_size,
            "target_lp_size": self.params.target_lp_size,
            "deposits": self.deposits,
            "withdrawals": self.withdrawals,
        }
