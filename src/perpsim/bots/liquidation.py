"""
Liquidation hunter agent.

Reads account health from the market-state reader and emits LIQUIDATION
intents closing undercollateralized accounts. An account is liquidatable
when it holds a position and its equity is below both the maintenance
margin on its notional and equity_capital_ratio of its capital.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from perpsim.bots.base import TradingBot
from perpsim.contracts.types import BotType, IntentKind

if TYPE_CHECKING:
    from collections.abc import Sequence

    from perpsim.contracts.bot_params import LiquidationHunterParams
    from perpsim.contracts.bots import AccountHealth, TradeIntent


class LiquidationBot(TradingBot):
    """Account-health watcher."""

    bot_type = BotType.LIQUIDATION_HUNTER

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._tick = 0
        self._last_targeted: dict[int, int] = {}
        self.liquidations = 0

    @property
    def params(self) -> LiquidationHunterParams:
        return self.config.params  # type: ignore[return-value]

    def is_liquidatable(self, account: AccountHealth, price_e6: int) -> bool:
        if account.position_size == 0:
            return False
        p = self.params
        maintenance = account.notional(price_e6) * p.maintenance_margin_bps / 10_000
        return account.equity < maintenance and account.equity < account.capital * p.equity_capital_ratio

    def decide(self, price_e6: int, history: Sequence[int]) -> TradeIntent | None:
        self._tick += 1
        if self._market_state is None:
            return None

        cooldown = self.params.cooldown_ticks
        candidates = [
            a
            for a in self._market_state.accounts(self.market_id)
            if a.account_index != self.account_index
            and self._tick - self._last_targeted.get(a.account_index, -cooldown - 1) > cooldown
            and self.is_liquidatable(a, price_e6)
        ]
        if not candidates:
            return None

        # Worst equity first
        target = min(candidates, key=lambda a: a.equity)
        self._last_targeted[target.account_index] = self._tick
        self.liquidations += 1
        return self._intent(
            -target.position_size,
            price_e6,
            kind=IntentKind.LIQUIDATION,
            account_index=target.account_index,
            counterparty_index=self.account_index,
        )

    def details(self) -> dict[str, Any]:
        return {"liquidations": self.liquidations}
