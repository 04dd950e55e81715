"""
Whale agent.

State machine:
    idle -> accumulate -> idle                (buy trigger)
    idle -> accumulate -> dump -> idle        (manipulation)
    idle -> dump -> idle                      (sell trigger)

accumulate buys max/4 per tick until the position reaches max; dump sells
half the position (rounded up) per tick until flat. The agent only acts when
only_on_trigger is False or a trigger is pending; the trigger is an external
call polled on every decide().
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any

from perpsim.bots.base import TradingBot
from perpsim.contracts.types import BotType, WhaleAction, WhalePhase
from perpsim.errors import InvalidConfigError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from perpsim.contracts.bot_params import WhaleParams
    from perpsim.contracts.bots import TradeIntent


class WhaleBot(TradingBot):
    """Large-size actor."""

    bot_type = BotType.WHALE

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.phase = WhalePhase.IDLE
        self.trigger_pending = False
        self.manipulating = self.params.manipulation_mode

    @property
    def params(self) -> WhaleParams:
        return self.config.params  # type: ignore[return-value]

    def trigger(self, action: WhaleAction | str) -> None:
        """
        Arm the whale.

        Raises:
            InvalidConfigError: Unknown action.
        """
        try:
            action = WhaleAction(action)
        except ValueError:
            raise InvalidConfigError(f"Unknown whale action: {action!r}", field="action") from None

        if action == WhaleAction.SELL:
            self.phase = WhalePhase.DUMP
        else:
            self.phase = WhalePhase.ACCUMULATE
            if action == WhaleAction.MANIPULATE:
                self.manipulating = True
        self.trigger_pending = True

    def _finish_cycle(self) -> None:
        self.phase = WhalePhase.IDLE
        self.trigger_pending = False
        self.manipulating = self.params.manipulation_mode

    def decide(self, price_e6: int, history: Sequence[int]) -> TradeIntent | None:
        if self.params.only_on_trigger and not self.trigger_pending:
            return None

        if self.phase == WhalePhase.IDLE:
            if self.trigger_pending or self._rng.random() >= self.params.idle_action_chance:
                return None
            self.phase = WhalePhase.ACCUMULATE if self.position_size <= 0 else WhalePhase.DUMP

        max_size = self.config.max_position_size
        pos = self.position_size

        if self.phase == WhalePhase.ACCUMULATE:
            size = min(max(1, max_size // 4), max_size - pos)
            if size <= 0:
                self._after_accumulate()
                return None
            if pos + size >= max_size:
                self._after_accumulate()
            return self._intent(size, price_e6)

        # dump
        if pos <= 0:
            self._finish_cycle()
            return None
        size = -math.ceil(pos / 2)
        if pos + size <= 0:
            self._finish_cycle()
        return self._intent(size, price_e6)

    def _after_accumulate(self) -> None:
        if self.manipulating:
            self.phase = WhalePhase.DUMP
        else:
            self._finish_cycle()

    def details(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "trigger_pending": self.trigger_pending,
            "manipulating": self.manipulating,
        }
