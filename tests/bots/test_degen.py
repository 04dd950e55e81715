"""
Tests for the degen agent.
"""

from __future__ import annotations

from typing import Any

from perpsim.bots.degen import DegenBot
from perpsim.contracts.bots import BotConfig

P100 = 100_000_000


def _degen(**params: Any) -> DegenBot:
    config = BotConfig.model_validate(
        {
            "type": "degen",
            "name": "degen-1",
            "target_market_id": "m-1",
            "max_position_size": 100,
            "params": params,
        }
    )
    bot = DegenBot(config, 4)
    bot.start()
    return bot


class TestEntries:
    """Random leveraged entries."""

    def test_never_enters_with_zero_chance(self) -> None:
        bot = _degen(entry_chance=0.0)
        for i in range(50):
            assert bot.on_price(P100, [P100], i) is None

    def test_entry_sized_within_leverage_cap(self) -> None:
        bot = _degen(entry_chance=1.0, max_leverage=5)
        intent = bot.decide(P100, [P100])

        assert intent is not None
        assert 1 <= abs(intent.size) <= 100 * 5
        assert 1 <= bot.details()["leverage"] <= 5
        assert bot.position_cap == 500

    def test_same_name_same_entries(self) -> None:
        sizes_a = [_degen(entry_chance=1.0).decide(P100, [P100]).size for _ in range(3)]  # type: ignore[union-attr]
        sizes_b = [_degen(entry_chance=1.0).decide(P100, [P100]).size for _ in range(3)]  # type: ignore[union-attr]
        assert sizes_a == sizes_b


class TestHolding:
    """Hold for a random number of ticks, then close."""

    def test_closes_after_hold(self) -> None:
        bot = _degen(entry_chance=1.0, min_hold_ticks=2, max_hold_ticks=2, double_down_chance=0.0)

        entry = bot.on_price(P100, [P100], 0)
        assert entry is not None
        assert bot.details()["hold_ticks_left"] == 2

        assert bot.on_price(P100, [P100], 1) is None
        close = bot.on_price(P100, [P100], 2)

        assert close is not None
        assert close.size == -entry.size
        assert bot.position_size == 0
        assert bot.details()["leverage"] == 0


class TestDoubleDown:
    """Losing positions may be doubled, up to the leverage cap."""

    def _losing(self, position: int, **params: Any) -> DegenBot:
        bot = _degen(double_down_chance=1.0, loss_trigger_bps=100, **params)
        bot.position_size = position
        bot.entry_price_e6 = P100
        bot._hold_ticks_left = 5
        return bot

    def test_doubles_losing_long(self) -> None:
        bot = self._losing(100)
        intent = bot.decide(98_000_000, [P100, 98_000_000])
        assert intent is not None
        assert intent.size == 100

    def test_doubles_losing_short(self) -> None:
        bot = self._losing(-100)
        intent = bot.decide(102_000_000, [P100, 102_000_000])
        assert intent is not None
        assert intent.size == -100

    def test_add_capped_by_leverage(self) -> None:
        bot = self._losing(400, max_leverage=5)
        intent = bot.decide(98_000_000, [P100, 98_000_000])
        assert intent is not None
        assert intent.size == 100

    def test_at_cap_no_intent(self) -> None:
        bot = self._losing(500, max_leverage=5)
        assert bot.decide(98_000_000, [P100, 98_000_000]) is None

    def test_small_loss_holds(self) -> None:
        bot = self._losing(100)
        assert bot.decide(99_500_000, [P100, 99_500_000]) is None
