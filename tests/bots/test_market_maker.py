"""
Tests for the market maker agent.
"""

from __future__ import annotations

from typing import Any

from perpsim.bots.market_maker import MarketMakerBot
from perpsim.contracts.bots import BotConfig

P100 = 100_000_000


def _maker(name: str = "mm-1", **params: Any) -> MarketMakerBot:
    config = BotConfig.model_validate(
        {
            "type": "market-maker",
            "name": name,
            "target_market_id": "m-1",
            "max_position_size": 1_000,
            "params": params,
        }
    )
    bot = MarketMakerBot(config, 2)
    bot.start()
    return bot


class TestMarketMaker:
    """Flat-seeking quoting."""

    def test_needs_two_samples(self) -> None:
        bot = _maker()
        assert bot.decide(P100, [P100]) is None

    def test_closes_at_spread_target(self) -> None:
        """|PnL| of spread_bps closes the whole position."""
        bot = _maker(spread_bps=50)
        bot.position_size = 100
        bot.entry_price_e6 = P100

        intent = bot.decide(101_000_000, [P100, 101_000_000])

        assert intent is not None
        assert intent.size == -100

    def test_closes_losing_position_at_spread(self) -> None:
        bot = _maker(spread_bps=50)
        bot.position_size = -100
        bot.entry_price_e6 = P100

        intent = bot.decide(101_000_000, [P100, 101_000_000])

        assert intent is not None
        assert intent.size == 100

    def test_rebalances_past_threshold(self) -> None:
        """Inventory above threshold * max is halved."""
        bot = _maker(rebalance_threshold=0.3)
        bot.position_size = 400
        bot.entry_price_e6 = P100

        intent = bot.decide(P100, [P100, P100])

        assert intent is not None
        assert intent.size == -200

    def test_flat_quotes_alternate_sides(self) -> None:
        bot = _maker()
        first = bot.decide(P100, [P100, P100])
        second = bot.decide(P100, [P100, P100])

        assert first is not None and second is not None
        assert first.size > 0
        assert second.size < 0

    def test_quote_size_within_fractions(self) -> None:
        bot = _maker(min_size_frac=0.1, max_size_frac=0.3)
        for _ in range(20):
            intent = bot.decide(P100, [P100, P100])
            assert intent is not None
            assert 100 <= abs(intent.size) <= 300

    def test_never_exceeds_position_cap(self) -> None:
        bot = _maker(spread_bps=10_000, rebalance_threshold=1.0, reduce_bias=0.0)
        history: list[int] = []
        for i in range(200):
            price = P100 + (i % 7) * 10_000
            history.append(price)
            bot.on_price(price, history, i)
            assert abs(bot.position_size) <= 1_000

    def test_seeded_by_name(self) -> None:
        """Two makers with the same name make the same decisions."""
        a, b = _maker(), _maker()
        history = [P100, P100 + 1_000]
        sizes_a = [a.decide(P100, history).size for _ in range(10)]  # type: ignore[union-attr]
        sizes_b = [b.decide(P100, history).size for _ in range(10)]  # type: ignore[union-attr]
        assert sizes_a == sizes_b
