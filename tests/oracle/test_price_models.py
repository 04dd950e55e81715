"""
Tests for the price model library.

Covers:
- Seeded determinism for every model
- Clamp bounds under adversarial params (huge volatility, NaN from custom steps)
- Crash/squeeze shape and post-duration behavior
- Mean reversion toward the anchor
"""

from __future__ import annotations

import math
import random

import pytest

from perpsim.contracts.model_params import (
    CrashParams,
    CustomParams,
    MeanRevertParams,
    RandomWalkParams,
    SqueezeParams,
    TrendingParams,
)
from perpsim.errors import InvalidConfigError
from perpsim.oracle.models import ModelContext, clamp_price, next_price

START = 100_000_000


def _run(params, ticks: int, *, seed: int = 7, start: int = START, interval_ms: int = 1000, custom_step=None):
    rng = random.Random(seed)
    prices = []
    prev = start
    for i in range(1, ticks + 1):
        ctx = ModelContext(elapsed_ticks=i, interval_ms=interval_ms, anchor_price_e6=start)
        prev = next_price(prev, ctx, params, rng, custom_step=custom_step)
        prices.append(prev)
    return prices


ALL_PARAMS = [
    RandomWalkParams(volatility=0.02),
    MeanRevertParams(volatility=0.01, revert_speed=0.2),
    TrendingParams(drift_frac=0.001, volatility=0.005),
    CrashParams(crash_magnitude=0.4, crash_duration_ms=5000, recovery_speed=0.1, volatility=0.01),
    SqueezeParams(squeeze_magnitude=0.6, squeeze_duration_ms=5000, recovery_speed=0.1, volatility=0.01),
]

# Zero volatility and full-speed reversion land exactly on targets at or past the clamp
EDGE_PARAMS = [
    MeanRevertParams(volatility=0.0, revert_speed=1.0),
    MeanRevertParams(volatility=0.0, revert_speed=1.0, mean_price=1_000),
    MeanRevertParams(volatility=0.0, revert_speed=1.0, mean_price=1_000_000_000),
    MeanRevertParams(volatility=0.0, revert_speed=1.0, mean_price=50_000_000_000),
    RandomWalkParams(volatility=0.0),
    TrendingParams(drift_per_step=-200_000_000),
    CrashParams(crash_magnitude=0.99, crash_duration_ms=3000, recovery_speed=1.0),
    SqueezeParams(squeeze_magnitude=20.0, squeeze_duration_ms=3000, recovery_speed=1.0),
]


class TestDeterminism:
    """Identical seed and params reproduce identical sequences."""

    @pytest.mark.parametrize("params", ALL_PARAMS, ids=lambda p: p.model)
    def test_same_seed_same_sequence(self, params) -> None:
        """Two runs with seed 7 are identical."""
        assert _run(params, 50) == _run(params, 50)

    @pytest.mark.parametrize("params", ALL_PARAMS, ids=lambda p: p.model)
    def test_different_seed_differs(self, params) -> None:
        """A different seed changes a noisy series."""
        assert _run(params, 50, seed=1) != _run(params, 50, seed=2)

    def test_random_walk_matches_formula(self) -> None:
        """random-walk is prev * (1 + vol * gauss) rounded."""
        params = RandomWalkParams(volatility=0.01)
        rng = random.Random(42)
        expected = []
        prev = START
        for _ in range(5):
            prev = round(prev * (1 + 0.01 * rng.gauss(0.0, 1.0)))
            expected.append(prev)

        assert _run(params, 5, seed=42) == expected

    def test_zero_volatility_still_consumes_one_draw(self) -> None:
        """Switching volatility to 0 keeps the RNG stream aligned."""
        rng_a = random.Random(3)
        rng_b = random.Random(3)
        ctx = ModelContext(elapsed_ticks=1, interval_ms=1000, anchor_price_e6=START)

        next_price(START, ctx, TrendingParams(drift_per_step=10), rng_a)
        rng_b.gauss(0.0, 1.0)

        assert rng_a.random() == rng_b.random()


class TestBounds:
    """Every output is an integer within [min_price, max_price]."""

    @pytest.mark.parametrize("params", ALL_PARAMS + EDGE_PARAMS, ids=lambda p: p.model)
    def test_outputs_within_default_bounds(self, params) -> None:
        """500 ticks never leave the default bounds."""
        for price in _run(params, 500):
            assert isinstance(price, int)
            assert params.min_price <= price <= params.max_price

    @pytest.mark.parametrize(
        ("mean_price", "expected"),
        [(None, START), (1_000, 1_000), (1_000_000_000, 1_000_000_000), (50_000_000_000, 1_000_000_000)],
    )
    def test_full_reversion_without_noise(self, mean_price: int | None, expected: int) -> None:
        """revert_speed 1 with volatility 0 jumps straight to the (clamped) mean."""
        params = MeanRevertParams(volatility=0.0, revert_speed=1.0, mean_price=mean_price)
        assert set(_run(params, 10)) == {expected}

    @pytest.mark.parametrize(
        "params",
        [
            CrashParams(crash_magnitude=0.5, crash_duration_ms=3000, recovery_speed=1.0),
            SqueezeParams(squeeze_magnitude=0.5, squeeze_duration_ms=3000, recovery_speed=1.0),
        ],
        ids=lambda p: p.model,
    )
    def test_full_recovery_returns_to_anchor(self, params) -> None:
        """recovery_speed 1 closes the whole gap on the first tick after the move."""
        prices = _run(params, 6)
        assert prices[2:] == [START, START, START, START]

    def test_huge_volatility_is_clamped(self) -> None:
        """Volatility 50 would go negative; the clamp holds."""
        params = RandomWalkParams(volatility=50.0, min_price=1_000, max_price=10_000_000_000)
        for price in _run(params, 200):
            assert 1_000 <= price <= 10_000_000_000

    def test_tight_bounds(self) -> None:
        """min == max pins the price."""
        params = RandomWalkParams(volatility=0.5, min_price=5_000_000, max_price=5_000_000)
        assert set(_run(params, 20)) == {5_000_000}

    def test_custom_nan_resolves_to_min(self) -> None:
        """A custom step returning NaN yields min_price."""
        params = CustomParams(min_price=2_000)
        prices = _run(params, 3, custom_step=lambda prev, ctx, p, rng: math.nan)
        assert prices == [2_000, 2_000, 2_000]

    def test_custom_inf_resolves_to_min(self) -> None:
        params = CustomParams()
        prices = _run(params, 1, custom_step=lambda prev, ctx, p, rng: math.inf)
        assert prices == [params.min_price]

    def test_clamp_price_rounds(self) -> None:
        assert clamp_price(1_500.6, 1_000, 2_000) == 1_501
        assert clamp_price(-5.0, 1_000, 2_000) == 1_000
        assert clamp_price(9e18, 1_000, 2_000) == 2_000


class TestCustomModel:
    """Custom step dispatch."""

    def test_custom_without_step_raises(self) -> None:
        ctx = ModelContext(elapsed_ticks=1, interval_ms=1000, anchor_price_e6=START)
        with pytest.raises(InvalidConfigError):
            next_price(START, ctx, CustomParams(), random.Random(0))

    def test_custom_step_receives_options(self) -> None:
        """Options are passed through to the step function."""
        params = CustomParams(options={"factor": 2.0})
        prices = _run(params, 2, custom_step=lambda prev, ctx, p, rng: prev * p.options["factor"])
        assert prices == [200_000_000, 400_000_000]


class TestCrashModel:
    """Crash decays to the target and then recovers or holds."""

    def test_reaches_target_at_duration(self) -> None:
        """Without noise the price hits anchor * (1 - magnitude) once the duration ends."""
        params = CrashParams(crash_magnitude=0.3, crash_duration_ms=5000)
        prices = _run(params, 8)
        assert prices[4] == 70_000_000
        assert prices[-1] == 70_000_000

    def test_monotonic_decay_during_crash(self) -> None:
        params = CrashParams(crash_magnitude=0.5, crash_duration_ms=10_000)
        prices = _run(params, 9)
        assert all(a > b for a, b in zip(prices, prices[1:]))

    def test_cubic_ease_out_front_loads_the_drop(self) -> None:
        """The first tick loses more than the last tick of the crash window."""
        params = CrashParams(crash_magnitude=0.5, crash_duration_ms=10_000)
        prices = [START, *_run(params, 9)]
        assert prices[0] - prices[1] > prices[8] - prices[9]

    def test_recovery_moves_back_toward_anchor(self) -> None:
        params = CrashParams(crash_magnitude=0.3, crash_duration_ms=2000, recovery_speed=0.5)
        prices = _run(params, 10)
        post = prices[2:]
        assert all(a < b for a, b in zip(post, post[1:]))
        assert post[-1] < START


class TestSqueezeModel:
    """Squeeze rises to the target with a quadratic ease-in."""

    def test_reaches_target_at_duration(self) -> None:
        params = SqueezeParams(squeeze_magnitude=0.5, squeeze_duration_ms=4000)
        prices = _run(params, 6)
        assert prices[3] == 150_000_000
        assert prices[-1] == 150_000_000

    def test_ease_in_back_loads_the_rise(self) -> None:
        """The last tick of the window gains more than the first."""
        params = SqueezeParams(squeeze_magnitude=0.5, squeeze_duration_ms=10_000)
        prices = [START, *_run(params, 10)]
        assert prices[10] - prices[9] > prices[1] - prices[0]


class TestMeanRevert:
    """Mean reversion pulls toward the anchor or explicit mean."""

    def test_converges_to_explicit_mean(self) -> None:
        params = MeanRevertParams(volatility=0.0, revert_speed=0.5, mean_price=80_000_000)
        prices = _run(params, 30)
        assert abs(prices[-1] - 80_000_000) <= 1

    def test_defaults_to_anchor(self) -> None:
        """Starting at the anchor without noise, the price stays put."""
        params = MeanRevertParams(volatility=0.0, revert_speed=0.3)
        assert set(_run(params, 10)) == {START}


class TestTrending:
    """Deterministic drift."""

    def test_absolute_drift(self) -> None:
        params = TrendingParams(drift_per_step=1_000_000)
        assert _run(params, 3) == [101_000_000, 102_000_000, 103_000_000]

    def test_negative_drift_clamps_at_min(self) -> None:
        params = TrendingParams(drift_per_step=-60_000_000, min_price=10_000_000)
        assert _run(params, 3) == [40_000_000, 10_000_000, 10_000_000]
