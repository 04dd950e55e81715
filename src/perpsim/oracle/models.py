"""
Price model library.

Pure step functions: given the previous price, a ModelContext and the
model's params, produce the next price. No I/O, no timers, no global RNG:
randomness comes only from the injected ``random.Random``.

Every stochastic model draws exactly one ``rng.gauss(0, 1)`` per step, even
when volatility is 0, so a seed reproduces the same sequence regardless of
params. Every result is clamped to [min_price, max_price]; NaN/inf resolve
to min_price.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from perpsim.contracts.model_params import (
    CrashParams,
    CustomParams,
    MeanRevertParams,
    ModelParams,
    RandomWalkParams,
    SqueezeParams,
    TrendingParams,
)
from perpsim.errors import InvalidConfigError

if TYPE_CHECKING:
    import random


@dataclass(frozen=True)
class ModelContext:
    """Where the active model is in its run.

    Attributes:
        elapsed_ticks: Ticks since the model/scenario became active (1 on first step).
        interval_ms: Engine tick interval.
        anchor_price_e6: Price when the model/scenario became active.
    """

    elapsed_ticks: int
    interval_ms: int
    anchor_price_e6: int

    @property
    def elapsed_ms(self) -> int:
        return self.elapsed_ticks * self.interval_ms


CustomStep = Callable[[int, ModelContext, CustomParams, "random.Random"], float]


def clamp_price(value: float, min_price: int, max_price: int) -> int:
    """Round and clamp a raw model output into [min_price, max_price]."""
    if not math.isfinite(value):
        return min_price
    return max(min_price, min(max_price, round(value)))


def random_walk(prev: int, ctx: ModelContext, params: RandomWalkParams, rng: random.Random) -> int:
    """next = prev * (1 + volatility * N(0,1))"""
    shock = rng.gauss(0.0, 1.0)
    raw = prev * (1.0 + params.volatility * shock)
    return clamp_price(raw, params.min_price, params.max_price)


def mean_revert(prev: int, ctx: ModelContext, params: MeanRevertParams, rng: random.Random) -> int:
    """next = prev + revert_speed * (mean - prev) + volatility * N(0,1) * prev"""
    shock = rng.gauss(0.0, 1.0)
    mean = params.mean_price if params.mean_price is not None else ctx.anchor_price_e6
    raw = prev + params.revert_speed * (mean - prev) + params.volatility * shock * prev
    return clamp_price(raw, params.min_price, params.max_price)


def trending(prev: int, ctx: ModelContext, params: TrendingParams, rng: random.Random) -> int:
    """next = prev + drift_per_step + drift_frac * prev + volatility * N(0,1) * prev"""
    shock = rng.gauss(0.0, 1.0)
    raw = prev + params.drift_per_step + params.drift_frac * prev + params.volatility * shock * prev
    return clamp_price(raw, params.min_price, params.max_price)


def crash(prev: int, ctx: ModelContext, params: CrashParams, rng: random.Random) -> int:
    """Decay from the anchor toward anchor * (1 - magnitude), cubic ease-out.

    After crash_duration_ms the price recovers toward the anchor by
    recovery_speed of the remaining gap per tick, or holds when 0.
    """
    shock = rng.gauss(0.0, 1.0)
    anchor = ctx.anchor_price_e6
    target = anchor * (1.0 - params.crash_magnitude)

    if ctx.elapsed_ms < params.crash_duration_ms:
        progress = ctx.elapsed_ms / params.crash_duration_ms
        eased = 1.0 - (1.0 - progress) ** 3
        base = anchor - (anchor - target) * eased
    elif params.recovery_speed > 0:
        base = prev + params.recovery_speed * (anchor - prev)
    else:
        base = target

    raw = base + params.volatility * shock * base
    return clamp_price(raw, params.min_price, params.max_price)


def squeeze(prev: int, ctx: ModelContext, params: SqueezeParams, rng: random.Random) -> int:
    """Rise from the anchor toward anchor * (1 + magnitude), quadratic ease-in.

    After squeeze_duration_ms the price reverts toward the anchor by
    recovery_speed of the remaining gap per tick, or holds when 0.
    """
    shock = rng.gauss(0.0, 1.0)
    anchor = ctx.anchor_price_e6
    target = anchor * (1.0 + params.squeeze_magnitude)

    if ctx.elapsed_ms < params.squeeze_duration_ms:
        progress = ctx.elapsed_ms / params.squeeze_duration_ms
        base = anchor + (target - anchor) * progress**2
    elif params.recovery_speed > 0:
        base = prev + params.recovery_speed * (anchor - prev)
    else:
        base = target

    raw = base + params.volatility * shock * base
    return clamp_price(raw, params.min_price, params.max_price)


_STEPS: dict[str, Callable[..., int]] = {
    "random-walk": random_walk,
    "mean-revert": mean_revert,
    "trending": trending,
    "crash": crash,
    "squeeze": squeeze,
}


def next_price(
    prev: int,
    ctx: ModelContext,
    params: ModelParams,
    rng: random.Random,
    *,
    custom_step: CustomStep | None = None,
) -> int:
    """Dispatch one step to the model named by ``params.model``.

    Raises:
        InvalidConfigError: custom model without a step function.
    """
    if isinstance(params, CustomParams):
        if custom_step is None:
            raise InvalidConfigError("custom model requires a step function", field="custom_step")
        raw = custom_step(prev, ctx, params, rng)
        return clamp_price(raw, params.min_price, params.max_price)
    return _STEPS[params.model](prev, ctx, params, rng)
