"""
Price engine.

Owns one price-generation session: current price, active model and params,
and a recurring tick that advances the price and publishes PriceSamples.

State machine: idle -> running -> idle, with running self-looping on
trigger_scenario()/set_model() (no reset of updates_count, started_at or
session_id).

Publishing is fire-and-forget: each subscriber has a bounded queue drained by
its own pump task. tick() only ever calls put_nowait(); a full queue drops
that subscriber's oldest sample.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import random
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from perpsim.contracts.base import new_session_id
from perpsim.contracts.model_params import (
    CustomParams,
    ModelParams,
    merge_model_params,
    parse_model_kind,
    parse_model_params,
    with_bounds,
)
from perpsim.contracts.price import PriceEngineState, PriceSample
from perpsim.contracts.session import DEFAULT_INTERVAL_MS, MIN_INTERVAL_MS
from perpsim.errors import AlreadyRunningError, InvalidConfigError
from perpsim.oracle.models import CustomStep, ModelContext, next_price
from perpsim.oracle.scenarios import ScenarioCatalog, default_catalog

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from perpsim.contracts.price import ScenarioDefinition
    from perpsim.contracts.session import SessionConfig
    from perpsim.oracle.reference import PriceReference

logger = logging.getLogger(__name__)

DEFAULT_SUBSCRIBER_QUEUE_SIZE = 256


@dataclass
class PriceEngineConfig:
    """Configuration for a price engine.

    Attributes:
        market_id: Market the engine prices.
        start_price_e6: Starting price (E6).
        params: Base model params; the model kind is params.model.
        interval_ms: Tick interval (>= MIN_INTERVAL_MS).
        seed: RNG seed; identical (seed, params, tick count) reproduce identical prices.
        max_updates: Hard cap; the engine stops itself after this many ticks.
        custom_step: Step function for the custom model.
        subscriber_queue_size: Per-subscriber queue bound.
    """

    market_id: str
    start_price_e6: int
    params: ModelParams
    interval_ms: int = DEFAULT_INTERVAL_MS
    seed: int | None = None
    max_updates: int | None = None
    custom_step: CustomStep | None = None
    subscriber_queue_size: int = DEFAULT_SUBSCRIBER_QUEUE_SIZE

    def __post_init__(self) -> None:
        if not self.market_id:
            raise InvalidConfigError("market_id is required", field="market_id")
        if not isinstance(self.start_price_e6, int) or self.start_price_e6 <= 0:
            raise InvalidConfigError(
                f"start_price_e6 must be a positive integer, got {self.start_price_e6!r}",
                field="start_price_e6",
            )
        if not self.params.min_price <= self.start_price_e6 <= self.params.max_price:
            raise InvalidConfigError(
                f"start_price_e6 {self.start_price_e6} outside price bounds "
                f"[{self.params.min_price}, {self.params.max_price}]",
                field="start_price_e6",
            )
        if self.interval_ms < MIN_INTERVAL_MS:
            raise InvalidConfigError(
                f"interval_ms must be >= {MIN_INTERVAL_MS}, got {self.interval_ms}",
                field="interval_ms",
            )
        if self.max_updates is not None and self.max_updates <= 0:
            raise InvalidConfigError(f"max_updates must be positive, got {self.max_updates}", field="max_updates")
        if self.subscriber_queue_size <= 0:
            raise InvalidConfigError(
                f"subscriber_queue_size must be positive, got {self.subscriber_queue_size}",
                field="subscriber_queue_size",
            )
        if isinstance(self.params, CustomParams) and self.custom_step is None:
            raise InvalidConfigError("custom model requires a step function", field="custom_step")

    @classmethod
    def from_session_config(
        cls,
        config: SessionConfig,
        *,
        custom_step: CustomStep | None = None,
    ) -> PriceEngineConfig:
        """Build from a validated SessionConfig."""
        return cls(
            market_id=config.market_id,
            start_price_e6=config.start_price_e6,
            params=config.params,
            interval_ms=config.interval_ms,
            seed=config.seed,
            max_updates=config.max_updates,
            custom_step=custom_step,
        )


@dataclass
class Subscription:
    """One subscriber's channel from the engine."""

    name: str
    callback: Callable[[PriceSample], Awaitable[None] | None]
    queue: asyncio.Queue[PriceSample]
    task: asyncio.Task[None] | None = None
    delivered: int = 0
    dropped: int = 0
    errors: int = 0
    closed: bool = field(default=False)
    _engine: PriceEngine | None = field(default=None, repr=False)

    def close(self) -> None:
        """Unsubscribe and stop the pump."""
        if self._engine is not None:
            self._engine.unsubscribe(self)


class PriceEngine:
    """
    Single price-generation session.

    tick() is synchronous and public so tests (and a caller-driven clock) can
    advance the engine without the timer.
    """

    def __init__(
        self,
        config: PriceEngineConfig,
        *,
        session_id: str | None = None,
        catalog: ScenarioCatalog | None = None,
        reference: PriceReference | None = None,
        time_fn: Callable[[], int] | None = None,
        on_exhausted: Callable[[], Any] | None = None,
    ) -> None:
        """
        Initialize the engine (idle).

        Args:
            config: Engine configuration.
            session_id: Correlation id; generated when omitted.
            catalog: Scenario catalog (default: built-in catalog).
            reference: External price reference for correlated scenarios.
            time_fn: Millisecond clock, injectable for tests.
            on_exhausted: Called once when max_updates stops the engine.
        """
        self._config = config
        self._session_id = session_id or new_session_id()
        self._catalog = catalog or default_catalog()
        self._reference = reference
        self._time_fn = time_fn
        self._on_exhausted = on_exhausted

        self._subscriptions: list[Subscription] = []
        self._subscriber_drops = 0

        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._stopped_at: int | None = None
        self._reset_run_state()

    def _reset_run_state(self) -> None:
        self._rng = random.Random(self._config.seed)
        self._base_params: ModelParams = self._config.params
        self._params: ModelParams = self._config.params
        self._scenario: ScenarioDefinition | None = None
        self._scenario_ticks_left: int | None = None
        self._model_ticks = 0
        self._anchor_price_e6 = self._config.start_price_e6
        self._current_price_e6 = self._config.start_price_e6
        self._high_price_e6 = self._config.start_price_e6
        self._low_price_e6 = self._config.start_price_e6
        self._updates_count = 0
        self._started_at: int | None = None
        self._last_update_at: int | None = None

    def _now_ms(self) -> int:
        if self._time_fn is not None:
            return self._time_fn()
        return int(time.time() * 1000)

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def market_id(self) -> str:
        return self._config.market_id

    @property
    def running(self) -> bool:
        return self._running

    @property
    def current_price_e6(self) -> int:
        return self._current_price_e6

    @property
    def updates_count(self) -> int:
        return self._updates_count

    @property
    def params(self) -> ModelParams:
        return self._params

    @property
    def scenario(self) -> ScenarioDefinition | None:
        return self._scenario

    @property
    def catalog(self) -> ScenarioCatalog:
        return self._catalog

    # -------------------------------------------------------------- lifecycle

    async def start(self) -> PriceEngineState:
        """
        Start ticking every interval_ms.

        Returns:
            Initial snapshot.

        Raises:
            AlreadyRunningError: Engine already running.
        """
        if self._running:
            raise AlreadyRunningError("Price engine already running", session_id=self._session_id)

        if self._stopped_at is not None:
            self._reset_run_state()
            self._stopped_at = None

        self._running = True
        self._started_at = self._now_ms()
        self._ensure_pumps()
        self._task = asyncio.create_task(self._tick_loop())

        logger.info(
            "Price engine started",
            extra={
                "session_id": self._session_id,
                "market_id": self._config.market_id,
                "model": self._params.model,
                "start_price_e6": self._config.start_price_e6,
                "interval_ms": self._config.interval_ms,
            },
        )
        return self.get_state()

    async def stop(self) -> PriceEngineState:
        """
        Cancel the timer and return the final snapshot.

        Idempotent: stopping an idle engine returns the last known state.
        """
        was_running = self._running
        self._running = False

        if self._task is not None:
            await _cancel_task(self._task)
            self._task = None

        for sub in self._subscriptions:
            if sub.task is not None:
                await _cancel_task(sub.task)
                sub.task = None

        if was_running:
            self._stopped_at = self._now_ms()
            logger.info(
                "Price engine stopped",
                extra={
                    "session_id": self._session_id,
                    "updates_count": self._updates_count,
                    "price_e6": self._current_price_e6,
                },
            )
        return self.get_state()

    async def _tick_loop(self) -> None:
        """Sleep interval, tick, repeat; exits on stop or the update cap."""
        interval_s = self._config.interval_ms / 1000
        while self._running:
            await asyncio.sleep(interval_s)
            if not self._running:
                break
            try:
                self.tick()
            except Exception:
                logger.exception("Tick failed", extra={"session_id": self._session_id})

            max_updates = self._config.max_updates
            if max_updates is not None and self._updates_count >= max_updates:
                self._running = False
                self._stopped_at = self._now_ms()
                logger.info(
                    "Price engine reached update cap",
                    extra={"session_id": self._session_id, "max_updates": max_updates},
                )
                if self._on_exhausted is not None:
                    self._on_exhausted()
                break

    # ------------------------------------------------------------------- tick

    def tick(self) -> PriceSample:
        """
        Advance one step and publish the sample.

        Returns:
            The published sample.
        """
        self._model_ticks += 1
        ctx = ModelContext(
            elapsed_ticks=self._model_ticks,
            interval_ms=self._config.interval_ms,
            anchor_price_e6=self._anchor_price_e6,
        )
        prev = self._correlated_price() or self._current_price_e6

        try:
            price_e6 = next_price(prev, ctx, self._params, self._rng, custom_step=self._config.custom_step)
        except Exception:
            # Caller-supplied step functions may raise; hold the price
            logger.exception(
                "Model step failed, holding price",
                extra={"session_id": self._session_id, "model": self._params.model},
            )
            price_e6 = self._current_price_e6

        now_ms = self._now_ms()
        self._current_price_e6 = price_e6
        self._updates_count += 1
        self._last_update_at = now_ms
        self._high_price_e6 = max(self._high_price_e6, price_e6)
        self._low_price_e6 = min(self._low_price_e6, price_e6)

        sample = PriceSample(
            session_id=self._session_id,
            price_e6=price_e6,
            timestamp_ms=now_ms,
            model=self._params.model,
            scenario=self._scenario.name if self._scenario is not None else None,
            seq=self._updates_count,
        )
        self._publish(sample)
        self._advance_scenario_clock()
        return sample

    def _correlated_price(self) -> int | None:
        """Reference price for a correlated scenario, if one is active and known."""
        if self._scenario is None or self._scenario.reference_feed is None or self._reference is None:
            return None
        price = self._reference.latest_price_e6(self._scenario.reference_feed)
        if price is None or price <= 0:
            return None
        return price

    def _advance_scenario_clock(self) -> None:
        if self._scenario_ticks_left is None:
            return
        self._scenario_ticks_left -= 1
        if self._scenario_ticks_left > 0:
            return

        expired = self._scenario
        self._scenario = None
        self._scenario_ticks_left = None
        self._params = self._base_params
        self._anchor_price_e6 = self._current_price_e6
        self._model_ticks = 0
        logger.info(
            "Scenario expired, reverting to base model",
            extra={
                "session_id": self._session_id,
                "scenario": expired.name if expired is not None else None,
                "model": self._params.model,
            },
        )

    # ------------------------------------------------------------- scenarios

    def trigger_scenario(self, name: str) -> ScenarioDefinition:
        """
        Swap model and params to a catalog scenario.

        The anchor becomes the current price (or the reference price for a
        correlated scenario). updates_count, started_at and session_id are kept.

        Raises:
            UnknownScenarioError: Name not in the catalog.
        """
        scenario = self._catalog.get(name)
        if isinstance(scenario.params, CustomParams) and self._config.custom_step is None:
            raise InvalidConfigError(f"Scenario {name} needs a custom step function", field="custom_step")

        self._scenario = scenario
        self._params = with_bounds(scenario.params, self._base_params)
        self._model_ticks = 0
        self._anchor_price_e6 = self._correlated_price() or self._current_price_e6
        self._scenario_ticks_left = (
            max(1, math.ceil(scenario.duration_ms / self._config.interval_ms))
            if scenario.duration_ms is not None
            else None
        )

        logger.info(
            "Scenario triggered",
            extra={
                "session_id": self._session_id,
                "scenario": scenario.name,
                "model": scenario.model.value,
                "anchor_price_e6": self._anchor_price_e6,
                "ticks": self._scenario_ticks_left,
            },
        )
        return scenario

    def set_model(self, model: Any, params: Mapping[str, Any] | None = None) -> ModelParams:
        """
        Hot-swap the base model outside the catalog.

        Params for the same model kind are merged into the current params;
        a different kind starts from that kind's defaults. Clears any active
        scenario.

        Raises:
            InvalidConfigError: Unknown model, bad params, or custom without a step.
        """
        kind = parse_model_kind(model)
        if kind.value == self._base_params.model:
            new_params = merge_model_params(self._base_params, params)
        else:
            bounds = {"min_price": self._base_params.min_price, "max_price": self._base_params.max_price}
            new_params = merge_model_params(parse_model_params(kind, bounds), params)
        if isinstance(new_params, CustomParams) and self._config.custom_step is None:
            raise InvalidConfigError("custom model requires a step function", field="custom_step")

        self._base_params = new_params
        self._params = new_params
        self._scenario = None
        self._scenario_ticks_left = None
        self._model_ticks = 0
        self._anchor_price_e6 = self._current_price_e6

        logger.info(
            "Model changed",
            extra={"session_id": self._session_id, "model": new_params.model},
        )
        return new_params

    # ------------------------------------------------------------ subscribers

    def subscribe(
        self,
        callback: Callable[[PriceSample], Awaitable[None] | None],
        *,
        name: str = "subscriber",
        queue_size: int | None = None,
    ) -> Subscription:
        """
        Register a subscriber. The callback may be sync or async.

        Callback exceptions are logged and counted, never propagated.
        """
        sub = Subscription(
            name=name,
            callback=callback,
            queue=asyncio.Queue(maxsize=queue_size or self._config.subscriber_queue_size),
            _engine=self,
        )
        self._subscriptions.append(sub)
        if self._running:
            self._ensure_pumps()
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        """Remove a subscriber and cancel its pump."""
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)
        sub.closed = True
        if sub.task is not None:
            sub.task.cancel()
            sub.task = None

    def _ensure_pumps(self) -> None:
        for sub in self._subscriptions:
            if sub.task is None or sub.task.done():
                sub.task = asyncio.create_task(self._pump(sub))

    def _publish(self, sample: PriceSample) -> None:
        for sub in list(self._subscriptions):
            try:
                sub.queue.put_nowait(sample)
            except asyncio.QueueFull:
                with contextlib.suppress(asyncio.QueueEmpty):
                    sub.queue.get_nowait()
                    sub.queue.task_done()
                sub.queue.put_nowait(sample)
                sub.dropped += 1
                self._subscriber_drops += 1
                logger.warning(
                    "Subscriber queue full, dropped oldest sample",
                    extra={"subscriber": sub.name, "seq": sample.seq, "dropped": sub.dropped},
                )

    async def _pump(self, sub: Subscription) -> None:
        """Deliver queued samples to one subscriber, in order."""
        while True:
            sample = await sub.queue.get()
            try:
                result = sub.callback(sample)
                if asyncio.iscoroutine(result):
                    await result
                sub.delivered += 1
            except Exception:
                sub.errors += 1
                logger.exception(
                    "Subscriber callback failed",
                    extra={"subscriber": sub.name, "seq": sample.seq},
                )
            finally:
                sub.queue.task_done()

    async def drain(self) -> None:
        """Wait until every subscriber has consumed its queued samples."""
        self._ensure_pumps()
        await asyncio.gather(*(sub.queue.join() for sub in self._subscriptions))

    # ---------------------------------------------------------------- state

    def get_state(self) -> PriceEngineState:
        """Read-only snapshot."""
        return PriceEngineState(
            session_id=self._session_id,
            market_id=self._config.market_id,
            running=self._running,
            current_price_e6=self._current_price_e6,
            start_price_e6=self._config.start_price_e6,
            high_price_e6=self._high_price_e6,
            low_price_e6=self._low_price_e6,
            model=self._params.model,
            params=self._params.model_dump(mode="json", exclude={"model"}),
            base_model=self._base_params.model,
            scenario=self._scenario.name if self._scenario is not None else None,
            interval_ms=self._config.interval_ms,
            updates_count=self._updates_count,
            started_at=self._started_at,
            last_update_at=self._last_update_at,
            subscriber_drops=self._subscriber_drops,
        )

    def subscription_stats(self) -> list[dict[str, int | str]]:
        """Per-subscriber delivery counters."""
        return [
            {"name": s.name, "delivered": s.delivered, "dropped": s.dropped, "errors": s.errors}
            for s in self._subscriptions
        ]


async def _cancel_task(task: asyncio.Task[Any]) -> None:
    """Cancel a task and wait for it, unless it is the calling task."""
    if task.done():
        return
    task.cancel()
    if task is asyncio.current_task():
        return
    with contextlib.suppress(asyncio.CancelledError):
        await task
