"""
Session manager.

Coordinates at most one running (PriceEngine, BotFleet) pair per manager
instance. Callers create one manager per process and pass it around; there
is no module-level singleton.

The one-running-session rule is process-local. A deployment behind several
processes can resume a session elsewhere through rehydrate(), using the
credentials captured at start, so two processes may briefly act for the
same session.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
import time
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from perpsim.bots.fleet import BotFleet
from perpsim.contracts.base import new_session_id
from perpsim.contracts.session import (
    FinalSessionSnapshot,
    ScenarioEcho,
    SessionConfig,
    SessionCredentials,
    SessionSnapshot,
)
from perpsim.errors import AlreadyRunningError, InvalidConfigError, NotRunningError
from perpsim.oracle.engine import PriceEngine, PriceEngineConfig
from perpsim.oracle.scenarios import default_catalog

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from perpsim.bots.market_state import MarketStateReader
    from perpsim.connectors.exporter import SimulationMetricsExporter
    from perpsim.contracts.bots import TradeIntent
    from perpsim.contracts.model_params import ModelParams
    from perpsim.contracts.price import ScenarioDefinition
    from perpsim.contracts.types import WhaleAction
    from perpsim.oracle.engine import Subscription
    from perpsim.oracle.models import CustomStep
    from perpsim.oracle.reference import PriceReference
    from perpsim.oracle.scenarios import ScenarioCatalog
    from perpsim.session.recorder import SessionRecorder

    Executor = Callable[[TradeIntent], Awaitable[bool]]

logger = logging.getLogger(__name__)


def _coerce_config(config: SessionConfig | Mapping[str, Any]) -> SessionConfig:
    if isinstance(config, SessionConfig):
        return config
    try:
        return SessionConfig.model_validate(config)
    except ValidationError as e:
        raise InvalidConfigError(f"Invalid session config: {e}") from e


class SessionManager:
    """Owns the session slot and the credentials captured for rehydration."""

    def __init__(
        self,
        *,
        catalog: ScenarioCatalog | None = None,
        reference: PriceReference | None = None,
        executor: Executor | None = None,
        recorder: SessionRecorder | None = None,
        metrics: SimulationMetricsExporter | None = None,
        market_state: MarketStateReader | None = None,
        custom_step: CustomStep | None = None,
        time_fn: Callable[[], int] | None = None,
    ) -> None:
        """
        Initialize an idle manager.

        Args:
            catalog: Scenario catalog (default: built-in catalog).
            reference: External price reference for correlated scenarios.
            executor: Default trade executor for fleets.
            recorder: Persistence sink for session start/end.
            metrics: Prometheus exporter updated on every tick.
            market_state: Market/account reader handed to fleets.
            custom_step: Step function for the custom model.
            time_fn: Millisecond clock, injectable for tests.
        """
        self._catalog = catalog or default_catalog()
        self._reference = reference
        self._executor = executor
        self._recorder = recorder
        self._metrics = metrics
        self._market_state = market_state
        self._custom_step = custom_step
        self._time_fn = time_fn

        self._lock = asyncio.Lock()
        self._engine: PriceEngine | None = None
        self._fleet: BotFleet | None = None
        self._config: SessionConfig | None = None
        self._subscriptions: list[Subscription] = []
        self._credentials: dict[str, SessionCredentials] = {}
        self._background: set[asyncio.Task[None]] = set()

    def _now_ms(self) -> int:
        if self._time_fn is not None:
            return self._time_fn()
        return int(time.time() * 1000)

    @property
    def running(self) -> bool:
        return self._engine is not None and self._engine.running

    @property
    def session_id(self) -> str | None:
        return self._engine.session_id if self._engine is not None else None

    @property
    def engine(self) -> PriceEngine | None:
        return self._engine

    @property
    def fleet(self) -> BotFleet | None:
        return self._fleet

    @property
    def catalog(self) -> ScenarioCatalog:
        return self._catalog

    # -------------------------------------------------------------- lifecycle

    async def start(
        self,
        config: SessionConfig | Mapping[str, Any],
        *,
        executor: Executor | None = None,
        credentials: SessionCredentials | None = None,
    ) -> SessionSnapshot:
        """
        Start a new session.

        Args:
            config: Session config (validated model or raw mapping).
            executor: Trade executor for this session's fleet.
            credentials: Material letting another process resume this session.

        Returns:
            Snapshot of the started session.

        Raises:
            AlreadyRunningError: A session is running; it is left untouched.
            InvalidConfigError: Bad config or credentials for another market.
            UnknownScenarioError: config.scenario is not in the catalog.
        """
        async with self._lock:
            self._ensure_idle()
            await self._clear_finished()
            session_config = _coerce_config(config)
            return await self._launch(
                session_config,
                session_id=new_session_id(),
                executor=executor,
                credentials=credentials,
                start_price_e6=None,
            )

    async def rehydrate(
        self,
        credentials: SessionCredentials,
        *,
        current_price_e6: int | None = None,
        config: SessionConfig | Mapping[str, Any] | None = None,
        executor: Executor | None = None,
    ) -> SessionSnapshot:
        """
        Resume acting for a session started elsewhere.

        The session keeps credentials.session_id. Pricing continues from
        current_price_e6 when given, else from the config's start price.

        Raises:
            AlreadyRunningError: This manager already runs a session.
            InvalidConfigError: Credentials without a session id, or a config
                for another market.
        """
        if credentials.session_id is None:
            raise InvalidConfigError("Rehydration needs credentials with a session_id", field="session_id")
        if current_price_e6 is not None and current_price_e6 <= 0:
            raise InvalidConfigError(
                f"current_price_e6 must be positive, got {current_price_e6}", field="current_price_e6"
            )

        async with self._lock:
            self._ensure_idle()
            await self._clear_finished()
            if config is None:
                session_config = SessionConfig.model_validate({"market_id": credentials.market_id})
            else:
                session_config = _coerce_config(config)
            snapshot = await self._launch(
                session_config,
                session_id=credentials.session_id,
                executor=executor,
                credentials=credentials,
                start_price_e6=current_price_e6,
            )
            logger.info(
                "Session rehydrated",
                extra={"session_id": credentials.session_id, "market_id": credentials.market_id},
            )
            return snapshot

    def _ensure_idle(self) -> None:
        if self._engine is not None and self._engine.running:
            raise AlreadyRunningError(session_id=self._engine.session_id)

    async def _clear_finished(self) -> None:
        """Finalize a session that stopped itself at its update cap."""
        if self._engine is not None and not self._engine.running:
            await self._stop_locked()

    async def _launch(
        self,
        config: SessionConfig,
        *,
        session_id: str,
        executor: Executor | None,
        credentials: SessionCredentials | None,
        start_price_e6: int | None,
    ) -> SessionSnapshot:
        if credentials is not None and credentials.market_id != config.market_id:
            raise InvalidConfigError(
                f"Credentials are for {credentials.market_id}, session market is {config.market_id}",
                field="credentials",
            )

        engine_config = PriceEngineConfig.from_session_config(config, custom_step=self._custom_step)
        if start_price_e6 is not None:
            engine_config = dataclasses.replace(engine_config, start_price_e6=start_price_e6)
        engine = PriceEngine(
            engine_config,
            session_id=session_id,
            catalog=self._catalog,
            reference=self._reference,
            time_fn=self._time_fn,
            on_exhausted=lambda: self._schedule_exhausted_stop(session_id),
        )
        if config.scenario is not None:
            engine.trigger_scenario(config.scenario)

        fleet: BotFleet | None = None
        if config.bots:
            fleet_executor = executor or self._executor
            if fleet_executor is None:
                logger.warning(
                    "No trade executor configured, intents will not be executed",
                    extra={"session_id": session_id},
                )
            fleet = BotFleet(
                config.market_id,
                config.bots,
                fleet_executor,
                session_id=session_id,
                market_state=self._market_state,
                time_fn=self._time_fn,
            )

        # Nothing below raises on ordinary input; the slot is committed here
        self._engine = engine
        self._fleet = fleet
        self._config = config
        if credentials is not None:
            self.store_credentials(credentials.model_copy(update={"session_id": session_id}))

        if fleet is not None:
            self._subscriptions.append(engine.subscribe(fleet.on_price, name="fleet"))
            fleet.start()
        if self._metrics is not None:
            self._subscriptions.append(engine.subscribe(self._on_sample_metrics, name="metrics"))

        await engine.start()
        snapshot = self.get_state()
        self._update_metrics(snapshot)
        logger.info(
            "Session started",
            extra={
                "session_id": session_id,
                "market_id": config.market_id,
                "model": config.model.value,
                "bots": len(config.bots),
                "scenario": config.scenario,
            },
        )
        await self._record_start(snapshot)
        return snapshot

    async def stop(self) -> FinalSessionSnapshot:
        """
        Stop the session and discard its state.

        In-flight executions may still complete; their results are dropped.

        Returns:
            Final metrics of the stopped session.

        Raises:
            NotRunningError: No session (no side effects).
        """
        async with self._lock:
            return await self._stop_locked()

    async def _stop_locked(self) -> FinalSessionSnapshot:
        engine = self._engine
        if engine is None:
            raise NotRunningError()

        engine_state = await engine.stop()
        fleet_state = None
        if self._fleet is not None:
            self._fleet.stop()
            fleet_state = self._fleet.get_state()
        for sub in self._subscriptions:
            sub.close()

        self._update_metrics(
            SessionSnapshot(
                session_id=engine.session_id,
                running=False,
                market_id=engine.market_id,
                has_credentials=engine.market_id in self._credentials,
                engine=engine_state,
                fleet=fleet_state,
            )
        )

        stopped_at = self._now_ms()
        started_at = engine_state.started_at
        final = FinalSessionSnapshot(
            session_id=engine.session_id,
            market_id=engine.market_id,
            started_at=started_at,
            stopped_at=stopped_at,
            elapsed_ms=max(0, stopped_at - started_at) if started_at is not None else 0,
            total_updates=engine_state.updates_count,
            total_trades_executed=fleet_state.total_trades_executed if fleet_state is not None else 0,
            total_trades_failed=fleet_state.total_trades_failed if fleet_state is not None else 0,
            start_price_e6=engine_state.start_price_e6,
            end_price_e6=engine_state.current_price_e6,
            high_price_e6=engine_state.high_price_e6,
            low_price_e6=engine_state.low_price_e6,
            scenario=engine_state.scenario,
            engine=engine_state,
            fleet=fleet_state,
        )

        self._engine = None
        self._fleet = None
        self._config = None
        self._subscriptions = []

        logger.info(
            "Session stopped",
            extra={
                "session_id": final.session_id,
                "total_updates": final.total_updates,
                "trades_executed": final.total_trades_executed,
                "trades_failed": final.total_trades_failed,
                "price_change_pct": round(final.price_change_pct, 4),
            },
        )
        await self._record_end(final)
        return final

    def _schedule_exhausted_stop(self, session_id: str) -> None:
        task = asyncio.get_running_loop().create_task(self._stop_exhausted(session_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _stop_exhausted(self, session_id: str) -> None:
        async with self._lock:
            if self._engine is None or self._engine.session_id != session_id:
                return
            with contextlib.suppress(NotRunningError):
                await self._stop_locked()

    # ------------------------------------------------------------- controls

    def trigger_scenario(self, name: str) -> ScenarioEcho:
        """
        Apply a catalog scenario to the running session.

        Raises:
            NotRunningError: No running session.
            UnknownScenarioError: Name not in the catalog.
        """
        engine = self._require_running()
        scenario = engine.trigger_scenario(name)
        return ScenarioEcho(
            session_id=engine.session_id,
            name=scenario.name,
            description=scenario.description,
            model=scenario.model,
            params=scenario.params.model_dump(mode="json", exclude={"model"}),
            duration_ms=scenario.duration_ms,
            current_price_e6=engine.current_price_e6,
            updates_count=engine.updates_count,
        )

    def set_model(self, model: Any, params: Mapping[str, Any] | None = None) -> ModelParams:
        """
        Hot-swap the running session's base model.

        Raises:
            NotRunningError: No running session.
            InvalidConfigError: Unknown model or bad params.
        """
        return self._require_running().set_model(model, params)

    def trigger_whale(self, action: WhaleAction | str) -> int:
        """
        Trigger every whale in the running fleet.

        Returns:
            Number of whales triggered (0 without a fleet).

        Raises:
            NotRunningError: No running session.
        """
        self._require_running()
        if self._fleet is None:
            return 0
        return self._fleet.trigger_whales(action)

    def _require_running(self) -> PriceEngine:
        if self._engine is None or not self._engine.running:
            raise NotRunningError()
        return self._engine

    # ---------------------------------------------------------- credentials

    def store_credentials(self, credentials: SessionCredentials) -> None:
        """Keep credentials for a market, replacing earlier ones."""
        if credentials.created_at_ms is None:
            credentials = credentials.model_copy(update={"created_at_ms": self._now_ms()})
        self._credentials[credentials.market_id] = credentials
        logger.info(
            "Session credentials stored",
            extra={"market_id": credentials.market_id, "session_id": credentials.session_id},
        )

    def credentials_for(self, market_id: str) -> SessionCredentials | None:
        return self._credentials.get(market_id)

    def forget_credentials(self, market_id: str) -> bool:
        return self._credentials.pop(market_id, None) is not None

    # ---------------------------------------------------------------- state

    def get_state(self) -> SessionSnapshot:
        """Immutable snapshot; safe to call at any time."""
        engine = self._engine
        if engine is None:
            return SessionSnapshot()

        engine_state = engine.get_state()
        started_at = engine_state.started_at
        return SessionSnapshot(
            session_id=engine.session_id,
            running=engine.running,
            market_id=engine.market_id,
            scenario=engine_state.scenario,
            uptime_ms=max(0, self._now_ms() - started_at) if started_at is not None else 0,
            has_credentials=engine.market_id in self._credentials,
            engine=engine_state,
            fleet=self._fleet.get_state() if self._fleet is not None else None,
        )

    def list_scenarios(self) -> list[ScenarioDefinition]:
        return self._catalog.definitions()

    def health(self) -> dict[str, Any]:
        """Small status dict for /healthz."""
        snapshot = self.get_state()
        return {
            "status": "ok",
            "running": snapshot.running,
            "session_id": snapshot.session_id,
            "market_id": snapshot.market_id,
            "updates_count": snapshot.engine.updates_count if snapshot.engine is not None else 0,
            "uptime_ms": snapshot.uptime_ms,
        }

    # ------------------------------------------------------------- sidecars

    def _on_sample_metrics(self, sample: Any) -> None:
        self._update_metrics(self.get_state())

    def _update_metrics(self, snapshot: SessionSnapshot) -> None:
        if self._metrics is not None:
            self._metrics.update(snapshot)

    async def _record_start(self, snapshot: SessionSnapshot) -> None:
        if self._recorder is None:
            return
        try:
            await self._recorder.record_start(snapshot)
        except Exception:
            logger.exception("Session recorder failed on start", extra={"session_id": snapshot.session_id})

    async def _record_end(self, final: FinalSessionSnapshot) -> None:
        if self._recorder is None:
            return
        try:
            await self._recorder.record_end(final)
        except Exception:
            logger.exception("Session recorder failed on stop", extra={"session_id": final.session_id})
