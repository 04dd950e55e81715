"""
/metrics and /healthz for a running simulation process.

GET /metrics: exposition text of one CollectorRegistry.
GET /healthz: JSON from a health callback (SessionManager.health); 503 when it raises.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import orjson
from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

if TYPE_CHECKING:
    from prometheus_client.registry import CollectorRegistry

logger = logging.getLogger(__name__)

HealthFn = Callable[[], dict[str, Any]]


class MetricsServer:
    """aiohttp app bound to a registry and an optional health callback."""

    def __init__(
        self,
        registry: CollectorRegistry,
        *,
        health_fn: HealthFn | None = None,
        host: str = "127.0.0.1",
        port: int = 9090,
    ) -> None:
        self._registry = registry
        self._health_fn = health_fn
        self._host = host
        self._port = port
        self._runner: web.AppRunner | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/metrics", self._metrics)
        app.router.add_get("/healthz", self._healthz)
        return app

    async def _metrics(self, request: web.Request) -> web.Response:
        return web.Response(body=generate_latest(self._registry), headers={"Content-Type": CONTENT_TYPE_LATEST})

    async def _healthz(self, request: web.Request) -> web.Response:
        info: dict[str, Any] = {"status": "ok"}
        status = 200
        if self._health_fn is not None:
            try:
                info = self._health_fn()
            except Exception:
                logger.exception("Health callback failed")
                info, status = {"status": "error"}, 503
        return web.Response(
            body=orjson.dumps(info, option=orjson.OPT_SORT_KEYS),
            status=status,
            content_type="application/json",
        )

    @property
    def running(self) -> bool:
        return self._runner is not None

    @property
    def addresses(self) -> list[Any]:
        return list(self._runner.addresses) if self._runner is not None else []

    async def start(self) -> None:
        """Bind and serve; port 0 picks a free port (see addresses)."""
        if self._runner is not None:
            return
        runner = web.AppRunner(self.build_app(), access_log=None)
        await runner.setup()
        await web.TCPSite(runner, self._host, self._port).start()
        self._runner = runner
        logger.info("Metrics server listening", extra={"host": self._host, "port": self._port})

    async def stop(self) -> None:
        if self._runner is None:
            return
        await self._runner.cleanup()
        self._runner = None
        logger.info("Metrics server stopped")
