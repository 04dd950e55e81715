"""
Trade executors.

The fleet hands each intent to an injected async callable and only looks at
whether it resolved truthy. Retry policy belongs here, never in the fleet.

- TradeExecutor: the protocol
- SimulatedExecutor: in-process executor with a seeded success rate
- BoundedRetryExecutor: wraps another executor with exponential backoff
- WebhookTradeExecutor: relays intents to a settlement service over HTTP
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import TYPE_CHECKING, Protocol

import aiohttp

from perpsim.connectors.backoff import (
    BackoffConfig,
    BackoffState,
    compute_backoff_delay,
    parse_retry_after_ms,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from perpsim.contracts.bots import TradeIntent

logger = logging.getLogger(__name__)


class TradeExecutor(Protocol):
    """Submits one intent; True means the settlement layer accepted it.

    Must be safe to call concurrently for distinct intents.
    """

    async def __call__(self, intent: TradeIntent) -> bool: ...


class SimulatedExecutor:
    """Accepts intents in-process, failing a seeded fraction of them."""

    def __init__(self, success_rate: float = 1.0, *, latency_ms: int = 0, seed: int | None = None) -> None:
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError(f"success_rate must be in [0, 1], got {success_rate}")
        if latency_ms < 0:
            raise ValueError(f"latency_ms must be >= 0, got {latency_ms}")
        self._success_rate = success_rate
        self._latency_ms = latency_ms
        self._rng = random.Random(seed)
        self.submitted: list[TradeIntent] = []

    async def __call__(self, intent: TradeIntent) -> bool:
        if self._latency_ms:
            await asyncio.sleep(self._latency_ms / 1000)
        self.submitted.append(intent)
        ok = self._rng.random() < self._success_rate
        logger.debug(
            "Simulated execution",
            extra={
                "intent_id": intent.intent_id,
                "agent": intent.originating_agent_name,
                "size": intent.size,
                "ok": ok,
            },
        )
        return ok


class BoundedRetryExecutor:
    """
    Retry an inner executor on exceptions and falsy results.

    Gives up after backoff.max_retries retries and returns False, so the
    fleet records a single failure.
    """

    def __init__(
        self,
        inner: Callable[[TradeIntent], Awaitable[bool]],
        backoff: BackoffConfig | None = None,
        *,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._inner = inner
        self._backoff = backoff or BackoffConfig(base_delay_ms=250, max_delay_ms=5_000, max_retries=2)
        self._rng = rng
        self._sleep = sleep
        self.attempts = 0
        self.retries = 0

    async def __call__(self, intent: TradeIntent) -> bool:
        state = BackoffState()
        while True:
            self.attempts += 1
            try:
                ok = bool(await self._inner(intent))
            except Exception as e:
                ok = False
                logger.warning(
                    "Executor attempt raised",
                    extra={"intent_id": intent.intent_id, "attempt": state.attempt + 1, "error": str(e)},
                )
            if ok:
                return True

            state.record_error()
            if state.exhausted(self._backoff):
                logger.warning(
                    "Executor retries exhausted",
                    extra={"intent_id": intent.intent_id, "attempts": state.attempt},
                )
                return False

            self.retries += 1
            delay_ms = compute_backoff_delay(self._backoff, state, rng=self._rng)
            await self._sleep(delay_ms / 1000)


class WebhookTradeExecutor:
    """
    POST intents as JSON to a settlement relay.

    2xx is success. Anything else (including connection errors) is a
    failure; wrap in BoundedRetryExecutor for retries. A 429 is logged with
    its Retry-After so the wrapper's backoff can be tuned.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout_s: float = 10.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        if not url.startswith(("http://", "https://")):
            raise ValueError(f"url must be http(s), got {url!r}")
        self._url = url
        self._timeout_s = timeout_s
        self._headers = {"Content-Type": "application/json", **(headers or {})}
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def __call__(self, intent: TradeIntent) -> bool:
        try:
            session = await self._get_session()
            async with session.post(
                self._url, data=intent.to_json(), headers=self._headers
            ) as resp:
                if 200 <= resp.status < 300:
                    return True
                if resp.status == 429:
                    logger.warning(
                        "Settlement relay rate limited",
                        extra={
                            "intent_id": intent.intent_id,
                            "retry_after_ms": parse_retry_after_ms(resp.headers),
                        },
                    )
                    return False
                error_text = await resp.text()
                logger.warning(
                    "Settlement relay rejected intent",
                    extra={"intent_id": intent.intent_id, "status": resp.status, "error": error_text[:200]},
                )
                return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(
                "Settlement relay connection error",
                extra={"intent_id": intent.intent_id, "error": str(e)},
            )
            return False

    async def close(self) -> None:
        """Close aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
