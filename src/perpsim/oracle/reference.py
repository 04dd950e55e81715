"""
External price reference backed by the Pyth Hermes API.

Correlated scenarios seed their model from a real asset's price. The
reference is best-effort:
- fetch() raises UpstreamFeedUnavailableError on any failure
- latest_price_e6() never raises: fresh cache, then stale cache, then a
  static price
- A circuit breaker stops polling an upstream that keeps failing
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import aiohttp

from perpsim.connectors.backoff import (
    BackoffConfig,
    BackoffState,
    CircuitBreaker,
    compute_backoff_delay,
    parse_retry_after_ms,
)
from perpsim.errors import InvalidConfigError, UpstreamFeedUnavailableError

if TYPE_CHECKING:
    import random
    from collections.abc import Callable, Iterable

logger = logging.getLogger(__name__)

HERMES_BASE_URL = "https://hermes.pyth.network"
LATEST_PRICE_PATH = "/v2/updates/price/latest"

PYTH_FEED_IDS: dict[str, str] = {
    "SOL/USD": "0xef0d8b6fda2ceba41da15d4095d1da392a0d2f8ed0c6c7bc0f4cfac8c280b56d",
    "BTC/USD": "0xe62df6c8b4a85fe1a67db44dc12de5db330f7ac66b72dc658afedf0f4a415b43",
    "ETH/USD": "0xff61491a931112ddf1bd8147cd1b641375f79f5825126d665480874634fd0ace",
}

DEFAULT_STALE_AFTER_MS = 30_000


class PriceReference(Protocol):
    """What the price engine needs from an external reference."""

    def latest_price_e6(self, feed: str) -> int | None:
        """Best known price for a feed, or None when nothing is known."""
        ...


@dataclass
class ReferenceConfig:
    """Configuration for the Hermes reference."""

    base_url: str = HERMES_BASE_URL
    stale_after_ms: int = DEFAULT_STALE_AFTER_MS
    request_timeout_ms: int = 5_000
    poll_interval_ms: int = 5_000
    static_price_e6: int = 100_000_000
    feeds: dict[str, str] = field(default_factory=lambda: dict(PYTH_FEED_IDS))

    def __post_init__(self) -> None:
        if self.stale_after_ms <= 0:
            raise ValueError(f"stale_after_ms must be positive, got {self.stale_after_ms}")
        if self.request_timeout_ms <= 0:
            raise ValueError(f"request_timeout_ms must be positive, got {self.request_timeout_ms}")
        if self.poll_interval_ms <= 0:
            raise ValueError(f"poll_interval_ms must be positive, got {self.poll_interval_ms}")
        if self.static_price_e6 <= 0:
            raise ValueError(f"static_price_e6 must be positive, got {self.static_price_e6}")


@dataclass(frozen=True)
class ReferenceQuote:
    """One parsed price update."""

    feed: str
    price_e6: int
    confidence_e6: int
    publish_time_ms: int
    fetched_at_ms: int

    def is_stale(self, now_ms: int, stale_after_ms: int) -> bool:
        return now_ms - self.fetched_at_ms > stale_after_ms


def scale_to_e6(mantissa: int, expo: int) -> int:
    """Convert a (mantissa, exponent) price to fixed-point E6 with integer math."""
    shift = expo + 6
    if shift >= 0:
        return mantissa * 10**shift
    return mantissa // 10 ** (-shift)


def parse_hermes_quote(feed: str, payload: dict[str, Any], fetched_at_ms: int) -> ReferenceQuote:
    """Parse the first entry of a Hermes ``parsed`` response.

    Raises:
        ValueError: Missing fields or a non-positive price.
    """
    try:
        price_info = payload["parsed"][0]["price"]
        mantissa = int(price_info["price"])
        conf = int(price_info["conf"])
        expo = int(price_info["expo"])
        publish_time = int(price_info["publish_time"])
    except (KeyError, IndexError, TypeError) as e:
        raise ValueError(f"Malformed Hermes response: {e!r}") from e

    price_e6 = scale_to_e6(mantissa, expo)
    if price_e6 <= 0:
        raise ValueError(f"Non-positive reference price: {price_e6}")

    return ReferenceQuote(
        feed=feed,
        price_e6=price_e6,
        confidence_e6=scale_to_e6(conf, expo),
        publish_time_ms=publish_time * 1000,
        fetched_at_ms=fetched_at_ms,
    )


class PythPriceReference:
    """
    Cached Hermes price reference with optional background polling.

    The engine only ever calls latest_price_e6(), which reads the cache and
    never awaits; network I/O happens in fetch()/refresh() or the poll task.
    """

    def __init__(
        self,
        config: ReferenceConfig | None = None,
        *,
        circuit_breaker: CircuitBreaker | None = None,
        backoff_config: BackoffConfig | None = None,
        time_fn: Callable[[], int] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._config = config or ReferenceConfig()
        self._time_fn = time_fn
        self._circuit_breaker = circuit_breaker or CircuitBreaker(_time_fn=time_fn)
        self._backoff_config = backoff_config or BackoffConfig()
        self._backoff_state = BackoffState()
        self._rng = rng
        self._cache: dict[str, ReferenceQuote] = {}
        self._session: aiohttp.ClientSession | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._failures = 0

    def _now_ms(self) -> int:
        if self._time_fn is not None:
            return self._time_fn()
        return int(time.time() * 1000)

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._config.request_timeout_ms / 1000)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Stop polling, close the HTTP session and close the circuit."""
        await self.stop_polling()
        self._circuit_breaker.reset()
        self._backoff_state.reset()
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    def feed_id(self, feed: str) -> str:
        """Resolve a symbol like ``SOL/USD`` (or a raw 0x id) to a feed id."""
        if feed.startswith("0x"):
            return feed
        try:
            return self._config.feeds[feed]
        except KeyError:
            raise InvalidConfigError(f"Unknown reference feed: {feed}", field="reference_feed") from None

    async def fetch(self, feed: str) -> ReferenceQuote:
        """
        Fetch the latest price for a feed and update the cache.

        Raises:
            UpstreamFeedUnavailableError: Circuit open, HTTP error, timeout or bad payload.
            InvalidConfigError: Unknown feed symbol.
        """
        feed_id = self.feed_id(feed)

        if not self._circuit_breaker.can_execute():
            raise UpstreamFeedUnavailableError(feed, "circuit open")

        url = f"{self._config.base_url}{LATEST_PRICE_PATH}"
        params = {"ids[]": feed_id, "parsed": "true"}

        try:
            session = await self._get_session()
            async with session.get(url, params=params) as response:
                if response.status == 429:
                    retry_after_ms = parse_retry_after_ms(response.headers)
                    self._circuit_breaker.record_failure(is_rate_limit=True, retry_after_ms=retry_after_ms)
                    raise UpstreamFeedUnavailableError(feed, "rate limited", status_code=429)
                if response.status != 200:
                    self._circuit_breaker.record_failure()
                    raise UpstreamFeedUnavailableError(
                        feed, f"HTTP {response.status}", status_code=response.status
                    )
                payload = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._circuit_breaker.record_failure()
            raise UpstreamFeedUnavailableError(feed, type(e).__name__) from e
        except ValueError as e:
            self._circuit_breaker.record_failure()
            raise UpstreamFeedUnavailableError(feed, f"Malformed Hermes response: {e}") from e

        try:
            quote = parse_hermes_quote(feed, payload, self._now_ms())
        except ValueError as e:
            self._circuit_breaker.record_failure()
            raise UpstreamFeedUnavailableError(feed, str(e)) from e

        self._circuit_breaker.record_success()
        self._cache[feed] = quote
        logger.debug(
            "Reference price updated",
            extra={"feed": feed, "price_e6": quote.price_e6, "publish_time_ms": quote.publish_time_ms},
        )
        return quote

    async def refresh(self, feeds: Iterable[str] | None = None) -> dict[str, int]:
        """Fetch each feed, degrading to cached/static values on failure.

        Returns:
            Best known price per feed. Never raises for upstream failures.
        """
        result: dict[str, int] = {}
        for feed in feeds if feeds is not None else self._config.feeds:
            try:
                quote = await self.fetch(feed)
                result[feed] = quote.price_e6
            except UpstreamFeedUnavailableError as e:
                self._failures += 1
                logger.warning(
                    "Reference feed unavailable, using fallback",
                    extra={"feed": feed, "reason": e.reason, "failures": self._failures},
                )
                result[feed] = self.latest_price_e6(feed)
        return result

    def cached(self, feed: str) -> ReferenceQuote | None:
        return self._cache.get(feed)

    def is_fresh(self, feed: str) -> bool:
        """Check if the cached quote is within stale_after_ms."""
        quote = self._cache.get(feed)
        return quote is not None and not quote.is_stale(self._now_ms(), self._config.stale_after_ms)

    def latest_price_e6(self, feed: str) -> int:
        """Best known price: cached (even if stale), else the static price."""
        quote = self._cache.get(feed)
        if quote is not None:
            return quote.price_e6
        return self._config.static_price_e6

    async def start_polling(self, feeds: Iterable[str]) -> None:
        """Start a background task refreshing feeds every poll_interval_ms."""
        if self._poll_task is not None and not self._poll_task.done():
            return
        feed_list = list(feeds)
        for feed in feed_list:
            self.feed_id(feed)
        self._poll_task = asyncio.create_task(self._poll_loop(feed_list))
        logger.info("Reference polling started", extra={"feeds": feed_list})

    async def stop_polling(self) -> None:
        """Cancel the poll task, if any."""
        if self._poll_task is not None:
            self._poll_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._poll_task
            self._poll_task = None

    async def _poll_loop(self, feeds: list[str]) -> None:
        """Refresh loop; backs off while the upstream keeps failing."""
        while True:
            all_ok = True
            for feed in feeds:
                try:
                    await self.fetch(feed)
                except UpstreamFeedUnavailableError as e:
                    all_ok = False
                    self._failures += 1
                    logger.warning(
                        "Reference poll failed",
                        extra={"feed": feed, "reason": e.reason, "failures": self._failures},
                    )
                except Exception:
                    all_ok = False
                    self._failures += 1
                    logger.exception("Reference poll raised", extra={"feed": feed, "failures": self._failures})

            if all_ok:
                self._backoff_state.reset()
                delay_ms = self._config.poll_interval_ms
            else:
                self._backoff_state.record_error()
                delay_ms = max(
                    self._config.poll_interval_ms,
                    compute_backoff_delay(self._backoff_config, self._backoff_state, rng=self._rng),
                )
            await asyncio.sleep(delay_ms / 1000)

    def get_status(self) -> dict[str, Any]:
        """Status for observability."""
        now_ms = self._now_ms()
        return {
            "circuit": self._circuit_breaker.get_status(),
            "failures": self._failures,
            "polling": self._poll_task is not None and not self._poll_task.done(),
            "feeds": {
                feed: {
                    "price_e6": quote.price_e6,
                    "stale": quote.is_stale(now_ms, self._config.stale_after_ms),
                }
                for feed, quote in self._cache.items()
            },
        }


class StaticPriceReference:
    """Fixed prices per feed; used for offline runs and tests."""

    def __init__(self, prices: dict[str, int] | None = None) -> None:
        self._prices = dict(prices or {})

    def set_price(self, feed: str, price_e6: int) -> None:
        self._prices[feed] = price_e6

    def latest_price_e6(self, feed: str) -> int | None:
        return self._prices.get(feed)
