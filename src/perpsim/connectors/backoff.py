"""
Retry backoff and circuit breaker for outbound calls.

Shared by the external price reference (feed polling) and the bounded-retry
trade executor:
- Exponential backoff with jitter; jitter takes a seeded RNG for reproducible tests
- Circuit breaker that stops calling an upstream after repeated failures
- 429 from the upstream opens the circuit immediately, honoring Retry-After
"""

from __future__ import annotations

import random
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable


class CircuitState(str, Enum):
    """Circuit breaker state."""

    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Blocking calls
    HALF_OPEN = "HALF_OPEN"  # Probing whether the upstream recovered


@dataclass
class BackoffConfig:
    """Configuration for exponential backoff."""

    base_delay_ms: int = 500
    max_delay_ms: int = 30_000
    multiplier: float = 2.0
    jitter_factor: float = 0.5  # 0.5 = ±50% jitter
    max_retries: int = 3

    def __post_init__(self) -> None:
        if self.base_delay_ms < 0:
            raise ValueError(f"base_delay_ms must be >= 0, got {self.base_delay_ms}")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError(f"max_delay_ms ({self.max_delay_ms}) must be >= base_delay_ms ({self.base_delay_ms})")
        if self.multiplier < 1.0:
            raise ValueError(f"multiplier must be >= 1.0, got {self.multiplier}")
        if not 0.0 <= self.jitter_factor < 1.0:
            raise ValueError(f"jitter_factor must be in [0, 1), got {self.jitter_factor}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")


@dataclass
class BackoffState:
    """Mutable state for backoff tracking."""

    attempt: int = 0
    last_error_time_ms: int = 0
    consecutive_errors: int = 0

    def reset(self) -> None:
        """Reset after a successful call."""
        self.attempt = 0
        self.consecutive_errors = 0

    def record_error(self) -> None:
        """Record a failed call."""
        self.attempt += 1
        self.consecutive_errors += 1
        self.last_error_time_ms = int(time.time() * 1000)

    def exhausted(self, config: BackoffConfig) -> bool:
        """Check if the retry budget is spent."""
        return self.attempt > config.max_retries


def compute_backoff_delay(
    config: BackoffConfig,
    state: BackoffState,
    retry_after_ms: int | None = None,
    *,
    rng: random.Random | None = None,
) -> int:
    """
    Compute backoff delay with exponential increase and jitter.

    Args:
        config: Backoff configuration.
        state: Current backoff state.
        retry_after_ms: Server-provided retry delay (Retry-After header).
        rng: Optional seeded Random instance for deterministic jitter.

    Returns:
        Delay in milliseconds before the next attempt (0 before the first error).
    """
    if state.attempt == 0:
        return 0

    delay = config.base_delay_ms * (config.multiplier ** (state.attempt - 1))

    jitter_min = 1.0 - config.jitter_factor
    jitter_max = 1.0 + config.jitter_factor
    source = rng if rng is not None else random
    delay = delay * source.uniform(jitter_min, jitter_max)

    delay = min(delay, config.max_delay_ms)

    # Upstream knows best
    if retry_after_ms is not None and retry_after_ms > 0:
        delay = max(delay, retry_after_ms)

    return int(delay)


def parse_retry_after_ms(headers: Mapping[str, str]) -> int | None:
    """Parse a Retry-After header given in seconds; HTTP dates are ignored."""
    value = headers.get("Retry-After")
    if value is None:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return int(seconds * 1000) if seconds > 0 else None


@dataclass
class CircuitBreaker:
    """
    Circuit breaker guarding an upstream.

    States:
    - CLOSED: Normal operation, calls pass through
    - OPEN: Blocking all calls until recovery_timeout_ms elapses
    - HALF_OPEN: Allowing a trial call to check if the upstream recovered

    _time_fn can be injected for deterministic tests.
    """

    failure_threshold: int = 3
    recovery_timeout_ms: int = 30_000
    half_open_max_requests: int = 1

    state: CircuitState = field(default=CircuitState.CLOSED)
    failure_count: int = field(default=0)
    last_failure_time_ms: int = field(default=0)
    half_open_requests: int = field(default=0)
    _open_until_ms: int = field(default=0)

    _time_fn: Callable[[], int] | None = field(default=None)

    def _now_ms(self) -> int:
        if self._time_fn is not None:
            return self._time_fn()
        return int(time.time() * 1000)

    def can_execute(self) -> bool:
        """
        Check if a call may proceed.

        Returns:
            True if the call should proceed, False if blocked by the circuit.
        """
        now_ms = self._now_ms()

        if self.state == CircuitState.CLOSED:
            return True

        if self.state == CircuitState.OPEN:
            if self._open_until_ms > 0 and now_ms < self._open_until_ms:
                return False
            if now_ms - self.last_failure_time_ms >= self.recovery_timeout_ms or (
                self._open_until_ms > 0 and now_ms >= self._open_until_ms
            ):
                self.state = CircuitState.HALF_OPEN
                self.half_open_requests = 1
                self._open_until_ms = 0
                return True
            return False

        if self.half_open_requests < self.half_open_max_requests:
            self.half_open_requests += 1
            return True
        return False

    def record_success(self) -> None:
        """Record a successful call."""
        if self.state == CircuitState.HALF_OPEN:
            self.state = CircuitState.CLOSED
        self.failure_count = 0
        self._open_until_ms = 0

    def record_failure(self, is_rate_limit: bool = False, retry_after_ms: int | None = None) -> None:
        """
        Record a failed call.

        Args:
            is_rate_limit: True if the upstream answered 429.
            retry_after_ms: Upstream-provided cooldown, if any.
        """
        now_ms = self._now_ms()
        self.last_failure_time_ms = now_ms

        if self.state == CircuitState.HALF_OPEN:
            self.state = CircuitState.OPEN
            return

        self.failure_count += 1

        if is_rate_limit:
            self.state = CircuitState.OPEN
            if retry_after_ms:
                self._open_until_ms = now_ms + retry_after_ms
            return

        if self.failure_count >= self.failure_threshold:
            self.state = CircuitState.OPEN

    def reset(self) -> None:
        """Reset to the initial CLOSED state."""
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time_ms = 0
        self.half_open_requests = 0
        self._open_until_ms = 0

    def get_status(self) -> dict[str, str | int]:
        """Current status for observability."""
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "last_failure_time_ms": self.last_failure_time_ms,
        }
