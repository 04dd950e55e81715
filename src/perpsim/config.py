"""
Process-level simulation settings.

Defaults are overridable from the environment:

    PERPSIM_INTERVAL_MS     default tick interval for sessions
    PERPSIM_HERMES_URL      base URL of the Hermes price service
    PERPSIM_FEED_STALE_MS   age after which a cached reference price is stale
    PERPSIM_METRICS_PORT    port for /metrics and /healthz (0 disables)
    PERPSIM_LOG_LEVEL       logging level name
    PERPSIM_LOG_JSON        "1"/"true" for JSON log lines
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

from perpsim.contracts.session import DEFAULT_INTERVAL_MS, MIN_INTERVAL_MS
from perpsim.errors import InvalidConfigError
from perpsim.oracle.reference import DEFAULT_STALE_AFTER_MS, HERMES_BASE_URL, ReferenceConfig

if TYPE_CHECKING:
    from collections.abc import Mapping

ENV_PREFIX = "PERPSIM_"

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise InvalidConfigError(f"{name} must be a boolean, got {raw!r}", field=name)


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw.strip())
    except ValueError as e:
        raise InvalidConfigError(f"{name} must be an integer, got {raw!r}", field=name) from e


@dataclass
class SimulationSettings:
    """Settings shared by every session the process runs."""

    interval_ms: int = DEFAULT_INTERVAL_MS
    hermes_url: str = HERMES_BASE_URL
    feed_stale_ms: int = DEFAULT_STALE_AFTER_MS
    metrics_port: int = 0
    log_level: str = "INFO"
    log_json: bool = False

    def __post_init__(self) -> None:
        if self.interval_ms < MIN_INTERVAL_MS:
            raise InvalidConfigError(
                f"interval_ms must be >= {MIN_INTERVAL_MS}, got {self.interval_ms}",
                field="interval_ms",
            )
        if not self.hermes_url.startswith(("http://", "https://")):
            raise InvalidConfigError(f"hermes_url must be http(s), got {self.hermes_url!r}", field="hermes_url")
        if self.feed_stale_ms <= 0:
            raise InvalidConfigError(f"feed_stale_ms must be positive, got {self.feed_stale_ms}", field="feed_stale_ms")
        if not 0 <= self.metrics_port <= 65535:
            raise InvalidConfigError(f"metrics_port out of range: {self.metrics_port}", field="metrics_port")
        self.log_level = self.log_level.upper()
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise InvalidConfigError(f"Unknown log level: {self.log_level}", field="log_level")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> SimulationSettings:
        """Defaults overridden by PERPSIM_* variables that are set."""
        env = os.environ if environ is None else environ
        kwargs: dict[str, object] = {}

        if (raw := env.get(f"{ENV_PREFIX}INTERVAL_MS")) is not None:
            kwargs["interval_ms"] = _parse_int(f"{ENV_PREFIX}INTERVAL_MS", raw)
        if (raw := env.get(f"{ENV_PREFIX}HERMES_URL")) is not None:
            kwargs["hermes_url"] = raw.strip()
        if (raw := env.get(f"{ENV_PREFIX}FEED_STALE_MS")) is not None:
            kwargs["feed_stale_ms"] = _parse_int(f"{ENV_PREFIX}FEED_STALE_MS", raw)
        if (raw := env.get(f"{ENV_PREFIX}METRICS_PORT")) is not None:
            kwargs["metrics_port"] = _parse_int(f"{ENV_PREFIX}METRICS_PORT", raw)
        if (raw := env.get(f"{ENV_PREFIX}LOG_LEVEL")) is not None:
            kwargs["log_level"] = raw.strip()
        if (raw := env.get(f"{ENV_PREFIX}LOG_JSON")) is not None:
            kwargs["log_json"] = _parse_bool(f"{ENV_PREFIX}LOG_JSON", raw)

        return cls(**kwargs)  # type: ignore[arg-type]

    def reference_config(self) -> ReferenceConfig:
        """Hermes reference config derived from these settings."""
        return ReferenceConfig(base_url=self.hermes_url, stale_after_ms=self.feed_stale_ms)
