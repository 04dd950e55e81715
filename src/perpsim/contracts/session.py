"""Session contracts.

SessionConfig: what start() accepts.
SessionSnapshot / FinalSessionSnapshot: what status and stop() return.
ScenarioEcho: what trigger_scenario() returns.
SessionCredentials: material that lets any process act for a session.
"""

from __future__ import annotations

from typing import Any

from pydantic import ConfigDict, Field, SecretStr, model_validator
from pydantic.alias_generators import to_camel

from perpsim.contracts.base import SCHEMA_VERSION, FrozenModel
from perpsim.contracts.bots import BotConfig, FleetState
from perpsim.contracts.model_params import ModelParams, parse_model_kind, parse_model_params
from perpsim.contracts.price import PriceEngineState  # noqa: TC001 - pydantic needs it at runtime
from perpsim.contracts.types import PriceModelKind

DEFAULT_INTERVAL_MS = 2000
MIN_INTERVAL_MS = 100


class SessionConfig(FrozenModel):
    """Configuration for one simulation session."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        str_strip_whitespace=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    market_id: str = Field(default="sim-market", min_length=1)
    start_price_e6: int = Field(default=100_000_000, gt=0, description="Starting price (E6)")
    model: PriceModelKind = PriceModelKind.RANDOM_WALK
    params: ModelParams
    interval_ms: int = Field(default=DEFAULT_INTERVAL_MS, ge=MIN_INTERVAL_MS)
    seed: int | None = Field(default=None, description="Seed for reproducible price series")
    scenario: str | None = Field(default=None, description="Scenario to apply right after start")
    max_duration_ms: int | None = Field(default=None, gt=0, description="Hard cap on session length")
    bots: list[BotConfig] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def coerce_params(cls, data: Any) -> Any:
        """Resolve params against the selected model (legacy keys allowed)."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        model = data.get("model", PriceModelKind.RANDOM_WALK)
        data["model"] = parse_model_kind(model)
        data["params"] = parse_model_params(data["model"], data.get("params"))
        return data

    @model_validator(mode="after")
    def validate_bots(self) -> SessionConfig:
        """Bot names must be unique and target this market."""
        seen: set[str] = set()
        for bot in self.bots:
            if bot.name in seen:
                raise ValueError(f"Duplicate bot name: {bot.name}")
            seen.add(bot.name)
            if bot.target_market_id != self.market_id:
                raise ValueError(
                    f"Bot {bot.name} targets {bot.target_market_id}, session market is {self.market_id}"
                )
        return self

    @property
    def max_updates(self) -> int | None:
        """Tick cap derived from max_duration_ms."""
        if self.max_duration_ms is None:
            return None
        return max(1, self.max_duration_ms // self.interval_ms)


class SessionCredentials(FrozenModel):
    """Credential material supplied alongside start for rehydration."""

    market_id: str = Field(min_length=1)
    session_id: str | None = None
    oracle_authority: SecretStr = Field(description="Signing authority for price pushes")
    created_at_ms: int | None = None


class SessionSnapshot(FrozenModel):
    """Serializable view of the manager's session slot."""

    schema_version: str = SCHEMA_VERSION
    session_id: str | None = None
    running: bool = False
    market_id: str | None = None
    scenario: str | None = None
    uptime_ms: int = 0
    has_credentials: bool = False
    engine: PriceEngineState | None = None
    fleet: FleetState | None = None


class FinalSessionSnapshot(FrozenModel):
    """Final metrics of a stopped session."""

    schema_version: str = SCHEMA_VERSION
    session_id: str
    market_id: str
    started_at: int | None = None
    stopped_at: int
    elapsed_ms: int = Field(ge=0)
    total_updates: int = Field(ge=0)
    total_trades_executed: int = 0
    total_trades_failed: int = 0
    start_price_e6: int = Field(gt=0)
    end_price_e6: int = Field(gt=0)
    high_price_e6: int = Field(gt=0)
    low_price_e6: int = Field(gt=0)
    scenario: str | None = None
    engine: PriceEngineState
    fleet: FleetState | None = None

    @property
    def price_change_pct(self) -> float:
        """Percentage change from start to end price."""
        return (self.end_price_e6 - self.start_price_e6) / self.start_price_e6 * 100


class ScenarioEcho(FrozenModel):
    """Acknowledgement of an applied scenario."""

    session_id: str
    name: str
    description: str
    model: PriceModelKind
    params: dict[str, Any]
    duration_ms: int | None = None
    current_price_e6: int = Field(gt=0)
    updates_count: int = Field(ge=0)
