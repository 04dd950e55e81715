"""Price contracts.

PriceSample: one published tick.
Producer: PriceEngine
Consumer: BotFleet, transport subscribers

PriceEngineState: read-only snapshot of the engine's run state.
ScenarioDefinition: immutable catalog entry.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field, model_validator

from perpsim.contracts.base import FrozenModel, SimContractBase, e6_to_float
from perpsim.contracts.model_params import ModelParams  # noqa: TC001 - pydantic needs it at runtime
from perpsim.contracts.types import PriceModelKind


class PriceSample(SimContractBase):
    """One price tick, fanned out to every subscriber."""

    price_e6: int = Field(gt=0, description="Price, fixed-point with 6 decimals")
    timestamp_ms: int = Field(ge=0, description="Tick timestamp (ms)")
    model: PriceModelKind = Field(description="Model that produced the price")
    scenario: str | None = Field(default=None, description="Active scenario name, if any")
    seq: int = Field(ge=1, description="1-based tick number within the session")

    @property
    def price(self) -> float:
        """Price as a float."""
        return e6_to_float(self.price_e6)

    @property
    def dedupe_key(self) -> tuple[str, int]:
        """Dedupe key: (session_id, seq)."""
        return (self.session_id, self.seq)


class PriceEngineState(SimContractBase):
    """Snapshot of a price engine session."""

    market_id: str = Field(description="Market the engine prices")
    running: bool
    current_price_e6: int = Field(gt=0)
    start_price_e6: int = Field(gt=0)
    high_price_e6: int = Field(gt=0)
    low_price_e6: int = Field(gt=0)
    model: PriceModelKind = Field(description="Active model (scenario model while one is active)")
    params: dict[str, Any] = Field(default_factory=dict, description="Active model params")
    base_model: PriceModelKind = Field(description="Model the session reverts to after a scenario")
    scenario: str | None = None
    interval_ms: int = Field(gt=0)
    updates_count: int = Field(ge=0)
    started_at: int | None = Field(default=None, description="Start timestamp (ms)")
    last_update_at: int | None = Field(default=None, description="Last tick timestamp (ms)")
    subscriber_drops: int = Field(default=0, ge=0, description="Samples dropped on full subscriber queues")

    @property
    def elapsed_ms(self) -> int:
        """Milliseconds between start and last update."""
        if self.started_at is None:
            return 0
        end = self.last_update_at if self.last_update_at is not None else self.started_at
        return max(0, end - self.started_at)


class ScenarioDefinition(FrozenModel):
    """Named preset: model + params, optionally time-bounded."""

    name: str = Field(min_length=1)
    description: str = ""
    model: PriceModelKind
    params: ModelParams
    duration_ms: int | None = Field(default=None, gt=0, description="Expiry; None runs until replaced")
    reference_feed: str | None = Field(
        default=None,
        description="External feed the scenario is correlated to",
    )

    @model_validator(mode="after")
    def validate_model_matches_params(self) -> ScenarioDefinition:
        """params must belong to the declared model."""
        if self.params.model != self.model.value:
            raise ValueError(f"Scenario {self.name}: params are for {self.params.model}, model is {self.model.value}")
        return self

    def summary(self) -> dict[str, Any]:
        """Catalog read shape: {name, description, model, params, duration_ms}."""
        return {
            "name": self.name,
            "description": self.description,
            "model": self.model.value,
            "params": self.params.model_dump(mode="json"),
            "duration_ms": self.duration_ms,
            "reference_feed": self.reference_feed,
        }
