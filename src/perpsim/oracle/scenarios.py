"""
Scenario catalog.

Named presets bundling a price model with its params and an optional
duration. The ``pyth-*`` scenarios are correlated to a live reference feed:
the engine seeds their model from the feed's cached price.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from functools import lru_cache

from perpsim.contracts.model_params import (
    CrashParams,
    MeanRevertParams,
    RandomWalkParams,
    SqueezeParams,
    TrendingParams,
)
from perpsim.contracts.price import ScenarioDefinition
from perpsim.contracts.types import PriceModelKind
from perpsim.errors import InvalidConfigError, UnknownScenarioError

DEFAULT_REFERENCE_FEED = "SOL/USD"

DEFAULT_SCENARIOS: tuple[ScenarioDefinition, ...] = (
    ScenarioDefinition(
        name="calm",
        description="Low volatility, mean-reverting market",
        model=PriceModelKind.MEAN_REVERT,
        params=MeanRevertParams(volatility=0.002, revert_speed=0.1),
        duration_ms=300_000,
    ),
    ScenarioDefinition(
        name="bull",
        description="Steady upward trend",
        model=PriceModelKind.TRENDING,
        params=TrendingParams(drift_frac=0.001, volatility=0.005),
        duration_ms=300_000,
    ),
    ScenarioDefinition(
        name="crash",
        description="Sharp 40% decline with slow recovery",
        model=PriceModelKind.CRASH,
        params=CrashParams(crash_magnitude=0.4, crash_duration_ms=30_000, recovery_speed=0.02, volatility=0.02),
        duration_ms=120_000,
    ),
    ScenarioDefinition(
        name="squeeze",
        description="Short squeeze, rapid 50% price increase",
        model=PriceModelKind.SQUEEZE,
        params=SqueezeParams(squeeze_magnitude=0.5, squeeze_duration_ms=60_000, volatility=0.01),
        duration_ms=180_000,
    ),
    ScenarioDefinition(
        name="whale",
        description="Choppy market for large player activity",
        model=PriceModelKind.RANDOM_WALK,
        params=RandomWalkParams(volatility=0.01),
        duration_ms=300_000,
    ),
    ScenarioDefinition(
        name="blackswan",
        description="Extreme 70% crash in seconds",
        model=PriceModelKind.CRASH,
        params=CrashParams(crash_magnitude=0.7, crash_duration_ms=5_000, volatility=0.05),
        duration_ms=60_000,
    ),
    ScenarioDefinition(
        name="pyth-calm",
        description="Tracks the reference feed with minimal deviation",
        model=PriceModelKind.MEAN_REVERT,
        params=MeanRevertParams(volatility=0.001, revert_speed=0.5),
        reference_feed=DEFAULT_REFERENCE_FEED,
    ),
    ScenarioDefinition(
        name="pyth-crash",
        description="30% crash from the reference price",
        model=PriceModelKind.CRASH,
        params=CrashParams(crash_magnitude=0.3, crash_duration_ms=30_000, volatility=0.02),
        duration_ms=120_000,
        reference_feed=DEFAULT_REFERENCE_FEED,
    ),
    ScenarioDefinition(
        name="pyth-squeeze",
        description="50% squeeze from the reference price",
        model=PriceModelKind.SQUEEZE,
        params=SqueezeParams(squeeze_magnitude=0.5, squeeze_duration_ms=60_000, volatility=0.01),
        duration_ms=180_000,
        reference_feed=DEFAULT_REFERENCE_FEED,
    ),
    ScenarioDefinition(
        name="pyth-blackswan",
        description="70% crash from the reference price",
        model=PriceModelKind.CRASH,
        params=CrashParams(crash_magnitude=0.7, crash_duration_ms=5_000, volatility=0.05),
        duration_ms=60_000,
        reference_feed=DEFAULT_REFERENCE_FEED,
    ),
    ScenarioDefinition(
        name="pyth-volatile",
        description="Reference price with amplified (2.5x) moves",
        model=PriceModelKind.RANDOM_WALK,
        params=RandomWalkParams(volatility=0.025),
        reference_feed=DEFAULT_REFERENCE_FEED,
    ),
)


class ScenarioCatalog:
    """Read-only lookup over scenario definitions."""

    def __init__(self, scenarios: Iterable[ScenarioDefinition]) -> None:
        self._scenarios: dict[str, ScenarioDefinition] = {}
        for scenario in scenarios:
            if scenario.name in self._scenarios:
                raise InvalidConfigError(f"Duplicate scenario name: {scenario.name}", field="name")
            self._scenarios[scenario.name] = scenario

    def get(self, name: str) -> ScenarioDefinition:
        """Look up a scenario.

        Raises:
            UnknownScenarioError: Name not in the catalog.
        """
        try:
            return self._scenarios[name]
        except KeyError:
            raise UnknownScenarioError(name, list(self._scenarios)) from None

    def names(self) -> list[str]:
        return list(self._scenarios)

    def definitions(self) -> list[ScenarioDefinition]:
        return list(self._scenarios.values())

    def __contains__(self, name: object) -> bool:
        return name in self._scenarios

    def __iter__(self) -> Iterator[ScenarioDefinition]:
        return iter(self._scenarios.values())

    def __len__(self) -> int:
        return len(self._scenarios)


@lru_cache(maxsize=1)
def default_catalog() -> ScenarioCatalog:
    """The built-in catalog, built once per process."""
    return ScenarioCatalog(DEFAULT_SCENARIOS)
