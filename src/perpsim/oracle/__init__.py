"""Oracle price generation: models, scenario catalog, engine, external reference."""

from perpsim.oracle.engine import PriceEngine, PriceEngineConfig, Subscription
from perpsim.oracle.models import ModelContext, clamp_price, next_price
from perpsim.oracle.reference import (
    PYTH_FEED_IDS,
    PriceReference,
    PythPriceReference,
    ReferenceConfig,
    ReferenceQuote,
    StaticPriceReference,
)
from perpsim.oracle.scenarios import DEFAULT_SCENARIOS, ScenarioCatalog, default_catalog

__all__ = [
    "DEFAULT_SCENARIOS",
    "PYTH_FEED_IDS",
    "ModelContext",
    "PriceEngine",
    "PriceEngineConfig",
    "PriceReference",
    "PythPriceReference",
    "ReferenceConfig",
    "ReferenceQuote",
    "ScenarioCatalog",
    "StaticPriceReference",
    "Subscription",
    "clamp_price",
    "default_catalog",
    "next_price",
]
