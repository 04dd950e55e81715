"""Price model parameters.

One closed model per price model kind, each carrying only the fields that
model uses. Unknown keys are rejected. Legacy camelCase keys (``revertSpeed``,
``crashMagnitude``) are accepted alongside snake_case at load time.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from perpsim.contracts.types import PriceModelKind
from perpsim.errors import InvalidConfigError

DEFAULT_MIN_PRICE_E6 = 1_000  # $0.001
DEFAULT_MAX_PRICE_E6 = 1_000_000_000  # $1000


class _ModelParamsBase(BaseModel):
    """Shared clamp bounds for every model."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    min_price: int = Field(
        default=DEFAULT_MIN_PRICE_E6,
        gt=0,
        description="Lower clamp bound (E6)",
    )
    max_price: int = Field(
        default=DEFAULT_MAX_PRICE_E6,
        gt=0,
        description="Upper clamp bound (E6)",
    )

    @model_validator(mode="after")
    def validate_bounds(self) -> _ModelParamsBase:
        """Ensure min_price <= max_price."""
        if self.min_price > self.max_price:
            raise ValueError(f"min_price ({self.min_price}) must be <= max_price ({self.max_price})")
        return self


class RandomWalkParams(_ModelParamsBase):
    """Gaussian multiplicative step."""

    model: Literal["random-walk"] = "random-walk"
    volatility: float = Field(default=0.01, ge=0, description="Per-tick std dev as a fraction")


class MeanRevertParams(_ModelParamsBase):
    """Pull toward mean_price with gaussian noise."""

    model: Literal["mean-revert"] = "mean-revert"
    volatility: float = Field(default=0.005, ge=0)
    revert_speed: float = Field(default=0.1, ge=0, le=1)
    mean_price: int | None = Field(
        default=None,
        gt=0,
        description="Reversion target (E6); defaults to the anchor price",
    )


class TrendingParams(_ModelParamsBase):
    """Constant drift with optional noise overlay."""

    model: Literal["trending"] = "trending"
    drift_per_step: int = Field(default=0, description="Signed E6 delta per tick")
    drift_frac: float = Field(default=0.0, gt=-1, lt=1, description="Signed fractional drift per tick")
    volatility: float = Field(default=0.0, ge=0)


class CrashParams(_ModelParamsBase):
    """Cubic ease-out decay from the anchor, then optional recovery."""

    model: Literal["crash"] = "crash"
    crash_magnitude: float = Field(default=0.3, ge=0, lt=1)
    crash_duration_ms: int = Field(default=10_000, gt=0)
    recovery_speed: float = Field(default=0.0, ge=0, le=1)
    volatility: float = Field(default=0.0, ge=0)


class SqueezeParams(_ModelParamsBase):
    """Quadratic ease-in rise from the anchor, then optional reversion."""

    model: Literal["squeeze"] = "squeeze"
    squeeze_magnitude: float = Field(default=0.5, ge=0)
    squeeze_duration_ms: int = Field(default=10_000, gt=0)
    recovery_speed: float = Field(default=0.0, ge=0, le=1)
    volatility: float = Field(default=0.0, ge=0)


class CustomParams(_ModelParamsBase):
    """Opaque options handed to a caller-supplied step function."""

    model: Literal["custom"] = "custom"
    options: dict[str, float] = Field(default_factory=dict)


ModelParams = Annotated[
    RandomWalkParams | MeanRevertParams | TrendingParams | CrashParams | SqueezeParams | CustomParams,
    Field(discriminator="model"),
]

PARAMS_BY_KIND: dict[PriceModelKind, type[_ModelParamsBase]] = {
    PriceModelKind.RANDOM_WALK: RandomWalkParams,
    PriceModelKind.MEAN_REVERT: MeanRevertParams,
    PriceModelKind.TRENDING: TrendingParams,
    PriceModelKind.CRASH: CrashParams,
    PriceModelKind.SQUEEZE: SqueezeParams,
    PriceModelKind.CUSTOM: CustomParams,
}


def parse_model_kind(kind: Any) -> PriceModelKind:
    """Parse a model name, raising InvalidConfigError for unknown names."""
    if isinstance(kind, PriceModelKind):
        return kind
    try:
        return PriceModelKind(kind)
    except ValueError:
        valid = ", ".join(k.value for k in PriceModelKind)
        raise InvalidConfigError(f"Unknown price model: {kind!r} (valid: {valid})", field="model") from None


def normalize_keys(cls: type[BaseModel], data: Mapping[str, Any]) -> dict[str, Any]:
    """Rewrite camelCase aliases to field names; unknown keys pass through."""
    by_alias = {field.alias: name for name, field in cls.model_fields.items() if field.alias}
    return {by_alias.get(key, key): value for key, value in data.items()}


def parse_model_params(kind: Any, raw: Mapping[str, Any] | BaseModel | None = None) -> ModelParams:
    """Validate a raw params mapping for a model kind.

    This is the configuration-load migration step: legacy camelCase keys are
    renamed, defaults filled in, and unknown keys rejected.

    Raises:
        InvalidConfigError: Unknown model, unknown key, or out-of-range value.
    """
    model_kind = parse_model_kind(kind)
    cls = PARAMS_BY_KIND[model_kind]

    if isinstance(raw, cls):
        return raw  # type: ignore[return-value]
    if isinstance(raw, BaseModel):
        raw = raw.model_dump()

    data = normalize_keys(cls, raw or {})
    declared = data.pop("model", model_kind.value)
    if declared != model_kind.value:
        raise InvalidConfigError(
            f"Params declare model {declared!r} but {model_kind.value!r} was requested",
            field="params.model",
        )

    try:
        return cls.model_validate(data)  # type: ignore[return-value]
    except ValidationError as exc:
        raise InvalidConfigError(
            f"Invalid {model_kind.value} params: {exc.errors(include_url=False)}",
            field="params",
        ) from exc


def merge_model_params(
    current: ModelParams,
    overrides: Mapping[str, Any] | None,
) -> ModelParams:
    """Merge overrides into params of the same kind, re-validating the result."""
    if not overrides:
        return current
    cls = type(current)
    merged = current.model_dump()
    merged.update(normalize_keys(cls, overrides))
    return parse_model_params(current.model, merged)


def with_bounds(params: ModelParams, bounds: ModelParams) -> ModelParams:
    """Copy of params clamped to the min/max price of another params set."""
    if params.min_price == bounds.min_price and params.max_price == bounds.max_price:
        return params
    return params.model_copy(update={"min_price": bounds.min_price, "max_price": bounds.max_price})
