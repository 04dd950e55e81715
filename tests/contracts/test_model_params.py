"""
Tests for price model params: parsing, legacy key migration, merging.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from perpsim.contracts.model_params import (
    DEFAULT_MAX_PRICE_E6,
    DEFAULT_MIN_PRICE_E6,
    CrashParams,
    MeanRevertParams,
    RandomWalkParams,
    merge_model_params,
    parse_model_kind,
    parse_model_params,
)
from perpsim.contracts.types import PriceModelKind
from perpsim.errors import InvalidConfigError


class TestParseModelKind:
    """Model names map to PriceModelKind."""

    def test_known_names(self) -> None:
        assert parse_model_kind("random-walk") is PriceModelKind.RANDOM_WALK
        assert parse_model_kind("mean-revert") is PriceModelKind.MEAN_REVERT
        assert parse_model_kind(PriceModelKind.CRASH) is PriceModelKind.CRASH

    def test_unknown_name_raises(self) -> None:
        with pytest.raises(InvalidConfigError) as exc_info:
            parse_model_kind("brownian")
        assert exc_info.value.field == "model"
        assert "random-walk" in str(exc_info.value)


class TestParseModelParams:
    """Raw mappings become closed per-model params."""

    def test_defaults_filled(self) -> None:
        params = parse_model_params("random-walk", None)
        assert isinstance(params, RandomWalkParams)
        assert params.volatility == 0.01
        assert params.min_price == DEFAULT_MIN_PRICE_E6
        assert params.max_price == DEFAULT_MAX_PRICE_E6

    def test_legacy_camel_case_keys(self) -> None:
        """revertSpeed/meanPrice are renamed to snake_case fields."""
        params = parse_model_params("mean-revert", {"revertSpeed": 0.4, "meanPrice": 90_000_000})
        assert isinstance(params, MeanRevertParams)
        assert params.revert_speed == 0.4
        assert params.mean_price == 90_000_000

    def test_snake_case_keys(self) -> None:
        params = parse_model_params("crash", {"crash_magnitude": 0.5, "crash_duration_ms": 20_000})
        assert isinstance(params, CrashParams)
        assert params.crash_magnitude == 0.5
        assert params.crash_duration_ms == 20_000

    def test_unknown_key_rejected(self) -> None:
        """A key belonging to another model is rejected, not ignored."""
        with pytest.raises(InvalidConfigError) as exc_info:
            parse_model_params("random-walk", {"crashMagnitude": 0.3})
        assert exc_info.value.field == "params"

    def test_out_of_range_rejected(self) -> None:
        with pytest.raises(InvalidConfigError):
            parse_model_params("random-walk", {"volatility": -0.1})
        with pytest.raises(InvalidConfigError):
            parse_model_params("crash", {"crashMagnitude": 1.0})
        with pytest.raises(InvalidConfigError):
            parse_model_params("mean-revert", {"revertSpeed": 1.5})

    def test_min_above_max_rejected(self) -> None:
        with pytest.raises(InvalidConfigError):
            parse_model_params("random-walk", {"minPrice": 5_000, "maxPrice": 4_000})

    def test_declared_model_mismatch_rejected(self) -> None:
        with pytest.raises(InvalidConfigError) as exc_info:
            parse_model_params("random-walk", {"model": "crash"})
        assert exc_info.value.field == "params.model"

    def test_declared_model_matching_is_accepted(self) -> None:
        params = parse_model_params("trending", {"model": "trending", "driftPerStep": 5})
        assert params.model == "trending"

    def test_existing_instance_passes_through(self) -> None:
        params = RandomWalkParams(volatility=0.2)
        assert parse_model_params("random-walk", params) is params

    def test_params_are_frozen(self) -> None:
        params = parse_model_params("random-walk", {"volatility": 0.02})
        with pytest.raises(ValidationError):
            params.volatility = 0.5  # type: ignore[misc]


class TestMergeModelParams:
    """set_model merges overrides into same-kind params."""

    def test_merge_keeps_unspecified_fields(self) -> None:
        current = MeanRevertParams(volatility=0.02, revert_speed=0.3)
        merged = merge_model_params(current, {"revertSpeed": 0.6})
        assert merged.revert_speed == 0.6  # type: ignore[union-attr]
        assert merged.volatility == 0.02  # type: ignore[union-attr]

    def test_empty_overrides_return_current(self) -> None:
        current = RandomWalkParams()
        assert merge_model_params(current, None) is current
        assert merge_model_params(current, {}) is current

    def test_merge_revalidates(self) -> None:
        with pytest.raises(InvalidConfigError):
            merge_model_params(RandomWalkParams(), {"volatility": -1})
