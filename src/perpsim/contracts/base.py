"""Base configuration for simulation contracts.

Session-scoped contracts inherit from SimContractBase which enforces:
- schema_version and session_id are required
- Extra fields are forbidden
- Instances are immutable (snapshots, never live state)
"""

from __future__ import annotations

import uuid
from typing import Any

import orjson
from pydantic import BaseModel, ConfigDict, Field, field_validator

SCHEMA_VERSION = "1.0.0"

# Fixed-point price scale: 6 implied decimals
PRICE_SCALE = 1_000_000


class FrozenModel(BaseModel):
    """Immutable model with unknown fields rejected."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        str_strip_whitespace=True,
        validate_default=True,
    )

    def to_json(self) -> bytes:
        """Canonical JSON (sorted keys) for transport and digests."""
        return orjson.dumps(self.model_dump(mode="json"), option=orjson.OPT_SORT_KEYS)


class SimContractBase(FrozenModel):
    """Base class for contracts correlated by session id."""

    schema_version: str = Field(
        default=SCHEMA_VERSION,
        description="Contract schema version",
    )
    session_id: str = Field(
        description="Simulation session identifier",
    )

    @field_validator("schema_version", mode="before")
    @classmethod
    def validate_schema_version(cls, v: Any) -> str:
        """Ensure schema_version is provided."""
        if v is None:
            raise ValueError("schema_version is required")
        return str(v)

    @field_validator("session_id", mode="before")
    @classmethod
    def validate_session_id(cls, v: Any) -> str:
        """Ensure session_id is provided."""
        if v is None or (isinstance(v, str) and not v.strip()):
            raise ValueError("session_id is required and cannot be empty")
        return str(v)


def e6_to_float(value_e6: int) -> float:
    """Convert a fixed-point E6 integer to a float."""
    return value_e6 / PRICE_SCALE


def float_to_e6(value: float) -> int:
    """Convert a float to fixed-point E6, rounding half away from zero."""
    scaled = value * PRICE_SCALE
    return int(scaled + 0.5) if scaled >= 0 else -int(-scaled + 0.5)


def new_session_id() -> str:
    """Generate a session id: ``sim_`` + 12 hex chars."""
    return f"sim_{uuid.uuid4().hex[:12]}"
