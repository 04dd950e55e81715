"""
Market/account state readers.

The liquidation hunter and the LP agent read market state rather than
price alone. A real deployment injects a reader backed by on-chain
accounts; SimulatedMarketState is the seeded fallback proxy.
"""

from __future__ import annotations

import random
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from perpsim.contracts.bots import AccountHealth


class MarketStateReader(Protocol):
    """Read-only snapshot accessors. Implementations must not block."""

    def utilization(self, market_id: str) -> float | None:
        """Pool utilization in [0, 1], or None when unknown."""
        ...

    def accounts(self, market_id: str) -> Sequence[AccountHealth]:
        """Accounts with open positions."""
        ...


class SimulatedMarketState:
    """
    Seeded proxy used when no real reader is available.

    Utilization wanders around a base level; accounts come from a provider
    callback (the fleet feeds its own agents' positions).
    """

    def __init__(
        self,
        seed: int | str = "market-state",
        *,
        base_utilization: float = 0.5,
        jitter: float = 0.3,
        accounts_fn: Callable[[], Sequence[AccountHealth]] | None = None,
    ) -> None:
        if not 0.0 <= base_utilization <= 1.0:
            raise ValueError(f"base_utilization must be in [0, 1], got {base_utilization}")
        self._rng = random.Random(seed)
        self._base = base_utilization
        self._jitter = jitter
        self._accounts_fn = accounts_fn

    def set_accounts_provider(self, accounts_fn: Callable[[], Sequence[AccountHealth]]) -> None:
        self._accounts_fn = accounts_fn

    def utilization(self, market_id: str) -> float | None:
        value = self._base + self._rng.uniform(-self._jitter, self._jitter)
        return min(1.0, max(0.0, value))

    def accounts(self, market_id: str) -> Sequence[AccountHealth]:
        if self._accounts_fn is None:
            return []
        return [a for a in self._accounts_fn() if a.position_size != 0]


class StaticMarketState:
    """Fixed utilization and account list."""

    def __init__(
        self,
        utilization: float | None = None,
        accounts: Sequence[AccountHealth] = (),
    ) -> None:
        self._utilization = utilization
        self._accounts = list(accounts)

    def set_accounts(self, accounts: Sequence[AccountHealth]) -> None:
        self._accounts = list(accounts)

    def utilization(self, market_id: str) -> float | None:
        return self._utilization

    def accounts(self, market_id: str) -> Sequence[AccountHealth]:
        return list(self._accounts)
