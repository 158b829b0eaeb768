"""Capital bucket: one fixed allocation per strategy.

Only ``RiskManager`` mutates a bucket.  Each bucket owns the
``asyncio.Lock`` that serializes open and close mutations on it, so
authorization checks on different strategies never contend.
"""
from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass

from copytrader.core.exceptions import IntegrityViolation

# Float tolerance for the committed <= total invariant
_EPSILON: float = 1e-9


@dataclass(frozen=True)
class BucketState:
    """Point-in-time copy of a bucket for readers."""

    strategy: str
    total: float
    committed: float
    open_positions: int
    max_concurrent: int

    @property
    def available(self) -> float:
        return max(0.0, self.total - self.committed)

    @property
    def utilization(self) -> float:
        return self.committed / self.total if self.total > 0 else 0.0


class CapitalBucket:
    """Committed capital and open-position bookkeeping for one strategy.

    Args:
        strategy: Owning strategy name.
        total: Total capital allocated to the strategy.
        max_concurrent: Cap on simultaneously open positions.
    """

    def __init__(self, strategy: str, total: float, max_concurrent: int) -> None:
        self.strategy = strategy
        self.total = total
        self.max_concurrent = max_concurrent
        self.lock = asyncio.Lock()
        self._committed: float = 0.0
        self._open_count: int = 0
        self._token_exposure: Counter[str] = Counter()

    def __repr__(self) -> str:
        return (
            f"CapitalBucket({self.strategy!r}, committed={self._committed:.2f}/"
            f"{self.total:.2f}, open={self._open_count})"
        )

    @property
    def committed(self) -> float:
        return self._committed

    @property
    def available(self) -> float:
        return max(0.0, self.total - self._committed)

    @property
    def open_count(self) -> int:
        return self._open_count

    def exposure(self, token: str) -> float:
        return self._token_exposure.get(token, 0.0)

    def state(self) -> BucketState:
        return BucketState(
            strategy=self.strategy,
            total=self.total,
            committed=self._committed,
            open_positions=self._open_count,
            max_concurrent=self.max_concurrent,
        )

    # ------------------------------------------------------------------
    # Mutations (synchronous: never split across an await)
    # ------------------------------------------------------------------

    def debit(self, amount: float, token: str) -> None:
        """Commit capital for a newly opened position."""
        if amount <= 0:
            raise IntegrityViolation("bucket_debit", f"{self.strategy}: non-positive debit {amount}")
        if self._committed + amount > self.total + _EPSILON:
            raise IntegrityViolation(
                "bucket_overcommit",
                f"{self.strategy}: committing {amount:.2f} on {self._committed:.2f}/{self.total:.2f}",
            )
        self._committed += amount
        self._open_count += 1
        self._token_exposure[token] += amount

    def credit(self, amount: float, token: str, *, closes_position: bool) -> None:
        """Release capital from a partial or full exit."""
        if amount < 0 or amount > self._committed + _EPSILON:
            raise IntegrityViolation(
                "bucket_credit",
                f"{self.strategy}: releasing {amount:.2f} of {self._committed:.2f} committed",
            )
        if closes_position and self._open_count <= 0:
            raise IntegrityViolation("bucket_credit", f"{self.strategy}: no open position to close")

        self._committed = max(0.0, self._committed - amount)
        self._token_exposure[token] -= amount
        if closes_position:
            self._open_count -= 1
            # Full close clears rounding residue for the token
            if self._token_exposure[token] <= _EPSILON:
                del self._token_exposure[token]
