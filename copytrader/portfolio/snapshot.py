"""Read-only engine snapshot for dashboards and health checks.

A snapshot is built from copies of engine state; holding one never
blocks or mutates the engine.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from copytrader.core.types import CloseEvent, SignalDecision
from copytrader.portfolio.performance import StrategyPerformance
from copytrader.risk.bucket import BucketState


@dataclass(frozen=True)
class OpenPositionView:
    id: str
    strategy: str
    wallet: str
    token: str
    token_symbol: str
    chain: str
    entry_price: float
    last_price: float
    peak_price: float
    allocated: float
    remaining_fraction: float
    unrealized_pnl: float
    opened_at: datetime
    trailing_armed: bool
    consecutive_failures: int


@dataclass(frozen=True)
class EngineSnapshot:
    """Point-in-time view of the engine.

    Attributes:
        taken_at: When the snapshot was built.
        open_positions: Open positions with unrealized P&L at last price.
        buckets: Capital bucket utilization per strategy.
        recent_closes: Latest partial and final exits, oldest first.
        recent_decisions: Latest signal decisions, oldest first.
        skipped_cycles: Skipped run count per job type.
        trading_halted: True while the daily loss halt is in effect.
        emergency_stop: True while the emergency stop is engaged.
        daily_pnl: Realized P&L for the current UTC day.
        integrity_errors: Integrity violations caught so far.
        performance: Latest per-strategy metrics.
    """

    taken_at: datetime
    open_positions: list[OpenPositionView]
    buckets: list[BucketState]
    recent_closes: list[CloseEvent]
    recent_decisions: list[SignalDecision]
    skipped_cycles: dict[str, int]
    trading_halted: bool
    emergency_stop: bool
    daily_pnl: float
    integrity_errors: int
    performance: dict[str, StrategyPerformance] = field(default_factory=dict)

    @property
    def total_skipped(self) -> int:
        return sum(self.skipped_cycles.values())

    @property
    def unrealized_pnl(self) -> float:
        return sum(p.unrealized_pnl for p in self.open_positions)

    def bucket(self, strategy: str) -> BucketState | None:
        return next((b for b in self.buckets if b.strategy == strategy), None)

    def summary(self) -> dict[str, Any]:
        """Flat summary for logging and health endpoints."""
        return {
            "taken_at": self.taken_at.isoformat(),
            "open_positions": len(self.open_positions),
            "committed": round(sum(b.committed for b in self.buckets), 2),
            "capital": round(sum(b.total for b in self.buckets), 2),
            "unrealized_pnl": round(self.unrealized_pnl, 2),
            "daily_pnl": round(self.daily_pnl, 2),
            "skipped_cycles": self.total_skipped,
            "trading_halted": self.trading_halted,
            "emergency_stop": self.emergency_stop,
            "integrity_errors": self.integrity_errors,
        }
