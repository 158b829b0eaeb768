from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from copytrader.core.types import Position

logger = logging.getLogger(__name__)


def calculate_metrics(trade_pnls: list[float], initial_equity: float) -> dict:
    if not trade_pnls:
        return {
            "total_trades": 0, "win_rate": 0.0, "profit_factor": 0.0,
            "total_pnl": 0.0, "max_drawdown": 0.0,
        }

    wins = [p for p in trade_pnls if p > 0]
    losses = [p for p in trade_pnls if p < 0]

    total_wins = sum(wins)
    total_losses = abs(sum(losses))

    # Drawdown on the bucket's equity curve
    equity = initial_equity
    peak = equity
    max_dd = 0.0
    for pnl in trade_pnls:
        equity += pnl
        peak = max(peak, equity)
        dd = (peak - equity) / peak if peak > 0 else 0.0
        max_dd = max(max_dd, dd)

    return {
        "total_trades": len(trade_pnls),
        "win_rate": len(wins) / len(trade_pnls),
        "profit_factor": total_wins / total_losses if total_losses > 0 else float("inf"),
        "total_pnl": sum(trade_pnls),
        "max_drawdown": max_dd,
    }


@dataclass(frozen=True)
class StrategyPerformance:
    strategy: str
    total_trades: int
    win_rate: float
    profit_factor: float
    total_pnl: float
    max_drawdown: float
    refreshed_at: datetime


class PerformanceTracker:
    """Per-strategy metrics over closed positions, recomputed on refresh.

    Args:
        allocations: Strategy name -> bucket total, the starting equity
            for each strategy's drawdown curve.
    """

    def __init__(self, allocations: dict[str, float]) -> None:
        self._allocations = dict(allocations)
        self._latest: dict[str, StrategyPerformance] = {}

    def refresh(self, closed: Iterable[Position], now: datetime) -> dict[str, StrategyPerformance]:
        by_strategy: dict[str, list[Position]] = defaultdict(list)
        for position in closed:
            if position.realized_pnl is not None:
                by_strategy[position.strategy].append(position)

        latest: dict[str, StrategyPerformance] = {}
        for strategy, allocation in self._allocations.items():
            positions = sorted(by_strategy.get(strategy, []), key=lambda p: p.closed_at)
            metrics = calculate_metrics([p.realized_pnl for p in positions], allocation)
            latest[strategy] = StrategyPerformance(strategy=strategy, refreshed_at=now, **metrics)

        self._latest = latest
        logger.info(
            "Performance refreshed: %s",
            ", ".join(
                f"{p.strategy} {p.total_trades} trades ${p.total_pnl:.2f}"
                for p in latest.values() if p.total_trades
            ) or "no closed trades",
        )
        return latest

    def latest(self) -> dict[str, StrategyPerformance]:
        return dict(self._latest)
