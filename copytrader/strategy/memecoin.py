"""Memecoin strategy: small fixed bets on fast-moving chains.

Entry:
    Buy -- chain in chains and win rate >= min_win_rate

Sizing:
    Fixed max_per_trade.

Exit:
    Wide stop-loss plus tiered take-profit (e.g. sell 60% at 2x, 30% at
    5x, the rest at 10x) and a maximum hold time.
"""
from __future__ import annotations

from copytrader.core.types import Signal
from copytrader.strategy.base import Strategy


class Memecoin(Strategy):

    name = "memecoin"

    def entry_size(self, signal: Signal) -> float:
        return self.config.max_per_trade
