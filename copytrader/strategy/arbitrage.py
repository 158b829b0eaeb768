"""Arbitrage follower: copy wallets that trade small spreads repeatedly.

Entry:
    Buy -- trade notional >= min_notional_usd and win rate >= min_win_rate

Sizing:
    max_per_trade scaled by the wallet's win rate relative to
    REFERENCE_WIN_RATE (at most MAX_SCALE).  A wallet with no history gets
    NO_HISTORY_SCALE instead.
"""
from __future__ import annotations

from copytrader.core.types import Signal
from copytrader.strategy.base import Strategy


class Arbitrage(Strategy):

    name = "arbitrage"

    REFERENCE_WIN_RATE = 0.6
    MAX_SCALE = 1.5
    NO_HISTORY_SCALE = 0.5

    def entry_size(self, signal: Signal) -> float:
        stats = signal.wallet_stats
        if stats.has_history:
            scale = min(stats.require_win_rate() / self.REFERENCE_WIN_RATE, self.MAX_SCALE)
        else:
            scale = self.NO_HISTORY_SCALE
        base = super().entry_size(signal)
        return min(base * scale, self.config.max_per_trade)
