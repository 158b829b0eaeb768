"""Early Gem strategy: copy buys of freshly launched tokens.

Entry:
    Buy -- token age known and <= max_token_age_hours, pool liquidity
    >= min_liquidity_usd, win rate >= min_win_rate

Sizing:
    max_per_trade for wallets at or above STRONG_WIN_RATE, otherwise
    scaled down.  Wallets with no history get the smallest size.
"""
from __future__ import annotations

from copytrader.core.types import Signal
from copytrader.strategy.base import Strategy


class EarlyGem(Strategy):

    name = "early_gem"

    STRONG_WIN_RATE = 0.75
    REDUCED_SCALE = 0.75
    NO_HISTORY_SCALE = 0.5

    def entry_size(self, signal: Signal) -> float:
        cap = self.config.max_per_trade
        stats = signal.wallet_stats
        if not stats.has_history:
            return cap * self.NO_HISTORY_SCALE
        if stats.require_win_rate() >= self.STRONG_WIN_RATE:
            return cap
        return cap * self.REDUCED_SCALE
