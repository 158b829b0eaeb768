"""Copy Trade strategy: mirror buys of consistently profitable wallets.

Entry:
    Buy -- source wallet win rate >= min_win_rate and trade notional
    >= min_notional_usd (unknown notional is accepted at a fixed small size)

Sizing:
    copy_fraction of the source trade, capped at max_per_trade.

Exit: stop-loss, take-profit and trailing stop from config.
"""
from __future__ import annotations

from copytrader.strategy.base import Strategy


class CopyTrade(Strategy):
    """Baseline mirror strategy; the generic checks and sizing apply unchanged."""

    name = "copy_trade"
