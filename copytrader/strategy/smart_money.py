"""Smart Money strategy: follow large trades from well-funded wallets.

Entry:
    Buy -- known trade notional >= min_notional_usd and known wallet
    balance >= min_wallet_balance_usd

Sizing:
    copy_fraction of the source trade, capped at max_per_trade.
"""
from __future__ import annotations

from copytrader.core.types import MatchRejection, RejectReason, Signal
from copytrader.strategy.base import Strategy


class SmartMoney(Strategy):

    name = "smart_money"

    def check(self, signal: Signal) -> MatchRejection | None:
        rejection = super().check(signal)
        if rejection is not None:
            return rejection
        # Size of the move is the whole point here; unknown values don't qualify
        if signal.notional_usd is None:
            return self._reject(RejectReason.BELOW_THRESHOLD, "trade notional unknown")
        if signal.wallet_balance_usd is None:
            return self._reject(RejectReason.BELOW_THRESHOLD, "wallet balance unknown")
        return None
