"""Volume Breakout strategy.

Enters when a wallet buys a token whose recent volume runs well above its
baseline.  A signal without a known volume multiple cannot be judged and
is rejected.

Entry:
    Buy -- volume_multiple >= min_volume_multiple

Sizing:
    Full max_per_trade for strong breakouts (>= STRONG_VOLUME_MULTIPLE),
    otherwise the reduced WEAK_BREAKOUT_SIZE.

Exit: time-based only (max_hold_hours).
"""
from __future__ import annotations

from copytrader.core.types import MatchRejection, RejectReason, Signal
from copytrader.strategy.base import Strategy


class VolumeBreakout(Strategy):

    name = "breakout"

    STRONG_VOLUME_MULTIPLE = 5.0
    WEAK_BREAKOUT_SIZE = 100.0

    def check(self, signal: Signal) -> MatchRejection | None:
        rejection = super().check(signal)
        if rejection is not None:
            return rejection
        if signal.volume_multiple is None:
            return self._reject(RejectReason.BELOW_THRESHOLD, "volume multiple unknown")
        return None

    def entry_size(self, signal: Signal) -> float:
        cap = self.config.max_per_trade
        if signal.volume_multiple is not None and signal.volume_multiple >= self.STRONG_VOLUME_MULTIPLE:
            return cap
        return min(self.WEAK_BREAKOUT_SIZE, cap)
