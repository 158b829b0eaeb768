"""ExitRuleEngine: per-tick exit evaluation for open positions.

Exit hierarchy (evaluated in order, first match wins):
  1. Stop-loss from entry price
  2. Take-profit from entry price (single target or partial tiers)
  3. Trailing stop from the peak price, once armed
  4. Time-based exit when the maximum hold duration is reached

Price-based rules only run when a current price is known.  The
time-based rule needs no price, so a position whose price feed has gone
dark still closes when its hold time runs out.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal, Sequence

from copytrader.core.config import StrategyConfig
from copytrader.core.types import ExitReason, Position

logger = logging.getLogger(__name__)

_PRIORITY: dict[ExitReason, int] = {reason: i for i, reason in enumerate(ExitReason)}

# Remaining quantity below this fraction of the original counts as fully sold
_DUST_FRACTION: float = 1e-9


@dataclass(frozen=True)
class ExitDecision:
    """Result of an exit-rule evaluation for a single tick.

    Attributes:
        action: "hold", "partial" (sell ``fraction`` of the original
            quantity and keep the rest open) or "exit" (close fully).
        reason: Exit rule that fired; None when holding.
        fraction: Fraction of the original quantity to sell on "partial".
        tiers: Take-profit tier indexes filled by a "partial" or "exit".
        detail: Human-readable explanation for logs and close records.
    """

    action: Literal["hold", "partial", "exit"]
    reason: ExitReason | None = None
    fraction: float = 0.0
    tiers: tuple[int, ...] = ()
    detail: str = ""


_HOLD = ExitDecision(action="hold")


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

class ExitRule(ABC):
    """One exit condition; ``check`` returns a decision or None."""

    reason: ExitReason
    needs_price: bool = True

    @abstractmethod
    def check(self, position: Position, price: float | None, now: datetime) -> ExitDecision | None: ...


@dataclass(frozen=True)
class StopLoss(ExitRule):
    pct: float
    reason = ExitReason.STOP_LOSS

    def check(self, position, price, now):
        stop = position.entry_price * (1.0 - self.pct)
        if price <= stop:
            return ExitDecision(
                action="exit", reason=self.reason,
                detail=f"price {price:.6g} <= stop {stop:.6g}",
            )
        return None


@dataclass(frozen=True)
class TakeProfit(ExitRule):
    pct: float
    reason = ExitReason.TAKE_PROFIT

    def check(self, position, price, now):
        target = position.entry_price * (1.0 + self.pct)
        if price >= target:
            return ExitDecision(
                action="exit", reason=self.reason,
                detail=f"price {price:.6g} >= target {target:.6g}",
            )
        return None


@dataclass(frozen=True)
class TieredTakeProfit(ExitRule):
    """Sell a fixed fraction of the original quantity at each gain tier, once."""

    tiers: tuple[tuple[float, float], ...]  # (at_gain, sell_fraction)
    reason = ExitReason.TAKE_PROFIT

    def check(self, position, price, now):
        gain = position.gain_pct(price)
        reached = [
            i for i, (at_gain, _) in enumerate(self.tiers)
            if gain >= at_gain and i not in position.tiers_filled
        ]
        if not reached:
            return None

        fraction = sum(self.tiers[i][1] for i in reached)
        left = position.remaining_fraction - fraction
        detail = f"gain {gain:.1%} reached tier(s) {', '.join(str(i + 1) for i in reached)}"
        if left <= _DUST_FRACTION:
            return ExitDecision(
                action="exit", reason=self.reason, fraction=position.remaining_fraction,
                tiers=tuple(reached), detail=detail,
            )
        return ExitDecision(
            action="partial", reason=self.reason, fraction=fraction,
            tiers=tuple(reached), detail=detail,
        )


@dataclass(frozen=True)
class TrailingStop(ExitRule):
    """Close when price falls ``trail_pct`` below the peak.

    The stop arms once the peak gain from entry reaches ``activation_pct``
    and stays armed for the life of the position.
    """

    activation_pct: float
    trail_pct: float
    reason = ExitReason.TRAILING_STOP

    def check(self, position, price, now):
        if not position.trailing_armed:
            if position.gain_pct(position.peak_price) < self.activation_pct:
                return None
            position.trailing_armed = True
            logger.debug(
                "%s: trailing stop armed at peak %.6g", position.id, position.peak_price,
            )

        stop = position.peak_price * (1.0 - self.trail_pct)
        if price <= stop:
            return ExitDecision(
                action="exit", reason=self.reason,
                detail=f"price {price:.6g} <= trail {stop:.6g} (peak {position.peak_price:.6g})",
            )
        return None


@dataclass(frozen=True)
class MaxHold(ExitRule):
    duration: timedelta
    reason = ExitReason.TIME_BASED
    needs_price = False

    def check(self, position, price, now):
        held = now - position.opened_at
        if held >= self.duration:
            hours = held.total_seconds() / 3600
            return ExitDecision(
                action="exit", reason=self.reason,
                detail=f"held {hours:.1f}h >= {self.duration.total_seconds() / 3600:.1f}h",
            )
        return None


def build_exit_rules(config: StrategyConfig) -> list[ExitRule]:
    """Build the exit rules a strategy config enables, in priority order."""
    rules: list[ExitRule] = []
    if config.stop_loss_pct is not None:
        rules.append(StopLoss(config.stop_loss_pct))
    if config.take_profit_tiers:
        rules.append(TieredTakeProfit(
            tuple((t.at_gain, t.sell_fraction) for t in config.take_profit_tiers)
        ))
    elif config.take_profit_pct is not None:
        rules.append(TakeProfit(config.take_profit_pct))
    if config.trailing_pct is not None and config.trailing_activation_pct is not None:
        rules.append(TrailingStop(config.trailing_activation_pct, config.trailing_pct))
    if config.max_hold_hours is not None:
        rules.append(MaxHold(timedelta(hours=config.max_hold_hours)))
    return rules


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class ExitRuleEngine:
    """Evaluates a strategy's exit rules against one open position.

    Stateless across calls; the position carries the peak price and the
    trailing-stop arm flag, and is mutated in place to track them.
    """

    def evaluate(
        self,
        position: Position,
        rules: Sequence[ExitRule],
        price: float | None,
        now: datetime,
    ) -> ExitDecision:
        """Evaluate exit rules for a single tick.

        Args:
            position: The open position (peak price and trailing arm flag
                are updated in place before the rules run).
            rules: The owning strategy's exit rules.
            price: Current price, or None when it could not be resolved.
            now: Evaluation time.

        Returns:
            The first firing rule's decision, or a hold.
        """
        if price is not None:
            position.peak_price = max(position.peak_price, price)

        for rule in sorted(rules, key=lambda r: _PRIORITY[r.reason]):
            if rule.needs_price and price is None:
                continue
            decision = rule.check(position, price, now)
            if decision is not None:
                return decision
        return _HOLD
