"""StrategyMatcher: pick the strategy, if any, that should act on a signal.

Matching is pure.  The caller passes in the set of (wallet, token) keys
that currently have an open position; nothing here reads engine state.
"""
from __future__ import annotations

import logging
from typing import AbstractSet, Sequence

from copytrader.core.types import MatchRejection, MatchResult, RejectReason, Signal, StrategyMatch
from copytrader.strategy.base import Strategy

logger = logging.getLogger(__name__)


class StrategyMatcher:
    """Evaluates every strategy against a signal and keeps the best match.

    The winner is the accepting strategy with the highest confidence;
    ties go to the higher priority, then to the alphabetically first name.
    When nothing accepts, the rejection reported is the one from the
    highest-priority strategy.

    Args:
        no_history_confidence: Confidence assigned to a signal from a
            wallet with no performance history.
    """

    def __init__(self, no_history_confidence: float = 0.25) -> None:
        self._no_history_confidence = no_history_confidence

    def evaluate(
        self,
        signal: Signal,
        strategies: Sequence[Strategy],
        open_keys: AbstractSet[tuple[str, str]] = frozenset(),
    ) -> MatchResult:
        if signal.key in open_keys:
            return MatchRejection(
                reason=RejectReason.DUPLICATE_OPEN,
                detail=f"position already open for {signal.wallet}/{signal.token}",
            )

        if not strategies:
            return MatchRejection(
                reason=RejectReason.NO_APPLICABLE_STRATEGY, detail="no strategies registered",
            )

        ordered = sorted(strategies, key=lambda s: s.name)
        best: StrategyMatch | None = None
        best_priority = 0
        rejection: MatchRejection | None = None
        rejection_priority = 0

        for strategy in ordered:
            result = strategy.check(signal)
            if result is not None:
                if rejection is None or strategy.priority > rejection_priority:
                    rejection, rejection_priority = result, strategy.priority
                continue

            confidence = strategy.confidence(signal, self._no_history_confidence)
            if (
                best is None
                or confidence > best.confidence
                or (confidence == best.confidence and strategy.priority > best_priority)
            ):
                best = StrategyMatch(strategy=strategy.name, confidence=confidence)
                best_priority = strategy.priority

        if best is not None:
            logger.debug(
                "Signal %s matched %s (confidence %.2f)",
                signal.signal_id, best.strategy, best.confidence,
            )
            return best

        if rejection is None:
            return MatchRejection(
                reason=RejectReason.NO_APPLICABLE_STRATEGY, detail="no strategy accepted the signal",
            )
        return rejection
