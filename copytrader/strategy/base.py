"""Strategy base class: applicability predicate, confidence and sizing.

A strategy is pure: it never reads engine state.  Everything it decides
is a function of its ``StrategyConfig`` and the ``Signal`` in hand, so
matching is deterministic and can be replayed from the audit log.
"""
from __future__ import annotations

from copytrader.core.config import StrategyConfig
from copytrader.core.types import Direction, MatchRejection, RejectReason, Signal
from copytrader.execution.exit_rules import ExitRule, build_exit_rules

# Fixed position size used when the source trade's notional is unknown
UNKNOWN_NOTIONAL_SIZE: float = 50.0


def _margin_above(value: float, minimum: float) -> float:
    """Normalized margin by which *value* exceeds *minimum*, clamped to [0, 1].

    A value at the minimum scores 0.0; double the minimum (or more) scores 1.0.
    """
    if minimum <= 0:
        return 1.0
    return max(0.0, min(1.0, value / minimum - 1.0))


class Strategy:
    """Configured copy-trading strategy.

    Subclasses tighten ``check`` (extra required fields) and override
    ``entry_size``; the generic threshold checks and confidence scoring
    live here.
    """

    name: str = "configured"

    def __init__(self, config: StrategyConfig, name: str | None = None) -> None:
        self.config = config
        if name is not None:
            self.name = name
        self._exit_rules: tuple[ExitRule, ...] = tuple(build_exit_rules(config))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, priority={self.priority})"

    @property
    def priority(self) -> int:
        return self.config.priority

    @property
    def exit_rules(self) -> tuple[ExitRule, ...]:
        return self._exit_rules

    # ------------------------------------------------------------------
    # Applicability
    # ------------------------------------------------------------------

    def check(self, signal: Signal) -> MatchRejection | None:
        """Return None if the strategy accepts the signal's shape, else the rejection."""
        cfg = self.config

        if signal.direction != Direction(cfg.direction):
            return self._reject(
                RejectReason.WRONG_DIRECTION,
                f"{signal.direction.value} signal, strategy trades {cfg.direction}",
            )

        if cfg.chains and signal.chain not in cfg.chains:
            return self._reject(
                RejectReason.NO_APPLICABLE_STRATEGY,
                f"chain {signal.chain} not in {cfg.chains}",
            )

        # Unknown notional is tolerated; only a known value is compared
        if cfg.min_notional_usd is not None and signal.notional_usd is not None:
            if signal.notional_usd < cfg.min_notional_usd:
                return self._reject(
                    RejectReason.BELOW_THRESHOLD,
                    f"notional ${signal.notional_usd:.2f} < ${cfg.min_notional_usd:.2f}",
                )

        stats = signal.wallet_stats
        if cfg.min_win_rate is not None and stats.has_history:
            if stats.require_win_rate() < cfg.min_win_rate:
                return self._reject(
                    RejectReason.BELOW_THRESHOLD,
                    f"win rate {stats.win_rate:.2f} < {cfg.min_win_rate:.2f}",
                )

        if cfg.max_token_age_hours is not None:
            if signal.token_age_hours is None:
                return self._reject(RejectReason.UNKNOWN_TOKEN_AGE, "token age unknown")
            if signal.token_age_hours > cfg.max_token_age_hours:
                return self._reject(
                    RejectReason.BELOW_THRESHOLD,
                    f"token age {signal.token_age_hours:.0f}h > {cfg.max_token_age_hours:.0f}h",
                )

        if cfg.min_liquidity_usd is not None and signal.liquidity_usd is not None:
            if signal.liquidity_usd < cfg.min_liquidity_usd:
                return self._reject(
                    RejectReason.BELOW_THRESHOLD,
                    f"liquidity ${signal.liquidity_usd:.0f} < ${cfg.min_liquidity_usd:.0f}",
                )

        if cfg.min_wallet_balance_usd is not None and signal.wallet_balance_usd is not None:
            if signal.wallet_balance_usd < cfg.min_wallet_balance_usd:
                return self._reject(
                    RejectReason.BELOW_THRESHOLD,
                    f"wallet balance ${signal.wallet_balance_usd:.0f} "
                    f"< ${cfg.min_wallet_balance_usd:.0f}",
                )

        if cfg.min_volume_multiple is not None and signal.volume_multiple is not None:
            if signal.volume_multiple < cfg.min_volume_multiple:
                return self._reject(
                    RejectReason.BELOW_THRESHOLD,
                    f"volume {signal.volume_multiple:.1f}x < {cfg.min_volume_multiple:.1f}x",
                )

        return None

    def _reject(self, reason: RejectReason, detail: str) -> MatchRejection:
        return MatchRejection(reason=reason, detail=detail, strategy=self.name)

    # ------------------------------------------------------------------
    # Confidence
    # ------------------------------------------------------------------

    def confidence(self, signal: Signal, no_history_confidence: float) -> float:
        """Deterministic confidence in [0, 1] for an accepted signal.

        A wallet without history gets the fixed *no_history_confidence*.
        Otherwise the score is the mean of the normalized margins by which
        the signal's known metrics exceed this strategy's minimums.
        """
        stats = signal.wallet_stats
        if not stats.has_history:
            return no_history_confidence

        cfg = self.config
        win_rate = stats.require_win_rate()
        if cfg.min_win_rate is not None:
            margins = [max(0.0, min(1.0, (win_rate - cfg.min_win_rate) / (1.0 - cfg.min_win_rate)))]
        else:
            margins = [max(0.0, min(1.0, win_rate))]

        if cfg.min_notional_usd is not None and signal.notional_usd is not None:
            margins.append(_margin_above(signal.notional_usd, cfg.min_notional_usd))
        if cfg.min_liquidity_usd is not None and signal.liquidity_usd is not None:
            margins.append(_margin_above(signal.liquidity_usd, cfg.min_liquidity_usd))
        if cfg.min_wallet_balance_usd is not None and signal.wallet_balance_usd is not None:
            margins.append(_margin_above(signal.wallet_balance_usd, cfg.min_wallet_balance_usd))
        if cfg.min_volume_multiple is not None and signal.volume_multiple is not None:
            margins.append(_margin_above(signal.volume_multiple, cfg.min_volume_multiple))
        if cfg.max_token_age_hours is not None and signal.token_age_hours is not None:
            margins.append(max(0.0, 1.0 - signal.token_age_hours / cfg.max_token_age_hours))

        return sum(margins) / len(margins)

    # ------------------------------------------------------------------
    # Sizing
    # ------------------------------------------------------------------

    def entry_size(self, signal: Signal) -> float:
        """Requested position size in USD before risk capping.

        Copies ``copy_fraction`` of the source trade, capped at
        ``max_per_trade``; a trade of unknown notional gets a small fixed size.
        """
        cfg = self.config
        if signal.notional_usd is None or signal.notional_usd <= 0:
            return min(UNKNOWN_NOTIONAL_SIZE, cfg.max_per_trade)
        return min(signal.notional_usd * cfg.copy_fraction, cfg.max_per_trade)
