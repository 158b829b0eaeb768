"""Unit tests for StrategyMatcher.

Tests cover:
- Duplicate open (wallet, token) rejection
- Highest confidence wins, not first registered or highest priority
- Tie-break on priority, then name
- Rejection reported from the highest-priority strategy
- Wallets without history matched at the configured weight
"""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from copytrader.core.config import StrategyConfig
from copytrader.core.types import (
    Direction,
    MatchRejection,
    RejectReason,
    Signal,
    StrategyMatch,
    WalletStats,
)
from copytrader.strategy.base import Strategy
from copytrader.strategy.matcher import StrategyMatcher

NOW = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


def _make_signal(**overrides) -> Signal:
    values = dict(
        signal_id="tx1", wallet="W1", chain="solana", token="TKN",
        direction=Direction.BUY, observed_at=NOW,
        wallet_stats=WalletStats(win_rate=0.7, sample_size=20),
        notional_usd=1000.0, price=1.0,
    )
    values.update(overrides)
    return Signal(**values)


def _strategy(name: str, **config) -> Strategy:
    return Strategy(StrategyConfig(**config), name=name)


@pytest.fixture
def matcher():
    return StrategyMatcher(no_history_confidence=0.25)


class TestMatcher:
    def test_duplicate_open_rejected(self, matcher):
        result = matcher.evaluate(_make_signal(), [_strategy("a")], open_keys={("W1", "TKN")})
        assert isinstance(result, MatchRejection)
        assert result.reason == RejectReason.DUPLICATE_OPEN

    def test_same_token_other_wallet_not_duplicate(self, matcher):
        result = matcher.evaluate(_make_signal(), [_strategy("a")], open_keys={("W2", "TKN")})
        assert isinstance(result, StrategyMatch)

    def test_no_strategies(self, matcher):
        result = matcher.evaluate(_make_signal(), [])
        assert result.reason == RejectReason.NO_APPLICABLE_STRATEGY

    def test_highest_confidence_wins_over_priority(self, matcher):
        # strict: (0.7-0.6)/0.4 = 0.25; loose: raw win rate 0.7
        strict = _strategy("strict", priority=10, min_win_rate=0.6)
        loose = _strategy("loose", priority=1)
        result = matcher.evaluate(_make_signal(), [strict, loose])
        assert result == StrategyMatch(strategy="loose", confidence=pytest.approx(0.7))

    def test_tie_broken_by_priority(self, matcher):
        low = _strategy("aaa", priority=1)
        high = _strategy("zzz", priority=5)
        signal = _make_signal(wallet_stats=WalletStats())
        assert matcher.evaluate(signal, [low, high]).strategy == "zzz"

    def test_tie_with_equal_priority_broken_by_name(self, matcher):
        signal = _make_signal(wallet_stats=WalletStats())
        result = matcher.evaluate(signal, [_strategy("beta"), _strategy("alpha")])
        assert result.strategy == "alpha"

    def test_order_of_strategies_does_not_matter(self, matcher):
        strategies = [
            _strategy("a", priority=2, min_notional_usd=100),
            _strategy("b", priority=3, min_win_rate=0.5),
            _strategy("c", priority=1),
        ]
        signal = _make_signal()
        assert matcher.evaluate(signal, strategies) == matcher.evaluate(signal, list(reversed(strategies)))

    def test_all_reject_reports_highest_priority(self, matcher):
        high = _strategy("high", priority=5, min_notional_usd=5000)
        low = _strategy("low", priority=1, chains=["ethereum"])
        result = matcher.evaluate(_make_signal(), [low, high])
        assert isinstance(result, MatchRejection)
        assert result.reason == RejectReason.BELOW_THRESHOLD
        assert result.strategy == "high"

    def test_wrong_direction(self, matcher):
        result = matcher.evaluate(_make_signal(direction=Direction.SELL), [_strategy("a")])
        assert result.reason == RejectReason.WRONG_DIRECTION


class TestNoHistoryWallet:
    def test_accepted_with_configured_weight(self):
        matcher = StrategyMatcher(no_history_confidence=0.3)
        strategy = _strategy("a", min_win_rate=0.6, min_notional_usd=100)
        result = matcher.evaluate(_make_signal(wallet_stats=WalletStats()), [strategy])
        assert result == StrategyMatch(strategy="a", confidence=0.3)

    def test_not_treated_as_zero_win_rate(self, matcher):
        strategy = _strategy("a", min_win_rate=0.6)
        with_zero = matcher.evaluate(_make_signal(wallet_stats=WalletStats(win_rate=0.0, sample_size=5)), [strategy])
        without = matcher.evaluate(_make_signal(wallet_stats=WalletStats()), [strategy])
        assert isinstance(with_zero, MatchRejection)
        assert isinstance(without, StrategyMatch)
