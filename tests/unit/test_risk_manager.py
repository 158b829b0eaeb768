"""Unit tests for RiskManager and CapitalBucket.

Tests cover:
- Check order and deny reasons
- Position cap, concurrency and per-token exposure limits
- Commit callback runs under the bucket lock; failures leave the bucket untouched
- Concurrent authorizations never overcommit a bucket
- Daily loss halt, trading_halted event and the UTC day roll
- Restore of committed capital at startup
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from copytrader.core.config import RiskConfig, StrategyConfig
from copytrader.core.event_bus import EVENT_TRADING_HALTED, EventBus
from copytrader.core.exceptions import DataError, IntegrityViolation, StrategyError
from copytrader.core.types import DenyReason, Position, PositionStatus
from copytrader.risk.bucket import CapitalBucket
from copytrader.risk.manager import RiskManager

NOW = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_manager(clock, risk=None, bus=None, audit=None, **strategy) -> RiskManager:
    cfg = dict(allocation=1000, max_per_trade=500, max_concurrent=3)
    cfg.update(strategy)
    return RiskManager(
        risk or RiskConfig(max_position_fraction=0.5, daily_loss_limit_pct=0.05, correlation_limit=1.0),
        {"alpha": StrategyConfig(**cfg)},
        clock=clock, bus=bus, audit=audit,
    )


def _make_position(**overrides) -> Position:
    values = dict(
        id="p1", strategy="alpha", wallet="W1", token="TKN", chain="solana",
        entry_price=1.0, entry_notional=100.0, quantity=100.0, remaining_quantity=100.0,
        allocated=100.0, peak_price=1.0, last_price=1.0, status=PositionStatus.OPEN,
        opened_at=NOW,
    )
    values.update(overrides)
    return Position(**values)


# ---------------------------------------------------------------------------
# CapitalBucket
# ---------------------------------------------------------------------------

class TestCapitalBucket:
    def test_debit_and_credit(self):
        bucket = CapitalBucket("alpha", 1000, 5)
        bucket.debit(300, "TKN")
        assert bucket.committed == 300
        assert bucket.available == 700
        assert bucket.open_count == 1
        assert bucket.exposure("TKN") == 300

        bucket.credit(300, "TKN", closes_position=True)
        assert bucket.committed == 0
        assert bucket.open_count == 0
        assert bucket.exposure("TKN") == 0

    def test_partial_credit_keeps_position_count(self):
        bucket = CapitalBucket("alpha", 1000, 5)
        bucket.debit(300, "TKN")
        bucket.credit(180, "TKN", closes_position=False)
        assert bucket.committed == pytest.approx(120)
        assert bucket.open_count == 1

    def test_overcommit_rejected(self):
        bucket = CapitalBucket("alpha", 1000, 5)
        bucket.debit(900, "TKN")
        with pytest.raises(IntegrityViolation) as exc_info:
            bucket.debit(200, "OTHER")
        assert exc_info.value.rule == "bucket_overcommit"
        assert bucket.committed == 900

    def test_non_positive_debit_rejected(self):
        with pytest.raises(IntegrityViolation):
            CapitalBucket("alpha", 1000, 5).debit(0, "TKN")

    def test_credit_more_than_committed_rejected(self):
        bucket = CapitalBucket("alpha", 1000, 5)
        bucket.debit(100, "TKN")
        with pytest.raises(IntegrityViolation):
            bucket.credit(150, "TKN", closes_position=True)

    def test_state_is_a_snapshot(self):
        bucket = CapitalBucket("alpha", 1000, 5)
        bucket.debit(250, "TKN")
        state = bucket.state()
        bucket.debit(250, "TKN")
        assert state.committed == 250
        assert state.available == 750
        assert state.utilization == pytest.approx(0.25)


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------

class TestAuthorize:
    async def test_accepted_commits_capital(self, clock):
        risk = _make_manager(clock)
        commit = AsyncMock()
        auth = await risk.authorize("alpha", 200, "TKN", commit=commit)

        assert auth.accepted
        assert auth.granted == 200
        commit.assert_awaited_once_with(200)
        assert risk.bucket("alpha").committed == 200
        assert risk.bucket("alpha").open_count == 1

    async def test_grant_capped_by_position_fraction(self, clock):
        risk = _make_manager(clock)
        auth = await risk.authorize("alpha", 800, "TKN")
        assert auth.accepted
        assert auth.requested == 800
        assert auth.granted == 500

    async def test_capacity_exceeded(self, clock):
        risk = _make_manager(clock)
        auth = await risk.authorize("alpha", 1200, "TKN")
        assert auth.reason == DenyReason.CAPACITY_EXCEEDED
        assert auth.granted == 0.0
        assert risk.bucket("alpha").committed == 0

    @pytest.mark.parametrize("requested", [0.0, -5.0])
    async def test_invalid_size(self, clock, requested):
        risk = _make_manager(clock)
        auth = await risk.authorize("alpha", requested, "TKN")
        assert auth.reason == DenyReason.INVALID_SIZE

    async def test_max_concurrent(self, clock):
        risk = _make_manager(clock)
        for token in ("A", "B", "C"):
            assert (await risk.authorize("alpha", 100, token)).accepted
        auth = await risk.authorize("alpha", 100, "D")
        assert auth.reason == DenyReason.MAX_CONCURRENT

    async def test_correlation_limit_per_token(self, clock):
        risk = _make_manager(
            clock, risk=RiskConfig(max_position_fraction=0.5, daily_loss_limit_pct=0.05, correlation_limit=0.3),
        )
        assert (await risk.authorize("alpha", 200, "TKN")).accepted
        auth = await risk.authorize("alpha", 200, "TKN")
        assert auth.reason == DenyReason.CORRELATION_LIMIT
        assert (await risk.authorize("alpha", 200, "OTHER")).accepted

    async def test_emergency_stop_checked_first(self, clock):
        risk = _make_manager(clock)
        risk.set_emergency_stop(True)
        auth = await risk.authorize("alpha", 5000, "TKN")
        assert auth.reason == DenyReason.EMERGENCY_STOP

        risk.set_emergency_stop(False)
        assert (await risk.authorize("alpha", 100, "TKN")).accepted

    async def test_unknown_strategy(self, clock):
        risk = _make_manager(clock)
        with pytest.raises(StrategyError):
            await risk.authorize("missing", 100, "TKN")

    async def test_commit_failure_leaves_bucket_untouched(self, clock):
        risk = _make_manager(clock)
        commit = AsyncMock(side_effect=DataError("disk full"))
        with pytest.raises(DataError):
            await risk.authorize("alpha", 200, "TKN", commit=commit)
        bucket = risk.bucket("alpha")
        assert bucket.committed == 0
        assert bucket.open_count == 0
        assert not bucket.lock.locked()

    async def test_commit_runs_under_bucket_lock(self, clock):
        risk = _make_manager(clock)
        seen = []

        async def commit(granted):
            seen.append(risk.bucket("alpha").lock.locked())

        await risk.authorize("alpha", 100, "TKN", commit=commit)
        assert seen == [True]

    async def test_concurrent_requests_never_overcommit(self, clock):
        risk = _make_manager(
            clock, risk=RiskConfig(max_position_fraction=1.0, daily_loss_limit_pct=0.05, correlation_limit=1.0),
            max_per_trade=1000,
        )

        async def slow_commit(granted):
            await asyncio.sleep(0)

        results = await asyncio.gather(
            risk.authorize("alpha", 600, "A", commit=slow_commit),
            risk.authorize("alpha", 600, "B", commit=slow_commit),
        )
        accepted = [a for a in results if a.accepted]
        denied = [a for a in results if not a.accepted]
        assert len(accepted) == 1
        assert denied[0].reason == DenyReason.CAPACITY_EXCEEDED
        assert risk.bucket("alpha").committed == 600

    async def test_authorizations_recorded(self, clock):
        audit = MagicMock()
        risk = _make_manager(clock, audit=audit)
        await risk.authorize("alpha", 100, "TKN")
        await risk.authorize("alpha", 0, "TKN")
        assert len(risk.recent_authorizations()) == 2
        assert audit.log_authorization.call_count == 2


class TestProposeSize:
    def test_bounded_by_cap_and_headroom(self, clock):
        risk = _make_manager(clock)
        assert risk.propose_size("alpha", 80) == 80
        assert risk.propose_size("alpha", 900) == 500

    async def test_bounded_by_available(self, clock):
        risk = _make_manager(clock)
        await risk.authorize("alpha", 500, "A")
        await risk.authorize("alpha", 300, "B")
        assert risk.propose_size("alpha", 400) == 200


# ---------------------------------------------------------------------------
# Release and daily loss
# ---------------------------------------------------------------------------

class TestRelease:
    async def test_full_release(self, clock):
        risk = _make_manager(clock)
        await risk.authorize("alpha", 200, "TKN")
        await risk.release("alpha", 200, "TKN", -10.0, closes_position=True)
        bucket = risk.bucket("alpha")
        assert bucket.committed == 0
        assert bucket.open_count == 0
        assert risk.daily_pnl == -10.0

    async def test_release_commit_failure_keeps_capital(self, clock):
        risk = _make_manager(clock)
        await risk.authorize("alpha", 200, "TKN")
        commit = AsyncMock(side_effect=DataError("disk full"))
        with pytest.raises(DataError):
            await risk.release("alpha", 200, "TKN", 15.0, closes_position=True, commit=commit)
        assert risk.bucket("alpha").committed == 200
        assert risk.daily_pnl == 0.0

    async def test_over_release_is_integrity_violation(self, clock):
        risk = _make_manager(clock)
        await risk.authorize("alpha", 100, "TKN")
        with pytest.raises(IntegrityViolation):
            await risk.release("alpha", 300, "TKN", 0.0, closes_position=True)


class TestDailyLossLimit:
    async def test_limit_halts_new_positions(self, clock):
        risk = _make_manager(clock)
        assert risk.daily_loss_limit == pytest.approx(50.0)
        await risk.authorize("alpha", 100, "TKN")
        await risk.release("alpha", 100, "TKN", -60.0, closes_position=True)

        assert risk.is_halted
        auth = await risk.authorize("alpha", 100, "OTHER")
        assert auth.reason == DenyReason.DAILY_LOSS_LIMIT

    async def test_halt_published_once(self, clock):
        bus = EventBus()
        handler = AsyncMock()
        bus.subscribe(EVENT_TRADING_HALTED, handler)
        risk = _make_manager(clock, bus=bus)

        await risk.authorize("alpha", 100, "A")
        await risk.authorize("alpha", 100, "B")
        await risk.release("alpha", 100, "A", -60.0, closes_position=True)
        await risk.release("alpha", 100, "B", -5.0, closes_position=True)

        handler.assert_awaited_once()
        payload = handler.await_args.args[0]
        assert payload["daily_pnl"] == pytest.approx(-60.0)
        assert payload["limit"] == pytest.approx(50.0)

    async def test_open_positions_still_close_while_halted(self, clock):
        risk = _make_manager(clock)
        await risk.authorize("alpha", 100, "A")
        await risk.authorize("alpha", 100, "B")
        risk.record_pnl(-80.0)
        await risk.release("alpha", 100, "B", 20.0, closes_position=True)
        assert risk.bucket("alpha").open_count == 1

    async def test_halt_clears_on_new_utc_day(self, clock):
        risk = _make_manager(clock)
        risk.record_pnl(-60.0)
        assert risk.is_halted

        clock.advance(days=1)
        assert not risk.is_halted
        assert risk.daily_pnl == 0.0
        assert (await risk.authorize("alpha", 100, "TKN")).accepted

    async def test_halt_persists_within_the_day(self, clock):
        risk = _make_manager(clock)
        risk.record_pnl(-60.0)
        risk.record_pnl(30.0)
        clock.advance(hours=6)
        assert risk.is_halted


# ---------------------------------------------------------------------------
# Restore
# ---------------------------------------------------------------------------

class TestRestore:
    async def test_restored_commitments_block_overcommit(self, clock):
        risk = _make_manager(clock, allocation=4000, max_concurrent=10)
        risk.restore([
            _make_position(id="p1", allocated=2000, token="A"),
            _make_position(id="p2", allocated=1800, token="B"),
        ])
        bucket = risk.bucket("alpha")
        assert bucket.committed == 3800
        assert bucket.open_count == 2

        auth = await risk.authorize("alpha", 300, "C")
        assert auth.reason == DenyReason.CAPACITY_EXCEEDED
        assert bucket.committed == 3800

    def test_unknown_strategy_rejected(self, clock):
        risk = _make_manager(clock)
        with pytest.raises(IntegrityViolation) as exc_info:
            risk.restore([_make_position(strategy="ghost")])
        assert exc_info.value.rule == "restore"

    def test_restore_twice_rejected(self, clock):
        risk = _make_manager(clock)
        risk.restore([_make_position()])
        with pytest.raises(IntegrityViolation):
            risk.restore([_make_position(id="p2")])

    def test_restore_overcommit_rejected(self, clock):
        risk = _make_manager(clock)
        with pytest.raises(IntegrityViolation):
            risk.restore([
                _make_position(id="p1", allocated=600),
                _make_position(id="p2", allocated=600),
            ])
