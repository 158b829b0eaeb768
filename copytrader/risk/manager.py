from __future__ import annotations

import logging
from collections import deque
from datetime import date, datetime
from typing import Awaitable, Callable, Iterable, Mapping

from copytrader.core.config import RiskConfig, StrategyConfig
from copytrader.core.event_bus import EVENT_TRADING_HALTED, EventBus
from copytrader.core.exceptions import IntegrityViolation, StrategyError
from copytrader.core.types import Authorization, DenyReason, Position, utcnow
from copytrader.portfolio.audit_log import AuditLogger
from copytrader.risk.bucket import BucketState, CapitalBucket

logger = logging.getLogger(__name__)

OpenCommit = Callable[[float], Awaitable[None]]
CloseCommit = Callable[[], Awaitable[None]]


class RiskManager:
    """Owns the per-strategy capital buckets and authorizes position sizing.

    Authorization and release both run under the strategy bucket's lock.
    The caller's commit coroutine (persist and register the position) runs
    inside the lock, and the bucket is mutated right after it returns with
    no suspension point in between, so a reader sees either the state
    before the open/close or the state after it.

    Args:
        config: Risk limits.
        strategies: Strategy configs; one bucket is created per entry.
        clock: Returns the current UTC time.
        bus: Receives ``trading_halted`` when the daily loss limit trips.
        audit: Appends authorization records to the decision log.
        history_size: Number of authorization records kept in memory.
    """

    def __init__(
        self,
        config: RiskConfig,
        strategies: Mapping[str, StrategyConfig],
        clock: Callable[[], datetime] = utcnow,
        bus: EventBus | None = None,
        audit: AuditLogger | None = None,
        history_size: int = 200,
    ) -> None:
        self._config = config
        self._clock = clock
        self._bus = bus
        self._audit = audit
        self._buckets: dict[str, CapitalBucket] = {
            name: CapitalBucket(name, cfg.allocation, cfg.max_concurrent)
            for name, cfg in strategies.items()
        }
        self._emergency_stop = config.emergency_stop
        self._daily_pnl: float = 0.0
        self._trading_day: date = clock().date()
        self._halted = False
        self._history: deque[Authorization] = deque(maxlen=history_size)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def bucket(self, strategy: str) -> CapitalBucket:
        bucket = self._buckets.get(strategy)
        if bucket is None:
            raise StrategyError(f"No capital bucket for strategy: {strategy}")
        return bucket

    def bucket_states(self) -> list[BucketState]:
        return [b.state() for b in self._buckets.values()]

    @property
    def total_capital(self) -> float:
        return sum(b.total for b in self._buckets.values())

    @property
    def daily_loss_limit(self) -> float:
        return self.total_capital * self._config.daily_loss_limit_pct

    @property
    def daily_pnl(self) -> float:
        return self._daily_pnl

    @property
    def is_halted(self) -> bool:
        self._roll_day(self._clock())
        return self._halted

    @property
    def emergency_stop(self) -> bool:
        return self._emergency_stop

    def set_emergency_stop(self, active: bool) -> None:
        if active != self._emergency_stop:
            logger.warning("Emergency stop %s", "ENGAGED" if active else "released")
        self._emergency_stop = active

    def recent_authorizations(self) -> list[Authorization]:
        return list(self._history)

    # ------------------------------------------------------------------
    # Sizing and authorization
    # ------------------------------------------------------------------

    def propose_size(self, strategy: str, desired: float) -> float:
        """Bound a strategy's desired size by the per-position cap and headroom."""
        bucket = self.bucket(strategy)
        cap = bucket.total * self._config.max_position_fraction
        return max(0.0, min(desired, cap, bucket.available))

    async def authorize(
        self,
        strategy: str,
        requested: float,
        token: str,
        commit: OpenCommit | None = None,
    ) -> Authorization:
        """Check limits for a new position and, if granted, commit capital.

        Args:
            strategy: Strategy whose bucket is charged.
            requested: Requested position size in USD.
            token: Token the position will hold.
            commit: Coroutine called with the granted size while the bucket
                lock is held.  The bucket is debited only if it returns
                without raising; it must not suspend after making the new
                position visible.

        Returns:
            The authorization record (accepted or denied).
        """
        now = self._clock()
        self._roll_day(now)
        bucket = self.bucket(strategy)
        was_halted = self._halted

        async with bucket.lock:
            auth = self._check(bucket, requested, token, now)
            if auth.accepted:
                if commit is not None:
                    await commit(auth.granted)
                bucket.debit(auth.granted, token)

        self._record(auth)
        if self._halted and not was_halted:
            await self._emit_halt(now)
        return auth

    def _check(self, bucket: CapitalBucket, requested: float, token: str, now: datetime) -> Authorization:
        def deny(reason: DenyReason, detail: str) -> Authorization:
            return Authorization(bucket.strategy, requested, 0.0, reason, detail, token, now)

        if self._emergency_stop:
            return deny(DenyReason.EMERGENCY_STOP, "emergency stop engaged")

        if bucket.available <= 0 or requested > bucket.available:
            return deny(
                DenyReason.CAPACITY_EXCEEDED,
                f"requested ${requested:.2f}, available ${bucket.available:.2f} "
                f"(${bucket.committed:.2f}/${bucket.total:.2f} committed)",
            )

        if requested <= 0:
            return deny(DenyReason.INVALID_SIZE, f"requested ${requested:.2f}")

        granted = min(requested, bucket.total * self._config.max_position_fraction)

        if bucket.open_count >= bucket.max_concurrent:
            return deny(
                DenyReason.MAX_CONCURRENT,
                f"{bucket.open_count}/{bucket.max_concurrent} positions open",
            )

        exposure_cap = bucket.total * self._config.correlation_limit
        if bucket.exposure(token) + granted > exposure_cap:
            return deny(
                DenyReason.CORRELATION_LIMIT,
                f"{token} exposure ${bucket.exposure(token) + granted:.2f} > ${exposure_cap:.2f}",
            )

        if self._halted or self._daily_pnl <= -self.daily_loss_limit:
            self._halted = True
            return deny(
                DenyReason.DAILY_LOSS_LIMIT,
                f"daily P&L ${self._daily_pnl:.2f} at limit -${self.daily_loss_limit:.2f}",
            )

        return Authorization(bucket.strategy, requested, granted, None, "", token, now)

    # ------------------------------------------------------------------
    # Release and P&L
    # ------------------------------------------------------------------

    async def release(
        self,
        strategy: str,
        amount: float,
        token: str,
        pnl: float,
        *,
        closes_position: bool,
        commit: CloseCommit | None = None,
    ) -> None:
        """Return capital from a partial or full exit and record its P&L.

        ``commit`` (persist and transition the position) runs under the
        bucket lock; the credit follows it without suspending.
        """
        now = self._clock()
        self._roll_day(now)
        bucket = self.bucket(strategy)
        was_halted = self._halted

        async with bucket.lock:
            if commit is not None:
                await commit()
            bucket.credit(amount, token, closes_position=closes_position)
            self.record_pnl(pnl)

        if self._halted and not was_halted:
            await self._emit_halt(now)

    def record_pnl(self, pnl: float) -> None:
        self._daily_pnl += pnl
        if not self._halted and self._daily_pnl <= -self.daily_loss_limit:
            self._halted = True
            logger.warning(
                "Daily loss limit reached (P&L $%.2f, limit -$%.2f): new openings halted",
                self._daily_pnl, self.daily_loss_limit,
            )

    def reset_daily(self) -> None:
        self._daily_pnl = 0.0
        self._halted = False

    def _roll_day(self, now: datetime) -> None:
        today = now.date()
        if today != self._trading_day:
            if self._halted:
                logger.info("New trading day %s: daily loss halt cleared", today)
            self._trading_day = today
            self.reset_daily()

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def restore(self, positions: Iterable[Position]) -> None:
        """Rebuild committed totals from positions that are still open.

        Must run before any authorization.  Raises ``IntegrityViolation``
        if a position names an unknown strategy or would overcommit its
        bucket.
        """
        for bucket in self._buckets.values():
            if bucket.committed > 0 or bucket.open_count > 0:
                raise IntegrityViolation("restore", f"bucket {bucket.strategy} already in use")

        for position in positions:
            bucket = self._buckets.get(position.strategy)
            if bucket is None:
                raise IntegrityViolation(
                    "restore", f"position {position.id} belongs to unknown strategy {position.strategy}",
                )
            bucket.debit(position.allocated, position.token)

        for bucket in self._buckets.values():
            if bucket.open_count:
                logger.info(
                    "Restored %s: %d open, $%.2f/$%.2f committed",
                    bucket.strategy, bucket.open_count, bucket.committed, bucket.total,
                )

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def _record(self, auth: Authorization) -> None:
        self._history.append(auth)
        if auth.accepted:
            logger.debug(
                "Authorized %s $%.2f on %s", auth.strategy, auth.granted, auth.token,
            )
        else:
            logger.info(
                "Denied %s $%.2f on %s: %s (%s)",
                auth.strategy, auth.requested, auth.token, auth.reason.value, auth.detail,
            )
        if self._audit is not None:
            self._audit.log_authorization(auth)

    async def _emit_halt(self, now: datetime) -> None:
        if self._bus is not None:
            await self._bus.emit(EVENT_TRADING_HALTED, {
                "at": now,
                "daily_pnl": self._daily_pnl,
                "limit": self.daily_loss_limit,
            })
