"""PositionLifecycleManager: owns every position status transition.

State machine::

    Pending --authorized--> Open --exit fired--> Closing --persisted--> Closed
    Pending --denied/failed--> Rejected
    Open --tick--> Open            (peak price update, partial take-profit)
    Closing --persist failed--> Open  (retried on the next tick)

Capital moves with the transition: the open commits capital inside the
risk manager's authorization, the close releases it inside the risk
manager's release, both under the strategy bucket's lock.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable

from copytrader.core.config import MonitorConfig
from copytrader.core.event_bus import (
    EVENT_POSITION_CLOSED,
    EVENT_POSITION_OPENED,
    EVENT_POSITION_PARTIAL_EXIT,
    EventBus,
)
from copytrader.core.exceptions import IntegrityViolation, TransientLookupFailure
from copytrader.core.types import (
    Authorization,
    CloseEvent,
    ExitReason,
    Position,
    PositionStatus,
    Signal,
    StrategyMatch,
    utcnow,
)
from copytrader.data.store import PositionStore
from copytrader.execution.exit_rules import ExitDecision, ExitRuleEngine
from copytrader.portfolio.audit_log import AuditLogger
from copytrader.risk.manager import RiskManager
from copytrader.sources.base import PriceOracle
from copytrader.strategy.registry import StrategyRegistry

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[PositionStatus, frozenset[PositionStatus]] = {
    PositionStatus.PENDING: frozenset({PositionStatus.OPEN, PositionStatus.REJECTED}),
    PositionStatus.OPEN: frozenset({PositionStatus.CLOSING}),
    PositionStatus.CLOSING: frozenset({PositionStatus.CLOSED, PositionStatus.OPEN}),
    PositionStatus.CLOSED: frozenset(),
    PositionStatus.REJECTED: frozenset(),
}


@dataclass
class MonitorReport:
    """Tally of one monitor-and-close pass."""

    checked: int = 0
    held: int = 0
    partial_exits: int = 0
    closed: int = 0
    lookup_failures: int = 0
    errors: int = 0


class PositionLifecycleManager:
    """Creates, monitors and closes simulated positions.

    Args:
        registry: Frozen strategy registry (exit rules per strategy).
        risk: Risk manager owning the capital buckets.
        store: Durable position store.
        exit_engine: Exit rule evaluator.
        bus: Receives opened/partial/closed notifications.
        audit: Appends close records to the close log.
        clock: Returns the current UTC time.
        monitor: Price lookup timeout, warning threshold and item pacing.
        history_size: Closed positions and close events kept in memory.
    """

    def __init__(
        self,
        registry: StrategyRegistry,
        risk: RiskManager,
        store: PositionStore,
        exit_engine: ExitRuleEngine | None = None,
        bus: EventBus | None = None,
        audit: AuditLogger | None = None,
        clock: Callable[[], datetime] = utcnow,
        monitor: MonitorConfig | None = None,
        history_size: int = 200,
    ) -> None:
        self._registry = registry
        self._risk = risk
        self._store = store
        self._exit_engine = exit_engine or ExitRuleEngine()
        self._bus = bus
        self._audit = audit
        self._clock = clock
        self._monitor = monitor or MonitorConfig()

        # id -> Position for positions that are Open or Closing
        self._positions: dict[str, Position] = {}
        self._closed: deque[Position] = deque(maxlen=history_size)
        self._closed_ids: set[str] = set()
        self._closes: deque[CloseEvent] = deque(maxlen=history_size)
        self.integrity_errors: int = 0

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def open_keys(self) -> frozenset[tuple[str, str]]:
        """(wallet, token) pairs with a position that has not closed yet."""
        return frozenset((p.wallet, p.token) for p in self._positions.values())

    def open_positions(self) -> list[Position]:
        return [replace(p, tiers_filled=list(p.tiers_filled)) for p in self._positions.values()]

    def closed_positions(self) -> list[Position]:
        return [replace(p, tiers_filled=list(p.tiers_filled)) for p in self._closed]

    def recent_closes(self) -> list[CloseEvent]:
        return list(self._closes)

    def get(self, position_id: str) -> Position | None:
        return self._positions.get(position_id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(self, position: Position, status: PositionStatus) -> None:
        if status not in _TRANSITIONS[position.status]:
            raise IntegrityViolation(
                "illegal_transition",
                f"{position.id}: {position.status.value} -> {status.value}",
            )
        position.status = status

    async def restore(self) -> int:
        """Reload open positions from the store and rebuild bucket totals.

        A position left Closing by a crash was never recorded as Closed,
        so it goes back to Open and is re-evaluated on the next tick.
        """
        positions = await self._store.list_open_positions()
        for position in positions:
            if position.status == PositionStatus.CLOSING:
                logger.warning("Position %s was mid-close at shutdown; reopening", position.id)
                self._transition(position, PositionStatus.OPEN)
        self._risk.restore(positions)
        for position in positions:
            self._positions[position.id] = position
        logger.info("Restored %d open positions", len(positions))
        return len(positions)

    async def open_position(
        self,
        signal: Signal,
        match: StrategyMatch,
        entry_price: float,
        size: float,
    ) -> tuple[Position, Authorization]:
        """Authorize and open a position for a matched signal.

        Returns the position (Open, or Rejected when denied) and the
        authorization record.  Store failures propagate after the position
        is marked Rejected; no capital is committed in that case.
        """
        now = self._clock()
        position = Position(
            id=uuid.uuid4().hex,
            strategy=match.strategy,
            wallet=signal.wallet,
            token=signal.token,
            chain=signal.chain,
            entry_price=entry_price,
            entry_notional=0.0,
            quantity=0.0,
            remaining_quantity=0.0,
            allocated=0.0,
            peak_price=entry_price,
            last_price=entry_price,
            status=PositionStatus.PENDING,
            opened_at=now,
            signal_id=signal.signal_id,
            token_symbol=signal.token_symbol,
            confidence=match.confidence,
        )

        async def commit(granted: float) -> None:
            quantity = granted / entry_price
            record = replace(
                position, status=PositionStatus.OPEN, entry_notional=granted,
                quantity=quantity, remaining_quantity=quantity, allocated=granted,
            )
            await self._store.create_position(record)
            position.entry_notional = granted
            position.quantity = quantity
            position.remaining_quantity = quantity
            position.allocated = granted
            self._transition(position, PositionStatus.OPEN)
            self._positions[position.id] = position

        try:
            auth = await self._risk.authorize(match.strategy, size, signal.token, commit=commit)
        except Exception:
            if position.status == PositionStatus.PENDING:
                self._transition(position, PositionStatus.REJECTED)
            raise

        if not auth.accepted:
            self._transition(position, PositionStatus.REJECTED)
            return position, auth

        logger.info(
            "Opened %s %s on %s: $%.2f @ %.6g (confidence %.2f)",
            position.strategy, position.token_symbol or position.token, position.chain,
            position.entry_notional, position.entry_price, position.confidence,
        )
        if self._bus is not None:
            await self._bus.emit(EVENT_POSITION_OPENED, replace(position))
        return position, auth

    async def close_position(
        self,
        position_id: str,
        reason: ExitReason,
        price: float,
        detail: str = "",
        tiers: tuple[int, ...] = (),
    ) -> CloseEvent:
        """Close the whole remaining quantity at *price*.

        *tiers* are take-profit tiers filled by this exit; they are recorded
        only once the close is persisted.

        Raises ``IntegrityViolation`` if the position is already closed,
        mid-close or unknown; bucket and position state are untouched then.
        A store failure reverts the position to Open and propagates.
        """
        position = self._positions.get(position_id)
        if position is None:
            if position_id in self._closed_ids:
                raise IntegrityViolation("double_close", f"position {position_id} is already closed")
            raise IntegrityViolation("unknown_position", f"no open position {position_id}")
        if position.status != PositionStatus.OPEN:
            raise IntegrityViolation(
                "double_close", f"position {position_id} is {position.status.value}",
            )

        now = self._clock()
        quantity = position.remaining_quantity
        proceeds = quantity * price
        released = position.allocated
        leg_pnl = proceeds - released
        total_pnl = position.partial_pnl + leg_pnl
        tiers_filled = sorted(set(position.tiers_filled) | set(tiers))

        self._transition(position, PositionStatus.CLOSING)
        record = replace(
            position, status=PositionStatus.CLOSED, closed_at=now, close_reason=reason,
            realized_pnl=total_pnl, exit_notional=position.exit_notional + proceeds,
            remaining_quantity=0.0, allocated=0.0, last_price=price,
            tiers_filled=tiers_filled,
        )

        async def commit() -> None:
            await self._store.update_position(record)
            position.closed_at = now
            position.close_reason = reason
            position.realized_pnl = total_pnl
            position.exit_notional = record.exit_notional
            position.remaining_quantity = 0.0
            position.allocated = 0.0
            position.last_price = price
            position.tiers_filled = list(tiers_filled)
            self._transition(position, PositionStatus.CLOSED)
            del self._positions[position.id]
            self._closed.append(position)
            self._closed_ids.add(position.id)

        try:
            await self._risk.release(
                position.strategy, released, position.token, leg_pnl,
                closes_position=True, commit=commit,
            )
        except Exception:
            if position.status == PositionStatus.CLOSING:
                self._transition(position, PositionStatus.OPEN)
            raise

        event = CloseEvent(
            position_id=position.id, strategy=position.strategy, wallet=position.wallet,
            token=position.token, reason=reason, exit_price=price, quantity=quantity,
            pnl=total_pnl, at=now,
        )
        logger.info(
            "Closed %s %s: %s @ %.6g, P&L $%.2f%s",
            position.strategy, position.token_symbol or position.token, reason.value,
            price, total_pnl, f" ({detail})" if detail else "",
        )
        await self._publish_close(event, EVENT_POSITION_CLOSED)
        return event

    async def _partial_exit(self, position: Position, decision: ExitDecision, price: float) -> CloseEvent:
        """Sell ``decision.fraction`` of the original quantity; the rest stays Open."""
        now = self._clock()
        quantity = min(position.quantity * decision.fraction, position.remaining_quantity)
        remaining = position.remaining_quantity - quantity
        released = position.allocated * (quantity / position.remaining_quantity)
        proceeds = quantity * price
        leg_pnl = proceeds - released
        tiers = sorted(set(position.tiers_filled) | set(decision.tiers))

        record = replace(
            position, remaining_quantity=remaining, allocated=position.allocated - released,
            partial_pnl=position.partial_pnl + leg_pnl,
            exit_notional=position.exit_notional + proceeds, tiers_filled=tiers,
            last_price=price,
        )

        async def commit() -> None:
            await self._store.update_position(record)
            position.remaining_quantity = record.remaining_quantity
            position.allocated = record.allocated
            position.partial_pnl = record.partial_pnl
            position.exit_notional = record.exit_notional
            position.tiers_filled = list(tiers)

        await self._risk.release(
            position.strategy, released, position.token, leg_pnl,
            closes_position=False, commit=commit,
        )

        tier = max(decision.tiers) + 1 if decision.tiers else None
        event = CloseEvent(
            position_id=position.id, strategy=position.strategy, wallet=position.wallet,
            token=position.token, reason=ExitReason.TAKE_PROFIT, exit_price=price,
            quantity=quantity, pnl=leg_pnl, at=now, partial=True, tier=tier,
        )
        logger.info(
            "Partial exit %s %s: sold %.1f%% @ %.6g (tier %s), leg P&L $%.2f",
            position.strategy, position.token_symbol or position.token,
            decision.fraction * 100, price, tier, leg_pnl,
        )
        await self._publish_close(event, EVENT_POSITION_PARTIAL_EXIT)
        return event

    async def _publish_close(self, event: CloseEvent, name: str) -> None:
        self._closes.append(event)
        if self._audit is not None:
            self._audit.log_close(event)
        if self._bus is not None:
            await self._bus.emit(name, event)

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    async def monitor_open_positions(self, oracle: PriceOracle) -> MonitorReport:
        """Run one monitoring tick over every open position, sequentially.

        A failure on one position is logged and counted; the pass moves on
        to the next position.
        """
        report = MonitorReport()
        pacing = self._monitor.item_pacing_seconds

        for position in list(self._positions.values()):
            if position.status != PositionStatus.OPEN:
                continue
            report.checked += 1
            try:
                action = await self._tick(position, oracle)
            except IntegrityViolation:
                self.integrity_errors += 1
                report.errors += 1
                logger.exception("Integrity violation while monitoring %s", position.id)
            except Exception:
                report.errors += 1
                logger.exception("Monitoring %s failed", position.id)
            else:
                if action == "lookup-failed":
                    report.lookup_failures += 1
                elif action == "partial":
                    report.partial_exits += 1
                elif action == "exit":
                    report.closed += 1
                else:
                    report.held += 1
            if pacing:
                await asyncio.sleep(pacing)

        logger.info(
            "Monitor pass: %d checked, %d closed, %d partial, %d lookup failures, %d errors",
            report.checked, report.closed, report.partial_exits,
            report.lookup_failures, report.errors,
        )
        return report

    async def _tick(self, position: Position, oracle: PriceOracle) -> str:
        price = await self._lookup_price(position, oracle)
        now = self._clock()
        strategy = self._registry.require(position.strategy)

        peak_before = position.peak_price
        armed_before = position.trailing_armed
        decision = self._exit_engine.evaluate(position, strategy.exit_rules, price, now)

        if decision.action == "hold":
            if position.peak_price != peak_before or position.trailing_armed != armed_before:
                await self._store.update_position(position)
            return "hold" if price is not None else "lookup-failed"

        # Time-based exits without a fresh price settle at the last known one
        exit_price = price if price is not None else position.last_price
        if decision.action == "partial":
            await self._partial_exit(position, decision, exit_price)
        else:
            await self.close_position(
                position.id, decision.reason, exit_price, decision.detail, tiers=tuple(decision.tiers),
            )
        return decision.action

    async def _lookup_price(self, position: Position, oracle: PriceOracle) -> float | None:
        timeout = self._monitor.price_timeout_seconds
        try:
            price = await asyncio.wait_for(
                oracle.resolve_price(position.token, position.chain), timeout=timeout,
            )
        except asyncio.TimeoutError:
            failure = TransientLookupFailure("price-oracle", f"timed out after {timeout:g}s")
        except TransientLookupFailure as exc:
            failure = exc
        else:
            if price is not None and price > 0:
                position.consecutive_failures = 0
                position.last_price = price
                return price
            failure = TransientLookupFailure("price-oracle", "price unavailable")

        position.consecutive_failures += 1
        threshold = self._monitor.failure_warning_threshold
        if position.consecutive_failures % threshold == 0:
            logger.warning(
                "%s (%s): %d consecutive price lookup failures, last: %s",
                position.id, position.token_symbol or position.token,
                position.consecutive_failures, failure,
            )
        else:
            logger.debug("%s: %s", position.id, failure)
        return None
