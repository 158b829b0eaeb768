"""Paper-trading engine: the context object and the four cycle jobs.

``EngineContext`` owns every stateful component (capital buckets through
the risk manager, cycle locks through the coordinator, positions through
the lifecycle manager); nothing lives in module globals.  The engine's job
methods are what the scheduler runs through ``run_if_idle``.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from copytrader.batch.coordinator import CycleCoordinator, CycleReport
from copytrader.core.config import Settings
from copytrader.core.event_bus import EVENT_SIGNAL_REJECTED, EventBus
from copytrader.core.exceptions import IntegrityViolation, TransientLookupFailure
from copytrader.core.types import (
    DecisionOutcome,
    JobType,
    MatchRejection,
    RejectReason,
    Signal,
    SignalDecision,
    utcnow,
)
from copytrader.data.store import PositionStore
from copytrader.execution.exit_rules import ExitRuleEngine
from copytrader.execution.lifecycle import MonitorReport, PositionLifecycleManager
from copytrader.portfolio.audit_log import AuditLogger
from copytrader.portfolio.performance import PerformanceTracker, StrategyPerformance
from copytrader.portfolio.snapshot import EngineSnapshot, OpenPositionView
from copytrader.risk.manager import RiskManager
from copytrader.sources.base import PriceOracle, TransactionFeed, WalletDirectory
from copytrader.strategy.matcher import StrategyMatcher
from copytrader.strategy.registry import StrategyRegistry

logger = logging.getLogger(__name__)


@dataclass
class IngestReport:
    """Tally of one ingest-and-open pass."""

    seen: int = 0
    duplicates: int = 0
    opened: int = 0
    rejected: int = 0
    denied: int = 0
    failed: int = 0


@dataclass
class EngineContext:
    """Explicitly owned engine state, wired once per run."""

    settings: Settings
    registry: StrategyRegistry
    matcher: StrategyMatcher
    risk: RiskManager
    lifecycle: PositionLifecycleManager
    coordinator: CycleCoordinator
    performance: PerformanceTracker
    store: PositionStore
    bus: EventBus
    audit: AuditLogger | None
    clock: Callable[[], datetime]

    @classmethod
    def build(
        cls,
        settings: Settings,
        store: PositionStore,
        bus: EventBus | None = None,
        audit: AuditLogger | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> EngineContext:
        bus = bus or EventBus()
        registry = StrategyRegistry.from_configs(settings.strategies)
        configs = {s.name: s.config for s in registry.all()}
        history = settings.data.history_size
        risk = RiskManager(
            settings.risk, configs, clock=clock, bus=bus, audit=audit, history_size=history,
        )
        lifecycle = PositionLifecycleManager(
            registry, risk, store,
            exit_engine=ExitRuleEngine(), bus=bus, audit=audit, clock=clock,
            monitor=settings.monitor, history_size=history,
        )
        return cls(
            settings=settings,
            registry=registry,
            matcher=StrategyMatcher(settings.matcher.no_history_confidence),
            risk=risk,
            lifecycle=lifecycle,
            coordinator=CycleCoordinator(bus=bus, clock=clock),
            performance=PerformanceTracker({name: cfg.allocation for name, cfg in configs.items()}),
            store=store,
            bus=bus,
            audit=audit,
            clock=clock,
        )


class PaperTradingEngine:
    """Turns feed signals into simulated positions and manages them to close.

    Args:
        context: Wired engine state.
        feed: Transaction feed polled by the ingest job.
        oracle: Price oracle for entry prices and monitoring ticks.
        directory: Wallet directory; when None every wallet is eligible.
    """

    def __init__(
        self,
        context: EngineContext,
        feed: TransactionFeed,
        oracle: PriceOracle,
        directory: WalletDirectory | None = None,
    ) -> None:
        self.ctx = context
        self._feed = feed
        self._oracle = oracle
        self._directory = directory
        self._processed: set[str] = set()
        self._active_wallets: frozenset[str] | None = None
        self._decisions: deque[SignalDecision] = deque(maxlen=context.settings.data.history_size)
        self._integrity_errors = 0
        self._started = False

    async def start(self) -> None:
        """Rebuild positions and bucket totals from the store; call once."""
        if self._started:
            return
        await self.ctx.lifecycle.restore()
        self._started = True
        logger.info(
            "Engine started: %d strategies, $%.2f capital",
            len(self.ctx.registry), self.ctx.risk.total_capital,
        )

    async def run(self, job_type: JobType) -> CycleReport:
        """Run one cycle of *job_type* under its lock."""
        jobs = {
            JobType.INGEST: self.ingest_and_open,
            JobType.MONITOR: self.monitor_and_close,
            JobType.PERFORMANCE: self.refresh_performance,
            JobType.DISCOVERY: self.trigger_discovery,
        }
        return await self.ctx.coordinator.run_if_idle(job_type, jobs[job_type])

    # ------------------------------------------------------------------
    # Ingest and open
    # ------------------------------------------------------------------

    async def ingest_and_open(self) -> IngestReport:
        """Poll the feed once and decide every new signal, sequentially."""
        report = IngestReport()
        active = await self._load_active_wallets()
        pacing = self.ctx.settings.monitor.item_pacing_seconds

        async for signal in self._feed.poll():
            report.seen += 1
            if signal.signal_id in self._processed:
                report.duplicates += 1
                continue
            self._processed.add(signal.signal_id)

            try:
                decision = await self.process_signal(signal, active)
            except IntegrityViolation as exc:
                self._integrity_errors += 1
                logger.exception("Integrity violation on signal %s", signal.signal_id)
                decision = self._decision(signal, DecisionOutcome.FAILED, reason=exc.rule, detail=str(exc))
            except Exception as exc:
                logger.exception("Processing signal %s failed", signal.signal_id)
                decision = self._decision(
                    signal, DecisionOutcome.FAILED, reason=type(exc).__name__, detail=str(exc),
                )

            await self._record(decision)
            if decision.outcome == DecisionOutcome.OPENED:
                report.opened += 1
            elif decision.outcome == DecisionOutcome.REJECTED:
                report.rejected += 1
            elif decision.outcome == DecisionOutcome.DENIED:
                report.denied += 1
            else:
                report.failed += 1

            if pacing:
                await asyncio.sleep(pacing)

        logger.info(
            "Ingest pass: %d seen, %d opened, %d rejected, %d denied, %d failed",
            report.seen, report.opened, report.rejected, report.denied, report.failed,
        )
        return report

    async def process_signal(
        self,
        signal: Signal,
        active_wallets: frozenset[str] | None = None,
    ) -> SignalDecision:
        """Match, size, authorize and open one signal; returns its terminal record."""
        if active_wallets is not None and signal.wallet not in active_wallets:
            return self._decision(
                signal, DecisionOutcome.REJECTED, reason=RejectReason.INACTIVE_WALLET.value,
                detail="wallet not marked active",
            )

        match = self.ctx.matcher.evaluate(signal, self.ctx.registry.all(), self.ctx.lifecycle.open_keys())
        if isinstance(match, MatchRejection):
            return self._decision(
                signal, DecisionOutcome.REJECTED, strategy=match.strategy,
                reason=match.reason.value, detail=match.detail,
            )

        entry_price = await self._entry_price(signal)
        if entry_price is None:
            return self._decision(
                signal, DecisionOutcome.REJECTED, strategy=match.strategy,
                reason=RejectReason.PRICE_UNAVAILABLE.value, detail="no observed or oracle price",
                confidence=match.confidence,
            )

        strategy = self.ctx.registry.require(match.strategy)
        size = self.ctx.risk.propose_size(strategy.name, strategy.entry_size(signal))
        position, auth = await self.ctx.lifecycle.open_position(signal, match, entry_price, size)

        if not auth.accepted:
            return self._decision(
                signal, DecisionOutcome.DENIED, strategy=match.strategy,
                reason=auth.reason.value, detail=auth.detail, confidence=match.confidence,
            )
        return self._decision(
            signal, DecisionOutcome.OPENED, strategy=match.strategy,
            confidence=match.confidence, position_id=position.id,
        )

    async def _entry_price(self, signal: Signal) -> float | None:
        if signal.price is not None and signal.price > 0:
            return signal.price
        timeout = self.ctx.settings.monitor.price_timeout_seconds
        try:
            price = await asyncio.wait_for(
                self._oracle.resolve_price(signal.token, signal.chain), timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Entry price lookup for %s timed out", signal.token)
            return None
        except TransientLookupFailure as exc:
            logger.warning("Entry price lookup for %s failed: %s", signal.token, exc)
            return None
        if price is None or price <= 0:
            return None
        return price

    async def _load_active_wallets(self) -> frozenset[str] | None:
        if self._directory is None:
            return None
        try:
            wallets = await self._directory.active_wallets()
        except TransientLookupFailure as exc:
            if self._active_wallets is None:
                raise
            logger.warning("Wallet directory unavailable (%s); using last known active set", exc)
            return self._active_wallets
        self._active_wallets = frozenset(w.address for w in wallets if w.is_active)
        return self._active_wallets

    def _decision(
        self,
        signal: Signal,
        outcome: DecisionOutcome,
        strategy: str | None = None,
        reason: str | None = None,
        detail: str = "",
        confidence: float = 0.0,
        position_id: str | None = None,
    ) -> SignalDecision:
        return SignalDecision(
            signal_id=signal.signal_id,
            wallet=signal.wallet,
            token=signal.token,
            outcome=outcome,
            at=self.ctx.clock(),
            strategy=strategy,
            reason=reason,
            detail=detail,
            confidence=confidence,
            position_id=position_id,
        )

    async def _record(self, decision: SignalDecision) -> None:
        self._decisions.append(decision)
        if self.ctx.audit is not None:
            self.ctx.audit.log_decision(decision)
        if decision.outcome != DecisionOutcome.OPENED:
            logger.info(
                "Signal %s %s: %s%s",
                decision.signal_id, decision.outcome.value, decision.reason,
                f" ({decision.detail})" if decision.detail else "",
            )
            await self.ctx.bus.emit(EVENT_SIGNAL_REJECTED, decision)

    # ------------------------------------------------------------------
    # Other jobs
    # ------------------------------------------------------------------

    async def monitor_and_close(self) -> MonitorReport:
        return await self.ctx.lifecycle.monitor_open_positions(self._oracle)

    async def refresh_performance(self) -> dict[str, StrategyPerformance]:
        return self.ctx.performance.refresh(self.ctx.lifecycle.closed_positions(), self.ctx.clock())

    async def trigger_discovery(self) -> int:
        """Ask the discovery collaborator to refresh its active wallet set."""
        if self._directory is None:
            logger.debug("No wallet directory configured; discovery skipped")
            return 0
        active = await self._directory.refresh()
        logger.info("Discovery refresh: %d active wallets", active)
        return active

    # ------------------------------------------------------------------
    # Read-only queries
    # ------------------------------------------------------------------

    def recent_decisions(self) -> list[SignalDecision]:
        return list(self._decisions)

    def snapshot(self) -> EngineSnapshot:
        ctx = self.ctx
        views = [
            OpenPositionView(
                id=p.id, strategy=p.strategy, wallet=p.wallet, token=p.token,
                token_symbol=p.token_symbol, chain=p.chain, entry_price=p.entry_price,
                last_price=p.last_price, peak_price=p.peak_price, allocated=p.allocated,
                remaining_fraction=p.remaining_fraction, unrealized_pnl=p.unrealized_pnl(),
                opened_at=p.opened_at, trailing_armed=p.trailing_armed,
                consecutive_failures=p.consecutive_failures,
            )
            for p in ctx.lifecycle.open_positions()
        ]
        return EngineSnapshot(
            taken_at=ctx.clock(),
            open_positions=views,
            buckets=ctx.risk.bucket_states(),
            recent_closes=ctx.lifecycle.recent_closes(),
            recent_decisions=self.recent_decisions(),
            skipped_cycles=ctx.coordinator.skipped_counts(),
            trading_halted=ctx.risk.is_halted,
            emergency_stop=ctx.risk.emergency_stop,
            daily_pnl=ctx.risk.daily_pnl,
            integrity_errors=self._integrity_errors + ctx.lifecycle.integrity_errors,
            performance=ctx.performance.latest(),
        )
