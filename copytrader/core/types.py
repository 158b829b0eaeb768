"""Shared data types for the paper copy-trading engine.

These types flow between the matcher, the risk manager, the position
lifecycle manager and the cycle coordinator.  Signals and decision records
are immutable; ``Position`` is mutable but only the lifecycle manager
changes its status, and only the risk manager touches capital buckets.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from copytrader.core.exceptions import IntegrityViolation, RejectedSignal


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_dt(value: str | datetime | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Direction(str, Enum):
    BUY = "buy"
    SELL = "sell"


class PositionStatus(str, Enum):
    PENDING = "pending"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"
    REJECTED = "rejected"


class ExitReason(str, Enum):
    """Exit rule kinds, declared in evaluation priority order."""

    STOP_LOSS = "stop-loss"
    TAKE_PROFIT = "take-profit"
    TRAILING_STOP = "trailing-stop"
    TIME_BASED = "time-based"


class RejectReason(str, Enum):
    """Why the matcher (or the ingest job) refused a signal."""

    BELOW_THRESHOLD = "below-threshold"
    WRONG_DIRECTION = "wrong-direction"
    UNKNOWN_TOKEN_AGE = "unknown-token-age"
    DUPLICATE_OPEN = "duplicate-open"
    NO_APPLICABLE_STRATEGY = "no-applicable-strategy"
    INACTIVE_WALLET = "inactive-wallet"
    PRICE_UNAVAILABLE = "price-unavailable"


class DenyReason(str, Enum):
    """Why the risk manager refused to size a position."""

    EMERGENCY_STOP = "emergency-stop"
    INVALID_SIZE = "invalid-size"
    CAPACITY_EXCEEDED = "capacity-exceeded"
    MAX_CONCURRENT = "max-concurrent"
    CORRELATION_LIMIT = "correlation-limit"
    DAILY_LOSS_LIMIT = "daily-loss-limit"


class JobType(str, Enum):
    INGEST = "ingest-and-open"
    MONITOR = "monitor-and-close"
    PERFORMANCE = "performance-refresh"
    DISCOVERY = "discovery-trigger"


class CycleOutcome(str, Enum):
    RAN = "ran"
    SKIPPED = "skipped"
    FAILED = "failed"


class DecisionOutcome(str, Enum):
    OPENED = "opened"
    REJECTED = "rejected"
    DENIED = "denied"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WalletStats:
    """Historical performance summary of a source wallet.

    ``win_rate`` is None for a wallet with no closed-trade history.  Code
    that needs the number must branch on ``has_history`` first or call
    ``require_win_rate``, which refuses to hand out a missing value.
    """

    win_rate: float | None = None
    sample_size: int = 0

    @property
    def has_history(self) -> bool:
        return self.win_rate is not None

    def require_win_rate(self) -> float:
        if self.win_rate is None:
            raise IntegrityViolation(
                "missing_win_rate",
                "win rate compared numerically for a wallet without history",
            )
        return self.win_rate


@dataclass(frozen=True)
class Signal:
    """An observed wallet transaction considered as a trading trigger.

    Attributes:
        signal_id: Transaction identity (hash); unique per observed event.
        wallet: Source wallet address.
        chain: Chain name (e.g. "solana", "ethereum").
        token: Token address.
        direction: Buy or sell.
        observed_at: When the feed observed the transaction (UTC).
        wallet_stats: Historical performance of the source wallet.
        notional_usd: Trade value in USD; None when the feed had no price.
        price: Observed token price in USD; None when unknown.
        token_symbol: Display symbol, informational only.
        token_age_hours: Token age at observation; None when unknown.
        liquidity_usd: Pool liquidity; None when unknown.
        wallet_balance_usd: Source wallet balance; None when unknown.
        volume_multiple: Recent volume relative to baseline; None when unknown.
    """

    signal_id: str
    wallet: str
    chain: str
    token: str
    direction: Direction
    observed_at: datetime
    wallet_stats: WalletStats = field(default_factory=WalletStats)
    notional_usd: float | None = None
    price: float | None = None
    token_symbol: str = ""
    token_age_hours: float | None = None
    liquidity_usd: float | None = None
    wallet_balance_usd: float | None = None
    volume_multiple: float | None = None

    @property
    def key(self) -> tuple[str, str]:
        """(wallet, token) pair used for duplicate-open detection."""
        return (self.wallet, self.token)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Signal:
        stats = data.get("wallet_stats") or {}
        return cls(
            signal_id=str(data["signal_id"]),
            wallet=data["wallet"],
            chain=data["chain"],
            token=data["token"],
            direction=Direction(data["direction"]),
            observed_at=parse_dt(data.get("observed_at")) or utcnow(),
            wallet_stats=WalletStats(
                win_rate=stats.get("win_rate"),
                sample_size=int(stats.get("sample_size", 0)),
            ),
            notional_usd=data.get("notional_usd"),
            price=data.get("price"),
            token_symbol=data.get("token_symbol", ""),
            token_age_hours=data.get("token_age_hours"),
            liquidity_usd=data.get("liquidity_usd"),
            wallet_balance_usd=data.get("wallet_balance_usd"),
            volume_multiple=data.get("volume_multiple"),
        )


@dataclass(frozen=True)
class WalletRecord:
    """A candidate wallet supplied by the discovery collaborator."""

    address: str
    chain: str
    score: float  # 0-100
    status: str = "active"

    @property
    def is_active(self) -> bool:
        return self.status == "active"


# ---------------------------------------------------------------------------
# Matching and authorization results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StrategyMatch:
    """A signal accepted by the matcher for one strategy."""

    strategy: str
    confidence: float


@dataclass(frozen=True)
class MatchRejection:
    """A signal no registered strategy accepted."""

    reason: RejectReason
    detail: str = ""
    strategy: str | None = None


MatchResult = Union[StrategyMatch, MatchRejection]


@dataclass(frozen=True)
class Authorization:
    """Auditable record of one risk authorization check.

    Attributes:
        strategy: Strategy whose bucket was checked.
        requested: Size requested by the caller.
        granted: Size granted (0.0 when denied).
        reason: Deny reason, None when accepted.
        detail: Human-readable explanation.
        token: Token the position would hold.
        at: When the check ran.
    """

    strategy: str
    requested: float
    granted: float
    reason: DenyReason | None
    detail: str
    token: str
    at: datetime

    @property
    def accepted(self) -> bool:
        return self.reason is None


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------

@dataclass
class Position:
    """A simulated position and its lifecycle state.

    Quantities are in token units; notionals and capital in USD.  The
    cost basis of the remaining quantity is ``entry_price *
    remaining_quantity``; partial exits shrink quantity and allocated
    capital proportionally and accumulate realized P&L in ``partial_pnl``.

    Attributes:
        id: Unique position identifier.
        strategy: Name of the strategy that actually matched the signal.
        wallet: Source wallet that triggered the position.
        token: Token address held.
        chain: Chain of the token.
        entry_price: Price at open.
        entry_notional: Capital committed at open.
        quantity: Token quantity bought at open.
        remaining_quantity: Quantity still held.
        allocated: Capital currently committed in the strategy bucket.
        peak_price: Highest price observed since entry.
        last_price: Most recent successfully resolved price.
        status: Lifecycle status.
        opened_at: When the position opened.
        closed_at: When the position closed; None until closed.
        close_reason: Exit rule that closed the position.
        realized_pnl: Total realized P&L; None until closed.
        partial_pnl: P&L realized by partial exits so far.
        exit_notional: Proceeds of all exits so far.
        tiers_filled: Indexes of take-profit tiers already sold.
        trailing_armed: True once the trailing-stop activation gain was reached.
        consecutive_failures: Price lookup failures in a row.
    """

    id: str
    strategy: str
    wallet: str
    token: str
    chain: str
    entry_price: float
    entry_notional: float
    quantity: float
    remaining_quantity: float
    allocated: float
    peak_price: float
    last_price: float
    status: PositionStatus
    opened_at: datetime
    closed_at: datetime | None = None
    close_reason: ExitReason | None = None
    realized_pnl: float | None = None
    partial_pnl: float = 0.0
    exit_notional: float = 0.0
    tiers_filled: list[int] = field(default_factory=list)
    trailing_armed: bool = False
    consecutive_failures: int = 0
    signal_id: str = ""
    token_symbol: str = ""
    confidence: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    @property
    def cost_basis(self) -> float:
        return self.entry_price * self.remaining_quantity

    @property
    def remaining_fraction(self) -> float:
        if self.quantity <= 0:
            return 0.0
        return self.remaining_quantity / self.quantity

    def gain_pct(self, price: float) -> float:
        if self.entry_price <= 0:
            return 0.0
        return (price - self.entry_price) / self.entry_price

    def unrealized_pnl(self, price: float | None = None) -> float:
        mark = self.last_price if price is None else price
        return (mark - self.entry_price) * self.remaining_quantity

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["close_reason"] = self.close_reason.value if self.close_reason else None
        data["opened_at"] = self.opened_at.isoformat()
        data["closed_at"] = self.closed_at.isoformat() if self.closed_at else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Position:
        values = dict(data)
        values["status"] = PositionStatus(values["status"])
        if values.get("close_reason"):
            values["close_reason"] = ExitReason(values["close_reason"])
        values["opened_at"] = parse_dt(values["opened_at"])
        values["closed_at"] = parse_dt(values.get("closed_at"))
        values["tiers_filled"] = list(values.get("tiers_filled") or [])
        return cls(**values)


# ---------------------------------------------------------------------------
# Terminal records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CloseEvent:
    """A partial or final exit of a position."""

    position_id: str
    strategy: str
    wallet: str
    token: str
    reason: ExitReason
    exit_price: float
    quantity: float
    pnl: float
    at: datetime
    partial: bool = False
    tier: int | None = None


@dataclass(frozen=True)
class SignalDecision:
    """Exactly one terminal record per processed signal."""

    signal_id: str
    wallet: str
    token: str
    outcome: DecisionOutcome
    at: datetime
    strategy: str | None = None
    reason: str | None = None
    detail: str = ""
    confidence: float = 0.0
    position_id: str | None = None

    def raise_for_outcome(self) -> None:
        """Raise ``RejectedSignal`` unless the signal opened a position."""
        if self.outcome != DecisionOutcome.OPENED:
            raise RejectedSignal(self.signal_id, self.reason or self.outcome.value)
