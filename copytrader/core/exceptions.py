"""Core exception hierarchy for CopyTrader.

This module defines the complete exception hierarchy used throughout the
engine for error handling and exception propagation.

Capacity and correlation limits are NOT exceptions: the risk manager
reports them as denial reason codes.  Exceptions are reserved for lookup
failures that are retried later and for integrity violations that must be
surfaced loudly.
"""


class CopyTraderError(Exception):
    """Base exception class for all CopyTrader errors.

    All CopyTrader-specific exceptions inherit from this class,
    allowing callers to catch all framework errors with a single except clause.
    """


class ConfigError(CopyTraderError):
    """Configuration-related errors.

    Raised when there are issues with configuration files, invalid settings,
    missing required parameters, or configuration validation failures.
    """


class DataError(CopyTraderError):
    """Persistence store and data pipeline errors."""


class StrategyError(CopyTraderError):
    """Strategy registration and definition errors.

    Raised when a strategy is registered twice, registered after the
    registry was frozen for a run, or looked up by an unknown name.
    """


class TransientLookupFailure(CopyTraderError):
    """A price or feed call failed or timed out.

    The affected item (one signal or one position) is retried on the next
    cycle; the enclosing cycle continues.

    Attributes:
        source: Name of the collaborator that failed (e.g. "price_oracle").
        reason: Description of the failure.
    """

    def __init__(self, source: str, reason: str):
        """Initialize TransientLookupFailure with source and reason details.

        Args:
            source: Name of the external collaborator.
            reason: Description of why the lookup failed.
        """
        super().__init__(f"[{source}] Lookup failed: {reason}")
        self.source = source
        self.reason = reason


class IntegrityViolation(CopyTraderError):
    """An operation would break an engine invariant.

    Examples are a second close of the same position, an illegal position
    status transition, a numeric comparison against a missing win rate, or
    a bucket whose committed capital would exceed its total.  The single
    operation fails; bucket and position state are left untouched.

    Attributes:
        rule: Name of the invariant that was violated.
        detail: Specific details about the violation.
    """

    def __init__(self, rule: str, detail: str):
        """Initialize IntegrityViolation with rule and detail information.

        Args:
            rule: Name of the invariant (e.g. "double_close", "missing_win_rate").
            detail: Specific information about the violation.
        """
        super().__init__(f"Integrity violation [{rule}]: {detail}")
        self.rule = rule
        self.detail = detail


class RejectedSignal(CopyTraderError):
    """A signal was rejected by matching or denied by risk authorization.

    The engine records rejections as terminal decision records rather than
    raising; this exception exists for callers that prefer an exception
    (see ``SignalDecision.raise_for_outcome``).

    Attributes:
        signal_id: Identifier of the rejected signal.
        reason: Reason code of the rejection or denial.
    """

    def __init__(self, signal_id: str, reason: str):
        super().__init__(f"Signal {signal_id} rejected: {reason}")
        self.signal_id = signal_id
        self.reason = reason
