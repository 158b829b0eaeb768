"""Position execution for the paper engine.

This package contains:
- ExitRuleEngine: stop-loss, take-profit (single or tiered), trailing-stop
  and time-based exit evaluation
- PositionLifecycleManager: position state machine, open/close with
  capital commit and release (import from ``copytrader.execution.lifecycle``)
"""
from copytrader.execution.exit_rules import (
    ExitDecision,
    ExitRule,
    ExitRuleEngine,
    MaxHold,
    StopLoss,
    TakeProfit,
    TieredTakeProfit,
    TrailingStop,
    build_exit_rules,
)

__all__ = [
    "ExitDecision",
    "ExitRule",
    "ExitRuleEngine",
    "MaxHold",
    "StopLoss",
    "TakeProfit",
    "TieredTakeProfit",
    "TrailingStop",
    "build_exit_rules",
]
