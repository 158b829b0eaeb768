"""Append-only audit trail for signal decisions, authorizations and closes.

Every processed signal yields exactly one decision record and every exit
yields one close record.  Records are appended to JSONL files for
post-hoc analysis; either path may be None to disable that file.
"""
from __future__ import annotations

import json
import logging
from dataclasses import asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from copytrader.core.types import (
    Authorization,
    CloseEvent,
    DecisionOutcome,
    DenyReason,
    ExitReason,
    SignalDecision,
    parse_dt,
)

logger = logging.getLogger(__name__)

_KIND_DECISION = "decision"
_KIND_AUTHORIZATION = "authorization"


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Cannot serialize {type(value).__name__}")


class AuditLogger:
    """Append-only JSONL logger for decisions and close events."""

    def __init__(self, decision_log_path: str | None, close_log_path: str | None) -> None:
        self._decision_path = Path(decision_log_path) if decision_log_path else None
        self._close_path = Path(close_log_path) if close_log_path else None

    def log_decision(self, decision: SignalDecision) -> None:
        """Append a signal decision to the decision log."""
        self._append(self._decision_path, {"kind": _KIND_DECISION, **asdict(decision)})

    def log_authorization(self, auth: Authorization) -> None:
        """Append a risk authorization record to the decision log."""
        self._append(self._decision_path, {"kind": _KIND_AUTHORIZATION, **asdict(auth)})

    def log_close(self, event: CloseEvent) -> None:
        """Append a partial or final close to the close log."""
        self._append(self._close_path, asdict(event))

    def _append(self, path: Path | None, payload: dict[str, Any]) -> None:
        if path is None:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(payload, default=_encode) + "\n")

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def read_decisions(self) -> list[SignalDecision]:
        """Read all decision records, skipping corrupt lines."""
        decisions: list[SignalDecision] = []
        for data in self._read(self._decision_path, "decision"):
            if data.pop("kind", _KIND_DECISION) != _KIND_DECISION:
                continue
            try:
                data["outcome"] = DecisionOutcome(data["outcome"])
                data["at"] = parse_dt(data["at"])
                decisions.append(SignalDecision(**data))
            except (TypeError, KeyError, ValueError):
                logger.warning("Skipping corrupt decision record: %s", str(data)[:80])
        return decisions

    def read_authorizations(self) -> list[Authorization]:
        """Read all authorization records, skipping corrupt lines."""
        records: list[Authorization] = []
        for data in self._read(self._decision_path, "decision"):
            if data.pop("kind", None) != _KIND_AUTHORIZATION:
                continue
            try:
                data["reason"] = DenyReason(data["reason"]) if data.get("reason") else None
                data["at"] = parse_dt(data["at"])
                records.append(Authorization(**data))
            except (TypeError, KeyError, ValueError):
                logger.warning("Skipping corrupt authorization record: %s", str(data)[:80])
        return records

    def read_closes(self) -> list[CloseEvent]:
        """Read all close records, skipping corrupt lines."""
        events: list[CloseEvent] = []
        for data in self._read(self._close_path, "close"):
            try:
                data["reason"] = ExitReason(data["reason"])
                data["at"] = parse_dt(data["at"])
                events.append(CloseEvent(**data))
            except (TypeError, KeyError, ValueError):
                logger.warning("Skipping corrupt close record: %s", str(data)[:80])
        return events

    def _read(self, path: Path | None, label: str) -> list[dict[str, Any]]:
        if path is None or not path.exists():
            return []
        rows: list[dict[str, Any]] = []
        with open(path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Skipping corrupt %s log line: %s", label, line[:80])
                    continue
                if isinstance(data, dict):
                    rows.append(data)
                else:
                    logger.warning("Skipping corrupt %s log line: %s", label, line[:80])
        return rows
