"""Unit tests for the JSONL audit trail."""
from __future__ import annotations

import json
from datetime import datetime, timezone

from copytrader.core.types import (
    Authorization,
    CloseEvent,
    DecisionOutcome,
    DenyReason,
    ExitReason,
    SignalDecision,
)
from copytrader.portfolio.audit_log import AuditLogger

NOW = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


def _decision(**overrides) -> SignalDecision:
    values = dict(
        signal_id="tx1", wallet="W1", token="TKN", outcome=DecisionOutcome.OPENED, at=NOW,
        strategy="copy_trade", confidence=0.6, position_id="p1",
    )
    values.update(overrides)
    return SignalDecision(**values)


class TestAuditLogger:
    def test_decisions_and_authorizations_share_file(self, tmp_path):
        audit = AuditLogger(str(tmp_path / "decisions.jsonl"), None)
        denied = Authorization("copy_trade", 200.0, 0.0, DenyReason.MAX_CONCURRENT, "3/3", "TKN", NOW)
        audit.log_decision(_decision())
        audit.log_authorization(denied)

        lines = (tmp_path / "decisions.jsonl").read_text().splitlines()
        assert [json.loads(line)["kind"] for line in lines] == ["decision", "authorization"]
        assert json.loads(lines[0])["outcome"] == "opened"
        assert audit.read_decisions() == [_decision()]
        assert audit.read_authorizations() == [denied]

    def test_accepted_authorization_round_trip(self, tmp_path):
        audit = AuditLogger(str(tmp_path / "decisions.jsonl"), None)
        accepted = Authorization("copy_trade", 200.0, 120.0, None, "", "TKN", NOW)
        audit.log_authorization(accepted)
        assert audit.read_authorizations() == [accepted]

    def test_close_events(self, tmp_path):
        audit = AuditLogger(None, str(tmp_path / "logs" / "closes.jsonl"))
        event = CloseEvent(
            position_id="p1", strategy="memecoin", wallet="W1", token="MEME",
            reason=ExitReason.TAKE_PROFIT, exit_price=2.0, quantity=60.0, pnl=60.0,
            at=NOW, partial=True, tier=1,
        )
        audit.log_close(event)
        assert audit.read_closes() == [event]

    def test_disabled_paths(self, tmp_path):
        audit = AuditLogger(None, None)
        audit.log_decision(_decision())
        assert audit.read_decisions() == []
        assert audit.read_closes() == []
        assert list(tmp_path.iterdir()) == []

    def test_corrupt_lines_skipped(self, tmp_path, caplog):
        path = tmp_path / "decisions.jsonl"
        audit = AuditLogger(str(path), None)
        audit.log_decision(_decision(signal_id="tx1"))
        with open(path, "a", encoding="utf-8") as f:
            f.write("{truncated\n")
            f.write(json.dumps({"kind": "decision", "signal_id": "tx9"}) + "\n")
        audit.log_decision(_decision(signal_id="tx2"))

        assert [d.signal_id for d in audit.read_decisions()] == ["tx1", "tx2"]
        assert "Skipping corrupt" in caplog.text
