"""Tests for application wiring and the CLI entry point."""
from __future__ import annotations

import json

import pytest
import yaml

from copytrader.core.config import CONFIG_PATH_ENV, DataConfig, SchedulerConfig, Settings
from copytrader.core.types import CycleOutcome, Signal
from copytrader.data.memory_store import MemoryStore
from copytrader.data.sqlite_store import SQLiteStore
from copytrader.main import CopyTrader, _load_prices, main, parse_args
from copytrader.sources.replay import ListFeed, StaticPriceOracle


def _signal_line(signal_id: str, token: str) -> str:
    return json.dumps({
        "signal_id": signal_id, "wallet": "W1", "chain": "solana", "token": token,
        "direction": "buy", "observed_at": "2026-03-02T10:00:00+00:00",
        "wallet_stats": {"win_rate": 0.7, "sample_size": 20},
        "notional_usd": 1000.0,
    })


class TestParseArgs:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)
        args = parse_args([])
        assert args.config == "config/default.yaml"
        assert args.replay is None
        assert args.once is False

    def test_config_from_environment(self, monkeypatch):
        monkeypatch.setenv(CONFIG_PATH_ENV, "/etc/copytrader.yaml")
        assert parse_args([]).config == "/etc/copytrader.yaml"

    def test_flags(self):
        args = parse_args(["--config", "c.yaml", "--replay", "s.jsonl", "--once"])
        assert args.config == "c.yaml"
        assert args.replay == "s.jsonl"
        assert args.once is True


class TestLoadPrices:
    def test_reads_json_mapping(self, tmp_path):
        path = tmp_path / "prices.json"
        path.write_text(json.dumps({"TKN": "1.25", "OTHER": 3}))
        assert _load_prices(str(path)) == {"TKN": 1.25, "OTHER": 3.0}

    def test_no_path(self):
        assert _load_prices(None) == {}


class TestCopyTrader:
    def _settings(self, tmp_path, **data) -> Settings:
        values = dict(
            audit_log_path=str(tmp_path / "decisions.jsonl"),
            close_log_path=str(tmp_path / "closes.jsonl"),
        )
        values.update(data)
        return Settings(data=DataConfig(**values))

    def test_store_selection(self, tmp_path):
        memory_app = CopyTrader(self._settings(tmp_path), ListFeed(), StaticPriceOracle())
        assert isinstance(memory_app.engine.ctx.store, MemoryStore)

        sqlite_app = CopyTrader(
            self._settings(tmp_path, store_type="sqlite", sqlite_path=str(tmp_path / "db" / "p.db")),
            ListFeed(), StaticPriceOracle(),
        )
        assert isinstance(sqlite_app.engine.ctx.store, SQLiteStore)
        assert (tmp_path / "db").is_dir()

    def test_jobs_registered(self, tmp_path):
        app = CopyTrader(self._settings(tmp_path), ListFeed(), StaticPriceOracle())
        jobs = {row["job_type"] for row in app.scheduler.task_status()}
        assert jobs == {"ingest-and-open", "monitor-and-close", "performance-refresh", "discovery-trigger"}

    def test_discovery_can_be_disabled(self, tmp_path):
        settings = self._settings(tmp_path)
        settings.scheduler = SchedulerConfig(enable_discovery=False)
        app = CopyTrader(settings, ListFeed(), StaticPriceOracle())
        jobs = {row["job_type"] for row in app.scheduler.task_status()}
        assert "discovery-trigger" not in jobs

    async def test_run_once(self, tmp_path):
        feed = ListFeed([[Signal.from_dict(json.loads(_signal_line("tx1", "TKN")))]])
        oracle = StaticPriceOracle({"TKN": 1.0})
        app = CopyTrader(self._settings(tmp_path), feed, oracle)
        await app.start()
        try:
            reports = await app.run_once()
        finally:
            await app.stop()

        assert [r.outcome for r in reports] == [CycleOutcome.RAN] * 3
        assert reports[0].result.opened == 1
        assert (tmp_path / "decisions.jsonl").exists()


class TestMain:
    def test_replay_once(self, tmp_path, monkeypatch):
        monkeypatch.delenv("COPYTRADER_DB_PATH", raising=False)
        config = tmp_path / "config.yaml"
        config.write_text(yaml.safe_dump({
            "system": {"log_dir": None, "log_level": "WARNING"},
            "data": {
                "store_type": "sqlite",
                "sqlite_path": str(tmp_path / "positions.db"),
                "audit_log_path": str(tmp_path / "decisions.jsonl"),
                "close_log_path": str(tmp_path / "closes.jsonl"),
            },
        }))
        replay = tmp_path / "signals.jsonl"
        replay.write_text(_signal_line("tx1", "TKN") + "\n" + _signal_line("tx2", "OTHER") + "\n")
        prices = tmp_path / "prices.json"
        prices.write_text(json.dumps({"TKN": 1.0, "OTHER": 2.0}))

        main(["--config", str(config), "--replay", str(replay), "--prices", str(prices), "--once"])

        lines = (tmp_path / "decisions.jsonl").read_text().splitlines()
        decisions = [json.loads(line) for line in lines if json.loads(line)["kind"] == "decision"]
        assert [d["signal_id"] for d in decisions] == ["tx1", "tx2"]
        assert (tmp_path / "positions.db").exists()

    def test_missing_config_falls_back_to_defaults(self, tmp_path, monkeypatch, caplog):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)
        main(["--config", str(tmp_path / "missing.yaml"), "--once"])
        assert "not found; using defaults" in caplog.text

    def test_unknown_flag_exits(self):
        with pytest.raises(SystemExit):
            main(["--bogus"])
