from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from copytrader.batch.coordinator import CycleReport
from copytrader.batch.scheduler import IntervalScheduler
from copytrader.core.config import CONFIG_PATH_ENV, Settings, load_settings
from copytrader.core.logger import setup_logging
from copytrader.core.types import JobType
from copytrader.data.memory_store import MemoryStore
from copytrader.data.sqlite_store import SQLiteStore
from copytrader.data.store import PositionStore
from copytrader.engine import EngineContext, PaperTradingEngine
from copytrader.portfolio.audit_log import AuditLogger
from copytrader.sources.base import PriceOracle, TransactionFeed, WalletDirectory
from copytrader.sources.replay import (
    JsonlReplayFeed,
    ListFeed,
    StaticPriceOracle,
    StaticWalletDirectory,
    load_wallets,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/default.yaml")


class CopyTrader:
    """Application wiring: store, engine and interval scheduler."""

    def __init__(
        self,
        settings: Settings,
        feed: TransactionFeed,
        oracle: PriceOracle,
        directory: WalletDirectory | None = None,
        store: PositionStore | None = None,
    ) -> None:
        self._settings = settings
        self._store = store or self._create_store()
        data = settings.data
        audit = AuditLogger(data.audit_log_path, data.close_log_path)
        self._context = EngineContext.build(settings, self._store, audit=audit)
        self._engine = PaperTradingEngine(self._context, feed, oracle, directory)
        self._scheduler = IntervalScheduler(self._context.coordinator)
        self._register_jobs()

    @property
    def engine(self) -> PaperTradingEngine:
        return self._engine

    @property
    def scheduler(self) -> IntervalScheduler:
        return self._scheduler

    def _create_store(self) -> PositionStore:
        if self._settings.data.store_type == "sqlite":
            db_path = Path(self._settings.data.sqlite_path)
            db_path.parent.mkdir(parents=True, exist_ok=True)
            return SQLiteStore(str(db_path))
        return MemoryStore()

    def _register_jobs(self) -> None:
        cfg = self._settings.scheduler
        engine = self._engine
        self._scheduler.register(JobType.INGEST, cfg.ingest_interval_seconds, engine.ingest_and_open)
        self._scheduler.register(JobType.MONITOR, cfg.monitor_interval_seconds, engine.monitor_and_close)
        self._scheduler.register(
            JobType.PERFORMANCE, cfg.performance_interval_seconds, engine.refresh_performance,
            run_immediately=False,
        )
        if cfg.enable_discovery:
            self._scheduler.register(
                JobType.DISCOVERY, cfg.discovery_interval_seconds, engine.trigger_discovery,
                run_immediately=False,
            )

    async def start(self) -> None:
        await self._store.initialize()
        await self._engine.start()
        logger.info("%s started", self._settings.system.name)

    async def run_forever(self) -> None:
        await self._scheduler.run_forever()

    async def run_once(self) -> list[CycleReport]:
        """One ingest, monitor and performance cycle, in that order."""
        reports = []
        for job_type in (JobType.INGEST, JobType.MONITOR, JobType.PERFORMANCE):
            reports.append(await self._engine.run(job_type))
        return reports

    async def stop(self) -> None:
        self._scheduler.stop()
        summary = self._engine.snapshot().summary()
        logger.info("Final state: %s", summary)
        await self._store.close()


def _load_prices(path: str | None) -> dict[str, float]:
    if not path:
        return {}
    with open(path, encoding="utf-8") as f:
        return {token: float(price) for token, price in json.load(f).items()}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="copytrader", description="Paper copy-trading engine for on-chain wallet activity",
    )
    parser.add_argument(
        "--config", default=os.environ.get(CONFIG_PATH_ENV, str(DEFAULT_CONFIG_PATH)),
        help="YAML settings file",
    )
    parser.add_argument("--replay", help="JSONL file of recorded signals to replay")
    parser.add_argument("--prices", help="JSON file mapping token to USD price")
    parser.add_argument("--wallets", help="JSONL file of active wallet records")
    parser.add_argument("--once", action="store_true", help="run one cycle of each job and exit")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    args = parse_args(argv)

    config_path = Path(args.config)
    if config_path.exists():
        settings = load_settings(config_path)
    else:
        settings = Settings()

    setup_logging("copytrader", level=settings.system.log_level, log_dir=settings.system.log_dir)
    if not config_path.exists():
        logger.warning("Config %s not found; using defaults", config_path)

    feed: TransactionFeed = JsonlReplayFeed(args.replay) if args.replay else ListFeed()
    if not args.replay:
        logger.warning("No transaction feed configured; only monitoring open positions")
    oracle = StaticPriceOracle(_load_prices(args.prices))
    directory = StaticWalletDirectory(load_wallets(args.wallets)) if args.wallets else None

    app = CopyTrader(settings, feed, oracle, directory)

    async def run():
        await app.start()
        try:
            if args.once:
                await app.run_once()
            else:
                await app.run_forever()
        except (KeyboardInterrupt, asyncio.CancelledError):
            pass
        finally:
            await app.stop()

    asyncio.run(run())


if __name__ == "__main__":
    main()
