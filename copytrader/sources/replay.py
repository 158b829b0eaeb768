"""Offline sources: replay recorded signals and serve fixed prices.

Used by the CLI's ``--replay`` mode and by tests to drive the engine
end-to-end without blockchain access.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import AsyncIterator, Iterable, Mapping

from copytrader.core.exceptions import TransientLookupFailure
from copytrader.core.types import Signal, WalletRecord
from copytrader.sources.base import PriceOracle, TransactionFeed, WalletDirectory

logger = logging.getLogger(__name__)


class JsonlReplayFeed(TransactionFeed):
    """Replays signals from a JSONL file, a batch of ``batch_size`` per poll.

    The read offset advances across polls, so each cycle sees only lines
    it has not yielded before.  Corrupt lines are logged and skipped.
    """

    def __init__(self, path: str | Path, batch_size: int = 50) -> None:
        self._path = Path(path)
        self._batch_size = batch_size
        self._offset = 0

    @property
    def exhausted(self) -> bool:
        return self._offset >= len(self._lines())

    def _lines(self) -> list[str]:
        if not self._path.exists():
            return []
        with open(self._path, encoding="utf-8") as f:
            return [line.strip() for line in f if line.strip()]

    async def poll(self) -> AsyncIterator[Signal]:
        lines = self._lines()
        batch = lines[self._offset:self._offset + self._batch_size]
        self._offset += len(batch)
        for line in batch:
            try:
                signal = Signal.from_dict(json.loads(line))
            except (json.JSONDecodeError, TypeError, KeyError, ValueError):
                logger.warning("Skipping corrupt replay line: %s", line[:80])
                continue
            yield signal


class ListFeed(TransactionFeed):
    """Feed over in-memory batches; each poll yields the next batch."""

    def __init__(self, batches: Iterable[Iterable[Signal]] = ()) -> None:
        self._batches: list[list[Signal]] = [list(b) for b in batches]

    def push(self, *signals: Signal) -> None:
        self._batches.append(list(signals))

    async def poll(self) -> AsyncIterator[Signal]:
        if not self._batches:
            return
        for signal in self._batches.pop(0):
            yield signal


class StaticPriceOracle(PriceOracle):
    """Serves prices from a mutable table.

    Tokens missing from the table are unavailable; tokens marked failing
    raise ``TransientLookupFailure``.
    """

    def __init__(self, prices: Mapping[str, float] | None = None) -> None:
        self._prices: dict[str, float] = dict(prices or {})
        self._failing: set[str] = set()
        self.calls = 0

    def set_price(self, token: str, price: float) -> None:
        self._prices[token] = price
        self._failing.discard(token)

    def clear_price(self, token: str) -> None:
        self._prices.pop(token, None)

    def fail(self, token: str) -> None:
        self._failing.add(token)

    async def resolve_price(self, token: str, chain: str) -> float | None:
        self.calls += 1
        if token in self._failing:
            raise TransientLookupFailure("static-oracle", f"{token} lookup failing")
        return self._prices.get(token)


class StaticWalletDirectory(WalletDirectory):
    """Wallet directory backed by a fixed list of records."""

    def __init__(self, wallets: Iterable[WalletRecord] = ()) -> None:
        self._wallets = {w.address: w for w in wallets}
        self.refresh_count = 0

    def add(self, wallet: WalletRecord) -> None:
        self._wallets[wallet.address] = wallet

    async def active_wallets(self) -> list[WalletRecord]:
        return [w for w in self._wallets.values() if w.is_active]

    async def refresh(self) -> int:
        self.refresh_count += 1
        return len([w for w in self._wallets.values() if w.is_active])


def load_wallets(path: str | Path) -> list[WalletRecord]:
    """Load wallet records from a JSONL file (address, chain, score, status)."""
    wallets: list[WalletRecord] = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
                wallets.append(WalletRecord(
                    address=data["address"],
                    chain=data["chain"],
                    score=float(data.get("score", 0.0)),
                    status=data.get("status", "active"),
                ))
            except (json.JSONDecodeError, TypeError, KeyError, ValueError):
                logger.warning("Skipping corrupt wallet line: %s", line[:80])
    return wallets
