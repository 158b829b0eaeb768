from __future__ import annotations

import json

import aiosqlite

from copytrader.core.exceptions import DataError
from copytrader.core.types import Position, PositionStatus
from copytrader.data.store import PositionStore


class SQLiteStore(PositionStore):
    """aiosqlite-backed position store.

    Query columns (status, strategy, timestamps, P&L) are stored alongside
    the full position serialized as JSON in ``payload``.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        self._db = await aiosqlite.connect(self._db_path)
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS paper_positions (
                id TEXT PRIMARY KEY,
                strategy TEXT NOT NULL,
                wallet TEXT NOT NULL,
                token TEXT NOT NULL,
                chain TEXT NOT NULL,
                status TEXT NOT NULL,
                entry_price REAL NOT NULL,
                entry_notional REAL NOT NULL,
                opened_at TEXT NOT NULL,
                closed_at TEXT,
                close_reason TEXT,
                realized_pnl REAL,
                payload TEXT NOT NULL
            )
        """)
        await self._db.execute(
            "CREATE INDEX IF NOT EXISTS idx_paper_positions_status ON paper_positions (status)"
        )
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @staticmethod
    def _row(position: Position) -> tuple:
        data = position.to_dict()
        return (
            data["strategy"], data["wallet"], data["token"], data["chain"], data["status"],
            data["entry_price"], data["entry_notional"], data["opened_at"], data["closed_at"],
            data["close_reason"], data["realized_pnl"], json.dumps(data), data["id"],
        )

    async def create_position(self, position: Position) -> None:
        assert self._db is not None
        try:
            await self._db.execute(
                "INSERT INTO paper_positions (strategy, wallet, token, chain, status, entry_price, "
                "entry_notional, opened_at, closed_at, close_reason, realized_pnl, payload, id) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                self._row(position),
            )
        except aiosqlite.IntegrityError as exc:
            raise DataError(f"Position already exists: {position.id}") from exc
        await self._db.commit()

    async def update_position(self, position: Position) -> None:
        assert self._db is not None
        cursor = await self._db.execute(
            "UPDATE paper_positions SET strategy = ?, wallet = ?, token = ?, chain = ?, status = ?, "
            "entry_price = ?, entry_notional = ?, opened_at = ?, closed_at = ?, close_reason = ?, "
            "realized_pnl = ?, payload = ? WHERE id = ?",
            self._row(position),
        )
        if cursor.rowcount == 0:
            raise DataError(f"Unknown position: {position.id}")
        await self._db.commit()

    async def list_open_positions(self) -> list[Position]:
        assert self._db is not None
        cursor = await self._db.execute(
            "SELECT payload FROM paper_positions WHERE status IN (?, ?) ORDER BY opened_at",
            (PositionStatus.OPEN.value, PositionStatus.CLOSING.value),
        )
        rows = await cursor.fetchall()
        return [Position.from_dict(json.loads(r[0])) for r in rows]

    async def list_closed_positions(self, limit: int | None = None) -> list[Position]:
        assert self._db is not None
        query = "SELECT payload FROM paper_positions WHERE status = ? ORDER BY closed_at DESC"
        params: tuple = (PositionStatus.CLOSED.value,)
        if limit is not None:
            query += " LIMIT ?"
            params += (limit,)
        cursor = await self._db.execute(query, params)
        rows = await cursor.fetchall()
        return [Position.from_dict(json.loads(r[0])) for r in rows]
