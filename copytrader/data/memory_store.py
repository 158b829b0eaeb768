from __future__ import annotations

from copytrader.core.exceptions import DataError
from copytrader.core.types import Position, PositionStatus
from copytrader.data.store import PositionStore


class MemoryStore(PositionStore):
    """Process-local store; positions are copied in and out like a real backend."""

    def __init__(self) -> None:
        self._rows: dict[str, dict] = {}

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def create_position(self, position: Position) -> None:
        if position.id in self._rows:
            raise DataError(f"Position already exists: {position.id}")
        self._rows[position.id] = position.to_dict()

    async def update_position(self, position: Position) -> None:
        if position.id not in self._rows:
            raise DataError(f"Unknown position: {position.id}")
        self._rows[position.id] = position.to_dict()

    async def list_open_positions(self) -> list[Position]:
        return [
            Position.from_dict(row) for row in self._rows.values()
            if row["status"] in (PositionStatus.OPEN.value, PositionStatus.CLOSING.value)
        ]

    async def list_closed_positions(self, limit: int | None = None) -> list[Position]:
        closed = [
            Position.from_dict(row) for row in self._rows.values()
            if row["status"] == PositionStatus.CLOSED.value
        ]
        closed.sort(key=lambda p: p.closed_at, reverse=True)
        return closed[:limit] if limit is not None else closed
