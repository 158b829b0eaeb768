from __future__ import annotations

from abc import ABC, abstractmethod

from copytrader.core.types import Position


class PositionStore(ABC):
    """Durable record of positions across process restarts."""

    @abstractmethod
    async def initialize(self) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...

    @abstractmethod
    async def create_position(self, position: Position) -> None:
        """Insert a new position; raises ``DataError`` if the id exists."""

    @abstractmethod
    async def update_position(self, position: Position) -> None:
        """Overwrite a stored position; raises ``DataError`` if the id is unknown."""

    @abstractmethod
    async def list_open_positions(self) -> list[Position]: ...

    @abstractmethod
    async def list_closed_positions(self, limit: int | None = None) -> list[Position]:
        """Closed positions, most recently closed first."""
