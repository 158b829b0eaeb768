"""Interfaces of the external collaborators the engine consumes.

Feeds, price oracles and the wallet directory are supplied by the host
application; the engine never talks to a blockchain directly.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator

from copytrader.core.types import Signal, WalletRecord


class TransactionFeed(ABC):
    """Produces the signals observed since the previous poll.

    Each ``poll`` call yields a finite, unordered batch and may be called
    again on the next cycle.  Signals may lack price or notional.
    """

    @abstractmethod
    def poll(self) -> AsyncIterator[Signal]: ...


class PriceOracle(ABC):
    @abstractmethod
    async def resolve_price(self, token: str, chain: str) -> float | None:
        """Current USD price, or None when the price is unavailable.

        May also raise ``TransientLookupFailure``; callers treat both the
        same way and retry on the next tick.  Never returns 0 for "unknown".
        """


class WalletDirectory(ABC):
    """Discovery/scoring collaborator: the engine only reads its results."""

    @abstractmethod
    async def active_wallets(self) -> list[WalletRecord]: ...

    @abstractmethod
    async def refresh(self) -> int:
        """Ask the discovery subsystem to rescan; returns wallets now active."""
