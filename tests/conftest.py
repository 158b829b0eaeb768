"""Shared fixtures for CopyTrader tests."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

START = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable UTC clock passed wherever the engine takes ``clock``."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()
