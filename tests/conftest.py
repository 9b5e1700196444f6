"""Shared fixtures for the protocol engine tests."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest


class FakeClock:
    """Deterministic clock returning ``start`` then advancing ``step`` per call."""

    def __init__(self, start: datetime, step: timedelta):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + self.step
        return current


@pytest.fixture
def make_clock():
    """Factory for clocks; defaults to 2026-01-05 09:00 UTC, one minute per call."""
    def _make(start=datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc), minutes=1):
        return FakeClock(start, timedelta(minutes=minutes))
    return _make


@pytest.fixture
def clock(make_clock):
    return make_clock()
