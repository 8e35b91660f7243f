"""
Shared test fixtures
"""

import pytest
from datetime import datetime, timedelta, timezone

from bank_ledger.storage import InMemoryStorage
from bank_ledger.system import LedgerSystem


class FixedClock:
    """Store clock that only moves when told to"""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def system(clock):
    """In-memory ledger system on a fixed clock"""
    system = LedgerSystem(InMemoryStorage(), clock=clock)
    yield system
    system.close()
