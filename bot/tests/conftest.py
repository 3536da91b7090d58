from __future__ import annotations

import pytest

from database.store import MemoryDocumentStore
from fakes import FakeScheduler, FixedClock


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store() -> MemoryDocumentStore:
    return MemoryDocumentStore()
