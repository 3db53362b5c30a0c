"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from mailqueue.queue.memory_store import InMemoryTaskStore
from mailqueue.queue.service import TaskQueue
from mailqueue.queue.sql_store import SqlTaskStore
from mailqueue.storage.common import sqlite_url


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 10, 19, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sql_store(tmp_path: Path) -> Iterator[SqlTaskStore]:
    store = SqlTaskStore(sqlite_url(str(tmp_path / "queue.db")))
    store.init_schema()
    yield store
    store.close()


@pytest.fixture(params=["memory", "sqlite"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> Iterator[object]:
    if request.param == "memory":
        yield InMemoryTaskStore()
        return
    sql = SqlTaskStore(sqlite_url(str(tmp_path / "queue-param.db")))
    sql.init_schema()
    yield sql
    sql.close()


@pytest.fixture()
def queue(store, clock: FakeClock) -> TaskQueue:
    return TaskQueue(store, clock=clock)
