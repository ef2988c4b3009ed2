from contextlib import asynccontextmanager

import pytest
import pytest_asyncio

from sqlthrottle.db import Database
from sqlthrottle.exceptions import DatabaseClosedError


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeConnection:
    """In-memory stand-in for a database handle that records every call."""

    def __init__(self):
        self.calls: list[tuple[str, tuple, dict]] = []
        self.closed = False
        self.error: Exception | None = None

    def count(self, op: str | None = None) -> int:
        return sum(1 for name, _, _ in self.calls if op is None or name == op)

    def _record(self, op: str, *args, **kwargs) -> None:
        self.calls.append((op, args, kwargs))
        if self.closed and op != "close":
            raise DatabaseClosedError("database is closed")
        if self.error is not None:
            raise self.error

    async def query(self, statement, params=None, *, timeout=None):
        self._record("query", statement, params, timeout=timeout)
        return [("Alice", "alice@example.com")]

    async def query_row(self, statement, params=None, *, timeout=None):
        self._record("query_row", statement, params, timeout=timeout)
        return ("Alice", "alice@example.com")

    async def exec(self, statement, params=None, *, timeout=None):
        self._record("exec", statement, params, timeout=timeout)
        return 1

    async def prepare(self, statement, *, timeout=None):
        self._record("prepare", statement, timeout=timeout)
        return f"prepared:{statement}"

    async def ping(self, *, timeout=None):
        self._record("ping", timeout=timeout)

    @asynccontextmanager
    async def connect(self, *, timeout=None):
        self._record("connect", timeout=timeout)
        yield "dedicated-connection"

    async def close(self):
        self._record("close")
        self.closed = True


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def fake_conn() -> FakeConnection:
    return FakeConnection()


@pytest.fixture()
def db_url(tmp_path) -> str:
    # File-backed so concurrent checkouts see the same data
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest_asyncio.fixture()
async def database(db_url):
    db = Database.open(db_url)
    await db.exec(
        """
        CREATE TABLE users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            email TEXT NOT NULL
        )
        """
    )
    await db.exec(
        "INSERT INTO users (name, email) VALUES (?, ?)", ("Alice", "alice@example.com"),
    )
    yield db
    await db.close()
