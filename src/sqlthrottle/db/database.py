"""Async database handle over a SQLAlchemy engine.

``Database`` is the plain, unthrottled handle: every call checks a
connection out of the engine's pool, runs one statement in its own
transaction and returns a buffered result. ``RateLimitedDB`` wraps it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, Protocol, Union

from sqlalchemy import text
from sqlalchemy.engine import CursorResult, Row
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from sqlalchemy.sql import Executable

from sqlthrottle.config import DatabaseConfig
from sqlthrottle.db.engine import create_engine
from sqlthrottle.exceptions import DatabaseClosedError

logger = logging.getLogger(__name__)

Statement = Union[str, Executable]
Params = Union[Mapping[str, Any], Sequence[Any], None]


class Connection(Protocol):
    """What ``RateLimitedDB`` needs from the handle it wraps."""

    async def query(self, statement: Statement, params: Params = None, *, timeout: float | None = None) -> Any: ...

    async def query_row(self, statement: Statement, params: Params = None, *, timeout: float | None = None) -> Any: ...

    async def exec(self, statement: Statement, params: Params = None, *, timeout: float | None = None) -> Any: ...

    async def prepare(self, statement: Statement, *, timeout: float | None = None) -> Any: ...

    async def close(self) -> None: ...

    async def ping(self, *, timeout: float | None = None) -> None: ...

    def connect(self, *, timeout: float | None = None) -> AbstractAsyncContextManager[Any]: ...


def _is_positional(params: Params) -> bool:
    if isinstance(params, (tuple, list)):
        return bool(params) and not isinstance(params[0], Mapping)
    return False


async def _execute(conn: AsyncConnection, statement: Statement, params: Params) -> CursorResult:
    """Run one statement with named, positional or executemany parameters."""
    if _is_positional(params):
        if not isinstance(statement, str):
            raise TypeError("positional parameters require a SQL string")
        if isinstance(params[0], (tuple, list)):
            # executemany with positional rows
            return await conn.exec_driver_sql(statement, [tuple(p) for p in params])
        return await conn.exec_driver_sql(statement, tuple(params))

    if isinstance(statement, str):
        statement = text(statement)
    if not params:
        return await conn.execute(statement)
    if isinstance(params, (tuple, list)):
        return await conn.execute(statement, list(params))
    return await conn.execute(statement, dict(params))


class Database:
    """Pooled async database handle.

    Safe to share between tasks; each operation checks out its own
    connection. Once :meth:`close` has run every operation raises
    :class:`DatabaseClosedError`.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._closed = False

    @classmethod
    def open(cls, config: DatabaseConfig | str | None = None, **engine_kwargs) -> Database:
        """Create the engine for ``config`` (or a bare URL) and wrap it."""
        if isinstance(config, str):
            config = DatabaseConfig(url=config)
        engine = create_engine(config, **engine_kwargs)
        logger.info(f"Opened database {engine.url.render_as_string(hide_password=True)}")
        return cls(engine)

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise DatabaseClosedError("database is closed")

    async def _run(self, statement: Statement, params: Params, timeout: float | None) -> CursorResult:
        self._check_open()
        async with asyncio.timeout(timeout):
            async with self.engine.begin() as conn:
                return await _execute(conn, statement, params)

    async def query(
        self, statement: Statement, params: Params = None, *, timeout: float | None = None,
    ) -> CursorResult:
        """Run a row-returning statement and return its buffered result."""
        return await self._run(statement, params, timeout)

    async def query_row(
        self, statement: Statement, params: Params = None, *, timeout: float | None = None,
    ) -> Row | None:
        """Run a statement and return its first row, or ``None``."""
        result = await self._run(statement, params, timeout)
        return result.first()

    async def exec(
        self, statement: Statement, params: Params = None, *, timeout: float | None = None,
    ) -> CursorResult:
        """Run a statement for its effect; commits on success."""
        return await self._run(statement, params, timeout)

    async def prepare(self, statement: Statement, *, timeout: float | None = None) -> PreparedStatement:
        """Compile ``statement`` once for repeated execution.

        No I/O happens here, so ``timeout`` only rejects a deadline that has
        already passed.
        """
        self._check_open()
        if timeout is not None and timeout <= 0:
            raise TimeoutError("deadline already exceeded")
        return PreparedStatement(self, statement)

    async def ping(self, *, timeout: float | None = None) -> None:
        """Check that a connection can be established and used."""
        self._check_open()
        async with asyncio.timeout(timeout):
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))

    @asynccontextmanager
    async def connect(self, *, timeout: float | None = None) -> AsyncIterator[AsyncConnection]:
        """Yield a dedicated connection, e.g. for an explicit transaction."""
        self._check_open()
        async with asyncio.timeout(timeout):
            conn = await self.engine.connect()
        try:
            yield conn
        finally:
            await conn.close()

    async def close(self) -> None:
        """Dispose of the engine's pool. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await self.engine.dispose()
        logger.info("Closed database")

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<Database {self.engine.url.render_as_string(hide_password=True)} ({state})>"


class PreparedStatement:
    """A statement compiled against one database.

    Executions through a prepared statement are not rate limited, even when
    the statement was obtained from a ``RateLimitedDB``.
    """

    def __init__(self, database: Database, statement: Statement):
        self.database = database
        self.statement = text(statement) if isinstance(statement, str) else statement
        self.sql = statement if isinstance(statement, str) else None
        # Validation only: malformed constructs fail here, not on first use.
        # Executions go through the engine, which uses its own compiled cache.
        self.statement.compile(dialect=database.engine.dialect)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed or self.database.closed

    def _target(self, params: Params) -> Statement:
        if _is_positional(params):
            if self.sql is None:
                raise TypeError("positional parameters require a SQL string")
            return self.sql
        return self.statement

    def _check_open(self) -> None:
        if self._closed:
            raise DatabaseClosedError("prepared statement is closed")

    async def query(self, params: Params = None, *, timeout: float | None = None) -> CursorResult:
        self._check_open()
        return await self.database.query(self._target(params), params, timeout=timeout)

    async def query_row(self, params: Params = None, *, timeout: float | None = None) -> Row | None:
        self._check_open()
        return await self.database.query_row(self._target(params), params, timeout=timeout)

    async def exec(self, params: Params = None, *, timeout: float | None = None) -> CursorResult:
        self._check_open()
        return await self.database.exec(self._target(params), params, timeout=timeout)

    async def close(self) -> None:
        self._closed = True
