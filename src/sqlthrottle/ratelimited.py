"""Rate-limited database facade.

Every operation that sends SQL to the database (``query``, ``query_row``,
``exec`` and ``prepare``) first takes a token from a shared
:class:`~sqlthrottle.limiter.TokenBucket`. ``close``, ``ping`` and ``conn``
go straight through, and :meth:`RateLimitedDB.raw` hands back the wrapped
handle for callers that need to bypass the limiter on purpose.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import AbstractAsyncContextManager
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine

from sqlthrottle.config import ThrottleConfig
from sqlthrottle.db.database import Connection, Database, Params, Statement
from sqlthrottle.limiter import TokenBucket

logger = logging.getLogger(__name__)


class RateLimitedDB:
    """Database handle whose SQL-issuing operations share one token bucket.

    The wrapped handle is not owned exclusively: anything holding
    :meth:`raw` can use it without spending tokens. Admission failures are
    raised before the database is touched. Errors from the database itself
    are passed through untouched and never retried.
    """

    def __init__(self, db: Connection, limiter: TokenBucket, *, gate_ping: bool = False):
        self._db = db
        self._limiter = limiter
        self.gate_ping = gate_ping
        self._closed = False

    @property
    def limiter(self) -> TokenBucket:
        return self._limiter

    @property
    def closed(self) -> bool:
        """Whether :meth:`close` has been called.

        Informational only. The facade never reads it; errors for a closed
        handle come from the wrapped handle.
        """
        return self._closed

    async def _wait(self, timeout: float | None) -> float | None:
        """Take one token and return what is left of the caller's timeout."""
        if timeout is None:
            await self._limiter.acquire()
            return None
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        await self._limiter.acquire(timeout=timeout)
        return deadline - loop.time()

    async def query(self, statement: Statement, params: Params = None, *, timeout: float | None = None):
        remaining = await self._wait(timeout)
        return await self._db.query(statement, params, timeout=remaining)

    async def query_row(self, statement: Statement, params: Params = None, *, timeout: float | None = None):
        """Return the first row of ``statement``.

        Admission errors are raised here, at call time, rather than deferred
        until the row is read.
        """
        remaining = await self._wait(timeout)
        return await self._db.query_row(statement, params, timeout=remaining)

    async def exec(self, statement: Statement, params: Params = None, *, timeout: float | None = None):
        remaining = await self._wait(timeout)
        return await self._db.exec(statement, params, timeout=remaining)

    async def prepare(self, statement: Statement, *, timeout: float | None = None):
        """Prepare ``statement``. Only the preparation is rate limited."""
        remaining = await self._wait(timeout)
        return await self._db.prepare(statement, timeout=remaining)

    async def ping(self, *, timeout: float | None = None) -> None:
        if self.gate_ping:
            timeout = await self._wait(timeout)
        await self._db.ping(timeout=timeout)

    def conn(self, *, timeout: float | None = None) -> AbstractAsyncContextManager[Any]:
        """Dedicated connection from the underlying handle. Not rate limited."""
        return self._db.connect(timeout=timeout)

    get_raw_connection = conn

    def raw(self) -> Connection:
        """The wrapped handle. Operations on it bypass the limiter."""
        return self._db

    async def close(self) -> None:
        """Close the underlying handle. Never waits on the limiter."""
        self._closed = True
        await self._db.close()

    async def __aenter__(self) -> RateLimitedDB:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"<RateLimitedDB {self._db!r} limiter={self._limiter!r}>"


def wrap(
    connection: Connection | AsyncEngine,
    rate: float,
    burst: int,
    *,
    gate_ping: bool = False,
) -> RateLimitedDB:
    """Wrap an open database handle with a token-bucket limiter.

    Args:
        connection: A :class:`Database`, a bare ``AsyncEngine``, or any
            object providing the :class:`Connection` methods.
        rate: Operations per second. ``sqlthrottle.INF`` for no limit.
        burst: Operations admitted back to back before throttling starts.
        gate_ping: Also spend a token on health checks.
    """
    if isinstance(connection, AsyncEngine):
        connection = Database(connection)
    limiter = TokenBucket(rate, burst)
    logger.debug(f"Wrapping {connection!r} with rate={rate} burst={burst}")
    return RateLimitedDB(connection, limiter, gate_ping=gate_ping)


def open_rate_limited(config: ThrottleConfig | None = None, **engine_kwargs) -> RateLimitedDB:
    """Open the configured database and wrap it in one step."""
    config = config or ThrottleConfig()
    db = Database.open(config.database, **engine_kwargs)
    return wrap(db, config.limiter.rate, config.limiter.burst, gate_ping=config.gate_ping)
