"""Async engine factory."""

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from sqlthrottle.config import DatabaseConfig


def create_engine(config: DatabaseConfig | None = None, **kwargs) -> AsyncEngine:
    """Build an ``AsyncEngine`` from a :class:`DatabaseConfig`."""
    config = config or DatabaseConfig()
    return create_async_engine(config.url, echo=config.echo, **kwargs)
