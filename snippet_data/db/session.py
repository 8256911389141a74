from __future__ import annotations

import logging
import re
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, Mapping

from sqlalchemy import bindparam, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.engine import CursorResult, make_url
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from snippet_data.core.config import settings
from snippet_data.core.errors import StatementExecutionFailure, redact_params
from snippet_data.db.dialect import Backend, SqlDialect, dialect_for
from snippet_data.services.type_normalizer import TypeNormalizer

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def create_engine_from_url(url: str | None = None, *, echo: bool | None = None) -> AsyncEngine:
    raw_url = str(url or settings.DATABASE_URL)
    parsed = make_url(raw_url)
    echo_value = settings.DB_ECHO if echo is None else echo
    if parsed.get_backend_name() == "sqlite":
        database = str(parsed.database or "")
        if not database or database == ":memory:":
            return create_async_engine(
                raw_url,
                echo=echo_value,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_async_engine(raw_url, echo=echo_value)
    return create_async_engine(
        raw_url,
        echo=echo_value,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
    )


class ConnectionFactory:
    """Hands out one connection per logical repository operation.

    The backend is detected once from the engine dialect; the matching
    :class:`TypeNormalizer` and :class:`SqlDialect` are shared by every repository
    built on this factory.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.backend = Backend.from_dialect_name(engine.dialect.name)
        self.dialect: SqlDialect = dialect_for(self.backend)
        self.normalizer = TypeNormalizer.for_backend(self.backend)

    @classmethod
    def from_url(cls, url: str | None = None, **kwargs: Any) -> "ConnectionFactory":
        return cls(create_engine_from_url(url, **kwargs))

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[AsyncConnection]:
        async with self.engine.connect() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncConnection]:
        """Commit on clean exit, roll back everything on any exception."""
        async with self.engine.begin() as conn:
            yield conn

    async def dispose(self) -> None:
        await self.engine.dispose()


def _statement(sql: str, expanding: Iterable[str] = ()):
    stmt = text(sql)
    names = [name for name in expanding if re.search(rf":{name}\b", sql)]
    if names:
        stmt = stmt.bindparams(*(bindparam(name, expanding=True) for name in names))
    return stmt


async def run_statement(
    conn: AsyncConnection,
    operation: str,
    sql: str,
    params: Mapping[str, Any] | None = None,
    *,
    expanding: Iterable[str] = (),
) -> CursorResult:
    """Execute one parameterized statement, timing it and translating driver errors."""
    bound = dict(params or {})
    started = time.perf_counter()
    try:
        result = await conn.execute(_statement(sql, expanding), bound)
    except SQLAlchemyError as exc:
        logger.warning(
            "statement_failed operation=%s params=%s error=%s",
            operation,
            redact_params(bound),
            type(exc).__name__,
        )
        raise StatementExecutionFailure(operation, bound, exc) from exc
    elapsed_ms = (time.perf_counter() - started) * 1000.0
    if elapsed_ms >= settings.SLOW_QUERY_MS:
        logger.warning("slow_query operation=%s elapsed_ms=%.1f params=%s", operation, elapsed_ms, redact_params(bound))
    else:
        logger.debug("query operation=%s elapsed_ms=%.1f", operation, elapsed_ms)
    return result
