from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Sequence

from sqlalchemy.engine import RowMapping
from sqlalchemy.ext.asyncio import AsyncConnection

from snippet_data.core.config import settings
from snippet_data.db.session import run_statement
from snippet_data.schemas.common import PageRequest, PageResult
from snippet_data.services.predicates import Predicates

logger = logging.getLogger(__name__)


class PaginatedQueryExecutor:
    """Runs the count statement and then the page statement over one predicate set.

    Both statements run on the caller's connection without a shared snapshot, so
    under concurrent writers ``total_count`` and ``items`` may disagree slightly.
    The page statement is only issued after the count completes; a cancellation
    or timeout while counting means it is never sent.
    """

    def __init__(self, *, timeout: float | None = None):
        self.timeout = timeout if timeout is not None else settings.DB_STATEMENT_TIMEOUT_SECONDS

    async def execute(
        self,
        conn: AsyncConnection,
        *,
        relation: str,
        columns: str,
        predicates: Predicates,
        order_by: str,
        page: PageRequest,
        operation: str,
        count_expression: str = "COUNT(*)",
    ) -> PageResult[RowMapping]:
        if self.timeout:
            async with asyncio.timeout(self.timeout):
                return await self._execute(conn, relation, columns, predicates, order_by, page, operation, count_expression)
        return await self._execute(conn, relation, columns, predicates, order_by, page, operation, count_expression)

    async def _execute(
        self,
        conn: AsyncConnection,
        relation: str,
        columns: str,
        predicates: Predicates,
        order_by: str,
        page: PageRequest,
        operation: str,
        count_expression: str,
    ) -> PageResult[RowMapping]:
        where = predicates.where
        count_sql = f"SELECT {count_expression} FROM {relation} {where}".rstrip()
        result = await run_statement(
            conn, f"{operation}.count", count_sql, predicates.params, expanding=predicates.expanding
        )
        total = int(result.scalar_one() or 0)
        if total == 0 or page.offset >= total:
            logger.debug("page_beyond_total operation=%s page=%s total=%s", operation, page.page, total)
            return PageResult(items=[], total_count=total, page=page.page, page_size=page.page_size)

        data_sql = (
            f"SELECT {columns} FROM {relation} {where} ORDER BY {order_by} "
            f"LIMIT :_limit OFFSET :_offset"
        )
        params = dict(predicates.params)
        params["_limit"] = page.limit
        params["_offset"] = page.offset
        result = await run_statement(conn, f"{operation}.page", data_sql, params, expanding=predicates.expanding)
        rows = list(result.mappings().all())
        return PageResult(items=rows, total_count=total, page=page.page, page_size=page.page_size)

    async def fetch_all(
        self,
        conn: AsyncConnection,
        sql: str,
        params: Mapping[str, Any] | None = None,
        *,
        operation: str,
        expanding: Sequence[str] = (),
    ) -> list[RowMapping]:
        result = await run_statement(conn, operation, sql, params, expanding=expanding)
        return list(result.mappings().all())

    async def fetch_one(
        self,
        conn: AsyncConnection,
        sql: str,
        params: Mapping[str, Any] | None = None,
        *,
        operation: str,
        expanding: Sequence[str] = (),
    ) -> RowMapping | None:
        result = await run_statement(conn, operation, sql, params, expanding=expanding)
        return result.mappings().first()

    async def scalar(
        self,
        conn: AsyncConnection,
        sql: str,
        params: Mapping[str, Any] | None = None,
        *,
        operation: str,
        expanding: Sequence[str] = (),
    ) -> Any:
        result = await run_statement(conn, operation, sql, params, expanding=expanding)
        return result.scalar()

    async def aggregate(
        self,
        conn: AsyncConnection,
        *,
        relation: str,
        select: str,
        predicates: Predicates,
        operation: str,
        group_by: str | None = None,
        order_by: str | None = None,
        limit: int | None = None,
    ) -> list[RowMapping]:
        """Statistics-style query over the same predicates, without pagination."""
        sql = f"SELECT {select} FROM {relation} {predicates.where}"
        params = dict(predicates.params)
        if group_by:
            sql = f"{sql} GROUP BY {group_by}"
        if order_by:
            sql = f"{sql} ORDER BY {order_by}"
        if limit is not None:
            sql = f"{sql} LIMIT :_limit"
            params["_limit"] = int(limit)
        return await self.fetch_all(conn, sql, params, operation=operation, expanding=tuple(predicates.expanding))

    async def execute_write(
        self,
        conn: AsyncConnection,
        sql: str,
        params: Mapping[str, Any] | None = None,
        *,
        operation: str,
        expanding: Sequence[str] = (),
    ) -> int:
        result = await run_statement(conn, operation, sql, params, expanding=expanding)
        return int(result.rowcount or 0)
