from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Iterable, Mapping, Sequence

from pydantic import BaseModel
from sqlalchemy.engine import RowMapping
from sqlalchemy.ext.asyncio import AsyncConnection

from snippet_data.db.session import ConnectionFactory
from snippet_data.schemas.common import PageRequest, PageResult
from snippet_data.services.paginated_query import PaginatedQueryExecutor
from snippet_data.services.predicates import FilterSchema, PredicateBuilder, Predicates
from snippet_data.services.query_cache import NoOpQueryCache, QueryCache, cache_key
from snippet_data.services.row_mapper import EntityShape, RowMapper
from snippet_data.services.sorting import SortResolver
from snippet_data.services.type_normalizer import ValueKind, utcnow

logger = logging.getLogger(__name__)


class BaseRepository:
    """Shared plumbing for the per-table repositories.

    Subclasses set ``table``/``alias``/``shape`` and, when they support paged
    search, ``filter_schema``/``filter_model`` and a ``sorter``.
    """

    entity_name = "entity"
    table = ""
    alias = "t"
    shape: EntityShape
    filter_schema: FilterSchema | None = None
    filter_model: type[BaseModel] | None = None
    sorter: SortResolver | None = None

    def __init__(
        self,
        connections: ConnectionFactory,
        cache: QueryCache | None = None,
        *,
        executor: PaginatedQueryExecutor | None = None,
    ):
        self.connections = connections
        self.normalizer = connections.normalizer
        self.dialect = connections.dialect
        self.mapper = RowMapper(self.normalizer)
        self.executor = executor or PaginatedQueryExecutor()
        self.cache: QueryCache = cache or NoOpQueryCache()
        self.predicates = (
            PredicateBuilder(self.filter_schema, self.normalizer, self.dialect, model=self.filter_model)
            if self.filter_schema is not None
            else None
        )

    # binding helpers

    def bind(self, value: Any, kind: ValueKind) -> Any:
        return self.normalizer.to_db(value, kind)

    def bind_id(self, value: uuid.UUID | str | None) -> Any:
        return self.normalizer.to_db(value, ValueKind.IDENTIFIER)

    def bind_ids(self, values: Iterable[uuid.UUID | str]) -> list[Any]:
        return self.normalizer.to_db_many(values, ValueKind.IDENTIFIER)

    def bind_time(self, value: datetime | None) -> Any:
        return self.normalizer.to_db(value, ValueKind.TIMESTAMP)

    def bind_bool(self, value: bool) -> Any:
        return self.normalizer.to_db(bool(value), ValueKind.BOOLEAN)

    def now(self) -> datetime:
        return utcnow()

    def read(self, raw: Any, kind: ValueKind, *, field: str | None = None) -> Any:
        return self.normalizer.normalize(raw, kind, field=field)

    def read_int(self, raw: Any, *, field: str | None = None) -> int:
        return self.normalizer.normalize(raw, ValueKind.INT64, field=field) or 0

    def read_float(self, raw: Any, *, field: str | None = None) -> float | None:
        return self.normalizer.normalize(raw, ValueKind.FLOAT, field=field)

    def cache_key(self, *parts: Any) -> str:
        return cache_key(self.table, *parts)

    # statement helpers

    def columns(self) -> str:
        return self.shape.select(self.alias)

    def encode(self, values: Mapping[str, Any], kinds: Mapping[str, ValueKind]) -> dict[str, Any]:
        return {name: self.bind(values.get(name), kind) for name, kind in kinds.items() if name in values}

    def entity_values(self, entity: BaseModel, kinds: Mapping[str, ValueKind] | None = None) -> dict[str, Any]:
        kinds = kinds or self.shape.kinds
        return {name: self.bind(getattr(entity, name), kind) for name, kind in kinds.items()}

    async def fetch_all(
        self,
        conn: AsyncConnection,
        operation: str,
        sql: str,
        params: Mapping[str, Any] | None = None,
        *,
        expanding: Sequence[str] = (),
    ) -> list[RowMapping]:
        return await self.executor.fetch_all(conn, sql, params, operation=f"{self.table}.{operation}", expanding=expanding)

    async def fetch_one(
        self,
        conn: AsyncConnection,
        operation: str,
        sql: str,
        params: Mapping[str, Any] | None = None,
        *,
        expanding: Sequence[str] = (),
    ) -> RowMapping | None:
        return await self.executor.fetch_one(conn, sql, params, operation=f"{self.table}.{operation}", expanding=expanding)

    async def scalar(
        self,
        conn: AsyncConnection,
        operation: str,
        sql: str,
        params: Mapping[str, Any] | None = None,
        *,
        expanding: Sequence[str] = (),
    ) -> Any:
        return await self.executor.scalar(conn, sql, params, operation=f"{self.table}.{operation}", expanding=expanding)

    async def write(
        self,
        conn: AsyncConnection,
        operation: str,
        sql: str,
        params: Mapping[str, Any] | None = None,
        *,
        expanding: Sequence[str] = (),
    ) -> int:
        return await self.executor.execute_write(conn, sql, params, operation=f"{self.table}.{operation}", expanding=expanding)

    async def insert_row(
        self,
        conn: AsyncConnection,
        values: Mapping[str, Any],
        *,
        table: str | None = None,
        operation: str = "insert",
    ) -> None:
        names = list(values)
        sql = (
            f"INSERT INTO {table or self.table} ({', '.join(names)}) "
            f"VALUES ({', '.join(':' + name for name in names)})"
        )
        await self.write(conn, operation, sql, values)

    async def update_row(
        self,
        conn: AsyncConnection,
        entity_id: uuid.UUID,
        values: Mapping[str, Any],
        *,
        table: str | None = None,
        operation: str = "update",
        extra_where: str = "",
        where_params: Mapping[str, Any] | None = None,
    ) -> int:
        if not values:
            return 0
        assignments = ", ".join(f"{name} = :{name}" for name in values)
        params = dict(values)
        params.update(where_params or {})
        params["_id"] = self.bind_id(entity_id)
        sql = f"UPDATE {table or self.table} SET {assignments} WHERE id = :_id"
        if extra_where:
            sql = f"{sql} AND {extra_where}"
        return await self.write(conn, operation, sql, params)

    async def delete_by_ids(self, conn: AsyncConnection, ids: Iterable[uuid.UUID], *, operation: str = "delete") -> int:
        keys = self.bind_ids(ids)
        if not keys:
            return 0
        return await self.write(conn, operation, f"DELETE FROM {self.table} WHERE id IN :ids", {"ids": keys}, expanding=("ids",))

    async def paged(
        self,
        conn: AsyncConnection,
        *,
        relation: str,
        columns: str,
        predicates: Predicates,
        order_by: str,
        page: PageRequest,
        operation: str = "paged",
    ) -> PageResult[RowMapping]:
        return await self.executor.execute(
            conn,
            relation=relation,
            columns=columns,
            predicates=predicates,
            order_by=order_by,
            page=page,
            operation=f"{self.table}.{operation}",
        )

    def build_predicates(self, spec: BaseModel | Mapping[str, Any] | None, *, now: datetime | None = None) -> Predicates:
        if self.predicates is None:
            raise TypeError(f"{type(self).__name__} has no filter schema")
        return self.predicates.build(spec, now=now)

    def order_by(self, sort) -> str:
        if self.sorter is None:
            raise TypeError(f"{type(self).__name__} has no sort map")
        return self.sorter.resolve_spec(sort)

    # single-row helpers

    async def _get_by_id(self, entity_id: uuid.UUID):
        key = self.cache_key("id", entity_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached
        async with self.connections.connect() as conn:
            row = await self.fetch_one(
                conn,
                "get_by_id",
                f"SELECT {self.columns()} FROM {self.table} {self.alias} WHERE {self.alias}.id = :id",
                {"id": self.bind_id(entity_id)},
            )
        if row is None:
            return None
        entity = self.mapper.map(row, self.shape)
        await self.cache.set(key, entity)
        return entity

    async def _invalidate(self, entity_id: uuid.UUID) -> None:
        await self.cache.remove(self.cache_key("id", entity_id))
