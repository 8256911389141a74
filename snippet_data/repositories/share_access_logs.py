from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Sequence

from snippet_data.core.config import settings
from snippet_data.models.enums import AccessSource, DeviceType
from snippet_data.repositories.base import BaseRepository
from snippet_data.schemas.common import PageRequest, PageResult, Range
from snippet_data.schemas.share_access_logs import (
    AccessLogSort,
    AccessLogSortSpec,
    AccessStats,
    BreakdownDimension,
    BreakdownEntry,
    DailyAccessStat,
    ShareAccessLog,
    ShareAccessLogCreate,
    ShareAccessLogFilter,
)
from snippet_data.services.predicates import FilterSchema, between, eq, search
from snippet_data.services.row_mapper import EntityShape
from snippet_data.services.sorting import SortResolver
from snippet_data.services.type_normalizer import ValueKind

logger = logging.getLogger(__name__)

K = ValueKind

ACCESS_LOG_KINDS = {
    "id": K.IDENTIFIER,
    "share_token_id": K.IDENTIFIER,
    "code_snippet_id": K.IDENTIFIER,
    "ip_address": K.TEXT,
    "user_agent": K.TEXT,
    "source": K.INT32,
    "country": K.TEXT,
    "city": K.TEXT,
    "browser": K.TEXT,
    "operating_system": K.TEXT,
    "device_type": K.INT32,
    "accessed_at": K.TIMESTAMP,
    "is_success": K.BOOLEAN,
    "failure_reason": K.TEXT,
    "duration": K.INT32,
    "session_id": K.TEXT,
    "referer": K.TEXT,
    "accept_language": K.TEXT,
}

ACCESS_LOG_SHAPE = EntityShape(ShareAccessLog, ACCESS_LOG_KINDS)

ACCESS_LOG_FILTERS = FilterSchema(
    [
        eq("share_token_id", "l.share_token_id", K.IDENTIFIER),
        eq("code_snippet_id", "l.code_snippet_id", K.IDENTIFIER),
        eq("ip_address", "l.ip_address", K.TEXT),
        eq("is_success", "l.is_success", K.BOOLEAN),
        eq("source", "l.source", K.INT32),
        eq("device_type", "l.device_type", K.INT32),
        eq("country", "l.country", K.TEXT),
        eq("browser", "l.browser", K.TEXT),
        between("accessed_at", "l.accessed_at", K.TIMESTAMP),
        search("search", "l.ip_address", "l.user_agent", "l.referer"),
    ]
)

ACCESS_LOG_SORTS = SortResolver(
    {
        AccessLogSort.ACCESSED_AT_DESC: "l.accessed_at DESC",
        AccessLogSort.ACCESSED_AT_ASC: "l.accessed_at ASC",
        AccessLogSort.DURATION_DESC: ("l.duration DESC", "l.accessed_at DESC"),
        AccessLogSort.IP_ADDRESS: ("l.ip_address ASC", "l.accessed_at DESC"),
    },
    default="l.accessed_at DESC",
    tiebreak=("l.accessed_at", "l.id"),
)

# dimension -> (column, decoder for the grouped value)
BREAKDOWN_COLUMNS = {
    BreakdownDimension.SOURCE: ("source", AccessSource),
    BreakdownDimension.DEVICE_TYPE: ("device_type", DeviceType),
    BreakdownDimension.COUNTRY: ("country", None),
    BreakdownDimension.BROWSER: ("browser", None),
    BreakdownDimension.OPERATING_SYSTEM: ("operating_system", None),
}


class ShareAccessLogRepository(BaseRepository):
    entity_name = "share_access_log"
    table = "share_access_logs"
    alias = "l"
    shape = ACCESS_LOG_SHAPE
    filter_schema = ACCESS_LOG_FILTERS
    filter_model = ShareAccessLogFilter
    sorter = ACCESS_LOG_SORTS

    def _new(self, payload: ShareAccessLogCreate) -> ShareAccessLog:
        values = payload.model_dump()
        values["accessed_at"] = payload.accessed_at or self.now()
        return ShareAccessLog(id=uuid.uuid4(), **values)

    async def get_by_id(self, log_id: uuid.UUID) -> ShareAccessLog | None:
        return await self._get_by_id(log_id)

    async def create(self, payload: ShareAccessLogCreate) -> ShareAccessLog:
        log = self._new(payload)
        async with self.connections.transaction() as conn:
            await self.insert_row(conn, self.entity_values(log), operation="create")
        return log

    async def bulk_insert(self, payloads: Sequence[ShareAccessLogCreate]) -> int:
        logs = [self._new(payload) for payload in payloads]
        if not logs:
            return 0
        async with self.connections.transaction() as conn:
            for log in logs:
                await self.insert_row(conn, self.entity_values(log), operation="bulk_insert")
        logger.info("share_access_log_bulk_insert count=%s", len(logs))
        return len(logs)

    async def delete(self, log_id: uuid.UUID) -> bool:
        async with self.connections.transaction() as conn:
            affected = await self.delete_by_ids(conn, [log_id])
        await self._invalidate(log_id)
        return affected > 0

    async def get_paged(
        self,
        spec: ShareAccessLogFilter | None = None,
        sort: AccessLogSortSpec | None = None,
        page: PageRequest | None = None,
    ) -> PageResult[ShareAccessLog]:
        predicates = self.build_predicates(spec)
        async with self.connections.connect() as conn:
            raw = await self.paged(
                conn,
                relation="share_access_logs l",
                columns=self.columns(),
                predicates=predicates,
                order_by=self.order_by(sort),
                page=page or PageRequest(),
            )
        return raw.with_items(self.mapper.map_many(raw.items, ACCESS_LOG_SHAPE))

    # statistics

    async def get_access_stats(
        self,
        share_token_id: uuid.UUID,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> AccessStats:
        """Totals for one share token; ``since``/``until`` bound ``accessed_at`` inclusively."""
        window = Range[datetime](gte=since, lte=until) if since is not None or until is not None else None
        predicates = self.build_predicates(ShareAccessLogFilter(share_token_id=share_token_id, accessed_at=window))
        async with self.connections.connect() as conn:
            rows = await self.executor.aggregate(
                conn,
                relation="share_access_logs l",
                select=(
                    "COUNT(*) AS total_access_count, "
                    "SUM(CASE WHEN l.is_success THEN 1 ELSE 0 END) AS success_access_count, "
                    "SUM(CASE WHEN l.is_success THEN 0 ELSE 1 END) AS failed_access_count, "
                    "COUNT(DISTINCT l.ip_address) AS unique_access_count, "
                    "AVG(l.duration) AS average_duration, "
                    "MIN(l.accessed_at) AS first_access_at, MAX(l.accessed_at) AS last_access_at"
                ),
                predicates=predicates,
                operation=f"{self.table}.access_stats",
            )
        row = rows[0]
        return AccessStats(
            share_token_id=share_token_id,
            total_access_count=self.read_int(row["total_access_count"]),
            success_access_count=self.read_int(row["success_access_count"]),
            failed_access_count=self.read_int(row["failed_access_count"]),
            unique_access_count=self.read_int(row["unique_access_count"]),
            average_duration=self.read_float(row["average_duration"]) or 0.0,
            first_access_at=self.read(row["first_access_at"], K.TIMESTAMP, field="first_access_at"),
            last_access_at=self.read(row["last_access_at"], K.TIMESTAMP, field="last_access_at"),
        )

    async def get_daily_access_stats(
        self,
        share_token_id: uuid.UUID,
        days: int = 30,
        *,
        now: datetime | None = None,
    ) -> list[DailyAccessStat]:
        now = now or self.now()
        day = self.dialect.date_of("accessed_at")
        sql = (
            f"SELECT {day} AS day, COUNT(*) AS access_count, "
            "SUM(CASE WHEN is_success THEN 1 ELSE 0 END) AS success_count, "
            "COUNT(DISTINCT ip_address) AS unique_visitors, AVG(duration) AS average_duration "
            "FROM share_access_logs WHERE share_token_id = :share_token_id AND accessed_at >= :since "
            f"GROUP BY {day} ORDER BY {day} DESC"
        )
        params = {
            "share_token_id": self.bind_id(share_token_id),
            "since": self.bind_time(now - timedelta(days=int(days))),
        }
        async with self.connections.connect() as conn:
            rows = await self.fetch_all(conn, "daily_access_stats", sql, params)
        return [
            DailyAccessStat(
                day=self.read(row["day"], K.DATE, field="day"),
                access_count=self.read_int(row["access_count"]),
                success_count=self.read_int(row["success_count"]),
                unique_visitors=self.read_int(row["unique_visitors"]),
                average_duration=self.read_float(row["average_duration"]) or 0.0,
            )
            for row in rows
        ]

    async def get_breakdown(self, share_token_id: uuid.UUID, dimension: BreakdownDimension | str) -> list[BreakdownEntry]:
        """Access counts grouped by one of the closed set of dimensions, largest first."""
        try:
            column, decode = BREAKDOWN_COLUMNS[BreakdownDimension(dimension)]
        except ValueError:
            allowed = ", ".join(item.value for item in BreakdownDimension)
            raise ValueError(f'Unknown breakdown dimension "{dimension}"; allowed: {allowed}') from None
        sql = (
            f"SELECT {column} AS value, COUNT(*) AS total FROM share_access_logs "
            f"WHERE share_token_id = :share_token_id GROUP BY {column} ORDER BY COUNT(*) DESC, {column} ASC"
        )
        async with self.connections.connect() as conn:
            rows = await self.fetch_all(conn, f"breakdown_{column}", sql, {"share_token_id": self.bind_id(share_token_id)})
        entries = []
        for row in rows:
            if decode is not None:
                value = decode(self.read(row["value"], K.INT32, field=column))
            else:
                value = self.read(row["value"], K.TEXT, field=column)
            entries.append(BreakdownEntry(value=value, count=self.read_int(row["total"])))
        return entries

    async def _token_scalar(self, operation: str, select: str, share_token_id: uuid.UUID, extra_where: str = "", **params):
        sql = f"SELECT {select} FROM share_access_logs WHERE share_token_id = :share_token_id"
        if extra_where:
            sql = f"{sql} AND {extra_where}"
        async with self.connections.connect() as conn:
            return await self.scalar(conn, operation, sql, {"share_token_id": self.bind_id(share_token_id), **params})

    async def get_access_count(self, share_token_id: uuid.UUID) -> int:
        return self.read_int(await self._token_scalar("access_count", "COUNT(*)", share_token_id))

    async def get_unique_access_count(self, share_token_id: uuid.UUID) -> int:
        return self.read_int(await self._token_scalar("unique_access_count", "COUNT(DISTINCT ip_address)", share_token_id))

    async def get_last_access_time(self, share_token_id: uuid.UUID) -> datetime | None:
        raw = await self._token_scalar("last_access_time", "MAX(accessed_at)", share_token_id)
        return self.read(raw, K.TIMESTAMP, field="accessed_at")

    async def has_recent_access(self, share_token_id: uuid.UUID, window: timedelta, *, now: datetime | None = None) -> bool:
        cutoff = (now or self.now()) - window
        count = await self._token_scalar(
            "has_recent_access",
            "COUNT(*)",
            share_token_id,
            "accessed_at >= :cutoff",
            cutoff=self.bind_time(cutoff),
        )
        return self.read_int(count) > 0

    # retention

    async def _purge(self, operation: str, retention_days: int | None, extra_where: str = "", now: datetime | None = None, **params) -> int:
        days = settings.SHARE_LOG_RETENTION_DAYS if retention_days is None else int(retention_days)
        cutoff = (now or self.now()) - timedelta(days=days)
        sql = "DELETE FROM share_access_logs WHERE accessed_at < :cutoff"
        if extra_where:
            sql = f"{sql} AND {extra_where}"
        async with self.connections.transaction() as conn:
            affected = await self.write(conn, operation, sql, {"cutoff": self.bind_time(cutoff), **params})
        if affected:
            logger.info("share_access_log_%s affected=%s retention_days=%s", operation, affected, days)
        return affected

    async def cleanup_old_logs(self, retention_days: int | None = None, *, now: datetime | None = None) -> int:
        return await self._purge("cleanup_old", retention_days, now=now)

    async def cleanup_failed_access_logs(self, retention_days: int | None = None, *, now: datetime | None = None) -> int:
        return await self._purge(
            "cleanup_failed", retention_days, "is_success = :failed", now=now, failed=self.bind_bool(False)
        )
