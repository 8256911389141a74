from __future__ import annotations

import csv
import io
import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Iterable

from snippet_data.core.config import settings
from snippet_data.core.errors import EntityNotFound
from snippet_data.db.dialect import SqlDialect
from snippet_data.models.enums import ReportReason, ReportStatus
from snippet_data.repositories.base import BaseRepository
from snippet_data.repositories.joins import COMMENT_SHAPE, USER_SHAPE
from snippet_data.schemas.comment_reports import (
    CommentReport,
    CommentReportCreate,
    CommentReportFilter,
    DailyReportStat,
    ReportedComment,
    ReportExportRow,
    ReportSort,
    ReportSortSpec,
    ReportStats,
)
from snippet_data.schemas.common import PageRequest, PageResult
from snippet_data.services.predicates import FilterSchema, NamedCondition, between, eq, named, search
from snippet_data.services.row_mapper import EntityShape
from snippet_data.services.sorting import SortResolver
from snippet_data.services.type_normalizer import ValueKind

logger = logging.getLogger(__name__)

K = ValueKind

REPORT_KINDS = {
    "id": K.IDENTIFIER,
    "comment_id": K.IDENTIFIER,
    "user_id": K.IDENTIFIER,
    "reason": K.INT32,
    "description": K.TEXT,
    "status": K.INT32,
    "created_at": K.TIMESTAMP,
    "handled_at": K.TIMESTAMP,
    "handled_by": K.IDENTIFIER,
    "resolution": K.TEXT,
}

REPORT_SHAPE = EntityShape(CommentReport, REPORT_KINDS)
REPORTER_SHAPE = USER_SHAPE.aliased("u_")
HANDLER_SHAPE = USER_SHAPE.aliased("h_")
COMMENTED_SHAPE = COMMENT_SHAPE.aliased("c_")

REPORT_RELATION = (
    "comment_reports cr "
    "LEFT JOIN users u ON u.id = cr.user_id "
    "LEFT JOIN comments c ON c.id = cr.comment_id "
    "LEFT JOIN users h ON h.id = cr.handled_by"
)


class HighPriorityReport(NamedCondition):
    """Pending report whose comment has enough open reports, or that has waited too long."""

    name = "high_priority"

    def __init__(self, alias: str = "cr", *, min_reports: int | None = None, min_age_hours: float | None = None):
        self.alias = alias
        self.min_reports = int(min_reports if min_reports is not None else settings.REPORT_PRIORITY_MIN_REPORTS)
        self.min_age_hours = float(min_age_hours if min_age_hours is not None else settings.REPORT_PRIORITY_MIN_AGE_HOURS)

    def sql(self, dialect: SqlDialect) -> str:
        a = self.alias
        open_reports = (
            "(SELECT COUNT(*) FROM comment_reports hp "
            f"WHERE hp.comment_id = {a}.comment_id AND hp.status <> :hp_rejected)"
        )
        age_hours = dialect.hours_between(f"{a}.created_at", ":hp_now")
        return (
            f"{a}.status = :hp_pending AND "
            f"({open_reports} >= :hp_min_reports OR {age_hours} >= :hp_min_age_hours)"
        )

    def params(self, now: datetime) -> dict[str, tuple[Any, ValueKind]]:
        return {
            "hp_pending": (ReportStatus.PENDING, K.INT32),
            "hp_rejected": (ReportStatus.REJECTED, K.INT32),
            "hp_min_reports": (self.min_reports, K.INT32),
            "hp_min_age_hours": (self.min_age_hours, K.FLOAT),
            "hp_now": (now, K.TIMESTAMP),
        }


HIGH_PRIORITY_REPORT = HighPriorityReport()

REPORT_FILTERS = FilterSchema(
    [
        eq("status", "cr.status", K.INT32),
        eq("reason", "cr.reason", K.INT32),
        eq("comment_id", "cr.comment_id", K.IDENTIFIER),
        eq("user_id", "cr.user_id", K.IDENTIFIER),
        eq("handled_by", "cr.handled_by", K.IDENTIFIER),
        between("created_at", "cr.created_at", K.TIMESTAMP),
        search("search", "c.content", "u.username", "cr.description"),
        named("high_priority_only", HIGH_PRIORITY_REPORT),
    ]
)

REPORT_SORTS = SortResolver(
    {
        ReportSort.CREATED_AT_DESC: "cr.created_at DESC",
        ReportSort.CREATED_AT_ASC: "cr.created_at ASC",
        ReportSort.REASON: ("cr.reason ASC", "cr.created_at DESC"),
        ReportSort.STATUS: ("cr.status ASC", "cr.created_at DESC"),
    },
    default="cr.created_at DESC",
    tiebreak=("cr.created_at", "cr.id"),
)

EXPORT_HEADER = (
    "id",
    "comment_id",
    "comment_content",
    "user_id",
    "reporter_name",
    "reason",
    "description",
    "status",
    "created_at",
    "handled_at",
    "handler_name",
    "resolution",
    "resolution_time_hours",
)


class CommentReportRepository(BaseRepository):
    entity_name = "comment_report"
    table = "comment_reports"
    alias = "cr"
    shape = REPORT_SHAPE
    filter_schema = REPORT_FILTERS
    filter_model = CommentReportFilter
    sorter = REPORT_SORTS

    def _joined_columns(self) -> str:
        return ", ".join(
            [
                REPORT_SHAPE.select("cr"),
                REPORTER_SHAPE.select("u"),
                COMMENTED_SHAPE.select("c"),
                HANDLER_SHAPE.select("h"),
            ]
        )

    def _map_joined(self, rows) -> list[CommentReport]:
        reports = [
            self.mapper.map(
                row,
                REPORT_SHAPE,
                user=self.mapper.map_optional(row, REPORTER_SHAPE),
                comment=self.mapper.map_optional(row, COMMENTED_SHAPE),
                handler=self.mapper.map_optional(row, HANDLER_SHAPE),
            )
            for row in rows
        ]
        return self.mapper.fold_joined(reports, joined=("user", "comment", "handler"))

    async def _select_joined(self, operation: str, where: str, params: dict, *, order_by: str | None = None, expanding=()) -> list[CommentReport]:
        sql = f"SELECT {self._joined_columns()} FROM {REPORT_RELATION} WHERE {where} ORDER BY {order_by or REPORT_SORTS.resolve()}"
        async with self.connections.connect() as conn:
            rows = await self.fetch_all(conn, operation, sql, params, expanding=expanding)
        return self._map_joined(rows)

    # CRUD

    async def get_by_id(self, report_id: uuid.UUID) -> CommentReport | None:
        key = self.cache_key("id", report_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached
        reports = await self._select_joined("get_by_id", "cr.id = :id", {"id": self.bind_id(report_id)})
        report = reports[0] if reports else None
        if report is not None:
            await self.cache.set(key, report)
        return report

    async def create(self, payload: CommentReportCreate) -> CommentReport:
        report = CommentReport(
            id=uuid.uuid4(),
            comment_id=payload.comment_id,
            user_id=payload.user_id,
            reason=payload.reason,
            description=payload.description,
            status=ReportStatus.PENDING,
            created_at=self.now(),
        )
        async with self.connections.transaction() as conn:
            await self.insert_row(conn, self.entity_values(report), operation="create")
        await self.cache.remove(self.cache_key("comment", report.comment_id))
        logger.info("comment_report_created id=%s comment_id=%s reason=%s", report.id, report.comment_id, report.reason.name)
        return report

    async def update(self, report: CommentReport) -> CommentReport:
        values = self.entity_values(report)
        values.pop("id")
        values.pop("created_at")
        async with self.connections.transaction() as conn:
            affected = await self.update_row(conn, report.id, values)
        if affected == 0:
            raise EntityNotFound(self.entity_name, report.id)
        await self._invalidate(report.id)
        return report

    async def delete(self, report_id: uuid.UUID) -> bool:
        async with self.connections.transaction() as conn:
            affected = await self.delete_by_ids(conn, [report_id])
        await self._invalidate(report_id)
        return affected > 0

    # queries

    async def get_paged(
        self,
        spec: CommentReportFilter | None = None,
        sort: ReportSortSpec | None = None,
        page: PageRequest | None = None,
    ) -> PageResult[CommentReport]:
        page = page or PageRequest()
        predicates = self.build_predicates(spec)
        async with self.connections.connect() as conn:
            raw = await self.paged(
                conn,
                relation=REPORT_RELATION,
                columns=self._joined_columns(),
                predicates=predicates,
                order_by=self.order_by(sort),
                page=page,
            )
        return raw.with_items(self._map_joined(raw.items))

    async def get_by_comment_id(self, comment_id: uuid.UUID) -> list[CommentReport]:
        return await self._select_joined("get_by_comment_id", "cr.comment_id = :comment_id", {"comment_id": self.bind_id(comment_id)})

    async def get_by_user_id(self, user_id: uuid.UUID) -> list[CommentReport]:
        return await self._select_joined("get_by_user_id", "cr.user_id = :user_id", {"user_id": self.bind_id(user_id)})

    async def get_by_status(self, status: ReportStatus) -> list[CommentReport]:
        return await self._select_joined(
            "get_by_status",
            "cr.status = :status",
            {"status": self.bind(status, K.INT32)},
            order_by=REPORT_SORTS.resolve(ReportSort.CREATED_AT_ASC),
        )

    async def get_by_user_and_comment(self, user_id: uuid.UUID, comment_id: uuid.UUID) -> CommentReport | None:
        reports = await self._select_joined(
            "get_by_user_and_comment",
            "cr.user_id = :user_id AND cr.comment_id = :comment_id",
            {"user_id": self.bind_id(user_id), "comment_id": self.bind_id(comment_id)},
        )
        return reports[0] if reports else None

    async def has_user_reported_comment(self, comment_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        async with self.connections.connect() as conn:
            count = await self.scalar(
                conn,
                "has_user_reported_comment",
                "SELECT COUNT(*) FROM comment_reports WHERE comment_id = :comment_id AND user_id = :user_id",
                {"comment_id": self.bind_id(comment_id), "user_id": self.bind_id(user_id)},
            )
        return self.read_int(count) > 0

    async def get_report_count_by_comment_id(self, comment_id: uuid.UUID) -> int:
        async with self.connections.connect() as conn:
            count = await self.scalar(
                conn,
                "get_report_count_by_comment_id",
                "SELECT COUNT(*) FROM comment_reports WHERE comment_id = :comment_id",
                {"comment_id": self.bind_id(comment_id)},
            )
        return self.read_int(count)

    async def get_report_counts_by_comment_ids(self, comment_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, int]:
        keys = list(dict.fromkeys(comment_ids))
        if not keys:
            return {}
        async with self.connections.connect() as conn:
            rows = await self.fetch_all(
                conn,
                "get_report_counts_by_comment_ids",
                "SELECT comment_id, COUNT(*) AS report_count FROM comment_reports "
                "WHERE comment_id IN :comment_ids GROUP BY comment_id",
                {"comment_ids": self.bind_ids(keys)},
                expanding=("comment_ids",),
            )
        counts = {key: 0 for key in keys}
        for row in rows:
            counts[self.read(row["comment_id"], K.IDENTIFIER, field="comment_id")] = self.read_int(row["report_count"])
        return counts

    async def get_report_count_by_reason(self) -> dict[ReportReason, int]:
        async with self.connections.connect() as conn:
            rows = await self.fetch_all(
                conn,
                "get_report_count_by_reason",
                "SELECT reason, COUNT(*) AS report_count FROM comment_reports GROUP BY reason ORDER BY reason",
            )
        return {ReportReason(self.read_int(row["reason"])): self.read_int(row["report_count"]) for row in rows}

    async def get_top_report_reasons(self, count: int = 5) -> list[tuple[ReportReason, int]]:
        async with self.connections.connect() as conn:
            rows = await self.fetch_all(
                conn,
                "get_top_report_reasons",
                "SELECT reason, COUNT(*) AS report_count FROM comment_reports "
                "GROUP BY reason ORDER BY report_count DESC, reason ASC LIMIT :limit",
                {"limit": int(count)},
            )
        return [(ReportReason(self.read_int(row["reason"])), self.read_int(row["report_count"])) for row in rows]

    async def get_high_priority_reports(self, *, now: datetime | None = None) -> list[CommentReport]:
        condition = HIGH_PRIORITY_REPORT.sql(self.dialect)
        params = {key: self.bind(value, kind) for key, (value, kind) in HIGH_PRIORITY_REPORT.params(now or self.now()).items()}
        return await self._select_joined(
            "get_high_priority_reports",
            condition,
            params,
            order_by=REPORT_SORTS.resolve(ReportSort.CREATED_AT_ASC),
        )

    async def get_most_reported_comments(self, count: int = 10) -> list[ReportedComment]:
        async with self.connections.connect() as conn:
            rows = await self.fetch_all(
                conn,
                "get_most_reported_comments",
                "SELECT comment_id, COUNT(*) AS report_count FROM comment_reports "
                "GROUP BY comment_id ORDER BY report_count DESC, comment_id ASC LIMIT :limit",
                {"limit": int(count)},
            )
        return [
            ReportedComment(
                comment_id=self.read(row["comment_id"], K.IDENTIFIER, field="comment_id"),
                report_count=self.read_int(row["report_count"]),
            )
            for row in rows
        ]

    # statistics

    async def get_report_stats(self, *, now: datetime | None = None) -> ReportStats:
        now = now or self.now()
        resolution_hours = self.dialect.hours_between("created_at", "handled_at")
        sql = (
            "SELECT COUNT(*) AS total_reports, "
            "SUM(CASE WHEN status = :pending THEN 1 ELSE 0 END) AS pending_reports, "
            "SUM(CASE WHEN status = :resolved THEN 1 ELSE 0 END) AS resolved_reports, "
            "SUM(CASE WHEN status = :rejected THEN 1 ELSE 0 END) AS rejected_reports, "
            "SUM(CASE WHEN status = :investigating THEN 1 ELSE 0 END) AS under_investigation_reports, "
            f"AVG(CASE WHEN handled_at IS NOT NULL AND status <> :pending THEN {resolution_hours} ELSE NULL END) "
            "AS average_resolution_hours, "
            "SUM(CASE WHEN created_at >= :week_start THEN 1 ELSE 0 END) AS reports_this_week, "
            "SUM(CASE WHEN created_at >= :month_start THEN 1 ELSE 0 END) AS reports_this_month, "
            "MAX(created_at) AS last_report_time "
            "FROM comment_reports"
        )
        params = {
            "pending": self.bind(ReportStatus.PENDING, K.INT32),
            "resolved": self.bind(ReportStatus.RESOLVED, K.INT32),
            "rejected": self.bind(ReportStatus.REJECTED, K.INT32),
            "investigating": self.bind(ReportStatus.UNDER_INVESTIGATION, K.INT32),
            "week_start": self.bind_time(now - timedelta(days=7)),
            "month_start": self.bind_time(now - timedelta(days=30)),
        }
        async with self.connections.connect() as conn:
            row = await self.fetch_one(conn, "get_report_stats", sql, params)
        reason_counts = await self.get_report_count_by_reason()
        return ReportStats(
            total_reports=self.read_int(row["total_reports"]),
            pending_reports=self.read_int(row["pending_reports"]),
            resolved_reports=self.read_int(row["resolved_reports"]),
            rejected_reports=self.read_int(row["rejected_reports"]),
            under_investigation_reports=self.read_int(row["under_investigation_reports"]),
            reports_this_week=self.read_int(row["reports_this_week"]),
            reports_this_month=self.read_int(row["reports_this_month"]),
            last_report_time=self.read(row["last_report_time"], K.TIMESTAMP, field="last_report_time"),
            average_resolution_hours=self.read_float(row["average_resolution_hours"]),
            reason_counts=reason_counts,
        )

    async def get_daily_report_stats(self, days: int = 30, *, now: datetime | None = None) -> list[DailyReportStat]:
        now = now or self.now()
        day = self.dialect.date_of("created_at")
        sql = (
            f"SELECT {day} AS day, COUNT(*) AS total, "
            "SUM(CASE WHEN status = :pending THEN 1 ELSE 0 END) AS pending, "
            "SUM(CASE WHEN status = :resolved THEN 1 ELSE 0 END) AS resolved, "
            "SUM(CASE WHEN status = :rejected THEN 1 ELSE 0 END) AS rejected "
            "FROM comment_reports WHERE created_at >= :since "
            f"GROUP BY {day} ORDER BY {day} DESC"
        )
        params = {
            "pending": self.bind(ReportStatus.PENDING, K.INT32),
            "resolved": self.bind(ReportStatus.RESOLVED, K.INT32),
            "rejected": self.bind(ReportStatus.REJECTED, K.INT32),
            "since": self.bind_time(now - timedelta(days=int(days))),
        }
        async with self.connections.connect() as conn:
            rows = await self.fetch_all(conn, "get_daily_report_stats", sql, params)
        return [
            DailyReportStat(
                day=self.read(row["day"], K.DATE, field="day"),
                total=self.read_int(row["total"]),
                pending=self.read_int(row["pending"]),
                resolved=self.read_int(row["resolved"]),
                rejected=self.read_int(row["rejected"]),
            )
            for row in rows
        ]

    async def get_average_resolution_hours(self) -> float:
        hours = self.dialect.hours_between("created_at", "handled_at")
        async with self.connections.connect() as conn:
            value = await self.scalar(
                conn,
                "get_average_resolution_hours",
                f"SELECT AVG({hours}) FROM comment_reports WHERE handled_at IS NOT NULL AND status <> :pending",
                {"pending": self.bind(ReportStatus.PENDING, K.INT32)},
            )
        return self.read_float(value) or 0.0

    # state transitions

    async def _handle(self, report_id: uuid.UUID, operation: str, values: dict[str, Any]) -> CommentReport:
        async with self.connections.transaction() as conn:
            affected = await self.update_row(conn, report_id, values, operation=operation)
        if affected == 0:
            raise EntityNotFound(self.entity_name, report_id)
        await self._invalidate(report_id)
        logger.info("comment_report_%s id=%s", operation, report_id)
        return await self.get_by_id(report_id)

    async def mark_as_resolved(self, report_id: uuid.UUID, handled_by: uuid.UUID, resolution: str | None = None) -> CommentReport:
        return await self._handle(
            report_id,
            "resolved",
            {
                "status": self.bind(ReportStatus.RESOLVED, K.INT32),
                "handled_by": self.bind_id(handled_by),
                "handled_at": self.bind_time(self.now()),
                "resolution": resolution,
            },
        )

    async def mark_as_rejected(self, report_id: uuid.UUID, handled_by: uuid.UUID, resolution: str | None = None) -> CommentReport:
        return await self._handle(
            report_id,
            "rejected",
            {
                "status": self.bind(ReportStatus.REJECTED, K.INT32),
                "handled_by": self.bind_id(handled_by),
                "handled_at": self.bind_time(self.now()),
                "resolution": resolution,
            },
        )

    async def assign_to_handler(self, report_id: uuid.UUID, handler_id: uuid.UUID) -> CommentReport:
        return await self._handle(
            report_id,
            "assigned",
            {
                "status": self.bind(ReportStatus.UNDER_INVESTIGATION, K.INT32),
                "handled_by": self.bind_id(handler_id),
            },
        )

    async def bulk_update_status(
        self,
        report_ids: Iterable[uuid.UUID],
        status: ReportStatus,
        handled_by: uuid.UUID | None = None,
    ) -> int:
        ids = self.bind_ids(dict.fromkeys(report_ids))
        if not ids:
            return 0
        sql = (
            "UPDATE comment_reports SET status = :status, handled_at = :handled_at, "
            "handled_by = COALESCE(:handled_by, handled_by) WHERE id IN :ids"
        )
        params = {
            "status": self.bind(status, K.INT32),
            "handled_at": self.bind_time(self.now()) if status is not ReportStatus.PENDING else None,
            "handled_by": self.bind_id(handled_by),
            "ids": ids,
        }
        async with self.connections.transaction() as conn:
            affected = await self.write(conn, "bulk_update_status", sql, params, expanding=("ids",))
        logger.info("comment_report_bulk_status status=%s affected=%s", status.name, affected)
        return affected

    async def bulk_delete_old_reports(self, older_than: datetime) -> int:
        async with self.connections.transaction() as conn:
            affected = await self.write(
                conn,
                "bulk_delete_old_reports",
                "DELETE FROM comment_reports WHERE created_at < :older_than AND status = :resolved",
                {"older_than": self.bind_time(older_than), "resolved": self.bind(ReportStatus.RESOLVED, K.INT32)},
            )
        logger.info("comment_report_cleanup older_than=%s deleted=%s", older_than.isoformat(), affected)
        return affected

    # export

    async def get_reports_for_export(
        self,
        spec: CommentReportFilter | None = None,
        sort: ReportSortSpec | None = None,
        *,
        now: datetime | None = None,
    ) -> list[ReportExportRow]:
        now = now or self.now()
        predicates = self.build_predicates(spec, now=now)
        elapsed = self.dialect.hours_between("cr.created_at", "COALESCE(cr.handled_at, :_export_now)")
        sql = (
            "SELECT cr.id, cr.comment_id, c.content AS comment_content, cr.user_id, u.username AS reporter_name, "
            "cr.reason, cr.description, cr.status, cr.created_at, cr.handled_at, h.username AS handler_name, "
            f"cr.resolution, {elapsed} AS resolution_time_hours "
            f"FROM {REPORT_RELATION} {predicates.where} ORDER BY {self.order_by(sort)}"
        )
        params = dict(predicates.params)
        params["_export_now"] = self.bind_time(now)
        async with self.connections.connect() as conn:
            rows = await self.fetch_all(conn, "get_reports_for_export", sql, params, expanding=tuple(predicates.expanding))
        kinds = {
            "id": K.IDENTIFIER,
            "comment_id": K.IDENTIFIER,
            "comment_content": K.TEXT,
            "user_id": K.IDENTIFIER,
            "reporter_name": K.TEXT,
            "reason": K.INT32,
            "description": K.TEXT,
            "status": K.INT32,
            "created_at": K.TIMESTAMP,
            "handled_at": K.TIMESTAMP,
            "handler_name": K.TEXT,
            "resolution": K.TEXT,
            "resolution_time_hours": K.FLOAT,
        }
        return [ReportExportRow(**self.normalizer.normalize_row(row, kinds)) for row in rows]

    async def generate_report_csv(self, spec: CommentReportFilter | None = None, sort: ReportSortSpec | None = None) -> bytes:
        rows = await self.get_reports_for_export(spec, sort)
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(EXPORT_HEADER)
        for row in rows:
            writer.writerow(
                [
                    row.id,
                    row.comment_id,
                    row.comment_content or "",
                    row.user_id,
                    row.reporter_name or "",
                    row.reason.name,
                    row.description or "",
                    row.status.name,
                    row.created_at.strftime("%Y-%m-%d %H:%M:%S"),
                    row.handled_at.strftime("%Y-%m-%d %H:%M:%S") if row.handled_at else "",
                    row.handler_name or "",
                    row.resolution or "",
                    f"{row.resolution_time_hours:.1f}" if row.resolution_time_hours is not None else "",
                ]
            )
        return buffer.getvalue().encode("utf-8")

    async def generate_report_json(self, spec: CommentReportFilter | None = None, sort: ReportSortSpec | None = None) -> bytes:
        rows = await self.get_reports_for_export(spec, sort)
        payload = [row.model_dump(mode="json") for row in rows]
        return json.dumps(payload, ensure_ascii=False, indent=2).encode("utf-8")

    # cache pass-throughs

    async def get_reports_from_cache(self, comment_id: uuid.UUID) -> list[CommentReport] | None:
        return await self.cache.get(self.cache_key("comment", comment_id))

    async def set_reports_cache(self, comment_id: uuid.UUID, reports: list[CommentReport], ttl_seconds: int | None = None) -> None:
        await self.cache.set(self.cache_key("comment", comment_id), reports, ttl_seconds=ttl_seconds)

    async def remove_reports_cache(self, comment_id: uuid.UUID) -> None:
        await self.cache.remove(self.cache_key("comment", comment_id))
