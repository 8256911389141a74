from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from snippet_data.core.errors import EntityNotFound
from snippet_data.models.enums import NotificationPriority, NotificationStatus, NotificationType
from snippet_data.repositories.base import BaseRepository
from snippet_data.schemas.common import PageRequest, PageResult
from snippet_data.schemas.notifications import (
    Notification,
    NotificationCreate,
    NotificationFilter,
    NotificationSort,
    NotificationSortSpec,
    NotificationStats,
)
from snippet_data.services.predicates import FilterSchema, between, eq, flag, one_of, search
from snippet_data.services.row_mapper import EntityShape
from snippet_data.services.sorting import SortResolver
from snippet_data.services.type_normalizer import ValueKind

logger = logging.getLogger(__name__)

K = ValueKind

NOTIFICATION_KINDS = {
    "id": K.IDENTIFIER,
    "user_id": K.IDENTIFIER,
    "type": K.INT32,
    "title": K.TEXT,
    "content": K.TEXT,
    "message": K.TEXT,
    "priority": K.INT32,
    "status": K.INT32,
    "related_entity_type": K.INT32,
    "related_entity_id": K.TEXT,
    "triggered_by_user_id": K.IDENTIFIER,
    "action": K.INT32,
    "channel": K.INT32,
    "is_read": K.BOOLEAN,
    "read_at": K.TIMESTAMP,
    "delivered_at": K.TIMESTAMP,
    "created_at": K.TIMESTAMP,
    "updated_at": K.TIMESTAMP,
    "expires_at": K.TIMESTAMP,
    "scheduled_to_send_at": K.TIMESTAMP,
    "send_count": K.INT32,
    "last_sent_at": K.TIMESTAMP,
    "error_message": K.TEXT,
    "data_json": K.TEXT,
    "tag": K.TEXT,
    "icon": K.TEXT,
    "color": K.TEXT,
    "requires_confirmation": K.BOOLEAN,
    "confirmed_at": K.TIMESTAMP,
    "is_archived": K.BOOLEAN,
    "archived_at": K.TIMESTAMP,
    "is_deleted": K.BOOLEAN,
    "deleted_at": K.TIMESTAMP,
}

NOTIFICATION_SHAPE = EntityShape(Notification, NOTIFICATION_KINDS)

NOTIFICATION_RELATION = (
    "notifications n "
    "LEFT JOIN users u ON u.id = n.user_id "
    "LEFT JOIN users tu ON tu.id = n.triggered_by_user_id"
)

NOTIFICATION_COLUMNS = f"{NOTIFICATION_SHAPE.select('n')}, u.username AS user_name, tu.username AS triggered_by_user_name"

NOTIFICATION_FILTERS = FilterSchema(
    [
        eq("user_id", "n.user_id", K.IDENTIFIER),
        eq("type", "n.type", K.INT32),
        one_of("types", "n.type", K.INT32),
        eq("priority", "n.priority", K.INT32),
        eq("status", "n.status", K.INT32),
        eq("channel", "n.channel", K.INT32),
        eq("is_read", "n.is_read", K.BOOLEAN),
        eq("is_archived", "n.is_archived", K.BOOLEAN),
        flag("is_deleted", "n.is_deleted", "NOT n.is_deleted"),
        eq("related_entity_type", "n.related_entity_type", K.INT32),
        eq("related_entity_id", "n.related_entity_id", K.TEXT),
        eq("tag", "n.tag", K.TEXT),
        between("created_at", "n.created_at", K.TIMESTAMP),
        search("search", "n.title", "n.content", "n.message"),
    ]
)

NOTIFICATION_SORTS = SortResolver(
    {
        NotificationSort.CREATED_AT_DESC: "n.created_at DESC",
        NotificationSort.CREATED_AT_ASC: "n.created_at ASC",
        NotificationSort.PRIORITY_DESC: ("n.priority DESC", "n.created_at DESC"),
        NotificationSort.PRIORITY_ASC: ("n.priority ASC", "n.created_at DESC"),
        NotificationSort.UNREAD_FIRST: ("n.is_read ASC", "n.created_at DESC"),
        NotificationSort.TYPE: ("n.type ASC", "n.created_at DESC"),
    },
    default="n.created_at DESC",
    tiebreak=("n.created_at", "n.id"),
)


class NotificationRepository(BaseRepository):
    entity_name = "notification"
    table = "notifications"
    alias = "n"
    shape = NOTIFICATION_SHAPE
    filter_schema = NOTIFICATION_FILTERS
    filter_model = NotificationFilter
    sorter = NOTIFICATION_SORTS

    def _map(self, row) -> Notification:
        return self.mapper.map(
            row,
            NOTIFICATION_SHAPE,
            user_name=self.read(row.get("user_name"), K.TEXT, field="user_name"),
            triggered_by_user_name=self.read(row.get("triggered_by_user_name"), K.TEXT, field="triggered_by_user_name"),
        )

    async def _select(self, operation: str, where: str, params: dict, *, order_by: str | None = None, limit: int | None = None, expanding=()) -> list[Notification]:
        sql = f"SELECT {NOTIFICATION_COLUMNS} FROM {NOTIFICATION_RELATION} WHERE {where} ORDER BY {order_by or NOTIFICATION_SORTS.resolve()}"
        if limit is not None:
            sql = f"{sql} LIMIT :_limit"
            params = {**params, "_limit": int(limit)}
        async with self.connections.connect() as conn:
            rows = await self.fetch_all(conn, operation, sql, params, expanding=expanding)
        return [self._map(row) for row in rows]

    def _new(self, payload: NotificationCreate) -> Notification:
        now = self.now()
        values = payload.model_dump(exclude={"data"})
        return Notification(
            id=uuid.uuid4(),
            status=NotificationStatus.PENDING,
            created_at=now,
            updated_at=now,
            data_json=json.dumps(payload.data, ensure_ascii=False) if payload.data is not None else None,
            **values,
        )

    # CRUD

    async def get_by_id(self, notification_id: uuid.UUID) -> Notification | None:
        key = self.cache_key("id", notification_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached
        found = await self._select("get_by_id", "n.id = :id", {"id": self.bind_id(notification_id)})
        notification = found[0] if found else None
        if notification is not None:
            await self.cache.set(key, notification)
        return notification

    async def create(self, payload: NotificationCreate) -> Notification:
        notification = self._new(payload)
        async with self.connections.transaction() as conn:
            await self.insert_row(conn, self.entity_values(notification), operation="create")
        logger.info("notification_created id=%s user_id=%s type=%s", notification.id, notification.user_id, notification.type.name)
        return notification

    async def bulk_create(self, payloads: Sequence[NotificationCreate]) -> list[Notification]:
        """Insert every notification in one transaction; any failure stores none."""
        notifications = [self._new(payload) for payload in payloads]
        if not notifications:
            return []
        async with self.connections.transaction() as conn:
            for notification in notifications:
                await self.insert_row(conn, self.entity_values(notification), operation="bulk_create")
        logger.info("notification_bulk_create count=%s", len(notifications))
        return notifications

    async def update(self, notification: Notification) -> Notification:
        updated = notification.model_copy(update={"updated_at": self.now()})
        values = self.entity_values(updated)
        values.pop("id")
        values.pop("created_at")
        async with self.connections.transaction() as conn:
            affected = await self.update_row(conn, notification.id, values)
        if affected == 0:
            raise EntityNotFound(self.entity_name, notification.id)
        await self._invalidate(notification.id)
        return updated

    async def delete(self, notification_id: uuid.UUID) -> bool:
        async with self.connections.transaction() as conn:
            affected = await self.delete_by_ids(conn, [notification_id])
        await self._invalidate(notification_id)
        return affected > 0

    async def _set(self, notification_id: uuid.UUID, operation: str, values: dict, *, extra_where: str = "", where_params: dict | None = None) -> bool:
        values = {**values, "updated_at": self.bind_time(self.now())}
        async with self.connections.transaction() as conn:
            affected = await self.update_row(
                conn, notification_id, values, operation=operation, extra_where=extra_where, where_params=where_params
            )
        await self._invalidate(notification_id)
        return affected > 0

    async def soft_delete(self, notification_id: uuid.UUID) -> bool:
        return await self._set(
            notification_id,
            "soft_delete",
            {"is_deleted": self.bind_bool(True), "deleted_at": self.bind_time(self.now())},
            extra_where="NOT is_deleted",
        )

    # paged reads

    async def get_paged(
        self,
        spec: NotificationFilter | None = None,
        sort: NotificationSortSpec | None = None,
        page: PageRequest | None = None,
    ) -> PageResult[Notification]:
        predicates = self.build_predicates(spec or NotificationFilter())
        async with self.connections.connect() as conn:
            raw = await self.paged(
                conn,
                relation=NOTIFICATION_RELATION,
                columns=NOTIFICATION_COLUMNS,
                predicates=predicates,
                order_by=self.order_by(sort),
                page=page or PageRequest(),
            )
        return raw.with_items([self._map(row) for row in raw.items])

    async def get_unread_count(self, user_id: uuid.UUID) -> int:
        async with self.connections.connect() as conn:
            count = await self.scalar(
                conn,
                "get_unread_count",
                "SELECT COUNT(*) FROM notifications WHERE user_id = :user_id AND NOT is_read AND NOT is_deleted",
                {"user_id": self.bind_id(user_id)},
            )
        return self.read_int(count)

    # state changes

    async def mark_as_read(self, notification_id: uuid.UUID) -> bool:
        return await self._set(
            notification_id,
            "mark_as_read",
            {
                "is_read": self.bind_bool(True),
                "read_at": self.bind_time(self.now()),
                "status": self.bind(NotificationStatus.READ, K.INT32),
            },
            extra_where="NOT is_read",
        )

    async def mark_as_unread(self, notification_id: uuid.UUID) -> bool:
        return await self._set(
            notification_id,
            "mark_as_unread",
            {
                "is_read": self.bind_bool(False),
                "read_at": None,
                "status": self.bind(NotificationStatus.UNREAD, K.INT32),
            },
            extra_where="is_read",
        )

    async def batch_mark_as_read(self, notification_ids: Iterable[uuid.UUID], user_id: uuid.UUID | None = None) -> int:
        keys = list(dict.fromkeys(notification_ids))
        if not keys:
            return 0
        now = self.bind_time(self.now())
        sql = (
            "UPDATE notifications SET is_read = :read, read_at = :now, updated_at = :now, status = :status "
            "WHERE id IN :ids AND NOT is_read AND NOT is_deleted"
        )
        params = {
            "read": self.bind_bool(True),
            "now": now,
            "status": self.bind(NotificationStatus.READ, K.INT32),
            "ids": self.bind_ids(keys),
        }
        if user_id is not None:
            sql = f"{sql} AND user_id = :user_id"
            params["user_id"] = self.bind_id(user_id)
        async with self.connections.transaction() as conn:
            affected = await self.write(conn, "batch_mark_as_read", sql, params, expanding=("ids",))
        for key in keys:
            await self._invalidate(key)
        return affected

    async def batch_delete(self, notification_ids: Iterable[uuid.UUID], user_id: uuid.UUID | None = None) -> int:
        keys = list(dict.fromkeys(notification_ids))
        if not keys:
            return 0
        now = self.bind_time(self.now())
        sql = (
            "UPDATE notifications SET is_deleted = :deleted, deleted_at = :now, updated_at = :now "
            "WHERE id IN :ids AND NOT is_deleted"
        )
        params = {"deleted": self.bind_bool(True), "now": now, "ids": self.bind_ids(keys)}
        if user_id is not None:
            sql = f"{sql} AND user_id = :user_id"
            params["user_id"] = self.bind_id(user_id)
        async with self.connections.transaction() as conn:
            affected = await self.write(conn, "batch_delete", sql, params, expanding=("ids",))
        for key in keys:
            await self._invalidate(key)
        logger.info("notification_batch_delete affected=%s", affected)
        return affected

    async def archive(self, notification_id: uuid.UUID) -> bool:
        return await self._set(
            notification_id,
            "archive",
            {
                "is_archived": self.bind_bool(True),
                "archived_at": self.bind_time(self.now()),
                "status": self.bind(NotificationStatus.ARCHIVED, K.INT32),
            },
            extra_where="NOT is_archived",
        )

    async def unarchive(self, notification_id: uuid.UUID) -> bool:
        notification = await self.get_by_id(notification_id)
        if notification is None or not notification.is_archived:
            return False
        status = NotificationStatus.READ if notification.is_read else NotificationStatus.UNREAD
        return await self._set(
            notification_id,
            "unarchive",
            {"is_archived": self.bind_bool(False), "archived_at": None, "status": self.bind(status, K.INT32)},
            extra_where="is_archived",
        )

    async def confirm(self, notification_id: uuid.UUID) -> bool:
        return await self._set(
            notification_id,
            "confirm",
            {
                "confirmed_at": self.bind_time(self.now()),
                "status": self.bind(NotificationStatus.CONFIRMED, K.INT32),
            },
            extra_where="requires_confirmation AND confirmed_at IS NULL",
        )

    async def update_status(self, notification_id: uuid.UUID, status: NotificationStatus, error_message: str | None = None) -> bool:
        values = {"status": self.bind(status, K.INT32), "error_message": error_message}
        now = self.bind_time(self.now())
        if status is NotificationStatus.SENT:
            values["last_sent_at"] = now
        elif status is NotificationStatus.DELIVERED:
            values["delivered_at"] = now
        updated = await self._set(notification_id, "update_status", values)
        if updated and status is NotificationStatus.SENT:
            async with self.connections.transaction() as conn:
                await self.write(
                    conn,
                    "increment_send_count",
                    "UPDATE notifications SET send_count = send_count + 1 WHERE id = :id",
                    {"id": self.bind_id(notification_id)},
                )
        return updated

    # statistics

    async def get_stats(self, user_id: uuid.UUID | None = None, *, now: datetime | None = None) -> NotificationStats:
        now = now or self.now()
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        sql = (
            "SELECT COUNT(*) AS total_count, "
            "SUM(CASE WHEN NOT is_read THEN 1 ELSE 0 END) AS unread_count, "
            "SUM(CASE WHEN is_read THEN 1 ELSE 0 END) AS read_count, "
            "SUM(CASE WHEN status = :failed THEN 1 ELSE 0 END) AS failed_count, "
            "SUM(CASE WHEN is_archived THEN 1 ELSE 0 END) AS archived_count, "
            "SUM(CASE WHEN priority >= :high THEN 1 ELSE 0 END) AS high_priority_count, "
            "SUM(CASE WHEN created_at >= :recent THEN 1 ELSE 0 END) AS recent_count, "
            "SUM(CASE WHEN created_at >= :day_start THEN 1 ELSE 0 END) AS today_count, "
            "MAX(created_at) AS last_notification_at "
            "FROM notifications WHERE NOT is_deleted"
        )
        params = {
            "failed": self.bind(NotificationStatus.FAILED, K.INT32),
            "high": self.bind(NotificationPriority.HIGH, K.INT32),
            "recent": self.bind_time(now - timedelta(days=7)),
            "day_start": self.bind_time(day_start),
        }
        if user_id is not None:
            sql = f"{sql} AND user_id = :user_id"
            params["user_id"] = self.bind_id(user_id)
        async with self.connections.connect() as conn:
            row = await self.fetch_one(conn, "get_stats", sql, params)
        return NotificationStats(
            total_count=self.read_int(row["total_count"]),
            unread_count=self.read_int(row["unread_count"]),
            read_count=self.read_int(row["read_count"]),
            failed_count=self.read_int(row["failed_count"]),
            archived_count=self.read_int(row["archived_count"]),
            high_priority_count=self.read_int(row["high_priority_count"]),
            recent_count=self.read_int(row["recent_count"]),
            today_count=self.read_int(row["today_count"]),
            last_notification_at=self.read(row["last_notification_at"], K.TIMESTAMP, field="last_notification_at"),
        )

    async def _count_by(self, column: str, operation: str, user_id: uuid.UUID | None) -> dict[int, int]:
        sql = f"SELECT {column} AS bucket, COUNT(*) AS total FROM notifications WHERE NOT is_deleted"
        params = {}
        if user_id is not None:
            sql = f"{sql} AND user_id = :user_id"
            params["user_id"] = self.bind_id(user_id)
        sql = f"{sql} GROUP BY {column} ORDER BY {column}"
        async with self.connections.connect() as conn:
            rows = await self.fetch_all(conn, operation, sql, params)
        return {self.read_int(row["bucket"]): self.read_int(row["total"]) for row in rows}

    async def get_count_by_all_statuses(self, user_id: uuid.UUID | None = None) -> dict[NotificationStatus, int]:
        counts = await self._count_by("status", "count_by_status", user_id)
        return {status: counts.get(int(status), 0) for status in NotificationStatus}

    async def get_count_by_all_types(self, user_id: uuid.UUID | None = None) -> dict[NotificationType, int]:
        counts = await self._count_by("type", "count_by_type", user_id)
        return {kind: counts.get(int(kind), 0) for kind in NotificationType}

    # delivery housekeeping

    async def get_pending_to_send(self, limit: int = 100, *, now: datetime | None = None) -> list[Notification]:
        return await self._select(
            "get_pending_to_send",
            "NOT n.is_deleted AND n.status = :pending "
            "AND (n.scheduled_to_send_at IS NULL OR n.scheduled_to_send_at <= :now)",
            {"pending": self.bind(NotificationStatus.PENDING, K.INT32), "now": self.bind_time(now or self.now())},
            order_by=NOTIFICATION_SORTS.resolve(NotificationSort.CREATED_AT_ASC),
            limit=limit,
        )

    async def get_expired(self, before: datetime | None = None) -> list[Notification]:
        return await self._select(
            "get_expired",
            "NOT n.is_deleted AND n.expires_at IS NOT NULL AND n.expires_at < :before",
            {"before": self.bind_time(before or self.now())},
            order_by=NOTIFICATION_SORTS.resolve(NotificationSort.CREATED_AT_ASC),
        )

    async def clean_expired(self, before: datetime | None = None) -> int:
        now = self.bind_time(self.now())
        async with self.connections.transaction() as conn:
            affected = await self.write(
                conn,
                "clean_expired",
                "UPDATE notifications SET is_deleted = :deleted, deleted_at = :now, updated_at = :now "
                "WHERE expires_at IS NOT NULL AND expires_at < :before AND NOT is_deleted",
                {"deleted": self.bind_bool(True), "now": now, "before": self.bind_time(before or self.now())},
            )
        if affected:
            logger.info("notification_clean_expired affected=%s", affected)
        return affected
