from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from sqlalchemy.ext.asyncio import AsyncConnection

from snippet_data.core.errors import EntityNotFound
from snippet_data.models.enums import MessagePriority, MessageStatus
from snippet_data.repositories.base import BaseRepository
from snippet_data.repositories.joins import USER_SHAPE, USERS_BY_ID_SQL
from snippet_data.repositories.message_attachments import (
    ATTACHMENT_SHAPE,
    ATTACHMENTS_BY_MESSAGE_SQL,
    MessageAttachmentRepository,
    new_attachment,
)
from snippet_data.schemas.common import PageRequest, PageResult
from snippet_data.schemas.message_attachments import MessageAttachmentCreate
from snippet_data.schemas.messages import (
    Message,
    MessageCreate,
    MessageFilter,
    MessageIncludes,
    MessageSort,
    MessageSortSpec,
    MessageStats,
)
from snippet_data.schemas.users import UserSummary
from snippet_data.services.predicates import FilterSchema, between, eq, flag, search
from snippet_data.services.row_mapper import EntityShape
from snippet_data.services.sorting import SortResolver
from snippet_data.services.type_normalizer import ValueKind

logger = logging.getLogger(__name__)

K = ValueKind

MESSAGE_KINDS = {
    "id": K.IDENTIFIER,
    "sender_id": K.IDENTIFIER,
    "receiver_id": K.IDENTIFIER,
    "subject": K.TEXT,
    "content": K.TEXT,
    "message_type": K.INT32,
    "status": K.INT32,
    "priority": K.INT32,
    "parent_id": K.IDENTIFIER,
    "conversation_id": K.IDENTIFIER,
    "is_read": K.BOOLEAN,
    "read_at": K.TIMESTAMP,
    "tag": K.TEXT,
    "created_at": K.TIMESTAMP,
    "updated_at": K.TIMESTAMP,
    "deleted_at": K.TIMESTAMP,
    "expires_at": K.TIMESTAMP,
}

MESSAGE_SHAPE = EntityShape(Message, MESSAGE_KINDS)
SENDER_SHAPE = USER_SHAPE.aliased("s_")
RECEIVER_SHAPE = USER_SHAPE.aliased("r_")

MESSAGE_FILTERS = FilterSchema(
    [
        eq("sender_id", "m.sender_id", K.IDENTIFIER),
        eq("receiver_id", "m.receiver_id", K.IDENTIFIER),
        eq("message_type", "m.message_type", K.INT32),
        eq("status", "m.status", K.INT32),
        eq("priority", "m.priority", K.INT32),
        eq("parent_id", "m.parent_id", K.IDENTIFIER),
        flag("is_root", "m.parent_id IS NULL", "m.parent_id IS NOT NULL"),
        eq("conversation_id", "m.conversation_id", K.IDENTIFIER),
        eq("tag", "m.tag", K.TEXT),
        eq("is_read", "m.is_read", K.BOOLEAN),
        flag("is_deleted", "m.deleted_at IS NOT NULL", "m.deleted_at IS NULL"),
        between("created_at", "m.created_at", K.TIMESTAMP),
        search("search", "m.subject", "m.content"),
    ]
)

MESSAGE_SORTS = SortResolver(
    {
        MessageSort.CREATED_AT_DESC: "m.created_at DESC",
        MessageSort.CREATED_AT_ASC: "m.created_at ASC",
        MessageSort.PRIORITY_DESC: ("m.priority DESC", "m.created_at DESC"),
        MessageSort.PRIORITY_ASC: ("m.priority ASC", "m.created_at DESC"),
        MessageSort.STATUS: ("m.status ASC", "m.created_at DESC"),
        MessageSort.SUBJECT: ("m.subject ASC", "m.created_at DESC"),
        MessageSort.MESSAGE_TYPE: ("m.message_type ASC", "m.created_at DESC"),
        MessageSort.UNREAD_FIRST: ("m.is_read ASC", "m.created_at DESC"),
        MessageSort.PRIORITY_AND_UNREAD_FIRST: ("m.is_read ASC", "m.priority DESC", "m.created_at DESC"),
    },
    default="m.created_at DESC",
    tiebreak=("m.created_at", "m.id"),
)

MESSAGE_USERS_RELATION = (
    "messages m "
    "LEFT JOIN users s ON s.id = m.sender_id "
    "LEFT JOIN users r ON r.id = m.receiver_id"
)

REPLIES_SQL = (
    f"SELECT {MESSAGE_SHAPE.select('m')} FROM messages m "
    "WHERE m.parent_id IN :keys AND m.deleted_at IS NULL "
    "ORDER BY m.created_at ASC, m.id ASC"
)


class MessageRepository(BaseRepository):
    entity_name = "message"
    table = "messages"
    alias = "m"
    shape = MESSAGE_SHAPE
    filter_schema = MESSAGE_FILTERS
    filter_model = MessageFilter
    sorter = MESSAGE_SORTS

    def __init__(self, connections, cache=None, *, executor=None):
        super().__init__(connections, cache, executor=executor)
        self.attachments = MessageAttachmentRepository(connections, cache, executor=executor)

    # single message

    async def get_by_id(self, message_id: uuid.UUID) -> Message | None:
        return await self._get_by_id(message_id)

    async def get_by_id_with_users(self, message_id: uuid.UUID) -> Message | None:
        columns = ", ".join([MESSAGE_SHAPE.select("m"), SENDER_SHAPE.select("s"), RECEIVER_SHAPE.select("r")])
        async with self.connections.connect() as conn:
            rows = await self.fetch_all(
                conn,
                "get_by_id_with_users",
                f"SELECT {columns} FROM {MESSAGE_USERS_RELATION} WHERE m.id = :id",
                {"id": self.bind_id(message_id)},
            )
        messages = [
            self.mapper.map(
                row,
                MESSAGE_SHAPE,
                sender=self.mapper.map_optional(row, SENDER_SHAPE),
                receiver=self.mapper.map_optional(row, RECEIVER_SHAPE),
            )
            for row in rows
        ]
        folded = self.mapper.fold_joined(messages, joined=("sender", "receiver"))
        return folded[0] if folded else None

    async def get_by_id_with_attachments(self, message_id: uuid.UUID) -> Message | None:
        message = await self.get_by_id(message_id)
        if message is None:
            return None
        attachments = await self.attachments.get_by_message_ids([message.id])
        return message.model_copy(update={"attachments": attachments.get(message.id, [])})

    # writes

    def _new_message(self, payload: MessageCreate) -> Message:
        now = self.now()
        return Message(
            id=uuid.uuid4(),
            status=MessageStatus.SENT,
            is_read=False,
            created_at=now,
            updated_at=now,
            **payload.model_dump(),
        )

    async def create(self, payload: MessageCreate) -> Message:
        message = self._new_message(payload)
        async with self.connections.transaction() as conn:
            await self.insert_row(conn, self.entity_values(message), operation="create")
        logger.info("message_created id=%s sender_id=%s receiver_id=%s", message.id, message.sender_id, message.receiver_id)
        return message

    async def create_with_attachments(
        self,
        payload: MessageCreate,
        attachments: Sequence[MessageAttachmentCreate],
    ) -> Message:
        """Insert the message and all of its attachments atomically."""
        message = self._new_message(payload)
        rows = [new_attachment(message.id, item, message.created_at) for item in attachments]
        async with self.connections.transaction() as conn:
            await self.insert_row(conn, self.entity_values(message), operation="create")
            await self.attachments.insert_many(conn, rows)
        logger.info("message_created id=%s attachments=%s", message.id, len(rows))
        return message.model_copy(update={"attachments": rows})

    async def update(self, message: Message) -> Message:
        updated = message.model_copy(update={"updated_at": self.now()})
        values = self.entity_values(updated)
        values.pop("id")
        values.pop("created_at")
        async with self.connections.transaction() as conn:
            affected = await self.update_row(conn, message.id, values)
        if affected == 0:
            raise EntityNotFound(self.entity_name, message.id)
        await self._invalidate(message.id)
        return updated

    async def _set(self, message_id: uuid.UUID, operation: str, values: dict, *, extra_where: str = "") -> bool:
        async with self.connections.transaction() as conn:
            affected = await self.update_row(conn, message_id, values, operation=operation, extra_where=extra_where)
        await self._invalidate(message_id)
        return affected > 0

    async def delete(self, message_id: uuid.UUID) -> bool:
        now = self.bind_time(self.now())
        deleted = await self._set(
            message_id,
            "soft_delete",
            {"deleted_at": now, "updated_at": now, "status": self.bind(MessageStatus.DELETED, K.INT32)},
            extra_where="deleted_at IS NULL",
        )
        if deleted:
            logger.info("message_deleted id=%s", message_id)
        return deleted

    async def hard_delete(self, message_id: uuid.UUID) -> bool:
        async with self.connections.transaction() as conn:
            affected = await self.delete_by_ids(conn, [message_id], operation="hard_delete")
        await self._invalidate(message_id)
        return affected > 0

    async def restore(self, message_id: uuid.UUID) -> bool:
        return await self._set(
            message_id,
            "restore",
            {
                "deleted_at": None,
                "updated_at": self.bind_time(self.now()),
                "status": self.bind(MessageStatus.SENT, K.INT32),
            },
            extra_where="deleted_at IS NOT NULL",
        )

    async def bulk_soft_delete(self, message_ids: Iterable[uuid.UUID], user_id: uuid.UUID) -> int:
        keys = list(dict.fromkeys(message_ids))
        if not keys:
            return 0
        now = self.bind_time(self.now())
        async with self.connections.transaction() as conn:
            affected = await self.write(
                conn,
                "bulk_soft_delete",
                "UPDATE messages SET deleted_at = :now, updated_at = :now, status = :deleted "
                "WHERE id IN :ids AND deleted_at IS NULL AND (sender_id = :user_id OR receiver_id = :user_id)",
                {
                    "now": now,
                    "deleted": self.bind(MessageStatus.DELETED, K.INT32),
                    "user_id": self.bind_id(user_id),
                    "ids": self.bind_ids(keys),
                },
                expanding=("ids",),
            )
        for key in keys:
            await self._invalidate(key)
        logger.info("message_bulk_soft_delete user_id=%s affected=%s", user_id, affected)
        return affected

    # paged reads

    async def get_paged(
        self,
        spec: MessageFilter | None = None,
        sort: MessageSortSpec | None = None,
        page: PageRequest | None = None,
        includes: MessageIncludes | None = None,
    ) -> PageResult[Message]:
        predicates = self.build_predicates(spec or MessageFilter())
        async with self.connections.connect() as conn:
            raw = await self.paged(
                conn,
                relation="messages m",
                columns=self.columns(),
                predicates=predicates,
                order_by=self.order_by(sort),
                page=page or PageRequest(),
            )
            messages = self.mapper.map_many(raw.items, MESSAGE_SHAPE)
            if includes is not None and messages:
                messages = await self.load_includes(conn, messages, includes)
        return raw.with_items(messages)

    async def load_includes(self, conn: AsyncConnection, messages: list[Message], includes: MessageIncludes) -> list[Message]:
        """Attach related data with one batched statement per requested relation."""
        if includes.sender:
            users = await self._users_by_id(conn, [item.sender_id for item in messages])
            messages = [item.model_copy(update={"sender": users.get(item.sender_id)}) for item in messages]
        if includes.receiver:
            users = await self._users_by_id(conn, [item.receiver_id for item in messages])
            messages = [item.model_copy(update={"receiver": users.get(item.receiver_id)}) for item in messages]
        keys = [item.id for item in messages]
        if includes.attachments:
            related = await self.mapper.load_related(
                conn,
                keys,
                sql=ATTACHMENTS_BY_MESSAGE_SQL,
                shape=ATTACHMENT_SHAPE,
                parent_field="message_id",
                operation="message_attachments.by_message_ids",
            )
            messages = self.mapper.attach(messages, related, field="attachments")
        if includes.replies:
            related = await self.mapper.load_related(
                conn,
                keys,
                sql=REPLIES_SQL,
                shape=MESSAGE_SHAPE,
                parent_field="parent_id",
                operation=f"{self.table}.replies",
            )
            messages = self.mapper.attach(messages, related, field="replies")
        return messages

    async def _users_by_id(self, conn: AsyncConnection, user_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, UserSummary]:
        grouped = await self.mapper.load_related(
            conn,
            user_ids,
            sql=USERS_BY_ID_SQL,
            shape=USER_SHAPE,
            parent_field="id",
            operation="users.by_ids",
        )
        return {key: items[0] for key, items in grouped.items()}

    async def get_sent_messages(
        self,
        user_id: uuid.UUID,
        spec: MessageFilter | None = None,
        sort: MessageSortSpec | None = None,
        page: PageRequest | None = None,
    ) -> PageResult[Message]:
        spec = (spec or MessageFilter()).model_copy(update={"sender_id": user_id})
        return await self.get_paged(spec, sort, page)

    async def get_received_messages(
        self,
        user_id: uuid.UUID,
        spec: MessageFilter | None = None,
        sort: MessageSortSpec | None = None,
        page: PageRequest | None = None,
    ) -> PageResult[Message]:
        spec = (spec or MessageFilter()).model_copy(update={"receiver_id": user_id})
        return await self.get_paged(spec, sort, page)

    async def get_unread_messages(
        self,
        user_id: uuid.UUID,
        spec: MessageFilter | None = None,
        sort: MessageSortSpec | None = None,
        page: PageRequest | None = None,
    ) -> PageResult[Message]:
        spec = (spec or MessageFilter()).model_copy(update={"receiver_id": user_id, "is_read": False})
        return await self.get_paged(spec, sort, page)

    async def get_conversation_messages(
        self,
        conversation_id: uuid.UUID,
        sort: MessageSortSpec | None = None,
        page: PageRequest | None = None,
    ) -> PageResult[Message]:
        return await self.get_paged(MessageFilter(conversation_id=conversation_id), sort, page)

    # read state

    async def mark_as_read(self, message_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        now = self.bind_time(self.now())
        async with self.connections.transaction() as conn:
            affected = await self.write(
                conn,
                "mark_as_read",
                "UPDATE messages SET is_read = :read, read_at = :now, updated_at = :now, status = :status "
                "WHERE id = :id AND receiver_id = :user_id AND is_read = :unread",
                {
                    "read": self.bind_bool(True),
                    "unread": self.bind_bool(False),
                    "now": now,
                    "status": self.bind(MessageStatus.READ, K.INT32),
                    "id": self.bind_id(message_id),
                    "user_id": self.bind_id(user_id),
                },
            )
        await self._invalidate(message_id)
        return affected > 0

    async def _mark_read_where(self, operation: str, where: str, params: dict, *, expanding=()) -> int:
        now = self.bind_time(self.now())
        bound = {
            "read": self.bind_bool(True),
            "unread": self.bind_bool(False),
            "now": now,
            "status": self.bind(MessageStatus.READ, K.INT32),
        }
        bound.update(params)
        async with self.connections.transaction() as conn:
            affected = await self.write(
                conn,
                operation,
                "UPDATE messages SET is_read = :read, read_at = :now, updated_at = :now, status = :status "
                f"WHERE is_read = :unread AND deleted_at IS NULL AND {where}",
                bound,
                expanding=expanding,
            )
        logger.info("message_%s affected=%s", operation, affected)
        return affected

    async def mark_multiple_as_read(self, message_ids: Iterable[uuid.UUID], user_id: uuid.UUID) -> int:
        keys = list(dict.fromkeys(message_ids))
        if not keys:
            return 0
        affected = await self._mark_read_where(
            "mark_multiple_as_read",
            "receiver_id = :user_id AND id IN :ids",
            {"user_id": self.bind_id(user_id), "ids": self.bind_ids(keys)},
            expanding=("ids",),
        )
        for key in keys:
            await self._invalidate(key)
        return affected

    async def mark_conversation_as_read(self, conversation_id: uuid.UUID, user_id: uuid.UUID) -> int:
        return await self._mark_read_where(
            "mark_conversation_as_read",
            "receiver_id = :user_id AND conversation_id = :conversation_id",
            {"user_id": self.bind_id(user_id), "conversation_id": self.bind_id(conversation_id)},
        )

    async def update_status(self, message_id: uuid.UUID, status: MessageStatus) -> bool:
        return await self._set(
            message_id,
            "update_status",
            {"status": self.bind(status, K.INT32), "updated_at": self.bind_time(self.now())},
        )

    # counts and statistics

    async def get_unread_count(self, user_id: uuid.UUID) -> int:
        async with self.connections.connect() as conn:
            count = await self.scalar(
                conn,
                "get_unread_count",
                "SELECT COUNT(*) FROM messages WHERE receiver_id = :user_id AND is_read = :unread AND deleted_at IS NULL",
                {"user_id": self.bind_id(user_id), "unread": self.bind_bool(False)},
            )
        return self.read_int(count)

    async def get_message_count(self, spec: MessageFilter | None = None) -> int:
        predicates = self.build_predicates(spec or MessageFilter())
        async with self.connections.connect() as conn:
            rows = await self.executor.aggregate(
                conn,
                relation="messages m",
                select="COUNT(*) AS total",
                predicates=predicates,
                operation=f"{self.table}.count",
            )
        return self.read_int(rows[0]["total"])

    async def get_user_message_stats(self, user_id: uuid.UUID, *, now: datetime | None = None) -> MessageStats:
        now = now or self.now()
        sql = (
            "SELECT "
            "SUM(CASE WHEN sender_id = :user_id THEN 1 ELSE 0 END) AS total_sent, "
            "SUM(CASE WHEN receiver_id = :user_id THEN 1 ELSE 0 END) AS total_received, "
            "SUM(CASE WHEN receiver_id = :user_id AND is_read = :unread THEN 1 ELSE 0 END) AS unread_count, "
            "SUM(CASE WHEN receiver_id = :user_id AND is_read = :read THEN 1 ELSE 0 END) AS read_count, "
            "SUM(CASE WHEN receiver_id = :user_id AND is_read = :unread AND priority >= :high THEN 1 ELSE 0 END) "
            "AS high_priority_unread, "
            "SUM(CASE WHEN sender_id = :user_id AND created_at >= :day_start THEN 1 ELSE 0 END) AS sent_today, "
            "SUM(CASE WHEN receiver_id = :user_id AND created_at >= :day_start THEN 1 ELSE 0 END) AS received_today, "
            "MAX(created_at) AS last_message_at "
            "FROM messages WHERE deleted_at IS NULL AND (sender_id = :user_id OR receiver_id = :user_id)"
        )
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        params = {
            "user_id": self.bind_id(user_id),
            "read": self.bind_bool(True),
            "unread": self.bind_bool(False),
            "high": self.bind(MessagePriority.HIGH, K.INT32),
            "day_start": self.bind_time(day_start),
        }
        async with self.connections.connect() as conn:
            row = await self.fetch_one(conn, "get_user_message_stats", sql, params)
        return MessageStats(
            total_sent=self.read_int(row["total_sent"]),
            total_received=self.read_int(row["total_received"]),
            unread_count=self.read_int(row["unread_count"]),
            read_count=self.read_int(row["read_count"]),
            high_priority_unread=self.read_int(row["high_priority_unread"]),
            sent_today=self.read_int(row["sent_today"]),
            received_today=self.read_int(row["received_today"]),
            last_message_at=self.read(row["last_message_at"], K.TIMESTAMP, field="last_message_at"),
        )

    async def get_expired_messages(self, *, now: datetime | None = None, limit: int = 100) -> list[Message]:
        async with self.connections.connect() as conn:
            rows = await self.fetch_all(
                conn,
                "get_expired_messages",
                f"SELECT {self.columns()} FROM messages m "
                "WHERE m.expires_at IS NOT NULL AND m.expires_at <= :now AND m.deleted_at IS NULL "
                f"ORDER BY {MESSAGE_SORTS.resolve(MessageSort.CREATED_AT_ASC)} LIMIT :limit",
                {"now": self.bind_time(now or self.now()), "limit": int(limit)},
            )
        return self.mapper.map_many(rows, MESSAGE_SHAPE)

    async def get_expiring_messages(self, user_id: uuid.UUID, within: timedelta = timedelta(hours=24), *, now: datetime | None = None) -> list[Message]:
        now = now or self.now()
        async with self.connections.connect() as conn:
            rows = await self.fetch_all(
                conn,
                "get_expiring_messages",
                f"SELECT {self.columns()} FROM messages m "
                "WHERE m.receiver_id = :user_id AND m.expires_at > :now AND m.expires_at <= :until "
                "AND m.deleted_at IS NULL ORDER BY m.expires_at ASC, m.id ASC",
                {
                    "user_id": self.bind_id(user_id),
                    "now": self.bind_time(now),
                    "until": self.bind_time(now + within),
                },
            )
        return self.mapper.map_many(rows, MESSAGE_SHAPE)
