from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta

from snippet_data.core.config import settings
from snippet_data.core.errors import EntityNotFound
from snippet_data.models.enums import DraftStatus
from snippet_data.repositories.base import BaseRepository
from snippet_data.repositories.draft_attachments import MessageDraftAttachmentRepository
from snippet_data.schemas.common import PageRequest, PageResult
from snippet_data.schemas.drafts import (
    DraftSort,
    DraftSortSpec,
    DraftStats,
    MessageDraft,
    MessageDraftCreate,
    MessageDraftFilter,
)
from snippet_data.services.predicates import FilterSchema, between, eq, search
from snippet_data.services.row_mapper import EntityShape
from snippet_data.services.sorting import SortResolver
from snippet_data.services.type_normalizer import ValueKind

logger = logging.getLogger(__name__)

K = ValueKind

DRAFT_KINDS = {
    "id": K.IDENTIFIER,
    "author_id": K.IDENTIFIER,
    "receiver_id": K.IDENTIFIER,
    "subject": K.TEXT,
    "content": K.TEXT,
    "message_type": K.INT32,
    "priority": K.INT32,
    "parent_id": K.IDENTIFIER,
    "conversation_id": K.IDENTIFIER,
    "tag": K.TEXT,
    "status": K.INT32,
    "created_at": K.TIMESTAMP,
    "updated_at": K.TIMESTAMP,
    "last_auto_saved_at": K.TIMESTAMP,
    "scheduled_to_send_at": K.TIMESTAMP,
    "expires_at": K.TIMESTAMP,
    "is_scheduled": K.BOOLEAN,
    "auto_save_interval": K.INT32,
    "notes": K.TEXT,
}

DRAFT_SHAPE = EntityShape(MessageDraft, DRAFT_KINDS)

DRAFT_FILTERS = FilterSchema(
    [
        eq("author_id", "d.author_id", K.IDENTIFIER),
        eq("receiver_id", "d.receiver_id", K.IDENTIFIER),
        eq("conversation_id", "d.conversation_id", K.IDENTIFIER),
        eq("status", "d.status", K.INT32),
        eq("is_scheduled", "d.is_scheduled", K.BOOLEAN),
        between("created_at", "d.created_at", K.TIMESTAMP),
        between("updated_at", "d.updated_at", K.TIMESTAMP),
        search("search", "d.subject", "d.content", "d.notes"),
    ]
)

DRAFT_SORTS = SortResolver(
    {
        DraftSort.UPDATED_AT_DESC: ("d.updated_at DESC", "d.created_at DESC"),
        DraftSort.UPDATED_AT_ASC: ("d.updated_at ASC", "d.created_at ASC"),
        DraftSort.CREATED_AT_DESC: "d.created_at DESC",
        DraftSort.CREATED_AT_ASC: "d.created_at ASC",
        DraftSort.SCHEDULED_TO_SEND_AT: ("d.scheduled_to_send_at ASC", "d.created_at ASC"),
    },
    default=("d.updated_at DESC", "d.created_at DESC"),
    tiebreak=("d.created_at", "d.id"),
)


class MessageDraftRepository(BaseRepository):
    """Drafts are private to their author; owner-scoped methods take ``current_user_id``."""

    entity_name = "message_draft"
    table = "message_drafts"
    alias = "d"
    shape = DRAFT_SHAPE
    filter_schema = DRAFT_FILTERS
    filter_model = MessageDraftFilter
    sorter = DRAFT_SORTS

    def __init__(self, connections, cache=None, *, executor=None):
        super().__init__(connections, cache, executor=executor)
        self.attachments = MessageDraftAttachmentRepository(connections, cache, executor=executor)

    async def get_by_id(self, draft_id: uuid.UUID, current_user_id: uuid.UUID, *, include_attachments: bool = False) -> MessageDraft | None:
        draft = await self._get_by_id(draft_id)
        if draft is None or draft.author_id != current_user_id:
            return None
        if include_attachments:
            attachments = await self.attachments.get_by_draft_id(draft.id)
            draft = draft.model_copy(update={"attachments": attachments})
        return draft

    async def can_user_access_draft(self, draft_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        async with self.connections.connect() as conn:
            count = await self.scalar(
                conn,
                "can_user_access_draft",
                "SELECT COUNT(*) FROM message_drafts WHERE id = :id AND author_id = :user_id",
                {"id": self.bind_id(draft_id), "user_id": self.bind_id(user_id)},
            )
        return self.read_int(count) > 0

    async def create(self, payload: MessageDraftCreate) -> MessageDraft:
        now = self.now()
        values = payload.model_dump()
        if values["expires_at"] is None:
            values["expires_at"] = now + timedelta(days=settings.DRAFT_EXPIRY_DAYS)
        draft = MessageDraft(
            id=uuid.uuid4(),
            status=DraftStatus.DRAFT,
            created_at=now,
            updated_at=now,
            is_scheduled=payload.scheduled_to_send_at is not None,
            **values,
        )
        async with self.connections.transaction() as conn:
            await self.insert_row(conn, self.entity_values(draft), operation="create")
        logger.info("draft_created id=%s author_id=%s scheduled=%s", draft.id, draft.author_id, draft.is_scheduled)
        return draft

    async def update(self, draft: MessageDraft, current_user_id: uuid.UUID) -> MessageDraft:
        updated = draft.model_copy(update={"updated_at": self.now()})
        values = self.entity_values(updated)
        for name in ("id", "author_id", "created_at"):
            values.pop(name)
        async with self.connections.transaction() as conn:
            affected = await self.update_row(
                conn,
                draft.id,
                values,
                extra_where="author_id = :_author_id",
                where_params={"_author_id": self.bind_id(current_user_id)},
            )
        if affected == 0:
            raise EntityNotFound(self.entity_name, draft.id)
        await self._invalidate(draft.id)
        return updated

    async def delete(self, draft_id: uuid.UUID, current_user_id: uuid.UUID) -> bool:
        async with self.connections.transaction() as conn:
            affected = await self.write(
                conn,
                "delete",
                "DELETE FROM message_drafts WHERE id = :id AND author_id = :user_id",
                {"id": self.bind_id(draft_id), "user_id": self.bind_id(current_user_id)},
            )
        await self._invalidate(draft_id)
        return affected > 0

    async def get_paged(
        self,
        spec: MessageDraftFilter | None,
        current_user_id: uuid.UUID,
        sort: DraftSortSpec | None = None,
        page: PageRequest | None = None,
    ) -> PageResult[MessageDraft]:
        predicates = self.build_predicates(spec).and_("d.author_id = :_owner_id", {"_owner_id": self.bind_id(current_user_id)})
        async with self.connections.connect() as conn:
            raw = await self.paged(
                conn,
                relation="message_drafts d",
                columns=self.columns(),
                predicates=predicates,
                order_by=self.order_by(sort),
                page=page or PageRequest(),
            )
        return raw.with_items(self.mapper.map_many(raw.items, DRAFT_SHAPE))

    async def get_conversation_drafts(self, conversation_id: uuid.UUID, current_user_id: uuid.UUID) -> list[MessageDraft]:
        async with self.connections.connect() as conn:
            rows = await self.fetch_all(
                conn,
                "get_conversation_drafts",
                f"SELECT {self.columns()} FROM message_drafts d "
                "WHERE d.conversation_id = :conversation_id AND d.author_id = :user_id AND d.status = :draft "
                f"ORDER BY {DRAFT_SORTS.resolve()}",
                {
                    "conversation_id": self.bind_id(conversation_id),
                    "user_id": self.bind_id(current_user_id),
                    "draft": self.bind(DraftStatus.DRAFT, K.INT32),
                },
            )
        return self.mapper.map_many(rows, DRAFT_SHAPE)

    async def get_user_draft_stats(self, user_id: uuid.UUID) -> DraftStats:
        sql = (
            "SELECT COUNT(*) AS total_drafts, "
            "SUM(CASE WHEN status = :draft THEN 1 ELSE 0 END) AS active_drafts, "
            "SUM(CASE WHEN status = :draft AND is_scheduled = :scheduled THEN 1 ELSE 0 END) AS scheduled_drafts, "
            "SUM(CASE WHEN status = :sent THEN 1 ELSE 0 END) AS sent_drafts, "
            "SUM(CASE WHEN status = :cancelled THEN 1 ELSE 0 END) AS cancelled_drafts, "
            "SUM(CASE WHEN status = :expired THEN 1 ELSE 0 END) AS expired_drafts, "
            "MAX(updated_at) AS last_updated_at "
            "FROM message_drafts WHERE author_id = :user_id"
        )
        params = {
            "user_id": self.bind_id(user_id),
            "scheduled": self.bind_bool(True),
            "draft": self.bind(DraftStatus.DRAFT, K.INT32),
            "sent": self.bind(DraftStatus.SENT, K.INT32),
            "cancelled": self.bind(DraftStatus.CANCELLED, K.INT32),
            "expired": self.bind(DraftStatus.EXPIRED, K.INT32),
        }
        async with self.connections.connect() as conn:
            row = await self.fetch_one(conn, "get_user_draft_stats", sql, params)
        return DraftStats(
            total_drafts=self.read_int(row["total_drafts"]),
            active_drafts=self.read_int(row["active_drafts"]),
            scheduled_drafts=self.read_int(row["scheduled_drafts"]),
            sent_drafts=self.read_int(row["sent_drafts"]),
            cancelled_drafts=self.read_int(row["cancelled_drafts"]),
            expired_drafts=self.read_int(row["expired_drafts"]),
            last_updated_at=self.read(row["last_updated_at"], K.TIMESTAMP, field="last_updated_at"),
        )

    # lifecycle

    async def _owned_update(
        self,
        draft_id: uuid.UUID,
        current_user_id: uuid.UUID,
        operation: str,
        values: dict,
        *,
        extra_where: str = "",
        where_params: dict | None = None,
    ) -> bool:
        params = {"_author_id": self.bind_id(current_user_id)}
        params.update(where_params or {})
        where = "author_id = :_author_id"
        if extra_where:
            where = f"{where} AND {extra_where}"
        async with self.connections.transaction() as conn:
            affected = await self.update_row(conn, draft_id, values, operation=operation, extra_where=where, where_params=params)
        await self._invalidate(draft_id)
        return affected > 0

    async def auto_save(
        self,
        draft_id: uuid.UUID,
        current_user_id: uuid.UUID,
        *,
        subject: str | None = None,
        content: str | None = None,
    ) -> bool:
        now = self.bind_time(self.now())
        values = {"last_auto_saved_at": now, "updated_at": now}
        if subject is not None:
            values["subject"] = subject
        if content is not None:
            values["content"] = content
        return await self._owned_update(
            draft_id,
            current_user_id,
            "auto_save",
            values,
            extra_where="status = :_draft",
            where_params={"_draft": self.bind(DraftStatus.DRAFT, K.INT32)},
        )

    async def send_draft(self, draft_id: uuid.UUID, current_user_id: uuid.UUID) -> bool:
        values = {
            "status": self.bind(DraftStatus.SENT, K.INT32),
            "is_scheduled": self.bind_bool(False),
            "updated_at": self.bind_time(self.now()),
        }
        sent = await self._owned_update(
            draft_id,
            current_user_id,
            "send",
            values,
            extra_where="status = :_draft",
            where_params={"_draft": self.bind(DraftStatus.DRAFT, K.INT32)},
        )
        if sent:
            logger.info("draft_sent id=%s", draft_id)
        return sent

    async def cancel_scheduled(self, draft_id: uuid.UUID, current_user_id: uuid.UUID) -> bool:
        values = {
            "is_scheduled": self.bind_bool(False),
            "scheduled_to_send_at": None,
            "updated_at": self.bind_time(self.now()),
        }
        return await self._owned_update(
            draft_id,
            current_user_id,
            "cancel_scheduled",
            values,
            extra_where="is_scheduled = :_scheduled",
            where_params={"_scheduled": self.bind_bool(True)},
        )

    async def get_scheduled_drafts_to_send(self, *, now: datetime | None = None, limit: int = 100) -> list[MessageDraft]:
        async with self.connections.connect() as conn:
            rows = await self.fetch_all(
                conn,
                "get_scheduled_drafts_to_send",
                f"SELECT {self.columns()} FROM message_drafts d "
                "WHERE d.status = :draft AND d.is_scheduled = :scheduled AND d.scheduled_to_send_at <= :now "
                f"ORDER BY {DRAFT_SORTS.resolve(DraftSort.SCHEDULED_TO_SEND_AT)} LIMIT :limit",
                {
                    "draft": self.bind(DraftStatus.DRAFT, K.INT32),
                    "scheduled": self.bind_bool(True),
                    "now": self.bind_time(now or self.now()),
                    "limit": int(limit),
                },
            )
        return self.mapper.map_many(rows, DRAFT_SHAPE)

    async def get_expiring_drafts(self, within: timedelta = timedelta(days=1), *, now: datetime | None = None) -> list[MessageDraft]:
        now = now or self.now()
        async with self.connections.connect() as conn:
            rows = await self.fetch_all(
                conn,
                "get_expiring_drafts",
                f"SELECT {self.columns()} FROM message_drafts d "
                "WHERE d.status = :draft AND d.expires_at > :now AND d.expires_at <= :until "
                "ORDER BY d.expires_at ASC, d.id ASC",
                {
                    "draft": self.bind(DraftStatus.DRAFT, K.INT32),
                    "now": self.bind_time(now),
                    "until": self.bind_time(now + within),
                },
            )
        return self.mapper.map_many(rows, DRAFT_SHAPE)

    async def cleanup_expired_drafts(self, *, now: datetime | None = None) -> int:
        now_value = self.bind_time(now or self.now())
        async with self.connections.transaction() as conn:
            affected = await self.write(
                conn,
                "cleanup_expired_drafts",
                "UPDATE message_drafts SET status = :expired, is_scheduled = :not_scheduled, updated_at = :now "
                "WHERE status = :draft AND expires_at <= :now",
                {
                    "expired": self.bind(DraftStatus.EXPIRED, K.INT32),
                    "not_scheduled": self.bind_bool(False),
                    "draft": self.bind(DraftStatus.DRAFT, K.INT32),
                    "now": now_value,
                },
            )
        if affected:
            logger.info("draft_cleanup expired=%s", affected)
        return affected
