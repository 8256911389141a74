from __future__ import annotations

import logging
import uuid
from typing import Iterable, Sequence

from sqlalchemy.ext.asyncio import AsyncConnection

from snippet_data.core.errors import EntityNotFound
from snippet_data.models.enums import AttachmentStatus, AttachmentType
from snippet_data.repositories.base import BaseRepository
from snippet_data.schemas.common import PageRequest, PageResult
from snippet_data.schemas.message_attachments import (
    AttachmentSort,
    AttachmentSortSpec,
    AttachmentStats,
    MessageAttachment,
    MessageAttachmentCreate,
    MessageAttachmentFilter,
)
from snippet_data.services.predicates import FilterSchema, between, eq, flag, one_of, search
from snippet_data.services.row_mapper import EntityShape
from snippet_data.services.sorting import SortResolver
from snippet_data.services.type_normalizer import ValueKind

logger = logging.getLogger(__name__)

K = ValueKind

ATTACHMENT_KINDS = {
    "id": K.IDENTIFIER,
    "message_id": K.IDENTIFIER,
    "file_name": K.TEXT,
    "original_file_name": K.TEXT,
    "file_size": K.INT64,
    "content_type": K.TEXT,
    "file_extension": K.TEXT,
    "file_path": K.TEXT,
    "file_url": K.TEXT,
    "attachment_type": K.INT32,
    "attachment_status": K.INT32,
    "file_hash": K.TEXT,
    "upload_progress": K.INT32,
    "download_count": K.INT32,
    "uploaded_at": K.TIMESTAMP,
    "last_downloaded_at": K.TIMESTAMP,
    "deleted_at": K.TIMESTAMP,
}

ATTACHMENT_SHAPE = EntityShape(MessageAttachment, ATTACHMENT_KINDS)

ATTACHMENT_RELATION = "message_attachments a JOIN messages m ON m.id = a.message_id"

ATTACHMENT_FILTERS = FilterSchema(
    [
        eq("message_id", "a.message_id", K.IDENTIFIER),
        one_of("message_ids", "a.message_id", K.IDENTIFIER),
        eq("attachment_type", "a.attachment_type", K.INT32),
        eq("attachment_status", "a.attachment_status", K.INT32),
        eq("file_extension", "a.file_extension", K.TEXT),
        eq("content_type", "a.content_type", K.TEXT),
        between("file_size", "a.file_size", K.INT64),
        between("uploaded_at", "a.uploaded_at", K.TIMESTAMP),
        eq("uploader_id", "m.sender_id", K.IDENTIFIER),
        flag("is_deleted", "a.deleted_at IS NOT NULL", "a.deleted_at IS NULL"),
        search("search", "a.original_file_name", "a.file_name"),
    ]
)

ATTACHMENT_SORTS = SortResolver(
    {
        AttachmentSort.UPLOADED_AT_DESC: "a.uploaded_at DESC",
        AttachmentSort.UPLOADED_AT_ASC: "a.uploaded_at ASC",
        AttachmentSort.FILE_SIZE_DESC: ("a.file_size DESC", "a.uploaded_at DESC"),
        AttachmentSort.FILE_SIZE_ASC: ("a.file_size ASC", "a.uploaded_at DESC"),
        AttachmentSort.FILE_NAME: ("a.original_file_name ASC", "a.uploaded_at DESC"),
        AttachmentSort.DOWNLOAD_COUNT_DESC: ("a.download_count DESC", "a.uploaded_at DESC"),
    },
    default="a.uploaded_at DESC",
    tiebreak=("a.uploaded_at", "a.id"),
)

ATTACHMENTS_BY_MESSAGE_SQL = (
    f"SELECT {ATTACHMENT_SHAPE.select('a')} FROM message_attachments a "
    "WHERE a.message_id IN :keys AND a.deleted_at IS NULL "
    "ORDER BY a.uploaded_at ASC, a.id ASC"
)


def new_attachment(message_id: uuid.UUID, payload: MessageAttachmentCreate, uploaded_at) -> MessageAttachment:
    return MessageAttachment(id=uuid.uuid4(), message_id=message_id, uploaded_at=uploaded_at, **payload.model_dump())


class MessageAttachmentRepository(BaseRepository):
    entity_name = "message_attachment"
    table = "message_attachments"
    alias = "a"
    shape = ATTACHMENT_SHAPE
    filter_schema = ATTACHMENT_FILTERS
    filter_model = MessageAttachmentFilter
    sorter = ATTACHMENT_SORTS

    async def get_by_id(self, attachment_id: uuid.UUID) -> MessageAttachment | None:
        return await self._get_by_id(attachment_id)

    async def insert_many(self, conn: AsyncConnection, attachments: Sequence[MessageAttachment]) -> int:
        """Insert on the caller's connection so a parent insert can share the transaction."""
        for attachment in attachments:
            await self.insert_row(conn, self.entity_values(attachment), operation="insert")
        return len(attachments)

    async def create(self, message_id: uuid.UUID, payload: MessageAttachmentCreate) -> MessageAttachment:
        attachment = new_attachment(message_id, payload, self.now())
        async with self.connections.transaction() as conn:
            await self.insert_row(conn, self.entity_values(attachment), operation="create")
        logger.info("attachment_created id=%s message_id=%s size=%s", attachment.id, message_id, attachment.file_size)
        return attachment

    async def bulk_insert(self, attachments: Sequence[MessageAttachment]) -> int:
        if not attachments:
            return 0
        async with self.connections.transaction() as conn:
            inserted = await self.insert_many(conn, attachments)
        logger.info("attachment_bulk_insert count=%s", inserted)
        return inserted

    async def update(self, attachment: MessageAttachment) -> MessageAttachment:
        values = self.entity_values(attachment)
        values.pop("id")
        values.pop("uploaded_at")
        async with self.connections.transaction() as conn:
            affected = await self.update_row(conn, attachment.id, values)
        if affected == 0:
            raise EntityNotFound(self.entity_name, attachment.id)
        await self._invalidate(attachment.id)
        return attachment

    async def _set(self, attachment_id: uuid.UUID, operation: str, values: dict, *, extra_where: str = "") -> bool:
        async with self.connections.transaction() as conn:
            affected = await self.update_row(conn, attachment_id, values, operation=operation, extra_where=extra_where)
        await self._invalidate(attachment_id)
        return affected > 0

    async def delete(self, attachment_id: uuid.UUID) -> bool:
        return await self._set(
            attachment_id,
            "soft_delete",
            {
                "deleted_at": self.bind_time(self.now()),
                "attachment_status": self.bind(AttachmentStatus.DELETED, K.INT32),
            },
            extra_where="deleted_at IS NULL",
        )

    async def restore(self, attachment_id: uuid.UUID) -> bool:
        return await self._set(
            attachment_id,
            "restore",
            {"deleted_at": None, "attachment_status": self.bind(AttachmentStatus.ACTIVE, K.INT32)},
            extra_where="deleted_at IS NOT NULL",
        )

    async def get_paged(
        self,
        spec: MessageAttachmentFilter | None = None,
        sort: AttachmentSortSpec | None = None,
        page: PageRequest | None = None,
    ) -> PageResult[MessageAttachment]:
        predicates = self.build_predicates(spec or MessageAttachmentFilter())
        async with self.connections.connect() as conn:
            raw = await self.paged(
                conn,
                relation=ATTACHMENT_RELATION,
                columns=self.columns(),
                predicates=predicates,
                order_by=self.order_by(sort),
                page=page or PageRequest(),
            )
        return raw.with_items(self.mapper.map_many(raw.items, ATTACHMENT_SHAPE))

    async def get_by_message_id(self, message_id: uuid.UUID) -> list[MessageAttachment]:
        grouped = await self.get_by_message_ids([message_id])
        return grouped.get(message_id, [])

    async def get_by_message_ids(self, message_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, list[MessageAttachment]]:
        async with self.connections.connect() as conn:
            return await self.load_for_messages(conn, message_ids)

    async def load_for_messages(self, conn: AsyncConnection, message_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, list[MessageAttachment]]:
        return await self.mapper.load_related(
            conn,
            message_ids,
            sql=ATTACHMENTS_BY_MESSAGE_SQL,
            shape=ATTACHMENT_SHAPE,
            parent_field="message_id",
            operation=f"{self.table}.by_message_ids",
        )

    async def get_by_file_hash(self, file_hash: str) -> MessageAttachment | None:
        async with self.connections.connect() as conn:
            row = await self.fetch_one(
                conn,
                "get_by_file_hash",
                f"SELECT {self.columns()} FROM message_attachments a "
                "WHERE a.file_hash = :file_hash AND a.deleted_at IS NULL ORDER BY a.uploaded_at ASC, a.id ASC",
                {"file_hash": file_hash},
            )
        return self.mapper.map(row, ATTACHMENT_SHAPE) if row is not None else None

    async def increment_download_count(self, attachment_id: uuid.UUID) -> bool:
        async with self.connections.transaction() as conn:
            affected = await self.write(
                conn,
                "increment_download_count",
                "UPDATE message_attachments SET download_count = download_count + 1, "
                "last_downloaded_at = :now WHERE id = :id AND deleted_at IS NULL",
                {"id": self.bind_id(attachment_id), "now": self.bind_time(self.now())},
            )
        await self._invalidate(attachment_id)
        return affected > 0

    async def update_upload_progress(self, attachment_id: uuid.UUID, progress: int) -> bool:
        progress = max(0, min(100, int(progress)))
        status = AttachmentStatus.ACTIVE if progress == 100 else AttachmentStatus.UPLOADING
        return await self._set(
            attachment_id,
            "update_upload_progress",
            {"upload_progress": progress, "attachment_status": self.bind(status, K.INT32)},
        )

    async def update_attachment_status(self, attachment_id: uuid.UUID, status: AttachmentStatus) -> bool:
        return await self._set(attachment_id, "update_attachment_status", {"attachment_status": self.bind(status, K.INT32)})

    async def get_attachment_stats(self, spec: MessageAttachmentFilter | None = None) -> AttachmentStats:
        predicates = self.build_predicates(spec or MessageAttachmentFilter())
        async with self.connections.connect() as conn:
            totals = await self.executor.aggregate(
                conn,
                relation=ATTACHMENT_RELATION,
                select=(
                    "COUNT(*) AS total_count, COALESCE(SUM(a.file_size), 0) AS total_size, "
                    "AVG(a.file_size) AS average_size, COALESCE(SUM(a.download_count), 0) AS total_downloads, "
                    "MAX(a.uploaded_at) AS last_uploaded_at"
                ),
                predicates=predicates,
                operation=f"{self.table}.stats",
            )
            by_type = await self.executor.aggregate(
                conn,
                relation=ATTACHMENT_RELATION,
                select="a.attachment_type AS attachment_type, COUNT(*) AS total",
                predicates=predicates,
                group_by="a.attachment_type",
                order_by="a.attachment_type",
                operation=f"{self.table}.stats_by_type",
            )
        row = totals[0]
        return AttachmentStats(
            total_count=self.read_int(row["total_count"]),
            total_size=self.read_int(row["total_size"]),
            average_size=self.read_float(row["average_size"]) or 0.0,
            total_downloads=self.read_int(row["total_downloads"]),
            last_uploaded_at=self.read(row["last_uploaded_at"], K.TIMESTAMP, field="last_uploaded_at"),
            type_counts={AttachmentType(self.read_int(item["attachment_type"])): self.read_int(item["total"]) for item in by_type},
        )

    async def get_user_total_file_size(self, user_id: uuid.UUID) -> int:
        async with self.connections.connect() as conn:
            total = await self.scalar(
                conn,
                "get_user_total_file_size",
                f"SELECT COALESCE(SUM(a.file_size), 0) FROM {ATTACHMENT_RELATION} "
                "WHERE m.sender_id = :user_id AND a.deleted_at IS NULL",
                {"user_id": self.bind_id(user_id)},
            )
        return self.read_int(total, field="file_size")
