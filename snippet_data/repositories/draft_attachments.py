from __future__ import annotations

import logging
import uuid
from typing import Iterable, Sequence

from sqlalchemy.ext.asyncio import AsyncConnection

from snippet_data.repositories.base import BaseRepository
from snippet_data.schemas.drafts import DraftAttachment, DraftAttachmentCreate
from snippet_data.services.row_mapper import EntityShape
from snippet_data.services.type_normalizer import ValueKind

logger = logging.getLogger(__name__)

K = ValueKind

DRAFT_ATTACHMENT_KINDS = {
    "id": K.IDENTIFIER,
    "draft_id": K.IDENTIFIER,
    "file_name": K.TEXT,
    "original_file_name": K.TEXT,
    "file_size": K.INT64,
    "content_type": K.TEXT,
    "file_path": K.TEXT,
    "attachment_type": K.INT32,
    "upload_progress": K.INT32,
    "created_at": K.TIMESTAMP,
}

DRAFT_ATTACHMENT_SHAPE = EntityShape(DraftAttachment, DRAFT_ATTACHMENT_KINDS)

BY_DRAFT_SQL = (
    f"SELECT {DRAFT_ATTACHMENT_SHAPE.select('da')} FROM message_draft_attachments da "
    "WHERE da.draft_id IN :keys ORDER BY da.created_at ASC, da.id ASC"
)


class MessageDraftAttachmentRepository(BaseRepository):
    entity_name = "draft_attachment"
    table = "message_draft_attachments"
    alias = "da"
    shape = DRAFT_ATTACHMENT_SHAPE

    def _new(self, draft_id: uuid.UUID, payload: DraftAttachmentCreate) -> DraftAttachment:
        return DraftAttachment(id=uuid.uuid4(), draft_id=draft_id, created_at=self.now(), **payload.model_dump())

    async def create(self, draft_id: uuid.UUID, payload: DraftAttachmentCreate) -> DraftAttachment:
        attachment = self._new(draft_id, payload)
        async with self.connections.transaction() as conn:
            await self.insert_row(conn, self.entity_values(attachment), operation="create")
        return attachment

    async def create_batch(self, draft_id: uuid.UUID, payloads: Sequence[DraftAttachmentCreate]) -> list[DraftAttachment]:
        """All attachments are stored or none are."""
        attachments = [self._new(draft_id, payload) for payload in payloads]
        if not attachments:
            return []
        async with self.connections.transaction() as conn:
            for attachment in attachments:
                await self.insert_row(conn, self.entity_values(attachment), operation="create_batch")
        logger.info("draft_attachments_created draft_id=%s count=%s", draft_id, len(attachments))
        return attachments

    async def get_by_id(self, attachment_id: uuid.UUID) -> DraftAttachment | None:
        return await self._get_by_id(attachment_id)

    async def load_for_drafts(self, conn: AsyncConnection, draft_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, list[DraftAttachment]]:
        return await self.mapper.load_related(
            conn,
            draft_ids,
            sql=BY_DRAFT_SQL,
            shape=DRAFT_ATTACHMENT_SHAPE,
            parent_field="draft_id",
            operation=f"{self.table}.by_draft_ids",
        )

    async def get_by_draft_ids(self, draft_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, list[DraftAttachment]]:
        async with self.connections.connect() as conn:
            return await self.load_for_drafts(conn, draft_ids)

    async def get_by_draft_id(self, draft_id: uuid.UUID) -> list[DraftAttachment]:
        grouped = await self.get_by_draft_ids([draft_id])
        return grouped.get(draft_id, [])

    async def update_upload_progress(self, attachment_id: uuid.UUID, progress: int) -> bool:
        async with self.connections.transaction() as conn:
            affected = await self.update_row(
                conn,
                attachment_id,
                {"upload_progress": max(0, min(100, int(progress)))},
                operation="update_upload_progress",
            )
        await self._invalidate(attachment_id)
        return affected > 0

    async def delete(self, attachment_id: uuid.UUID) -> bool:
        async with self.connections.transaction() as conn:
            affected = await self.delete_by_ids(conn, [attachment_id])
        await self._invalidate(attachment_id)
        return affected > 0

    async def delete_by_draft_id(self, draft_id: uuid.UUID) -> int:
        async with self.connections.transaction() as conn:
            return await self.write(
                conn,
                "delete_by_draft_id",
                "DELETE FROM message_draft_attachments WHERE draft_id = :draft_id",
                {"draft_id": self.bind_id(draft_id)},
            )

    async def _draft_scalar(self, operation: str, select: str, draft_id: uuid.UUID):
        async with self.connections.connect() as conn:
            return await self.scalar(
                conn,
                operation,
                f"SELECT {select} FROM message_draft_attachments WHERE draft_id = :draft_id",
                {"draft_id": self.bind_id(draft_id)},
            )

    async def get_total_size_by_draft_id(self, draft_id: uuid.UUID) -> int:
        return self.read_int(await self._draft_scalar("total_size", "COALESCE(SUM(file_size), 0)", draft_id), field="file_size")

    async def get_count_by_draft_id(self, draft_id: uuid.UUID) -> int:
        return self.read_int(await self._draft_scalar("count", "COUNT(*)", draft_id))

    async def exists(self, attachment_id: uuid.UUID) -> bool:
        async with self.connections.connect() as conn:
            count = await self.scalar(
                conn,
                "exists",
                "SELECT COUNT(*) FROM message_draft_attachments WHERE id = :id",
                {"id": self.bind_id(attachment_id)},
            )
        return self.read_int(count) > 0
