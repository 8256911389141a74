from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncConnection

from snippet_data.core.errors import EntityNotFound
from snippet_data.repositories.base import BaseRepository
from snippet_data.schemas.common import PageRequest, PageResult
from snippet_data.schemas.conversations import (
    Conversation,
    ConversationCreate,
    ConversationFilter,
    ConversationParticipant,
    ConversationSort,
    ConversationSortSpec,
)
from snippet_data.services.predicates import FilterSchema, between, eq, flag, matches, search
from snippet_data.services.row_mapper import EntityShape
from snippet_data.services.sorting import SortResolver
from snippet_data.services.type_normalizer import ValueKind

logger = logging.getLogger(__name__)

K = ValueKind

PARTICIPANTS_TABLE = "message_conversation_participants"

CONVERSATION_KINDS = {
    "id": K.IDENTIFIER,
    "title": K.TEXT,
    "description": K.TEXT,
    "creator_id": K.IDENTIFIER,
    "created_at": K.TIMESTAMP,
    "updated_at": K.TIMESTAMP,
    "last_message_id": K.IDENTIFIER,
    "last_message_time": K.TIMESTAMP,
    "is_deleted": K.BOOLEAN,
    "participant_count": K.INT32,
}

PARTICIPANT_KINDS = {
    "id": K.IDENTIFIER,
    "conversation_id": K.IDENTIFIER,
    "participant_id": K.IDENTIFIER,
    "joined_at": K.TIMESTAMP,
    "left_at": K.TIMESTAMP,
    "is_active": K.BOOLEAN,
}

CONVERSATION_SHAPE = EntityShape(Conversation, CONVERSATION_KINDS)
PARTICIPANT_SHAPE = EntityShape(ConversationParticipant, PARTICIPANT_KINDS)

# an active participant is one that has not left
CONVERSATION_FILTERS = FilterSchema(
    [
        matches(
            "participant_id",
            f"EXISTS (SELECT 1 FROM {PARTICIPANTS_TABLE} p WHERE p.conversation_id = mc.id "
            "AND p.participant_id = :participant_id AND p.left_at IS NULL)",
            K.IDENTIFIER,
        ),
        eq("creator_id", "mc.creator_id", K.IDENTIFIER),
        between("created_at", "mc.created_at", K.TIMESTAMP),
        matches(
            "has_unread_for",
            "EXISTS (SELECT 1 FROM messages um WHERE um.conversation_id = mc.id "
            "AND um.receiver_id = :has_unread_for AND NOT um.is_read AND um.deleted_at IS NULL)",
            K.IDENTIFIER,
        ),
        flag("is_deleted", "mc.is_deleted", "NOT mc.is_deleted"),
        search("search", "mc.title", "mc.description"),
    ]
)

CONVERSATION_SORTS = SortResolver(
    {
        ConversationSort.LAST_MESSAGE_DESC: "COALESCE(mc.last_message_time, mc.created_at) DESC",
        ConversationSort.LAST_MESSAGE_ASC: "COALESCE(mc.last_message_time, mc.created_at) ASC",
        ConversationSort.CREATED_AT_DESC: "mc.created_at DESC",
        ConversationSort.CREATED_AT_ASC: "mc.created_at ASC",
    },
    default="COALESCE(mc.last_message_time, mc.created_at) DESC",
    tiebreak=("mc.created_at", "mc.id"),
)

PARTICIPANTS_SQL = (
    f"SELECT {PARTICIPANT_SHAPE.select('p')} FROM {PARTICIPANTS_TABLE} p "
    "WHERE p.conversation_id IN :keys AND p.left_at IS NULL ORDER BY p.joined_at ASC, p.id ASC"
)


class MessageConversationRepository(BaseRepository):
    entity_name = "conversation"
    table = "message_conversations"
    alias = "mc"
    shape = CONVERSATION_SHAPE
    filter_schema = CONVERSATION_FILTERS
    filter_model = ConversationFilter
    sorter = CONVERSATION_SORTS

    async def create(self, payload: ConversationCreate) -> Conversation:
        """Insert the conversation and its participants (creator included) in one transaction."""
        now = self.now()
        member_ids = list(dict.fromkeys([payload.creator_id, *payload.participant_ids]))
        conversation = Conversation(
            id=uuid.uuid4(),
            title=payload.title,
            description=payload.description,
            creator_id=payload.creator_id,
            created_at=now,
            updated_at=now,
            participant_count=len(member_ids),
        )
        participants = [
            ConversationParticipant(id=uuid.uuid4(), conversation_id=conversation.id, participant_id=member_id, joined_at=now)
            for member_id in member_ids
        ]
        async with self.connections.transaction() as conn:
            await self.insert_row(conn, self.entity_values(conversation), operation="create")
            for participant in participants:
                await self.insert_row(
                    conn,
                    self.entity_values(participant, PARTICIPANT_KINDS),
                    table=PARTICIPANTS_TABLE,
                    operation="add_participant",
                )
        logger.info("conversation_created id=%s participants=%s", conversation.id, len(participants))
        return conversation.model_copy(update={"participants": participants})

    async def get_by_id(self, conversation_id: uuid.UUID, *, include_participants: bool = False) -> Conversation | None:
        conversation = await self._get_by_id(conversation_id)
        if conversation is None or not include_participants:
            return conversation
        participants = await self.get_participants(conversation_id)
        return conversation.model_copy(update={"participants": participants})

    async def get_paged(
        self,
        spec: ConversationFilter | None = None,
        sort: ConversationSortSpec | None = None,
        page: PageRequest | None = None,
        *,
        include_participants: bool = False,
    ) -> PageResult[Conversation]:
        predicates = self.build_predicates(spec or ConversationFilter())
        async with self.connections.connect() as conn:
            raw = await self.paged(
                conn,
                relation="message_conversations mc",
                columns=self.columns(),
                predicates=predicates,
                order_by=self.order_by(sort),
                page=page or PageRequest(),
            )
            conversations = self.mapper.map_many(raw.items, CONVERSATION_SHAPE)
            if include_participants and conversations:
                related = await self._load_participants(conn, [item.id for item in conversations])
                conversations = self.mapper.attach(conversations, related, field="participants")
        return raw.with_items(conversations)

    async def get_by_user(
        self,
        user_id: uuid.UUID,
        sort: ConversationSortSpec | None = None,
        page: PageRequest | None = None,
    ) -> PageResult[Conversation]:
        return await self.get_paged(ConversationFilter(participant_id=user_id), sort, page)

    async def update(self, conversation: Conversation) -> Conversation:
        updated = conversation.model_copy(update={"updated_at": self.now()})
        values = self.encode(updated.model_dump(include={"title", "description", "updated_at"}), CONVERSATION_KINDS)
        async with self.connections.transaction() as conn:
            affected = await self.update_row(conn, conversation.id, values)
        if affected == 0:
            raise EntityNotFound(self.entity_name, conversation.id)
        await self._invalidate(conversation.id)
        return updated

    async def delete(self, conversation_id: uuid.UUID) -> bool:
        async with self.connections.transaction() as conn:
            affected = await self.update_row(
                conn,
                conversation_id,
                {"is_deleted": self.bind_bool(True), "updated_at": self.bind_time(self.now())},
                operation="soft_delete",
            )
        await self._invalidate(conversation_id)
        return affected > 0

    # participants

    async def _load_participants(self, conn: AsyncConnection, conversation_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, list[ConversationParticipant]]:
        return await self.mapper.load_related(
            conn,
            conversation_ids,
            sql=PARTICIPANTS_SQL,
            shape=PARTICIPANT_SHAPE,
            parent_field="conversation_id",
            operation=f"{PARTICIPANTS_TABLE}.by_conversation_ids",
        )

    async def get_participants(self, conversation_id: uuid.UUID) -> list[ConversationParticipant]:
        async with self.connections.connect() as conn:
            related = await self._load_participants(conn, [conversation_id])
        return related.get(conversation_id, [])

    async def _refresh_participant_count(self, conn: AsyncConnection, conversation_id: uuid.UUID) -> int:
        params = {"id": self.bind_id(conversation_id), "now": self.bind_time(self.now())}
        await self.write(
            conn,
            "refresh_participant_count",
            "UPDATE message_conversations SET updated_at = :now, participant_count = "
            f"(SELECT COUNT(*) FROM {PARTICIPANTS_TABLE} p WHERE p.conversation_id = :id AND p.left_at IS NULL) "
            "WHERE id = :id",
            params,
        )
        count = await self.scalar(conn, "participant_count", "SELECT participant_count FROM message_conversations WHERE id = :id", params)
        return self.read_int(count)

    async def add_participants(self, conversation_id: uuid.UUID, user_ids: Iterable[uuid.UUID]) -> int:
        """Add users to a conversation; active members are skipped and former members rejoin.

        Returns the number of users that became active members.
        """
        wanted = list(dict.fromkeys(user_ids))
        if not wanted:
            return 0
        now = self.now()
        async with self.connections.transaction() as conn:
            exists = await self.scalar(
                conn,
                "exists",
                "SELECT COUNT(*) FROM message_conversations WHERE id = :id AND NOT is_deleted",
                {"id": self.bind_id(conversation_id)},
            )
            if not self.read_int(exists):
                raise EntityNotFound(self.entity_name, conversation_id)
            rows = await self.fetch_all(
                conn,
                "existing_participants",
                f"SELECT participant_id, left_at FROM {PARTICIPANTS_TABLE} "
                "WHERE conversation_id = :conversation_id AND participant_id IN :ids",
                {"conversation_id": self.bind_id(conversation_id), "ids": self.bind_ids(wanted)},
                expanding=("ids",),
            )
            existing = {self.read(row["participant_id"], K.IDENTIFIER): row["left_at"] is None for row in rows}
            added = 0
            for user_id in wanted:
                if existing.get(user_id):
                    continue
                if user_id in existing:
                    await self.write(
                        conn,
                        "rejoin_participant",
                        f"UPDATE {PARTICIPANTS_TABLE} SET left_at = NULL, is_active = :active, joined_at = :now "
                        "WHERE conversation_id = :conversation_id AND participant_id = :participant_id",
                        {
                            "active": self.bind_bool(True),
                            "now": self.bind_time(now),
                            "conversation_id": self.bind_id(conversation_id),
                            "participant_id": self.bind_id(user_id),
                        },
                    )
                else:
                    participant = ConversationParticipant(
                        id=uuid.uuid4(), conversation_id=conversation_id, participant_id=user_id, joined_at=now
                    )
                    await self.insert_row(
                        conn,
                        self.entity_values(participant, PARTICIPANT_KINDS),
                        table=PARTICIPANTS_TABLE,
                        operation="add_participant",
                    )
                added += 1
            count = await self._refresh_participant_count(conn, conversation_id)
        await self._invalidate(conversation_id)
        logger.info("conversation_participants_added id=%s added=%s count=%s", conversation_id, added, count)
        return added

    async def remove_participant(self, conversation_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        async with self.connections.transaction() as conn:
            affected = await self.write(
                conn,
                "remove_participant",
                f"UPDATE {PARTICIPANTS_TABLE} SET left_at = :now, is_active = :inactive "
                "WHERE conversation_id = :conversation_id AND participant_id = :participant_id AND left_at IS NULL",
                {
                    "now": self.bind_time(self.now()),
                    "inactive": self.bind_bool(False),
                    "conversation_id": self.bind_id(conversation_id),
                    "participant_id": self.bind_id(user_id),
                },
            )
            if affected:
                await self._refresh_participant_count(conn, conversation_id)
        await self._invalidate(conversation_id)
        return affected > 0

    async def is_participant(self, conversation_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        async with self.connections.connect() as conn:
            count = await self.scalar(
                conn,
                "is_participant",
                f"SELECT COUNT(*) FROM {PARTICIPANTS_TABLE} "
                "WHERE conversation_id = :conversation_id AND participant_id = :participant_id AND left_at IS NULL",
                {"conversation_id": self.bind_id(conversation_id), "participant_id": self.bind_id(user_id)},
            )
        return self.read_int(count) > 0

    # message bookkeeping

    async def update_last_message(self, conversation_id: uuid.UUID, message_id: uuid.UUID, sent_at: datetime | None = None) -> bool:
        sent_at = sent_at or self.now()
        async with self.connections.transaction() as conn:
            affected = await self.update_row(
                conn,
                conversation_id,
                {
                    "last_message_id": self.bind_id(message_id),
                    "last_message_time": self.bind_time(sent_at),
                    "updated_at": self.bind_time(self.now()),
                },
                operation="update_last_message",
            )
        await self._invalidate(conversation_id)
        return affected > 0

    async def get_message_count(self, conversation_id: uuid.UUID) -> int:
        async with self.connections.connect() as conn:
            count = await self.scalar(
                conn,
                "get_message_count",
                "SELECT COUNT(*) FROM messages WHERE conversation_id = :conversation_id AND deleted_at IS NULL",
                {"conversation_id": self.bind_id(conversation_id)},
            )
        return self.read_int(count)

    async def get_unread_message_count(self, conversation_id: uuid.UUID, user_id: uuid.UUID) -> int:
        async with self.connections.connect() as conn:
            count = await self.scalar(
                conn,
                "get_unread_message_count",
                "SELECT COUNT(*) FROM messages WHERE conversation_id = :conversation_id AND receiver_id = :user_id "
                "AND is_read = :unread AND deleted_at IS NULL",
                {
                    "conversation_id": self.bind_id(conversation_id),
                    "user_id": self.bind_id(user_id),
                    "unread": self.bind_bool(False),
                },
            )
        return self.read_int(count)
