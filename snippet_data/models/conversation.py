import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from snippet_data.db.session import Base
from snippet_data.models.common import GUID, TimestampMixin, UTCDateTime, UUIDMixin, utcnow


class MessageConversation(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "message_conversations"

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    creator_id: Mapped[uuid.UUID] = mapped_column(GUID, index=True, nullable=False)
    last_message_id: Mapped[uuid.UUID | None] = mapped_column(GUID, nullable=True)
    last_message_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    participant_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class ConversationParticipant(Base, UUIDMixin):
    __tablename__ = "message_conversation_participants"
    __table_args__ = (UniqueConstraint("conversation_id", "participant_id", name="uq_conversation_participant"),)

    conversation_id: Mapped[uuid.UUID] = mapped_column(
        GUID, ForeignKey("message_conversations.id", ondelete="CASCADE"), index=True, nullable=False
    )
    participant_id: Mapped[uuid.UUID] = mapped_column(GUID, index=True, nullable=False)
    joined_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    left_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
