import uuid
from datetime import datetime

from sqlalchemy import BigInteger, Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from snippet_data.db.session import Base
from snippet_data.models.common import GUID, TimestampMixin, UTCDateTime, UUIDMixin, utcnow


class MessageDraft(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "message_drafts"

    author_id: Mapped[uuid.UUID] = mapped_column(GUID, index=True, nullable=False)
    receiver_id: Mapped[uuid.UUID | None] = mapped_column(GUID, nullable=True)
    subject: Mapped[str | None] = mapped_column(String(200), nullable=True)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    message_type: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    parent_id: Mapped[uuid.UUID | None] = mapped_column(GUID, nullable=True)
    conversation_id: Mapped[uuid.UUID | None] = mapped_column(GUID, index=True, nullable=True)
    tag: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[int] = mapped_column(Integer, default=0, nullable=False, index=True)
    last_auto_saved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    scheduled_to_send_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    is_scheduled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    auto_save_interval: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)


class MessageDraftAttachment(Base, UUIDMixin):
    __tablename__ = "message_draft_attachments"

    draft_id: Mapped[uuid.UUID] = mapped_column(
        GUID, ForeignKey("message_drafts.id", ondelete="CASCADE"), index=True, nullable=False
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    original_file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    content_type: Mapped[str] = mapped_column(String(100), nullable=False)
    file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    attachment_type: Mapped[int] = mapped_column(Integer, default=99, nullable=False)
    upload_progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
