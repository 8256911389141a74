import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Interval, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

# SQLite keeps identifiers, timestamps and durations as text
GUID = UUID(as_uuid=True).with_variant(String(36), "sqlite")
UTCDateTime = DateTime(timezone=True).with_variant(String(32), "sqlite")
Duration = Interval().with_variant(String(32), "sqlite")


def utcnow():
    return datetime.now(timezone.utc)


class UUIDMixin:
    id: Mapped[uuid.UUID] = mapped_column(GUID, primary_key=True, default=uuid.uuid4)


class CreatedAtMixin:
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False, index=True)


class TimestampMixin(CreatedAtMixin):
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, default=utcnow, nullable=True)
