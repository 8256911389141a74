import uuid
from datetime import datetime

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from snippet_data.db.session import Base
from snippet_data.models.common import GUID, CreatedAtMixin, UTCDateTime, UUIDMixin


class CommentReport(Base, UUIDMixin, CreatedAtMixin):
    __tablename__ = "comment_reports"

    comment_id: Mapped[uuid.UUID] = mapped_column(GUID, index=True, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(GUID, index=True, nullable=False)
    reason: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    status: Mapped[int] = mapped_column(Integer, default=0, nullable=False, index=True)
    handled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    handled_by: Mapped[uuid.UUID | None] = mapped_column(GUID, index=True, nullable=True)
    resolution: Mapped[str | None] = mapped_column(Text, nullable=True)
