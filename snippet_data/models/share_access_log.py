import uuid
from datetime import datetime

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from snippet_data.db.session import Base
from snippet_data.models.common import GUID, UTCDateTime, UUIDMixin, utcnow


class ShareAccessLog(Base, UUIDMixin):
    __tablename__ = "share_access_logs"

    share_token_id: Mapped[uuid.UUID] = mapped_column(GUID, index=True, nullable=False)
    code_snippet_id: Mapped[uuid.UUID] = mapped_column(GUID, index=True, nullable=False)
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    source: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    browser: Mapped[str | None] = mapped_column(String(100), nullable=True)
    operating_system: Mapped[str | None] = mapped_column(String(100), nullable=True)
    device_type: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    accessed_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False, index=True)
    is_success: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    duration: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    session_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    referer: Mapped[str | None] = mapped_column(String(500), nullable=True)
    accept_language: Mapped[str | None] = mapped_column(String(100), nullable=True)
