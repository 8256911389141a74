import uuid
from datetime import datetime, timedelta

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from snippet_data.db.session import Base
from snippet_data.models.common import GUID, Duration, TimestampMixin, UTCDateTime, UUIDMixin


class NotificationSetting(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "notification_settings"

    user_id: Mapped[uuid.UUID] = mapped_column(GUID, index=True, nullable=False)
    # NULL applies to every notification type
    notification_type: Mapped[int | None] = mapped_column(Integer, nullable=True)
    enable_in_app: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    enable_email: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    enable_push: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    enable_desktop: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    enable_sound: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    frequency: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    quiet_hours_start: Mapped[timedelta | None] = mapped_column(Duration, nullable=True)
    quiet_hours_end: Mapped[timedelta | None] = mapped_column(Duration, nullable=True)
    enable_quiet_hours: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    email_frequency: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    batch_interval_minutes: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    enable_batching: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    language: Mapped[str] = mapped_column(String(10), default="en-US", nullable=False)
    time_zone: Mapped[str] = mapped_column(String(50), default="UTC", nullable=False)
    last_used_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
