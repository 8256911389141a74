import uuid
from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from snippet_data.models.enums import (
    EmailNotificationFrequency,
    NotificationChannel,
    NotificationFrequency,
    NotificationType,
)

DEFAULT_QUIET_START = timedelta(hours=22)
DEFAULT_QUIET_END = timedelta(hours=8)


class NotificationPreference(BaseModel):
    enable_in_app: bool = True
    enable_email: bool = True
    enable_push: bool = True
    enable_desktop: bool = True
    enable_sound: bool = True
    frequency: NotificationFrequency = NotificationFrequency.IMMEDIATE
    quiet_hours_start: Optional[timedelta] = DEFAULT_QUIET_START
    quiet_hours_end: Optional[timedelta] = DEFAULT_QUIET_END
    enable_quiet_hours: bool = False
    email_frequency: EmailNotificationFrequency = EmailNotificationFrequency.IMMEDIATE
    batch_interval_minutes: int = Field(default=30, ge=1)
    enable_batching: bool = False
    language: str = Field(default="en-US", max_length=10)
    time_zone: str = Field(default="UTC", max_length=50)
    is_active: bool = True

    @field_validator("quiet_hours_start", "quiet_hours_end")
    @classmethod
    def _within_day(cls, value: Optional[timedelta]) -> Optional[timedelta]:
        if value is not None and not timedelta(0) <= value < timedelta(days=1):
            raise ValueError("quiet hours are offsets within a single day")
        return value


class NotificationSettingCreate(NotificationPreference):
    user_id: uuid.UUID
    notification_type: Optional[NotificationType] = None
    is_default: bool = False
    name: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)


class NotificationSetting(NotificationSettingCreate):
    id: uuid.UUID
    created_at: datetime
    updated_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None


class QuietHours(BaseModel):
    start: Optional[timedelta] = None
    end: Optional[timedelta] = None
    enabled: bool = False


class NotificationSettingsStats(BaseModel):
    total_settings: int = 0
    active_settings: int = 0
    default_settings: int = 0
    quiet_hours_enabled: int = 0
    batching_enabled: int = 0
    type_counts: dict[Optional[NotificationType], int] = Field(default_factory=dict)
    channel_counts: dict[NotificationChannel, int] = Field(default_factory=dict)
    frequency_counts: dict[NotificationFrequency, int] = Field(default_factory=dict)
    last_updated_at: Optional[datetime] = None
