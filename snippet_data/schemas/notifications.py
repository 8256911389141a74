import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from snippet_data.models.enums import (
    NotificationAction,
    NotificationChannel,
    NotificationPriority,
    NotificationStatus,
    NotificationType,
    RelatedEntityType,
)
from snippet_data.schemas.common import FilterModel, Range, SortSpec


class Notification(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    type: NotificationType
    title: str
    content: Optional[str] = None
    message: Optional[str] = None
    priority: NotificationPriority = NotificationPriority.NORMAL
    status: NotificationStatus = NotificationStatus.PENDING
    related_entity_type: Optional[RelatedEntityType] = None
    related_entity_id: Optional[str] = None
    triggered_by_user_id: Optional[uuid.UUID] = None
    action: Optional[NotificationAction] = None
    channel: NotificationChannel = NotificationChannel.IN_APP
    is_read: bool = False
    read_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    scheduled_to_send_at: Optional[datetime] = None
    send_count: int = 0
    last_sent_at: Optional[datetime] = None
    error_message: Optional[str] = None
    data_json: Optional[str] = None
    tag: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    requires_confirmation: bool = False
    confirmed_at: Optional[datetime] = None
    is_archived: bool = False
    archived_at: Optional[datetime] = None
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None

    user_name: Optional[str] = None
    triggered_by_user_name: Optional[str] = None


class NotificationCreate(BaseModel):
    user_id: uuid.UUID
    type: NotificationType
    title: str = Field(min_length=1, max_length=200)
    content: Optional[str] = None
    message: Optional[str] = Field(default=None, max_length=500)
    priority: NotificationPriority = NotificationPriority.NORMAL
    related_entity_type: Optional[RelatedEntityType] = None
    related_entity_id: Optional[str] = None
    triggered_by_user_id: Optional[uuid.UUID] = None
    action: Optional[NotificationAction] = None
    channel: NotificationChannel = NotificationChannel.IN_APP
    expires_at: Optional[datetime] = None
    scheduled_to_send_at: Optional[datetime] = None
    data: Optional[dict[str, Any]] = None
    tag: Optional[str] = Field(default=None, max_length=50)
    icon: Optional[str] = None
    color: Optional[str] = None
    requires_confirmation: bool = False


class NotificationFilter(FilterModel):
    user_id: Optional[uuid.UUID] = None
    type: Optional[NotificationType] = None
    types: Optional[list[NotificationType]] = None
    priority: Optional[NotificationPriority] = None
    status: Optional[NotificationStatus] = None
    channel: Optional[NotificationChannel] = None
    is_read: Optional[bool] = None
    is_archived: Optional[bool] = None
    is_deleted: Optional[bool] = False
    related_entity_type: Optional[RelatedEntityType] = None
    related_entity_id: Optional[str] = None
    tag: Optional[str] = None
    created_at: Optional[Range[datetime]] = None
    search: Optional[str] = None


class NotificationSort(str, Enum):
    CREATED_AT_DESC = "created_at_desc"
    CREATED_AT_ASC = "created_at_asc"
    PRIORITY_DESC = "priority_desc"
    PRIORITY_ASC = "priority_asc"
    UNREAD_FIRST = "unread_first"
    TYPE = "type"


class NotificationSortSpec(SortSpec):
    token: Optional[NotificationSort] = None


class NotificationStats(BaseModel):
    total_count: int = 0
    unread_count: int = 0
    read_count: int = 0
    failed_count: int = 0
    archived_count: int = 0
    high_priority_count: int = 0
    recent_count: int = 0
    today_count: int = 0
    last_notification_at: Optional[datetime] = None
