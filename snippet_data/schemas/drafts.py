import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from snippet_data.models.enums import AttachmentType, DraftStatus, MessagePriority, MessageType
from snippet_data.schemas.common import FilterModel, Range, SortSpec


class DraftAttachment(BaseModel):
    id: uuid.UUID
    draft_id: uuid.UUID
    file_name: str
    original_file_name: str
    file_size: int
    content_type: str
    file_path: str
    attachment_type: AttachmentType = AttachmentType.OTHER
    upload_progress: int = 0
    created_at: datetime


class DraftAttachmentCreate(BaseModel):
    file_name: str = Field(min_length=1, max_length=255)
    original_file_name: str = Field(min_length=1, max_length=255)
    file_size: int = Field(ge=0)
    content_type: str
    file_path: str
    attachment_type: AttachmentType = AttachmentType.OTHER
    upload_progress: int = Field(default=0, ge=0, le=100)


class MessageDraft(BaseModel):
    id: uuid.UUID
    author_id: uuid.UUID
    receiver_id: Optional[uuid.UUID] = None
    subject: Optional[str] = None
    content: Optional[str] = None
    message_type: MessageType = MessageType.USER
    priority: MessagePriority = MessagePriority.NORMAL
    parent_id: Optional[uuid.UUID] = None
    conversation_id: Optional[uuid.UUID] = None
    tag: Optional[str] = None
    status: DraftStatus = DraftStatus.DRAFT
    created_at: datetime
    updated_at: Optional[datetime] = None
    last_auto_saved_at: Optional[datetime] = None
    scheduled_to_send_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_scheduled: bool = False
    auto_save_interval: int = 30
    notes: Optional[str] = None

    attachments: Optional[list[DraftAttachment]] = None


class MessageDraftCreate(BaseModel):
    author_id: uuid.UUID
    receiver_id: Optional[uuid.UUID] = None
    subject: Optional[str] = Field(default=None, max_length=200)
    content: Optional[str] = None
    message_type: MessageType = MessageType.USER
    priority: MessagePriority = MessagePriority.NORMAL
    parent_id: Optional[uuid.UUID] = None
    conversation_id: Optional[uuid.UUID] = None
    tag: Optional[str] = Field(default=None, max_length=50)
    scheduled_to_send_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    auto_save_interval: int = Field(default=30, ge=5)
    notes: Optional[str] = Field(default=None, max_length=500)


class MessageDraftFilter(FilterModel):
    author_id: Optional[uuid.UUID] = None
    receiver_id: Optional[uuid.UUID] = None
    conversation_id: Optional[uuid.UUID] = None
    status: Optional[DraftStatus] = None
    is_scheduled: Optional[bool] = None
    created_at: Optional[Range[datetime]] = None
    updated_at: Optional[Range[datetime]] = None
    search: Optional[str] = None


class DraftSort(str, Enum):
    UPDATED_AT_DESC = "updated_at_desc"
    UPDATED_AT_ASC = "updated_at_asc"
    CREATED_AT_DESC = "created_at_desc"
    CREATED_AT_ASC = "created_at_asc"
    SCHEDULED_TO_SEND_AT = "scheduled_to_send_at"


class DraftSortSpec(SortSpec):
    token: Optional[DraftSort] = None


class DraftStats(BaseModel):
    total_drafts: int = 0
    active_drafts: int = 0
    scheduled_drafts: int = 0
    sent_drafts: int = 0
    cancelled_drafts: int = 0
    expired_drafts: int = 0
    last_updated_at: Optional[datetime] = None
