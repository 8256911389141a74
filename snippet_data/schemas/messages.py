import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from snippet_data.models.enums import MessagePriority, MessageStatus, MessageType
from snippet_data.schemas.common import FilterModel, Range, SortSpec
from snippet_data.schemas.message_attachments import MessageAttachment
from snippet_data.schemas.users import UserSummary


class Message(BaseModel):
    id: uuid.UUID
    sender_id: uuid.UUID
    receiver_id: uuid.UUID
    subject: str
    content: str
    message_type: MessageType = MessageType.USER
    status: MessageStatus = MessageStatus.SENT
    priority: MessagePriority = MessagePriority.NORMAL
    parent_id: Optional[uuid.UUID] = None
    conversation_id: Optional[uuid.UUID] = None
    is_read: bool = False
    read_at: Optional[datetime] = None
    tag: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    sender: Optional[UserSummary] = None
    receiver: Optional[UserSummary] = None
    attachments: Optional[list[MessageAttachment]] = None
    replies: Optional[list["Message"]] = None


class MessageCreate(BaseModel):
    sender_id: uuid.UUID
    receiver_id: uuid.UUID
    subject: str = Field(min_length=1, max_length=200)
    content: str = Field(min_length=1)
    message_type: MessageType = MessageType.USER
    priority: MessagePriority = MessagePriority.NORMAL
    parent_id: Optional[uuid.UUID] = None
    conversation_id: Optional[uuid.UUID] = None
    tag: Optional[str] = Field(default=None, max_length=50)
    expires_at: Optional[datetime] = None


class MessageFilter(FilterModel):
    sender_id: Optional[uuid.UUID] = None
    receiver_id: Optional[uuid.UUID] = None
    message_type: Optional[MessageType] = None
    status: Optional[MessageStatus] = None
    priority: Optional[MessagePriority] = None
    parent_id: Optional[uuid.UUID] = None
    is_root: Optional[bool] = None
    conversation_id: Optional[uuid.UUID] = None
    tag: Optional[str] = None
    is_read: Optional[bool] = None
    is_deleted: Optional[bool] = False
    created_at: Optional[Range[datetime]] = None
    search: Optional[str] = None


class MessageSort(str, Enum):
    CREATED_AT_DESC = "created_at_desc"
    CREATED_AT_ASC = "created_at_asc"
    PRIORITY_DESC = "priority_desc"
    PRIORITY_ASC = "priority_asc"
    STATUS = "status"
    SUBJECT = "subject"
    MESSAGE_TYPE = "message_type"
    UNREAD_FIRST = "unread_first"
    PRIORITY_AND_UNREAD_FIRST = "priority_and_unread_first"


class MessageSortSpec(SortSpec):
    token: Optional[MessageSort] = None


class MessageIncludes(BaseModel):
    """Related data to load for a page of messages; each is one batched query."""

    sender: bool = False
    receiver: bool = False
    attachments: bool = False
    replies: bool = False

    @classmethod
    def everything(cls) -> "MessageIncludes":
        return cls(sender=True, receiver=True, attachments=True, replies=True)


class MessageStats(BaseModel):
    total_sent: int = 0
    total_received: int = 0
    unread_count: int = 0
    read_count: int = 0
    high_priority_unread: int = 0
    sent_today: int = 0
    received_today: int = 0
    last_message_at: Optional[datetime] = None
