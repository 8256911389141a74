import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from snippet_data.schemas.common import FilterModel, Range, SortSpec


class ConversationParticipant(BaseModel):
    id: uuid.UUID
    conversation_id: uuid.UUID
    participant_id: uuid.UUID
    joined_at: datetime
    left_at: Optional[datetime] = None
    is_active: bool = True


class Conversation(BaseModel):
    id: uuid.UUID
    title: str
    description: Optional[str] = None
    creator_id: uuid.UUID
    created_at: datetime
    updated_at: Optional[datetime] = None
    last_message_id: Optional[uuid.UUID] = None
    last_message_time: Optional[datetime] = None
    is_deleted: bool = False
    participant_count: int = 0

    participants: Optional[list[ConversationParticipant]] = None


class ConversationCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=500)
    creator_id: uuid.UUID
    participant_ids: list[uuid.UUID] = Field(default_factory=list)


class ConversationFilter(FilterModel):
    participant_id: Optional[uuid.UUID] = None
    creator_id: Optional[uuid.UUID] = None
    created_at: Optional[Range[datetime]] = None
    has_unread_for: Optional[uuid.UUID] = None
    is_deleted: Optional[bool] = False
    search: Optional[str] = None


class ConversationSort(str, Enum):
    LAST_MESSAGE_DESC = "last_message_desc"
    LAST_MESSAGE_ASC = "last_message_asc"
    CREATED_AT_DESC = "created_at_desc"
    CREATED_AT_ASC = "created_at_asc"


class ConversationSortSpec(SortSpec):
    token: Optional[ConversationSort] = None
