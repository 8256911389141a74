import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from snippet_data.models.enums import AttachmentStatus, AttachmentType
from snippet_data.schemas.common import FilterModel, Range, SortSpec


class MessageAttachment(BaseModel):
    id: uuid.UUID
    message_id: uuid.UUID
    file_name: str
    original_file_name: str
    file_size: int
    content_type: str
    file_extension: Optional[str] = None
    file_path: str
    file_url: Optional[str] = None
    attachment_type: AttachmentType = AttachmentType.OTHER
    attachment_status: AttachmentStatus = AttachmentStatus.ACTIVE
    file_hash: Optional[str] = None
    upload_progress: int = 100
    download_count: int = 0
    uploaded_at: datetime
    last_downloaded_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


class MessageAttachmentCreate(BaseModel):
    file_name: str = Field(min_length=1, max_length=255)
    original_file_name: str = Field(min_length=1, max_length=255)
    file_size: int = Field(ge=0)
    content_type: str
    file_extension: Optional[str] = None
    file_path: str
    file_url: Optional[str] = None
    attachment_type: AttachmentType = AttachmentType.OTHER
    attachment_status: AttachmentStatus = AttachmentStatus.ACTIVE
    file_hash: Optional[str] = None
    upload_progress: int = Field(default=100, ge=0, le=100)


class MessageAttachmentFilter(FilterModel):
    message_id: Optional[uuid.UUID] = None
    message_ids: Optional[list[uuid.UUID]] = None
    attachment_type: Optional[AttachmentType] = None
    attachment_status: Optional[AttachmentStatus] = None
    file_extension: Optional[str] = None
    content_type: Optional[str] = None
    file_size: Optional[Range[int]] = None
    uploaded_at: Optional[Range[datetime]] = None
    uploader_id: Optional[uuid.UUID] = None
    is_deleted: Optional[bool] = False
    search: Optional[str] = None


class AttachmentSort(str, Enum):
    UPLOADED_AT_DESC = "uploaded_at_desc"
    UPLOADED_AT_ASC = "uploaded_at_asc"
    FILE_SIZE_DESC = "file_size_desc"
    FILE_SIZE_ASC = "file_size_asc"
    FILE_NAME = "file_name"
    DOWNLOAD_COUNT_DESC = "download_count_desc"


class AttachmentSortSpec(SortSpec):
    token: Optional[AttachmentSort] = None


class AttachmentStats(BaseModel):
    total_count: int = 0
    total_size: int = 0
    average_size: float = 0.0
    total_downloads: int = 0
    type_counts: dict[AttachmentType, int] = Field(default_factory=dict)
    last_uploaded_at: Optional[datetime] = None
