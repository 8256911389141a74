import uuid
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from snippet_data.models.enums import AccessSource, DeviceType
from snippet_data.schemas.common import FilterModel, Range, SortSpec


class ShareAccessLogCreate(BaseModel):
    share_token_id: uuid.UUID
    code_snippet_id: uuid.UUID
    ip_address: str = Field(min_length=1, max_length=45)
    user_agent: Optional[str] = Field(default=None, max_length=500)
    source: AccessSource = AccessSource.DIRECT
    country: Optional[str] = None
    city: Optional[str] = None
    browser: Optional[str] = None
    operating_system: Optional[str] = None
    device_type: DeviceType = DeviceType.DESKTOP
    accessed_at: Optional[datetime] = None
    is_success: bool = True
    failure_reason: Optional[str] = Field(default=None, max_length=500)
    duration: int = Field(default=0, ge=0, le=2**31 - 1)
    session_id: Optional[str] = None
    referer: Optional[str] = Field(default=None, max_length=500)
    accept_language: Optional[str] = None


class ShareAccessLog(ShareAccessLogCreate):
    id: uuid.UUID
    accessed_at: datetime


class ShareAccessLogFilter(FilterModel):
    share_token_id: Optional[uuid.UUID] = None
    code_snippet_id: Optional[uuid.UUID] = None
    ip_address: Optional[str] = None
    is_success: Optional[bool] = None
    source: Optional[AccessSource] = None
    device_type: Optional[DeviceType] = None
    country: Optional[str] = None
    browser: Optional[str] = None
    accessed_at: Optional[Range[datetime]] = None
    search: Optional[str] = None


class AccessLogSort(str, Enum):
    ACCESSED_AT_DESC = "accessed_at_desc"
    ACCESSED_AT_ASC = "accessed_at_asc"
    DURATION_DESC = "duration_desc"
    IP_ADDRESS = "ip_address"


class AccessLogSortSpec(SortSpec):
    token: Optional[AccessLogSort] = None


class BreakdownDimension(str, Enum):
    SOURCE = "source"
    DEVICE_TYPE = "device_type"
    COUNTRY = "country"
    BROWSER = "browser"
    OPERATING_SYSTEM = "operating_system"


class AccessStats(BaseModel):
    share_token_id: uuid.UUID
    total_access_count: int = 0
    success_access_count: int = 0
    failed_access_count: int = 0
    unique_access_count: int = 0
    average_duration: float = 0.0
    first_access_at: Optional[datetime] = None
    last_access_at: Optional[datetime] = None


class DailyAccessStat(BaseModel):
    day: date
    access_count: int = 0
    success_count: int = 0
    unique_visitors: int = 0
    average_duration: float = 0.0


class BreakdownEntry(BaseModel):
    # AccessSource / DeviceType for the enum dimensions, free text otherwise
    value: Any = None
    count: int = 0
