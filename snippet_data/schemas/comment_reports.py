import uuid
from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from snippet_data.models.enums import ReportReason, ReportStatus
from snippet_data.schemas.common import FilterModel, Range, SortSpec
from snippet_data.schemas.users import CommentSummary, UserSummary


class CommentReport(BaseModel):
    id: uuid.UUID
    comment_id: uuid.UUID
    user_id: uuid.UUID
    reason: ReportReason
    description: Optional[str] = None
    status: ReportStatus = ReportStatus.PENDING
    created_at: datetime
    handled_at: Optional[datetime] = None
    handled_by: Optional[uuid.UUID] = None
    resolution: Optional[str] = None

    user: Optional[UserSummary] = None
    comment: Optional[CommentSummary] = None
    handler: Optional[UserSummary] = None


class CommentReportCreate(BaseModel):
    comment_id: uuid.UUID
    user_id: uuid.UUID
    reason: ReportReason
    description: Optional[str] = Field(default=None, max_length=500)


class CommentReportFilter(FilterModel):
    status: Optional[ReportStatus] = None
    reason: Optional[ReportReason] = None
    comment_id: Optional[uuid.UUID] = None
    user_id: Optional[uuid.UUID] = None
    handled_by: Optional[uuid.UUID] = None
    created_at: Optional[Range[datetime]] = None
    search: Optional[str] = None
    high_priority_only: Optional[bool] = None


class ReportSort(str, Enum):
    CREATED_AT_DESC = "created_at_desc"
    CREATED_AT_ASC = "created_at_asc"
    REASON = "reason"
    STATUS = "status"


class ReportSortSpec(SortSpec):
    token: Optional[ReportSort] = None


class ReportStats(BaseModel):
    total_reports: int = 0
    pending_reports: int = 0
    resolved_reports: int = 0
    rejected_reports: int = 0
    under_investigation_reports: int = 0
    reports_this_week: int = 0
    reports_this_month: int = 0
    last_report_time: Optional[datetime] = None
    reason_counts: dict[ReportReason, int] = Field(default_factory=dict)
    average_resolution_hours: Optional[float] = None


class DailyReportStat(BaseModel):
    day: date
    total: int = 0
    pending: int = 0
    resolved: int = 0
    rejected: int = 0


class ReportedComment(BaseModel):
    comment_id: uuid.UUID
    report_count: int


class ReportExportRow(BaseModel):
    id: uuid.UUID
    comment_id: uuid.UUID
    comment_content: Optional[str] = None
    user_id: uuid.UUID
    reporter_name: Optional[str] = None
    reason: ReportReason
    status: ReportStatus
    description: Optional[str] = None
    created_at: datetime
    handled_at: Optional[datetime] = None
    handler_name: Optional[str] = None
    resolution: Optional[str] = None
    resolution_time_hours: Optional[float] = None
