import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from snippet_data.models.enums import UserRole


class UserSummary(BaseModel):
    id: uuid.UUID
    username: str
    email: Optional[str] = None
    role: UserRole = UserRole.VIEWER
    is_active: bool = True
    created_at: Optional[datetime] = None


class CommentSummary(BaseModel):
    id: uuid.UUID
    content: str
    snippet_id: Optional[uuid.UUID] = None
    user_id: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None
