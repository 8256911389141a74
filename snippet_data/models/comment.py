import uuid

from sqlalchemy import Text
from sqlalchemy.orm import Mapped, mapped_column

from snippet_data.db.session import Base
from snippet_data.models.common import GUID, CreatedAtMixin, UUIDMixin


class Comment(Base, UUIDMixin, CreatedAtMixin):
    __tablename__ = "comments"

    content: Mapped[str] = mapped_column(Text, nullable=False)
    snippet_id: Mapped[uuid.UUID | None] = mapped_column(GUID, index=True, nullable=True)
    user_id: Mapped[uuid.UUID | None] = mapped_column(GUID, index=True, nullable=True)
