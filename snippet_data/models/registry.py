from snippet_data.db.session import Base
from snippet_data.models.comment import Comment
from snippet_data.models.comment_report import CommentReport
from snippet_data.models.conversation import ConversationParticipant, MessageConversation
from snippet_data.models.draft import MessageDraft, MessageDraftAttachment
from snippet_data.models.message import Message
from snippet_data.models.message_attachment import MessageAttachment
from snippet_data.models.notification import Notification
from snippet_data.models.notification_setting import NotificationSetting
from snippet_data.models.share_access_log import ShareAccessLog
from snippet_data.models.user import User

MODELS = (
    User,
    Comment,
    CommentReport,
    Message,
    MessageAttachment,
    MessageConversation,
    ConversationParticipant,
    MessageDraft,
    MessageDraftAttachment,
    Notification,
    NotificationSetting,
    ShareAccessLog,
)

metadata = Base.metadata


async def create_all(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_all(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
