"""init
Revision ID: 0001_init
Revises:
Create Date: 2026-03-01
"""

from alembic import op
import sqlalchemy as sa

from snippet_data.models.common import GUID, Duration, UTCDateTime

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None

TRUE = sa.true()
FALSE = sa.false()


def _id():
    return sa.Column("id", GUID, primary_key=True)


def _timestamps():
    return [
        sa.Column("created_at", UTCDateTime, nullable=False),
        sa.Column("updated_at", UTCDateTime, nullable=True),
    ]


def _index(table, *columns):
    for column in columns:
        op.create_index(f"ix_{table}_{column}", table, [column])


def upgrade():
    op.create_table(
        "users",
        _id(),
        *_timestamps(),
        sa.Column("username", sa.String(length=50), nullable=False, unique=True),
        sa.Column("email", sa.String(length=100), nullable=False, unique=True),
        sa.Column("role", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=TRUE),
    )
    _index("users", "created_at")

    op.create_table(
        "comments",
        _id(),
        sa.Column("created_at", UTCDateTime, nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("snippet_id", GUID, nullable=True),
        sa.Column("user_id", GUID, nullable=True),
    )
    _index("comments", "created_at", "snippet_id", "user_id")

    op.create_table(
        "comment_reports",
        _id(),
        sa.Column("created_at", UTCDateTime, nullable=False),
        sa.Column("comment_id", GUID, nullable=False),
        sa.Column("user_id", GUID, nullable=False),
        sa.Column("reason", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("status", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("handled_at", UTCDateTime, nullable=True),
        sa.Column("handled_by", GUID, nullable=True),
        sa.Column("resolution", sa.Text(), nullable=True),
    )
    _index("comment_reports", "created_at", "comment_id", "user_id", "status", "handled_by")

    op.create_table(
        "messages",
        _id(),
        *_timestamps(),
        sa.Column("sender_id", GUID, nullable=False),
        sa.Column("receiver_id", GUID, nullable=False),
        sa.Column("subject", sa.String(length=200), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("message_type", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("parent_id", GUID, nullable=True),
        sa.Column("conversation_id", GUID, nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=FALSE),
        sa.Column("read_at", UTCDateTime, nullable=True),
        sa.Column("tag", sa.String(length=50), nullable=True),
        sa.Column("deleted_at", UTCDateTime, nullable=True),
        sa.Column("expires_at", UTCDateTime, nullable=True),
    )
    _index("messages", "created_at", "sender_id", "receiver_id", "status", "parent_id", "conversation_id", "is_read")

    op.create_table(
        "message_attachments",
        _id(),
        sa.Column("message_id", GUID, sa.ForeignKey("messages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("original_file_name", sa.String(length=255), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("content_type", sa.String(length=100), nullable=False),
        sa.Column("file_extension", sa.String(length=20), nullable=True),
        sa.Column("file_path", sa.String(length=500), nullable=False),
        sa.Column("file_url", sa.String(length=500), nullable=True),
        sa.Column("attachment_type", sa.Integer(), nullable=False, server_default="99"),
        sa.Column("attachment_status", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("file_hash", sa.String(length=64), nullable=True),
        sa.Column("upload_progress", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("download_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("uploaded_at", UTCDateTime, nullable=False),
        sa.Column("last_downloaded_at", UTCDateTime, nullable=True),
        sa.Column("deleted_at", UTCDateTime, nullable=True),
    )
    _index("message_attachments", "message_id", "file_hash", "uploaded_at")

    op.create_table(
        "message_conversations",
        _id(),
        *_timestamps(),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("creator_id", GUID, nullable=False),
        sa.Column("last_message_id", GUID, nullable=True),
        sa.Column("last_message_time", UTCDateTime, nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=FALSE),
        sa.Column("participant_count", sa.Integer(), nullable=False, server_default="0"),
    )
    _index("message_conversations", "created_at", "creator_id")

    op.create_table(
        "message_conversation_participants",
        _id(),
        sa.Column(
            "conversation_id",
            GUID,
            sa.ForeignKey("message_conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("participant_id", GUID, nullable=False),
        sa.Column("joined_at", UTCDateTime, nullable=False),
        sa.Column("left_at", UTCDateTime, nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=TRUE),
        sa.UniqueConstraint("conversation_id", "participant_id", name="uq_conversation_participant"),
    )
    _index("message_conversation_participants", "conversation_id", "participant_id")

    op.create_table(
        "message_drafts",
        _id(),
        *_timestamps(),
        sa.Column("author_id", GUID, nullable=False),
        sa.Column("receiver_id", GUID, nullable=True),
        sa.Column("subject", sa.String(length=200), nullable=True),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("message_type", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("parent_id", GUID, nullable=True),
        sa.Column("conversation_id", GUID, nullable=True),
        sa.Column("tag", sa.String(length=50), nullable=True),
        sa.Column("status", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_auto_saved_at", UTCDateTime, nullable=True),
        sa.Column("scheduled_to_send_at", UTCDateTime, nullable=True),
        sa.Column("expires_at", UTCDateTime, nullable=True),
        sa.Column("is_scheduled", sa.Boolean(), nullable=False, server_default=FALSE),
        sa.Column("auto_save_interval", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("notes", sa.String(length=500), nullable=True),
    )
    _index("message_drafts", "created_at", "author_id", "conversation_id", "status")

    op.create_table(
        "message_draft_attachments",
        _id(),
        sa.Column("draft_id", GUID, sa.ForeignKey("message_drafts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("original_file_name", sa.String(length=255), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("content_type", sa.String(length=100), nullable=False),
        sa.Column("file_path", sa.String(length=500), nullable=False),
        sa.Column("attachment_type", sa.Integer(), nullable=False, server_default="99"),
        sa.Column("upload_progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", UTCDateTime, nullable=False),
    )
    _index("message_draft_attachments", "draft_id")

    op.create_table(
        "notifications",
        _id(),
        *_timestamps(),
        sa.Column("user_id", GUID, nullable=False),
        sa.Column("type", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("message", sa.String(length=500), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("related_entity_type", sa.Integer(), nullable=True),
        sa.Column("related_entity_id", sa.String(length=100), nullable=True),
        sa.Column("triggered_by_user_id", GUID, nullable=True),
        sa.Column("action", sa.Integer(), nullable=True),
        sa.Column("channel", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=FALSE),
        sa.Column("read_at", UTCDateTime, nullable=True),
        sa.Column("delivered_at", UTCDateTime, nullable=True),
        sa.Column("expires_at", UTCDateTime, nullable=True),
        sa.Column("scheduled_to_send_at", UTCDateTime, nullable=True),
        sa.Column("send_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_sent_at", UTCDateTime, nullable=True),
        sa.Column("error_message", sa.String(length=500), nullable=True),
        sa.Column("data_json", sa.Text(), nullable=True),
        sa.Column("tag", sa.String(length=50), nullable=True),
        sa.Column("icon", sa.String(length=100), nullable=True),
        sa.Column("color", sa.String(length=20), nullable=True),
        sa.Column("requires_confirmation", sa.Boolean(), nullable=False, server_default=FALSE),
        sa.Column("confirmed_at", UTCDateTime, nullable=True),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=FALSE),
        sa.Column("archived_at", UTCDateTime, nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=FALSE),
        sa.Column("deleted_at", UTCDateTime, nullable=True),
    )
    _index("notifications", "created_at", "user_id", "type", "status", "is_read")

    op.create_table(
        "notification_settings",
        _id(),
        *_timestamps(),
        sa.Column("user_id", GUID, nullable=False),
        sa.Column("notification_type", sa.Integer(), nullable=True),
        sa.Column("enable_in_app", sa.Boolean(), nullable=False, server_default=TRUE),
        sa.Column("enable_email", sa.Boolean(), nullable=False, server_default=TRUE),
        sa.Column("enable_push", sa.Boolean(), nullable=False, server_default=TRUE),
        sa.Column("enable_desktop", sa.Boolean(), nullable=False, server_default=TRUE),
        sa.Column("enable_sound", sa.Boolean(), nullable=False, server_default=TRUE),
        sa.Column("frequency", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quiet_hours_start", Duration, nullable=True),
        sa.Column("quiet_hours_end", Duration, nullable=True),
        sa.Column("enable_quiet_hours", sa.Boolean(), nullable=False, server_default=FALSE),
        sa.Column("email_frequency", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("batch_interval_minutes", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("enable_batching", sa.Boolean(), nullable=False, server_default=FALSE),
        sa.Column("language", sa.String(length=10), nullable=False, server_default="en-US"),
        sa.Column("time_zone", sa.String(length=50), nullable=False, server_default="UTC"),
        sa.Column("last_used_at", UTCDateTime, nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=FALSE),
        sa.Column("name", sa.String(length=100), nullable=True),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=TRUE),
    )
    _index("notification_settings", "created_at", "user_id")

    op.create_table(
        "share_access_logs",
        _id(),
        sa.Column("share_token_id", GUID, nullable=False),
        sa.Column("code_snippet_id", GUID, nullable=False),
        sa.Column("ip_address", sa.String(length=45), nullable=False),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("source", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("country", sa.String(length=100), nullable=True),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column("browser", sa.String(length=100), nullable=True),
        sa.Column("operating_system", sa.String(length=100), nullable=True),
        sa.Column("device_type", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("accessed_at", UTCDateTime, nullable=False),
        sa.Column("is_success", sa.Boolean(), nullable=False, server_default=TRUE),
        sa.Column("failure_reason", sa.String(length=500), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("session_id", sa.String(length=100), nullable=True),
        sa.Column("referer", sa.String(length=500), nullable=True),
        sa.Column("accept_language", sa.String(length=100), nullable=True),
    )
    _index("share_access_logs", "share_token_id", "code_snippet_id", "accessed_at")


def downgrade():
    for table in (
        "share_access_logs",
        "notification_settings",
        "notifications",
        "message_draft_attachments",
        "message_drafts",
        "message_conversation_participants",
        "message_conversations",
        "message_attachments",
        "messages",
        "comment_reports",
        "comments",
        "users",
    ):
        op.drop_table(table)
