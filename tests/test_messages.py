import uuid
from unittest import mock

from snippet_data.models.enums import AttachmentType, MessagePriority, MessageStatus
from snippet_data.repositories.messages import MessageRepository
from snippet_data.schemas.common import PageRequest
from snippet_data.schemas.message_attachments import MessageAttachmentCreate
from snippet_data.schemas.messages import (
    Message,
    MessageCreate,
    MessageFilter,
    MessageIncludes,
    MessageSort,
    MessageSortSpec,
)
from tests.base import SqliteRepositoryTestCase, at


def _attachment(name: str, size: int = 10) -> MessageAttachmentCreate:
    return MessageAttachmentCreate(
        file_name=f"{uuid.uuid4().hex}-{name}",
        original_file_name=name,
        file_size=size,
        content_type="text/plain",
        file_extension=".txt",
        file_path=f"/uploads/{name}",
        attachment_type=AttachmentType.DOCUMENT,
    )


class MessageRepositoryTests(SqliteRepositoryTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.repo = MessageRepository(self.connections)
        self.alice = await self.create_user("alice")
        self.bob = await self.create_user("bob")

    async def seed(self, *, sender=None, receiver=None, created_at=None, **extra) -> Message:
        message = Message(
            id=uuid.uuid4(),
            sender_id=sender or self.alice,
            receiver_id=receiver or self.bob,
            subject=extra.pop("subject", "hello"),
            content=extra.pop("content", "body"),
            created_at=created_at or at(0),
            **extra,
        )
        async with self.connections.transaction() as conn:
            await self.repo.insert_row(conn, self.repo.entity_values(message))
        return message

    async def test_deleted_messages_are_hidden_by_default(self):
        kept = await self.seed()
        gone = await self.seed(created_at=at(1))
        self.assertTrue(await self.repo.delete(gone.id))
        result = await self.repo.get_paged()
        self.assertEqual([item.id for item in result.items], [kept.id])
        deleted = await self.repo.get_paged(MessageFilter(is_deleted=True))
        self.assertEqual([item.id for item in deleted.items], [gone.id])
        self.assertEqual(deleted.items[0].status, MessageStatus.DELETED)
        self.assertTrue(await self.repo.restore(gone.id))
        self.assertEqual((await self.repo.get_paged()).total_count, 2)

    async def test_unread_first_then_priority(self):
        read_urgent = await self.seed(priority=MessagePriority.URGENT, is_read=True, created_at=at(1))
        unread_low = await self.seed(priority=MessagePriority.LOW, created_at=at(2))
        unread_high = await self.seed(priority=MessagePriority.HIGH, created_at=at(3))
        result = await self.repo.get_paged(sort=MessageSortSpec(token=MessageSort.PRIORITY_AND_UNREAD_FIRST))
        self.assertEqual([item.id for item in result.items], [unread_high.id, unread_low.id, read_urgent.id])

    async def test_includes_load_related_data_in_batches(self):
        parent = await self.seed(subject="parent")
        await self.seed(subject="reply one", parent_id=parent.id, sender=self.bob, receiver=self.alice, created_at=at(1))
        await self.seed(subject="reply two", parent_id=parent.id, sender=self.bob, receiver=self.alice, created_at=at(2))
        with_files = await self.repo.create_with_attachments(
            MessageCreate(sender_id=self.alice, receiver_id=self.bob, subject="files", content="see attached"),
            [_attachment("a.txt"), _attachment("b.txt")],
        )

        with mock.patch.object(self.repo.mapper, "load_related", wraps=self.repo.mapper.load_related) as loader:
            result = await self.repo.get_paged(
                MessageFilter(is_root=True),
                page=PageRequest(page=1, page_size=10),
                includes=MessageIncludes.everything(),
            )
        self.assertEqual(loader.await_count, 4)

        by_id = {item.id: item for item in result.items}
        self.assertEqual(set(by_id), {parent.id, with_files.id})
        self.assertEqual([reply.subject for reply in by_id[parent.id].replies], ["reply one", "reply two"])
        self.assertEqual(by_id[parent.id].attachments, [])
        self.assertEqual(sorted(a.original_file_name for a in by_id[with_files.id].attachments), ["a.txt", "b.txt"])
        self.assertEqual(by_id[parent.id].sender.username, "alice")
        self.assertEqual(by_id[parent.id].receiver.username, "bob")

    async def test_with_users_joins_sender_and_receiver(self):
        message = await self.seed()
        loaded = await self.repo.get_by_id_with_users(message.id)
        self.assertEqual((loaded.sender.username, loaded.receiver.username), ("alice", "bob"))
        self.assertIsNone(await self.repo.get_by_id_with_users(uuid.uuid4()))

    async def test_create_with_attachments_rolls_back_on_failure(self):
        original = self.repo.attachments.insert_many

        async def insert_then_fail(conn, rows):
            await original(conn, rows)
            raise RuntimeError("storage unavailable")

        with mock.patch.object(self.repo.attachments, "insert_many", side_effect=insert_then_fail):
            with self.assertRaises(RuntimeError):
                await self.repo.create_with_attachments(
                    MessageCreate(sender_id=self.alice, receiver_id=self.bob, subject="s", content="c"),
                    [_attachment("x.txt")],
                )
        self.assertEqual(await self.repo.get_message_count(MessageFilter(is_deleted=None)), 0)
        stats = await self.repo.attachments.get_attachment_stats()
        self.assertEqual(stats.total_count, 0)

    async def test_read_state(self):
        first = await self.seed()
        second = await self.seed(created_at=at(1))
        conversation_id = uuid.uuid4()
        third = await self.seed(created_at=at(2), conversation_id=conversation_id)
        self.assertEqual(await self.repo.get_unread_count(self.bob), 3)

        self.assertFalse(await self.repo.mark_as_read(first.id, self.alice))
        self.assertTrue(await self.repo.mark_as_read(first.id, self.bob))
        self.assertFalse(await self.repo.mark_as_read(first.id, self.bob))
        loaded = await self.repo.get_by_id(first.id)
        self.assertTrue(loaded.is_read)
        self.assertEqual(loaded.status, MessageStatus.READ)

        self.assertEqual(await self.repo.mark_multiple_as_read([first.id, second.id], self.bob), 1)
        self.assertEqual(await self.repo.mark_conversation_as_read(conversation_id, self.bob), 1)
        self.assertEqual(await self.repo.get_unread_count(self.bob), 0)
        self.assertTrue((await self.repo.get_by_id(third.id)).is_read)

    async def test_sent_received_and_unread_views(self):
        await self.seed()
        await self.seed(sender=self.bob, receiver=self.alice, created_at=at(1))
        await self.seed(sender=self.bob, receiver=self.alice, created_at=at(2), is_read=True)
        self.assertEqual((await self.repo.get_sent_messages(self.alice)).total_count, 1)
        self.assertEqual((await self.repo.get_received_messages(self.alice)).total_count, 2)
        self.assertEqual((await self.repo.get_unread_messages(self.alice)).total_count, 1)

    async def test_search_and_count(self):
        await self.seed(subject="Quarterly report")
        await self.seed(content="the report is attached", created_at=at(1))
        await self.seed(subject="lunch", created_at=at(2))
        self.assertEqual(await self.repo.get_message_count(MessageFilter(search="report")), 2)
        self.assertEqual(await self.repo.get_message_count(), 3)

    async def test_user_stats(self):
        await self.seed(priority=MessagePriority.URGENT)
        await self.seed(created_at=at(1), is_read=True)
        await self.seed(sender=self.bob, receiver=self.alice, created_at=at(days=-3))
        stats = await self.repo.get_user_message_stats(self.bob, now=at(hours=1))
        self.assertEqual(stats.total_received, 2)
        self.assertEqual(stats.total_sent, 1)
        self.assertEqual(stats.unread_count, 1)
        self.assertEqual(stats.read_count, 1)
        self.assertEqual(stats.high_priority_unread, 1)
        self.assertEqual(stats.received_today, 2)
        self.assertEqual(stats.sent_today, 0)
        self.assertEqual(stats.last_message_at, at(1))

    async def test_bulk_soft_delete_only_touches_own_messages(self):
        mine = await self.seed()
        carol = await self.create_user("carol")
        other = await self.seed(sender=carol, receiver=carol, created_at=at(1))
        affected = await self.repo.bulk_soft_delete([mine.id, other.id], self.bob)
        self.assertEqual(affected, 1)
        self.assertIsNotNone((await self.repo.get_by_id(mine.id)).deleted_at)
        self.assertIsNone((await self.repo.get_by_id(other.id)).deleted_at)

    async def test_update_and_hard_delete(self):
        message = await self.seed()
        updated = await self.repo.update(message.model_copy(update={"subject": "edited", "tag": "work"}))
        self.assertEqual((await self.repo.get_by_id(message.id)).subject, "edited")
        self.assertIsNotNone(updated.updated_at)
        self.assertTrue(await self.repo.hard_delete(message.id))
        self.assertIsNone(await self.repo.get_by_id(message.id))
        self.assertFalse(await self.repo.update_status(message.id, MessageStatus.FAILED))
