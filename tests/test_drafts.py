import uuid
from datetime import timedelta
from unittest import mock

from snippet_data.core.errors import EntityNotFound
from snippet_data.models.enums import DraftStatus
from snippet_data.repositories.drafts import MessageDraftRepository
from snippet_data.schemas.drafts import DraftAttachmentCreate, DraftSort, DraftSortSpec, MessageDraftCreate, MessageDraftFilter
from tests.base import SqliteRepositoryTestCase, at


def _file(name: str, size: int) -> DraftAttachmentCreate:
    return DraftAttachmentCreate(
        file_name=f"tmp-{name}",
        original_file_name=name,
        file_size=size,
        content_type="text/plain",
        file_path=f"/drafts/{name}",
    )


class MessageDraftRepositoryTests(SqliteRepositoryTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.repo = MessageDraftRepository(self.connections)
        self.alice = await self.create_user("alice")
        self.bob = await self.create_user("bob")

    async def test_drafts_are_private_to_their_author(self):
        draft = await self.repo.create(MessageDraftCreate(author_id=self.alice, subject="secret"))
        self.assertIsNotNone(await self.repo.get_by_id(draft.id, self.alice))
        self.assertIsNone(await self.repo.get_by_id(draft.id, self.bob))
        self.assertTrue(await self.repo.can_user_access_draft(draft.id, self.alice))
        self.assertFalse(await self.repo.can_user_access_draft(draft.id, self.bob))
        self.assertEqual((await self.repo.get_paged(None, self.bob)).total_count, 0)
        self.assertEqual((await self.repo.get_paged(MessageDraftFilter(author_id=self.alice), self.bob)).total_count, 0)
        self.assertFalse(await self.repo.delete(draft.id, self.bob))
        with self.assertRaises(EntityNotFound):
            await self.repo.update(draft.model_copy(update={"subject": "stolen"}), self.bob)
        self.assertTrue(await self.repo.delete(draft.id, self.alice))

    async def test_create_sets_expiry_and_schedule(self):
        scheduled = await self.repo.create(MessageDraftCreate(author_id=self.alice, scheduled_to_send_at=at(hours=1)))
        self.assertTrue(scheduled.is_scheduled)
        self.assertEqual(scheduled.status, DraftStatus.DRAFT)
        self.assertGreater(scheduled.expires_at, scheduled.created_at + timedelta(days=29))

        due = await self.repo.get_scheduled_drafts_to_send(now=at(hours=2))
        self.assertEqual([item.id for item in due], [scheduled.id])
        self.assertEqual(await self.repo.get_scheduled_drafts_to_send(now=at(0)), [])

        self.assertTrue(await self.repo.cancel_scheduled(scheduled.id, self.alice))
        self.assertFalse(await self.repo.cancel_scheduled(scheduled.id, self.alice))
        self.assertEqual(await self.repo.get_scheduled_drafts_to_send(now=at(hours=2)), [])

    async def test_auto_save_and_send(self):
        draft = await self.repo.create(MessageDraftCreate(author_id=self.alice, subject="v1"))
        self.assertTrue(await self.repo.auto_save(draft.id, self.alice, content="typing..."))
        saved = await self.repo.get_by_id(draft.id, self.alice)
        self.assertEqual((saved.subject, saved.content), ("v1", "typing..."))
        self.assertIsNotNone(saved.last_auto_saved_at)

        self.assertTrue(await self.repo.send_draft(draft.id, self.alice))
        self.assertFalse(await self.repo.send_draft(draft.id, self.alice))
        self.assertFalse(await self.repo.auto_save(draft.id, self.alice, subject="late"))
        self.assertEqual((await self.repo.get_by_id(draft.id, self.alice)).status, DraftStatus.SENT)

    async def test_expiry_window_and_cleanup(self):
        soon = await self.repo.create(MessageDraftCreate(author_id=self.alice, expires_at=at(hours=5)))
        later = await self.repo.create(MessageDraftCreate(author_id=self.alice, expires_at=at(days=10)))
        expiring = await self.repo.get_expiring_drafts(timedelta(days=1), now=at(0))
        self.assertEqual([item.id for item in expiring], [soon.id])

        self.assertEqual(await self.repo.cleanup_expired_drafts(now=at(hours=6)), 1)
        self.assertEqual((await self.repo.get_by_id(soon.id, self.alice)).status, DraftStatus.EXPIRED)
        self.assertEqual((await self.repo.get_by_id(later.id, self.alice)).status, DraftStatus.DRAFT)

        stats = await self.repo.get_user_draft_stats(self.alice)
        self.assertEqual((stats.total_drafts, stats.active_drafts, stats.expired_drafts), (2, 1, 1))

    async def test_paged_search_sort_and_conversation(self):
        conversation_id = uuid.uuid4()
        first = await self.repo.create(MessageDraftCreate(author_id=self.alice, subject="budget plan", conversation_id=conversation_id))
        second = await self.repo.create(MessageDraftCreate(author_id=self.alice, subject="holiday"))
        found = await self.repo.get_paged(MessageDraftFilter(search="BUDGET"), self.alice)
        self.assertEqual([item.id for item in found.items], [first.id])
        oldest = await self.repo.get_paged(None, self.alice, DraftSortSpec(token=DraftSort.CREATED_AT_ASC))
        self.assertEqual([item.id for item in oldest.items], [first.id, second.id])
        drafts = await self.repo.get_conversation_drafts(conversation_id, self.alice)
        self.assertEqual([item.id for item in drafts], [first.id])


class DraftAttachmentRepositoryTests(SqliteRepositoryTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.drafts = MessageDraftRepository(self.connections)
        self.repo = self.drafts.attachments
        self.alice = await self.create_user("alice")
        self.draft = await self.drafts.create(MessageDraftCreate(author_id=self.alice))

    async def test_batch_totals_and_grouping(self):
        other = await self.drafts.create(MessageDraftCreate(author_id=self.alice))
        created = await self.repo.create_batch(self.draft.id, [_file("a.txt", 10), _file("b.txt", 32)])
        await self.repo.create(other.id, _file("c.txt", 1))
        self.assertEqual(len(created), 2)
        self.assertEqual(await self.repo.get_total_size_by_draft_id(self.draft.id), 42)
        self.assertEqual(await self.repo.get_count_by_draft_id(self.draft.id), 2)
        grouped = await self.repo.get_by_draft_ids([self.draft.id, other.id])
        self.assertEqual({key: len(items) for key, items in grouped.items()}, {self.draft.id: 2, other.id: 1})
        loaded = await self.drafts.get_by_id(self.draft.id, self.alice, include_attachments=True)
        self.assertEqual([item.original_file_name for item in loaded.attachments], ["a.txt", "b.txt"])

    async def test_batch_is_atomic(self):
        original = self.repo.insert_row
        calls = []

        async def fail_on_second(conn, values, **kwargs):
            calls.append(values)
            if len(calls) == 2:
                raise RuntimeError("disk full")
            await original(conn, values, **kwargs)

        with mock.patch.object(self.repo, "insert_row", side_effect=fail_on_second):
            with self.assertRaises(RuntimeError):
                await self.repo.create_batch(self.draft.id, [_file("a.txt", 1), _file("b.txt", 2)])
        self.assertEqual(await self.repo.get_count_by_draft_id(self.draft.id), 0)

    async def test_progress_exists_and_delete(self):
        attachment = await self.repo.create(self.draft.id, _file("a.txt", 5))
        self.assertTrue(await self.repo.exists(attachment.id))
        self.assertTrue(await self.repo.update_upload_progress(attachment.id, 60))
        self.assertEqual((await self.repo.get_by_id(attachment.id)).upload_progress, 60)
        self.assertTrue(await self.repo.delete(attachment.id))
        self.assertFalse(await self.repo.exists(attachment.id))
        await self.repo.create(self.draft.id, _file("b.txt", 5))
        self.assertEqual(await self.repo.delete_by_draft_id(self.draft.id), 1)
        self.assertEqual(await self.repo.get_by_draft_id(self.draft.id), [])
