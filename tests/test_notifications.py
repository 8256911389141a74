import json
import uuid
from unittest import mock

from snippet_data.models.enums import NotificationPriority, NotificationStatus, NotificationType
from snippet_data.repositories.notifications import NotificationRepository
from snippet_data.schemas.notifications import (
    Notification,
    NotificationCreate,
    NotificationFilter,
    NotificationSort,
    NotificationSortSpec,
)
from tests.base import SqliteRepositoryTestCase, at


class NotificationRepositoryTests(SqliteRepositoryTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.repo = NotificationRepository(self.connections)
        self.alice = await self.create_user("alice")
        self.bob = await self.create_user("bob")

    async def seed(self, *, user=None, created_at=None, **extra) -> Notification:
        notification = Notification(
            id=uuid.uuid4(),
            user_id=user or self.alice,
            type=extra.pop("type", NotificationType.COMMENT),
            title=extra.pop("title", "New comment"),
            created_at=created_at or at(0),
            **extra,
        )
        async with self.connections.transaction() as conn:
            await self.repo.insert_row(conn, self.repo.entity_values(notification))
        return notification

    async def test_create_joins_user_names(self):
        created = await self.repo.create(
            NotificationCreate(
                user_id=self.alice,
                type=NotificationType.MENTION,
                title="You were mentioned",
                triggered_by_user_id=self.bob,
                data={"snippet": "abc"},
            )
        )
        self.assertEqual(created.status, NotificationStatus.PENDING)
        loaded = await self.repo.get_by_id(created.id)
        self.assertEqual((loaded.user_name, loaded.triggered_by_user_name), ("alice", "bob"))
        self.assertEqual(json.loads(loaded.data_json), {"snippet": "abc"})

    async def test_filters_and_sorting(self):
        low = await self.seed(priority=NotificationPriority.LOW, type=NotificationType.LIKE, created_at=at(1))
        urgent = await self.seed(priority=NotificationPriority.URGENT, type=NotificationType.SECURITY, created_at=at(2))
        read = await self.seed(is_read=True, type=NotificationType.REPLY, title="Reply to thread", created_at=at(3))
        await self.seed(user=self.bob)

        newest = await self.repo.get_paged(NotificationFilter(user_id=self.alice))
        self.assertEqual([item.id for item in newest.items], [read.id, urgent.id, low.id])

        by_priority = await self.repo.get_paged(
            NotificationFilter(user_id=self.alice), NotificationSortSpec(token=NotificationSort.PRIORITY_DESC)
        )
        self.assertEqual(by_priority.items[0].id, urgent.id)

        unread_first = await self.repo.get_paged(
            NotificationFilter(user_id=self.alice), NotificationSortSpec(token=NotificationSort.UNREAD_FIRST)
        )
        self.assertEqual(unread_first.items[-1].id, read.id)

        typed = await self.repo.get_paged(NotificationFilter(types=[NotificationType.LIKE, NotificationType.REPLY]))
        self.assertEqual({item.id for item in typed.items}, {low.id, read.id})

        found = await self.repo.get_paged(NotificationFilter(search="thread"))
        self.assertEqual([item.id for item in found.items], [read.id])

    async def test_read_state_transitions(self):
        first = await self.seed()
        second = await self.seed(created_at=at(1))
        other = await self.seed(user=self.bob)
        self.assertEqual(await self.repo.get_unread_count(self.alice), 2)

        self.assertTrue(await self.repo.mark_as_read(first.id))
        self.assertFalse(await self.repo.mark_as_read(first.id))
        self.assertEqual((await self.repo.get_by_id(first.id)).status, NotificationStatus.READ)
        self.assertTrue(await self.repo.mark_as_unread(first.id))
        self.assertIsNone((await self.repo.get_by_id(first.id)).read_at)

        self.assertEqual(await self.repo.batch_mark_as_read([first.id, second.id, other.id], self.alice), 2)
        self.assertEqual(await self.repo.get_unread_count(self.alice), 0)
        self.assertEqual(await self.repo.get_unread_count(self.bob), 1)

    async def test_archive_confirm_and_status(self):
        plain = await self.seed()
        confirmable = await self.seed(requires_confirmation=True)
        self.assertTrue(await self.repo.archive(plain.id))
        self.assertTrue((await self.repo.get_by_id(plain.id)).is_archived)
        self.assertTrue(await self.repo.unarchive(plain.id))
        self.assertEqual((await self.repo.get_by_id(plain.id)).status, NotificationStatus.UNREAD)
        self.assertFalse(await self.repo.unarchive(plain.id))

        self.assertFalse(await self.repo.confirm(plain.id))
        self.assertTrue(await self.repo.confirm(confirmable.id))
        self.assertFalse(await self.repo.confirm(confirmable.id))

        self.assertTrue(await self.repo.update_status(plain.id, NotificationStatus.SENT))
        sent = await self.repo.get_by_id(plain.id)
        self.assertEqual((sent.status, sent.send_count), (NotificationStatus.SENT, 1))
        self.assertIsNotNone(sent.last_sent_at)

    async def test_soft_and_batch_delete(self):
        first = await self.seed()
        second = await self.seed(created_at=at(1))
        third = await self.seed(created_at=at(2))
        self.assertTrue(await self.repo.soft_delete(first.id))
        self.assertFalse(await self.repo.soft_delete(first.id))
        self.assertEqual(await self.repo.batch_delete([first.id, second.id]), 1)

        visible = await self.repo.get_paged()
        self.assertEqual([item.id for item in visible.items], [third.id])
        deleted = await self.repo.get_paged(NotificationFilter(is_deleted=True))
        self.assertEqual(deleted.total_count, 2)

        self.assertTrue(await self.repo.delete(third.id))
        self.assertIsNone(await self.repo.get_by_id(third.id))

    async def test_stats_and_counts(self):
        await self.seed(created_at=at(0), priority=NotificationPriority.HIGH)
        await self.seed(created_at=at(days=-10), is_read=True, type=NotificationType.SYSTEM)
        await self.seed(status=NotificationStatus.FAILED, type=NotificationType.SYSTEM, created_at=at(hours=-1))
        await self.seed(user=self.bob)

        stats = await self.repo.get_stats(self.alice, now=at(hours=1))
        self.assertEqual(stats.total_count, 3)
        self.assertEqual((stats.unread_count, stats.read_count), (2, 1))
        self.assertEqual((stats.failed_count, stats.high_priority_count), (1, 1))
        self.assertEqual((stats.recent_count, stats.today_count), (2, 2))
        self.assertEqual(stats.last_notification_at, at(0))

        self.assertEqual((await self.repo.get_stats()).total_count, 4)

        by_type = await self.repo.get_count_by_all_types(self.alice)
        self.assertEqual(by_type[NotificationType.SYSTEM], 2)
        self.assertEqual(by_type[NotificationType.FOLLOW], 0)
        by_status = await self.repo.get_count_by_all_statuses()
        self.assertEqual(by_status[NotificationStatus.PENDING], 3)
        self.assertEqual(len(by_status), len(NotificationStatus))

    async def test_pending_and_expiry(self):
        due = await self.seed(created_at=at(0))
        await self.seed(created_at=at(1), scheduled_to_send_at=at(hours=5))
        await self.seed(created_at=at(2), status=NotificationStatus.SENT)
        pending = await self.repo.get_pending_to_send(10, now=at(hours=1))
        self.assertEqual([item.id for item in pending], [due.id])

        stale = await self.seed(expires_at=at(hours=-1))
        await self.seed(expires_at=at(days=1))
        expired = await self.repo.get_expired(at(0))
        self.assertEqual([item.id for item in expired], [stale.id])
        self.assertEqual(await self.repo.clean_expired(at(0)), 1)
        self.assertEqual(await self.repo.get_expired(at(0)), [])
        self.assertTrue((await self.repo.get_by_id(stale.id)).is_deleted)

    async def test_bulk_create_is_atomic(self):
        payloads = [
            NotificationCreate(user_id=self.alice, type=NotificationType.SYSTEM, title=f"notice {index}")
            for index in range(3)
        ]
        created = await self.repo.bulk_create(payloads)
        self.assertEqual(len(created), 3)

        original = self.repo.insert_row
        calls = []

        async def fail_on_third(conn, values, **kwargs):
            calls.append(values)
            if len(calls) == 3:
                raise RuntimeError("constraint")
            await original(conn, values, **kwargs)

        with mock.patch.object(self.repo, "insert_row", side_effect=fail_on_third):
            with self.assertRaises(RuntimeError):
                await self.repo.bulk_create(payloads)
        self.assertEqual((await self.repo.get_stats(self.alice)).total_count, 3)
