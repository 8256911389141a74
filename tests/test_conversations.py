import uuid
from unittest import mock

from snippet_data.core.errors import EntityNotFound
from snippet_data.repositories.conversations import MessageConversationRepository
from snippet_data.repositories.messages import MessageRepository
from snippet_data.schemas.conversations import ConversationCreate, ConversationFilter, ConversationSort, ConversationSortSpec
from snippet_data.schemas.messages import MessageCreate
from tests.base import SqliteRepositoryTestCase, at


class ConversationRepositoryTests(SqliteRepositoryTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.repo = MessageConversationRepository(self.connections)
        self.messages = MessageRepository(self.connections)
        self.alice = await self.create_user("alice")
        self.bob = await self.create_user("bob")
        self.carol = await self.create_user("carol")

    async def test_create_includes_creator_once(self):
        created = await self.repo.create(
            ConversationCreate(title="team", creator_id=self.alice, participant_ids=[self.bob, self.alice])
        )
        self.assertEqual(created.participant_count, 2)
        loaded = await self.repo.get_by_id(created.id, include_participants=True)
        self.assertEqual({p.participant_id for p in loaded.participants}, {self.alice, self.bob})
        self.assertTrue(await self.repo.is_participant(created.id, self.bob))
        self.assertFalse(await self.repo.is_participant(created.id, self.carol))

    async def test_create_rolls_back_when_a_participant_insert_fails(self):
        original = self.repo.insert_row
        calls = []

        async def fail_on_second_participant(conn, values, **kwargs):
            calls.append(kwargs.get("operation"))
            if calls.count("add_participant") == 2:
                raise RuntimeError("constraint violated")
            await original(conn, values, **kwargs)

        with mock.patch.object(self.repo, "insert_row", side_effect=fail_on_second_participant):
            with self.assertRaises(RuntimeError):
                await self.repo.create(ConversationCreate(title="x", creator_id=self.alice, participant_ids=[self.bob]))
        self.assertEqual((await self.repo.get_paged()).total_count, 0)

    async def test_participant_membership_filter_and_user_listing(self):
        shared = await self.repo.create(ConversationCreate(title="shared", creator_id=self.alice, participant_ids=[self.bob]))
        await self.repo.create(ConversationCreate(title="solo", creator_id=self.carol))
        mine = await self.repo.get_by_user(self.bob)
        self.assertEqual([item.id for item in mine.items], [shared.id])
        paged = await self.repo.get_paged(include_participants=True)
        self.assertEqual(paged.total_count, 2)
        self.assertTrue(all(item.participants for item in paged.items))

    async def test_add_and_remove_participants(self):
        conversation = await self.repo.create(ConversationCreate(title="t", creator_id=self.alice))
        self.assertEqual(await self.repo.add_participants(conversation.id, [self.bob, self.alice, self.bob]), 1)
        self.assertEqual((await self.repo.get_by_id(conversation.id)).participant_count, 2)

        self.assertTrue(await self.repo.remove_participant(conversation.id, self.bob))
        self.assertFalse(await self.repo.remove_participant(conversation.id, self.bob))
        self.assertEqual((await self.repo.get_by_id(conversation.id)).participant_count, 1)
        self.assertEqual(len(await self.repo.get_participants(conversation.id)), 1)

        self.assertEqual(await self.repo.add_participants(conversation.id, [self.bob, self.carol]), 2)
        self.assertEqual((await self.repo.get_by_id(conversation.id)).participant_count, 3)

        with self.assertRaises(EntityNotFound):
            await self.repo.add_participants(uuid.uuid4(), [self.bob])

    async def test_unread_filter_and_last_message_sort(self):
        quiet = await self.repo.create(ConversationCreate(title="quiet", creator_id=self.alice, participant_ids=[self.bob]))
        busy = await self.repo.create(ConversationCreate(title="busy", creator_id=self.alice, participant_ids=[self.bob]))
        message = await self.messages.create(
            MessageCreate(sender_id=self.alice, receiver_id=self.bob, subject="s", content="c", conversation_id=busy.id)
        )
        await self.repo.update_last_message(busy.id, message.id, at(days=400))
        await self.repo.update_last_message(quiet.id, uuid.uuid4(), at(0))

        unread = await self.repo.get_paged(ConversationFilter(has_unread_for=self.bob))
        self.assertEqual([item.id for item in unread.items], [busy.id])
        self.assertEqual(await self.repo.get_unread_message_count(busy.id, self.bob), 1)
        self.assertEqual(await self.repo.get_message_count(busy.id), 1)

        latest_first = await self.repo.get_paged(sort=ConversationSortSpec(token=ConversationSort.LAST_MESSAGE_DESC))
        self.assertEqual([item.id for item in latest_first.items], [busy.id, quiet.id])
        oldest_first = await self.repo.get_paged(sort=ConversationSortSpec(token="last_message_asc"))
        self.assertEqual([item.id for item in oldest_first.items], [quiet.id, busy.id])

    async def test_update_and_soft_delete(self):
        conversation = await self.repo.create(ConversationCreate(title="old", creator_id=self.alice))
        await self.repo.update(conversation.model_copy(update={"title": "new"}))
        self.assertEqual((await self.repo.get_by_id(conversation.id)).title, "new")
        self.assertTrue(await self.repo.delete(conversation.id))
        self.assertEqual((await self.repo.get_paged()).total_count, 0)
        self.assertEqual((await self.repo.get_paged(ConversationFilter(is_deleted=True))).total_count, 1)
        with self.assertRaises(EntityNotFound):
            await self.repo.update(conversation.model_copy(update={"id": uuid.uuid4()}))
