import uuid
from datetime import date, timedelta
from unittest import mock

from sqlalchemy.exc import IntegrityError

from snippet_data.core.errors import StatementExecutionFailure
from snippet_data.models.enums import AccessSource, DeviceType
from snippet_data.repositories.share_access_logs import ShareAccessLogRepository
from snippet_data.schemas.share_access_logs import (
    AccessLogSort,
    AccessLogSortSpec,
    BreakdownDimension,
    ShareAccessLogCreate,
    ShareAccessLogFilter,
)
from tests.base import SqliteRepositoryTestCase, at


class ShareAccessLogRepositoryTests(SqliteRepositoryTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.repo = ShareAccessLogRepository(self.connections)
        self.token = uuid.uuid4()
        self.snippet = uuid.uuid4()

    def visit(self, ip: str, accessed_at, **extra) -> ShareAccessLogCreate:
        return ShareAccessLogCreate(
            share_token_id=extra.pop("share_token_id", self.token),
            code_snippet_id=self.snippet,
            ip_address=ip,
            accessed_at=accessed_at,
            **extra,
        )

    async def seed_visits(self):
        await self.repo.bulk_insert(
            [
                self.visit("10.0.0.1", at(0), duration=100, country="DE", browser="Firefox"),
                self.visit("10.0.0.1", at(hours=1), duration=300, country="DE", browser="Chrome"),
                self.visit(
                    "10.0.0.2",
                    at(days=1),
                    duration=200,
                    source=AccessSource.QR_CODE,
                    device_type=DeviceType.MOBILE,
                    country="FR",
                    browser="Chrome",
                ),
                self.visit("10.0.0.3", at(days=1, hours=2), is_success=False, failure_reason="expired", browser="Chrome"),
                self.visit("10.9.9.9", at(0), share_token_id=uuid.uuid4()),
            ]
        )

    async def test_create_and_get(self):
        log = await self.repo.create(self.visit("192.168.1.10", None, user_agent="curl/8.0"))
        loaded = await self.repo.get_by_id(log.id)
        self.assertEqual((loaded.ip_address, loaded.user_agent), ("192.168.1.10", "curl/8.0"))
        self.assertIsNotNone(loaded.accessed_at.tzinfo)
        self.assertTrue(await self.repo.delete(log.id))
        self.assertIsNone(await self.repo.get_by_id(log.id))

    async def test_paged_filters_and_sorts(self):
        await self.seed_visits()
        newest = await self.repo.get_paged(ShareAccessLogFilter(share_token_id=self.token))
        self.assertEqual(newest.total_count, 4)
        self.assertEqual(newest.items[0].ip_address, "10.0.0.3")

        longest = await self.repo.get_paged(
            ShareAccessLogFilter(share_token_id=self.token, is_success=True),
            AccessLogSortSpec(token=AccessLogSort.DURATION_DESC),
        )
        self.assertEqual([item.duration for item in longest.items], [300, 200, 100])

        mobile = await self.repo.get_paged(ShareAccessLogFilter(device_type=DeviceType.MOBILE))
        self.assertEqual([item.country for item in mobile.items], ["FR"])
        found = await self.repo.get_paged(ShareAccessLogFilter(search="10.0.0.2"))
        self.assertEqual(found.total_count, 1)

    async def test_access_stats(self):
        await self.seed_visits()
        stats = await self.repo.get_access_stats(self.token)
        self.assertEqual(
            (stats.total_access_count, stats.success_access_count, stats.failed_access_count, stats.unique_access_count),
            (4, 3, 1, 3),
        )
        self.assertAlmostEqual(stats.average_duration, 150.0)
        self.assertEqual((stats.first_access_at, stats.last_access_at), (at(0), at(days=1, hours=2)))

        first_day = await self.repo.get_access_stats(self.token, since=at(0), until=at(hours=23))
        self.assertEqual((first_day.total_access_count, first_day.unique_access_count), (2, 1))

        self.assertEqual(await self.repo.get_access_count(self.token), 4)
        self.assertEqual(await self.repo.get_unique_access_count(self.token), 3)
        self.assertEqual(await self.repo.get_last_access_time(self.token), at(days=1, hours=2))
        self.assertIsNone(await self.repo.get_last_access_time(uuid.uuid4()))

    async def test_daily_stats(self):
        await self.seed_visits()
        daily = await self.repo.get_daily_access_stats(self.token, 7, now=at(days=2))
        self.assertEqual([item.day for item in daily], [date(2026, 3, 2), date(2026, 3, 1)])
        self.assertEqual((daily[0].access_count, daily[0].success_count), (2, 1))
        self.assertEqual((daily[1].access_count, daily[1].unique_visitors), (2, 1))
        self.assertEqual(await self.repo.get_daily_access_stats(self.token, 1, now=at(days=5)), [])

    async def test_breakdown_dimensions(self):
        await self.seed_visits()
        browsers = await self.repo.get_breakdown(self.token, BreakdownDimension.BROWSER)
        self.assertEqual([(item.value, item.count) for item in browsers], [("Chrome", 3), ("Firefox", 1)])
        sources = await self.repo.get_breakdown(self.token, "source")
        self.assertEqual([(item.value, item.count) for item in sources], [(AccessSource.DIRECT, 3), (AccessSource.QR_CODE, 1)])
        devices = await self.repo.get_breakdown(self.token, BreakdownDimension.DEVICE_TYPE)
        self.assertEqual(devices[0].value, DeviceType.DESKTOP)
        with self.assertRaises(ValueError):
            await self.repo.get_breakdown(self.token, "ip_address; DROP TABLE share_access_logs")

    async def test_recent_access_and_retention(self):
        await self.seed_visits()
        self.assertTrue(await self.repo.has_recent_access(self.token, timedelta(hours=1), now=at(days=1, hours=2, minutes=30)))
        self.assertFalse(await self.repo.has_recent_access(self.token, timedelta(hours=1), now=at(days=3)))

        self.assertEqual(await self.repo.cleanup_failed_access_logs(1, now=at(days=3)), 1)
        self.assertEqual(await self.repo.cleanup_old_logs(1, now=at(days=1, hours=12)), 3)
        self.assertEqual(await self.repo.get_access_count(self.token), 1)

    async def test_failures_do_not_leak_ip_addresses(self):
        log = await self.repo.create(self.visit("203.0.113.7", at(0)))
        duplicate = self.repo.entity_values(log)
        with self.assertRaises(StatementExecutionFailure) as caught:
            async with self.connections.transaction() as conn:
                await self.repo.insert_row(conn, duplicate)
        self.assertIsInstance(caught.exception.orig, IntegrityError)
        self.assertNotIn("203.0.113.7", str(caught.exception))
        self.assertEqual(caught.exception.params["ip_address"], "***")

    async def test_bulk_insert_is_atomic(self):
        original = self.repo.insert_row
        calls = []

        async def fail_on_second(conn, values, **kwargs):
            calls.append(values)
            if len(calls) == 2:
                raise RuntimeError("connection lost")
            await original(conn, values, **kwargs)

        with mock.patch.object(self.repo, "insert_row", side_effect=fail_on_second):
            with self.assertRaises(RuntimeError):
                await self.repo.bulk_insert([self.visit("10.0.0.1", at(0)), self.visit("10.0.0.2", at(1))])
        self.assertEqual(await self.repo.get_access_count(self.token), 0)
