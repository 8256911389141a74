import asyncio
import unittest

from snippet_data.core.errors import CancellationRequested, StatementExecutionFailure
from snippet_data.schemas.common import PageRequest, PageResult
from snippet_data.services.paginated_query import PaginatedQueryExecutor
from snippet_data.services.predicates import Predicates
from tests.base import SqliteRepositoryTestCase


class _SlowResult:
    def scalar_one(self):
        return 10


class _SlowConnection:
    """Records statements; the first one blocks until cancelled."""

    def __init__(self):
        self.statements = []
        self.started = asyncio.Event()

    async def execute(self, statement, params):
        self.statements.append(str(statement))
        self.started.set()
        await asyncio.sleep(3600)
        return _SlowResult()


class PageResultTests(unittest.TestCase):
    def test_total_pages_rounds_up(self):
        self.assertEqual(PageResult(items=[], total_count=5, page=1, page_size=2).total_pages, 3)
        self.assertEqual(PageResult(items=[], total_count=4, page=1, page_size=2).total_pages, 2)
        self.assertEqual(PageResult(items=[], total_count=0, page=1, page_size=2).total_pages, 0)

    def test_page_request_offset_and_cap(self):
        self.assertEqual(PageRequest(page=3, page_size=20).offset, 40)
        self.assertEqual(PageRequest(page=1, page_size=10_000).page_size, 100)
        with self.assertRaises(ValueError):
            PageRequest(page=0)

    def test_map_keeps_metadata(self):
        page = PageResult(items=[1, 2], total_count=7, page=2, page_size=2)
        doubled = page.map(lambda item: item * 2)
        self.assertEqual(doubled.items, [2, 4])
        self.assertEqual((doubled.total_count, doubled.page, doubled.total_pages), (7, 2, 4))


class ExecutorCancellationTests(unittest.IsolatedAsyncioTestCase):
    async def test_cancel_during_count_never_issues_data_statement(self):
        conn = _SlowConnection()
        executor = PaginatedQueryExecutor(timeout=0)
        task = asyncio.create_task(
            executor.execute(
                conn,
                relation="items t",
                columns="t.id",
                predicates=Predicates(),
                order_by="t.id ASC",
                page=PageRequest(page=1, page_size=5),
                operation="items.paged",
            )
        )
        await conn.started.wait()
        task.cancel()
        with self.assertRaises(CancellationRequested):
            await task
        self.assertEqual(len(conn.statements), 1)
        self.assertIn("COUNT(*)", conn.statements[0])

    async def test_timeout_bounds_the_whole_call(self):
        conn = _SlowConnection()
        executor = PaginatedQueryExecutor(timeout=0.05)
        with self.assertRaises(TimeoutError):
            await executor.execute(
                conn,
                relation="items t",
                columns="t.id",
                predicates=Predicates(),
                order_by="t.id ASC",
                page=PageRequest(),
                operation="items.paged",
            )
        self.assertEqual(len(conn.statements), 1)


class ExecutorSqliteTests(SqliteRepositoryTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.executor = PaginatedQueryExecutor()
        for index in range(4):
            await self.create_user(f"user{index}", role=index % 2)

    async def test_count_and_page_share_predicates(self):
        predicates = Predicates().and_("u.role = :role", {"role": 1})
        async with self.connections.connect() as conn:
            page = await self.executor.execute(
                conn,
                relation="users u",
                columns="u.username",
                predicates=predicates,
                order_by="u.username ASC",
                page=PageRequest(page=1, page_size=1),
                operation="users.paged",
            )
        self.assertEqual(page.total_count, 2)
        self.assertEqual([row["username"] for row in page.items], ["user1"])

    async def test_aggregate_reuses_predicates(self):
        predicates = Predicates().and_("u.is_active = :active", {"active": 1})
        async with self.connections.connect() as conn:
            rows = await self.executor.aggregate(
                conn,
                relation="users u",
                select="u.role AS role, COUNT(*) AS total",
                predicates=predicates,
                group_by="u.role",
                order_by="u.role",
                operation="users.by_role",
            )
        self.assertEqual([(row["role"], row["total"]) for row in rows], [(0, 2), (1, 2)])

    async def test_driver_errors_are_wrapped_with_operation(self):
        predicates = Predicates().and_("u.no_such_column = :ip_address", {"ip_address": "10.0.0.1"})
        async with self.connections.connect() as conn:
            with self.assertRaises(StatementExecutionFailure) as ctx:
                await self.executor.execute(
                    conn,
                    relation="users u",
                    columns="u.id",
                    predicates=predicates,
                    order_by="u.id",
                    page=PageRequest(),
                    operation="users.paged",
                )
        self.assertEqual(ctx.exception.operation, "users.paged.count")
        self.assertEqual(ctx.exception.params["ip_address"], "***")
        self.assertIsNotNone(ctx.exception.__cause__)
        self.assertNotIn("10.0.0.1", str(ctx.exception))
