import unittest

from snippet_data.core.errors import UnknownSortToken
from snippet_data.repositories.comment_reports import REPORT_SORTS
from snippet_data.schemas.comment_reports import ReportSort, ReportSortSpec
from snippet_data.schemas.messages import MessageSort
from snippet_data.services.sorting import SortResolver, SortTerm


class SortResolverTests(unittest.TestCase):
    def test_default_order_has_tiebreak(self):
        self.assertEqual(REPORT_SORTS.resolve(), "cr.created_at DESC, cr.id DESC")
        self.assertEqual(REPORT_SORTS.resolve_spec(None), REPORT_SORTS.resolve())

    def test_mapped_token(self):
        self.assertEqual(REPORT_SORTS.resolve(ReportSort.CREATED_AT_ASC), "cr.created_at ASC, cr.id ASC")
        self.assertEqual(
            REPORT_SORTS.resolve(ReportSort.REASON),
            "cr.reason ASC, cr.created_at DESC, cr.id ASC",
        )

    def test_direction_overrides_primary_term_only(self):
        self.assertEqual(
            REPORT_SORTS.resolve(ReportSort.STATUS, "desc"),
            "cr.status DESC, cr.created_at DESC, cr.id DESC",
        )

    def test_token_without_mapping_falls_back_to_default(self):
        self.assertEqual(REPORT_SORTS.resolve(MessageSort.PRIORITY_DESC), REPORT_SORTS.resolve())

    def test_resolution_is_repeatable(self):
        first = [REPORT_SORTS.resolve(token) for token in ReportSort]
        second = [REPORT_SORTS.resolve(token) for token in ReportSort]
        self.assertEqual(first, second)

    def test_sort_spec_accepts_value_or_name(self):
        self.assertIs(ReportSortSpec(token="created_at_asc").token, ReportSort.CREATED_AT_ASC)
        self.assertIs(ReportSortSpec(token="REASON").token, ReportSort.REASON)
        self.assertEqual(ReportSortSpec(token="status", direction="DESC").direction, "desc")

    def test_unknown_token_is_rejected_at_construction(self):
        with self.assertRaises(UnknownSortToken) as ctx:
            ReportSortSpec(token="cr.id; DROP TABLE users")
        self.assertIn("created_at_desc", ctx.exception.allowed)

    def test_sort_term_parse(self):
        self.assertEqual(SortTerm.parse("x.y  desc"), SortTerm("x.y", True))
        self.assertEqual(SortTerm.parse("COALESCE(a, b)"), SortTerm("COALESCE(a, b)", False))

    def test_custom_resolver(self):
        resolver = SortResolver({}, default=("t.name ASC",), tiebreak=("t.created_at", "t.id"))
        self.assertEqual(resolver.resolve(), "t.name ASC, t.created_at ASC, t.id ASC")
        self.assertEqual(resolver.tokens, ())
