import unittest
import uuid
from datetime import datetime, timezone

from snippet_data.core.errors import UnknownFilterField
from snippet_data.db.dialect import Backend, dialect_for
from snippet_data.models.enums import ReportReason, ReportStatus
from snippet_data.repositories.comment_reports import HIGH_PRIORITY_REPORT, REPORT_FILTERS
from snippet_data.schemas.common import Range
from snippet_data.schemas.comment_reports import CommentReportFilter
from snippet_data.services.predicates import (
    FilterSchema,
    PredicateBuilder,
    Predicates,
    between,
    eq,
    escape_like,
    flag,
    matches,
    one_of,
    search,
)
from snippet_data.services.type_normalizer import TypeNormalizer, ValueKind

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _builder(backend: Backend = Backend.SQLITE, schema: FilterSchema = REPORT_FILTERS) -> PredicateBuilder:
    return PredicateBuilder(schema, TypeNormalizer.for_backend(backend), dialect_for(backend), model=CommentReportFilter)


class ReportPredicateTests(unittest.TestCase):
    def setUp(self):
        self.builder = _builder()

    def test_empty_filter_has_no_fragments(self):
        for spec in (None, CommentReportFilter(), {}):
            predicates = self.builder.build(spec)
            self.assertEqual(predicates.fragments, ())
            self.assertEqual(predicates.params, {})
            self.assertEqual(predicates.where, "")

    def test_single_field_yields_single_fragment(self):
        predicates = self.builder.build(CommentReportFilter(status=ReportStatus.PENDING))
        self.assertEqual(predicates.fragments, ("cr.status = :status",))
        self.assertEqual(predicates.params, {"status": 0})

    def test_range_yields_independent_bounds(self):
        lower_only = self.builder.build(CommentReportFilter(created_at=Range[datetime](gte=NOW)))
        self.assertEqual(lower_only.fragments, ("cr.created_at >= :created_at_from",))
        both = self.builder.build(CommentReportFilter(created_at=Range[datetime](gte=NOW, lte=NOW)))
        self.assertEqual(len(both.fragments), 2)
        self.assertEqual(both.params["created_at_to"], "2026-03-01 12:00:00.000000")

    def test_field_fragment_is_stable_when_other_fields_are_added(self):
        comment_id = uuid.uuid4()
        alone = self.builder.build(CommentReportFilter(reason=ReportReason.SPAM))
        combined = self.builder.build(
            CommentReportFilter(reason=ReportReason.SPAM, comment_id=comment_id, status=ReportStatus.RESOLVED)
        )
        self.assertIn(alone.fragments[0], combined.fragments)
        self.assertEqual(combined.params["comment_id"], str(comment_id))

    def test_fragments_follow_schema_order_not_caller_order(self):
        comment_id = uuid.uuid4()
        first = self.builder.build({"comment_id": comment_id, "status": ReportStatus.PENDING})
        second = self.builder.build({"status": ReportStatus.PENDING, "comment_id": comment_id})
        self.assertEqual(first.fragments, second.fragments)
        self.assertEqual(list(first.params), list(second.params))
        self.assertEqual(first.fragments[0], "cr.status = :status")

    def test_search_escapes_wildcards_and_spans_columns(self):
        predicates = self.builder.build(CommentReportFilter(search="50%_off"))
        self.assertEqual(predicates.params["search"], "%50\\%\\_off%")
        self.assertIn("c.content LIKE :search ESCAPE", predicates.fragments[0])
        self.assertIn(" OR ", predicates.fragments[0])

    def test_postgres_search_is_case_insensitive(self):
        predicates = _builder(Backend.POSTGRESQL).build(CommentReportFilter(search="Spam"))
        self.assertIn("ILIKE", predicates.fragments[0])

    def test_blank_search_is_absent(self):
        self.assertEqual(self.builder.build(CommentReportFilter(search="   ")).fragments, ())

    def test_high_priority_is_a_single_named_condition(self):
        predicates = self.builder.build(CommentReportFilter(high_priority_only=True), now=NOW)
        self.assertEqual(len(predicates.fragments), 1)
        self.assertEqual(predicates.params["hp_min_reports"], 3)
        self.assertEqual(predicates.params["hp_min_age_hours"], 24.0)
        self.assertEqual(predicates.params["hp_now"], "2026-03-01 12:00:00.000000")
        self.assertIn(HIGH_PRIORITY_REPORT.sql(dialect_for(Backend.SQLITE)), predicates.fragments[0])
        negated = self.builder.build(CommentReportFilter(high_priority_only=False), now=NOW)
        self.assertTrue(negated.fragments[0].startswith("NOT ("))

    def test_unknown_field_is_rejected(self):
        with self.assertRaises(UnknownFilterField):
            self.builder.build({"not_a_field": 1})
        with self.assertRaises(UnknownFilterField):
            CommentReportFilter(not_a_field=1)

    def test_caller_text_never_reaches_sql(self):
        hostile = "x'; DROP TABLE comment_reports; --"
        predicates = self.builder.build(CommentReportFilter(search=hostile))
        self.assertNotIn("DROP", " ".join(predicates.fragments))


class GenericPredicateTests(unittest.TestCase):
    def setUp(self):
        self.schema = FilterSchema(
            [
                one_of("ids", "t.id", ValueKind.IDENTIFIER),
                eq("active", "t.active", ValueKind.BOOLEAN),
                flag("is_deleted", "t.deleted_at IS NOT NULL", "t.deleted_at IS NULL"),
                between("size", "t.size", ValueKind.INT64),
                search("q", "t.name"),
            ]
        )
        self.sqlite = PredicateBuilder(self.schema, TypeNormalizer.for_backend("sqlite"), dialect_for(Backend.SQLITE))

    def test_in_list_is_expanding(self):
        ids = [uuid.uuid4(), uuid.uuid4()]
        predicates = self.sqlite.build({"ids": ids})
        self.assertEqual(predicates.fragments, ("t.id IN :ids",))
        self.assertEqual(predicates.params["ids"], [str(item) for item in ids])
        self.assertIn("ids", predicates.expanding)

    def test_empty_in_list_matches_nothing(self):
        predicates = self.sqlite.build({"ids": []})
        self.assertEqual(predicates.fragments, ("1 = 0",))
        self.assertEqual(predicates.params, {})

    def test_flag_renders_both_sides(self):
        self.assertEqual(self.sqlite.build({"is_deleted": False}).fragments, ("t.deleted_at IS NULL",))
        self.assertEqual(self.sqlite.build({"is_deleted": True}).fragments, ("t.deleted_at IS NOT NULL",))

    def test_boolean_binds_per_backend(self):
        self.assertEqual(self.sqlite.build({"active": True}).params, {"active": 1})
        postgres = PredicateBuilder(self.schema, TypeNormalizer.for_backend("postgresql"), dialect_for(Backend.POSTGRESQL))
        self.assertEqual(postgres.build({"active": True}).params, {"active": True})

    def test_tuple_range_upper_only(self):
        predicates = self.sqlite.build({"size": (None, 1024)})
        self.assertEqual(predicates.fragments, ("t.size <= :size_to",))

    def test_duplicate_field_names_are_rejected(self):
        with self.assertRaises(ValueError):
            FilterSchema([eq("a", "t.a", ValueKind.TEXT), eq("a", "t.b", ValueKind.TEXT)])

    def test_and_appends_fixed_condition(self):
        base = self.sqlite.build({"active": True})
        scoped = base.and_("t.owner_id = :owner_id", {"owner_id": "x"})
        self.assertEqual(scoped.where, "WHERE t.active = :active AND t.owner_id = :owner_id")
        self.assertEqual(base.fragments, ("t.active = :active",))
        with self.assertRaises(ValueError):
            scoped.and_("t.active = :active", {"active": 0})

    def test_conjunction_of_empty_predicates(self):
        self.assertEqual(Predicates().conjunction, "1 = 1")

    def test_escape_like(self):
        self.assertEqual(escape_like("a\\b%c_d"), "a\\\\b\\%c\\_d")

    def test_matches_binds_value_into_fixed_fragment(self):
        member = "EXISTS (SELECT 1 FROM members m WHERE m.group_id = t.id AND m.user_id = :member_id)"
        schema = FilterSchema([matches("member_id", member, ValueKind.IDENTIFIER)])
        builder = PredicateBuilder(schema, TypeNormalizer.for_backend("sqlite"), dialect_for(Backend.SQLITE))
        user_id = uuid.uuid4()
        predicates = builder.build({"member_id": user_id})
        self.assertEqual(predicates.fragments, (member,))
        self.assertEqual(predicates.params, {"member_id": str(user_id)})
        self.assertEqual(builder.build({}).fragments, ())

    def test_matches_requires_its_parameter(self):
        with self.assertRaises(ValueError):
            matches("member_id", "t.owner_id = :owner_id", ValueKind.IDENTIFIER)
