import unittest
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from snippet_data.core.errors import MalformedValue
from snippet_data.db.dialect import Backend
from snippet_data.services.type_normalizer import (
    TypeNormalizer,
    ValueKind,
    format_duration,
    parse_duration,
)


class SqliteNormalizationTests(unittest.TestCase):
    def setUp(self):
        self.normalizer = TypeNormalizer.for_backend(Backend.SQLITE)

    def test_identifier_text_is_parsed(self):
        uid = uuid.uuid4()
        self.assertEqual(self.normalizer.normalize(str(uid), ValueKind.IDENTIFIER), uid)
        self.assertEqual(self.normalizer.normalize(uid.bytes, ValueKind.IDENTIFIER), uid)

    def test_corrupt_identifier_is_a_hard_error(self):
        with self.assertRaises(MalformedValue) as ctx:
            self.normalizer.normalize("not-a-guid", ValueKind.IDENTIFIER, field="comment_id")
        self.assertEqual(ctx.exception.field, "comment_id")
        self.assertEqual(ctx.exception.kind, "identifier")

    def test_integer_booleans(self):
        self.assertTrue(self.normalizer.normalize(1, ValueKind.BOOLEAN))
        self.assertTrue(self.normalizer.normalize(7, ValueKind.BOOLEAN))
        self.assertFalse(self.normalizer.normalize(0, ValueKind.BOOLEAN))

    def test_null_stays_absent(self):
        for kind in ValueKind:
            self.assertIsNone(self.normalizer.normalize(None, kind))

    def test_int32_narrowing_is_checked(self):
        self.assertEqual(self.normalizer.normalize(2**31 - 1, ValueKind.INT32), 2**31 - 1)
        with self.assertRaises(MalformedValue):
            self.normalizer.normalize(2**31, ValueKind.INT32)
        self.assertEqual(self.normalizer.normalize(2**31, ValueKind.INT64), 2**31)

    def test_timestamp_text_becomes_utc(self):
        value = self.normalizer.normalize("2026-02-26 10:15:00.000000", ValueKind.TIMESTAMP)
        self.assertEqual(value, datetime(2026, 2, 26, 10, 15, tzinfo=timezone.utc))
        shifted = self.normalizer.normalize("2026-02-26T13:15:00+03:00", ValueKind.TIMESTAMP)
        self.assertEqual(shifted, datetime(2026, 2, 26, 10, 15, tzinfo=timezone.utc))

    def test_write_path_encodes_text_and_integers(self):
        uid = uuid.uuid4()
        self.assertEqual(self.normalizer.to_db(uid, ValueKind.IDENTIFIER), str(uid))
        self.assertEqual(self.normalizer.to_db(True, ValueKind.BOOLEAN), 1)
        self.assertEqual(self.normalizer.to_db(False, ValueKind.BOOLEAN), 0)
        self.assertEqual(
            self.normalizer.to_db(datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc), ValueKind.TIMESTAMP),
            "2026-01-02 03:04:05.000000",
        )
        self.assertEqual(self.normalizer.to_db(timedelta(hours=22), ValueKind.DURATION), "22:00:00")

    def test_write_then_read_round_trip(self):
        samples = [
            (uuid.uuid4(), ValueKind.IDENTIFIER),
            (True, ValueKind.BOOLEAN),
            (False, ValueKind.BOOLEAN),
            (datetime(2026, 5, 17, 23, 59, 59, 123456, tzinfo=timezone.utc), ValueKind.TIMESTAMP),
            (timedelta(hours=7, minutes=30), ValueKind.DURATION),
            (timedelta(days=2, seconds=5, microseconds=10), ValueKind.DURATION),
            (-timedelta(hours=1), ValueKind.DURATION),
            (date(2026, 2, 28), ValueKind.DATE),
        ]
        for value, kind in samples:
            with self.subTest(kind=kind, value=value):
                self.assertEqual(self.normalizer.normalize(self.normalizer.to_db(value, kind), kind), value)

    def test_row_failure_carries_field_and_row_key(self):
        row = {"id": "0f8fad5b-d9cb-469f-a165-70867728950e", "owner_id": "garbage"}
        with self.assertRaises(MalformedValue) as ctx:
            self.normalizer.normalize_row(row, {"id": ValueKind.IDENTIFIER, "owner_id": ValueKind.IDENTIFIER})
        self.assertEqual(ctx.exception.field, "owner_id")
        self.assertEqual(ctx.exception.row_key, row["id"])


class PostgresNormalizationTests(unittest.TestCase):
    def setUp(self):
        self.normalizer = TypeNormalizer.for_backend("postgresql")

    def test_native_values_pass_through(self):
        uid = uuid.uuid4()
        self.assertIs(self.normalizer.normalize(uid, ValueKind.IDENTIFIER), uid)
        self.assertIs(self.normalizer.normalize(True, ValueKind.BOOLEAN), True)
        self.assertEqual(self.normalizer.normalize(timedelta(minutes=5), ValueKind.DURATION), timedelta(minutes=5))

    def test_decimal_aggregates(self):
        self.assertEqual(self.normalizer.normalize(Decimal("12"), ValueKind.INT64), 12)
        self.assertAlmostEqual(self.normalizer.normalize(Decimal("1.25"), ValueKind.FLOAT), 1.25)
        with self.assertRaises(MalformedValue):
            self.normalizer.normalize(Decimal("1.5"), ValueKind.INT32)

    def test_write_path_keeps_native_types(self):
        uid = uuid.uuid4()
        self.assertEqual(self.normalizer.to_db(str(uid), ValueKind.IDENTIFIER), uid)
        self.assertIs(self.normalizer.to_db(1, ValueKind.BOOLEAN), True)
        naive = datetime(2026, 1, 1, 8, 0)
        self.assertEqual(self.normalizer.to_db(naive, ValueKind.TIMESTAMP), naive.replace(tzinfo=timezone.utc))

    def test_same_duration_from_both_backends(self):
        sqlite = TypeNormalizer.for_backend(Backend.SQLITE)
        interval = timedelta(days=1, hours=2, minutes=3)
        self.assertEqual(
            self.normalizer.normalize(interval, ValueKind.DURATION),
            sqlite.normalize(sqlite.to_db(interval, ValueKind.DURATION), ValueKind.DURATION),
        )


class DurationFormatTests(unittest.TestCase):
    def test_formats(self):
        self.assertEqual(format_duration(timedelta(hours=8)), "08:00:00")
        self.assertEqual(format_duration(timedelta(days=1, hours=2)), "1.02:00:00")
        self.assertEqual(format_duration(timedelta(seconds=1, microseconds=500)), "00:00:01.000500")
        self.assertEqual(format_duration(-timedelta(minutes=90)), "-01:30:00")

    def test_parses_seven_digit_fractions_and_python_form(self):
        self.assertEqual(parse_duration("00:00:01.1234567"), timedelta(seconds=1, microseconds=123456))
        self.assertEqual(parse_duration("1 day, 2:00:00"), timedelta(days=1, hours=2))

    def test_rejects_garbage(self):
        with self.assertRaises(ValueError):
            parse_duration("25:00:00")
        with self.assertRaises(ValueError):
            parse_duration("soon")
