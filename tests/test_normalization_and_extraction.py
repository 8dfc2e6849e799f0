from __future__ import annotations

import unittest
import uuid
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

from mini_dbexec.core.commands import BoundParameter, Command, CommandKind, Direction, LogicalType, Parameter
from mini_dbexec.core.cursors import collect_cursor_handles, is_cursor_handle, requires_cursor_handling
from mini_dbexec.core.normalization import normalize, normalize_as, try_normalize
from mini_dbexec.core.options import Backend
from mini_dbexec.core.parameters import extract_output_values, has_output_values
from mini_dbexec.core.types import DB_NULL


class NormalizeTests(unittest.TestCase):
    def test_null_collapses_for_every_type(self) -> None:
        for logical_type in LogicalType:
            with self.subTest(logical_type=logical_type):
                self.assertIsNone(normalize(None, logical_type))
                self.assertIsNone(normalize(DB_NULL, logical_type))
                self.assertTrue(try_normalize(DB_NULL, logical_type).normalized)

    def test_guid_from_text_and_mixed_endian_bytes(self) -> None:
        expected = uuid.UUID("00112233-4455-6677-8899-aabbccddeeff")
        self.assertEqual(normalize(str(expected), LogicalType.GUID), expected)
        self.assertEqual(normalize(expected.bytes_le, LogicalType.GUID), expected)

    def test_unconvertible_values_pass_through(self) -> None:
        for value, logical_type in (
            ("not-a-guid", LogicalType.GUID),
            ("maybe", LogicalType.BOOLEAN),
            (70000, LogicalType.INT16),
            (object, LogicalType.INT32),
            ("abc", LogicalType.DECIMAL),
            ("12:99", LogicalType.TIME),
        ):
            with self.subTest(value=value, logical_type=logical_type):
                outcome = try_normalize(value, logical_type)
                self.assertIs(outcome.value, value)
                self.assertFalse(outcome.normalized)

    def test_integers(self) -> None:
        self.assertEqual(normalize("42", LogicalType.INT32), 42)
        self.assertEqual(normalize(Decimal("7"), LogicalType.INT64), 7)
        self.assertEqual(normalize(2.5, LogicalType.INT32), 2)
        self.assertEqual(normalize(3.5, LogicalType.INT32), 4)
        self.assertEqual(normalize(True, LogicalType.BYTE), 1)

    def test_exact_and_floating_numbers(self) -> None:
        self.assertEqual(normalize(0.1, LogicalType.DECIMAL), Decimal("0.1"))
        self.assertEqual(normalize("19.99", LogicalType.CURRENCY), Decimal("19.99"))
        self.assertEqual(normalize(Decimal("1.5"), LogicalType.DOUBLE), 1.5)
        self.assertNotEqual(normalize(0.1, LogicalType.SINGLE), 0.1)
        self.assertAlmostEqual(normalize(0.1, LogicalType.SINGLE), 0.1, places=6)

    def test_booleans(self) -> None:
        self.assertIs(normalize("TRUE", LogicalType.BOOLEAN), True)
        self.assertIs(normalize(" false ", LogicalType.BOOLEAN), False)
        self.assertIs(normalize(0, LogicalType.BOOLEAN), False)
        self.assertIs(normalize(Decimal("2"), LogicalType.BOOLEAN), True)

    def test_text_and_binary(self) -> None:
        self.assertEqual(normalize(b"caf\xc3\xa9", LogicalType.STRING), "café")
        self.assertEqual(normalize(12, LogicalType.NCLOB), "12")
        self.assertEqual(normalize(date(2024, 1, 2), LogicalType.JSON), "2024-01-02")
        self.assertEqual(normalize(bytearray(b"\x01"), LogicalType.BLOB), bytearray(b"\x01"))
        self.assertFalse(try_normalize("x", LogicalType.BINARY).normalized)

    def test_date_times(self) -> None:
        self.assertEqual(normalize(date(2024, 5, 1), LogicalType.DATE), datetime(2024, 5, 1))
        self.assertEqual(
            normalize("2024-05-01T10:30:00Z", LogicalType.DATE_TIME),
            datetime(2024, 5, 1, 10, 30, tzinfo=timezone.utc),
        )
        naive = datetime(2024, 5, 1, 10, 30)
        self.assertEqual(normalize(naive, LogicalType.DATE_TIME_OFFSET), naive.replace(tzinfo=timezone.utc))
        plus_two = timezone(timedelta(hours=2))
        aware = datetime(2024, 5, 1, 10, 30, tzinfo=plus_two)
        self.assertIs(normalize(aware, LogicalType.DATE_TIME_OFFSET), aware)

    def test_durations(self) -> None:
        self.assertEqual(
            normalize("1.02:03:04.5", LogicalType.INTERVAL),
            timedelta(days=1, hours=2, minutes=3, seconds=4, microseconds=500000),
        )
        self.assertEqual(normalize("-00:30", LogicalType.TIME), -timedelta(minutes=30))
        self.assertEqual(normalize("3", LogicalType.INTERVAL), timedelta(days=3))
        self.assertEqual(normalize(time(8, 15), LogicalType.TIME), timedelta(hours=8, minutes=15))
        self.assertEqual(
            normalize(datetime(2024, 1, 1, 6, 0, 30), LogicalType.TIME),
            timedelta(hours=6, seconds=30),
        )

    def test_ref_cursor_values_are_left_alone(self) -> None:
        handle = object()
        self.assertIs(normalize(handle, LogicalType.REF_CURSOR), handle)

    def test_normalize_as(self) -> None:
        self.assertEqual(normalize_as("5", LogicalType.INT32, int), 5)
        self.assertIsNone(normalize_as("five", LogicalType.INT32, int))


class OutputExtractionTests(unittest.TestCase):
    def test_ref_cursors_are_excluded_and_values_normalized(self) -> None:
        declared = (
            Parameter("p_id", LogicalType.INT32, Direction.IN, value=1),
            Parameter("p_rows", LogicalType.REF_CURSOR, Direction.OUT),
            Parameter(":p_total", LogicalType.DECIMAL, Direction.OUT, precision=10, scale=2),
        )
        executed = (
            BoundParameter("p_id", Direction.IN, 1),
            BoundParameter("p_rows", Direction.OUT, "cursor-handle"),
            BoundParameter("P_TOTAL", Direction.OUT, "12.50"),
        )

        values = extract_output_values(executed, declared)

        self.assertEqual(dict(values), {"P_TOTAL": Decimal("12.50")})
        self.assertEqual(values["p_total"], Decimal("12.50"))
        self.assertEqual(values[":p_total"], Decimal("12.50"))
        self.assertNotIn("p_rows", values)
        self.assertNotIn("p_id", values)

    def test_undeclared_outputs_keep_raw_values(self) -> None:
        declared = (Parameter("@a", LogicalType.INT32, Direction.OUT),)
        executed = (
            BoundParameter("@a", Direction.OUT, "1"),
            BoundParameter("@extra", Direction.IN_OUT, "raw"),
            BoundParameter("@gone", Direction.OUT, DB_NULL),
        )

        values = extract_output_values(executed, declared)

        self.assertEqual(dict(values), {"a": 1, "extra": "raw", "gone": None})

    def test_names_keep_characters_after_the_single_prefix(self) -> None:
        declared = (Parameter("@:x", LogicalType.INT32, Direction.OUT),)
        executed = (BoundParameter("@:x", Direction.OUT, "7"),)

        values = extract_output_values(executed, declared)

        self.assertEqual(dict(values), {":x": 7})
        self.assertEqual(values[":x"], 7)
        self.assertEqual(values["@:x"], 7)
        self.assertNotIn("x", values)

    def test_nothing_declared_or_executed(self) -> None:
        self.assertIsNone(extract_output_values([], [Parameter("x", direction=Direction.OUT)]))
        self.assertIsNone(extract_output_values([BoundParameter("x", Direction.OUT, 1)], []))

    def test_has_output_values_ignores_ref_cursors(self) -> None:
        self.assertFalse(has_output_values([Parameter("c", LogicalType.REF_CURSOR, Direction.OUT)]))
        self.assertTrue(has_output_values([Parameter("n", LogicalType.INT32, Direction.IN_OUT)]))


class CursorClassifierTests(unittest.TestCase):
    def _procedure(self, *parameters: Parameter) -> Command:
        return Command("pkg.proc", CommandKind.STORED_PROCEDURE, parameters)

    def test_requires_cursor_handling(self) -> None:
        cursor = Parameter("c", LogicalType.REF_CURSOR, Direction.OUT)
        with_cursor = self._procedure(cursor)

        self.assertTrue(requires_cursor_handling(Backend.ORACLE, with_cursor))
        self.assertTrue(requires_cursor_handling(Backend.POSTGRESQL, with_cursor))
        self.assertFalse(requires_cursor_handling(Backend.SQL_SERVER, with_cursor))
        self.assertFalse(requires_cursor_handling(Backend.ORACLE, self._procedure()))
        self.assertFalse(
            requires_cursor_handling(Backend.ORACLE, Command("SELECT 1", parameters=(cursor,)))
        )

    def test_is_cursor_handle(self) -> None:
        class _Cursor:
            def fetchall(self):  # noqa: ANN202
                return []

        self.assertTrue(is_cursor_handle("<unnamed portal 1>"))
        self.assertTrue(is_cursor_handle(_Cursor()))
        self.assertFalse(is_cursor_handle("  "))
        self.assertFalse(is_cursor_handle(None))

    def test_collect_handles_in_declaration_order(self) -> None:
        declared = (
            Parameter("first", LogicalType.REF_CURSOR, Direction.OUT),
            Parameter("count", LogicalType.INT32, Direction.OUT),
            Parameter("second", LogicalType.REF_CURSOR, Direction.IN_OUT),
            Parameter("empty", LogicalType.REF_CURSOR, Direction.OUT),
        )
        executed = (
            BoundParameter("SECOND", Direction.IN_OUT, "c2"),
            BoundParameter("count", Direction.OUT, 5),
            BoundParameter("empty", Direction.OUT, None),
            BoundParameter("first", Direction.OUT, "c1"),
        )

        self.assertEqual(collect_cursor_handles(executed, declared), ["c1", "c2"])


if __name__ == "__main__":
    unittest.main()
