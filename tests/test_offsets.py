import json
import unittest
from datetime import datetime, timezone

from support import SCHEMA, cdf_table

from sharing_incremental import (
    ConfigurationError,
    InMemoryTable,
    InvalidOffsetError,
    Offset,
    SharingSource,
    TableIdentityMismatchError,
    TimestampOutOfRangeError,
    compare_offsets,
)


class TestOffset(unittest.TestCase):
    def test_encode_decode(self) -> None:
        offset = Offset("table-1", 12, 3, is_starting_version=True)
        encoded = offset.encode()
        self.assertEqual(
            json.loads(encoded),
            {
                "sourceVersion": 1,
                "tableId": "table-1",
                "tableVersion": 12,
                "index": 3,
                "isStartingVersion": True,
            },
        )
        self.assertEqual(Offset.decode(encoded), offset)

    def test_order_is_version_then_index(self) -> None:
        offsets = [Offset("t", 2, 0), Offset("t", 1, 5), Offset("t", 2, -1), Offset("t", 1, -1)]
        self.assertEqual(
            [(o.table_version, o.index) for o in sorted(offsets)],
            [(1, -1), (1, 5), (2, -1), (2, 0)],
        )
        self.assertEqual(compare_offsets(Offset("t", 1), Offset("t", 1)), 0)
        self.assertEqual(compare_offsets(Offset("t", 1), Offset("t", 1, 0)), -1)
        self.assertEqual(compare_offsets(Offset("t", 3), Offset("t", 2, 7)), 1)

    def test_compare_across_tables_fails(self) -> None:
        with self.assertRaises(TableIdentityMismatchError):
            compare_offsets(Offset("a", 1), Offset("b", 1))

    def test_next_version(self) -> None:
        offset = Offset("t", 4, 2, is_starting_version=True).next_version()
        self.assertEqual(offset, Offset("t", 5))

    def test_newer_source_version_is_rejected(self) -> None:
        payload = Offset("t", 1).to_dict()
        payload["sourceVersion"] = 2
        with self.assertRaises(InvalidOffsetError) as ctx:
            Offset.from_dict(payload)
        self.assertIn("newer release", str(ctx.exception))

    def test_malformed_offsets(self) -> None:
        for value in ("not json", "[]", json.dumps({"tableId": "t"}), json.dumps({**Offset("t", 1).to_dict(), "index": "0"})):
            with self.subTest(value=value):
                with self.assertRaises(InvalidOffsetError):
                    Offset.decode(value)

    def test_invalid_fields(self) -> None:
        with self.assertRaises(InvalidOffsetError):
            Offset("t", -1)
        with self.assertRaises(InvalidOffsetError):
            Offset("t", 0, -2)


class TestInitialOffset(unittest.TestCase):
    def test_latest_by_default(self) -> None:
        source = SharingSource(cdf_table())
        self.assertEqual(source.initial_offset(), Offset("cdf-table", 4))

    def test_latest_keyword(self) -> None:
        source = SharingSource(cdf_table(), {"startingVersion": "latest"})
        self.assertEqual(source.initial_offset(), Offset("cdf-table", 4))

    def test_starting_version(self) -> None:
        source = SharingSource(cdf_table(), {"starting_version": 2})
        self.assertEqual(source.initial_offset(), Offset("cdf-table", 2, is_starting_version=True))

    def test_timestamp_before_first_commit_resolves_to_zero(self) -> None:
        source = SharingSource(cdf_table(), {"startingTimestamp": "2021-12-31"})
        self.assertEqual(source.initial_offset(), Offset("cdf-table", 0, is_starting_version=True))

    def test_timestamp_between_commits(self) -> None:
        table = InMemoryTable(SCHEMA, table_id="t")
        table.commit(add=["a.parquet"], timestamp=datetime(2023, 1, 1, tzinfo=timezone.utc))
        table.commit(add=["b.parquet"], timestamp=datetime(2023, 1, 3, tzinfo=timezone.utc))
        source = SharingSource(table, {"startingTimestamp": "2023-01-02T00:00:00Z"})
        self.assertEqual(source.initial_offset(), Offset("t", 2, is_starting_version=True))

    def test_timestamp_after_latest_commit_fails(self) -> None:
        source = SharingSource(cdf_table(), {"startingTimestamp": "2099-01-01 00:00:00"})
        with self.assertRaises(TimestampOutOfRangeError) as ctx:
            source.initial_offset()
        self.assertIn("The provided timestamp (2099-01-01 00:00:00)", str(ctx.exception))
        self.assertTrue(ctx.exception.retryable)

    def test_conflicting_start_options(self) -> None:
        with self.assertRaises(ConfigurationError):
            SharingSource(cdf_table(), {"startingVersion": 1, "startingTimestamp": "2022-01-01"})


if __name__ == "__main__":
    unittest.main()
