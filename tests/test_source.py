import json
import tempfile
import unittest
from pathlib import Path

import polars as pl

from support import SCHEMA, WIDE_SCHEMA, cdf_table, drain, evolving_table, write_part

from sharing_incremental import (
    ConfigurationError,
    InMemoryTable,
    InvalidOffsetError,
    Offset,
    RestSharingClient,
    ScanTask,
    SharingSource,
    StructField,
    StructType,
    read_scan_tasks,
)


class TestSharingSource(unittest.TestCase):
    def test_scan_tasks_carry_file_details(self) -> None:
        table = InMemoryTable(SCHEMA, table_id="t", partition_columns=["region"])
        table.commit(add=[("a.parquet", 128, {"region": "eu"})])
        source = SharingSource(table, {"startingVersion": 0})
        start = source.initial_offset()
        tasks = source.get_batch(start, source.latest_offset(start))
        self.assertEqual(len(tasks), 1)
        task = tasks[0]
        self.assertEqual(
            (task.path, task.size_bytes, task.partition_values, task.format, task.commit_version),
            ("a.parquet", 128, {"region": "eu"}, "parquet", 1),
        )
        self.assertTrue(task.url.startswith("memory://t/a.parquet?signature="))
        self.assertEqual(task.to_dict()["size_bytes"], 128)

    def test_default_limit(self) -> None:
        source = SharingSource(cdf_table(), {"maxFilesPerTrigger": 7})
        self.assertEqual(source.get_default_limit().max_files, 7)

    def test_schema_is_the_table_schema(self) -> None:
        source = SharingSource(cdf_table())
        self.assertEqual(source.schema(), SCHEMA)

    def test_schema_is_fixed_at_the_stream_start(self) -> None:
        source = SharingSource(evolving_table(), {"startingVersion": 0})
        before = source.schema()
        drain(source, source.initial_offset())
        self.assertEqual(before.names, ["id", "name"])
        self.assertEqual(source.schema(), before)

    def test_schema_follows_a_resumed_start(self) -> None:
        source = SharingSource(evolving_table(), {"startingVersion": 2})
        self.assertEqual(source.schema(), WIDE_SCHEMA)
        with self.assertLogs("sharing_incremental", level="WARNING"):
            source.resume_from(Offset("evolving", 0, is_starting_version=True))
        self.assertEqual(source.schema(), SCHEMA)
        self.assertEqual(source.initial_offset(), Offset("evolving", 0, is_starting_version=True))

    def test_resume_after_planning_is_rejected(self) -> None:
        source = SharingSource(evolving_table(), {"startingVersion": 0})
        source.latest_offset(source.initial_offset())
        source.resume_from(Offset("evolving", 0, is_starting_version=True))
        with self.assertRaises(InvalidOffsetError):
            source.resume_from(Offset("evolving", 2, is_starting_version=True))

    def test_schema_waits_for_a_future_starting_version(self) -> None:
        source = SharingSource(InMemoryTable(SCHEMA, table_id="t"), {"startingVersion": 5})
        with self.assertRaises(InvalidOffsetError):
            source.schema()

    def test_user_schema_is_rejected(self) -> None:
        with self.assertRaises(ConfigurationError):
            SharingSource(cdf_table(), {"schema": SCHEMA.to_json()})

    def test_stop_shuts_down_context(self) -> None:
        with SharingSource(cdf_table(), {"startingVersion": 0}) as source:
            source.latest_offset(source.initial_offset())
            self.assertGreater(len(source.context.cache), 0)
        self.assertEqual(len(source.context.cache), 0)

    def test_from_url(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            profile = Path(tmpdir) / "open.share"
            profile.write_text(
                json.dumps(
                    {
                        "shareCredentialsVersion": 1,
                        "endpoint": "https://sharing.example.com/delta-sharing/",
                        "bearerToken": "token",
                    }
                )
            )
            source = SharingSource.from_url(f"{profile}#share1.default.events", {"maxFilesPerTrigger": 3})
            try:
                self.assertIsInstance(source.client, RestSharingClient)
                self.assertEqual(source.client.table.name, "events")
                self.assertEqual(source.get_default_limit().max_files, 3)
            finally:
                source.stop()


class TestReadScanTasks(unittest.TestCase):
    def test_partition_values_and_missing_columns(self) -> None:
        schema = StructType(SCHEMA.fields + (StructField("score", "double"), StructField("region", "string")))
        with tempfile.TemporaryDirectory() as tmpdir:
            write_part(Path(tmpdir), "a.parquet", [1, 2])
            task = ScanTask(
                path="a.parquet",
                url=str(Path(tmpdir) / "a.parquet"),
                size_bytes=0,
                partition_values={"region": "eu"},
                format="parquet",
                commit_version=3,
                commit_timestamp=1000,
            )
            df = read_scan_tasks([task], schema, with_commit_metadata=True)
        self.assertEqual(df.columns, ["id", "name", "score", "region", "_commit_version", "_commit_timestamp"])
        self.assertEqual(df["region"].to_list(), ["eu", "eu"])
        self.assertEqual(df["score"].null_count(), 2)
        self.assertEqual(df["_commit_version"].to_list(), [3, 3])

    def test_empty_batch_has_the_schema(self) -> None:
        df = read_scan_tasks([], SCHEMA)
        self.assertEqual(df.height, 0)
        self.assertEqual(df.schema, pl.Schema({"id": pl.Int64, "name": pl.Utf8}))

    def test_unsupported_format(self) -> None:
        task = ScanTask("a.csv", None, 0, {}, "csv", 1)
        with self.assertRaises(ConfigurationError):
            read_scan_tasks([task], SCHEMA)


if __name__ == "__main__":
    unittest.main()
