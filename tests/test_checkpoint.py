import json
import tempfile
import unittest
from pathlib import Path

from sharing_incremental import BatchRecord, InvalidOffsetError, Offset, SharingStreamCheckpoint
from sharing_incremental.checkpoints import atomic_write_json, list_batch_ids


class TestSharingStreamCheckpoint(unittest.TestCase):
    def test_layout_and_pending_batch(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            checkpoint = SharingStreamCheckpoint(tmpdir)
            self.assertTrue((Path(tmpdir) / "offsets").is_dir())
            self.assertTrue((Path(tmpdir) / "commits").is_dir())
            self.assertIsNone(checkpoint.pending_batch())
            self.assertEqual(checkpoint.next_batch_id(), 0)

            record = BatchRecord(0, Offset("t", 0, is_starting_version=True), Offset("t", 2), created_at=1.0)
            checkpoint.write_offset(record)
            self.assertEqual(checkpoint.pending_batch(), record)
            self.assertIsNone(checkpoint.last_committed_end())

            checkpoint.commit_batch(record, file_count=3, metadata={"rows": 9})
            self.assertIsNone(checkpoint.pending_batch())
            self.assertEqual(checkpoint.last_committed_end(), Offset("t", 2))
            self.assertEqual(checkpoint.next_batch_id(), 1)
            self.assertEqual(checkpoint.committed_batch_ids(), [0])

            payload = json.loads((Path(tmpdir) / "offsets" / "0.json").read_text())
            self.assertEqual(payload["end"]["tableVersion"], 2)
            self.assertTrue(payload["start"]["isStartingVersion"])

    def test_offsets_are_write_once(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            checkpoint = SharingStreamCheckpoint(tmpdir)
            first = BatchRecord(0, Offset("t", 1), Offset("t", 2), created_at=1.0)
            checkpoint.write_offset(first)
            checkpoint.write_offset(BatchRecord(0, Offset("t", 1), Offset("t", 5), created_at=2.0))
            self.assertEqual(checkpoint.read_offset(0), first)

    def test_initial_offset_is_resolved_once(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            calls: list[int] = []

            def resolve() -> Offset:
                calls.append(1)
                return Offset("t", 7)

            config = {"mode": "latest"}
            self.assertEqual(SharingStreamCheckpoint(tmpdir).initial_offset(config, resolve), Offset("t", 7))
            self.assertEqual(SharingStreamCheckpoint(tmpdir).initial_offset(config, resolve), Offset("t", 7))
            self.assertEqual(len(calls), 1)

    def test_changed_start_option_warns(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            SharingStreamCheckpoint(tmpdir).initial_offset(
                {"mode": "version", "version": 1}, lambda: Offset("t", 1, is_starting_version=True)
            )
            with self.assertLogs("sharing_incremental", level="WARNING") as captured:
                offset = SharingStreamCheckpoint(tmpdir).initial_offset(
                    {"mode": "version", "version": 5}, lambda: Offset("t", 5, is_starting_version=True)
                )
            self.assertEqual(offset.table_version, 1)
            self.assertIn("ignored", captured.output[0])

    def test_newer_format_is_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            atomic_write_json(Path(tmpdir) / "metadata.json", {"format_version": 99})
            with self.assertRaises(InvalidOffsetError):
                SharingStreamCheckpoint(tmpdir)

    def test_atomic_write_replaces_without_leftovers(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "state" / "0.json"
            atomic_write_json(path, {"v": 1})
            atomic_write_json(path, {"v": 2})
            self.assertEqual(json.loads(path.read_text()), {"v": 2})
            self.assertEqual([p.name for p in path.parent.iterdir()], ["0.json"])

    def test_list_batch_ids_skips_other_files(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            for name in ("2.json", "10.json", "notes.json", "3.tmp"):
                (Path(tmpdir) / name).write_text("{}")
            self.assertEqual(list_batch_ids(Path(tmpdir)), [2, 10])


if __name__ == "__main__":
    unittest.main()
