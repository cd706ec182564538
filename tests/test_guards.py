import unittest

from support import NARROWED_SCHEMA, SCHEMA

from sharing_incremental import (
    AddChangeFile,
    AddFile,
    ChangeSemanticsGuard,
    InMemoryTable,
    Offset,
    RemoveFile,
    SchemaCompatibilityGuard,
    SchemaIncompatibilityError,
    StreamContext,
    TableIdentityMismatchError,
    UnsupportedChangeError,
)
from sharing_incremental.guards import reference_version

ADD = AddFile("a", 10, {}, 4)
REMOVE = RemoveFile("b", 4)
CHANGE = AddChangeFile("c", 5, {"p": "1"}, 4, commit_timestamp=99, url="signed")


class TestChangeSemanticsGuard(unittest.TestCase):
    def test_classify(self) -> None:
        classify = ChangeSemanticsGuard.classify
        self.assertEqual(classify([ADD]), "insert")
        self.assertEqual(classify([REMOVE]), "delete")
        self.assertEqual(classify([REMOVE, ADD]), "update")
        self.assertEqual(classify([CHANGE]), "update")
        self.assertIsNone(classify([]))

    def test_defaults_reject_deletes_and_updates(self) -> None:
        guard = ChangeSemanticsGuard()
        self.assertEqual(guard.classify_version(4, [ADD]), "insert")
        with self.assertRaises(UnsupportedChangeError) as ctx:
            guard.classify_version(4, [REMOVE])
        self.assertEqual(ctx.exception.change, "delete")
        with self.assertRaises(UnsupportedChangeError) as ctx:
            guard.classify_version(4, [REMOVE, ADD])
        self.assertEqual(ctx.exception.change, "update")

    def test_ignore_changes_implies_ignore_deletes(self) -> None:
        guard = ChangeSemanticsGuard(ignore_changes=True)
        self.assertEqual(guard.classify_version(4, [REMOVE]), "delete")
        self.assertEqual(guard.classify_version(4, [CHANGE, REMOVE, ADD]), "update")

    def test_ignore_deletes_still_rejects_updates(self) -> None:
        guard = ChangeSemanticsGuard(ignore_deletes=True)
        self.assertEqual(guard.classify_version(4, [REMOVE]), "delete")
        with self.assertRaises(UnsupportedChangeError):
            guard.classify_version(4, [CHANGE])

    def test_emit(self) -> None:
        emitted = ChangeSemanticsGuard.emit([CHANGE, REMOVE, ADD])
        self.assertEqual(emitted, [AddFile("c", 5, {"p": "1"}, 4, commit_timestamp=99), ADD])
        self.assertEqual(emitted[0].url, "signed")
        self.assertTrue(all(isinstance(action, AddFile) for action in emitted))


class TestSchemaCompatibilityGuard(unittest.TestCase):
    def test_reference_version(self) -> None:
        self.assertEqual(reference_version(Offset("t", 5, is_starting_version=True)), 5)
        self.assertEqual(reference_version(Offset("t", 5)), 4)
        self.assertEqual(reference_version(Offset("t", 5, 2)), 5)
        self.assertEqual(reference_version(Offset("t", 0)), 0)

    def test_reference_is_set_once(self) -> None:
        table = InMemoryTable(SCHEMA, table_id="t")
        table.commit(schema=NARROWED_SCHEMA)
        with StreamContext(table) as context:
            guard = SchemaCompatibilityGuard(context)
            self.assertEqual(guard.observe_start(Offset("t", 1)), SCHEMA)
            self.assertEqual(guard.observe_start(Offset("t", 2)), SCHEMA)
            guard.check_version(0)
            with self.assertRaises(SchemaIncompatibilityError) as ctx:
                guard.check_version(1)
        self.assertEqual(ctx.exception.version, 1)
        self.assertIn("'id' changed from nullable to non-nullable", str(ctx.exception))

    def test_replaced_table_is_caught_per_version(self) -> None:
        table = InMemoryTable(SCHEMA, table_id="t")
        table.commit(table_id="t2")
        with StreamContext(table) as context:
            guard = SchemaCompatibilityGuard(context)
            guard.observe_start(Offset("t", 1))
            with self.assertRaises(TableIdentityMismatchError):
                guard.check_version(1, "t")


if __name__ == "__main__":
    unittest.main()
