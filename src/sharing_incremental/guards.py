from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Sequence

from .actions import AddChangeFile, AddFile, FileAction, RemoveFile
from .errors import SchemaIncompatibilityError, TableIdentityMismatchError, UnsupportedChangeError
from .offsets import Offset
from .schema import StructType, read_compatibility_violations

if TYPE_CHECKING:
    from .context import StreamContext

CHANGE_INSERT = "insert"
CHANGE_DELETE = "delete"
CHANGE_UPDATE = "update"


def reference_version(offset: Offset) -> int:
    """Version whose schema is already in effect at ``offset``."""
    if offset.is_starting_version:
        return offset.table_version
    if offset.index == -1 and offset.table_version > 0:
        return offset.table_version - 1
    return offset.table_version


class SchemaCompatibilityGuard:
    """Keeps the schema a stream started with and rejects narrowing changes.

    The reference is the schema in effect at the stream's first offset. Every
    version the planner crosses is compared against it, never against the
    previous version, so a restarted stream judges each version exactly as the
    uninterrupted one did.
    """

    def __init__(self, context: "StreamContext") -> None:
        self.context = context
        self.reference: StructType | None = None
        self.reference_version: int | None = None

    def observe_start(self, offset: Offset) -> StructType:
        if self.reference is None:
            self.anchor(offset)
        return self.reference

    def anchor(self, offset: Offset) -> StructType:
        """Take the schema in effect at ``offset`` as the reference, replacing any earlier one."""
        version = reference_version(offset)
        _, metadata = self.context.metadata(version)
        self.reference = metadata.schema
        self.reference_version = version
        return self.reference

    def reset(self) -> None:
        self.reference = None
        self.reference_version = None

    def prefetch(self, versions: Iterable[int]) -> None:
        self.context.metadata_many(versions)

    def check_version(self, version: int, table_id: str | None = None) -> None:
        if self.reference is None:
            raise RuntimeError("observe_start must be called before checking versions")
        _, metadata = self.context.metadata(version)
        if table_id is not None and metadata.id != table_id:
            raise TableIdentityMismatchError(table_id, metadata.id)
        if version == self.reference_version:
            return
        violations = read_compatibility_violations(self.reference, metadata.schema)
        if violations:
            raise SchemaIncompatibilityError(version, "; ".join(violations))


class ChangeSemanticsGuard:
    def __init__(self, *, ignore_deletes: bool = False, ignore_changes: bool = False) -> None:
        self.ignore_deletes = ignore_deletes
        self.ignore_changes = ignore_changes

    @staticmethod
    def classify(actions: Sequence[FileAction]) -> str | None:
        has_add = has_remove = has_change = False
        for action in actions:
            if isinstance(action, AddChangeFile):
                has_change = True
            elif isinstance(action, RemoveFile):
                has_remove = True
            elif isinstance(action, AddFile):
                has_add = True
            else:
                raise TypeError(f"Unknown file action: {action!r}")
        if has_change or (has_remove and has_add):
            return CHANGE_UPDATE
        if has_remove:
            return CHANGE_DELETE
        if has_add:
            return CHANGE_INSERT
        return None

    def classify_version(self, version: int, actions: Sequence[FileAction]) -> str | None:
        """Classify every action of ``version`` and reject what the options do not allow."""
        change = self.classify(actions)
        if change == CHANGE_UPDATE and not self.ignore_changes:
            raise UnsupportedChangeError(version, CHANGE_UPDATE)
        if change == CHANGE_DELETE and not (self.ignore_deletes or self.ignore_changes):
            raise UnsupportedChangeError(version, CHANGE_DELETE)
        return change

    @staticmethod
    def emit(actions: Iterable[FileAction]) -> list[AddFile]:
        """Drop removes and re-emit change files as plain inserts."""
        emitted: list[AddFile] = []
        for action in actions:
            if isinstance(action, RemoveFile):
                continue
            if isinstance(action, AddChangeFile):
                emitted.append(
                    AddFile(
                        path=action.path,
                        size_bytes=action.size_bytes,
                        partition_values=dict(action.partition_values),
                        commit_version=action.commit_version,
                        commit_timestamp=action.commit_timestamp,
                        url=action.url,
                    )
                )
            else:
                emitted.append(action)
        return emitted
