from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from .schema import StructType

TableIdentity = str


@dataclass(frozen=True)
class Protocol:
    min_reader_version: int = 1


@dataclass(frozen=True)
class Metadata:
    id: TableIdentity
    schema: StructType
    partition_columns: tuple[str, ...] = ()
    configuration: dict[str, str] = field(default_factory=dict, compare=False, hash=False)
    name: str | None = None
    format: str = "parquet"


@dataclass(frozen=True)
class AddFile:
    """A row group that becomes visible at ``commit_version``."""

    path: str
    size_bytes: int
    partition_values: dict[str, str | None]
    commit_version: int
    commit_timestamp: int | None = None
    url: str | None = field(default=None, compare=False)

    kind = "add"


@dataclass(frozen=True)
class RemoveFile:
    """A previously visible row group that is no longer visible."""

    path: str
    commit_version: int
    commit_timestamp: int | None = None
    url: str | None = field(default=None, compare=False)

    kind = "remove"


@dataclass(frozen=True)
class AddChangeFile:
    """A change-data row group (inserted/updated/deleted rows) for one commit."""

    path: str
    size_bytes: int
    partition_values: dict[str, str | None]
    commit_version: int
    commit_timestamp: int | None = None
    url: str | None = field(default=None, compare=False)

    kind = "add_change"


FileAction = Union[AddFile, RemoveFile, AddChangeFile]

# Tie-break for actions on the same path within one version.
_KIND_RANK = {"remove": 0, "add": 1, "add_change": 2}


def action_sort_key(action: FileAction) -> tuple[str, int]:
    return action.path, _KIND_RANK[action.kind]


def order_actions(actions: list[FileAction]) -> tuple[FileAction, ...]:
    """Order the actions of one commit by ``(path, kind)``.

    Servers do not guarantee a response order, so this is the order offsets
    index into.
    """
    return tuple(sorted(actions, key=action_sort_key))


@dataclass(frozen=True)
class Snapshot:
    version: int
    protocol: Protocol
    metadata: Metadata
    files: tuple[AddFile, ...] = ()

    @property
    def schema(self) -> StructType:
        return self.metadata.schema

    @property
    def partition_columns(self) -> tuple[str, ...]:
        return self.metadata.partition_columns

    @property
    def configuration(self) -> dict[str, str]:
        return self.metadata.configuration

    def ordered_files(self) -> tuple[AddFile, ...]:
        return tuple(sorted(self.files, key=lambda f: f.path))


@dataclass(frozen=True)
class ScanTask:
    """A file-level unit of work for the host to read into rows."""

    path: str
    url: str | None
    size_bytes: int
    partition_values: dict[str, str | None]
    format: str
    commit_version: int
    commit_timestamp: int | None = None

    @classmethod
    def from_action(cls, action: AddFile, file_format: str) -> "ScanTask":
        return cls(
            path=action.path,
            url=action.url,
            size_bytes=action.size_bytes,
            partition_values=dict(action.partition_values),
            format=file_format,
            commit_version=action.commit_version,
            commit_timestamp=action.commit_timestamp,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "url": self.url,
            "size_bytes": self.size_bytes,
            "partition_values": self.partition_values,
            "format": self.format,
            "commit_version": self.commit_version,
            "commit_timestamp": self.commit_timestamp,
        }
