from __future__ import annotations

import itertools
import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable

from .actions import AddChangeFile, AddFile, FileAction, Metadata, Protocol, RemoveFile, Snapshot
from .errors import RemoteTableError, VersionUnavailableError
from .options import timestamp_millis
from .schema import StructType

# 2022-06-01T00:00:00Z
DEFAULT_FIRST_COMMIT_MS = 1654041600000
DEFAULT_COMMIT_INTERVAL_MS = 60_000

FileSpec = tuple  # (path,) | (path, size) | (path, size, partition_values)


@dataclass(frozen=True)
class _Commit:
    version: int
    timestamp_ms: int
    metadata: Metadata
    actions: tuple[FileAction, ...] = field(default_factory=tuple)


class InMemoryTable:
    """A versioned table held in memory that speaks the RemoteTableClient protocol.

    Useful for local runs and tests. Each fetch re-signs file URLs the way a
    real sharing server does, so URLs are not stable between calls.
    """

    def __init__(
        self,
        schema: StructType,
        *,
        table_id: str = "table-0",
        name: str | None = None,
        partition_columns: Iterable[str] = (),
        url_prefix: str | None = None,
        file_format: str = "parquet",
    ) -> None:
        self.url_prefix = url_prefix
        self.protocol = Protocol(min_reader_version=1)
        self.calls: Counter[str] = Counter()
        self._commits: list[_Commit] = []
        self._retained_from = 0
        self._signatures = itertools.count()
        self._lock = threading.Lock()
        metadata = Metadata(
            id=table_id,
            name=name,
            schema=schema,
            partition_columns=tuple(partition_columns),
            format=file_format,
        )
        self._append(metadata, ())

    @property
    def latest_version(self) -> int:
        return self._commits[-1].version

    @property
    def table_id(self) -> str:
        return self._commits[-1].metadata.id

    def commit(
        self,
        *,
        add: Iterable[FileSpec | str] = (),
        remove: Iterable[str] = (),
        cdc: Iterable[FileSpec | str] = (),
        schema: StructType | None = None,
        table_id: str | None = None,
        timestamp: datetime | int | None = None,
    ) -> int:
        """Append a commit and return its version."""
        current = self._commits[-1].metadata
        metadata = current
        if schema is not None or table_id is not None:
            metadata = Metadata(
                id=table_id or current.id,
                name=current.name,
                schema=schema or current.schema,
                partition_columns=current.partition_columns,
                configuration=current.configuration,
                format=current.format,
            )
        version = len(self._commits)
        ts = self._next_timestamp(timestamp)
        actions: list[FileAction] = []
        for spec in add:
            path, size, partitions = _file_spec(spec)
            actions.append(AddFile(path, size, partitions, version, ts))
        for path in remove:
            actions.append(RemoveFile(path, version, ts))
        for spec in cdc:
            path, size, partitions = _file_spec(spec)
            actions.append(AddChangeFile(path, size, partitions, version, ts))
        self._append(metadata, tuple(actions), ts)
        return version

    def expire_before(self, version: int) -> None:
        """Drop history older than ``version``, as log retention would."""
        self._retained_from = version

    def _append(self, metadata: Metadata, actions: tuple[FileAction, ...], ts: int | None = None) -> None:
        version = len(self._commits)
        timestamp_ms = ts if ts is not None else self._next_timestamp(None)
        self._commits.append(_Commit(version, timestamp_ms, metadata, actions))

    def _next_timestamp(self, value: datetime | int | None) -> int:
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            return timestamp_millis(value)
        if isinstance(value, int):
            return value
        if not self._commits:
            return DEFAULT_FIRST_COMMIT_MS
        return self._commits[-1].timestamp_ms + DEFAULT_COMMIT_INTERVAL_MS

    def _record(self, name: str) -> None:
        with self._lock:
            self.calls[name] += 1

    def _sign(self, path: str) -> str:
        if self.url_prefix is not None:
            return f"{self.url_prefix.rstrip('/')}/{path}"
        with self._lock:
            signature = next(self._signatures)
        return f"memory://{self.table_id}/{path}?signature={signature}"

    def _check_version(self, version: int) -> None:
        if version > self.latest_version:
            raise RemoteTableError(
                f"Version {version} does not exist; latest version is {self.latest_version}",
                status_code=400,
            )
        if version < self._retained_from:
            raise VersionUnavailableError(
                f"Version {version} is before the earliest retained version {self._retained_from}",
                version=version,
                status_code=400,
            )

    def get_table_version(self) -> int:
        self._record("get_table_version")
        return self.latest_version

    def resolve_version_for_timestamp(self, timestamp: datetime) -> int | None:
        self._record("resolve_version_for_timestamp")
        wanted = timestamp_millis(timestamp)
        for entry in self._commits[self._retained_from :]:
            if entry.timestamp_ms >= wanted:
                return entry.version
        return None

    def get_metadata(self, version: int) -> tuple[Protocol, Metadata]:
        self._record("get_metadata")
        self._check_version(version)
        return self.protocol, self._commits[version].metadata

    def get_snapshot(self, version: int | None = None, timestamp: datetime | None = None) -> Snapshot:
        self._record("get_snapshot")
        if version is None and timestamp is not None:
            version = self.resolve_version_for_timestamp(timestamp)
            if version is None:
                raise RemoteTableError(f"No version at or after {timestamp}", status_code=400)
        if version is None:
            version = self.latest_version
        self._check_version(version)
        live: dict[str, AddFile] = {}
        for entry in self._commits[: version + 1]:
            for action in entry.actions:
                if isinstance(action, AddFile):
                    live[action.path] = action
                elif isinstance(action, RemoveFile):
                    live.pop(action.path, None)
        files = tuple(
            AddFile(
                path=f.path,
                size_bytes=f.size_bytes,
                partition_values=dict(f.partition_values),
                commit_version=version,
                commit_timestamp=self._commits[version].timestamp_ms,
                url=self._sign(f.path),
            )
            for f in live.values()
        )
        return Snapshot(version=version, protocol=self.protocol, metadata=self._commits[version].metadata, files=files)

    def list_changes(self, start_version: int, end_version: int) -> list[tuple[int, FileAction]]:
        self._record("list_changes")
        self._check_version(start_version)
        end_version = min(end_version, self.latest_version)
        changes: list[tuple[int, FileAction]] = []
        for entry in self._commits[start_version : end_version + 1]:
            # Reverse the stored order so callers cannot rely on response order.
            for action in reversed(entry.actions):
                changes.append((entry.version, _resign(action, self._sign(action.path))))
        return changes


def _file_spec(spec: FileSpec | str) -> tuple[str, int, dict[str, str | None]]:
    if isinstance(spec, str):
        return spec, 0, {}
    path = spec[0]
    size = int(spec[1]) if len(spec) > 1 else 0
    partitions = dict(spec[2]) if len(spec) > 2 else {}
    return path, size, partitions


def _resign(action: FileAction, url: str) -> FileAction:
    if isinstance(action, AddFile):
        return AddFile(action.path, action.size_bytes, dict(action.partition_values), action.commit_version, action.commit_timestamp, url)
    if isinstance(action, AddChangeFile):
        return AddChangeFile(
            action.path, action.size_bytes, dict(action.partition_values), action.commit_version, action.commit_timestamp, url
        )
    return RemoveFile(action.path, action.commit_version, action.commit_timestamp, url)
