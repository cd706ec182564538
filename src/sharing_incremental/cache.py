from __future__ import annotations

import logging
import threading
from typing import Iterable

from .actions import FileAction, Metadata, Protocol, Snapshot
from .errors import InconsistentChangeLogError

logger = logging.getLogger("sharing_incremental")


class SnapshotCache:
    """Per-stream memo of protocol/metadata, snapshots and change lists by version.

    Entries are immutable and the first successful insert for a version wins.
    Change lists are stored for every version a fetch covered, including
    versions without file actions, so "not cached" and "no changes" differ.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._metadata: dict[int, tuple[Protocol, Metadata]] = {}
        self._snapshots: dict[int, Snapshot] = {}
        self._changes: dict[int, tuple[FileAction, ...]] = {}

    def get_metadata(self, version: int) -> tuple[Protocol, Metadata] | None:
        with self._lock:
            return self._metadata.get(version)

    def put_metadata(self, version: int, value: tuple[Protocol, Metadata]) -> tuple[Protocol, Metadata]:
        with self._lock:
            return self._metadata.setdefault(version, value)

    def get_snapshot(self, version: int) -> Snapshot | None:
        with self._lock:
            return self._snapshots.get(version)

    def put_snapshot(self, snapshot: Snapshot) -> Snapshot:
        with self._lock:
            existing = self._snapshots.setdefault(snapshot.version, snapshot)
            self._metadata.setdefault(snapshot.version, (snapshot.protocol, snapshot.metadata))
            return existing

    def get_changes(self, version: int) -> tuple[FileAction, ...] | None:
        with self._lock:
            return self._changes.get(version)

    def put_changes(self, version: int, actions: Iterable[FileAction]) -> tuple[FileAction, ...]:
        value = tuple(actions)
        with self._lock:
            existing = self._changes.get(version)
            if existing is None:
                self._changes[version] = value
                return value
        if existing != value:
            raise InconsistentChangeLogError(version)
        return existing

    def evict_before(self, version: int, keep: Iterable[int | None] = ()) -> int:
        """Drop entries of versions below ``version``, except the metadata of versions in ``keep``."""
        kept = set(keep)
        with self._lock:
            changes = [v for v in self._changes if v < version]
            snapshots = [v for v in self._snapshots if v < version]
            metadata = [v for v in self._metadata if v < version and v not in kept]
            for v in changes:
                del self._changes[v]
            for v in snapshots:
                del self._snapshots[v]
            for v in metadata:
                del self._metadata[v]
        evicted = len(changes) + len(snapshots) + len(metadata)
        if evicted:
            logger.debug(
                "event=cache_evicted before_version=%s changes=%s snapshots=%s metadata=%s",
                version,
                len(changes),
                len(snapshots),
                len(metadata),
            )
        return evicted

    def clear(self) -> None:
        with self._lock:
            self._metadata.clear()
            self._snapshots.clear()
            self._changes.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._metadata) + len(self._snapshots) + len(self._changes)
