from __future__ import annotations

import logging
import threading
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable

from .actions import FileAction, Metadata, Protocol, Snapshot, order_actions
from .cache import SnapshotCache
from .client import RemoteTableClient
from .errors import RemoteTableError
from .options import SharingOptions

logger = logging.getLogger("sharing_incremental")

SUPPORTED_READER_VERSION = 1


class StreamContext:
    """Everything one stream owns: the client, its options, a cache and a worker pool.

    A context is created per stream and closed when the stream stops, so two
    streams never share cached state.
    """

    def __init__(
        self,
        client: RemoteTableClient,
        options: SharingOptions | None = None,
        *,
        cache: SnapshotCache | None = None,
    ) -> None:
        self.client = client
        self.options = options or SharingOptions()
        self.cache = cache or SnapshotCache()
        self._executor: ThreadPoolExecutor | None = None
        self._lock = threading.Lock()

    @property
    def executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.options.max_workers,
                    thread_name_prefix="sharing-incremental",
                )
            return self._executor

    def latest_version(self) -> int:
        return self.client.get_table_version()

    def table_id(self, version: int) -> str:
        return self.metadata(version)[1].id

    def metadata(self, version: int) -> tuple[Protocol, Metadata]:
        cached = self.cache.get_metadata(version)
        if cached is not None:
            return cached
        protocol, metadata = self.client.get_metadata(version)
        _check_protocol(version, protocol)
        return self.cache.put_metadata(version, (protocol, metadata))

    def metadata_many(self, versions: Iterable[int]) -> list[tuple[Protocol, Metadata]]:
        """Metadata for ``versions`` in the given order; missing entries are fetched in parallel."""
        versions = list(versions)
        missing = [v for v in versions if self.cache.get_metadata(v) is None]
        if len(missing) > 1:
            list(self.executor.map(self.metadata, missing))
        return [self.metadata(v) for v in versions]

    def snapshot(self, version: int) -> Snapshot:
        cached = self.cache.get_snapshot(version)
        if cached is not None:
            return cached
        snapshot = self.client.get_snapshot(version=version)
        if snapshot.version != version:
            raise RemoteTableError(f"Requested snapshot at version {version}, got version {snapshot.version}")
        _check_protocol(version, snapshot.protocol)
        return self.cache.put_snapshot(snapshot)

    def changes(self, start_version: int, end_version: int) -> dict[int, tuple[FileAction, ...]]:
        """Ordered actions for every version in ``[start_version, end_version]``.

        Versions without file actions map to an empty tuple. Uncached ranges
        are fetched in windows of ``versions_per_fetch`` versions.
        """
        result: dict[int, tuple[FileAction, ...]] = {}
        missing: list[int] = []
        for version in range(start_version, end_version + 1):
            cached = self.cache.get_changes(version)
            if cached is None:
                missing.append(version)
            else:
                result[version] = cached
        for window_start, window_end in _windows(missing, self.options.versions_per_fetch):
            result.update(self._fetch_changes(window_start, window_end))
        return result

    def _fetch_changes(self, start_version: int, end_version: int) -> dict[int, tuple[FileAction, ...]]:
        grouped: dict[int, list[FileAction]] = defaultdict(list)
        for version, action in self.client.list_changes(start_version, end_version):
            if not start_version <= version <= end_version:
                raise RemoteTableError(
                    f"Change list for versions {start_version}-{end_version} contains version {version}"
                )
            grouped[version].append(action)
        logger.debug(
            "event=changes_fetched start_version=%s end_version=%s actions=%s",
            start_version,
            end_version,
            sum(len(actions) for actions in grouped.values()),
        )
        return {
            version: self.cache.put_changes(version, order_actions(grouped.get(version, [])))
            for version in range(start_version, end_version + 1)
        }

    def close(self) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
        self.cache.clear()

    def __enter__(self) -> "StreamContext":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def _check_protocol(version: int, protocol: Protocol) -> None:
    if protocol.min_reader_version > SUPPORTED_READER_VERSION:
        raise RemoteTableError(
            f"Table at version {version} requires reader version {protocol.min_reader_version}; "
            f"this release supports {SUPPORTED_READER_VERSION}. Upgrade sharing-incremental."
        )


def _windows(versions: list[int], size: int) -> list[tuple[int, int]]:
    """Split sorted versions into contiguous ranges of at most ``size`` versions."""
    windows: list[tuple[int, int]] = []
    for version in versions:
        if windows and version == windows[-1][1] + 1 and version - windows[-1][0] < size:
            windows[-1] = (windows[-1][0], version)
        else:
            windows.append((version, version))
    return windows
