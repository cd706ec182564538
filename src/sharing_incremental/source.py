from __future__ import annotations

import logging
from typing import Any, Mapping

import polars as pl

from .actions import ScanTask
from .client import RemoteTableClient, RestSharingClient
from .context import StreamContext
from .errors import ConfigurationError, InvalidOffsetError
from .offsets import Offset, OffsetTracker
from .options import ReadLimit, SharingOptions
from .planner import ChangeFeedPlanner
from .profile import ShareProfile, parse_table_url
from .schema import StructType

logger = logging.getLogger("sharing_incremental")


def read_scan_tasks(
    tasks: list[ScanTask],
    schema: StructType,
    *,
    with_commit_metadata: bool = False,
) -> pl.DataFrame:
    """Materialize scan tasks into one frame shaped like ``schema``.

    Partition values are not stored in the files, so they are added back as
    literal columns. Columns missing from older files are filled with nulls.
    """
    target = schema.to_polars()
    if not tasks:
        frame = pl.DataFrame(schema=target)
        if with_commit_metadata:
            frame = frame.with_columns(
                pl.lit(None, dtype=pl.Int64).alias("_commit_version"),
                pl.lit(None, dtype=pl.Int64).alias("_commit_timestamp"),
            )
        return frame

    frames = []
    for task in tasks:
        if task.format != "parquet":
            raise ConfigurationError(f"Unsupported file format for {task.path}: {task.format}")
        df = pl.read_parquet(task.url or task.path)
        for column, value in task.partition_values.items():
            if column in target and column not in df.columns:
                df = df.with_columns(pl.lit(value, dtype=pl.String).cast(target[column]).alias(column))
        df = df.select(
            [
                pl.col(name).cast(dtype) if name in df.columns else pl.lit(None, dtype=dtype).alias(name)
                for name, dtype in target.items()
            ]
        )
        if with_commit_metadata:
            df = df.with_columns(
                pl.lit(task.commit_version, dtype=pl.Int64).alias("_commit_version"),
                pl.lit(task.commit_timestamp, dtype=pl.Int64).alias("_commit_timestamp"),
            )
        frames.append(df)
    return pl.concat(frames, how="vertical")


class SharingSource:
    """Pull-based incremental source over one shared table.

    The host calls ``initial_offset`` once, then alternates ``latest_offset``
    and ``get_batch``, persisting each end offset once the batch is handed
    off. A host restarting from its own log passes the stream's first offset
    to ``resume_from`` instead. ``stop`` releases the stream's cache and
    worker pool.
    """

    def __init__(
        self,
        client: RemoteTableClient,
        options: SharingOptions | Mapping[str, Any] | None = None,
        *,
        owns_client: bool = False,
    ) -> None:
        if not isinstance(options, SharingOptions):
            options = SharingOptions.from_options(options)
        self.options = options
        self.client = client
        self.context = StreamContext(client, options)
        self.tracker = OffsetTracker(self.context)
        self.planner = ChangeFeedPlanner(self.context)
        self._owns_client = owns_client

    @classmethod
    def from_url(
        cls,
        url: str,
        options: Mapping[str, Any] | None = None,
        **client_options: Any,
    ) -> "SharingSource":
        """Open ``<profile-file>#<share>.<schema>.<table>`` over REST."""
        profile_path, table = parse_table_url(url)
        profile = ShareProfile.from_file(profile_path)
        client = RestSharingClient(profile, table, **client_options)
        logger.info("event=source_opened table=%s endpoint=%s", table, profile.endpoint)
        try:
            return cls(client, options, owns_client=True)
        except Exception:
            client.close()
            raise

    def get_default_limit(self) -> ReadLimit:
        return self.options.default_limit()

    def initial_offset(self) -> Offset:
        """Resolve the starting options once; later calls return the same offset."""
        if self.planner.start is None:
            self.planner.set_start(self.tracker.resolve_initial_offset())
        return self.planner.start

    def resume_from(self, initial: Offset) -> None:
        self.planner.set_start(initial)

    def latest_offset(self, prior: Offset, limit: ReadLimit | None = None) -> Offset | None:
        return self.planner.latest_offset(prior, limit or self.get_default_limit())

    def get_batch(self, start: Offset, end: Offset) -> list[ScanTask]:
        return [
            ScanTask.from_action(action, self.context.metadata(action.commit_version)[1].format)
            for action in self.planner.get_batch(start, end)
        ]

    def schema(self) -> StructType:
        """The table schema in effect at the stream's first offset."""
        guard = self.planner.schema_guard
        if guard.reference is None:
            start = self.initial_offset()
            if start.is_starting_version and start.table_version > self.context.latest_version():
                raise InvalidOffsetError(
                    f"The schema is not known until the table reaches starting version {start.table_version}. "
                    "Poll latest_offset until it returns a batch."
                )
            guard.observe_start(start)
        return guard.reference

    def read_batch(self, tasks: list[ScanTask], *, with_commit_metadata: bool = False) -> pl.DataFrame:
        return read_scan_tasks(tasks, self.schema(), with_commit_metadata=with_commit_metadata)

    def stop(self) -> None:
        self.context.close()
        if self._owns_client:
            close = getattr(self.client, "close", None)
            if close is not None:
                close()

    def __enter__(self) -> "SharingSource":
        return self

    def __exit__(self, *exc: object) -> None:
        self.stop()
