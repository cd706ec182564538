from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Sequence

from .actions import AddFile, FileAction
from .errors import (
    InvalidOffsetError,
    SchemaIncompatibilityError,
    TableIdentityMismatchError,
    UnsupportedChangeError,
)
from .guards import ChangeSemanticsGuard, SchemaCompatibilityGuard
from .offsets import BASE_INDEX, Offset
from .options import ReadLimit

if TYPE_CHECKING:
    from .context import StreamContext

logger = logging.getLogger("sharing_incremental")

_GUARD_ERRORS = (SchemaIncompatibilityError, UnsupportedChangeError)


class ChangeFeedPlanner:
    """Turns the remote change log into bounded, resumable offset ranges.

    ``latest_offset`` only decides how far the next batch reaches;
    ``get_batch`` re-derives the files of a range from the two offsets alone,
    so a batch can be rebuilt after a crash. ``start`` is the offset the stream
    began at; when it is unset the first offset planned from stands in for it.
    """

    def __init__(
        self,
        context: "StreamContext",
        schema_guard: SchemaCompatibilityGuard | None = None,
        change_guard: ChangeSemanticsGuard | None = None,
    ) -> None:
        self.context = context
        self.schema_guard = schema_guard or SchemaCompatibilityGuard(context)
        self.change_guard = change_guard or ChangeSemanticsGuard(
            ignore_deletes=context.options.ignore_deletes,
            ignore_changes=context.options.ignore_changes,
        )
        self.start: Offset | None = None
        self._planned = False

    def set_start(self, start: Offset) -> None:
        if self.start == start:
            return
        if self._planned:
            raise InvalidOffsetError(
                f"Stream already planned from {self.start or 'an earlier offset'}; it cannot be re-based on {start}. "
                "Create a new source to resume from a different checkpoint."
            )
        if self.schema_guard.reference is not None:
            logger.warning(
                "event=schema_reference_reset reference_version=%s start_version=%s",
                self.schema_guard.reference_version,
                start.table_version,
            )
            self.schema_guard.reset()
        self.start = start

    def latest_offset(self, prior: Offset, limit: ReadLimit) -> Offset | None:
        latest_version = self.context.latest_version()
        if prior.is_starting_version and prior.table_version > latest_version:
            logger.info(
                "event=offset_unchanged reason=starting_version_ahead starting_version=%s latest_version=%s",
                prior.table_version,
                latest_version,
            )
            return None
        self._check_identity(prior, latest_version)
        self._planned = True
        self.schema_guard.observe_start(self.start or prior)

        budget = limit.max_files
        position = prior
        if prior.is_starting_version:
            snapshot = self.context.snapshot(prior.table_version)
            if snapshot.metadata.id != prior.table_id:
                raise TableIdentityMismatchError(prior.table_id, snapshot.metadata.id)
            files = snapshot.ordered_files()
            remaining = len(files) - (prior.index + 1)
            if remaining > budget:
                position = Offset(
                    table_id=prior.table_id,
                    table_version=prior.table_version,
                    index=prior.index + budget,
                    is_starting_version=True,
                )
                budget = 0
            else:
                budget -= remaining
                position = prior.next_version()
        if budget > 0:
            position = self._scan(prior, position, latest_version, budget)

        self.context.cache.evict_before(prior.table_version, keep=(self.schema_guard.reference_version,))
        if position == prior:
            logger.debug("event=offset_unchanged table_version=%s index=%s", prior.table_version, prior.index)
            return None
        logger.info(
            "event=offset_proposed table_version=%s index=%s is_starting_version=%s prior_version=%s prior_index=%s",
            position.table_version,
            position.index,
            position.is_starting_version,
            prior.table_version,
            prior.index,
        )
        return position

    def _scan(self, prior: Offset, position: Offset, latest_version: int, budget: int) -> Offset:
        """Consume incremental versions from ``position`` until ``budget`` actions are spent."""
        start = position
        window = self.context.options.versions_per_fetch
        version = position.table_version
        while budget > 0 and version <= latest_version:
            window_end = min(latest_version, version + window - 1)
            changes = self.context.changes(version, window_end)
            self.schema_guard.prefetch(range(version, window_end + 1))
            for current in range(version, window_end + 1):
                actions = changes[current]
                try:
                    self._check_version(current, actions, prior.table_id)
                except _GUARD_ERRORS as exc:
                    if position != prior:
                        # Hand out what precedes the rejected version first; the
                        # next poll starts on it and raises.
                        logger.info(
                            "event=plan_stopped table_version=%s reason=%s",
                            current,
                            type(exc).__name__,
                        )
                        return position
                    logger.error("event=guard_failed table_version=%s error=%s", current, exc)
                    raise
                first = start.index + 1 if current == start.table_version else 0
                remaining = len(actions) - first
                if remaining > budget:
                    return Offset(table_id=prior.table_id, table_version=current, index=first + budget - 1)
                budget -= remaining
                position = Offset(table_id=prior.table_id, table_version=current + 1, index=BASE_INDEX)
                if budget == 0:
                    return position
            version = window_end + 1
        return position

    def get_batch(self, start: Offset, end: Offset) -> list[AddFile]:
        """Files strictly after ``start`` up to and including ``end``."""
        if start.table_id != end.table_id:
            raise TableIdentityMismatchError(start.table_id, end.table_id)
        if end == start:
            return []
        if end <= start:
            raise InvalidOffsetError(f"End offset {end} is before start offset {start}")
        if end.is_starting_version and not (
            start.is_starting_version and start.table_version == end.table_version
        ):
            raise InvalidOffsetError(f"End offset {end} is inside a starting snapshot that {start} is not part of")
        self._planned = True
        self.schema_guard.observe_start(self.start or start)

        emitted: list[AddFile] = []
        position = start
        if start.is_starting_version:
            snapshot = self.context.snapshot(start.table_version)
            if snapshot.metadata.id != start.table_id:
                raise TableIdentityMismatchError(start.table_id, snapshot.metadata.id)
            files = snapshot.ordered_files()
            stop = end.index + 1 if end.is_starting_version else len(files)
            if stop > len(files):
                raise InvalidOffsetError(f"End offset {end} is past the {len(files)} files of the starting snapshot")
            emitted.extend(files[start.index + 1 : stop])
            if end.is_starting_version:
                return emitted
            position = start.next_version()

        last_version = end.table_version if end.index >= 0 else end.table_version - 1
        if last_version < position.table_version:
            return emitted
        changes = self.context.changes(position.table_version, last_version)
        self.schema_guard.prefetch(range(position.table_version, last_version + 1))
        for version in range(position.table_version, last_version + 1):
            actions = changes[version]
            try:
                self._check_version(version, actions, start.table_id)
            except _GUARD_ERRORS as exc:
                logger.error("event=guard_failed table_version=%s error=%s", version, exc)
                raise
            first = position.index + 1 if version == position.table_version else 0
            stop = end.index + 1 if version == end.table_version else len(actions)
            if stop > len(actions):
                raise InvalidOffsetError(f"End offset {end} is past the {len(actions)} actions of version {version}")
            emitted.extend(self.change_guard.emit(actions[first:stop]))
        logger.debug(
            "event=batch_planned start_version=%s end_version=%s files=%s",
            start.table_version,
            end.table_version,
            len(emitted),
        )
        return emitted

    def _check_identity(self, prior: Offset, version: int) -> None:
        table_id = self.context.table_id(version)
        if table_id != prior.table_id:
            logger.error("event=table_replaced expected=%s actual=%s", prior.table_id, table_id)
            raise TableIdentityMismatchError(prior.table_id, table_id)

    def _check_version(self, version: int, actions: Sequence[FileAction], table_id: str) -> None:
        self.schema_guard.check_version(version, table_id)
        self.change_guard.classify_version(version, actions)
