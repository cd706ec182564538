from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from .errors import InvalidOffsetError, TableIdentityMismatchError, TimestampOutOfRangeError

if TYPE_CHECKING:
    from .context import StreamContext

logger = logging.getLogger("sharing_incremental")

OFFSET_SOURCE_VERSION = 1
BASE_INDEX = -1


@dataclass(frozen=True)
class Offset:
    """Resumable stream position.

    ``index == -1`` sits at the start of ``table_version``: every earlier version
    is consumed and nothing of ``table_version`` is. ``index >= 0`` means the
    first ``index + 1`` actions of ``table_version`` (or of the starting
    snapshot when ``is_starting_version``) are consumed and more remain.
    """

    table_id: str
    table_version: int
    index: int = BASE_INDEX
    is_starting_version: bool = False
    source_version: int = OFFSET_SOURCE_VERSION

    def __post_init__(self) -> None:
        if self.table_version < 0:
            raise InvalidOffsetError(f"table_version must be >= 0, got {self.table_version}")
        if self.index < BASE_INDEX:
            raise InvalidOffsetError(f"index must be >= -1, got {self.index}")

    def sort_key(self) -> tuple[int, int]:
        return self.table_version, self.index

    def __lt__(self, other: "Offset") -> bool:
        return self.sort_key() < other.sort_key()

    def __le__(self, other: "Offset") -> bool:
        return self.sort_key() <= other.sort_key()

    def __gt__(self, other: "Offset") -> bool:
        return self.sort_key() > other.sort_key()

    def __ge__(self, other: "Offset") -> bool:
        return self.sort_key() >= other.sort_key()

    def next_version(self) -> "Offset":
        return replace(self, table_version=self.table_version + 1, index=BASE_INDEX, is_starting_version=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sourceVersion": self.source_version,
            "tableId": self.table_id,
            "tableVersion": self.table_version,
            "index": self.index,
            "isStartingVersion": self.is_starting_version,
        }

    def encode(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Offset":
        try:
            source_version = int(payload["sourceVersion"])
            table_id = payload["tableId"]
            table_version = payload["tableVersion"]
            index = payload["index"]
            is_starting_version = payload["isStartingVersion"]
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidOffsetError(f"Malformed offset: {payload!r}") from exc
        if source_version > OFFSET_SOURCE_VERSION:
            raise InvalidOffsetError(
                f"Offset was written by a newer release (sourceVersion={source_version}, "
                f"supported={OFFSET_SOURCE_VERSION}); upgrade sharing-incremental."
            )
        if not isinstance(table_id, str) or not isinstance(is_starting_version, bool):
            raise InvalidOffsetError(f"Malformed offset: {payload!r}")
        if isinstance(table_version, bool) or not isinstance(table_version, int):
            raise InvalidOffsetError(f"Malformed offset: {payload!r}")
        if isinstance(index, bool) or not isinstance(index, int):
            raise InvalidOffsetError(f"Malformed offset: {payload!r}")
        return cls(
            table_id=table_id,
            table_version=table_version,
            index=index,
            is_starting_version=is_starting_version,
            source_version=source_version,
        )

    @classmethod
    def decode(cls, value: str) -> "Offset":
        try:
            payload = json.loads(value)
        except json.JSONDecodeError as exc:
            raise InvalidOffsetError(f"Offset is not valid JSON: {value!r}") from exc
        if not isinstance(payload, dict):
            raise InvalidOffsetError(f"Malformed offset: {value!r}")
        return cls.from_dict(payload)


def compare_offsets(a: Offset, b: Offset) -> int:
    if a.table_id != b.table_id:
        raise TableIdentityMismatchError(a.table_id, b.table_id)
    if a.sort_key() < b.sort_key():
        return -1
    if a.sort_key() > b.sort_key():
        return 1
    return 0


class OffsetTracker:
    def __init__(self, context: "StreamContext") -> None:
        self.context = context

    def resolve_initial_offset(self) -> Offset:
        options = self.context.options
        client = self.context.client
        latest_version = client.get_table_version()
        table_id = self.context.table_id(latest_version)

        if options.starting_timestamp is not None:
            resolved = client.resolve_version_for_timestamp(options.starting_timestamp)
            if resolved is None:
                raise TimestampOutOfRangeError(options.starting_timestamp_raw or "", latest_version)
            offset = Offset(table_id=table_id, table_version=resolved, is_starting_version=True)
            mode = "timestamp"
        elif isinstance(options.starting_version, int):
            offset = Offset(table_id=table_id, table_version=options.starting_version, is_starting_version=True)
            mode = "version"
        else:
            offset = Offset(table_id=table_id, table_version=latest_version + 1)
            mode = "latest"

        logger.info(
            "event=initial_offset mode=%s table_version=%s is_starting_version=%s",
            mode,
            offset.table_version,
            offset.is_starting_version,
        )
        return offset
