from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable

from ..errors import InvalidOffsetError
from ..offsets import Offset
from .types import BatchRecord, atomic_write_json, list_batch_ids

logger = logging.getLogger("sharing_incremental")

FORMAT_VERSION = 1


class SharingStreamCheckpoint:
    """Write-ahead offset log and commit log for one stream.

    ``offsets/{id}.json`` is written before a batch is handed to the writer and
    ``commits/{id}.json`` after it succeeded. An offset without a commit is
    replayed with the same start and end on restart.
    """

    def __init__(self, checkpoint_dir: str | Path) -> None:
        self.checkpoint_dir = Path(checkpoint_dir)
        self.offset_dir = self.checkpoint_dir / "offsets"
        self.commit_dir = self.checkpoint_dir / "commits"
        self._metadata_path = self.checkpoint_dir / "metadata.json"
        self._ensure_dirs()
        self._metadata = self._load_or_create_metadata()

    def _ensure_dirs(self) -> None:
        self.offset_dir.mkdir(parents=True, exist_ok=True)
        self.commit_dir.mkdir(parents=True, exist_ok=True)

    def _load_or_create_metadata(self) -> dict:
        if self._metadata_path.exists():
            payload = json.loads(self._metadata_path.read_text())
            if int(payload.get("format_version", FORMAT_VERSION)) > FORMAT_VERSION:
                raise InvalidOffsetError(
                    f"Checkpoint {self.checkpoint_dir} was written by a newer release; upgrade sharing-incremental."
                )
            return payload
        payload = {
            "format_version": FORMAT_VERSION,
            "source": "sharing",
            "created_at": time.time(),
        }
        atomic_write_json(self._metadata_path, payload)
        return payload

    def _save_metadata(self) -> None:
        atomic_write_json(self._metadata_path, self._metadata)

    def _batch_path(self, directory: Path, batch_id: int) -> Path:
        return directory / f"{batch_id}.json"

    def initial_offset(self, start_config: dict[str, Any], resolve: Callable[[], Offset]) -> Offset:
        """Return the stream's first offset, resolving and storing it on first use."""
        stored = self._metadata.get("initial_offset")
        if isinstance(stored, dict):
            self._warn_if_start_ignored(start_config)
            return Offset.from_dict(stored)
        offset = resolve()
        self._metadata["start_offset"] = start_config
        self._metadata["initial_offset"] = offset.to_dict()
        self._save_metadata()
        return offset

    def _warn_if_start_ignored(self, start_config: dict[str, Any]) -> None:
        existing = self._metadata.get("start_offset")
        if not isinstance(existing, dict) or start_config.get("mode") == "latest":
            return
        if existing != start_config:
            logger.warning(
                "startingVersion/startingTimestamp is ignored because the checkpoint already "
                "stores start_offset=%r. Use a new checkpoint directory to change it.",
                existing,
            )

    def latest_offset_batch_id(self) -> int | None:
        ids = list_batch_ids(self.offset_dir)
        return ids[-1] if ids else None

    def latest_commit_batch_id(self) -> int | None:
        ids = list_batch_ids(self.commit_dir)
        return ids[-1] if ids else None

    def committed_batch_ids(self) -> list[int]:
        return list_batch_ids(self.commit_dir)

    def next_batch_id(self) -> int:
        latest = self.latest_offset_batch_id()
        return 0 if latest is None else latest + 1

    def read_offset(self, batch_id: int) -> BatchRecord:
        path = self._batch_path(self.offset_dir, batch_id)
        return BatchRecord.from_dict(json.loads(path.read_text()))

    def write_offset(self, record: BatchRecord) -> None:
        path = self._batch_path(self.offset_dir, record.batch_id)
        if path.exists():
            return
        atomic_write_json(path, record.to_dict())

    def pending_batch(self) -> BatchRecord | None:
        """The planned batch that was never committed, if any."""
        latest_offset = self.latest_offset_batch_id()
        if latest_offset is None:
            return None
        latest_commit = self.latest_commit_batch_id()
        if latest_commit is not None and latest_commit >= latest_offset:
            return None
        return self.read_offset(latest_offset)

    def last_committed_end(self) -> Offset | None:
        latest_commit = self.latest_commit_batch_id()
        if latest_commit is None:
            return None
        return self.read_offset(latest_commit).end

    def commit_batch(self, record: BatchRecord, file_count: int, metadata: dict | None = None) -> None:
        payload = {
            "batch_id": record.batch_id,
            "committed_at": time.time(),
            "file_count": file_count,
            "end": record.end.to_dict(),
            "metadata": metadata or {},
        }
        atomic_write_json(self._batch_path(self.commit_dir, record.batch_id), payload)
