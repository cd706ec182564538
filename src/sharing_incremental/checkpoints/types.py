from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..offsets import Offset


@dataclass(frozen=True)
class BatchRecord:
    """One planned batch: the offsets on either side of it."""

    batch_id: int
    start: Offset
    end: Offset
    created_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "created_at": self.created_at,
            "start": self.start.to_dict(),
            "end": self.end.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "BatchRecord":
        return cls(
            batch_id=int(payload["batch_id"]),
            start=Offset.from_dict(payload["start"]),
            end=Offset.from_dict(payload["end"]),
            created_at=float(payload["created_at"]),
        )


def _fsync_dir(path: Path) -> None:
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def atomic_write_json(path: Path, payload: dict[str, Any]) -> None:
    """Replace ``path`` so readers see either the old document or the new one."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, sort_keys=True)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    _fsync_dir(path.parent)


def list_batch_ids(directory: Path) -> list[int]:
    """Ids of the ``<batch_id>.json`` entries in ``directory``, ascending."""
    return sorted(int(path.stem) for path in directory.glob("*.json") if path.stem.isdigit())
