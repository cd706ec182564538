from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .actions import ScanTask
    from .checkpoints import BatchRecord
    from .offsets import Offset


class PipelineObserver(Protocol):
    """Hooks ``Pipeline.run`` calls synchronously as a batch moves through it.

    ``on_stage_end`` fires for the ``plan``, ``reader``, ``writer`` and
    ``commit`` stages; ``on_error`` replaces it when a stage raises.
    """

    def on_batch_planned(self, batch: "BatchRecord", tasks: list["ScanTask"]) -> None:
        raise NotImplementedError

    def on_stage_end(
        self,
        stage: str,
        batch_id: int | None,
        duration_s: float,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        raise NotImplementedError

    def on_batch_committed(self, batch: "BatchRecord", metadata: dict[str, Any] | None = None) -> None:
        raise NotImplementedError

    def on_error(self, stage: str, batch_id: int | None, exc: Exception) -> None:
        raise NotImplementedError


class LoggingObserver:
    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("sharing_incremental")

    def on_batch_planned(self, batch: "BatchRecord", tasks: list["ScanTask"]) -> None:
        self._info(
            "batch_planned",
            {
                "batch_id": batch.batch_id,
                "start": _position(batch.start),
                "end": _position(batch.end),
                "files": len(tasks),
                "bytes": sum(task.size_bytes for task in tasks),
            },
        )

    def on_stage_end(
        self,
        stage: str,
        batch_id: int | None,
        duration_s: float,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        fields = {"stage": stage, "batch_id": batch_id, "duration_ms": round(duration_s * 1000, 3)}
        self._info("stage_end", fields, metadata)

    def on_batch_committed(self, batch: "BatchRecord", metadata: dict[str, Any] | None = None) -> None:
        self._info("batch_committed", {"batch_id": batch.batch_id, "end": _position(batch.end)}, metadata)

    def on_error(self, stage: str, batch_id: int | None, exc: Exception) -> None:
        self._logger.error(
            "event=error stage=%s batch_id=%s error_type=%s error=%s",
            stage,
            batch_id,
            type(exc).__name__,
            exc,
            exc_info=exc,
        )

    def _info(self, event: str, fields: dict[str, Any], extra: dict[str, Any] | None = None) -> None:
        # Writer metadata never overrides the fixed fields.
        merged = dict(fields)
        for key, value in (extra or {}).items():
            merged.setdefault(key, value)
        self._logger.info("event=%s %s", event, " ".join(f"{key}={value}" for key, value in merged.items()))


def _position(offset: "Offset") -> str:
    suffix = "s" if offset.is_starting_version else ""
    return f"{offset.table_version}:{offset.index}{suffix}"
