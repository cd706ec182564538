from __future__ import annotations

import inspect
import os
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator

from .actions import ScanTask
from .checkpoints import BatchRecord, SharingStreamCheckpoint
from .errors import (
    CommitError,
    PlanningError,
    ReaderError,
    SharingIncrementalError,
    WriterError,
)
from .observability import PipelineObserver
from .options import ReadLimit
from .source import SharingSource

try:
    import fcntl  # type: ignore
except ImportError:  # pragma: no cover
    fcntl = None


@dataclass(frozen=True)
class RunResult:
    batches: int


@dataclass(frozen=True)
class Pipeline:
    """Host poll loop: plan, read, write, then commit one batch at a time.

    ``reader`` defaults to ``source.read_batch``. ``writer`` receives the
    reader's output and may also accept ``batch``, ``batch_id`` or ``tasks``
    keyword arguments.
    """

    source: SharingSource
    checkpoint_dir: str | Path
    writer: Callable[..., Any]
    reader: Callable[..., Any] | None = None
    limit: ReadLimit | None = None
    observer: PipelineObserver | None = None

    def run(
        self,
        *,
        once: bool = True,
        sleep: float = 1.0,
        max_batches: int | None = None,
        sleep_when_idle: float | None = None,
        max_idle_loops: int | None = None,
    ) -> RunResult:
        if self.writer is None:
            raise ValueError("writer is required")
        checkpoint = SharingStreamCheckpoint(self.checkpoint_dir)
        with _pipeline_lock(Path(self.checkpoint_dir)):
            return _run_loop(
                source=self.source,
                checkpoint=checkpoint,
                reader=self.reader or self.source.read_batch,
                writer=self.writer,
                limit=self.limit or self.source.get_default_limit(),
                run_once=once,
                sleep=sleep,
                max_batches=max_batches,
                sleep_when_idle=sleep_when_idle,
                max_idle_loops=max_idle_loops,
                observer=self.observer,
            )


def _call_with_context(
    func: Callable[..., Any],
    first_arg: Any,
    batch: BatchRecord,
    tasks: list[ScanTask],
) -> Any:
    try:
        sig = inspect.signature(func)
    except (TypeError, ValueError):
        return func(first_arg)

    params = list(sig.parameters.values())
    accepts_var_kw = any(p.kind == inspect.Parameter.VAR_KEYWORD for p in params)
    kwargs: dict[str, Any] = {}
    if accepts_var_kw or "batch" in sig.parameters:
        kwargs["batch"] = batch
    if accepts_var_kw or "batch_id" in sig.parameters:
        kwargs["batch_id"] = batch.batch_id
    if (accepts_var_kw or "tasks" in sig.parameters) and first_arg is not tasks:
        kwargs["tasks"] = tasks
    return func(first_arg, **kwargs)


@contextmanager
def _pipeline_lock(checkpoint_dir: Path) -> Iterator[None]:
    if os.getenv("SHARING_INCREMENTAL_DISABLE_LOCK") == "1":
        yield
        return
    lock_path = checkpoint_dir / ".pipeline.lock"
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    if fcntl is None:
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError as exc:
            raise RuntimeError("pipeline lock already held") from exc
        with os.fdopen(fd, "w") as handle:
            handle.write(f"pid={os.getpid()}\n")
        try:
            yield
        finally:
            lock_path.unlink(missing_ok=True)
        return
    with lock_path.open("a+") as handle:
        fcntl.flock(handle, fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle, fcntl.LOCK_UN)


def _plan(source: SharingSource, checkpoint: SharingStreamCheckpoint, limit: ReadLimit) -> BatchRecord | None:
    initial = checkpoint.initial_offset(source.options.start_config(), source.initial_offset)
    source.resume_from(initial)
    pending = checkpoint.pending_batch()
    if pending is not None:
        return pending
    start = checkpoint.last_committed_end() or initial
    end = source.latest_offset(start, limit)
    if end is None:
        return None
    record = BatchRecord(
        batch_id=checkpoint.next_batch_id(),
        start=start,
        end=end,
        created_at=time.time(),
    )
    checkpoint.write_offset(record)
    return record


def _run_loop(
    *,
    source: SharingSource,
    checkpoint: SharingStreamCheckpoint,
    reader: Callable[..., Any],
    writer: Callable[..., Any],
    limit: ReadLimit,
    run_once: bool,
    sleep: float,
    max_batches: int | None,
    sleep_when_idle: float | None,
    max_idle_loops: int | None,
    observer: PipelineObserver | None,
) -> RunResult:
    batches = 0
    idle_loops = 0

    def process_one() -> bool:
        nonlocal batches, idle_loops
        try:
            start = time.perf_counter()
            batch = _plan(source, checkpoint, limit)
            tasks = source.get_batch(batch.start, batch.end) if batch is not None else []
            if observer is not None:
                observer.on_stage_end(
                    "plan",
                    getattr(batch, "batch_id", None),
                    time.perf_counter() - start,
                    metadata={"has_batch": batch is not None},
                )
        except SharingIncrementalError as exc:
            if observer is not None:
                observer.on_error("plan", None, exc)
            raise
        except Exception as exc:
            if observer is not None:
                observer.on_error("plan", None, exc)
            raise PlanningError("Failed to plan batch") from exc
        if batch is None:
            return False
        if observer is not None:
            observer.on_batch_planned(batch, tasks)
        try:
            start = time.perf_counter()
            data = _call_with_context(reader, tasks, batch, tasks)
            if observer is not None:
                observer.on_stage_end(
                    "reader",
                    batch.batch_id,
                    time.perf_counter() - start,
                    metadata={"file_count": len(tasks)},
                )
        except SharingIncrementalError as exc:
            if observer is not None:
                observer.on_error("reader", batch.batch_id, exc)
            raise
        except Exception as exc:
            if observer is not None:
                observer.on_error("reader", batch.batch_id, exc)
            raise ReaderError(_stage_error("reader", batch)) from exc
        try:
            start = time.perf_counter()
            result = _call_with_context(writer, data, batch, tasks)
            if observer is not None:
                observer.on_stage_end(
                    "writer",
                    batch.batch_id,
                    time.perf_counter() - start,
                    metadata=result if isinstance(result, dict) else None,
                )
        except SharingIncrementalError as exc:
            if observer is not None:
                observer.on_error("writer", batch.batch_id, exc)
            raise
        except Exception as exc:
            if observer is not None:
                observer.on_error("writer", batch.batch_id, exc)
            raise WriterError(_stage_error("writer", batch)) from exc
        metadata = result if isinstance(result, dict) else {}
        try:
            start = time.perf_counter()
            checkpoint.commit_batch(batch, len(tasks), metadata=metadata)
            if observer is not None:
                observer.on_stage_end(
                    "commit",
                    batch.batch_id,
                    time.perf_counter() - start,
                    metadata=metadata or None,
                )
                observer.on_batch_committed(batch, metadata=metadata or None)
        except Exception as exc:
            if observer is not None:
                observer.on_error("commit", batch.batch_id, exc)
            raise CommitError(_stage_error("commit", batch)) from exc
        batches += 1
        idle_loops = 0
        return True

    if run_once:
        process_one()
        return RunResult(batches=batches)

    while True:
        if max_batches is not None and batches >= max_batches:
            break
        if not process_one():
            if sleep_when_idle is None:
                break
            idle_loops += 1
            if max_idle_loops is not None and idle_loops >= max_idle_loops:
                break
            time.sleep(sleep_when_idle)
            continue
        time.sleep(sleep)
    return RunResult(batches=batches)


def _stage_error(stage: str, batch: BatchRecord) -> str:
    return f"{stage} failed for batch_id={batch.batch_id}"
