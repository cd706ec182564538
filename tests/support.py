from __future__ import annotations

from pathlib import Path

import polars as pl

from sharing_incremental import InMemoryTable, Offset, SharingSource, StructField, StructType
from sharing_incremental.options import ReadLimit

SCHEMA = StructType((StructField("id", "long"), StructField("name", "string")))
NARROWED_SCHEMA = StructType((StructField("id", "long", nullable=False), StructField("name", "string")))
WIDE_SCHEMA = StructType(SCHEMA.fields + (StructField("extra", "string"),))


def cdf_table() -> InMemoryTable:
    """v0 create, v1 insert 3 files, v2 delete 1 file, v3 update 1 file."""
    table = InMemoryTable(SCHEMA, table_id="cdf-table", name="cdf")
    table.commit(add=["part-0.parquet", "part-1.parquet", "part-2.parquet"])
    table.commit(remove=["part-1.parquet"])
    table.commit(remove=["part-2.parquet"], add=["part-3.parquet"], cdc=["cdc-3.parquet"])
    return table


def narrowing_table() -> InMemoryTable:
    """``id`` turns non-nullable at v3."""
    table = InMemoryTable(SCHEMA, table_id="narrow-table")
    table.commit(add=["a.parquet"])
    table.commit(add=["b.parquet"])
    table.commit(add=["c.parquet"], schema=NARROWED_SCHEMA)
    table.commit(add=["d.parquet"])
    return table


def evolving_table() -> InMemoryTable:
    """v2 appends a nullable ``extra`` column and v3 drops it again."""
    table = InMemoryTable(SCHEMA, table_id="evolving")
    table.commit(add=["a.parquet"])
    table.commit(add=["b.parquet"], schema=WIDE_SCHEMA)
    table.commit(add=["c.parquet"], schema=SCHEMA)
    return table


def drain(
    source: SharingSource,
    start: Offset,
    limit: ReadLimit | None = None,
    max_polls: int = 100,
) -> list[tuple[Offset, Offset, list]]:
    """Poll until nothing is left, returning ``(start, end, tasks)`` per batch."""
    batches = []
    for _ in range(max_polls):
        end = source.latest_offset(start, limit)
        if end is None:
            return batches
        batches.append((start, end, source.get_batch(start, end)))
        start = end
    raise AssertionError("stream did not settle")


def write_part(directory: Path, name: str, ids: list[int]) -> None:
    pl.DataFrame({"id": ids, "name": [f"n{i}" for i in ids]}).write_parquet(directory / name)
