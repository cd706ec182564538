"""Example: stream an in-memory shared table with bounded batches."""

from pathlib import Path
import logging
import shutil

import polars as pl
import sharing_incremental as si

base_dir = Path("data/in_memory_stream")
files_dir = base_dir / "files"
checkpoint_dir = base_dir / "checkpoint"

if base_dir.exists():
    shutil.rmtree(base_dir)

files_dir.mkdir(parents=True, exist_ok=True)

schema = si.StructType((si.StructField("id", "long"), si.StructField("value", "long")))
table = si.InMemoryTable(schema, table_id="events", url_prefix=str(files_dir))

for i in range(3):
    name = f"part-{i:04d}.parquet"
    pl.DataFrame({"id": [i * 2, i * 2 + 1], "value": [10 * i, 10 * i + 5]}).write_parquet(files_dir / name)
    table.commit(add=[name])

def writer(df, batch_id=None):
    df.write_parquet(base_dir / f"out_{batch_id}.parquet")
    return {"rows_out": df.height}

logging.basicConfig(level=logging.INFO)

source = si.SharingSource(table, {"startingVersion": 0, "maxFilesPerTrigger": 1})
pipeline = si.Pipeline(
    source=source,
    checkpoint_dir=checkpoint_dir,
    writer=writer,
    observer=si.LoggingObserver(),
)

result = pipeline.run(once=False, sleep=0)
print(f"batches={result.batches}")
source.stop()
