"""Example: follow a remote shared table described by a profile file.

Usage: python examples/remote_share.py /path/to/config.share#share.schema.table
"""

from pathlib import Path
import logging
import sys

import sharing_incremental as si

checkpoint_dir = Path("data/remote_share/checkpoint")

def writer(df, batch, tasks):
    print(f"batch_id={batch.batch_id} files={len(tasks)} rows={df.height}")
    return {"rows_out": df.height}

logging.basicConfig(level=logging.INFO)

with si.SharingSource.from_url(sys.argv[1], {"maxFilesPerTrigger": 100, "ignoreDeletes": "true"}) as source:
    si.Pipeline(
        source=source,
        checkpoint_dir=checkpoint_dir,
        writer=writer,
        observer=si.LoggingObserver(),
    ).run(once=False, sleep=0, sleep_when_idle=30.0)
