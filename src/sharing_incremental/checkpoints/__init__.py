from .stream import SharingStreamCheckpoint
from .types import BatchRecord, atomic_write_json, list_batch_ids

__all__ = [
    "BatchRecord",
    "SharingStreamCheckpoint",
    "atomic_write_json",
    "list_batch_ids",
]
