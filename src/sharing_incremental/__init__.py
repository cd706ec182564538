from .version import __version__
from .actions import (
    AddChangeFile,
    AddFile,
    FileAction,
    Metadata,
    Protocol,
    RemoveFile,
    ScanTask,
    Snapshot,
)
from .cache import SnapshotCache
from .checkpoints import BatchRecord, SharingStreamCheckpoint
from .client import RemoteTableClient, RestSharingClient
from .context import StreamContext
from .errors import (
    AuthenticationError,
    CommitError,
    ConfigurationError,
    InconsistentChangeLogError,
    InvalidOffsetError,
    PipelineError,
    PlanningError,
    ReaderError,
    RemoteTableError,
    SchemaIncompatibilityError,
    SharingIncrementalError,
    TableIdentityMismatchError,
    TimestampOutOfRangeError,
    TimeTravelNotSupportedError,
    TransientNetworkError,
    UnsupportedChangeError,
    VersionUnavailableError,
    WriterError,
)
from .guards import ChangeSemanticsGuard, SchemaCompatibilityGuard
from .memory import InMemoryTable
from .observability import LoggingObserver, PipelineObserver
from .offsets import Offset, OffsetTracker, compare_offsets
from .options import ReadLimit, SharingOptions
from .pipeline import Pipeline, RunResult
from .planner import ChangeFeedPlanner
from .profile import ShareProfile, TableCoordinates, parse_table_url
from .schema import ArrayType, MapType, Schema, StructField, StructType, is_read_compatible
from .source import SharingSource, read_scan_tasks

__all__ = [
    "AddChangeFile",
    "AddFile",
    "ArrayType",
    "AuthenticationError",
    "BatchRecord",
    "ChangeFeedPlanner",
    "ChangeSemanticsGuard",
    "CommitError",
    "ConfigurationError",
    "FileAction",
    "InMemoryTable",
    "InconsistentChangeLogError",
    "InvalidOffsetError",
    "LoggingObserver",
    "MapType",
    "Metadata",
    "Offset",
    "OffsetTracker",
    "Pipeline",
    "PipelineError",
    "PipelineObserver",
    "PlanningError",
    "Protocol",
    "ReadLimit",
    "ReaderError",
    "RemoteTableClient",
    "RemoteTableError",
    "RemoveFile",
    "RestSharingClient",
    "RunResult",
    "ScanTask",
    "Schema",
    "SchemaCompatibilityGuard",
    "SchemaIncompatibilityError",
    "ShareProfile",
    "SharingIncrementalError",
    "SharingOptions",
    "SharingSource",
    "SharingStreamCheckpoint",
    "Snapshot",
    "SnapshotCache",
    "StreamContext",
    "StructField",
    "StructType",
    "TableCoordinates",
    "TableIdentityMismatchError",
    "TimeTravelNotSupportedError",
    "TimestampOutOfRangeError",
    "TransientNetworkError",
    "UnsupportedChangeError",
    "VersionUnavailableError",
    "WriterError",
    "__version__",
    "compare_offsets",
    "is_read_compatible",
    "parse_table_url",
    "read_scan_tasks",
]
