from __future__ import annotations


class SharingIncrementalError(Exception):
    """Base error for sharing-incremental."""


class ConfigurationError(SharingIncrementalError, ValueError):
    """Raised when stream options are missing, conflicting or invalid."""


class TimeTravelNotSupportedError(ConfigurationError):
    """Raised when batch time-travel options are given to an incremental stream."""

    def __init__(self, option: str) -> None:
        super().__init__(
            f"time travel is not supported for incremental streams (got {option!r}); "
            "use 'startingVersion' or 'startingTimestamp' instead"
        )
        self.option = option


class InvalidOffsetError(SharingIncrementalError, ValueError):
    """Raised when an offset cannot be decoded or offsets are used out of order."""


class RemoteTableError(SharingIncrementalError):
    """Raised when the sharing server rejects a request at the protocol level."""

    def __init__(self, message: str, *, status_code: int | None = None, error_code: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class TransientNetworkError(RemoteTableError):
    """Raised for timeouts, connection failures and server-side 5xx responses."""


class AuthenticationError(RemoteTableError):
    """Raised when the sharing server rejects the bearer token."""


class VersionUnavailableError(RemoteTableError):
    """Raised when a requested version is outside the table's retained history."""

    def __init__(self, message: str, *, version: int | None = None, **kwargs) -> None:
        super().__init__(
            f"{message}. The data is no longer available; restart the stream "
            "with a startingVersion inside the retained history.",
            **kwargs,
        )
        self.version = version


class TimestampOutOfRangeError(SharingIncrementalError):
    """Raised when startingTimestamp is after the latest commit of the table.

    The table may simply not have advanced that far yet, so callers can retry.
    """

    retryable = True

    def __init__(self, timestamp: str, latest_version: int | None = None) -> None:
        detail = "" if latest_version is None else f" (latest version is {latest_version})"
        super().__init__(
            f"The provided timestamp ({timestamp}) is after the latest commit of the table"
            f"{detail}. Retry later or use an earlier startingTimestamp."
        )
        self.timestamp = timestamp
        self.latest_version = latest_version


class SchemaIncompatibilityError(SharingIncrementalError):
    """Raised when a version changes the schema in a way existing readers cannot read."""

    def __init__(self, version: int, reason: str) -> None:
        super().__init__(
            f"Detected incompatible schema change at version {version}: {reason}. "
            f"Restart the stream with startingVersion >= {version} to read the new schema."
        )
        self.version = version
        self.reason = reason


class UnsupportedChangeError(SharingIncrementalError):
    """Raised when deletes or updates are found without the matching ignore option."""

    def __init__(self, version: int, change: str) -> None:
        if change == "delete":
            message = (
                f"Detected deleted data from streaming source at version {version}. "
                "This is currently not supported. If you'd like to ignore deletes, "
                "set the option 'ignoreDeletes' to 'true'."
            )
        else:
            message = (
                f"Detected a data update in the source table at version {version}. "
                "This is currently not supported. If you'd like to ignore updates, "
                "set the option 'ignoreChanges' to 'true'."
            )
        super().__init__(message)
        self.version = version
        self.change = change


class TableIdentityMismatchError(SharingIncrementalError):
    """Raised when the shared table was replaced by a table with another id."""

    def __init__(self, expected: str | None, actual: str | None) -> None:
        super().__init__(
            f"Table id changed from {expected!r} to {actual!r}; the shared table was "
            "replaced. Start a new stream with a new checkpoint directory."
        )
        self.expected = expected
        self.actual = actual


class InconsistentChangeLogError(SharingIncrementalError):
    """Raised when refetching a version returns a different set of actions."""

    def __init__(self, version: int) -> None:
        super().__init__(
            f"Change log for version {version} differs between fetches; refusing to "
            "advance the offset. Retry the stream once the server is consistent."
        )
        self.version = version


class PipelineError(SharingIncrementalError):
    """Base error raised during pipeline execution."""


class PlanningError(PipelineError):
    """Raised when the source fails to plan a batch."""


class CommitError(PipelineError):
    """Raised when a batch commit fails."""


class ReaderError(PipelineError):
    """Raised when the reader callable fails."""


class WriterError(PipelineError):
    """Raised when the writer callable fails."""
