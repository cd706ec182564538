from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

from .errors import ConfigurationError, TimeTravelNotSupportedError
from .utils.options import get_option, has_option

DEFAULT_MAX_FILES_PER_TRIGGER = 1000
DEFAULT_MAX_WORKERS = 4
DEFAULT_VERSIONS_PER_FETCH = 100

STARTING_VERSION_OPTION = "startingVersion"
STARTING_TIMESTAMP_OPTION = "startingTimestamp"
MAX_FILES_PER_TRIGGER_OPTION = "maxFilesPerTrigger"
IGNORE_DELETES_OPTION = "ignoreDeletes"
IGNORE_CHANGES_OPTION = "ignoreChanges"
MAX_WORKERS_OPTION = "maxWorkers"
VERSIONS_PER_FETCH_OPTION = "versionsPerFetch"

_TIME_TRAVEL_OPTIONS = ("versionAsOf", "timestampAsOf")


@dataclass(frozen=True)
class ReadLimit:
    max_files: int = DEFAULT_MAX_FILES_PER_TRIGGER

    def __post_init__(self) -> None:
        if self.max_files < 1:
            raise ConfigurationError(f"max_files must be a positive integer, got {self.max_files}")


@dataclass(frozen=True)
class SharingOptions:
    starting_version: int | str | None = None
    starting_timestamp: datetime | None = None
    starting_timestamp_raw: str | None = None
    max_files_per_trigger: int | None = None
    ignore_deletes: bool = False
    ignore_changes: bool = False
    max_workers: int = DEFAULT_MAX_WORKERS
    versions_per_fetch: int = DEFAULT_VERSIONS_PER_FETCH

    @classmethod
    def from_options(cls, options: Mapping[str, Any] | None = None) -> "SharingOptions":
        options = dict(options or {})
        for name in _TIME_TRAVEL_OPTIONS:
            if has_option(options, name):
                raise TimeTravelNotSupportedError(name)
        if get_option(options, "schema") is not None:
            raise ConfigurationError(
                "sharing-incremental does not support specifying the schema at read time; "
                "the schema is taken from the shared table."
            )

        raw_version = get_option(options, STARTING_VERSION_OPTION)
        raw_timestamp = get_option(options, STARTING_TIMESTAMP_OPTION)
        if raw_version is not None and raw_timestamp is not None:
            raise ConfigurationError(
                "Please either provide 'startingVersion' or 'startingTimestamp'."
            )

        starting_timestamp = None
        timestamp_raw = None
        if raw_timestamp is not None:
            timestamp_raw = str(raw_timestamp)
            starting_timestamp = parse_timestamp(raw_timestamp)

        return cls(
            starting_version=_parse_starting_version(raw_version),
            starting_timestamp=starting_timestamp,
            starting_timestamp_raw=timestamp_raw,
            max_files_per_trigger=_parse_positive_int(
                get_option(options, MAX_FILES_PER_TRIGGER_OPTION), MAX_FILES_PER_TRIGGER_OPTION
            ),
            ignore_deletes=_parse_bool(get_option(options, IGNORE_DELETES_OPTION, default=False), IGNORE_DELETES_OPTION),
            ignore_changes=_parse_bool(get_option(options, IGNORE_CHANGES_OPTION, default=False), IGNORE_CHANGES_OPTION),
            max_workers=_parse_positive_int(get_option(options, MAX_WORKERS_OPTION), MAX_WORKERS_OPTION)
            or DEFAULT_MAX_WORKERS,
            versions_per_fetch=_parse_positive_int(
                get_option(options, VERSIONS_PER_FETCH_OPTION), VERSIONS_PER_FETCH_OPTION
            )
            or DEFAULT_VERSIONS_PER_FETCH,
        )

    def default_limit(self) -> ReadLimit:
        return ReadLimit(max_files=self.max_files_per_trigger or DEFAULT_MAX_FILES_PER_TRIGGER)

    def start_config(self) -> dict[str, Any]:
        """Describe the configured starting point, as stored in checkpoint metadata."""
        if self.starting_timestamp is not None:
            return {"mode": "timestamp", "timestamp": self.starting_timestamp_raw}
        if isinstance(self.starting_version, int):
            return {"mode": "version", "version": self.starting_version}
        return {"mode": "latest"}


def _parse_starting_version(value: Any) -> int | str | None:
    if value is None:
        return None
    if isinstance(value, str) and value.strip().lower() == "latest":
        return "latest"
    version: int | None = None
    if isinstance(value, int) and not isinstance(value, bool):
        version = value
    elif isinstance(value, str):
        try:
            version = int(value.strip())
        except ValueError:
            version = None
    if version is None or version < 0:
        raise ConfigurationError(
            f"Invalid value '{value}' for option '{STARTING_VERSION_OPTION}', must be "
            "greater than or equal to 0 or 'latest'"
        )
    return version


def _parse_positive_int(value: Any, name: str) -> int | None:
    if value is None:
        return None
    parsed: int | None = None
    if isinstance(value, int) and not isinstance(value, bool):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            parsed = None
    if parsed is None or parsed <= 0:
        raise ConfigurationError(f"Invalid value '{value}' for option '{name}', must be a positive integer")
    return parsed


def _parse_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
        return value.strip().lower() == "true"
    raise ConfigurationError(f"Invalid value '{value}' for option '{name}', must be 'true' or 'false'")


_FRACTION = re.compile(r"\.(\d+)")


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        dt = value
    else:
        normalized = str(value).strip()
        if normalized.endswith("Z"):
            normalized = normalized[:-1] + "+00:00"
        # fromisoformat before 3.11 only takes 3 or 6 fractional digits.
        normalized = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), normalized, count=1)
        try:
            dt = datetime.fromisoformat(normalized)
        except ValueError:
            dt = None
        if dt is None or not normalized:
            raise ConfigurationError(
                f"The provided timestamp ({value}) cannot be converted to a valid timestamp."
            )
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def timestamp_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)
