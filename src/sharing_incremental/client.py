"""Clients for the remote sharing server."""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Protocol as TypingProtocol
from urllib.parse import quote

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .actions import AddChangeFile, AddFile, FileAction, Metadata, Protocol, RemoveFile, Snapshot
from .errors import (
    AuthenticationError,
    RemoteTableError,
    TransientNetworkError,
    VersionUnavailableError,
)
from .options import format_timestamp
from .profile import ShareProfile, TableCoordinates
from .schema import StructType

logger = logging.getLogger("sharing_incremental")

TABLE_VERSION_HEADER = "delta-table-version"
USER_AGENT = "sharing-incremental"


class RemoteTableClient(TypingProtocol):
    def get_table_version(self) -> int:
        raise NotImplementedError

    def resolve_version_for_timestamp(self, timestamp: datetime) -> int | None:
        raise NotImplementedError

    def get_metadata(self, version: int) -> tuple[Protocol, Metadata]:
        raise NotImplementedError

    def get_snapshot(self, version: int | None = None, timestamp: datetime | None = None) -> Snapshot:
        raise NotImplementedError

    def list_changes(self, start_version: int, end_version: int) -> list[tuple[int, FileAction]]:
        raise NotImplementedError


class RestSharingClient:
    """Sync client for a Delta Sharing style REST server.

    Transport failures and 5xx responses are retried with exponential backoff;
    every other failure is raised straight away.
    """

    def __init__(
        self,
        profile: ShareProfile,
        table: TableCoordinates,
        *,
        timeout_seconds: float = 120.0,
        max_retries: int = 5,
        backoff_seconds: float = 1.0,
        max_backoff_seconds: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.profile = profile
        self.table = table
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self._client = httpx.Client(
            base_url=profile.endpoint,
            headers={
                "Authorization": f"Bearer {profile.bearer_token}",
                "User-Agent": USER_AGENT,
            },
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "RestSharingClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def _table_path(self) -> str:
        return (
            f"/shares/{quote(self.table.share, safe='')}"
            f"/schemas/{quote(self.table.schema, safe='')}"
            f"/tables/{quote(self.table.name, safe='')}"
        )

    def get_table_version(self) -> int:
        response = self._request("GET", f"{self._table_path}/version")
        return _version_header(response)

    def resolve_version_for_timestamp(self, timestamp: datetime) -> int | None:
        try:
            response = self._request(
                "GET",
                f"{self._table_path}/version",
                params={"startingTimestamp": format_timestamp(timestamp)},
            )
        except RemoteTableError as exc:
            if exc.status_code in (400, 404):
                logger.info("event=timestamp_unresolved timestamp=%s error=%s", timestamp, exc)
                return None
            raise
        return _version_header(response)

    def get_metadata(self, version: int) -> tuple[Protocol, Metadata]:
        with _version_errors(version):
            response = self._request("GET", f"{self._table_path}/metadata", params={"version": version})
        protocol, metadata = None, None
        for line in _iter_lines(response):
            if "protocol" in line:
                protocol = _parse_protocol(line["protocol"])
            elif "metaData" in line:
                metadata = _parse_metadata(line["metaData"])
        if protocol is None or metadata is None:
            raise RemoteTableError(f"Metadata response for version {version} is missing protocol or metaData")
        return protocol, metadata

    def get_snapshot(self, version: int | None = None, timestamp: datetime | None = None) -> Snapshot:
        body: dict[str, Any] = {"predicateHints": []}
        if version is not None:
            body["version"] = version
        elif timestamp is not None:
            body["timestamp"] = format_timestamp(timestamp)
        with _version_errors(version):
            response = self._request("POST", f"{self._table_path}/query", json=body)
        resolved = version if version is not None else _version_header(response)
        protocol, metadata = None, None
        files: list[AddFile] = []
        for line in _iter_lines(response):
            if "protocol" in line:
                protocol = _parse_protocol(line["protocol"])
            elif "metaData" in line:
                metadata = _parse_metadata(line["metaData"])
            elif "file" in line:
                files.append(_parse_add(line["file"], resolved))
        if protocol is None or metadata is None:
            raise RemoteTableError(f"Query response for version {resolved} is missing protocol or metaData")
        return Snapshot(version=resolved, protocol=protocol, metadata=metadata, files=tuple(files))

    def list_changes(self, start_version: int, end_version: int) -> list[tuple[int, FileAction]]:
        body = {"predicateHints": [], "startingVersion": start_version, "endingVersion": end_version}
        with _version_errors(start_version):
            response = self._request("POST", f"{self._table_path}/query", json=body)
        changes: list[tuple[int, FileAction]] = []
        for line in _iter_lines(response):
            action: FileAction | None = None
            if "add" in line:
                action = _parse_add(line["add"], None)
            elif "remove" in line:
                action = _parse_remove(line["remove"])
            elif "cdf" in line:
                action = _parse_add_change(line["cdf"])
            if action is not None:
                changes.append((action.commit_version, action))
        return changes

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        @retry(
            retry=retry_if_exception_type(TransientNetworkError),
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=self.max_backoff_seconds),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        def _send() -> httpx.Response:
            try:
                response = self._client.request(method, path, params=params, json=json)
            except httpx.TransportError as exc:
                raise TransientNetworkError(f"{method} {path} failed: {exc}") from exc
            _raise_for_status(method, path, response)
            return response

        return _send()


@contextmanager
def _version_errors(version: int | None) -> Iterator[None]:
    """Turn protocol-level "bad version" responses into VersionUnavailableError."""
    try:
        yield
    except RemoteTableError as exc:
        if (
            version is not None
            and type(exc) is RemoteTableError
            and exc.status_code in (400, 404)
            and "version" in str(exc).lower()
        ):
            raise VersionUnavailableError(
                str(exc), version=version, status_code=exc.status_code, error_code=exc.error_code
            ) from exc
        raise


def _raise_for_status(method: str, path: str, response: httpx.Response) -> None:
    if response.status_code < 400:
        return
    error_code, message = _error_body(response)
    detail = f"{method} {path} returned {response.status_code}"
    if error_code:
        detail = f"{detail} {error_code}"
    if message:
        detail = f"{detail}: {message}"
    if response.status_code >= 500:
        raise TransientNetworkError(detail, status_code=response.status_code, error_code=error_code)
    if response.status_code in (401, 403):
        raise AuthenticationError(
            f"{detail}. Check the bearer token in the profile file.",
            status_code=response.status_code,
            error_code=error_code,
        )
    raise RemoteTableError(detail, status_code=response.status_code, error_code=error_code)


def _error_body(response: httpx.Response) -> tuple[str | None, str | None]:
    try:
        payload = response.json()
    except ValueError:
        return None, response.text or None
    if not isinstance(payload, dict):
        return None, response.text or None
    return payload.get("errorCode"), payload.get("message")


def _version_header(response: httpx.Response) -> int:
    value = response.headers.get(TABLE_VERSION_HEADER)
    if value is None:
        raise RemoteTableError(f"Response is missing the {TABLE_VERSION_HEADER} header")
    try:
        return int(value)
    except ValueError as exc:
        raise RemoteTableError(f"Invalid {TABLE_VERSION_HEADER} header: {value!r}") from exc


def _iter_lines(response: httpx.Response) -> Iterator[dict[str, Any]]:
    for raw in response.text.splitlines():
        raw = raw.strip()
        if not raw:
            continue
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise RemoteTableError(f"Malformed response line: {raw[:200]!r}") from exc
        if isinstance(payload, dict):
            yield payload


def _parse_protocol(payload: dict[str, Any]) -> Protocol:
    return Protocol(min_reader_version=int(payload.get("minReaderVersion", 1)))


def _parse_metadata(payload: dict[str, Any]) -> Metadata:
    fmt = payload.get("format") or {}
    return Metadata(
        id=str(payload["id"]),
        name=payload.get("name"),
        format=str(fmt.get("provider", "parquet")),
        schema=StructType.from_json(payload["schemaString"]),
        partition_columns=tuple(payload.get("partitionColumns") or ()),
        configuration=dict(payload.get("configuration") or {}),
    )


def _file_id(payload: dict[str, Any]) -> str:
    value = payload.get("id") or payload.get("path") or payload.get("url")
    if not value:
        raise RemoteTableError(f"File action without id: {payload!r}")
    return str(value)


def _parse_add(payload: dict[str, Any], version: int | None) -> AddFile:
    return AddFile(
        path=_file_id(payload),
        url=payload.get("url"),
        size_bytes=int(payload.get("size") or 0),
        partition_values=dict(payload.get("partitionValues") or {}),
        commit_version=int(payload["version"]) if version is None else version,
        commit_timestamp=payload.get("timestamp"),
    )


def _parse_remove(payload: dict[str, Any]) -> RemoveFile:
    return RemoveFile(
        path=_file_id(payload),
        url=payload.get("url"),
        commit_version=int(payload["version"]),
        commit_timestamp=payload.get("timestamp"),
    )


def _parse_add_change(payload: dict[str, Any]) -> AddChangeFile:
    return AddChangeFile(
        path=_file_id(payload),
        url=payload.get("url"),
        size_bytes=int(payload.get("size") or 0),
        partition_values=dict(payload.get("partitionValues") or {}),
        commit_version=int(payload["version"]),
        commit_timestamp=payload.get("timestamp"),
    )
