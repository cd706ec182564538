from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .errors import ConfigurationError
from .options import parse_timestamp

logger = logging.getLogger("sharing_incremental")

CURRENT_SHARE_CREDENTIALS_VERSION = 1


@dataclass(frozen=True)
class ShareProfile:
    endpoint: str
    bearer_token: str
    share_credentials_version: int = CURRENT_SHARE_CREDENTIALS_VERSION
    expiration_time: datetime | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ShareProfile":
        version = payload.get("shareCredentialsVersion")
        if not isinstance(version, int):
            raise ConfigurationError("Profile is missing 'shareCredentialsVersion'")
        if version > CURRENT_SHARE_CREDENTIALS_VERSION:
            raise ConfigurationError(
                f"'shareCredentialsVersion' in the profile is {version}, which is too new. "
                f"The current release supports version {CURRENT_SHARE_CREDENTIALS_VERSION} and "
                "below. Please upgrade to a newer release."
            )
        endpoint = payload.get("endpoint")
        token = payload.get("bearerToken")
        if not endpoint:
            raise ConfigurationError("Profile is missing 'endpoint'")
        if not token:
            raise ConfigurationError("Profile is missing 'bearerToken'")
        expiration = payload.get("expirationTime")
        profile = cls(
            endpoint=str(endpoint).rstrip("/"),
            bearer_token=str(token),
            share_credentials_version=version,
            expiration_time=parse_timestamp(expiration) if expiration else None,
        )
        if profile.is_expired():
            logger.warning("event=profile_expired expiration_time=%s", profile.expiration_time)
        return profile

    @classmethod
    def from_json(cls, text: str) -> "ShareProfile":
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigurationError("Profile is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise ConfigurationError("Profile must be a JSON object")
        return cls.from_dict(payload)

    @classmethod
    def from_file(cls, path: str | Path) -> "ShareProfile":
        return cls.from_json(Path(path).read_text(encoding="utf-8"))

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expiration_time is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.expiration_time


@dataclass(frozen=True)
class TableCoordinates:
    share: str
    schema: str
    name: str

    def __str__(self) -> str:
        return f"{self.share}.{self.schema}.{self.name}"


def parse_table_url(url: str) -> tuple[str, TableCoordinates]:
    """Split ``<profile-file>#<share>.<schema>.<table>`` into its parts."""
    profile_path, sep, fqn = url.rpartition("#")
    if not sep or not profile_path:
        raise ConfigurationError(f"Invalid table url: {url!r}; expected '<profile-file>#<share>.<schema>.<table>'")
    parts = fqn.split(".")
    if len(parts) != 3 or not all(parts):
        raise ConfigurationError(f"Invalid table name {fqn!r} in url {url!r}; expected '<share>.<schema>.<table>'")
    share, schema, name = parts
    return profile_path, TableCoordinates(share=share, schema=schema, name=name)
