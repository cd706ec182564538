from __future__ import annotations

from typing import Any, Mapping


def normalize_key(key: str) -> str:
    return key.replace("_", "").replace("-", "").lower()


def get_option(options: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """Look up the first of ``keys`` present, ignoring case and ``_`` separators."""
    normalized = {normalize_key(str(name)): value for name, value in options.items()}
    for key in keys:
        wanted = normalize_key(key)
        if wanted in normalized:
            return normalized[wanted]
    return default


def has_option(options: Mapping[str, Any], key: str) -> bool:
    wanted = normalize_key(key)
    return any(normalize_key(str(name)) == wanted for name in options)
