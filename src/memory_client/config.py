"""Validation and request helpers for memory client settings."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from reference_index.config import MemorySettings, Mode

MEM0_API_KEY_REGEX = re.compile(r"mem0-[A-Za-z0-9]{52}")
REQUEST_TIMEOUT_SECONDS = 30.0


def is_valid_api_key(api_key: str | None) -> bool:
    """Return True for ``mem0-`` followed by exactly 52 ASCII alphanumerics."""
    if not api_key:
        return False
    return MEM0_API_KEY_REGEX.fullmatch(api_key) is not None


def is_valid_configuration(settings: MemorySettings) -> bool:
    """A base URL is always required; hosted mode also needs a valid key."""
    if not settings.base_url:
        return False
    if settings.mode is Mode.HOSTED:
        return is_valid_api_key(settings.api_key)
    return True


def is_enabled(settings: MemorySettings) -> bool:
    return settings.enabled and is_valid_configuration(settings)


def apply_updates(settings: MemorySettings, updates: Mapping[str, Any]) -> MemorySettings:
    """Return a new settings value with ``updates`` merged in.

    An ``api_key`` update switches the mode: non-empty means hosted, empty
    means local.
    """
    values = dict(updates)
    if "api_key" in values:
        values["mode"] = Mode.HOSTED if values["api_key"] else Mode.LOCAL
    return settings.model_validate({**settings.model_dump(), **values})


def base_url(settings: MemorySettings) -> str | None:
    """Base URL without a trailing slash."""
    if settings.base_url is None:
        return None
    return settings.base_url[:-1] if settings.base_url.endswith("/") else settings.base_url


def request_headers(settings: MemorySettings) -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if settings.mode is Mode.HOSTED and settings.api_key:
        headers["Authorization"] = f"Bearer {settings.api_key}"
        headers["X-API-Key"] = settings.api_key
    return headers
