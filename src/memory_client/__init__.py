"""Dual-mode (hosted HTTP / local vector store) memory client."""

from .client import MemoryClient, ModeInfo
from .config import MEM0_API_KEY_REGEX, is_valid_api_key
from .errors import (
    ApiError,
    ConfigurationError,
    HostedModeError,
    InvalidApiKeyError,
    MemoryServiceError,
    NetworkError,
    NotInitializedError,
    format_error,
)

__all__ = [
    "ApiError",
    "ConfigurationError",
    "HostedModeError",
    "InvalidApiKeyError",
    "MEM0_API_KEY_REGEX",
    "MemoryClient",
    "MemoryServiceError",
    "ModeInfo",
    "NetworkError",
    "NotInitializedError",
    "format_error",
    "is_valid_api_key",
]
