"""Error taxonomy for the memory client.

Every error carries a machine-readable ``code``; ``format_error`` renders the
``[Mem0 CODE] message`` line used in logs.
"""

from __future__ import annotations

from typing import Any

INVALID_API_KEY = "INVALID_API_KEY"
CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
API_ERROR = "API_ERROR"
NOT_INITIALIZED = "NOT_INITIALIZED"
HOSTED_MODE_ERROR = "HOSTED_MODE_ERROR"
NETWORK_ERROR = "NETWORK_ERROR"


class MemoryServiceError(Exception):
    """Base class for memory service errors."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class InvalidApiKeyError(MemoryServiceError):
    """Raised when the hosted API key is missing or malformed.

    Only the first 10 characters of a malformed key are echoed back.
    """

    def __init__(self, api_key: str | None = None) -> None:
        if api_key:
            message = (
                "Invalid Mem0 API key format. Expected format: mem0-[52 alphanumeric "
                f"characters], got: {api_key[:10]}..."
            )
        else:
            message = "Missing Mem0 API key. API key is required for hosted mode."
        super().__init__(message, INVALID_API_KEY)


class ConfigurationError(MemoryServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message, CONFIGURATION_ERROR)


class ApiError(MemoryServiceError):
    """The hosted API answered with an error status."""

    def __init__(
        self, message: str, status_code: int | None = None, response: Any = None
    ) -> None:
        super().__init__(message, API_ERROR)
        self.status_code = status_code
        self.response = response


class NotInitializedError(MemoryServiceError):
    def __init__(self, message: str = "Mem0 service is not initialized. Configure it first.") -> None:
        super().__init__(message, NOT_INITIALIZED)


class HostedModeError(MemoryServiceError):
    def __init__(self) -> None:
        super().__init__(
            "Hosted mode requires a valid API key. Switch to local mode or provide a valid API key.",
            HOSTED_MODE_ERROR,
        )


class NetworkError(MemoryServiceError):
    """Transport failure; the original exception is kept as ``__cause__``."""

    def __init__(self, original: BaseException) -> None:
        super().__init__(f"Network error: {original}", NETWORK_ERROR)
        self.__cause__ = original


def is_memory_error(error: object) -> bool:
    return isinstance(error, MemoryServiceError)


def is_api_key_error(error: object) -> bool:
    return isinstance(error, InvalidApiKeyError)


def is_configuration_error(error: object) -> bool:
    return isinstance(error, ConfigurationError)


def format_error(error: object) -> str:
    """Render an error as a single log line.

    Example:
        >>> format_error(ApiError("API request failed", 500))
        '[Mem0 API_ERROR] API request failed'
        >>> format_error(ValueError("boom"))
        '[Mem0 UNKNOWN] boom'
    """
    if isinstance(error, MemoryServiceError):
        return f"[Mem0 {error.code or 'ERROR'}] {error.message}"
    return f"[Mem0 UNKNOWN] {error}"
