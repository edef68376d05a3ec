"""
Base exception classes for the Universal Converter API.

Every error a request can surface derives from BaseServiceError, which
carries the HTTP status, a short title for the ``error`` field and any
extra fields merged into the JSON error body.
"""

from typing import Any


class BaseServiceError(Exception):
    """Base exception for all service errors."""

    status_code: int = 500
    title: str = "Internal Server Error"

    def __init__(self, message: str, error_type: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.details = details or {}


class ValidationError(BaseServiceError):
    """Raised when request input is missing or not allowed."""

    status_code = 400
    title = "Invalid request"

    def __init__(
        self,
        message: str,
        error_type: str = "VALIDATION_ERROR",
        title: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, error_type, details)
        if title:
            self.title = title


class DependencyUnavailableError(BaseServiceError):
    """Raised when a required external tool cannot be executed."""

    title = "Dependency unavailable"

    def __init__(self, tool: str, message: str | None = None):
        super().__init__(
            message or f"Required tool '{tool}' is not available on this server",
            "DEPENDENCY_UNAVAILABLE",
            {"tool": tool},
        )
        self.tool = tool


class PlaylistConfirmationRequiredError(BaseServiceError):
    """Raised when a playlist URL is submitted without an explicit opt-in."""

    status_code = 400
    title = "Playlist confirmation required"

    def __init__(self, url: str):
        super().__init__(
            "This URL points to a playlist. Resubmit with downloadPlaylist=true "
            "to download every video.",
            "PLAYLIST_CONFIRMATION_REQUIRED",
            {"isPlaylist": True},
        )
        self.url = url


class ConversionError(BaseServiceError):
    """Raised when conversion operations fail."""

    title = "Conversion failed"

    def __init__(
        self,
        message: str,
        error_type: str = "CONVERSION_ERROR",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, error_type, details)


class ConversionTimeoutError(ConversionError):
    """Raised when an external tool exceeds its time budget."""

    status_code = 504
    title = "Conversion timed out"

    def __init__(self, timeout_seconds: float, tool: str | None = None):
        label = tool or "External tool"
        super().__init__(
            f"{label} timed out after {timeout_seconds:g} seconds",
            "TIMEOUT_ERROR",
            {"timeout_seconds": timeout_seconds},
        )
        self.timeout_seconds = timeout_seconds


class NoOutputProducedError(ConversionError):
    """Raised when a tool reports success but leaves no output behind."""

    def __init__(self, message: str, directory: str | None = None):
        super().__init__(message, "NO_OUTPUT_PRODUCED", {})
        self.directory = directory


class AllConversionsFailedError(BaseServiceError):
    """Raised when every file of a batch failed to convert."""

    status_code = 422
    title = "Conversion failed"

    def __init__(self, failures: list[dict[str, str]]):
        if failures:
            summary = "; ".join(f"{f['filename']}: {f['error']}" for f in failures)
            message = f"All conversions failed. Errors: {summary}"
        else:
            message = "No documents could be converted. Please check your files and try again."
        super().__init__(message, "ALL_CONVERSIONS_FAILED", {"failures": failures})
        self.failures = failures


# Common error types for consistency
class ErrorTypes:
    """Common error type constants."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    FILE_SIZE_EXCEEDED = "FILE_SIZE_EXCEEDED"
    TOO_MANY_FILES = "TOO_MANY_FILES"
    INVALID_EXTENSION = "INVALID_EXTENSION"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    CONVERSION_ERROR = "CONVERSION_ERROR"
    SIGN_IN_REQUIRED = "SIGN_IN_REQUIRED"
    PRIVATE_VIDEO = "PRIVATE_VIDEO"
    VIDEO_UNAVAILABLE = "VIDEO_UNAVAILABLE"
    FORMAT_UNAVAILABLE = "FORMAT_UNAVAILABLE"
    DOWNLOAD_FAILED = "DOWNLOAD_FAILED"
