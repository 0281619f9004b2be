"""Exception taxonomy for altwatch.

Errors fall into three groups:

- transient (`TransportError`, `ThrottledError`, `StreamDisconnectedError`):
  retried with backoff, never surfaced beyond a log line
- per-item terminal (`QuotaExceededError`, `TransformError`, `WriteError`,
  `MediaNotFoundError`): the media item is abandoned
- fatal (`AuthenticationFailedError`, `ConfigError`): the process exits
"""

from __future__ import annotations


class AltwatchError(Exception):
    """Base class for all altwatch errors."""


class ConfigError(AltwatchError):
    """Raised when configuration is missing or invalid."""


class AuthenticationFailedError(AltwatchError):
    """Raised when the platform rejects our credentials."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Initialize the error with the rejecting HTTP status, when known."""
        self.status_code = status_code
        super().__init__(message)


class StreamDisconnectedError(AltwatchError):
    """Raised when the event stream drops or cannot be opened."""


class MalformedFrameError(AltwatchError):
    """Raised when a stream frame cannot be decoded into an event."""


class TransportError(AltwatchError):
    """Raised for timeouts, connection failures and 5xx responses."""


class ThrottledError(AltwatchError):
    """Raised when a provider signals a rate limit."""

    def __init__(self, message: str, *, retry_after: float | None = None) -> None:
        """Initialize the error with the provider's retry hint in seconds."""
        self.retry_after = retry_after
        super().__init__(message)


class QuotaExceededError(AltwatchError):
    """Raised when a token, credit or cost ceiling was hit."""


class TransformError(AltwatchError):
    """Raised when a media item cannot be turned into describable input."""

    def __init__(self, message: str, *, skipped: bool = False) -> None:
        """Initialize the error.

        Args:
            message: Human-readable reason.
            skipped: True when the item is intentionally not processed (for
                example an unsupported kind), rather than a failure.

        """
        self.skipped = skipped
        super().__init__(message)


class WriteError(AltwatchError):
    """Raised when the platform refuses a description update."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Initialize the error with the HTTP status, when known."""
        self.status_code = status_code
        super().__init__(message)


class MediaNotFoundError(AltwatchError):
    """Raised when a status or attachment no longer exists."""
