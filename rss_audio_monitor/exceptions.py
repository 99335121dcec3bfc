"""
Custom exceptions for RSS Audio Monitor.

Every exception carries a human-readable message; the CLI prints ``str(error)``
as-is when a command fails.
"""


class RssMonitorError(Exception):
    """Base exception for all application-specific errors."""


class FeedFetchError(RssMonitorError):
    """Raised when a feed cannot be retrieved (transport failure or non-2xx status)."""


class FeedParseError(RssMonitorError):
    """Raised when a feed document is not a readable RSS document."""


class NotFoundError(RssMonitorError):
    """Raised when a subscription or episode id does not exist."""


class InvalidInputError(RssMonitorError):
    """Raised when user-supplied data fails validation."""


class DownloadError(RssMonitorError):
    """Raised for transport or I/O failures while downloading an episode."""


class DownloadCancelledError(DownloadError):
    """Raised inside a download worker when its cancel token is set."""

    def __init__(self, message: str = "Download cancelled"):
        super().__init__(message)


class StorageError(RssMonitorError):
    """Raised when the SQLite store rejects an operation."""


class ConfigurationError(RssMonitorError):
    """Raised for issues related to configuration loading or validation."""
