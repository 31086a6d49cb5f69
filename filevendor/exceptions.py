"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class FileVendorError(Exception):
    """Base exception for all application-specific errors."""


class MalformedIdentityError(FileVendorError):
    """Raised when a logical path cannot be split into a segment and a filename."""

    def __init__(self, logical_path: str):
        self.logical_path = logical_path
        super().__init__(
            f"Cannot determine segment/filename for incoming filename '{logical_path}'"
        )


class UnknownFileError(FileVendorError):
    """Raised when a logical path is not listed in the manifest."""

    def __init__(self, logical_path: str, collection_name: str, segment: str = ""):
        self.logical_path = logical_path
        self.collection_name = collection_name
        self.segment = segment
        super().__init__(f"No such file '{logical_path}' in '{collection_name}'")


class FetchFailedError(FileVendorError):
    """
    Raised when a remote file could not be fetched.

    Transport errors, an open circuit breaker and cancellation are all
    normalized to this type. The original error is kept in `cause` and as
    `__cause__`.
    """

    def __init__(
        self,
        url: str,
        cause: BaseException | None = None,
        logical_path: str | None = None,
        cache_key: str | None = None,
    ):
        self.url = url
        self.cause = cause
        self.logical_path = logical_path
        self.cache_key = cache_key
        reason = f"{type(cause).__name__}: {cause}" if cause else "unknown error"
        message = f"Failed to fetch '{url}' ({reason})"
        if logical_path:
            message += f" while resolving '{logical_path}'"
        super().__init__(message)


class CacheIOError(FileVendorError):
    """Raised when a local cache read or install fails."""

    def __init__(self, message: str, cache_key: str | None = None):
        self.cache_key = cache_key
        super().__init__(message)


class CacheNotFoundError(CacheIOError):
    """Raised when reading a cache entry that does not exist."""


class ManifestError(FileVendorError):
    """Raised when a manifest document or its records are malformed."""


class ConfigurationError(FileVendorError):
    """Raised for issues related to configuration loading or validation."""
