"""Exceptions for the file hosting core.

Every error raised by ``server.apps.*.logic`` derives from
``FileHostingError``. ``retryable`` tells callers whether the same
request may succeed later without changes.
"""

from typing import ClassVar


class FileHostingError(Exception):
    """Base class for file hosting errors."""

    retryable: ClassVar[bool] = False


class InvalidArgumentError(FileHostingError):
    """Raised when request parameters are malformed. No state changes."""


class NotFoundError(FileHostingError):
    """Raised when a file does not exist or has already expired."""


class SessionNotFoundError(NotFoundError):
    """Raised when an upload session id is unknown."""


class SessionExpiredError(FileHostingError):
    """Raised when an upload session is past its expiry.

    The session is discarded before this is raised.
    """


class InvalidChunkIndexError(FileHostingError):
    """Raised when a chunk index is outside the session's range."""

    def __init__(self, index: int, expected_count: int) -> None:
        """Initialize InvalidChunkIndexError.

        Args:
            index: Rejected chunk index.
            expected_count: Number of chunks the session expects.
        """
        self.index = index
        self.expected_count = expected_count
        super().__init__(
            f'Invalid chunk index: {index}. '
            f'Expected 0 to {expected_count - 1}',
        )


class ChunkSizeMismatchError(FileHostingError):
    """Raised when a chunk's length differs from the expected length."""

    def __init__(self, index: int, expected_size: int, actual_size: int) -> None:
        """Initialize ChunkSizeMismatchError.

        Args:
            index: Chunk index.
            expected_size: Length the chunk must have.
            actual_size: Length received.
        """
        self.index = index
        self.expected_size = expected_size
        self.actual_size = actual_size
        super().__init__(
            f'Invalid size for chunk {index}. '
            f'Expected: {expected_size}, got: {actual_size}',
        )


class AssemblyInProgressError(FileHostingError):
    """Raised when another finalize holds the session's assembly claim."""

    retryable = True


class StorageWriteError(FileHostingError):
    """Raised when the storage backend fails to store bytes.

    Partial objects are removed before this is raised.
    """

    retryable = True


class StorageReadError(FileHostingError):
    """Raised when stored bytes cannot be read back."""

    retryable = True


class MetadataError(FileHostingError):
    """Raised when the metadata database is unavailable."""

    retryable = True


class RateLimitExceededError(FileHostingError):
    """Raised when a client exceeds its request limit for a scope."""

    retryable = True

    def __init__(self, scope: str, limit: int, retry_after: int) -> None:
        """Initialize RateLimitExceededError.

        Args:
            scope: Rate limit scope (e.g. 'uploads').
            limit: Allowed requests per window.
            retry_after: Seconds until the window resets.
        """
        self.scope = scope
        self.limit = limit
        self.retry_after = retry_after
        super().__init__(
            f'Rate limit exceeded for {scope}: {limit} requests per window, '
            f'retry after {retry_after}s',
        )
