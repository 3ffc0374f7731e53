"""Publication store errors."""

from __future__ import annotations


class StoreError(Exception):
    """Base exception for publication store operations."""


class StorageError(StoreError):
    """Raised when the filesystem fails for a reason other than a missing file."""


class IndexCorruptedError(StorageError):
    """Raised when the durable metadata index cannot be read or parsed."""


class PublicationValidationError(StoreError):
    """Base class for rejected publish or update requests."""


class ContentTooLargeError(PublicationValidationError):
    """Raised when the markdown body exceeds the configured size limit."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Content size {size} exceeds limit of {limit} bytes")
        self.size = size
        self.limit = limit


class InvalidFilenameError(PublicationValidationError):
    """Raised when a producer filename or identifier cannot be used."""


class DuplicateFilenameError(PublicationValidationError):
    """Raised when a filename is already owned by another publication."""

    def __init__(self, filename: str, identifier: str) -> None:
        super().__init__(f"File already exists: {filename}")
        self.filename = filename
        self.identifier = identifier
