"""Durable publication storage: metadata index, asset tree and lifecycle rules."""

from __future__ import annotations

from .assets import AssetStore, sanitize_filename
from .errors import (
    ContentTooLargeError,
    DuplicateFilenameError,
    IndexCorruptedError,
    InvalidFilenameError,
    PublicationValidationError,
    StorageError,
    StoreError,
)
from .index import MetadataIndex
from .models import (
    ImageAsset,
    ImageRejection,
    ImageUpload,
    IndexEntry,
    Publication,
    SaveResult,
)
from .publications import UNCHANGED, PublicationStore, generate_identifier

__all__ = [
    "AssetStore",
    "ContentTooLargeError",
    "DuplicateFilenameError",
    "ImageAsset",
    "ImageRejection",
    "ImageUpload",
    "IndexCorruptedError",
    "IndexEntry",
    "InvalidFilenameError",
    "MetadataIndex",
    "Publication",
    "PublicationStore",
    "PublicationValidationError",
    "SaveResult",
    "StorageError",
    "StoreError",
    "UNCHANGED",
    "generate_identifier",
    "sanitize_filename",
]
