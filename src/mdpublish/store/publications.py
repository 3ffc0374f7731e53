"""Publication lifecycle: create, replace, update, delete and recovery."""

from __future__ import annotations

import logging
import secrets
import string
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

from mdpublish.config.models import StorageSettings

from .assets import AssetStore, is_valid_identifier
from .errors import (
    ContentTooLargeError,
    DuplicateFilenameError,
    IndexCorruptedError,
    InvalidFilenameError,
    StorageError,
)
from .index import DEFAULT_INDEX_FILENAME, MetadataIndex
from .models import (
    ImageAsset,
    ImageRejection,
    ImageUpload,
    IndexEntry,
    Publication,
    RejectionReason,
    SaveResult,
    utcnow,
)

LOGGER = logging.getLogger(__name__)

PUBLICATIONS_DIRNAME = "publications"
IDENTIFIER_ALPHABET = string.ascii_letters + string.digits + "_-"


class _Unchanged:
    def __repr__(self) -> str:
        return "UNCHANGED"


UNCHANGED: Any = _Unchanged()


def generate_identifier(length: int = 12) -> str:
    """Return a random URL-safe identifier drawn from a secure source."""
    return "".join(secrets.choice(IDENTIFIER_ALPHABET) for _ in range(length))


def normalize_publication_filename(filename: str) -> str:
    """Replace path separators in a producer filename.

    Raises:
        InvalidFilenameError: If the filename is empty.
    """
    cleaned = (filename or "").replace("/", "_").replace("\\", "_").strip()
    if not cleaned:
        raise InvalidFilenameError("Filename is required")
    return cleaned


class PublicationStore:
    """Keep the metadata index and the asset tree in agreement.

    ``data_dir`` holds ``metadata.json`` and a ``publications/`` directory with
    one subdirectory per identifier.
    """

    def __init__(
        self,
        data_dir: Path,
        settings: StorageSettings | None = None,
        *,
        index_filename: str = DEFAULT_INDEX_FILENAME,
    ) -> None:
        """Initialize the store without touching the filesystem.

        Args:
            data_dir: Root directory for the index and the publication tree.
            settings: Upload limits; defaults apply when omitted.
            index_filename: Name of the durable index file inside ``data_dir``.
        """
        self._data_dir = Path(data_dir)
        self._settings = settings or StorageSettings()
        self._index = MetadataIndex(self._data_dir / index_filename)
        self._assets = AssetStore(self._data_dir / PUBLICATIONS_DIRNAME)
        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls, settings: StorageSettings) -> "PublicationStore":
        return cls(Path(settings.data_dir).expanduser(), settings)

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    @property
    def index_path(self) -> Path:
        return self._index.path

    @property
    def assets(self) -> AssetStore:
        return self._assets

    @property
    def settings(self) -> StorageSettings:
        return self._settings

    def open(self) -> "PublicationStore":
        """Create the storage layout and load the index, recovering if it is unreadable.

        Returns:
            PublicationStore: ``self`` for chaining.

        Raises:
            StorageError: If the layout cannot be created or recovery fails.
        """
        try:
            self._assets.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to create data directory: {exc}") from exc

        with self._lock:
            try:
                self._index.load()
            except IndexCorruptedError as exc:
                LOGGER.error("Failed to load metadata, attempting recovery: %s", exc)
                self.recover()
        return self

    # Lookups ----------------------------------------------------------

    def lookup_by_filename(self, filename: str) -> IndexEntry | None:
        self._ensure_open()
        return self._index.lookup_by_filename(filename)

    def lookup_by_identifier(self, identifier: str) -> Publication | None:
        self._ensure_open()
        return self._index.lookup_by_identifier(identifier)

    def publications(self) -> list[IndexEntry]:
        self._ensure_open()
        return self._index.entries()

    def read_content(self, identifier: str) -> str | None:
        return self._assets.read_content(identifier)

    def read_image(self, identifier: str, name: str) -> ImageAsset | None:
        return self._assets.read_image(identifier, name)

    def new_identifier(self) -> str:
        """Return an identifier unused by both the index and the asset tree."""
        self._ensure_open()
        while True:
            candidate = generate_identifier(self._settings.identifier_length)
            if candidate not in self._index and not self._assets.exists(candidate):
                return candidate

    # Mutations --------------------------------------------------------

    def create_or_replace(
        self,
        identifier: str,
        content: str,
        record: Publication,
        images: Iterable[ImageUpload] = (),
    ) -> SaveResult:
        """Write content and images for ``identifier`` and persist its record.

        Images that fail validation are skipped and reported in the result. Images
        retained by the previous version but not supplied now are removed from disk,
        as are any other untracked files in the image directory.

        Args:
            identifier: Publication identifier, new or existing.
            content: Markdown body.
            record: Metadata to store; its image list and timestamps are overwritten.
            images: Images to store alongside the content.

        Returns:
            SaveResult: Persisted record, accepted image count and rejections.

        Raises:
            PublicationValidationError: If the content, filename or identifier is invalid.
            StorageError: If a filesystem write fails.
        """
        self._ensure_open()
        with self._lock:
            return self._save(identifier, content, record, images)

    def _save(
        self,
        identifier: str,
        content: str,
        record: Publication,
        images: Iterable[ImageUpload],
    ) -> SaveResult:
        # Caller holds self._lock for the whole write, sweep and upsert sequence.
        self._validate(identifier, content, record)
        previous = self._index.lookup_by_identifier(identifier)

        self._assets.ensure_dirs(identifier)
        self._assets.write_content(identifier, content)
        retained, accepted, rejections = self._store_images(identifier, images)
        self._remove_orphans(identifier, previous, retained)

        updated = record.model_copy(deep=True)
        updated.images = retained
        if previous is not None:
            updated.created_at = previous.created_at
        updated.updated_at = utcnow()

        try:
            stored = self._index.upsert(identifier, updated)
        except DuplicateFilenameError:
            if previous is None:
                self._assets.delete_publication_tree(identifier)
            raise

        LOGGER.info(
            "Publication saved: %s (%s), images=%d, rejected=%d",
            identifier,
            stored.filename,
            accepted,
            len(rejections),
        )
        return SaveResult(
            identifier=identifier, record=stored, accepted=accepted, rejections=rejections
        )

    def publish(
        self,
        filename: str,
        content: str,
        *,
        title: str | None = None,
        origin_path: str = "",
        password_hash: str | None = None,
        images: Iterable[ImageUpload] = (),
        created_at: datetime | None = None,
    ) -> SaveResult:
        """Create a new publication under a freshly generated identifier.

        Raises:
            DuplicateFilenameError: If ``filename`` is already published.
        """
        self._ensure_open()
        cleaned = normalize_publication_filename(filename)
        now = utcnow()
        record = Publication(
            filename=cleaned,
            title=title or cleaned,
            origin_path=origin_path or "",
            password_hash=password_hash or None,
            created_at=created_at or now,
            updated_at=now,
        )
        with self._lock:
            existing = self._index.lookup_by_filename(cleaned)
            if existing is not None:
                raise DuplicateFilenameError(cleaned, existing.identifier)
            result = self._save(self.new_identifier(), content, record, images)
        LOGGER.info("New publication created: %s (%s)", result.identifier, cleaned)
        return result

    def update(
        self,
        identifier: str,
        content: str,
        *,
        filename: str | None = None,
        title: str | None = None,
        origin_path: str | None = None,
        password_hash: Any = UNCHANGED,
        images: Iterable[ImageUpload] = (),
    ) -> SaveResult | None:
        """Replace the content of an existing publication.

        Omitted fields keep their stored values; ``password_hash=None`` removes the
        password. Returns ``None`` when ``identifier`` is unknown, including when it
        was deleted while this call waited for the store lock.
        """
        self._ensure_open()
        changes: dict[str, Any] = {}
        if filename:
            changes["filename"] = normalize_publication_filename(filename)
        if title:
            changes["title"] = title
        if origin_path:
            changes["origin_path"] = origin_path
        if password_hash is not UNCHANGED:
            changes["password_hash"] = password_hash or None

        with self._lock:
            existing = self._index.lookup_by_identifier(identifier)
            if existing is None:
                return None
            return self._save(identifier, content, existing.model_copy(update=changes), images)

    def delete(self, identifier: str) -> bool:
        """Remove a publication, its files and both index entries.

        Returns:
            bool: ``False`` without side effects when the identifier is unknown.
        """
        self._ensure_open()
        with self._lock:
            record = self._index.lookup_by_identifier(identifier)
            if record is None:
                return False
            self._assets.delete_publication_tree(identifier)
            self._index.remove(identifier)
        LOGGER.info("Publication deleted: %s (%s)", identifier, record.filename)
        return True

    def recover(self) -> int:
        """Rebuild the index from publication directories that hold content.

        Titles, timestamps, passwords and image lists cannot be recovered: each
        record uses its identifier as filename, has no title or password and an
        empty image list.

        Returns:
            int: Number of publications reconstructed.
        """
        LOGGER.warning("Recovering metadata from %s", self._assets.root)
        with self._lock:
            try:
                identifiers = self._assets.publication_ids_with_content()
            except OSError as exc:
                raise StorageError(f"Failed to scan publications: {exc}") from exc

            now = utcnow()
            records = {
                identifier: Publication(filename=identifier, created_at=now, updated_at=now)
                for identifier in identifiers
            }
            self._index.replace_all(records)
        LOGGER.info("Metadata recovered: %d publications", len(records))
        return len(records)

    # Internal helpers -------------------------------------------------

    def _ensure_open(self) -> None:
        if not self._index.loaded:
            self.open()

    def _validate(self, identifier: str, content: str, record: Publication) -> None:
        if not is_valid_identifier(identifier):
            raise InvalidFilenameError(f"Invalid publication identifier: {identifier!r}")
        if not record.filename or not record.filename.strip():
            raise InvalidFilenameError("Filename is required")
        size = len(content.encode("utf-8"))
        if size > self._settings.max_content_size_bytes:
            raise ContentTooLargeError(size, self._settings.max_content_size_bytes)
        owner = self._index.lookup_by_filename(record.filename)
        if owner is not None and owner.identifier != identifier:
            raise DuplicateFilenameError(record.filename, owner.identifier)

    def _store_images(
        self, identifier: str, images: Iterable[ImageUpload]
    ) -> tuple[list[str], int, list[ImageRejection]]:
        settings = self._settings
        retained: list[str] = []
        rejections: list[ImageRejection] = []
        accepted = 0

        def _reject(image: ImageUpload, reason: RejectionReason, detail: str) -> None:
            LOGGER.warning("Image rejected for %s: %s (%s)", identifier, image.filename, detail)
            rejections.append(ImageRejection(filename=image.filename, reason=reason, detail=detail))

        for position, image in enumerate(images):
            if position >= settings.max_images_per_publication:
                _reject(
                    image,
                    "limit_exceeded",
                    f"more than {settings.max_images_per_publication} images",
                )
                continue
            if image.mime_type not in settings.allowed_image_types:
                _reject(image, "unsupported_media_type", f"media type {image.mime_type}")
                continue
            try:
                payload = image.decode()
            except ValueError:
                _reject(image, "invalid_encoding", "payload is not valid base64")
                continue
            if len(payload) > settings.max_image_size_bytes:
                _reject(image, "too_large", f"{len(payload)} bytes")
                continue
            try:
                name = self._assets.write_image(identifier, image.filename, payload)
            except InvalidFilenameError:
                _reject(image, "invalid_filename", "filename has no usable characters")
                continue
            accepted += 1
            if name not in retained:
                retained.append(name)

        return retained, accepted, rejections

    def _remove_orphans(
        self, identifier: str, previous: Publication | None, retained: list[str]
    ) -> None:
        keep = set(retained)
        dropped = [name for name in (previous.images if previous else []) if name not in keep]
        untracked = [
            name
            for name in self._assets.list_images(identifier)
            if name not in keep and name not in dropped
        ]
        for name in dropped:
            self._assets.delete_image(identifier, name)
        for name in untracked:
            LOGGER.debug("Removing untracked image %s/%s", identifier, name)
            self._assets.delete_image(identifier, name)


__all__ = [
    "IDENTIFIER_ALPHABET",
    "PUBLICATIONS_DIRNAME",
    "PublicationStore",
    "UNCHANGED",
    "generate_identifier",
    "normalize_publication_filename",
]
