"""On-disk layout for publication content and images.

Each publication owns one directory named by its identifier::

    <root>/<identifier>/content.md
    <root>/<identifier>/images/<sanitized-name>

Every write is staged to a hidden temporary sibling and moved into place with
``os.replace`` so readers never observe a partially written file. Image names are
sanitized identically on write and on read, and the joined path is checked to stay
inside the publication's image directory.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import uuid
from pathlib import Path

from .errors import InvalidFilenameError, StorageError
from .models import ImageAsset

LOGGER = logging.getLogger(__name__)

CONTENT_FILENAME = "content.md"
IMAGES_SUBDIR = "images"
TEMP_SUFFIX = ".tmp"

_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
_SEPARATORS_RE = re.compile(r"[/\\]")
_DISALLOWED_RE = re.compile(r"[^A-Za-z0-9._-]")

_MEDIA_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".bmp": "image/bmp",
}


def sanitize_filename(name: str) -> str:
    """Reduce an image filename to a single safe path component.

    Separators and ``..`` sequences become ``_``, anything outside ``[A-Za-z0-9._-]``
    becomes ``_`` and leading dots are dropped (hidden names are reserved for
    temporary files). Returns an empty string when nothing usable remains.
    """
    cleaned = _SEPARATORS_RE.sub("_", name or "")
    cleaned = cleaned.replace("..", "_")
    cleaned = _DISALLOWED_RE.sub("_", cleaned)
    return cleaned.lstrip(".")


def is_valid_identifier(identifier: str) -> bool:
    return isinstance(identifier, str) and bool(_IDENTIFIER_RE.match(identifier))


def media_type_for(name: str) -> str:
    return _MEDIA_TYPES.get(Path(name).suffix.lower(), "application/octet-stream")


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays strictly within ``base_dir``."""
    base_dir = base_dir.resolve()
    resolved = base_dir.joinpath(*parts).resolve()
    if base_dir not in resolved.parents:
        raise ValueError("Path traversal attempt")
    return resolved


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` through a temporary sibling and ``os.replace``.

    Raises:
        StorageError: If the write or rename fails.
    """
    tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}{TEMP_SUFFIX}")
    try:
        with tmp_path.open("wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        raise StorageError(f"Failed to write {path.name}: {exc}") from exc


class AssetStore:
    """Read, write and delete the files belonging to each publication."""

    def __init__(self, root: Path) -> None:
        """Initialize the asset store.

        Args:
            root: Directory that holds one subdirectory per publication.
        """
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    def publication_dir(self, identifier: str) -> Path:
        """Return the directory for ``identifier``.

        Raises:
            InvalidFilenameError: If the identifier cannot be used as a path component.
        """
        if not is_valid_identifier(identifier):
            raise InvalidFilenameError(f"Invalid publication identifier: {identifier!r}")
        return self._root / identifier

    def images_dir(self, identifier: str) -> Path:
        return self.publication_dir(identifier) / IMAGES_SUBDIR

    def exists(self, identifier: str) -> bool:
        return is_valid_identifier(identifier) and (self._root / identifier).exists()

    def ensure_dirs(self, identifier: str) -> None:
        try:
            self.images_dir(identifier).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to create directories for {identifier}: {exc}") from exc

    # Content ----------------------------------------------------------

    def write_content(self, identifier: str, text: str) -> None:
        path = self.publication_dir(identifier) / CONTENT_FILENAME
        atomic_write_bytes(path, text.encode("utf-8"))

    def read_content(self, identifier: str) -> str | None:
        """Return the markdown body, or ``None`` when it does not exist."""
        if not is_valid_identifier(identifier):
            return None
        path = self._root / identifier / CONTENT_FILENAME
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Failed to read content for {identifier}: {exc}") from exc

    # Images -----------------------------------------------------------

    def write_image(self, identifier: str, name: str, data: bytes) -> str:
        """Store an image and return the sanitized name it was written under.

        Raises:
            InvalidFilenameError: If nothing usable remains of ``name``.
            StorageError: If the write fails.
        """
        target = self._image_path(identifier, name)
        if target is None:
            raise InvalidFilenameError(f"Invalid image filename: {name!r}")
        atomic_write_bytes(target, data)
        LOGGER.debug("Image saved: %s/%s", identifier, target.name)
        return target.name

    def read_image(self, identifier: str, name: str) -> ImageAsset | None:
        """Return the stored image, or ``None`` when it does not exist."""
        if not is_valid_identifier(identifier):
            return None
        target = self._image_path(identifier, name)
        if target is None:
            return None
        try:
            data = target.read_bytes()
        except (FileNotFoundError, IsADirectoryError):
            return None
        except OSError as exc:
            raise StorageError(f"Failed to read image for {identifier}: {exc}") from exc
        return ImageAsset(data=data, media_type=media_type_for(target.name))

    def delete_image(self, identifier: str, name: str) -> bool:
        target = self._image_path(identifier, name)
        if target is None:
            return False
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError(f"Failed to delete image {name!r}: {exc}") from exc
        LOGGER.debug("Image removed: %s/%s", identifier, target.name)
        return True

    def list_images(self, identifier: str) -> list[str]:
        """Return stored image names, ignoring in-flight temporary files."""
        directory = self.images_dir(identifier)
        if not directory.is_dir():
            return []
        return sorted(
            child.name
            for child in directory.iterdir()
            if child.is_file() and not child.name.startswith(".")
        )

    # Publication trees ------------------------------------------------

    def delete_publication_tree(self, identifier: str) -> None:
        """Remove everything stored for ``identifier``; absent trees are fine."""
        directory = self.publication_dir(identifier)
        try:
            shutil.rmtree(directory)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageError(f"Failed to delete publication {identifier}: {exc}") from exc

    def publication_ids_with_content(self) -> list[str]:
        """Return identifiers of directories that hold a content blob."""
        if not self._root.is_dir():
            return []
        found: list[str] = []
        for child in sorted(self._root.iterdir()):
            if not child.is_dir() or not is_valid_identifier(child.name):
                continue
            if (child / CONTENT_FILENAME).is_file():
                found.append(child.name)
        return found

    def _image_path(self, identifier: str, name: str) -> Path | None:
        sanitized = sanitize_filename(name)
        if not sanitized:
            return None
        try:
            return safe_join(self.images_dir(identifier), sanitized)
        except ValueError:
            return None


__all__ = [
    "AssetStore",
    "CONTENT_FILENAME",
    "IMAGES_SUBDIR",
    "atomic_write_bytes",
    "is_valid_identifier",
    "media_type_for",
    "safe_join",
    "sanitize_filename",
]
