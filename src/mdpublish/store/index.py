"""Durable identifier and filename index for publications."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Mapping

from pydantic import ValidationError

from .assets import TEMP_SUFFIX, atomic_write_bytes
from .errors import DuplicateFilenameError, IndexCorruptedError, StorageError
from .models import IndexDocument, IndexEntry, Publication

LOGGER = logging.getLogger(__name__)

DEFAULT_INDEX_FILENAME = "metadata.json"


class MetadataIndex:
    """In-memory ``identifier -> record`` and ``filename -> identifier`` maps.

    The maps are persisted together as one JSON document that is rewritten
    wholesale on every mutation. Mutations build the next state, persist it and
    only then replace the in-memory maps, so a failed write leaves both memory and
    disk on the previous version. All access goes through one re-entrant lock.
    """

    def __init__(self, path: Path) -> None:
        """Initialize the index.

        Args:
            path: Location of the durable JSON document.
        """
        self._path = path
        self._lock = threading.RLock()
        self._publications: dict[str, Publication] = {}
        self._filenames: dict[str, str] = {}
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def loaded(self) -> bool:
        return self._loaded

    def load(self) -> None:
        """Read the durable index, creating an empty one on first run.

        Raises:
            IndexCorruptedError: If the file exists but cannot be read or parsed.
            StorageError: If the initial empty index cannot be written.
        """
        with self._lock:
            self._discard_stale_temp_files()
            try:
                raw = self._path.read_text(encoding="utf-8")
            except FileNotFoundError:
                self._commit({}, {})
                self._loaded = True
                LOGGER.info("Created new metadata index at %s", self._path)
                return
            except (OSError, UnicodeDecodeError) as exc:
                raise IndexCorruptedError(f"Unable to read metadata index: {exc}") from exc

            try:
                document = IndexDocument.model_validate_json(raw)
            except ValidationError as exc:
                raise IndexCorruptedError(f"Invalid metadata index data: {exc}") from exc

            publications = dict(document.publications)
            filenames, repaired = _reconcile(publications, document.filename_index)
            if repaired:
                LOGGER.warning("Repaired %d inconsistent filename index entries", repaired)
                self._commit(publications, filenames)
            else:
                self._publications, self._filenames = publications, filenames
            self._loaded = True
            LOGGER.info("Metadata loaded: %d publications", len(publications))

    def persist(self) -> None:
        """Rewrite the durable index from the current in-memory state."""
        with self._lock:
            self._write(self._publications, self._filenames)

    def lookup_by_identifier(self, identifier: str) -> Publication | None:
        with self._lock:
            record = self._publications.get(identifier)
            return record.model_copy(deep=True) if record is not None else None

    def lookup_by_filename(self, filename: str) -> IndexEntry | None:
        with self._lock:
            identifier = self._filenames.get(filename)
            if identifier is None:
                return None
            record = self._publications.get(identifier)
            if record is None:
                return None
            return IndexEntry(identifier, record.model_copy(deep=True))

    def entries(self) -> list[IndexEntry]:
        """Return a snapshot of every publication, most recently updated first."""
        with self._lock:
            snapshot = [
                IndexEntry(identifier, record.model_copy(deep=True))
                for identifier, record in self._publications.items()
            ]
        snapshot.sort(key=lambda entry: entry.record.updated_at, reverse=True)
        return snapshot

    def __contains__(self, identifier: object) -> bool:
        with self._lock:
            return identifier in self._publications

    def __len__(self) -> int:
        with self._lock:
            return len(self._publications)

    def upsert(self, identifier: str, record: Publication) -> Publication:
        """Insert or replace ``identifier`` and point its filename at it.

        When the record's filename changed, the old filename entry is removed in the
        same step.

        Raises:
            DuplicateFilenameError: If another identifier owns the filename.
            StorageError: If the index cannot be persisted.
        """
        with self._lock:
            owner = self._filenames.get(record.filename)
            if owner is not None and owner != identifier:
                raise DuplicateFilenameError(record.filename, owner)

            publications = dict(self._publications)
            filenames = dict(self._filenames)
            previous = publications.get(identifier)
            if (
                previous is not None
                and previous.filename != record.filename
                and filenames.get(previous.filename) == identifier
            ):
                del filenames[previous.filename]
                LOGGER.info(
                    "Filename changed for %s: %s -> %s",
                    identifier,
                    previous.filename,
                    record.filename,
                )

            stored = record.model_copy(deep=True)
            publications[identifier] = stored
            filenames[stored.filename] = identifier
            self._commit(publications, filenames)
            return stored.model_copy(deep=True)

    def remove(self, identifier: str) -> Publication | None:
        """Delete ``identifier`` and the filename entry pointing at it."""
        with self._lock:
            if identifier not in self._publications:
                return None
            publications = dict(self._publications)
            filenames = dict(self._filenames)
            removed = publications.pop(identifier)
            if filenames.get(removed.filename) == identifier:
                del filenames[removed.filename]
            self._commit(publications, filenames)
            return removed

    def replace_all(self, records: Mapping[str, Publication]) -> None:
        """Replace the whole index with ``records`` and persist it."""
        with self._lock:
            publications = {key: value.model_copy(deep=True) for key, value in records.items()}
            filenames, _ = _reconcile(publications, {})
            self._commit(publications, filenames)
            self._loaded = True

    # Internal helpers -------------------------------------------------

    def _commit(self, publications: dict[str, Publication], filenames: dict[str, str]) -> None:
        self._write(publications, filenames)
        self._publications = publications
        self._filenames = filenames

    def _write(self, publications: dict[str, Publication], filenames: dict[str, str]) -> None:
        document = IndexDocument(publications=publications, filename_index=filenames)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to create index directory: {exc}") from exc
        atomic_write_bytes(self._path, document.model_dump_json(indent=2).encode("utf-8"))

    def _discard_stale_temp_files(self) -> None:
        if not self._path.parent.is_dir():
            return
        for stale in self._path.parent.glob(f".{self._path.name}.*{TEMP_SUFFIX}"):
            LOGGER.warning("Removing stale temporary index file %s", stale.name)
            try:
                stale.unlink(missing_ok=True)
            except OSError as exc:
                LOGGER.warning("Unable to remove %s: %s", stale.name, exc)


def _reconcile(
    publications: dict[str, Publication], filename_index: Mapping[str, str]
) -> tuple[dict[str, str], int]:
    """Rebuild a filename map consistent with ``publications``.

    When two records claim the same filename, the one not referenced by the
    filename index (or the later one) is renamed to its identifier in place.

    Returns:
        tuple[dict[str, str], int]: The filename map and the number of entries that
        had to be dropped, added or renamed.
    """
    repaired = 0
    filenames: dict[str, str] = {}
    for filename, identifier in filename_index.items():
        record = publications.get(identifier)
        if record is None or record.filename != filename:
            repaired += 1
            continue
        filenames[filename] = identifier

    for identifier, record in list(publications.items()):
        owner = filenames.get(record.filename)
        if owner is None:
            filenames[record.filename] = identifier
            repaired += 1
        elif owner != identifier:
            renamed = _unclaimed_filename(identifier, filenames, publications)
            LOGGER.warning(
                "Filename %s claimed by both %s and %s; renaming %s to %s",
                record.filename,
                owner,
                identifier,
                identifier,
                renamed,
            )
            publications[identifier] = record.model_copy(update={"filename": renamed})
            filenames[renamed] = identifier
            repaired += 1
    return filenames, repaired


def _unclaimed_filename(
    identifier: str, filenames: Mapping[str, str], publications: Mapping[str, Publication]
) -> str:
    taken = set(filenames) | {record.filename for record in publications.values()}
    candidate = identifier
    suffix = 1
    while candidate in taken:
        candidate = f"{identifier}-{suffix}"
        suffix += 1
    return candidate


__all__ = ["DEFAULT_INDEX_FILENAME", "MetadataIndex"]
