"""Metadata index tests."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from mdpublish.store import (
    DuplicateFilenameError,
    IndexCorruptedError,
    MetadataIndex,
    Publication,
    StorageError,
)


def _index(tmp_path: Path) -> MetadataIndex:
    index = MetadataIndex(tmp_path / "metadata.json")
    index.load()
    return index


def test_first_load_creates_empty_index(tmp_path: Path) -> None:
    index = _index(tmp_path)

    data = json.loads((tmp_path / "metadata.json").read_text(encoding="utf-8"))

    assert data == {"publications": {}, "filename_index": {}}
    assert len(index) == 0


def test_upsert_and_lookup_survive_reload(tmp_path: Path) -> None:
    index = _index(tmp_path)
    index.upsert("id-one", Publication(filename="notes.md", title="Notes"))

    reloaded = _index(tmp_path)
    record = reloaded.lookup_by_identifier("id-one")
    entry = reloaded.lookup_by_filename("notes.md")

    assert record is not None and record.title == "Notes"
    assert entry is not None and entry.identifier == "id-one"
    assert reloaded.lookup_by_identifier("missing") is None
    assert reloaded.lookup_by_filename("missing.md") is None


def test_lookups_return_copies(tmp_path: Path) -> None:
    index = _index(tmp_path)
    index.upsert("id-one", Publication(filename="notes.md", images=["a.png"]))

    record = index.lookup_by_identifier("id-one")
    assert record is not None
    record.images.append("b.png")
    record.filename = "changed.md"

    stored = index.lookup_by_identifier("id-one")
    assert stored is not None
    assert stored.images == ["a.png"]
    assert stored.filename == "notes.md"


def test_upsert_rejects_filename_owned_by_other_identifier(tmp_path: Path) -> None:
    index = _index(tmp_path)
    index.upsert("id-one", Publication(filename="notes.md"))

    with pytest.raises(DuplicateFilenameError) as excinfo:
        index.upsert("id-two", Publication(filename="notes.md"))

    assert excinfo.value.identifier == "id-one"
    assert "id-two" not in index


def test_upsert_with_new_filename_drops_old_entry(tmp_path: Path) -> None:
    index = _index(tmp_path)
    index.upsert("id-one", Publication(filename="old.md"))

    index.upsert("id-one", Publication(filename="new.md"))

    assert index.lookup_by_filename("old.md") is None
    entry = index.lookup_by_filename("new.md")
    assert entry is not None and entry.identifier == "id-one"
    data = json.loads(index.path.read_text(encoding="utf-8"))
    assert data["filename_index"] == {"new.md": "id-one"}


def test_remove_deletes_both_entries(tmp_path: Path) -> None:
    index = _index(tmp_path)
    index.upsert("id-one", Publication(filename="notes.md"))

    removed = index.remove("id-one")

    assert removed is not None and removed.filename == "notes.md"
    assert index.remove("id-one") is None
    data = json.loads(index.path.read_text(encoding="utf-8"))
    assert data == {"publications": {}, "filename_index": {}}


def test_crash_before_rename_keeps_previous_index(tmp_path: Path) -> None:
    index = _index(tmp_path)
    index.upsert("id-one", Publication(filename="notes.md"))
    durable = index.path.read_bytes()

    # A writer that died after writing its temporary file but before the rename.
    stale = tmp_path / ".metadata.json.0123abcd.tmp"
    stale.write_text('{"publications": {"id-two": {"filen', encoding="utf-8")

    reloaded = _index(tmp_path)

    assert index.path.read_bytes() == durable
    assert reloaded.lookup_by_identifier("id-one") is not None
    assert "id-two" not in reloaded
    assert not stale.exists()


def test_failed_rename_leaves_disk_and_memory_unchanged(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    index = _index(tmp_path)
    index.upsert("id-one", Publication(filename="notes.md"))
    durable = index.path.read_bytes()

    def _fail(*_: object) -> None:
        raise OSError("disk full")

    monkeypatch.setattr("mdpublish.store.assets.os.replace", _fail)

    with pytest.raises(StorageError):
        index.upsert("id-two", Publication(filename="other.md"))

    assert index.path.read_bytes() == durable
    assert "id-two" not in index
    assert index.lookup_by_filename("other.md") is None
    assert list(tmp_path.glob("*.tmp")) == []


def test_corrupted_index_raises(tmp_path: Path) -> None:
    (tmp_path / "metadata.json").write_text("not json", encoding="utf-8")

    with pytest.raises(IndexCorruptedError):
        MetadataIndex(tmp_path / "metadata.json").load()


def test_load_repairs_inconsistent_filename_index(tmp_path: Path) -> None:
    payload = {
        "publications": {
            "id-one": Publication(filename="one.md").model_dump(mode="json"),
            "id-two": Publication(filename="two.md").model_dump(mode="json"),
        },
        "filename_index": {"one.md": "id-one", "ghost.md": "id-gone"},
    }
    (tmp_path / "metadata.json").write_text(json.dumps(payload), encoding="utf-8")

    index = _index(tmp_path)

    assert index.lookup_by_filename("ghost.md") is None
    entry = index.lookup_by_filename("two.md")
    assert entry is not None and entry.identifier == "id-two"
    data = json.loads(index.path.read_text(encoding="utf-8"))
    assert data["filename_index"] == {"one.md": "id-one", "two.md": "id-two"}


def test_load_renames_second_claimant_of_a_filename(tmp_path: Path) -> None:
    payload = {
        "publications": {
            "id-one": Publication(filename="shared.md").model_dump(mode="json"),
            "id-two": Publication(filename="shared.md").model_dump(mode="json"),
        },
        "filename_index": {"shared.md": "id-one"},
    }
    (tmp_path / "metadata.json").write_text(json.dumps(payload), encoding="utf-8")

    index = _index(tmp_path)

    owner = index.lookup_by_filename("shared.md")
    assert owner is not None and owner.identifier == "id-one"
    renamed = index.lookup_by_identifier("id-two")
    assert renamed is not None and renamed.filename == "id-two"
    stored = index.upsert("id-two", renamed)
    assert stored.filename == "id-two"
    data = json.loads(index.path.read_text(encoding="utf-8"))
    assert data["filename_index"] == {"shared.md": "id-one", "id-two": "id-two"}
    assert data["publications"]["id-two"]["filename"] == "id-two"


def test_entries_are_sorted_by_most_recent_update(tmp_path: Path) -> None:
    index = _index(tmp_path)
    first = Publication(filename="first.md")
    second = Publication(filename="second.md")
    second.updated_at = first.updated_at.replace(year=first.updated_at.year + 1)
    index.upsert("id-one", first)
    index.upsert("id-two", second)

    assert [entry.identifier for entry in index.entries()] == ["id-two", "id-one"]
