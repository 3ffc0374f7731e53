"""Asset filesystem layer tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from mdpublish.store import AssetStore, InvalidFilenameError, sanitize_filename
from mdpublish.store.assets import CONTENT_FILENAME, media_type_for


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("diagram.png", "diagram.png"),
        ("my image (1).png", "my_image__1_.png"),
        ("nested\\dir\\photo.jpg", "nested_dir_photo.jpg"),
        ("sub/dir/photo.jpg", "sub_dir_photo.jpg"),
        (".hidden.png", "hidden.png"),
        ("..", "_"),
        ("", ""),
        ("...", "_."),
    ],
)
def test_sanitize_filename(raw: str, expected: str) -> None:
    assert sanitize_filename(raw) == expected


@pytest.mark.parametrize("raw", ["../../etc/passwd", "..\\..\\secret", "/abs/path.png", "a/../b"])
def test_sanitize_filename_never_escapes(raw: str) -> None:
    cleaned = sanitize_filename(raw)

    assert "/" not in cleaned
    assert "\\" not in cleaned
    assert ".." not in cleaned
    assert sanitize_filename(cleaned) == cleaned


def test_content_round_trip_and_missing(tmp_path: Path) -> None:
    assets = AssetStore(tmp_path / "publications")
    assets.ensure_dirs("abc123")

    assert assets.read_content("abc123") is None
    assets.write_content("abc123", "# Title\n\nBody ✓")

    assert assets.read_content("abc123") == "# Title\n\nBody ✓"
    assert assets.read_content("unknown") is None


def test_writes_leave_no_temporary_files(tmp_path: Path) -> None:
    assets = AssetStore(tmp_path / "publications")
    assets.ensure_dirs("abc123")

    assets.write_content("abc123", "first")
    assets.write_content("abc123", "second")
    assets.write_image("abc123", "a.png", b"png-bytes")
    assets.write_image("abc123", "a.png", b"png-bytes-2")

    publication_dir = tmp_path / "publications" / "abc123"
    leftovers = [path for path in publication_dir.rglob("*") if path.name.endswith(".tmp")]
    assert leftovers == []
    assert assets.read_content("abc123") == "second"
    assert assets.list_images("abc123") == ["a.png"]


def test_read_image_applies_same_sanitization(tmp_path: Path) -> None:
    assets = AssetStore(tmp_path / "publications")
    assets.ensure_dirs("abc123")

    stored = assets.write_image("abc123", "my photo.JPG", b"jpeg")
    image = assets.read_image("abc123", "my photo.JPG")

    assert stored == "my_photo.JPG"
    assert image is not None
    assert image.data == b"jpeg"
    assert image.media_type == "image/jpeg"


def test_read_image_cannot_escape_images_directory(tmp_path: Path) -> None:
    assets = AssetStore(tmp_path / "publications")
    assets.ensure_dirs("abc123")
    assets.write_content("abc123", "secret")
    (tmp_path / "outside.png").write_bytes(b"outside")

    assert assets.read_image("abc123", f"../{CONTENT_FILENAME}") is None
    assert assets.read_image("abc123", "../../../outside.png") is None
    assert assets.read_image("../abc123", "x.png") is None


def test_write_rejects_unusable_names(tmp_path: Path) -> None:
    assets = AssetStore(tmp_path / "publications")
    assets.ensure_dirs("abc123")

    with pytest.raises(InvalidFilenameError):
        assets.write_image("abc123", ".", b"data")
    with pytest.raises(InvalidFilenameError):
        assets.write_image("abc123", "", b"data")
    with pytest.raises(InvalidFilenameError):
        assets.write_content("../escape", "nope")


def test_delete_image_and_tree_are_idempotent(tmp_path: Path) -> None:
    assets = AssetStore(tmp_path / "publications")
    assets.ensure_dirs("abc123")
    assets.write_content("abc123", "body")
    assets.write_image("abc123", "a.png", b"a")

    assert assets.delete_image("abc123", "a.png") is True
    assert assets.delete_image("abc123", "a.png") is False

    assets.delete_publication_tree("abc123")
    assets.delete_publication_tree("abc123")

    assert not (tmp_path / "publications" / "abc123").exists()


def test_publication_ids_with_content_skips_empty_directories(tmp_path: Path) -> None:
    assets = AssetStore(tmp_path / "publications")
    for identifier in ("first", "second"):
        assets.ensure_dirs(identifier)
        assets.write_content(identifier, identifier)
    assets.ensure_dirs("empty")

    assert assets.publication_ids_with_content() == ["first", "second"]


def test_media_type_for_unknown_extension() -> None:
    assert media_type_for("image.svg") == "image/svg+xml"
    assert media_type_for("archive.bin") == "application/octet-stream"
