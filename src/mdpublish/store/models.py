"""Data models for publications and the metadata index."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Literal, NamedTuple, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Publication(BaseModel):
    """Metadata describing one published document."""

    filename: str
    title: str = ""
    origin_path: str = ""
    password_hash: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    images: List[str] = Field(default_factory=list)

    @property
    def is_protected(self) -> bool:
        return bool(self.password_hash)


class IndexDocument(BaseModel):
    """Durable shape of ``metadata.json``."""

    publications: Dict[str, Publication] = Field(default_factory=dict)
    filename_index: Dict[str, str] = Field(default_factory=dict)


class ImageUpload(BaseModel):
    """An image supplied with a publish or update request.

    ``data`` carries the payload base64-encoded, matching the producer's wire format.
    """

    filename: str
    data: str
    mime_type: str

    @classmethod
    def from_bytes(cls, filename: str, payload: bytes, mime_type: str) -> "ImageUpload":
        return cls(
            filename=filename,
            data=base64.b64encode(payload).decode("ascii"),
            mime_type=mime_type,
        )

    def decode(self) -> bytes:
        """Return the decoded payload.

        Raises:
            ValueError: If ``data`` is not valid base64.
        """
        try:
            return base64.b64decode("".join(self.data.split()), validate=True)
        except binascii.Error as exc:
            raise ValueError(f"Invalid base64 payload for {self.filename!r}") from exc


RejectionReason = Literal[
    "limit_exceeded",
    "unsupported_media_type",
    "invalid_encoding",
    "too_large",
    "invalid_filename",
]


@dataclass(frozen=True, slots=True)
class ImageRejection:
    """An image skipped while saving a publication.

    Attributes:
        filename: Filename as supplied by the producer.
        reason: Machine-readable rejection reason.
        detail: Human-readable explanation.
    """

    filename: str
    reason: RejectionReason
    detail: str = ""


@dataclass(slots=True)
class SaveResult:
    """Outcome of a create, replace or update.

    Attributes:
        identifier: Identifier of the saved publication.
        record: Record as persisted in the index.
        accepted: Number of images written.
        rejections: Images skipped, in request order.
    """

    identifier: str
    record: Publication
    accepted: int = 0
    rejections: list[ImageRejection] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ImageAsset:
    """Stored image payload with the media type derived from its name."""

    data: bytes
    media_type: str


class IndexEntry(NamedTuple):
    """An identifier paired with a copy of its record."""

    identifier: str
    record: Publication


__all__ = [
    "Publication",
    "IndexDocument",
    "ImageUpload",
    "ImageRejection",
    "RejectionReason",
    "SaveResult",
    "ImageAsset",
    "IndexEntry",
    "utcnow",
]
