"""Configuration models describing mdpublish settings."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_IMAGE_TYPES = [
    "image/png",
    "image/jpeg",
    "image/jpg",
    "image/gif",
    "image/webp",
    "image/svg+xml",
    "image/bmp",
]


class PublishBaseModel(BaseModel):
    """Shared configuration for mdpublish Pydantic settings models."""

    model_config = ConfigDict(extra="forbid")


class StorageSettings(PublishBaseModel):
    """Storage layout and upload limits.

    Attributes:
        data_dir: Directory holding ``metadata.json`` and the publication tree.
        max_content_size_bytes: Largest markdown body accepted, in UTF-8 bytes.
        max_image_size_bytes: Largest decoded image accepted.
        max_images_per_publication: Images beyond this count are rejected.
        allowed_image_types: Media types accepted for image uploads.
        identifier_length: Length of newly generated publication identifiers.
    """

    data_dir: str = "./data"
    max_content_size_bytes: int = Field(default=10 * 1024 * 1024, gt=0)
    max_image_size_bytes: int = Field(default=10 * 1024 * 1024, gt=0)
    max_images_per_publication: int = Field(default=50, ge=0)
    allowed_image_types: List[str] = Field(default_factory=lambda: list(DEFAULT_IMAGE_TYPES))
    identifier_length: int = Field(default=12, ge=8, le=64)


class AccessSettings(PublishBaseModel):
    """Password gate throttling.

    Attributes:
        password_attempts: Attempts permitted per identifier within one window.
        window_seconds: Length of the throttle window.
        sweep_interval_seconds: How often expired throttle entries are purged.
    """

    password_attempts: int = Field(default=5, ge=1)
    window_seconds: float = Field(default=60.0, gt=0)
    sweep_interval_seconds: float = Field(default=60.0, gt=0)


class LoggingSettings(PublishBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
        file: Optional log file path; rotated when set.
        max_size_mb: Maximum log size before rotation.
        backup_count: Number of historical log files to retain.
    """

    level: str = "INFO"
    file: Optional[str] = None
    max_size_mb: int = 100
    backup_count: int = 5


class CLIOptions(PublishBaseModel):
    """CLI behavior defaults.

    Attributes:
        list_limit: Default number of publications shown by ``mdpublish list``.
    """

    list_limit: int = 50


class PublishConfig(PublishBaseModel):
    """Top-level configuration struct for mdpublish.

    Attributes:
        storage: Storage layout and upload limits.
        access: Password throttle settings.
        logging: Logging configuration.
        cli: CLI presentation defaults.
    """

    storage: StorageSettings = Field(default_factory=StorageSettings)
    access: AccessSettings = Field(default_factory=AccessSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cli: CLIOptions = Field(default_factory=CLIOptions)


__all__ = [
    "DEFAULT_IMAGE_TYPES",
    "PublishBaseModel",
    "StorageSettings",
    "AccessSettings",
    "LoggingSettings",
    "CLIOptions",
    "PublishConfig",
]
