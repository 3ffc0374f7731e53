"""Password gate in front of stored publications."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from mdpublish.config.models import AccessSettings
from mdpublish.store import ImageAsset, Publication, PublicationStore

from .passwords import PasswordHasher, WerkzeugPasswordHasher
from .throttle import AttemptThrottle

LOGGER = logging.getLogger(__name__)


class AccessDecision(str, Enum):
    """Outcome of an access check or unlock attempt."""

    UNLOCKED = "unlocked"
    LOCKED = "locked"
    NOT_FOUND = "not_found"
    THROTTLED = "throttled"
    PASSWORD_REQUIRED = "password_required"
    INVALID_PASSWORD = "invalid_password"

    @property
    def granted(self) -> bool:
        return self is AccessDecision.UNLOCKED


@dataclass(slots=True)
class UnlockSession:
    """Identifiers a single client session has unlocked.

    The set only grows; it is discarded together with the session that carries it.
    """

    unlocked: set[str] = field(default_factory=set)

    @classmethod
    def from_iterable(cls, identifiers: Iterable[str] | None) -> "UnlockSession":
        return cls(unlocked=set(identifiers or ()))

    def is_unlocked(self, identifier: str) -> bool:
        return identifier in self.unlocked

    def unlock(self, identifier: str) -> None:
        self.unlocked.add(identifier)

    def to_list(self) -> list[str]:
        return sorted(self.unlocked)


@dataclass(frozen=True, slots=True)
class ContentAccess:
    """Result of a gated content read; ``record`` and ``content`` are set only when unlocked."""

    decision: AccessDecision
    record: Optional[Publication] = None
    content: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ImageAccess:
    """Result of a gated image read; ``image`` is set only when unlocked and present."""

    decision: AccessDecision
    image: Optional[ImageAsset] = None


class AccessGateway:
    """Decide whether a session may read a publication, and unlock it on request."""

    def __init__(
        self,
        store: PublicationStore,
        throttle: AttemptThrottle | None = None,
        hasher: PasswordHasher | None = None,
    ) -> None:
        """Initialize the gateway.

        Args:
            store: Publication store that owns the records.
            throttle: Attempt throttle shared by every session.
            hasher: Password verification backend.
        """
        self._store = store
        self._throttle = throttle or AttemptThrottle()
        self._hasher = hasher or WerkzeugPasswordHasher()

    @classmethod
    def from_settings(
        cls,
        store: PublicationStore,
        settings: AccessSettings,
        hasher: PasswordHasher | None = None,
        *,
        start_sweeper: bool = False,
    ) -> "AccessGateway":
        """Build a gateway from the ``access`` settings section.

        With ``start_sweeper`` the throttle purges expired windows every
        ``sweep_interval_seconds`` until :meth:`close` is called.
        """
        throttle = AttemptThrottle(settings.password_attempts, settings.window_seconds)
        if start_sweeper:
            throttle.start(settings.sweep_interval_seconds)
        return cls(store, throttle, hasher)

    def close(self) -> None:
        self._throttle.stop()

    @property
    def throttle(self) -> AttemptThrottle:
        return self._throttle

    def allow_attempt(self, identifier: str) -> bool:
        return self._throttle.allow_attempt(identifier)

    def check(self, session: UnlockSession, identifier: str) -> AccessDecision:
        """Return ``UNLOCKED``, ``LOCKED`` or ``NOT_FOUND`` for ``identifier``.

        A session that unlocked ``identifier`` stays unlocked even if the stored
        password changes afterwards.
        """
        record = self._store.lookup_by_identifier(identifier)
        return self._decide(session, identifier, record)

    def verify_and_unlock(
        self, session: UnlockSession, identifier: str, password: str | None
    ) -> AccessDecision:
        """Check ``password`` against the stored hash and unlock on success.

        The throttle is consulted before anything else, so every call counts as an
        attempt whatever its outcome.
        """
        if not self._throttle.allow_attempt(identifier):
            return AccessDecision.THROTTLED

        record = self._store.lookup_by_identifier(identifier)
        if record is None:
            return AccessDecision.NOT_FOUND
        if not record.password_hash:
            return AccessDecision.UNLOCKED
        if not password:
            return AccessDecision.PASSWORD_REQUIRED
        if not self._hasher.verify(password, record.password_hash):
            LOGGER.warning("Invalid password attempt for %s", identifier)
            return AccessDecision.INVALID_PASSWORD

        session.unlock(identifier)
        LOGGER.info("Publication unlocked: %s", identifier)
        return AccessDecision.UNLOCKED

    def open_content(self, session: UnlockSession, identifier: str) -> ContentAccess:
        """Return the record and markdown body if the session may read them."""
        record = self._store.lookup_by_identifier(identifier)
        decision = self._decide(session, identifier, record)
        if not decision.granted:
            return ContentAccess(decision)
        content = self._store.read_content(identifier)
        if content is None:
            return ContentAccess(AccessDecision.NOT_FOUND)
        return ContentAccess(decision, record=record, content=content)

    def open_image(self, session: UnlockSession, identifier: str, name: str) -> ImageAccess:
        """Return an image of the publication if the session may read it."""
        decision = self.check(session, identifier)
        if not decision.granted:
            return ImageAccess(decision)
        image = self._store.read_image(identifier, name)
        if image is None:
            return ImageAccess(AccessDecision.NOT_FOUND)
        return ImageAccess(decision, image=image)

    def _decide(
        self, session: UnlockSession, identifier: str, record: Publication | None
    ) -> AccessDecision:
        if record is None:
            return AccessDecision.NOT_FOUND
        if not record.password_hash or session.is_unlocked(identifier):
            return AccessDecision.UNLOCKED
        return AccessDecision.LOCKED


__all__ = [
    "AccessDecision",
    "AccessGateway",
    "ContentAccess",
    "ImageAccess",
    "UnlockSession",
]
