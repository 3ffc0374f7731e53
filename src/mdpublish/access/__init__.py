"""Password-gated access to stored publications."""

from __future__ import annotations

from .gateway import AccessDecision, AccessGateway, ContentAccess, ImageAccess, UnlockSession
from .passwords import PasswordHasher, WerkzeugPasswordHasher
from .throttle import AttemptThrottle

__all__ = [
    "AccessDecision",
    "AccessGateway",
    "AttemptThrottle",
    "ContentAccess",
    "ImageAccess",
    "PasswordHasher",
    "UnlockSession",
    "WerkzeugPasswordHasher",
]
