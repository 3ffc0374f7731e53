"""Password hashing used to protect publications."""

from __future__ import annotations

from typing import Protocol

from werkzeug.security import check_password_hash, generate_password_hash


class PasswordHasher(Protocol):
    """Hash a secret and verify a secret against a stored hash."""

    def hash(self, password: str) -> str: ...

    def verify(self, password: str, password_hash: str) -> bool: ...


class WerkzeugPasswordHasher:
    """Salted password hashes via ``werkzeug.security``."""

    def __init__(self, method: str = "scrypt") -> None:
        self._method = method

    def hash(self, password: str) -> str:
        return generate_password_hash(password, method=self._method)

    def verify(self, password: str, password_hash: str) -> bool:
        # Malformed stored hashes count as a mismatch.
        try:
            return check_password_hash(password_hash, password)
        except ValueError:
            return False


__all__ = ["PasswordHasher", "WerkzeugPasswordHasher"]
