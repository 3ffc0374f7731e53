"""Access gateway tests."""

from __future__ import annotations

import time
from pathlib import Path

import pytest

from mdpublish.access import (
    AccessDecision,
    AccessGateway,
    AttemptThrottle,
    UnlockSession,
    WerkzeugPasswordHasher,
)
from mdpublish.config import AccessSettings
from mdpublish.store import ImageUpload, PublicationStore

HASHER = WerkzeugPasswordHasher(method="pbkdf2:sha256:1000")


def _gateway(tmp_path: Path, max_attempts: int = 5) -> tuple[PublicationStore, AccessGateway]:
    store = PublicationStore(tmp_path / "data").open()
    throttle = AttemptThrottle(max_attempts=max_attempts, window_seconds=60)
    return store, AccessGateway(store, throttle, HASHER)


def _protected(store: PublicationStore, password: str = "s3cret") -> str:
    return store.publish(
        "secret.md",
        "# Hidden",
        password_hash=HASHER.hash(password),
        images=[ImageUpload.from_bytes("a.png", b"png", "image/png")],
    ).identifier


def test_unprotected_publication_is_always_unlocked(tmp_path: Path) -> None:
    store, gateway = _gateway(tmp_path)
    identifier = store.publish("open.md", "# Open").identifier

    session = UnlockSession()

    assert gateway.check(session, identifier) is AccessDecision.UNLOCKED
    access = gateway.open_content(session, identifier)
    assert access.decision.granted
    assert access.content == "# Open"
    assert gateway.verify_and_unlock(session, identifier, None) is AccessDecision.UNLOCKED


def test_unknown_identifier_is_not_found(tmp_path: Path) -> None:
    _, gateway = _gateway(tmp_path)
    session = UnlockSession()

    assert gateway.check(session, "missing") is AccessDecision.NOT_FOUND
    assert gateway.verify_and_unlock(session, "missing", "pw") is AccessDecision.NOT_FOUND
    assert gateway.open_image(session, "missing", "a.png").decision is AccessDecision.NOT_FOUND


def test_protected_publication_unlocks_with_correct_password(tmp_path: Path) -> None:
    store, gateway = _gateway(tmp_path)
    identifier = _protected(store)
    session = UnlockSession()

    locked = gateway.open_content(session, identifier)
    assert locked.decision is AccessDecision.LOCKED
    assert locked.content is None and locked.record is None
    assert gateway.open_image(session, identifier, "a.png").image is None

    assert gateway.verify_and_unlock(session, identifier, "") is AccessDecision.PASSWORD_REQUIRED
    assert gateway.verify_and_unlock(session, identifier, "wrong") is AccessDecision.INVALID_PASSWORD
    assert gateway.check(session, identifier) is AccessDecision.LOCKED

    assert gateway.verify_and_unlock(session, identifier, "s3cret") is AccessDecision.UNLOCKED
    assert session.is_unlocked(identifier)
    unlocked = gateway.open_content(session, identifier)
    assert unlocked.content == "# Hidden"
    assert unlocked.record is not None and unlocked.record.filename == "secret.md"
    image = gateway.open_image(session, identifier, "a.png")
    assert image.image is not None and image.image.data == b"png"
    assert gateway.open_image(session, identifier, "b.png").decision is AccessDecision.NOT_FOUND


def test_throttle_denies_even_correct_password(tmp_path: Path) -> None:
    store, gateway = _gateway(tmp_path, max_attempts=5)
    identifier = _protected(store)
    session = UnlockSession()

    outcomes = [gateway.verify_and_unlock(session, identifier, "wrong") for _ in range(5)]

    assert outcomes == [AccessDecision.INVALID_PASSWORD] * 5
    assert gateway.verify_and_unlock(session, identifier, "s3cret") is AccessDecision.THROTTLED
    assert not session.is_unlocked(identifier)
    assert gateway.allow_attempt(identifier) is False


def test_unlock_survives_password_change_within_session(tmp_path: Path) -> None:
    store, gateway = _gateway(tmp_path)
    identifier = _protected(store, "first")
    session = UnlockSession()
    assert gateway.verify_and_unlock(session, identifier, "first") is AccessDecision.UNLOCKED

    store.update(identifier, "# Hidden v2", password_hash=HASHER.hash("second"))

    assert gateway.check(session, identifier) is AccessDecision.UNLOCKED
    assert gateway.open_content(session, identifier).content == "# Hidden v2"
    assert gateway.check(UnlockSession(), identifier) is AccessDecision.LOCKED


def test_sessions_are_independent_and_serializable(tmp_path: Path) -> None:
    store, gateway = _gateway(tmp_path)
    identifier = _protected(store)
    first = UnlockSession()
    gateway.verify_and_unlock(first, identifier, "s3cret")

    restored = UnlockSession.from_iterable(first.to_list())

    assert gateway.check(restored, identifier) is AccessDecision.UNLOCKED
    assert gateway.check(UnlockSession.from_iterable(None), identifier) is AccessDecision.LOCKED


def test_from_settings_uses_configured_limits(tmp_path: Path) -> None:
    store = PublicationStore(tmp_path / "data").open()
    gateway = AccessGateway.from_settings(
        store, AccessSettings(password_attempts=2, window_seconds=30), HASHER
    )

    assert gateway.throttle.max_attempts == 2
    assert [gateway.allow_attempt("abc") for _ in range(3)] == [True, True, False]


@pytest.mark.parametrize("stored", ["not-a-hash", "bogus$salt$value"])
def test_hasher_treats_malformed_hash_as_mismatch(stored: str) -> None:
    assert HASHER.verify("anything", stored) is False


def test_default_hasher_round_trip() -> None:
    hasher = WerkzeugPasswordHasher()
    hashed = hasher.hash("correct horse")

    assert hashed != "correct horse"
    assert hasher.verify("correct horse", hashed) is True
    assert hasher.verify("battery staple", hashed) is False


def test_from_settings_can_run_background_sweep(tmp_path: Path) -> None:
    store = PublicationStore(tmp_path / "data").open()
    settings = AccessSettings(window_seconds=0.01, sweep_interval_seconds=0.01)
    gateway = AccessGateway.from_settings(store, settings, HASHER, start_sweeper=True)
    try:
        gateway.allow_attempt("abc")
        deadline = time.monotonic() + 5
        while len(gateway.throttle) and time.monotonic() < deadline:
            time.sleep(0.01)
        assert len(gateway.throttle) == 0
    finally:
        gateway.close()
