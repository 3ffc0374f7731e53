"""Per-identifier password attempt throttling."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class _AttemptWindow:
    count: int
    reset_at: float


class AttemptThrottle:
    """Cap password attempts per identifier within a fixed window.

    The first attempt for an identifier (or the first after its window expired)
    opens a new window with a count of one. Later attempts inside the window are
    allowed while the count is below ``max_attempts``; denied attempts do not
    extend the window.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        window_seconds: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the throttle.

        Args:
            max_attempts: Attempts allowed per identifier within one window.
            window_seconds: Window length in seconds.
            clock: Monotonic time source, injectable for tests.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._max_attempts = max_attempts
        self._window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, _AttemptWindow] = {}
        self._stop_event = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def allow_attempt(self, identifier: str) -> bool:
        """Record an attempt for ``identifier`` and report whether it may proceed."""
        now = self._clock()
        with self._lock:
            window = self._windows.get(identifier)
            if window is None or now > window.reset_at:
                self._windows[identifier] = _AttemptWindow(1, now + self._window_seconds)
                return True
            if window.count >= self._max_attempts:
                LOGGER.warning("Password attempts throttled for %s", identifier)
                return False
            window.count += 1
            return True

    def attempts(self, identifier: str) -> int:
        """Return the attempts counted in the current window for ``identifier``."""
        now = self._clock()
        with self._lock:
            window = self._windows.get(identifier)
            if window is None or now > window.reset_at:
                return 0
            return window.count

    def sweep(self) -> int:
        """Drop expired windows and return how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, window in self._windows.items() if now > window.reset_at]
            for key in expired:
                del self._windows[key]
        if expired:
            LOGGER.debug("Purged %d expired throttle entries", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    # Background sweep -------------------------------------------------

    def start(self, interval_seconds: float = 60.0) -> None:
        """Run :meth:`sweep` every ``interval_seconds`` on a daemon thread."""
        if self._sweeper is not None:
            raise RuntimeError("Throttle sweeper is already running.")
        self._stop_event.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop,
            args=(max(0.01, interval_seconds),),
            name="mdpublish-throttle-sweep",
            daemon=True,
        )
        self._sweeper.start()

    def stop(self) -> None:
        """Stop the background sweeper if it is running."""
        self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None

    def _sweep_loop(self, interval_seconds: float) -> None:
        while not self._stop_event.wait(interval_seconds):
            self.sweep()


__all__ = ["AttemptThrottle"]
