"""In-memory limiter for failed login attempts."""

from __future__ import annotations

import threading
import time
from collections import deque


class LoginAttemptLimiter:
    """Sliding-window counter of failed attempts per key.

    Only failures are counted; a successful login clears the key. Keys
    whose failures have all aged out of the window are dropped.
    """

    def __init__(self):
        self._failures: dict[str, deque] = {}
        self._lock = threading.Lock()

    def check(self, key: str, max_attempts: int, window_seconds: int) -> tuple[bool, int]:
        """Return `(allowed, retry_after_seconds)` for `key`."""
        now = time.monotonic()
        with self._lock:
            q = self._failures.get(key)
            if q is None:
                return True, 0
            cutoff = now - window_seconds
            while q and q[0] < cutoff:
                q.popleft()
            if not q:
                del self._failures[key]
                return True, 0
            if len(q) >= max_attempts:
                return False, max(1, int(window_seconds - (now - q[0])))
        return True, 0

    def record_failure(self, key: str) -> None:
        with self._lock:
            self._failures.setdefault(key, deque()).append(time.monotonic())

    def reset(self, key: str) -> None:
        with self._lock:
            self._failures.pop(key, None)
