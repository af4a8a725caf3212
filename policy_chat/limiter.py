"""In-memory rate limiter for the policy chat gateway.

Tracks per-client request counts in fixed windows that start at a client's
first request and are replaced wholesale once they expire. Entries live for
the lifetime of the process; a multi-instance deployment would need a shared
counting store to get cross-instance accuracy.
"""

import threading
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Optional


@dataclass
class RateLimitEntry:
    """Request counter for a single client key."""

    count: int
    window_reset_at: float


@dataclass
class RateLimitStore:
    """Lock-guarded client_key -> entry map shared by concurrent requests.

    Callers never see the stored entries themselves, only copies.
    """

    _entries: Dict[str, RateLimitEntry] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, client_key: str) -> Optional[RateLimitEntry]:
        """Return a copy of the entry for client_key, if any."""
        with self._lock:
            entry = self._entries.get(client_key)
            return None if entry is None else replace(entry)

    def update(
        self,
        client_key: str,
        fn: Callable[[Optional[RateLimitEntry]], RateLimitEntry],
    ) -> RateLimitEntry:
        """Atomically replace the entry for client_key with fn(current).

        Returns:
            A copy of the entry that was stored.
        """
        with self._lock:
            entry = fn(self._entries.get(client_key))
            self._entries[client_key] = entry
            return replace(entry)


@dataclass
class RateLimiter:
    """Per-client in-memory rate limiter.

    Window boundaries are wall-clock based. Because a window is only reset on
    the first request after it expires, a burst straddling two windows can
    admit close to ``2 * max_requests`` requests in a short span.
    """

    max_requests: int = 20
    window_seconds: float = 60.0
    store: RateLimitStore = field(default_factory=RateLimitStore)

    def admit(self, client_key: str) -> bool:
        """Count a request for client_key and decide whether to admit it.

        Denied requests still increment the counter.

        Args:
            client_key: The caller's identifier (usually the forwarded IP).

        Returns:
            True if the request is within the client's quota.
        """
        now = time.time()

        def count(entry: Optional[RateLimitEntry]) -> RateLimitEntry:
            if entry is None or now > entry.window_reset_at:
                return RateLimitEntry(count=1, window_reset_at=now + self.window_seconds)
            return RateLimitEntry(count=entry.count + 1, window_reset_at=entry.window_reset_at)

        return self.store.update(client_key, count).count <= self.max_requests

    def entry(self, client_key: str) -> Optional[RateLimitEntry]:
        """Return a copy of the current entry for client_key, if any."""
        return self.store.get(client_key)
