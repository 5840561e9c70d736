"""Per-issuer token bucket.

Let's Encrypt counts new orders per account per week; the bucket keeps
us under the issuer's configured weekly budget and absorbs cooldowns
the server imposes with ``Retry-After``.  One bucket per issuer,
injected through :class:`~acmesync.issuers.registry.IssuerRegistry`.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING

from acmesync.core.errors import ACMERateLimited

if TYPE_CHECKING:
    from collections.abc import Callable

log = logging.getLogger(__name__)

WEEK_SECONDS = 7 * 24 * 3600


class TokenBucket:
    """Thread-safe token bucket refilled continuously over a window.

    Parameters
    ----------
    capacity:
        Tokens granted per *window_seconds* (and the burst size).
    window_seconds:
        Refill window, one week by default.

    """

    def __init__(
        self,
        capacity: int,
        window_seconds: float = WEEK_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            msg = f"Token bucket capacity must be >= 1 (got {capacity})"
            raise ValueError(msg)
        self.capacity = capacity
        self.window_seconds = window_seconds
        self._rate = capacity / window_seconds
        self._clock = clock
        self._tokens = float(capacity)
        self._updated = clock()
        self._blocked_until = 0.0
        self._lock = threading.Lock()

    def _refill(self, now: float) -> None:
        elapsed = max(now - self._updated, 0.0)
        self._tokens = min(self.capacity, self._tokens + elapsed * self._rate)
        self._updated = now

    def _wait_locked(self, now: float) -> float:
        cooldown = max(self._blocked_until - now, 0.0)
        if self._tokens >= 1:
            return cooldown
        return max(cooldown, (1 - self._tokens) / self._rate)

    def try_acquire(self) -> bool:
        """Take one token if available, without blocking."""
        with self._lock:
            now = self._clock()
            self._refill(now)
            if now < self._blocked_until or self._tokens < 1:
                return False
            self._tokens -= 1
            return True

    def acquire(self) -> None:
        """Take one token or raise :class:`ACMERateLimited` with the wait."""
        with self._lock:
            now = self._clock()
            self._refill(now)
            wait = self._wait_locked(now)
            if wait > 0:
                msg = f"Issuer token bucket empty; next token in {wait:.0f}s"
                raise ACMERateLimited(msg, retry_after=wait)
            self._tokens -= 1

    def seconds_until_available(self) -> float:
        with self._lock:
            now = self._clock()
            self._refill(now)
            return self._wait_locked(now)

    def penalize(self, seconds: float) -> None:
        """Refuse all tokens for *seconds* (server-side rate limit hit)."""
        with self._lock:
            until = self._clock() + seconds
            if until > self._blocked_until:
                self._blocked_until = until
                log.warning("Issuer rate limit cooldown for %.0fs", seconds)

    @property
    def available(self) -> float:
        with self._lock:
            self._refill(self._clock())
            return self._tokens
