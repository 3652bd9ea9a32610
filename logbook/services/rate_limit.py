"""
Fixed-window request throttling for the public endpoints.

Each caller key gets a window that starts at its first request. Requests
inside the window increment a counter; once the counter passes the limit
the caller is refused until the window resets. Expired windows are swept
lazily so the table does not grow without bound.
"""

import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class RateLimitResult:
    """Outcome of one check. reset_time is epoch milliseconds."""
    allowed: bool
    remaining: int
    reset_time: int

    def retry_after(self, now_ms: int) -> int:
        """Whole seconds until the window resets, never negative."""
        return max(0, -(-(self.reset_time - now_ms) // 1000))


@dataclass
class _Window:
    count: int
    reset_time: int


class RateLimiter:
    """
    In-memory fixed-window counter.

    Thread-safe: the reset-or-increment step for a key happens under one
    lock so concurrent requests never lose an increment.
    """

    def __init__(
        self,
        clock: Optional[Callable[[], float]] = None,
        sweep_interval_ms: int = 5 * 60 * 1000,
    ):
        self._clock = clock or time.time
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._sweep_interval_ms = sweep_interval_ms
        self._last_sweep = self.now_ms()

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def check(self, key: str, max_requests: int, window_ms: int) -> RateLimitResult:
        """Count one request for key and report whether it is allowed."""
        now = self.now_ms()
        with self._lock:
            self._maybe_sweep(now)

            window = self._windows.get(key)
            if window is None or now > window.reset_time:
                window = _Window(count=1, reset_time=now + window_ms)
                self._windows[key] = window
                return RateLimitResult(True, max_requests - 1, window.reset_time)

            window.count += 1
            if window.count > max_requests:
                logger.warning(f'Rate limit exceeded for {key} ({window.count}/{max_requests})')
                return RateLimitResult(False, 0, window.reset_time)

            return RateLimitResult(True, max_requests - window.count, window.reset_time)

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)

    def _maybe_sweep(self, now: int) -> None:
        if now - self._last_sweep < self._sweep_interval_ms:
            return
        expired = [key for key, window in self._windows.items() if now > window.reset_time]
        for key in expired:
            del self._windows[key]
        self._last_sweep = now
        if expired:
            logger.debug(f'Swept {len(expired)} expired rate limit windows')

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)


def get_rate_limit_key(
    forwarded_for: Optional[str],
    remote_addr: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> str:
    """
    Caller key: first forwarded-for hop, then the socket address, then a
    hash of the user agent, then the shared 'unknown' bucket.
    """
    if forwarded_for:
        first = forwarded_for.split(',')[0].strip()
        if first:
            return first
    if remote_addr:
        return remote_addr
    if user_agent:
        return 'ua:' + hashlib.sha256(user_agent.encode('utf-8')).hexdigest()[:16]
    return 'unknown'
