"""
Rate limiting for the HTTP API.
Fixed-window request counters per client and action, with a background
sweep that drops expired windows.
"""
import time
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional
from threading import Lock

from formless.config import Config

logger = logging.getLogger(__name__)


@dataclass
class _Window:
    count: int
    reset_at: float


def rate_limit_key(identifier: str, action: str) -> str:
    """Counter key for one client performing one action."""
    return f"ratelimit:{identifier}:{action}"


def client_identifier(headers: Mapping[str, str], peer_host: Optional[str] = None) -> str:
    """
    Identify the calling client.

    Uses the first X-Forwarded-For address, then X-Real-IP, then the
    socket peer.
    """
    forwarded = headers.get('x-forwarded-for')
    if forwarded:
        first = forwarded.split(',')[0].strip()
        if first:
            return first
    real_ip = headers.get('x-real-ip')
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return peer_host or 'unknown'


class RateLimiter:
    """
    Fixed-window rate limiter owned by the application.

    Each key may be allowed ``limit`` times per ``window_seconds``; the
    window starts at the key's first request.
    """

    def __init__(
        self,
        limit: Optional[int] = None,
        window_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize rate limiter.

        Args:
            limit: Requests allowed per window (defaults to Config.RATE_LIMIT_REQUESTS)
            window_seconds: Window length (defaults to Config.RATE_LIMIT_WINDOW_SECONDS)
            clock: Monotonic time source, replaceable in tests
        """
        self.limit = limit or Config.RATE_LIMIT_REQUESTS
        self.window_seconds = window_seconds or Config.RATE_LIMIT_WINDOW_SECONDS
        self.clock = clock
        self.windows: Dict[str, _Window] = {}
        self.lock = Lock()
        self.rejected = 0
        self._sweeper: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def is_allowed(self, key: str) -> bool:
        """Count a request for ``key``; False once the window's limit is used up."""
        with self.lock:
            now = self.clock()
            window = self.windows.get(key)
            if window is None or window.reset_at <= now:
                self.windows[key] = _Window(count=1, reset_at=now + self.window_seconds)
                return True

            if window.count >= self.limit:
                self.rejected += 1
                logger.warning(f"Rate limit exceeded for {key}: {window.count}/{self.limit}")
                return False

            window.count += 1
            return True

    def remaining(self, key: str) -> int:
        """Requests left in the current window for ``key``."""
        with self.lock:
            window = self.windows.get(key)
            if window is None or window.reset_at <= self.clock():
                return self.limit
            return max(0, self.limit - window.count)

    def sweep_expired(self) -> int:
        """Drop windows whose reset time has passed."""
        with self.lock:
            now = self.clock()
            expired = [key for key, window in self.windows.items() if window.reset_at <= now]
            for key in expired:
                del self.windows[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired rate limit window(s)")
        return len(expired)

    def start_sweeper(self, interval: Optional[float] = None) -> None:
        """Run ``sweep_expired`` every ``interval`` seconds on a daemon thread."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        interval = interval or Config.RATE_LIMIT_SWEEP_INTERVAL
        self._stop.clear()

        def run():
            while not self._stop.wait(interval):
                self.sweep_expired()

        self._sweeper = threading.Thread(target=run, name="rate-limit-sweeper", daemon=True)
        self._sweeper.start()
        logger.info(f"Rate limit sweeper started (every {interval}s)")

    def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._stop.set()
        self._sweeper.join(timeout=5)
        self._sweeper = None
        logger.info("Rate limit sweeper stopped")

    def get_stats(self) -> Dict:
        """
        Get limiter statistics.

        Returns:
            Dictionary with limit settings, active windows and rejected count
        """
        with self.lock:
            now = self.clock()
            return {
                'limit': self.limit,
                'window_seconds': self.window_seconds,
                'active_keys': sum(1 for window in self.windows.values() if window.reset_at > now),
                'tracked_keys': len(self.windows),
                'rejected': self.rejected,
                'sweeper_running': self._sweeper is not None and self._sweeper.is_alive(),
            }

    def reset(self):
        """Reset all counters (useful for testing)."""
        with self.lock:
            self.windows.clear()
            self.rejected = 0
            logger.info("Rate limiter reset")
