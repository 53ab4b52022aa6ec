import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from flask import request, current_app

logger = logging.getLogger(__name__)

DEFAULT_LIMITS = {
    "/api/login": 10,
    "/api/register": 5,
    "/api/messages": 100,
    "default": 200,
}


def client_ip() -> str:
    return request.headers.get("X-Forwarded-For", request.remote_addr) or "unknown"


class RateLimiter:
    """
    Sliding window request counter per (ip, endpoint).
    One instance per app, kept in app.extensions["rate_limiter"].
    """

    def __init__(self, limits: Optional[Dict[str, int]] = None, window_seconds: float = 60,
                 clock: Callable[[], float] = time.time):
        self.limits = dict(limits or DEFAULT_LIMITS)
        self.window = window_seconds
        self._clock = clock
        self._requests: Dict[Tuple[str, str], List[float]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._requests)

    def limit_for(self, endpoint: str) -> int:
        return self.limits.get(endpoint, self.limits.get("default", DEFAULT_LIMITS["default"]))

    def check_rate_limit(self, ip: str, endpoint: str) -> bool:
        """
        Returns True and records the request when (ip, endpoint) is under its limit,
        False otherwise (nothing recorded).
        """
        now = self._clock()
        window_start = now - self.window
        limit = self.limit_for(endpoint)
        key = (ip, endpoint)

        with self._lock:
            recent = [t for t in self._requests.get(key, []) if t >= window_start]
            if len(recent) >= limit:
                self._requests[key] = recent
                logger.warning("Rate limit exceeded: %s -> %s", ip, endpoint)
                return False
            recent.append(now)
            self._requests[key] = recent
        return True

    def retry_after(self, ip: str, endpoint: str) -> int:
        with self._lock:
            stamps = self._requests.get((ip, endpoint))
            if not stamps:
                return 0
            oldest = stamps[0]
        return max(int(oldest + self.window - self._clock()) + 1, 1)

    def prune(self) -> int:
        """
        Drops keys with no request inside the window. Returns how many were dropped.
        """
        window_start = self._clock() - self.window
        with self._lock:
            stale = [k for k, stamps in self._requests.items()
                     if not stamps or stamps[-1] < window_start]
            for k in stale:
                del self._requests[k]
        return len(stale)


def get_rate_limiter() -> RateLimiter:
    return current_app.extensions["rate_limiter"]


def check_request_rate() -> Tuple[bool, int]:
    """
    Returns (allowed, retry_after_seconds) for the current request.
    """
    limiter = get_rate_limiter()
    ip = client_ip()
    endpoint = request.path
    if limiter.check_rate_limit(ip, endpoint):
        return True, 0
    return False, limiter.retry_after(ip, endpoint)
