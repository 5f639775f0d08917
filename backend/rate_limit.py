"""
In-memory, per-IP rate limiting for the public API.

Keeps a sliding window of request timestamps for each (hashed) client IP.
State lives in the process, so each worker counts separately.
"""
import hashlib
import threading
import time
from typing import Dict, List, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware


def get_client_ip(request: Request) -> str:
    """Client IP, honouring the first X-Forwarded-For entry behind a proxy."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


class RateLimiter:
    """Sliding-window counter keyed by client IP."""

    def __init__(self, max_requests: int, window_seconds: int):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._hits: Dict[str, List[float]] = {}
        self._last_prune = 0.0
        self._lock = threading.Lock()

    @staticmethod
    def _key(ip: str) -> str:
        return hashlib.sha256(ip.encode()).hexdigest()[:16]

    def hit(self, ip: str, now: Optional[float] = None) -> Tuple[bool, int]:
        """
        Record a request from ip.

        Returns (allowed, retry_after_seconds). retry_after is 0 when allowed.
        """
        now = time.time() if now is None else now
        key = self._key(ip)
        with self._lock:
            if now - self._last_prune >= self.window_seconds:
                self._prune(now)
            hits = [t for t in self._hits.get(key, []) if now - t < self.window_seconds]
            if len(hits) >= self.max_requests:
                self._hits[key] = hits
                retry_after = int(self.window_seconds - (now - hits[0])) + 1
                return False, retry_after
            hits.append(now)
            self._hits[key] = hits
            return True, 0

    def _prune(self, now: float) -> None:
        """Drop clients with no requests left in the window. Caller holds the lock."""
        stale = [
            key for key, hits in self._hits.items()
            if not hits or now - hits[-1] >= self.window_seconds
        ]
        for key in stale:
            del self._hits[key]
        self._last_prune = now

    def tracked_clients(self) -> int:
        with self._lock:
            return len(self._hits)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
            self._last_prune = 0.0


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests under path_prefix once a client exceeds the limit."""

    def __init__(self, app, limiter: RateLimiter, path_prefix: str = "/api/v1/"):
        super().__init__(app)
        self.limiter = limiter
        self.path_prefix = path_prefix

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS" or not request.url.path.startswith(self.path_prefix):
            return await call_next(request)

        allowed, retry_after = self.limiter.hit(get_client_ip(request))
        if not allowed:
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Too many requests from this IP, please try again later.",
                    "code": "RATE_LIMIT_EXCEEDED",
                },
                headers={"Retry-After": str(retry_after)},
            )
        return await call_next(request)
