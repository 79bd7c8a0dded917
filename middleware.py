"""
HTTP hardening: security response headers and per-client request throttling.
"""
import logging
import time
from typing import Callable, Dict, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

import config

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "cross-origin",
    "X-DNS-Prefetch-Control": "off",
    "Origin-Agent-Cluster": "?1",
}

CONTENT_SECURITY_POLICY = "; ".join([
    "default-src 'self'",
    "style-src 'self' 'unsafe-inline'",
    "script-src 'self'",
    "img-src 'self' data: https:",
    "connect-src 'self'",
    "font-src 'self'",
    "object-src 'none'",
    "media-src 'self'",
    "frame-src 'none'",
])

# the interactive docs load their assets from a CDN
DOCS_PATHS = ("/docs", "/redoc", "/openapi.json")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        if not request.url.path.startswith(DOCS_PATHS):
            response.headers.setdefault("Content-Security-Policy", CONTENT_SECURITY_POLICY)
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed-window throttling keyed by client address.

    ``limit`` requests are allowed per ``window`` seconds; a limit of 0
    turns throttling off.
    """

    def __init__(self, app, limit: int = config.RATE_LIMIT_PER_MINUTE, window: int = 60,
                 clock: Callable[[], float] = time.monotonic):
        super().__init__(app)
        self.limit = limit
        self.window = window
        self.clock = clock
        self._hits: Dict[str, Tuple[int, int]] = {}

    def _client_key(self, request: Request) -> str:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    def hit(self, key: str) -> Tuple[bool, int]:
        """Count one request; returns (allowed, seconds until the window resets)."""
        now = self.clock()
        current = int(now // self.window)
        window, count = self._hits.get(key, (current, 0))
        if window != current:
            window, count = current, 0
            # old windows are never consulted again
            self._hits = {k: v for k, v in self._hits.items() if v[0] == current}
        count += 1
        self._hits[key] = (window, count)
        retry_after = max(1, int((current + 1) * self.window - now))
        return count <= self.limit, retry_after

    async def dispatch(self, request: Request, call_next):
        if self.limit <= 0 or request.method == "OPTIONS":
            return await call_next(request)
        key = self._client_key(request)
        allowed, retry_after = self.hit(key)
        if not allowed:
            logger.warning("Rate limit exceeded for %s on %s %s", key, request.method, request.url.path)
            return JSONResponse(
                {"detail": "Too many requests"},
                status_code=429,
                headers={"Retry-After": str(retry_after)},
            )
        return await call_next(request)
