"""
Rate Limiting
=============
Per-client-IP limits using slowapi.

Limits:
  - Ensemble scan (/api/ensemble/scan): SCAN_RATE_LIMIT (default 10/minute)
  - Global fallback:                    120 requests / minute

On limit breach: 429 Too Many Requests with Retry-After header.
"""
import logging
import os
from fastapi import Request, Response
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi.responses import JSONResponse

logger = logging.getLogger("RateLimiter")

SCAN_RATE_LIMIT = os.getenv("SCAN_RATE_LIMIT", "10/minute")


def _get_ip(request: Request) -> str:
    """First X-Forwarded-For hop when behind a proxy, else the peer address."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


# Module-level limiter: imported and mounted in app.py
limiter = Limiter(key_func=_get_ip, default_limits=["120/minute"])


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Returns 429 with Retry-After header and logs the breach."""
    ip = _get_ip(request)
    logger.warning(f"RATE_LIMIT | ip={ip} path={request.url.path} limit={exc.limit}")
    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "detail": f"Too many requests. Limit: {exc.limit}. Try again later.",
            "path": str(request.url.path),
        },
        headers={"Retry-After": "60"},
    )
