"""
Security Module
===============
  - Static X-API-Key authentication (header or ?api_key= query param)
  - Ticker sanitization for user-supplied symbols
  - Security response headers (HSTS, X-Frame-Options, etc.)
  - Per-IP rate limiting lives in interface.security.rate_limit
"""

from starlette.middleware.base import BaseHTTPMiddleware
import os
import re
import logging
from typing import Optional

from fastapi import Security, HTTPException, status, Query
from fastapi.security import APIKeyHeader

logger = logging.getLogger("SecurityLayer")

# ── Ticker validation ──────────────────────────────────────────────────────
_VALID_TICKER_RE = re.compile(r"^[A-Z]{1,5}$")

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)


def _configured_api_key() -> str:
    return os.getenv("APP_API_KEY", "")


# ══════════════════════════════════════════════════════════════════════════
# FastAPI dependency: require a valid API key
# ══════════════════════════════════════════════════════════════════════════

async def require_api_key(
    api_key_header: Optional[str] = Security(API_KEY_HEADER),
    api_key_query: Optional[str] = Query(default=None, alias="api_key"),
) -> str:
    """
    Accepts the key from the X-API-Key header or the ?api_key= query param.
    With APP_API_KEY unset (local dev) any supplied key is accepted.
    """
    api_key = api_key_header or api_key_query
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required. Provide X-API-Key.",
        )

    expected = _configured_api_key()
    if not expected:
        logger.warning("AUTH | api_key_check_skipped: APP_API_KEY not set")
        return "dev-unauthenticated"
    if api_key == expected:
        return "api-key-user"

    logger.warning("AUTH | api_key_rejected")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                        detail="Invalid API key.")


# ══════════════════════════════════════════════════════════════════════════
# Ticker sanitizer
# ══════════════════════════════════════════════════════════════════════════

def sanitize_ticker(raw: str) -> str:
    cleaned = str(raw).strip().upper()
    if not _VALID_TICKER_RE.match(cleaned):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid ticker '{raw}'. Must be 1-5 uppercase letters.",
        )
    return cleaned


# ══════════════════════════════════════════════════════════════════════════
# Security response headers middleware
# ══════════════════════════════════════════════════════════════════════════

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Mount via: app.add_middleware(SecurityHeadersMiddleware)"""
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["X-Content-Type-Options"]    = "nosniff"
        response.headers["X-Frame-Options"]           = "DENY"
        response.headers["Referrer-Policy"]           = "strict-origin-when-cross-origin"
        return response
