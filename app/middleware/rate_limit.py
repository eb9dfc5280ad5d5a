"""Request rate limiting with slowapi.

Only the credential endpoints (register and login) are limited; they
are the ones worth brute-forcing. Limits are per client IP and kept in
process memory. ``RATE_LIMIT_ENABLED=false`` turns limiting off.
"""

import logging

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from starlette.responses import JSONResponse

from app.core.config import settings

logger = logging.getLogger(__name__)


def get_ip_address(request: Request) -> str:
    """Client IP, honouring X-Forwarded-For from a fronting proxy."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"


limiter = Limiter(
    key_func=get_ip_address,
    storage_uri="memory://",
    enabled=settings.RATE_LIMIT_ENABLED,
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Render a 429 in the same shape as every other API error."""
    logger.warning(f"Rate limit exceeded: {get_ip_address(request)} on {request.url.path}")

    request_id = getattr(request.state, "request_id", "unknown")
    retry_after = 60
    return JSONResponse(
        status_code=429,
        content={
            "error": "Too many requests",
            "details": {"limit": str(exc.detail), "retry_after": retry_after},
            "request_id": request_id,
        },
        headers={"Retry-After": str(retry_after), "X-Request-ID": request_id},
    )
