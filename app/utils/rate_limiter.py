"""
Rate Limiting Configuration for the CivicFlow API

Protects the credential endpoints from brute force and sign-up spam.

Uses slowapi with the following default limits:
- Login: 5 attempts per minute per IP
- Register: 3 attempts per minute per IP
- Attachment upload: 20 per minute per IP

Usage:
    from app.utils.rate_limiter import limiter, RateLimits

    @router.post("/my-endpoint")
    @limiter.limit(RateLimits.LOGIN)
    async def my_endpoint(request: Request):
        pass

Note: The `request: Request` parameter is REQUIRED for rate-limited endpoints.
"""
import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """
    Get the client IP address from the request.
    Handles cases where the app is behind a proxy/load balancer.
    """
    # X-Forwarded-For can contain multiple IPs, take the first one
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    # nginx
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return get_remote_address(request)


limiter = Limiter(key_func=get_client_ip)


class RateLimits:
    """Rate limit configurations for different endpoint types"""

    LOGIN = "5/minute"
    REGISTER = "3/minute"
    UPLOAD = "20/minute"
    FEEDBACK = "10/minute"


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Render a rate limit hit in the same shape as workflow errors."""
    limit_info = str(exc.detail) if hasattr(exc, 'detail') else "Rate limit exceeded"

    client_ip = get_client_ip(request)
    logger.warning(f"Rate limit exceeded for IP {client_ip} on {request.url.path}: {limit_info}")

    return JSONResponse(
        status_code=429,
        content={
            "detail": "Too many requests. Please try again later.",
            "code": "rate_limit_exceeded",
            "retryable": True,
            "limit_info": limit_info
        },
        headers={
            "Retry-After": "60",
            "X-RateLimit-Limit": limit_info
        }
    )
