"""Rate limiting configuration using SlowAPI and Redis."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.config import settings


def get_user_identifier(request: Request) -> str:
    """
    Get rate limit identifier from request.

    Priority order:
    1. User ID verified by the auth gate (if authenticated)
    2. IP address (for non-authenticated requests)

    Args:
        request: FastAPI request object

    Returns:
        Unique identifier string for rate limiting
    """
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return f"user:{user_id}"

    # Fallback to IP address
    return f"ip:{get_remote_address(request)}"


def _get_ip(request: Request) -> str:
    return f"ip:{get_remote_address(request)}"


# Initialize SlowAPI limiter with Redis backend
limiter = Limiter(
    key_func=get_user_identifier,
    storage_uri=settings.rate_limit_storage_uri,
    enabled=settings.RATE_LIMIT_ENABLED,
    default_limits=[settings.RATE_LIMIT_API_DEFAULT],
    headers_enabled=True,  # Add X-RateLimit-* headers to responses
)

# Authentication endpoints are public, so they are limited per client address
auth_login_limit = limiter.limit(settings.RATE_LIMIT_AUTH_LOGIN, key_func=_get_ip)
auth_register_limit = limiter.limit(settings.RATE_LIMIT_AUTH_REGISTER, key_func=_get_ip)
auth_refresh_limit = limiter.limit(settings.RATE_LIMIT_AUTH_REFRESH, key_func=_get_ip)
