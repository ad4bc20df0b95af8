import logging
import os

from typing import Callable
from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded

logger = logging.getLogger('modelmix.rate_limiting')

DEFAULT_GLOBAL_RATE_LIMIT = "60/minute"
DEFAULT_COMPARE_RATE_LIMIT = "20/minute"


def global_rate_limit() -> str:
    return os.getenv("GLOBAL_RATE_LIMIT", DEFAULT_GLOBAL_RATE_LIMIT)


def compare_rate_limit() -> str:
    return os.getenv("COMPARE_RATE_LIMIT", DEFAULT_COMPARE_RATE_LIMIT)


def _rate_limit_exceeded_handler(request: Request, exc: Exception) -> JSONResponse:
    """Custom handler for rate limit exceeded errors"""
    detail = getattr(exc, "detail", None) or str(exc)
    return JSONResponse(
        status_code=429,
        content={
            "error": f"Rate limit exceeded: {detail}",
            "error_code": "rate_limit_exceeded",
            "message": "Too many requests. Please try again later.",
        },
    )


def create_limiter(key_func: Callable) -> Limiter:
    """
    Create a rate limiter, backed by Redis when REDIS_URL is set and by memory otherwise.

    Args:
        key_func (Callable): Function to extract the rate limit key from a request.
    """
    redis_url = os.getenv("REDIS_URL")
    default_limits = [global_rate_limit()]

    if not redis_url:
        logger.warning("REDIS_URL not set - rate limiter using in-memory storage (not suitable for production)")
        return Limiter(key_func=key_func, default_limits=default_limits)

    try:
        logger.info(f"Rate limiter using Redis storage: {redis_url.rsplit('@', 1)[-1]}")
        return Limiter(key_func=key_func, storage_uri=redis_url, default_limits=default_limits)
    except ValueError as e:
        logger.error(f"Error initializing rate limiter with Redis: {e}")
        logger.warning("Falling back to in-memory rate limiting")
        return Limiter(key_func=key_func, default_limits=default_limits)


def get_user_id_from_request(request: Request) -> str:
    """
    Extract the rate limit key from a request.

    Returns user:{user_id} for requests with a session, and unauthenticated
    otherwise. Endpoints that don't require a session should use @limiter.exempt.
    """
    session_data = getattr(request.state, "session_data", None)
    if session_data is not None and getattr(session_data, "user_id", None):
        return f"user:{session_data.user_id}"
    logger.debug("No session data for rate limiting - using default key")
    return "unauthenticated"


limiter = create_limiter(key_func=get_user_id_from_request)
