import os
import logging as log
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.middleware import SlowAPIMiddleware

from .logging import RequestResponseLoggingMiddleware
from .rate_limit import RateLimitKeyMiddleware
from .error_handling import ErrorHandlingMiddleware
from .cors_debug import CORSDebugMiddleware
from .exception_handlers import custom_http_exception_handler, register_exception_handlers

logger = log.getLogger('modelmix.service.middleware')


def setup_middleware(
    app: FastAPI,
    cors_allowed_origins: list[str],
    cors_allowed_methods: list[str],
    cors_allowed_headers: list[str]
):
    """
    Setup all middleware for the FastAPI application.

    Middleware are added in reverse order (last added = first executed).
    Order of execution:
    1. RateLimitKeyMiddleware (loads session data for rate limiting)
    2. SlowAPIMiddleware (rate limiting)
    3. CORSDebugMiddleware (optional, only with DEBUG_CORS=true)
    4. CORSMiddleware
    5. ErrorHandlingMiddleware (catches unhandled errors)
    6. RequestResponseLoggingMiddleware

    Args:
        app: FastAPI application instance
        cors_allowed_origins: List of allowed CORS origins
        cors_allowed_methods: List of allowed HTTP methods
        cors_allowed_headers: List of allowed headers
    """
    register_exception_handlers(app)

    app.add_middleware(RequestResponseLoggingMiddleware)
    app.add_middleware(ErrorHandlingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_allowed_origins,
        allow_credentials=True,
        allow_methods=cors_allowed_methods,
        allow_headers=cors_allowed_headers,
    )
    logger.info(f"CORS configured with origins: {cors_allowed_origins}")

    if os.getenv("DEBUG_CORS", "false").lower() == "true":
        app.add_middleware(CORSDebugMiddleware, cors_allowed_origins=cors_allowed_origins)
        logger.info("CORS debug middleware enabled")

    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(RateLimitKeyMiddleware)


__all__ = [
    'setup_middleware',
    'RequestResponseLoggingMiddleware',
    'RateLimitKeyMiddleware',
    'ErrorHandlingMiddleware',
    'CORSDebugMiddleware',
    'custom_http_exception_handler',
    'register_exception_handlers',
]
