"""
Configuration setup for the ModelMix service.

This module handles all configuration initialization including:
- CORS settings
- Authentication configuration
- Rate limiting setup
"""
import os
import logging
from typing import Optional, Tuple

import aiohttp
from fastapi import FastAPI

from auth.auth import AuthConfig, BearerTokenAuth
from auth.rate_limiting import limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

logger = logging.getLogger('modelmix.service.config')

BEARER_AUTH_STRATEGY = "bearer_token"


def _split_env(name: str, default: str) -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


def get_cors_config() -> Tuple[list[str], list[str], list[str]]:
    """
    Parse and return CORS configuration from environment variables.

    Returns:
        Tuple containing (origins, methods, headers) lists
    """
    cors_allowed_origins = _split_env("CORS_ALLOWED_ORIGINS", "")

    if not cors_allowed_origins:
        logger.warning("CORS_ALLOWED_ORIGINS not set, using development defaults")
        cors_allowed_origins = [
            "http://localhost:5173",
            "http://localhost:3000",
            "http://127.0.0.1:5173",
            "http://127.0.0.1:3000"
        ]

    cors_allowed_methods = _split_env("CORS_ALLOWED_METHODS", "GET,POST,PUT,PATCH,DELETE,OPTIONS")
    cors_allowed_headers = _split_env("CORS_ALLOWED_HEADERS", "Content-Type,Authorization")

    return cors_allowed_origins, cors_allowed_methods, cors_allowed_headers


def setup_auth(http_session: Optional[aiohttp.ClientSession] = None) -> AuthConfig:
    """
    Configure and return authentication strategies.

    Only bearer access tokens from the identity service are supported.
    """
    auth_config = AuthConfig()
    auth_config.register_auth_strategy(BEARER_AUTH_STRATEGY, BearerTokenAuth(async_requests_client=http_session))
    logger.info("Authentication configured with bearer token strategy")
    return auth_config


def setup_rate_limiting(app: FastAPI) -> None:
    """
    Attach the shared rate limiter, keyed by the session's user, and its 429 handler.
    """
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    logger.info("Rate limiting configured")


__all__ = [
    'BEARER_AUTH_STRATEGY',
    'get_cors_config',
    'setup_auth',
    'setup_rate_limiting',
]
