"""
FastAPI dependencies for the ModelMix service.

Services come from the container built in the lifespan; nothing here is a
module-level singleton.
"""
import logging
import uuid
from fastapi import Depends, HTTPException, Request

from auth.auth import AuthConfig
from auth.session import SessionData, session_cookie, session_verifier
from auth.usage_tracking.models import UserRole
from comparison.service import ComparisonService

from .container import ServiceContainer

logger = logging.getLogger('modelmix.service.dependencies')


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_auth_config(services: ServiceContainer = Depends(get_services)) -> AuthConfig:
    return services.auth_config


def get_comparison_service(services: ServiceContainer = Depends(get_services)) -> ComparisonService:
    return services.comparison


async def get_session_data(
    session_id: uuid.UUID = Depends(session_cookie),
    session_data: SessionData = Depends(session_verifier),
) -> SessionData:
    return session_data


async def get_current_user_id(session_data: SessionData = Depends(get_session_data)) -> str:
    return session_data.user_id


async def require_superadmin(
    session_data: SessionData = Depends(get_session_data),
    services: ServiceContainer = Depends(get_services),
) -> SessionData:
    """Allow the request only if the user is a super-admin according to the store, not the cookie."""
    profile = await services.storage.get_user(session_data.user_id)
    if profile.role != UserRole.SUPERADMIN:
        logger.warning(f"User {session_data.user_id} attempted an admin action without the superadmin role")
        raise HTTPException(
            status_code=403,
            detail={
                "error": "Forbidden",
                "error_code": "superadmin_required",
                "message": "This action requires super-admin privileges.",
            },
        )
    return session_data


__all__ = [
    'get_services',
    'get_auth_config',
    'get_comparison_service',
    'get_session_data',
    'get_current_user_id',
    'require_superadmin',
]
