from fastapi import APIRouter, Request, Response, HTTPException, Depends
from fastapi_sessions.backends.session_backend import BackendError
import logging
import uuid

from auth.auth import AuthConfig
from auth.rate_limiting import limiter
from auth.session import backend, SessionData, session_cookie
from auth.usage_tracking.models import UserProfile
from schema import ProfileResponse, SessionCreateResponse
from service.config import BEARER_AUTH_STRATEGY
from service.container import ServiceContainer
from service.dependencies import get_auth_config, get_services, get_session_data

logger = logging.getLogger('modelmix.service.routers.session')

router = APIRouter(
    tags=["session"],
)


@router.post("/create-session")
@limiter.exempt
async def create_session(
    request: Request,
    response: Response,
    auth_config: AuthConfig = Depends(get_auth_config),
    services: ServiceContainer = Depends(get_services),
) -> SessionCreateResponse:
    """
    Exchange a bearer access token for a session cookie.

    The user's profile is created on first sign-in.
    """
    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(
            status_code=401,
            detail={
                "error": "Missing access token",
                "error_code": "missing_token",
                "message": "Send the access token as 'Authorization: Bearer <token>'.",
            },
        )

    auth = auth_config.get_auth_strategy(BEARER_AUTH_STRATEGY)
    identity = await auth.get_current_user(token.strip())
    if not identity:
        raise HTTPException(
            status_code=401,
            detail={
                "error": "Invalid access token",
                "error_code": "invalid_token",
                "message": "Your sign-in has expired. Please sign in again.",
            },
        )

    profile = await services.storage.create_user_if_missing(
        UserProfile(id=identity["id"], email=identity.get("email", ""), full_name=identity.get("full_name", ""))
    )
    tier = await services.tier_manager.resolve_tier(profile)

    session_id = uuid.uuid4()
    session_data = SessionData(
        user_id=profile.id,
        email=profile.email,
        role=profile.role,
        access_token=token.strip(),
    )
    await backend.create(session_id, session_data)
    session_cookie.attach_to_response(response, session_id)
    logger.info(f"Created session for user {profile.id}")

    return SessionCreateResponse(
        message="Authenticated session created",
        user_id=profile.id,
        email=profile.email,
        role=profile.role,
        tier=tier,
    )


@router.post("/delete-session")
async def delete_session(response: Response, session_id: uuid.UUID = Depends(session_cookie)) -> dict:
    try:
        await backend.delete(session_id)
    except (BackendError, KeyError) as e:
        logger.info(f"Session {session_id} already gone: {e}")
    session_cookie.delete_from_response(response)
    return {"message": "Session deleted"}


@router.get("/me")
async def get_me(
    session_data: SessionData = Depends(get_session_data),
    services: ServiceContainer = Depends(get_services),
) -> ProfileResponse:
    profile = await services.storage.get_user(session_data.user_id)
    return ProfileResponse.from_profile(profile)
