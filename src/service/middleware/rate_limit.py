import logging
from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import Request, HTTPException
from fastapi_sessions.backends.session_backend import BackendError

logger = logging.getLogger('modelmix.service.middleware')


class RateLimitKeyMiddleware(BaseHTTPMiddleware):
    """Pre-load session data so the limiter can key requests by user"""

    async def dispatch(self, request: Request, call_next):
        from auth.session import backend, session_cookie

        try:
            # session_cookie verifies the signature and raises when the cookie is missing or invalid
            session_id = session_cookie(request)
            session_data = await backend.read(session_id)
            if session_data is not None:
                request.state.session_data = session_data
                logger.debug(f"Rate limit session loaded for user_id={session_data.user_id}")
        except HTTPException:
            pass
        except BackendError as e:
            logger.debug(f"No session for rate limiting: {e}")

        return await call_next(request)
