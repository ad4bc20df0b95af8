import logging
from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import Request

logger = logging.getLogger('modelmix.service.middleware')


class CORSDebugMiddleware(BaseHTTPMiddleware):
    """Logs origins and CORS response headers, enabled with DEBUG_CORS=true"""

    def __init__(self, app, cors_allowed_origins: list[str]):
        super().__init__(app)
        self.cors_allowed_origins = set(cors_allowed_origins)

    async def dispatch(self, request: Request, call_next):
        origin = request.headers.get("origin")
        if origin and origin not in self.cors_allowed_origins:
            logger.warning(f"Request from non-allowed origin: {origin}")

        response = await call_next(request)

        if origin:
            cors_headers = {k: v for k, v in response.headers.items() if k.lower().startswith('access-control-')}
            logger.debug(f"CORS {request.method} {request.url.path} from {origin}: {cors_headers}")
        return response
