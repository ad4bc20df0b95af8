import logging
import time
from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import Request

logger = logging.getLogger('modelmix.service.middleware')

REDACTED_HEADERS = {"authorization", "cookie", "apikey"}


class RequestResponseLoggingMiddleware(BaseHTTPMiddleware):
    """Debug logging of every request and its outcome"""

    async def dispatch(self, request: Request, call_next):
        headers = {k: ("<redacted>" if k.lower() in REDACTED_HEADERS else v) for k, v in request.headers.items()}
        logger.debug(f"REQUEST: {request.method} {request.url.path} headers={headers}")
        logger.debug(f"REQUEST: session cookie present: {'session' in request.cookies}")

        started = time.monotonic()
        response = await call_next(request)
        elapsed_ms = int((time.monotonic() - started) * 1000)

        if response.status_code >= 400:
            logger.warning(f"RESPONSE: {response.status_code} for {request.method} {request.url.path} ({elapsed_ms}ms)")
        else:
            logger.debug(f"RESPONSE: {response.status_code} for {request.method} {request.url.path} ({elapsed_ms}ms)")
        return response
