import logging
from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from fastapi.exception_handlers import http_exception_handler

from storage.errors import NotFoundError, StorageError, StoreUnavailableError

logger = logging.getLogger('modelmix.service.middleware')


async def custom_http_exception_handler(request: Request, exc: HTTPException):
    """Give every HTTPException the same {error, error_code, message} body"""
    if isinstance(exc.detail, dict):
        logger.info(f"HTTP {exc.status_code} for {request.url.path}: {exc.detail.get('error_code')}")
        return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)

    if exc.status_code == 403:
        logger.info(f"HTTP 403 for {request.url.path}: {exc.detail}")
        return JSONResponse(
            status_code=403,
            content={
                "error": "Authentication required: Please log in to use ModelMix",
                "error_code": "authentication_failed",
                "message": str(exc.detail) if exc.detail else "Session invalid or expired",
                "action_required": "Sign in and create a new session",
            },
        )

    return await http_exception_handler(request, exc)


async def not_found_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={"error": str(exc), "error_code": "not_found", "message": "The requested resource was not found."},
    )


async def storage_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Storage failure for {request.method} {request.url.path}: {exc}")
    unavailable = isinstance(exc, StoreUnavailableError)
    return JSONResponse(
        status_code=503 if unavailable else 500,
        content={
            "error": "Storage unavailable" if unavailable else "Storage error",
            "error_code": "storage_unavailable" if unavailable else "storage_error",
            "message": "We couldn't reach our data store. Please try again in a moment.",
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HTTPException, custom_http_exception_handler)
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(StorageError, storage_error_handler)
