from fastapi import APIRouter, Depends
import logging

from auth.rate_limiting import limiter
from schema import StatusResponse
from storage.errors import StorageError
from ..container import ServiceContainer
from ..dependencies import get_services

logger = logging.getLogger('modelmix.service.routers.misc')

router = APIRouter()


@router.get("/status")
@limiter.exempt
async def get_status(services: ServiceContainer = Depends(get_services)) -> StatusResponse:
    """Health check. Reports degraded rather than failing when the store is down."""
    storage = "ok"
    try:
        await services.storage.count_chat_sessions()
    except StorageError as e:
        logger.warning(f"Status check could not reach storage: {e}")
        storage = "unavailable"

    stats = await services.cancellation_manager.get_stats()
    return StatusResponse(
        status="ok" if storage == "ok" else "degraded",
        storage=storage,
        active_comparisons=stats["tracked_tokens"],
    )
