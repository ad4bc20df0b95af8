from fastapi import APIRouter, Depends
from typing import Optional
import logging

from comparison.models import ProviderStatistic
from providers.registry import OPENROUTER_PREFIX, PROVIDER_CONFIGS
from schema import AnalyticsResponse, ProviderStatisticResponse
from ..container import ServiceContainer
from ..dependencies import get_current_user_id, get_services

logger = logging.getLogger('modelmix.service.routers.analytics')

router = APIRouter(
    prefix="/analytics",
    tags=["analytics"],
)


def _to_response(services: ServiceContainer, stat: Optional[ProviderStatistic]) -> Optional[ProviderStatisticResponse]:
    if stat is None:
        return None
    display_name = None
    if stat.provider in PROVIDER_CONFIGS:
        display_name = PROVIDER_CONFIGS[stat.provider].display_name
    elif stat.provider.startswith(OPENROUTER_PREFIX):
        display_name = services.catalog.display_name(stat.provider.removeprefix(OPENROUTER_PREFIX))
    return ProviderStatisticResponse.from_statistic(stat, display_name)


@router.get("/providers")
async def get_provider_analytics(
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> AnalyticsResponse:
    """Per-provider statistics for the current user, best selection rate first."""
    summary = await services.analytics.get_summary(user_id)
    return AnalyticsResponse(
        providers=[_to_response(services, stat) for stat in summary.providers],
        top_performer=_to_response(services, summary.top_performer),
        total_conversations=summary.total_conversations,
        total_responses=summary.total_responses,
        total_selections=summary.total_selections,
    )


@router.get("/top-performer")
async def get_top_performer(
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> Optional[ProviderStatisticResponse]:
    return _to_response(services, await services.analytics.get_top_performer(user_id))


@router.delete("")
async def clear_analytics(
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> dict:
    await services.analytics.clear(user_id)
    return {"message": "Analytics cleared"}
