from fastapi import APIRouter, Depends
import logging

from providers.models import ModelSettings, ProviderFamily
from providers.openrouter_catalog import OpenRouterModel
from schema import ApiKeysInput, ModelSettingsInput
from ..container import ServiceContainer
from ..dependencies import get_current_user_id, get_services

logger = logging.getLogger('modelmix.service.routers.settings')

router = APIRouter(
    tags=["settings"],
)


@router.get("/settings/api-keys")
async def get_api_keys(
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> dict:
    """Personal API keys, masked. Raw keys never leave the service."""
    settings = await services.storage.get_api_settings(user_id)
    return {"api_keys": settings.masked()}


@router.put("/settings/api-keys")
async def update_api_keys(
    body: ApiKeysInput,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> dict:
    settings = await services.storage.get_api_settings(user_id)
    changes = body.model_dump(exclude_unset=True)
    updated = settings.model_copy(update={k: (v.strip() or None) if v is not None else None for k, v in changes.items()})
    await services.storage.save_api_settings(user_id, updated)
    logger.info(f"User {user_id} updated API keys for: {', '.join(sorted(changes)) or 'nothing'}")
    return {"api_keys": updated.masked()}


@router.get("/settings/models")
async def get_model_settings(
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> ModelSettings:
    return await services.storage.get_model_settings(user_id)


@router.put("/settings/models")
async def update_model_settings(
    body: ModelSettingsInput,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> ModelSettings:
    settings = ModelSettings(**body.model_dump())
    await services.storage.save_model_settings(user_id, settings)
    return settings


@router.get("/providers/openrouter/models")
async def list_openrouter_models(
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> list[OpenRouterModel]:
    """Chat models available through OpenRouter, free models first."""
    api_settings = await services.storage.get_api_settings(user_id)
    return await services.catalog.list_models(api_settings.key_for(ProviderFamily.OPENROUTER))
