from fastapi import APIRouter, Depends, HTTPException, Query
import logging

from admin.models import SystemStats
from admin.service import AdminActionError
from auth.session import SessionData
from auth.usage_tracking.tier_manager import TierVerificationError
from comparison.models import ProviderStatistic
from schema import (
    AdminActivityResponse,
    AdminSettingInput,
    GlobalKeyInput,
    GlobalKeyResponse,
    GlobalKeyUpdateInput,
    ProfileResponse,
    SetTierInput,
    UpdateRoleInput,
)
from ..container import ServiceContainer
from ..dependencies import get_services, require_superadmin

logger = logging.getLogger('modelmix.service.routers.admin')

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
)


# Users

@router.get("/users")
async def list_users(
    admin: SessionData = Depends(require_superadmin),
    services: ServiceContainer = Depends(get_services),
) -> list[ProfileResponse]:
    return [ProfileResponse.from_profile(user) for user in await services.admin.list_users()]


@router.put("/users/{user_id}/role")
async def update_user_role(
    user_id: str,
    body: UpdateRoleInput,
    admin: SessionData = Depends(require_superadmin),
    services: ServiceContainer = Depends(get_services),
) -> ProfileResponse:
    return ProfileResponse.from_profile(await services.admin.update_role(admin.user_id, user_id, body.role))


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: str,
    admin: SessionData = Depends(require_superadmin),
    services: ServiceContainer = Depends(get_services),
) -> dict:
    try:
        await services.admin.delete_user(admin.user_id, user_id)
    except AdminActionError as e:
        raise HTTPException(
            status_code=400,
            detail={"error": "Action not allowed", "error_code": "admin_action_not_allowed", "message": str(e)},
        )
    return {"message": "User deleted", "user_id": user_id}


@router.post("/users/{user_id}/reset-usage")
async def reset_user_usage(
    user_id: str,
    admin: SessionData = Depends(require_superadmin),
    services: ServiceContainer = Depends(get_services),
) -> ProfileResponse:
    return ProfileResponse.from_profile(await services.admin.reset_usage(admin.user_id, user_id))


@router.put("/users/{user_id}/tier")
async def set_user_tier(
    user_id: str,
    body: SetTierInput,
    admin: SessionData = Depends(require_superadmin),
    services: ServiceContainer = Depends(get_services),
) -> ProfileResponse:
    try:
        profile = await services.admin.set_tier(admin.user_id, user_id, body.tier)
    except TierVerificationError as e:
        raise HTTPException(
            status_code=500,
            detail={"error": "Tier update failed", "error_code": "tier_update_failed", "message": str(e)},
        )
    return ProfileResponse.from_profile(profile)


# System

@router.get("/stats")
async def get_system_stats(
    admin: SessionData = Depends(require_superadmin),
    services: ServiceContainer = Depends(get_services),
) -> SystemStats:
    return await services.admin.get_system_stats()


@router.get("/activity")
async def get_activity(
    limit: int = Query(default=100, ge=1, le=1000),
    admin: SessionData = Depends(require_superadmin),
    services: ServiceContainer = Depends(get_services),
) -> AdminActivityResponse:
    return AdminActivityResponse(activities=await services.admin.list_activity(limit))


@router.get("/provider-stats")
async def get_global_provider_stats(
    admin: SessionData = Depends(require_superadmin),
    services: ServiceContainer = Depends(get_services),
) -> list[ProviderStatistic]:
    return await services.admin.get_global_provider_stats()


# Global API keys

@router.get("/global-keys")
async def list_global_keys(
    admin: SessionData = Depends(require_superadmin),
    services: ServiceContainer = Depends(get_services),
) -> list[GlobalKeyResponse]:
    now = services.admin.clock()
    return [GlobalKeyResponse.from_key(key, now) for key in await services.admin.list_global_keys()]


@router.post("/global-keys", status_code=201)
async def create_global_key(
    body: GlobalKeyInput,
    admin: SessionData = Depends(require_superadmin),
    services: ServiceContainer = Depends(get_services),
) -> GlobalKeyResponse:
    key = await services.admin.create_global_key(
        admin.user_id,
        body.provider,
        body.api_key,
        tier_access=body.tier_access,
        usage_limit=body.usage_limit or None,
    )
    return GlobalKeyResponse.from_key(key, services.admin.clock())


@router.patch("/global-keys/{key_id}")
async def update_global_key(
    key_id: str,
    body: GlobalKeyUpdateInput,
    admin: SessionData = Depends(require_superadmin),
    services: ServiceContainer = Depends(get_services),
) -> GlobalKeyResponse:
    key = await services.admin.update_global_key(admin.user_id, key_id, **body.model_dump(exclude_unset=True))
    return GlobalKeyResponse.from_key(key, services.admin.clock())


@router.post("/global-keys/{key_id}/toggle")
async def toggle_global_key(
    key_id: str,
    admin: SessionData = Depends(require_superadmin),
    services: ServiceContainer = Depends(get_services),
) -> GlobalKeyResponse:
    key = await services.admin.toggle_global_key(admin.user_id, key_id)
    return GlobalKeyResponse.from_key(key, services.admin.clock())


@router.post("/global-keys/{key_id}/reset-usage")
async def reset_global_key_usage(
    key_id: str,
    admin: SessionData = Depends(require_superadmin),
    services: ServiceContainer = Depends(get_services),
) -> GlobalKeyResponse:
    key = await services.admin.reset_global_key_usage(admin.user_id, key_id)
    return GlobalKeyResponse.from_key(key, services.admin.clock())


@router.delete("/global-keys/{key_id}")
async def delete_global_key(
    key_id: str,
    admin: SessionData = Depends(require_superadmin),
    services: ServiceContainer = Depends(get_services),
) -> dict:
    await services.admin.delete_global_key(admin.user_id, key_id)
    return {"message": "Global key deleted", "key_id": key_id}


# Settings

@router.get("/settings")
async def get_admin_settings(
    admin: SessionData = Depends(require_superadmin),
    services: ServiceContainer = Depends(get_services),
) -> dict[str, str]:
    return await services.admin.get_settings()


@router.put("/settings")
async def update_admin_setting(
    body: AdminSettingInput,
    admin: SessionData = Depends(require_superadmin),
    services: ServiceContainer = Depends(get_services),
) -> dict[str, str]:
    return await services.admin.update_setting(admin.user_id, body.key, body.value)
