from fastapi import APIRouter, Depends, HTTPException
import logging

from auth.rate_limiting import limiter
from auth.usage_tracking.models import SubscriptionStatus, UserTier
from auth.usage_tracking.tier_manager import TierVerificationError
from auth.usage_tracking.tier_policy import display_limit, get_tier, list_tiers
from schema import ProfileResponse, TierResponse, UpgradeTierInput, UsageResponse, usage_display
from ..container import ServiceContainer
from ..dependencies import get_current_user_id, get_services

logger = logging.getLogger('modelmix.service.routers.usage')

router = APIRouter(
    tags=["usage"],
)


@router.get("/tiers")
@limiter.exempt
async def get_tiers() -> list[TierResponse]:
    return [TierResponse.from_definition(definition) for definition in list_tiers()]


@router.get("/usage")
async def get_usage(
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> UsageResponse:
    """
    Current month's usage with everything the usage meter needs to render.

    When the store is unreachable the response still succeeds, with
    ``allowed`` false and ``reason`` set to ``service_unavailable``.
    """
    usage = await services.ledger.check_usage(user_id)
    percentage, color = usage_display(usage.used, usage.quota)

    profile = None
    subscription = None
    if usage.reason is None or usage.reason.value != "service_unavailable":
        profile = await services.storage.get_user(user_id)
        subscription = await services.tier_manager.get_subscription(user_id)

    return UsageResponse(
        tier=usage.tier,
        tier_name=get_tier(usage.tier).name,
        used=usage.used,
        quota=usage.quota,
        remaining=usage.remaining,
        percentage=round(percentage, 1),
        color=color,
        conversations_limit=display_limit(usage.tier, "conversations"),
        models_limit=display_limit(usage.tier, "models"),
        allowed=usage.allowed,
        reason=usage.reason.value if usage.reason else None,
        last_reset_at=profile.last_reset_at if profile else None,
        subscription_status=subscription.status if subscription else None,
        subscription_expires_at=subscription.expires_at if subscription else None,
    )


@router.post("/tiers/upgrade")
async def upgrade_tier(
    body: UpgradeTierInput,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> ProfileResponse:
    """
    Move the current user onto a tier.

    Payment collection happens outside this service; this records the result.
    """
    try:
        profile = await services.tier_manager.upgrade_tier(user_id, body.tier)
    except TierVerificationError as e:
        raise HTTPException(
            status_code=500,
            detail={"error": "Tier update failed", "error_code": "tier_update_failed", "message": str(e)},
        )
    return ProfileResponse.from_profile(profile)


@router.post("/subscription/cancel")
async def cancel_subscription(
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> dict:
    subscription = await services.tier_manager.cancel_subscription(user_id)
    if subscription is None or subscription.tier == UserTier.FREE or subscription.status == SubscriptionStatus.EXPIRED:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "No active subscription",
                "error_code": "no_subscription",
                "message": "You don't have a paid subscription to cancel.",
            },
        )
    return {
        "message": "Subscription cancelled",
        "tier": subscription.tier,
        "status": subscription.status,
        "expires_at": subscription.expires_at,
    }
