"""
Static tier table and pure display helpers.

Nothing in here touches storage; every function is safe to call from any
layer, including response serialization.
"""
from typing import Literal, Optional, Sequence, TypeVar

from .models import TierDefinition, UserTier

T = TypeVar("T")

TierFeature = Literal["conversations", "models"]

TIER_DEFINITIONS: dict[UserTier, TierDefinition] = {
    UserTier.FREE: TierDefinition(
        tier=UserTier.FREE,
        name="Free",
        monthly_conversation_quota=50,
        max_providers_per_comparison=3,
        price_cents=0,
        features=(
            "Up to 50 conversations per month",
            "Compare up to 3 AI models",
            "Basic analytics",
            "Free trial access to select models",
            "Standard support",
        ),
    ),
    UserTier.PRO: TierDefinition(
        tier=UserTier.PRO,
        name="Pro",
        monthly_conversation_quota=None,
        max_providers_per_comparison=None,
        price_cents=1799,
        features=(
            "Unlimited conversations per month",
            "Compare unlimited AI models",
            "Advanced analytics",
            "Priority support",
            "Export conversations",
            "Custom model configurations",
            "Access to all premium models",
            "Faster response times",
        ),
    ),
}


def get_tier(tier: UserTier | str) -> TierDefinition:
    """
    Look up the definition of a tier.

    Raises:
        ValueError: If ``tier`` is not a known tier id
    """
    try:
        return TIER_DEFINITIONS[UserTier(tier)]
    except (ValueError, KeyError):
        raise ValueError(f"Unknown tier: {tier}")


def list_tiers() -> list[TierDefinition]:
    return list(TIER_DEFINITIONS.values())


def _limit_for(tier: UserTier | str, feature: TierFeature) -> Optional[int]:
    definition = get_tier(tier)
    if feature == "conversations":
        return definition.monthly_conversation_quota
    return definition.max_providers_per_comparison


def is_unlimited(tier: UserTier | str, feature: TierFeature) -> bool:
    return _limit_for(tier, feature) is None


def display_limit(tier: UserTier | str, feature: TierFeature) -> str:
    limit = _limit_for(tier, feature)
    return "Unlimited" if limit is None else str(limit)


def format_price(price_cents: int) -> str:
    return f"${price_cents / 100:.2f}"


def usage_percentage(used: int, quota: Optional[int]) -> float:
    """Percentage of the quota consumed, capped at 100. Always 0 for unlimited quotas."""
    if quota is None:
        return 0.0
    if quota <= 0:
        return 100.0
    return min(used / quota * 100, 100.0)


def usage_color(percentage: float) -> str:
    if percentage >= 90:
        return "red"
    if percentage >= 75:
        return "orange"
    if percentage >= 50:
        return "yellow"
    return "green"


def clamp_providers(tier: UserTier | str, providers: Sequence[T]) -> list[T]:
    """Truncate ``providers`` to the tier's per-comparison maximum, keeping order."""
    limit = get_tier(tier).max_providers_per_comparison
    if limit is None:
        return list(providers)
    return list(providers[:limit])
