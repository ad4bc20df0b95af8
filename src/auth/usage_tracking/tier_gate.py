"""
Gate in front of every new conversation turn.

The gate is advisory: it reads the ledger and decides, but two concurrent
requests can both pass it while the user sits one below the quota. The
store's atomic increment keeps the count itself exact; it does not stop the
overshoot. It is not a security boundary.
"""
import logging
from typing import Optional

from pydantic import BaseModel

from ..usage_tracker import IUsageLedger
from .models import TierDefinition, UsageCheck, UsageDenialReason
from .tier_policy import format_price, list_tiers

logger = logging.getLogger('modelmix.tier_gate')


class UpgradePrompt(BaseModel):
    title: str
    message: str
    tiers: list[TierDefinition]
    formatted_prices: dict[str, str]


class GateDecision(BaseModel):
    allowed: bool
    usage: UsageCheck
    reason: Optional[UsageDenialReason] = None
    message: Optional[str] = None
    upgrade_prompt: Optional[UpgradePrompt] = None


def build_upgrade_prompt(usage: UsageCheck) -> UpgradePrompt:
    tiers = list_tiers()
    return UpgradePrompt(
        title="Monthly conversation limit reached",
        message=(
            f"You've used {usage.used} of {usage.quota} conversations this month. "
            "Upgrade to Pro for unlimited conversations and model comparisons."
        ),
        tiers=tiers,
        formatted_prices={t.tier.value: format_price(t.price_cents) for t in tiers},
    )


class TierGate:
    def __init__(self, ledger: IUsageLedger):
        self.ledger = ledger

    async def check_new_turn(self, user_id: str) -> GateDecision:
        """
        Decide whether ``user_id`` may start a new conversation turn.

        A denied decision means no turn may be created and the ledger must not
        be incremented.
        """
        usage = await self.ledger.check_usage(user_id)
        if usage.allowed:
            return GateDecision(allowed=True, usage=usage)

        if usage.reason == UsageDenialReason.SERVICE_UNAVAILABLE:
            logger.error(f"Denying turn for user {user_id}: usage service unavailable")
            return GateDecision(
                allowed=False,
                usage=usage,
                reason=usage.reason,
                message="We couldn't verify your usage right now. Please try again in a moment.",
            )

        logger.info(f"Denying turn for user {user_id}: quota exceeded ({usage.used}/{usage.quota})")
        return GateDecision(
            allowed=False,
            usage=usage,
            reason=UsageDenialReason.QUOTA_EXCEEDED,
            message="You've reached your monthly conversation limit.",
            upgrade_prompt=build_upgrade_prompt(usage),
        )
