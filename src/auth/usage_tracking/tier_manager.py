import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from storage.base import StorageBackend

from .models import Subscription, SubscriptionStatus, UserProfile, UserTier, utcnow

logger = logging.getLogger('modelmix.tier_manager')


class TierVerificationError(Exception):
    """The stored tier did not match the requested tier after an upgrade."""


def add_one_month(moment: datetime) -> datetime:
    year, month = (moment.year + 1, 1) if moment.month == 12 else (moment.year, moment.month + 1)
    # Clamp to the last valid day, e.g. Jan 31 -> Feb 28
    for day in (moment.day, 30, 29, 28):
        try:
            return moment.replace(year=year, month=month, day=day)
        except ValueError:
            continue
    return moment + timedelta(days=30)


class TierManager:
    """
    Manages user tier assignments from subscription records.

    A user without a subscription, or whose subscription has lapsed, is on
    the free tier. Cancelled subscriptions keep their tier until they expire.
    """

    def __init__(self, storage: StorageBackend, clock: Callable[[], datetime] = utcnow):
        self.storage = storage
        self.clock = clock

    async def resolve_tier(self, profile: UserProfile) -> UserTier:
        subscription = await self.storage.get_subscription(profile.id)
        now = self.clock()

        if subscription is not None and subscription.grants_tier(now):
            return subscription.tier

        if subscription is not None and subscription.status != SubscriptionStatus.EXPIRED:
            logger.info(f"Subscription for user {profile.id} lapsed, marking expired")
            subscription.status = SubscriptionStatus.EXPIRED
            subscription.updated_at = now
            await self.storage.save_subscription(subscription)

        if profile.current_tier != UserTier.FREE:
            await self.storage.set_user_tier(profile.id, UserTier.FREE)
        return UserTier.FREE

    async def get_current_tier(self, user_id: str) -> UserTier:
        return await self.resolve_tier(await self.storage.get_user(user_id))

    async def get_subscription(self, user_id: str) -> Optional[Subscription]:
        return await self.storage.get_subscription(user_id)

    async def upgrade_tier(self, user_id: str, tier: UserTier) -> UserProfile:
        """
        Move a user onto ``tier`` and verify the store reflects it.

        Raises:
            TierVerificationError: If the stored tier differs after the write
        """
        now = self.clock()
        await self.storage.save_subscription(
            Subscription(user_id=user_id, tier=tier, status=SubscriptionStatus.ACTIVE, started_at=now, updated_at=now)
        )
        await self.storage.set_user_tier(user_id, tier)

        profile = await self.storage.get_user(user_id)
        if profile.current_tier != tier:
            logger.error(f"Tier verification failed for user {user_id}: expected {tier.value}, stored {profile.current_tier.value}")
            raise TierVerificationError(f"Tier update verification failed for user {user_id}")

        logger.info(f"User {user_id} moved to tier {tier.value}")
        return profile

    async def cancel_subscription(self, user_id: str) -> Optional[Subscription]:
        """Cancel at period end: the tier stays in effect for one more month."""
        subscription = await self.storage.get_subscription(user_id)
        if subscription is None or subscription.status != SubscriptionStatus.ACTIVE:
            return subscription

        now = self.clock()
        subscription.status = SubscriptionStatus.CANCELLED
        subscription.expires_at = add_one_month(now)
        subscription.updated_at = now
        await self.storage.save_subscription(subscription)
        logger.info(f"Subscription for user {user_id} cancelled, expires {subscription.expires_at.isoformat()}")
        return subscription
