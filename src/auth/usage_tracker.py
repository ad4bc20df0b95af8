import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from storage.base import StorageBackend
from storage.errors import StorageError

from .usage_tracking.models import UsageCheck, UsageDenialReason, UserProfile, UserTier, utcnow
from .usage_tracking.tier_policy import get_tier

if TYPE_CHECKING:
    from .usage_tracking.tier_manager import TierManager

logger = logging.getLogger('modelmix.usage_ledger')


class IUsageLedger(ABC):

    @abstractmethod
    async def check_usage(self, user_id: str) -> UsageCheck:
        """
        Check whether the user may start another conversation this month.

        Performs the lazy monthly rollover as a side effect. Never raises for
        store failures: an unreachable store yields ``allowed=False`` with
        ``reason=service_unavailable``.

        Args:
            user_id: The user to check

        Returns:
            The usage decision
        """
        pass

    @abstractmethod
    async def increment(self, user_id: str, tier: Optional[UserTier] = None) -> Optional[int]:
        """
        Count one accepted conversation turn.

        Args:
            user_id: The user to charge
            tier: The tier already resolved by ``check_usage``; resolved again when omitted

        Returns:
            The new monthly count, or None when the tier is unlimited
        """
        pass

    @abstractmethod
    async def reset(self, user_id: str) -> UserProfile:
        """Administrative override: zero the counter and restart the window now."""
        pass


class UsageLedger(IUsageLedger):
    """
    Monthly conversation counter backed by the storage layer.

    The counter itself lives in the store and is only ever changed through
    the store's atomic increment and conditional rollover operations.
    """

    def __init__(
        self,
        storage: StorageBackend,
        tier_manager: Optional["TierManager"] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.tier_manager = tier_manager
        self.clock = clock

    async def _resolve_tier(self, profile: UserProfile) -> UserTier:
        if self.tier_manager is None:
            return profile.current_tier
        return await self.tier_manager.resolve_tier(profile)

    async def check_usage(self, user_id: str) -> UsageCheck:
        try:
            profile = await self.storage.rollover_usage_if_stale(user_id, self.clock())
            tier = await self._resolve_tier(profile)
        except StorageError as e:
            logger.error(f"Usage check failed for user {user_id}, failing closed: {e}")
            return UsageCheck(
                allowed=False,
                used=0,
                quota=None,
                tier=UserTier.FREE,
                reason=UsageDenialReason.SERVICE_UNAVAILABLE,
            )

        quota = get_tier(tier).monthly_conversation_quota
        used = profile.monthly_conversation_count
        if quota is None or used < quota:
            return UsageCheck(allowed=True, used=used, quota=quota, tier=tier)

        logger.warning(f"User {user_id} exceeded monthly conversation quota: {used}/{quota}")
        return UsageCheck(
            allowed=False,
            used=used,
            quota=quota,
            tier=tier,
            reason=UsageDenialReason.QUOTA_EXCEEDED,
        )

    async def increment(self, user_id: str, tier: Optional[UserTier] = None) -> Optional[int]:
        if tier is None:
            tier = await self._resolve_tier(await self.storage.get_user(user_id))
        if get_tier(tier).monthly_conversation_quota is None:
            return None
        count = await self.storage.increment_usage(user_id)
        logger.debug(f"User {user_id} monthly conversations: {count}")
        return count

    async def reset(self, user_id: str) -> UserProfile:
        profile = await self.storage.reset_usage(user_id, self.clock())
        logger.info(f"Monthly usage reset for user {user_id}")
        return profile
