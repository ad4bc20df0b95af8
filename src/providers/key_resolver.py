import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from auth.usage_tracking.models import UserTier, utcnow
from storage.base import StorageBackend
from storage.errors import StorageError

from .models import ApiSettings, GlobalApiKey, ProviderFamily

logger = logging.getLogger('modelmix.providers.key_resolver')


@dataclass(frozen=True)
class ResolvedKey:
    api_key: str
    is_global: bool
    global_key_id: Optional[str] = None


def missing_key_message(vendor_name: str) -> str:
    return (
        f"{vendor_name} API key not available. Please configure your API key in settings "
        "or upgrade to Pro for guaranteed access."
    )


class ApiKeyResolver:
    """
    Picks the key used for a provider call.

    Order: the user's personal key, then an active shared key that grants the
    user's tier and is within its monthly limit, then nothing.
    """

    def __init__(self, storage: StorageBackend, clock: Callable[[], datetime] = utcnow):
        self.storage = storage
        self.clock = clock

    async def find_global_key(self, family: ProviderFamily, tier: UserTier) -> Optional[GlobalApiKey]:
        now = self.clock()
        for key in await self.storage.list_global_keys():
            if key.provider == family and key.is_usable_by(tier, now):
                return key
        return None

    async def resolve(
        self,
        family: ProviderFamily,
        tier: UserTier,
        api_settings: Optional[ApiSettings] = None,
    ) -> Optional[ResolvedKey]:
        if api_settings is not None:
            personal = api_settings.key_for(family)
            if personal:
                return ResolvedKey(api_key=personal, is_global=False)

        try:
            global_key = await self.find_global_key(family, tier)
        except StorageError as e:
            logger.error(f"Could not read global keys for {family.value}: {e}")
            return None

        if global_key is None:
            logger.debug(f"No key available for {family.value} (tier {tier.value})")
            return None
        return ResolvedKey(api_key=global_key.api_key, is_global=True, global_key_id=global_key.id)

    async def increment_global_usage(self, resolved: ResolvedKey) -> None:
        """Count one successful call against a shared key. Failures are logged, never raised."""
        if not resolved.is_global or resolved.global_key_id is None:
            return
        try:
            usage = await self.storage.increment_global_key_usage(resolved.global_key_id, self.clock())
            logger.debug(f"Global key {resolved.global_key_id} usage now {usage}")
        except StorageError as e:
            logger.error(f"Failed to increment global key usage for {resolved.global_key_id}: {e}")
