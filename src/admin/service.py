import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from auth.usage_tracking.models import UserProfile, UserRole, UserTier, utcnow
from auth.usage_tracking.tier_manager import TierManager
from auth.usage_tracker import IUsageLedger
from comparison.analytics import aggregate_by_provider
from comparison.models import ProviderStatistic
from providers.models import GlobalApiKey, ProviderFamily
from storage.base import StorageBackend

from .models import DEFAULT_ADMIN_SETTINGS, AdminActivity, SystemStats

logger = logging.getLogger('modelmix.admin')

ACTIVE_USER_WINDOW = timedelta(days=30)


class AdminActionError(ValueError):
    """An admin action that is not allowed, such as deleting yourself."""


def mask_key(api_key: str) -> str:
    if len(api_key) <= 8:
        return "****"
    return f"{api_key[:4]}...{api_key[-4:]}"


class AdminService:
    """
    Super-admin operations over users, global keys and settings.

    Every mutation is written to the admin activity log. Callers are
    responsible for checking the acting user is a super-admin.
    """

    def __init__(
        self,
        storage: StorageBackend,
        tier_manager: TierManager,
        ledger: IUsageLedger,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.tier_manager = tier_manager
        self.ledger = ledger
        self.clock = clock

    async def _log(self, admin_user_id: str, action: str, target_user_id: Optional[str] = None, **details: Any) -> None:
        activity = AdminActivity(
            admin_user_id=admin_user_id,
            action=action,
            target_user_id=target_user_id,
            details=details,
            created_at=self.clock(),
        )
        await self.storage.log_admin_activity(activity)
        logger.info(f"Admin {admin_user_id} performed {action} on {target_user_id or '-'}")

    # Users

    async def list_users(self) -> list[UserProfile]:
        users = await self.storage.list_users()
        return sorted(users, key=lambda u: u.created_at, reverse=True)

    async def update_role(self, admin_user_id: str, user_id: str, role: UserRole) -> UserProfile:
        profile = await self.storage.set_user_role(user_id, role)
        await self._log(admin_user_id, "update_role", user_id, role=role.value)
        return profile

    async def delete_user(self, admin_user_id: str, user_id: str) -> None:
        if admin_user_id == user_id:
            raise AdminActionError("Admins cannot delete their own account")
        await self.storage.delete_user(user_id)
        await self._log(admin_user_id, "delete_user", user_id)

    async def reset_usage(self, admin_user_id: str, user_id: str) -> UserProfile:
        profile = await self.ledger.reset(user_id)
        await self._log(admin_user_id, "reset_usage", user_id)
        return profile

    async def set_tier(self, admin_user_id: str, user_id: str, tier: UserTier) -> UserProfile:
        profile = await self.tier_manager.upgrade_tier(user_id, tier)
        await self._log(admin_user_id, "set_tier", user_id, tier=tier.value)
        return profile

    async def get_system_stats(self) -> SystemStats:
        users = await self.storage.list_users()
        users_by_tier = {tier.value: 0 for tier in UserTier}
        for user in users:
            users_by_tier[user.current_tier.value] += 1

        cutoff = self.clock() - ACTIVE_USER_WINDOW
        active = 0
        for user in users:
            sessions = await self.storage.list_chat_sessions(user.id)
            # Sessions are ordered most recently updated first
            if sessions and sessions[0].updated_at >= cutoff:
                active += 1

        return SystemStats(
            total_users=len(users),
            total_chat_sessions=await self.storage.count_chat_sessions(),
            total_conversations=await self.storage.count_turns(),
            active_users_last_30_days=active,
            users_by_tier=users_by_tier,
        )

    async def list_activity(self, limit: int = 100) -> list[AdminActivity]:
        return await self.storage.list_admin_activity(limit)

    # Global API keys

    async def list_global_keys(self) -> list[GlobalApiKey]:
        return await self.storage.list_global_keys()

    async def create_global_key(
        self,
        admin_user_id: str,
        provider: ProviderFamily,
        api_key: str,
        tier_access: Optional[list[UserTier]] = None,
        usage_limit: Optional[int] = None,
    ) -> GlobalApiKey:
        now = self.clock()
        key = GlobalApiKey(
            provider=provider,
            api_key=api_key.strip(),
            tier_access=tier_access or [UserTier.FREE, UserTier.PRO],
            usage_limit=usage_limit,
            last_reset_at=now,
            created_at=now,
            updated_at=now,
        )
        await self.storage.save_global_key(key)
        await self._log(admin_user_id, "create_global_key", key_id=key.id, provider=provider.value)
        return key

    async def update_global_key(self, admin_user_id: str, key_id: str, **changes: Any) -> GlobalApiKey:
        key = await self.storage.get_global_key(key_id)
        updates = {name: value for name, value in changes.items() if value is not None}
        if "usage_limit" in changes and changes["usage_limit"] == 0:
            updates["usage_limit"] = None
        key = key.model_copy(update={**updates, "updated_at": self.clock()})
        await self.storage.save_global_key(key)
        await self._log(admin_user_id, "update_global_key", key_id=key_id, fields=sorted(updates))
        return key

    async def toggle_global_key(self, admin_user_id: str, key_id: str) -> GlobalApiKey:
        key = await self.storage.get_global_key(key_id)
        key.is_active = not key.is_active
        key.updated_at = self.clock()
        await self.storage.save_global_key(key)
        await self._log(admin_user_id, "toggle_global_key", key_id=key_id, is_active=key.is_active)
        return key

    async def reset_global_key_usage(self, admin_user_id: str, key_id: str) -> GlobalApiKey:
        await self.storage.reset_global_key_usage(key_id, self.clock())
        await self._log(admin_user_id, "reset_global_key_usage", key_id=key_id)
        return await self.storage.get_global_key(key_id)

    async def delete_global_key(self, admin_user_id: str, key_id: str) -> None:
        await self.storage.delete_global_key(key_id)
        await self._log(admin_user_id, "delete_global_key", key_id=key_id)

    # Settings and statistics

    async def get_settings(self) -> dict[str, str]:
        return {**DEFAULT_ADMIN_SETTINGS, **await self.storage.get_admin_settings()}

    async def update_setting(self, admin_user_id: str, key: str, value: str) -> dict[str, str]:
        await self.storage.set_admin_setting(key, value)
        await self._log(admin_user_id, "update_setting", setting=key)
        return await self.get_settings()

    async def get_global_provider_stats(self) -> list[ProviderStatistic]:
        merged = aggregate_by_provider(await self.storage.list_all_provider_stats())
        return sorted(merged, key=lambda s: s.total_responses, reverse=True)
