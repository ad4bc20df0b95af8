from datetime import datetime, timedelta, timezone

import pytest

from admin.models import DEFAULT_ADMIN_SETTINGS
from admin.service import AdminActionError, AdminService, mask_key
from auth.usage_tracker import UsageLedger
from auth.usage_tracking.models import UserRole, UserTier
from auth.usage_tracking.tier_manager import TierManager
from comparison.models import ChatSession
from providers.models import ProviderFamily
from storage.errors import NotFoundError

from conftest import create_user


NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def admin(storage):
    tier_manager = TierManager(storage, clock=lambda: NOW)
    ledger = UsageLedger(storage, tier_manager=tier_manager, clock=lambda: NOW)
    return AdminService(storage, tier_manager, ledger, clock=lambda: NOW)


def test_mask_key():
    assert mask_key("sk-1234567890") == "sk-1...7890"
    assert mask_key("short") == "****"


class TestUserAdministration:
    @pytest.mark.asyncio
    async def test_cannot_delete_self(self, storage, admin):
        await create_user(storage, "root", role=UserRole.SUPERADMIN)

        with pytest.raises(AdminActionError):
            await admin.delete_user("root", "root")
        assert (await storage.get_user("root")).id == "root"

    @pytest.mark.asyncio
    async def test_delete_user_is_logged(self, storage, admin):
        await create_user(storage, "root", role=UserRole.SUPERADMIN)
        await create_user(storage, "u1")

        await admin.delete_user("root", "u1")

        with pytest.raises(NotFoundError):
            await storage.get_user("u1")
        activity = await admin.list_activity()
        assert activity[0].action == "delete_user"
        assert activity[0].admin_user_id == "root"
        assert activity[0].target_user_id == "u1"

    @pytest.mark.asyncio
    async def test_update_role(self, storage, admin):
        await create_user(storage, "u1")

        profile = await admin.update_role("root", "u1", UserRole.SUPERADMIN)

        assert profile.role == UserRole.SUPERADMIN
        assert (await admin.list_activity())[0].details == {"role": "superadmin"}

    @pytest.mark.asyncio
    async def test_reset_usage(self, storage, admin):
        await create_user(storage, "u1", used=7)

        profile = await admin.reset_usage("root", "u1")

        assert profile.monthly_conversation_count == 0
        assert profile.last_reset_at == NOW

    @pytest.mark.asyncio
    async def test_set_tier(self, storage, admin):
        await create_user(storage, "u1")

        profile = await admin.set_tier("root", "u1", UserTier.PRO)

        assert profile.current_tier == UserTier.PRO
        assert (await storage.get_subscription("u1")).tier == UserTier.PRO

    @pytest.mark.asyncio
    async def test_activity_most_recent_first(self, storage, admin):
        await create_user(storage, "u1")
        await admin.update_role("root", "u1", UserRole.SUPERADMIN)
        await admin.reset_usage("root", "u1")

        actions = [a.action for a in await admin.list_activity(limit=10)]
        assert actions == ["reset_usage", "update_role"]
        assert len(await admin.list_activity(limit=1)) == 1


class TestSystemStats:
    @pytest.mark.asyncio
    async def test_counts_users_tiers_and_active_users(self, storage, admin):
        await create_user(storage, "u1")
        await create_user(storage, "u2")
        await create_user(storage, "u3")
        await storage.set_user_tier("u3", UserTier.PRO)

        await storage.save_chat_session(ChatSession(user_id="u1", updated_at=NOW - timedelta(days=2)))
        await storage.save_chat_session(ChatSession(user_id="u2", updated_at=NOW - timedelta(days=45)))

        stats = await admin.get_system_stats()

        assert stats.total_users == 3
        assert stats.total_chat_sessions == 2
        assert stats.total_conversations == 0
        assert stats.active_users_last_30_days == 1
        assert stats.users_by_tier == {"tier1": 2, "tier2": 1}


class TestGlobalKeys:
    @pytest.mark.asyncio
    async def test_create_defaults_to_all_tiers(self, admin):
        key = await admin.create_global_key("root", ProviderFamily.OPENAI, "  sk-global-key  ")

        assert key.api_key == "sk-global-key"
        assert key.tier_access == [UserTier.FREE, UserTier.PRO]
        assert key.usage_limit is None
        assert key.is_active
        assert [k.id for k in await admin.list_global_keys()] == [key.id]

    @pytest.mark.asyncio
    async def test_update_zero_limit_means_unlimited(self, admin):
        key = await admin.create_global_key("root", ProviderFamily.GEMINI, "gm-global-key", usage_limit=10)

        updated = await admin.update_global_key("root", key.id, usage_limit=0, tier_access=[UserTier.PRO])

        assert updated.usage_limit is None
        assert updated.tier_access == [UserTier.PRO]
        assert updated.api_key == "gm-global-key"

    @pytest.mark.asyncio
    async def test_toggle(self, admin):
        key = await admin.create_global_key("root", ProviderFamily.DEEPSEEK, "ds-global-key")

        assert not (await admin.toggle_global_key("root", key.id)).is_active
        assert (await admin.toggle_global_key("root", key.id)).is_active

    @pytest.mark.asyncio
    async def test_reset_usage(self, storage, admin):
        key = await admin.create_global_key("root", ProviderFamily.OPENAI, "sk-global-key", usage_limit=5)
        await storage.increment_global_key_usage(key.id, NOW)
        await storage.increment_global_key_usage(key.id, NOW)

        reset = await admin.reset_global_key_usage("root", key.id)

        assert reset.current_usage == 0

    @pytest.mark.asyncio
    async def test_delete(self, admin):
        key = await admin.create_global_key("root", ProviderFamily.OPENAI, "sk-global-key")

        await admin.delete_global_key("root", key.id)

        assert await admin.list_global_keys() == []
        assert (await admin.list_activity())[0].action == "delete_global_key"

    @pytest.mark.asyncio
    async def test_missing_key(self, admin):
        with pytest.raises(NotFoundError):
            await admin.toggle_global_key("root", "nope")


class TestSettings:
    @pytest.mark.asyncio
    async def test_defaults(self, admin):
        assert await admin.get_settings() == DEFAULT_ADMIN_SETTINGS

    @pytest.mark.asyncio
    async def test_update_overrides_default(self, admin):
        settings = await admin.update_setting("root", "get_started_video_url", "https://example.com/intro")

        assert settings["get_started_video_url"] == "https://example.com/intro"
        assert (await admin.list_activity())[0].details == {"setting": "get_started_video_url"}
