from datetime import datetime, timezone

import pytest

from auth.usage_tracking.models import UserProfile, UserRole, UserTier
from comparison.models import ChatSession, ConversationTurn
from providers.models import ApiSettings, GlobalApiKey, ProviderFamily
from storage.errors import NotFoundError


class TestUsers:
    @pytest.mark.asyncio
    async def test_create_if_missing_keeps_existing(self, storage):
        await storage.create_user_if_missing(UserProfile(id="u1", email="first@example.com"))
        profile = await storage.create_user_if_missing(UserProfile(id="u1", email="second@example.com"))
        assert profile.email == "first@example.com"

    @pytest.mark.asyncio
    async def test_records_are_copies(self, storage):
        await storage.create_user_if_missing(UserProfile(id="u1"))
        profile = await storage.get_user("u1")
        profile.monthly_conversation_count = 99
        assert (await storage.get_user("u1")).monthly_conversation_count == 0

    @pytest.mark.asyncio
    async def test_missing_user_raises_not_found(self, storage):
        with pytest.raises(NotFoundError):
            await storage.get_user("ghost")
        with pytest.raises(NotFoundError):
            await storage.increment_usage("ghost")

    @pytest.mark.asyncio
    async def test_role_and_tier(self, storage):
        await storage.create_user_if_missing(UserProfile(id="u1"))
        assert (await storage.set_user_role("u1", UserRole.SUPERADMIN)).role == UserRole.SUPERADMIN
        assert (await storage.set_user_tier("u1", UserTier.PRO)).current_tier == UserTier.PRO

    @pytest.mark.asyncio
    async def test_delete_user_removes_owned_records(self, storage):
        await storage.create_user_if_missing(UserProfile(id="u1"))
        session = ChatSession(user_id="u1")
        await storage.save_chat_session(session)
        await storage.save_turn(ConversationTurn(session_id=session.id, user_id="u1", user_message="hi"))
        await storage.save_api_settings("u1", ApiSettings(openai="sk-x"))

        await storage.delete_user("u1")

        assert await storage.list_users() == []
        assert await storage.count_chat_sessions() == 0
        assert await storage.count_turns() == 0
        assert (await storage.get_api_settings("u1")).openai is None


class TestUsage:
    @pytest.mark.asyncio
    async def test_rollover_only_across_months(self, storage):
        await storage.create_user_if_missing(
            UserProfile(id="u1", last_reset_at=datetime(2026, 4, 30, 23, 0, tzinfo=timezone.utc))
        )
        await storage.increment_usage("u1")

        same = await storage.rollover_usage_if_stale("u1", datetime(2026, 4, 30, 23, 59, tzinfo=timezone.utc))
        assert same.monthly_conversation_count == 1

        rolled = await storage.rollover_usage_if_stale("u1", datetime(2026, 5, 1, 0, 0, tzinfo=timezone.utc))
        assert rolled.monthly_conversation_count == 0


class TestTurns:
    @pytest.mark.asyncio
    async def test_save_turn_twice_keeps_one_entry(self, storage):
        turn = ConversationTurn(session_id="s1", user_id="u1", user_message="hi")
        await storage.save_turn(turn)
        turn.selected_provider = "openai"
        await storage.save_turn(turn)

        turns = await storage.list_turns("s1")
        assert len(turns) == 1
        assert turns[0].selected_provider == "openai"


class TestGlobalKeys:
    @pytest.mark.asyncio
    async def test_usage_rolls_over_monthly(self, storage):
        key = GlobalApiKey(provider=ProviderFamily.OPENAI, api_key="sk",
                           last_reset_at=datetime(2026, 1, 10, tzinfo=timezone.utc))
        await storage.save_global_key(key)

        assert await storage.increment_global_key_usage(key.id, datetime(2026, 1, 20, tzinfo=timezone.utc)) == 1
        assert await storage.increment_global_key_usage(key.id, datetime(2026, 1, 21, tzinfo=timezone.utc)) == 2
        assert await storage.increment_global_key_usage(key.id, datetime(2026, 2, 1, tzinfo=timezone.utc)) == 1

    @pytest.mark.asyncio
    async def test_delete_missing_key_raises(self, storage):
        with pytest.raises(NotFoundError):
            await storage.delete_global_key("nope")
