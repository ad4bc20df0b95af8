import pytest

from comparison.analytics import AnalyticsService, aggregate_by_provider, top_performer
from comparison.models import ChatSession, ConversationTurn, ProviderStatistic


async def seed_stats(storage, user_id, provider, responses, selections, errors=0):
    await storage.increment_provider_stats(user_id, provider, responses=responses, selections=selections, errors=errors)


class TestTopPerformer:
    def test_none_without_responses(self):
        assert top_performer([]) is None
        assert top_performer([ProviderStatistic(provider="openai")]) is None

    def test_highest_selection_rate_wins(self):
        stats = [
            ProviderStatistic(provider="openai", total_responses=10, total_selections=3),
            ProviderStatistic(provider="gemini", total_responses=4, total_selections=2),
        ]
        assert top_performer(stats).provider == "gemini"

    def test_aggregate_by_provider_sums_users(self):
        rows = [
            ProviderStatistic(provider="openai", total_responses=2, total_selections=1),
            ProviderStatistic(provider="openai", total_responses=3, total_selections=0, error_count=1),
            ProviderStatistic(provider="gemini", total_responses=1),
        ]
        merged = {s.provider: s for s in aggregate_by_provider(rows)}
        assert merged["openai"].total_responses == 5
        assert merged["openai"].total_selections == 1
        assert merged["openai"].error_count == 1


class TestAnalyticsService:
    @pytest.mark.asyncio
    async def test_summary(self, storage):
        await seed_stats(storage, "u1", "openai", responses=4, selections=1)
        await seed_stats(storage, "u1", "gemini", responses=4, selections=3, errors=1)
        await seed_stats(storage, "u2", "deepseek", responses=9, selections=9)
        session = ChatSession(user_id="u1")
        await storage.save_chat_session(session)
        await storage.save_turn(ConversationTurn(session_id=session.id, user_id="u1", user_message="a"))
        await storage.save_turn(ConversationTurn(session_id=session.id, user_id="u1", user_message="b"))

        summary = await AnalyticsService(storage).get_summary("u1")

        assert [s.provider for s in summary.providers] == ["gemini", "openai"]
        assert summary.top_performer.provider == "gemini"
        assert summary.total_conversations == 2
        assert summary.total_responses == 8
        assert summary.total_selections == 4

    @pytest.mark.asyncio
    async def test_clear_only_affects_user(self, storage):
        await seed_stats(storage, "u1", "openai", responses=1, selections=1)
        await seed_stats(storage, "u2", "openai", responses=1, selections=0)
        service = AnalyticsService(storage)

        await service.clear("u1")

        assert await service.get_provider_stats("u1") == []
        assert len(await service.get_provider_stats("u2")) == 1

    @pytest.mark.asyncio
    async def test_global_stats(self, storage):
        await seed_stats(storage, "u1", "openai", responses=1, selections=1)
        await seed_stats(storage, "u2", "openai", responses=2, selections=0)
        await seed_stats(storage, "u2", "gemini", responses=1, selections=1)

        stats = await AnalyticsService(storage).get_global_stats()

        assert [(s.provider, s.total_responses) for s in stats] == [("openai", 3), ("gemini", 1)]
