import logging
from typing import Optional

from pydantic import BaseModel

from storage.base import StorageBackend

from .models import ProviderStatistic

logger = logging.getLogger('modelmix.comparison.analytics')


class AnalyticsSummary(BaseModel):
    providers: list[ProviderStatistic]
    top_performer: Optional[ProviderStatistic]
    total_conversations: int
    total_responses: int
    total_selections: int


def sort_by_selection_rate(stats: list[ProviderStatistic]) -> list[ProviderStatistic]:
    return sorted(stats, key=lambda s: (s.selection_rate, s.total_selections), reverse=True)


def top_performer(stats: list[ProviderStatistic]) -> Optional[ProviderStatistic]:
    candidates = [s for s in stats if s.total_responses > 0]
    if not candidates:
        return None
    return sort_by_selection_rate(candidates)[0]


def aggregate_by_provider(rows: list[ProviderStatistic]) -> list[ProviderStatistic]:
    """Sum per-user rows into one row per provider."""
    merged: dict[str, ProviderStatistic] = {}
    for row in rows:
        total = merged.setdefault(row.provider, ProviderStatistic(provider=row.provider))
        total.total_responses += row.total_responses
        total.total_selections += row.total_selections
        total.error_count += row.error_count
        if row.last_used and (total.last_used is None or row.last_used > total.last_used):
            total.last_used = row.last_used
    return list(merged.values())


class AnalyticsService:
    def __init__(self, storage: StorageBackend):
        self.storage = storage

    async def get_provider_stats(self, user_id: str) -> list[ProviderStatistic]:
        return sort_by_selection_rate(await self.storage.get_provider_stats(user_id))

    async def get_top_performer(self, user_id: str) -> Optional[ProviderStatistic]:
        return top_performer(await self.storage.get_provider_stats(user_id))

    async def get_total_conversations(self, user_id: str) -> int:
        total = 0
        for session in await self.storage.list_chat_sessions(user_id):
            total += len(await self.storage.list_turns(session.id))
        return total

    async def get_summary(self, user_id: str) -> AnalyticsSummary:
        stats = await self.get_provider_stats(user_id)
        return AnalyticsSummary(
            providers=stats,
            top_performer=top_performer(stats),
            total_conversations=await self.get_total_conversations(user_id),
            total_responses=sum(s.total_responses for s in stats),
            total_selections=sum(s.total_selections for s in stats),
        )

    async def clear(self, user_id: str) -> None:
        await self.storage.clear_provider_stats(user_id)
        logger.info(f"Cleared provider statistics for user {user_id}")

    async def get_global_stats(self) -> list[ProviderStatistic]:
        merged = aggregate_by_provider(await self.storage.list_all_provider_stats())
        return sorted(merged, key=lambda s: s.total_responses, reverse=True)
