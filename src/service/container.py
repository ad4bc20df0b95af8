"""
Wiring for every long-lived service object.

The container is built once per application in the lifespan and stored on
``app.state.services``; routes reach it through the dependencies in
``service.dependencies``. Tests build their own with ``build_container``.
"""
import os
import logging
from dataclasses import dataclass
from typing import Optional

import aiohttp

from admin.service import AdminService
from auth.auth import AuthConfig
from auth.usage_tracker import UsageLedger
from auth.usage_tracking.tier_gate import TierGate
from auth.usage_tracking.tier_manager import TierManager
from comparison.aggregator import ProviderResponseAggregator
from comparison.analytics import AnalyticsService
from comparison.chat_sessions import ChatSessionService
from comparison.selection import SelectionRecorder
from comparison.service import ComparisonService
from providers.clients import ProviderClient, close_provider_clients, create_provider_clients
from providers.key_resolver import ApiKeyResolver
from providers.models import ProviderFamily
from providers.openrouter_catalog import OpenRouterCatalog
from providers.search import SerperSearchClient
from storage.base import StorageBackend
from storage.memory_backend import InMemoryStorage
from storage.redis_backend import RedisStorage
from utils.cancellation_manager import CancellationManager

from .redis_client import create_redis_client

logger = logging.getLogger('modelmix.service.container')


@dataclass
class ServiceContainer:
    storage: StorageBackend
    http_session: Optional[aiohttp.ClientSession]
    clients: dict[ProviderFamily, ProviderClient]
    auth_config: AuthConfig
    tier_manager: TierManager
    ledger: UsageLedger
    gate: TierGate
    key_resolver: ApiKeyResolver
    catalog: OpenRouterCatalog
    search_client: SerperSearchClient
    recorder: SelectionRecorder
    aggregator: ProviderResponseAggregator
    chat_sessions: ChatSessionService
    analytics: AnalyticsService
    admin: AdminService
    cancellation_manager: CancellationManager
    comparison: ComparisonService

    async def close(self) -> None:
        await close_provider_clients(self.clients)
        if self.http_session is not None and not self.http_session.closed:
            await self.http_session.close()
        await self.storage.close()
        logger.info("Service container closed")


def create_storage() -> StorageBackend:
    storage_backend = os.getenv("STORAGE_BACKEND", "redis").lower()
    if storage_backend == "memory":
        logger.warning("Using in-memory storage, all data is lost on restart")
        return InMemoryStorage()
    if storage_backend != "redis":
        raise ValueError(f"Unknown STORAGE_BACKEND '{storage_backend}', expected 'redis' or 'memory'")
    # Storage owns its client so a credential refresh never closes the session backend's
    return RedisStorage(create_redis_client(), client_factory=create_redis_client)


def build_container(
    storage: StorageBackend,
    auth_config: AuthConfig,
    http_session: Optional[aiohttp.ClientSession] = None,
    clients: Optional[dict[ProviderFamily, ProviderClient]] = None,
    provider_timeout_seconds: Optional[float] = None,
) -> ServiceContainer:
    clients = clients if clients is not None else create_provider_clients(http_session)

    tier_manager = TierManager(storage)
    ledger = UsageLedger(storage, tier_manager=tier_manager)
    gate = TierGate(ledger)
    key_resolver = ApiKeyResolver(storage)
    catalog = OpenRouterCatalog(http_session)
    search_client = SerperSearchClient(http_session)
    recorder = SelectionRecorder(storage)
    aggregator = ProviderResponseAggregator(clients, key_resolver, recorder, timeout_seconds=provider_timeout_seconds)
    chat_sessions = ChatSessionService(storage)
    cancellation_manager = CancellationManager()

    return ServiceContainer(
        storage=storage,
        http_session=http_session,
        clients=clients,
        auth_config=auth_config,
        tier_manager=tier_manager,
        ledger=ledger,
        gate=gate,
        key_resolver=key_resolver,
        catalog=catalog,
        search_client=search_client,
        recorder=recorder,
        aggregator=aggregator,
        chat_sessions=chat_sessions,
        analytics=AnalyticsService(storage),
        admin=AdminService(storage, tier_manager, ledger),
        cancellation_manager=cancellation_manager,
        comparison=ComparisonService(
            storage=storage,
            gate=gate,
            ledger=ledger,
            aggregator=aggregator,
            chat_sessions=chat_sessions,
            cancellation_manager=cancellation_manager,
            key_resolver=key_resolver,
            catalog=catalog,
            search_client=search_client,
        ),
    )
