import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from auth.usage_tracker import IUsageLedger
from auth.usage_tracking.models import UsageCheck, UsageDenialReason, UserTier
from auth.usage_tracking.tier_gate import GateDecision, TierGate
from auth.usage_tracking.tier_policy import clamp_providers
from providers.key_resolver import ApiKeyResolver
from providers.models import ProviderFamily
from providers.openrouter_catalog import OpenRouterCatalog
from providers.registry import OPENROUTER_PREFIX, ProviderConfig, get_provider_config
from providers.search import SearchError, SerperSearchClient, augment_prompt
from storage.base import StorageBackend
from storage.errors import StorageError
from utils.cancellation_manager import CancellationManager, CancellationToken

from .aggregator import ComparisonRequest, ProviderResponseAggregator
from .chat_sessions import ChatSessionService
from .models import ChatSession, ConversationTurn, ProviderResponse
from .state_machine import cancel_pending

logger = logging.getLogger('modelmix.comparison.service')


class TurnDeniedError(Exception):
    """The tier gate refused the turn. Nothing was created or charged."""

    def __init__(self, decision: GateDecision):
        super().__init__(decision.message or "Turn denied")
        self.decision = decision


class NoProvidersError(ValueError):
    pass


@dataclass
class PreparedTurn:
    session: ChatSession
    turn: ConversationTurn
    configs: list[ProviderConfig]
    request: ComparisonRequest
    token: CancellationToken
    is_first_turn: bool
    usage: UsageCheck


def dedupe(provider_ids: list[str]) -> list[str]:
    seen = set()
    unique = []
    for provider_id in provider_ids:
        if provider_id not in seen:
            seen.add(provider_id)
            unique.append(provider_id)
    return unique


class ComparisonService:
    """
    Runs one conversation turn end to end: gate, charge, fan out, persist.

    Usage is charged once, when the gate accepts the turn and before any
    provider is called.
    """

    def __init__(
        self,
        storage: StorageBackend,
        gate: TierGate,
        ledger: IUsageLedger,
        aggregator: ProviderResponseAggregator,
        chat_sessions: ChatSessionService,
        cancellation_manager: CancellationManager,
        key_resolver: ApiKeyResolver,
        catalog: Optional[OpenRouterCatalog] = None,
        search_client: Optional[SerperSearchClient] = None,
    ):
        self.storage = storage
        self.gate = gate
        self.ledger = ledger
        self.aggregator = aggregator
        self.chat_sessions = chat_sessions
        self.cancellation_manager = cancellation_manager
        self.key_resolver = key_resolver
        self.catalog = catalog
        self.search_client = search_client

    def _provider_configs(self, provider_ids: list[str]) -> list[ProviderConfig]:
        """
        Raises:
            UnknownProviderError: If any id names no known provider
        """
        configs = []
        for provider_id in provider_ids:
            display_name = None
            if provider_id.startswith(OPENROUTER_PREFIX) and self.catalog is not None:
                display_name = self.catalog.display_name(provider_id[len(OPENROUTER_PREFIX):])
            configs.append(get_provider_config(provider_id, display_name))
        return configs

    async def _augment_with_search(self, prompt: str, tier: UserTier, api_settings) -> str:
        if self.search_client is None:
            return augment_prompt(prompt, None, error="internet search is not configured")
        resolved = await self.key_resolver.resolve(ProviderFamily.SERPER, tier, api_settings)
        if resolved is None:
            return augment_prompt(prompt, None, error="no search API key is available")
        try:
            results = await self.search_client.search(prompt, resolved.api_key)
        except SearchError as e:
            logger.warning(f"Internet search failed, continuing without results: {e}")
            return augment_prompt(prompt, None, error=str(e))
        await self.key_resolver.increment_global_usage(resolved)
        return augment_prompt(prompt, results)

    async def prepare_turn(
        self,
        user_id: str,
        session_id: str,
        prompt: str,
        images: Optional[list[str]] = None,
        provider_ids: Optional[list[str]] = None,
        use_internet_search: bool = False,
    ) -> PreparedTurn:
        """
        Validate, gate and charge a new turn, returning everything needed to run it.

        Raises:
            NotFoundError: If the chat session does not belong to the user
            UnknownProviderError: If a requested provider id is unknown
            NoProvidersError: If no provider is enabled or requested
            TurnDeniedError: If the tier gate denies the turn
        """
        session = await self.chat_sessions.get_session(user_id, session_id)
        api_settings = await self.storage.get_api_settings(user_id)
        if provider_ids is None:
            provider_ids = (await self.storage.get_model_settings(user_id)).enabled_providers()
        provider_ids = dedupe(provider_ids)
        configs = self._provider_configs(provider_ids)
        if not configs:
            raise NoProvidersError("Select at least one AI provider to compare")

        decision = await self.gate.check_new_turn(user_id)
        if not decision.allowed:
            raise TurnDeniedError(decision)

        tier = decision.usage.tier
        clamped = clamp_providers(tier, configs)
        if len(clamped) < len(configs):
            logger.info(f"Clamped providers for user {user_id} from {len(configs)} to {len(clamped)} (tier {tier.value})")

        history = await self.chat_sessions.load_history(user_id, session_id)
        effective_prompt = prompt
        if use_internet_search:
            effective_prompt = await self._augment_with_search(prompt, tier, api_settings)

        # Last storage call before the turn exists
        try:
            await self.ledger.increment(user_id, tier)
        except StorageError as e:
            logger.error(f"Could not charge turn for user {user_id}: {e}")
            unavailable = decision.usage.model_copy(update={
                "allowed": False, "reason": UsageDenialReason.SERVICE_UNAVAILABLE,
            })
            raise TurnDeniedError(GateDecision(
                allowed=False,
                usage=unavailable,
                reason=UsageDenialReason.SERVICE_UNAVAILABLE,
                message="We couldn't verify your usage right now. Please try again in a moment.",
            ))

        turn = ConversationTurn(session_id=session_id, user_id=user_id, user_message=prompt, images=images or [])
        token = await self.cancellation_manager.issue_token(session_id)
        return PreparedTurn(
            session=session,
            turn=turn,
            configs=clamped,
            request=ComparisonRequest(
                prompt=effective_prompt,
                tier=tier,
                history=history,
                images=images or [],
                api_settings=api_settings,
            ),
            token=token,
            is_first_turn=not history,
            usage=decision.usage,
        )

    async def run_turn(self, prepared: PreparedTurn) -> AsyncIterator[ProviderResponse]:
        """Yield responses as they settle; the turn is persisted however the run ends."""
        responses = self.aggregator.stream(prepared.turn, prepared.configs, prepared.request, prepared.token)
        try:
            async for response in responses:
                yield response
        finally:
            await responses.aclose()
            cancel_pending(prepared.turn)
            await self.cancellation_manager.release(prepared.token)
            await self.chat_sessions.record_turn(prepared.session, prepared.turn, prepared.is_first_turn)
            logger.info(f"Turn {prepared.turn.id} finished in state {prepared.turn.state.value}")

    async def compare(self, prepared: PreparedTurn) -> ConversationTurn:
        async for _ in self.run_turn(prepared):
            pass
        return prepared.turn

    async def stop(self, user_id: str, session_id: str) -> bool:
        await self.chat_sessions.get_session(user_id, session_id)
        return await self.cancellation_manager.request_cancellation(session_id)
