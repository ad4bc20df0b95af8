"""
Fan a prompt out to several providers and merge their answers as they settle.

Each provider runs in its own task inside an ``asyncio.TaskGroup`` and owns
exactly one response slot. Tasks never touch the turn: they report a
``SlotResult`` on a queue and the single consumer loop in ``stream`` applies
it, records statistics and yields the settled response. A failure in one slot
never cancels the others; only the comparison's cancellation token does.
"""
import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

from auth.usage_tracking.models import UserTier
from providers.clients import ProviderCallError, ProviderClient
from providers.key_resolver import ApiKeyResolver, missing_key_message
from providers.models import ApiSettings, ProviderFamily
from providers.registry import ProviderConfig
from storage.errors import StorageError
from utils.cancellation_manager import CancellationToken

from .models import ConversationTurn, HistoryMessage, ProviderResponse, ResponseState
from .selection import SelectionRecorder
from .state_machine import cancel_pending, settle_response

logger = logging.getLogger('modelmix.comparison.aggregator')

DEFAULT_PROVIDER_TIMEOUT_SECONDS = 45.0


def provider_timeout_seconds() -> float:
    return float(os.getenv("PROVIDER_TIMEOUT_SECONDS", DEFAULT_PROVIDER_TIMEOUT_SECONDS))


@dataclass
class ComparisonRequest:
    """Everything the providers need for one turn."""
    prompt: str
    tier: UserTier
    history: list[HistoryMessage] = field(default_factory=list)
    images: list[str] = field(default_factory=list)
    api_settings: Optional[ApiSettings] = None

    def messages(self) -> list[HistoryMessage]:
        return [*self.history, HistoryMessage(role="user", content=self.prompt, images=self.images)]


@dataclass
class SlotResult:
    index: int
    outcome: ResponseState
    content: str = ""
    error: Optional[str] = None
    error_code: Optional[str] = None
    latency_ms: Optional[int] = None
    used_global_key: bool = False


class ProviderResponseAggregator:
    def __init__(
        self,
        clients: dict[ProviderFamily, ProviderClient],
        key_resolver: ApiKeyResolver,
        recorder: SelectionRecorder,
        timeout_seconds: Optional[float] = None,
    ):
        self.clients = clients
        self.key_resolver = key_resolver
        self.recorder = recorder
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else provider_timeout_seconds()

    async def _call_provider(self, index: int, config: ProviderConfig, request: ComparisonRequest) -> SlotResult:
        client = self.clients.get(config.family)
        if client is None:
            return SlotResult(index, ResponseState.ERROR, error=f"No client for {config.family.value}",
                              error_code="provider_not_configured")

        resolved = await self.key_resolver.resolve(config.family, request.tier, request.api_settings)
        if resolved is None:
            return SlotResult(index, ResponseState.ERROR, error=missing_key_message(client.vendor_name),
                              error_code="provider_not_configured")

        started = time.monotonic()
        try:
            async with asyncio.timeout(self.timeout_seconds):
                content = await client.generate(config, request.messages(), request.images, resolved.api_key)
        except TimeoutError:
            logger.warning(f"{config.provider_id} timed out after {self.timeout_seconds}s")
            return SlotResult(index, ResponseState.ERROR,
                              error=f"{client.vendor_name} did not respond within {self.timeout_seconds:g} seconds",
                              error_code="provider_timeout", latency_ms=int((time.monotonic() - started) * 1000))
        except ProviderCallError as e:
            return SlotResult(index, ResponseState.ERROR, error=e.message, error_code=e.error_code,
                              latency_ms=int((time.monotonic() - started) * 1000))
        except Exception as e:
            # Malformed vendor payloads and client bugs stay contained to this slot
            logger.error(f"Unexpected error calling {config.provider_id}: {e}", exc_info=True)
            return SlotResult(index, ResponseState.ERROR, error=f"{client.vendor_name} request failed",
                              error_code="provider_error", latency_ms=int((time.monotonic() - started) * 1000))

        await self.key_resolver.increment_global_usage(resolved)
        return SlotResult(index, ResponseState.SUCCESS, content=content,
                          latency_ms=int((time.monotonic() - started) * 1000),
                          used_global_key=resolved.is_global)

    async def _run_slot(self, index: int, config: ProviderConfig, request: ComparisonRequest,
                        queue: "asyncio.Queue[SlotResult]") -> None:
        result = await self._call_provider(index, config, request)
        await queue.put(result)

    async def _fan_out(self, configs: list[ProviderConfig], request: ComparisonRequest,
                       queue: "asyncio.Queue[SlotResult]") -> None:
        async with asyncio.TaskGroup() as tg:
            for index, config in enumerate(configs):
                tg.create_task(self._run_slot(index, config, request, queue), name=f"provider:{config.provider_id}")

    async def _record_settled(self, user_id: str, response: ProviderResponse) -> None:
        try:
            await self.recorder.record_response_settled(user_id, response.provider, response.state)
        except StorageError as e:
            logger.error(f"Failed to record statistics for {response.provider}: {e}")

    def _apply(self, turn: ConversationTurn, result: SlotResult) -> ProviderResponse:
        return settle_response(
            turn.responses[result.index],
            result.outcome,
            content=result.content,
            error=result.error,
            error_code=result.error_code,
            latency_ms=result.latency_ms,
            used_global_key=result.used_global_key,
        )

    async def stream(
        self,
        turn: ConversationTurn,
        configs: list[ProviderConfig],
        request: ComparisonRequest,
        token: CancellationToken,
    ) -> AsyncIterator[ProviderResponse]:
        """
        Run all providers for ``turn`` and yield each response as it settles.

        Pending slots are appended to the turn in invocation order before any
        provider is called. When ``token`` is cancelled, in-flight provider
        tasks are cancelled, their slots settle as ``cancelled`` and nothing
        that arrives afterwards is merged.

        Args:
            turn: A collecting turn with no responses yet
            configs: One config per provider, already deduplicated and tier-clamped
            request: Prompt, history and keys for the calls
            token: Cancellation token for this comparison
        """
        for config in configs:
            turn.add_response(ProviderResponse(provider=config.provider_id, display_name=config.display_name))

        queue: asyncio.Queue[SlotResult] = asyncio.Queue()
        fan_out_task = asyncio.create_task(self._fan_out(configs, request, queue))
        cancel_task = asyncio.create_task(token.wait())
        remaining = len(configs)

        try:
            while remaining:
                get_task = asyncio.create_task(queue.get())
                waiting = {get_task, cancel_task}
                if not fan_out_task.done():
                    waiting.add(fan_out_task)
                done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)

                if cancel_task in done:
                    get_task.cancel()
                    logger.info(f"Comparison for turn {turn.id} cancelled ({token.reason}), dropping late results")
                    break

                if get_task not in done:
                    get_task.cancel()
                    if queue.empty():
                        # Fan-out ended without reporting every slot
                        error = fan_out_task.exception() if not fan_out_task.cancelled() else None
                        logger.error(f"Provider fan-out for turn {turn.id} ended early: {error}")
                        break
                    continue

                remaining -= 1
                response = self._apply(turn, get_task.result())
                await self._record_settled(turn.user_id, response)
                yield response
        finally:
            cancel_task.cancel()
            if not fan_out_task.done():
                fan_out_task.cancel()
            await asyncio.gather(fan_out_task, cancel_task, return_exceptions=True)

        # Completes the turn; settles anything a cancellation left pending
        for response in cancel_pending(turn):
            yield response
