import logging
import time
from typing import Any, Callable, Optional

import aiohttp
from pydantic import BaseModel

logger = logging.getLogger('modelmix.providers.openrouter')

OPENROUTER_MODELS_URL = "https://openrouter.ai/api/v1/models"
CACHE_TTL_SECONDS = 5 * 60
MIN_CONTEXT_LENGTH = 4000
EXCLUDED_MODEL_MARKERS = ("embedding", "whisper", "tts", "dall-e", "stable-diffusion")


class OpenRouterModel(BaseModel):
    id: str
    name: str
    description: str = ""
    context_length: int = 0
    prompt_price: str = "0"
    completion_price: str = "0"

    @property
    def is_free(self) -> bool:
        return self.prompt_price == "0" or self.id.endswith(":free")


FALLBACK_MODELS = [
    OpenRouterModel(id="anthropic/claude-3-haiku", name="Claude 3 Haiku", context_length=200000,
                    prompt_price="0.00000025", completion_price="0.00000125"),
    OpenRouterModel(id="anthropic/claude-3-5-sonnet", name="Claude 3.5 Sonnet", context_length=200000,
                    prompt_price="0.000003", completion_price="0.000015"),
    OpenRouterModel(id="deepseek/deepseek-r1:free", name="DeepSeek R1 (free)", context_length=163840),
    OpenRouterModel(id="google/gemma-2-27b-it:free", name="Gemma 2 27B (free)", context_length=8192),
]


def parse_models(payload: dict[str, Any]) -> list[OpenRouterModel]:
    """Keep chat-capable models with a usable context window, free models first then by name."""
    models = []
    for item in payload.get("data", []):
        model_id = item.get("id", "")
        if not model_id or any(marker in model_id.lower() for marker in EXCLUDED_MODEL_MARKERS):
            continue
        context_length = item.get("context_length") or 0
        if context_length < MIN_CONTEXT_LENGTH:
            continue
        pricing = item.get("pricing") or {}
        models.append(OpenRouterModel(
            id=model_id,
            name=item.get("name") or model_id,
            description=item.get("description") or "",
            context_length=context_length,
            prompt_price=str(pricing.get("prompt", "0")),
            completion_price=str(pricing.get("completion", "0")),
        ))
    models.sort(key=lambda m: (not m.is_free, m.name.lower()))
    return models


class OpenRouterCatalog:
    """Cached view of the OpenRouter model list."""

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        ttl_seconds: int = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session = session
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._cache: Optional[list[OpenRouterModel]] = None
        self._fetched_at: float = 0.0

    async def get_session(self) -> aiohttp.ClientSession:
        if not self.session or self.session.closed:
            self.session = aiohttp.ClientSession()
        return self.session

    def _cache_is_fresh(self) -> bool:
        return self._cache is not None and (self.clock() - self._fetched_at) < self.ttl_seconds

    async def list_models(self, api_key: Optional[str] = None) -> list[OpenRouterModel]:
        if self._cache_is_fresh():
            return list(self._cache or [])

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        try:
            session = await self.get_session()
            async with session.get(OPENROUTER_MODELS_URL, headers=headers) as response:
                if response.status != 200:
                    logger.warning(f"OpenRouter model list returned {response.status}, using fallback models")
                    return list(FALLBACK_MODELS)
                payload = await response.json()
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            logger.error(f"Failed to fetch OpenRouter models, using fallback models: {e}")
            return list(FALLBACK_MODELS)

        models = parse_models(payload)
        self._cache = models
        self._fetched_at = self.clock()
        logger.info(f"Cached {len(models)} OpenRouter models")
        return list(models)

    def display_name(self, model_id: str) -> str:
        for model in self._cache or FALLBACK_MODELS:
            if model.id == model_id:
                return model.name
        return model_id

    def clear_cache(self) -> None:
        self._cache = None
        self._fetched_at = 0.0
