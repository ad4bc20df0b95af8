from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from providers.openrouter_catalog import FALLBACK_MODELS, OpenRouterCatalog, parse_models


PAYLOAD = {
    "data": [
        {"id": "openai/gpt-4o", "name": "GPT-4o", "context_length": 128000,
         "pricing": {"prompt": "0.000005", "completion": "0.000015"}},
        {"id": "meta/llama-3:free", "name": "Llama 3 (free)", "context_length": 8192,
         "pricing": {"prompt": "0", "completion": "0"}},
        {"id": "openai/text-embedding-3", "name": "Embedding", "context_length": 8192},
        {"id": "tiny/model", "name": "Tiny", "context_length": 2048},
        {"id": "anthropic/claude-3-haiku", "name": "Claude 3 Haiku", "context_length": 200000,
         "pricing": {"prompt": "0.00000025", "completion": "0.00000125"}},
    ]
}


def mock_session(status=200, payload=None, error=None):
    session = MagicMock()
    session.closed = False
    if error is not None:
        session.get.side_effect = error
        return session
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload or {})
    session.get.return_value.__aenter__.return_value = response
    return session


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_parse_models_filters_and_orders():
    models = parse_models(PAYLOAD)
    assert [m.id for m in models] == ["meta/llama-3:free", "anthropic/claude-3-haiku", "openai/gpt-4o"]
    assert models[0].is_free


class TestOpenRouterCatalog:
    @pytest.mark.asyncio
    async def test_list_models_is_cached(self):
        session = mock_session(payload=PAYLOAD)
        clock = Clock()
        catalog = OpenRouterCatalog(session, ttl_seconds=300, clock=clock)

        first = await catalog.list_models("or-key")
        clock.now += 100
        second = await catalog.list_models("or-key")

        assert first == second
        session.get.assert_called_once()
        assert session.get.call_args.kwargs["headers"]["Authorization"] == "Bearer or-key"

    @pytest.mark.asyncio
    async def test_cache_expires(self):
        session = mock_session(payload=PAYLOAD)
        clock = Clock()
        catalog = OpenRouterCatalog(session, ttl_seconds=300, clock=clock)

        await catalog.list_models()
        clock.now += 301
        await catalog.list_models()

        assert session.get.call_count == 2

    @pytest.mark.asyncio
    async def test_error_status_returns_fallback(self):
        catalog = OpenRouterCatalog(mock_session(status=503))
        assert await catalog.list_models() == FALLBACK_MODELS

    @pytest.mark.asyncio
    async def test_transport_error_returns_fallback_and_is_not_cached(self):
        session = mock_session(error=aiohttp.ClientConnectionError("refused"))
        catalog = OpenRouterCatalog(session)
        assert await catalog.list_models() == FALLBACK_MODELS
        assert not catalog._cache_is_fresh()

    @pytest.mark.asyncio
    async def test_display_name(self):
        catalog = OpenRouterCatalog(mock_session(payload=PAYLOAD))
        assert catalog.display_name("anthropic/claude-3-haiku") == "Claude 3 Haiku"
        await catalog.list_models()
        assert catalog.display_name("openai/gpt-4o") == "GPT-4o"
        assert catalog.display_name("unknown/model") == "unknown/model"
