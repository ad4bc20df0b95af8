import logging
from dataclasses import dataclass
from typing import Optional

from .models import ProviderFamily

logger = logging.getLogger('modelmix.providers.registry')

OPENROUTER_PREFIX = "openrouter:"

DEFAULT_MAX_TOKENS = 1000
DEFAULT_TEMPERATURE = 0.7


class UnknownProviderError(ValueError):
    pass


@dataclass(frozen=True)
class ProviderConfig:
    """Configuration for a single comparable provider slot"""
    provider_id: str
    family: ProviderFamily
    display_name: str
    model_id: str
    endpoint: str
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = DEFAULT_TEMPERATURE
    supports_images: bool = True


PROVIDER_CONFIGS = {
    "openai": ProviderConfig(
        "openai",
        ProviderFamily.OPENAI,
        "OpenAI GPT-4o",
        "gpt-4o",
        "https://api.openai.com/v1/chat/completions",
    ),
    "gemini": ProviderConfig(
        "gemini",
        ProviderFamily.GEMINI,
        "Google Gemini 1.5 Pro",
        "gemini-1.5-pro",
        "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent",
    ),
    "deepseek": ProviderConfig(
        "deepseek",
        ProviderFamily.DEEPSEEK,
        "DeepSeek Chat",
        "deepseek-chat",
        "https://api.deepseek.com/v1/chat/completions",
        supports_images=False,
    ),
}

OPENROUTER_CHAT_ENDPOINT = "https://openrouter.ai/api/v1/chat/completions"


def openrouter_provider_id(model_id: str) -> str:
    return f"{OPENROUTER_PREFIX}{model_id}"


def get_provider_config(provider_id: str, display_name: Optional[str] = None) -> ProviderConfig:
    """
    Resolve a provider id such as ``openai`` or ``openrouter:anthropic/claude-3-haiku``.

    Raises:
        UnknownProviderError: If the id names no known provider
    """
    if provider_id in PROVIDER_CONFIGS:
        return PROVIDER_CONFIGS[provider_id]

    if provider_id.startswith(OPENROUTER_PREFIX):
        model_id = provider_id[len(OPENROUTER_PREFIX):]
        if not model_id:
            raise UnknownProviderError("OpenRouter provider id is missing a model id")
        return ProviderConfig(
            provider_id,
            ProviderFamily.OPENROUTER,
            display_name or model_id,
            model_id,
            OPENROUTER_CHAT_ENDPOINT,
        )

    raise UnknownProviderError(f"Unknown provider: {provider_id}")
