import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from auth.usage_tracking.models import UserTier, same_calendar_month, utcnow


class ProviderFamily(str, Enum):
    OPENAI = "openai"
    GEMINI = "gemini"
    DEEPSEEK = "deepseek"
    OPENROUTER = "openrouter"
    SERPER = "serper"


PROVIDER_FAMILY_DISPLAY_NAMES = {
    ProviderFamily.OPENAI: "OpenAI",
    ProviderFamily.OPENROUTER: "OpenRouter",
    ProviderFamily.GEMINI: "Google Gemini",
    ProviderFamily.DEEPSEEK: "DeepSeek",
    ProviderFamily.SERPER: "Serper (Internet Search)",
}


class ApiSettings(BaseModel):
    """A user's personal API keys, one per provider family."""
    openai: Optional[str] = None
    openrouter: Optional[str] = None
    gemini: Optional[str] = None
    deepseek: Optional[str] = None
    serper: Optional[str] = None

    def key_for(self, family: ProviderFamily) -> Optional[str]:
        key = getattr(self, family.value, None)
        if key and key.strip():
            return key.strip()
        return None

    def masked(self) -> dict[str, Optional[str]]:
        masked = {}
        for family in ProviderFamily:
            key = self.key_for(family)
            masked[family.value] = f"{key[:4]}...{key[-4:]}" if key and len(key) > 12 else ("****" if key else None)
        return masked


class ModelSettings(BaseModel):
    """Which providers a user has enabled for comparisons."""
    openai: bool = False
    gemini: bool = False
    deepseek: bool = False
    openrouter_models: dict[str, bool] = Field(default_factory=dict)

    def enabled_providers(self) -> list[str]:
        providers = [
            family.value
            for family in (ProviderFamily.OPENAI, ProviderFamily.GEMINI, ProviderFamily.DEEPSEEK)
            if getattr(self, family.value)
        ]
        providers.extend(
            f"openrouter:{model_id}" for model_id, enabled in self.openrouter_models.items() if enabled
        )
        return providers


class GlobalApiKey(BaseModel):
    """An operator-provided key shared by every user whose tier it grants."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    provider: ProviderFamily
    api_key: str
    tier_access: list[UserTier] = Field(default_factory=lambda: [UserTier.FREE, UserTier.PRO])
    is_active: bool = True
    usage_limit: Optional[int] = None
    current_usage: int = 0
    last_reset_at: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def effective_usage(self, now: datetime) -> int:
        # Usage rolls over lazily at the calendar month boundary
        if not same_calendar_month(self.last_reset_at, now):
            return 0
        return self.current_usage

    def is_usable_by(self, tier: UserTier, now: datetime) -> bool:
        if not self.is_active or tier not in self.tier_access:
            return False
        if self.usage_limit is None:
            return True
        return self.effective_usage(now) < self.usage_limit
