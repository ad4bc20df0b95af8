from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from admin.models import AdminActivity
from auth.usage_tracking.models import SubscriptionStatus, TierDefinition, UserProfile, UserRole, UserTier
from auth.usage_tracking.tier_gate import GateDecision, UpgradePrompt
from auth.usage_tracking.tier_policy import (
    display_limit,
    format_price,
    usage_color,
    usage_percentage,
)
from comparison.models import ConversationTurn, ProviderStatistic
from providers.models import GlobalApiKey, ProviderFamily


def mask_secret(value: str) -> str:
    if len(value) <= 8:
        return "****"
    return f"{value[:4]}...{value[-4:]}"


class SessionCreateResponse(BaseModel):
    message: str = Field(
        description="Message about session creation"
    )
    user_id: str = Field(
        description="Id of the authenticated user"
    )
    email: str = Field(
        description="Email of the authenticated user",
        default="",
    )
    role: UserRole = Field(
        description="The user's role"
    )
    tier: UserTier = Field(
        description="The user's current tier"
    )


class StatusResponse(BaseModel):
    status: Literal["ok", "degraded"] = Field(
        description="Overall service status"
    )
    storage: Literal["ok", "unavailable"] = Field(
        description="Whether the data store answered"
    )
    active_comparisons: int = Field(
        description="Comparisons currently running",
        default=0,
    )


# Tiers and usage

class TierResponse(BaseModel):
    tier: UserTier
    name: str
    price: str = Field(description="Formatted monthly price, e.g. $17.99")
    conversations: str = Field(description="Monthly conversation limit for display")
    models: str = Field(description="Per-comparison model limit for display")
    features: list[str]

    @classmethod
    def from_definition(cls, definition: TierDefinition) -> "TierResponse":
        return cls(
            tier=definition.tier,
            name=definition.name,
            price=format_price(definition.price_cents),
            conversations=display_limit(definition.tier, "conversations"),
            models=display_limit(definition.tier, "models"),
            features=list(definition.features),
        )


class UsageResponse(BaseModel):
    tier: UserTier
    tier_name: str
    used: int = Field(description="Conversations started this month")
    quota: Optional[int] = Field(description="Monthly quota, null when unlimited")
    remaining: Optional[int] = Field(description="Conversations left this month, null when unlimited")
    percentage: float = Field(description="Share of the quota used, 0-100")
    color: Literal["green", "yellow", "orange", "red"]
    conversations_limit: str
    models_limit: str
    allowed: bool = Field(description="Whether a new conversation may be started now")
    reason: Optional[str] = None
    last_reset_at: Optional[datetime] = None
    subscription_status: Optional[SubscriptionStatus] = None
    subscription_expires_at: Optional[datetime] = None


class UpgradeTierInput(BaseModel):
    tier: UserTier = Field(
        description="Tier to move onto",
        examples=["tier2"],
    )


class ProfileResponse(BaseModel):
    id: str
    email: str
    full_name: str
    role: UserRole
    current_tier: UserTier
    monthly_conversation_count: int
    last_reset_at: datetime
    created_at: datetime

    @classmethod
    def from_profile(cls, profile: UserProfile) -> "ProfileResponse":
        return cls(**profile.model_dump(include=set(cls.model_fields)))


# Chat sessions and comparisons

class ChatSessionInput(BaseModel):
    title: Optional[str] = Field(
        description="Session title, defaults to 'New Chat'",
        default=None,
        max_length=200,
    )


class RenameChatSessionInput(BaseModel):
    title: str = Field(
        description="New session title",
        min_length=1,
        max_length=200,
    )


class CompareInput(BaseModel):
    session_id: str = Field(
        description="Chat session the turn belongs to"
    )
    prompt: str = Field(
        description="The user's message",
        min_length=1,
        examples=["Explain the difference between TCP and UDP"],
    )
    providers: Optional[list[str]] = Field(
        description="Provider ids to compare; defaults to the user's enabled models",
        default=None,
        examples=[["openai", "gemini", "openrouter:meta-llama/llama-3.1-8b-instruct:free"]],
    )
    images: list[str] = Field(
        description="Images attached to the prompt, as data URLs",
        default=[],
    )
    use_internet_search: bool = Field(
        description="Augment the prompt with web search results",
        default=False,
    )


class SelectResponseInput(BaseModel):
    provider: str = Field(
        description="Provider whose response the user prefers",
        examples=["openai"],
    )


class ChatMessageResponse(BaseModel):
    """One entry of a session transcript."""
    turn_id: str
    role: Literal["user", "assistant"]
    content: str
    provider: Optional[str] = None
    images: list[str] = []
    created_at: datetime


def transcript(turns: list[ConversationTurn]) -> list[ChatMessageResponse]:
    messages = []
    for turn in turns:
        messages.append(ChatMessageResponse(
            turn_id=turn.id, role="user", content=turn.user_message, images=turn.images, created_at=turn.created_at,
        ))
        selected = turn.selected_response()
        if selected is not None:
            messages.append(ChatMessageResponse(
                turn_id=turn.id, role="assistant", content=selected.content,
                provider=selected.provider, created_at=turn.created_at,
            ))
    return messages


class QuotaExceededDetail(BaseModel):
    error: str
    error_code: Literal["quota_exceeded", "usage_service_unavailable"]
    message: str
    used: int
    quota: Optional[int]
    tier: UserTier
    upgrade: Optional[UpgradePrompt] = None

    @classmethod
    def from_decision(cls, decision: GateDecision) -> "QuotaExceededDetail":
        unavailable = decision.reason is not None and decision.reason.value == "service_unavailable"
        return cls(
            error="Usage service unavailable" if unavailable else "Monthly conversation limit reached",
            error_code="usage_service_unavailable" if unavailable else "quota_exceeded",
            message=decision.message or "",
            used=decision.usage.used,
            quota=decision.usage.quota,
            tier=decision.usage.tier,
            upgrade=decision.upgrade_prompt,
        )


# Settings

class ApiKeysInput(BaseModel):
    """Only the keys present in the body are changed; an empty string removes a key."""
    openai: Optional[str] = None
    openrouter: Optional[str] = None
    gemini: Optional[str] = None
    deepseek: Optional[str] = None
    serper: Optional[str] = None


class ModelSettingsInput(BaseModel):
    openai: bool = False
    gemini: bool = False
    deepseek: bool = False
    openrouter_models: dict[str, bool] = Field(
        description="OpenRouter model ids mapped to whether they are enabled",
        default={},
    )


# Analytics

class ProviderStatisticResponse(BaseModel):
    provider: str
    display_name: str
    total_responses: int
    total_selections: int
    error_count: int
    selection_rate: float = Field(description="Selections per response, as a percentage")
    error_rate: float = Field(description="Errors per response, as a percentage")
    last_used: Optional[datetime] = None

    @classmethod
    def from_statistic(cls, stat: ProviderStatistic, display_name: Optional[str] = None) -> "ProviderStatisticResponse":
        return cls(
            provider=stat.provider,
            display_name=display_name or stat.provider,
            total_responses=stat.total_responses,
            total_selections=stat.total_selections,
            error_count=stat.error_count,
            selection_rate=round(stat.selection_rate * 100, 1),
            error_rate=round(stat.error_rate * 100, 1),
            last_used=stat.last_used,
        )


class AnalyticsResponse(BaseModel):
    providers: list[ProviderStatisticResponse]
    top_performer: Optional[ProviderStatisticResponse]
    total_conversations: int
    total_responses: int
    total_selections: int


# Admin

class UpdateRoleInput(BaseModel):
    role: UserRole


class SetTierInput(BaseModel):
    tier: UserTier


class GlobalKeyInput(BaseModel):
    provider: ProviderFamily
    api_key: str = Field(min_length=1)
    tier_access: list[UserTier] = Field(default=[UserTier.FREE, UserTier.PRO])
    usage_limit: Optional[int] = Field(
        description="Monthly call limit; omit or 0 for unlimited",
        default=None,
        ge=0,
    )


class GlobalKeyUpdateInput(BaseModel):
    api_key: Optional[str] = None
    tier_access: Optional[list[UserTier]] = None
    is_active: Optional[bool] = None
    usage_limit: Optional[int] = Field(
        description="Monthly call limit; 0 removes the limit",
        default=None,
        ge=0,
    )


class GlobalKeyResponse(BaseModel):
    id: str
    provider: ProviderFamily
    masked_key: str
    tier_access: list[UserTier]
    is_active: bool
    usage_limit: Optional[int]
    current_usage: int
    last_reset_at: datetime
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_key(cls, key: GlobalApiKey, now: datetime) -> "GlobalKeyResponse":
        return cls(
            id=key.id,
            provider=key.provider,
            masked_key=mask_secret(key.api_key),
            tier_access=key.tier_access,
            is_active=key.is_active,
            usage_limit=key.usage_limit,
            current_usage=key.effective_usage(now),
            last_reset_at=key.last_reset_at,
            created_at=key.created_at,
            updated_at=key.updated_at,
        )


class AdminSettingInput(BaseModel):
    key: str = Field(min_length=1, max_length=100)
    value: str


class AdminActivityResponse(BaseModel):
    activities: list[AdminActivity]


def usage_display(used: int, quota: Optional[int]) -> tuple[float, str]:
    percentage = usage_percentage(used, quota)
    return percentage, usage_color(percentage)
