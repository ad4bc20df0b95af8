from .schema import (
    AdminActivityResponse,
    AdminSettingInput,
    AnalyticsResponse,
    ApiKeysInput,
    ChatMessageResponse,
    ChatSessionInput,
    CompareInput,
    GlobalKeyInput,
    GlobalKeyResponse,
    GlobalKeyUpdateInput,
    ModelSettingsInput,
    ProfileResponse,
    ProviderStatisticResponse,
    QuotaExceededDetail,
    RenameChatSessionInput,
    SelectResponseInput,
    SessionCreateResponse,
    SetTierInput,
    StatusResponse,
    TierResponse,
    UpdateRoleInput,
    UpgradeTierInput,
    UsageResponse,
    mask_secret,
    transcript,
    usage_display,
)

__all__ = [
    "AdminActivityResponse",
    "AdminSettingInput",
    "AnalyticsResponse",
    "ApiKeysInput",
    "ChatMessageResponse",
    "ChatSessionInput",
    "CompareInput",
    "GlobalKeyInput",
    "GlobalKeyResponse",
    "GlobalKeyUpdateInput",
    "ModelSettingsInput",
    "ProfileResponse",
    "ProviderStatisticResponse",
    "QuotaExceededDetail",
    "RenameChatSessionInput",
    "SelectResponseInput",
    "SessionCreateResponse",
    "SetTierInput",
    "StatusResponse",
    "TierResponse",
    "UpdateRoleInput",
    "UpgradeTierInput",
    "UsageResponse",
    "mask_secret",
    "transcript",
    "usage_display",
]
