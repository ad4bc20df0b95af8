from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserTier(str, Enum):
    FREE = "tier1"
    PRO = "tier2"


class UserRole(str, Enum):
    MEMBER = "member"
    SUPERADMIN = "superadmin"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class UsageDenialReason(str, Enum):
    QUOTA_EXCEEDED = "quota_exceeded"
    SERVICE_UNAVAILABLE = "service_unavailable"


class TierDefinition(BaseModel):
    """Static limits and marketing info for a single tier. ``None`` means unlimited."""
    model_config = ConfigDict(frozen=True)

    tier: UserTier
    name: str
    monthly_conversation_quota: Optional[int]
    max_providers_per_comparison: Optional[int]
    price_cents: int
    features: tuple[str, ...] = ()


class UsageCheck(BaseModel):
    """Result of a usage check against the ledger."""
    allowed: bool
    used: int
    quota: Optional[int]
    tier: UserTier
    reason: Optional[UsageDenialReason] = None

    @property
    def remaining(self) -> Optional[int]:
        if self.quota is None:
            return None
        return max(self.quota - self.used, 0)


class UserProfile(BaseModel):
    id: str
    email: str = ""
    full_name: str = ""
    role: UserRole = UserRole.MEMBER
    current_tier: UserTier = UserTier.FREE
    monthly_conversation_count: int = Field(default=0, ge=0)
    last_reset_at: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Subscription(BaseModel):
    user_id: str
    tier: UserTier
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    started_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow)

    def grants_tier(self, now: datetime) -> bool:
        """Whether this subscription still entitles the user to its tier at ``now``."""
        if self.status == SubscriptionStatus.ACTIVE:
            return self.expires_at is None or self.expires_at > now
        if self.status == SubscriptionStatus.CANCELLED:
            return self.expires_at is not None and self.expires_at > now
        return False


def same_calendar_month(a: datetime, b: datetime) -> bool:
    a = a.astimezone(timezone.utc) if a.tzinfo else a.replace(tzinfo=timezone.utc)
    b = b.astimezone(timezone.utc) if b.tzinfo else b.replace(tzinfo=timezone.utc)
    return a.year == b.year and a.month == b.month
