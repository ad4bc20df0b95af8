"""
Persistence interface for the aggregator.

Every counter that more than one request can touch (monthly conversation
count, provider statistics, global key usage) is exposed as an increment
operation so implementations can perform it atomically in the store instead
of as a read-modify-write in application code.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from admin.models import AdminActivity
from auth.usage_tracking.models import Subscription, UserProfile, UserRole, UserTier
from comparison.models import ChatSession, ConversationTurn, ProviderStatistic
from providers.models import ApiSettings, GlobalApiKey, ModelSettings


class StorageBackend(ABC):

    async def refresh_credentials(self) -> None:
        """Re-acquire credentials for the underlying store. No-op by default."""
        return None

    async def close(self) -> None:
        return None

    # Users

    @abstractmethod
    async def get_user(self, user_id: str) -> UserProfile:
        """
        Fetch a user profile.

        Raises:
            NotFoundError: If the user does not exist
        """

    @abstractmethod
    async def create_user_if_missing(self, profile: UserProfile) -> UserProfile:
        """Insert the profile unless the user already exists, returning the stored profile."""

    @abstractmethod
    async def list_users(self) -> list[UserProfile]:
        pass

    @abstractmethod
    async def delete_user(self, user_id: str) -> None:
        """Delete a user and everything they own (sessions, turns, stats, settings)."""

    @abstractmethod
    async def set_user_role(self, user_id: str, role: UserRole) -> UserProfile:
        pass

    @abstractmethod
    async def set_user_tier(self, user_id: str, tier: UserTier) -> UserProfile:
        pass

    # Monthly usage

    @abstractmethod
    async def rollover_usage_if_stale(self, user_id: str, now: datetime) -> UserProfile:
        """
        Reset the monthly counter if ``last_reset_at`` falls in an earlier calendar
        month than ``now``, as one conditional update. Returns the profile after the
        (possible) reset.
        """

    @abstractmethod
    async def increment_usage(self, user_id: str) -> int:
        """Atomically add one to the monthly conversation count and return the new value."""

    @abstractmethod
    async def reset_usage(self, user_id: str, now: datetime) -> UserProfile:
        pass

    # Subscriptions

    @abstractmethod
    async def get_subscription(self, user_id: str) -> Optional[Subscription]:
        pass

    @abstractmethod
    async def save_subscription(self, subscription: Subscription) -> None:
        pass

    # Chat sessions and turns

    @abstractmethod
    async def save_chat_session(self, session: ChatSession) -> None:
        pass

    @abstractmethod
    async def get_chat_session(self, session_id: str) -> ChatSession:
        pass

    @abstractmethod
    async def list_chat_sessions(self, user_id: str) -> list[ChatSession]:
        """Sessions of a user, most recently updated first."""

    @abstractmethod
    async def delete_chat_session(self, session_id: str) -> None:
        pass

    @abstractmethod
    async def save_turn(self, turn: ConversationTurn) -> None:
        pass

    @abstractmethod
    async def get_turn(self, turn_id: str) -> ConversationTurn:
        pass

    @abstractmethod
    async def list_turns(self, session_id: str) -> list[ConversationTurn]:
        """Turns of a session, oldest first."""

    @abstractmethod
    async def count_chat_sessions(self) -> int:
        pass

    @abstractmethod
    async def count_turns(self) -> int:
        pass

    # Provider statistics

    @abstractmethod
    async def increment_provider_stats(
        self,
        user_id: str,
        provider: str,
        *,
        responses: int = 0,
        selections: int = 0,
        errors: int = 0,
        last_used: Optional[datetime] = None,
    ) -> None:
        pass

    @abstractmethod
    async def get_provider_stats(self, user_id: str) -> list[ProviderStatistic]:
        pass

    @abstractmethod
    async def list_all_provider_stats(self) -> list[ProviderStatistic]:
        """Every per-user statistic row, unaggregated."""

    @abstractmethod
    async def clear_provider_stats(self, user_id: str) -> None:
        pass

    # Settings

    @abstractmethod
    async def get_api_settings(self, user_id: str) -> ApiSettings:
        pass

    @abstractmethod
    async def save_api_settings(self, user_id: str, settings: ApiSettings) -> None:
        pass

    @abstractmethod
    async def get_model_settings(self, user_id: str) -> ModelSettings:
        pass

    @abstractmethod
    async def save_model_settings(self, user_id: str, settings: ModelSettings) -> None:
        pass

    # Global API keys

    @abstractmethod
    async def list_global_keys(self) -> list[GlobalApiKey]:
        pass

    @abstractmethod
    async def get_global_key(self, key_id: str) -> GlobalApiKey:
        pass

    @abstractmethod
    async def save_global_key(self, key: GlobalApiKey) -> None:
        pass

    @abstractmethod
    async def delete_global_key(self, key_id: str) -> None:
        pass

    @abstractmethod
    async def increment_global_key_usage(self, key_id: str, now: datetime) -> int:
        """Atomically roll the key's usage over at a month boundary, then add one."""

    @abstractmethod
    async def reset_global_key_usage(self, key_id: str, now: datetime) -> None:
        pass

    # Admin

    @abstractmethod
    async def log_admin_activity(self, activity: AdminActivity) -> None:
        pass

    @abstractmethod
    async def list_admin_activity(self, limit: int = 100) -> list[AdminActivity]:
        """Most recent first."""

    @abstractmethod
    async def get_admin_settings(self) -> dict[str, str]:
        pass

    @abstractmethod
    async def set_admin_setting(self, key: str, value: str) -> None:
        pass
