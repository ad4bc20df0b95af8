import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from typing import Optional

from admin.models import AdminActivity
from auth.usage_tracking.models import (
    Subscription,
    UserProfile,
    UserRole,
    UserTier,
    same_calendar_month,
    utcnow,
)
from comparison.models import ChatSession, ConversationTurn, ProviderStatistic
from providers.models import ApiSettings, GlobalApiKey, ModelSettings

from .base import StorageBackend
from .errors import NotFoundError

logger = logging.getLogger('modelmix.storage.memory')


class InMemoryStorage(StorageBackend):
    """
    Process-local storage for development and tests.

    All mutations happen under a single asyncio lock, which makes every
    increment atomic with respect to other coroutines in the same process.
    Records are copied on the way in and out so callers never share state
    with the store.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._users: dict[str, UserProfile] = {}
        self._subscriptions: dict[str, Subscription] = {}
        self._chat_sessions: dict[str, ChatSession] = {}
        self._turns: dict[str, ConversationTurn] = {}
        self._session_turns: dict[str, list[str]] = defaultdict(list)
        self._stats: dict[str, dict[str, ProviderStatistic]] = defaultdict(dict)
        self._api_settings: dict[str, ApiSettings] = {}
        self._model_settings: dict[str, ModelSettings] = {}
        self._global_keys: dict[str, GlobalApiKey] = {}
        self._admin_activity: list[AdminActivity] = []
        self._admin_settings: dict[str, str] = {}

    def _require_user(self, user_id: str) -> UserProfile:
        try:
            return self._users[user_id]
        except KeyError:
            raise NotFoundError(f"User {user_id} not found", operation="get_user")

    async def get_user(self, user_id: str) -> UserProfile:
        async with self._lock:
            return self._require_user(user_id).model_copy(deep=True)

    async def create_user_if_missing(self, profile: UserProfile) -> UserProfile:
        async with self._lock:
            if profile.id not in self._users:
                self._users[profile.id] = profile.model_copy(deep=True)
                logger.info(f"Created user profile {profile.id}")
            return self._users[profile.id].model_copy(deep=True)

    async def list_users(self) -> list[UserProfile]:
        async with self._lock:
            users = sorted(self._users.values(), key=lambda u: u.created_at, reverse=True)
            return [user.model_copy(deep=True) for user in users]

    async def delete_user(self, user_id: str) -> None:
        async with self._lock:
            self._require_user(user_id)
            del self._users[user_id]
            self._subscriptions.pop(user_id, None)
            self._stats.pop(user_id, None)
            self._api_settings.pop(user_id, None)
            self._model_settings.pop(user_id, None)
            for session_id in [s.id for s in self._chat_sessions.values() if s.user_id == user_id]:
                self._delete_session_locked(session_id)

    async def set_user_role(self, user_id: str, role: UserRole) -> UserProfile:
        async with self._lock:
            user = self._require_user(user_id)
            user.role = role
            user.updated_at = utcnow()
            return user.model_copy(deep=True)

    async def set_user_tier(self, user_id: str, tier: UserTier) -> UserProfile:
        async with self._lock:
            user = self._require_user(user_id)
            user.current_tier = tier
            user.updated_at = utcnow()
            return user.model_copy(deep=True)

    async def rollover_usage_if_stale(self, user_id: str, now: datetime) -> UserProfile:
        async with self._lock:
            user = self._require_user(user_id)
            if not same_calendar_month(user.last_reset_at, now):
                logger.info(f"Monthly usage rollover for user {user_id} (last reset {user.last_reset_at.isoformat()})")
                user.monthly_conversation_count = 0
                user.last_reset_at = now
            return user.model_copy(deep=True)

    async def increment_usage(self, user_id: str) -> int:
        async with self._lock:
            user = self._require_user(user_id)
            user.monthly_conversation_count += 1
            return user.monthly_conversation_count

    async def reset_usage(self, user_id: str, now: datetime) -> UserProfile:
        async with self._lock:
            user = self._require_user(user_id)
            user.monthly_conversation_count = 0
            user.last_reset_at = now
            return user.model_copy(deep=True)

    async def get_subscription(self, user_id: str) -> Optional[Subscription]:
        async with self._lock:
            subscription = self._subscriptions.get(user_id)
            return subscription.model_copy(deep=True) if subscription else None

    async def save_subscription(self, subscription: Subscription) -> None:
        async with self._lock:
            self._subscriptions[subscription.user_id] = subscription.model_copy(deep=True)

    async def save_chat_session(self, session: ChatSession) -> None:
        async with self._lock:
            self._chat_sessions[session.id] = session.model_copy(deep=True)

    async def get_chat_session(self, session_id: str) -> ChatSession:
        async with self._lock:
            if session_id not in self._chat_sessions:
                raise NotFoundError(f"Chat session {session_id} not found", operation="get_chat_session")
            return self._chat_sessions[session_id].model_copy(deep=True)

    async def list_chat_sessions(self, user_id: str) -> list[ChatSession]:
        async with self._lock:
            sessions = [s for s in self._chat_sessions.values() if s.user_id == user_id]
            sessions.sort(key=lambda s: s.updated_at, reverse=True)
            return [s.model_copy(deep=True) for s in sessions]

    def _delete_session_locked(self, session_id: str) -> None:
        self._chat_sessions.pop(session_id, None)
        for turn_id in self._session_turns.pop(session_id, []):
            self._turns.pop(turn_id, None)

    async def delete_chat_session(self, session_id: str) -> None:
        async with self._lock:
            if session_id not in self._chat_sessions:
                raise NotFoundError(f"Chat session {session_id} not found", operation="delete_chat_session")
            self._delete_session_locked(session_id)

    async def save_turn(self, turn: ConversationTurn) -> None:
        async with self._lock:
            if turn.id not in self._turns:
                self._session_turns[turn.session_id].append(turn.id)
            self._turns[turn.id] = turn.model_copy(deep=True)

    async def get_turn(self, turn_id: str) -> ConversationTurn:
        async with self._lock:
            if turn_id not in self._turns:
                raise NotFoundError(f"Turn {turn_id} not found", operation="get_turn")
            return self._turns[turn_id].model_copy(deep=True)

    async def list_turns(self, session_id: str) -> list[ConversationTurn]:
        async with self._lock:
            return [self._turns[turn_id].model_copy(deep=True) for turn_id in self._session_turns.get(session_id, [])]

    async def count_chat_sessions(self) -> int:
        async with self._lock:
            return len(self._chat_sessions)

    async def count_turns(self) -> int:
        async with self._lock:
            return len(self._turns)

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
        async with self._lock:
            stat = self._stats[user_id].setdefault(provider, ProviderStatistic(provider=provider))
            stat.total_responses += responses
            stat.total_selections += selections
            stat.error_count += errors
            if last_used is not None:
                stat.last_used = last_used

    async def get_provider_stats(self, user_id: str) -> list[ProviderStatistic]:
        async with self._lock:
            return [stat.model_copy(deep=True) for stat in self._stats.get(user_id, {}).values()]

    async def list_all_provider_stats(self) -> list[ProviderStatistic]:
        async with self._lock:
            return [
                stat.model_copy(deep=True)
                for user_stats in self._stats.values()
                for stat in user_stats.values()
            ]

    async def clear_provider_stats(self, user_id: str) -> None:
        async with self._lock:
            self._stats.pop(user_id, None)

    async def get_api_settings(self, user_id: str) -> ApiSettings:
        async with self._lock:
            settings = self._api_settings.get(user_id)
            return settings.model_copy() if settings else ApiSettings()

    async def save_api_settings(self, user_id: str, settings: ApiSettings) -> None:
        async with self._lock:
            self._api_settings[user_id] = settings.model_copy()

    async def get_model_settings(self, user_id: str) -> ModelSettings:
        async with self._lock:
            settings = self._model_settings.get(user_id)
            return settings.model_copy(deep=True) if settings else ModelSettings()

    async def save_model_settings(self, user_id: str, settings: ModelSettings) -> None:
        async with self._lock:
            self._model_settings[user_id] = settings.model_copy(deep=True)

    async def list_global_keys(self) -> list[GlobalApiKey]:
        async with self._lock:
            return [key.model_copy(deep=True) for key in self._global_keys.values()]

    async def get_global_key(self, key_id: str) -> GlobalApiKey:
        async with self._lock:
            if key_id not in self._global_keys:
                raise NotFoundError(f"Global API key {key_id} not found", operation="get_global_key")
            return self._global_keys[key_id].model_copy(deep=True)

    async def save_global_key(self, key: GlobalApiKey) -> None:
        async with self._lock:
            self._global_keys[key.id] = key.model_copy(deep=True)

    async def delete_global_key(self, key_id: str) -> None:
        async with self._lock:
            if self._global_keys.pop(key_id, None) is None:
                raise NotFoundError(f"Global API key {key_id} not found", operation="delete_global_key")

    async def increment_global_key_usage(self, key_id: str, now: datetime) -> int:
        async with self._lock:
            if key_id not in self._global_keys:
                raise NotFoundError(f"Global API key {key_id} not found", operation="increment_global_key_usage")
            key = self._global_keys[key_id]
            if not same_calendar_month(key.last_reset_at, now):
                key.current_usage = 0
                key.last_reset_at = now
            key.current_usage += 1
            return key.current_usage

    async def reset_global_key_usage(self, key_id: str, now: datetime) -> None:
        async with self._lock:
            if key_id not in self._global_keys:
                raise NotFoundError(f"Global API key {key_id} not found", operation="reset_global_key_usage")
            self._global_keys[key_id].current_usage = 0
            self._global_keys[key_id].last_reset_at = now

    async def log_admin_activity(self, activity: AdminActivity) -> None:
        async with self._lock:
            self._admin_activity.insert(0, activity.model_copy(deep=True))

    async def list_admin_activity(self, limit: int = 100) -> list[AdminActivity]:
        async with self._lock:
            return [a.model_copy(deep=True) for a in self._admin_activity[:limit]]

    async def get_admin_settings(self) -> dict[str, str]:
        async with self._lock:
            return dict(self._admin_settings)

    async def set_admin_setting(self, key: str, value: str) -> None:
        async with self._lock:
            self._admin_settings[key] = value
