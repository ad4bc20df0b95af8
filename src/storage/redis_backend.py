import logging
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Iterable, Optional

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConnectionError as RedisConnectionError,
    NoPermissionError,
    RedisError,
    TimeoutError as RedisTimeoutError,
)

from admin.models import AdminActivity
from auth.usage_tracking.models import Subscription, UserProfile, UserRole, UserTier, utcnow
from comparison.models import ChatSession, ConversationTurn, ProviderStatistic
from providers.models import ApiSettings, GlobalApiKey, ModelSettings

from .base import StorageBackend
from .errors import NotFoundError, StorageError, StoreAuthError, StoreUnavailableError
from .retry import with_credential_refresh

logger = logging.getLogger('modelmix.storage.redis')

USERS_INDEX = "users"
CHAT_SESSIONS_INDEX = "chat_sessions"
TURNS_INDEX = "turns"
STATS_USERS_INDEX = "stats_users"
GLOBAL_KEYS_INDEX = "global_keys"
ADMIN_ACTIVITY_KEY = "admin_activity"
ADMIN_SETTINGS_KEY = "admin_settings"
ADMIN_ACTIVITY_MAX_ENTRIES = 1000

# KEYS[1] user hash; ARGV[1] current "YYYY-MM"; ARGV[2] reset timestamp
ROLLOVER_USAGE_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then return -1 end
local last = redis.call('HGET', KEYS[1], 'last_reset_at')
if (not last) or string.sub(last, 1, 7) ~= ARGV[1] then
  redis.call('HSET', KEYS[1], 'monthly_conversation_count', 0, 'last_reset_at', ARGV[2])
  return 1
end
return 0
"""

INCREMENT_USAGE_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then return -1 end
return redis.call('HINCRBY', KEYS[1], 'monthly_conversation_count', 1)
"""

CREATE_IF_MISSING_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 1 then return 0 end
redis.call('HSET', KEYS[1], unpack(ARGV))
return 1
"""

INCREMENT_GLOBAL_KEY_USAGE_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then return -1 end
local last = redis.call('HGET', KEYS[1], 'last_reset_at')
if (not last) or string.sub(last, 1, 7) ~= ARGV[1] then
  redis.call('HSET', KEYS[1], 'current_usage', 0, 'last_reset_at', ARGV[2])
end
return redis.call('HINCRBY', KEYS[1], 'current_usage', 1)
"""


def _utc(dt: datetime) -> datetime:
    return dt.astimezone(timezone.utc) if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _to_hash(model: BaseModel) -> dict[str, Any]:
    """Flatten a pydantic model into Redis hash values (no None, no bools)."""
    redis_data = {}
    for k, v in model.model_dump(mode="json").items():
        # bool before int, bool is a subclass of int
        if v is None:
            redis_data[k] = ""
        elif isinstance(v, bool):
            redis_data[k] = "true" if v else "false"
        else:
            redis_data[k] = v
    return redis_data


def _from_hash(data: dict[str, str], nullable: Iterable[str] = ()) -> dict[str, Any]:
    decoded: dict[str, Any] = dict(data)
    for field in nullable:
        if decoded.get(field) == "":
            decoded[field] = None
    return decoded


def _redis_operation(operation: str) -> Callable:
    """Translate redis-py exceptions into storage errors and retry once on auth failures."""

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def translated(self: "RedisStorage", *args: Any, **kwargs: Any) -> Any:
            try:
                return await func(self, *args, **kwargs)
            except StorageError:
                raise
            except RedisError as e:
                self._handle_redis_error(operation, e)

        return with_credential_refresh(translated)

    return decorator


class RedisStorage(StorageBackend):
    def __init__(
        self,
        redis_client: aioredis.Redis,
        client_factory: Optional[Callable[[], aioredis.Redis]] = None,
    ):
        """
        Args:
            redis_client: Async Redis client created with ``decode_responses=True``
            client_factory: Builds a fresh client with current credentials; used by
                ``refresh_credentials`` after the server rejects our auth
        """
        self.redis_client = redis_client
        self._client_factory = client_factory

    def _handle_redis_error(self, operation: str, error: Exception) -> None:
        """Centralized error classification for Redis operations."""
        # AuthenticationError subclasses ConnectionError, check it first
        if isinstance(error, (AuthenticationError, AuthorizationError, NoPermissionError)):
            logger.error(f"Redis rejected credentials during {operation}: {error}")
            raise StoreAuthError(f"Store authentication failed during {operation}", operation=operation)
        elif isinstance(error, (RedisConnectionError, RedisTimeoutError)):
            logger.error(f"Redis connection failed during {operation}: {error}")
            raise StoreUnavailableError(f"Store unavailable during {operation}", operation=operation)
        else:
            logger.error(f"Redis error during {operation}: {error}")
            raise StorageError(f"Store error during {operation}", operation=operation)

    async def refresh_credentials(self) -> None:
        if self._client_factory is None:
            logger.warning("No Redis client factory configured, cannot refresh credentials")
            return
        old_client = self.redis_client
        self.redis_client = self._client_factory()
        logger.info("Redis client recreated with refreshed credentials")
        try:
            await old_client.aclose()
        except RedisError as e:
            logger.warning(f"Error closing stale Redis client: {e}")

    async def close(self) -> None:
        await self.redis_client.aclose()

    # Users

    async def _read_user(self, user_id: str) -> UserProfile:
        data = await self.redis_client.hgetall(f"user:{user_id}")  # type: ignore[misc]
        if not data:
            raise NotFoundError(f"User {user_id} not found", operation="get_user")
        return UserProfile.model_validate(data)

    async def _require_user_exists(self, user_id: str, operation: str) -> None:
        if not await self.redis_client.exists(f"user:{user_id}"):
            raise NotFoundError(f"User {user_id} not found", operation=operation)

    @_redis_operation("get_user")
    async def get_user(self, user_id: str) -> UserProfile:
        return await self._read_user(user_id)

    @_redis_operation("create_user")
    async def create_user_if_missing(self, profile: UserProfile) -> UserProfile:
        fields: list[Any] = []
        for k, v in _to_hash(profile).items():
            fields.extend([k, v])
        created = await self.redis_client.eval(CREATE_IF_MISSING_SCRIPT, 1, f"user:{profile.id}", *fields)  # type: ignore[misc]
        await self.redis_client.sadd(USERS_INDEX, profile.id)  # type: ignore[misc]
        if created == 1:
            logger.info(f"Created user profile {profile.id}")
        return await self._read_user(profile.id)

    @_redis_operation("list_users")
    async def list_users(self) -> list[UserProfile]:
        users = []
        for user_id in await self.redis_client.smembers(USERS_INDEX):  # type: ignore[misc]
            data = await self.redis_client.hgetall(f"user:{user_id}")  # type: ignore[misc]
            if data:
                users.append(UserProfile.model_validate(data))
        users.sort(key=lambda u: u.created_at, reverse=True)
        return users

    @_redis_operation("delete_user")
    async def delete_user(self, user_id: str) -> None:
        await self._require_user_exists(user_id, "delete_user")
        for session_id in await self.redis_client.zrange(f"user:{user_id}:sessions", 0, -1):
            await self._delete_session(session_id)
        await self._clear_stats(user_id)
        await self.redis_client.delete(
            f"user:{user_id}",
            f"user:{user_id}:sessions",
            f"subscription:{user_id}",
            f"api_settings:{user_id}",
            f"model_settings:{user_id}",
        )
        await self.redis_client.srem(USERS_INDEX, user_id)  # type: ignore[misc]
        logger.info(f"Deleted user {user_id} and owned records")

    @_redis_operation("set_user_role")
    async def set_user_role(self, user_id: str, role: UserRole) -> UserProfile:
        await self._require_user_exists(user_id, "set_user_role")
        await self.redis_client.hset(f"user:{user_id}", mapping={"role": role.value, "updated_at": utcnow().isoformat()})  # type: ignore[misc]
        return await self._read_user(user_id)

    @_redis_operation("set_user_tier")
    async def set_user_tier(self, user_id: str, tier: UserTier) -> UserProfile:
        await self._require_user_exists(user_id, "set_user_tier")
        await self.redis_client.hset(f"user:{user_id}", mapping={"current_tier": tier.value, "updated_at": utcnow().isoformat()})  # type: ignore[misc]
        return await self._read_user(user_id)

    # Monthly usage

    @_redis_operation("rollover_usage")
    async def rollover_usage_if_stale(self, user_id: str, now: datetime) -> UserProfile:
        now = _utc(now)
        result = await self.redis_client.eval(  # type: ignore[misc]
            ROLLOVER_USAGE_SCRIPT, 1, f"user:{user_id}", now.strftime("%Y-%m"), now.isoformat()
        )
        if result == -1:
            raise NotFoundError(f"User {user_id} not found", operation="rollover_usage")
        if result == 1:
            logger.info(f"Monthly usage rollover for user {user_id}")
        return await self._read_user(user_id)

    @_redis_operation("increment_usage")
    async def increment_usage(self, user_id: str) -> int:
        result = await self.redis_client.eval(INCREMENT_USAGE_SCRIPT, 1, f"user:{user_id}")  # type: ignore[misc]
        if result == -1:
            raise NotFoundError(f"User {user_id} not found", operation="increment_usage")
        return int(result)

    @_redis_operation("reset_usage")
    async def reset_usage(self, user_id: str, now: datetime) -> UserProfile:
        await self._require_user_exists(user_id, "reset_usage")
        await self.redis_client.hset(  # type: ignore[misc]
            f"user:{user_id}",
            mapping={"monthly_conversation_count": 0, "last_reset_at": _utc(now).isoformat()},
        )
        return await self._read_user(user_id)

    # Subscriptions

    @_redis_operation("get_subscription")
    async def get_subscription(self, user_id: str) -> Optional[Subscription]:
        data = await self.redis_client.hgetall(f"subscription:{user_id}")  # type: ignore[misc]
        if not data:
            return None
        return Subscription.model_validate(_from_hash(data, nullable=("expires_at",)))

    @_redis_operation("save_subscription")
    async def save_subscription(self, subscription: Subscription) -> None:
        await self.redis_client.hset(f"subscription:{subscription.user_id}", mapping=_to_hash(subscription))  # type: ignore[misc]

    # Chat sessions and turns

    @_redis_operation("save_chat_session")
    async def save_chat_session(self, session: ChatSession) -> None:
        await self.redis_client.set(f"chat_session:{session.id}", session.model_dump_json())
        await self.redis_client.zadd(f"user:{session.user_id}:sessions", {session.id: session.updated_at.timestamp()})
        await self.redis_client.sadd(CHAT_SESSIONS_INDEX, session.id)  # type: ignore[misc]

    async def _read_chat_session(self, session_id: str) -> ChatSession:
        raw = await self.redis_client.get(f"chat_session:{session_id}")
        if raw is None:
            raise NotFoundError(f"Chat session {session_id} not found", operation="get_chat_session")
        return ChatSession.model_validate_json(raw)

    @_redis_operation("get_chat_session")
    async def get_chat_session(self, session_id: str) -> ChatSession:
        return await self._read_chat_session(session_id)

    @_redis_operation("list_chat_sessions")
    async def list_chat_sessions(self, user_id: str) -> list[ChatSession]:
        sessions = []
        for session_id in await self.redis_client.zrevrange(f"user:{user_id}:sessions", 0, -1):
            raw = await self.redis_client.get(f"chat_session:{session_id}")
            if raw is not None:
                sessions.append(ChatSession.model_validate_json(raw))
        return sessions

    async def _delete_session(self, session_id: str) -> None:
        raw = await self.redis_client.get(f"chat_session:{session_id}")
        turn_ids = await self.redis_client.lrange(f"chat_session:{session_id}:turns", 0, -1)  # type: ignore[misc]
        if turn_ids:
            await self.redis_client.delete(*[f"turn:{turn_id}" for turn_id in turn_ids])
            await self.redis_client.srem(TURNS_INDEX, *turn_ids)  # type: ignore[misc]
        await self.redis_client.delete(f"chat_session:{session_id}", f"chat_session:{session_id}:turns")
        await self.redis_client.srem(CHAT_SESSIONS_INDEX, session_id)  # type: ignore[misc]
        if raw is not None:
            session = ChatSession.model_validate_json(raw)
            await self.redis_client.zrem(f"user:{session.user_id}:sessions", session_id)

    @_redis_operation("delete_chat_session")
    async def delete_chat_session(self, session_id: str) -> None:
        if not await self.redis_client.exists(f"chat_session:{session_id}"):
            raise NotFoundError(f"Chat session {session_id} not found", operation="delete_chat_session")
        await self._delete_session(session_id)

    @_redis_operation("save_turn")
    async def save_turn(self, turn: ConversationTurn) -> None:
        await self.redis_client.set(f"turn:{turn.id}", turn.model_dump_json())
        is_new = await self.redis_client.sadd(TURNS_INDEX, turn.id)  # type: ignore[misc]
        if is_new:
            await self.redis_client.rpush(f"chat_session:{turn.session_id}:turns", turn.id)  # type: ignore[misc]

    @_redis_operation("get_turn")
    async def get_turn(self, turn_id: str) -> ConversationTurn:
        raw = await self.redis_client.get(f"turn:{turn_id}")
        if raw is None:
            raise NotFoundError(f"Turn {turn_id} not found", operation="get_turn")
        return ConversationTurn.model_validate_json(raw)

    @_redis_operation("list_turns")
    async def list_turns(self, session_id: str) -> list[ConversationTurn]:
        turns = []
        for turn_id in await self.redis_client.lrange(f"chat_session:{session_id}:turns", 0, -1):  # type: ignore[misc]
            raw = await self.redis_client.get(f"turn:{turn_id}")
            if raw is not None:
                turns.append(ConversationTurn.model_validate_json(raw))
        return turns

    @_redis_operation("count_chat_sessions")
    async def count_chat_sessions(self) -> int:
        return int(await self.redis_client.scard(CHAT_SESSIONS_INDEX))  # type: ignore[misc]

    @_redis_operation("count_turns")
    async def count_turns(self) -> int:
        return int(await self.redis_client.scard(TURNS_INDEX))  # type: ignore[misc]

    # Provider statistics

    @_redis_operation("increment_provider_stats")
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
        key = f"stats:{user_id}:{provider}"
        await self.redis_client.hsetnx(key, "provider", provider)  # type: ignore[misc]
        for field, amount in (("total_responses", responses), ("total_selections", selections), ("error_count", errors)):
            if amount:
                await self.redis_client.hincrby(key, field, amount)  # type: ignore[misc]
        if last_used is not None:
            await self.redis_client.hset(key, "last_used", _utc(last_used).isoformat())  # type: ignore[misc]
        await self.redis_client.sadd(f"stats:{user_id}", provider)  # type: ignore[misc]
        await self.redis_client.sadd(STATS_USERS_INDEX, user_id)  # type: ignore[misc]

    async def _read_stats(self, user_id: str) -> list[ProviderStatistic]:
        stats = []
        for provider in await self.redis_client.smembers(f"stats:{user_id}"):  # type: ignore[misc]
            data = await self.redis_client.hgetall(f"stats:{user_id}:{provider}")  # type: ignore[misc]
            if data:
                stats.append(ProviderStatistic.model_validate(_from_hash(data, nullable=("last_used",))))
        return stats

    async def _clear_stats(self, user_id: str) -> None:
        providers = await self.redis_client.smembers(f"stats:{user_id}")  # type: ignore[misc]
        if providers:
            await self.redis_client.delete(*[f"stats:{user_id}:{provider}" for provider in providers])
        await self.redis_client.delete(f"stats:{user_id}")
        await self.redis_client.srem(STATS_USERS_INDEX, user_id)  # type: ignore[misc]

    @_redis_operation("get_provider_stats")
    async def get_provider_stats(self, user_id: str) -> list[ProviderStatistic]:
        return await self._read_stats(user_id)

    @_redis_operation("list_all_provider_stats")
    async def list_all_provider_stats(self) -> list[ProviderStatistic]:
        stats = []
        for user_id in await self.redis_client.smembers(STATS_USERS_INDEX):  # type: ignore[misc]
            stats.extend(await self._read_stats(user_id))
        return stats

    @_redis_operation("clear_provider_stats")
    async def clear_provider_stats(self, user_id: str) -> None:
        await self._clear_stats(user_id)

    # Settings

    @_redis_operation("get_api_settings")
    async def get_api_settings(self, user_id: str) -> ApiSettings:
        data = await self.redis_client.hgetall(f"api_settings:{user_id}")  # type: ignore[misc]
        return ApiSettings.model_validate(data or {})

    @_redis_operation("save_api_settings")
    async def save_api_settings(self, user_id: str, settings: ApiSettings) -> None:
        key = f"api_settings:{user_id}"
        mapping = {k: v for k, v in settings.model_dump().items() if v}
        await self.redis_client.delete(key)
        if mapping:
            await self.redis_client.hset(key, mapping=mapping)  # type: ignore[misc]

    @_redis_operation("get_model_settings")
    async def get_model_settings(self, user_id: str) -> ModelSettings:
        raw = await self.redis_client.get(f"model_settings:{user_id}")
        if raw is None:
            return ModelSettings()
        return ModelSettings.model_validate_json(raw)

    @_redis_operation("save_model_settings")
    async def save_model_settings(self, user_id: str, settings: ModelSettings) -> None:
        await self.redis_client.set(f"model_settings:{user_id}", settings.model_dump_json())

    # Global API keys

    @staticmethod
    def _encode_global_key(key: GlobalApiKey) -> dict[str, Any]:
        data = _to_hash(key)
        data["tier_access"] = ",".join(tier.value for tier in key.tier_access)
        return data

    @staticmethod
    def _decode_global_key(data: dict[str, str]) -> GlobalApiKey:
        decoded = _from_hash(data, nullable=("usage_limit",))
        decoded["tier_access"] = [t for t in data.get("tier_access", "").split(",") if t]
        return GlobalApiKey.model_validate(decoded)

    @_redis_operation("list_global_keys")
    async def list_global_keys(self) -> list[GlobalApiKey]:
        keys = []
        for key_id in await self.redis_client.smembers(GLOBAL_KEYS_INDEX):  # type: ignore[misc]
            data = await self.redis_client.hgetall(f"global_key:{key_id}")  # type: ignore[misc]
            if data:
                keys.append(self._decode_global_key(data))
        keys.sort(key=lambda k: k.created_at)
        return keys

    @_redis_operation("get_global_key")
    async def get_global_key(self, key_id: str) -> GlobalApiKey:
        data = await self.redis_client.hgetall(f"global_key:{key_id}")  # type: ignore[misc]
        if not data:
            raise NotFoundError(f"Global API key {key_id} not found", operation="get_global_key")
        return self._decode_global_key(data)

    @_redis_operation("save_global_key")
    async def save_global_key(self, key: GlobalApiKey) -> None:
        await self.redis_client.hset(f"global_key:{key.id}", mapping=self._encode_global_key(key))  # type: ignore[misc]
        await self.redis_client.sadd(GLOBAL_KEYS_INDEX, key.id)  # type: ignore[misc]

    @_redis_operation("delete_global_key")
    async def delete_global_key(self, key_id: str) -> None:
        deleted = await self.redis_client.delete(f"global_key:{key_id}")
        await self.redis_client.srem(GLOBAL_KEYS_INDEX, key_id)  # type: ignore[misc]
        if not deleted:
            raise NotFoundError(f"Global API key {key_id} not found", operation="delete_global_key")

    @_redis_operation("increment_global_key_usage")
    async def increment_global_key_usage(self, key_id: str, now: datetime) -> int:
        now = _utc(now)
        result = await self.redis_client.eval(  # type: ignore[misc]
            INCREMENT_GLOBAL_KEY_USAGE_SCRIPT, 1, f"global_key:{key_id}", now.strftime("%Y-%m"), now.isoformat()
        )
        if result == -1:
            raise NotFoundError(f"Global API key {key_id} not found", operation="increment_global_key_usage")
        return int(result)

    @_redis_operation("reset_global_key_usage")
    async def reset_global_key_usage(self, key_id: str, now: datetime) -> None:
        if not await self.redis_client.exists(f"global_key:{key_id}"):
            raise NotFoundError(f"Global API key {key_id} not found", operation="reset_global_key_usage")
        await self.redis_client.hset(  # type: ignore[misc]
            f"global_key:{key_id}", mapping={"current_usage": 0, "last_reset_at": _utc(now).isoformat()}
        )

    # Admin

    @_redis_operation("log_admin_activity")
    async def log_admin_activity(self, activity: AdminActivity) -> None:
        await self.redis_client.lpush(ADMIN_ACTIVITY_KEY, activity.model_dump_json())  # type: ignore[misc]
        await self.redis_client.ltrim(ADMIN_ACTIVITY_KEY, 0, ADMIN_ACTIVITY_MAX_ENTRIES - 1)  # type: ignore[misc]

    @_redis_operation("list_admin_activity")
    async def list_admin_activity(self, limit: int = 100) -> list[AdminActivity]:
        entries = await self.redis_client.lrange(ADMIN_ACTIVITY_KEY, 0, limit - 1)  # type: ignore[misc]
        return [AdminActivity.model_validate_json(entry) for entry in entries]

    @_redis_operation("get_admin_settings")
    async def get_admin_settings(self) -> dict[str, str]:
        return await self.redis_client.hgetall(ADMIN_SETTINGS_KEY)  # type: ignore[misc]

    @_redis_operation("set_admin_setting")
    async def set_admin_setting(self, key: str, value: str) -> None:
        await self.redis_client.hset(ADMIN_SETTINGS_KEY, key, value)  # type: ignore[misc]
