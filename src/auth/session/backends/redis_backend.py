import os
from typing import Generic, Optional, Type
from fastapi_sessions.backends.session_backend import (
    BackendError,
    SessionBackend,
    SessionModel,
)
import redis.asyncio as aioredis
from redis import RedisError, ConnectionError as RedisConnectionError
from pydantic import ValidationError
import logging
from fastapi_sessions.frontends.session_frontend import ID

logger = logging.getLogger('modelmix.session.redis_backend')

DEFAULT_SESSION_TTL_SECONDS = 7 * 24 * 3600


def session_ttl_seconds() -> int:
    return int(os.getenv("SESSION_TTL_SECONDS", DEFAULT_SESSION_TTL_SECONDS))


class RedisBackend(Generic[ID, SessionModel], SessionBackend[ID, SessionModel]):
    """
    Stores each session as a Redis hash under ``session:{id}`` with a sliding TTL.

    Hash values are strings: None is written as an empty string, and empty
    strings are dropped on read so fields fall back to their defaults.
    """

    def __init__(self, redis_client: aioredis.Redis, session_model: Type[SessionModel], ttl_seconds: int | None = None):
        self.redis_client = redis_client
        self.session_model = session_model
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else session_ttl_seconds()

    @staticmethod
    def _key(session_id: ID) -> str:
        return f"session:{session_id}"

    def _encode(self, data: SessionModel) -> dict[str, str]:
        return {k: "" if v is None else str(v) for k, v in data.model_dump(mode="json").items()}

    def _decode(self, session_id: ID, raw: dict[str, str]) -> SessionModel:
        try:
            return self.session_model.model_validate({k: v for k, v in raw.items() if v != ""})
        except ValidationError as e:
            logger.error(f"Invalid session data found for session {session_id}: {e}")
            raise BackendError("Corrupted session data")

    def _handle_redis_error(self, operation: str, session_id: ID, error: Exception) -> None:
        """Centralized error handling for Redis operations."""
        if isinstance(error, RedisConnectionError):
            logger.error(f"Redis connection failed during {operation} for session {session_id}: {error}")
            raise BackendError(f"Database connection error during {operation}")
        logger.error(f"Redis error during {operation} for session {session_id}: {error}")
        raise BackendError(f"Database error during {operation}")

    async def _write(self, session_id: ID, data: SessionModel) -> None:
        key = self._key(session_id)
        async with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.delete(key)
            pipe.hset(key, mapping=self._encode(data))
            pipe.expire(key, self.ttl_seconds)
            await pipe.execute()

    async def create(self, session_id: ID, data: SessionModel) -> None:
        try:
            await self._write(session_id, data)
            logger.debug(f"Session {session_id} created")
        except RedisError as e:
            self._handle_redis_error("session creation", session_id, e)

    async def read(self, session_id: ID) -> Optional[SessionModel]:
        try:
            raw = await self.redis_client.hgetall(self._key(session_id))  # type: ignore[misc]
            if raw:
                await self.redis_client.expire(self._key(session_id), self.ttl_seconds)
        except RedisError as e:
            self._handle_redis_error("session read", session_id, e)
            raise
        if not raw:
            return None
        return self._decode(session_id, raw)

    async def update(self, session_id: ID, data: SessionModel) -> None:
        try:
            if not await self.redis_client.exists(self._key(session_id)):
                raise BackendError("Session does not exist, cannot update")
            await self._write(session_id, data)
            logger.debug(f"Session {session_id} updated")
        except RedisError as e:
            self._handle_redis_error("session update", session_id, e)

    async def delete(self, session_id: ID) -> None:
        try:
            deleted_count = await self.redis_client.delete(self._key(session_id))
        except RedisError as e:
            self._handle_redis_error("session deletion", session_id, e)
            raise
        if deleted_count == 0:
            raise BackendError("Session does not exist, cannot delete")
        logger.debug(f"Session {session_id} deleted")
