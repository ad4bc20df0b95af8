"""
Cancellation tokens for in-flight comparisons.

Every comparison runs under a token scoped to its chat session. Issuing a new
token for a session cancels the previous one, so a new prompt supersedes the
one still streaming. Stop requests and client disconnects cancel the current
token explicitly.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

logger = logging.getLogger('modelmix.cancellation')


class CancellationToken:
    def __init__(self, scope_id: str):
        self.scope_id = scope_id
        self.created_at = datetime.now()
        self.reason: Optional[str] = None
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class CancellationManager:
    """
    Tracks the current cancellation token per scope (chat session).

    Safe for concurrent use from multiple request handlers.
    """

    def __init__(self):
        self._tokens: dict[str, CancellationToken] = {}
        self._lock = asyncio.Lock()

    async def issue_token(self, scope_id: str) -> CancellationToken:
        """
        Create the token for a new comparison, cancelling any previous one.

        Args:
            scope_id: The chat session id

        Returns:
            The fresh token
        """
        async with self._lock:
            previous = self._tokens.get(scope_id)
            if previous is not None and not previous.cancelled:
                previous.cancel("superseded")
                logger.info(f"Superseded in-flight comparison for session: {scope_id}")
            token = CancellationToken(scope_id)
            self._tokens[scope_id] = token
            return token

    async def request_cancellation(self, scope_id: str, reason: str = "stop_requested") -> bool:
        """
        Cancel the in-flight comparison for a scope.

        Returns:
            True if there was an active token to cancel
        """
        async with self._lock:
            token = self._tokens.get(scope_id)
            if token is None or token.cancelled:
                return False
            token.cancel(reason)
            logger.info(f"Cancellation requested for session: {scope_id} ({reason})")
            return True

    async def release(self, token: CancellationToken) -> None:
        """Forget a finished comparison's token, unless a newer one has replaced it."""
        async with self._lock:
            if self._tokens.get(token.scope_id) is token:
                del self._tokens[token.scope_id]

    async def cleanup_old_flags(self, max_age_minutes: int = 10) -> int:
        """
        Remove stale tokens left behind by abandoned comparisons.

        Should be called periodically (e.g., every few minutes).

        Returns:
            Number of tokens removed
        """
        async with self._lock:
            cutoff = datetime.now() - timedelta(minutes=max_age_minutes)
            to_remove = [sid for sid, token in self._tokens.items() if token.created_at < cutoff]
            for sid in to_remove:
                self._tokens.pop(sid).cancel("expired")

            if to_remove:
                logger.info(f"Cleaned up {len(to_remove)} stale cancellation tokens")

            return len(to_remove)

    async def get_stats(self) -> dict:
        async with self._lock:
            created = [token.created_at for token in self._tokens.values()]
            return {
                "tracked_tokens": len(self._tokens),
                "cancelled_tokens": sum(1 for token in self._tokens.values() if token.cancelled),
                "session_ids": list(self._tokens.keys()),
                "oldest_token": min(created) if created else None,
                "newest_token": max(created) if created else None,
            }
