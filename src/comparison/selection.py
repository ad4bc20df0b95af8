import logging
from datetime import datetime
from typing import Callable

from auth.usage_tracking.models import utcnow
from storage.base import StorageBackend
from storage.errors import NotFoundError

from .models import ConversationTurn, ResponseState
from .state_machine import select_response

logger = logging.getLogger('modelmix.comparison.selection')


class SelectionRecorder:
    """
    Records which response a user picked and keeps per-provider statistics.

    Counters only ever go up, and each provider is credited at most once per
    turn: switching the selection to another provider credits the new one
    without debiting the old one, and switching back credits nothing.
    """

    def __init__(self, storage: StorageBackend, clock: Callable[[], datetime] = utcnow):
        self.storage = storage
        self.clock = clock

    async def record_response_settled(self, user_id: str, provider: str, outcome: ResponseState) -> None:
        """Count one settled response; errors also count towards the provider's error total."""
        await self.storage.increment_provider_stats(
            user_id,
            provider,
            responses=1,
            errors=1 if outcome == ResponseState.ERROR else 0,
            last_used=self.clock(),
        )

    async def record_selection(self, user_id: str, turn_id: str, provider: str) -> ConversationTurn:
        """
        Select ``provider``'s response in a turn owned by ``user_id``.

        Raises:
            NotFoundError: If the turn does not exist or belongs to someone else
            InvalidTransitionError: If the turn is still collecting responses
            SelectionError: If the provider has no successful response in the turn
        """
        turn = await self.storage.get_turn(turn_id)
        if turn.user_id != user_id:
            raise NotFoundError(f"Turn {turn_id} not found", operation="record_selection")

        first_selection = select_response(turn, provider)
        await self.storage.save_turn(turn)

        if first_selection:
            await self.storage.increment_provider_stats(user_id, provider, selections=1, last_used=self.clock())
            logger.info(f"User {user_id} selected {provider} for turn {turn_id}")
        else:
            logger.debug(f"User {user_id} re-selected {provider} for turn {turn_id}, already credited")
        return turn
