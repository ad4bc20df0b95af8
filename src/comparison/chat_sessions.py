import logging
from datetime import datetime
from typing import Callable, Optional

from auth.usage_tracking.models import utcnow
from storage.base import StorageBackend
from storage.errors import NotFoundError

from .models import ChatSession, ConversationTurn, HistoryMessage, ResponseState

logger = logging.getLogger('modelmix.comparison.chat_sessions')

DEFAULT_TITLE = "New Chat"
TITLE_MAX_LENGTH = 30


def title_from_prompt(prompt: str) -> str:
    prompt = prompt.strip()
    if len(prompt) <= TITLE_MAX_LENGTH:
        return prompt or DEFAULT_TITLE
    return prompt[:TITLE_MAX_LENGTH] + "..."


def history_from_turns(turns: list[ConversationTurn]) -> list[HistoryMessage]:
    """One user message per turn, followed by the selected answer when there is one."""
    history = []
    for turn in turns:
        history.append(HistoryMessage(role="user", content=turn.user_message, images=turn.images))
        selected = turn.selected_response()
        if selected is not None and selected.state == ResponseState.SUCCESS:
            history.append(HistoryMessage(role="assistant", content=selected.content, provider=selected.provider))
    return history


class ChatSessionService:
    def __init__(self, storage: StorageBackend, clock: Callable[[], datetime] = utcnow):
        self.storage = storage
        self.clock = clock

    async def create_session(self, user_id: str, title: Optional[str] = None) -> ChatSession:
        now = self.clock()
        session = ChatSession(user_id=user_id, title=title or DEFAULT_TITLE, created_at=now, updated_at=now)
        await self.storage.save_chat_session(session)
        logger.info(f"Created chat session {session.id} for user {user_id}")
        return session

    async def list_sessions(self, user_id: str) -> list[ChatSession]:
        return await self.storage.list_chat_sessions(user_id)

    async def get_session(self, user_id: str, session_id: str) -> ChatSession:
        """
        Raises:
            NotFoundError: If the session does not exist or is owned by another user
        """
        session = await self.storage.get_chat_session(session_id)
        if session.user_id != user_id:
            raise NotFoundError(f"Chat session {session_id} not found", operation="get_chat_session")
        return session

    async def rename_session(self, user_id: str, session_id: str, title: str) -> ChatSession:
        session = await self.get_session(user_id, session_id)
        session.title = title.strip() or DEFAULT_TITLE
        session.updated_at = self.clock()
        await self.storage.save_chat_session(session)
        return session

    async def delete_session(self, user_id: str, session_id: str) -> None:
        await self.get_session(user_id, session_id)
        await self.storage.delete_chat_session(session_id)
        logger.info(f"Deleted chat session {session_id}")

    async def list_turns(self, user_id: str, session_id: str) -> list[ConversationTurn]:
        await self.get_session(user_id, session_id)
        return await self.storage.list_turns(session_id)

    async def load_history(self, user_id: str, session_id: str) -> list[HistoryMessage]:
        return history_from_turns(await self.list_turns(user_id, session_id))

    async def record_turn(self, session: ChatSession, turn: ConversationTurn, is_first_turn: bool) -> ChatSession:
        """Persist a finished turn and bump the session, titling it from its first prompt."""
        await self.storage.save_turn(turn)
        if is_first_turn and session.title == DEFAULT_TITLE:
            session.title = title_from_prompt(turn.user_message)
        session.updated_at = self.clock()
        await self.storage.save_chat_session(session)
        return session
