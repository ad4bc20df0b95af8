import uuid
from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field, computed_field

from auth.usage_tracking.models import utcnow


class ResponseState(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class TurnState(str, Enum):
    COLLECTING = "collecting"
    COMPLETE = "complete"
    RESOLVED = "resolved"


class HistoryMessage(BaseModel):
    """A prior message fed to providers as conversation context."""
    role: Literal["user", "assistant"]
    content: str
    images: list[str] = Field(default_factory=list)
    provider: Optional[str] = None


class ProviderResponse(BaseModel):
    """
    One provider's answer slot within a turn.

    A response starts ``pending`` and settles exactly once, to either
    ``success`` or ``error``. Settling goes through the turn state machine.
    """
    provider: str
    display_name: str
    content: str = ""
    state: ResponseState = ResponseState.PENDING
    error: Optional[str] = None
    error_code: Optional[str] = None
    selected: bool = False
    latency_ms: Optional[int] = None
    used_global_key: bool = False

    @property
    def is_settled(self) -> bool:
        return self.state != ResponseState.PENDING


class ConversationTurn(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    session_id: str
    user_id: str
    user_message: str
    images: list[str] = Field(default_factory=list)
    responses: list[ProviderResponse] = Field(default_factory=list)
    selected_provider: Optional[str] = None
    credited_providers: list[str] = Field(default_factory=list)
    state: TurnState = TurnState.COLLECTING
    created_at: datetime = Field(default_factory=utcnow)

    def get_response(self, provider: str) -> Optional[ProviderResponse]:
        for response in self.responses:
            if response.provider == provider:
                return response
        return None

    def add_response(self, response: ProviderResponse) -> None:
        if self.get_response(response.provider) is not None:
            raise ValueError(f"Turn {self.id} already has a response from provider {response.provider}")
        self.responses.append(response)

    @property
    def all_settled(self) -> bool:
        return all(response.is_settled for response in self.responses)

    def selected_response(self) -> Optional[ProviderResponse]:
        if self.selected_provider is None:
            return None
        return self.get_response(self.selected_provider)


class ProviderStatistic(BaseModel):
    provider: str
    total_responses: int = 0
    total_selections: int = 0
    error_count: int = 0
    last_used: Optional[datetime] = None

    @computed_field
    @property
    def selection_rate(self) -> float:
        if self.total_responses == 0:
            return 0.0
        return self.total_selections / self.total_responses

    @computed_field
    @property
    def error_rate(self) -> float:
        if self.total_responses == 0:
            return 0.0
        return self.error_count / self.total_responses


class ChatSession(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    title: str = "New Chat"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
