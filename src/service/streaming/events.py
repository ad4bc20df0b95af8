from typing import Any, Dict, Literal, Union, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from abc import ABC, abstractmethod
import logging
import json

from comparison.models import ProviderResponse

logger = logging.getLogger('modelmix.service.streaming')


class BaseStreamEvent(BaseModel, ABC):
    """Base class for all stream events"""
    timestamp: float = Field(default_factory=lambda: datetime.now().timestamp())

    @abstractmethod
    def to_sse_data(self) -> str:
        """Convert event to SSE data format"""
        pass


class ComparisonStartEvent(BaseStreamEvent):
    """Event fired once the turn is accepted and providers are being called"""
    type: Literal["comparison_start"] = "comparison_start"
    session_id: str
    turn_id: str
    providers: list[Dict[str, str]] = Field(description="provider and display_name for every slot, in order")

    def to_sse_data(self) -> str:
        return f"data: {self.model_dump_json()}\n\n"


class ProviderResponseEvent(BaseStreamEvent):
    """Event fired each time one provider's response settles"""
    type: Literal["provider_response"] = "provider_response"
    turn_id: str
    response: ProviderResponse

    def to_sse_data(self) -> str:
        return f"data: {self.model_dump_json()}\n\n"


class ComparisonCompleteEvent(BaseStreamEvent):
    """Event fired when every slot has settled"""
    type: Literal["comparison_complete"] = "comparison_complete"
    turn_id: str
    state: str
    successful: int
    failed: int
    cancelled: bool = False

    def to_sse_data(self) -> str:
        return f"data: {self.model_dump_json()}\n\n"


class ErrorEvent(BaseStreamEvent):
    """Event fired when the comparison as a whole fails"""
    type: Literal["error"] = "error"
    error_message: str = Field(description="Human readable error message")
    turn_id: Optional[str] = Field(default=None, description="The turn the error is related to")
    error_code: Optional[str] = Field(default=None, description="Machine readable error code")
    details: Optional[Dict[str, Any]] = Field(default=None, description="Additional error details")

    def to_sse_data(self) -> str:
        return f"data: {self.model_dump_json()}\n\n"


class StreamEndEvent(BaseStreamEvent):
    """Event fired when the stream ends"""
    type: Literal["stream_end"] = "stream_end"

    def to_sse_data(self) -> str:
        return "data: [DONE]\n\n"


StreamEvent = Union[
    ComparisonStartEvent,
    ProviderResponseEvent,
    ComparisonCompleteEvent,
    ErrorEvent,
    StreamEndEvent,
]


class StreamEventFactory:
    """Factory class for creating stream events"""

    @staticmethod
    def _log_event(event: BaseStreamEvent, event_type: str, details: Optional[Dict[str, Any]] = None):
        """
        Log an event in a single, well-formatted log entry

        Args:
            event: The event object to log
            event_type: The event type identifier (e.g., "PROVIDER_RESPONSE")
            details: Key details to display in the header line
        """
        if not logger.isEnabledFor(logging.DEBUG):
            logger.info(f"EVENT [{event_type}] " + ", ".join(f"{k}={v}" for k, v in (details or {}).items()))
            return

        data = event.to_sse_data().strip()
        json_part = data[6:] if data.startswith("data: ") else data
        if json_part != "[DONE]":
            data = "data: " + json.dumps(json.loads(json_part), indent=2)
        header = f"======== EVENT [{event_type}] ========"
        logger.debug("\n".join([
            header,
            ", ".join(f"{k}={v}" for k, v in (details or {}).items()),
            data,
            "=" * len(header),
        ]))

    @staticmethod
    def comparison_start(session_id: str, turn_id: str, providers: list[Dict[str, str]]) -> ComparisonStartEvent:
        event = ComparisonStartEvent(session_id=session_id, turn_id=turn_id, providers=providers)
        StreamEventFactory._log_event(
            event,
            "COMPARISON_START",
            {"session_id": session_id, "turn_id": turn_id, "providers": len(providers)}
        )
        return event

    @staticmethod
    def provider_response(turn_id: str, response: ProviderResponse) -> ProviderResponseEvent:
        event = ProviderResponseEvent(turn_id=turn_id, response=response)
        StreamEventFactory._log_event(
            event,
            "PROVIDER_RESPONSE",
            {
                "turn_id": turn_id,
                "provider": response.provider,
                "state": response.state.value,
                "error_code": response.error_code,
                "latency_ms": response.latency_ms,
            }
        )
        return event

    @staticmethod
    def comparison_complete(turn_id: str, state: str, successful: int, failed: int, cancelled: bool = False) -> ComparisonCompleteEvent:
        event = ComparisonCompleteEvent(
            turn_id=turn_id,
            state=state,
            successful=successful,
            failed=failed,
            cancelled=cancelled,
        )
        StreamEventFactory._log_event(
            event,
            "COMPARISON_COMPLETE",
            {"turn_id": turn_id, "successful": successful, "failed": failed, "cancelled": cancelled}
        )
        return event

    @staticmethod
    def error(
        error_message: str,
        error_code: Optional[str] = None,
        turn_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> ErrorEvent:
        event = ErrorEvent(
            error_message=error_message,
            turn_id=turn_id,
            error_code=error_code,
            details=details
        )
        StreamEventFactory._log_event(event, "ERROR", {"error_code": error_code, "turn_id": turn_id})
        return event

    @staticmethod
    def stream_end() -> StreamEndEvent:
        event = StreamEndEvent()
        StreamEventFactory._log_event(event, "STREAM_END", {"message": "Stream completed"})
        return event
