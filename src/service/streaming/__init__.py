from .events import (
    StreamEvent,
    StreamEventFactory,
    ComparisonStartEvent,
    ProviderResponseEvent,
    ComparisonCompleteEvent,
    ErrorEvent,
    StreamEndEvent
)

__all__ = [
    "StreamEvent",
    "StreamEventFactory",
    "ComparisonStartEvent",
    "ProviderResponseEvent",
    "ComparisonCompleteEvent",
    "ErrorEvent",
    "StreamEndEvent",
]
