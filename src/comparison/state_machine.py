"""
Turn and response lifecycles as explicit state machines.

Turn:      collecting --all_settled--> complete --select--> resolved --select--> resolved
Response:  pending --> success | error   (exactly once)
"""
from enum import Enum
from typing import Optional

from .models import ConversationTurn, ProviderResponse, ResponseState, TurnState

CANCELLED_ERROR_CODE = "cancelled"


class TurnEvent(str, Enum):
    ALL_SETTLED = "all_settled"
    SELECT = "select"


class InvalidTransitionError(ValueError):
    pass


class SelectionError(ValueError):
    pass


TURN_TRANSITIONS: dict[tuple[TurnState, TurnEvent], TurnState] = {
    (TurnState.COLLECTING, TurnEvent.ALL_SETTLED): TurnState.COMPLETE,
    (TurnState.COMPLETE, TurnEvent.SELECT): TurnState.RESOLVED,
    (TurnState.RESOLVED, TurnEvent.SELECT): TurnState.RESOLVED,
}


def next_turn_state(state: TurnState, event: TurnEvent) -> TurnState:
    try:
        return TURN_TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransitionError(f"Cannot apply {event.value} to a turn in state {state.value}")


def settle_response(
    response: ProviderResponse,
    outcome: ResponseState,
    *,
    content: str = "",
    error: Optional[str] = None,
    error_code: Optional[str] = None,
    latency_ms: Optional[int] = None,
    used_global_key: bool = False,
) -> ProviderResponse:
    """Move a pending response to its final state. A response settles exactly once."""
    if outcome == ResponseState.PENDING:
        raise InvalidTransitionError("A response cannot settle to pending")
    if response.state != ResponseState.PENDING:
        raise InvalidTransitionError(
            f"Response from {response.provider} already settled as {response.state.value}"
        )
    response.state = outcome
    response.content = content if outcome == ResponseState.SUCCESS else ""
    response.error = error if outcome == ResponseState.ERROR else None
    response.error_code = error_code if outcome == ResponseState.ERROR else None
    response.latency_ms = latency_ms
    response.used_global_key = used_global_key
    return response


def complete_turn(turn: ConversationTurn) -> ConversationTurn:
    if not turn.all_settled:
        pending = [r.provider for r in turn.responses if not r.is_settled]
        raise InvalidTransitionError(f"Turn {turn.id} still has pending responses: {pending}")
    turn.state = next_turn_state(turn.state, TurnEvent.ALL_SETTLED)
    return turn


def cancel_pending(turn: ConversationTurn) -> list[ProviderResponse]:
    """Settle every still-pending response as cancelled and complete the turn."""
    cancelled = []
    for response in turn.responses:
        if not response.is_settled:
            settle_response(
                response,
                ResponseState.ERROR,
                error="Request was cancelled",
                error_code=CANCELLED_ERROR_CODE,
            )
            cancelled.append(response)
    if turn.state == TurnState.COLLECTING:
        complete_turn(turn)
    return cancelled


def select_response(turn: ConversationTurn, provider: str) -> bool:
    """
    Mark ``provider``'s response as the selected one.

    Returns:
        True the first time ``provider`` is selected in this turn, False on any
        later selection of it, including switching back to it

    Raises:
        InvalidTransitionError: If the turn is still collecting responses
        SelectionError: If the provider has no successful response in this turn
    """
    new_state = next_turn_state(turn.state, TurnEvent.SELECT)

    response = turn.get_response(provider)
    if response is None:
        raise SelectionError(f"Provider {provider} has no response in turn {turn.id}")
    if response.state != ResponseState.SUCCESS:
        raise SelectionError(f"Cannot select a {response.state.value} response from {provider}")

    first_selection = provider not in turn.credited_providers
    for candidate in turn.responses:
        candidate.selected = candidate.provider == provider
    turn.selected_provider = provider
    turn.state = new_state
    if first_selection:
        turn.credited_providers.append(provider)
    return first_selection
