import pytest

from comparison.models import ConversationTurn, ProviderResponse, ResponseState, TurnState
from comparison.state_machine import (
    CANCELLED_ERROR_CODE,
    InvalidTransitionError,
    SelectionError,
    cancel_pending,
    complete_turn,
    select_response,
    settle_response,
)


def make_turn(*providers: str) -> ConversationTurn:
    turn = ConversationTurn(session_id="s1", user_id="u1", user_message="hello")
    for provider in providers:
        turn.add_response(ProviderResponse(provider=provider, display_name=provider.title()))
    return turn


def settled_turn() -> ConversationTurn:
    turn = make_turn("openai", "gemini", "deepseek")
    settle_response(turn.responses[0], ResponseState.SUCCESS, content="A")
    settle_response(turn.responses[1], ResponseState.SUCCESS, content="B")
    settle_response(turn.responses[2], ResponseState.ERROR, error="boom", error_code="provider_error")
    return complete_turn(turn)


class TestSettleResponse:
    def test_settles_success(self):
        response = ProviderResponse(provider="openai", display_name="OpenAI")
        settle_response(response, ResponseState.SUCCESS, content="hi", latency_ms=12)
        assert response.state == ResponseState.SUCCESS
        assert response.content == "hi"
        assert response.error is None
        assert response.latency_ms == 12

    def test_error_carries_no_content(self):
        response = ProviderResponse(provider="openai", display_name="OpenAI")
        settle_response(response, ResponseState.ERROR, content="ignored", error="bad key", error_code="provider_http_error")
        assert response.content == ""
        assert response.error == "bad key"
        assert response.error_code == "provider_http_error"

    def test_settles_exactly_once(self):
        response = ProviderResponse(provider="openai", display_name="OpenAI")
        settle_response(response, ResponseState.SUCCESS, content="first")
        with pytest.raises(InvalidTransitionError):
            settle_response(response, ResponseState.ERROR, error="late")
        assert response.content == "first"

    def test_cannot_settle_to_pending(self):
        response = ProviderResponse(provider="openai", display_name="OpenAI")
        with pytest.raises(InvalidTransitionError):
            settle_response(response, ResponseState.PENDING)


class TestTurnLifecycle:
    def test_duplicate_provider_slot_rejected(self):
        turn = make_turn("openai")
        with pytest.raises(ValueError):
            turn.add_response(ProviderResponse(provider="openai", display_name="OpenAI"))

    def test_complete_requires_all_settled(self):
        turn = make_turn("openai", "gemini")
        settle_response(turn.responses[0], ResponseState.SUCCESS, content="A")
        with pytest.raises(InvalidTransitionError, match="pending"):
            complete_turn(turn)
        assert turn.state == TurnState.COLLECTING

    def test_complete_moves_to_complete(self):
        assert settled_turn().state == TurnState.COMPLETE

    def test_cancel_pending_settles_rest_as_cancelled(self):
        turn = make_turn("openai", "gemini")
        settle_response(turn.responses[0], ResponseState.SUCCESS, content="A")

        cancelled = cancel_pending(turn)

        assert [r.provider for r in cancelled] == ["gemini"]
        assert turn.responses[1].error_code == CANCELLED_ERROR_CODE
        assert turn.responses[0].content == "A"
        assert turn.state == TurnState.COMPLETE

    def test_cancel_pending_is_idempotent(self):
        turn = settled_turn()
        assert cancel_pending(turn) == []
        assert turn.state == TurnState.COMPLETE


class TestSelectResponse:
    def test_select_resolves_turn(self):
        turn = settled_turn()
        assert select_response(turn, "gemini") is True
        assert turn.state == TurnState.RESOLVED
        assert turn.selected_provider == "gemini"
        assert [r.selected for r in turn.responses] == [False, True, False]

    def test_reselect_same_is_noop(self):
        turn = settled_turn()
        select_response(turn, "openai")
        assert select_response(turn, "openai") is False
        assert turn.selected_provider == "openai"

    def test_change_selection_keeps_single_flag(self):
        turn = settled_turn()
        select_response(turn, "openai")
        assert select_response(turn, "gemini") is True
        assert sum(r.selected for r in turn.responses) == 1
        assert turn.selected_response().provider == "gemini"

    def test_switching_back_is_not_a_first_selection(self):
        turn = settled_turn()
        select_response(turn, "openai")
        select_response(turn, "gemini")
        assert select_response(turn, "openai") is False
        assert turn.selected_provider == "openai"
        assert turn.credited_providers == ["openai", "gemini"]

    def test_cannot_select_while_collecting(self):
        turn = make_turn("openai")
        with pytest.raises(InvalidTransitionError):
            select_response(turn, "openai")

    def test_cannot_select_error_response(self):
        turn = settled_turn()
        with pytest.raises(SelectionError):
            select_response(turn, "deepseek")
        assert turn.state == TurnState.COMPLETE

    def test_cannot_select_unknown_provider(self):
        with pytest.raises(SelectionError):
            select_response(settled_turn(), "mistral")
