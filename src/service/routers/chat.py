from fastapi import APIRouter, Request, HTTPException, Depends, status
from fastapi.responses import StreamingResponse
from typing import Any

from auth.rate_limiting import limiter, compare_rate_limit
from comparison.models import ChatSession, ConversationTurn, ResponseState
from comparison.service import ComparisonService, NoProvidersError, PreparedTurn, TurnDeniedError
from comparison.state_machine import InvalidTransitionError, SelectionError
from providers.registry import UnknownProviderError
from schema import (
    ChatMessageResponse,
    ChatSessionInput,
    CompareInput,
    QuotaExceededDetail,
    RenameChatSessionInput,
    SelectResponseInput,
    transcript,
)
from ..container import ServiceContainer
from ..dependencies import get_comparison_service, get_current_user_id, get_services
from ..streaming import StreamEventFactory

import asyncio
import logging

logger = logging.getLogger('modelmix.service.routers.chat')

DISCONNECT_POLL_SECONDS = 0.5

router = APIRouter(
    tags=["chat"],
)


def _sse_response_example() -> dict[int, Any]:
    return {
        status.HTTP_200_OK: {
            "description": "Server Sent Event Response",
            "content": {
                "text/event-stream": {
                    "example": (
                        'data: {"type": "comparison_start", "turn_id": "..."}\n\n'
                        'data: {"type": "provider_response", "response": {"provider": "openai", "state": "success"}}\n\n'
                        'data: {"type": "comparison_complete", "turn_id": "..."}\n\n'
                        "data: [DONE]\n\n"
                    ),
                    "schema": {"type": "string"},
                }
            },
        }
    }


def _bad_request(error_code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={"error": "Invalid request", "error_code": error_code, "message": message},
    )


def _denied(e: TurnDeniedError) -> HTTPException:
    detail = QuotaExceededDetail.from_decision(e.decision)
    status_code = 503 if detail.error_code == "usage_service_unavailable" else 429
    return HTTPException(status_code=status_code, detail=detail.model_dump(mode="json"))


async def _prepare(comparison: ComparisonService, user_id: str, compare_input: CompareInput) -> PreparedTurn:
    try:
        return await comparison.prepare_turn(
            user_id=user_id,
            session_id=compare_input.session_id,
            prompt=compare_input.prompt,
            images=compare_input.images,
            provider_ids=compare_input.providers,
            use_internet_search=compare_input.use_internet_search,
        )
    except TurnDeniedError as e:
        raise _denied(e)
    except UnknownProviderError as e:
        raise _bad_request("unknown_provider", str(e))
    except NoProvidersError as e:
        raise _bad_request("no_providers", str(e))


# Chat sessions

@router.get("/chat-sessions")
async def list_chat_sessions(
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> list[ChatSession]:
    return await services.chat_sessions.list_sessions(user_id)


@router.post("/chat-sessions", status_code=201)
async def create_chat_session(
    body: ChatSessionInput,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> ChatSession:
    return await services.chat_sessions.create_session(user_id, body.title)


@router.patch("/chat-sessions/{session_id}")
async def rename_chat_session(
    session_id: str,
    body: RenameChatSessionInput,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> ChatSession:
    return await services.chat_sessions.rename_session(user_id, session_id, body.title)


@router.delete("/chat-sessions/{session_id}")
async def delete_chat_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> dict:
    await services.cancellation_manager.request_cancellation(session_id, reason="session_deleted")
    await services.chat_sessions.delete_session(user_id, session_id)
    return {"message": "Chat session deleted", "session_id": session_id}


@router.get("/chat-sessions/{session_id}/messages")
async def get_chat_session_messages(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> list[ChatMessageResponse]:
    """The session as a plain transcript: each prompt followed by its selected answer."""
    return transcript(await services.chat_sessions.list_turns(user_id, session_id))


@router.get("/chat-sessions/{session_id}/turns")
async def get_chat_session_turns(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> list[ConversationTurn]:
    return await services.chat_sessions.list_turns(user_id, session_id)


# Comparisons

@router.post("/compare")
@limiter.limit(compare_rate_limit)
async def compare(
    request: Request,
    compare_input: CompareInput,
    user_id: str = Depends(get_current_user_id),
    comparison: ComparisonService = Depends(get_comparison_service),
) -> ConversationTurn:
    """Run a comparison and return the finished turn with every provider's response."""
    prepared = await _prepare(comparison, user_id, compare_input)
    return await comparison.compare(prepared)


async def _cancel_on_disconnect(request: Request, prepared: PreparedTurn) -> None:
    while not prepared.token.cancelled:
        if await request.is_disconnected():
            logger.info(f"Client disconnected during turn {prepared.turn.id}")
            prepared.token.cancel("client_disconnected")
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@router.post("/compare/stream", response_class=StreamingResponse, responses=_sse_response_example())
@limiter.limit(compare_rate_limit)
async def compare_stream(
    request: Request,
    compare_input: CompareInput,
    user_id: str = Depends(get_current_user_id),
    comparison: ComparisonService = Depends(get_comparison_service),
) -> StreamingResponse:
    """
    Stream a comparison as server-sent events.

    Quota and validation failures are answered before the stream starts, as
    ordinary JSON errors. Once streaming, each provider's response is sent
    the moment it settles.
    """
    prepared = await _prepare(comparison, user_id, compare_input)
    turn = prepared.turn

    async def stream_generator():
        watcher = asyncio.create_task(_cancel_on_disconnect(request, prepared))
        try:
            yield StreamEventFactory.comparison_start(
                session_id=turn.session_id,
                turn_id=turn.id,
                providers=[{"provider": c.provider_id, "display_name": c.display_name} for c in prepared.configs],
            ).to_sse_data()

            async for response in comparison.run_turn(prepared):
                yield StreamEventFactory.provider_response(turn.id, response).to_sse_data()

            successful = sum(1 for r in turn.responses if r.state == ResponseState.SUCCESS)
            yield StreamEventFactory.comparison_complete(
                turn_id=turn.id,
                state=turn.state.value,
                successful=successful,
                failed=len(turn.responses) - successful,
                cancelled=prepared.token.cancelled,
            ).to_sse_data()
        except Exception as e:
            logger.error(f"Comparison stream for turn {turn.id} failed: {e}", exc_info=True)
            yield StreamEventFactory.error(
                "The comparison failed unexpectedly. Please try again.",
                error_code="comparison_failed",
                turn_id=turn.id,
            ).to_sse_data()
        finally:
            watcher.cancel()
        yield StreamEventFactory.stream_end().to_sse_data()

    headers = {"X-Turn-ID": turn.id, "X-Session-ID": turn.session_id}
    return StreamingResponse(stream_generator(), media_type="text/event-stream", headers=headers)


@router.post("/compare/{session_id}/stop")
async def stop_comparison(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    comparison: ComparisonService = Depends(get_comparison_service),
) -> dict:
    """
    Cancel the running comparison in a chat session.

    Providers that already answered keep their responses; the rest settle as cancelled.
    """
    cancelled = await comparison.stop(user_id, session_id)
    logger.info(f"Stop requested for session {session_id}: {'cancelled' if cancelled else 'nothing running'}")
    return {
        "status": "cancellation_requested" if cancelled else "not_running",
        "session_id": session_id,
    }


# Turns

@router.get("/turns/{turn_id}")
async def get_turn(
    turn_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> ConversationTurn:
    turn = await services.storage.get_turn(turn_id)
    if turn.user_id != user_id:
        raise HTTPException(
            status_code=404,
            detail={"error": f"Turn {turn_id} not found", "error_code": "not_found", "message": "The requested resource was not found."},
        )
    return turn


@router.post("/turns/{turn_id}/select")
async def select_turn_response(
    turn_id: str,
    body: SelectResponseInput,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
) -> ConversationTurn:
    """Mark one provider's response as the user's preferred answer for this turn."""
    try:
        return await services.recorder.record_selection(user_id, turn_id, body.provider)
    except InvalidTransitionError as e:
        raise HTTPException(
            status_code=409,
            detail={"error": "Turn still running", "error_code": "turn_not_complete", "message": str(e)},
        )
    except SelectionError as e:
        raise _bad_request("invalid_selection", str(e))
