"""Chat API endpoints."""

import asyncio
from typing import Any, AsyncGenerator, Dict, List
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from tutor_engine.core.auth_middleware import AuthContext, require_auth
from tutor_engine.core.chat_stream import ChatStreamConfig, ChatStreamCoordinator
from tutor_engine.core.config import get_settings
from tutor_engine.core.errors import ForbiddenError, NotFoundError, TutorEngineError
from tutor_engine.core.greetings import get_opening_greeting
from tutor_engine.core.logging import get_logger
from tutor_engine.core.rate_limiter import check_chat_rate_limit
from tutor_engine.core.schemas_chat import (
    ChatRequest,
    GreetingRequest,
    GreetingResponse,
    MessageOut,
    Session,
)
from tutor_engine.core.session_summary import refresh_session_summary
from tutor_engine.db import chat_sessions
from tutor_engine.db.media_storage import resolve_media

logger = get_logger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


def get_session_store() -> Any:
    """Session store used by the chat routes."""
    return chat_sessions


def _get_owned_session(store: Any, session_id: UUID, auth: AuthContext) -> Session:
    session = store.get_session(session_id)
    if session is None:
        raise NotFoundError("Session not found")
    if session.user_id != auth.user_id:
        logger.warning(f"User {auth.user_id} attempted to access session {session_id}")
        raise ForbiddenError("Unauthorized access to this session")
    return session


def _attach_created_session(error: TutorEngineError, coordinator: ChatStreamCoordinator | None) -> None:
    # The sessionCreated event is never sent when streaming doesn't start
    if coordinator is not None and coordinator.session_created:
        error.session_id = coordinator.session_id


@router.post("/chat")
async def post_chat_message(
    request: ChatRequest,
    auth: AuthContext = Depends(require_auth),
    store: Any = Depends(get_session_store),
) -> StreamingResponse:
    """
    Chat with the tutor using a streaming response.

    This endpoint:
    1. Creates or continues the session (new ids are announced first)
    2. Loads recent history and retrieves context from selected resources
    3. Streams the model's answer as Server-Sent Events
    4. Persists the user and assistant turns after the stream closes

    Failures before streaming starts return a JSON error instead of a stream.
    """
    check_chat_rate_limit(auth.user_id)
    settings = get_settings()

    logger.info(
        f"Chat request: user={auth.user_id}, session={request.session_id}, "
        f"mode={request.mode.value}, resources={len(request.context_resource_ids)}, "
        f"seed={'yes' if request.seed_prompt else 'no'}"
    )

    coordinator = None
    try:
        media = None
        if request.media_uri:
            media = await asyncio.to_thread(resolve_media, request.media_uri)

        config = ChatStreamConfig.from_settings(
            settings,
            user_id=auth.user_id,
            message=request.input,
            mode=request.mode,
            session_id=request.session_id,
            context_resource_ids=request.context_resource_ids,
            seed_prompt=request.seed_prompt,
            media=media,
        )
        coordinator = ChatStreamCoordinator(config, store=store, settings=settings)
        await coordinator.prepare()
        coordinator.start()

    except TutorEngineError as e:
        _attach_created_session(e, coordinator)
        raise
    except Exception as e:
        logger.error(f"Error in chat endpoint: {e}", exc_info=True)
        error = TutorEngineError("Failed to process chat message", details=str(e))
        _attach_created_session(error, coordinator)
        raise error from e

    async def generate() -> AsyncGenerator[str, None]:
        async for event in coordinator.events():
            yield event.to_sse()

    # The background step runs after the body is sent and waits for persistence.
    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
        background=BackgroundTask(coordinator.wait_finished),
    )


@router.get("/chat/sessions")
async def list_chat_sessions(
    auth: AuthContext = Depends(require_auth),
    store: Any = Depends(get_session_store),
) -> List[Dict[str, Any]]:
    """List the caller's sessions, most recent first, with previews."""
    sessions = store.list_sessions(auth.user_id)
    return [s.model_dump(mode="json") for s in sessions]


@router.delete("/chat/sessions")
async def clear_chat_sessions(
    auth: AuthContext = Depends(require_auth),
    store: Any = Depends(get_session_store),
) -> Dict[str, Any]:
    """Delete all of the caller's sessions and turns."""
    deleted = store.delete_user_sessions(auth.user_id)
    return {"deleted": deleted}


@router.get("/chat/{session_id}/messages")
async def get_session_messages(
    session_id: UUID,
    auth: AuthContext = Depends(require_auth),
    store: Any = Depends(get_session_store),
) -> List[Dict[str, Any]]:
    """All turns of one of the caller's sessions, oldest first."""
    _get_owned_session(store, session_id, auth)
    turns = store.list_turns(session_id)
    return [MessageOut.from_turn(t).model_dump(mode="json") for t in turns]


@router.post("/chat/{session_id}/summary")
async def refresh_chat_summary(
    session_id: UUID,
    auth: AuthContext = Depends(require_auth),
    store: Any = Depends(get_session_store),
) -> Dict[str, Any]:
    """Regenerate the session's rolling summary."""
    _get_owned_session(store, session_id, auth)
    summary = await refresh_session_summary(session_id)
    return {"sessionId": str(session_id), "summary": summary}


@router.post("/chat/greeting", response_model=GreetingResponse)
async def get_chat_greeting(
    request: GreetingRequest,
    auth: AuthContext = Depends(require_auth),
) -> GreetingResponse:
    """Opening message for a new conversation, cached briefly per topic."""
    greeting, cached = await get_opening_greeting(
        auth.user_id,
        topic=request.topic,
        context=request.context,
        interests=request.interests,
    )
    return GreetingResponse(greeting=greeting, cached=cached)
