"""Chat streaming engine: retrieval-augmented, streamed, persisted after serving.

One ``ChatStreamCoordinator`` drives one chat turn through an explicit state
machine:

    SESSION_RESOLVING → HISTORY_LOADING → CONTEXT_RETRIEVING → GENERATING
        → STREAMING → [SAFETY_STOPPED] → PERSISTING → DONE

``ERRORED`` is absorbing and reachable from every non-terminal state.

``prepare()`` runs everything up to an accepted upstream stream, so failures
there surface as ordinary exceptions before any byte is sent. ``start()`` then
launches the pump as its own task: it forwards fragments to the client queue,
closes the channel, and persists both turns. Because the pump is not tied to
the HTTP response, a client that disconnects only stops forwarding; the
upstream stream is still drained and what was accumulated is persisted.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID

from tutor_engine.core.config import Settings, get_settings
from tutor_engine.core.errors import ContentPolicyError, ForbiddenError, NotFoundError
from tutor_engine.core.llm import CompletionStream, open_completion_stream
from tutor_engine.core.logging import get_logger, log_with_context
from tutor_engine.core.prompt_composer import ComposedPrompt, Personalization, compose
from tutor_engine.core.retrieval import RetrievalResult, retrieve
from tutor_engine.core.schemas_chat import ChatMode, MediaAttachment, Turn, TurnRole
from tutor_engine.db import chat_sessions
from tutor_engine.db.profiles import get_tone_preference

logger = get_logger(__name__)

SAFETY_FALLBACK_MESSAGE = (
    "I apologize, but I can't respond to that. Could you rephrase your question?"
)

MEMORY_NOT_PERSISTED_EVENT = "memory_not_persisted"
STREAM_FINISHED_EVENT = "chat_stream_finished"

# Strong references to running pumps so they aren't garbage collected
_background_tasks: set[asyncio.Task] = set()


class ChatStreamState(str, Enum):
    SESSION_RESOLVING = "session_resolving"
    HISTORY_LOADING = "history_loading"
    CONTEXT_RETRIEVING = "context_retrieving"
    GENERATING = "generating"
    STREAMING = "streaming"
    SAFETY_STOPPED = "safety_stopped"
    PERSISTING = "persisting"
    DONE = "done"
    ERRORED = "errored"


_TRANSITIONS: dict[ChatStreamState, frozenset[ChatStreamState]] = {
    ChatStreamState.SESSION_RESOLVING: frozenset({ChatStreamState.HISTORY_LOADING}),
    ChatStreamState.HISTORY_LOADING: frozenset({ChatStreamState.CONTEXT_RETRIEVING}),
    ChatStreamState.CONTEXT_RETRIEVING: frozenset({ChatStreamState.GENERATING}),
    ChatStreamState.GENERATING: frozenset({ChatStreamState.STREAMING}),
    ChatStreamState.STREAMING: frozenset(
        {ChatStreamState.SAFETY_STOPPED, ChatStreamState.PERSISTING}
    ),
    ChatStreamState.SAFETY_STOPPED: frozenset({ChatStreamState.PERSISTING}),
    ChatStreamState.PERSISTING: frozenset({ChatStreamState.DONE}),
    ChatStreamState.DONE: frozenset(),
    ChatStreamState.ERRORED: frozenset(),
}

_TERMINAL_STATES = frozenset({ChatStreamState.DONE, ChatStreamState.ERRORED})


@dataclass(frozen=True)
class StreamEvent:
    """One client-visible event on the push channel."""

    kind: str  # "session_created" | "content" | "error"
    data: dict[str, Any]

    @classmethod
    def session_created(cls, session_id: UUID) -> "StreamEvent":
        return cls("session_created", {"sessionId": str(session_id)})

    @classmethod
    def content(cls, text: str) -> "StreamEvent":
        return cls("content", {"content": text})

    @classmethod
    def error(cls, message: str) -> "StreamEvent":
        return cls("error", {"error": message})

    def to_sse(self) -> str:
        """Format as a Server-Sent Events frame."""
        payload = json.dumps(self.data)
        if self.kind == "session_created":
            return f"event: sessionCreated\ndata: {payload}\n\n"
        if self.kind == "error":
            return f"event: error\ndata: {payload}\n\n"
        return f"data: {payload}\n\n"


@dataclass
class ChatStreamConfig:
    """Explicit inputs for one chat turn."""

    user_id: UUID
    message: str
    mode: ChatMode = ChatMode.EXPLAIN
    session_id: UUID | None = None
    context_resource_ids: list[UUID] = field(default_factory=list)
    seed_prompt: str | None = None
    media: MediaAttachment | None = None
    history_window: int = 10
    rag_max_chunks: int = 3
    rag_similarity_threshold: float = 0.75

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "ChatStreamConfig":
        return cls(
            history_window=settings.CHAT_HISTORY_WINDOW,
            rag_max_chunks=settings.RAG_MAX_CHUNKS,
            rag_similarity_threshold=settings.RAG_SIMILARITY_THRESHOLD,
            **kwargs,
        )


class ChatStreamCoordinator:
    """State machine for a single streamed, retrieval-augmented chat turn."""

    def __init__(
        self,
        config: ChatStreamConfig,
        store: Any = chat_sessions,
        settings: Settings | None = None,
    ):
        self.config = config
        self.store = store
        self.settings = settings or get_settings()

        self.state = ChatStreamState.SESSION_RESOLVING
        self.transitions: list[ChatStreamState] = [self.state]
        self.session_id: UUID | None = config.session_id
        self.session_created = False
        self.prompt: ComposedPrompt | None = None
        self.retrieval: RetrievalResult | None = None
        self.persistence_failures: list[TurnRole] = []
        self.fragment_count = 0

        self._accumulated: list[str] = []
        self._queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()
        self._client_attached = True
        self._channel_closed = False
        self._upstream: CompletionStream | None = None
        self._task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # State handling
    # ------------------------------------------------------------------

    def _transition(self, new_state: ChatStreamState) -> None:
        if new_state == ChatStreamState.ERRORED:
            allowed = self.state not in _TERMINAL_STATES
        else:
            allowed = new_state in _TRANSITIONS[self.state]
        if not allowed:
            raise RuntimeError(f"Illegal chat stream transition {self.state.value} -> {new_state.value}")

        logger.debug(f"Chat stream {self.session_id}: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.transitions.append(new_state)

    def _fail(self, error: BaseException) -> None:
        failed_in = self.state
        if self.state not in _TERMINAL_STATES:
            self._transition(ChatStreamState.ERRORED)
        logger.error(
            f"Chat stream failed in {failed_in.value} for session {self.session_id}: {error}"
        )

    @property
    def response_text(self) -> str:
        """Everything accumulated so far for the assistant turn."""
        return "".join(self._accumulated)

    # ------------------------------------------------------------------
    # Before streaming
    # ------------------------------------------------------------------

    async def prepare(self) -> None:
        """
        Resolve the session, load history and context, and open the upstream.

        Raises:
            NotFoundError / ForbiddenError: Unknown or foreign session
            PersistenceError: Session creation or history fetch failed
            UpstreamError: Generation request rejected at initiation
        """
        try:
            await self._resolve_session()
            turns, retrieved, tone = await self._load_inputs()

            self.retrieval = retrieved
            self.prompt = compose(
                mode=self.config.mode,
                recent_turns=turns,
                retrieved=retrieved,
                new_user_input=self.config.message,
                personalization=Personalization(tone=tone),
                media=self.config.media,
            )
            logger.info(
                f"Chat prompt: mode={ChatMode(self.config.mode).value}, "
                f"history_msgs={len(self.prompt.history)}, retrieval={retrieved.status.value}"
            )

            self._transition(ChatStreamState.GENERATING)
            self._upstream = await open_completion_stream(
                self.prompt.system_instruction,
                self.prompt.messages,
                self.settings,
            )
        except Exception as e:
            self._fail(e)
            raise

    async def _resolve_session(self) -> None:
        if self.session_id is None:
            self.session_id = await self.store.create_session_async(
                self.config.user_id, self.config.mode
            )
            self.session_created = True
            # Queued ahead of any content so the client learns the id first
            self._queue.put_nowait(StreamEvent.session_created(self.session_id))
            await self._save_seed_prompt()
        else:
            session = await self.store.get_session_async(self.session_id)
            if session is None:
                raise NotFoundError(f"Chat session {self.session_id} not found")
            if session.user_id != self.config.user_id:
                raise ForbiddenError("Unauthorized access to this session")
            logger.info(f"Continuing chat session {self.session_id}")

    async def _save_seed_prompt(self) -> None:
        seed = (self.config.seed_prompt or "").strip()
        if not seed:
            return
        try:
            await self.store.append_turn_async(self.session_id, TurnRole.ASSISTANT, seed)
            logger.info(f"Seed prompt saved for session {self.session_id}")
        except Exception as e:
            logger.error(f"Failed to save seed prompt for session {self.session_id}: {e}")

    async def _lookup_tone(self) -> str | None:
        return await asyncio.to_thread(get_tone_preference, self.config.user_id)

    async def _load_inputs(self) -> tuple[list[Turn], RetrievalResult, str | None]:
        """History, retrieval, and tone lookup run concurrently."""
        self._transition(ChatStreamState.HISTORY_LOADING)

        history_task = asyncio.create_task(
            self.store.get_recent_turns_async(self.session_id, self.config.history_window)
        )
        context_task = asyncio.create_task(
            retrieve(
                query=self.config.message,
                owner_id=self.config.user_id,
                candidate_document_ids=self.config.context_resource_ids,
                threshold=self.config.rag_similarity_threshold,
                top_k=self.config.rag_max_chunks,
            )
        )
        tone_task = asyncio.create_task(self._lookup_tone())

        try:
            turns = await history_task
        except BaseException:
            context_task.cancel()
            tone_task.cancel()
            raise
        logger.info(f"Loaded {len(turns)} turns of history for session {self.session_id}")

        self._transition(ChatStreamState.CONTEXT_RETRIEVING)
        retrieved = await context_task
        tone = await tone_task
        return turns, retrieved, tone

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task:
        """Launch the pump. Must follow a successful ``prepare()``."""
        if self.state != ChatStreamState.GENERATING or self._upstream is None:
            raise RuntimeError("ChatStreamCoordinator.start() called before prepare()")
        self._task = asyncio.create_task(self._pump())
        _background_tasks.add(self._task)
        self._task.add_done_callback(_background_tasks.discard)
        return self._task

    def _forward(self, event: StreamEvent) -> None:
        if self._client_attached and not self._channel_closed:
            self._queue.put_nowait(event)

    def _close_channel(self) -> None:
        if not self._channel_closed:
            self._channel_closed = True
            self._queue.put_nowait(None)

    def detach_client(self) -> None:
        """Stop forwarding; the pump keeps draining and still persists."""
        if self._client_attached and not self._channel_closed:
            logger.info(f"Client disconnected mid-stream for session {self.session_id}")
        self._client_attached = False

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Client-visible events in order, ending when the channel closes."""
        try:
            while True:
                event = await self._queue.get()
                if event is None:
                    return
                yield event
        finally:
            self.detach_client()

    async def _pump(self) -> None:
        self._transition(ChatStreamState.STREAMING)
        try:
            if not await self._stream_fragments():
                return
            self._close_channel()
            self._transition(ChatStreamState.PERSISTING)
            await self._persist()
            self._transition(ChatStreamState.DONE)
            log_with_context(
                logger,
                logging.INFO,
                "Chat stream finished",
                event=STREAM_FINISHED_EVENT,
                session_id=str(self.session_id),
                model=self._upstream.model,
                input_tokens=self._upstream.input_tokens,
                output_tokens=self._upstream.output_tokens,
                fragments=self.fragment_count,
                chars=len(self.response_text),
            )
        finally:
            self._close_channel()

    async def _stream_fragments(self) -> bool:
        """Forward upstream fragments. Returns False if the stream errored."""
        try:
            async for fragment in self._upstream:
                self._accumulated.append(fragment)
                self.fragment_count += 1
                self._forward(StreamEvent.content(fragment))
        except ContentPolicyError as e:
            logger.warning(f"Response blocked by safety filter for session {self.session_id}: {e}")
            self._accumulated = [SAFETY_FALLBACK_MESSAGE]
            self._forward(StreamEvent.content(SAFETY_FALLBACK_MESSAGE))
            self._transition(ChatStreamState.SAFETY_STOPPED)
        except Exception as e:
            self._forward(StreamEvent.error("The response was interrupted. Please try again."))
            self._close_channel()
            self._fail(e)
            return False
        finally:
            await self._upstream.close()
        return True

    async def wait_finished(self) -> None:
        """Wait for the pump, persistence included. Safe to call repeatedly."""
        if self._task is not None:
            await asyncio.shield(self._task)

    # ------------------------------------------------------------------
    # Persisting
    # ------------------------------------------------------------------

    async def _persist(self) -> None:
        """Two independent writes; failures are logged, never retried."""
        await self._write_turn(TurnRole.USER, self.config.message, self.config.media)

        answer = self.response_text
        if not answer.strip():
            logger.warning(f"Empty assistant answer for session {self.session_id}; not persisted")
            return
        await self._write_turn(TurnRole.ASSISTANT, answer)

    async def _write_turn(
        self,
        role: TurnRole,
        content: str,
        media: MediaAttachment | None = None,
    ) -> bool:
        try:
            await self.store.append_turn_async(self.session_id, role, content, media)
            return True
        except Exception as e:
            self.persistence_failures.append(role)
            log_with_context(
                logger,
                logging.CRITICAL,
                f"Chat turn not persisted; conversation memory lost for this {role.value} turn",
                event=MEMORY_NOT_PERSISTED_EVENT,
                session_id=str(self.session_id),
                role=role.value,
                error=str(e),
            )
            return False
