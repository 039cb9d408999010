"""Builds the system instruction and role-ordered message list for a chat turn."""

from dataclasses import dataclass, field
from typing import Any

from tutor_engine.core.prompt_templates import (
    CONTEXT_RETRIEVAL_FAILED,
    DEFAULT_TONES,
    MODE_TEMPLATES,
    NO_CONTEXT_PROVIDED,
    NO_RELEVANT_CONTEXT,
)
from tutor_engine.core.retrieval import RetrievalResult, RetrievalStatus
from tutor_engine.core.schemas_chat import ChatMode, MediaAttachment, Turn, TurnRole

# Sent ahead of a history that opens with an assistant turn (seed greeting).
# The chat API rejects message lists that don't start with the user.
HISTORY_REPAIR_PLACEHOLDER = "Hello, I'm interested in this topic. Please guide me."

CHUNK_SEPARATOR = "\n\n---\n\n"


@dataclass
class Personalization:
    tone: str | None = None


@dataclass
class ComposedPrompt:
    """System instruction plus messages, live user turn last."""

    system_instruction: str
    messages: list[dict[str, Any]] = field(default_factory=list)

    @property
    def history(self) -> list[dict[str, Any]]:
        return self.messages[:-1]


def format_context(retrieved: RetrievalResult | None) -> str:
    """Numbered chunk text, or the placeholder for the retrieval outcome."""
    if retrieved is None or retrieved.status == RetrievalStatus.SKIPPED:
        return NO_CONTEXT_PROVIDED
    if retrieved.status == RetrievalStatus.ERROR:
        return CONTEXT_RETRIEVAL_FAILED
    if not retrieved.chunks:
        return NO_RELEVANT_CONTEXT
    return CHUNK_SEPARATOR.join(
        f"Chunk {i}:\n{chunk.text}" for i, chunk in enumerate(retrieved.chunks, start=1)
    )


def map_history(turns: list[Turn]) -> list[dict[str, Any]]:
    """Stored turns to model messages, repaired to start with a user turn."""
    history = [
        {"role": turn.role.value, "content": turn.content}
        for turn in turns
        if turn.content and turn.content.strip()
    ]
    if history and history[0]["role"] == TurnRole.ASSISTANT.value:
        history.insert(0, {"role": TurnRole.USER.value, "content": HISTORY_REPAIR_PLACEHOLDER})
    return history


def build_live_turn(new_user_input: str, media: MediaAttachment | None = None) -> dict[str, Any]:
    if media and media.is_image:
        return {
            "role": TurnRole.USER.value,
            "content": [
                {"type": "image", "source": {"type": "url", "url": media.url}},
                {"type": "text", "text": new_user_input},
            ],
        }
    return {"role": TurnRole.USER.value, "content": new_user_input}


def compose(
    mode: ChatMode,
    recent_turns: list[Turn],
    retrieved: RetrievalResult | None,
    new_user_input: str,
    personalization: Personalization | None = None,
    media: MediaAttachment | None = None,
) -> ComposedPrompt:
    """
    Compose the model input for one turn.

    Args:
        mode: Conversation mode; selects the instruction template
        recent_turns: History window, oldest first; never includes the new input
        retrieved: Retrieval outcome, or None when retrieval didn't run
        new_user_input: The live user message, sent last
        personalization: Optional tone override
        media: Optional attachment on the live turn

    Returns:
        ComposedPrompt

    Raises:
        ValueError: If ``mode`` is not a ChatMode
    """
    builder = MODE_TEMPLATES[ChatMode(mode)]
    tone = (personalization.tone if personalization else None) or DEFAULT_TONES[ChatMode(mode)]
    system_instruction = builder(tone, format_context(retrieved))

    messages = map_history(recent_turns)
    messages.append(build_live_turn(new_user_input, media))
    return ComposedPrompt(system_instruction=system_instruction, messages=messages)
