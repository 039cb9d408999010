"""Rolling session summaries, shown as the preview in the session list."""

from uuid import UUID

from tutor_engine.core.config import get_settings
from tutor_engine.core.errors import UpstreamError, ValidationError
from tutor_engine.core.llm import complete_text
from tutor_engine.core.logging import get_logger
from tutor_engine.core.schemas_chat import Turn, TurnRole
from tutor_engine.db import chat_sessions

logger = get_logger(__name__)

MAX_SUMMARY_TURNS = 30
MAX_TURN_CHARS = 500
MAX_SUMMARY_CHARS = 120


def format_turns_for_summary(turns: list[Turn]) -> str:
    """Format turns as a readable conversation for summarization."""
    lines = []
    for turn in turns[-MAX_SUMMARY_TURNS:]:
        role_label = "Learner" if turn.role == TurnRole.USER else "Tutor"
        content = turn.content
        if len(content) > MAX_TURN_CHARS:
            content = content[:MAX_TURN_CHARS] + "..."
        lines.append(f"{role_label}: {content}")
    return "\n\n".join(lines)


async def refresh_session_summary(session_id: UUID) -> str:
    """
    Summarize a session in one line and store it on the session.

    Raises:
        ValidationError: If the session has no turns yet
        UpstreamError: If the summarization call fails
        PersistenceError / NotFoundError: If the store write fails
    """
    turns = chat_sessions.list_turns(session_id)
    if not turns:
        raise ValidationError("Cannot summarize an empty conversation", field="sessionId")

    prompt = (
        "Summarize this tutoring conversation as a short title the learner will "
        f"recognize (max {MAX_SUMMARY_CHARS} characters, no quotes):\n\n"
        f"{format_turns_for_summary(turns)}"
    )
    settings = get_settings()
    summary = await complete_text(prompt, model=settings.GREETING_MODEL, max_tokens=60, temperature=0.2)
    summary = summary.strip().strip('"')[:MAX_SUMMARY_CHARS]
    if not summary:
        raise UpstreamError("Summarization returned no text")

    chat_sessions.update_session_summary(session_id, summary)
    logger.info(f"Refreshed summary for session {session_id} from {len(turns)} turns")
    return summary
