"""Database access layer for chat sessions and their turns.

Tables:
    chat_sessions(id, user_id, mode, summary, created_at)
    chat_messages(id, session_id, sender, content, media_url, media_type,
                  media_size, created_at)

Turns are append-only. Ordering is by ``created_at``; reads may fetch in
descending order for limit efficiency but always return oldest first.
"""

import asyncio
from typing import Any
from uuid import UUID

from tutor_engine.core.config import get_settings
from tutor_engine.core.errors import NotFoundError, PersistenceError, ValidationError
from tutor_engine.core.logging import get_logger
from tutor_engine.core.schemas_chat import (
    ChatMode,
    MediaAttachment,
    Session,
    SessionSummary,
    Turn,
    TurnRole,
)
from tutor_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)

EMPTY_SESSION_PREVIEW = "New conversation"

# Postgres foreign_key_violation
_FK_VIOLATION = "23503"


def _maybe_single(query) -> dict[str, Any] | None:
    """Execute a maybe_single query, returning None if no row found (204)."""
    try:
        result = query.maybe_single().execute()
        return result.data if result else None
    except Exception as e:
        # postgrest raises APIError with code 204 when no rows found
        if "204" in str(e):
            return None
        raise


def _sort_turns(turns: list[Turn]) -> list[Turn]:
    return sorted(turns, key=lambda t: t.created_at)


def build_preview(summary: str | None, last_content: str | None, max_chars: int) -> str:
    """Session list preview: explicit summary, else truncated last turn."""
    if summary:
        return summary
    if not last_content:
        return EMPTY_SESSION_PREVIEW
    if len(last_content) > max_chars:
        return last_content[:max_chars] + "..."
    return last_content


# ============================================================================
# Sessions
# ============================================================================


def create_session(user_id: UUID, mode: ChatMode = ChatMode.EXPLAIN) -> UUID:
    """Create a session in a single insert. Never returns a partial session."""
    supabase = get_supabase()
    data = {"user_id": str(user_id), "mode": ChatMode(mode).value}
    try:
        response = supabase.table("chat_sessions").insert(data).execute()
    except Exception as e:
        raise PersistenceError(f"Failed to create chat session: {e}") from e

    if not response.data:
        raise PersistenceError("Failed to create chat session: no row returned")

    session_id = UUID(response.data[0]["id"])
    logger.info(f"Created chat session {session_id} ({ChatMode(mode).value}) for user {user_id}")
    return session_id


def get_session(session_id: UUID) -> Session | None:
    """Get a session by ID."""
    supabase = get_supabase()
    try:
        row = _maybe_single(
            supabase.table("chat_sessions")
            .select("id, user_id, mode, summary, created_at")
            .eq("id", str(session_id))
        )
    except Exception as e:
        raise PersistenceError(f"Failed to load chat session {session_id}: {e}") from e
    if not row:
        return None
    return Session(**row)


def update_session_summary(session_id: UUID, summary: str) -> None:
    """Refresh the rolling summary. The only mutation a session allows."""
    supabase = get_supabase()
    try:
        response = (
            supabase.table("chat_sessions")
            .update({"summary": summary})
            .eq("id", str(session_id))
            .execute()
        )
    except Exception as e:
        raise PersistenceError(f"Failed to update summary for {session_id}: {e}") from e
    if not response.data:
        raise NotFoundError(f"Chat session {session_id} not found")
    logger.info(f"Updated summary for chat session {session_id}")


def list_sessions(user_id: UUID) -> list[SessionSummary]:
    """List a user's sessions, most recent first, with a computed preview."""
    settings = get_settings()
    supabase = get_supabase()
    try:
        response = (
            supabase.table("chat_sessions")
            .select("id, mode, created_at, summary, chat_messages(content, created_at)")
            .eq("user_id", str(user_id))
            .order("created_at", desc=True)
            .execute()
        )
    except Exception as e:
        raise PersistenceError(f"Failed to list chat sessions: {e}") from e

    summaries = []
    for row in response.data or []:
        messages = sorted(row.get("chat_messages") or [], key=lambda m: m.get("created_at") or "")
        last_content = messages[-1].get("content") if messages else None
        summaries.append(
            SessionSummary(
                id=row["id"],
                mode=row.get("mode") or ChatMode.EXPLAIN,
                date=row["created_at"],
                preview=build_preview(row.get("summary"), last_content, settings.SESSION_PREVIEW_CHARS),
            )
        )
    return summaries


def delete_user_sessions(user_id: UUID) -> int:
    """Explicit user data-clear: delete every session and its turns."""
    supabase = get_supabase()
    try:
        sessions = (
            supabase.table("chat_sessions").select("id").eq("user_id", str(user_id)).execute()
        )
        session_ids = [row["id"] for row in sessions.data or []]
        if not session_ids:
            return 0
        supabase.table("chat_messages").delete().in_("session_id", session_ids).execute()
        supabase.table("chat_sessions").delete().in_("id", session_ids).execute()
    except Exception as e:
        raise PersistenceError(f"Failed to clear chat sessions for {user_id}: {e}") from e

    logger.info(f"Deleted {len(session_ids)} chat sessions for user {user_id}")
    return len(session_ids)


# ============================================================================
# Turns
# ============================================================================


def append_turn(
    session_id: UUID,
    role: TurnRole,
    content: str,
    media: MediaAttachment | None = None,
) -> UUID:
    """
    Append one turn to a session.

    Raises:
        ValidationError: If content is blank
        NotFoundError: If the session does not exist
        PersistenceError: On any other store failure
    """
    if not content or not content.strip():
        raise ValidationError("Turn content must not be empty", field="content")

    data: dict[str, Any] = {
        "session_id": str(session_id),
        "sender": TurnRole(role).value,
        "content": content,
    }
    if media:
        data["media_url"] = media.url
        data["media_type"] = media.mime_type
        data["media_size"] = media.size

    supabase = get_supabase()
    try:
        response = supabase.table("chat_messages").insert(data).execute()
    except Exception as e:
        if _FK_VIOLATION in str(e):
            raise NotFoundError(f"Chat session {session_id} not found") from e
        raise PersistenceError(f"Failed to save {TurnRole(role).value} turn: {e}") from e

    if not response.data:
        raise PersistenceError(f"Failed to save {TurnRole(role).value} turn: no row returned")
    return UUID(response.data[0]["id"])


def get_recent_turns(session_id: UUID, limit: int) -> list[Turn]:
    """Return at most ``limit`` most recent turns, oldest first."""
    supabase = get_supabase()
    try:
        response = (
            supabase.table("chat_messages")
            .select("*")
            .eq("session_id", str(session_id))
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
    except Exception as e:
        raise PersistenceError(f"Failed to fetch chat history: {e}") from e

    return _sort_turns([Turn.from_row(row) for row in response.data or []])


def list_turns(session_id: UUID) -> list[Turn]:
    """Full history of a session, oldest first."""
    supabase = get_supabase()
    try:
        response = (
            supabase.table("chat_messages")
            .select("*")
            .eq("session_id", str(session_id))
            .order("created_at")
            .execute()
        )
    except Exception as e:
        raise PersistenceError(f"Failed to fetch session messages: {e}") from e

    return _sort_turns([Turn.from_row(row) for row in response.data or []])


# ============================================================================
# Async wrappers (the Supabase client is blocking)
# ============================================================================


async def create_session_async(user_id: UUID, mode: ChatMode = ChatMode.EXPLAIN) -> UUID:
    return await asyncio.to_thread(create_session, user_id, mode)


async def get_session_async(session_id: UUID) -> Session | None:
    return await asyncio.to_thread(get_session, session_id)


async def append_turn_async(
    session_id: UUID,
    role: TurnRole,
    content: str,
    media: MediaAttachment | None = None,
) -> UUID:
    return await asyncio.to_thread(append_turn, session_id, role, content, media)


async def get_recent_turns_async(session_id: UUID, limit: int) -> list[Turn]:
    return await asyncio.to_thread(get_recent_turns, session_id, limit)
