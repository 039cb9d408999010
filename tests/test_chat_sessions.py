"""Tests for the chat session store with a mocked Supabase client."""

from unittest.mock import MagicMock, patch
from uuid import UUID, uuid4

import pytest

from tutor_engine.core.errors import NotFoundError, PersistenceError, ValidationError
from tutor_engine.core.schemas_chat import ChatMode, MediaAttachment, TurnRole
from tutor_engine.db import chat_sessions
from tutor_engine.db.chat_sessions import EMPTY_SESSION_PREVIEW, build_preview

USER_ID = uuid4()
SESSION_ID = uuid4()


def _mock_supabase(execute_results=None):
    """Supabase mock with chained query builder."""
    sb = MagicMock()
    chain = MagicMock()
    if execute_results is not None:
        chain.execute.side_effect = execute_results
    else:
        chain.execute.return_value = MagicMock(data=[], count=0)
    for method in ("eq", "in_", "order", "limit", "select", "insert", "update", "delete", "maybe_single"):
        getattr(chain, method).return_value = chain
    sb.table.return_value = chain
    return sb


def _message_row(content, created_at, sender="user", **extra):
    row = {
        "id": str(uuid4()),
        "session_id": str(SESSION_ID),
        "sender": sender,
        "content": content,
        "created_at": created_at,
    }
    row.update(extra)
    return row


class TestBuildPreview:
    def test_summary_wins(self):
        assert build_preview("Osmosis basics", "last message", 60) == "Osmosis basics"

    def test_truncates_last_message(self):
        assert build_preview(None, "x" * 80, 60) == "x" * 60 + "..."

    def test_short_last_message_untouched(self):
        assert build_preview(None, "short", 60) == "short"

    def test_empty_session(self):
        assert build_preview(None, None, 60) == EMPTY_SESSION_PREVIEW


class TestSessions:
    @patch("tutor_engine.db.chat_sessions.get_supabase")
    def test_create_session_single_insert(self, mock_sb):
        sb = _mock_supabase([MagicMock(data=[{"id": str(SESSION_ID)}])])
        mock_sb.return_value = sb

        result = chat_sessions.create_session(USER_ID, ChatMode.TUTOR)

        assert result == SESSION_ID
        sb.table.assert_called_once_with("chat_sessions")
        sb.table.return_value.insert.assert_called_once_with(
            {"user_id": str(USER_ID), "mode": "tutor"}
        )

    @patch("tutor_engine.db.chat_sessions.get_supabase")
    def test_create_session_failure(self, mock_sb):
        sb = _mock_supabase()
        sb.table.return_value.execute.side_effect = Exception("connection refused")
        mock_sb.return_value = sb

        with pytest.raises(PersistenceError):
            chat_sessions.create_session(USER_ID)

    @patch("tutor_engine.db.chat_sessions.get_supabase")
    def test_get_session_found(self, mock_sb):
        mock_sb.return_value = _mock_supabase([
            MagicMock(data={
                "id": str(SESSION_ID),
                "user_id": str(USER_ID),
                "mode": "exam",
                "summary": None,
                "created_at": "2024-05-01T10:00:00+00:00",
            })
        ])

        session = chat_sessions.get_session(SESSION_ID)

        assert session.id == SESSION_ID
        assert session.user_id == USER_ID
        assert session.mode == ChatMode.EXAM

    @patch("tutor_engine.db.chat_sessions.get_supabase")
    def test_get_session_missing(self, mock_sb):
        mock_sb.return_value = _mock_supabase([None])
        assert chat_sessions.get_session(SESSION_ID) is None

    @patch("tutor_engine.db.chat_sessions.get_supabase")
    def test_list_sessions_previews(self, mock_sb):
        newer, older, empty = uuid4(), uuid4(), uuid4()
        mock_sb.return_value = _mock_supabase([
            MagicMock(data=[
                {
                    "id": str(newer),
                    "mode": "explain",
                    "created_at": "2024-05-03T10:00:00+00:00",
                    "summary": None,
                    "chat_messages": [
                        {"content": "y" * 100, "created_at": "2024-05-03T10:02:00+00:00"},
                        {"content": "first", "created_at": "2024-05-03T10:01:00+00:00"},
                    ],
                },
                {
                    "id": str(older),
                    "mode": "tutor",
                    "created_at": "2024-05-02T10:00:00+00:00",
                    "summary": "Cell biology review",
                    "chat_messages": [{"content": "hi", "created_at": "2024-05-02T10:01:00+00:00"}],
                },
                {
                    "id": str(empty),
                    "mode": None,
                    "created_at": "2024-05-01T10:00:00+00:00",
                    "summary": None,
                    "chat_messages": [],
                },
            ])
        ])

        result = chat_sessions.list_sessions(USER_ID)

        assert [s.id for s in result] == [newer, older, empty]
        assert result[0].preview == "y" * 60 + "..."
        assert result[1].preview == "Cell biology review"
        assert result[2].preview == EMPTY_SESSION_PREVIEW
        assert result[2].mode == ChatMode.EXPLAIN

    @patch("tutor_engine.db.chat_sessions.get_supabase")
    def test_delete_user_sessions(self, mock_sb):
        sb = _mock_supabase([
            MagicMock(data=[{"id": "s1"}, {"id": "s2"}]),
            MagicMock(data=[]),
            MagicMock(data=[]),
        ])
        mock_sb.return_value = sb

        assert chat_sessions.delete_user_sessions(USER_ID) == 2
        sb.table.return_value.in_.assert_any_call("session_id", ["s1", "s2"])
        sb.table.return_value.in_.assert_any_call("id", ["s1", "s2"])

    @patch("tutor_engine.db.chat_sessions.get_supabase")
    def test_delete_user_sessions_none(self, mock_sb):
        sb = _mock_supabase([MagicMock(data=[])])
        mock_sb.return_value = sb

        assert chat_sessions.delete_user_sessions(USER_ID) == 0
        sb.table.return_value.delete.assert_not_called()

    @patch("tutor_engine.db.chat_sessions.get_supabase")
    def test_update_summary_missing_session(self, mock_sb):
        mock_sb.return_value = _mock_supabase([MagicMock(data=[])])
        with pytest.raises(NotFoundError):
            chat_sessions.update_session_summary(SESSION_ID, "summary")


class TestTurns:
    @patch("tutor_engine.db.chat_sessions.get_supabase")
    def test_append_turn_with_media(self, mock_sb):
        turn_id = uuid4()
        sb = _mock_supabase([MagicMock(data=[{"id": str(turn_id)}])])
        mock_sb.return_value = sb
        media = MediaAttachment(url="https://cdn.example.com/a.png", mime_type="image/png", size=10)

        result = chat_sessions.append_turn(SESSION_ID, TurnRole.USER, "Look at this", media)

        assert result == turn_id
        sb.table.return_value.insert.assert_called_once_with({
            "session_id": str(SESSION_ID),
            "sender": "user",
            "content": "Look at this",
            "media_url": "https://cdn.example.com/a.png",
            "media_type": "image/png",
            "media_size": 10,
        })

    @patch("tutor_engine.db.chat_sessions.get_supabase")
    def test_append_blank_turn_rejected(self, mock_sb):
        sb = _mock_supabase()
        mock_sb.return_value = sb

        with pytest.raises(ValidationError):
            chat_sessions.append_turn(SESSION_ID, TurnRole.ASSISTANT, "   ")
        sb.table.assert_not_called()

    @patch("tutor_engine.db.chat_sessions.get_supabase")
    def test_append_turn_unknown_session(self, mock_sb):
        sb = _mock_supabase()
        sb.table.return_value.execute.side_effect = Exception(
            "{'code': '23503', 'message': 'insert or update violates foreign key constraint'}"
        )
        mock_sb.return_value = sb

        with pytest.raises(NotFoundError):
            chat_sessions.append_turn(SESSION_ID, TurnRole.USER, "hello")

    @patch("tutor_engine.db.chat_sessions.get_supabase")
    def test_append_turn_store_failure(self, mock_sb):
        sb = _mock_supabase()
        sb.table.return_value.execute.side_effect = Exception("timeout")
        mock_sb.return_value = sb

        with pytest.raises(PersistenceError):
            chat_sessions.append_turn(SESSION_ID, TurnRole.USER, "hello")

    @patch("tutor_engine.db.chat_sessions.get_supabase")
    def test_recent_turns_oldest_first(self, mock_sb):
        sb = _mock_supabase([
            MagicMock(data=[
                _message_row("third", "2024-05-01T10:03:00+00:00", sender="ai"),
                _message_row("second", "2024-05-01T10:02:00+00:00"),
                _message_row("first", "2024-05-01T10:01:00+00:00", sender="assistant"),
            ])
        ])
        mock_sb.return_value = sb

        turns = chat_sessions.get_recent_turns(SESSION_ID, 3)

        assert [t.content for t in turns] == ["first", "second", "third"]
        assert [t.role for t in turns] == [TurnRole.ASSISTANT, TurnRole.USER, TurnRole.ASSISTANT]
        sb.table.return_value.order.assert_called_once_with("created_at", desc=True)
        sb.table.return_value.limit.assert_called_once_with(3)

    @patch("tutor_engine.db.chat_sessions.get_supabase")
    def test_list_turns_reads_media(self, mock_sb):
        mock_sb.return_value = _mock_supabase([
            MagicMock(data=[
                _message_row(
                    "see image",
                    "2024-05-01T10:01:00+00:00",
                    media_url="https://cdn.example.com/a.png",
                    media_type="image/png",
                    media_size=42,
                ),
            ])
        ])

        turns = chat_sessions.list_turns(SESSION_ID)

        assert turns[0].media.url == "https://cdn.example.com/a.png"
        assert turns[0].media.is_image is True
        assert isinstance(turns[0].id, UUID)

    @pytest.mark.asyncio
    @patch("tutor_engine.db.chat_sessions.get_supabase")
    async def test_async_wrapper_delegates(self, mock_sb):
        mock_sb.return_value = _mock_supabase([MagicMock(data=[{"id": str(SESSION_ID)}])])
        assert await chat_sessions.create_session_async(USER_ID) == SESSION_ID
