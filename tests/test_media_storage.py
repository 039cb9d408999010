"""Tests for media resolution and the tone lookup (Supabase is mocked)."""

from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest

from tutor_engine.core.errors import PersistenceError, ValidationError
from tutor_engine.db.media_storage import resolve_media
from tutor_engine.db.profiles import get_tone_preference


class TestResolveMedia:
    @patch("tutor_engine.db.media_storage.get_supabase")
    def test_absolute_url_used_as_is(self, mock_sb):
        media = resolve_media("https://cdn.example.com/diagram.png")

        assert media.url == "https://cdn.example.com/diagram.png"
        assert media.mime_type == "image/png"
        assert media.is_image is True
        mock_sb.assert_not_called()

    @patch("tutor_engine.db.media_storage.get_supabase")
    def test_bucket_path_resolved(self, mock_sb):
        bucket = MagicMock()
        bucket.get_public_url.return_value = "https://test.supabase.co/storage/v1/object/public/chat-media/u1/notes.pdf"
        bucket.list.return_value = [{"name": "notes.pdf", "metadata": {"size": 5120}}]
        sb = MagicMock()
        sb.storage.from_.return_value = bucket
        mock_sb.return_value = sb

        media = resolve_media("/u1/notes.pdf")

        sb.storage.from_.assert_called_with("chat-media")
        bucket.get_public_url.assert_called_once_with("u1/notes.pdf")
        assert media.mime_type == "application/pdf"
        assert media.size == 5120
        assert media.is_image is False

    @patch("tutor_engine.db.media_storage.get_supabase")
    def test_size_unknown_when_listing_fails(self, mock_sb):
        bucket = MagicMock()
        bucket.get_public_url.return_value = "https://test.supabase.co/x.jpg"
        bucket.list.side_effect = Exception("forbidden")
        mock_sb.return_value.storage.from_.return_value = bucket

        assert resolve_media("x.jpg").size is None

    @patch("tutor_engine.db.media_storage.get_supabase")
    def test_storage_failure(self, mock_sb):
        mock_sb.return_value.storage.from_.return_value.get_public_url.side_effect = Exception("down")
        with pytest.raises(PersistenceError):
            resolve_media("u1/a.png")

    def test_blank_uri_rejected(self):
        with pytest.raises(ValidationError):
            resolve_media("   ")


class TestTonePreference:
    @patch("tutor_engine.db.profiles.get_supabase")
    def test_returns_stored_tone(self, mock_sb):
        chain = mock_sb.return_value.table.return_value
        chain.select.return_value = chain
        chain.eq.return_value = chain
        chain.limit.return_value = chain
        chain.execute.return_value = MagicMock(data=[{"tone_pref": " witty "}])

        assert get_tone_preference(uuid4()) == "witty"

    @patch("tutor_engine.db.profiles.get_supabase")
    def test_fails_open(self, mock_sb):
        mock_sb.return_value.table.side_effect = Exception("timeout")
        assert get_tone_preference(uuid4()) is None

    @patch("tutor_engine.db.profiles.get_supabase")
    def test_fails_open_when_client_unavailable(self, mock_sb):
        mock_sb.side_effect = PersistenceError("Failed to initialize Supabase client: bad url")
        assert get_tone_preference(uuid4()) is None

    @patch("tutor_engine.db.profiles.get_supabase")
    def test_no_profile(self, mock_sb):
        chain = mock_sb.return_value.table.return_value
        chain.select.return_value = chain
        chain.eq.return_value = chain
        chain.limit.return_value = chain
        chain.execute.return_value = MagicMock(data=[])

        assert get_tone_preference(uuid4()) is None
