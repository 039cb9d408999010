"""Pytest configuration and fixtures."""

import os

import pytest

# Settings are read at import time by get_logger, so set these before any
# tutor_engine module is collected.
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-key")
os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key")
os.environ.setdefault("TUTOR_ENGINE_ENV", "test")


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["SUPABASE_URL"] = "https://test.supabase.co"
    os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-key"
    os.environ["OPENAI_API_KEY"] = "test-openai-key"
    os.environ["ANTHROPIC_API_KEY"] = "test-anthropic-key"
    os.environ["TUTOR_ENGINE_ENV"] = "test"


@pytest.fixture(autouse=True)
def reset_process_state():
    """Drop cached settings and process-wide caches between tests."""
    from tutor_engine.core import greetings, rate_limiter
    from tutor_engine.core.config import get_settings

    get_settings.cache_clear()
    greetings._greeting_cache = None
    rate_limiter._chat_rate_limiter = None
    yield
    get_settings.cache_clear()
    greetings._greeting_cache = None
    rate_limiter._chat_rate_limiter = None
