"""Shared Supabase client for tables, RPC, storage and auth."""

from functools import lru_cache

from supabase import Client, create_client

from tutor_engine.core.config import get_settings
from tutor_engine.core.errors import PersistenceError
from tutor_engine.core.logging import get_logger

logger = get_logger(__name__)


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """
    Service-role client, created once per process.

    The service role bypasses row-level security, so every query in
    ``tutor_engine.db`` scopes by ``user_id`` itself.

    Raises:
        PersistenceError: If the client cannot be created
    """
    settings = get_settings()
    try:
        client = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
    except Exception as e:
        logger.error(f"Supabase client initialization failed for {settings.SUPABASE_URL}: {e}")
        raise PersistenceError(f"Failed to initialize Supabase client: {e}") from e

    logger.info(f"Supabase client ready ({settings.SUPABASE_URL})")
    return client
