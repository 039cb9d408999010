"""User profile lookups used for prompt personalization."""

from uuid import UUID

from tutor_engine.core.logging import get_logger
from tutor_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)


def get_tone_preference(user_id: UUID) -> str | None:
    """
    Get the user's preferred tone, or None.

    Fails open: a lookup error is logged and treated as "no preference" so
    the chat continues with the mode's default tone.
    """
    try:
        response = (
            get_supabase()
            .table("user_profiles")
            .select("tone_pref")
            .eq("user_id", str(user_id))
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.warning(f"Tone lookup failed for user {user_id}, using default: {e}")
        return None

    if not response.data:
        return None
    tone = response.data[0].get("tone_pref")
    return tone.strip() if isinstance(tone, str) and tone.strip() else None
