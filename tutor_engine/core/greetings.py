"""Opening greetings for new conversations.

A generated greeting is typically shown in the app and then sent back as the
``seedPrompt`` of the first chat message. Greetings are cached per user and
topic for a short TTL; the cache is advisory only.
"""

from uuid import UUID

from tutor_engine.core.config import get_settings
from tutor_engine.core.llm import complete_text
from tutor_engine.core.logging import get_logger
from tutor_engine.core.ttl_cache import TTLCache

logger = get_logger(__name__)

_greeting_cache: TTLCache | None = None


def get_greeting_cache() -> TTLCache:
    """Process-wide greeting cache, created on first use."""
    global _greeting_cache
    if _greeting_cache is None:
        settings = get_settings()
        _greeting_cache = TTLCache(
            ttl_seconds=settings.GREETING_CACHE_TTL_SECONDS,
            max_entries=settings.GREETING_CACHE_MAX_ENTRIES,
        )
    return _greeting_cache


def _cache_key(user_id: UUID, topic: str | None) -> str:
    return f"greeting:{user_id}:{(topic or 'general').strip().lower()}"


def build_greeting_prompt(topic: str | None, context: str | None, interests: list[str]) -> str:
    lines = [
        "You are a proactive, friendly AI tutor in a learning app. "
        "Write an engaging opening message that:",
        f"- Shows awareness of the topic: {topic or 'general conversation'}",
        f"- Considers this context: {context}" if context else "- Is welcoming and helpful",
    ]
    if interests:
        lines.append(f"- References the learner's interests: {', '.join(interests)}")
    lines.append("- Offers to dive deeper and ends with a question")
    lines.append("- Is concise (2-3 sentences max)")
    return "\n".join(lines)


async def get_opening_greeting(
    user_id: UUID,
    topic: str | None = None,
    context: str | None = None,
    interests: list[str] | None = None,
) -> tuple[str, bool]:
    """
    Generate (or reuse) an opening greeting.

    Returns:
        (greeting, cached) where cached tells whether the cache served it

    Raises:
        UpstreamError: If generation fails on a cache miss
    """
    cache = get_greeting_cache()
    key = _cache_key(user_id, topic)

    cached = cache.get(key)
    if cached is not None:
        return cached, True

    settings = get_settings()
    greeting = await complete_text(
        build_greeting_prompt(topic, context, interests or []),
        model=settings.GREETING_MODEL,
        max_tokens=200,
    )
    cache.set(key, greeting)
    logger.info(f"Generated opening greeting for user {user_id} (topic={topic or 'general'})")
    return greeting, False
