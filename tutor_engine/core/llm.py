"""Anthropic client utilities: streaming chat completions and one-shot text."""

from collections.abc import AsyncIterator
from typing import Any

from tutor_engine.core.config import Settings, get_settings
from tutor_engine.core.errors import ContentPolicyError, UpstreamError
from tutor_engine.core.logging import get_logger

logger = get_logger(__name__)

# Message-level stop reasons that mean the model declined for policy reasons
SAFETY_STOP_REASONS = frozenset({"refusal"})

_SAFETY_MARKERS = ("safety", "content policy", "content_policy", "content filter", "refusal")


def _get_async_client():
    """Get AsyncAnthropic client instance."""
    # Import here to avoid loading if API key not set
    from anthropic import AsyncAnthropic

    settings = get_settings()
    if not settings.ANTHROPIC_API_KEY:
        raise UpstreamError("Anthropic API key not configured. Set ANTHROPIC_API_KEY.")
    return AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)


def is_content_policy_error(error: BaseException) -> bool:
    """True when a provider error is a content-policy rejection."""
    if isinstance(error, ContentPolicyError):
        return True
    text = str(error).lower()
    return any(marker in text for marker in _SAFETY_MARKERS)


class CompletionStream:
    """
    Text fragments of one streaming completion, in arrival order.

    Iterating yields non-empty text deltas. A policy stop raises
    ContentPolicyError; any other provider failure raises UpstreamError.
    """

    def __init__(self, raw_stream: Any, model: str):
        self._raw = raw_stream
        self.model = model
        self.stop_reason: str | None = None
        self.input_tokens = 0
        self.output_tokens = 0

    def __aiter__(self) -> AsyncIterator[str]:
        return self._fragments()

    async def _fragments(self) -> AsyncIterator[str]:
        try:
            async for event in self._raw:
                event_type = getattr(event, "type", None)
                if event_type == "content_block_delta":
                    text = getattr(event.delta, "text", None)
                    if isinstance(text, str) and text:
                        yield text
                elif event_type == "message_start":
                    usage = getattr(event.message, "usage", None)
                    self.input_tokens = getattr(usage, "input_tokens", 0) or 0
                elif event_type == "message_delta":
                    usage = getattr(event, "usage", None)
                    self.output_tokens = getattr(usage, "output_tokens", 0) or 0
                    stop_reason = getattr(event.delta, "stop_reason", None)
                    if isinstance(stop_reason, str):
                        self.stop_reason = stop_reason
                    if stop_reason in SAFETY_STOP_REASONS:
                        raise ContentPolicyError(f"Model stopped with reason '{stop_reason}'")
        except (ContentPolicyError, UpstreamError):
            raise
        except Exception as e:
            if is_content_policy_error(e):
                raise ContentPolicyError(str(e)) from e
            raise UpstreamError(f"Streaming failed: {e}") from e

    async def close(self) -> None:
        close = getattr(self._raw, "close", None)
        if close is None:
            return
        try:
            await close()
        except Exception as e:
            logger.debug(f"Ignoring error while closing upstream stream: {e}")


async def open_completion_stream(
    system: str,
    messages: list[dict[str, Any]],
    settings: Settings | None = None,
) -> CompletionStream:
    """
    Start a streaming completion.

    Returns once the provider has accepted the request, so a rejection here
    surfaces before anything is sent to the client.

    Raises:
        UpstreamError: If the request is rejected at initiation
    """
    settings = settings or get_settings()
    client = _get_async_client()
    try:
        raw = await client.messages.create(
            model=settings.CHAT_MODEL,
            max_tokens=settings.CHAT_MAX_TOKENS,
            temperature=settings.CHAT_TEMPERATURE,
            top_k=settings.CHAT_TOP_K,
            system=system,
            messages=messages,
            stream=True,
        )
    except Exception as e:
        logger.error(f"Anthropic API error during stream initiation: {e}")
        raise UpstreamError(f"Generation provider error: {e}") from e

    logger.info(f"Stream initiated with model {settings.CHAT_MODEL} ({len(messages)} messages)")
    return CompletionStream(raw, settings.CHAT_MODEL)


async def complete_text(
    prompt: str,
    model: str,
    max_tokens: int = 300,
    system: str | None = None,
    temperature: float = 0.7,
) -> str:
    """
    One-shot completion returning the concatenated text blocks.

    Raises:
        UpstreamError: If the provider call fails
    """
    client = _get_async_client()
    kwargs: dict[str, Any] = {
        "model": model,
        "max_tokens": max_tokens,
        "temperature": temperature,
        "messages": [{"role": "user", "content": prompt}],
    }
    if system:
        kwargs["system"] = system

    try:
        response = await client.messages.create(**kwargs)
    except Exception as e:
        logger.error(f"Anthropic completion failed: {e}")
        raise UpstreamError(f"Generation provider error: {e}") from e

    text = ""
    for block in response.content:
        if getattr(block, "type", None) == "text":
            text += block.text
    return text.strip()
