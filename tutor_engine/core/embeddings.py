"""OpenAI embeddings generation with dimension validation."""

import asyncio

from openai import OpenAI

from tutor_engine.core.config import get_settings
from tutor_engine.core.errors import EmbeddingDimensionError, UpstreamError
from tutor_engine.core.logging import get_logger

logger = get_logger(__name__)


def _get_client() -> OpenAI:
    """Get OpenAI client instance."""
    settings = get_settings()
    return OpenAI(api_key=settings.OPENAI_API_KEY)


def embed_texts(texts: list[str]) -> list[list[float]]:
    """
    Generate embeddings for a list of texts using OpenAI.

    Args:
        texts: List of text strings to embed

    Returns:
        List of embedding vectors (each vector is list of floats)

    Raises:
        EmbeddingDimensionError: If a vector length doesn't match EMBEDDING_DIM
        UpstreamError: If the OpenAI API call fails
    """
    if not texts:
        return []

    settings = get_settings()
    client = _get_client()

    try:
        response = client.embeddings.create(
            model=settings.EMBEDDING_MODEL,
            input=texts,
            dimensions=settings.EMBEDDING_DIM,
        )
    except Exception as e:
        logger.error(f"Failed to generate embeddings: {e}")
        raise UpstreamError(f"Embedding provider failed: {e}") from e

    embeddings = []
    for i, embedding_obj in enumerate(response.data):
        embedding = embedding_obj.embedding

        # Chunk vectors in the store have EMBEDDING_DIM entries; anything else
        # would compare against the wrong space.
        if len(embedding) != settings.EMBEDDING_DIM:
            raise EmbeddingDimensionError(
                f"Embedding dimension mismatch for text {i}: "
                f"expected {settings.EMBEDDING_DIM}, got {len(embedding)}"
            )

        embeddings.append(embedding)

    logger.info(
        f"Generated {len(embeddings)} embeddings using {settings.EMBEDDING_MODEL}",
        extra={"model": settings.EMBEDDING_MODEL, "count": len(embeddings)},
    )

    return embeddings


def embed_text(text: str) -> list[float]:
    """Embed a single text."""
    return embed_texts([text])[0]


async def embed_text_async(text: str) -> list[float]:
    """Async wrapper around embed_text using thread pool."""
    return await asyncio.to_thread(embed_text, text)
