"""Context retrieval for chat: embed the question, search the user's chunks.

Retrieval never raises. Every outcome comes back as a ``RetrievalResult``
whose ``status`` tells the prompt composer which placeholder to use:

    ok        chunks found above the threshold
    no_match  search ran, nothing cleared the threshold
    error     embedding or vector search failed
    skipped   no candidate documents were selected

Usage:
    from tutor_engine.core.retrieval import retrieve

    result = await retrieve(
        query="What is osmosis?",
        owner_id=user_id,
        candidate_document_ids=[resource_id],
        threshold=0.75,
        top_k=3,
    )
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

from tutor_engine.core.embeddings import embed_text_async
from tutor_engine.core.logging import get_logger
from tutor_engine.db.resource_chunks import match_resource_chunks

logger = get_logger(__name__)


class RetrievalStatus(str, Enum):
    OK = "ok"
    NO_MATCH = "no_match"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class RetrievedChunk:
    """One passage scoped to a single query."""

    document_id: str
    text: str
    similarity: float


@dataclass
class RetrievalResult:
    """Result from the retrieval pipeline."""

    status: RetrievalStatus
    chunks: list[RetrievedChunk] = field(default_factory=list)
    reason: str = ""

    @property
    def has_context(self) -> bool:
        return self.status == RetrievalStatus.OK and bool(self.chunks)

    @classmethod
    def skipped(cls) -> RetrievalResult:
        return cls(status=RetrievalStatus.SKIPPED, reason="no documents selected")

    @classmethod
    def no_match(cls) -> RetrievalResult:
        return cls(status=RetrievalStatus.NO_MATCH, reason="no relevant passages")

    @classmethod
    def error(cls, reason: str) -> RetrievalResult:
        return cls(status=RetrievalStatus.ERROR, reason=reason)


def rank_chunks(rows: list[dict], threshold: float, top_k: int) -> list[RetrievedChunk]:
    """
    Keep rows at or above ``threshold``, best similarity first, at most ``top_k``.

    Equal similarities are ordered by ``chunk_index`` when rows carry one,
    otherwise by position in ``rows`` (the RPC returns ties in insertion
    order).
    """
    ranked = []
    for position, row in enumerate(rows):
        similarity = float(row.get("similarity") or 0.0)
        text = row.get("chunk_text") or ""
        if similarity < threshold or not text.strip():
            continue
        chunk_index = row.get("chunk_index")
        tie_break = int(chunk_index) if chunk_index is not None else position
        chunk = RetrievedChunk(
            document_id=str(row.get("resource_id", "")),
            text=text,
            similarity=similarity,
        )
        ranked.append(((-similarity, tie_break), chunk))
    ranked.sort(key=lambda item: item[0])
    return [chunk for _, chunk in ranked[:top_k]]


async def retrieve(
    query: str,
    owner_id: UUID,
    candidate_document_ids: list[UUID],
    threshold: float,
    top_k: int,
) -> RetrievalResult:
    """
    Retrieve the top-K passages of the candidate documents for a query.

    Args:
        query: Text to embed and search with
        owner_id: Only chunks owned by this user are searched
        candidate_document_ids: Restrict to chunks of these documents
        threshold: Minimum similarity (inclusive)
        top_k: Maximum passages returned

    Returns:
        RetrievalResult; never raises
    """
    if not candidate_document_ids:
        return RetrievalResult.skipped()

    try:
        embedding = await embed_text_async(query)
    except Exception as e:
        logger.warning(f"Query embedding failed, continuing without context: {e}")
        return RetrievalResult.error(f"embedding failed: {e}")

    try:
        rows = await asyncio.to_thread(
            match_resource_chunks,
            embedding,
            owner_id,
            candidate_document_ids,
            threshold,
            top_k,
        )
    except Exception as e:
        logger.warning(f"Vector search failed, continuing without context: {e}")
        return RetrievalResult.error(f"vector search failed: {e}")

    chunks = rank_chunks(rows, threshold, top_k)
    if not chunks:
        logger.info(
            f"No chunks above {threshold} across {len(candidate_document_ids)} documents"
        )
        return RetrievalResult.no_match()

    logger.info(
        f"Retrieved {len(chunks)} chunks (best={chunks[0].similarity:.3f}) "
        f"for query: {query[:80]}"
    )
    return RetrievalResult(status=RetrievalStatus.OK, chunks=chunks)
