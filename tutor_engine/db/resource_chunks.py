"""Vector search over resource chunks written by the ingestion worker."""

from typing import Any
from uuid import UUID

from tutor_engine.core.logging import get_logger
from tutor_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)


def match_resource_chunks(
    query_embedding: list[float],
    owner_id: UUID,
    resource_ids: list[UUID],
    match_threshold: float,
    match_count: int,
) -> list[dict[str, Any]]:
    """
    Similarity search restricted to one owner's chunks of the given resources.

    The ``match_resource_chunks`` RPC applies the owner and resource filters
    before ranking, so ``match_count`` counts only eligible rows.

    Returns:
        Rows with id, resource_id, chunk_text, similarity (and chunk_index
        where the table has one), ordered by similarity with ties in
        insertion order

    Raises:
        Exception: If the RPC call fails
    """
    supabase = get_supabase()
    response = supabase.rpc(
        "match_resource_chunks",
        {
            "p_query_embedding": query_embedding,
            "p_owner_id": str(owner_id),
            "p_resource_ids": [str(rid) for rid in resource_ids],
            "p_match_threshold": match_threshold,
            "p_match_count": match_count,
        },
    ).execute()

    rows = response.data or []
    logger.debug(f"match_resource_chunks returned {len(rows)} rows for owner {owner_id}")
    return rows
