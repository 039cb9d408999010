"""Tests for OpenAI embeddings generation (client is mocked)."""

from unittest.mock import MagicMock, patch

import pytest

from tutor_engine.core.embeddings import embed_text, embed_text_async, embed_texts
from tutor_engine.core.errors import EmbeddingDimensionError, UpstreamError


def _response(*vectors):
    return MagicMock(data=[MagicMock(embedding=v) for v in vectors])


@patch("tutor_engine.core.embeddings._get_client")
def test_embed_texts_requests_configured_dimension(mock_client):
    client = MagicMock()
    client.embeddings.create.return_value = _response([0.1] * 768, [0.2] * 768)
    mock_client.return_value = client

    result = embed_texts(["a", "b"])

    assert len(result) == 2
    assert result[1] == [0.2] * 768
    client.embeddings.create.assert_called_once_with(
        model="text-embedding-3-small", input=["a", "b"], dimensions=768
    )


@patch("tutor_engine.core.embeddings._get_client")
def test_wrong_dimension_is_an_error(mock_client):
    client = MagicMock()
    client.embeddings.create.return_value = _response([0.1] * 1536)
    mock_client.return_value = client

    with pytest.raises(EmbeddingDimensionError):
        embed_text("What is osmosis?")


@patch("tutor_engine.core.embeddings._get_client")
def test_provider_failure_is_upstream_error(mock_client):
    client = MagicMock()
    client.embeddings.create.side_effect = Exception("401 invalid api key")
    mock_client.return_value = client

    with pytest.raises(UpstreamError):
        embed_text("hello")


@patch("tutor_engine.core.embeddings._get_client")
def test_empty_input_skips_provider(mock_client):
    assert embed_texts([]) == []
    mock_client.assert_not_called()


@pytest.mark.asyncio
@patch("tutor_engine.core.embeddings._get_client")
async def test_embed_text_async(mock_client):
    client = MagicMock()
    client.embeddings.create.return_value = _response([0.3] * 768)
    mock_client.return_value = client

    assert await embed_text_async("hello") == [0.3] * 768
