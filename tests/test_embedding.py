"""Tests for the embedding gateway and similarity."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from hippo.core.config import Settings
from hippo.memory.embedding import EmbeddingGateway, cosine_similarity


def test_cosine_identical():
    assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)


def test_cosine_orthogonal():
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)


def test_cosine_degenerate_vectors():
    """Empty, mismatched and zero vectors score 0."""
    assert cosine_similarity([], []) == 0.0
    assert cosine_similarity([1.0, 2.0], [1.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


@pytest.mark.asyncio
async def test_embed_batch_preserves_order():
    """Provider items are re-sorted by index."""
    response = SimpleNamespace(
        data=[
            {"index": 1, "embedding": [0.0, 1.0]},
            {"index": 0, "embedding": [1.0, 0.0]},
        ]
    )
    gateway = EmbeddingGateway(model="text-embedding-3-small")
    with patch("hippo.memory.embedding.aembedding", AsyncMock(return_value=response)) as mock:
        vectors = await gateway.embed_batch(["first", "second"])

    assert vectors == [[1.0, 0.0], [0.0, 1.0]]
    assert mock.call_args.kwargs["input"] == ["first", "second"]


@pytest.mark.asyncio
async def test_embed_batch_count_mismatch():
    response = SimpleNamespace(data=[{"index": 0, "embedding": [1.0]}])
    gateway = EmbeddingGateway(model="m")
    with patch("hippo.memory.embedding.aembedding", AsyncMock(return_value=response)):
        with pytest.raises(ValueError):
            await gateway.embed_batch(["a", "b"])


@pytest.mark.asyncio
async def test_embed_batch_empty_skips_call():
    gateway = EmbeddingGateway(model="m")
    with patch("hippo.memory.embedding.aembedding", AsyncMock()) as mock:
        assert await gateway.embed_batch([]) == []
    mock.assert_not_called()


def test_from_settings_falls_back_to_llm_key():
    settings = Settings(_env_file=None, llm_api_key="sk-llm", embedding_api_key="")
    gateway = EmbeddingGateway.from_settings(settings)
    assert gateway.api_key == "sk-llm"
    assert gateway.model == settings.embedding_model
