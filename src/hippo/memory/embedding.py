"""Embedding gateway - text to vectors, plus the similarity primitive."""

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

import numpy as np
from litellm import aembedding

from hippo.core.config import Settings
from hippo.core.logging import get_logger
from hippo.core.typing import Vector

logger = get_logger("memory.embedding")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; 0.0 for empty, mismatched or zero vectors."""
    if len(a) == 0 or len(a) != len(b):
        return 0.0
    v1 = np.asarray(a, dtype=float)
    v2 = np.asarray(b, dtype=float)
    norm = np.linalg.norm(v1) * np.linalg.norm(v2)
    return float(np.dot(v1, v2) / norm) if norm > 0 else 0.0


@runtime_checkable
class Embedder(Protocol):
    """What memory components need from an embedding service."""

    async def embed(self, text: str) -> Vector:
        ...

    async def embed_batch(self, texts: list[str]) -> list[Vector]:
        ...


def _item_field(item: Any, name: str) -> Any:
    # litellm returns plain dicts for some providers and objects for others
    if isinstance(item, dict):
        return item[name]
    return getattr(item, name)


class EmbeddingGateway:
    """Embedder backed by litellm.aembedding."""

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        api_base: str | None = None,
    ):
        self.model = model
        self.api_key = api_key or None
        self.api_base = api_base or None

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmbeddingGateway":
        return cls(
            model=settings.embedding_model,
            api_key=settings.embedding_api_key or settings.llm_api_key,
            api_base=settings.embedding_api_base,
        )

    async def embed(self, text: str) -> Vector:
        result = await self.embed_batch([text])
        return result[0]

    async def embed_batch(self, texts: list[str]) -> list[Vector]:
        """Embed texts; output order matches input order."""
        if not texts:
            return []

        params: dict[str, Any] = {"model": self.model, "input": texts}
        if self.api_key:
            params["api_key"] = self.api_key
        if self.api_base:
            params["api_base"] = self.api_base

        response = await aembedding(**params)

        items = sorted(response.data, key=lambda item: _item_field(item, "index"))
        vectors = [list(_item_field(item, "embedding")) for item in items]
        if len(vectors) != len(texts):
            raise ValueError(
                f"Embedding provider returned {len(vectors)} vectors for {len(texts)} texts"
            )

        logger.debug(f"Embedded {len(texts)} texts with {self.model}")
        return vectors
