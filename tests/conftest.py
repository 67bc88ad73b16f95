"""Shared fixtures: a temporary record store and in-process fakes."""

import json
import random
import zlib
from datetime import datetime
from pathlib import Path

import pytest

from hippo.core.config import Settings
from hippo.core.types import ChatMessage
from hippo.llm.base import LLMConfig, LLMResponse
from hippo.memory.store import SQLiteRecordStore


class FakeEmbedder:
    """Deterministic embedder: explicit vectors where given, pseudo-random otherwise."""

    def __init__(self, vectors: dict[str, list[float]] | None = None, dim: int = 64):
        self.vectors = vectors or {}
        self.dim = dim
        self.calls: list[list[str]] = []
        self.fail = False

    def vector_for(self, text: str) -> list[float]:
        if text in self.vectors:
            return list(self.vectors[text])
        rng = random.Random(zlib.crc32(text.encode("utf-8")))
        return [rng.gauss(0.0, 1.0) for _ in range(self.dim)]

    async def embed(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if self.fail:
            raise ConnectionError("embedding service unavailable")
        self.calls.append(list(texts))
        return [self.vector_for(t) for t in texts]


class FakeLLM:
    """Model client that replays queued responses and records prompts."""

    def __init__(self, responses: list | None = None):
        self.responses = list(responses or [])
        self.calls: list[list[dict]] = []
        self.configs: list[LLMConfig] = []

    def queue(self, response) -> None:
        self.responses.append(response)

    async def complete(self, messages: list[dict], config: LLMConfig) -> LLMResponse:
        self.calls.append(messages)
        self.configs.append(config)
        response = self.responses.pop(0) if self.responses else "{}"
        if isinstance(response, Exception):
            raise response
        if not isinstance(response, str):
            response = json.dumps(response, ensure_ascii=False)
        return LLMResponse(content=response, model="fake")


def make_message(
    sender_id: str,
    text: str,
    at: datetime,
    sender_name: str | None = None,
    **kwargs,
) -> ChatMessage:
    return ChatMessage(
        id=f"{sender_id}-{at.timestamp()}",
        sender_id=sender_id,
        sender_name=sender_name or sender_id,
        text=text,
        timestamp=at,
        **kwargs,
    )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,  # Don't load .env in tests
        data_dir=tmp_path,
        track_access=False,
    )


@pytest.fixture
async def store(tmp_path: Path):
    """Create a temporary record store."""
    store = SQLiteRecordStore(tmp_path / "test.db")
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()
