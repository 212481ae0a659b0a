"""
Test configuration and fixtures.
"""

import asyncio
from typing import Any

import pytest

from wellness_rag.providers.base import Choice, ChoiceMessage, CompletionResponse, LLMProvider, Usage
from wellness_rag.rag import (
    BaseEmbedding,
    Category,
    EvidenceLevel,
    MemoryCacheBackend,
    MemoryConversationStore,
    MemoryDocumentStore,
    RAGPipeline,
    ResponseCache,
    WellnessDocument,
)


class StubEmbedding(BaseEmbedding):
    """Embedding that looks vectors up in a table.

    Unknown texts get ``default`` (a zero vector unless given).
    """

    def __init__(self, vectors: dict[str, list[float]] | None = None, dimension: int = 3, default=None):
        self.vectors = vectors or {}
        self._dimension = dimension
        self.default = default or [0.0] * dimension
        self.degraded = False
        self.calls: list[str] = []

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def is_degraded(self) -> bool:
        return self.degraded

    async def embed_query(self, text: str) -> list[float]:
        self.calls.append(text)
        return list(self.vectors.get(text, self.default))

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed_query(text) for text in texts]


class FakeProvider(LLMProvider):
    """Completion provider with scripted behaviour."""

    def __init__(self, reply: str = "Try keeping a consistent bedtime.", error: Exception | None = None,
                 empty: bool = False, block: bool = False):
        super().__init__()
        self.reply = reply
        self.error = error
        self.empty = empty
        self.block = block
        self.release = asyncio.Event()
        self.calls: list[dict[str, Any]] = []

    async def complete(self, messages, *, model, max_tokens=1000, temperature=0.7, top_p=0.9):
        self.calls.append({
            "messages": messages,
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "top_p": top_p,
        })

        if self.block:
            await self.release.wait()
        if self.error:
            raise self.error
        if self.empty:
            return CompletionResponse(model=model, choices=[])

        return CompletionResponse(
            model=model,
            choices=[Choice(message=ChoiceMessage(content=self.reply), finish_reason="stop")],
            usage=Usage(total_tokens=42),
        )

    @property
    def last_prompt(self) -> str:
        return self.calls[-1]["messages"][0]["content"]


def make_document(**overrides) -> WellnessDocument:
    """Build a wellness document with sensible defaults."""
    data = {
        "title": "Sleep Hygiene",
        "content": "Keep a regular sleep schedule. Avoid screens before bed.",
        "category": Category.LIFESTYLE,
        "keywords": ["sleep", "insomnia"],
        "evidence_level": EvidenceLevel.HIGH,
        "source": "sleep-foundation",
        "embedding": [1.0, 0.0, 0.0],
    }
    data.update(overrides)
    return WellnessDocument(**data)


async def wait_until_active(pipeline: RAGPipeline, generation_id: str, attempts: int = 200) -> bool:
    """Yield to the event loop until the generation is registered."""
    for _ in range(attempts):
        if pipeline.is_generation_active(generation_id):
            return True
        await asyncio.sleep(0)
    return False


@pytest.fixture
def stub_embedding():
    """Embedding with a few known query vectors."""
    return StubEmbedding({
        "sleep": [1.0, 0.0, 0.0],
        "How can I sleep better?": [1.0, 0.0, 0.0],
        "sleep routine": [1.0, 0.0, 0.0],
    })


@pytest.fixture
def document_store():
    return MemoryDocumentStore()


@pytest.fixture
def conversation_store():
    return MemoryConversationStore()


@pytest.fixture
def response_cache():
    return ResponseCache(MemoryCacheBackend())


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def pipeline(stub_embedding, document_store, conversation_store, response_cache, provider):
    """Pipeline wired to in-memory collaborators."""
    return RAGPipeline(
        embedding=stub_embedding,
        store=document_store,
        conversations=conversation_store,
        cache=response_cache,
        provider=provider,
    )
