"""Embedding model implementations."""

import asyncio
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .base import BaseEmbedding

logger = logging.getLogger(__name__)


class EmbeddingStatus(str, Enum):
    """Which path produced an embedding."""
    OK = "ok"
    DEGRADED = "degraded"


@dataclass
class EmbeddingResult:
    """An embedding vector together with the path that produced it."""
    vector: list[float]
    status: EmbeddingStatus = EmbeddingStatus.OK

    @property
    def degraded(self) -> bool:
        return self.status is EmbeddingStatus.DEGRADED


def string_hash(text: str) -> int:
    """32-bit signed rolling hash (h * 31 + c) of a string."""
    value = 0
    for char in text:
        value = ((value << 5) - value + ord(char)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return value


class HashEmbedding(BaseEmbedding):
    """Deterministic pseudo-embedding derived from a string hash.

    Component ``i`` is ``sin(hash + i) * 0.1``. The vectors are NOT
    semantically meaningful; they only keep the pipeline running when no
    embedding service is reachable.
    """

    def __init__(self, dimension: int = 1024, scale: float = 0.1):
        """Initialize the hash embedding.

        Args:
            dimension: Dimension of the embedding vectors
            scale: Amplitude of each component
        """
        self._dimension = dimension
        self.scale = scale

    @property
    def dimension(self) -> int:
        return self._dimension

    def _hash_text(self, text: str) -> list[float]:
        base = string_hash(text)
        return [math.sin(base + i) * self.scale for i in range(self._dimension)]

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._hash_text(text) for text in texts]

    async def embed_query(self, text: str) -> list[float]:
        return self._hash_text(text)


class MistralEmbedding(BaseEmbedding):
    """Remote embedding model with a deterministic local fallback.

    Talks to the Mistral embeddings endpoint through the OpenAI-compatible
    client. Any failure (missing key, network error, malformed response) is
    logged and answered with a ``HashEmbedding`` vector instead, so callers
    never see an exception. Use ``embed_with_status`` or ``last_status`` to
    find out which path was taken.
    """

    # Known model dimensions
    MODEL_DIMENSIONS = {
        "mistral-embed": 1024,
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
    }

    def __init__(
        self,
        model: str = "mistral-embed",
        api_key: Optional[str] = None,
        base_url: Optional[str] = "https://api.mistral.ai/v1",
        dimension: Optional[int] = None,
        timeout: float = 30.0,
        max_concurrency: int = 1,
        fallback: Optional[BaseEmbedding] = None,
    ):
        """Initialize the embedding model.

        Args:
            model: Embedding model name
            api_key: API key; without one every call uses the fallback
            base_url: Base URL of the OpenAI-compatible API
            dimension: Vector dimension (looked up from the model if None)
            timeout: Request timeout in seconds
            max_concurrency: Parallel requests used by ``embed_documents``
            fallback: Fallback embedding (default: HashEmbedding)
        """
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.max_concurrency = max(1, max_concurrency)
        self._dimension = dimension or self.MODEL_DIMENSIONS.get(model, 1024)
        self.fallback = fallback or HashEmbedding(dimension=self._dimension)
        self.last_status: Optional[EmbeddingStatus] = None
        self.fallback_count = 0
        self._client = None

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def model_name(self) -> str:
        return self.model

    @property
    def is_degraded(self) -> bool:
        return self.last_status is EmbeddingStatus.DEGRADED

    def _get_client(self):
        """Get or create the OpenAI-compatible client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError:
                raise ImportError(
                    "Remote embedding requires the 'openai' package. "
                    "Install it with: pip install openai"
                )

            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def _request(self, text: str) -> list[float]:
        client = self._get_client()
        response = await client.embeddings.create(model=self.model, input=text)

        if not response.data or not response.data[0].embedding:
            raise ValueError("Invalid embedding response")

        vector = list(response.data[0].embedding)
        if len(vector) != self._dimension:
            raise ValueError(
                f"Embedding has {len(vector)} dimensions, expected {self._dimension}"
            )
        return vector

    async def _fallback(self, text: str) -> EmbeddingResult:
        self.fallback_count += 1
        self.last_status = EmbeddingStatus.DEGRADED
        vector = await self.fallback.embed_query(text)
        return EmbeddingResult(vector=vector, status=EmbeddingStatus.DEGRADED)

    async def embed_with_status(self, text: str) -> EmbeddingResult:
        """Embed a text and report whether the fallback was used."""
        if not self.api_key:
            logger.warning("No API key provided, using fallback embedding")
            return await self._fallback(text)

        try:
            vector = await self._request(text)
        except Exception as e:
            logger.error(f"Error generating embedding: {e}")
            return await self._fallback(text)

        self.last_status = EmbeddingStatus.OK
        return EmbeddingResult(vector=vector)

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single query."""
        result = await self.embed_with_status(text)
        return result.vector

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed texts with a bounded pool, preserving input order."""
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def embed_one(text: str) -> list[float]:
            async with semaphore:
                return await self.embed_query(text)

        return list(await asyncio.gather(*(embed_one(text) for text in texts)))
