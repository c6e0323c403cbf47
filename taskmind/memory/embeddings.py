"""Embedding providers and vector similarity.

``HashEmbeddingProvider`` is a deterministic placeholder for tests and
offline development: it hashes tokens into buckets and only captures word
overlap. Production deployments should plug in ``OpenAIEmbeddingProvider``
or another real model through the ``EmbeddingProvider`` contract.
"""
from __future__ import annotations

import abc
import hashlib
import math
import re
from typing import List, Optional, Sequence

from taskmind.services.llm_pool import LLMPool

_TOKEN = re.compile(r"[a-z0-9_]+")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; zero-norm or mismatched vectors yield 0.0."""
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class EmbeddingProvider(abc.ABC):
    """Maps text to a fixed-length vector."""

    @property
    @abc.abstractmethod
    def dimension(self) -> int:
        """Embedding dimension."""

    @abc.abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Generate embedding for a single text."""

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        return [await self.embed(text) for text in texts]


class HashEmbeddingProvider(EmbeddingProvider):
    """Placeholder feature-hashing embedding. Not suitable for semantic search."""

    def __init__(self, dimension: int = 256) -> None:
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed(self, text: str) -> List[float]:
        vector = [0.0] * self._dimension
        for token in _TOKEN.findall(text.lower()):
            digest = hashlib.blake2b(token.encode(), digest_size=8).digest()
            bucket = int.from_bytes(digest[:4], "big") % self._dimension
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[bucket] += sign
        norm = math.sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Embeddings served by an OpenAI client registered in the LLM pool."""

    def __init__(self, pool: LLMPool, model: str, dimensions: Optional[int] = None) -> None:
        self._pool = pool
        self._model = model
        self._dimensions = dimensions

    @property
    def dimension(self) -> int:
        if self._dimensions:
            return self._dimensions
        if "3-large" in self._model:
            return 3072
        return 1536

    async def embed(self, text: str) -> List[float]:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        kwargs = {"model": self._model, "input": list(texts)}
        if self._dimensions:
            kwargs["dimensions"] = self._dimensions
        async with self._pool.acquire(self._model) as client:
            response = await client.embeddings.create(**kwargs)
        return [list(item.embedding) for item in response.data]
