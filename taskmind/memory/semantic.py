"""Semantic memory: embedding storage and similarity search."""
from __future__ import annotations

import dataclasses
import logging
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence, Tuple

from taskmind.core.errors import MemoryWriteError

from .embeddings import EmbeddingProvider
from .models import EmbeddingMetadata, EmbeddingRecord, SemanticType, SimilarityResult
from .stores import VectorStore


class SemanticMemory:
    def __init__(
        self,
        embedder: EmbeddingProvider,
        store: VectorStore,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._embedder = embedder
        self._store = store
        self._logger = logger or logging.getLogger(__name__)

    @property
    def dimension(self) -> int:
        return self._embedder.dimension

    async def store_embedding(self, content: str, metadata: EmbeddingMetadata) -> str:
        vector = await self._embedder.embed(content)
        record = EmbeddingRecord(content=content, vector=tuple(vector), metadata=metadata)
        await self._store.add(record)
        self._logger.debug("Stored embedding for %s: %s", metadata.type.value, record.id)
        return record.id

    async def store_batch(self, items: Sequence[Tuple[str, EmbeddingMetadata]]) -> List[str]:
        vectors = await self._embedder.embed_batch([content for content, _ in items])
        ids = []
        for (content, metadata), vector in zip(items, vectors):
            record = EmbeddingRecord(content=content, vector=tuple(vector), metadata=metadata)
            await self._store.add(record)
            ids.append(record.id)
        return ids

    async def search_similar(
        self,
        query: str,
        limit: int = 10,
        *,
        semantic_type: Optional[SemanticType] = None,
    ) -> List[SimilarityResult]:
        """Top ``limit`` records by cosine similarity to ``query``."""
        vector = await self._embedder.embed(query)
        predicate = None
        if semantic_type is not None:
            predicate = lambda record: record.metadata.type == semantic_type  # noqa: E731
        ranked = await self._store.search(vector, limit, predicate)
        return [
            SimilarityResult(
                id=record.id,
                content=record.content,
                similarity=score,
                metadata=record.metadata,
            )
            for record, score in ranked
        ]

    async def search_similar_with_threshold(
        self, query: str, threshold: float = 0.7, limit: int = 10
    ) -> List[SimilarityResult]:
        return [result for result in await self.search_similar(query, limit) if result.similarity >= threshold]

    async def update_embedding(self, record_id: str, **changes: Any) -> EmbeddingMetadata:
        """Replace metadata fields; content and vector never change."""
        record = await self._store.get(record_id)
        if record is None:
            raise MemoryWriteError(f"Embedding {record_id} not found", context={"id": record_id})
        metadata = dataclasses.replace(record.metadata, **changes)
        await self._store.update_metadata(record_id, metadata)
        self._logger.info("Updated embedding metadata: %s", record_id)
        return metadata

    async def delete_embedding(self, record_id: str) -> bool:
        deleted = await self._store.delete(record_id)
        if deleted:
            self._logger.info("Deleted embedding: %s", record_id)
        return deleted

    async def find_by_metadata(
        self,
        *,
        semantic_type: Optional[SemanticType] = None,
        source: Optional[str] = None,
        agent_id: Optional[str] = None,
        task_id: Optional[str] = None,
    ) -> List[EmbeddingRecord]:
        def matches(record: EmbeddingRecord) -> bool:
            meta = record.metadata
            return (
                (semantic_type is None or meta.type == semantic_type)
                and (source is None or meta.source == source)
                and (agent_id is None or meta.agent_id == agent_id)
                and (task_id is None or meta.task_id == task_id)
            )

        return await self._store.filter(matches)

    async def stats(self) -> Dict[str, Any]:
        records = await self._store.all()
        by_type = Counter(record.metadata.type.value for record in records)
        return {"total": len(records), "by_type": dict(by_type), "dimension": self.dimension}
