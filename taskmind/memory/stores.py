"""Storage backends behind the memory tiers.

Each tier depends only on the abstract contracts here. The in-process
implementations back tests and single-node deployments; ``RedisContextCache``
is the shared ephemeral cache for multi-process setups.
"""
from __future__ import annotations

import abc
import json
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from taskmind.core.models import to_jsonable

from .embeddings import cosine_similarity
from .models import EmbeddingMetadata, EmbeddingRecord

Predicate = Callable[[Any], bool]


class Repository(abc.ABC):
    """Keyed record store partitioned into named collections."""

    @abc.abstractmethod
    async def insert(self, collection: str, key: str, record: Any) -> None:
        pass

    @abc.abstractmethod
    async def get(self, collection: str, key: str) -> Optional[Any]:
        pass

    @abc.abstractmethod
    async def query(self, collection: str, predicate: Optional[Predicate] = None) -> List[Any]:
        pass

    @abc.abstractmethod
    async def update(self, collection: str, key: str, record: Any) -> None:
        pass

    @abc.abstractmethod
    async def delete(self, collection: str, key: str) -> bool:
        pass

    @abc.abstractmethod
    async def clear(self, collection: str) -> None:
        pass

    async def count(self, collection: str) -> int:
        return len(await self.query(collection))


class InMemoryRepository(Repository):
    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, Any]] = {}

    def _collection(self, name: str) -> Dict[str, Any]:
        return self._collections.setdefault(name, {})

    async def insert(self, collection: str, key: str, record: Any) -> None:
        self._collection(collection)[key] = record

    async def get(self, collection: str, key: str) -> Optional[Any]:
        return self._collection(collection).get(key)

    async def query(self, collection: str, predicate: Optional[Predicate] = None) -> List[Any]:
        records = list(self._collection(collection).values())
        if predicate is None:
            return records
        return [record for record in records if predicate(record)]

    async def update(self, collection: str, key: str, record: Any) -> None:
        items = self._collection(collection)
        if key not in items:
            raise KeyError(f"{collection}:{key} does not exist")
        items[key] = record

    async def delete(self, collection: str, key: str) -> bool:
        return self._collection(collection).pop(key, None) is not None

    async def clear(self, collection: str) -> None:
        self._collection(collection).clear()


class VectorStore(abc.ABC):
    """Storage and similarity search for embedding records."""

    @abc.abstractmethod
    async def add(self, record: EmbeddingRecord) -> None:
        pass

    @abc.abstractmethod
    async def get(self, record_id: str) -> Optional[EmbeddingRecord]:
        pass

    @abc.abstractmethod
    async def all(self) -> List[EmbeddingRecord]:
        pass

    @abc.abstractmethod
    async def update_metadata(self, record_id: str, metadata: EmbeddingMetadata) -> bool:
        pass

    @abc.abstractmethod
    async def delete(self, record_id: str) -> bool:
        pass

    async def filter(self, predicate: Callable[[EmbeddingRecord], bool]) -> List[EmbeddingRecord]:
        return [record for record in await self.all() if predicate(record)]

    async def search(
        self,
        vector: List[float],
        top_k: int,
        predicate: Optional[Callable[[EmbeddingRecord], bool]] = None,
    ) -> List[Tuple[EmbeddingRecord, float]]:
        """Full scan ranked by cosine similarity, highest first."""
        candidates = await (self.filter(predicate) if predicate else self.all())
        scored = [(record, cosine_similarity(vector, record.vector)) for record in candidates]
        scored.sort(key=lambda item: item[1], reverse=True)
        return scored[:top_k]


class InMemoryVectorStore(VectorStore):
    def __init__(self) -> None:
        self._records: Dict[str, EmbeddingRecord] = {}

    async def add(self, record: EmbeddingRecord) -> None:
        self._records[record.id] = record

    async def get(self, record_id: str) -> Optional[EmbeddingRecord]:
        return self._records.get(record_id)

    async def all(self) -> List[EmbeddingRecord]:
        return list(self._records.values())

    async def update_metadata(self, record_id: str, metadata: EmbeddingMetadata) -> bool:
        record = self._records.get(record_id)
        if record is None:
            return False
        self._records[record_id] = EmbeddingRecord(
            content=record.content, vector=record.vector, metadata=metadata, id=record.id
        )
        return True

    async def delete(self, record_id: str) -> bool:
        return self._records.pop(record_id, None) is not None


class ContextCache(abc.ABC):
    """Ephemeral keyed store with TTLs and capped lists."""

    @abc.abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        pass

    @abc.abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        pass

    @abc.abstractmethod
    async def delete(self, *keys: str) -> int:
        pass

    @abc.abstractmethod
    async def exists(self, key: str) -> bool:
        pass

    @abc.abstractmethod
    async def expire(self, key: str, ttl: float) -> bool:
        pass

    @abc.abstractmethod
    async def keys(self, prefix: str) -> List[str]:
        pass

    @abc.abstractmethod
    async def push(self, key: str, value: str, *, max_length: int, ttl: Optional[float] = None) -> None:
        """Prepend to a list, trimming it to ``max_length`` newest entries."""

    @abc.abstractmethod
    async def range(self, key: str, limit: int) -> List[str]:
        pass

    @abc.abstractmethod
    async def length(self, key: str) -> int:
        pass

    async def close(self) -> None:
        return None


class InMemoryContextCache(ContextCache):
    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._values: Dict[str, Any] = {}
        self._lists: Dict[str, Deque[str]] = {}
        self._expiry: Dict[str, Optional[float]] = {}

    def _deadline(self, ttl: Optional[float]) -> Optional[float]:
        return None if ttl is None else self._clock() + ttl

    def _purge(self, key: str) -> None:
        deadline = self._expiry.get(key)
        if deadline is not None and deadline <= self._clock():
            self._values.pop(key, None)
            self._lists.pop(key, None)
            self._expiry.pop(key, None)

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self._values[key] = to_jsonable(value)
        self._expiry[key] = self._deadline(ttl)

    async def get(self, key: str) -> Optional[Any]:
        self._purge(key)
        return self._values.get(key)

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            present = self._values.pop(key, None) is not None
            present = (self._lists.pop(key, None) is not None) or present
            self._expiry.pop(key, None)
            removed += int(present)
        return removed

    async def exists(self, key: str) -> bool:
        self._purge(key)
        return key in self._values or key in self._lists

    async def expire(self, key: str, ttl: float) -> bool:
        if not await self.exists(key):
            return False
        self._expiry[key] = self._deadline(ttl)
        return True

    async def keys(self, prefix: str) -> List[str]:
        for key in list(self._expiry):
            self._purge(key)
        return [key for key in [*self._values, *self._lists] if key.startswith(prefix)]

    async def push(self, key: str, value: str, *, max_length: int, ttl: Optional[float] = None) -> None:
        self._purge(key)
        items = self._lists.setdefault(key, deque(maxlen=max_length))
        items.appendleft(value)
        if ttl is not None or key not in self._expiry:
            self._expiry[key] = self._deadline(ttl)

    async def range(self, key: str, limit: int) -> List[str]:
        self._purge(key)
        return list(self._lists.get(key, ()))[:limit]

    async def length(self, key: str) -> int:
        self._purge(key)
        return len(self._lists.get(key, ()))


class RedisContextCache(ContextCache):
    """Context cache backed by Redis using the asyncio client."""

    def __init__(self, url: str) -> None:
        from redis import asyncio as aioredis

        self._redis = aioredis.from_url(url, decode_responses=True)

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        payload = json.dumps(to_jsonable(value))
        if ttl is None:
            await self._redis.set(key, payload)
        else:
            await self._redis.setex(key, int(ttl), payload)

    async def get(self, key: str) -> Optional[Any]:
        value = await self._redis.get(key)
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._redis.delete(*keys))

    async def exists(self, key: str) -> bool:
        return bool(await self._redis.exists(key))

    async def expire(self, key: str, ttl: float) -> bool:
        return bool(await self._redis.expire(key, int(ttl)))

    async def keys(self, prefix: str) -> List[str]:
        return [key async for key in self._redis.scan_iter(match=f"{prefix}*")]

    async def push(self, key: str, value: str, *, max_length: int, ttl: Optional[float] = None) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lpush(key, value)
            pipe.ltrim(key, 0, max_length - 1)
            if ttl is not None:
                pipe.expire(key, int(ttl))
            await pipe.execute()

    async def range(self, key: str, limit: int) -> List[str]:
        return list(await self._redis.lrange(key, 0, limit - 1))

    async def length(self, key: str) -> int:
        return int(await self._redis.llen(key))

    async def close(self) -> None:
        await self._redis.aclose()
