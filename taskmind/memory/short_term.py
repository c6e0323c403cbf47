"""Short-term working memory: agent context snapshots and recent interactions."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

from taskmind.core.errors import MemoryWriteError
from taskmind.core.models import AgentContext, new_id, to_jsonable

from .models import Interaction
from .stores import ContextCache

ContextPayload = Union[AgentContext, Dict[str, Any]]


class ShortTermMemory:
    """TTL-bound memory held in a :class:`ContextCache`."""

    PREFIX = "stm:"
    CONTEXT_PREFIX = "stm:context:"
    INTERACTION_PREFIX = "stm:interaction:"
    INTERACTION_LIST = "stm:interactions:list"

    def __init__(
        self,
        cache: ContextCache,
        *,
        default_ttl: float = 3600,
        context_ttl: float = 7200,
        max_interactions: int = 1000,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._cache = cache
        self.default_ttl = default_ttl
        self.context_ttl = context_ttl
        self.max_interactions = max_interactions
        self._logger = logger or logging.getLogger(__name__)

    async def store(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        await self._cache.set(key, value, ttl or self.default_ttl)
        self._logger.debug("Stored in short-term memory: %s", key)

    async def retrieve(self, key: str) -> Optional[Any]:
        return await self._cache.get(key)

    async def delete(self, key: str) -> None:
        await self._cache.delete(key)

    async def exists(self, key: str) -> bool:
        return await self._cache.exists(key)

    async def extend_ttl(self, key: str, ttl: float) -> bool:
        return await self._cache.expire(key, ttl)

    async def clear(self) -> int:
        keys = await self._cache.keys(self.PREFIX)
        removed = await self._cache.delete(*keys) if keys else 0
        self._logger.info("Cleared %d items from short-term memory", removed)
        return removed

    async def set_context(self, agent_id: str, context: ContextPayload) -> None:
        snapshot = context.snapshot() if isinstance(context, AgentContext) else to_jsonable(context)
        await self.store(f"{self.CONTEXT_PREFIX}{agent_id}", snapshot, self.context_ttl)

    async def get_context(self, agent_id: str) -> Optional[Dict[str, Any]]:
        return await self.retrieve(f"{self.CONTEXT_PREFIX}{agent_id}")

    async def update_context(self, agent_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        current = await self.get_context(agent_id)
        if current is None:
            raise MemoryWriteError(f"No context found for agent {agent_id}", context={"agent_id": agent_id})
        updated = {**current, **to_jsonable(updates)}
        await self.set_context(agent_id, updated)
        return updated

    async def add_interaction(self, interaction: Interaction) -> str:
        if not interaction.id:
            interaction.id = new_id()
        await self.store(f"{self.INTERACTION_PREFIX}{interaction.id}", interaction, self.default_ttl)
        await self._cache.push(
            self.INTERACTION_LIST,
            interaction.id,
            max_length=self.max_interactions,
            ttl=self.default_ttl,
        )
        return interaction.id

    async def recent_interactions(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Newest first; entries whose TTL lapsed are skipped."""
        interactions = []
        for interaction_id in await self._cache.range(self.INTERACTION_LIST, limit):
            stored = await self.retrieve(f"{self.INTERACTION_PREFIX}{interaction_id}")
            if stored:
                interactions.append(stored)
        return interactions

    async def active_agents(self) -> List[str]:
        keys = await self._cache.keys(self.CONTEXT_PREFIX)
        return [key[len(self.CONTEXT_PREFIX):] for key in keys]

    async def close(self) -> None:
        await self._cache.close()

    async def stats(self) -> Dict[str, int]:
        return {
            "active_contexts": len(await self._cache.keys(self.CONTEXT_PREFIX)),
            "recent_interactions": await self._cache.length(self.INTERACTION_LIST),
        }
