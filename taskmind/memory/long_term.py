"""Long-term memory: task history, learned patterns and code snippets."""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

from taskmind.core.models import utcnow

from .models import CodeSnippet, LearnedPattern, PatternType, TaskFilter, TaskMemory
from .stores import Repository

TASKS = "tasks"
PATTERNS = "patterns"
SNIPPETS = "snippets"

# Smoothing factor for usage-driven success-rate updates.
USAGE_ALPHA = 0.1


def ema(rate: float, success: bool, alpha: float = USAGE_ALPHA) -> float:
    return alpha * (1.0 if success else 0.0) + (1 - alpha) * rate


class LongTermMemory:
    """Durable tier over a :class:`Repository`.

    Pattern merges and usage updates are read-modify-write sequences and are
    serialized by a lock so concurrent tasks cannot lose an update.
    """

    def __init__(self, repository: Repository, logger: Optional[logging.Logger] = None) -> None:
        self._repo = repository
        self._pattern_lock = asyncio.Lock()
        self._logger = logger or logging.getLogger(__name__)

    # Task history

    async def store_task_result(self, memory: TaskMemory) -> None:
        await self._repo.insert(TASKS, memory.task_id, memory)
        self._logger.info("Stored task result for %s", memory.task_id)
        if memory.success and memory.plan and memory.result is not None:
            await self.store_pattern(
                LearnedPattern(
                    type=PatternType.TASK_DECOMPOSITION,
                    pattern=decomposition_pattern(memory),
                    description=f"Successful approach for {memory.title}",
                    examples=[memory.task_id],
                    success_rate=1.0,
                )
            )

    async def get_task_memory(self, task_id: str) -> Optional[TaskMemory]:
        return await self._repo.get(TASKS, task_id)

    async def get_task_history(self, task_filter: Optional[TaskFilter] = None) -> List[TaskMemory]:
        """Newest first."""
        task_filter = task_filter or TaskFilter()
        memories = await self._repo.query(TASKS, task_filter.matches)
        memories.sort(key=lambda memory: memory.timestamp, reverse=True)
        if task_filter.limit is not None:
            memories = memories[: task_filter.limit]
        return memories

    # Patterns

    async def store_pattern(self, pattern: LearnedPattern) -> LearnedPattern:
        """Insert a pattern or merge it into the existing (type, pattern) entry."""
        async with self._pattern_lock:
            existing = await self._find_pattern(pattern.type, pattern.pattern)
            if existing is None:
                await self._repo.insert(PATTERNS, pattern.id, pattern)
                stored = pattern
            else:
                existing.usage_count += 1
                existing.last_used = utcnow()
                existing.examples = list(dict.fromkeys([*existing.examples, *pattern.examples]))
                existing.success_rate = (existing.success_rate + pattern.success_rate) / 2
                await self._repo.update(PATTERNS, existing.id, existing)
                stored = existing
        self._logger.info("Stored pattern of type: %s", pattern.type)
        return stored

    async def get_patterns(self, pattern_type: Optional[str] = None) -> List[LearnedPattern]:
        patterns = await self._repo.query(
            PATTERNS, None if pattern_type is None else (lambda p: p.type == pattern_type)
        )
        patterns.sort(key=lambda p: (p.success_rate, p.usage_count), reverse=True)
        return patterns

    async def get_pattern(self, pattern_id: str) -> Optional[LearnedPattern]:
        return await self._repo.get(PATTERNS, pattern_id)

    async def update_pattern_usage(self, pattern_id: str, success: bool) -> Optional[LearnedPattern]:
        async with self._pattern_lock:
            pattern = await self._repo.get(PATTERNS, pattern_id)
            if pattern is None:
                return None
            pattern.usage_count += 1
            pattern.last_used = utcnow()
            pattern.success_rate = ema(pattern.success_rate, success)
            await self._repo.update(PATTERNS, pattern.id, pattern)
            return pattern

    async def _find_pattern(self, pattern_type: str, text: str) -> Optional[LearnedPattern]:
        matches = await self._repo.query(PATTERNS, lambda p: p.type == pattern_type and p.pattern == text)
        return matches[0] if matches else None

    # Code snippets

    async def store_code_snippet(self, snippet: CodeSnippet) -> None:
        await self._repo.insert(SNIPPETS, snippet.id, snippet)
        self._logger.info("Stored code snippet: %s", snippet.purpose)

    async def search_code_snippets(self, query: str, limit: int = 10) -> List[CodeSnippet]:
        needle = query.lower()
        snippets = await self._repo.query(
            SNIPPETS,
            lambda s: needle in s.purpose.lower() or needle in s.code.lower() or query in s.tags,
        )
        snippets.sort(key=lambda s: s.usage_count, reverse=True)
        return snippets[:limit]

    async def update_code_snippet_usage(self, snippet_id: str, success: bool) -> Optional[CodeSnippet]:
        snippet = await self._repo.get(SNIPPETS, snippet_id)
        if snippet is None:
            return None
        snippet.usage_count += 1
        snippet.last_used = utcnow()
        snippet.success_rate = ema(snippet.success_rate, success)
        await self._repo.update(SNIPPETS, snippet.id, snippet)
        return snippet

    # Maintenance

    async def delete(self, key: str) -> bool:
        """Delete by ``task:<id>``, ``pattern:<id>`` or ``snippet:<id>`` key."""
        prefix, _, record_id = key.partition(":")
        collection = {"task": TASKS, "pattern": PATTERNS, "snippet": SNIPPETS}.get(prefix)
        if collection is None or not record_id:
            return False
        return await self._repo.delete(collection, record_id)

    async def exists(self, key: str) -> bool:
        prefix, _, record_id = key.partition(":")
        if prefix != "task":
            return False
        return await self._repo.get(TASKS, record_id) is not None

    async def clear(self) -> None:
        for collection in (TASKS, PATTERNS, SNIPPETS):
            await self._repo.clear(collection)
        self._logger.warning("Cleared all long-term memory")

    async def stats(self) -> Dict[str, int]:
        return {
            "total_tasks": await self._repo.count(TASKS),
            "patterns": await self._repo.count(PATTERNS),
            "code_snippets": await self._repo.count(SNIPPETS),
        }


def decomposition_pattern(memory: TaskMemory) -> str:
    steps = memory.plan.get("steps") or []
    return f"{memory.title} -> {len(steps)} steps"
