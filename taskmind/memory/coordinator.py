"""Single entry point over the four memory tiers."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from taskmind.core.models import AgentContext, AgentResult, Plan, Task, Trace, to_jsonable, utcnow

from .episodic import EpisodicMemory
from .long_term import LongTermMemory
from .models import (
    EmbeddingMetadata,
    Episode,
    EpisodeStep,
    LearnedPattern,
    PatternType,
    RecallResult,
    SemanticType,
    TaskFilter,
    TaskMemory,
)
from .semantic import SemanticMemory
from .short_term import ShortTermMemory

UNKNOWN_AGENT = "unknown"

# Keyword rules evaluated in order against the task title.
TASK_TYPE_RULES = (
    (("api", "endpoint"), "api_development"),
    (("test",), "testing"),
    (("fix", "bug"), "bug_fix"),
    (("refactor",), "refactoring"),
    (("implement", "create"), "feature_development"),
)


def classify_task_type(task: Task) -> str:
    title = task.title.lower()
    for keywords, task_type in TASK_TYPE_RULES:
        if any(keyword in title for keyword in keywords):
            return task_type
    return "general"


def steps_from_trace(trace: Trace) -> List[EpisodeStep]:
    steps = []
    for order, span in enumerate(trace.spans, start=1):
        completed = next((e for e in span.events if "completed" in e.name), None)
        steps.append(
            EpisodeStep(
                order=order,
                action=span.operation,
                input=to_jsonable(span.attributes),
                output=to_jsonable(completed.attributes) if completed else {},
                duration=span.duration_ms,
                success=not any("failed" in e.name for e in span.events),
            )
        )
    return steps


def learnings_from(result: AgentResult) -> List[str]:
    learnings = []
    if result.reasoning:
        learnings.append(f"Approach: {result.reasoning}")
    if result.sub_results:
        succeeded = sum(1 for sub in result.sub_results if sub.success)
        learnings.append(f"{succeeded}/{len(result.sub_results)} sub-tasks succeeded")
    return learnings


class MemoryCoordinator:
    """Writes completed tasks to every tier and recalls context for planning.

    Tier failures never propagate out of :meth:`remember` or :meth:`recall`;
    they are logged and the remaining tiers still run.
    """

    def __init__(
        self,
        short_term: ShortTermMemory,
        long_term: LongTermMemory,
        semantic: SemanticMemory,
        episodic: EpisodicMemory,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.short_term = short_term
        self.long_term = long_term
        self.semantic = semantic
        self.episodic = episodic
        self._logger = logger or logging.getLogger(__name__)

    async def remember(
        self,
        task: Task,
        result: AgentResult,
        context: AgentContext,
        plan: Optional[Plan] = None,
    ) -> None:
        agent_id = context.parent_agent_id or UNKNOWN_AGENT

        try:
            await self.long_term.store_task_result(
                TaskMemory(
                    task_id=task.id,
                    title=task.title,
                    description=task.description,
                    agent_id=agent_id,
                    success=result.success,
                    plan=to_jsonable(plan) if plan is not None else {},
                    result=to_jsonable(result.output),
                    tokens_used=result.tokens_used,
                    duration=result.duration,
                )
            )
        except Exception:  # noqa: BLE001
            self._logger.warning("Long-term write failed for task %s", task.id, exc_info=True)

        try:
            await self.episodic.store_episode(
                Episode(
                    task_id=task.id,
                    agent_id=agent_id,
                    task_type=classify_task_type(task),
                    start_time=context.trace.start_time,
                    end_time=utcnow(),
                    success=result.success,
                    steps=tuple(steps_from_trace(context.trace)),
                    decisions=tuple(to_jsonable(context.decisions)),
                    outcome=to_jsonable(result.output),
                    learnings=tuple(learnings_from(result)),
                )
            )
        except Exception:  # noqa: BLE001
            self._logger.warning("Episodic write failed for task %s", task.id, exc_info=True)

        outcome = "Success" if result.success else "Failed"
        try:
            await self.semantic.store_embedding(
                f"{task.title}: {task.description}. Result: {outcome}",
                EmbeddingMetadata(
                    type=SemanticType.TASK,
                    source="task_completion",
                    agent_id=context.parent_agent_id,
                    task_id=task.id,
                ),
            )
        except Exception:  # noqa: BLE001
            self._logger.warning("Semantic write failed for task %s", task.id, exc_info=True)

        self._logger.info("Remembered task %s across memory tiers", task.id)

    async def recall(self, task: Task, limit: int = 5) -> RecallResult:
        recalled = RecallResult()
        query = task.text

        try:
            seen = set()
            for hit in await self.semantic.search_similar(query, limit, semantic_type=SemanticType.TASK):
                task_id = hit.metadata.task_id
                if not task_id or task_id in seen:
                    continue
                seen.add(task_id)
                memory = await self.long_term.get_task_memory(task_id)
                if memory is not None:
                    recalled.similar.append(memory)
        except Exception:  # noqa: BLE001
            self._logger.warning("Semantic recall failed for task %s", task.id, exc_info=True)

        try:
            recalled.episodes = await self.episodic.find_similar_episodes(task, limit)
        except Exception:  # noqa: BLE001
            self._logger.warning("Episodic recall failed for task %s", task.id, exc_info=True)

        try:
            needle = task.description.lower()
            recalled.patterns = [
                pattern
                for pattern in await self.long_term.get_patterns()
                if pattern.pattern.lower() in needle or needle in pattern.pattern.lower()
            ][:3]
        except Exception:  # noqa: BLE001
            self._logger.warning("Pattern recall failed for task %s", task.id, exc_info=True)

        return recalled

    async def agent_memory(self, agent_id: str) -> Dict[str, Any]:
        return {
            "context": await self.short_term.get_context(agent_id),
            "recent_tasks": await self.long_term.get_task_history(TaskFilter(agent_id=agent_id, limit=10)),
            "patterns": await self.long_term.get_patterns(),
        }

    async def stats(self) -> Dict[str, Any]:
        episodic = await self.episodic.stats()
        semantic = await self.semantic.stats()
        return {
            "short_term": await self.short_term.stats(),
            "long_term": await self.long_term.stats(),
            "semantic": {"total_embeddings": semantic["total"], "dimension": semantic["dimension"]},
            "episodic": {
                "total_episodes": episodic["total"],
                "success_rate": episodic["successful"] / episodic["total"] if episodic["total"] else 0.0,
            },
        }

    async def learn_from_success(self, task_id: str) -> Optional[LearnedPattern]:
        """Store a decomposition pattern for a task that succeeded."""
        memory = await self.long_term.get_task_memory(task_id)
        if memory is None or not memory.success:
            return None
        steps = memory.plan.get("steps") or []
        pattern = await self.long_term.store_pattern(
            LearnedPattern(
                type=PatternType.TASK_DECOMPOSITION,
                pattern=f"{memory.title} -> {len(steps)} steps",
                description=f"Successful pattern for {memory.title}",
                examples=[task_id],
            )
        )
        self._logger.info("Learned pattern from successful task %s", task_id)
        return pattern
