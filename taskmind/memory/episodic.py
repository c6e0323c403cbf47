"""Episodic memory: replayable records of complete task executions."""
from __future__ import annotations

import logging
from collections import Counter, defaultdict
from typing import Any, Dict, List, Optional

from taskmind.core.models import Task

from .models import EmbeddingMetadata, Episode, EpisodePattern, SemanticType
from .semantic import SemanticMemory
from .stores import Repository

EPISODES = "episodes"

# A step is a commonality of a pattern when it appears in more than this share of episodes.
COMMON_STEP_SHARE = 0.7


def describe_episode(episode: Episode) -> str:
    steps = ", ".join(step.action for step in episode.steps)
    outcome = "successful" if episode.success else "failed"
    return f"{episode.task_type} task {outcome} with steps: {steps}"


class EpisodicMemory:
    def __init__(
        self,
        repository: Repository,
        semantic: SemanticMemory,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._repo = repository
        self._semantic = semantic
        self._logger = logger or logging.getLogger(__name__)

    async def store_episode(self, episode: Episode) -> None:
        await self._repo.insert(EPISODES, episode.id, episode)
        try:
            await self._semantic.store_embedding(
                describe_episode(episode),
                EmbeddingMetadata(
                    type=SemanticType.EPISODE,
                    source="episodic_memory",
                    agent_id=episode.agent_id,
                    task_id=episode.task_id,
                ),
            )
        except Exception:  # noqa: BLE001
            self._logger.warning("Episode %s stored without embedding", episode.id, exc_info=True)
        self._logger.info("Stored episode for task %s", episode.task_id)

    async def get_by_task(self, task_id: str) -> Optional[Episode]:
        episodes = await self._repo.query(EPISODES, lambda e: e.task_id == task_id)
        if not episodes:
            return None
        return max(episodes, key=lambda e: e.end_time)

    async def find_similar_episodes(self, task: Task, limit: int = 5) -> List[Episode]:
        """Episodes ranked by similarity of their descriptions to the task text."""
        hits = await self._semantic.search_similar(task.text, limit * 2, semantic_type=SemanticType.EPISODE)
        episodes: List[Episode] = []
        seen = set()
        for hit in hits:
            task_id = hit.metadata.task_id
            if not task_id or task_id in seen:
                continue
            seen.add(task_id)
            episode = await self.get_by_task(task_id)
            if episode is not None:
                episodes.append(episode)
            if len(episodes) >= limit:
                break
        return episodes

    async def successful_episodes(self, task_type: Optional[str] = None, limit: int = 100) -> List[Episode]:
        episodes = await self._repo.query(
            EPISODES, lambda e: e.success and (task_type is None or e.task_type == task_type)
        )
        episodes.sort(key=lambda e: e.end_time, reverse=True)
        return episodes[:limit]

    async def recent_episodes(self, limit: int = 10) -> List[Episode]:
        episodes = await self._repo.query(EPISODES)
        episodes.sort(key=lambda e: e.end_time, reverse=True)
        return episodes[:limit]

    async def analyze_patterns(self, top: int = 20) -> List[EpisodePattern]:
        """Group successful episodes by task type and step count."""
        groups: Dict[str, List[Episode]] = defaultdict(list)
        for episode in await self.successful_episodes(limit=1000):
            groups[f"{episode.task_type}_{len(episode.steps)}steps"].append(episode)

        results = []
        for key, members in groups.items():
            step_counts = Counter(step.action for episode in members for step in episode.steps)
            results.append(
                EpisodePattern(
                    pattern=key,
                    frequency=len(members),
                    success_rate=sum(1 for e in members if e.success) / len(members),
                    average_duration=sum(e.duration_ms for e in members) / len(members),
                    commonalities=[
                        action for action, count in step_counts.items() if count > len(members) * COMMON_STEP_SHARE
                    ],
                )
            )
        results.sort(key=lambda pattern: pattern.frequency, reverse=True)
        return results[:top]

    async def stats(self) -> Dict[str, Any]:
        episodes = await self._repo.query(EPISODES)
        by_type: Dict[str, Dict[str, float]] = {}
        for task_type in {e.task_type for e in episodes}:
            members = [e for e in episodes if e.task_type == task_type]
            by_type[task_type] = {
                "total": len(members),
                "success_rate": sum(1 for e in members if e.success) / len(members),
            }
        successful = sum(1 for e in episodes if e.success)
        return {
            "total": len(episodes),
            "successful": successful,
            "failed": len(episodes) - successful,
            "by_task_type": by_type,
            "average_duration": sum(e.duration_ms for e in episodes) / len(episodes) if episodes else 0.0,
        }
