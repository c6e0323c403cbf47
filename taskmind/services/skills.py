"""Registry of external skills agents may invoke by capability name."""
from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any, Dict, List

from taskmind.core.errors import SkillNotFoundError


@dataclass(slots=True)
class SkillResult:
    text: str
    tokens_used: int = 0


class Skill(abc.ABC):
    """A generation capability (code, template, test...) living outside the core."""

    name: str = "skill"

    @abc.abstractmethod
    async def invoke(self, payload: Dict[str, Any]) -> SkillResult:
        """Run the skill and return its text output with token cost."""


class SkillRegistry:
    """Registry maintaining skill implementations by capability."""

    def __init__(self) -> None:
        self._skills: Dict[str, Skill] = {}

    def register(self, capability: str, skill: Skill) -> None:
        self._skills[capability] = skill

    def get(self, capability: str) -> Skill:
        if capability not in self._skills:
            raise SkillNotFoundError(f"No skill registered for capability: {capability}")
        return self._skills[capability]

    def has(self, capability: str) -> bool:
        return capability in self._skills

    def capabilities(self) -> List[str]:
        return sorted(self._skills)
