"""Test doubles shared by the test modules."""
from __future__ import annotations

import asyncio
import json
from collections import deque
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from taskmind.agents.base import BaseAgent, prompt_text
from taskmind.core.models import AgentContext, AgentMetadata, AgentResult, AgentType, Plan, PlanStep, Task
from taskmind.memory.coordinator import MemoryCoordinator
from taskmind.memory.embeddings import HashEmbeddingProvider
from taskmind.memory.episodic import EpisodicMemory
from taskmind.memory.long_term import LongTermMemory
from taskmind.memory.semantic import SemanticMemory
from taskmind.memory.short_term import ShortTermMemory
from taskmind.memory.stores import InMemoryContextCache, InMemoryRepository, InMemoryVectorStore
from taskmind.services.providers import Completion, ModelProvider
from taskmind.services.skills import Skill, SkillResult

Response = Union[str, BaseException]

LOGIN_PLAN = json.dumps(
    {
        "analysis": "Login endpoint with tests",
        "steps": [
            {
                "id": "step-1",
                "description": "Implement the POST /login handler",
                "agentType": "CODE",
                "dependencies": [],
                "expectedOutput": "Handler code",
            },
            {
                "id": "step-2",
                "description": "Test the login handler",
                "agentType": "QA",
                "dependencies": ["step-1"],
                "expectedOutput": "Test report",
            },
        ],
        "estimatedTotalMinutes": 30,
        "confidence": 0.85,
        "reasoning": "Build then verify",
    }
)


class ScriptedProvider(ModelProvider):
    """Model provider returning queued responses, then a responder or default text."""

    name = "scripted"

    def __init__(
        self,
        responses: Iterable[Response] = (),
        *,
        responder: Optional[Callable[[str], Response]] = None,
        default: str = "ok",
        tokens: Optional[int] = None,
        available: bool = True,
        delay: float = 0.0,
    ) -> None:
        self.responses = deque(responses)
        self.responder = responder
        self.default = default
        self.tokens = tokens
        self.available = available
        self.delay = delay
        self.prompts: List[str] = []

    async def complete(self, prompt, *, system_prompt=None, temperature=0.7, max_tokens=4096) -> Completion:
        text_in = prompt_text(prompt)
        self.prompts.append(text_in)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.responses:
            response = self.responses.popleft()
        elif self.responder is not None:
            response = self.responder(text_in)
        else:
            response = self.default
        if isinstance(response, BaseException):
            raise response
        return Completion(text=response, tokens_used=self.tokens)

    async def is_available(self) -> bool:
        return self.available


def login_responder(prompt: str) -> str:
    if "Respond with JSON only" in prompt:
        return LOGIN_PLAN
    if prompt.startswith("Aggregate"):
        return "Login endpoint implemented and tested"
    return "step done"


class StaticSkill(Skill):
    def __init__(self, text: str, tokens: int = 7) -> None:
        self.text = text
        self.tokens = tokens
        self.payloads: List[Dict[str, Any]] = []

    async def invoke(self, payload: Dict[str, Any]) -> SkillResult:
        self.payloads.append(payload)
        return SkillResult(text=self.text, tokens_used=self.tokens)


class KeywordAgent(BaseAgent):
    """Agent accepting tasks whose text contains one of its keywords."""

    METADATA = AgentMetadata(id="keyword-001", name="Keyword", type=AgentType.GENERAL)

    def __init__(self, *args: Any, keywords: Iterable[str] = (), fail_init: bool = False, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.keywords = tuple(keywords)
        self.fail_init = fail_init
        self.init_calls = 0
        self.messages: List[Any] = []

    async def on_initialize(self) -> None:
        self.init_calls += 1
        if self.fail_init:
            raise RuntimeError("init failed")

    async def can_handle(self, task: Task) -> bool:
        text = task.text.lower()
        return any(keyword in text for keyword in self.keywords)

    async def handle_message(self, message) -> None:
        self.messages.append(message)
        await super().handle_message(message)

    async def build_plan(self, task: Task, context: AgentContext, memory) -> Plan:
        text, _ = await self.call_model(f"plan {task.title}", context)
        return Plan(steps=[PlanStep(id="step-1", description=text)], confidence=0.9)

    async def run_plan(self, plan: Plan, context: AgentContext) -> AgentResult:
        text, tokens = await self.call_model(f"run {plan.steps[0].description}", context)
        return AgentResult(success=True, output=text, tokens_used=tokens)


def keyword_agent(agent_id: str, agent_type: AgentType = AgentType.GENERAL, **kwargs: Any) -> KeywordAgent:
    metadata = AgentMetadata(id=agent_id, name=agent_id.title(), type=agent_type)
    return KeywordAgent(kwargs.pop("provider", ScriptedProvider()), metadata=metadata, **kwargs)


def build_memory(dimension: int = 128, clock: Optional[Callable[[], float]] = None) -> MemoryCoordinator:
    cache = InMemoryContextCache(clock) if clock else InMemoryContextCache()
    repository = InMemoryRepository()
    semantic = SemanticMemory(HashEmbeddingProvider(dimension), InMemoryVectorStore())
    return MemoryCoordinator(
        short_term=ShortTermMemory(cache),
        long_term=LongTermMemory(repository),
        semantic=semantic,
        episodic=EpisodicMemory(repository, semantic),
    )
