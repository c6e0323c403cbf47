"""Base agent definition used by the orchestrator."""
from __future__ import annotations

import abc
import asyncio
import dataclasses
import json
import logging
import math
import re
import time
from typing import Any, Awaitable, Dict, Optional, Tuple, TypeVar

from taskmind.core import tracing
from taskmind.core.errors import ModelInvocationError, ProviderUnavailableError, TaskmindError
from taskmind.core.message_bus import CommunicationBus
from taskmind.core.models import (
    AgentContext,
    AgentMessage,
    AgentMetadata,
    AgentResult,
    AgentState,
    Decision,
    MessageType,
    Plan,
    Span,
    Task,
)
from taskmind.memory.coordinator import MemoryCoordinator
from taskmind.memory.models import Interaction, RecallResult
from taskmind.services.providers import ModelProvider, Prompt
from taskmind.services.skills import SkillRegistry

T = TypeVar("T")

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

DEFAULT_MODEL_TIMEOUT = 120.0


def estimate_tokens(text: str) -> int:
    """Roughly one token per four characters."""
    return math.ceil(len(text) / 4)


def prompt_text(prompt: Prompt) -> str:
    if isinstance(prompt, str):
        return prompt
    return "\n".join(message.get("content", "") for message in prompt)


def extract_json_object(text: str) -> Any:
    """Parse the outermost ``{...}`` block of a model response."""
    match = _JSON_OBJECT.search(text)
    if match is None:
        raise ValueError("No JSON object found in response")
    return json.loads(match.group(0))


class BaseAgent(abc.ABC):
    """Abstract agent encapsulating the plan, execute and validate lifecycle.

    Per-run state (phase, trace, decisions, token count) lives on the
    :class:`AgentContext`, so one agent instance can serve concurrent runs.
    """

    METADATA: AgentMetadata

    def __init__(
        self,
        provider: Optional[ModelProvider] = None,
        memory: Optional[MemoryCoordinator] = None,
        *,
        bus: Optional[CommunicationBus] = None,
        skills: Optional[SkillRegistry] = None,
        metadata: Optional[AgentMetadata] = None,
        model_timeout: Optional[float] = DEFAULT_MODEL_TIMEOUT,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.metadata = metadata or dataclasses.replace(self.METADATA)
        self._provider = provider
        self._memory = memory
        self._bus = bus
        self._skills = skills
        self._model_timeout = model_timeout
        self._logger = logger or logging.getLogger(f"{__name__}.{type(self).__name__}")
        self.state = AgentState.UNINITIALIZED
        self.slots = asyncio.Semaphore(max(1, self.metadata.max_concurrent_tasks))

    @property
    def agent_id(self) -> str:
        return self.metadata.id

    @property
    def name(self) -> str:
        return self.metadata.name

    async def initialize(self) -> None:
        """Run one-time setup; later calls are no-ops."""
        if self.state is not AgentState.UNINITIALIZED:
            return
        self._logger.info("Initializing agent: %s", self.name)
        await self.on_initialize()
        self.state = AgentState.INITIALIZED

    async def on_initialize(self) -> None:
        """Hook executed once by :meth:`initialize`."""
        return None

    @abc.abstractmethod
    async def can_handle(self, task: Task) -> bool:
        """Capability predicate used by the registry."""

    @abc.abstractmethod
    async def build_plan(self, task: Task, context: AgentContext, memory: Optional[RecallResult]) -> Plan:
        """Produce a plan, optionally informed by recalled memory."""

    @abc.abstractmethod
    async def run_plan(self, plan: Plan, context: AgentContext) -> AgentResult:
        """Execute a plan and report the outcome."""

    async def plan(self, task: Task, context: AgentContext) -> Plan:
        context.state = AgentState.PLANNING
        span = self.create_span("plan", context)
        try:
            self.add_event(span, "planning_started", {"task_id": task.id})
            memory = await self._recall(task, span)
            plan = await self.build_plan(task, context, memory)
            span.attributes.update(plan_steps=len(plan.steps), confidence=plan.confidence)
            self.add_event(
                span,
                "planning_completed",
                {"steps": len(plan.steps), "confidence": plan.confidence, "used_memory": memory is not None},
            )
            return plan
        except Exception as exc:
            self.add_event(span, "planning_failed", {"error": str(exc)})
            raise
        finally:
            self.end_span(span)

    async def execute(self, plan: Plan, context: AgentContext) -> AgentResult:
        """Run the plan. Failures become a failed result; this never raises."""
        context.state = AgentState.EXECUTING
        span = self.create_span("execute", context)
        started = time.perf_counter()
        try:
            self.add_event(span, "execution_started", {"plan_steps": len(plan.steps)})
            result = await self.run_plan(plan, context)
            result.duration = time.perf_counter() - started
            self.add_event(
                span,
                "execution_completed",
                {"success": result.success, "duration": result.duration, "tokens_used": result.tokens_used},
            )
        except Exception as exc:  # noqa: BLE001
            duration = time.perf_counter() - started
            self._logger.error("Execution failed for %s", self.name, exc_info=True)
            self.add_event(span, "execution_failed", {"error": str(exc), "duration": duration})
            return AgentResult.failure(
                f"Execution failed: {exc}", tokens_used=context.tokens_used, duration=duration
            )
        finally:
            self.end_span(span)

        if self._memory is not None:
            await self.best_effort("Context snapshot", self._memory.short_term.set_context(self.agent_id, context))
        return result

    async def validate(self, result: AgentResult) -> bool:
        return result.success and result.output is not None

    def create_span(
        self, operation: str, context: AgentContext, attributes: Optional[Dict[str, Any]] = None
    ) -> Span:
        return tracing.create_span(
            context.trace,
            agent_id=self.agent_id,
            operation=f"{self.name}.{operation}",
            attributes={"agent_type": self.metadata.type.value, "task_id": context.task_id, **(attributes or {})},
        )

    def end_span(self, span: Span) -> None:
        tracing.end_span(span)

    def add_event(self, span: Optional[Span], name: str, attributes: Optional[Dict[str, Any]] = None) -> None:
        tracing.add_event(span, name, attributes)

    def current_span(self, context: AgentContext) -> Optional[Span]:
        return tracing.current_span(context.trace)

    async def call_model(
        self,
        prompt: Prompt,
        context: AgentContext,
        *,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
    ) -> Tuple[str, int]:
        """Invoke the model provider and return ``(text, tokens_used)``."""
        span = self.create_span("llm_call", context)
        text_in = prompt_text(prompt)
        try:
            self.add_event(span, "llm_request", {"model": self.metadata.model, "prompt_length": len(text_in)})
            if self._provider is None:
                raise ProviderUnavailableError("No model provider configured", context={"agent_id": self.agent_id})
            started = time.perf_counter()
            try:
                completion = await asyncio.wait_for(
                    self._provider.complete(prompt, system_prompt=system_prompt, temperature=temperature),
                    timeout=self._model_timeout,
                )
            except TaskmindError:
                raise
            except asyncio.TimeoutError as exc:
                raise ModelInvocationError(
                    f"Model call timed out after {self._model_timeout}s",
                    context={"agent_id": self.agent_id},
                    cause=exc,
                ) from exc
            except Exception as exc:  # noqa: BLE001
                raise ModelInvocationError(str(exc), context={"agent_id": self.agent_id}, cause=exc) from exc

            text = completion.text
            tokens = completion.tokens_used
            if tokens is None:
                tokens = estimate_tokens(text_in + text)
            context.tokens_used += tokens
            self.add_event(
                span,
                "llm_response",
                {"response_length": len(text), "duration": time.perf_counter() - started, "tokens_used": tokens},
            )
            return text, tokens
        except Exception as exc:
            self.add_event(span, "llm_failed", {"error": str(exc)})
            raise
        finally:
            self.end_span(span)

    def has_skill(self, capability: str) -> bool:
        return self._skills is not None and self._skills.has(capability)

    async def invoke_skill(self, capability: str, payload: Dict[str, Any], context: AgentContext) -> Tuple[str, int]:
        span = self.create_span("skill", context, {"capability": capability})
        try:
            if self._skills is None:
                raise ProviderUnavailableError("No skills configured", context={"agent_id": self.agent_id})
            result = await self._skills.get(capability).invoke(payload)
            context.tokens_used += result.tokens_used
            self.add_event(span, "skill_completed", {"tokens_used": result.tokens_used})
            return result.text, result.tokens_used
        except Exception as exc:
            self.add_event(span, "skill_failed", {"error": str(exc)})
            raise
        finally:
            self.end_span(span)

    def log_decision(
        self,
        context: AgentContext,
        action: str,
        reasoning: str,
        confidence: float,
        description: Optional[str] = None,
    ) -> Decision:
        decision = Decision(
            description=description or action,
            reasoning=reasoning,
            confidence=confidence,
            agent_id=self.agent_id,
            action=action,
        )
        context.decisions.append(decision)
        context.shared_memory[f"{self.agent_id}_last_decision"] = {
            "decision": action,
            "reasoning": reasoning,
            "confidence": confidence,
            "timestamp": decision.timestamp,
        }
        self._logger.debug("[%s] Decision: %s (%.2f) %s", self.name, action, confidence, reasoning)
        return decision

    async def handle_message(self, message: AgentMessage) -> None:
        """Default bus handler: record the message and answer task requests."""
        if self._memory is not None:
            await self.best_effort(
                "Interaction record",
                self._memory.short_term.add_interaction(
                    Interaction(
                        agent_id=self.agent_id,
                        type=message.type.value,
                        content=json.dumps(message.payload, default=str),
                        metadata={"sender_id": message.sender_id, "message_id": message.id},
                    )
                ),
            )
        if message.type is not MessageType.TASK_REQUEST or self._bus is None:
            return

        payload: Dict[str, Any] = {"agent_id": self.agent_id, "capabilities": sorted(self.metadata.capabilities)}
        if "title" in message.payload:
            task = Task(title=message.payload["title"], description=message.payload.get("description", ""))
            payload["can_handle"] = await self.can_handle(task)
        await self._bus.send(
            AgentMessage(
                sender_id=self.agent_id,
                recipient_id=message.sender_id,
                type=MessageType.TASK_RESPONSE,
                payload=payload,
                correlation_id=message.id,
            )
        )

    def describe(self) -> Dict[str, Any]:
        return {
            "id": self.agent_id,
            "name": self.name,
            "type": self.metadata.type.value,
            "model": self.metadata.model,
            "description": self.metadata.description,
            "capabilities": sorted(self.metadata.capabilities),
            "max_concurrent_tasks": self.metadata.max_concurrent_tasks,
            "state": self.state.value,
        }

    async def best_effort(self, what: str, operation: Awaitable[T]) -> Optional[T]:
        """Await ``operation``; on failure log and return None."""
        try:
            return await operation
        except Exception:  # noqa: BLE001
            self._logger.warning("%s failed for %s", what, self.name, exc_info=True)
            return None

    async def _recall(self, task: Task, span: Span) -> Optional[RecallResult]:
        if self._memory is None:
            return None
        recalled = await self.best_effort("Memory recall", self._memory.recall(task, 3))
        if recalled is None or recalled.is_empty:
            return None
        self.add_event(
            span,
            "memory_recall",
            {
                "similar_tasks": len(recalled.similar),
                "episodes": len(recalled.episodes),
                "patterns": len(recalled.patterns),
            },
        )
        return recalled
