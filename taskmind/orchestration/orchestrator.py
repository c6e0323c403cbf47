"""Task orchestrator: selects an agent, runs its lifecycle and records the outcome."""
from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Any, Dict, Optional

from taskmind.agents.base import BaseAgent
from taskmind.agents.registry import AgentRegistry
from taskmind.core.errors import NoSuitableAgentError, ProviderUnavailableError, TaskmindError
from taskmind.core.message_bus import CommunicationBus
from taskmind.core.models import AgentContext, AgentResult, AgentState, Plan, Task, Trace, utcnow
from taskmind.memory.coordinator import MemoryCoordinator
from taskmind.services.providers import ModelProvider

DEFAULT_TRACE_RETENTION = 200


def error_payload(exc: BaseException) -> Dict[str, Any]:
    if isinstance(exc, TaskmindError):
        return exc.to_dict()
    return TaskmindError(str(exc), context={"type": type(exc).__name__}).to_dict()


class TaskOrchestrator:
    """Single entry point for running tasks through the agent system.

    :meth:`process_task` never raises: every failure is reported as an
    :class:`AgentResult` with ``success=False`` and the error under
    ``metadata["error"]``.
    """

    def __init__(
        self,
        *,
        registry: AgentRegistry,
        bus: CommunicationBus,
        memory: Optional[MemoryCoordinator] = None,
        provider: Optional[ModelProvider] = None,
        trace_retention: int = DEFAULT_TRACE_RETENTION,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._registry = registry
        self._bus = bus
        self._memory = memory
        self._provider = provider
        self._trace_retention = trace_retention
        self._traces: "OrderedDict[str, Trace]" = OrderedDict()
        self._logger = logger or logging.getLogger(__name__)

    @property
    def registry(self) -> AgentRegistry:
        return self._registry

    @property
    def bus(self) -> CommunicationBus:
        return self._bus

    @property
    def memory(self) -> Optional[MemoryCoordinator]:
        return self._memory

    async def process_task(self, task: Task) -> AgentResult:
        self._logger.info("Processing task %s", task.id)
        context = AgentContext(task_id=task.id)
        started = time.perf_counter()
        try:
            agent = await self._select(task)
        except Exception as exc:  # noqa: BLE001
            self._logger.error("Could not start task %s: %s", task.id, exc)
            return self._failed(context, exc, "Processing failed", started)

        self._logger.info("Selected agent %s for task %s", agent.name, task.id)
        context.parent_agent_id = agent.agent_id
        try:
            async with agent.slots:
                result, plan = await self._run(agent, task, context)
        except Exception as exc:  # noqa: BLE001
            self._logger.error("Failed to process task %s", task.id, exc_info=True)
            return self._failed(context, exc, "Processing failed", started, agent)

        validated = context.state is AgentState.VALIDATED
        if plan is not None and self._memory is not None:
            try:
                await self._memory.remember(task, result, context, plan)
            except Exception:  # noqa: BLE001
                self._logger.warning("Failed to store task %s in memory", task.id, exc_info=True)

        result.metadata.update(self._metadata(agent, context, validated))
        return result

    def get_status(self) -> Dict[str, Any]:
        return {
            "registry": self._registry.stats(),
            "communication": self._bus.stats(),
            "active_agents": self._bus.active_agents(),
            "retained_traces": len(self._traces),
        }

    def get_trace(self, session_id: str) -> Optional[Trace]:
        return self._traces.get(session_id)

    async def _select(self, task: Task) -> BaseAgent:
        if self._provider is not None and not await self._provider.is_available():
            raise ProviderUnavailableError("Model provider is not available", context={"task_id": task.id})
        agent = await self._registry.select_for_task(task)
        if agent is None:
            raise NoSuitableAgentError("No suitable agent found for task", context={"task_id": task.id})
        return agent

    async def _run(self, agent: BaseAgent, task: Task, context: AgentContext):
        plan: Optional[Plan] = None
        try:
            plan = await agent.plan(task, context)
        except Exception as exc:  # noqa: BLE001
            self._logger.error("Planning failed for task %s", task.id, exc_info=True)
            context.state = AgentState.FAILED
            result = AgentResult.failure(f"Planning failed: {exc}", tokens_used=context.tokens_used)
            result.metadata["error"] = error_payload(exc)
            self._finish(context)
            return result, None

        self._logger.info("Created plan with %d steps", len(plan.steps))
        result = await agent.execute(plan, context)
        if await agent.validate(result):
            context.state = AgentState.VALIDATED
        else:
            context.state = AgentState.FAILED
            self._logger.warning("Result validation failed for task %s", task.id)
        self._finish(context)
        return result, plan

    def _finish(self, context: AgentContext) -> None:
        context.trace.end_time = utcnow()
        self._traces[context.session_id] = context.trace
        self._traces.move_to_end(context.session_id)
        while len(self._traces) > self._trace_retention:
            self._traces.popitem(last=False)

    def _failed(
        self,
        context: AgentContext,
        exc: BaseException,
        prefix: str,
        started: float,
        agent: Optional[BaseAgent] = None,
    ) -> AgentResult:
        context.state = AgentState.FAILED
        self._finish(context)
        reason = exc.message if isinstance(exc, TaskmindError) else str(exc)
        result = AgentResult.failure(
            f"{prefix}: {reason}", tokens_used=context.tokens_used, duration=time.perf_counter() - started
        )
        result.metadata["error"] = error_payload(exc)
        if agent is not None:
            result.metadata.update(self._metadata(agent, context, False))
        else:
            result.metadata.update(session_id=context.session_id, task_id=context.task_id, trace=context.trace)
        return result

    @staticmethod
    def _metadata(agent: BaseAgent, context: AgentContext, validated: bool) -> Dict[str, Any]:
        return {
            "agent_id": agent.agent_id,
            "agent_name": agent.name,
            "session_id": context.session_id,
            "task_id": context.task_id,
            "validated": validated,
            "trace": context.trace,
            "context_data": dict(context.shared_memory),
        }
