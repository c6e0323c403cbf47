"""Director agent: decomposes complex tasks and aggregates step results."""
from __future__ import annotations

import json
import time
from typing import List, Optional

from taskmind.core.errors import PlanParseError
from taskmind.core.models import (
    AgentContext,
    AgentMessage,
    AgentMetadata,
    AgentResult,
    AgentType,
    BROADCAST,
    ExecutionStep,
    MessageType,
    Plan,
    PlanStep,
    Task,
)
from taskmind.memory.models import RecallResult

from .base import BaseAgent, extract_json_object

COORDINATION_KEYWORDS = ("build", "create", "implement", "develop", "analyze and")

FALLBACK_DURATION = 300.0
FALLBACK_CONFIDENCE = 0.5
DEFAULT_CONFIDENCE = 0.7

SYSTEM_PROMPT = (
    "You are a Director Agent responsible for breaking down complex tasks "
    "and coordinating other specialized agents."
)

PLAN_FORMAT = """Available agent types:
- CODE: software development, code generation, refactoring
- RESEARCH: gathers information, analyzes documentation, finds solutions
- QA: tests code, validates results, ensures quality
- GENERAL: general-purpose tasks

Create an execution plan. Respond with JSON only:
{
  "analysis": "Brief analysis of the task",
  "steps": [
    {
      "id": "step-1",
      "description": "Clear description",
      "agentType": "CODE|RESEARCH|QA|GENERAL",
      "dependencies": [],
      "expectedOutput": "What this step should produce"
    }
  ],
  "estimatedTotalMinutes": 30,
  "confidence": 0.85,
  "reasoning": "Explanation of the approach"
}"""


def planning_prompt(task: Task, memory: Optional[RecallResult]) -> str:
    lines: List[str] = []
    if memory is not None and not memory.is_empty:
        lines.append("Based on past experience:")
        if memory.similar:
            lines.append("")
            lines.append("Similar tasks:")
            for i, similar in enumerate(memory.similar, start=1):
                outcome = "Success" if similar.success else "Failed"
                steps = len(similar.plan.get("steps") or [])
                lines.append(f"{i}. {similar.title} - {outcome} ({similar.duration:.1f}s) - {steps} steps")
        if memory.episodes:
            lines.append("")
            lines.append("Relevant past episodes:")
            for i, episode in enumerate(memory.episodes, start=1):
                outcome = "Success" if episode.success else "Failed"
                lines.append(f"{i}. {episode.task_type} - {outcome} ({episode.duration_ms:.0f}ms)")
                if episode.learnings:
                    lines.append(f"   Learnings: {', '.join(episode.learnings)}")
        if memory.patterns:
            lines.append("")
            lines.append("Known patterns:")
            for pattern in memory.patterns:
                lines.append(f"- {pattern.description} ({pattern.success_rate:.0%} success rate)")
        lines.append("")
        lines.append("Consider these past experiences when planning the current task.")
        lines.append("")

    lines.extend(
        [
            f"Task: {task.title}",
            f"Description: {task.description}",
            f"Priority: {task.priority.value}",
            f"Context: {json.dumps(task.metadata, default=str)}",
            "",
            PLAN_FORMAT,
        ]
    )
    return "\n".join(lines)


def parse_plan(text: str) -> Plan:
    """Parse a model response into a plan or raise :class:`PlanParseError`."""
    try:
        data = extract_json_object(text)
    except ValueError as exc:
        raise PlanParseError(f"Invalid plan JSON: {exc}", cause=exc) from exc

    raw_steps = data.get("steps") if isinstance(data, dict) else None
    if not isinstance(raw_steps, list) or not raw_steps:
        raise PlanParseError("Plan has no steps")

    steps: List[PlanStep] = []
    for index, raw in enumerate(raw_steps, start=1):
        if not isinstance(raw, dict) or not raw.get("description"):
            raise PlanParseError(f"Step {index} has no description")
        step_id = str(raw.get("id") or f"step-{index}")
        known = {step.id for step in steps}
        if step_id in known:
            raise PlanParseError(f"Duplicate step id: {step_id}", context={"step": step_id})
        dependencies = [str(dep) for dep in raw.get("dependencies") or []]
        unknown = [dep for dep in dependencies if dep not in known]
        if unknown:
            raise PlanParseError(
                f"Step {step_id} depends on steps that do not precede it",
                context={"step": step_id, "dependencies": unknown},
            )
        steps.append(
            PlanStep(
                id=step_id,
                description=str(raw["description"]),
                agent_type=AgentType.parse(raw.get("agentType", "general")),
                dependencies=dependencies,
                expected_output=str(raw.get("expectedOutput", "")),
                tools=list(raw.get("tools") or []),
            )
        )

    try:
        minutes = float(data.get("estimatedTotalMinutes") or 0)
        raw_confidence = data.get("confidence")
        confidence = DEFAULT_CONFIDENCE if raw_confidence is None else float(raw_confidence)
    except (TypeError, ValueError) as exc:
        raise PlanParseError(f"Invalid plan estimates: {exc}", cause=exc) from exc

    return Plan(
        steps=steps,
        estimated_duration=minutes * 60,
        confidence=confidence,
        reasoning=str(data.get("reasoning") or data.get("analysis") or ""),
    )


def fallback_plan(task: Task) -> Plan:
    """Single general step covering the whole task."""
    return Plan(
        steps=[
            PlanStep(
                id="step-1",
                description=task.description,
                agent_type=AgentType.GENERAL,
                expected_output="Task completed",
            )
        ],
        estimated_duration=FALLBACK_DURATION,
        confidence=FALLBACK_CONFIDENCE,
        reasoning="Fallback plan: model output could not be parsed",
    )


class DirectorAgent(BaseAgent):
    """Orchestrates multi-step work and merges the step outputs."""

    METADATA = AgentMetadata(
        id="director-001",
        name="Director",
        type=AgentType.DIRECTOR,
        description="Orchestrates and coordinates other agents to complete complex tasks",
        capabilities=frozenset(
            {
                "task_decomposition",
                "agent_selection",
                "workflow_orchestration",
                "result_aggregation",
                "quality_assurance",
            }
        ),
        max_concurrent_tasks=5,
    )

    async def on_initialize(self) -> None:
        self._logger.info("Director agent ready for orchestration")

    async def can_handle(self, task: Task) -> bool:
        description = task.description.lower()
        if any(keyword in description for keyword in COORDINATION_KEYWORDS):
            return True
        return task.metadata.get("complexity") == "high"

    async def build_plan(self, task: Task, context: AgentContext, memory: Optional[RecallResult]) -> Plan:
        text, tokens = await self.call_model(planning_prompt(task, memory), context, system_prompt=SYSTEM_PROMPT)
        try:
            plan = parse_plan(text)
        except PlanParseError as exc:
            self._logger.warning("Falling back to single-step plan for task %s: %s", task.id, exc)
            self.add_event(self.current_span(context), "plan_fallback", {"error": exc.message})
            plan = fallback_plan(task)

        suffix = " using past experience" if memory is not None else ""
        self.log_decision(
            context,
            "task_decomposition",
            f"Decomposed task into {len(plan.steps)} steps{suffix}",
            plan.confidence,
        )
        context.shared_memory["director_tokens_used"] = tokens
        return plan

    async def run_plan(self, plan: Plan, context: AgentContext) -> AgentResult:
        self.add_event(self.current_span(context), "orchestration_started", {"total_steps": len(plan.steps)})
        sub_results: List[AgentResult] = []

        for step in plan.steps:
            await self._announce(step, context)
            started = time.perf_counter()
            try:
                step_result = await self.run_step(step, context)
            except Exception as exc:  # noqa: BLE001
                self._logger.warning("Step %s failed, aborting remaining steps", step.id, exc_info=True)
                step_result = AgentResult.failure(
                    f"Step {step.id} failed: {exc}", duration=time.perf_counter() - started
                )
            sub_results.append(step_result)
            context.trace.steps.append(
                ExecutionStep(
                    agent_id=self.agent_id,
                    action=step.id,
                    output=step_result.output,
                    duration=step_result.duration,
                    tokens_used=step_result.tokens_used,
                    success=step_result.success,
                )
            )
            context.shared_memory[f"step_{step.id}_result"] = step_result.output
            if not step_result.success:
                break

        output, reasoning, extra_tokens = await self._aggregate(sub_results, plan, context)
        return AgentResult(
            success=all(result.success for result in sub_results) and len(sub_results) == len(plan.steps),
            output=output,
            reasoning=reasoning,
            tokens_used=sum(result.tokens_used for result in sub_results) + extra_tokens,
            sub_results=sub_results,
        )

    async def run_step(self, step: PlanStep, context: AgentContext) -> AgentResult:
        """Carry out one plan step through the model on behalf of its agent type."""
        started = time.perf_counter()
        prompt = (
            "Carry out the following step and report its result:\n"
            f"Step: {step.description}\n"
            f"Agent Type: {step.agent_type.value}\n"
            f"Expected Output: {step.expected_output}"
        )
        text, tokens = await self.call_model(prompt, context)
        return AgentResult(
            success=True,
            output=text,
            reasoning=f"Executed by {step.agent_type.value} agent",
            tokens_used=tokens,
            duration=time.perf_counter() - started,
        )

    async def _aggregate(self, sub_results: List[AgentResult], plan: Plan, context: AgentContext):
        succeeded = [result for result in sub_results if result.success]
        if not succeeded:
            return None, "All steps failed", 0

        outputs = "\n\n".join(f"Step {i}: {result.output}" for i, result in enumerate(sub_results, start=1))
        prompt = (
            "Aggregate the following results into a coherent summary:\n\n"
            f"{outputs}\n\n"
            "Create a unified result that combines all successful outputs."
        )
        text, tokens = await self.call_model(prompt, context)
        return text, f"Completed {len(succeeded)}/{len(plan.steps)} steps", tokens

    async def _announce(self, step: PlanStep, context: AgentContext) -> None:
        if self._bus is None:
            return
        await self._bus.send(
            AgentMessage(
                sender_id=self.agent_id,
                recipient_id=BROADCAST,
                type=MessageType.STATUS_UPDATE,
                payload={"task_id": context.task_id, "step_id": step.id, "description": step.description},
            )
        )
