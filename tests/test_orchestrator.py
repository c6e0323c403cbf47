"""End-to-end task processing through the orchestrator."""
from __future__ import annotations

import asyncio

import pytest

from fakes import ScriptedProvider, keyword_agent, login_responder
from taskmind.agents.code import CodeAgent
from taskmind.agents.director import DirectorAgent
from taskmind.agents.registry import AgentRegistry
from taskmind.core.message_bus import CommunicationBus
from taskmind.core.models import AgentType, Task
from taskmind.core.tracing import open_span_count
from taskmind.orchestration.orchestrator import TaskOrchestrator

LOGIN = Task(title="Build login API", description="implement POST /login endpoint")


async def login_system(memory, **kwargs) -> TaskOrchestrator:
    bus = CommunicationBus()
    provider = ScriptedProvider(responder=login_responder)
    registry = AgentRegistry(bus)
    await registry.register(DirectorAgent(provider, memory, bus=bus))
    await registry.register(CodeAgent(provider, memory, bus=bus))
    return TaskOrchestrator(registry=registry, bus=bus, memory=memory, provider=provider, **kwargs)


@pytest.mark.anyio
async def test_login_api_task_end_to_end(memory) -> None:
    orchestrator = await login_system(memory)

    result = await orchestrator.process_task(LOGIN)

    assert result.success is True
    assert result.success == all(sub.success for sub in result.sub_results)
    assert result.output == "Login endpoint implemented and tested"
    assert len(result.sub_results) == 2
    assert result.metadata["agent_id"] == "director-001"
    assert result.metadata["validated"] is True
    assert result.metadata["task_id"] == LOGIN.id
    assert result.metadata["context_data"]["step_step-1_result"] == "step done"

    trace = result.metadata["trace"]
    assert len(trace.find("Director.plan")) == 1
    assert len(trace.find("Director.execute")) == 1
    assert open_span_count(trace) == 0
    assert trace.end_time is not None
    assert orchestrator.get_trace(result.metadata["session_id"]) is trace

    stored = await memory.long_term.get_task_memory(LOGIN.id)
    assert stored.success is True
    assert stored.agent_id == "director-001"


@pytest.mark.anyio
async def test_second_run_recalls_previous_task(memory) -> None:
    orchestrator = await login_system(memory)
    await orchestrator.process_task(LOGIN)

    repeat = Task(title=LOGIN.title, description=LOGIN.description)
    result = await orchestrator.process_task(repeat)

    (plan_span,) = result.metadata["trace"].find("Director.plan")
    recall_events = [event for event in plan_span.events if event.name == "memory_recall"]
    assert recall_events[0].attributes["similar_tasks"] >= 1
    assert result.success is True


@pytest.mark.anyio
async def test_no_suitable_agent_is_reported_as_failure() -> None:
    bus = CommunicationBus()
    registry = AgentRegistry(bus)
    await registry.register(keyword_agent("coder", AgentType.CODE, keywords=["code"]))
    orchestrator = TaskOrchestrator(registry=registry, bus=bus)

    result = await orchestrator.process_task(Task(title="Book a venue", description="for twenty people"))

    assert result.success is False
    assert result.metadata["error"]["error"] == "NO_SUITABLE_AGENT"
    assert result.reasoning.startswith("Processing failed")
    assert orchestrator.get_trace(result.metadata["session_id"]) is not None


@pytest.mark.anyio
async def test_unavailable_provider_fails_before_selection() -> None:
    bus = CommunicationBus()
    registry = AgentRegistry(bus)
    agent = keyword_agent("coder", AgentType.CODE, keywords=["code"])
    await registry.register(agent)
    orchestrator = TaskOrchestrator(registry=registry, bus=bus, provider=ScriptedProvider(available=False))

    result = await orchestrator.process_task(Task(title="Write code", description=""))

    assert result.success is False
    assert result.metadata["error"]["error"] == "PROVIDER_UNAVAILABLE"


@pytest.mark.anyio
async def test_planning_failure_skips_execution_and_memory(memory) -> None:
    bus = CommunicationBus()
    registry = AgentRegistry(bus)
    provider = ScriptedProvider([RuntimeError("model offline")])
    await registry.register(keyword_agent("coder", AgentType.CODE, keywords=["code"], provider=provider, memory=memory))
    orchestrator = TaskOrchestrator(registry=registry, bus=bus, memory=memory)
    task = Task(title="Write code", description="")

    result = await orchestrator.process_task(task)

    assert result.success is False
    assert result.reasoning.startswith("Planning failed")
    assert result.metadata["error"]["error"] == "MODEL_INVOCATION_FAILED"
    assert result.metadata["validated"] is False
    assert len(provider.prompts) == 1
    assert result.metadata["trace"].find("Coder.execute") == []
    assert await memory.long_term.get_task_memory(task.id) is None


@pytest.mark.anyio
async def test_failed_validation_is_still_remembered(memory) -> None:
    bus = CommunicationBus()
    registry = AgentRegistry(bus)
    provider = ScriptedProvider(["plan", RuntimeError("step broke")])
    await registry.register(keyword_agent("coder", AgentType.CODE, keywords=["code"], provider=provider, memory=memory))
    orchestrator = TaskOrchestrator(registry=registry, bus=bus, memory=memory)
    task = Task(title="Write code", description="")

    result = await orchestrator.process_task(task)

    assert result.success is False
    assert result.reasoning.startswith("Execution failed")
    assert result.metadata["validated"] is False
    assert (await memory.long_term.get_task_memory(task.id)).success is False


@pytest.mark.anyio
async def test_trace_retention_drops_oldest() -> None:
    bus = CommunicationBus()
    registry = AgentRegistry(bus)
    await registry.register(keyword_agent("coder", AgentType.CODE, keywords=["code"]))
    orchestrator = TaskOrchestrator(registry=registry, bus=bus, trace_retention=2)

    sessions = []
    for n in range(3):
        result = await orchestrator.process_task(Task(title=f"Write code {n}", description=""))
        sessions.append(result.metadata["session_id"])

    assert orchestrator.get_trace(sessions[0]) is None
    assert orchestrator.get_trace(sessions[2]) is not None
    assert orchestrator.get_status()["retained_traces"] == 2


@pytest.mark.anyio
async def test_concurrent_tasks_share_an_agent() -> None:
    bus = CommunicationBus()
    registry = AgentRegistry(bus)
    await registry.register(
        keyword_agent("coder", AgentType.CODE, keywords=["code"], provider=ScriptedProvider(delay=0.01))
    )
    orchestrator = TaskOrchestrator(registry=registry, bus=bus)
    tasks = [Task(title=f"Write code {n}", description="") for n in range(4)]

    results = await asyncio.gather(*(orchestrator.process_task(task) for task in tasks))

    assert all(result.success for result in results)
    assert [result.metadata["task_id"] for result in results] == [task.id for task in tasks]
    assert len({result.metadata["session_id"] for result in results}) == 4


@pytest.mark.anyio
async def test_status_reports_registry_and_bus(memory) -> None:
    orchestrator = await login_system(memory)
    await orchestrator.process_task(LOGIN)

    status = orchestrator.get_status()

    assert status["registry"]["total_agents"] == 2
    assert sorted(status["active_agents"]) == ["code-001", "director-001"]
    assert status["communication"]["messages_by_type"]["status_update"] == 2
    assert status["retained_traces"] == 1
