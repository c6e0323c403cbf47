"""Agent registration and task routing."""
from __future__ import annotations

import pytest

from fakes import keyword_agent
from taskmind.agents.registry import AgentRegistry
from taskmind.core.message_bus import CommunicationBus
from taskmind.core.models import AgentMessage, AgentType, MessageType, Task


async def populated_registry() -> AgentRegistry:
    registry = AgentRegistry()
    await registry.register(keyword_agent("director", AgentType.DIRECTOR, keywords=["coordinate"]))
    await registry.register(keyword_agent("coder", AgentType.CODE, keywords=["code"]))
    await registry.register(keyword_agent("tester", AgentType.QA, keywords=["code", "test"]))
    return registry


@pytest.mark.anyio
async def test_director_wins_when_it_accepts() -> None:
    registry = await populated_registry()

    selected = await registry.select_for_task(Task(title="Coordinate code review", description=""))

    assert selected.agent_id == "director"


@pytest.mark.anyio
async def test_first_accepting_specialist_in_registration_order() -> None:
    registry = await populated_registry()

    assert (await registry.select_for_task(Task(title="Write code", description=""))).agent_id == "coder"
    assert (await registry.select_for_task(Task(title="Run test", description=""))).agent_id == "tester"


@pytest.mark.anyio
async def test_director_is_the_fallback() -> None:
    registry = await populated_registry()

    selected = await registry.select_for_task(Task(title="Book a venue", description=""))

    assert selected.agent_id == "director"


@pytest.mark.anyio
async def test_no_director_and_no_acceptor_selects_nothing() -> None:
    registry = AgentRegistry()
    await registry.register(keyword_agent("coder", AgentType.CODE, keywords=["code"]))

    assert await registry.select_for_task(Task(title="Book a venue", description="")) is None
    assert registry.director() is None


@pytest.mark.anyio
async def test_failed_initialization_is_not_registered() -> None:
    registry = AgentRegistry()

    registered = await registry.register(keyword_agent("broken", fail_init=True, keywords=["code"]))

    assert registered is False
    assert len(registry) == 0
    assert registry.get("broken") is None


@pytest.mark.anyio
async def test_reregistering_replaces_agent_and_bus_handler() -> None:
    bus = CommunicationBus()
    registry = AgentRegistry(bus)
    first = keyword_agent("coder", AgentType.CODE)
    second = keyword_agent("coder", AgentType.CODE)
    await registry.register(first)
    await registry.register(second)

    await bus.send(AgentMessage(sender_id="client", recipient_id="coder", type=MessageType.STATUS_UPDATE))

    assert registry.all() == [second]
    assert first.messages == []
    assert len(second.messages) == 1
    assert bus.active_agents() == ["coder"]
    assert len(registry) == 1


@pytest.mark.anyio
async def test_lookup_by_type_and_stats() -> None:
    registry = await populated_registry()

    assert [agent.agent_id for agent in registry.by_type(AgentType.CODE)] == ["coder"]
    assert registry.by_type(AgentType.RESEARCH) == []
    stats = registry.stats()
    assert stats["total_agents"] == 3
    assert stats["agents_by_type"] == {"director": 1, "code": 1, "qa": 1}
    assert [entry["id"] for entry in stats["agents"]] == ["director", "coder", "tester"]
    assert stats["agents"][0]["state"] == "initialized"
