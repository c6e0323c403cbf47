"""Cross-tier writes and recall through the memory coordinator."""
from __future__ import annotations

import pytest

from taskmind.core.models import AgentContext, AgentResult, Plan, PlanStep, Task, Trace
from taskmind.core.tracing import add_event, create_span, end_span
from taskmind.memory.coordinator import classify_task_type, steps_from_trace
from taskmind.memory.models import LearnedPattern, PatternType, SemanticType

LOGIN = Task(title="Build login API", description="implement POST /login endpoint")


def finished_context(task: Task, agent_id: str = "director-001") -> AgentContext:
    context = AgentContext(task_id=task.id, parent_agent_id=agent_id)
    span = create_span(context.trace, agent_id=agent_id, operation="Director.plan")
    add_event(span, "planning_completed", {"steps": 2})
    end_span(span)
    return context


def two_step_plan() -> Plan:
    return Plan(steps=[PlanStep(id="step-1", description="build"), PlanStep(id="step-2", description="test")])


@pytest.mark.anyio
async def test_recall_on_empty_memory_returns_empty_lists(memory) -> None:
    recalled = await memory.recall(LOGIN)

    assert recalled.similar == []
    assert recalled.episodes == []
    assert recalled.patterns == []
    assert recalled.is_empty


@pytest.mark.anyio
async def test_remember_then_recall_finds_the_task(memory) -> None:
    result = AgentResult(success=True, output="endpoint ready", reasoning="Completed 2/2 steps", tokens_used=40)

    await memory.remember(LOGIN, result, finished_context(LOGIN), two_step_plan())
    recalled = await memory.recall(Task(title="Build login API", description="implement POST /login endpoint"))

    assert [similar.task_id for similar in recalled.similar] == [LOGIN.id]
    assert recalled.similar[0].agent_id == "director-001"
    assert recalled.similar[0].plan["steps"][1]["id"] == "step-2"
    (episode,) = recalled.episodes
    assert episode.task_type == "api_development"
    assert episode.steps[0].output == {"steps": 2}
    assert "Approach: Completed 2/2 steps" in episode.learnings
    (record,) = await memory.semantic.find_by_metadata(semantic_type=SemanticType.TASK)
    assert record.content == "Build login API: implement POST /login endpoint. Result: Success"


@pytest.mark.anyio
async def test_unknown_agent_recorded_without_parent(memory) -> None:
    await memory.remember(LOGIN, AgentResult(success=False), AgentContext(task_id=LOGIN.id))

    stored = await memory.long_term.get_task_memory(LOGIN.id)
    assert stored.agent_id == "unknown"
    assert stored.plan == {}


@pytest.mark.anyio
async def test_patterns_match_description_by_substring_either_way(memory) -> None:
    await memory.long_term.store_pattern(LearnedPattern(type=PatternType.TESTING, pattern="login"))
    await memory.long_term.store_pattern(
        LearnedPattern(type=PatternType.OPTIMIZATION, pattern="Implement POST /login endpoint with rate limiting")
    )
    await memory.long_term.store_pattern(LearnedPattern(type=PatternType.TESTING, pattern="build login api"))
    await memory.long_term.store_pattern(LearnedPattern(type=PatternType.TESTING, pattern="unrelated"))

    recalled = await memory.recall(LOGIN)

    assert sorted(pattern.pattern for pattern in recalled.patterns) == [
        "Implement POST /login endpoint with rate limiting",
        "login",
    ]


@pytest.mark.anyio
async def test_failing_tier_does_not_block_the_others(memory, monkeypatch) -> None:
    async def broken(episode):
        raise ConnectionError("episode store down")

    monkeypatch.setattr(memory.episodic, "store_episode", broken)

    await memory.remember(LOGIN, AgentResult(success=True, output="ok"), finished_context(LOGIN))

    assert await memory.long_term.get_task_memory(LOGIN.id) is not None
    assert len(await memory.semantic.find_by_metadata(task_id=LOGIN.id)) == 1
    assert await memory.episodic.recent_episodes() == []


@pytest.mark.anyio
async def test_recall_survives_broken_tier(memory, monkeypatch) -> None:
    await memory.remember(LOGIN, AgentResult(success=True, output="ok"), finished_context(LOGIN), two_step_plan())
    await memory.long_term.store_pattern(LearnedPattern(type=PatternType.TESTING, pattern="login"))

    async def broken(*args, **kwargs):
        raise ConnectionError("vector store down")

    monkeypatch.setattr(memory.semantic, "search_similar", broken)
    recalled = await memory.recall(LOGIN)

    assert recalled.similar == []
    assert recalled.episodes == []
    assert [pattern.pattern for pattern in recalled.patterns] == ["login"]


@pytest.mark.parametrize(
    "title, expected",
    [
        ("Build login API", "api_development"),
        ("Add endpoint for users", "api_development"),
        ("Write tests for parser", "testing"),
        ("Fix crash on startup", "bug_fix"),
        ("Refactor storage layer", "refactoring"),
        ("Implement export", "feature_development"),
        ("Plan the offsite", "general"),
    ],
)
def test_classify_task_type(title: str, expected: str) -> None:
    assert classify_task_type(Task(title=title, description="api test fix")) == expected


def test_steps_from_trace_marks_failed_spans() -> None:
    trace = Trace()
    ok = create_span(trace, agent_id="a", operation="plan", attributes={"task_id": "t"})
    add_event(ok, "planning_completed", {"plan_steps": 1})
    end_span(ok)
    bad = create_span(trace, agent_id="a", operation="execute")
    add_event(bad, "execution_failed", {"error": "boom"})
    end_span(bad)

    first, second = steps_from_trace(trace)

    assert (first.order, first.action, first.success) == (1, "plan", True)
    assert first.input == {"task_id": "t"}
    assert first.output == {"plan_steps": 1}
    assert (second.order, second.success, second.output) == (2, False, {})


@pytest.mark.anyio
async def test_learn_from_success_stores_decomposition(memory) -> None:
    await memory.remember(LOGIN, AgentResult(success=True, output="ok"), finished_context(LOGIN), two_step_plan())
    failed = Task(title="Broken", description="x")
    await memory.remember(failed, AgentResult(success=False), finished_context(failed))

    pattern = await memory.learn_from_success(LOGIN.id)

    assert pattern.pattern == "Build login API -> 2 steps"
    assert pattern.usage_count == 2
    assert await memory.learn_from_success(failed.id) is None
    assert await memory.learn_from_success("missing") is None


@pytest.mark.anyio
async def test_agent_memory_and_stats(memory) -> None:
    await memory.short_term.set_context("director-001", {"task_id": LOGIN.id})
    await memory.remember(LOGIN, AgentResult(success=True, output="ok"), finished_context(LOGIN), two_step_plan())

    view = await memory.agent_memory("director-001")
    assert view["context"] == {"task_id": LOGIN.id}
    assert [task.task_id for task in view["recent_tasks"]] == [LOGIN.id]
    assert len(view["patterns"]) == 1

    stats = await memory.stats()
    assert stats["long_term"]["total_tasks"] == 1
    assert stats["semantic"] == {"total_embeddings": 2, "dimension": 128}
    assert stats["episodic"] == {"total_episodes": 1, "success_rate": 1.0}
    assert stats["short_term"]["active_contexts"] == 1
