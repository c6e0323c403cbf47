"""Tests for point-to-point, broadcast and error-reply behaviour of the bus."""
from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from taskmind.core.message_bus import SYSTEM_SENDER, CommunicationBus
from taskmind.core.models import AgentMessage, MessageType, utcnow


def collector():
    received = []

    async def handler(message: AgentMessage) -> None:
        received.append(message)

    return received, handler


@pytest.mark.anyio
async def test_send_without_subscribers_records_one_entry() -> None:
    bus = CommunicationBus()

    await bus.send(AgentMessage(sender_id="tester", recipient_id="agent-x", payload={"ping": True}))

    history = bus.history()
    assert len(history) == 1
    assert history[0].id is not None
    assert history[0].timestamp is not None


@pytest.mark.anyio
async def test_history_is_bounded_and_keeps_newest_in_order() -> None:
    bus = CommunicationBus(history_size=5)

    for seq in range(8):
        await bus.send(AgentMessage(sender_id="tester", recipient_id="agent-x", payload={"seq": seq}))

    assert [message.payload["seq"] for message in bus.history()] == [3, 4, 5, 6, 7]
    assert bus.history_size == 5


@pytest.mark.anyio
async def test_missing_handler_replies_with_error_to_sender() -> None:
    bus = CommunicationBus()
    received, handler = collector()
    bus.subscribe("alice", handler)

    original = AgentMessage(sender_id="alice", recipient_id="bob", type=MessageType.TASK_REQUEST)
    await bus.send(original)

    assert len(received) == 1
    reply = received[0]
    assert reply.type is MessageType.ERROR
    assert reply.sender_id == SYSTEM_SENDER
    assert reply.correlation_id == original.id
    assert reply.payload["error"] == "HANDLER_NOT_FOUND"
    assert reply.payload["original_message_id"] == original.id
    assert len(bus.history()) == 1


@pytest.mark.anyio
async def test_handler_exception_becomes_delivery_failure_reply() -> None:
    bus = CommunicationBus()
    received, handler = collector()
    bus.subscribe("alice", handler)

    async def broken(message: AgentMessage) -> None:
        raise RuntimeError("handler exploded")

    bus.subscribe("bob", broken)
    await bus.send(AgentMessage(sender_id="alice", recipient_id="bob"))

    assert received[0].payload["error"] == "DELIVERY_FAILED"
    assert "handler exploded" in received[0].payload["message"]


@pytest.mark.anyio
async def test_broadcast_isolates_failing_subscriber() -> None:
    bus = CommunicationBus()
    first, first_handler = collector()
    second, second_handler = collector()
    own, own_handler = collector()

    async def broken(message: AgentMessage) -> None:
        raise RuntimeError("boom")

    bus.subscribe("a", first_handler)
    bus.subscribe("b", broken)
    bus.subscribe("c", second_handler)
    bus.subscribe("sender", own_handler)

    await bus.broadcast(AgentMessage(sender_id="sender", recipient_id="broadcast", type=MessageType.STATUS_UPDATE))

    assert len(first) == 1
    assert len(second) == 1
    assert own == []


@pytest.mark.anyio
async def test_send_to_broadcast_recipient_fans_out() -> None:
    bus = CommunicationBus()
    received, handler = collector()
    bus.subscribe("a", handler)

    await bus.send(AgentMessage(sender_id="director", recipient_id="broadcast", type=MessageType.STATUS_UPDATE))

    assert len(received) == 1
    assert len(bus.history()) == 1


@pytest.mark.anyio
async def test_history_filters_combine_with_and() -> None:
    bus = CommunicationBus()
    start = utcnow() - timedelta(seconds=1)
    await bus.send(AgentMessage(sender_id="a", recipient_id="x", type=MessageType.TASK_REQUEST))
    await bus.send(AgentMessage(sender_id="a", recipient_id="y", type=MessageType.COORDINATION))
    await bus.send(AgentMessage(sender_id="b", recipient_id="x", type=MessageType.TASK_REQUEST))

    assert len(bus.history(sender="a")) == 2
    assert len(bus.history(sender="a", type=MessageType.TASK_REQUEST)) == 1
    assert len(bus.history(recipient="x", since=start)) == 2
    assert bus.history(since=utcnow() + timedelta(minutes=1)) == []


@pytest.mark.anyio
async def test_naive_timestamps_are_read_as_utc() -> None:
    bus = CommunicationBus()
    _, handler = collector()
    bus.subscribe("x", handler)
    await bus.send(AgentMessage(sender_id="a", recipient_id="x"))
    await bus.send(AgentMessage(sender_id="a", recipient_id="x", timestamp=datetime(2001, 1, 1)))

    assert len(bus.history(since=datetime(2000, 1, 1))) == 2
    assert len(bus.history(since=datetime(2010, 1, 1))) == 1
    assert bus.history()[1].timestamp.tzinfo is not None


@pytest.mark.anyio
async def test_stats_count_by_type_and_sender() -> None:
    bus = CommunicationBus()
    _, handler = collector()
    bus.subscribe("x", handler)
    await bus.send(AgentMessage(sender_id="a", recipient_id="x", type=MessageType.TASK_REQUEST))
    await bus.send(AgentMessage(sender_id="a", recipient_id="x", type=MessageType.COORDINATION))

    stats = bus.stats()
    assert stats["total_messages"] == 2
    assert stats["active_agents"] == 1
    assert stats["messages_by_type"] == {"task_request": 1, "coordination": 1}
    assert stats["messages_by_agent"] == {"a": 2}

