"""In-memory bus for point-to-point and broadcast agent messaging."""
from __future__ import annotations

import asyncio
import logging
from collections import Counter, deque
from datetime import datetime, timezone
from typing import Awaitable, Callable, Deque, Dict, List, Optional

from .errors import DeliveryFailedError, HandlerNotFoundError, TaskmindError
from .models import AgentMessage, MessageType, new_id, utcnow

MessageHandler = Callable[[AgentMessage], Awaitable[None]]

SYSTEM_SENDER = "system"
DEFAULT_HISTORY_SIZE = 1000


class CommunicationBus:
    """Async message hub enabling agent-to-agent communication."""

    def __init__(
        self,
        *,
        history_size: int = DEFAULT_HISTORY_SIZE,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._handlers: Dict[str, MessageHandler] = {}
        self._history: Deque[AgentMessage] = deque(maxlen=history_size)
        self._logger = logger or logging.getLogger(__name__)

    @property
    def history_size(self) -> int:
        return self._history.maxlen or 0

    def subscribe(self, agent_id: str, handler: MessageHandler) -> None:
        self._handlers[agent_id] = handler
        self._logger.info("Agent %s subscribed to message bus", agent_id)

    def unsubscribe(self, agent_id: str) -> None:
        if self._handlers.pop(agent_id, None) is not None:
            self._logger.info("Agent %s unsubscribed from message bus", agent_id)

    async def send(self, message: AgentMessage) -> None:
        """Deliver a message, replying with an error message on delivery problems."""
        self._stamp(message)
        self._logger.debug("Message %s: %s -> %s", message.id, message.sender_id, message.recipient_id)
        self._history.append(message)

        if message.is_broadcast:
            await self.broadcast(message)
            return

        handler = self._handlers.get(message.recipient_id)
        if handler is None:
            self._logger.warning("No handler found for agent: %s", message.recipient_id)
            error: TaskmindError = HandlerNotFoundError(
                "Agent not found", context={"recipient_id": message.recipient_id}
            )
            await self._send_error(message, error)
            return

        try:
            await handler(message)
        except Exception as exc:  # noqa: BLE001
            self._logger.error("Failed to deliver message %s", message.id, exc_info=True)
            await self._send_error(message, DeliveryFailedError(str(exc), cause=exc))

    async def broadcast(self, message: AgentMessage) -> None:
        """Fan out to every subscriber except the sender; failures stay isolated."""
        self._stamp(message)
        targets = [
            (agent_id, handler)
            for agent_id, handler in list(self._handlers.items())
            if agent_id != message.sender_id
        ]
        await asyncio.gather(*(self._deliver_isolated(agent_id, handler, message) for agent_id, handler in targets))
        self._logger.debug("Broadcast %s from %s reached %d agents", message.id, message.sender_id, len(targets))

    def history(
        self,
        *,
        sender: Optional[str] = None,
        recipient: Optional[str] = None,
        type: Optional[MessageType] = None,
        since: Optional[datetime] = None,
    ) -> List[AgentMessage]:
        """Return history in submission order, filtered with AND semantics."""
        if since is not None and since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        return [
            message
            for message in self._history
            if (sender is None or message.sender_id == sender)
            and (recipient is None or message.recipient_id == recipient)
            and (type is None or message.type == type)
            and (since is None or (message.timestamp is not None and message.timestamp >= since))
        ]

    def active_agents(self) -> List[str]:
        return list(self._handlers)

    def stats(self) -> Dict[str, object]:
        by_type = Counter(message.type.value for message in self._history)
        by_agent = Counter(message.sender_id for message in self._history)
        return {
            "total_messages": len(self._history),
            "active_agents": len(self._handlers),
            "messages_by_type": dict(by_type),
            "messages_by_agent": dict(by_agent),
        }

    async def _deliver_isolated(self, agent_id: str, handler: MessageHandler, message: AgentMessage) -> None:
        try:
            await handler(message)
        except Exception:  # noqa: BLE001
            self._logger.error("Broadcast to %s failed", agent_id, exc_info=True)

    async def _send_error(self, original: AgentMessage, error: TaskmindError) -> None:
        handler = self._handlers.get(original.sender_id)
        if handler is None:
            return
        reply = AgentMessage(
            sender_id=SYSTEM_SENDER,
            recipient_id=original.sender_id,
            type=MessageType.ERROR,
            payload={**error.to_dict(), "original_message_id": original.id},
            correlation_id=original.id,
        )
        self._stamp(reply)
        try:
            await handler(reply)
        except Exception:  # noqa: BLE001
            self._logger.error("Error reply to %s failed", original.sender_id, exc_info=True)

    @staticmethod
    def _stamp(message: AgentMessage) -> None:
        if not message.id:
            message.id = new_id()
        if message.timestamp is None:
            message.timestamp = utcnow()
        elif message.timestamp.tzinfo is None:
            message.timestamp = message.timestamp.replace(tzinfo=timezone.utc)
