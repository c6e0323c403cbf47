"""Registry of agent instances and task-to-agent selection."""
from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Dict, List, Optional

from taskmind.core.message_bus import CommunicationBus
from taskmind.core.models import AgentType, Task

from .base import BaseAgent


class AgentRegistry:
    """Holds initialized agents in registration order."""

    def __init__(self, bus: Optional[CommunicationBus] = None, logger: Optional[logging.Logger] = None) -> None:
        self._agents: Dict[str, BaseAgent] = {}
        self._bus = bus
        self._logger = logger or logging.getLogger(__name__)

    async def register(self, agent: BaseAgent) -> bool:
        """Initialize and register an agent. Returns False when initialization fails."""
        try:
            await agent.initialize()
        except Exception:  # noqa: BLE001
            self._logger.error("Failed to initialize agent %s", agent.agent_id, exc_info=True)
            return False

        previous = self._agents.get(agent.agent_id)
        if previous is not None and self._bus is not None:
            self._bus.unsubscribe(previous.agent_id)
        self._agents[agent.agent_id] = agent
        if self._bus is not None:
            self._bus.subscribe(agent.agent_id, agent.handle_message)
        self._logger.info("Registered agent: %s (%s)", agent.name, agent.metadata.type.value)
        return True

    def get(self, agent_id: str) -> Optional[BaseAgent]:
        return self._agents.get(agent_id)

    def by_type(self, agent_type: AgentType) -> List[BaseAgent]:
        return [agent for agent in self._agents.values() if agent.metadata.type is agent_type]

    def all(self) -> List[BaseAgent]:
        return list(self._agents.values())

    def director(self) -> Optional[BaseAgent]:
        directors = self.by_type(AgentType.DIRECTOR)
        return directors[0] if directors else None

    async def select_for_task(self, task: Task) -> Optional[BaseAgent]:
        """Director if it accepts, else the first accepting specialist, else the Director."""
        director = self.director()
        if director is not None and await director.can_handle(task):
            return director

        for agent in self._agents.values():
            if agent.metadata.type is AgentType.DIRECTOR:
                continue
            if await agent.can_handle(task):
                return agent

        return director

    def stats(self) -> Dict[str, Any]:
        by_type = Counter(agent.metadata.type.value for agent in self._agents.values())
        return {
            "total_agents": len(self._agents),
            "agents_by_type": dict(by_type),
            "agents": [agent.describe() for agent in self._agents.values()],
        }

    def __len__(self) -> int:
        return len(self._agents)
