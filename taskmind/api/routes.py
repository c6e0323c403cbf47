"""HTTP API exposing orchestrator capabilities."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from taskmind.core.message_bus import CommunicationBus
from taskmind.core.models import AgentResult, MessageType, Task, TaskPriority, to_jsonable
from taskmind.memory.coordinator import MemoryCoordinator
from taskmind.orchestration.orchestrator import TaskOrchestrator
from taskmind.runtime import get_bus, get_memory, get_orchestrator

router = APIRouter(tags=["tasks"])


class TaskRequest(BaseModel):
    title: str = Field(..., min_length=1, description="Short task title")
    description: str = Field("", description="What needs to be done")
    priority: TaskPriority = TaskPriority.MEDIUM
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_task(self) -> Task:
        return Task(
            title=self.title,
            description=self.description,
            priority=self.priority,
            metadata=dict(self.metadata),
        )


class TaskResponse(BaseModel):
    task_id: str
    success: bool
    output: Any = None
    reasoning: str
    tokens_used: int
    duration: float
    sub_results: List[Dict[str, Any]] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_result(cls, task: Task, result: AgentResult) -> "TaskResponse":
        return cls(
            task_id=task.id,
            success=result.success,
            output=to_jsonable(result.output),
            reasoning=result.reasoning,
            tokens_used=result.tokens_used,
            duration=result.duration,
            sub_results=to_jsonable(result.sub_results),
            metadata=to_jsonable(result.metadata),
        )


class MessageResponse(BaseModel):
    id: Optional[str]
    sender_id: str
    recipient_id: str
    type: str
    payload: Dict[str, Any]
    timestamp: Optional[datetime]
    correlation_id: Optional[str] = None


@router.post("/tasks", response_model=TaskResponse)
async def process_task(
    request: TaskRequest,
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
) -> TaskResponse:
    task = request.to_task()
    result = await orchestrator.process_task(task)
    return TaskResponse.from_result(task, result)


@router.get("/agents")
async def agent_status(orchestrator: TaskOrchestrator = Depends(get_orchestrator)) -> dict:
    return to_jsonable(orchestrator.get_status())


@router.get("/traces/{session_id}")
async def get_trace(session_id: str, orchestrator: TaskOrchestrator = Depends(get_orchestrator)) -> dict:
    trace = orchestrator.get_trace(session_id)
    if trace is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown session")
    return to_jsonable(trace)


@router.get("/messages", response_model=List[MessageResponse])
async def message_history(
    sender: Optional[str] = None,
    recipient: Optional[str] = None,
    type: Optional[MessageType] = None,
    since: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=1000),
    bus: CommunicationBus = Depends(get_bus),
) -> List[MessageResponse]:
    messages = bus.history(sender=sender, recipient=recipient, type=type, since=since)[-limit:]
    return [
        MessageResponse(
            id=message.id,
            sender_id=message.sender_id,
            recipient_id=message.recipient_id,
            type=message.type.value,
            payload=to_jsonable(message.payload),
            timestamp=message.timestamp,
            correlation_id=message.correlation_id,
        )
        for message in messages
    ]


@router.get("/messages/stats")
async def message_stats(bus: CommunicationBus = Depends(get_bus)) -> dict:
    return bus.stats()


@router.get("/memory/stats")
async def memory_stats(memory: MemoryCoordinator = Depends(get_memory)) -> dict:
    return await memory.stats()
