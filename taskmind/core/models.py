"""Core data models shared across orchestration components."""
from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

BROADCAST = "broadcast"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class AgentType(str, Enum):
    """Closed set of agent specialisations known to the registry."""

    DIRECTOR = "director"
    CODE = "code"
    RESEARCH = "research"
    QA = "qa"
    GENERAL = "general"

    @classmethod
    def parse(cls, value: Any) -> "AgentType":
        """Map free text (e.g. model output) to a type, defaulting to GENERAL."""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.GENERAL


class AgentState(Enum):
    """Lifecycle states for an agent and for one orchestration run."""

    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    PLANNING = "planning"
    EXECUTING = "executing"
    VALIDATED = "validated"
    FAILED = "failed"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class MessageType(str, Enum):
    TASK_REQUEST = "task_request"
    TASK_RESPONSE = "task_response"
    STATUS_UPDATE = "status_update"
    RESOURCE_REQUEST = "resource_request"
    RESOURCE_RESPONSE = "resource_response"
    COORDINATION = "coordination"
    ERROR = "error"


@dataclass(frozen=True)
class Task:
    """Work item handed to the orchestrator. Read-only for the core."""

    title: str
    description: str
    id: str = field(default_factory=new_id)
    priority: TaskPriority = TaskPriority.MEDIUM
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return f"{self.title} {self.description}"


@dataclass(slots=True)
class AgentMetadata:
    """Static description of an agent instance."""

    id: str
    name: str
    type: AgentType
    model: str = "default"
    description: str = ""
    capabilities: FrozenSet[str] = frozenset()
    max_concurrent_tasks: int = 1


@dataclass(slots=True)
class PlanStep:
    id: str
    description: str
    agent_type: AgentType = AgentType.GENERAL
    dependencies: List[str] = field(default_factory=list)
    expected_output: str = ""
    action: Optional[str] = None
    inputs: Dict[str, Any] = field(default_factory=dict)
    tools: List[str] = field(default_factory=list)


@dataclass(slots=True)
class Plan:
    """Ordered, dependency-annotated breakdown of a task."""

    steps: List[PlanStep]
    estimated_duration: float = 0.0
    confidence: float = 0.5
    required_agents: List[AgentType] = field(default_factory=list)
    reasoning: str = ""

    def __post_init__(self) -> None:
        self.confidence = max(0.0, min(1.0, float(self.confidence)))
        if not self.required_agents:
            seen: List[AgentType] = []
            for step in self.steps:
                if step.agent_type not in seen:
                    seen.append(step.agent_type)
            self.required_agents = seen


@dataclass(slots=True)
class AgentResult:
    success: bool
    output: Any = None
    reasoning: str = ""
    tokens_used: int = 0
    duration: float = 0.0
    sub_results: List["AgentResult"] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, reasoning: str, *, tokens_used: int = 0, duration: float = 0.0) -> "AgentResult":
        return cls(success=False, output=None, reasoning=reasoning, tokens_used=tokens_used, duration=duration)


@dataclass(slots=True)
class TraceEvent:
    name: str
    timestamp: datetime = field(default_factory=utcnow)
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Span:
    agent_id: str
    operation: str
    span_id: str = field(default_factory=new_id)
    parent_span_id: Optional[str] = None
    start_time: datetime = field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    events: List[TraceEvent] = field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    @property
    def duration_ms(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds() * 1000


@dataclass(slots=True)
class ExecutionStep:
    """Per-step record appended by agents while executing a plan."""

    agent_id: str
    action: str
    output: Any = None
    duration: float = 0.0
    tokens_used: int = 0
    success: bool = True
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class Trace:
    start_time: datetime = field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    spans: List[Span] = field(default_factory=list)
    steps: List[ExecutionStep] = field(default_factory=list)

    def find(self, operation: str) -> List[Span]:
        return [span for span in self.spans if span.operation == operation]


@dataclass(slots=True)
class Decision:
    description: str
    reasoning: str
    confidence: float
    agent_id: Optional[str] = None
    action: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class AgentContext:
    """Mutable per-run state shared by the agent and the orchestrator."""

    task_id: str
    session_id: str = field(default_factory=new_id)
    parent_agent_id: Optional[str] = None
    shared_memory: Dict[str, Any] = field(default_factory=dict)
    trace: Trace = field(default_factory=Trace)
    decisions: List[Decision] = field(default_factory=list)
    state: AgentState = AgentState.INITIALIZED
    tokens_used: int = 0

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe copy used for short-term memory persistence."""
        return to_jsonable(
            {
                "task_id": self.task_id,
                "session_id": self.session_id,
                "parent_agent_id": self.parent_agent_id,
                "state": self.state.value,
                "tokens_used": self.tokens_used,
                "shared_memory": self.shared_memory,
                "decisions": self.decisions,
                "trace": self.trace,
            }
        )


@dataclass(slots=True)
class AgentMessage:
    """Message exchanged between agents over the communication bus."""

    sender_id: str
    recipient_id: str
    type: MessageType = MessageType.COORDINATION
    payload: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None
    timestamp: Optional[datetime] = None
    correlation_id: Optional[str] = None

    @property
    def is_broadcast(self) -> bool:
        return self.recipient_id == BROADCAST


def to_jsonable(value: Any) -> Any:
    """Recursively convert dataclasses, enums and datetimes to JSON types."""
    if is_dataclass(value) and not isinstance(value, type):
        return to_jsonable(asdict(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(item) for item in value]
    return value
