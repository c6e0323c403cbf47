"""Records persisted by the memory tiers."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from taskmind.core.models import new_id, utcnow


class PatternType(str, Enum):
    TASK_DECOMPOSITION = "task_decomposition"
    ERROR_RESOLUTION = "error_resolution"
    OPTIMIZATION = "optimization"
    CODE_GENERATION = "code_generation"
    TESTING = "testing"

    def __str__(self) -> str:
        return self.value


class SemanticType(str, Enum):
    TASK = "task"
    CODE = "code"
    PATTERN = "pattern"
    ERROR = "error"
    SOLUTION = "solution"
    EPISODE = "episode"


@dataclass(frozen=True)
class TaskMemory:
    """Durable record of one completed task. Never mutated after creation."""

    task_id: str
    title: str
    description: str
    agent_id: str
    success: bool
    plan: Dict[str, Any] = field(default_factory=dict)
    result: Any = None
    tokens_used: int = 0
    duration: float = 0.0
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class LearnedPattern:
    """Reusable solution shape; merged in place on reuse."""

    type: str
    pattern: str
    description: str = ""
    examples: List[str] = field(default_factory=list)
    success_rate: float = 1.0
    usage_count: int = 1
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    last_used: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class CodeSnippet:
    language: str
    purpose: str
    code: str
    tags: List[str] = field(default_factory=list)
    usage_count: int = 1
    success_rate: float = 1.0
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)
    last_used: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class EmbeddingMetadata:
    type: SemanticType
    source: str
    agent_id: Optional[str] = None
    task_id: Optional[str] = None
    tags: Tuple[str, ...] = ()
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class EmbeddingRecord:
    """Stored vector. Content and vector are fixed; only metadata is replaced."""

    content: str
    vector: Tuple[float, ...]
    metadata: EmbeddingMetadata
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class SimilarityResult:
    id: str
    content: str
    similarity: float
    metadata: EmbeddingMetadata


@dataclass(frozen=True)
class EpisodeStep:
    order: int
    action: str
    input: Dict[str, Any] = field(default_factory=dict)
    output: Dict[str, Any] = field(default_factory=dict)
    duration: float = 0.0
    success: bool = True


@dataclass(frozen=True)
class Episode:
    """Replay-oriented record of one task's execution."""

    task_id: str
    agent_id: str
    task_type: str
    start_time: datetime
    end_time: datetime
    success: bool
    steps: Tuple[EpisodeStep, ...] = ()
    decisions: Tuple[Dict[str, Any], ...] = ()
    outcome: Any = None
    learnings: Tuple[str, ...] = ()
    id: str = field(default_factory=new_id)

    @property
    def duration_ms(self) -> float:
        return (self.end_time - self.start_time).total_seconds() * 1000


@dataclass(frozen=True)
class EpisodePattern:
    pattern: str
    frequency: int
    success_rate: float
    average_duration: float
    commonalities: List[str] = field(default_factory=list)


@dataclass(slots=True)
class Interaction:
    agent_id: str
    type: str
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class TaskFilter:
    agent_id: Optional[str] = None
    success: Optional[bool] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    title_contains: Optional[str] = None
    limit: Optional[int] = None

    def matches(self, memory: TaskMemory) -> bool:
        if self.agent_id is not None and memory.agent_id != self.agent_id:
            return False
        if self.success is not None and memory.success != self.success:
            return False
        if self.start_date is not None and memory.timestamp < self.start_date:
            return False
        if self.end_date is not None and memory.timestamp > self.end_date:
            return False
        if self.title_contains and self.title_contains.lower() not in memory.title.lower():
            return False
        return True


@dataclass(slots=True)
class RecallResult:
    """Similar tasks, episodes and patterns retrieved for planning."""

    similar: List[TaskMemory] = field(default_factory=list)
    episodes: List[Episode] = field(default_factory=list)
    patterns: List[LearnedPattern] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.similar or self.episodes or self.patterns)
