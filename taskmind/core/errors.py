"""Exception hierarchy for the orchestration runtime.

Errors carry a machine-readable code and structured context so that the
orchestrator can embed them into failed results.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class TaskmindError(Exception):
    """Base exception for all orchestration errors."""

    error_code: str = "TASKMIND_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.error_code
        self.context = context or {}
        self.__cause__ = cause

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "context": self.context}


class NoSuitableAgentError(TaskmindError):
    """No registered agent accepted the task and no Director exists."""

    error_code = "NO_SUITABLE_AGENT"


class ProviderUnavailableError(TaskmindError):
    """The model provider reported itself unavailable."""

    error_code = "PROVIDER_UNAVAILABLE"


class ModelInvocationError(TaskmindError):
    """A model call failed or timed out."""

    error_code = "MODEL_INVOCATION_FAILED"


class PlanParseError(TaskmindError):
    """Model output could not be turned into a valid plan."""

    error_code = "PLAN_PARSE_FAILURE"


class HandlerNotFoundError(TaskmindError):
    """A message was addressed to an agent without a bus subscription."""

    error_code = "HANDLER_NOT_FOUND"


class DeliveryFailedError(TaskmindError):
    """A subscriber raised while handling a message."""

    error_code = "DELIVERY_FAILED"


class MemoryWriteError(TaskmindError):
    """A memory tier rejected a write."""

    error_code = "MEMORY_WRITE_FAILURE"


class SkillNotFoundError(TaskmindError):
    error_code = "SKILL_NOT_FOUND"
