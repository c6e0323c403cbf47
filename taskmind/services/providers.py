"""Model provider contract and the pooled OpenAI chat implementation."""
from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Union

from taskmind.core.errors import ModelInvocationError, ProviderUnavailableError
from taskmind.services.llm_pool import LLMPool

ChatMessage = Dict[str, str]
Prompt = Union[str, Sequence[ChatMessage]]


@dataclass(slots=True)
class Completion:
    """Model output; ``tokens_used`` is None when the provider reports no usage."""

    text: str
    tokens_used: Optional[int] = None
    model: Optional[str] = None


def to_messages(prompt: Prompt, system_prompt: Optional[str] = None) -> List[ChatMessage]:
    if isinstance(prompt, str):
        messages = [{"role": "user", "content": prompt}]
    else:
        messages = [dict(message) for message in prompt]
    if system_prompt and not any(message.get("role") == "system" for message in messages):
        messages.insert(0, {"role": "system", "content": system_prompt})
    return messages


class ModelProvider(abc.ABC):
    """Capability contract for language-model access."""

    name: str = "provider"

    @abc.abstractmethod
    async def complete(
        self,
        prompt: Prompt,
        *,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ) -> Completion:
        """Generate a completion for a prompt or a list of chat messages."""

    @abc.abstractmethod
    async def is_available(self) -> bool:
        """Report whether the provider can currently serve requests."""


class PooledChatProvider(ModelProvider):
    """Chat completions through a shared :class:`LLMPool` client."""

    name = "openai"

    def __init__(
        self,
        pool: LLMPool,
        model_name: Optional[str],
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._pool = pool
        self.model_name = model_name
        self._logger = logger or logging.getLogger(__name__)

    async def is_available(self) -> bool:
        return self.model_name is not None and self._pool.is_registered(self.model_name)

    async def complete(
        self,
        prompt: Prompt,
        *,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ) -> Completion:
        if self.model_name is None or not self._pool.is_registered(self.model_name):
            raise ProviderUnavailableError("No chat model configured", context={"model": self.model_name})

        messages = to_messages(prompt, system_prompt)
        try:
            async with self._pool.acquire(self.model_name) as client:
                response = await client.chat.completions.create(
                    model=self.model_name,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )
        except Exception as exc:  # noqa: BLE001
            raise ModelInvocationError(str(exc), context={"model": self.model_name}, cause=exc) from exc

        usage = getattr(response, "usage", None)
        return Completion(
            text=response.choices[0].message.content or "",
            tokens_used=getattr(usage, "total_tokens", None),
            model=self.model_name,
        )
