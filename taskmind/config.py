"""Configuration management for the orchestration runtime."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class AzureOpenAIConfig:
    """Azure OpenAI service configuration."""

    api_key: str
    endpoint: str
    api_version: str = "2024-02-15-preview"
    deployment_name: str = "gpt-4"
    max_concurrent: int = 50


@dataclass(frozen=True)
class OpenAIConfig:
    """OpenAI (or OpenAI-compatible, e.g. Ollama) endpoint configuration."""

    api_key: str
    base_url: Optional[str] = None
    model: str = "gpt-4o-mini"
    embedding_model: Optional[str] = None
    max_concurrent: int = 50


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from environment variables."""

    azure_openai: Optional[AzureOpenAIConfig] = None
    openai: Optional[OpenAIConfig] = None
    environment: str = "development"
    log_level: str = "INFO"
    model_timeout: float = 120.0
    bus_history_size: int = 1000
    trace_retention: int = 200
    embedding_dimension: int = 256
    redis_url: Optional[str] = None

    @property
    def chat_model(self) -> Optional[str]:
        """Name under which the chat model is registered in the LLM pool."""
        if self.azure_openai:
            return self.azure_openai.deployment_name
        if self.openai:
            return self.openai.model
        return None

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables."""
        azure_key = os.getenv("AZURE_OPENAI_KEY")
        azure_endpoint = os.getenv("AZURE_OPENAI_ENDPOINT")

        azure_config = None
        if azure_key and azure_endpoint:
            azure_config = AzureOpenAIConfig(
                api_key=azure_key,
                endpoint=azure_endpoint,
                api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-15-preview"),
                deployment_name=os.getenv("AZURE_OPENAI_DEPLOYMENT", "gpt-4"),
                max_concurrent=int(os.getenv("AZURE_OPENAI_MAX_CONCURRENT", "50")),
            )

        openai_config = None
        openai_key = os.getenv("OPENAI_API_KEY")
        if openai_key:
            openai_config = OpenAIConfig(
                api_key=openai_key,
                base_url=os.getenv("OPENAI_BASE_URL") or None,
                model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
                embedding_model=os.getenv("OPENAI_EMBEDDING_MODEL") or None,
                max_concurrent=int(os.getenv("OPENAI_MAX_CONCURRENT", "50")),
            )

        return cls(
            azure_openai=azure_config,
            openai=openai_config,
            environment=os.getenv("ENVIRONMENT", "development"),
            log_level=os.getenv("TASKMIND_LOG_LEVEL", "INFO").upper(),
            model_timeout=float(os.getenv("TASKMIND_MODEL_TIMEOUT", "120")),
            bus_history_size=int(os.getenv("TASKMIND_BUS_HISTORY", "1000")),
            trace_retention=int(os.getenv("TASKMIND_TRACE_RETENTION", "200")),
            embedding_dimension=int(os.getenv("TASKMIND_EMBEDDING_DIMENSION", "256")),
            redis_url=os.getenv("TASKMIND_REDIS_URL") or None,
        )


# Global config instance
config = Config.from_env()
