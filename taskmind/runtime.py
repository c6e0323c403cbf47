"""Application runtime composition helpers."""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import List, Optional

from taskmind.agents.base import BaseAgent
from taskmind.agents.code import CodeAgent
from taskmind.agents.director import DirectorAgent
from taskmind.agents.registry import AgentRegistry
from taskmind.config import config
from taskmind.core.message_bus import CommunicationBus
from taskmind.memory.coordinator import MemoryCoordinator
from taskmind.memory.embeddings import EmbeddingProvider, HashEmbeddingProvider, OpenAIEmbeddingProvider
from taskmind.memory.episodic import EpisodicMemory
from taskmind.memory.long_term import LongTermMemory
from taskmind.memory.semantic import SemanticMemory
from taskmind.memory.short_term import ShortTermMemory
from taskmind.memory.stores import (
    ContextCache,
    InMemoryContextCache,
    InMemoryRepository,
    InMemoryVectorStore,
    RedisContextCache,
)
from taskmind.orchestration.orchestrator import TaskOrchestrator
from taskmind.services.llm_pool import LLMPool
from taskmind.services.providers import ModelProvider, PooledChatProvider
from taskmind.services.skills import SkillRegistry

logger = logging.getLogger("taskmind")


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=level or config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@lru_cache
def get_bus() -> CommunicationBus:
    return CommunicationBus(history_size=config.bus_history_size, logger=logging.getLogger("taskmind.bus"))


@lru_cache
def get_llm_pool() -> LLMPool:
    pool = LLMPool()

    if config.azure_openai:
        pool.register_azure_openai(config.azure_openai.deployment_name, config.azure_openai)
    if config.openai:
        pool.register_openai(config.openai.model, config.openai)
        if config.openai.embedding_model:
            pool.register_openai(config.openai.embedding_model, config.openai)

    return pool


@lru_cache
def get_provider() -> ModelProvider:
    return PooledChatProvider(get_llm_pool(), config.chat_model)


@lru_cache
def get_skills() -> SkillRegistry:
    return SkillRegistry()


def _embedder() -> EmbeddingProvider:
    if config.openai and config.openai.embedding_model:
        return OpenAIEmbeddingProvider(get_llm_pool(), config.openai.embedding_model)
    logger.warning("No embedding model configured; using placeholder hash embeddings")
    return HashEmbeddingProvider(config.embedding_dimension)


def _context_cache() -> ContextCache:
    if config.redis_url:
        return RedisContextCache(config.redis_url)
    return InMemoryContextCache()


@lru_cache
def get_memory() -> MemoryCoordinator:
    semantic = SemanticMemory(_embedder(), InMemoryVectorStore())
    repository = InMemoryRepository()
    return MemoryCoordinator(
        short_term=ShortTermMemory(_context_cache()),
        long_term=LongTermMemory(repository),
        semantic=semantic,
        episodic=EpisodicMemory(repository, semantic),
    )


@lru_cache
def get_registry() -> AgentRegistry:
    return AgentRegistry(bus=get_bus())


@lru_cache
def get_orchestrator() -> TaskOrchestrator:
    return TaskOrchestrator(
        registry=get_registry(),
        bus=get_bus(),
        memory=get_memory(),
        provider=get_provider(),
        trace_retention=config.trace_retention,
    )


def default_agents() -> List[BaseAgent]:
    options = dict(
        bus=get_bus(),
        skills=get_skills(),
        model_timeout=config.model_timeout,
    )
    return [
        DirectorAgent(get_provider(), get_memory(), **options),
        CodeAgent(get_provider(), get_memory(), **options),
    ]


async def initialize_agents() -> int:
    """Register the built-in agents on application startup."""
    registry = get_registry()
    for agent in default_agents():
        await registry.register(agent)
    logger.info("Registered %d agents", len(registry))
    return len(registry)
