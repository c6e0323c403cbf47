"""FastAPI entry-point exposing the task orchestrator."""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from taskmind.api.routes import router as tasks_router
from taskmind.runtime import configure_logging, get_memory, initialize_agents


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for FastAPI application."""
    configure_logging()
    await initialize_agents()
    yield
    await get_memory().short_term.close()


app = FastAPI(title="Taskmind Orchestrator", lifespan=lifespan)
app.include_router(tasks_router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
