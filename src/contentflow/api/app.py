"""
Core API backend for contentflow.

It exposes the following endpoints:
- **GET /health**       - liveness check.
- **GET /agents**       - list the configured agents.
- **POST /chat**        - run one agent over a conversation, streamed as NDJSON chunks.
- **POST /orchestrate** - run the full content pipeline: {"message": "..."}
"""

import functools
import logging
from typing import (
    Dict,
    List,
)

from fastapi import (
    Depends,
    FastAPI,
    HTTPException,
)
from fastapi.responses import StreamingResponse

from contentflow.agent.context import ExecutionContext
from contentflow.agent.runner import Agent
from contentflow.agent.streaming import (
    encode_data_stream,
    stream_chunks,
)
from contentflow.agent.tracing import (
    TraceSink,
    load_sink,
)
from contentflow.api.models import (
    AgentInfo,
    ChatRequest,
    OrchestrateRequest,
)
from contentflow.common import (
    AnsiColors,
    colored_print,
)
from contentflow.config import settings
from contentflow.core.errors import StageError
from contentflow.core.schema import OrchestrationResult
from contentflow.orchestrator.agents import build_agents
from contentflow.orchestrator.pipeline import orchestrate

logger = logging.getLogger(__name__)

app = FastAPI(
    title="contentflow API", version="0.1.0", description="Multi-agent content pipeline API"
)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
@functools.lru_cache(maxsize=1)
def get_sink() -> TraceSink:
    """Process-wide trace sink, built from the settings on first use."""
    return load_sink()


@functools.lru_cache(maxsize=1)
def get_agents() -> Dict[str, Agent]:
    """Process-wide agent table."""
    return build_agents()


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Return a simple liveness payload."""
    return {"status": "ok"}


@app.get("/agents", response_model=List[AgentInfo], summary="List agents")
async def list_agents(agents: Dict[str, Agent] = Depends(get_agents)) -> List[AgentInfo]:
    return [
        AgentInfo(
            name=agent.name,
            model=agent.config.model_id,
            tools=list(agent.config.tools),
            max_steps=agent.config.max_steps,
        )
        for agent in agents.values()
    ]


@app.post("/chat", summary="Stream one agent run")
async def chat(
    req: ChatRequest,
    agents: Dict[str, Agent] = Depends(get_agents),
    sink: TraceSink = Depends(get_sink),
) -> StreamingResponse:
    """Run the requested agent over the conversation and stream its chunks as NDJSON."""
    agent = agents.get(req.agent)
    if agent is None:
        raise HTTPException(status_code=404, detail=f"Unknown agent '{req.agent}'")

    logger.info("Chat request for agent %s (%d messages)", agent.name, len(req.messages))
    context = ExecutionContext(sink=sink, user_id=req.user_id)
    chunks = stream_chunks(agent, req.messages, context=context)
    return StreamingResponse(encode_data_stream(chunks), media_type="application/x-ndjson")


@app.post("/orchestrate", response_model=OrchestrationResult, summary="Run the content pipeline")
async def orchestrate_endpoint(
    req: OrchestrateRequest,
    agents: Dict[str, Agent] = Depends(get_agents),
    sink: TraceSink = Depends(get_sink),
) -> OrchestrationResult:
    """Route the message and run the selected workflow to completion."""
    context = ExecutionContext(sink=sink, user_id=req.user_id)
    try:
        return await orchestrate(req.message, context=context, agents=agents)
    except StageError as exc:
        logger.exception("Orchestration failed in %s stage", exc.stage)
        raise HTTPException(
            status_code=502, detail={"stage": exc.stage, "message": str(exc)}
        ) from exc


@app.get("/", summary="API root")
async def root() -> dict[str, str]:
    """Return a simple welcome message."""
    return {"message": "Welcome to the contentflow API! Use /docs for API documentation."}


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful during development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn out of the import path of library users
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting contentflow API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )

    colored_print(f"contentflow API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(
        f"Visit http://localhost:{port}/docs for API documentation.",
        AnsiColors.BLUE,
    )
    uvicorn.run(
        "contentflow.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m contentflow.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
