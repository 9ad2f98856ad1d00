"""FastAPI server — the HTTP entry point for the recovery coach.

Endpoints:
- GET  /health            — Simple check that the server is running
- POST /chat              — Send a message, get back the finished answer
- POST /chat/stream       — Same, but streamed as Server-Sent Events
- GET  /metrics/fallback  — Which data source each tool is being served from

The coach agent is created once at startup (lifespan) and closed at
shutdown, so every request shares the same tools and metrics buffer.

Run locally with:
    uvicorn recovery_agent.app:app --reload
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from recovery_agent.agent import CoachAgent
from recovery_agent.config import LOG_LEVEL
from recovery_agent.schemas import RunStatus
from recovery_agent.streaming import stream_sse

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    app.state.agent = CoachAgent()
    try:
        yield
    finally:
        await app.state.agent.aclose()


app = FastAPI(
    title="Patient Recovery Coach Agent",
    description="Ask questions about medications, symptoms, and recovery after discharge",
    version="0.1.0",
    lifespan=lifespan,
)


def get_agent(request: Request) -> CoachAgent:
    """The application's shared CoachAgent (overridable in tests)."""
    return request.app.state.agent


class ChatRequest(BaseModel):
    """What the client sends to /chat and /chat/stream."""

    message: str = Field(min_length=1)  # The patient's question in plain English
    max_iterations: int | None = Field(default=None, ge=1, le=25)


class ChatResponse(BaseModel):
    """What /chat sends back."""

    response: str  # The agent's answer
    status: RunStatus
    iterations: int
    tools_used: list[str]
    reasoning_trace: str
    metadata: dict[str, Any]


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint. Returns 200 if the server is running."""
    return {"status": "ok"}


@app.post("/chat", response_model=ChatResponse)
async def chat(body: ChatRequest, agent: CoachAgent = Depends(get_agent)) -> ChatResponse:
    """Answer a message and return the result once the run has finished.

    A FAILED run still returns 200: the response text explains what went
    wrong (rate limited, timed out...) and ``status`` says it failed.
    """
    result = await agent.ask(body.message, max_iterations=body.max_iterations)
    return ChatResponse(
        response=result.answer,
        status=result.status,
        iterations=result.iterations,
        tools_used=result.tools_used,
        reasoning_trace=result.reasoning_trace,
        metadata=result.metadata,
    )


@app.post("/chat/stream")
async def chat_stream(
    body: ChatRequest,
    request: Request,
    agent: CoachAgent = Depends(get_agent),
) -> StreamingResponse:
    """Answer a message, streaming each thought, action and observation.

    The body is a sequence of ``data: {...}`` frames ending with
    ``data: [DONE]``. Closing the connection stops the agent.
    """
    events = agent.stream(body.message, max_iterations=body.max_iterations)
    return StreamingResponse(
        stream_sse(events, is_disconnected=request.is_disconnected),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.get("/metrics/fallback")
async def fallback_metrics(
    tool_name: str | None = None,
    agent: CoachAgent = Depends(get_agent),
) -> dict[str, Any]:
    """Per-strategy counts and average latency, optionally for one tool."""
    return agent.metrics.get_fallback_metrics(tool_name)
