"""Data model for ReAct runs.

Pydantic models for the records a run produces: the per-iteration step log,
the final result, and the progress events emitted while the run is live.
Steps and events are frozen — once appended or emitted they never change.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from recovery_agent.verification.grounding import GroundingReport


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


class RunStatus(str, Enum):
    """How a run terminated. Every run ends in exactly one of these."""

    DONE = "done"
    MAX_ITER = "max_iter"
    FAILED = "failed"


class EventType(str, Enum):
    """Kinds of progress events sent to a streaming client."""

    THOUGHT = "thought"
    ACTION = "action"
    OBSERVATION = "observation"
    FINAL = "final"
    ERROR = "error"


class ToolAction(BaseModel):
    """A tool call requested by the model."""

    model_config = ConfigDict(frozen=True)

    tool: str
    args: dict[str, Any] = Field(default_factory=dict)


class ReActStep(BaseModel):
    """One loop iteration's record."""

    model_config = ConfigDict(frozen=True)

    iteration: int = Field(ge=1)
    thought: str | None = None
    action: ToolAction | None = None
    observation: str | None = None
    is_final: bool = False
    final_answer: str | None = None
    timestamp: str = Field(default_factory=utc_now_iso)


class ReActResult(BaseModel):
    """Final outcome of a run, produced once at termination."""

    answer: str
    iterations: int
    tools_used: list[str] = Field(default_factory=list)
    reasoning_trace: str = ""
    steps: list[ReActStep] = Field(default_factory=list)
    status: RunStatus
    metadata: dict[str, Any] = Field(default_factory=dict)
    grounding: GroundingReport | None = None


class StreamEvent(BaseModel):
    """Wire-level progress unit.

    Only the fields relevant to the event type are set; ``to_wire()`` drops
    the rest so each SSE frame stays small.
    """

    model_config = ConfigDict(frozen=True)

    type: EventType
    iteration: int = Field(ge=0)
    thought: str | None = None
    tool: str | None = None
    args: dict[str, Any] | None = None
    observation: str | None = None
    answer: str | None = None
    error: str | None = None
    result: ReActResult | None = None
    timestamp: str = Field(default_factory=utc_now_iso)

    def to_wire(self) -> dict[str, Any]:
        """JSON-safe dict for one ``data:`` frame."""
        return self.model_dump(mode="json", exclude_none=True)
