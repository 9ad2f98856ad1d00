"""Shared test fixtures.

ScriptedGateway stands in for the language model: it replays a list of
canned replies (dicts are JSON-encoded, exceptions are raised) and records
every prompt it receives, so tests can count model calls exactly.
"""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from typing import Any

import pytest

from recovery_agent.fallback import FallbackMetricsCollector
from recovery_agent.gateway import GatewayResponse


class ScriptedGateway:
    model_id = "scripted"

    def __init__(
        self,
        responses: list[Any],
        *,
        repeat_last: bool = False,
        delay: float = 0.0,
    ) -> None:
        self.responses = list(responses)
        self.repeat_last = repeat_last
        self.delay = delay
        self.calls: list[str] = []
        self.system_prompts: list[str] = []

    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> GatewayResponse:
        self.calls.append(prompt)
        self.system_prompts.append(system_prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.responses:
            raise AssertionError("ScriptedGateway ran out of responses")
        item = self.responses[0] if self.repeat_last and len(self.responses) == 1 else self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, dict):
            item = json.dumps(item)
        return GatewayResponse(content=item)


def action(tool: str, thought: str = "I should call a tool", **args: Any) -> dict[str, Any]:
    return {"thought": thought, "action": {"tool": tool, "args": args}}


def final(answer: str, thought: str = "I can answer now") -> dict[str, Any]:
    return {"thought": thought, "final_answer": answer}


@pytest.fixture
def make_gateway() -> type[ScriptedGateway]:
    return ScriptedGateway


@pytest.fixture
def script() -> SimpleNamespace:
    """Helpers for building scripted model replies: script.action(...), script.final(...)."""
    return SimpleNamespace(action=action, final=final)


@pytest.fixture
def metrics() -> FallbackMetricsCollector:
    return FallbackMetricsCollector(capacity=1000)
