"""Recovery coach agent — wires the ReAct controller to its tools.

This module assembles the pieces the HTTP layer needs:
- A language model gateway (Claude, or a placeholder without an API key)
- The patient-coach tools, sharing one fallback metrics collector
- A system prompt that sets the coach's role and rules

``CoachAgent`` owns the resources it creates (the openFDA HTTP client),
so the application builds one at startup and closes it at shutdown.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Any

from recovery_agent.config import ANTHROPIC_API_KEY, TRACE_TO_LOG
from recovery_agent.fallback import FallbackMetricsCollector
from recovery_agent.fda_client import OpenFDAClient
from recovery_agent.gateway import AnthropicGateway, LanguageModelGateway, PlaceholderGateway
from recovery_agent.react import ReActController
from recovery_agent.schemas import ReActResult, StreamEvent
from recovery_agent.tools.base import ToolDescriptor
from recovery_agent.tools.medication import (
    make_lookup_medication_tool,
    make_review_medications_tool,
)
from recovery_agent.tools.symptoms import make_check_symptom_tool
from recovery_agent.tracing import LoggingTracer, NoopTracer, Tracer

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# System prompt
# ---------------------------------------------------------------------------

SYSTEM_PROMPT = """\
You are a friendly recovery coach helping a patient who was recently \
discharged from the hospital. You answer questions about their medications, \
symptoms, and recovery using the tools available to you.

RULES:
- Use plain, everyday language.
- Only state doses, timings, or numbers that a tool returned.
- If a symptom could be an emergency, say so first and tell them to call 911.
- End every answer with: "This is general information, not medical advice. \
Contact your care team with any concerns."
"""


def build_tools(
    metrics: FallbackMetricsCollector,
    fda_client: OpenFDAClient | None = None,
) -> list[ToolDescriptor]:
    """Create all coach tools, reporting to the given metrics collector."""
    return [
        make_lookup_medication_tool(metrics, fda_client),
        make_review_medications_tool(metrics, fda_client),
        make_check_symptom_tool(metrics),
    ]


def default_gateway() -> LanguageModelGateway:
    """Claude when an API key is configured, otherwise the placeholder."""
    if not ANTHROPIC_API_KEY:
        logger.warning("ANTHROPIC_API_KEY not set; using placeholder gateway")
        return PlaceholderGateway()
    return AnthropicGateway()


class CoachAgent:
    """The recovery coach: one controller, one tool set, one metrics buffer.

    Args:
        gateway: Model gateway; defaults to ``default_gateway()``.
        metrics: Fallback metrics collector; a fresh one by default.
        tracer: Observability sink; logging or no-op depending on config.
        fda_client: openFDA client; created (and later closed) if omitted.
        tools: Override the tool set (tests use this).
    """

    def __init__(
        self,
        gateway: LanguageModelGateway | None = None,
        *,
        metrics: FallbackMetricsCollector | None = None,
        tracer: Tracer | None = None,
        fda_client: OpenFDAClient | None = None,
        tools: list[ToolDescriptor] | None = None,
    ) -> None:
        self.metrics = metrics or FallbackMetricsCollector()
        self._owns_fda_client = fda_client is None and tools is None
        self.fda_client = fda_client or (OpenFDAClient() if tools is None else None)
        self.tools = tools if tools is not None else build_tools(self.metrics, self.fda_client)
        if tracer is None:
            tracer = LoggingTracer() if TRACE_TO_LOG else NoopTracer()
        self.controller = ReActController(gateway or default_gateway(), tracer=tracer)

    async def ask(self, message: str, **options: Any) -> ReActResult:
        """Answer one patient message. Extra options go to ``ReActController.run``."""
        return await self.controller.run(
            message, system_prompt=SYSTEM_PROMPT, tools=self.tools, **options
        )

    def stream(self, message: str, **options: Any) -> AsyncGenerator[StreamEvent, None]:
        """Answer one patient message, yielding progress events."""
        return self.controller.stream(
            message, system_prompt=SYSTEM_PROMPT, tools=self.tools, **options
        )

    async def aclose(self) -> None:
        """Release owned resources and log the fallback metrics summary."""
        self.metrics.log_summary()
        if self._owns_fda_client and self.fda_client is not None:
            await self.fda_client.close()
