"""ReAct controller — the bounded reason → act → observe loop.

This module is the "brain" of the agent. For each iteration it:

1. Builds a prompt from the system prompt, the tool catalog, and the
   transcript of earlier thoughts, actions and observations
2. Calls the language model gateway exactly once
3. Parses the reply into Action / FinalAnswer / Thought / Unparseable
4. For an Action, runs the named tool and records the (truncated) result
   as the next Observation

The loop ends with a final answer (DONE), when the iteration budget runs
out (MAX_ITER — a best-effort answer is still returned), or when the model
gateway fails or the request deadline passes (FAILED). Bad tool names,
bad arguments, failing or slow tools and malformed replies are all turned
into observations so the model can recover on the next iteration.

``stream`` yields a StreamEvent per thought/action/observation as they
happen; ``run`` drives the same loop and returns only the ReActResult.
Iterations are strictly sequential: the model must see each observation
before choosing its next action.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncGenerator, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from recovery_agent.config import (
    GROUNDING_MODE,
    GROUNDING_POLICY,
    MODEL_CALL_TIMEOUT_SECONDS,
    OBSERVATION_MAX_CHARS,
    REACT_MAX_ITERATIONS,
    REQUEST_TIMEOUT_SECONDS,
    TOOL_CALL_TIMEOUT_SECONDS,
)
from recovery_agent.gateway import (
    GatewayErrorCategory,
    GatewayResponse,
    LanguageModelGateway,
    ModelGatewayError,
    categorize_gateway_error,
)
from recovery_agent.parser import (
    Action,
    FinalAnswer,
    Thought,
    parse_react_response,
)
from recovery_agent.schemas import (
    EventType,
    ReActResult,
    ReActStep,
    RunStatus,
    StreamEvent,
    ToolAction,
    utc_now_iso,
)
from recovery_agent.tools.base import ToolDescriptor, build_tool_registry, validate_arguments
from recovery_agent.tracing import NoopTracer, Span, Trace, Tracer
from recovery_agent.verification.grounding import (
    GroundingMode,
    GroundingPolicy,
    GroundingReport,
    quick_grounding_check,
)

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    INIT = "init"
    THINKING = "thinking"
    ACTING = "acting"
    OBSERVING = "observing"
    DONE = "done"
    MAX_ITER = "max_iter"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Prompt construction
# ---------------------------------------------------------------------------

REACT_INSTRUCTIONS = """\
## ReAct Loop Instructions

You are a ReAct agent. Reason step by step and use tools to gather \
information before giving a final answer.

### Available Tools
{catalog}

### Response Format
At each step, respond with ONLY a JSON object in one of these two formats.

If you need to use a tool:
{{"thought": "what you know and what you need next", \
"action": {{"tool": "tool_name", "args": {{"param": "value"}}}}}}

If you have enough information:
{{"thought": "why you can answer now", "final_answer": "your complete answer"}}

### Rules
1. Always start with a thought.
2. Call only ONE tool per step; you will see its result before the next step.
3. Never make up information — only use what the tools return.
4. If a tool returns an error or nothing useful, reason about what to try next.
"""

NO_ACTION_OBSERVATION = (
    "No action specified. Respond with either an action or a final_answer."
)
UNPARSEABLE_OBSERVATION = (
    "Your previous response could not be parsed. Respond with ONLY a JSON object: "
    '{"thought": "...", "action": {"tool": "tool_name", "args": {}}} or '
    '{"thought": "...", "final_answer": "..."}'
)
NO_OBSERVATION_APOLOGY = (
    "I'm sorry — I wasn't able to gather enough information to answer your "
    "question. Please try rephrasing it, or ask your care team."
)


def build_react_system_prompt(base_prompt: str, tools: Sequence[ToolDescriptor]) -> str:
    """Append the loop instructions and tool catalog to the caller's prompt."""
    catalog = "\n\n".join(t.catalog_entry() for t in tools) or "(no tools available)"
    return f"{base_prompt.rstrip()}\n\n{REACT_INSTRUCTIONS.format(catalog=catalog)}"


def format_observation(value: Any, max_chars: int = OBSERVATION_MAX_CHARS) -> str:
    """Render a tool result as transcript text, capped at ``max_chars``."""
    if isinstance(value, str):
        text = value
    else:
        text = json.dumps(value, indent=2, default=str, ensure_ascii=False)
    if not text.strip():
        text = "(tool returned no data)"
    if len(text) > max_chars:
        dropped = len(text) - max_chars
        text = f"{text[:max_chars]}... [truncated {dropped} characters]"
    return text


# ---------------------------------------------------------------------------
# Per-run state
# ---------------------------------------------------------------------------


@dataclass
class _Run:
    """Mutable bookkeeping for one run. Never shared between runs."""

    user_message: str
    max_iterations: int
    state: LoopState = LoopState.INIT
    steps: list[ReActStep] = field(default_factory=list)
    tools_used: list[str] = field(default_factory=list)
    tool_observations: list[str] = field(default_factory=list)
    # Evidence for the grounding check: every observation except revision requests
    observations: list[str] = field(default_factory=list)
    transcript: list[str] = field(default_factory=list)
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    started_at: str = field(default_factory=utc_now_iso)
    started: float = field(default_factory=time.perf_counter)

    def prompt(self) -> str:
        history = "".join(self.transcript)
        return f"User: {self.user_message}\n\n{history}\nNow provide your next step as JSON:"

    def record(self, step: ReActStep) -> None:
        self.steps.append(step)
        turn: dict[str, Any] = {"thought": step.thought or ""}
        if step.action is not None:
            turn["action"] = step.action.model_dump()
        self.transcript.append(f"Assistant: {json.dumps(turn, ensure_ascii=False)}\n")
        if step.observation is not None:
            self.transcript.append(f"Observation: {step.observation}\n\n")

    def add_usage(self, response: GatewayResponse) -> None:
        if response.token_usage is None:
            return
        self.prompt_tokens += response.token_usage.prompt_tokens
        self.completion_tokens += response.token_usage.completion_tokens
        self.total_tokens += response.token_usage.total_tokens

    def reasoning_trace(self) -> str:
        return "\n".join(
            f"[{s.iteration}] {s.thought or '(no thought recorded)'}" for s in self.steps
        )


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class ReActController:
    """Drives a language model through tool calls until it can answer.

    One controller can serve many concurrent runs: every run keeps its own
    state, and the controller itself holds only configuration.

    Args:
        gateway: Model gateway used for every reasoning step.
        tracer: Observability sink; defaults to a no-op.
        max_iterations: Default cap on model calls per run.
        observation_max_chars: Cap on each observation copied to the transcript.
        model_timeout: Seconds allowed for one model call.
        tool_timeout: Seconds allowed for one tool call.
        request_timeout: Default overall budget for a run, in seconds.
        grounding_mode: Default grounding check ("quick" or "off").
        grounding_policy: Default handling of grounding flags.
    """

    def __init__(
        self,
        gateway: LanguageModelGateway,
        *,
        tracer: Tracer | None = None,
        max_iterations: int = REACT_MAX_ITERATIONS,
        observation_max_chars: int = OBSERVATION_MAX_CHARS,
        model_timeout: float = MODEL_CALL_TIMEOUT_SECONDS,
        tool_timeout: float = TOOL_CALL_TIMEOUT_SECONDS,
        request_timeout: float = REQUEST_TIMEOUT_SECONDS,
        grounding_mode: GroundingMode | str = GROUNDING_MODE,
        grounding_policy: GroundingPolicy | str = GROUNDING_POLICY,
    ) -> None:
        self.gateway = gateway
        self.tracer: Tracer = tracer or NoopTracer()
        self.max_iterations = max_iterations
        self.observation_max_chars = observation_max_chars
        self.model_timeout = model_timeout
        self.tool_timeout = tool_timeout
        self.request_timeout = request_timeout
        self.grounding_mode = GroundingMode(grounding_mode)
        self.grounding_policy = GroundingPolicy(grounding_policy)

    @property
    def model_id(self) -> str:
        return getattr(self.gateway, "model_id", "unknown")

    # --- Public API ---

    async def run(
        self,
        user_message: str,
        *,
        system_prompt: str,
        tools: Sequence[ToolDescriptor],
        max_iterations: int | None = None,
        grounding_mode: GroundingMode | str | None = None,
        grounding_policy: GroundingPolicy | str | None = None,
        timeout: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ReActResult:
        """Run the loop to completion and return its result.

        Never raises for tool, parsing or model failures; those end up in
        the result's status. Task cancellation propagates.
        """
        result: ReActResult | None = None
        async for event in self.stream(
            user_message,
            system_prompt=system_prompt,
            tools=tools,
            max_iterations=max_iterations,
            grounding_mode=grounding_mode,
            grounding_policy=grounding_policy,
            timeout=timeout,
            metadata=metadata,
        ):
            if event.result is not None:
                result = event.result
        if result is None:
            raise RuntimeError("ReAct stream ended without a final or error event")
        return result

    async def stream(
        self,
        user_message: str,
        *,
        system_prompt: str,
        tools: Sequence[ToolDescriptor],
        max_iterations: int | None = None,
        grounding_mode: GroundingMode | str | None = None,
        grounding_policy: GroundingPolicy | str | None = None,
        timeout: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AsyncGenerator[StreamEvent, None]:
        """Run the loop, yielding a StreamEvent as each step happens.

        The last event is always either ``final`` (DONE or MAX_ITER) or
        ``error`` (FAILED), and carries the ReActResult.

        Raises:
            ValueError: If ``max_iterations`` is below 1 or tool names clash.
        """
        limit = max_iterations if max_iterations is not None else self.max_iterations
        if limit < 1:
            raise ValueError("max_iterations must be at least 1")
        registry = build_tool_registry(tools)
        mode = GroundingMode(grounding_mode) if grounding_mode else self.grounding_mode
        policy = GroundingPolicy(grounding_policy) if grounding_policy else self.grounding_policy

        loop = asyncio.get_running_loop()
        deadline = loop.time() + (timeout if timeout is not None else self.request_timeout)
        full_system_prompt = build_react_system_prompt(system_prompt, list(registry.values()))

        run = _Run(user_message=user_message, max_iterations=limit)
        trace = self.tracer.trace(
            "react-agent-loop",
            {
                **(metadata or {}),
                "model": self.model_id,
                "max_iterations": limit,
                "tool_count": len(registry),
            },
        )
        revisions_left = 1 if policy is GroundingPolicy.REGENERATE else 0
        logger.info("ReAct run started (max_iterations=%d, tools=%d)", limit, len(registry))

        try:
            for iteration in range(1, limit + 1):
                run.state = LoopState.THINKING
                span = trace.span(f"iteration-{iteration}", {"iteration": iteration})

                try:
                    response = await self._call_model(run, full_system_prompt, iteration, deadline)
                except ModelGatewayError as exc:
                    span.update(output={"error": str(exc)}, metadata={"is_final": False})
                    span.end()
                    yield self._fail(run, trace, exc, iteration)
                    return

                parsed = parse_react_response(response.content)
                logger.debug("Iteration %d parsed as %s", iteration, type(parsed).__name__)

                if isinstance(parsed, FinalAnswer):
                    if parsed.thought:
                        yield self._event(EventType.THOUGHT, iteration, thought=parsed.thought)

                    grounding = self._check_grounding(parsed.answer, run, mode)
                    if (
                        grounding is not None
                        and not grounding.is_grounded
                        and revisions_left
                        and iteration < limit
                    ):
                        revisions_left -= 1
                        observation = self._revision_request(grounding)
                        run.record(
                            ReActStep(
                                iteration=iteration,
                                thought=parsed.thought or None,
                                observation=observation,
                            )
                        )
                        yield self._event(EventType.OBSERVATION, iteration, observation=observation)
                        span.update(output={"grounding_flags": grounding.flags})
                        span.end()
                        continue

                    run.steps.append(
                        ReActStep(
                            iteration=iteration,
                            thought=parsed.thought or None,
                            is_final=True,
                            final_answer=parsed.answer,
                        )
                    )
                    span.update(
                        output={"thought": parsed.thought, "final_answer": parsed.answer},
                        metadata={"is_final": True},
                    )
                    span.end()
                    result = self._finish(run, trace, RunStatus.DONE, parsed.answer, iteration, grounding)
                    yield self._event(EventType.FINAL, iteration, answer=result.answer, result=result)
                    return

                action: ToolAction | None = None
                if isinstance(parsed, Action):
                    action = ToolAction(tool=parsed.tool, args=parsed.args)
                    thought: str | None = parsed.thought or None
                    if thought:
                        yield self._event(EventType.THOUGHT, iteration, thought=thought)
                    yield self._event(EventType.ACTION, iteration, tool=action.tool, args=action.args)
                    run.state = LoopState.ACTING
                    observation = await self._dispatch(action, registry, run, trace)
                elif isinstance(parsed, Thought):
                    thought = parsed.text
                    yield self._event(EventType.THOUGHT, iteration, thought=thought)
                    observation = NO_ACTION_OBSERVATION
                else:
                    logger.warning("Iteration %d: unparseable response: %s", iteration, parsed.error)
                    thought = None
                    observation = UNPARSEABLE_OBSERVATION

                run.state = LoopState.OBSERVING
                run.observations.append(observation)
                run.record(
                    ReActStep(iteration=iteration, thought=thought, action=action, observation=observation)
                )
                yield self._event(EventType.OBSERVATION, iteration, observation=observation)
                span.update(
                    output={
                        "thought": thought,
                        "action": action.model_dump() if action else None,
                        "observation": observation,
                    },
                    metadata={"is_final": False},
                )
                span.end()

            result = self._finish(
                run, trace, RunStatus.MAX_ITER, self._best_effort_answer(run), limit, None
            )
            yield self._event(EventType.FINAL, limit, answer=result.answer, result=result)
        except (asyncio.CancelledError, GeneratorExit):
            if run.state not in (LoopState.DONE, LoopState.MAX_ITER, LoopState.FAILED):
                logger.info("ReAct run cancelled after %d steps", len(run.steps))
                trace.update(metadata={"cancelled": True, "steps": len(run.steps)})
                trace.end()
            raise

    # --- Loop internals ---

    async def _call_model(
        self,
        run: _Run,
        system_prompt: str,
        iteration: int,
        deadline: float,
    ) -> GatewayResponse:
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            raise ModelGatewayError(GatewayErrorCategory.TIMED_OUT, "request deadline exceeded")
        timeout = min(self.model_timeout, remaining)

        prompt = run.prompt()
        try:
            async with asyncio.timeout(timeout):
                response = await self.gateway.generate(
                    prompt,
                    system_prompt=system_prompt,
                    metadata={"iteration": iteration, "history_length": len(prompt)},
                )
        except TimeoutError as exc:
            raise ModelGatewayError(
                GatewayErrorCategory.TIMED_OUT, f"model call exceeded {timeout:.1f}s"
            ) from exc
        except ModelGatewayError:
            raise
        except Exception as exc:
            raise categorize_gateway_error(exc) from exc

        run.add_usage(response)
        return response

    async def _dispatch(
        self,
        action: ToolAction,
        registry: dict[str, ToolDescriptor],
        run: _Run,
        trace: Trace,
    ) -> str:
        """Execute one Action and return its observation text. Never raises."""
        tool = registry.get(action.tool)
        if tool is None:
            available = ", ".join(registry) or "none"
            logger.warning("Model requested unknown tool %r", action.tool)
            return f"Error: unknown tool: {action.tool}. Available tools: {available}"

        errors = validate_arguments(tool, action.args)
        if errors:
            logger.warning("Invalid arguments for %s: %s", tool.name, errors)
            return format_observation(errors.to_observation(tool.name), self.observation_max_chars)

        span: Span = trace.span(f"tool-{tool.name}", {"tool": tool.name, "args": action.args})
        try:
            async with asyncio.timeout(self.tool_timeout):
                value = await tool.executor(dict(action.args))
        except TimeoutError:
            observation = f"Error executing {tool.name}: timed out after {self.tool_timeout:.0f}s"
            logger.warning("%s", observation)
            span.update(output={"error": observation}, metadata={"success": False})
        except Exception as exc:
            observation = f"Error executing {tool.name}: {exc}"
            logger.warning("Tool %s raised: %s", tool.name, exc)
            span.update(output={"error": observation}, metadata={"success": False})
        else:
            observation = format_observation(value, self.observation_max_chars)
            run.tool_observations.append(observation)
            if tool.name not in run.tools_used:
                run.tools_used.append(tool.name)
            span.update(output={"result": observation}, metadata={"success": True})
        finally:
            span.end()
        return observation

    def _check_grounding(
        self, answer: str, run: _Run, mode: GroundingMode
    ) -> GroundingReport | None:
        if mode is GroundingMode.OFF:
            return None
        report = quick_grounding_check(answer, run.observations)
        if not report.is_grounded:
            logger.info("Grounding check flags: %s", "; ".join(report.flags))
        return report

    @staticmethod
    def _revision_request(report: GroundingReport) -> str:
        flagged = "\n".join(f"- {flag}" for flag in report.flags)
        return (
            "Grounding check: these claims in your answer do not appear in any "
            f"tool result:\n{flagged}\n"
            "Revise your final_answer using only information from the observations, "
            "or call a tool to confirm them."
        )

    @staticmethod
    def _best_effort_answer(run: _Run) -> str:
        if not run.tool_observations:
            return NO_OBSERVATION_APOLOGY
        latest = " ".join(run.tool_observations[-3:])
        return (
            f"I've gathered information through {len(run.steps)} steps but reached "
            f"the iteration limit. Based on what I found: {latest}"
        )

    @staticmethod
    def _event(event_type: EventType, iteration: int, **payload: Any) -> StreamEvent:
        return StreamEvent(type=event_type, iteration=iteration, **payload)

    def _metadata(self, run: _Run, status: RunStatus) -> dict[str, Any]:
        elapsed_ms = (time.perf_counter() - run.started) * 1000
        metadata: dict[str, Any] = {
            "model": self.model_id,
            "status": status.value,
            "start_time": run.started_at,
            "end_time": utc_now_iso(),
            "total_latency_ms": round(elapsed_ms, 1),
            "hit_max_iterations": status is RunStatus.MAX_ITER,
        }
        if run.total_tokens:
            metadata.update(
                total_tokens=run.total_tokens,
                prompt_tokens=run.prompt_tokens,
                completion_tokens=run.completion_tokens,
            )
        return metadata

    def _finish(
        self,
        run: _Run,
        trace: Trace,
        status: RunStatus,
        answer: str,
        iterations: int,
        grounding: GroundingReport | None,
    ) -> ReActResult:
        run.state = LoopState.DONE if status is RunStatus.DONE else LoopState.MAX_ITER
        metadata = self._metadata(run, status)
        if grounding is not None:
            metadata["grounding"] = {
                "is_grounded": grounding.is_grounded,
                "score": grounding.score,
                "ungrounded_claims": grounding.flags,
            }

        result = ReActResult(
            answer=answer,
            iterations=iterations,
            tools_used=list(run.tools_used),
            reasoning_trace=run.reasoning_trace(),
            steps=list(run.steps),
            status=status,
            metadata=metadata,
            grounding=grounding,
        )
        trace.update(
            output={"answer": answer, "iterations": iterations, "tools_used": result.tools_used},
            metadata=metadata,
        )
        trace.end()
        logger.info(
            "ReAct run finished: status=%s iterations=%d tools=%s latency=%.0fms",
            status.value,
            iterations,
            result.tools_used,
            metadata["total_latency_ms"],
        )
        return result

    def _fail(
        self,
        run: _Run,
        trace: Trace,
        error: ModelGatewayError,
        iteration: int,
    ) -> StreamEvent:
        run.state = LoopState.FAILED
        metadata = self._metadata(run, RunStatus.FAILED)
        metadata.update(error_category=error.category.value, error=error.detail)

        result = ReActResult(
            answer=error.user_message,
            iterations=iteration,
            tools_used=list(run.tools_used),
            reasoning_trace=run.reasoning_trace(),
            steps=list(run.steps),
            status=RunStatus.FAILED,
            metadata=metadata,
        )
        trace.update(metadata=metadata)
        trace.end()
        logger.error(
            "ReAct run failed at iteration %d (%s): %s",
            iteration,
            error.category.value,
            error.detail,
        )
        return self._event(
            EventType.ERROR, iteration, error=error.user_message, result=result
        )
