"""Parse a model's free-form reply into one ReAct move.

The model is asked to answer with a JSON object — either
``{"thought": ..., "action": {"tool": ..., "args": {...}}}`` or
``{"thought": ..., "final_answer": ...}``. Real models wrap that JSON in
markdown fences, prepend ``<think>`` blocks, or leave trailing commas, so
the reply is cleaned before parsing.

``parse_react_response`` is the only entry point and always returns one
of four variants; callers must handle every one, including Unparseable:

- Action:      a thought plus a tool call
- FinalAnswer: a thought plus the answer for the user
- Thought:     reasoning with no action and no answer
- Unparseable: nothing usable could be extracted
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Union

_THINK_CLOSED = re.compile(r"<think>.*?</think>", re.DOTALL)
_FENCE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",\s*([\]}])")


@dataclass(frozen=True)
class Thought:
    text: str


@dataclass(frozen=True)
class Action:
    thought: str
    tool: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FinalAnswer:
    thought: str
    answer: str


@dataclass(frozen=True)
class Unparseable:
    raw: str
    error: str


ParsedResponse = Union[Thought, Action, FinalAnswer, Unparseable]


def strip_llm_wrapper(text: str) -> str:
    """Remove thinking blocks and markdown code fences from a reply."""
    result = _THINK_CLOSED.sub("", text)
    result = _FENCE.sub("", result)

    # An unclosed <think> means the model ran out of tokens mid-thought.
    # Keep any JSON that follows it; otherwise drop the tail entirely.
    start = result.find("<think>")
    if start != -1:
        tail = result[start:]
        brace = tail.find("{")
        result = result[:start] + (tail[brace:] if brace != -1 else "")

    return result.strip()


def extract_json_object(text: str) -> dict[str, Any]:
    """Extract the outermost JSON object from a reply.

    Raises:
        ValueError: If no object is present or it cannot be parsed even
            after removing trailing commas.
    """
    cleaned = strip_llm_wrapper(text)
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        raise ValueError(f"No JSON object found in model response: {cleaned[:300]!r}")

    candidate = cleaned[start : end + 1]
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        try:
            parsed = json.loads(_TRAILING_COMMA.sub(r"\1", candidate))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON in model response: {exc}") from exc

    if not isinstance(parsed, dict):
        raise ValueError("Model response JSON is not an object")
    return parsed


def _as_text(value: Any) -> str:
    # Models sometimes return a structured final_answer instead of a string
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2)


def parse_react_response(content: str) -> ParsedResponse:
    """Classify a model reply as Action, FinalAnswer, Thought or Unparseable."""
    try:
        obj = extract_json_object(content)
    except ValueError as exc:
        return Unparseable(raw=content, error=str(exc))

    thought_value = obj.get("thought")
    thought = thought_value.strip() if isinstance(thought_value, str) else ""

    final = obj.get("final_answer")
    if final not in (None, "", {}, []):
        return FinalAnswer(thought=thought, answer=_as_text(final))

    action = obj.get("action")
    if action is not None:
        if isinstance(action, str):
            # {"action": "tool_name", "args": {...}} shorthand
            tool, args = action, obj.get("args", obj.get("action_input", {}))
        elif isinstance(action, dict):
            tool, args = action.get("tool", action.get("name")), action.get("args", {})
        else:
            return Unparseable(raw=content, error="'action' must be an object")

        if not isinstance(tool, str) or not tool.strip():
            return Unparseable(raw=content, error="Action is missing a tool name")
        if args is None:
            args = {}
        if not isinstance(args, dict):
            return Unparseable(raw=content, error="Action args must be an object")
        return Action(thought=thought, tool=tool.strip(), args=args)

    if thought:
        return Thought(text=thought)
    return Unparseable(raw=content, error="Response has no thought, action or final_answer")
