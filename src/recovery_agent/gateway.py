"""Language model gateway — the only way the agent talks to an LLM.

The ReAct controller needs exactly one capability from a model provider:
"given a prompt and a system prompt, return text". Everything vendor
specific lives behind the ``LanguageModelGateway`` protocol:

- AnthropicGateway:   Claude through langchain-anthropic
- PlaceholderGateway: answers immediately without a model (used in CI and
                      when no API key is configured)

Provider failures are normalised into ``ModelGatewayError`` with a category
(rate limited / timed out / quota exceeded / unavailable) so the controller
can end the run with a message the patient can understand.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

import httpx
from langchain_anthropic import ChatAnthropic
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from pydantic import SecretStr

from recovery_agent.config import ANTHROPIC_API_KEY, ANTHROPIC_MODEL

logger = logging.getLogger(__name__)


class GatewayErrorCategory(str, Enum):
    """Why a model call failed, in terms a caller can act on."""

    RATE_LIMITED = "rate_limited"
    TIMED_OUT = "timed_out"
    QUOTA_EXCEEDED = "quota_exceeded"
    UNAVAILABLE = "unavailable"


# What the patient sees when the run fails for each category.
USER_MESSAGES: dict[GatewayErrorCategory, str] = {
    GatewayErrorCategory.RATE_LIMITED: (
        "The assistant is receiving too many requests right now. "
        "Please wait a moment and try again."
    ),
    GatewayErrorCategory.TIMED_OUT: (
        "The assistant took too long to respond. Please try again."
    ),
    GatewayErrorCategory.QUOTA_EXCEEDED: (
        "The assistant's usage quota has been reached. Please try again later."
    ),
    GatewayErrorCategory.UNAVAILABLE: (
        "The assistant is temporarily unavailable. Please try again later."
    ),
}


class ModelGatewayError(Exception):
    """Raised when a model call fails. Terminal for the run."""

    def __init__(self, category: GatewayErrorCategory, detail: str) -> None:
        self.category = category
        self.detail = detail
        super().__init__(f"{category.value}: {detail}")

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.category]


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class GatewayResponse:
    """Text returned by one model call, plus token usage when reported."""

    content: str
    token_usage: TokenUsage | None = None


class LanguageModelGateway(Protocol):
    """Single-shot text generation, vendor agnostic."""

    model_id: str

    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> GatewayResponse: ...


def categorize_gateway_error(exc: BaseException) -> ModelGatewayError:
    """Map any provider exception onto a ModelGatewayError.

    Providers report failures in different shapes (HTTP status codes on the
    exception, SDK-specific classes, or just a message), so this looks at
    all of them: a timeout type first, then the status code, then the text.
    """
    if isinstance(exc, ModelGatewayError):
        return exc

    detail = str(exc) or type(exc).__name__
    if isinstance(exc, (TimeoutError, httpx.TimeoutException)):
        return ModelGatewayError(GatewayErrorCategory.TIMED_OUT, detail)

    text = detail.lower()
    status = getattr(exc, "status_code", None)

    # Quota errors often arrive as 429s too, so check them first
    if "quota" in text or "credit balance" in text or "billing" in text:
        return ModelGatewayError(GatewayErrorCategory.QUOTA_EXCEEDED, detail)
    if status == 429 or "429" in text or "rate limit" in text or "too many requests" in text:
        return ModelGatewayError(GatewayErrorCategory.RATE_LIMITED, detail)
    if "timeout" in text or "timed out" in text:
        return ModelGatewayError(GatewayErrorCategory.TIMED_OUT, detail)
    return ModelGatewayError(GatewayErrorCategory.UNAVAILABLE, detail)


def _message_text(message: BaseMessage) -> str:
    """Flatten a chat message's content (str or list of content blocks)."""
    content = message.content
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(str(block.get("text", "")))
    return "".join(parts)


class AnthropicGateway:
    """Gateway backed by Claude via langchain-anthropic.

    Args:
        model: Anthropic model name.
        api_key: Anthropic API key.
        chat_model: Pre-built chat model; tests pass a fake here.
    """

    def __init__(
        self,
        model: str = ANTHROPIC_MODEL,
        api_key: str = ANTHROPIC_API_KEY,
        chat_model: BaseChatModel | None = None,
    ) -> None:
        self.model_id = model
        if chat_model is None:
            # mypy can't see Pydantic model fields as constructor kwargs
            chat_model = ChatAnthropic(
                model_name=model,  # type: ignore[call-arg]
                anthropic_api_key=SecretStr(api_key),  # type: ignore[call-arg]
            )
        self._chat = chat_model

    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> GatewayResponse:
        messages: list[BaseMessage] = []
        if system_prompt:
            messages.append(SystemMessage(content=system_prompt))
        messages.append(HumanMessage(content=prompt))

        try:
            message = await self._chat.ainvoke(messages, config={"metadata": metadata or {}})
        except Exception as exc:
            error = categorize_gateway_error(exc)
            logger.warning("Model call failed (%s): %s", error.category.value, error.detail)
            raise error from exc

        usage = getattr(message, "usage_metadata", None) or {}
        token_usage = None
        if usage:
            token_usage = TokenUsage(
                prompt_tokens=int(usage.get("input_tokens", 0)),
                completion_tokens=int(usage.get("output_tokens", 0)),
                total_tokens=int(usage.get("total_tokens", 0)),
            )
        return GatewayResponse(content=_message_text(message), token_usage=token_usage)


class PlaceholderGateway:
    """Answers every prompt with a final answer that echoes the question.

    Lets the whole stack (loop, streaming, HTTP) run without an API key,
    the same way CI runs it.
    """

    model_id = "placeholder"

    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> GatewayResponse:
        first_line = prompt.strip().splitlines()[0] if prompt.strip() else ""
        question = first_line.removeprefix("User:").strip()
        return GatewayResponse(
            content=json.dumps(
                {
                    "thought": "No model is configured, so I can only echo the question.",
                    "final_answer": (
                        "[Agent placeholder — no API key configured] "
                        f"You asked: {question}"
                    ),
                }
            )
        )
