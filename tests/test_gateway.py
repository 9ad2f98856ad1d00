"""Tests for the model gateways and provider error categorization."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import httpx
import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from recovery_agent.gateway import (
    AnthropicGateway,
    GatewayErrorCategory,
    ModelGatewayError,
    PlaceholderGateway,
    categorize_gateway_error,
)


class _StatusError(Exception):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


@pytest.mark.parametrize(
    ("exc", "category"),
    [
        (_StatusError("Error", 429), GatewayErrorCategory.RATE_LIMITED),
        (RuntimeError("rate limit exceeded"), GatewayErrorCategory.RATE_LIMITED),
        (RuntimeError("Your credit balance is too low"), GatewayErrorCategory.QUOTA_EXCEEDED),
        (_StatusError("429 quota exceeded", 429), GatewayErrorCategory.QUOTA_EXCEEDED),
        (TimeoutError(), GatewayErrorCategory.TIMED_OUT),
        (httpx.ReadTimeout("read timed out"), GatewayErrorCategory.TIMED_OUT),
        (RuntimeError("Request timed out"), GatewayErrorCategory.TIMED_OUT),
        (RuntimeError("503 Service Unavailable"), GatewayErrorCategory.UNAVAILABLE),
        (ValueError(), GatewayErrorCategory.UNAVAILABLE),
    ],
)
def test_categorize(exc: Exception, category: GatewayErrorCategory) -> None:
    error = categorize_gateway_error(exc)
    assert error.category is category
    assert error.detail


def test_categorize_passes_gateway_errors_through() -> None:
    original = ModelGatewayError(GatewayErrorCategory.TIMED_OUT, "slow")
    assert categorize_gateway_error(original) is original
    assert "too long" in original.user_message


@pytest.mark.asyncio
async def test_anthropic_gateway_sends_system_and_prompt() -> None:
    chat = AsyncMock()
    chat.ainvoke.return_value = AIMessage(
        content=[{"type": "text", "text": '{"final_answer": '}, {"type": "text", "text": '"hi"}'}],
        usage_metadata={"input_tokens": 12, "output_tokens": 4, "total_tokens": 16},
    )
    gateway = AnthropicGateway(model="claude-test", api_key="k", chat_model=chat)

    response = await gateway.generate("User: hi", system_prompt="Be kind.", metadata={"iteration": 1})

    assert response.content == '{"final_answer": "hi"}'
    assert response.token_usage is not None
    assert response.token_usage.total_tokens == 16
    messages = chat.ainvoke.await_args.args[0]
    assert isinstance(messages[0], SystemMessage)
    assert messages[0].content == "Be kind."
    assert isinstance(messages[1], HumanMessage)
    assert chat.ainvoke.await_args.kwargs["config"] == {"metadata": {"iteration": 1}}
    assert gateway.model_id == "claude-test"


@pytest.mark.asyncio
async def test_anthropic_gateway_without_usage() -> None:
    chat = AsyncMock()
    chat.ainvoke.return_value = AIMessage(content="plain text")
    gateway = AnthropicGateway(model="claude-test", api_key="k", chat_model=chat)

    response = await gateway.generate("User: hi")

    assert response.content == "plain text"
    assert response.token_usage is None
    assert len(chat.ainvoke.await_args.args[0]) == 1


@pytest.mark.asyncio
async def test_anthropic_gateway_categorizes_failures() -> None:
    chat = AsyncMock()
    chat.ainvoke.side_effect = RuntimeError("Error code: 429 - rate_limit_error")
    gateway = AnthropicGateway(model="claude-test", api_key="k", chat_model=chat)

    with pytest.raises(ModelGatewayError) as exc_info:
        await gateway.generate("User: hi")
    assert exc_info.value.category is GatewayErrorCategory.RATE_LIMITED


@pytest.mark.asyncio
async def test_placeholder_echoes_question() -> None:
    response = await PlaceholderGateway().generate("User: Hello there\n\nNow provide your next step as JSON:")
    payload = json.loads(response.content)
    assert payload["final_answer"].endswith("You asked: Hello there")
