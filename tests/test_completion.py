"""Tests for the LiteLLM completion gateway with acompletion mocked."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.services.completion import CompletionError, LiteLLMCompletionGateway


def _mock_llm_response(content: str | None = "Budget approved."):
    """Create a mock LiteLLM acompletion response."""
    usage = MagicMock()
    usage.prompt_tokens = 150
    usage.completion_tokens = 42

    message = MagicMock()
    message.content = content

    choice = MagicMock()
    choice.message = message

    response = MagicMock()
    response.choices = [choice]
    response.usage = usage
    return response


@pytest.mark.asyncio
@patch("app.services.completion.acompletion", new_callable=AsyncMock)
async def test_complete_returns_text_and_usage(mock_llm):
    mock_llm.return_value = _mock_llm_response("  Budget approved.  ")
    gateway = LiteLLMCompletionGateway(model="gpt-4o-mini", api_key="sk-test")

    result = await gateway.complete("Summarise this", max_tokens=100)

    assert result.text == "Budget approved."
    assert result.tokens_used == 192
    assert result.model == "gpt-4o-mini"
    kwargs = mock_llm.call_args.kwargs
    assert kwargs["messages"] == [{"role": "user", "content": "Summarise this"}]
    assert kwargs["max_tokens"] == 100
    assert kwargs["api_key"] == "sk-test"


@pytest.mark.asyncio
@patch("app.services.completion.acompletion", new_callable=AsyncMock)
async def test_message_lists_pass_through(mock_llm):
    mock_llm.return_value = _mock_llm_response()
    messages = [{"role": "system", "content": "ctx"}, {"role": "user", "content": "q"}]

    await LiteLLMCompletionGateway(model="m").complete(messages, max_tokens=10)

    assert mock_llm.call_args.kwargs["messages"] == messages
    assert "api_key" not in mock_llm.call_args.kwargs


@pytest.mark.asyncio
@patch("app.services.completion.acompletion", new_callable=AsyncMock)
async def test_provider_errors_are_wrapped(mock_llm):
    mock_llm.side_effect = RuntimeError("rate limited")
    with pytest.raises(CompletionError, match="rate limited"):
        await LiteLLMCompletionGateway(model="m").complete("q", max_tokens=10)


@pytest.mark.asyncio
@patch("app.services.completion.acompletion", new_callable=AsyncMock)
async def test_empty_reply_is_an_error(mock_llm):
    mock_llm.return_value = _mock_llm_response(None)
    with pytest.raises(CompletionError, match="no text"):
        await LiteLLMCompletionGateway(model="m").complete("q", max_tokens=10)


@pytest.mark.asyncio
async def test_timeout_is_an_error():
    async def slow(**kwargs):
        await asyncio.sleep(1)

    with patch("app.services.completion.acompletion", slow):
        with pytest.raises(CompletionError, match="timed out"):
            await LiteLLMCompletionGateway(model="m", timeout=0.01).complete("q", max_tokens=10)
