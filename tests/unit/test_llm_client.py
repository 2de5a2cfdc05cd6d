"""
Unit tests for webrefine/llm_client.py

The AsyncOpenAI class is replaced with a MagicMock so no request leaves the
process; assertions are made on the arguments OpenAIClient sends.
"""

from types import SimpleNamespace
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import openai
import pytest

from webrefine.config import OPENAI_MAX_RETRIES, WebRefineConfig
from webrefine.error_handler import ConfigurationError
from webrefine.llm_client import OpenAIClient
from webrefine.mock_api import MockErrorScenario, build_mock_error


def make_completion(
    text: Optional[str], prompt_tokens: int = 1000, completion_tokens: int = 500
) -> SimpleNamespace:
    """Object shaped like openai's ChatCompletion."""
    choices = []
    if text is not None:
        choices.append(
            SimpleNamespace(message=SimpleNamespace(content=text), finish_reason="stop")
        )
    return SimpleNamespace(
        choices=choices,
        model="gpt-4o-mini",
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


@pytest.fixture
def openai_mock(monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    """Patched AsyncOpenAI class; .create is the chat completions coroutine."""
    instance = MagicMock()
    instance.chat.completions.create = AsyncMock(return_value=make_completion("hello"))
    cls = MagicMock(return_value=instance)
    monkeypatch.setattr("webrefine.llm_client.AsyncOpenAI", cls)
    cls.create = instance.chat.completions.create
    return cls


def sent_request(openai_mock: MagicMock) -> Any:
    return openai_mock.create.await_args.kwargs


class TestOpenAIClient:
    """Tests for request shape, error mapping and cost accounting."""

    def test_client_created_without_retries(
        self, openai_mock: MagicMock, config: WebRefineConfig
    ) -> None:
        OpenAIClient(config).ensure_configured()

        kwargs = openai_mock.call_args.kwargs
        assert kwargs["api_key"] == "sk-unit-test-key"
        assert kwargs["max_retries"] == OPENAI_MAX_RETRIES == 0

    def test_client_created_once(self, openai_mock: MagicMock, config: WebRefineConfig) -> None:
        client = OpenAIClient(config)
        client.ensure_configured()
        client.ensure_configured()
        assert openai_mock.call_count == 1

    def test_missing_key_is_configuration_error(
        self, openai_mock: MagicMock, no_api_key: None
    ) -> None:
        with pytest.raises(ConfigurationError):
            OpenAIClient(WebRefineConfig()).ensure_configured()
        openai_mock.assert_not_called()

    @pytest.mark.asyncio
    async def test_transform_request_shape(
        self, openai_mock: MagicMock, config: WebRefineConfig
    ) -> None:
        response = await OpenAIClient(config).complete(
            "Summarize this",
            model="gpt-4o-mini",
            system="You are precise",
            temperature=0.1,
            timeout=30,
        )

        request = sent_request(openai_mock)
        assert request["model"] == "gpt-4o-mini"
        assert request["messages"] == [
            {"role": "system", "content": "You are precise"},
            {"role": "user", "content": "Summarize this"},
        ]
        assert request["temperature"] == 0.1
        assert request["timeout"] == 30
        assert "web_search_options" not in request
        assert response.text == "hello"

    @pytest.mark.asyncio
    async def test_web_search_request_drops_temperature(
        self, openai_mock: MagicMock, config: WebRefineConfig
    ) -> None:
        await OpenAIClient(config).complete(
            "Read https://a.example",
            model="gpt-4o-mini-search-preview",
            temperature=0.1,
            web_search=True,
        )

        request = sent_request(openai_mock)
        assert request["web_search_options"] == {}
        assert "temperature" not in request
        assert "timeout" not in request
        assert request["messages"] == [{"role": "user", "content": "Read https://a.example"}]

    @pytest.mark.asyncio
    async def test_cost_accounting(self, openai_mock: MagicMock, config: WebRefineConfig) -> None:
        openai_mock.create.return_value = make_completion(
            "ok", prompt_tokens=1_000_000, completion_tokens=1_000_000
        )
        client = OpenAIClient(config)

        response = await client.complete("p", model="gpt-4o-mini")
        await client.complete("p", model="gpt-4o-mini")

        assert response.cost == pytest.approx(0.75)
        assert client.total_cost == pytest.approx(1.5)
        assert client.request_count == 2

    @pytest.mark.asyncio
    async def test_missing_choices_give_empty_text(
        self, openai_mock: MagicMock, config: WebRefineConfig
    ) -> None:
        openai_mock.create.return_value = make_completion(None)
        response = await OpenAIClient(config).complete("p", model="gpt-4o-mini")
        assert response.text == ""

    @pytest.mark.asyncio
    async def test_authentication_error_becomes_configuration_error(
        self, openai_mock: MagicMock, config: WebRefineConfig
    ) -> None:
        openai_mock.create.side_effect = build_mock_error(MockErrorScenario.AUTHENTICATION)
        client = OpenAIClient(config)

        with pytest.raises(ConfigurationError, match="API key rejected"):
            await client.complete("p", model="gpt-4o-mini")
        assert client.request_count == 0

    @pytest.mark.asyncio
    async def test_service_errors_propagate(
        self, openai_mock: MagicMock, config: WebRefineConfig
    ) -> None:
        openai_mock.create.side_effect = build_mock_error(MockErrorScenario.RATE_LIMIT)
        with pytest.raises(openai.RateLimitError):
            await OpenAIClient(config).complete("p", model="gpt-4o-mini")


@pytest.mark.real_api
@pytest.mark.asyncio
async def test_real_transformation_request() -> None:
    """Smoke test against the live API (run with --real-api)."""
    client = OpenAIClient(WebRefineConfig())
    response = await client.complete(
        "Reply with the single word: pong", model="gpt-4o-mini", temperature=0
    )
    assert "pong" in response.text.lower()
    assert client.request_count == 1
