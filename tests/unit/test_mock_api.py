"""
Unit tests for webrefine/mock_api.py

MockLLMClient must behave like OpenAIClient from the caller's side: same
exception types, same usage accounting, deterministic output.
"""

import asyncio

import openai
import pytest

from webrefine.error_handler import ConfigurationError
from webrefine.mock_api import (
    MockErrorScenario,
    MockLLMClient,
    MockLLMConfig,
    build_mock_error,
    create_custom_response_key,
    mock_page_report,
    mock_transformation,
)

MODEL = "gpt-4o-mini"


@pytest.mark.mock_api
class TestMockResponses:
    """Tests for deterministic mock output."""

    @pytest.mark.asyncio
    async def test_web_search_returns_page_report(self, mock_client: MockLLMClient) -> None:
        response = await mock_client.complete(
            'Access the live URL: "https://shop.example/widget"',
            model=MODEL,
            web_search=True,
        )
        assert response.text.startswith("PAGE_TITLE: Mock page for widget")
        assert response.text == mock_page_report("https://shop.example/widget")

    def test_page_report_is_deterministic(self) -> None:
        assert mock_page_report("https://a.example/x") == mock_page_report(
            "https://a.example/x"
        )
        assert mock_page_report("https://a.example/x") != mock_page_report(
            "https://a.example/y"
        )

    def test_transformation_follows_instruction(self) -> None:
        assert mock_transformation('USER PROMPT:\n"Return JSON"\n').startswith("```json")
        assert mock_transformation('USER PROMPT:\n"Use markdown"\n').startswith("## ")
        assert mock_transformation("no instruction").startswith("MOCK SUMMARY")

    def test_transformation_mirrors_sample_header(self) -> None:
        prompt = "--- SAMPLE FILE START ---\nname,price\nx,1\n--- SAMPLE FILE END ---"
        assert mock_transformation(prompt) == "name,price\nN/A,N/A"
        prompt = "--- SAMPLE FILE START ---\nREPORT\n--- SAMPLE FILE END ---"
        assert mock_transformation(prompt) == "REPORT"

    @pytest.mark.asyncio
    async def test_custom_response(self) -> None:
        prompt = "my specific prompt"
        client = MockLLMClient(
            MockLLMConfig(custom_responses={create_custom_response_key(prompt): "CUSTOM"})
        )
        response = await client.complete(prompt, model=MODEL)
        assert response.text == "CUSTOM"

    @pytest.mark.asyncio
    async def test_usage_accounting(self, mock_client: MockLLMClient) -> None:
        first = await mock_client.complete("x" * 400, model=MODEL)
        await mock_client.complete("y" * 400, model=MODEL)

        assert first.prompt_tokens == 100
        assert first.cost > 0
        assert mock_client.call_count == 2
        assert mock_client.request_count == 2
        assert mock_client.total_cost == pytest.approx(first.cost * 2, rel=0.5)

    def test_ensure_configured_needs_no_key(
        self, mock_client: MockLLMClient, no_api_key: None
    ) -> None:
        mock_client.ensure_configured()


@pytest.mark.mock_api
class TestMockErrors:
    """Tests for simulated error scenarios."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "scenario,exc_type",
        [
            (MockErrorScenario.RATE_LIMIT, openai.RateLimitError),
            (MockErrorScenario.QUOTA_EXCEEDED, openai.RateLimitError),
            (MockErrorScenario.TIMEOUT, openai.APITimeoutError),
            (MockErrorScenario.CONNECTION_ERROR, openai.APIConnectionError),
        ],
    )
    async def test_sdk_exceptions_raised(
        self, scenario: MockErrorScenario, exc_type: type
    ) -> None:
        client = MockLLMClient(MockLLMConfig(error_scenario=scenario))
        with pytest.raises(exc_type):
            await client.complete("prompt", model=MODEL)
        assert client.request_count == 0

    @pytest.mark.asyncio
    async def test_authentication_becomes_configuration_error(self) -> None:
        client = MockLLMClient(MockLLMConfig(error_scenario=MockErrorScenario.AUTHENTICATION))
        with pytest.raises(ConfigurationError, match="API key rejected") as exc_info:
            await client.complete("prompt", model=MODEL)
        assert isinstance(exc_info.value.__cause__, openai.AuthenticationError)

    @pytest.mark.asyncio
    async def test_empty_response(self) -> None:
        client = MockLLMClient(MockLLMConfig(error_scenario=MockErrorScenario.EMPTY_RESPONSE))
        response = await client.complete("prompt", model=MODEL)
        assert response.text == ""

    @pytest.mark.asyncio
    async def test_fail_first(self) -> None:
        client = MockLLMClient(
            MockLLMConfig(error_scenario=MockErrorScenario.RATE_LIMIT, fail_first=1)
        )
        with pytest.raises(openai.RateLimitError):
            await client.complete("prompt", model=MODEL)
        response = await client.complete("prompt", model=MODEL)
        assert response.text

    @pytest.mark.asyncio
    async def test_failing_urls_only_affect_matching_extractions(self) -> None:
        client = MockLLMClient(
            MockLLMConfig(
                error_scenario=MockErrorScenario.CONNECTION_ERROR,
                failing_urls=frozenset({"https://bad.example"}),
            )
        )

        with pytest.raises(openai.APIConnectionError):
            await client.complete('URL: "https://bad.example"', model=MODEL, web_search=True)
        ok = await client.complete('URL: "https://good.example"', model=MODEL, web_search=True)
        # Transformation requests never match a failing URL
        transformed = await client.complete("https://bad.example", model=MODEL)

        assert ok.text.startswith("PAGE_TITLE")
        assert transformed.text

    @pytest.mark.asyncio
    async def test_configure_resets_failure_counter(self) -> None:
        client = MockLLMClient(
            MockLLMConfig(error_scenario=MockErrorScenario.TIMEOUT, fail_first=1)
        )
        with pytest.raises(openai.APITimeoutError):
            await client.complete("prompt", model=MODEL)

        client.configure(MockLLMConfig(error_scenario=MockErrorScenario.TIMEOUT, fail_first=1))

        with pytest.raises(openai.APITimeoutError):
            await client.complete("prompt", model=MODEL)

    @pytest.mark.asyncio
    async def test_delay_is_applied(self) -> None:
        client = MockLLMClient(MockLLMConfig(delay_seconds=0.2))
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(client.complete("prompt", model=MODEL), timeout=0.01)

    def test_none_scenario_has_no_exception(self) -> None:
        with pytest.raises(ValueError):
            build_mock_error(MockErrorScenario.NONE)
