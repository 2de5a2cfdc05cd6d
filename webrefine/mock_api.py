"""
Mock LLM client for running WebRefine without spending tokens.

MockLLMClient is a drop-in replacement for OpenAIClient:
- Deterministic responses based on the prompt content
- Extraction requests get a sectioned page report for the requested URL
- Transformation requests get output shaped by the instruction/sample
- Configurable error simulation (rate limit, quota, timeout, connection,
  authentication, empty response)
- Realistic cost calculation from the MODEL_PRICING table

Thread Safety:
- Configuration is an immutable snapshot taken at call time
- Attempt counters are protected by _counter_lock
"""

import asyncio
import hashlib
import json
import logging
import re
import threading
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, FrozenSet, Optional

import httpx
from openai import (
    APIConnectionError,
    APITimeoutError,
    AuthenticationError,
    RateLimitError,
)

from webrefine.config import compute_request_cost, estimate_tokens
from webrefine.error_handler import ConfigurationError
from webrefine.llm_client import LLMClient, LLMResponse

logger = logging.getLogger(__name__)

# 8 hex chars of SHA256: enough to key custom responses by prompt
PROMPT_HASH_LENGTH = 8

_MOCK_API_URL = "https://api.openai.com/v1/chat/completions"
_URL_PATTERN = re.compile(r"https?://[^\s\"'<>]+")
_SAMPLE_BLOCK = re.compile(
    r"--- SAMPLE FILE START ---\n(.*?)\n--- SAMPLE FILE END ---", re.DOTALL
)
_USER_PROMPT = re.compile(r"USER PROMPT:\n\"(.*?)\"\n", re.DOTALL)


class MockErrorScenario(Enum):
    """Error scenarios that can be simulated by the mock."""

    NONE = auto()  # No error - normal response
    RATE_LIMIT = auto()  # 429 rate limit error
    QUOTA_EXCEEDED = auto()  # Insufficient quota
    TIMEOUT = auto()  # API timeout
    CONNECTION_ERROR = auto()  # Network connection failed
    AUTHENTICATION = auto()  # Invalid API key
    EMPTY_RESPONSE = auto()  # Empty content in response


@dataclass(frozen=True)
class MockLLMConfig:
    """
    Configuration for mock behavior.

    Attributes:
        error_scenario: Which error to simulate (or NONE for success)
        delay_seconds: Simulated API latency (0 for instant)
        custom_responses: Prompt hash -> response text
        failing_urls: Extraction requests for these URLs fail with error_scenario;
                      when empty, error_scenario applies to every request
        fail_first: Only the first N matching requests fail (0 = all)
    """

    error_scenario: MockErrorScenario = MockErrorScenario.NONE
    delay_seconds: float = 0.0
    custom_responses: Dict[str, str] = field(default_factory=dict)
    failing_urls: FrozenSet[str] = frozenset()
    fail_first: int = 0


def create_custom_response_key(prompt: str) -> str:
    """
    Create a hash key for custom responses.

    Example:
        key = create_custom_response_key("my specific prompt")
        client = MockLLMClient(MockLLMConfig(custom_responses={key: "CUSTOM"}))
    """
    return hashlib.sha256(prompt.encode()).hexdigest()[:PROMPT_HASH_LENGTH]


def _mock_response(status_code: int) -> httpx.Response:
    return httpx.Response(status_code, request=httpx.Request("POST", _MOCK_API_URL))


def build_mock_error(scenario: MockErrorScenario) -> Exception:
    """The openai SDK exception the real client would raise for a scenario."""
    if scenario == MockErrorScenario.RATE_LIMIT:
        return RateLimitError(
            "Rate limit exceeded",
            response=_mock_response(429),
            body={"error": {"message": "Rate limit exceeded", "type": "rate_limit_error"}},
        )
    if scenario == MockErrorScenario.QUOTA_EXCEEDED:
        return RateLimitError(
            "You exceeded your current quota",
            response=_mock_response(429),
            body={
                "error": {
                    "message": "You exceeded your current quota",
                    "type": "insufficient_quota",
                }
            },
        )
    if scenario == MockErrorScenario.TIMEOUT:
        return APITimeoutError(request=httpx.Request("POST", _MOCK_API_URL))
    if scenario == MockErrorScenario.CONNECTION_ERROR:
        return APIConnectionError(
            message="Connection failed", request=httpx.Request("POST", _MOCK_API_URL)
        )
    if scenario == MockErrorScenario.AUTHENTICATION:
        return AuthenticationError(
            "Incorrect API key provided",
            response=_mock_response(401),
            body={"error": {"message": "Incorrect API key provided"}},
        )
    raise ValueError(f"Scenario {scenario.name} does not raise")


def mock_page_report(url: str) -> str:
    """Sectioned page report in the layout the extraction prompt asks for."""
    slug = url.rstrip("/").rsplit("/", 1)[-1] or url
    digest = int(create_custom_response_key(url), 16)
    return f"""PAGE_TITLE: Mock page for {slug}
META_DESCRIPTION: Simulated description of {url}
MAIN_CONTENT:
Welcome to the {slug} page.
Price: ${digest % 100}.99
Availability: In stock
TECHNICAL_SPECS:
- Weight: {digest % 10 + 1} kg
- Color: Blue
REVIEWS_SUMMARY:
Customers are generally satisfied."""


def mock_transformation(prompt: str) -> str:
    """
    Deterministic transformation output.

    Mirrors the first line of a sample file when one is present, otherwise
    follows a few recognizable instruction keywords.
    """
    sample_match = _SAMPLE_BLOCK.search(prompt)
    if sample_match:
        sample = sample_match.group(1).strip()
        header = sample.splitlines()[0] if sample else ""
        if "," in header:
            columns = [c.strip() for c in header.split(",")]
            return header + "\n" + ",".join("N/A" for _ in columns)
        return header or "N/A"

    instruction_match = _USER_PROMPT.search(prompt)
    instruction = instruction_match.group(1).lower() if instruction_match else ""
    if "json" in instruction:
        body = json.dumps({"title": "Mock page", "summary": "Mock summary"}, indent=2)
        return f"```json\n{body}\n```"
    if "markdown" in instruction:
        return "## MOCK SUMMARY\n\n**Key point:** simulated content"
    return "MOCK SUMMARY\n**Key point:** simulated content\n* First item\n* Second item"


class MockLLMClient(LLMClient):
    """LLMClient that never touches the network."""

    def __init__(self, config: Optional[MockLLMConfig] = None) -> None:
        super().__init__()
        self.mock_config = config or MockLLMConfig()
        self.call_count = 0
        self._failures = 0
        self._counter_lock = threading.Lock()

    def configure(self, config: MockLLMConfig) -> None:
        self.mock_config = config
        with self._counter_lock:
            self._failures = 0

    def ensure_configured(self) -> None:
        # Mock mode needs no API key
        return None

    def _should_fail(self, config: MockLLMConfig, prompt: str, web_search: bool) -> bool:
        if config.error_scenario == MockErrorScenario.NONE:
            return False
        if config.failing_urls:
            urls = set(_URL_PATTERN.findall(prompt)) if web_search else set()
            if not urls & config.failing_urls:
                return False
        with self._counter_lock:
            if config.fail_first and self._failures >= config.fail_first:
                return False
            self._failures += 1
        return True

    async def complete(
        self,
        prompt: str,
        *,
        model: str,
        system: Optional[str] = None,
        temperature: Optional[float] = None,
        web_search: bool = False,
        timeout: Optional[float] = None,
    ) -> LLMResponse:
        # Snapshot: configure() may run while we sleep
        config = self.mock_config
        with self._counter_lock:
            self.call_count += 1

        if config.delay_seconds > 0:
            await asyncio.sleep(config.delay_seconds)

        if self._should_fail(config, prompt, web_search):
            if config.error_scenario == MockErrorScenario.EMPTY_RESPONSE:
                logger.debug("[MOCK] returning empty response")
                return LLMResponse(text="", model=model)
            logger.debug(f"[MOCK] raising {config.error_scenario.name}")
            error = build_mock_error(config.error_scenario)
            if isinstance(error, AuthenticationError):
                # Same translation as OpenAIClient.complete()
                raise ConfigurationError(f"OpenAI API key rejected: {error}") from error
            raise error

        key = create_custom_response_key(prompt)
        if key in config.custom_responses:
            text = config.custom_responses[key]
        elif web_search:
            urls = _URL_PATTERN.findall(prompt)
            text = mock_page_report(urls[0] if urls else "unknown")
        else:
            text = mock_transformation(prompt)

        prompt_tokens = estimate_tokens((system or "") + prompt)
        completion_tokens = estimate_tokens(text)
        response = LLMResponse(
            text=text,
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost=compute_request_cost(model, prompt_tokens, completion_tokens),
        )
        self._record_usage(response)
        return response
