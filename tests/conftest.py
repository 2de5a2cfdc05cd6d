"""
Pytest configuration for WebRefine tests.

This conftest.py provides:
1. Markers: mock_api (uses MockLLMClient), real_api (needs OPENAI_API_KEY)
2. Command-line option --real-api to run real_api tests against OpenAI
3. Fake extractor/transformer collaborators that record every call
4. Shared fixtures: event bus, recorded events, mock client, config
"""

import asyncio
import os
from collections.abc import Callable, Generator
from typing import Dict, List, Optional, Tuple

import pytest
from _pytest.config import Config
from _pytest.config.argparsing import Parser
from _pytest.fixtures import FixtureRequest

from webrefine.config import API_KEY_ENV_VAR, WebRefineConfig
from webrefine.error_handler import ExtractionError, TransformationError
from webrefine.event_system import Event, EventBus
from webrefine.extractor import ContentExtractor
from webrefine.job_store import ExtractedContent
from webrefine.mock_api import MockLLMClient
from webrefine.sample_loader import SampleTemplate
from webrefine.transformer import ContentTransformer

# ============================================================================
# Markers and options
# ============================================================================


def pytest_configure(config: Config) -> None:
    config.addinivalue_line("markers", "mock_api: test runs against MockLLMClient")
    config.addinivalue_line(
        "markers", "real_api: test calls the real OpenAI API (needs --real-api)"
    )


def pytest_addoption(parser: Parser) -> None:
    """Add --real-api command line option."""
    parser.addoption(
        "--real-api",
        action="store_true",
        default=False,
        help="Use real OpenAI API instead of mock (requires OPENAI_API_KEY)",
    )


def _has_openai_api_key() -> bool:
    key = os.environ.get(API_KEY_ENV_VAR, "")
    # Key must exist and not be a placeholder
    return bool(key) and not key.startswith("sk-test") and len(key) > 20


@pytest.fixture(autouse=True)  # type: ignore[misc]
def skip_real_api(request: FixtureRequest) -> None:
    """real_api tests run only with --real-api and a usable key."""
    if request.node.get_closest_marker("real_api") is None:
        return
    if not request.config.getoption("--real-api", default=False):
        pytest.skip("real_api test (pass --real-api to run)")
    if not _has_openai_api_key():
        pytest.skip(f"{API_KEY_ENV_VAR} not set")


# ============================================================================
# Fake collaborators
# ============================================================================


class FakeExtractor(ContentExtractor):
    """
    Extractor returning canned content per URL.

    Attributes:
        calls: URLs in the order extract() was called
        max_in_flight: Highest number of concurrent extract() calls observed
    """

    def __init__(
        self,
        failures: Optional[Dict[str, str]] = None,
        delays: Optional[Dict[str, float]] = None,
        titles: Optional[Dict[str, str]] = None,
    ) -> None:
        self.failures = failures or {}
        self.delays = delays or {}
        self.titles = titles or {}
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.on_call: Optional[Callable[[str], None]] = None

    async def extract(self, url: str) -> ExtractedContent:
        self.calls.append(url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.on_call is not None:
                self.on_call(url)
            await asyncio.sleep(self.delays.get(url, 0))
            if url in self.failures:
                raise ExtractionError(self.failures[url], url=url)
            title = self.titles.get(url, f"Title of {url}")
            return ExtractedContent(title=title, content=f"Content of {url}")
        finally:
            self.in_flight -= 1


class FakeTransformer(ContentTransformer):
    """Transformer that upper-cases the content; records (content, instruction, sample)."""

    def __init__(
        self,
        failures: Optional[Dict[str, str]] = None,
        delay: float = 0.0,
    ) -> None:
        self.failures = failures or {}
        self.delay = delay
        self.calls: List[Tuple[str, str, Optional[SampleTemplate]]] = []

    async def transform(
        self,
        content: str,
        instruction: str,
        sample_template: Optional[SampleTemplate] = None,
    ) -> str:
        self.calls.append((content, instruction, sample_template))
        await asyncio.sleep(self.delay)
        for needle, message in self.failures.items():
            if needle in content:
                raise TransformationError(message)
        return content.upper()


@pytest.fixture
def fake_extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def fake_transformer() -> FakeTransformer:
    return FakeTransformer()


@pytest.fixture
def make_extractor() -> type[FakeExtractor]:
    """The FakeExtractor class, for tests that need failures or delays."""
    return FakeExtractor


@pytest.fixture
def make_transformer() -> type[FakeTransformer]:
    return FakeTransformer


# ============================================================================
# Shared fixtures
# ============================================================================


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorded_events(event_bus: EventBus) -> List[Event]:
    """Every event published on event_bus, in order."""
    events: List[Event] = []
    event_bus.subscribe(Event, events.append)
    return events


@pytest.fixture
def urls() -> List[str]:
    return [
        "https://example.com/a",
        "https://example.com/b",
        "https://example.com/c",
    ]


@pytest.fixture
def config() -> WebRefineConfig:
    return WebRefineConfig(api_key="sk-unit-test-key")


@pytest.fixture
def mock_client() -> Generator[MockLLMClient, None, None]:
    """
    MockLLMClient with default (successful) behavior.

    Usage:
        def test_rate_limit(mock_client):
            mock_client.configure(MockLLMConfig(error_scenario=MockErrorScenario.RATE_LIMIT))
    """
    client = MockLLMClient()
    yield client


@pytest.fixture
def no_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(API_KEY_ENV_VAR, raising=False)

