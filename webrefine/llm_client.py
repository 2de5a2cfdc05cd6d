"""
Async client for the language-model service.

Both the extractor and the transformer talk to the model through an
LLMClient. OpenAIClient is the production implementation on top of
openai.AsyncOpenAI; mock_api.MockLLMClient is the offline stand-in.

Every request:
- is bounded by a per-call timeout (the pipeline adds its own wait_for on top)
- is sent once: the SDK retry loop is disabled (max_retries=0)
- reports token usage and its cost, which is accumulated per client
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    OpenAIError,
    PermissionDeniedError,
    RateLimitError,
)

from webrefine.config import OPENAI_MAX_RETRIES, WebRefineConfig, compute_request_cost
from webrefine.error_handler import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LLMResponse:
    """Text returned by one completion request plus its usage accounting"""

    text: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: float = 0.0


class LLMClient(ABC):
    """
    Base class for completion clients.

    Thread Safety:
    - total_cost/request_count are updated under _cost_lock, so the display
      thread can read them while a request is in flight
    """

    def __init__(self) -> None:
        self._cost_lock = threading.Lock()
        self._total_cost = 0.0
        self._request_count = 0

    @property
    def total_cost(self) -> float:
        with self._cost_lock:
            return self._total_cost

    @property
    def request_count(self) -> int:
        with self._cost_lock:
            return self._request_count

    def _record_usage(self, response: LLMResponse) -> None:
        with self._cost_lock:
            self._total_cost += response.cost
            self._request_count += 1
            total = self._total_cost
        logger.debug(
            f"Request cost: ${response.cost:.6f} "
            f"({response.prompt_tokens} in / {response.completion_tokens} out), "
            f"total so far: ${total:.6f}"
        )

    def ensure_configured(self) -> None:
        """Raise ConfigurationError if the client cannot send requests."""

    @abstractmethod
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
        """
        Send one completion request.

        Args:
            prompt: User message
            model: Model name
            system: Optional system message
            temperature: Sampling temperature (ignored for web-search requests)
            web_search: Ask the service to ground the answer in a live web search
            timeout: Per-request timeout in seconds

        Returns:
            LLMResponse with the message text (may be empty) and usage

        Raises:
            ConfigurationError: Credential missing or rejected by the service
            openai.OpenAIError: Any other service failure
        """


class OpenAIClient(LLMClient):
    """LLMClient backed by openai.AsyncOpenAI (chat completions API)."""

    def __init__(self, config: WebRefineConfig) -> None:
        super().__init__()
        self.config = config
        self._client: Optional[AsyncOpenAI] = None

    def ensure_configured(self) -> None:
        self._get_client()

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            # get_api_key() raises ConfigurationError when no key is available
            api_key = self.config.get_api_key()
            self._client = AsyncOpenAI(
                api_key=api_key,
                base_url=self.config.base_url,
                timeout=max(self.config.extraction_timeout, self.config.transform_timeout),
                max_retries=OPENAI_MAX_RETRIES,
            )
            logger.debug(
                f"AsyncOpenAI client created (base_url={self.config.base_url or 'default'})"
            )
        return self._client

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
        client = self._get_client()

        messages: List[Dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        request: Dict[str, Any] = {"model": model, "messages": messages}
        if web_search:
            # Search-preview models reject sampling parameters
            request["web_search_options"] = {}
        elif temperature is not None:
            request["temperature"] = temperature
        if timeout is not None:
            request["timeout"] = timeout

        logger.debug(
            f"OpenAI request: model={model}, web_search={web_search}, "
            f"prompt={len(prompt)} chars"
        )

        try:
            completion = await client.chat.completions.create(**request)
        except (AuthenticationError, PermissionDeniedError) as e:
            logger.error(f"OpenAI rejected the API key: {e}")
            raise ConfigurationError(f"OpenAI API key rejected: {e}") from e
        except APITimeoutError as e:
            logger.error(f"OpenAI API request timed out: {e}")
            raise
        except RateLimitError as e:
            logger.error(f"Rate limit exceeded (429): {e}")
            raise
        except APIConnectionError as e:
            logger.error(f"API connection failed: {e} (cause: {e.__cause__})")
            raise
        except APIStatusError as e:
            logger.error(f"API returned non-200 status code: {e.status_code}")
            raise
        except OpenAIError as e:
            logger.error(f"OpenAI API error: {e}")
            raise

        usage = completion.usage
        prompt_tokens = usage.prompt_tokens if usage else 0
        completion_tokens = usage.completion_tokens if usage else 0
        text = ""
        if completion.choices:
            text = completion.choices[0].message.content or ""
            logger.debug(f"Finish reason: {completion.choices[0].finish_reason}")

        response = LLMResponse(
            text=text,
            model=completion.model or model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost=compute_request_cost(model, prompt_tokens, completion_tokens),
        )
        self._record_usage(response)
        return response
