"""
Content extraction: URL in, page text and title out.

The service is asked to read the live page through its web-search tool and
answer in a fixed sectioned layout (PAGE_TITLE, META_DESCRIPTION,
MAIN_CONTENT, TECHNICAL_SPECS, REVIEWS_SUMMARY). The page title is then
inferred from the answer with a small line-based heuristic.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple

from openai import OpenAIError

from webrefine.config import (
    DEFAULT_TITLE,
    TITLE_LABELS,
    TITLE_MAX_LENGTH,
    TITLE_SCAN_LINES,
    WebRefineConfig,
)
from webrefine.error_handler import (
    ErrorCategory,
    ExtractionError,
    classify_openai_error,
    describe_error,
)
from webrefine.job_store import ExtractedContent
from webrefine.llm_client import LLMClient

logger = logging.getLogger(__name__)

EXTRACTION_SYSTEM_PROMPT = (
    "You are an expert web scraper and SEO analyst. You report only what is "
    "present on the requested page or in the search index."
)

EXTRACTION_PROMPT_TEMPLATE = """Access the live URL: "{url}" and perform a comprehensive content extraction.

STRICT EXTRACTION RULES:
1. Full fidelity: extract ALL available text content, including main body, technical specifications, product details, pricing, and FAQ.
2. SEO metadata: explicitly look for and extract the page title, meta description, and H1 tags.
3. Structure: keep the original logical hierarchy of the page (headers, subheaders, content).
4. No hallucinations: only output information present on the page or in the search index. If a detail is missing, write "Not specified".

OUTPUT FORMAT:
PAGE_TITLE: <exact page title>
META_DESCRIPTION: <meta description>
MAIN_CONTENT:
<full structured content>
TECHNICAL_SPECS:
<table or list of specs>
REVIEWS_SUMMARY:
<brief summary of user sentiment if available>
"""


@dataclass(frozen=True)
class TitlePolicy:
    """
    Rules for picking a title out of extracted text.

    Attributes:
        labels: Case-insensitive line prefixes marking an explicit title
        scan_lines: Number of leading non-empty lines to inspect
        max_length: First line is used only when shorter than this
        default_title: Used when no line qualifies
    """

    labels: Tuple[str, ...] = TITLE_LABELS
    scan_lines: int = TITLE_SCAN_LINES
    max_length: int = TITLE_MAX_LENGTH
    default_title: str = DEFAULT_TITLE


def infer_title(content: str, policy: Optional[TitlePolicy] = None) -> str:
    """
    Best-effort page title from extracted text.

    A labelled line ("Title: ...", "Product Name: ...") among the first few
    non-empty lines wins; otherwise the first line if it is short enough;
    otherwise the policy's placeholder.
    """
    policy = policy or TitlePolicy()
    lines = [line.strip() for line in content.splitlines() if line.strip()]
    head = lines[: policy.scan_lines]

    for line in head:
        lowered = line.lower()
        for label in policy.labels:
            if lowered.startswith(label.lower()):
                title = line[len(label) :].strip()
                if title:
                    return title

    if head and len(head[0]) < policy.max_length:
        return head[0]
    return policy.default_title


class ContentExtractor(ABC):
    """Retrieves page content for a URL."""

    def ensure_configured(self) -> None:
        """Raise ConfigurationError if extraction cannot run at all."""

    @abstractmethod
    async def extract(self, url: str) -> ExtractedContent:
        """
        Retrieve the content of one page.

        Raises:
            ExtractionError: The page could not be read
            ConfigurationError: Missing or rejected credential (fatal for a run)
        """


class LLMContentExtractor(ContentExtractor):
    """Extractor that asks a search-grounded model to read the page."""

    def __init__(
        self,
        client: LLMClient,
        config: WebRefineConfig,
        title_policy: Optional[TitlePolicy] = None,
    ) -> None:
        self.client = client
        self.config = config
        self.title_policy = title_policy or TitlePolicy()

    def ensure_configured(self) -> None:
        self.client.ensure_configured()

    async def extract(self, url: str) -> ExtractedContent:
        prompt = EXTRACTION_PROMPT_TEMPLATE.format(url=url)
        try:
            response = await self.client.complete(
                prompt,
                model=self.config.extraction_model,
                system=EXTRACTION_SYSTEM_PROMPT,
                web_search=True,
                timeout=self.config.extraction_timeout,
            )
        except OpenAIError as e:
            category = classify_openai_error(e)
            raise ExtractionError(
                describe_error(e, category), url=url, category=category
            ) from e

        content = response.text.strip()
        if not content:
            raise ExtractionError(
                "Unable to extract content from this URL. It may be blocked or not indexed.",
                url=url,
                category=ErrorCategory.INVALID_RESPONSE,
            )

        title = infer_title(content, self.title_policy)
        logger.debug(f"Extracted {len(content)} chars from {url} (title: {title!r})")
        return ExtractedContent(title=title, content=content)
