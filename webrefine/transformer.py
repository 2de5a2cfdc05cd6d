"""
Content transformation: extracted text + instruction (+ sample) -> final text.

Prompt layout:
- SOURCE CONTENT block, truncated to SOURCE_CONTENT_MAX_CHARS
- INSTRUCTIONS block: either "map into the sample's exact structure" (sample
  present) or "follow the user prompt" with plain-text or markdown rules
- QUALITY ASSURANCE rules (no preamble, no invented facts)

Model output is post-processed with clean_model_output(): the code fence
wrapper is removed and, unless markdown was requested or a sample was given,
markdown markup is stripped.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Optional

from openai import OpenAIError

from webrefine.config import (
    SAMPLE_TEMPLATE_MAX_CHARS,
    SOURCE_CONTENT_MAX_CHARS,
    TRUNCATION_MARKER,
    WebRefineConfig,
)
from webrefine.error_handler import (
    ErrorCategory,
    TransformationError,
    classify_openai_error,
    describe_error,
)
from webrefine.llm_client import LLMClient
from webrefine.sample_loader import SampleFormat, SampleTemplate

logger = logging.getLogger(__name__)

DEFAULT_INSTRUCTION = (
    "Clean up the content, remove navigation/footer noise, and format it professionally."
)
DEFAULT_SAMPLE_INSTRUCTION = "Follow the sample file structure precisely."

TRANSFORM_SYSTEM_PROMPT = (
    "You are an expert data processor. You transform raw web content into a "
    "perfectly formatted final deliverable."
)

_LEADING_FENCE = re.compile(r"^```[a-z]*\n?", re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"```$")
_HEADING_MARKER = re.compile(r"^#+\s", re.MULTILINE)
_STAR_BULLET = re.compile(r"^\* ", re.MULTILINE)
_SPACE_RUN = re.compile(r" {2,}")


def is_markdown_requested(
    instruction: str, sample_template: Optional[SampleTemplate] = None
) -> bool:
    """True when the instruction mentions markdown or the sample is a markdown file."""
    if "markdown" in instruction.lower():
        return True
    return sample_template is not None and sample_template.format == SampleFormat.MARKDOWN


def truncate_text(text: str, limit: int, marker: str = "") -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + (f" {marker}" if marker else "")


def build_transform_prompt(
    content: str,
    instruction: str,
    sample_template: Optional[SampleTemplate] = None,
) -> str:
    instruction = instruction.strip()
    markdown = is_markdown_requested(instruction, sample_template)

    if sample_template is not None and not sample_template.is_empty:
        sample = truncate_text(sample_template.content, SAMPLE_TEMPLATE_MAX_CHARS)
        instructions = f"""### CRITICAL: SAMPLE FILE MAPPING
The user has provided a SAMPLE FILE ({sample_template.name}, {sample_template.format.value}).
Your ONLY goal: map the source content into the EXACT structure of the sample file.

- If the sample is CSV: output ONLY CSV rows matching its headers.
- If the sample is JSON: output ONLY valid JSON matching its keys.
- If the sample is text or a list: match the tone, bullet style, and spacing exactly.

--- SAMPLE FILE START ---
{sample}
--- SAMPLE FILE END ---

### USER CONFIGURATION NOTES:
"{instruction or DEFAULT_SAMPLE_INSTRUCTION}"
"""
    else:
        formatting = (
            "- Use standard Markdown formatting (bold, headers, tables)."
            if markdown
            else "- OUTPUT PURE PLAIN TEXT. Do NOT use Markdown characters like "
            "asterisks (**), hashes (#), or underscores (_). Use CAPITALIZATION "
            "for headers and simple spacing."
        )
        instructions = f"""### CRITICAL: USER CONFIGURATION
Follow the user prompt to the letter.

USER PROMPT:
"{instruction or DEFAULT_INSTRUCTION}"

FORMATTING RULES:
{formatting}
"""

    source = truncate_text(content, SOURCE_CONTENT_MAX_CHARS, TRUNCATION_MARKER)
    markup_rule = (
        "Keep structure." if markdown else "STRIP all markdown symbols (**bold**, ## header)."
    )
    return f"""--- SOURCE CONTENT (Extracted) ---
{source}
--- END SOURCE CONTENT ---

--- INSTRUCTIONS ---
{instructions}
--- QUALITY ASSURANCE RULES ---
1. Zero fluff: do not say "Here is the data". Start immediately with the output.
2. Data integrity: do not make up facts. If a field from the sample file is not found in the source, leave it blank or write "N/A".
3. Clean output: trim all leading/trailing whitespace. {markup_rule}

GENERATE FINAL OUTPUT:
"""


def strip_code_fence(text: str) -> str:
    text = _LEADING_FENCE.sub("", text.strip(), count=1)
    return _TRAILING_FENCE.sub("", text.rstrip(), count=1).rstrip()


def strip_markdown(text: str) -> str:
    """Remove bold/italic markers and heading hashes, normalize bullets and spacing."""
    text = text.replace("**", "").replace("__", "")
    text = _HEADING_MARKER.sub("", text)
    text = _STAR_BULLET.sub("- ", text)
    return _SPACE_RUN.sub(" ", text)


def clean_model_output(text: str, keep_markdown: bool) -> str:
    text = strip_code_fence(text)
    if not keep_markdown:
        text = strip_markdown(text)
    return text.strip()


class ContentTransformer(ABC):
    """Reformats extracted text according to an instruction or sample."""

    def ensure_configured(self) -> None:
        """Raise ConfigurationError if transformation cannot run at all."""

    @abstractmethod
    async def transform(
        self,
        content: str,
        instruction: str,
        sample_template: Optional[SampleTemplate] = None,
    ) -> str:
        """
        Raises:
            TransformationError: The call failed or produced no output
            ConfigurationError: Missing or rejected credential (fatal for a run)
        """


class LLMContentTransformer(ContentTransformer):
    def __init__(self, client: LLMClient, config: WebRefineConfig) -> None:
        self.client = client
        self.config = config

    def ensure_configured(self) -> None:
        self.client.ensure_configured()

    async def transform(
        self,
        content: str,
        instruction: str,
        sample_template: Optional[SampleTemplate] = None,
    ) -> str:
        prompt = build_transform_prompt(content, instruction, sample_template)
        try:
            response = await self.client.complete(
                prompt,
                model=self.config.model,
                system=TRANSFORM_SYSTEM_PROMPT,
                temperature=self.config.temperature,
                timeout=self.config.transform_timeout,
            )
        except OpenAIError as e:
            category = classify_openai_error(e)
            raise TransformationError(describe_error(e, category), category=category) from e

        # A sample dictates the layout, so only the fence is removed
        has_sample = sample_template is not None and not sample_template.is_empty
        result = clean_model_output(
            response.text,
            keep_markdown=has_sample or is_markdown_requested(instruction, sample_template),
        )
        if not result:
            raise TransformationError(
                "No content generated.", category=ErrorCategory.INVALID_RESPONSE
            )
        logger.debug(f"Transformed {len(content)} chars into {len(result)} chars")
        return result
