"""
Configuration Module for WebRefine.

Provides:
- YAML/JSON configuration file support
- OpenAI model configuration with validation
- Environment variable lookup for the API key
- Centralized constants for timeouts, prompt limits, export layout and TUI

DESIGN NOTES:
- All magic numbers should be defined here as constants
- Constants are organized by category (network, prompts, export, TUI, etc.)

DO NOT:
- Scatter timeout values or prompt limits throughout the codebase
- Add magic numbers to other files - add constants here first
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Final, Optional, Tuple
from urllib.parse import urlparse

import yaml

from webrefine.error_handler import ConfigurationError

logger = logging.getLogger(__name__)


# =============================================================================
# CENTRALIZED CONSTANTS - Single source of truth for all configuration values
# =============================================================================

# --- Network Timeouts (seconds) ---
# Bounded wait for each external call. A timeout fails the stage, never the run.
EXTRACTION_TIMEOUT_SECONDS: Final[float] = 120.0  # Search-grounded retrieval is slow
TRANSFORM_TIMEOUT_SECONDS: Final[float] = 180.0  # Reformatting long pages

# --- API Configuration ---
API_KEY_ENV_VAR: Final[str] = "OPENAI_API_KEY"
DEFAULT_MODEL: Final[str] = "gpt-4o-mini"  # Transformation model
# Extraction needs a model that accepts web_search_options
DEFAULT_EXTRACTION_MODEL: Final[str] = "gpt-4o-mini-search-preview"
DEFAULT_TEMPERATURE: Final[float] = 0.1  # Minimal creativity, maximum adherence
# No retries inside the SDK: a failed job stays failed until the user re-queues it
OPENAI_MAX_RETRIES: Final[int] = 0

# --- Prompt Limits (characters) ---
SOURCE_CONTENT_MAX_CHARS: Final[int] = 30000
SAMPLE_TEMPLATE_MAX_CHARS: Final[int] = 10000
TRUNCATION_MARKER: Final[str] = "...(truncated)"

# --- Title Inference Policy ---
TITLE_SCAN_LINES: Final[int] = 5  # Only the first few non-empty lines are considered
TITLE_MAX_LENGTH: Final[int] = 100  # First line is used as title only when shorter
TITLE_LABELS: Final[Tuple[str, ...]] = ("title:", "product name:", "page_title:")
DEFAULT_TITLE: Final[str] = "Scraped Page Content"

# --- Export Layout ---
EXPORT_COLUMNS: Final[Tuple[str, ...]] = (
    "URL",
    "Status",
    "OriginalTitle",
    "TransformedContent",
    "Error",
)
EXTRACTED_CONTENT_COLUMN: Final[str] = "ExtractedContent"
RESULTS_SHEET_NAME: Final[str] = "Results"
TEMPLATE_SHEET_NAME: Final[str] = "Template"
DEFAULT_RESULTS_FILE: Final[str] = "Bulk_Analysis_Results.xlsx"
DEFAULT_TEMPLATE_FILE: Final[str] = "Bulk_Upload_Template.xlsx"
URL_COLUMN: Final[str] = "URL"
TEMPLATE_COLUMNS: Final[Tuple[str, ...]] = ("URL", "Label (Optional)", "Notes (Optional)")
# Excel rejects cells longer than this
EXCEL_CELL_MAX_CHARS: Final[int] = 32767

# --- Document Export ---
# Short all-caps lines without a colon become headings in .docx output
DOC_HEADING_MAX_LENGTH: Final[int] = 50
DEFAULT_DOCUMENT_NAME: Final[str] = "Transformed_Content"
DEFAULT_RESULT_BASENAME: Final[str] = "transformed_content"

# --- TUI Display Settings ---
TUI_REFRESH_FPS: Final[int] = 8
URL_TRUNCATE_MAX_LENGTH: Final[int] = 60
STATS_PROGRESS_BAR_WIDTH: Final[int] = 40
MAX_FAILED_URLS_TO_SHOW: Final[int] = 5
DEFAULT_TERMINAL_WIDTH: Final[int] = 80
DEFAULT_TERMINAL_HEIGHT: Final[int] = 24

# --- Prompt Presets ---
# Ready-made instructions selectable with --preset
PROMPT_PRESETS: Final[Dict[str, str]] = {
    "summarize": (
        "Create a 3-paragraph executive summary highlighting key points, "
        "main arguments, and conclusions."
    ),
    "product": (
        "Extract Product Name, Price, Ingredients, Nutritional Info, and Features "
        "into a key-value list."
    ),
    "json": (
        "Convert the main information to JSON with fields: title, summary, "
        "key_points (array), sentiment, and extracted_entities."
    ),
    "comparison": (
        "Create a Markdown comparison table based on the content, analyzing "
        "Pros vs Cons or Features vs Benefits."
    ),
    "summary": "Provide a concise 2-sentence summary of this content.",
}

# Supported OpenAI models (informational - unknown models only produce a warning)
SUPPORTED_MODELS: Dict[str, Dict[str, Any]] = {
    "gpt-4o-mini": {"web_search": False, "description": "Fast, low-cost transformation"},
    "gpt-4o": {"web_search": False, "description": "Higher quality transformation"},
    "gpt-4.1-mini": {"web_search": False, "description": "Balanced transformation"},
    "gpt-4o-mini-search-preview": {
        "web_search": True,
        "description": "Search-grounded extraction (recommended default)",
    },
    "gpt-4o-search-preview": {
        "web_search": True,
        "description": "Search-grounded extraction, higher quality",
    },
}

# Model pricing per million tokens (USD)
MODEL_PRICING: Dict[str, Dict[str, float]] = {
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4.1-mini": {"input": 0.40, "output": 1.60},
    "gpt-4o-mini-search-preview": {"input": 0.15, "output": 0.60},
    "gpt-4o-search-preview": {"input": 2.50, "output": 10.00},
}

# Token estimation: approximately 4 characters per token for English text
CHARS_PER_TOKEN: Final[int] = 4


def estimate_tokens(text: str) -> int:
    """Estimate token count from text using character approximation."""
    return max(1, len(text) // CHARS_PER_TOKEN)


def compute_request_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """Cost in USD of one request, 0.0 for models missing from MODEL_PRICING."""
    pricing = MODEL_PRICING.get(model)
    if pricing is None:
        return 0.0
    return (prompt_tokens / 1_000_000) * pricing["input"] + (
        completion_tokens / 1_000_000
    ) * pricing["output"]


@dataclass
class WebRefineConfig:
    """
    Main configuration class for WebRefine.

    Supports loading from YAML files, JSON files, or direct instantiation.
    """

    # OpenAI settings
    model: str = DEFAULT_MODEL
    extraction_model: str = DEFAULT_EXTRACTION_MODEL
    api_key: Optional[str] = None  # If None, reads from OPENAI_API_KEY env var
    base_url: Optional[str] = None  # Alternative OpenAI-compatible endpoint
    temperature: float = DEFAULT_TEMPERATURE

    # Per-call bounded waits
    extraction_timeout: float = EXTRACTION_TIMEOUT_SECONDS
    transform_timeout: float = TRANSFORM_TIMEOUT_SECONDS

    # Transformation settings
    prompt: str = ""
    preset: Optional[str] = None
    sample_file: Optional[str] = None

    # Output settings
    output_file: Optional[str] = None
    include_extracted: bool = False

    # TUI settings
    no_tui: bool = False
    quiet: bool = False  # Minimal output, implies no_tui

    def __post_init__(self) -> None:
        self._validate()

    def _validate(self) -> None:
        # An empty "prompt:" key in YAML loads as None
        if self.prompt is None:
            self.prompt = ""

        for name in ("model", "extraction_model"):
            value = getattr(self, name)
            if value not in SUPPORTED_MODELS:
                logger.warning(
                    f"{name}='{value}' not in supported list "
                    f"{list(SUPPORTED_MODELS.keys())}. Proceeding anyway."
                )

        if not SUPPORTED_MODELS.get(self.extraction_model, {}).get("web_search", True):
            logger.warning(
                f"extraction_model '{self.extraction_model}' has no web search; "
                "extraction will rely on the model's own knowledge"
            )

        if self.temperature < 0 or self.temperature > 2:
            raise ConfigurationError("temperature must be between 0 and 2")

        if self.extraction_timeout <= 0:
            raise ConfigurationError("extraction_timeout must be positive")
        if self.transform_timeout <= 0:
            raise ConfigurationError("transform_timeout must be positive")

        if self.preset is not None and self.preset not in PROMPT_PRESETS:
            raise ConfigurationError(
                f"Unknown preset '{self.preset}'. "
                f"Available presets: {', '.join(sorted(PROMPT_PRESETS))}"
            )

        # quiet implies no_tui
        if self.quiet:
            self.no_tui = True

    def get_api_key(self) -> str:
        """Get the OpenAI API key from config or environment."""
        if self.api_key:
            return self.api_key
        env_key = os.environ.get(API_KEY_ENV_VAR)
        if not env_key:
            raise ConfigurationError(
                f"OpenAI API key not found. Set {API_KEY_ENV_VAR} environment "
                "variable or provide api_key in configuration."
            )
        return env_key

    def resolve_instruction(self) -> str:
        """Explicit prompt wins over the preset."""
        if self.prompt.strip():
            return self.prompt.strip()
        if self.preset:
            return PROMPT_PRESETS[self.preset]
        return ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary. The API key is never serialized."""
        return {
            "model": self.model,
            "extraction_model": self.extraction_model,
            "base_url": self.base_url,
            "temperature": self.temperature,
            "extraction_timeout": self.extraction_timeout,
            "transform_timeout": self.transform_timeout,
            "prompt": self.prompt,
            "preset": self.preset,
            "sample_file": self.sample_file,
            "output_file": self.output_file,
            "include_extracted": self.include_extracted,
            "no_tui": self.no_tui,
            "quiet": self.quiet,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WebRefineConfig":
        """Create config from dictionary, ignoring unknown keys."""
        known_fields = set(cls.__dataclass_fields__)
        unknown = sorted(k for k in data if k not in known_fields)
        if unknown:
            logger.warning(f"Ignoring unknown configuration keys: {unknown}")
        filtered = {k: v for k, v in data.items() if k in known_fields}
        return cls(**filtered)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "WebRefineConfig":
        """
        Load configuration from a YAML file.

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigurationError: If YAML is invalid or not a mapping
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError(
                "Configuration file must contain a YAML mapping/dictionary"
            )

        return cls.from_dict(data)

    @classmethod
    def from_json(cls, path: str | Path) -> "WebRefineConfig":
        """Load configuration from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(
                    f"Invalid JSON in configuration file: {e}"
                ) from e

        if not isinstance(data, dict):
            raise ConfigurationError("Configuration file must contain a JSON object")

        return cls.from_dict(data)


def load_config(
    config_path: str | Path | None = None,
    cli_overrides: Dict[str, Any] | None = None,
) -> WebRefineConfig:
    """
    Load configuration with precedence: CLI args > config file > defaults.

    Args:
        config_path: Optional path to YAML or JSON config file
        cli_overrides: Optional dictionary of CLI argument overrides

    Returns:
        Merged WebRefineConfig instance
    """
    config_dict: Dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.suffix in (".yml", ".yaml"):
            file_config = WebRefineConfig.from_yaml(path)
        elif path.suffix == ".json":
            file_config = WebRefineConfig.from_json(path)
        else:
            raise ConfigurationError(
                f"Unsupported config file format: {path.suffix}. "
                "Use .yaml, .yml, or .json"
            )
        config_dict = file_config.to_dict()
        if file_config.api_key:
            config_dict["api_key"] = file_config.api_key

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:  # Only override if explicitly set
                config_dict[key] = value

    return WebRefineConfig.from_dict(config_dict)


def generate_example_config(path: str | Path = "webrefine_config.yaml") -> None:
    """Generate an example configuration file with comments."""
    preset_names = ", ".join(sorted(PROMPT_PRESETS))
    example_yaml = f"""# WebRefine Configuration File
# ============================
# All settings are optional - defaults will be used if not specified.

# OpenAI Model Settings
# ---------------------
# model: model used to reformat extracted content
model: {DEFAULT_MODEL}

# extraction_model: search-grounded model used to read the page
extraction_model: {DEFAULT_EXTRACTION_MODEL}

# temperature: 0.0 = deterministic, 2.0 = very creative
temperature: {DEFAULT_TEMPERATURE}

# base_url: alternative OpenAI-compatible endpoint (null = official API)
base_url: null

# Timeouts (seconds) - a timeout marks the job as failed and the run continues
extraction_timeout: {EXTRACTION_TIMEOUT_SECONDS}
transform_timeout: {TRANSFORM_TIMEOUT_SECONDS}

# Transformation
# --------------
# prompt: free-form instruction applied to every page
prompt: ""

# preset: one of {preset_names} (ignored when prompt is set)
preset: null

# sample_file: example output whose structure should be mirrored
# (.txt, .md, .csv, .json, .xlsx, .xls, .docx)
sample_file: null

# Output
# ------
# output_file: batch results (.xlsx or .csv) or single-page output
output_file: null

# include_extracted: add the raw extracted text as an extra export column
include_extracted: false

# TUI Settings
# ------------
no_tui: false
quiet: false
"""

    path = Path(path)
    with open(path, "w", encoding="utf-8") as f:
        f.write(example_yaml)
    logger.info(f"Example configuration saved to: {path}")


def validate_url(url: str) -> bool:
    """Validate that a URL is a well-formed http(s) URL."""
    try:
        result = urlparse(url)
    except ValueError:
        return False
    return result.scheme in ("http", "https") and bool(result.netloc)
