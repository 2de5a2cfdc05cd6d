"""
Centralized error types and classification for WebRefine.

Provides:
- Exception hierarchy rooted at WebRefineError
- ErrorCategory enum for classifying external-service failures
- classify_openai_error() mapping SDK exceptions to categories
- describe_error() for the human-readable message stored on a failed job

DESIGN NOTES:
- Per-job errors (ExtractionError, TransformationError) are caught by the
  pipeline and stored on the job; they never abort a run
- ConfigurationError is fatal and surfaces before any job starts
- JobNotFoundError and InvalidJobStateError indicate caller bugs

DO NOT:
- Swallow exceptions silently - always log before converting
- Duplicate category descriptions elsewhere - use get_error_description()
"""

import logging
from enum import Enum
from typing import Final, Optional, Tuple, Type

import openai

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Why an external call failed; the value is the text shown to the user."""

    NONE = "No error"
    RATE_LIMIT = "API rate limit exceeded (429)"
    QUOTA_EXCEEDED = "API quota exhausted - add credits"
    # "AI service", not the page itself
    API_TIMEOUT = "AI service request timed out"
    CONNECTION_ERROR = "Network connection failed"
    INVALID_RESPONSE = "AI service returned no usable content"
    SOURCE_NOT_FOUND = "Page not found or not accessible"
    AUTHENTICATION = "API key invalid or expired"
    SERVER_ERROR = "API server error (5xx)"
    UNKNOWN = "Unknown error occurred"


# ============================================================================
# Exception hierarchy
# ============================================================================


class WebRefineError(Exception):
    """Base class for all WebRefine errors."""


class ExtractionError(WebRefineError):
    """The extractor could not produce content for a URL."""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.url = url
        self.category = category


class TransformationError(WebRefineError):
    """The transformer call failed or returned empty output."""

    def __init__(
        self, message: str, category: ErrorCategory = ErrorCategory.UNKNOWN
    ) -> None:
        super().__init__(message)
        self.message = message
        self.category = category


class ConfigurationError(WebRefineError, ValueError):
    """Missing credential or invalid configuration. Fatal for a run."""


class JobNotFoundError(WebRefineError, KeyError):
    """JobStore was asked about a job id it does not hold."""

    def __init__(self, job_id: str) -> None:
        super().__init__(job_id)
        self.job_id = job_id

    def __str__(self) -> str:
        return f"No job with id '{self.job_id}'"


class InvalidJobStateError(WebRefineError, ValueError):
    """A state patch would break one of the Job invariants."""


class StoreBusyError(WebRefineError, RuntimeError):
    """The JobStore is locked by a run in progress."""


class InputFormatError(WebRefineError, ValueError):
    """An input list or sample file could not be read."""


# ============================================================================
# Classification helpers
# ============================================================================

# Checked in order: APITimeoutError subclasses APIConnectionError
_EXCEPTION_CATEGORIES: Final[Tuple[Tuple[Type[Exception], ErrorCategory], ...]] = (
    (openai.RateLimitError, ErrorCategory.RATE_LIMIT),
    (openai.APITimeoutError, ErrorCategory.API_TIMEOUT),
    (openai.APIConnectionError, ErrorCategory.CONNECTION_ERROR),
    (openai.AuthenticationError, ErrorCategory.AUTHENTICATION),
    (openai.PermissionDeniedError, ErrorCategory.AUTHENTICATION),
    (openai.NotFoundError, ErrorCategory.SOURCE_NOT_FOUND),
)

# Fallback for exceptions that did not come from the SDK
_MESSAGE_PATTERNS: Final[Tuple[Tuple[Tuple[str, ...], ErrorCategory], ...]] = (
    (("timeout", "timed out"), ErrorCategory.API_TIMEOUT),
    (("connection", "network"), ErrorCategory.CONNECTION_ERROR),
    (("rate limit", "429"), ErrorCategory.RATE_LIMIT),
    (("authentication", "api key"), ErrorCategory.AUTHENTICATION),
    (("not found", "404", "blocked"), ErrorCategory.SOURCE_NOT_FOUND),
)


def classify_openai_error(exception: Exception) -> ErrorCategory:
    """
    Map an exception raised while talking to the service to an ErrorCategory.

    SDK exception types are checked first, then the HTTP status of any other
    APIStatusError, then the message text.
    """
    message = str(exception).lower()

    for exc_type, category in _EXCEPTION_CATEGORIES:
        if isinstance(exception, exc_type):
            # Quota exhaustion arrives as a 429 too
            if category == ErrorCategory.RATE_LIMIT and "quota" in message:
                return ErrorCategory.QUOTA_EXCEEDED
            return category

    if isinstance(exception, openai.APIStatusError):
        if exception.status_code >= 500:
            return ErrorCategory.SERVER_ERROR
        if exception.status_code in (401, 403):
            return ErrorCategory.AUTHENTICATION
        return ErrorCategory.UNKNOWN

    for needles, category in _MESSAGE_PATTERNS:
        if any(needle in message for needle in needles):
            return category
    logger.debug(f"Unclassified error {type(exception).__name__}: {exception}")
    return ErrorCategory.UNKNOWN


def get_error_description(category: ErrorCategory) -> str:
    return category.value


def describe_error(exception: Exception, category: ErrorCategory) -> str:
    """
    Build the message stored on a failed job.

    The category description comes first so the user sees the cause class
    before the raw SDK text.
    """
    detail = str(exception).strip()
    description = get_error_description(category)
    if not detail or category == ErrorCategory.UNKNOWN:
        return detail or description
    return f"{description}: {detail}"
