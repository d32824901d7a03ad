"""
Error taxonomy and exception classification for the resolution pipeline.

Outcomes that are not failures (no match, low confidence, implausible
relationship) are returned as values by the resolvers. The exceptions below
cover the cases that interrupt a row or a whole run:

- TransientStoreError / TransientResolutionError: isolate to the current row,
  leave the staged row pending so a later batch retries it
- FatalConnectivityError: the store or the LLM endpoint is unreachable,
  abort the remaining batches and report partial aggregates

``classify_error`` maps provider/driver exceptions onto ErrorType so callers
can decide which of the above to raise.
"""

from enum import Enum
from typing import Any, Optional


class ErrorType(Enum):
    """Classification of upstream (LLM provider / store) errors."""

    QUOTA_EXHAUSTED = "RESOURCE_EXHAUSTED"  # Quota used up, needs operator action
    RATE_LIMITED = "RATE_LIMITED"  # Temporary, retry later
    TRANSIENT = "TRANSIENT"  # Network/connection issue
    PERMANENT = "PERMANENT"  # Bad request or other permanent error


# Patterns indicating quota exhaustion (daily/monthly limits)
QUOTA_PATTERNS = [
    "resource_exhausted",
    "quota",
    "exceeded your current quota",
    "billing",
    "insufficient_quota",
    "quota_exceeded",
]

# Patterns indicating rate limiting (temporary, can retry)
RATE_LIMIT_PATTERNS = [
    "rate limit",
    "ratelimit",
    "rate_limit",
    "429",
    "too many requests",
    "request rate exceeded",
    "throttl",
]

# Patterns indicating transient/network errors
TRANSIENT_PATTERNS = [
    "timeout",
    "connection",
    "network",
    "temporarily unavailable",
    "service unavailable",
    "503",
    "502",
    "504",
    "gateway",
]

QUOTA_EXCEPTION_TYPES = [
    "ResourceExhausted",
    "QuotaExceeded",
]

RATE_LIMIT_EXCEPTION_TYPES = [
    "RateLimitError",
    "TooManyRequestsError",
]

TRANSIENT_EXCEPTION_TYPES = [
    "ConnectionError",
    "TimeoutError",
    "APIConnectionError",
    "APITimeoutError",
    "ConnectError",
    "ReadTimeout",
    "WriteTimeout",
]


def classify_error(exception: Exception) -> ErrorType:
    """
    Classify an exception to determine the appropriate action.

    Args:
        exception: The exception to classify

    Returns:
        ErrorType indicating the category of error
    """
    error_str = str(exception).lower()
    exc_type = type(exception).__name__

    if any(pattern in error_str for pattern in QUOTA_PATTERNS):
        return ErrorType.QUOTA_EXHAUSTED

    if exc_type in QUOTA_EXCEPTION_TYPES:
        return ErrorType.QUOTA_EXHAUSTED

    if any(pattern in error_str for pattern in RATE_LIMIT_PATTERNS):
        return ErrorType.RATE_LIMITED

    if exc_type in RATE_LIMIT_EXCEPTION_TYPES:
        return ErrorType.RATE_LIMITED

    if any(pattern in error_str for pattern in TRANSIENT_PATTERNS):
        if "429" in error_str:
            return ErrorType.RATE_LIMITED
        return ErrorType.TRANSIENT

    if exc_type in TRANSIENT_EXCEPTION_TYPES:
        if "429" in error_str:
            return ErrorType.RATE_LIMITED
        return ErrorType.TRANSIENT

    return ErrorType.PERMANENT


class PodgraphError(Exception):
    """Base class for pipeline errors."""


class TransientStoreError(PodgraphError):
    """A store call failed for one row; the row stays pending for retry."""


class TransientResolutionError(PodgraphError):
    """A cascade call failed for one row (e.g. LLM rate limit); retry later."""


class MalformedLLMResponseError(PodgraphError):
    """The LLM returned output that could not be parsed as a verdict."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class FatalConnectivityError(PodgraphError):
    """The store or LLM endpoint is unreachable; the run must stop.

    ``partial_result`` is filled in by the resolver that was interrupted so the
    batch runner can report what was completed before the outage.
    """

    def __init__(self, message: str, partial_result: Optional[Any] = None):
        super().__init__(message)
        self.partial_result = partial_result


class StoreUnavailableError(FatalConnectivityError):
    """The relational store cannot be opened or reached."""


class LLMUnavailableError(FatalConnectivityError):
    """The LLM endpoint is unreachable or its quota is exhausted."""


__all__ = [
    "ErrorType",
    "classify_error",
    "PodgraphError",
    "TransientStoreError",
    "TransientResolutionError",
    "MalformedLLMResponseError",
    "FatalConnectivityError",
    "StoreUnavailableError",
    "LLMUnavailableError",
]
