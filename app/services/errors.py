# =============================================================================
# Error Taxonomy — Pipeline and Client Failures
# =============================================================================
#
# Every failure the pipeline can surface is one of these classes. Each
# carries:
#   - category:     machine-readable class ("network", "rate_limit", ...)
#   - retryable:    whether the retry layer may try again
#   - user_message: short categorical text safe to show an end user
#
# The raw remote error (response body, SDK message) is kept on `detail`
# for logging only and is never part of `user_message`.
#
# HIERARCHY:
#   PipelineError
#   ├── ClientError
#   │   ├── NetworkError               (retryable)
#   │   │   ├── RequestTimeoutError    (retryable)
#   │   │   └── UpstreamServerError    (retryable, HTTP 5xx)
#   │   ├── RateLimitError             (retryable, HTTP 429)
#   │   ├── CircuitOpenError           (not retryable)
#   │   ├── AuthenticationError        (not retryable, HTTP 401/403)
#   │   └── ValidationError            (not retryable, HTTP 4xx / bad input)
#   │       └── BudgetExceededError
#   └── SchemaError                    (model output did not parse)
#
# classify_error() maps SDK and builtin exceptions onto this taxonomy.
# =============================================================================

from __future__ import annotations

import asyncio

import anthropic
import openai


class PipelineError(Exception):
    """Base class for every error raised by the report pipeline."""

    category: str = "unknown"
    retryable: bool = False
    user_message: str = "An unexpected error occurred. Please try again later."

    def __init__(self, detail: str = "", *, status_code: int | None = None) -> None:
        super().__init__(detail or self.user_message)
        self.detail = detail
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Client-layer errors
# ---------------------------------------------------------------------------


class ClientError(PipelineError):
    """A failure talking to the remote model endpoint."""

    category = "client"
    # Whether the circuit breaker should count this as a service fault.
    trips_breaker: bool = False


class NetworkError(ClientError):
    category = "network"
    retryable = True
    trips_breaker = True
    user_message = "A network error occurred while contacting the model service."


class RequestTimeoutError(NetworkError):
    category = "timeout"
    user_message = "The model service did not respond in time."


class UpstreamServerError(NetworkError):
    category = "server"
    user_message = "The model service is temporarily unavailable."


class RateLimitError(ClientError):
    category = "rate_limit"
    retryable = True
    trips_breaker = True
    user_message = "Too many requests to the model service. Please wait and try again."


class CircuitOpenError(ClientError):
    category = "circuit_open"
    user_message = (
        "The model service is failing repeatedly and has been paused. "
        "Please try again shortly."
    )


class AuthenticationError(ClientError):
    category = "authentication"
    user_message = "Authentication with the model service failed. Check the API key."


class ValidationError(ClientError):
    category = "validation"
    user_message = "The request was invalid. Please review the input and try again."


class BudgetExceededError(ValidationError):
    category = "budget"
    user_message = "The configured spending limit has been reached."


# ---------------------------------------------------------------------------
# Parse-layer errors
# ---------------------------------------------------------------------------


class SchemaError(PipelineError):
    """The model's text could not be parsed as a Report."""

    category = "schema"
    user_message = "The model returned a report in an unexpected format."

    def __init__(self, detail: str = "", *, raw_text: str = "") -> None:
        super().__init__(detail)
        self.raw_text = raw_text


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

_RETRYABLE_MESSAGES = (
    "network error",
    "timeout",
    "timed out",
    "rate limit",
    "too many requests",
    "service unavailable",
    "temporary failure",
    "connection reset",
)

_TIMEOUT_TYPES = (
    openai.APITimeoutError,
    anthropic.APITimeoutError,
    asyncio.TimeoutError,
    TimeoutError,
)
_CONNECTION_TYPES = (
    openai.APIConnectionError,
    anthropic.APIConnectionError,
    ConnectionError,
)
_STATUS_TYPES = (openai.APIStatusError, anthropic.APIStatusError)


def error_for_status(status_code: int, detail: str = "") -> ClientError:
    """Map an HTTP status code to the matching ClientError."""
    if status_code == 429:
        return RateLimitError(detail, status_code=status_code)
    if status_code >= 500:
        return UpstreamServerError(detail, status_code=status_code)
    if status_code in (401, 403):
        return AuthenticationError(detail, status_code=status_code)
    return ValidationError(detail, status_code=status_code)


def classify_error(error: BaseException) -> ClientError:
    """
    Convert any exception raised by a provider call into a ClientError.

    Order matters: the SDK timeout classes subclass their connection
    error classes, so timeouts are checked first.
    """
    if isinstance(error, ClientError):
        return error

    detail = str(error) or type(error).__name__

    if isinstance(error, _TIMEOUT_TYPES):
        return RequestTimeoutError(detail)
    if isinstance(error, _CONNECTION_TYPES):
        return NetworkError(detail)
    if isinstance(error, _STATUS_TYPES):
        return error_for_status(error.status_code, detail)

    lowered = detail.lower()
    if any(message in lowered for message in _RETRYABLE_MESSAGES):
        if "rate limit" in lowered or "too many requests" in lowered:
            return RateLimitError(detail)
        if "timeout" in lowered or "timed out" in lowered:
            return RequestTimeoutError(detail)
        return NetworkError(detail)

    # Anything unrecognised is treated as a non-retryable caller problem
    return ValidationError(detail)
