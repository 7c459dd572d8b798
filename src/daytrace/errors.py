"""Error taxonomy for the analysis pipeline.

Every failure the pipeline can surface is a ``DaytraceError`` carrying a
``domain`` and ``code``. The pair is the lookup key for the human-readable
messages shown on error cards (see ``daytrace.pipeline.recovery``).
"""

from __future__ import annotations


class DaytraceError(Exception):
    """Base class for all daytrace errors."""

    domain: str = "daytrace"
    code: str = "unknown"


# ---------------------------------------------------------------------------
# Provider errors
# ---------------------------------------------------------------------------


class ProviderError(DaytraceError):
    """Raised when an LLM backend call fails.

    ``retryable`` tells the retry helper whether another attempt can
    change the outcome.
    """

    domain = "provider"
    code = "error"
    retryable = False

    def __init__(
        self,
        message: str,
        provider: str = "",
        status_code: int | None = None,
        raw_response: str = "",
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.raw_response = raw_response


class ProviderAuthError(ProviderError):
    code = "auth"


class ProviderRateLimitedError(ProviderError):
    code = "rate_limited"
    retryable = True


class ProviderTimeoutError(ProviderError):
    code = "timeout"
    retryable = True


class ProviderConnectionError(ProviderError):
    code = "connection"
    retryable = True


class ProviderServerError(ProviderError):
    code = "server"
    retryable = True


class ProviderHTTPError(ProviderError):
    """A 4xx response that is neither auth nor rate limiting."""

    code = "http"


class ProviderParseError(ProviderError):
    code = "parse"


class VisionUnsupportedError(ProviderError):
    code = "vision_unsupported"


class NoProviderConfiguredError(DaytraceError):
    domain = "pipeline"
    code = "no_provider"


# ---------------------------------------------------------------------------
# Pipeline errors
# ---------------------------------------------------------------------------


class BatchNotFoundError(DaytraceError):
    domain = "pipeline"
    code = "batch_not_found"


class BatchBusyError(DaytraceError):
    """Another worker holds the batch in ``processing``."""

    domain = "pipeline"
    code = "batch_busy"


class NoScreenshotsError(DaytraceError):
    domain = "pipeline"
    code = "no_screenshots"


class EmptyTranscriptionError(DaytraceError):
    domain = "pipeline"
    code = "empty_transcription"


# ---------------------------------------------------------------------------
# Storage errors
# ---------------------------------------------------------------------------


class StorageError(DaytraceError):
    domain = "storage"
    code = "error"


class InvalidStatusTransitionError(StorageError):
    code = "invalid_transition"


def classify_http_status(status: int, body: str = "", provider: str = "") -> ProviderError:
    """Map a failing HTTP status onto the provider error taxonomy."""
    snippet = body[:300]
    if status in (401, 403):
        return ProviderAuthError(
            f"Invalid API key (HTTP {status})", provider=provider,
            status_code=status, raw_response=body,
        )
    if status == 429:
        return ProviderRateLimitedError(
            "Rate limited (HTTP 429)", provider=provider,
            status_code=status, raw_response=body,
        )
    if status == 408:
        return ProviderTimeoutError(
            "Request timeout (HTTP 408)", provider=provider,
            status_code=status, raw_response=body,
        )
    if status >= 500:
        return ProviderServerError(
            f"Server error (HTTP {status}): {snippet}", provider=provider,
            status_code=status, raw_response=body,
        )
    return ProviderHTTPError(
        f"HTTP {status}: {snippet}", provider=provider,
        status_code=status, raw_response=body,
    )
