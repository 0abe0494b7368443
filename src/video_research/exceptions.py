"""Centralized exception hierarchy for the video-research package.

All domain-specific exceptions inherit from ``VideoResearchError`` so
callers can catch the entire family with a single ``except`` clause.
Only configuration, quota and malformed-request errors are meant to abort a
run; everything else is caught at a component boundary and turned into data.
"""

from __future__ import annotations


class VideoResearchError(Exception):
    """Base exception for all video-research errors."""


# ---------------------------------------------------------------------------
# Fatal errors
# ---------------------------------------------------------------------------


class ConfigurationError(VideoResearchError):
    """Raised when a credential is missing or rejected by the provider."""


class QuotaExceededError(VideoResearchError):
    """Raised when the discovery API quota (or a local ceiling) is exhausted.

    Attributes:
        retry_after: Human-readable hint for when the run can be retried.
    """

    def __init__(self, message: str, retry_after: str = "tomorrow") -> None:
        super().__init__(message)
        self.retry_after = retry_after


class BadRequestError(VideoResearchError):
    """Raised when the search provider rejects the request parameters."""


# ---------------------------------------------------------------------------
# Discovery errors
# ---------------------------------------------------------------------------


class DiscoveryError(VideoResearchError):
    """Raised when a search call fails for a non-fatal reason."""


class NetworkTimeoutError(DiscoveryError):
    """Raised when a discovery or detail call times out."""


class NotFoundError(VideoResearchError):
    """Raised when a video or channel id no longer resolves."""


# ---------------------------------------------------------------------------
# Transcript provider errors
# ---------------------------------------------------------------------------


class ProviderFailure(VideoResearchError):
    """Raised by a transcript provider adapter when an attempt fails.

    Attributes:
        provider: Name of the provider that failed.
    """

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.reason = message


class ProviderUnavailableError(ProviderFailure):
    """Raised when a provider is asked to run without its credential."""


class ProviderTimeoutError(ProviderFailure):
    """Raised when a provider call exceeds its timeout."""


# ---------------------------------------------------------------------------
# Export errors
# ---------------------------------------------------------------------------


class ExportError(VideoResearchError):
    """Raised when research data cannot be exported in the requested format."""


FATAL_ERRORS: tuple[type[VideoResearchError], ...] = (
    ConfigurationError,
    QuotaExceededError,
    BadRequestError,
)
