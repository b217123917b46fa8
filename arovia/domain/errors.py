from typing import Any, List, Optional


class AnalysisError(Exception):
    """Base class for failures of the analysis pipeline."""


class MissingInput(AnalysisError):
    """The payload to analyze was absent."""


class UpstreamError(AnalysisError):
    """The external prediction service failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientUpstreamError(UpstreamError):
    """Upstream failure worth retrying (5xx, 429 or a network-level error)."""


class RateLimited(TransientUpstreamError):
    """The upstream provider rejected the call with HTTP 429."""

    def __init__(self, message: str = "Rate limit reached. Please try again in a moment."):
        super().__init__(message, status_code=429)


class NonTransientUpstreamError(UpstreamError):
    """Upstream failure that will not go away on retry (4xx other than 429)."""


class InvalidModelOutput(AnalysisError):
    """
    The model output matched no accepted response shape.

    Carries the raw text so it can be logged for offline diagnosis.
    """

    def __init__(self, message: str, raw: Any = None, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.raw = raw
        self.errors = errors or []


class AuthenticationError(Exception):
    """Credentials or bearer token were rejected."""
