"""Exception hierarchy for health analysis orchestration.

Only :class:`InsufficientDataError` is meant to reach callers of the
orchestrator. :class:`AIServiceError` subclasses are raised by the AI client
and converted into a local fallback by the orchestrator.
"""

from __future__ import annotations


class AnalysisError(Exception):
    """Base exception for health analysis failures."""


class InsufficientDataError(AnalysisError):
    """The snapshot carries no usable metric, so no category can be analyzed."""


class AIServiceError(AnalysisError):
    """The remote AI analysis service failed.

    Attributes:
        is_retriable: Whether another attempt may succeed.
        retry_delay: Suggested delay in seconds before retrying.
        status_code: HTTP status when the failure came from a response.
    """

    is_retriable: bool = False
    retry_delay: float = 1.0

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retry_delay: float | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        if retry_delay is not None:
            self.retry_delay = retry_delay


class AINetworkError(AIServiceError):
    """Connection failure, DNS failure, or timeout."""

    is_retriable = True
    retry_delay = 1.0


class AITimeoutError(AINetworkError):
    """The per-attempt timeout elapsed."""

    retry_delay = 2.0


class AIClientError(AIServiceError):
    """4xx response. Not retried, except 429 which backs off."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retry_delay: float | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, retry_delay=retry_delay)
        if status_code == 429:
            self.is_retriable = True
            if retry_delay is None:
                self.retry_delay = 60.0


class AIServerError(AIServiceError):
    """5xx response."""

    is_retriable = True
    retry_delay = 5.0


class AIDecodeError(AIServiceError):
    """The service answered but the payload was not a valid analysis."""
