from __future__ import annotations


class AssistantError(Exception):
    """Base class for errors raised by the assistant core."""


class UpstreamError(AssistantError):
    """The completion service could not produce a response."""


class UpstreamRateLimited(UpstreamError):
    def __init__(self, message: str, *, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamServerError(UpstreamError):
    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamAuthError(UpstreamError):
    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamRequestError(UpstreamError):
    """Non-retryable 4xx: the request itself was rejected."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ToolExecutionError(AssistantError):
    pass


class DataProviderError(AssistantError):
    pass


class ResourceExhausted(DataProviderError):
    """The data store could not satisfy a query within its resource limits."""


class StoreUnavailable(AssistantError):
    """The key/value store backing sessions and the context cache failed."""
