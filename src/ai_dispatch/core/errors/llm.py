"""LLM API error classes.

HTTP-backed adapters translate backend status codes into these so that the
retry executor can classify on ``status`` rather than on message text.
"""

from typing import Optional


class LLMError(Exception):
    """Base exception for LLM API operations.

    Attributes:
        message: Human-readable error description
        provider: Name of the provider that raised the error
        retryable: Whether the backend hinted the operation can be retried
        status: HTTP status code if applicable
    """

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        retryable: bool = False,
        status: Optional[int] = None,
        response_body: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.retryable = retryable
        self.status = status
        self.response_body = response_body


class RateLimitError(LLMError):
    """Rate limit exceeded error.

    Attributes:
        retry_after: Seconds to wait before retrying
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        provider: Optional[str] = None,
        retry_after: Optional[float] = None,
        response_body: Optional[str] = None,
    ):
        super().__init__(
            message,
            provider=provider,
            retryable=True,
            status=429,
            response_body=response_body,
        )
        self.retry_after = retry_after


class AuthenticationError(LLMError):
    """Authentication failed error."""

    def __init__(
        self,
        message: str = "Authentication failed",
        *,
        provider: Optional[str] = None,
        response_body: Optional[str] = None,
    ):
        super().__init__(
            message,
            provider=provider,
            retryable=False,
            status=401,
            response_body=response_body,
        )


class InvalidRequestError(LLMError):
    """Invalid request error (bad parameters, unsupported feature, etc.)."""

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        param: Optional[str] = None,
        response_body: Optional[str] = None,
    ):
        super().__init__(
            message,
            provider=provider,
            retryable=False,
            status=400,
            response_body=response_body,
        )
        self.param = param


class ModelNotFoundError(LLMError):
    """Requested model not found or not accessible."""

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        response_body: Optional[str] = None,
    ):
        super().__init__(
            message,
            provider=provider,
            retryable=False,
            status=404,
            response_body=response_body,
        )
        self.model = model
