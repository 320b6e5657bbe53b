"""Provider adapter error classes.

Raised by concrete provider implementations. The dispatch layer never
inspects these by type alone; they flow through the error normalizer so
that message, status code and nested payloads are all considered.
"""

from typing import Any, Dict, Optional


class ProviderError(RuntimeError):
    """Base exception for provider adapter errors."""

    def __init__(self, message: str, *, provider: Optional[str] = None):
        self.provider = provider
        super().__init__(message)

    @property
    def message(self) -> str:
        return str(self)


class ProviderUnavailableError(ProviderError):
    """Raised when a provider cannot be used at all (binary missing, no endpoint)."""


class ProviderExecutionError(ProviderError):
    """Raised when a provider call fails after it was issued.

    Attributes:
        status: HTTP status code reported by the backend, if any
        data: Structured payload attached by the adapter (stderr, nested error)
        response_body: Raw response body text, if any
    """

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        status: Optional[int] = None,
        data: Optional[Dict[str, Any]] = None,
        response_body: Optional[str] = None,
    ):
        super().__init__(message, provider=provider)
        self.status = status
        self.data = data or {}
        self.response_body = response_body


class CLIProcessError(ProviderExecutionError):
    """Raised when a local CLI-backed provider exits with a non-zero code.

    The message always carries ``"<label> process exited with code N"`` so the
    error normalizer can surface the exit-code specific remediation hint.

    Attributes:
        exit_code: Process exit code
        stderr: Captured standard error output
    """

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        exit_code: int,
        stderr: str = "",
        code: Optional[str] = None,
    ):
        data: Dict[str, Any] = {"exitCode": exit_code, "stderr": stderr}
        if code:
            data["code"] = code
        super().__init__(message, provider=provider, data=data)
        self.exit_code = exit_code
        self.stderr = stderr


class ProviderTimeoutError(ProviderError):
    """Raised when a provider exceeds its allotted execution time.

    Attributes:
        provider: Provider that timed out
        elapsed: Actual elapsed time in seconds before timeout
        timeout: Configured timeout value in seconds
    """

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        elapsed: Optional[float] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(message, provider=provider)
        self.elapsed = elapsed
        self.timeout = timeout
