"""Error normalization and classification.

Provider errors arrive in many shapes: adapter exceptions, SDK errors with
nested payloads, plain dicts, or bare strings. This module reduces any of
them to one concise message and a single tagged classification
(:class:`ErrorKind`) that the retry executor and the failover orchestrator
switch on. Message substring heuristics live only here.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional

from ai_dispatch.core.errors import (
    CallerInputError,
    CapabilityError,
    ConfigurationError,
    LLMError,
)

logger = logging.getLogger(__name__)

UNKNOWN_ERROR_MESSAGE = "An unknown AI service error occurred."
EXTRACTION_FAILED_MESSAGE = "Failed to extract error message."

CLAUDE_CODE_EXIT_PATTERN = "Claude Code process exited with code"

_EXIT_CODE_RE = re.compile(r"exited with code (\d+)")
_INK_RE = re.compile(r"\bInk\b")
_INSTANCEOF_RE = re.compile(r"\binstanceof\b")

_INSTANCEOF_PATTERNS = (
    "right-hand side of instanceof is not an object",
    "right hand side of instanceof is not an object",
    "right-hand side of instanceof is not callable",
    "right hand side of instanceof is not callable",
    "right-hand side of instanceof is not a constructor",
    "right hand side of instanceof is not a constructor",
    "isinstance() arg 2 must be",
    "issubclass() arg 1 must be a class",
    "issubclass() arg 2 must be",
)

_FATAL_PATTERNS = (
    "raw mode is not supported",
    "claude code process exited with code 143",
    "authentication failed",
    "not logged in",
)

_RETRYABLE_PATTERNS = (
    "rate limit",
    "overloaded",
    "service temporarily unavailable",
    "timeout",
    "network error",
)

_TOOL_SUPPORT_PATTERNS = (
    "no endpoints found that support tool use",
    "does not support tool_use",
    "tool use is not supported",
    "tools are not supported",
    "function calling is not supported",
)

_AUTH_PATTERNS = ("authentication", "not logged in", "api key")

_EXIT_CODE_HINTS = {
    1: ("General error occurred", None),
    401: ("Authentication failed", 'Solution: Run "claude auth" to authenticate'),
    403: ("Access denied", "Solution: Check your API key and permissions"),
    429: ("Rate limit exceeded", "Solution: Wait before retrying or upgrade your plan"),
    500: ("Internal server error", "Solution: Try again later or contact support"),
    143: (
        "Process interrupted (Ink interface error)",
        "Solution: Use PowerShell instead of Git Bash or set FORCE_COLOR=0 CI=true",
    ),
}


class ErrorKind(str, Enum):
    """Closed set of outcomes a failed attempt is classified into.

    Values:
        RETRYABLE: Transient; retry with backoff while budget remains
        FATAL: Known non-transient failure; never retry this role
        CAPABILITY: The model cannot serve the request; abort object generation
        NON_RETRYABLE: Anything else; give up on this role without retrying
    """

    RETRYABLE = "retryable"
    FATAL = "fatal"
    CAPABILITY = "capability"
    NON_RETRYABLE = "non_retryable"


@dataclass(frozen=True)
class NormalizedError:
    """Classification of one error, produced once at the boundary."""

    kind: ErrorKind
    message: str
    status_code: Optional[int] = None

    @property
    def is_retryable(self) -> bool:
        return self.kind == ErrorKind.RETRYABLE


def _get(obj: Any, key: str) -> Any:
    """Read ``key`` from a mapping or attribute, returning None if absent."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def _raw_message(error: Any) -> str:
    """Top-level message of an error without any nested-payload extraction."""
    if isinstance(error, str):
        return error
    message = _get(error, "message")
    if isinstance(message, str) and message:
        return message
    if isinstance(error, BaseException):
        return str(error)
    return ""


def _status_code(error: Any) -> Optional[int]:
    for key in ("status", "status_code", "statusCode"):
        value = _get(error, key)
        if isinstance(value, int):
            return value
    response = _get(error, "response")
    value = _get(response, "status_code")
    return value if isinstance(value, int) else None


def is_type_check_error(error: Any) -> bool:
    """Return True for reflection-style type checking failures.

    Only ``TypeError`` instances (or error payloads named ``TypeError``)
    qualify; the message must mention ``instanceof`` or a failed
    ``isinstance``/``issubclass`` check.
    """
    if not isinstance(error, TypeError) and _get(error, "name") != "TypeError":
        return False
    message = _raw_message(error).lower()
    if _INSTANCEOF_RE.search(message):
        return True
    return any(pattern in message for pattern in _INSTANCEOF_PATTERNS)


def is_cli_interface_error(message: str) -> bool:
    """Return True for Claude Code CLI terminal/interactive-mode conflicts."""
    return (
        "Raw mode is not supported" in message
        or bool(_INK_RE.search(message))
        or "Claude Code process exited with code 143" in message
    )


def is_tool_support_error(message: str) -> bool:
    """Return True if the message says the model lacks tool/function calling."""
    lowered = message.lower()
    return any(pattern in lowered for pattern in _TOOL_SUPPORT_PATTERNS)


def is_auth_error(message: str) -> bool:
    lowered = message.lower()
    return any(pattern in lowered for pattern in _AUTH_PATTERNS)


def extract_cli_exit_message(error: Any) -> str:
    """Build a detailed message for a Claude Code CLI process exit.

    Surfaces the exit code, cleaned stderr, the error code, and a
    remediation hint keyed by exit code.
    """
    raw = _raw_message(error)
    try:
        message = "Claude Code API error"
        details: List[str] = []
        exit_code: Optional[int] = None

        match = _EXIT_CODE_RE.search(raw)
        if match:
            exit_code = int(match.group(1))
            details.append(f"Exit code: {exit_code}")

        data = _get(error, "data")
        stderr = _get(data, "stderr")
        if isinstance(stderr, str) and stderr.strip():
            lines = [line.strip() for line in stderr.strip().split("\n")]
            # Nested CLI errors repeat the "Error:" prefix once per wrapping layer
            clean = "\n".join(line for line in lines if line and not line.startswith("Error: Error:"))
            if clean:
                details.append(f"Details: {clean}")

        code = _get(data, "code")
        if code:
            details.append(f"Error code: {code}")

        if exit_code:
            summary, hint = _EXIT_CODE_HINTS.get(
                exit_code, (f"Process exited with code {exit_code}", None)
            )
            message += f": {summary}"
            if exit_code == 1 and not any("Details:" in d for d in details):
                details.append(
                    "Details: Check if Claude Code CLI is properly installed and authenticated"
                )
            if hint:
                details.append(hint)

        if details:
            return message + "\n" + "\n".join(details)
        return message
    except Exception:  # noqa: BLE001
        return raw or "Claude Code API error occurred"


def extract_error_message(error: Any) -> str:
    """Return one concise, human-readable message for any error shape.

    Never raises.
    """
    try:
        raw = _raw_message(error)

        if raw and CLAUDE_CODE_EXIT_PATTERN in raw:
            return extract_cli_exit_message(error)

        if raw and is_cli_interface_error(raw):
            return (
                f"Claude Code CLI error: {raw}. This is a known issue on Windows with Git Bash. "
                "Please try using PowerShell or set environment variables FORCE_COLOR=0 CI=true."
            )

        if raw and is_type_check_error(error):
            return (
                f"Type checking error: {raw}. This may be due to undefined classes "
                "or modules not being properly loaded."
            )

        nested = _get(_get(_get(error, "data"), "error"), "message")
        if isinstance(nested, str) and nested:
            return nested

        nested = _get(_get(error, "error"), "message")
        if isinstance(nested, str) and nested:
            return nested

        body = _get(error, "response_body")
        if body is None:
            body = _get(error, "responseBody")
        if isinstance(body, str):
            try:
                parsed = json.loads(body)
            except ValueError:
                parsed = None
            nested = _get(_get(parsed, "error"), "message") if isinstance(parsed, dict) else None
            if isinstance(nested, str) and nested:
                return nested

        if raw:
            return raw

        return UNKNOWN_ERROR_MESSAGE
    except Exception:  # noqa: BLE001
        return EXTRACTION_FAILED_MESSAGE


def classify(error: Any) -> ErrorKind:
    """Classify an error into an :class:`ErrorKind`.

    Fatal patterns win over retryable ones, so an authentication failure
    that also mentions a timeout is still never retried.
    """
    if isinstance(error, CapabilityError):
        return ErrorKind.CAPABILITY
    if isinstance(error, (ConfigurationError, CallerInputError)):
        return ErrorKind.NON_RETRYABLE

    raw = _raw_message(error)
    lowered = raw.lower()

    if _INK_RE.search(raw) or any(pattern in lowered for pattern in _FATAL_PATTERNS):
        return ErrorKind.FATAL

    if is_tool_support_error(raw) or is_tool_support_error(extract_error_message(error)):
        return ErrorKind.CAPABILITY

    if any(pattern in lowered for pattern in _RETRYABLE_PATTERNS):
        return ErrorKind.RETRYABLE

    status = _status_code(error)
    if status is not None and (status == 429 or status >= 500):
        return ErrorKind.RETRYABLE

    if isinstance(error, LLMError) and error.retryable:
        return ErrorKind.RETRYABLE

    return ErrorKind.NON_RETRYABLE


def normalize_error(error: Any) -> NormalizedError:
    """Produce the tagged classification and clean message for ``error``. Never raises."""
    try:
        return NormalizedError(
            kind=classify(error),
            message=extract_error_message(error),
            status_code=_status_code(error),
        )
    except Exception:  # noqa: BLE001
        logger.debug("Error normalization failed", exc_info=True)
        return NormalizedError(kind=ErrorKind.NON_RETRYABLE, message=EXTRACTION_FAILED_MESSAGE)
