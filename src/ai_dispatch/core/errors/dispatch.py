"""Dispatch-layer error classes.

These are the tagged outcomes the failover orchestrator switches on:

- ConfigurationError: the role cannot be attempted (skip to next role)
- CapabilityError: the configured model cannot serve the request at all
  (abort the whole request)
- CallerInputError: the caller passed an invalid request (abort, never retried)
- AIServiceError: every role in the sequence failed
"""

from typing import List, Optional


class DispatchError(Exception):
    """Base exception for dispatch-layer failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(DispatchError):
    """Raised when a role cannot be resolved into a usable provider call.

    Covers unknown roles, missing provider/model mappings, unsupported
    providers and missing API keys. Never retried; the orchestrator skips
    the role.
    """

    def __init__(
        self,
        message: str,
        *,
        role: Optional[str] = None,
        provider: Optional[str] = None,
    ):
        super().__init__(message)
        self.role = role
        self.provider = provider


class CapabilityError(DispatchError):
    """Raised when the configured model lacks a capability the service needs.

    Switching roles will not fix this, so it propagates out of the
    orchestrator immediately.
    """

    def __init__(
        self,
        message: str,
        *,
        role: Optional[str] = None,
        provider: Optional[str] = None,
        model_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.role = role
        self.provider = provider
        self.model_id = model_id


class CallerInputError(DispatchError, ValueError):
    """Raised when the service call itself is malformed (missing prompt, schema)."""


class RetriesExhaustedError(DispatchError):
    """Raised if the retry loop exits without returning or re-raising.

    The loop invariant makes this unreachable; seeing it indicates a bug.
    """


class AIServiceError(DispatchError):
    """Raised when every role in the failover sequence failed.

    Attributes:
        message: Last normalized failure message across the sequence
        roles: Roles attempted, in order
    """

    def __init__(self, message: str, *, roles: Optional[List[str]] = None):
        super().__init__(message)
        self.roles = list(roles or [])
