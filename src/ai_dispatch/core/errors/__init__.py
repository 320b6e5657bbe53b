"""Unified error hierarchy for ai-dispatch.

All custom exception classes are defined in domain-specific modules within
this package. This __init__.py re-exports everything for convenient access.

Usage:
    # Import from domain modules for specificity
    from ai_dispatch.core.errors.llm import LLMError, RateLimitError

    # Or import from the package
    from ai_dispatch.core.errors import AIServiceError, ConfigurationError
"""

# --- Dispatch errors ---
from ai_dispatch.core.errors.dispatch import (
    AIServiceError,
    CallerInputError,
    CapabilityError,
    ConfigurationError,
    DispatchError,
    RetriesExhaustedError,
)

# --- LLM API errors ---
from ai_dispatch.core.errors.llm import (
    AuthenticationError,
    InvalidRequestError,
    LLMError,
    ModelNotFoundError,
    RateLimitError,
)

# --- Provider adapter errors ---
from ai_dispatch.core.errors.provider import (
    CLIProcessError,
    ProviderError,
    ProviderExecutionError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)

__all__ = [
    # Dispatch
    "AIServiceError",
    "CallerInputError",
    "CapabilityError",
    "ConfigurationError",
    "DispatchError",
    "RetriesExhaustedError",
    # LLM
    "AuthenticationError",
    "InvalidRequestError",
    "LLMError",
    "ModelNotFoundError",
    "RateLimitError",
    # Provider
    "CLIProcessError",
    "ProviderError",
    "ProviderExecutionError",
    "ProviderTimeoutError",
    "ProviderUnavailableError",
]
