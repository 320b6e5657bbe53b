"""Bounded retry executor for a single provider invocation.

Wraps one provider service call with exponential backoff. Classification
comes from :func:`ai_dispatch.core.error_normalizer.normalize_error`; only
``ErrorKind.RETRYABLE`` failures are retried, everything else re-raises the
original exception immediately.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from ai_dispatch.core.error_normalizer import ErrorKind, normalize_error
from ai_dispatch.core.errors import RateLimitError, RetriesExhaustedError
from ai_dispatch.core.providers.base import (
    AIProvider,
    CallParameters,
    ProviderResponse,
    ServiceType,
)

logger = logging.getLogger(__name__)

MAX_RETRIES = 2
INITIAL_RETRY_DELAY = 1.0
BACKOFF_FACTOR = 2.0


class SleepFunc(Protocol):
    """Protocol for injectable sleep function."""

    async def __call__(self, seconds: float) -> None: ...


@dataclass(frozen=True)
class RetryPolicy:
    """Retry bounds for one role attempt.

    Attributes:
        max_retries: Retries after the first try (total tries = max_retries + 1)
        initial_delay: Delay in seconds before the first retry
        backoff_factor: Multiplier applied per subsequent retry
    """

    max_retries: int = MAX_RETRIES
    initial_delay: float = INITIAL_RETRY_DELAY
    backoff_factor: float = BACKOFF_FACTOR

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be non-negative, got {self.max_retries}")
        if self.initial_delay < 0:
            raise ValueError(f"initial_delay must be non-negative, got {self.initial_delay}")
        if self.backoff_factor < 1:
            raise ValueError(f"backoff_factor must be >= 1, got {self.backoff_factor}")

    def delay_for(self, attempt: int) -> float:
        """Delay before retrying after failed ``attempt`` (0-based): 1s, 2s, ..."""
        return self.initial_delay * (self.backoff_factor**attempt)


async def call_with_retries(
    provider: AIProvider,
    service_type: ServiceType,
    params: CallParameters,
    *,
    provider_name: str,
    model_id: str,
    role: str,
    policy: Optional[RetryPolicy] = None,
    sleep_func: Optional[SleepFunc] = None,
    debug: bool = False,
) -> ProviderResponse:
    """Invoke ``provider``'s ``service_type`` method, retrying transient failures.

    Args:
        provider: Provider instance to call
        service_type: Service method to invoke
        params: Frozen call parameters for this role attempt
        provider_name: Provider name (logging)
        model_id: Model id (logging)
        role: Role being attempted (logging)
        policy: Retry bounds; defaults to 2 retries with 1s/2s backoff
        sleep_func: Injectable sleep for deterministic tests
        debug: Emit per-attempt tracing at INFO level

    Returns:
        The raw provider response

    Raises:
        Exception: The original provider error when it is not retryable or
            the retry budget is spent
    """
    policy = policy or RetryPolicy()
    _sleep = sleep_func or asyncio.sleep
    fn_name = service_type.value
    total = policy.max_retries + 1
    attempt = 0

    while attempt <= policy.max_retries:
        try:
            if debug:
                logger.info(
                    f"Attempt {attempt + 1}/{total} calling {fn_name} "
                    f"(Provider: {provider_name}, Model: {model_id}, Role: {role})"
                )
            result = await provider.invoke(service_type, params)
            if debug:
                logger.info(
                    f"{fn_name} succeeded for role {role} (Provider: {provider_name}) "
                    f"on attempt {attempt + 1}"
                )
            return result
        except Exception as exc:
            normalized = normalize_error(exc)
            logger.warning(
                f"Attempt {attempt + 1} failed for role {role} ({fn_name} / {provider_name}): "
                f"{normalized.message}"
            )

            if normalized.kind == ErrorKind.FATAL:
                logger.error(f"Non-retryable error detected for {provider_name}: {normalized.message}")
                raise

            if normalized.kind == ErrorKind.RETRYABLE and attempt < policy.max_retries:
                delay = policy.delay_for(attempt)
                if isinstance(exc, RateLimitError) and exc.retry_after is not None:
                    delay = max(delay, exc.retry_after)
                attempt += 1
                logger.info(
                    f"Retryable error detected. Retrying in {delay:g}s... (Attempt {attempt}/{total})"
                )
                await _sleep(delay)
                continue

            logger.error(
                f"Non-retryable error or max retries reached for role {role} "
                f"({fn_name} / {provider_name}): {normalized.message}"
            )
            raise

    raise RetriesExhaustedError(
        f"Exhausted all retries for role {role} ({fn_name} / {provider_name})"
    )
