"""Unit tests for the bounded retry executor."""

import pytest

from ai_dispatch.core.errors import LLMError, RateLimitError
from ai_dispatch.core.providers.base import CallParameters, ChatMessage, ChatRole, ServiceType
from ai_dispatch.core.retry import (
    BACKOFF_FACTOR,
    INITIAL_RETRY_DELAY,
    MAX_RETRIES,
    RetryPolicy,
    call_with_retries,
)


@pytest.fixture
def params():
    return CallParameters(
        model_id="m",
        messages=(ChatMessage(ChatRole.SYSTEM, "sys"), ChatMessage(ChatRole.USER, "hi")),
    )


async def _call(provider, params, sleep, policy=None, service_type=ServiceType.GENERATE_TEXT):
    return await call_with_retries(
        provider,
        service_type,
        params,
        provider_name=provider.name,
        model_id="m",
        role="main",
        policy=policy,
        sleep_func=sleep,
    )


class TestRetryPolicy:
    """Tests for RetryPolicy defaults and validation."""

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_retries == MAX_RETRIES == 2
        assert policy.initial_delay == INITIAL_RETRY_DELAY == 1.0
        assert policy.backoff_factor == BACKOFF_FACTOR == 2.0

    def test_exponential_delays(self):
        policy = RetryPolicy()
        assert [policy.delay_for(a) for a in range(3)] == [1.0, 2.0, 4.0]

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_retries": -1}, {"initial_delay": -0.5}, {"backoff_factor": 0.5}],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)


class TestCallWithRetries:
    """Tests for retry loop behaviour."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, make_provider, params, recording_sleep):
        provider = make_provider("p", text="done")

        response = await _call(provider, params, recording_sleep)

        assert response.text == "done"
        assert len(provider.calls) == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_retryable_error_exhausts_budget(self, make_provider, params, recording_sleep):
        error = RateLimitError("Rate limit exceeded: slow down")
        provider = make_provider("p", always_raise=error)

        with pytest.raises(RateLimitError) as exc_info:
            await _call(provider, params, recording_sleep)

        assert exc_info.value is error
        assert len(provider.calls) == MAX_RETRIES + 1
        assert recording_sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_recovers_after_transient_errors(self, make_provider, params, recording_sleep):
        provider = make_provider(
            "p",
            errors=[LLMError("bad gateway", status=502), RuntimeError("request timeout")],
        )

        response = await _call(provider, params, recording_sleep)

        assert response.text == "ok"
        assert len(provider.calls) == 3
        assert recording_sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_fatal_error_not_retried(self, make_provider, params, recording_sleep):
        provider = make_provider("p", always_raise=RuntimeError("Error: not logged in (rate limit)"))

        with pytest.raises(RuntimeError):
            await _call(provider, params, recording_sleep)

        assert len(provider.calls) == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_non_retryable_error_not_retried(self, make_provider, params, recording_sleep):
        provider = make_provider("p", always_raise=LLMError("model not found", status=404))

        with pytest.raises(LLMError):
            await _call(provider, params, recording_sleep)

        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_custom_policy(self, make_provider, params, recording_sleep):
        provider = make_provider("p", always_raise=LLMError("overloaded", status=529))
        policy = RetryPolicy(max_retries=3, initial_delay=0.5, backoff_factor=3.0)

        with pytest.raises(LLMError):
            await _call(provider, params, recording_sleep, policy=policy)

        assert len(provider.calls) == 4
        assert recording_sleep.delays == [0.5, 1.5, 4.5]

    @pytest.mark.asyncio
    async def test_invokes_requested_service(self, make_provider, params, recording_sleep):
        provider = make_provider("p")

        await _call(provider, params, recording_sleep, service_type=ServiceType.GENERATE_OBJECT)

        assert provider.calls[0][0] == "generate_object"

    @pytest.mark.asyncio
    async def test_retry_after_extends_backoff(self, make_provider, params, recording_sleep):
        provider = make_provider(
            "p",
            errors=[
                RateLimitError("Rate limit exceeded", retry_after=5.0),
                RateLimitError("Rate limit exceeded", retry_after=0.5),
            ],
        )

        response = await _call(provider, params, recording_sleep)

        assert response.text == "ok"
        assert recording_sleep.delays == [5.0, 2.0]
