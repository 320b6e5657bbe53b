"""Unit tests for the failover orchestrator and the module-level services.

Tests cover:
- Role sequence ordering and at-most-one successful call per request
- Retry bound, backoff delays and fatal short-circuit per role
- Skip semantics for unresolvable roles (missing mapping, provider, key)
- Capability errors aborting generate_object
- Result projection, telemetry and tag info on success
- Final error message selection when every role fails
"""

import logging

import pytest

from ai_dispatch.core.dispatch import (
    ALL_ROLES_FAILED_MESSAGE,
    AIServiceDispatcher,
    DispatchResult,
    generate_object_service,
    generate_text_service,
    set_dispatcher,
    stream_object_service,
    stream_text_service,
)
from ai_dispatch.core.errors import (
    AIServiceError,
    CallerInputError,
    CapabilityError,
    CLIProcessError,
    LLMError,
    RateLimitError,
)
from ai_dispatch.core.llm_config import DispatchConfig, RoleModelConfig
from ai_dispatch.core.providers.base import ChatRole, ProviderResponse, ServiceType
from ai_dispatch.core.providers.registry import ProviderRegistry
from ai_dispatch.core.retry import RetryPolicy
from ai_dispatch.core.tags import TagInfo


def _attempted(providers):
    """Names of providers that were invoked at least once, in role order."""
    return [p.name for p in providers.values() if p.calls]


def _total_successes(providers):
    return sum(p.successes for p in providers.values())


class TestRoleSequence:
    """Tests for the deterministic failover order."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "role,expected",
        [
            ("main", ["fake-main", "fake-fallback", "fake-research"]),
            ("research", ["fake-research", "fake-fallback", "fake-main"]),
            ("fallback", ["fake-fallback", "fake-main", "fake-research"]),
        ],
    )
    async def test_attempt_order_follows_role_sequence(
        self, dispatcher, providers, role, expected
    ):
        """Every role fails once; invocation order matches the sequence."""
        order = []
        for provider in providers.values():
            provider.always_raise = ValueError(f"bad request for {provider.name}")
            original = provider._respond

            def _tracking(service, params, _name=provider.name, _original=original):
                order.append(_name)
                return _original(service, params)

            provider._respond = _tracking

        with pytest.raises(AIServiceError):
            await dispatcher.generate_text(role=role, prompt="hi", command_name="test")

        assert order == expected

    @pytest.mark.asyncio
    async def test_unknown_initial_role_uses_main_sequence(self, dispatcher, providers, caplog):
        """An unrecognized role falls back to main -> fallback -> research."""
        with caplog.at_level(logging.WARNING):
            result = await dispatcher.generate_text(role="bogus", prompt="hi", command_name="test")

        assert result.provider_name == "fake-main"
        assert "Unknown initial role: bogus" in caplog.text

    @pytest.mark.asyncio
    async def test_first_role_success_stops_sequence(self, dispatcher, providers):
        """Later roles are never invoked once a role succeeds."""
        result = await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert result.main_result == "from main"
        assert _attempted(providers) == ["fake-main"]


class TestAtMostOneSuccess:
    """Tests that no request ever produces more than one successful call."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "main_errors,fallback_errors",
        [
            ([], []),
            ([LLMError("upstream failure", status=502)], []),
            ([ValueError("bad")], []),
            ([ValueError("bad")], [RateLimitError()]),
        ],
    )
    async def test_single_success_across_sequence(
        self, dispatcher, providers, main_errors, fallback_errors
    ):
        providers["main"].errors = list(main_errors)
        providers["fallback"].errors = list(fallback_errors)

        await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert _total_successes(providers) == 1

    @pytest.mark.asyncio
    async def test_zero_successes_when_everything_fails(self, dispatcher, providers):
        for provider in providers.values():
            provider.always_raise = ValueError("bad")

        with pytest.raises(AIServiceError):
            await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert _total_successes(providers) == 0


class TestRetryBehaviour:
    """Tests for per-role retry bounds and backoff through the orchestrator."""

    @pytest.mark.asyncio
    async def test_retryable_error_invokes_role_three_times(
        self, dispatcher, providers, recording_sleep
    ):
        """A role that always returns 429 is tried MAX_RETRIES + 1 times, then abandoned."""
        providers["main"].always_raise = LLMError("Too many requests", status=429)

        result = await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert len(providers["main"].calls) == 3
        assert recording_sleep.delays == [1.0, 2.0]
        assert result.provider_name == "fake-fallback"

    @pytest.mark.asyncio
    async def test_transient_failure_then_success_in_same_role(
        self, dispatcher, providers, recording_sleep
    ):
        providers["main"].errors = [LLMError("Internal server error", status=500)]

        result = await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert result.provider_name == "fake-main"
        assert len(providers["main"].calls) == 2
        assert recording_sleep.delays == [1.0]
        assert not providers["fallback"].calls

    @pytest.mark.asyncio
    async def test_not_logged_in_is_never_retried(self, dispatcher, providers, recording_sleep):
        providers["main"].always_raise = RuntimeError("User is not logged in")

        result = await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert len(providers["main"].calls) == 1
        assert recording_sleep.delays == []
        assert result.provider_name == "fake-fallback"

    @pytest.mark.asyncio
    async def test_non_retryable_error_advances_without_retry(
        self, dispatcher, providers, recording_sleep
    ):
        providers["main"].always_raise = ValueError("invalid parameter 'top_k'")

        result = await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert len(providers["main"].calls) == 1
        assert recording_sleep.delays == []
        assert result.provider_name == "fake-fallback"

    @pytest.mark.asyncio
    async def test_per_call_retry_policy_override(self, dispatcher, providers, recording_sleep):
        providers["main"].always_raise = LLMError("overloaded", status=529)

        await dispatcher.generate_text(
            role="main",
            prompt="hi",
            command_name="test",
            retry_policy=RetryPolicy(max_retries=0),
        )

        assert len(providers["main"].calls) == 1
        assert recording_sleep.delays == []


class TestRoleSkipping:
    """Tests for roles that cannot be attempted at all."""

    @pytest.mark.asyncio
    async def test_missing_api_key_skips_role(self, registry, dispatch_config, recording_sleep, make_provider):
        keyed = make_provider("keyed", api_key_env="FAKE_API_KEY")
        registry.register("keyed", keyed)
        dispatch_config.roles["main"] = RoleModelConfig(provider="keyed", model_id="m")
        dispatcher = AIServiceDispatcher(registry, dispatch_config, sleep_func=recording_sleep)

        result = await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert keyed.calls == []
        assert result.provider_name == "fake-fallback"

    @pytest.mark.asyncio
    async def test_placeholder_api_key_counts_as_unset(
        self, monkeypatch, registry, dispatch_config, recording_sleep, make_provider
    ):
        monkeypatch.setenv("FAKE_API_KEY", "YOUR_FAKE_API_KEY_HERE")
        keyed = make_provider("keyed", api_key_env="FAKE_API_KEY")
        registry.register("keyed", keyed)
        dispatch_config.roles["main"] = RoleModelConfig(provider="keyed", model_id="m")
        dispatcher = AIServiceDispatcher(registry, dispatch_config, sleep_func=recording_sleep)

        result = await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert keyed.calls == []
        assert result.provider_name == "fake-fallback"

    @pytest.mark.asyncio
    async def test_session_key_is_passed_to_provider(
        self, registry, dispatch_config, recording_sleep, make_provider
    ):
        keyed = make_provider("keyed", api_key_env="FAKE_API_KEY")
        registry.register("keyed", keyed)
        dispatch_config.roles["main"] = RoleModelConfig(provider="keyed", model_id="m")
        dispatcher = AIServiceDispatcher(registry, dispatch_config, sleep_func=recording_sleep)

        result = await dispatcher.generate_text(
            role="main",
            prompt="hi",
            command_name="test",
            session={"env": {"FAKE_API_KEY": "sk-session"}},
        )

        assert result.provider_name == "keyed"
        assert keyed.calls[0][1].api_key == "sk-session"

    @pytest.mark.asyncio
    async def test_unsupported_provider_skips_role(self, dispatcher, dispatch_config, providers):
        dispatch_config.roles["main"] = RoleModelConfig(provider="nonexistent", model_id="m")

        result = await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert result.provider_name == "fake-fallback"
        assert not providers["main"].calls

    @pytest.mark.asyncio
    async def test_unexpected_resolution_error_advances_to_next_role(
        self, monkeypatch, registry, dispatch_config, recording_sleep, make_provider, caplog
    ):
        plugin = make_provider("plugin")

        def broken_key_name():
            raise KeyError("plugin settings missing")

        monkeypatch.setattr(plugin, "get_required_api_key_name", broken_key_name)
        registry.register("plugin", plugin)
        dispatch_config.roles["main"] = RoleModelConfig(provider="plugin", model_id="m")
        dispatcher = AIServiceDispatcher(registry, dispatch_config, sleep_func=recording_sleep)

        with caplog.at_level(logging.ERROR, logger="ai_dispatch"):
            result = await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert plugin.calls == []
        assert result.provider_name == "fake-fallback"
        assert "Failed to prepare call for role main (Provider: plugin)" in caplog.text

    @pytest.mark.asyncio
    async def test_unexpected_resolution_error_is_final_message(
        self, monkeypatch, recording_sleep, make_provider
    ):
        plugin = make_provider("plugin")

        def broken_key_name():
            raise KeyError("plugin settings missing")

        monkeypatch.setattr(plugin, "get_required_api_key_name", broken_key_name)
        config = DispatchConfig(
            roles={
                role: RoleModelConfig(provider="plugin", model_id="m")
                for role in ("main", "fallback", "research")
            }
        )
        dispatcher = AIServiceDispatcher(
            ProviderRegistry(builtin={"plugin": plugin}), config, sleep_func=recording_sleep
        )

        with pytest.raises(AIServiceError) as exc_info:
            await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert "plugin settings missing" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_all_roles_skipped_reports_first_skip_reason(self, recording_sleep):
        config = DispatchConfig(
            roles={
                "main": RoleModelConfig(provider="ghost-a", model_id="m"),
                "fallback": RoleModelConfig(provider="ghost-b", model_id="m"),
                "research": RoleModelConfig(provider="ghost-c", model_id="m"),
            }
        )
        dispatcher = AIServiceDispatcher(ProviderRegistry(), config, sleep_func=recording_sleep)

        with pytest.raises(AIServiceError) as exc_info:
            await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert exc_info.value.message == "Unsupported provider configured: ghost-a"
        assert exc_info.value.roles == ["main", "fallback", "research"]

    @pytest.mark.asyncio
    async def test_missing_role_mapping_is_reported(self, recording_sleep):
        dispatcher = AIServiceDispatcher(
            ProviderRegistry(), DispatchConfig(roles={}), sleep_func=recording_sleep
        )

        with pytest.raises(AIServiceError) as exc_info:
            await dispatcher.generate_text(role="research", prompt="hi", command_name="test")

        assert exc_info.value.message == (
            "Configuration missing for role 'research'. Provider: None, Model: None"
        )


class TestFinalFailure:
    """Tests for the error raised when every role fails."""

    @pytest.mark.asyncio
    async def test_message_is_last_roles_normalized_failure(self, dispatcher, providers):
        for provider in providers.values():
            provider.always_raise = RuntimeError(f"authentication failed for {provider.name}")

        with pytest.raises(AIServiceError) as exc_info:
            await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert exc_info.value.message == "authentication failed for fake-research"
        assert [len(p.calls) for p in providers.values()] == [1, 1, 1]

    @pytest.mark.asyncio
    async def test_real_failure_wins_over_earlier_skip(self, dispatcher, dispatch_config, providers):
        dispatch_config.roles["main"] = RoleModelConfig(provider="nonexistent", model_id="m")
        providers["fallback"].always_raise = ValueError("fallback exploded")
        providers["research"].always_raise = ValueError("research exploded")

        with pytest.raises(AIServiceError) as exc_info:
            await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert exc_info.value.message == "research exploded"

    def test_default_message_constant(self):
        assert ALL_ROLES_FAILED_MESSAGE == "AI service call failed for all configured roles."


class TestFailoverScenarios:
    """End-to-end failover scenarios across roles."""

    @pytest.mark.asyncio
    async def test_transient_main_failure_served_by_research(
        self, registry, dispatch_config, providers, recording_sleep, make_provider
    ):
        """Main returns 503 three times, fallback lacks a key, research answers."""
        providers["main"].always_raise = LLMError("Service unavailable", status=503)
        keyed_fallback = make_provider("keyed-fallback", api_key_env="FAKE_API_KEY")
        registry.register("keyed-fallback", keyed_fallback)
        dispatch_config.roles["fallback"] = RoleModelConfig(provider="keyed-fallback", model_id="m")
        dispatcher = AIServiceDispatcher(registry, dispatch_config, sleep_func=recording_sleep)

        result = await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert len(providers["main"].calls) == 3
        assert keyed_fallback.calls == []
        assert result.provider_name == "fake-research"
        assert result.main_result == "from research"
        assert result.model_id == "research-model"


class TestCapabilityErrors:
    """Tests for structured-output requests against models without tool use."""

    @pytest.mark.asyncio
    async def test_generate_object_aborts_without_trying_other_roles(self, dispatcher, providers):
        providers["main"].always_raise = RuntimeError(
            "Model main-model does not support tool_use"
        )

        with pytest.raises(CapabilityError) as exc_info:
            await dispatcher.generate_object(
                role="main", prompt="hi", schema={"type": "object"}, command_name="test"
            )

        assert len(providers["main"].calls) == 1
        assert not providers["fallback"].calls
        assert not providers["research"].calls
        error = exc_info.value
        assert "Model 'main-model' via provider 'fake-main'" in error.message
        assert "'main' role" in error.message
        assert error.role == "main"
        assert error.provider == "fake-main"
        assert error.model_id == "main-model"

    @pytest.mark.asyncio
    async def test_text_generation_continues_past_tool_support_error(self, dispatcher, providers):
        providers["main"].always_raise = RuntimeError("No endpoints found that support tool use")

        result = await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert result.provider_name == "fake-fallback"


class TestCallerInput:
    """Tests for caller errors raised before any provider is touched."""

    @pytest.mark.asyncio
    async def test_missing_prompt_raises_immediately(self, dispatcher, providers):
        set_dispatcher(dispatcher)

        with pytest.raises(CallerInputError, match="User prompt content is missing."):
            await generate_text_service(role="main", command_name="x")

        assert _attempted(providers) == []

    @pytest.mark.asyncio
    async def test_empty_prompt_raises_immediately(self, dispatcher, providers):
        with pytest.raises(CallerInputError):
            await dispatcher.generate_text(role="main", prompt="", command_name="x")

        assert _attempted(providers) == []

    @pytest.mark.asyncio
    async def test_stream_object_requires_schema(self, dispatcher, providers):
        set_dispatcher(dispatcher)

        with pytest.raises(CallerInputError, match="requires a schema parameter"):
            await stream_object_service(role="main", prompt="hi", command_name="x")

        assert _attempted(providers) == []


class TestCallParameters:
    """Tests for the parameters handed to providers."""

    @pytest.mark.asyncio
    async def test_system_message_carries_language_directive(self, dispatcher, providers):
        await dispatcher.generate_text(
            role="main", prompt="hi", system_prompt="Be brief.", command_name="test"
        )

        params = providers["main"].calls[0][1]
        assert params.messages[0].role == ChatRole.SYSTEM
        assert params.messages[0].content == "Be brief. \n\n Always respond in English."
        assert params.messages[1].role == ChatRole.USER
        assert params.messages[1].content == "hi"

    @pytest.mark.asyncio
    async def test_system_message_injected_without_system_prompt(
        self, dispatcher, dispatch_config, providers
    ):
        dispatch_config.response_language = "French"

        await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        params = providers["main"].calls[0][1]
        assert params.system_prompt == "Always respond in French."

    @pytest.mark.asyncio
    async def test_parameters_are_resolved_per_role(self, dispatcher, providers):
        providers["main"].always_raise = ValueError("bad")

        await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        main_params = providers["main"].calls[0][1]
        fallback_params = providers["fallback"].calls[0][1]
        assert (main_params.model_id, main_params.max_tokens) == ("main-model", 1000)
        assert (fallback_params.model_id, fallback_params.max_tokens) == ("fallback-model", 3000)
        assert fallback_params.temperature == 0.3

    @pytest.mark.asyncio
    async def test_role_base_url_override(self, dispatcher, dispatch_config, providers):
        dispatch_config.roles["main"].base_url = "http://proxy.local/v1"

        await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert providers["main"].calls[0][1].base_url == "http://proxy.local/v1"

    @pytest.mark.asyncio
    async def test_base_url_omitted_without_override(self, dispatcher, providers):
        await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert providers["main"].calls[0][1].base_url is None

    @pytest.mark.asyncio
    async def test_text_services_do_not_forward_schema(self, dispatcher, providers):
        await dispatcher.generate_text(
            role="main", prompt="hi", schema={"type": "object"}, command_name="test"
        )

        params = providers["main"].calls[0][1]
        assert params.schema is None
        assert params.object_name is None

    @pytest.mark.asyncio
    async def test_generate_object_defaults(self, dispatcher, providers):
        providers["main"].obj = {"title": "x"}

        result = await dispatcher.generate_object(
            role="main", prompt="hi", schema={"type": "object"}, command_name="test"
        )

        params = providers["main"].calls[0][1]
        assert params.object_name == "generated_object"
        assert params.schema == {"type": "object"}
        assert params.extra["max_retries"] == 3
        assert result.main_result == {"title": "x"}


class TestSuccessResult:
    """Tests for the projected result, telemetry and tag info."""

    @pytest.mark.asyncio
    async def test_generate_text_result(self, dispatcher):
        result = await dispatcher.generate_text(role="main", prompt="hi", command_name="summarize")

        assert isinstance(result, DispatchResult)
        assert result.main_result == "from main"
        assert result.provider_name == "fake-main"
        assert result.model_id == "main-model"
        assert result.tag_info == TagInfo()

    @pytest.mark.asyncio
    async def test_telemetry_record(self, dispatcher):
        result = await dispatcher.generate_text(role="main", prompt="hi", command_name="summarize")

        telemetry = result.telemetry_data
        assert telemetry.user_id == "tester"
        assert telemetry.command_name == "summarize"
        assert telemetry.provider_name == "fake-main"
        assert telemetry.model_used == "main-model"
        assert telemetry.input_tokens == 100
        assert telemetry.output_tokens == 50
        assert telemetry.total_tokens == 150
        assert telemetry.total_cost == pytest.approx(0.00105)

    @pytest.mark.asyncio
    async def test_no_telemetry_without_usage(self, dispatcher, providers):
        providers["main"].usage = None

        result = await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert result.main_result == "from main"
        assert result.telemetry_data is None

    @pytest.mark.asyncio
    async def test_unreadable_usage_does_not_fail_call(self, dispatcher, providers, caplog):
        providers["main"].usage = {"input_tokens": 1, "output_tokens": 2}

        with caplog.at_level(logging.ERROR, logger="ai_dispatch"):
            result = await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert result.main_result == "from main"
        assert result.telemetry_data is None
        assert "unreadable usage data" in caplog.text

    @pytest.mark.asyncio
    async def test_no_telemetry_without_user_id(self, dispatcher, dispatch_config):
        dispatch_config.user_id = None

        result = await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert result.telemetry_data is None

    @pytest.mark.asyncio
    async def test_telemetry_failure_does_not_fail_call(
        self, registry, dispatch_config, recording_sleep
    ):
        class ExplodingCostTable:
            def get_cost(self, provider_name, model_id):
                raise RuntimeError("cost table unavailable")

        dispatcher = AIServiceDispatcher(
            registry,
            dispatch_config,
            sleep_func=recording_sleep,
            cost_table=ExplodingCostTable(),
        )

        result = await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert result.main_result == "from main"
        assert result.telemetry_data is None

    @pytest.mark.asyncio
    async def test_tag_info_failure_falls_back_to_master(
        self, registry, dispatch_config, recording_sleep
    ):
        def broken_tags(root):
            raise OSError("task store unreadable")

        dispatcher = AIServiceDispatcher(
            registry, dispatch_config, sleep_func=recording_sleep, tag_provider=broken_tags
        )

        result = await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert result.tag_info.current_tag == "master"
        assert result.tag_info.available_tags == ["master"]

    @pytest.mark.asyncio
    async def test_tag_info_read_from_project_root(
        self, tmp_path, registry, dispatch_config, recording_sleep
    ):
        state_dir = tmp_path / ".ai-dispatch"
        (state_dir / "tasks").mkdir(parents=True)
        (state_dir / "state.json").write_text('{"currentTag": "feature-x"}')
        (state_dir / "tasks" / "tasks.json").write_text(
            '{"master": {"tasks": []}, "feature-x": {"tasks": []}}'
        )
        dispatcher = AIServiceDispatcher(registry, dispatch_config, sleep_func=recording_sleep)

        result = await dispatcher.generate_text(
            role="main", prompt="hi", command_name="test", project_root=tmp_path
        )

        assert result.tag_info.current_tag == "feature-x"
        assert result.tag_info.available_tags == ["master", "feature-x"]

    @pytest.mark.asyncio
    async def test_to_dict_dumps_pydantic_objects(self, dispatcher, providers):
        from pydantic import BaseModel

        class Plan(BaseModel):
            title: str

        providers["main"].obj = Plan(title="ship it")

        result = await dispatcher.generate_object(
            role="main", prompt="hi", schema=Plan, command_name="test"
        )

        data = result.to_dict()
        assert data["main_result"] == {"title": "ship it"}
        assert data["telemetry_data"]["provider_name"] == "fake-main"
        assert data["tag_info"] == {"current_tag": "master", "available_tags": ["master"]}


class TestStreamingServices:
    """Tests for the streaming service projections."""

    @pytest.mark.asyncio
    async def test_stream_text_returns_raw_response(self, dispatcher, providers):
        set_dispatcher(dispatcher)
        providers["main"].text = "hello streaming world"

        result = await stream_text_service(role="main", prompt="hi", command_name="test")

        assert isinstance(result.main_result, ProviderResponse)
        chunks = [chunk async for chunk in result.main_result.stream]
        assert chunks == ["hello", "streaming", "world"]
        assert providers["main"].calls[0][0] == ServiceType.STREAM_TEXT.value

    @pytest.mark.asyncio
    async def test_stream_object_with_schema(self, dispatcher, providers):
        set_dispatcher(dispatcher)
        providers["main"].obj = {"done": True}

        result = await stream_object_service(
            role="main", prompt="hi", schema={"type": "object"}, command_name="test"
        )

        partials = [partial async for partial in result.main_result.stream]
        assert partials == [{"done": True}]

    @pytest.mark.asyncio
    async def test_generate_object_service(self, dispatcher, providers):
        set_dispatcher(dispatcher)
        providers["main"].obj = {"ok": 1}

        result = await generate_object_service(
            role="main", prompt="hi", schema={"type": "object"}, command_name="test"
        )

        assert result.main_result == {"ok": 1}


class TestConfigLoading:
    """Tests for per-project config loading when none is injected."""

    @pytest.mark.asyncio
    async def test_config_loaded_from_project_file(self, tmp_path, registry, recording_sleep, providers):
        (tmp_path / "ai-dispatch.toml").write_text(
            '[models.main]\nprovider = "fake-research"\nmodel_id = "configured-model"\n'
        )
        dispatcher = AIServiceDispatcher(registry, sleep_func=recording_sleep)

        result = await dispatcher.generate_text(
            role="main", prompt="hi", command_name="test", project_root=tmp_path
        )

        assert result.provider_name == "fake-research"
        assert result.model_id == "configured-model"
        assert dispatcher.config_for(tmp_path) is dispatcher.config_for(tmp_path)


class TestDiagnostics:
    """Tests for provider-specific failure logging."""

    @pytest.mark.asyncio
    async def test_cli_exit_code_is_logged_with_guidance(
        self, registry, dispatch_config, recording_sleep, make_provider, caplog
    ):
        cli_provider = make_provider(
            "claude-code",
            always_raise=CLIProcessError(
                "Claude Code process exited with code 401",
                provider="claude-code",
                exit_code=401,
                stderr="Invalid API key",
            ),
        )
        registry.register("claude-code", cli_provider)
        dispatch_config.roles["main"] = RoleModelConfig(provider="claude-code", model_id="sonnet")
        dispatcher = AIServiceDispatcher(registry, dispatch_config, sleep_func=recording_sleep)

        with caplog.at_level(logging.DEBUG, logger="ai_dispatch"):
            result = await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert len(cli_provider.calls) == 1
        assert result.provider_name == "fake-fallback"
        assert "[Claude Code API Error]" in caplog.text
        assert "claude auth" in caplog.text
        assert "Raw stderr: Invalid API key" in caplog.text

    @pytest.mark.asyncio
    async def test_type_check_error_is_logged(self, dispatcher, providers, caplog):
        providers["main"].always_raise = TypeError("isinstance() arg 2 must be a type or tuple")

        with caplog.at_level(logging.INFO, logger="ai_dispatch"):
            await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert "[Type Check Error]" in caplog.text

    @pytest.mark.asyncio
    async def test_auth_error_is_logged(self, dispatcher, providers, caplog):
        providers["main"].always_raise = RuntimeError("authentication failed: bad key")

        with caplog.at_level(logging.ERROR, logger="ai_dispatch"):
            await dispatcher.generate_text(role="main", prompt="hi", command_name="test")

        assert "[Authentication Error] Provider 'fake-main'" in caplog.text
