"""Unified AI service dispatch with role-based failover.

A logical request ("generate text for role X") is resolved to a concrete
provider/model/credential, executed with bounded retries, and failed over
across the role sequence until one role succeeds:

    main     -> main, fallback, research
    research -> research, fallback, main
    fallback -> fallback, main, research

Roles that cannot be attempted (missing mapping, unknown provider, missing
key) are skipped. Roles that were attempted and failed advance the
sequence. A structured-output request against a model without tool-use
support aborts the whole request with :class:`CapabilityError`.

Example:
    from ai_dispatch.core.dispatch import generate_text_service

    result = await generate_text_service(
        role="main",
        prompt="Summarize the release notes",
        command_name="summarize",
    )
    print(result.main_result, result.provider_name)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple, Union

from ai_dispatch.core.error_normalizer import (
    CLAUDE_CODE_EXIT_PATTERN,
    ErrorKind,
    NormalizedError,
    is_auth_error,
    is_cli_interface_error,
    is_type_check_error,
    normalize_error,
)
from ai_dispatch.core.errors import (
    AIServiceError,
    CallerInputError,
    CapabilityError,
    ConfigurationError,
)
from ai_dispatch.core.llm_config import DispatchConfig, load_dispatch_config
from ai_dispatch.core.llm_config._paths import find_project_root
from ai_dispatch.core.providers.base import (
    AIProvider,
    CallParameters,
    ChatMessage,
    ChatRole,
    ProviderResponse,
    ServiceType,
)
from ai_dispatch.core.providers.registry import ProviderRegistry, build_default_registry
from ai_dispatch.core.retry import RetryPolicy, SleepFunc, call_with_retries
from ai_dispatch.core.roles import RoleResolver, role_sequence
from ai_dispatch.core.tags import TagInfo, get_tag_info
from ai_dispatch.core.telemetry import CostTable, TelemetryRecord, record_usage

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
TagProvider = Callable[[Optional[Path]], TagInfo]

ALL_ROLES_FAILED_MESSAGE = "AI service call failed for all configured roles."
DEFAULT_OBJECT_NAME = "generated_object"
DEFAULT_OBJECT_MAX_RETRIES = 3
CLI_PROVIDER = "claude-code"


@dataclass
class DispatchResult:
    """Caller-facing result of a successful dispatch.

    Attributes:
        main_result: ``text`` for generate_text, ``object`` for generate_object,
            the raw :class:`ProviderResponse` for the streaming services
        telemetry_data: Usage record, or None when the provider reported no usage
        tag_info: Current and available project tags
        provider_name: Provider that served the request
        model_id: Model that served the request
    """

    main_result: Any
    telemetry_data: Optional[TelemetryRecord]
    tag_info: TagInfo
    provider_name: str
    model_id: str

    def to_dict(self) -> Dict[str, Any]:
        main_result = self.main_result
        if hasattr(main_result, "model_dump"):
            main_result = main_result.model_dump()
        return {
            "main_result": main_result,
            "telemetry_data": self.telemetry_data.to_dict() if self.telemetry_data else None,
            "tag_info": self.tag_info.to_dict(),
            "provider_name": self.provider_name,
            "model_id": self.model_id,
        }


@dataclass(frozen=True)
class _PreparedCall:
    provider: AIProvider
    provider_name: str
    model_id: str
    params: CallParameters


def _build_messages(system_prompt: Optional[str], prompt: str, language: str) -> Tuple[ChatMessage, ...]:
    system_content = f"{system_prompt or ''} \n\n Always respond in {language}.".strip()
    return (
        ChatMessage(ChatRole.SYSTEM, system_content),
        ChatMessage(ChatRole.USER, prompt),
    )


def _project(service_type: ServiceType, response: ProviderResponse) -> Any:
    if service_type == ServiceType.GENERATE_TEXT:
        return response.text
    if service_type == ServiceType.GENERATE_OBJECT:
        return response.object
    return response


class AIServiceDispatcher:
    """Failover orchestrator over the provider registry.

    Args:
        registry: Provider registry (defaults to the built-in providers)
        config: Dispatch configuration; when omitted it is loaded per project root
        retry_policy: Retry bounds applied to every role attempt
        sleep_func: Injectable backoff sleep for deterministic tests
        cost_table: Cost table for telemetry (defaults to the bundled table)
        tag_provider: Callable returning the project's TagInfo
    """

    def __init__(
        self,
        registry: Optional[ProviderRegistry] = None,
        config: Optional[DispatchConfig] = None,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        sleep_func: Optional[SleepFunc] = None,
        cost_table: Optional[CostTable] = None,
        tag_provider: Optional[TagProvider] = None,
    ):
        self.registry = registry or build_default_registry()
        self._config = config
        self._configs_by_root: Dict[Optional[Path], DispatchConfig] = {}
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep_func = sleep_func
        self._cost_table = cost_table
        self._tag_provider = tag_provider or get_tag_info

    def config_for(self, project_root: Optional[Path]) -> DispatchConfig:
        """Return the explicit config, or the one loaded for ``project_root``."""
        if self._config is not None:
            return self._config
        if project_root not in self._configs_by_root:
            self._configs_by_root[project_root] = load_dispatch_config(project_root=project_root)
        return self._configs_by_root[project_root]

    # ── Public services ────────────────────────────────────────────────

    async def generate_text(self, **kwargs: Any) -> DispatchResult:
        return await self.run(ServiceType.GENERATE_TEXT, **kwargs)

    async def stream_text(self, **kwargs: Any) -> DispatchResult:
        return await self.run(ServiceType.STREAM_TEXT, **kwargs)

    async def generate_object(
        self,
        *,
        object_name: Optional[str] = DEFAULT_OBJECT_NAME,
        max_retries: int = DEFAULT_OBJECT_MAX_RETRIES,
        **kwargs: Any,
    ) -> DispatchResult:
        """Generate a structured object.

        ``max_retries`` is forwarded to the provider as a call option; the
        dispatch retry bound comes from ``retry_policy``.
        """
        return await self.run(
            ServiceType.GENERATE_OBJECT,
            object_name=object_name or DEFAULT_OBJECT_NAME,
            max_retries=max_retries,
            **kwargs,
        )

    async def stream_object(self, *, schema: Any = None, **kwargs: Any) -> DispatchResult:
        if not schema:
            raise CallerInputError("stream_object_service requires a schema parameter")
        return await self.run(ServiceType.STREAM_OBJECT, schema=schema, **kwargs)

    # ── Orchestration ──────────────────────────────────────────────────

    async def run(
        self,
        service_type: ServiceType,
        *,
        role: str,
        prompt: Optional[str] = None,
        session: Any = None,
        project_root: Optional[PathLike] = None,
        system_prompt: Optional[str] = None,
        schema: Any = None,
        object_name: Optional[str] = None,
        command_name: Optional[str] = None,
        output_type: str = "cli",
        retry_policy: Optional[RetryPolicy] = None,
        **call_options: Any,
    ) -> DispatchResult:
        """Dispatch one request across the failover sequence for ``role``.

        Raises:
            CallerInputError: The prompt is missing
            CapabilityError: generate_object hit a model without tool-use support
            AIServiceError: Every role in the sequence failed
        """
        if not prompt:
            raise CallerInputError("User prompt content is missing.")

        effective_root = Path(project_root) if project_root else find_project_root()
        config = self.config_for(effective_root)
        resolver = RoleResolver(config, self.registry)
        policy = retry_policy or self.retry_policy

        if config.debug:
            logger.info(
                f"{service_type.value}_service called (role: {role}, command: {command_name}, "
                f"output: {output_type}, project_root: {effective_root})"
            )

        sequence = role_sequence(role)
        first_skip_error: Optional[ConfigurationError] = None
        last_failure: Optional[NormalizedError] = None

        for current_role in sequence:
            logger.debug(f"New AI service call with role: {current_role}")
            try:
                call = self._prepare_call(
                    resolver,
                    config,
                    service_type,
                    current_role,
                    session=session,
                    project_root=effective_root,
                    system_prompt=system_prompt,
                    prompt=prompt,
                    schema=schema,
                    object_name=object_name,
                    call_options=call_options,
                )
            except ConfigurationError as exc:
                logger.warning(f"Skipping role '{current_role}': {exc.message}")
                first_skip_error = first_skip_error or exc
                continue
            except Exception as exc:  # noqa: BLE001
                last_failure = normalize_error(exc)
                role_config = config.get_role(current_role)
                provider_label = role_config.provider if role_config else None
                logger.error(
                    f"Failed to prepare call for role {current_role} "
                    f"(Provider: {provider_label}): {last_failure.message}",
                    exc_info=config.debug,
                )
                continue

            try:
                response = await call_with_retries(
                    call.provider,
                    service_type,
                    call.params,
                    provider_name=call.provider_name,
                    model_id=call.model_id,
                    role=current_role,
                    policy=policy,
                    sleep_func=self._sleep_func,
                    debug=config.debug,
                )
            except Exception as exc:  # noqa: BLE001
                last_failure = normalize_error(exc)
                self._log_failure(
                    exc,
                    last_failure,
                    service_type=service_type,
                    role=current_role,
                    provider_name=call.provider_name,
                    model_id=call.model_id,
                    debug=config.debug,
                )
                if (
                    service_type == ServiceType.GENERATE_OBJECT
                    and last_failure.kind == ErrorKind.CAPABILITY
                ):
                    message = (
                        f"Model '{call.model_id}' via provider '{call.provider_name}' does not "
                        "support the 'tool use' required by generate_object_service. Please "
                        "configure a model that supports tool/function calling for the "
                        f"'{current_role}' role, or use generate_text_service if structured "
                        "output is not strictly required."
                    )
                    logger.error(f"[Tool Support Error] {message}")
                    raise CapabilityError(
                        message,
                        role=current_role,
                        provider=call.provider_name,
                        model_id=call.model_id,
                    ) from exc
                continue

            telemetry = await self._record_telemetry(
                config,
                response,
                command_name=command_name,
                provider_name=call.provider_name,
                model_id=call.model_id,
                output_type=output_type,
            )
            return DispatchResult(
                main_result=_project(service_type, response),
                telemetry_data=telemetry,
                tag_info=self._tag_info(effective_root),
                provider_name=call.provider_name,
                model_id=call.model_id,
            )

        logger.error(f"All roles in the sequence [{', '.join(sequence)}] failed.")
        if last_failure is not None:
            message = last_failure.message
        elif first_skip_error is not None:
            message = first_skip_error.message
        else:
            message = ALL_ROLES_FAILED_MESSAGE
        raise AIServiceError(message, roles=sequence)

    def _prepare_call(
        self,
        resolver: RoleResolver,
        config: DispatchConfig,
        service_type: ServiceType,
        role: str,
        *,
        session: Any,
        project_root: Optional[Path],
        system_prompt: Optional[str],
        prompt: str,
        schema: Any,
        object_name: Optional[str],
        call_options: Dict[str, Any],
    ) -> _PreparedCall:
        """Resolve everything needed for one role attempt.

        Raises:
            ConfigurationError: The role cannot be attempted
        """
        role_config = resolver.resolve_role_configuration(role, project_root)
        if role_config is None:
            raise ConfigurationError(f"Unknown AI role specified: {role}", role=role)

        provider_name, model_id = role_config.provider, role_config.model_id
        if not role_config.is_complete:
            raise ConfigurationError(
                f"Configuration missing for role '{role}'. Provider: {provider_name}, Model: {model_id}",
                role=role,
                provider=provider_name,
            )

        provider = self.registry.get_provider(provider_name)
        if provider is None:
            raise ConfigurationError(
                f"Unsupported provider configured: {provider_name}",
                role=role,
                provider=provider_name,
            )

        if resolver.requires_api_key(provider_name) and not resolver.is_api_key_set(
            provider_name, session, project_root
        ):
            raise ConfigurationError(
                f"API key for provider '{provider_name}' (role: {role}) is not set.",
                role=role,
                provider=provider_name,
            )

        base_url = resolver.resolve_base_url(role, provider_name, project_root)
        parameters = resolver.resolve_parameters(role, project_root)
        api_key = resolver.resolve_api_key(provider_name, session, project_root)
        extra = resolver.resolve_provider_specific_config(provider_name, project_root, session)
        extra.update(call_options)

        params = CallParameters(
            model_id=model_id,
            messages=_build_messages(system_prompt, prompt, config.response_language),
            max_tokens=parameters["max_tokens"],
            temperature=parameters["temperature"],
            api_key=api_key,
            base_url=base_url,
            schema=schema if service_type.is_object else None,
            object_name=object_name if service_type.is_object else None,
            extra=extra,
        )
        return _PreparedCall(
            provider=provider,
            provider_name=provider_name,
            model_id=model_id,
            params=params,
        )

    # ── Success helpers ────────────────────────────────────────────────

    async def _record_telemetry(
        self,
        config: DispatchConfig,
        response: ProviderResponse,
        *,
        command_name: Optional[str],
        provider_name: str,
        model_id: str,
        output_type: str,
    ) -> Optional[TelemetryRecord]:
        if not config.user_id:
            return None
        if response.usage is None:
            logger.warning(
                f"Cannot log telemetry for {command_name} ({provider_name}/{model_id}): "
                "AI result missing 'usage' data. (May be expected for streams)"
            )
            return None
        try:
            input_tokens = response.usage.input_tokens
            output_tokens = response.usage.output_tokens
        except AttributeError as e:
            logger.error(
                f"Failed to log AI usage telemetry for {provider_name}/{model_id}: "
                f"unreadable usage data ({e})"
            )
            return None
        return await record_usage(
            config.user_id,
            command_name,
            provider_name,
            model_id,
            input_tokens,
            output_tokens,
            output_type,
            cost_table=self._cost_table,
            debug=config.debug,
        )

    def _tag_info(self, project_root: Optional[Path]) -> TagInfo:
        try:
            return self._tag_provider(project_root)
        except Exception as e:  # noqa: BLE001
            logger.debug(f"Error getting tag information: {e}")
            return TagInfo()

    # ── Failure diagnostics ────────────────────────────────────────────

    def _log_failure(
        self,
        error: Exception,
        normalized: NormalizedError,
        *,
        service_type: ServiceType,
        role: str,
        provider_name: str,
        model_id: str,
        debug: bool,
    ) -> None:
        message = normalized.message
        logger.error(
            f"Service call failed for role {role} (Provider: {provider_name}, Model: {model_id}): {message}"
        )
        if debug:
            logger.debug(
                f"Error details: type={type(error).__name__} provider={provider_name} "
                f"model={model_id} service={service_type.value} role={role}",
                exc_info=error,
            )

        if provider_name.lower() == CLI_PROVIDER:
            self._log_cli_diagnostics(error, message)

        if is_type_check_error(error):
            logger.error(
                f"[Type Check Error] Type checking error in provider '{provider_name}' "
                f"(role: {role}, model: {model_id}): {error}"
            )
            logger.info(
                f"[Type Check Error] Diagnostics: Provider: {provider_name} | Error: {error} | "
                "Remediation: Ensure the provider module exports its classes, install the "
                "matching package version, and reinitialize with correct config"
            )

        if is_auth_error(message):
            logger.error(
                f"[Authentication Error] Provider '{provider_name}' authentication failed. "
                "Please check your API key configuration."
            )

    @staticmethod
    def _log_cli_diagnostics(error: Exception, message: str) -> None:
        if is_cli_interface_error(message):
            logger.warning(
                "[Claude Code CLI Error] Detected Ink interface error. "
                "This is a known issue on Windows with Git Bash."
            )
            logger.info(
                "[Claude Code CLI Error] Solutions: 1) Use PowerShell instead of Git Bash, "
                "2) Set FORCE_COLOR=0 CI=true environment variables"
            )
        elif CLAUDE_CODE_EXIT_PATTERN in str(error):
            logger.error(f"[Claude Code API Error] {message}")
            data = getattr(error, "data", None) or {}
            for key, label in (("stderr", "Raw stderr"), ("exitCode", "Exit code"), ("code", "Error code")):
                if data.get(key):
                    logger.debug(f"[Claude Code API Error] {label}: {data[key]}")


# ── Module-level services ──────────────────────────────────────────────

_dispatcher: Optional[AIServiceDispatcher] = None


def get_dispatcher() -> AIServiceDispatcher:
    """Get the global dispatcher (built with the default registry on first call)."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = AIServiceDispatcher()
    return _dispatcher


def set_dispatcher(dispatcher: AIServiceDispatcher) -> None:
    global _dispatcher
    _dispatcher = dispatcher


def reset_dispatcher() -> None:
    """Reset the global dispatcher to None. Useful for testing."""
    global _dispatcher
    _dispatcher = None


async def generate_text_service(**kwargs: Any) -> DispatchResult:
    """Generate text for ``role`` with failover. See :meth:`AIServiceDispatcher.run`."""
    return await get_dispatcher().generate_text(**kwargs)


async def stream_text_service(**kwargs: Any) -> DispatchResult:
    """Stream text for ``role``; ``main_result.stream`` yields chunks."""
    return await get_dispatcher().stream_text(**kwargs)


async def generate_object_service(**kwargs: Any) -> DispatchResult:
    """Generate a structured object; ``object_name`` defaults to ``generated_object``."""
    return await get_dispatcher().generate_object(**kwargs)


async def stream_object_service(**kwargs: Any) -> DispatchResult:
    """Stream a structured object. Raises CallerInputError without ``schema``."""
    return await get_dispatcher().stream_object(**kwargs)
