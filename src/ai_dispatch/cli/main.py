"""ai-dispatch CLI entry point.

Commands:
    generate   Generate text for a role with failover
    stream     Stream text for a role to stdout
    object     Generate a JSON object matching a JSON schema file
    roles      Show the resolved role -> provider/model mapping
    providers  List available providers and their credential variables
    cost       Compute the cost of a call from token counts
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click

from ai_dispatch.cli.logging import configure_logging, get_cli_logger
from ai_dispatch.cli.output import emit_error, emit_success
from ai_dispatch.core.dispatch import AIServiceDispatcher, DispatchResult
from ai_dispatch.core.error_normalizer import normalize_error
from ai_dispatch.core.errors import AIServiceError, CallerInputError, CapabilityError
from ai_dispatch.core.llm_config import DispatchConfig, load_dispatch_config
from ai_dispatch.core.providers.registry import ProviderRegistry, build_default_registry
from ai_dispatch.core.roles import Role, RoleResolver
from ai_dispatch.core.telemetry import calculate_cost, get_cost_table

logger = get_cli_logger()

ROLE_CHOICE = click.Choice([r.value for r in Role])


class CLIContext:
    """Per-invocation state shared by all commands."""

    def __init__(self, config: DispatchConfig, project_root: Optional[Path]):
        self.config = config
        self.project_root = project_root
        self._registry: Optional[ProviderRegistry] = None

    @property
    def registry(self) -> ProviderRegistry:
        if self._registry is None:
            self._registry = build_default_registry()
        return self._registry

    def dispatcher(self) -> AIServiceDispatcher:
        return AIServiceDispatcher(registry=self.registry, config=self.config)


def _run_service(coro) -> Any:
    try:
        return asyncio.run(coro)
    except CallerInputError as e:
        emit_error(e.message, code="VALIDATION_ERROR", error_type="validation")
    except CapabilityError as e:
        emit_error(
            e.message,
            code="CAPABILITY_ERROR",
            error_type="ai_provider",
            remediation="Configure a model that supports tool/function calling for this role",
            details={"role": e.role, "provider": e.provider, "model_id": e.model_id},
        )
    except AIServiceError as e:
        emit_error(
            e.message,
            code="AI_SERVICE_ERROR",
            error_type="ai_provider",
            remediation="Check provider credentials and role configuration with 'ai-dispatch roles'",
            details={"roles": e.roles},
        )


def _result_payload(result: DispatchResult) -> Dict[str, Any]:
    payload = result.to_dict()
    telemetry = payload.pop("telemetry_data")
    return {"payload": payload, "telemetry": telemetry}


@click.group()
@click.option(
    "--project-root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Project directory (config, .env and task store).",
)
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Explicit TOML config file.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(
    ctx: click.Context,
    project_root: Optional[Path],
    config_file: Optional[Path],
    verbose: bool,
) -> None:
    """Unified AI provider dispatch with role failover."""
    config = load_dispatch_config(project_root=project_root, config_file=config_file)
    configure_logging(config.log_level, verbose=verbose)
    ctx.obj = CLIContext(config, project_root)


def _service_options(func):
    func = click.option(
        "--command-name", default="cli", show_default=True, help="Command name recorded in telemetry."
    )(func)
    func = click.option("--system", "system_prompt", default=None, help="System prompt.")(func)
    func = click.option(
        "--role", type=ROLE_CHOICE, default="main", show_default=True, help="Initial role."
    )(func)
    return func


@cli.command("generate")
@click.argument("prompt")
@_service_options
@click.pass_obj
def generate_cmd(
    obj: CLIContext, prompt: str, role: str, system_prompt: Optional[str], command_name: str
) -> None:
    """Generate text for PROMPT."""
    result = _run_service(
        obj.dispatcher().generate_text(
            role=role,
            prompt=prompt,
            system_prompt=system_prompt,
            project_root=obj.project_root,
            command_name=command_name,
        )
    )
    out = _result_payload(result)
    emit_success(out["payload"], telemetry=out["telemetry"])


@cli.command("stream")
@click.argument("prompt")
@_service_options
@click.pass_obj
def stream_cmd(
    obj: CLIContext, prompt: str, role: str, system_prompt: Optional[str], command_name: str
) -> None:
    """Stream text for PROMPT to stdout as it arrives.

    Unlike the other commands the output is raw text, not a JSON envelope.
    A failure mid-stream ends the text with a newline and an error envelope.
    """

    async def _stream() -> Tuple[DispatchResult, Optional[Exception]]:
        result = await obj.dispatcher().stream_text(
            role=role,
            prompt=prompt,
            system_prompt=system_prompt,
            project_root=obj.project_root,
            command_name=command_name,
        )
        stream = result.main_result.stream
        try:
            if stream is not None:
                async for chunk in stream:
                    click.echo(chunk, nl=False)
        except Exception as e:  # noqa: BLE001
            return result, e
        finally:
            click.echo()
        return result, None

    result, stream_error = _run_service(_stream())
    if stream_error is not None:
        emit_error(
            normalize_error(stream_error).message,
            code="STREAM_ERROR",
            error_type="ai_provider",
            remediation="Retry the request or use 'ai-dispatch generate'",
            details={"provider": result.provider_name, "model_id": result.model_id},
        )
    logger.info(f"Streamed from {result.provider_name}/{result.model_id}")


@cli.command("object")
@click.argument("prompt")
@click.option(
    "--schema",
    "schema_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="JSON schema file the object must satisfy.",
)
@click.option("--object-name", default="generated_object", show_default=True)
@_service_options
@click.pass_obj
def object_cmd(
    obj: CLIContext,
    prompt: str,
    schema_file: Path,
    object_name: str,
    role: str,
    system_prompt: Optional[str],
    command_name: str,
) -> None:
    """Generate a JSON object for PROMPT."""
    try:
        schema = json.loads(schema_file.read_text(encoding="utf-8"))
    except ValueError as e:
        emit_error(
            f"Invalid JSON schema file: {e}",
            code="VALIDATION_ERROR",
            error_type="validation",
            details={"schema_file": str(schema_file)},
        )
    result = _run_service(
        obj.dispatcher().generate_object(
            role=role,
            prompt=prompt,
            schema=schema,
            object_name=object_name,
            system_prompt=system_prompt,
            project_root=obj.project_root,
            command_name=command_name,
        )
    )
    out = _result_payload(result)
    emit_success(out["payload"], telemetry=out["telemetry"])


@cli.command("roles")
@click.pass_obj
def roles_cmd(obj: CLIContext) -> None:
    """Show the provider/model mapping and key status for every role."""
    resolver = RoleResolver(obj.config, obj.registry)
    roles = []
    for role in Role:
        role_config = obj.config.get_role(role.value)
        provider = role_config.provider if role_config else None
        roles.append(
            {
                "role": role.value,
                "provider": provider,
                "model_id": role_config.model_id if role_config else None,
                "max_tokens": role_config.max_tokens if role_config else None,
                "temperature": role_config.temperature if role_config else None,
                "provider_available": bool(provider) and obj.registry.has_provider(provider),
                "api_key_set": bool(provider)
                and resolver.is_api_key_set(provider, project_root=obj.project_root),
            }
        )
    emit_success({"roles": roles, "response_language": obj.config.response_language})


@cli.command("providers")
@click.pass_obj
def providers_cmd(obj: CLIContext) -> None:
    """List resolvable providers."""
    providers = []
    for name in obj.registry.provider_names():
        provider = obj.registry.get_provider(name)
        providers.append(
            {
                "name": name,
                "api_key_env": provider.get_required_api_key_name(),
                "api_key_required": provider.is_required_api_key(),
            }
        )
    emit_success({"providers": providers, "count": len(providers)})


@cli.command("cost")
@click.argument("provider")
@click.argument("model_id")
@click.option("--input-tokens", type=int, default=0, show_default=True)
@click.option("--output-tokens", type=int, default=0, show_default=True)
def cost_cmd(provider: str, model_id: str, input_tokens: int, output_tokens: int) -> None:
    """Compute the cost of a call to PROVIDER/MODEL_ID."""
    cost = get_cost_table().get_cost(provider, model_id)
    emit_success(
        {
            "provider": provider,
            "model_id": model_id,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "input_cost_per_1m": cost.input_cost,
            "output_cost_per_1m": cost.output_cost,
            "total_cost": calculate_cost(
                input_tokens, output_tokens, cost.input_cost, cost.output_cost
            ),
            "currency": cost.currency,
        }
    )


if __name__ == "__main__":
    cli()
