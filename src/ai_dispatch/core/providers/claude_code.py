"""Claude Code CLI provider.

Bridges the local ``claude`` binary to the AIProvider contract: command
construction, subprocess execution off the event loop, JSON output parsing
and token usage normalization. Non-zero exits raise
:class:`~ai_dispatch.core.errors.CLIProcessError` carrying the exit code and
stderr so the error normalizer can attach exit-code specific guidance.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import subprocess
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence

from ai_dispatch.core.errors import (
    CLIProcessError,
    ProviderExecutionError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)

from .base import AIProvider, CallParameters, ProviderResponse, TokenUsage

logger = logging.getLogger(__name__)

DEFAULT_BINARY = "claude"
CUSTOM_BINARY_ENV = "CLAUDE_CODE_BINARY"
DEFAULT_TIMEOUT_SECONDS = 360
DEFAULT_MODEL = "sonnet"

# Text generation never needs to touch the workspace
DISALLOWED_TOOLS = ["Write", "Edit", "MultiEdit", "NotebookEdit", "Bash"]

# Ink-based terminal rendering fails without a TTY unless color/CI are forced off
HEADLESS_ENV = {"FORCE_COLOR": "0", "CI": "true"}

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?```$", re.DOTALL)


# ── Runner protocol ────────────────────────────────────────────────────────

class RunnerProtocol(Protocol):
    """Callable signature used for executing Claude Code CLI commands."""

    def __call__(
        self,
        command: Sequence[str],
        *,
        timeout: Optional[int] = None,
        env: Optional[Dict[str, str]] = None,
        input_data: Optional[str] = None,
    ) -> subprocess.CompletedProcess[str]:
        raise NotImplementedError


def default_runner(
    command: Sequence[str],
    *,
    timeout: Optional[int] = None,
    env: Optional[Dict[str, str]] = None,
    input_data: Optional[str] = None,
) -> subprocess.CompletedProcess[str]:
    """Invoke the Claude Code CLI binary via subprocess."""
    return subprocess.run(  # noqa: S603,S607 - intentional CLI invocation
        list(command),
        capture_output=True,
        text=True,
        input=input_data,
        timeout=timeout,
        env=env,
        check=False,
    )


def _object_instructions(schema: Any, object_name: Optional[str]) -> str:
    if hasattr(schema, "model_json_schema"):
        schema = schema.model_json_schema()
    return (
        f"Respond only with a JSON object named '{object_name or 'generated_object'}' "
        f"that validates against this JSON schema, with no surrounding prose:\n"
        f"{json.dumps(schema, indent=2)}"
    )


def _strip_code_fence(text: str) -> str:
    match = _CODE_FENCE_RE.match(text.strip())
    return match.group(1).strip() if match else text.strip()


class ClaudeCodeProvider(AIProvider):
    """AIProvider backed by the Claude Code CLI.

    The CLI authenticates itself (``claude auth``), so an API key is optional.
    Streaming services run the CLI to completion and yield the result as a
    single chunk.
    """

    name = "claude-code"

    def __init__(
        self,
        *,
        binary: Optional[str] = None,
        runner: Optional[RunnerProtocol] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
    ):
        self._runner = runner or default_runner
        self._binary = binary or os.environ.get(CUSTOM_BINARY_ENV, DEFAULT_BINARY)
        self._env = env
        self._timeout = timeout or DEFAULT_TIMEOUT_SECONDS

    def get_required_api_key_name(self) -> Optional[str]:
        return "CLAUDE_CODE_API_KEY"

    def is_required_api_key(self) -> bool:
        return False

    # ── Command construction ───────────────────────────────────────────

    def _build_command(self, params: CallParameters, system_prompt: Optional[str]) -> List[str]:
        command = [self._binary, "--print", "--output-format", "json"]
        command.extend(["--disallowed-tools"] + DISALLOWED_TOOLS)
        if system_prompt:
            command.extend(["--system-prompt", system_prompt])
        command.extend(["--model", params.model_id or DEFAULT_MODEL])
        return command

    def _build_env(self, params: CallParameters) -> Dict[str, str]:
        env = dict(self._env) if self._env is not None else dict(os.environ)
        env.update(HEADLESS_ENV)
        if params.api_key:
            env["ANTHROPIC_API_KEY"] = params.api_key
        return env

    # ── Subprocess execution ───────────────────────────────────────────

    def _run(
        self,
        command: Sequence[str],
        env: Dict[str, str],
        input_data: str,
    ) -> subprocess.CompletedProcess[str]:
        try:
            return self._runner(
                command,
                timeout=int(self._timeout),
                env=env,
                input_data=input_data,
            )
        except FileNotFoundError as exc:
            raise ProviderUnavailableError(
                f"Claude Code CLI '{self._binary}' is not available on PATH.",
                provider=self.name,
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise ProviderTimeoutError(
                f"Claude Code CLI timeout after {exc.timeout} seconds",
                provider=self.name,
                elapsed=float(exc.timeout) if exc.timeout else None,
                timeout=float(exc.timeout) if exc.timeout else None,
            ) from exc

    # ── Output parsing ─────────────────────────────────────────────────

    def _parse_output(self, raw: str) -> Dict[str, Any]:
        text = raw.strip()
        if not text:
            raise ProviderExecutionError(
                "Claude Code CLI returned empty output.", provider=self.name
            )
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            logger.debug(f"Claude Code CLI JSON parse error: {exc}")
            raise ProviderExecutionError(
                "Claude Code CLI returned invalid JSON response", provider=self.name
            ) from exc

    @staticmethod
    def _extract_usage(payload: Dict[str, Any]) -> Optional[TokenUsage]:
        usage = payload.get("usage")
        if not usage:
            return None
        return TokenUsage(
            input_tokens=int(usage.get("input_tokens") or 0),
            output_tokens=int(usage.get("output_tokens") or 0),
        )

    @staticmethod
    def _extract_error_from_json(stdout: str) -> Optional[str]:
        if not stdout:
            return None
        try:
            payload = json.loads(stdout.strip())
        except json.JSONDecodeError:
            return None
        if not isinstance(payload, dict):
            return None
        if payload.get("is_error") and payload.get("result"):
            return str(payload["result"])
        error = payload.get("error")
        if isinstance(error, dict):
            return error.get("message") or str(error)
        return str(error) if error else None

    # ── Main execution ─────────────────────────────────────────────────

    async def _execute(self, params: CallParameters, *, as_object: bool) -> ProviderResponse:
        system_prompt = params.system_prompt
        if as_object:
            instructions = _object_instructions(params.schema, params.object_name)
            system_prompt = f"{system_prompt}\n\n{instructions}" if system_prompt else instructions

        command = self._build_command(params, system_prompt)
        completed = await asyncio.to_thread(
            self._run, command, self._build_env(params), params.user_prompt
        )

        if completed.returncode != 0:
            stderr = (completed.stderr or "").strip()
            logger.debug(f"Claude Code CLI stderr: {stderr or 'no stderr'}")
            json_error = self._extract_error_from_json(completed.stdout)
            raise CLIProcessError(
                f"Claude Code process exited with code {completed.returncode}",
                provider=self.name,
                exit_code=completed.returncode,
                stderr=stderr or (json_error or ""),
            )

        payload = self._parse_output(completed.stdout)
        if payload.get("is_error"):
            raise ProviderExecutionError(
                str(payload.get("result") or "Claude Code CLI reported an error"),
                provider=self.name,
                data=payload,
            )
        content = str(payload.get("result") or payload.get("content") or "").strip()
        response = ProviderResponse(text=content, usage=self._extract_usage(payload), raw=payload)

        if as_object:
            try:
                data = json.loads(_strip_code_fence(content))
            except json.JSONDecodeError as exc:
                raise ProviderExecutionError(
                    f"Claude Code CLI returned invalid JSON for object "
                    f"'{params.object_name or 'generated_object'}'",
                    provider=self.name,
                ) from exc
            if hasattr(params.schema, "model_validate"):
                data = params.schema.model_validate(data)
            response.object = data
        return response

    @staticmethod
    async def _single_chunk(chunk: Any) -> AsyncIterator[Any]:
        yield chunk

    async def generate_text(self, params: CallParameters) -> ProviderResponse:
        return await self._execute(params, as_object=False)

    async def stream_text(self, params: CallParameters) -> ProviderResponse:
        response = await self._execute(params, as_object=False)
        response.stream = self._single_chunk(response.text)
        return response

    async def generate_object(self, params: CallParameters) -> ProviderResponse:
        return await self._execute(params, as_object=True)

    async def stream_object(self, params: CallParameters) -> ProviderResponse:
        response = await self._execute(params, as_object=True)
        response.stream = self._single_chunk(response.object)
        return response
