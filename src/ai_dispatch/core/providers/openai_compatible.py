"""OpenAI-compatible chat completions provider.

One adapter serves every backend that speaks the ``/chat/completions``
protocol (OpenAI, OpenRouter, Groq, xAI, Perplexity, Ollama's ``/v1``
endpoint). Backend status codes are translated into the LLM error classes
so the retry executor can classify on ``status`` instead of message text.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

import httpx
from pydantic import BaseModel

from ai_dispatch.core.errors import (
    AuthenticationError,
    InvalidRequestError,
    LLMError,
    ModelNotFoundError,
    ProviderExecutionError,
    ProviderTimeoutError,
    RateLimitError,
)

from .base import AIProvider, CallParameters, ProviderResponse, TokenUsage

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0


def _json_schema_for(schema: Any) -> Dict[str, Any]:
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        return schema.model_json_schema()
    if isinstance(schema, dict):
        return schema
    raise InvalidRequestError(
        f"Unsupported schema type {type(schema).__name__}; "
        "expected a pydantic model class or a JSON schema dict",
        param="schema",
    )


def _validate_object(schema: Any, data: Any) -> Any:
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        return schema.model_validate(data)
    return data


def _parse_retry_after(response: httpx.Response) -> Optional[float]:
    retry_after = response.headers.get("Retry-After")
    if retry_after:
        try:
            return float(retry_after)
        except ValueError:
            pass
    return None


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    error_field = data.get("error") if isinstance(data, dict) else None
    if isinstance(error_field, dict):
        return str(error_field.get("message") or error_field)
    if isinstance(error_field, str):
        return error_field
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return response.text[:200]


class OpenAICompatibleProvider(AIProvider):
    """Provider backed by an OpenAI-compatible ``/chat/completions`` endpoint.

    Args:
        name: Provider name used in logs and errors
        default_base_url: Endpoint used when the call carries no ``base_url``
        api_key_env: Environment variable holding the API key (None if keyless)
        api_key_required: Whether an absent key should block the call
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests inject ``httpx.MockTransport``)
    """

    def __init__(
        self,
        name: str,
        *,
        default_base_url: str,
        api_key_env: Optional[str],
        api_key_required: bool = True,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.name = name
        self.default_base_url = default_base_url.rstrip("/")
        self._api_key_env = api_key_env
        self._api_key_required = api_key_required
        self._timeout = timeout
        self._transport = transport

    def get_required_api_key_name(self) -> Optional[str]:
        return self._api_key_env

    def is_required_api_key(self) -> bool:
        return self._api_key_required

    # ── Request construction ───────────────────────────────────────────

    def _client(self, params: CallParameters) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if params.api_key:
            headers["Authorization"] = f"Bearer {params.api_key}"
        return httpx.AsyncClient(
            base_url=(params.base_url or self.default_base_url).rstrip("/"),
            headers=headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    def _payload(self, params: CallParameters, *, stream: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": params.model_id,
            "messages": [m.to_dict() for m in params.messages],
        }
        if params.max_tokens is not None:
            payload["max_tokens"] = params.max_tokens
        if params.temperature is not None:
            payload["temperature"] = params.temperature
        if stream:
            payload["stream"] = True
        if params.schema is not None:
            payload["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": params.object_name or "generated_object",
                    "schema": _json_schema_for(params.schema),
                    "strict": False,
                },
            }
        return payload

    # ── Error translation ──────────────────────────────────────────────

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        message = _error_message(response)
        body = response.text
        if status in (401, 403):
            raise AuthenticationError(
                f"Authentication failed: {message}", provider=self.name, response_body=body
            )
        if status == 404:
            raise ModelNotFoundError(message, provider=self.name, response_body=body)
        if status == 429:
            raise RateLimitError(
                f"Rate limit exceeded: {message}",
                provider=self.name,
                retry_after=_parse_retry_after(response),
                response_body=body,
            )
        if status == 400:
            raise InvalidRequestError(message, provider=self.name, response_body=body)
        raise LLMError(
            f"{self.name} API error {status}: {message}",
            provider=self.name,
            retryable=status >= 500,
            status=status,
            response_body=body,
        )

    async def _post(self, params: CallParameters, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with self._client(params) as client:
                response = await client.post("/chat/completions", json=payload)
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(
                f"{self.name} request timeout after {self._timeout}s",
                provider=self.name,
                timeout=self._timeout,
            ) from exc
        except httpx.TransportError as exc:
            raise ProviderExecutionError(
                f"{self.name} network error: {exc}", provider=self.name
            ) from exc
        self._raise_for_status(response)
        return response.json()

    async def _open_stream(
        self, params: CallParameters, payload: Dict[str, Any]
    ) -> AsyncIterator[str]:
        client = self._client(params)
        try:
            request = client.build_request("POST", "/chat/completions", json=payload)
            response = await client.send(request, stream=True)
        except httpx.TimeoutException as exc:
            await client.aclose()
            raise ProviderTimeoutError(
                f"{self.name} request timeout after {self._timeout}s",
                provider=self.name,
                timeout=self._timeout,
            ) from exc
        except httpx.TransportError as exc:
            await client.aclose()
            raise ProviderExecutionError(
                f"{self.name} network error: {exc}", provider=self.name
            ) from exc

        if response.status_code >= 400:
            await response.aread()
            await response.aclose()
            await client.aclose()
            self._raise_for_status(response)

        return self._iter_deltas(client, response)

    async def _iter_deltas(
        self, client: httpx.AsyncClient, response: httpx.Response
    ) -> AsyncIterator[str]:
        try:
            async for line in response.aiter_lines():
                if not line.startswith("data:"):
                    continue
                data = line[len("data:"):].strip()
                if data == "[DONE]":
                    break
                try:
                    chunk = json.loads(data)
                except json.JSONDecodeError:
                    logger.debug(f"{self.name} skipped malformed stream chunk: {data[:80]}")
                    continue
                for choice in chunk.get("choices") or []:
                    delta = (choice.get("delta") or {}).get("content")
                    if delta:
                        yield delta
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(
                f"{self.name} stream timeout after {self._timeout}s",
                provider=self.name,
                timeout=self._timeout,
            ) from exc
        except httpx.TransportError as exc:
            raise ProviderExecutionError(
                f"{self.name} stream interrupted: {exc}", provider=self.name
            ) from exc
        finally:
            await response.aclose()
            await client.aclose()

    # ── Response parsing ───────────────────────────────────────────────

    @staticmethod
    def _extract_usage(payload: Dict[str, Any]) -> Optional[TokenUsage]:
        usage = payload.get("usage")
        if not usage:
            return None
        return TokenUsage(
            input_tokens=int(usage.get("prompt_tokens") or 0),
            output_tokens=int(usage.get("completion_tokens") or 0),
        )

    def _extract_content(self, payload: Dict[str, Any]) -> str:
        choices = payload.get("choices") or []
        if not choices:
            raise ProviderExecutionError(
                f"{self.name} returned no choices", provider=self.name, data=payload
            )
        return str((choices[0].get("message") or {}).get("content") or "")

    # ── Service methods ────────────────────────────────────────────────

    async def generate_text(self, params: CallParameters) -> ProviderResponse:
        payload = await self._post(params, self._payload(params))
        return ProviderResponse(
            text=self._extract_content(payload),
            usage=self._extract_usage(payload),
            raw=payload,
        )

    async def stream_text(self, params: CallParameters) -> ProviderResponse:
        stream = await self._open_stream(params, self._payload(params, stream=True))
        return ProviderResponse(stream=stream)

    async def generate_object(self, params: CallParameters) -> ProviderResponse:
        if params.schema is None:
            raise InvalidRequestError("generate_object requires a schema", param="schema")
        payload = await self._post(params, self._payload(params))
        content = self._extract_content(payload)
        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            raise ProviderExecutionError(
                f"{self.name} returned invalid JSON for object '{params.object_name}'",
                provider=self.name,
            ) from exc
        return ProviderResponse(
            object=_validate_object(params.schema, data),
            text=content,
            usage=self._extract_usage(payload),
            raw=payload,
        )

    async def stream_object(self, params: CallParameters) -> ProviderResponse:
        if params.schema is None:
            raise InvalidRequestError("stream_object requires a schema", param="schema")
        stream = await self._open_stream(params, self._payload(params, stream=True))
        return ProviderResponse(stream=stream)


def create_openai_compatible_providers(
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, OpenAICompatibleProvider]:
    """Build the built-in OpenAI-compatible providers keyed by name."""

    presets = {
        "openai": ("https://api.openai.com/v1", "OPENAI_API_KEY", True),
        "openrouter": ("https://openrouter.ai/api/v1", "OPENROUTER_API_KEY", True),
        "groq": ("https://api.groq.com/openai/v1", "GROQ_API_KEY", True),
        "xai": ("https://api.x.ai/v1", "XAI_API_KEY", True),
        "perplexity": ("https://api.perplexity.ai", "PERPLEXITY_API_KEY", True),
        "ollama": ("http://localhost:11434/v1", "OLLAMA_API_KEY", False),
    }
    return {
        name: OpenAICompatibleProvider(
            name,
            default_base_url=base_url,
            api_key_env=key_env,
            api_key_required=required,
            transport=transport,
        )
        for name, (base_url, key_env, required) in presets.items()
    }
