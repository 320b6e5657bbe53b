"""
Base provider abstractions for ai-dispatch.

Defines the capability contract every AI backend implements and the
immutable request/response shapes exchanged with the dispatch layer.

Design principles:
- Frozen dataclasses for call parameters (built once per attempt, never mutated)
- Enum-based service types for method routing
- One abstract base class with four async service methods plus credential hints
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, Mapping, Optional, Tuple


class ServiceType(str, Enum):
    """
    Service methods a provider exposes.

    The value doubles as the provider method name, and determines how the
    raw provider response is projected into the caller-facing result.

    Values:
        GENERATE_TEXT: One-shot text completion (projects ``response.text``)
        STREAM_TEXT: Incremental text (projects the raw response)
        GENERATE_OBJECT: Structured output against a schema (projects ``response.object``)
        STREAM_OBJECT: Incremental structured output (projects the raw response)
    """

    GENERATE_TEXT = "generate_text"
    STREAM_TEXT = "stream_text"
    GENERATE_OBJECT = "generate_object"
    STREAM_OBJECT = "stream_object"

    @property
    def is_object(self) -> bool:
        return self in (ServiceType.GENERATE_OBJECT, ServiceType.STREAM_OBJECT)

    @property
    def is_stream(self) -> bool:
        return self in (ServiceType.STREAM_TEXT, ServiceType.STREAM_OBJECT)


class ChatRole(str, Enum):
    """Role of a message in a chat conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatMessage:
    """A single message sent to the provider."""

    role: ChatRole
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class TokenUsage:
    """Token usage reported by a provider for one call."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class CallParameters:
    """
    Parameters for a single provider invocation.

    Built fresh for every role attempt from the RoleConfiguration used for
    that attempt, so ``model_id`` can never leak across roles.

    Attributes:
        model_id: Model identifier for the provider
        messages: Ordered chat messages (system first, then user)
        max_tokens: Maximum output tokens
        temperature: Sampling temperature
        api_key: Resolved credential, or None for credential-less providers
        base_url: Endpoint override; None lets the provider use its default
        schema: Output schema (pydantic model class or JSON schema dict) for object services
        object_name: Name of the generated object/tool for object services
        extra: Provider-specific configuration and pass-through call options
    """

    model_id: str
    messages: Tuple[ChatMessage, ...]
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    schema: Any = None
    object_name: Optional[str] = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @property
    def system_prompt(self) -> Optional[str]:
        for message in self.messages:
            if message.role == ChatRole.SYSTEM:
                return message.content
        return None

    @property
    def user_prompt(self) -> str:
        return "\n\n".join(m.content for m in self.messages if m.role == ChatRole.USER)


@dataclass
class ProviderResponse:
    """
    Raw response returned by a provider service method.

    Attributes:
        text: Generated text (generate_text)
        object: Parsed structured output (generate_object)
        stream: Async iterator of chunks (stream_text / stream_object)
        usage: Token usage if the backend reported it
        raw: Provider-specific payload for debugging
    """

    text: Optional[str] = None
    object: Any = None
    stream: Optional[AsyncIterator[Any]] = None
    usage: Optional[TokenUsage] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class AIProvider(ABC):
    """
    Abstract base class for AI providers.

    Subclasses implement the four async service methods and declare which
    environment variable holds their credential.

    Attributes:
        name: Provider name used for registry lookup and logging
    """

    name: str = "base"

    @abstractmethod
    async def generate_text(self, params: CallParameters) -> ProviderResponse:
        """Generate a complete text response."""

    @abstractmethod
    async def stream_text(self, params: CallParameters) -> ProviderResponse:
        """Start a streaming text response; ``stream`` yields text chunks."""

    @abstractmethod
    async def generate_object(self, params: CallParameters) -> ProviderResponse:
        """Generate a structured object matching ``params.schema``."""

    @abstractmethod
    async def stream_object(self, params: CallParameters) -> ProviderResponse:
        """Start a streaming structured response; ``stream`` yields partial objects."""

    @abstractmethod
    def get_required_api_key_name(self) -> Optional[str]:
        """Return the environment variable holding the API key, or None if keyless."""

    def is_required_api_key(self) -> bool:
        """Return False if the provider can operate without the key being set."""
        return True

    async def invoke(self, service_type: ServiceType, params: CallParameters) -> ProviderResponse:
        """Call the service method matching ``service_type``."""
        method = getattr(self, service_type.value)
        return await method(params)
