"""
Provider abstractions for ai-dispatch.

This package defines the AIProvider contract, the built-in adapters and the
registry that resolves a provider name to an instance.

Example usage:
    from ai_dispatch.core.providers import (
        CallParameters,
        ChatMessage,
        ChatRole,
        ServiceType,
        build_default_registry,
    )

    registry = build_default_registry()
    provider = registry.get_provider("openai")
    params = CallParameters(
        model_id="gpt-4o",
        messages=(ChatMessage(ChatRole.USER, "Hello"),),
    )
    response = await provider.invoke(ServiceType.GENERATE_TEXT, params)
"""

from ai_dispatch.core.providers.base import (
    # Enums
    ServiceType,
    ChatRole,
    # Request/Response dataclasses
    ChatMessage,
    CallParameters,
    ProviderResponse,
    TokenUsage,
    # ABC
    AIProvider,
)
from ai_dispatch.core.providers.claude_code import ClaudeCodeProvider
from ai_dispatch.core.providers.openai_compatible import (
    OpenAICompatibleProvider,
    create_openai_compatible_providers,
)
from ai_dispatch.core.providers.registry import (
    ProviderRegistry,
    build_default_registry,
)

__all__ = [
    # Enums
    "ServiceType",
    "ChatRole",
    # Request/Response dataclasses
    "ChatMessage",
    "CallParameters",
    "ProviderResponse",
    "TokenUsage",
    # ABC
    "AIProvider",
    # Adapters
    "ClaudeCodeProvider",
    "OpenAICompatibleProvider",
    "create_openai_compatible_providers",
    # Registry
    "ProviderRegistry",
    "build_default_registry",
]
