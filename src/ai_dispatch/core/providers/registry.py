"""Provider registry.

Two backing tables sit behind one lookup: the built-in providers shipped
with ai-dispatch, and providers registered at runtime (plugins, tests).
Lookup is case-insensitive and returns None for unknown names so callers
can treat a missing provider as a per-role failure.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional

import httpx

from .base import AIProvider
from .claude_code import ClaudeCodeProvider
from .openai_compatible import create_openai_compatible_providers

logger = logging.getLogger(__name__)


def _normalize(name: str) -> str:
    return name.strip().lower()


class ProviderRegistry:
    """Name → provider lookup over a static built-in table and a dynamic table.

    Example:
        registry = ProviderRegistry(builtin={"openai": OpenAIProvider()})
        registry.register("my-plugin", MyPluginProvider())
        provider = registry.get_provider("OpenAI")
    """

    def __init__(self, builtin: Optional[Mapping[str, AIProvider]] = None):
        self._builtin: Dict[str, AIProvider] = {
            _normalize(name): provider for name, provider in (builtin or {}).items()
        }
        self._registered: Dict[str, AIProvider] = {}

    def get_provider(self, name: Optional[str]) -> Optional[AIProvider]:
        """Return the provider for ``name``, or None if neither table has it."""
        if not name:
            return None
        key = _normalize(name)
        provider = self._builtin.get(key)
        if provider is not None:
            return provider
        provider = self._registered.get(key)
        if provider is not None:
            logger.debug(f"Provider '{key}' found in dynamic registry")
        return provider

    def has_provider(self, name: str) -> bool:
        return self.get_provider(name) is not None

    def register(self, name: str, provider: AIProvider, *, replace: bool = False) -> None:
        """Register a runtime provider.

        Raises:
            ValueError: If the name is already registered and ``replace`` is False
        """
        key = _normalize(name)
        if not key:
            raise ValueError("Provider name cannot be empty")
        if key in self._registered and not replace:
            raise ValueError(f"Provider '{key}' is already registered")
        if key in self._builtin:
            logger.warning(
                f"Registered provider '{key}' is shadowed by the built-in provider of the same name"
            )
        self._registered[key] = provider

    def unregister(self, name: str) -> bool:
        """Remove a runtime provider. Returns True if something was removed."""
        return self._registered.pop(_normalize(name), None) is not None

    def provider_names(self) -> List[str]:
        """Return all resolvable provider names, built-ins first."""
        names = sorted(self._builtin)
        names.extend(sorted(n for n in self._registered if n not in self._builtin))
        return names


def build_default_registry(
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProviderRegistry:
    """Construct a registry holding the built-in providers.

    Args:
        transport: Optional httpx transport shared by the HTTP-backed providers
    """
    builtin: Dict[str, AIProvider] = dict(create_openai_compatible_providers(transport))
    builtin["claude-code"] = ClaudeCodeProvider()
    return ProviderRegistry(builtin=builtin)
