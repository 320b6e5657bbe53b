"""Role resolution.

Translates a logical role (main / research / fallback) into the concrete
provider, model, credential, endpoint and generation parameters for one
dispatch attempt.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ai_dispatch.core.credentials import resolve_env_variable
from ai_dispatch.core.errors import ConfigurationError
from ai_dispatch.core.llm_config import DispatchConfig
from ai_dispatch.core.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

DEFAULT_VERTEX_LOCATION = "us-central1"

_PLACEHOLDER_PATTERN = re.compile(r"(^YOUR_.*_HERE$)|(KEY_HERE$)", re.IGNORECASE)


class Role(str, Enum):
    """Logical calling context mapped to a provider/model by configuration."""

    MAIN = "main"
    RESEARCH = "research"
    FALLBACK = "fallback"


_ROLE_SEQUENCES: Dict[Role, List[Role]] = {
    Role.MAIN: [Role.MAIN, Role.FALLBACK, Role.RESEARCH],
    Role.RESEARCH: [Role.RESEARCH, Role.FALLBACK, Role.MAIN],
    Role.FALLBACK: [Role.FALLBACK, Role.MAIN, Role.RESEARCH],
}


def role_sequence(initial_role: str) -> List[str]:
    """Return the failover sequence for ``initial_role``.

    Unknown roles fall back to the main sequence with a warning.
    """
    try:
        role = Role(initial_role)
    except ValueError:
        logger.warning(f"Unknown initial role: {initial_role}. Defaulting to main -> fallback -> research sequence.")
        role = Role.MAIN
    return [r.value for r in _ROLE_SEQUENCES[role]]


@dataclass(frozen=True)
class RoleConfiguration:
    """Provider/model pair resolved for one role attempt."""

    provider: Optional[str]
    model_id: Optional[str]

    @property
    def is_complete(self) -> bool:
        return bool(self.provider and self.model_id)


class RoleResolver:
    """Resolves dispatch parameters for a role from configuration.

    Args:
        config: Dispatch configuration (role mapping and global settings)
        registry: Provider registry used for credential metadata
    """

    def __init__(self, config: DispatchConfig, registry: ProviderRegistry):
        self.config = config
        self.registry = registry

    def resolve_role_configuration(
        self, role: str, project_root: Optional[PathLike] = None
    ) -> Optional[RoleConfiguration]:
        """Return the provider/model pair for ``role``, or None if the role is unknown."""
        if role not in {r.value for r in Role}:
            logger.error(f"Unknown AI role specified: {role}")
            return None
        role_config = self.config.get_role(role)
        if role_config is None:
            return RoleConfiguration(provider=None, model_id=None)
        return RoleConfiguration(provider=role_config.provider, model_id=role_config.model_id)

    def resolve_parameters(
        self, role: str, project_root: Optional[PathLike] = None
    ) -> Dict[str, Any]:
        """Return generation parameters (``max_tokens``, ``temperature``) for ``role``."""
        role_config = self.config.get_role(role)
        if role_config is None:
            return {"max_tokens": None, "temperature": None}
        return {"max_tokens": role_config.max_tokens, "temperature": role_config.temperature}

    def resolve_base_url(
        self, role: str, provider_name: str, project_root: Optional[PathLike] = None
    ) -> Optional[str]:
        """Role override first, then the provider-global default, else None."""
        role_config = self.config.get_role(role)
        if role_config is not None and role_config.base_url:
            return role_config.base_url
        base_url = self.config.get_provider_base_url(provider_name)
        if base_url:
            logger.debug(f"Using global {provider_name} base URL: {base_url}")
        return base_url

    def requires_api_key(self, provider_name: str) -> bool:
        """Return False for providers on the "without API keys" allow-list."""
        allowed = {p.lower() for p in self.config.providers_without_api_keys}
        return provider_name.lower() not in allowed

    def is_api_key_set(
        self,
        provider_name: str,
        session: Any = None,
        project_root: Optional[PathLike] = None,
    ) -> bool:
        """Return True if a usable (non-placeholder) key is available for the provider."""
        if not self.requires_api_key(provider_name):
            return True
        provider = self.registry.get_provider(provider_name)
        if provider is None:
            return False
        env_name = provider.get_required_api_key_name()
        if env_name is None or not provider.is_required_api_key():
            return True
        value = resolve_env_variable(env_name, session, project_root)
        return bool(value) and not _PLACEHOLDER_PATTERN.search(value.strip())

    def resolve_api_key(
        self,
        provider_name: str,
        session: Any = None,
        project_root: Optional[PathLike] = None,
    ) -> Optional[str]:
        """Resolve the credential for ``provider_name``.

        Returns:
            The key, or None for providers that declare no key or an optional one

        Raises:
            ConfigurationError: Unknown provider, or a required key is absent
        """
        provider = self.registry.get_provider(provider_name)
        if provider is None:
            raise ConfigurationError(
                f"Unknown provider '{provider_name}' for API key resolution.",
                provider=provider_name,
            )

        env_name = provider.get_required_api_key_name()
        if env_name is None:
            return None

        api_key = resolve_env_variable(env_name, session, project_root)
        if not provider.is_required_api_key():
            return api_key or None

        if not api_key:
            raise ConfigurationError(
                f"Required API key {env_name} for provider '{provider_name}' is not set "
                "in environment, session, or .env file.",
                provider=provider_name,
            )
        return api_key

    def resolve_provider_specific_config(
        self,
        provider_name: str,
        project_root: Optional[PathLike] = None,
        session: Any = None,
    ) -> Dict[str, Any]:
        """Return extra structured config for providers that need it (``vertex``), else ``{}``."""
        if provider_name.lower() != "vertex":
            return {}

        project_id = self.config.vertex_project_id or resolve_env_variable(
            "VERTEX_PROJECT_ID", session, project_root
        )
        location = (
            self.config.vertex_location
            or resolve_env_variable("VERTEX_LOCATION", session, project_root)
            or DEFAULT_VERTEX_LOCATION
        )
        credentials_path = resolve_env_variable(
            "GOOGLE_APPLICATION_CREDENTIALS", session, project_root
        )

        logger.debug(f"Using Vertex AI configuration: Project ID={project_id}, Location={location}")

        vertex_config: Dict[str, Any] = {"project_id": project_id, "location": location}
        if credentials_path:
            vertex_config["credentials"] = {"credentials_from_env": True}
        return vertex_config
