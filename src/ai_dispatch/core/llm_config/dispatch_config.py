"""Role-to-model dispatch configuration.

Parses the ``[models.<role>]`` and ``[global]`` sections of an ai-dispatch
TOML file, with ``AI_DISPATCH_*`` environment variable overrides.

Example TOML::

    [models.main]
    provider = "claude-code"
    model_id = "sonnet"
    max_tokens = 64000
    temperature = 0.2

    [models.research]
    provider = "perplexity"
    model_id = "sonar-pro"

    [global]
    debug = false
    response_language = "English"
    ollama_base_url = "http://localhost:11434/v1"
"""

import logging
import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from ai_dispatch.core.llm_config._paths import _default_config_search_paths

logger = logging.getLogger(__name__)

ROLE_NAMES = ("main", "research", "fallback")

DEFAULT_PROVIDERS_WITHOUT_API_KEYS = [
    "ollama",
    "bedrock",
    "claude-code",
    "gemini-cli",
    "mcp",
]

DEFAULT_USER_ID = "local"

_TRUE_VALUES = ("true", "1", "yes")


def _first_present(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


@dataclass
class RoleModelConfig:
    """Provider/model mapping and generation parameters for one role.

    Attributes:
        provider: Provider name (registry key)
        model_id: Model identifier passed to the provider
        max_tokens: Maximum output tokens
        temperature: Sampling temperature
        base_url: Role-specific endpoint override
    """

    provider: Optional[str] = None
    model_id: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    base_url: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.provider and self.model_id)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RoleModelConfig":
        """Create a RoleModelConfig from a ``[models.<role>]`` table.

        Both snake_case and the camelCase keys used by older config files
        (``modelId``, ``maxTokens``, ``baseURL``) are accepted.
        """
        config = cls()

        if (provider := _first_present(data, "provider")) is not None:
            config.provider = str(provider)
        if (model_id := _first_present(data, "model_id", "modelId", "model")) is not None:
            config.model_id = str(model_id)
        if (max_tokens := _first_present(data, "max_tokens", "maxTokens")) is not None:
            config.max_tokens = int(max_tokens)
        if (temperature := _first_present(data, "temperature")) is not None:
            config.temperature = float(temperature)
        if (base_url := _first_present(data, "base_url", "baseURL", "baseUrl")) is not None:
            config.base_url = str(base_url)

        return config


def _default_roles() -> Dict[str, RoleModelConfig]:
    return {
        "main": RoleModelConfig(
            provider="claude-code", model_id="sonnet", max_tokens=64000, temperature=0.2
        ),
        "research": RoleModelConfig(
            provider="perplexity", model_id="sonar-pro", max_tokens=8700, temperature=0.1
        ),
        "fallback": RoleModelConfig(
            provider="openai", model_id="gpt-4o", max_tokens=16384, temperature=0.2
        ),
    }


@dataclass
class DispatchConfig:
    """Configuration consumed by the dispatch layer.

    Attributes:
        roles: Role name -> RoleModelConfig
        debug: Emit per-attempt tracing at INFO level
        log_level: Root log level used by the CLI
        response_language: Language directive appended to every system prompt
        user_id: Identifier recorded in telemetry; an empty value disables recording
        azure_base_url: Provider-global endpoint for ``azure``
        ollama_base_url: Provider-global endpoint for ``ollama``
        bedrock_base_url: Provider-global endpoint for ``bedrock``
        vertex_project_id: Google Cloud project for ``vertex``
        vertex_location: Google Cloud region for ``vertex``
        providers_without_api_keys: Providers allowed to run without a key
    """

    roles: Dict[str, RoleModelConfig] = field(default_factory=_default_roles)
    debug: bool = False
    log_level: str = "INFO"
    response_language: str = "English"
    user_id: Optional[str] = DEFAULT_USER_ID
    azure_base_url: Optional[str] = None
    ollama_base_url: Optional[str] = None
    bedrock_base_url: Optional[str] = None
    vertex_project_id: Optional[str] = None
    vertex_location: Optional[str] = None
    providers_without_api_keys: List[str] = field(
        default_factory=lambda: list(DEFAULT_PROVIDERS_WITHOUT_API_KEYS)
    )

    def get_role(self, role: str) -> Optional[RoleModelConfig]:
        """Return the configuration for ``role``, or None if not configured."""
        return self.roles.get(role)

    def get_provider_base_url(self, provider: str) -> Optional[str]:
        """Return the provider-global base URL for providers that support one."""
        return {
            "azure": self.azure_base_url,
            "ollama": self.ollama_base_url,
            "bedrock": self.bedrock_base_url,
        }.get(provider.lower())

    def validate(self) -> None:
        """Validate the dispatch configuration.

        Raises:
            ValueError: If configuration is invalid
        """
        errors = []
        for role, role_config in self.roles.items():
            if role not in ROLE_NAMES:
                errors.append(f"models.{role}: unknown role (expected one of {', '.join(ROLE_NAMES)})")
            if role_config.max_tokens is not None and role_config.max_tokens <= 0:
                errors.append(f"models.{role}: max_tokens must be positive, got {role_config.max_tokens}")
            if role_config.temperature is not None and not 0 <= role_config.temperature <= 2:
                errors.append(
                    f"models.{role}: temperature must be between 0 and 2, got {role_config.temperature}"
                )
        if errors:
            raise ValueError("Invalid dispatch configuration:\n" + "\n".join(errors))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DispatchConfig":
        """Create DispatchConfig from a parsed TOML document.

        Roles present in ``[models]`` replace the defaults for that role;
        roles absent from the file keep their defaults.
        """
        config = cls()

        models = data.get("models", {})
        if isinstance(models, dict):
            for role, role_data in models.items():
                if isinstance(role_data, dict):
                    config.roles[str(role)] = RoleModelConfig.from_dict(role_data)
                else:
                    logger.warning(
                        f"Invalid model config format for role '{role}' (expected dict): {type(role_data)}"
                    )
        else:
            logger.warning(f"Invalid models format (expected dict): {type(models)}")

        global_data = data.get("global", {})
        if not isinstance(global_data, dict):
            logger.warning(f"Invalid global format (expected dict): {type(global_data)}")
            return config

        if "debug" in global_data:
            config.debug = bool(global_data["debug"])
        if "log_level" in global_data:
            config.log_level = str(global_data["log_level"]).upper()
        if "response_language" in global_data:
            config.response_language = str(global_data["response_language"])
        if "user_id" in global_data:
            config.user_id = str(global_data["user_id"]) or None
        for key in (
            "azure_base_url",
            "ollama_base_url",
            "bedrock_base_url",
            "vertex_project_id",
            "vertex_location",
        ):
            if key in global_data:
                setattr(config, key, str(global_data[key]))
        if "providers_without_api_keys" in global_data:
            providers = global_data["providers_without_api_keys"]
            if isinstance(providers, list):
                config.providers_without_api_keys = [str(p).lower() for p in providers]
            else:
                logger.warning(
                    f"Invalid providers_without_api_keys format (expected list): {type(providers)}"
                )

        return config

    @classmethod
    def from_toml(cls, path: Path) -> "DispatchConfig":
        """Load dispatch configuration from a TOML file.

        Raises:
            FileNotFoundError: If the config file doesn't exist
        """
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "rb") as f:
            data = tomllib.load(f)

        return cls.from_dict(data)

    @classmethod
    def from_env(cls) -> "DispatchConfig":
        """Create DispatchConfig from environment variables only.

        Environment variables:
            - AI_DISPATCH_DEBUG: Enable call tracing (true/false)
            - AI_DISPATCH_LOG_LEVEL: Root log level
            - AI_DISPATCH_RESPONSE_LANGUAGE: Response language directive
            - AI_DISPATCH_USER_ID: Telemetry user id
            - AI_DISPATCH_<ROLE>_PROVIDER / AI_DISPATCH_<ROLE>_MODEL: Role mapping
            - AI_DISPATCH_OLLAMA_BASE_URL, AI_DISPATCH_AZURE_BASE_URL,
              AI_DISPATCH_BEDROCK_BASE_URL: Provider-global endpoints
        """
        config = cls()
        config.apply_env_overrides()
        return config

    def apply_env_overrides(self) -> None:
        """Apply any explicitly set ``AI_DISPATCH_*`` variables in place."""
        if debug := os.environ.get("AI_DISPATCH_DEBUG"):
            self.debug = debug.lower() in _TRUE_VALUES
        if log_level := os.environ.get("AI_DISPATCH_LOG_LEVEL"):
            self.log_level = log_level.upper()
        if language := os.environ.get("AI_DISPATCH_RESPONSE_LANGUAGE"):
            self.response_language = language
        if user_id := os.environ.get("AI_DISPATCH_USER_ID"):
            self.user_id = user_id

        for role in ROLE_NAMES:
            prefix = f"AI_DISPATCH_{role.upper()}"
            provider = os.environ.get(f"{prefix}_PROVIDER")
            model_id = os.environ.get(f"{prefix}_MODEL")
            if provider or model_id:
                current = self.roles.get(role, RoleModelConfig())
                self.roles[role] = replace(
                    current,
                    provider=provider or current.provider,
                    model_id=model_id or current.model_id,
                )

        for name in ("ollama", "azure", "bedrock"):
            if base_url := os.environ.get(f"AI_DISPATCH_{name.upper()}_BASE_URL"):
                setattr(self, f"{name}_base_url", base_url)


def load_dispatch_config(
    project_root: Optional[Path] = None,
    config_file: Optional[Path] = None,
    use_env_fallback: bool = True,
) -> DispatchConfig:
    """Load dispatch configuration from TOML file with environment overrides.

    Priority (highest to lowest):
    1. Explicitly set ``AI_DISPATCH_*`` environment variables
    2. TOML config file (if provided or found at default locations)
    3. Default values

    Args:
        project_root: Project directory searched for project-level config
        config_file: Optional path to a TOML config file
        use_env_fallback: Whether to apply environment variable overrides

    Returns:
        DispatchConfig instance with merged settings
    """
    config = DispatchConfig()

    if config_file and config_file.exists():
        try:
            config = DispatchConfig.from_toml(config_file)
            logger.debug(f"Loaded dispatch config from {config_file}")
        except Exception as e:  # noqa: BLE001
            logger.warning(f"Failed to load dispatch config from {config_file}: {e}")
    else:
        # Lowest to highest priority, last match wins
        for path in _default_config_search_paths(project_root):
            if path.exists():
                try:
                    config = DispatchConfig.from_toml(path)
                    logger.debug(f"Loaded dispatch config from {path}")
                except Exception as e:  # noqa: BLE001
                    logger.debug(f"Failed to load from {path}: {e}")

    if use_env_fallback:
        config.apply_env_overrides()

    return config


# Global dispatch configuration instance
_dispatch_config: Optional[DispatchConfig] = None


def get_dispatch_config() -> DispatchConfig:
    """Get the global dispatch configuration instance.

    Returns:
        DispatchConfig instance (loaded from file/env on first call)
    """
    global _dispatch_config
    if _dispatch_config is None:
        _dispatch_config = load_dispatch_config()
    return _dispatch_config


def set_dispatch_config(config: DispatchConfig) -> None:
    """Set the global dispatch configuration instance."""
    global _dispatch_config
    _dispatch_config = config


def reset_dispatch_config() -> None:
    """Reset the global dispatch configuration to None.

    Useful for testing or reloading configuration.
    """
    global _dispatch_config
    _dispatch_config = None
