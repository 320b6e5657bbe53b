"""
Dispatch configuration parsing for ai-dispatch.

Parses the [models.<role>] and [global] sections of ai-dispatch.toml.

Environment Variables (override TOML when set):
    - AI_DISPATCH_DEBUG: Per-attempt call tracing
    - AI_DISPATCH_LOG_LEVEL: Root log level for the CLI
    - AI_DISPATCH_RESPONSE_LANGUAGE: Language directive for system prompts
    - AI_DISPATCH_USER_ID: Telemetry user id
    - AI_DISPATCH_<ROLE>_PROVIDER / AI_DISPATCH_<ROLE>_MODEL: Role mapping
"""

# Re-export from sub-modules
from .dispatch_config import (
    DEFAULT_PROVIDERS_WITHOUT_API_KEYS,
    ROLE_NAMES,
    DispatchConfig,
    RoleModelConfig,
    load_dispatch_config,
    get_dispatch_config,
    set_dispatch_config,
    reset_dispatch_config,
)

__all__ = [
    "DEFAULT_PROVIDERS_WITHOUT_API_KEYS",
    "ROLE_NAMES",
    "DispatchConfig",
    "RoleModelConfig",
    "load_dispatch_config",
    "get_dispatch_config",
    "set_dispatch_config",
    "reset_dispatch_config",
]
