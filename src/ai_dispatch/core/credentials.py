"""Layered credential lookup.

Values are resolved from, in order: the caller's session environment, the
process environment, and the project's ``.env`` file.
"""

import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from dotenv import dotenv_values

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _session_env(session: Any) -> Mapping[str, Any]:
    if session is None:
        return {}
    if isinstance(session, Mapping):
        env = session.get("env")
    else:
        env = getattr(session, "env", None)
    return env if isinstance(env, Mapping) else {}


def resolve_env_variable(
    key: str,
    session: Any = None,
    project_root: Optional[PathLike] = None,
) -> Optional[str]:
    """Resolve an environment variable through the session, process and ``.env`` layers.

    Args:
        key: Variable name (e.g. ``OPENAI_API_KEY``)
        session: Optional session object or mapping carrying an ``env`` mapping
        project_root: Directory whose ``.env`` file is consulted last

    Returns:
        The first non-empty value found, or None
    """
    value = _session_env(session).get(key)
    if value:
        return str(value)

    value = os.environ.get(key)
    if value:
        return value

    if project_root is not None:
        env_path = Path(project_root) / ".env"
        if env_path.is_file():
            try:
                value = dotenv_values(env_path).get(key)
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Could not read {env_path}: {e}")
                return None
            if value:
                return value

    return None
