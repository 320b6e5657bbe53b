"""Config file search path helpers for the dispatch configuration."""

import os
from pathlib import Path
from typing import List, Optional

PROJECT_STATE_DIR = ".ai-dispatch"


def _default_config_search_paths(project_root: Optional[Path] = None) -> List[Path]:
    """Return the standard config file search paths (lowest to highest priority).

    1. XDG config (~/.config/ai-dispatch/config.toml)
    2. User home config (~/.ai-dispatch.toml)
    3. Project state config (<root>/.ai-dispatch/config.toml)
    4. Project config (<root>/ai-dispatch.toml)

    Args:
        project_root: Project directory; defaults to the current directory
    """
    root = project_root or Path(".")
    paths: List[Path] = []

    # XDG config
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config"))
    paths.append(Path(xdg_config_home) / "ai-dispatch" / "config.toml")

    # User home config
    paths.append(Path.home() / ".ai-dispatch.toml")

    # Project configs
    paths.append(root / PROJECT_STATE_DIR / "config.toml")
    paths.append(root / "ai-dispatch.toml")

    return paths


def find_project_root(start: Optional[Path] = None) -> Optional[Path]:
    """Walk up from ``start`` (default: cwd) to the first directory holding
    a ``.ai-dispatch/`` state directory or an ``ai-dispatch.toml`` file.

    Returns:
        The project root, or None if no marker is found
    """
    current = (start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / PROJECT_STATE_DIR).is_dir() or (candidate / "ai-dispatch.toml").is_file():
            return candidate
    return None
