"""Project tag lookup for annotating dispatch results.

Tags live in the project task store (``.ai-dispatch/tasks/tasks.json``):
every top-level key whose value holds a ``tasks`` list is a tag. The
current tag is kept in ``.ai-dispatch/state.json``. All reads are
best-effort and fall back to the ``master`` tag.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ai_dispatch.core.llm_config._paths import PROJECT_STATE_DIR

logger = logging.getLogger(__name__)

DEFAULT_TAG = "master"


@dataclass(frozen=True)
class TagInfo:
    current_tag: str = DEFAULT_TAG
    available_tags: List[str] = field(default_factory=lambda: [DEFAULT_TAG])

    def to_dict(self) -> Dict[str, Any]:
        return {"current_tag": self.current_tag, "available_tags": list(self.available_tags)}


def tasks_path(project_root: Path) -> Path:
    return project_root / PROJECT_STATE_DIR / "tasks" / "tasks.json"


def state_path(project_root: Path) -> Path:
    return project_root / PROJECT_STATE_DIR / "state.json"


def _is_tagged_task_list(value: Any) -> bool:
    return isinstance(value, dict) and isinstance(value.get("tasks"), list)


def read_current_tag(project_root: Path) -> str:
    path = state_path(project_root)
    if not path.exists():
        return DEFAULT_TAG
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        tag = data.get("currentTag") or data.get("current_tag")
        if isinstance(tag, str) and tag:
            return tag
    return DEFAULT_TAG


def read_available_tags(project_root: Path) -> List[str]:
    path = tasks_path(project_root)
    if not path.exists():
        return [DEFAULT_TAG]
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.debug(f"Could not read tasks file for available tags: {e}")
        return [DEFAULT_TAG]
    if not isinstance(data, dict):
        return [DEFAULT_TAG]
    tags = [key for key, value in data.items() if _is_tagged_task_list(value)]
    return tags or [DEFAULT_TAG]


def get_tag_info(project_root: Optional[Union[str, Path]]) -> TagInfo:
    """Return the current and available tags for a project. Never raises."""
    if not project_root:
        return TagInfo()
    try:
        root = Path(project_root)
        return TagInfo(
            current_tag=read_current_tag(root),
            available_tags=read_available_tags(root),
        )
    except Exception as e:  # noqa: BLE001
        logger.debug(f"Error getting tag information: {e}")
        return TagInfo()
