from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .settings import RuntimeSettings

logger = logging.getLogger(__name__)

# Modes that take over the whole session; at most one may run per directory.
# A ``.marker`` file is active by existing, a JSON document by ``"active": true``.
EXCLUSIVE_MODES: dict[str, str] = {
    "refresh": "refresh-state.json",
    "autopilot": "autopilot-state.json",
    "ultrapilot": "ultrapilot-state.json",
    "swarm": "swarm-active.marker",
    "pipeline": "pipeline-state.json",
}


@dataclass(frozen=True)
class StartCheck:
    allowed: bool
    message: str = ""


class ModeRegistry(Protocol):
    def can_start(self, workflow: str, directory: Path) -> StartCheck:
        ...


def _mode_file_active(path: Path) -> bool:
    if not path.is_file():
        return False
    if path.suffix == ".marker":
        return True
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.debug("Ignoring unreadable mode state %s: %s", path, exc)
        return False
    return isinstance(payload, dict) and payload.get("active") is True


def active_modes(directory: Path, settings: RuntimeSettings) -> list[str]:
    state_dir = settings.state_path(directory)
    return [name for name, filename in EXCLUSIVE_MODES.items() if _mode_file_active(state_dir / filename)]


class FileModeRegistry:
    """Mutual-exclusion check backed by the mode state files in the directory."""

    def __init__(self, settings: RuntimeSettings) -> None:
        self.settings = settings

    def can_start(self, workflow: str, directory: Path) -> StartCheck:
        running = active_modes(Path(directory), self.settings)
        if workflow in running:
            return StartCheck(False, f"{workflow} is already active in {directory}. Cancel it before starting again.")
        blocking = [name for name in running if name != workflow]
        if workflow in EXCLUSIVE_MODES and blocking:
            return StartCheck(
                False,
                f"Cannot start {workflow} while {blocking[0]} is active. Cancel {blocking[0]} first.",
            )
        return StartCheck(True)
