from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_MAX_ITERATIONS = 5
MAX_PROMPT_LENGTH = 32_768
MAX_LEARNINGS = 100
MAX_ISSUES = 100
MAX_ENTRY_LENGTH = 4_096
STALE_STATE_MAX_AGE_SECONDS = 60 * 60

# Truncated entries end with this marker, so an entry limit must leave room for it.
_MIN_ENTRY_LENGTH = 16


@dataclass(frozen=True)
class RuntimeSettings:
    """Runtime settings loaded from environment with fail-fast validation."""

    max_iterations: int = DEFAULT_MAX_ITERATIONS
    max_prompt_length: int = MAX_PROMPT_LENGTH
    max_learnings: int = MAX_LEARNINGS
    max_issues: int = MAX_ISSUES
    max_entry_length: int = MAX_ENTRY_LENGTH
    stale_state_max_age_seconds: int = STALE_STATE_MAX_AGE_SECONDS
    state_dir: str = ".omc/state"
    notepad_dir: str = ".omc/notepads"
    global_state_dir: str = ""
    config_file: str = ""
    notification_send_timeout_seconds: int = 10
    notification_dispatch_timeout_seconds: int = 5

    @classmethod
    def from_env(cls, repo_root: Path | None = None) -> "RuntimeSettings":
        """Build settings from ``OMC_*`` environment variables.

        When ``repo_root`` holds a ``.env`` file it is loaded first; variables
        already present in the environment win.
        """
        if repo_root is not None:
            env_path = repo_root / ".env"
            if env_path.is_file():
                load_dotenv(env_path)
        return cls(
            max_iterations=_get_env_int("OMC_MAX_ITERATIONS", default=DEFAULT_MAX_ITERATIONS, minimum=1, maximum=1_000),
            max_prompt_length=_get_env_int("OMC_MAX_PROMPT_LENGTH", default=MAX_PROMPT_LENGTH, minimum=1),
            max_learnings=_get_env_int("OMC_MAX_LEARNINGS", default=MAX_LEARNINGS, minimum=1, maximum=10_000),
            max_issues=_get_env_int("OMC_MAX_ISSUES", default=MAX_ISSUES, minimum=1, maximum=10_000),
            max_entry_length=_get_env_int("OMC_MAX_ENTRY_LENGTH", default=MAX_ENTRY_LENGTH, minimum=_MIN_ENTRY_LENGTH),
            stale_state_max_age_seconds=_get_env_int(
                "OMC_STALE_STATE_MAX_AGE_SECONDS", default=STALE_STATE_MAX_AGE_SECONDS, minimum=1
            ),
            state_dir=os.getenv("OMC_STATE_DIR", ".omc/state"),
            notepad_dir=os.getenv("OMC_NOTEPAD_DIR", ".omc/notepads"),
            global_state_dir=os.getenv("OMC_GLOBAL_STATE_DIR", ""),
            config_file=os.getenv("OMC_CONFIG_FILE", ""),
            notification_send_timeout_seconds=_get_env_int("OMC_NOTIFY_SEND_TIMEOUT", default=10, minimum=1, maximum=300),
            notification_dispatch_timeout_seconds=_get_env_int(
                "OMC_NOTIFY_DISPATCH_TIMEOUT", default=5, minimum=1, maximum=300
            ),
        ).normalized()

    def normalized(self) -> "RuntimeSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        for name in ("max_iterations", "max_prompt_length", "max_learnings", "max_issues", "stale_state_max_age_seconds"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1, got: {getattr(self, name)}")
        if self.max_entry_length < _MIN_ENTRY_LENGTH:
            raise ValueError(f"max_entry_length must be >= {_MIN_ENTRY_LENGTH}, got: {self.max_entry_length}")

        state_dir = self.state_dir.strip()
        if not state_dir:
            raise ValueError("OMC_STATE_DIR must be non-empty")
        notepad_dir = self.notepad_dir.strip()
        if not notepad_dir:
            raise ValueError("OMC_NOTEPAD_DIR must be non-empty")
        if Path(state_dir).is_absolute() or Path(notepad_dir).is_absolute():
            raise ValueError("OMC_STATE_DIR and OMC_NOTEPAD_DIR must be relative to the working directory")

        return RuntimeSettings(
            max_iterations=self.max_iterations,
            max_prompt_length=self.max_prompt_length,
            max_learnings=self.max_learnings,
            max_issues=self.max_issues,
            max_entry_length=self.max_entry_length,
            stale_state_max_age_seconds=self.stale_state_max_age_seconds,
            state_dir=state_dir,
            notepad_dir=notepad_dir,
            global_state_dir=self.global_state_dir.strip(),
            config_file=self.config_file.strip(),
            notification_send_timeout_seconds=self.notification_send_timeout_seconds,
            notification_dispatch_timeout_seconds=self.notification_dispatch_timeout_seconds,
        )

    def state_path(self, directory: Path) -> Path:
        return directory.resolve() / self.state_dir

    def notepad_path(self, directory: Path) -> Path:
        return directory.resolve() / self.notepad_dir

    def global_state_path(self) -> Path | None:
        """Return the user-scoped state directory, or None when no home directory is known."""
        if self.global_state_dir:
            return Path(self.global_state_dir).expanduser()
        home = os.getenv("HOME") or os.getenv("USERPROFILE")
        if not home:
            return None
        return Path(home) / ".claude"

    def config_path(self) -> Path | None:
        if self.config_file:
            return Path(self.config_file).expanduser()
        global_dir = self.global_state_path()
        return global_dir / ".omc-config.json" if global_dir is not None else None


def _get_env_int(name: str, default: int, minimum: int, maximum: int = 10_000_000) -> int:
    """Parse an integer from an environment variable with bounds checking.

    Args:
        name: Environment variable name.
        default: Value to return if the variable is unset.
        minimum: Inclusive lower bound.
        maximum: Inclusive upper bound (default 10M, prevents absurd values).

    Returns:
        The parsed integer, guaranteed to be within [minimum, maximum].

    Raises:
        ValueError: If the value is not an integer or is outside bounds.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed
