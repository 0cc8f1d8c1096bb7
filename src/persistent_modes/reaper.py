from __future__ import annotations

import json
import logging
from pathlib import Path

from .settings import RuntimeSettings

logger = logging.getLogger(__name__)

# State left behind by sub-workflows spawned during execution. Local files are
# scoped to the working directory; global files live in the user's state dir
# and may belong to an unrelated session.
LOCAL_SUBMODE_FILES: tuple[str, ...] = (
    "plan-consensus.json",
    "swarm.db",
    "swarm.db-wal",
    "swarm.db-shm",
    "swarm-active.marker",
    "ultrawork-state.json",
    "ralph-state.json",
    "ralph-verification.json",
)
GLOBAL_SUBMODE_FILES: tuple[str, ...] = (
    "ultrawork-state.json",
    "ralph-state.json",
)

_OWNER_KEYS = ("ownerSessionId", "sessionId", "session_id")


def owner_session_id(payload: object) -> str | None:
    """Return the session recorded as owner of a global state document."""
    if not isinstance(payload, dict):
        return None
    for key in _OWNER_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


class SubmodeReaper:
    """Deletes dependent sub-workflow state before a retry or after termination.

    Local files are removed unconditionally. A global file is removed only
    when ``force`` is set or its recorded owner equals the caller's
    ``session_id``; with neither, global state is never touched.
    """

    def __init__(self, settings: RuntimeSettings | None = None) -> None:
        self.settings = settings if settings is not None else RuntimeSettings()

    def purge(self, directory: Path | str, session_id: str | None = None, force: bool = False) -> bool:
        """Delete sub-mode state for ``directory``.

        Returns:
            True only if every attempted deletion succeeded. Failures are
            logged per file and do not stop the remaining deletions.
        """
        success = True
        state_dir = self.settings.state_path(Path(directory))
        for filename in LOCAL_SUBMODE_FILES:
            path = state_dir / filename
            if not path.exists():
                continue
            try:
                path.unlink()
                logger.debug("Removed local sub-mode state %s", path)
            except OSError as exc:
                logger.warning("Failed to delete %s: %s", path, exc)
                success = False

        global_dir = self.settings.global_state_path()
        if global_dir is None:
            logger.warning("HOME/USERPROFILE not set, skipping global sub-mode cleanup")
            return success

        for filename in GLOBAL_SUBMODE_FILES:
            path = global_dir / filename
            if not path.exists():
                continue
            if not force:
                if session_id is None:
                    continue
                try:
                    owner = owner_session_id(json.loads(path.read_text(encoding="utf-8")))
                except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
                    logger.warning("Failed to read global sub-mode state %s: %s", path, exc)
                    success = False
                    continue
                if owner != session_id:
                    logger.debug("Leaving global sub-mode state %s owned by %s", path, owner)
                    continue
            try:
                path.unlink()
                logger.debug("Removed global sub-mode state %s", path)
            except OSError as exc:
                logger.warning("Failed to delete global sub-mode state %s: %s", path, exc)
                success = False
        return success
