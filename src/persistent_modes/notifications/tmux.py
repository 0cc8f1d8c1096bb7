from __future__ import annotations

import logging
import os
import subprocess

logger = logging.getLogger(__name__)


def current_tmux_session() -> str | None:
    """Name of the tmux session this process runs in, or None outside tmux."""
    if not os.getenv("TMUX"):
        return None
    try:
        result = subprocess.run(
            ["tmux", "display-message", "-p", "#S"],
            capture_output=True,
            text=True,
            timeout=2,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("tmux session lookup failed: %s", exc)
        return None
    name = result.stdout.strip()
    return name if result.returncode == 0 and name else None
