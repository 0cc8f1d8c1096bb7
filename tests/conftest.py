from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from persistent_modes.settings import RuntimeSettings

_OMC_ENV_VARS = (
    "OMC_MAX_ITERATIONS",
    "OMC_MAX_PROMPT_LENGTH",
    "OMC_MAX_LEARNINGS",
    "OMC_MAX_ISSUES",
    "OMC_MAX_ENTRY_LENGTH",
    "OMC_STALE_STATE_MAX_AGE_SECONDS",
    "OMC_STATE_DIR",
    "OMC_NOTEPAD_DIR",
    "OMC_CONFIG_FILE",
    "OMC_NOTIFY_SEND_TIMEOUT",
    "OMC_NOTIFY_DISPATCH_TIMEOUT",
    "OMC_DISCORD_NOTIFIER_BOT_TOKEN",
    "OMC_DISCORD_NOTIFIER_CHANNEL",
    "OMC_DISCORD_WEBHOOK_URL",
    "OMC_TELEGRAM_BOT_TOKEN",
    "OMC_TELEGRAM_CHAT_ID",
    "OMC_SLACK_WEBHOOK_URL",
    "TMUX",
)


@pytest.fixture(autouse=True)
def _isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the user's real home directory and OMC_* configuration out of every test."""
    for name in _OMC_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("OMC_GLOBAL_STATE_DIR", str(home / ".claude"))


@pytest.fixture
def settings(tmp_path: Path) -> RuntimeSettings:
    return RuntimeSettings(global_state_dir=str(tmp_path / "home" / ".claude")).normalized()


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    directory = tmp_path / "project"
    directory.mkdir()
    return directory


class FakeClock:
    """Manually advanced clock for lifecycle and staleness tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 15, 10, 30, 0, 123000, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
