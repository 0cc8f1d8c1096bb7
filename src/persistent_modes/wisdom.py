from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from .notepad import NotepadStore
from .settings import RuntimeSettings
from .state_store import WorkflowStateStore

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "..."


def truncate_entry(text: str, limit: int) -> str:
    """Clamp ``text`` to ``limit`` characters, ending truncated text with ``...``."""
    if len(text) <= limit:
        return text
    return text[: limit - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER


def append_bounded(entries: list[str], entry: str, cap: int) -> list[str]:
    """Append ``entry`` and evict the oldest entries until at most ``cap`` remain."""
    combined = [*entries, entry]
    return combined[-cap:]


class WisdomAccumulator:
    """Bounded learnings/issues logs on the instance, mirrored to its notepad."""

    def __init__(
        self,
        settings: RuntimeSettings | None = None,
        notepad_factory: Callable[[Path], NotepadStore] | None = None,
    ) -> None:
        self.settings = settings if settings is not None else RuntimeSettings()
        self._notepad_factory = notepad_factory or (lambda directory: NotepadStore(directory, self.settings))

    def add_learning(self, directory: Path | str, text: str) -> bool:
        return self._add(Path(directory), "learnings", text)

    def add_issue(self, directory: Path | str, text: str) -> bool:
        return self._add(Path(directory), "issues", text)

    def _add(self, directory: Path, kind: str, text: str) -> bool:
        store = WorkflowStateStore(directory, self.settings)
        instance = store.read()
        if instance is None:
            logger.warning("Cannot record %s: no workflow state in %s", kind, directory)
            return False

        entry = truncate_entry(text, self.settings.max_entry_length)
        if kind == "learnings":
            instance.learnings = append_bounded(instance.learnings, entry, self.settings.max_learnings)
        else:
            instance.issues = append_bounded(instance.issues, entry, self.settings.max_issues)

        self._mirror(directory, instance.notes_handle, kind, entry)
        return store.write(instance)

    def _mirror(self, directory: Path, handle: str, kind: str, entry: str) -> None:
        try:
            notepad = self._notepad_factory(directory)
            if kind == "learnings":
                mirrored = notepad.add_learning(handle, entry)
            else:
                mirrored = notepad.add_issue(handle, entry)
        except (OSError, ValueError) as exc:
            logger.warning("Failed to mirror %s to notepad %s: %s", kind, handle, exc)
            return
        if not mirrored:
            logger.warning("Notepad %s did not record %s entry", handle, kind)
