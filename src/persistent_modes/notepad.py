from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from .settings import RuntimeSettings

logger = logging.getLogger(__name__)

WISDOM_KINDS: dict[str, str] = {
    "learnings": "Learnings",
    "decisions": "Decisions",
    "issues": "Issues",
    "problems": "Problems",
}

_HANDLE_RE = re.compile(r"^[A-Za-z0-9_.-]+$")
_ENTRY_HEADING_RE = re.compile(r"^## \[(?P<stamp>[^\]]+)\]$", re.MULTILINE)
# Entry lines that look like a heading are stored with one extra leading backslash.
_ESCAPE_RE = re.compile(r"^(\\*## \[)", re.MULTILINE)
_UNESCAPE_RE = re.compile(r"^\\(\\*## \[)", re.MULTILINE)


@dataclass
class Wisdom:
    learnings: list[str] = field(default_factory=list)
    decisions: list[str] = field(default_factory=list)
    issues: list[str] = field(default_factory=list)
    problems: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.learnings or self.decisions or self.issues or self.problems)


def _parse_entries(text: str) -> list[str]:
    headings = list(_ENTRY_HEADING_RE.finditer(text))
    entries: list[str] = []
    for idx, heading in enumerate(headings):
        end = headings[idx + 1].start() if idx + 1 < len(headings) else len(text)
        body = text[heading.end():end].strip("\n")
        entries.append(_UNESCAPE_RE.sub(r"\1", body))
    return entries


class NotepadStore:
    """Markdown notepads that carry wisdom across iterations of a workflow.

    Each handle owns ``<dir>/.omc/notepads/<handle>/`` with one file per kind;
    every entry is appended under a ``## [timestamp]`` heading. All methods
    report failure through their return value and log; they never raise for
    I/O errors, since callers treat the notepad as best-effort.
    """

    def __init__(self, directory: Path | str, settings: RuntimeSettings | None = None) -> None:
        self.settings = settings if settings is not None else RuntimeSettings()
        self.directory = Path(directory).resolve()

    def notepad_dir(self, handle: str) -> Path:
        if not _HANDLE_RE.match(handle) or handle in {".", ".."}:
            raise ValueError(f"invalid notepad handle: {handle!r}")
        return self.settings.notepad_path(self.directory) / handle

    def init(self, handle: str) -> bool:
        notepad = self.notepad_dir(handle)
        try:
            notepad.mkdir(parents=True, exist_ok=True)
            for kind, title in WISDOM_KINDS.items():
                path = notepad / f"{kind}.md"
                if not path.exists():
                    path.write_text(f"# {title}\n", encoding="utf-8")
        except OSError as exc:
            logger.warning("Failed to initialize notepad %s: %s", notepad, exc)
            return False
        return True

    def _append(self, handle: str, kind: str, text: str) -> bool:
        path = self.notepad_dir(handle) / f"{kind}.md"
        stamp = datetime.now(UTC).isoformat(timespec="seconds")
        body = _ESCAPE_RE.sub(r"\\\1", text)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if not path.exists():
                path.write_text(f"# {WISDOM_KINDS[kind]}\n", encoding="utf-8")
            with path.open("a", encoding="utf-8") as handle_file:
                handle_file.write(f"\n## [{stamp}]\n{body}\n")
        except OSError as exc:
            logger.warning("Failed to append to notepad %s: %s", path, exc)
            return False
        return True

    def add_learning(self, handle: str, text: str) -> bool:
        return self._append(handle, "learnings", text)

    def add_decision(self, handle: str, text: str) -> bool:
        return self._append(handle, "decisions", text)

    def add_issue(self, handle: str, text: str) -> bool:
        return self._append(handle, "issues", text)

    def add_problem(self, handle: str, text: str) -> bool:
        return self._append(handle, "problems", text)

    def read_wisdom(self, handle: str) -> Wisdom | None:
        """Return every entry of the notepad, or None if it was never initialized."""
        notepad = self.notepad_dir(handle)
        if not notepad.is_dir():
            return None
        wisdom = Wisdom()
        for kind in WISDOM_KINDS:
            path = notepad / f"{kind}.md"
            if not path.is_file():
                continue
            try:
                text = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Failed to read notepad %s: %s", path, exc)
                continue
            setattr(wisdom, kind, _parse_entries(text))
        return wisdom
