from __future__ import annotations

import fcntl
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from pydantic import ValidationError

from .canonical import fingerprint
from .models import WorkflowInstance
from .settings import RuntimeSettings

logger = logging.getLogger(__name__)

DEFAULT_WORKFLOW = "refresh"

# ---------------------------------------------------------------------------
# File helpers
# ---------------------------------------------------------------------------

_LOCK_SUFFIX = ".lock"


@contextmanager
def _locked_file(path: Path) -> Iterator[None]:
    """Acquire an exclusive file lock for the duration of the context.

    Uses a separate .lock sidecar file so the actual data file can be
    atomically replaced via ``os.replace`` without disturbing the lock
    handle.
    """
    lock_path = path.with_suffix(path.suffix + _LOCK_SUFFIX)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+", encoding="utf-8") as lock_handle:
        fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)


def _atomic_write_text(path: Path, content: str) -> None:
    """Write *content* to *path* atomically.

    Writes to a temporary file in the same directory, then renames
    (``os.replace``) into place, so readers only ever observe the previous
    complete document or the new complete document.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _safe_read_json(path: Path, model_name: str) -> str:
    """Read a JSON file and raise a clear error if missing or unreadable.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is empty or contains non-UTF-8 data.
    """
    if not path.is_file():
        raise FileNotFoundError(f"{model_name} not found: {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise ValueError(f"{model_name} at {path} contains invalid UTF-8 data") from exc
    if not text.strip():
        raise ValueError(f"{model_name} at {path} is empty")
    return text


# ---------------------------------------------------------------------------
# WorkflowStateStore
# ---------------------------------------------------------------------------

class WorkflowStateStore:
    """Durable state document for one workflow family in one working directory.

    Reads validate the whole document or return None; there is no partial
    instance. Writes go through temp-file-then-rename. Plain ``write`` calls
    assume a single writer per directory; pass ``expected_fingerprint`` to turn
    a lost update into a refused write instead.

    The ``directory`` argument is trusted input (the host's working
    directory). It is normalized but not confined to any base path.
    """

    def __init__(self, directory: Path | str, settings: RuntimeSettings | None = None, *, workflow: str = DEFAULT_WORKFLOW) -> None:
        self.settings = settings if settings is not None else RuntimeSettings()
        self.directory = Path(directory).resolve()
        self.workflow = workflow

    @property
    def state_dir(self) -> Path:
        return self.settings.state_path(self.directory)

    @property
    def state_path(self) -> Path:
        """Path to ``<dir>/.omc/state/<workflow>-state.json``."""
        return self.state_dir / f"{self.workflow}-state.json"

    def exists(self) -> bool:
        return self.state_path.is_file()

    def read(self) -> WorkflowInstance | None:
        """Read and validate the persisted instance.

        Returns:
            The instance, or None if the document is missing, unreadable,
            or fails validation.
        """
        if not self.state_path.is_file():
            return None
        try:
            text = _safe_read_json(self.state_path, f"{self.workflow} state")
            return WorkflowInstance.model_validate_json(text)
        except ValidationError as exc:
            logger.warning("Invalid %s state at %s: %s", self.workflow, self.state_path, exc)
            return None
        except (OSError, ValueError) as exc:
            logger.warning("Failed to read %s state at %s: %s", self.workflow, self.state_path, exc)
            return None

    def write(self, instance: WorkflowInstance, *, expected_fingerprint: str | None = None) -> bool:
        """Persist ``instance`` atomically.

        Args:
            instance: The instance to write.
            expected_fingerprint: When given, the write only happens if the
                document on disk still has this fingerprint (checked under an
                exclusive lock).

        Returns:
            True if the new document is durably in place.
        """
        try:
            if expected_fingerprint is None:
                _atomic_write_text(self.state_path, instance.to_json())
                return True
            with _locked_file(self.state_path):
                current = self.fingerprint()
                if current != expected_fingerprint:
                    logger.warning(
                        "Refusing %s state write at %s: document changed since it was read",
                        self.workflow,
                        self.state_path,
                    )
                    return False
                _atomic_write_text(self.state_path, instance.to_json())
                return True
        except OSError as exc:
            logger.error("Failed to write %s state at %s: %s", self.workflow, self.state_path, exc)
            return False

    def clear(self) -> bool:
        """Delete the document. Returns True if it is absent afterwards."""
        try:
            self.state_path.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("Failed to clear %s state at %s: %s", self.workflow, self.state_path, exc)
            return False
        return True

    def is_active(self) -> bool:
        instance = self.read()
        return instance is not None and instance.active

    def fingerprint(self) -> str | None:
        """Fingerprint of the valid document on disk, or None when there is none."""
        instance = self.read()
        return fingerprint(instance) if instance is not None else None
