from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path

from .canonical import fingerprint
from .lifecycle import Clock, utc_now
from .mode_registry import FileModeRegistry, ModeRegistry
from .models import PhaseStatus, ResumeCheck, is_terminal
from .settings import RuntimeSettings
from .state_store import DEFAULT_WORKFLOW, WorkflowStateStore

logger = logging.getLogger(__name__)


class ResumabilityGuard:
    """Decides whether a new session may pick up a persisted instance.

    The checks run cheapest first and the document is only deleted once it
    is known to be present, non-terminal, inactive and older than the
    staleness threshold. An instance still marked active is refused outright:
    its session may be alive, and session liveness is never checked.
    """

    def __init__(
        self,
        settings: RuntimeSettings | None = None,
        *,
        registry: ModeRegistry | None = None,
        clock: Clock | None = None,
        workflow: str = DEFAULT_WORKFLOW,
    ) -> None:
        self.settings = settings if settings is not None else RuntimeSettings()
        self.registry = registry if registry is not None else FileModeRegistry(self.settings)
        self._clock = clock or utc_now
        self.workflow = workflow

    @property
    def max_age(self) -> timedelta:
        return timedelta(seconds=self.settings.stale_state_max_age_seconds)

    def can_resume(self, directory: Path | str) -> ResumeCheck:
        store = WorkflowStateStore(directory, self.settings, workflow=self.workflow)
        instance = store.read()
        if instance is None:
            return ResumeCheck(False, "no saved state")
        if is_terminal(instance.phase):
            return ResumeCheck(False, f"workflow already finished ({instance.phase.value})", instance=instance)
        if instance.active:
            return ResumeCheck(False, "workflow is still marked active by another session", instance=instance)

        age = self._clock() - instance.started_at
        if age > self.max_age:
            logger.info(
                "Removing stale %s state in %s (started %s ago)", self.workflow, store.directory, age
            )
            store.clear()
            return ResumeCheck(False, f"saved state is stale (older than {self.max_age})")

        return ResumeCheck(True, "resumable", instance=instance, resume_phase=instance.phase)

    def resume(self, directory: Path | str, session_id: str | None = None) -> ResumeCheck:
        """Reactivate a resumable instance and bind it to ``session_id``.

        The write is conditional on the document being unchanged since the
        resumability check, so two sessions racing to resume cannot both win.
        """
        directory = Path(directory)
        check = self.can_resume(directory)
        if not check.can_resume or check.instance is None:
            return check

        start_check = self.registry.can_start(self.workflow, directory)
        if not start_check.allowed:
            return ResumeCheck(False, start_check.message, instance=check.instance)

        resumed = check.instance.model_copy(deep=True)
        resumed.active = True
        if session_id is not None:
            resumed.session_id = session_id
        record = resumed.phases[resumed.phase]
        record.status = PhaseStatus.IN_PROGRESS
        if record.started_at is None:
            record.started_at = self._clock()

        store = WorkflowStateStore(directory, self.settings, workflow=self.workflow)
        if not store.write(resumed, expected_fingerprint=fingerprint(check.instance)):
            return ResumeCheck(False, "saved state changed or could not be written", instance=check.instance)
        logger.info("Resumed %s in %s at phase %s", self.workflow, directory, resumed.phase.value)
        return ResumeCheck(True, "resumed", instance=resumed, resume_phase=resumed.phase)
