from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable

from .errors import InvalidTransition, ModeConflict, NoActiveWorkflow, PersistenceError, PromptTooLong
from .mode_registry import FileModeRegistry, ModeRegistry
from .models import (
    SUBMODE_NAMES,
    CancelResult,
    Phase,
    PhaseRecord,
    PhaseStatus,
    WorkflowConfig,
    WorkflowInstance,
    WorkflowSummary,
    can_transition,
    initial_phases,
    is_terminal,
)
from .notepad import NotepadStore
from .reaper import SubmodeReaper
from .settings import RuntimeSettings
from .state_store import DEFAULT_WORKFLOW, WorkflowStateStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_TERMINAL_STATUS = {Phase.COMPLETE: PhaseStatus.COMPLETE, Phase.FAILED: PhaseStatus.FAILED}


def utc_now() -> datetime:
    return datetime.now(UTC)


def apply_transition(instance: WorkflowInstance, target: Phase, now: datetime) -> None:
    """Move ``instance`` to ``target`` in place, without consulting the phase graph.

    The outgoing phase is marked complete. A non-terminal target becomes the
    single in-progress phase; a terminal target is closed immediately (status
    ``complete`` or ``failed``) and deactivates the instance.
    """
    current = instance.phases[instance.phase]
    current.status = PhaseStatus.COMPLETE
    current.completed_at = now

    instance.phase = target
    if is_terminal(target):
        instance.phases[target] = PhaseRecord(status=_TERMINAL_STATUS[target], started_at=now, completed_at=now)
        instance.active = False
        instance.completed_at = now
    else:
        instance.phases[target] = PhaseRecord(status=PhaseStatus.IN_PROGRESS, started_at=now)


class LifecycleController:
    """Creates and advances workflow instances.

    Every mutating call reads the full document, changes a private copy, and
    writes it back atomically. Rejections are raised before anything is
    written, so the stored document is either untouched or fully updated.
    Calls are not locked against each other: the host is expected to
    serialize hook invocations for a directory.
    """

    def __init__(
        self,
        settings: RuntimeSettings | None = None,
        *,
        registry: ModeRegistry | None = None,
        notepad_factory: Callable[[Path], NotepadStore] | None = None,
        reaper: SubmodeReaper | None = None,
        clock: Clock | None = None,
        workflow: str = DEFAULT_WORKFLOW,
    ) -> None:
        self.settings = settings if settings is not None else RuntimeSettings()
        self.registry = registry if registry is not None else FileModeRegistry(self.settings)
        self._notepad_factory = notepad_factory or (lambda directory: NotepadStore(directory, self.settings))
        self.reaper = reaper if reaper is not None else SubmodeReaper(self.settings)
        self._clock = clock or utc_now
        self.workflow = workflow

    def store(self, directory: Path | str) -> WorkflowStateStore:
        return WorkflowStateStore(directory, self.settings, workflow=self.workflow)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def start(
        self,
        directory: Path | str,
        prompt: str,
        session_id: str | None = None,
        config: WorkflowConfig | None = None,
    ) -> WorkflowInstance:
        """Create the instance for ``directory`` and enter the first phase.

        Raises:
            PromptTooLong: If ``prompt`` exceeds the configured maximum.
            ModeConflict: If the mode registry refuses the start.
            PersistenceError: If the new document could not be written.
        """
        directory = Path(directory)
        config = config if config is not None else WorkflowConfig()

        if len(prompt) > self.settings.max_prompt_length:
            logger.warning("Refusing to start %s: prompt is %d chars", self.workflow, len(prompt))
            raise PromptTooLong(len(prompt), self.settings.max_prompt_length)

        check = self.registry.can_start(self.workflow, directory)
        if not check.allowed:
            logger.warning("Refusing to start %s: %s", self.workflow, check.message)
            raise ModeConflict(check.message or f"{self.workflow} cannot start in {directory}")

        now = self._clock()
        notes_handle = f"{self.workflow}-{now.strftime('%Y-%m-%dT%H-%M-%S')}-{now.microsecond // 1000:03d}"
        try:
            if not self._notepad_factory(directory).init(notes_handle):
                logger.warning("Notepad %s was not initialized; continuing without it", notes_handle)
        except (OSError, ValueError) as exc:
            logger.warning("Notepad %s was not initialized: %s", notes_handle, exc)

        entry_phase = Phase.EXECUTION if config.skip_planning else Phase.PLANNING
        phases = initial_phases()
        phases[entry_phase] = PhaseRecord(status=PhaseStatus.IN_PROGRESS, started_at=now)
        instance = WorkflowInstance(
            active=True,
            iteration=1,
            max_iterations=config.max_iterations or self.settings.max_iterations,
            phase=entry_phase,
            prompt=prompt,
            started_at=now,
            session_id=session_id,
            notes_handle=notes_handle,
            phases=phases,
            learnings=[],
            issues=[],
            swarm_agents=config.swarm_agents,
        )
        if not self.store(directory).write(instance):
            raise PersistenceError(f"Failed to persist {self.workflow} state in {directory}")
        logger.info("Started %s in %s at phase %s", self.workflow, directory, entry_phase.value)
        return instance

    # ------------------------------------------------------------------
    # Phase changes
    # ------------------------------------------------------------------

    def _load_active(self, directory: Path) -> tuple[WorkflowStateStore, WorkflowInstance]:
        store = self.store(directory)
        instance = store.read()
        if instance is None or not instance.active:
            raise NoActiveWorkflow(directory)
        return store, instance

    def _persist(self, store: WorkflowStateStore, instance: WorkflowInstance) -> WorkflowInstance:
        if not store.write(instance):
            raise PersistenceError(f"Failed to persist {self.workflow} state in {store.directory}")
        return instance

    def transition(self, directory: Path | str, target: Phase | str) -> WorkflowInstance:
        """Advance along one edge of the phase graph.

        Raises:
            NoActiveWorkflow: If there is no active instance.
            InvalidTransition: If ``target`` is not reachable from the current phase.
            PersistenceError: If the updated document could not be written.
        """
        directory = Path(directory)
        target = Phase(target)
        store, instance = self._load_active(directory)
        if not can_transition(instance.phase, target):
            logger.warning("Invalid phase transition: %s -> %s", instance.phase.value, target.value)
            raise InvalidTransition(instance.phase.value, target.value)

        updated = instance.model_copy(deep=True)
        apply_transition(updated, target, self._clock())
        self._persist(store, updated)
        logger.info("%s: %s -> %s", self.workflow, instance.phase.value, target.value)
        return updated

    def increment_iteration(self, directory: Path | str, session_id: str | None = None) -> WorkflowInstance:
        """Start the next attempt from planning, or fail once the ceiling is reached.

        At the ceiling the instance is moved to ``failed`` from whatever phase
        it is in; iterations are never granted beyond ``max_iterations``.
        """
        directory = Path(directory)
        store, instance = self._load_active(directory)
        now = self._clock()
        updated = instance.model_copy(deep=True)

        if instance.iteration >= instance.max_iterations:
            logger.warning("%s: max iterations (%d) reached", self.workflow, instance.max_iterations)
            apply_transition(updated, Phase.FAILED, now)
            return self._persist(store, updated)

        updated.iteration += 1
        updated.phases = initial_phases()
        updated.phase = Phase.PLANNING
        updated.phases[Phase.PLANNING] = PhaseRecord(status=PhaseStatus.IN_PROGRESS, started_at=now)
        updated.plan_path = None
        updated.linked_submodes = set()

        if not self.reaper.purge(directory, session_id):
            logger.warning("Sub-mode cleanup before iteration %d was incomplete", updated.iteration)

        self._persist(store, updated)
        logger.info("%s: starting iteration %d/%d", self.workflow, updated.iteration, updated.max_iterations)
        return updated

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def link_submode(self, directory: Path | str, name: str) -> WorkflowInstance:
        return self._update_submodes(Path(directory), name, link=True)

    def unlink_submode(self, directory: Path | str, name: str) -> WorkflowInstance:
        return self._update_submodes(Path(directory), name, link=False)

    def _update_submodes(self, directory: Path, name: str, *, link: bool) -> WorkflowInstance:
        if name not in SUBMODE_NAMES:
            raise ValueError(f"unknown sub-mode {name!r}; expected one of {', '.join(sorted(SUBMODE_NAMES))}")
        store, instance = self._load_active(directory)
        updated = instance.model_copy(deep=True)
        if link:
            updated.linked_submodes.add(name)
        else:
            updated.linked_submodes.discard(name)
        return self._persist(store, updated)

    def set_plan_path(self, directory: Path | str, plan_path: str) -> WorkflowInstance:
        store, instance = self._load_active(Path(directory))
        updated = instance.model_copy(update={"plan_path": plan_path}, deep=True)
        return self._persist(store, updated)

    def status(self, directory: Path | str) -> WorkflowInstance | None:
        return self.store(directory).read()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def cancel(self, directory: Path | str, session_id: str | None = None, *, preserve: bool = False) -> CancelResult:
        """Stop the workflow and reap its sub-modes.

        With ``preserve`` the document is kept but marked inactive, which makes
        it a candidate for ``ResumabilityGuard.resume``. Otherwise it is deleted.
        """
        directory = Path(directory)
        store = self.store(directory)
        instance = store.read()
        if instance is None:
            return CancelResult(False, f"No {self.workflow} workflow to cancel in {directory}")

        if preserve:
            if is_terminal(instance.phase):
                return CancelResult(False, f"{self.workflow} already finished ({instance.phase.value}); nothing to preserve")
            updated = instance.model_copy(update={"active": False}, deep=True)
            if not store.write(updated):
                return CancelResult(False, f"Failed to persist cancelled {self.workflow} state")
            self.reaper.purge(directory, session_id)
            logger.info("Cancelled %s in %s, progress preserved at %s", self.workflow, directory, updated.phase.value)
            return CancelResult(
                True,
                f"{self.workflow} cancelled at phase {updated.phase.value} "
                f"(iteration {updated.iteration}/{updated.max_iterations}). Progress preserved for resume.",
                preserved=updated,
            )

        if not store.clear():
            return CancelResult(False, f"Failed to clear {self.workflow} state in {directory}")
        self.reaper.purge(directory, session_id)
        logger.info("Cancelled and cleared %s in %s", self.workflow, directory)
        return CancelResult(True, f"{self.workflow} cancelled and state cleared.")

    @staticmethod
    def summarize(instance: WorkflowInstance) -> WorkflowSummary:
        return WorkflowSummary(
            success=instance.phase is Phase.COMPLETE,
            phase=instance.phase,
            iterations=instance.iteration,
            learnings=list(instance.learnings),
        )
