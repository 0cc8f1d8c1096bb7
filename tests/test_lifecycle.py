from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import FakeClock
from persistent_modes.errors import InvalidTransition, ModeConflict, NoActiveWorkflow, PersistenceError, PromptTooLong
from persistent_modes.lifecycle import LifecycleController
from persistent_modes.mode_registry import StartCheck
from persistent_modes.models import Phase, PhaseStatus, WorkflowConfig
from persistent_modes.notepad import NotepadStore
from persistent_modes.settings import RuntimeSettings
from persistent_modes.state_store import WorkflowStateStore


@pytest.fixture
def controller(settings: RuntimeSettings, clock: FakeClock) -> LifecycleController:
    return LifecycleController(settings, clock=clock)


def _walk_to_assess(controller: LifecycleController, directory: Path) -> None:
    for phase in (Phase.EXECUTION, Phase.REVIEW, Phase.ASSESS):
        controller.transition(directory, phase)


def test_start_creates_planning_instance(controller: LifecycleController, workdir: Path, clock: FakeClock) -> None:
    instance = controller.start(workdir, "Build a todo app", session_id="s-1")

    assert instance.active
    assert instance.iteration == 1
    assert instance.max_iterations == 5
    assert instance.phase is Phase.PLANNING
    assert instance.session_id == "s-1"
    assert instance.started_at == clock.now
    assert instance.notes_handle == "refresh-2025-01-15T10-30-00-123"
    assert instance.phases[Phase.PLANNING].status is PhaseStatus.IN_PROGRESS
    assert instance.phases[Phase.PLANNING].started_at == clock.now
    assert all(instance.phases[phase].status is PhaseStatus.PENDING for phase in Phase if phase is not Phase.PLANNING)
    assert controller.status(workdir) == instance


def test_start_initializes_notepad(controller: LifecycleController, workdir: Path, settings: RuntimeSettings) -> None:
    instance = controller.start(workdir, "task")
    notepad = NotepadStore(workdir, settings)
    assert notepad.notepad_dir(instance.notes_handle).is_dir()
    assert (notepad.notepad_dir(instance.notes_handle) / "learnings.md").is_file()


def test_start_honors_config(controller: LifecycleController, workdir: Path) -> None:
    instance = controller.start(
        workdir, "task", config=WorkflowConfig(max_iterations=2, skip_planning=True, swarm_agents=7)
    )
    assert instance.phase is Phase.EXECUTION
    assert instance.max_iterations == 2
    assert instance.swarm_agents == 7
    assert instance.phases[Phase.PLANNING].status is PhaseStatus.PENDING
    assert instance.phases[Phase.EXECUTION].status is PhaseStatus.IN_PROGRESS


def test_prompt_length_boundary(controller: LifecycleController, workdir: Path, settings: RuntimeSettings) -> None:
    with pytest.raises(PromptTooLong) as excinfo:
        controller.start(workdir, "x" * (settings.max_prompt_length + 1))
    assert excinfo.value.length == settings.max_prompt_length + 1
    assert not WorkflowStateStore(workdir, settings).exists()

    instance = controller.start(workdir, "x" * settings.max_prompt_length)
    assert len(instance.prompt) == settings.max_prompt_length


def test_start_refused_while_active(controller: LifecycleController, workdir: Path) -> None:
    first = controller.start(workdir, "first")
    with pytest.raises(ModeConflict, match="already active"):
        controller.start(workdir, "second")
    assert controller.status(workdir) == first


def test_start_refused_while_other_exclusive_mode_runs(
    controller: LifecycleController, workdir: Path, settings: RuntimeSettings
) -> None:
    state_dir = settings.state_path(workdir)
    state_dir.mkdir(parents=True)
    (state_dir / "autopilot-state.json").write_text(json.dumps({"active": True}), encoding="utf-8")
    with pytest.raises(ModeConflict, match="autopilot"):
        controller.start(workdir, "task")

    (state_dir / "autopilot-state.json").write_text(json.dumps({"active": False}), encoding="utf-8")
    controller.start(workdir, "task")


def test_start_uses_injected_registry(settings: RuntimeSettings, workdir: Path) -> None:
    class _Refusing:
        def can_start(self, workflow: str, directory: Path) -> StartCheck:
            return StartCheck(False, "host says no")

    controller = LifecycleController(settings, registry=_Refusing())
    with pytest.raises(ModeConflict, match="host says no"):
        controller.start(workdir, "task")


def test_start_raises_when_state_cannot_be_written(
    controller: LifecycleController, workdir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(WorkflowStateStore, "write", lambda self, instance, **kwargs: False)
    with pytest.raises(PersistenceError):
        controller.start(workdir, "task")


def test_full_happy_path(controller: LifecycleController, workdir: Path, clock: FakeClock) -> None:
    controller.start(workdir, "task")
    clock.advance(minutes=5)
    _walk_to_assess(controller, workdir)
    clock.advance(minutes=1)
    done = controller.transition(workdir, "complete")

    assert done.phase is Phase.COMPLETE
    assert not done.active
    assert done.completed_at == clock.now
    assert done.phases[Phase.ASSESS].status is PhaseStatus.COMPLETE
    assert done.phases[Phase.COMPLETE].status is PhaseStatus.COMPLETE
    assert done.phases[Phase.COMPLETE].completed_at == clock.now
    in_progress = [phase for phase, record in done.phases.items() if record.status is PhaseStatus.IN_PROGRESS]
    assert in_progress == []

    summary = LifecycleController.summarize(done)
    assert summary.success
    assert summary.iterations == 1


def test_at_most_one_phase_in_progress(controller: LifecycleController, workdir: Path) -> None:
    controller.start(workdir, "task")
    for phase in (Phase.EXECUTION, Phase.REVIEW, Phase.ASSESS):
        instance = controller.transition(workdir, phase)
        in_progress = [p for p, record in instance.phases.items() if record.status is PhaseStatus.IN_PROGRESS]
        assert in_progress == [phase]


def test_illegal_transition_leaves_document_untouched(
    controller: LifecycleController, workdir: Path, settings: RuntimeSettings
) -> None:
    controller.start(workdir, "task")
    before = WorkflowStateStore(workdir, settings).state_path.read_bytes()

    for target in (Phase.REVIEW, Phase.ASSESS, Phase.COMPLETE, Phase.FAILED, Phase.PLANNING):
        with pytest.raises(InvalidTransition):
            controller.transition(workdir, target)

    assert WorkflowStateStore(workdir, settings).state_path.read_bytes() == before


def test_transition_without_instance(controller: LifecycleController, workdir: Path) -> None:
    with pytest.raises(NoActiveWorkflow):
        controller.transition(workdir, Phase.EXECUTION)


def test_transition_after_terminal_is_rejected(controller: LifecycleController, workdir: Path) -> None:
    controller.start(workdir, "task")
    _walk_to_assess(controller, workdir)
    controller.transition(workdir, Phase.FAILED)
    with pytest.raises(NoActiveWorkflow):
        controller.transition(workdir, Phase.PLANNING)


def test_increment_resets_phases_and_keeps_wisdom(
    controller: LifecycleController, workdir: Path, settings: RuntimeSettings
) -> None:
    controller.start(workdir, "task")
    controller.set_plan_path(workdir, ".omc/plans/iteration-1.md")
    controller.link_submode(workdir, "ralph")
    _walk_to_assess(controller, workdir)
    store = WorkflowStateStore(workdir, settings)
    instance = store.read()
    assert instance is not None
    store.write(instance.model_copy(update={"learnings": ["cache the index"]}))

    nxt = controller.increment_iteration(workdir)

    assert nxt.iteration == 2
    assert nxt.active
    assert nxt.phase is Phase.PLANNING
    assert nxt.phases[Phase.PLANNING].status is PhaseStatus.IN_PROGRESS
    assert all(nxt.phases[phase].status is PhaseStatus.PENDING for phase in Phase if phase is not Phase.PLANNING)
    assert nxt.learnings == ["cache the index"]
    assert nxt.plan_path is None
    assert nxt.linked_submodes == set()


def test_increment_purges_local_submode_state(
    controller: LifecycleController, workdir: Path, settings: RuntimeSettings
) -> None:
    controller.start(workdir, "task")
    state_dir = settings.state_path(workdir)
    (state_dir / "swarm.db").write_text("db", encoding="utf-8")
    (state_dir / "plan-consensus.json").write_text("{}", encoding="utf-8")
    _walk_to_assess(controller, workdir)

    controller.increment_iteration(workdir)

    assert not (state_dir / "swarm.db").exists()
    assert not (state_dir / "plan-consensus.json").exists()
    assert (state_dir / "refresh-state.json").exists()


def test_iteration_ceiling_forces_failure(controller: LifecycleController, workdir: Path) -> None:
    controller.start(workdir, "task", config=WorkflowConfig(max_iterations=2))
    _walk_to_assess(controller, workdir)
    assert controller.increment_iteration(workdir).iteration == 2

    controller.transition(workdir, Phase.EXECUTION)
    failed = controller.increment_iteration(workdir)

    assert failed.phase is Phase.FAILED
    assert failed.iteration == 2
    assert not failed.active
    assert failed.phases[Phase.FAILED].status is PhaseStatus.FAILED
    assert failed.phases[Phase.EXECUTION].status is PhaseStatus.COMPLETE
    assert not LifecycleController.summarize(failed).success
    with pytest.raises(NoActiveWorkflow):
        controller.increment_iteration(workdir)


def test_single_iteration_budget(controller: LifecycleController, workdir: Path) -> None:
    controller.start(workdir, "task", config=WorkflowConfig(max_iterations=1))
    _walk_to_assess(controller, workdir)
    assert controller.increment_iteration(workdir).phase is Phase.FAILED


def test_submode_links(controller: LifecycleController, workdir: Path) -> None:
    controller.start(workdir, "task")
    controller.link_submode(workdir, "swarm")
    assert controller.link_submode(workdir, "ralplan").linked_submodes == {"swarm", "ralplan"}
    assert controller.unlink_submode(workdir, "swarm").linked_submodes == {"ralplan"}
    with pytest.raises(ValueError, match="unknown sub-mode"):
        controller.link_submode(workdir, "autopilot")


def test_cancel_clears_state_and_submodes(
    controller: LifecycleController, workdir: Path, settings: RuntimeSettings
) -> None:
    controller.start(workdir, "task")
    (settings.state_path(workdir) / "ralph-state.json").write_text("{}", encoding="utf-8")

    result = controller.cancel(workdir)

    assert result.success
    assert result.preserved is None
    assert controller.status(workdir) is None
    assert not (settings.state_path(workdir) / "ralph-state.json").exists()


def test_cancel_without_state(controller: LifecycleController, workdir: Path) -> None:
    result = controller.cancel(workdir)
    assert not result.success
    assert "No refresh workflow" in result.message


def test_cancel_preserve_keeps_progress(controller: LifecycleController, workdir: Path) -> None:
    controller.start(workdir, "task")
    controller.transition(workdir, Phase.EXECUTION)

    result = controller.cancel(workdir, preserve=True)

    assert result.success
    assert result.preserved is not None
    stored = controller.status(workdir)
    assert stored is not None
    assert not stored.active
    assert stored.phase is Phase.EXECUTION
    assert "Progress preserved" in result.message
    controller.start(workdir, "new task")


def test_cancel_preserve_refuses_terminal_instance(controller: LifecycleController, workdir: Path) -> None:
    controller.start(workdir, "task")
    _walk_to_assess(controller, workdir)
    controller.transition(workdir, Phase.COMPLETE)
    assert not controller.cancel(workdir, preserve=True).success
