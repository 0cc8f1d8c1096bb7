from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

from persistent_modes.canonical import fingerprint
from persistent_modes.models import Phase, PhaseRecord, PhaseStatus, WorkflowInstance, initial_phases
from persistent_modes.settings import RuntimeSettings
from persistent_modes.state_store import WorkflowStateStore

STARTED = datetime(2025, 1, 15, 10, 30, tzinfo=UTC)


def _instance(**updates: object) -> WorkflowInstance:
    phases = initial_phases()
    phases[Phase.PLANNING] = PhaseRecord(status=PhaseStatus.IN_PROGRESS, started_at=STARTED)
    instance = WorkflowInstance(
        active=True,
        iteration=1,
        max_iterations=5,
        phase=Phase.PLANNING,
        prompt="Build a todo app",
        started_at=STARTED,
        notes_handle="refresh-2025-01-15T10-30-00-000",
        phases=phases,
        learnings=[],
        issues=[],
    )
    return instance.model_copy(update=updates)


def test_state_path_layout(workdir: Path, settings: RuntimeSettings) -> None:
    store = WorkflowStateStore(workdir, settings)
    assert store.state_path == workdir.resolve() / ".omc" / "state" / "refresh-state.json"


def test_state_path_normalizes_parent_segments(workdir: Path, settings: RuntimeSettings) -> None:
    nested = workdir / "sub"
    nested.mkdir()
    store = WorkflowStateStore(nested / "..", settings)
    assert store.state_path == workdir.resolve() / ".omc" / "state" / "refresh-state.json"


def test_read_missing_returns_none(workdir: Path, settings: RuntimeSettings) -> None:
    store = WorkflowStateStore(workdir, settings)
    assert not store.exists()
    assert store.read() is None
    assert not store.is_active()
    assert store.fingerprint() is None


def test_write_then_read_round_trip(workdir: Path, settings: RuntimeSettings) -> None:
    store = WorkflowStateStore(workdir, settings)
    instance = _instance(learnings=["keep tests green"], linked_submodes={"ralph"})
    assert store.write(instance)
    assert store.exists()
    assert store.read() == instance
    assert store.is_active()
    raw = json.loads(store.state_path.read_text(encoding="utf-8"))
    assert raw["notesHandle"] == "refresh-2025-01-15T10-30-00-000"
    assert raw["phases"]["planning"]["status"] == "in_progress"


def test_write_leaves_no_temp_files(workdir: Path, settings: RuntimeSettings) -> None:
    store = WorkflowStateStore(workdir, settings)
    store.write(_instance())
    store.write(_instance(iteration=2))
    assert [path.name for path in store.state_dir.iterdir()] == ["refresh-state.json"]


def test_corrupt_documents_read_as_none(workdir: Path, settings: RuntimeSettings) -> None:
    store = WorkflowStateStore(workdir, settings)
    store.state_dir.mkdir(parents=True)
    for content in ("", "   ", "{not json", "[]", json.dumps({"active": True})):
        store.state_path.write_text(content, encoding="utf-8")
        assert store.read() is None
    store.state_path.write_bytes(b"\xff\xfe\x00")
    assert store.read() is None


def test_document_missing_iteration_reads_as_none(workdir: Path, settings: RuntimeSettings) -> None:
    store = WorkflowStateStore(workdir, settings)
    store.write(_instance())
    document = json.loads(store.state_path.read_text(encoding="utf-8"))
    del document["iteration"]
    store.state_path.write_text(json.dumps(document), encoding="utf-8")
    assert store.read() is None


def test_clear_is_idempotent(workdir: Path, settings: RuntimeSettings) -> None:
    store = WorkflowStateStore(workdir, settings)
    store.write(_instance())
    assert store.clear()
    assert not store.exists()
    assert store.clear()


def test_conditional_write_succeeds_when_unchanged(workdir: Path, settings: RuntimeSettings) -> None:
    store = WorkflowStateStore(workdir, settings)
    original = _instance()
    store.write(original)
    updated = original.model_copy(update={"active": False})
    assert store.write(updated, expected_fingerprint=fingerprint(original))
    assert store.read() == updated


def test_conditional_write_refuses_lost_update(workdir: Path, settings: RuntimeSettings) -> None:
    store = WorkflowStateStore(workdir, settings)
    original = _instance()
    store.write(original)
    expected = fingerprint(original)

    concurrent = original.model_copy(update={"learnings": ["written by another session"]})
    store.write(concurrent)

    assert not store.write(original.model_copy(update={"active": False}), expected_fingerprint=expected)
    assert store.read() == concurrent


def test_other_workflow_uses_its_own_document(workdir: Path, settings: RuntimeSettings) -> None:
    store = WorkflowStateStore(workdir, settings, workflow="autopilot")
    store.write(_instance())
    assert store.state_path.name == "autopilot-state.json"
    assert WorkflowStateStore(workdir, settings).read() is None
