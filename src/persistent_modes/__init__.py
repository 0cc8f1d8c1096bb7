from importlib.metadata import version

from .errors import InvalidTransition, ModeConflict, NoActiveWorkflow, PersistenceError, PromptTooLong, WorkflowRejected
from .lifecycle import LifecycleController
from .loop_driver import LoopDriver, build_context, continuation_prompt
from .mode_registry import EXCLUSIVE_MODES, FileModeRegistry, StartCheck
from .models import (
    PHASE_TRANSITIONS,
    TERMINAL_PHASES,
    CancelResult,
    LoopDecision,
    Phase,
    PhaseRecord,
    PhaseStatus,
    ResumeCheck,
    WorkflowConfig,
    WorkflowInstance,
    WorkflowSummary,
    can_transition,
    is_terminal,
)
from .notepad import NotepadStore, Wisdom
from .reaper import SubmodeReaper
from .resume import ResumabilityGuard
from .settings import RuntimeSettings
from .state_store import WorkflowStateStore
from .wisdom import WisdomAccumulator, append_bounded, truncate_entry


def get_version() -> str:
    try:
        return version("persistent-modes")
    except Exception:
        return "0.0.0"


__all__ = [
    "CancelResult",
    "EXCLUSIVE_MODES",
    "FileModeRegistry",
    "InvalidTransition",
    "LifecycleController",
    "LoopDecision",
    "LoopDriver",
    "ModeConflict",
    "NoActiveWorkflow",
    "NotepadStore",
    "PHASE_TRANSITIONS",
    "PersistenceError",
    "Phase",
    "PhaseRecord",
    "PhaseStatus",
    "PromptTooLong",
    "ResumabilityGuard",
    "ResumeCheck",
    "RuntimeSettings",
    "StartCheck",
    "SubmodeReaper",
    "TERMINAL_PHASES",
    "Wisdom",
    "WisdomAccumulator",
    "WorkflowConfig",
    "WorkflowInstance",
    "WorkflowRejected",
    "WorkflowStateStore",
    "WorkflowSummary",
    "append_bounded",
    "build_context",
    "can_transition",
    "continuation_prompt",
    "get_version",
    "is_terminal",
    "truncate_entry",
]
