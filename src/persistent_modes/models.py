from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, StrictBool, StrictInt, field_serializer, model_validator
from pydantic.alias_generators import to_camel

SCHEMA_VERSION = 1


class Phase(str, Enum):
    PLANNING = "planning"
    EXECUTION = "execution"
    REVIEW = "review"
    ASSESS = "assess"
    COMPLETE = "complete"
    FAILED = "failed"


class PhaseStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FAILED = "failed"


# assess -> planning is legal, but LifecycleController.increment_iteration is the
# intended retry path because it also resets phase records and reaps sub-modes.
PHASE_TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.PLANNING: frozenset({Phase.EXECUTION}),
    Phase.EXECUTION: frozenset({Phase.REVIEW}),
    Phase.REVIEW: frozenset({Phase.ASSESS}),
    Phase.ASSESS: frozenset({Phase.PLANNING, Phase.COMPLETE, Phase.FAILED}),
    Phase.COMPLETE: frozenset(),
    Phase.FAILED: frozenset(),
}

TERMINAL_PHASES: frozenset[Phase] = frozenset({Phase.COMPLETE, Phase.FAILED})

SUBMODE_NAMES: frozenset[str] = frozenset({"ralph", "ultrawork", "swarm", "ralplan"})


def can_transition(current: Phase, target: Phase) -> bool:
    return target in PHASE_TRANSITIONS[current]


def is_terminal(phase: Phase) -> bool:
    return phase in TERMINAL_PHASES


class _DocumentModel(BaseModel):
    """Base for persisted documents: camelCase on disk, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PhaseRecord(_DocumentModel):
    status: PhaseStatus = PhaseStatus.PENDING
    started_at: AwareDatetime | None = None
    completed_at: AwareDatetime | None = None


def initial_phases() -> dict[Phase, PhaseRecord]:
    return {phase: PhaseRecord() for phase in Phase}


class WorkflowInstance(_DocumentModel):
    """One run of the persistent loop for a working directory.

    Parsing is all-or-nothing: a document missing a required field, carrying
    a value of the wrong type, or describing an impossible structure raises
    ``ValidationError`` instead of producing a partially-populated instance.
    """

    schema_version: Annotated[StrictInt, Field(ge=1)] = SCHEMA_VERSION
    active: StrictBool
    iteration: Annotated[StrictInt, Field(ge=1)]
    max_iterations: Annotated[StrictInt, Field(ge=1)]
    phase: Phase
    prompt: str
    started_at: AwareDatetime
    completed_at: AwareDatetime | None = None
    session_id: str | None = None
    notes_handle: str
    phases: dict[Phase, PhaseRecord]
    learnings: list[str]
    issues: list[str]
    linked_submodes: set[str] = Field(default_factory=set)
    plan_path: str | None = None
    swarm_agents: Annotated[StrictInt, Field(ge=1)] = 3

    @model_validator(mode="after")
    def _check_structure(self) -> "WorkflowInstance":
        if self.schema_version > SCHEMA_VERSION:
            raise ValueError(
                f"schemaVersion {self.schema_version} is newer than supported version {SCHEMA_VERSION}"
            )
        missing = [phase.value for phase in Phase if phase not in self.phases]
        if missing:
            raise ValueError(f"phases is missing records for: {', '.join(missing)}")
        if self.active and self.iteration > self.max_iterations:
            raise ValueError(
                f"active instance has iteration {self.iteration} above maxIterations {self.max_iterations}"
            )
        unknown = self.linked_submodes - SUBMODE_NAMES
        if unknown:
            raise ValueError(f"unknown linked sub-modes: {', '.join(sorted(unknown))}")
        return self

    @field_serializer("linked_submodes")
    def _serialize_submodes(self, value: set[str]) -> list[str]:
        return sorted(value)

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.phase)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


@dataclass(frozen=True)
class WorkflowConfig:
    """Per-run overrides accepted by ``LifecycleController.start``."""

    max_iterations: int | None = None
    skip_planning: bool = False
    swarm_agents: int = 3

    def __post_init__(self) -> None:
        if self.max_iterations is not None and self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got: {self.max_iterations}")
        if self.swarm_agents < 1:
            raise ValueError(f"swarm_agents must be >= 1, got: {self.swarm_agents}")


@dataclass(frozen=True)
class LoopDecision:
    """What the stop hook should do with the current turn."""

    should_block: bool
    message: str
    phase: Phase
    iteration: int
    max_iterations: int


@dataclass(frozen=True)
class ResumeCheck:
    can_resume: bool
    reason: str
    instance: WorkflowInstance | None = None
    resume_phase: Phase | None = None


@dataclass(frozen=True)
class CancelResult:
    success: bool
    message: str
    preserved: WorkflowInstance | None = None


@dataclass(frozen=True)
class WorkflowSummary:
    success: bool
    phase: Phase
    iterations: int
    learnings: list[str] = field(default_factory=list)
