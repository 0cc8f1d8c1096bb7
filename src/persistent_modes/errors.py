"""Rejections raised by workflow lifecycle operations.

Every rejection is raised before any state is written, so a caller that
catches one can rely on the persisted document being unchanged.
"""

from __future__ import annotations


class WorkflowRejected(ValueError):
    """Base class for an operation that was refused without mutating state."""


class PromptTooLong(WorkflowRejected):
    def __init__(self, length: int, limit: int) -> None:
        super().__init__(f"Prompt exceeds maximum length ({length} > {limit} chars)")
        self.length = length
        self.limit = limit


class ModeConflict(WorkflowRejected):
    """Another mutually-exclusive workflow is active for the directory."""


class NoActiveWorkflow(WorkflowRejected):
    def __init__(self, directory: object) -> None:
        super().__init__(f"No active workflow in {directory}")


class InvalidTransition(WorkflowRejected):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Invalid phase transition: {current} -> {target}")
        self.current = current
        self.target = target


class PersistenceError(WorkflowRejected):
    """The state document could not be durably written."""
