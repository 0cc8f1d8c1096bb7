"""Stop-hook entry point for the persistent loop.

Every stop event re-derives what the agent should do next from the persisted
instance and its notepad alone; nothing is carried in memory between turns.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from .models import LoopDecision, Phase, WorkflowInstance
from .notepad import NotepadStore
from .reaper import SubmodeReaper
from .settings import RuntimeSettings
from .state_store import DEFAULT_WORKFLOW, WorkflowStateStore

logger = logging.getLogger(__name__)

_PHASE_TEMPLATES: dict[Phase, str] = {
    Phase.PLANNING: """{iteration} **PLANNING PHASE**

You are in the planning phase. Reach planning consensus between the Planner, Architect, and Critic roles before any code is written.

Original task: {prompt}

DO NOT STOP until the plan is approved. When it is, transition to the execution phase.""",
    Phase.EXECUTION: """{iteration} **EXECUTION PHASE**

You are in the execution phase. Execute the approved plan with maximum parallelism (up to {swarm_agents} parallel agents).

Original task: {prompt}

DO NOT STOP until all planned work is implemented. When it is, transition to the review phase.""",
    Phase.REVIEW: """{iteration} **REVIEW PHASE**

You are in the review phase. Have the Architect verify that the implementation meets every requirement.

Original task: {prompt}

The Architect MUST approve before proceeding. If the work is rejected, record the issues and transition to the assess phase.""",
    Phase.ASSESS: """{iteration} **ASSESSMENT PHASE**

The Architect has reviewed the implementation. Based on the review:

- If APPROVED: transition to the 'complete' phase. The task is done.
- If REJECTED with iterations remaining: record learnings, increment the iteration, and start fresh planning with that wisdom.
- If REJECTED and max iterations reached: transition to the 'failed' phase and report partial completion.

Original task: {prompt}""",
}


def continuation_prompt(instance: WorkflowInstance) -> str:
    """Phase-specific instruction for the next turn; empty for terminal phases."""
    template = _PHASE_TEMPLATES.get(instance.phase)
    if template is None:
        return ""
    return template.format(
        iteration=f"[Iteration {instance.iteration}/{instance.max_iterations}]",
        prompt=instance.prompt,
        swarm_agents=instance.swarm_agents,
    )


def _bullets(title: str, entries: list[str]) -> str:
    return f"## {title}\n" + "\n".join(f"- {entry}" for entry in entries)


def build_context(instance: WorkflowInstance, notepad: NotepadStore | None) -> str:
    """Accumulated wisdom from the notepad followed by the instance's status."""
    parts: list[str] = []
    wisdom = None
    if notepad is not None:
        try:
            wisdom = notepad.read_wisdom(instance.notes_handle)
        except (OSError, ValueError) as exc:
            logger.warning("Failed to read notepad %s: %s", instance.notes_handle, exc)
    if wisdom is not None:
        for title, entries in (
            ("Previous Learnings", wisdom.learnings),
            ("Decisions Made", wisdom.decisions),
            ("Known Issues", wisdom.issues),
            ("Problems Encountered", wisdom.problems),
        ):
            if entries:
                parts.append(_bullets(title, entries))

    parts.append(
        "## Loop Status\n"
        f"- Iteration: {instance.iteration}/{instance.max_iterations}\n"
        f"- Phase: {instance.phase.value}\n"
        f"- Original Task: {instance.prompt}"
    )
    return "\n\n".join(parts)


def completion_message(instance: WorkflowInstance) -> str:
    if instance.phase is Phase.COMPLETE:
        return f"Workflow completed successfully after {instance.iteration} iteration(s)."
    return (
        f"Workflow failed after {instance.iteration} of {instance.max_iterations} iteration(s). "
        "Max iterations reached without approval; report what was completed."
    )


class LoopDriver:
    def __init__(
        self,
        settings: RuntimeSettings | None = None,
        *,
        reaper: SubmodeReaper | None = None,
        notepad_factory: Callable[[Path], NotepadStore] | None = None,
        workflow: str = DEFAULT_WORKFLOW,
    ) -> None:
        self.settings = settings if settings is not None else RuntimeSettings()
        self.reaper = reaper if reaper is not None else SubmodeReaper(self.settings)
        self._notepad_factory = notepad_factory or (lambda directory: NotepadStore(directory, self.settings))
        self.workflow = workflow

    def on_stop_event(self, session_id: str | None, directory: Path | str) -> LoopDecision | None:
        """Decide whether the host may end the turn.

        Returns:
            None when there is nothing to drive (no instance, or an inactive
            non-terminal one awaiting resume). For a terminal instance the
            state is consumed: it is deleted together with its sub-modes and
            a non-blocking summary is returned. Otherwise a blocking decision
            carrying the continuation instruction and accumulated context.
        """
        directory = Path(directory)
        store = WorkflowStateStore(directory, self.settings, workflow=self.workflow)
        instance = store.read()
        if instance is None:
            return None

        if instance.is_terminal:
            store.clear()
            self.reaper.purge(directory, session_id)
            logger.info("%s finished in %s with phase %s", self.workflow, directory, instance.phase.value)
            return LoopDecision(
                should_block=False,
                message=completion_message(instance),
                phase=instance.phase,
                iteration=instance.iteration,
                max_iterations=instance.max_iterations,
            )

        if not instance.active:
            return None

        context = build_context(instance, self._notepad_factory(directory))
        message = (
            f"<{self.workflow}-continuation>\n\n"
            f"{continuation_prompt(instance)}\n\n"
            f"<{self.workflow}-wisdom>\n{context}\n</{self.workflow}-wisdom>\n\n"
            f"</{self.workflow}-continuation>"
        )
        return LoopDecision(
            should_block=True,
            message=message,
            phase=instance.phase,
            iteration=instance.iteration,
            max_iterations=instance.max_iterations,
        )
