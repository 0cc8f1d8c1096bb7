"""Entry point for `python -m persistent_modes` and the `persistent-modes` CLI script."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from persistent_modes.errors import WorkflowRejected
from persistent_modes.lifecycle import LifecycleController
from persistent_modes.loop_driver import LoopDriver
from persistent_modes.models import Phase, WorkflowConfig, WorkflowInstance
from persistent_modes.notifications import NotificationEvent, NotificationPayload, current_tmux_session, notify
from persistent_modes.resume import ResumabilityGuard
from persistent_modes.settings import RuntimeSettings
from persistent_modes.wisdom import WisdomAccumulator

logger = logging.getLogger("persistent_modes")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Drive the persistent plan/execute/review/assess loop")
    parser.add_argument(
        "--directory",
        type=Path,
        default=Path.cwd(),
        help="Working directory whose workflow state is used (default: cwd)",
    )
    parser.add_argument("--session-id", default=None, help="Host session identifier")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    start = sub.add_parser("start", help="Start a new workflow")
    start.add_argument("prompt", help="Task description")
    start.add_argument("--max-iterations", type=int, default=None)
    start.add_argument("--skip-planning", action="store_true", help="Enter at the execution phase")
    start.add_argument("--swarm-agents", type=int, default=3)

    transition = sub.add_parser("transition", help="Move to the next phase")
    transition.add_argument("phase", choices=[phase.value for phase in Phase])

    sub.add_parser("increment", help="Start the next iteration, or fail at the ceiling")

    learn = sub.add_parser("learn", help="Record a learning")
    learn.add_argument("text")

    issue = sub.add_parser("issue", help="Record an issue")
    issue.add_argument("text")

    sub.add_parser("status", help="Print the persisted instance as JSON")
    sub.add_parser("can-resume", help="Check whether a saved workflow can be resumed")
    sub.add_parser("resume", help="Resume a saved workflow")

    cancel = sub.add_parser("cancel", help="Cancel the workflow")
    cancel.add_argument("--preserve", action="store_true", help="Keep progress so the workflow can be resumed")

    sub.add_parser("stop-hook", help="Handle a host stop event (JSON on stdin)")
    return parser


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _read_hook_input(stream: Any) -> dict[str, Any]:
    raw = stream.read()
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Ignoring malformed hook input: %s", exc)
        return {}
    return payload if isinstance(payload, dict) else {}


def _hook_field(hook_input: dict[str, Any], *keys: str) -> str | None:
    """First non-empty string among ``keys``; other JSON types are ignored."""
    for key in keys:
        value = hook_input.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _notification_payload(
    event: NotificationEvent,
    session_id: str | None,
    directory: Path,
    instance: WorkflowInstance,
    **extra: Any,
) -> NotificationPayload:
    return NotificationPayload(
        event=event,
        session_id=session_id or "unknown",
        timestamp=datetime.now(UTC).isoformat(),
        tmux_session=current_tmux_session(),
        project_path=str(directory),
        project_name=directory.name,
        active_mode="refresh",
        iteration=instance.iteration,
        max_iterations=instance.max_iterations,
        **extra,
    )


def run_stop_hook(settings: RuntimeSettings, stdin: Any = None) -> dict[str, Any]:
    """Evaluate one stop event and return the hook response document."""
    hook_input = _read_hook_input(stdin if stdin is not None else sys.stdin)
    session_id = _hook_field(hook_input, "session_id", "sessionId")
    directory = Path(_hook_field(hook_input, "directory", "cwd") or Path.cwd()).resolve()

    # The driver deletes a finished instance, so keep a copy for the end notification.
    instance = LifecycleController(settings).status(directory)
    decision = LoopDriver(settings).on_stop_event(session_id, directory)
    if decision is None or instance is None:
        return {"continue": True}

    if decision.should_block:
        notify(
            NotificationEvent.SESSION_STOP,
            _notification_payload(NotificationEvent.SESSION_STOP, session_id, directory, instance),
            settings,
        )
        return {"decision": "block", "reason": decision.message}

    duration_ms = int((datetime.now(UTC) - instance.started_at).total_seconds() * 1000)
    notify(
        NotificationEvent.SESSION_END,
        _notification_payload(
            NotificationEvent.SESSION_END,
            session_id,
            directory,
            instance,
            duration_ms=duration_ms,
            reason=instance.phase.value,
            modes_used=sorted({"refresh", *instance.linked_submodes}),
        ),
        settings,
    )
    return {"continue": True, "message": decision.message}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        settings = RuntimeSettings.from_env(Path.cwd())
    except ValueError as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1

    directory: Path = args.directory
    controller = LifecycleController(settings)
    try:
        if args.command == "start":
            config = WorkflowConfig(
                max_iterations=args.max_iterations,
                skip_planning=args.skip_planning,
                swarm_agents=args.swarm_agents,
            )
            instance = controller.start(directory, args.prompt, args.session_id, config)
            notify(
                NotificationEvent.SESSION_START,
                _notification_payload(NotificationEvent.SESSION_START, args.session_id, directory.resolve(), instance),
                settings,
            )
            print(f"phase={instance.phase.value} iteration={instance.iteration}/{instance.max_iterations}")
        elif args.command == "transition":
            instance = controller.transition(directory, args.phase)
            print(f"phase={instance.phase.value}")
        elif args.command == "increment":
            instance = controller.increment_iteration(directory, args.session_id)
            print(f"phase={instance.phase.value} iteration={instance.iteration}/{instance.max_iterations}")
        elif args.command in ("learn", "issue"):
            accumulator = WisdomAccumulator(settings)
            add = accumulator.add_learning if args.command == "learn" else accumulator.add_issue
            if not add(directory, args.text):
                print(f"Failed to record {args.command}", file=sys.stderr)
                return 1
        elif args.command == "status":
            instance = controller.status(directory)
            if instance is None:
                print("No workflow state", file=sys.stderr)
                return 1
            print(instance.to_json())
        elif args.command == "can-resume":
            check = ResumabilityGuard(settings).can_resume(directory)
            _print_json(
                {
                    "canResume": check.can_resume,
                    "reason": check.reason,
                    "resumePhase": check.resume_phase.value if check.resume_phase else None,
                }
            )
            return 0 if check.can_resume else 1
        elif args.command == "resume":
            check = ResumabilityGuard(settings).resume(directory, args.session_id)
            if not check.can_resume:
                print(f"Cannot resume: {check.reason}", file=sys.stderr)
                return 1
            print(f"phase={check.resume_phase.value if check.resume_phase else ''}")
        elif args.command == "cancel":
            result = controller.cancel(directory, args.session_id, preserve=args.preserve)
            print(result.message, file=sys.stdout if result.success else sys.stderr)
            return 0 if result.success else 1
        elif args.command == "stop-hook":
            _print_json(run_stop_hook(settings))
    except (WorkflowRejected, ValueError) as exc:
        print(str(exc), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
