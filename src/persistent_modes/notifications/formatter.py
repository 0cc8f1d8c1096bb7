from __future__ import annotations

from .types import NotificationEvent, NotificationPayload


def _format_duration(duration_ms: int | None) -> str | None:
    if duration_ms is None:
        return None
    seconds = duration_ms // 1000
    hours, remainder = divmod(seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def _project_line(payload: NotificationPayload) -> str | None:
    if payload.project_name:
        return f"**Project:** `{payload.project_name}`"
    return None


def _footer(payload: NotificationPayload) -> list[str]:
    lines = []
    if payload.tmux_session:
        lines.append(f"**tmux:** `{payload.tmux_session}`")
    lines.append(f"**Session:** `{payload.session_id}`")
    return lines


def format_session_start(payload: NotificationPayload) -> str:
    lines = ["# Session Started", ""]
    if project := _project_line(payload):
        lines.append(project)
    lines.extend(_footer(payload))
    return "\n".join(lines)


def format_session_stop(payload: NotificationPayload) -> str:
    """Sent when a persistent mode blocks a stop and keeps the session working."""
    lines = ["# Session Continuing", ""]
    if payload.active_mode:
        lines.append(f"**Mode:** {payload.active_mode}")
    if payload.iteration is not None and payload.max_iterations is not None:
        lines.append(f"**Iteration:** {payload.iteration}/{payload.max_iterations}")
    if payload.incomplete_tasks:
        lines.append(f"**Incomplete tasks:** {payload.incomplete_tasks}")
    if project := _project_line(payload):
        lines.append(project)
    lines.extend(_footer(payload))
    return "\n".join(lines)


def format_session_end(payload: NotificationPayload) -> str:
    lines = ["# Session Ended", ""]
    if project := _project_line(payload):
        lines.append(project)
    if duration := _format_duration(payload.duration_ms):
        lines.append(f"**Duration:** {duration}")
    if payload.reason:
        lines.append(f"**Reason:** {payload.reason}")
    if payload.modes_used:
        lines.append(f"**Modes:** {', '.join(payload.modes_used)}")
    if payload.iteration is not None and payload.max_iterations is not None:
        lines.append(f"**Iterations:** {payload.iteration}/{payload.max_iterations}")
    if payload.context_summary:
        lines.extend(["", payload.context_summary])
    lines.extend(_footer(payload))
    return "\n".join(lines)


def format_ask_user_question(payload: NotificationPayload) -> str:
    lines = ["# Input Needed", ""]
    if payload.question:
        lines.extend([payload.question, ""])
    if project := _project_line(payload):
        lines.append(project)
    lines.extend(_footer(payload))
    return "\n".join(lines)


_FORMATTERS = {
    NotificationEvent.SESSION_START: format_session_start,
    NotificationEvent.SESSION_STOP: format_session_stop,
    NotificationEvent.SESSION_END: format_session_end,
    NotificationEvent.ASK_USER_QUESTION: format_ask_user_question,
}


def format_notification(payload: NotificationPayload) -> str:
    """Markdown message for ``payload.event``."""
    return _FORMATTERS[payload.event](payload)
