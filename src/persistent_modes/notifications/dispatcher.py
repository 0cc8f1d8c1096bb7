"""Fan-out of lifecycle notifications to the configured platforms.

Sends run concurrently, each bounded by its own timeout, and the whole
dispatch is abandoned after an overall timeout. Nothing here raises into the
caller: every failure becomes a ``NotificationResult`` with ``success=False``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import threading
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Callable

from ..settings import RuntimeSettings
from .config import effective_platform_config, get_enabled_platforms, get_notification_config
from .formatter import format_notification
from .types import (
    DiscordBotNotificationConfig,
    DiscordNotificationConfig,
    DispatchResult,
    NotificationConfig,
    NotificationEvent,
    NotificationPayload,
    NotificationPlatform,
    NotificationResult,
    SlackNotificationConfig,
    TelegramNotificationConfig,
    WebhookNotificationConfig,
)

logger = logging.getLogger(__name__)

SEND_TIMEOUT_SECONDS = 10
DISPATCH_TIMEOUT_SECONDS = 5

_TELEGRAM_TOKEN_RE = re.compile(r"^[0-9]+:[A-Za-z0-9_-]+$")
_DISCORD_HOSTS = ("discord.com", "discordapp.com")
_SLACK_HOST = "hooks.slack.com"


def _host_matches(hostname: str | None, allowed: str) -> bool:
    return hostname is not None and (hostname == allowed or hostname.endswith(f".{allowed}"))


def validate_discord_url(url: str) -> bool:
    parsed = urllib.parse.urlparse(url)
    return parsed.scheme == "https" and any(_host_matches(parsed.hostname, host) for host in _DISCORD_HOSTS)


def validate_slack_url(url: str) -> bool:
    parsed = urllib.parse.urlparse(url)
    return parsed.scheme == "https" and _host_matches(parsed.hostname, _SLACK_HOST)


def validate_webhook_url(url: str) -> bool:
    parsed = urllib.parse.urlparse(url)
    return parsed.scheme == "https" and bool(parsed.hostname)


def validate_telegram_token(token: str) -> bool:
    return bool(_TELEGRAM_TOKEN_RE.match(token))


def _http_send_json(
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str],
    *,
    method: str = "POST",
    timeout: float = SEND_TIMEOUT_SECONDS,
) -> None:
    """Send a JSON request and discard the response body.

    Raises:
        RuntimeError: On an HTTP error status or a transport failure.
    """
    request = urllib.request.Request(
        url,
        method=method,
        headers={"Content-Type": "application/json", **headers},
        data=json.dumps(payload).encode("utf-8"),
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            response.read()
    except urllib.error.HTTPError as exc:
        raise RuntimeError(f"HTTP {exc.code}") from exc
    except urllib.error.URLError as exc:
        raise RuntimeError(f"Failed to reach host: {exc.reason}") from exc
    except TimeoutError as exc:
        raise RuntimeError("Request timeout") from exc
    except OSError as exc:
        raise RuntimeError(f"Connection error: {exc}") from exc


def _discord_request(config: DiscordNotificationConfig, payload: NotificationPayload) -> tuple[str, dict[str, Any], dict[str, str]]:
    if not config.webhook_url:
        raise ValueError("Not configured")
    if not validate_discord_url(config.webhook_url):
        raise ValueError("Invalid webhook URL")
    body: dict[str, Any] = {"content": payload.message}
    if config.username:
        body["username"] = config.username
    return config.webhook_url, body, {}


def _discord_bot_request(config: DiscordBotNotificationConfig, payload: NotificationPayload) -> tuple[str, dict[str, Any], dict[str, str]]:
    bot_token = config.bot_token or os.getenv("OMC_DISCORD_NOTIFIER_BOT_TOKEN")
    channel_id = config.channel_id or os.getenv("OMC_DISCORD_NOTIFIER_CHANNEL")
    if not bot_token or not channel_id:
        raise ValueError("Missing botToken or channelId")
    url = f"https://discord.com/api/v10/channels/{urllib.parse.quote(channel_id, safe='')}/messages"
    return url, {"content": payload.message}, {"Authorization": f"Bot {bot_token}"}


def _telegram_request(config: TelegramNotificationConfig, payload: NotificationPayload) -> tuple[str, dict[str, Any], dict[str, str]]:
    if not config.bot_token or not config.chat_id:
        raise ValueError("Not configured")
    if not validate_telegram_token(config.bot_token):
        raise ValueError("Invalid bot token format")
    body = {"chat_id": config.chat_id, "text": payload.message, "parse_mode": config.parse_mode or "Markdown"}
    return f"https://api.telegram.org/bot{config.bot_token}/sendMessage", body, {}


def _slack_request(config: SlackNotificationConfig, payload: NotificationPayload) -> tuple[str, dict[str, Any], dict[str, str]]:
    if not config.webhook_url:
        raise ValueError("Not configured")
    if not validate_slack_url(config.webhook_url):
        raise ValueError("Invalid webhook URL")
    body: dict[str, Any] = {"text": payload.message}
    if config.channel:
        body["channel"] = config.channel
    if config.username:
        body["username"] = config.username
    return config.webhook_url, body, {}


_WEBHOOK_FIELDS = (
    "event",
    "session_id",
    "message",
    "timestamp",
    "tmux_session",
    "project_name",
    "project_path",
    "modes_used",
    "duration_ms",
    "reason",
    "active_mode",
    "iteration",
    "max_iterations",
    "question",
)


def _webhook_request(config: WebhookNotificationConfig, payload: NotificationPayload) -> tuple[str, dict[str, Any], dict[str, str]]:
    if not config.url:
        raise ValueError("Not configured")
    if not validate_webhook_url(config.url):
        raise ValueError("Invalid URL (HTTPS required)")
    body = payload.model_dump(mode="json", include=set(_WEBHOOK_FIELDS), exclude_none=True)
    return config.url, body, dict(config.headers)


_REQUEST_BUILDERS = {
    NotificationPlatform.DISCORD: _discord_request,
    NotificationPlatform.DISCORD_BOT: _discord_bot_request,
    NotificationPlatform.TELEGRAM: _telegram_request,
    NotificationPlatform.SLACK: _slack_request,
    NotificationPlatform.WEBHOOK: _webhook_request,
}


def _run_in_daemon_thread(func: Callable[[], None]) -> asyncio.Future[None]:
    """Run blocking ``func`` on a daemon thread and expose its outcome as a future.

    Executor workers are joined at interpreter exit, so a hung request would
    keep the hook process alive after the dispatch gave up on it. A daemon
    thread is simply dropped when the process exits.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future[None] = loop.create_future()

    def _deliver(error: Exception | None) -> None:
        if future.done():
            return
        if error is None:
            future.set_result(None)
        else:
            future.set_exception(error)

    def _target() -> None:
        error: Exception | None = None
        try:
            func()
        except Exception as exc:  # noqa: BLE001
            error = exc
        try:
            loop.call_soon_threadsafe(_deliver, error)
        except RuntimeError:
            # Loop already closed: the dispatch finished without this send.
            logger.debug("Dropping result of abandoned notification send")

    threading.Thread(target=_target, name="notify", daemon=True).start()
    return future


async def send_platform(
    platform: NotificationPlatform,
    platform_config: Any,
    payload: NotificationPayload,
    *,
    timeout: float = SEND_TIMEOUT_SECONDS,
) -> NotificationResult:
    """Deliver ``payload`` to one platform. Never raises."""
    if platform_config is None or not getattr(platform_config, "enabled", False):
        return NotificationResult(platform=platform, success=False, error="Not enabled")
    try:
        url, body, headers = _REQUEST_BUILDERS[platform](platform_config, payload)
    except ValueError as exc:
        return NotificationResult(platform=platform, success=False, error=str(exc))

    method = getattr(platform_config, "method", "POST") or "POST"
    try:
        await asyncio.wait_for(
            _run_in_daemon_thread(lambda: _http_send_json(url, body, headers, method=method, timeout=timeout)),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        return NotificationResult(platform=platform, success=False, error="Request timeout")
    except RuntimeError as exc:
        return NotificationResult(platform=platform, success=False, error=str(exc))
    return NotificationResult(platform=platform, success=True)


def _render_message(config: NotificationConfig, event: NotificationEvent, payload: NotificationPayload) -> NotificationPayload:
    event_config = config.events.get(event)
    if event_config is not None and event_config.message_template:
        fields = {key: "" if value is None else value for key, value in payload.model_dump(mode="json").items()}
        try:
            message = event_config.message_template.format_map(fields)
        except (KeyError, IndexError, ValueError) as exc:
            logger.warning("Ignoring invalid message template for %s: %s", event.value, exc)
            message = format_notification(payload)
        return payload.model_copy(update={"message": message})
    if not payload.message:
        return payload.model_copy(update={"message": format_notification(payload)})
    return payload


async def dispatch_notifications(
    config: NotificationConfig,
    event: NotificationEvent,
    payload: NotificationPayload,
    *,
    send_timeout: float = SEND_TIMEOUT_SECONDS,
    dispatch_timeout: float = DISPATCH_TIMEOUT_SECONDS,
) -> DispatchResult:
    """Send ``payload`` to every platform enabled for ``event`` in parallel.

    Platforms still in flight when ``dispatch_timeout`` expires are abandoned
    and reported as timed out.
    """
    platforms = get_enabled_platforms(config, event)
    if not platforms:
        return DispatchResult(event=event)

    payload = _render_message(config, event, payload)
    tasks = {
        platform: asyncio.create_task(
            send_platform(
                platform,
                effective_platform_config(config, event, platform),
                payload,
                timeout=send_timeout,
            )
        )
        for platform in platforms
    }
    done, pending = await asyncio.wait(tasks.values(), timeout=dispatch_timeout)
    for task in pending:
        task.cancel()

    results: list[NotificationResult] = []
    for platform, task in tasks.items():
        if task not in done:
            results.append(NotificationResult(platform=platform, success=False, error="Dispatch timeout"))
        elif task.exception() is not None:
            results.append(NotificationResult(platform=platform, success=False, error=str(task.exception())))
        else:
            results.append(task.result())

    for result in results:
        if not result.success:
            logger.debug("Notification to %s failed: %s", result.platform, result.error)
    return DispatchResult(event=event, results=results)


def notify(
    event: NotificationEvent,
    payload: NotificationPayload,
    settings: RuntimeSettings | None = None,
    config: NotificationConfig | None = None,
) -> DispatchResult | None:
    """Synchronous best-effort dispatch for hook scripts.

    Returns None when notifications are not configured for ``event`` or the
    dispatch itself could not run.
    """
    settings = settings if settings is not None else RuntimeSettings()
    config = config if config is not None else get_notification_config(settings)
    if config is None or not get_enabled_platforms(config, event):
        return None
    try:
        return asyncio.run(
            dispatch_notifications(
                config,
                event,
                payload,
                send_timeout=settings.notification_send_timeout_seconds,
                dispatch_timeout=settings.notification_dispatch_timeout_seconds,
            )
        )
    except Exception as exc:  # noqa: BLE001
        logger.warning("Notification dispatch for %s failed: %s", event.value, exc)
        return None
