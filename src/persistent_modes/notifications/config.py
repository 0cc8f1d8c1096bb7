"""Notification configuration.

Sources, first match wins:

1. the ``notifications`` key of the JSON config file (``~/.claude/.omc-config.json``),
2. ``OMC_*`` environment variables, for zero-config setups,
3. the legacy ``stopHookCallbacks`` block of the same file, migrated to a
   ``session-end`` only configuration.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

from pydantic import BaseModel, ValidationError

from ..settings import RuntimeSettings
from .types import (
    DiscordBotNotificationConfig,
    DiscordNotificationConfig,
    EventNotificationConfig,
    NotificationConfig,
    NotificationEvent,
    NotificationPlatform,
    SlackNotificationConfig,
    TelegramNotificationConfig,
)

logger = logging.getLogger(__name__)


def _read_raw_config(settings: RuntimeSettings) -> dict[str, Any] | None:
    path = settings.config_path()
    if path is None or not path.is_file():
        return None
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable config file %s: %s", path, exc)
        return None
    return raw if isinstance(raw, dict) else None


def _migrate_stop_hook_callbacks(raw: dict[str, Any]) -> NotificationConfig | None:
    callbacks = raw.get("stopHookCallbacks")
    if not isinstance(callbacks, dict):
        return None

    config = NotificationConfig(
        enabled=True,
        events={NotificationEvent.SESSION_END: EventNotificationConfig(enabled=True)},
    )
    telegram = callbacks.get("telegram")
    if isinstance(telegram, dict) and telegram.get("enabled"):
        config.telegram = TelegramNotificationConfig(
            enabled=True,
            bot_token=str(telegram.get("botToken") or ""),
            chat_id=str(telegram.get("chatId") or ""),
        )
    discord = callbacks.get("discord")
    if isinstance(discord, dict) and discord.get("enabled"):
        config.discord = DiscordNotificationConfig(enabled=True, webhook_url=str(discord.get("webhookUrl") or ""))
    return config


def _build_config_from_env() -> NotificationConfig | None:
    config = NotificationConfig(enabled=True)
    found = False

    bot_token = os.getenv("OMC_DISCORD_NOTIFIER_BOT_TOKEN")
    channel = os.getenv("OMC_DISCORD_NOTIFIER_CHANNEL")
    if bot_token and channel:
        config.discord_bot = DiscordBotNotificationConfig(enabled=True, bot_token=bot_token, channel_id=channel)
        found = True

    discord_webhook = os.getenv("OMC_DISCORD_WEBHOOK_URL")
    if discord_webhook:
        config.discord = DiscordNotificationConfig(enabled=True, webhook_url=discord_webhook)
        found = True

    telegram_token = os.getenv("OMC_TELEGRAM_BOT_TOKEN")
    telegram_chat = os.getenv("OMC_TELEGRAM_CHAT_ID")
    if telegram_token and telegram_chat:
        config.telegram = TelegramNotificationConfig(enabled=True, bot_token=telegram_token, chat_id=telegram_chat)
        found = True

    slack_webhook = os.getenv("OMC_SLACK_WEBHOOK_URL")
    if slack_webhook:
        config.slack = SlackNotificationConfig(enabled=True, webhook_url=slack_webhook)
        found = True

    return config if found else None


def get_notification_config(settings: RuntimeSettings | None = None) -> NotificationConfig | None:
    """Resolve the notification configuration, or None when nothing is configured."""
    settings = settings if settings is not None else RuntimeSettings()
    raw = _read_raw_config(settings)

    if raw is not None and "notifications" in raw:
        try:
            return NotificationConfig.model_validate(raw["notifications"])
        except ValidationError as exc:
            logger.warning("Invalid notifications config: %s", exc)
            return None

    env_config = _build_config_from_env()
    if env_config is not None:
        return env_config

    if raw is not None:
        return _migrate_stop_hook_callbacks(raw)
    return None


def effective_platform_config(
    config: NotificationConfig, event: NotificationEvent, platform: NotificationPlatform
) -> BaseModel | None:
    """Event-level platform config if present, else the top-level default."""
    event_config = config.events.get(event)
    override = event_config.platform_config(platform) if event_config is not None else None
    return override if override is not None else config.platform_config(platform)


def get_enabled_platforms(config: NotificationConfig, event: NotificationEvent) -> list[NotificationPlatform]:
    """Platforms that should receive ``event``; event-level entries override top-level ones."""
    if not config.enabled:
        return []
    event_config = config.events.get(event)
    if event_config is not None and not event_config.enabled:
        return []
    return [
        platform
        for platform in NotificationPlatform
        if getattr(effective_platform_config(config, event, platform), "enabled", False)
    ]


def is_event_enabled(config: NotificationConfig, event: NotificationEvent) -> bool:
    return bool(get_enabled_platforms(config, event))
