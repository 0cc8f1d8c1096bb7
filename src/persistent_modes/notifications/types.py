from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class NotificationEvent(str, Enum):
    SESSION_START = "session-start"
    SESSION_STOP = "session-stop"
    SESSION_END = "session-end"
    ASK_USER_QUESTION = "ask-user-question"


class NotificationPlatform(str, Enum):
    DISCORD = "discord"
    DISCORD_BOT = "discord-bot"
    TELEGRAM = "telegram"
    SLACK = "slack"
    WEBHOOK = "webhook"


class _ConfigModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DiscordNotificationConfig(_ConfigModel):
    enabled: bool = False
    webhook_url: str = ""
    username: str | None = None


class DiscordBotNotificationConfig(_ConfigModel):
    """Bot token and channel fall back to OMC_DISCORD_NOTIFIER_BOT_TOKEN / _CHANNEL."""

    enabled: bool = False
    bot_token: str | None = None
    channel_id: str | None = None


class TelegramNotificationConfig(_ConfigModel):
    enabled: bool = False
    bot_token: str = ""
    chat_id: str = ""
    parse_mode: str = "Markdown"


class SlackNotificationConfig(_ConfigModel):
    enabled: bool = False
    webhook_url: str = ""
    channel: str | None = None
    username: str | None = None


class WebhookNotificationConfig(_ConfigModel):
    enabled: bool = False
    url: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    method: str = "POST"


class _PlatformConfigs(_ConfigModel):
    discord: DiscordNotificationConfig | None = None
    discord_bot: DiscordBotNotificationConfig | None = Field(default=None, alias="discord-bot")
    telegram: TelegramNotificationConfig | None = None
    slack: SlackNotificationConfig | None = None
    webhook: WebhookNotificationConfig | None = None

    def platform_config(self, platform: NotificationPlatform) -> _ConfigModel | None:
        return getattr(self, platform.value.replace("-", "_"))


class EventNotificationConfig(_PlatformConfigs):
    """Per-event settings; platform entries here override the top-level ones."""

    enabled: bool = True
    message_template: str | None = None


class NotificationConfig(_PlatformConfigs):
    enabled: bool
    events: dict[NotificationEvent, EventNotificationConfig] = Field(default_factory=dict)


class NotificationPayload(BaseModel):
    event: NotificationEvent
    session_id: str
    message: str = ""
    timestamp: str
    tmux_session: str | None = None
    project_path: str | None = None
    project_name: str | None = None
    modes_used: list[str] | None = None
    context_summary: str | None = None
    duration_ms: int | None = None
    reason: str | None = None
    active_mode: str | None = None
    iteration: int | None = None
    max_iterations: int | None = None
    question: str | None = None
    incomplete_tasks: int | None = None


class NotificationResult(BaseModel):
    platform: NotificationPlatform | None
    success: bool
    error: str | None = None


class DispatchResult(BaseModel):
    event: NotificationEvent
    results: list[NotificationResult] = Field(default_factory=list)

    @property
    def any_success(self) -> bool:
        return any(result.success for result in self.results)
