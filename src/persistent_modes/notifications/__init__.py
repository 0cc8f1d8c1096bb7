from .config import get_enabled_platforms, get_notification_config, is_event_enabled
from .dispatcher import dispatch_notifications, notify, send_platform
from .formatter import format_notification
from .tmux import current_tmux_session
from .types import (
    DispatchResult,
    NotificationConfig,
    NotificationEvent,
    NotificationPayload,
    NotificationPlatform,
    NotificationResult,
)

__all__ = [
    "DispatchResult",
    "NotificationConfig",
    "NotificationEvent",
    "NotificationPayload",
    "NotificationPlatform",
    "NotificationResult",
    "current_tmux_session",
    "dispatch_notifications",
    "format_notification",
    "get_enabled_platforms",
    "get_notification_config",
    "is_event_enabled",
    "notify",
    "send_platform",
]
