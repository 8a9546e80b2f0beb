"""Notification and audit adapters."""

from __future__ import annotations

from reviewflow.integrations.logging_ports import (
    LoggingNotificationPort,
    StructlogAuditPort,
    build_notification_port,
)
from reviewflow.integrations.webhook import (
    NotificationDeliveryError,
    WebhookClient,
    WebhookConfig,
    WebhookEventType,
    WebhookNotificationPort,
    WebhookPayload,
)

__all__ = [
    "LoggingNotificationPort",
    "NotificationDeliveryError",
    "StructlogAuditPort",
    "WebhookClient",
    "WebhookConfig",
    "WebhookEventType",
    "WebhookNotificationPort",
    "WebhookPayload",
    "build_notification_port",
]
