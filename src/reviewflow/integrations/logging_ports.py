"""Side-effect ports that write to the structured log.

These are the default ports when no webhook is configured, and the audit
sink for deployments that ship logs to a central store.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from reviewflow.config import NotificationConfig
from reviewflow.database.models.entity import Stage
from reviewflow.integrations.webhook import (
    WebhookClient,
    WebhookConfig,
    WebhookNotificationPort,
)
from reviewflow.logging import get_logger
from reviewflow.workflow.ports import EntitySnapshot, NotificationPort

logger = get_logger(__name__)


class StructlogAuditPort:
    """AuditPort that emits one ``audit_event`` log line per event."""

    def __init__(self) -> None:
        self._logger = logger.bind(component="AuditLog")

    async def record(
        self,
        event_type: str,
        entity_type: str | None,
        entity_id: UUID | None,
        actor_id: UUID | None,
        metadata: dict[str, Any],
    ) -> None:
        self._logger.info(
            "audit_event",
            event_type=event_type,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id else None,
            actor_id=str(actor_id) if actor_id else None,
            metadata=metadata,
        )


class LoggingNotificationPort:
    """NotificationPort that only logs the request."""

    def __init__(self) -> None:
        self._logger = logger.bind(component="Notifications")

    async def phase_transition(
        self,
        entity: EntitySnapshot,
        old_stage: Stage,
        new_stage: Stage,
    ) -> None:
        self._logger.info(
            "phase_transition_notification",
            entity_type=entity.entity_type.value,
            entity_id=str(entity.id),
            old_stage=old_stage.value,
            new_stage=new_stage.value,
        )


def build_notification_port(config: NotificationConfig) -> NotificationPort:
    """Pick the notification port for the configured delivery channel."""
    if config.webhook_url and config.enabled:
        client = WebhookClient(
            WebhookConfig(
                webhook_url=config.webhook_url,
                auth_header=config.auth_header,
                timeout_seconds=config.timeout_seconds,
                enabled=config.enabled,
            )
        )
        return WebhookNotificationPort(client)
    return LoggingNotificationPort()
