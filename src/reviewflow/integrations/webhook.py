"""Webhook delivery of phase-transition notifications."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID

import httpx

from reviewflow.database.models.entity import Stage
from reviewflow.logging import get_logger
from reviewflow.workflow.ports import EntitySnapshot

logger = get_logger(__name__)


class WebhookEventType(str, Enum):
    """Types of events posted to the notification webhook."""

    PHASE_TRANSITION = "phase_transition"


class NotificationDeliveryError(Exception):
    """Raised when the webhook did not accept a notification."""


@dataclass
class WebhookConfig:
    """Configuration for webhook notifications."""

    webhook_url: str
    auth_header: str | None = None  # Optional Authorization header
    timeout_seconds: int = 10
    enabled: bool = True


@dataclass
class WebhookPayload:
    """Standard payload format for notification webhooks."""

    event_type: WebhookEventType
    timestamp: datetime
    entity_type: str
    entity_id: UUID
    old_stage: str
    new_stage: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert payload to dictionary for JSON serialization."""
        return {
            "event_type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id),
            "old_stage": self.old_stage,
            "new_stage": self.new_stage,
            "data": self.data,
        }


class WebhookClient:
    """Client for posting JSON payloads to a webhook."""

    def __init__(self, config: WebhookConfig) -> None:
        self.config = config
        self.logger = get_logger(__name__)
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_seconds)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def send(self, payload: WebhookPayload) -> bool:
        """Send payload to the webhook.

        Returns True if successful, False otherwise.
        """
        if not self.config.enabled:
            self.logger.debug("webhook_disabled", event_type=payload.event_type.value)
            return True

        try:
            client = await self._get_client()
            headers = {"Content-Type": "application/json"}
            if self.config.auth_header:
                headers["Authorization"] = self.config.auth_header

            response = await client.post(
                self.config.webhook_url,
                json=payload.to_dict(),
                headers=headers,
            )

            if response.is_success:
                self.logger.info(
                    "webhook_sent",
                    event_type=payload.event_type.value,
                    entity_id=str(payload.entity_id),
                    status_code=response.status_code,
                )
                return True
            else:
                self.logger.warning(
                    "webhook_failed",
                    event_type=payload.event_type.value,
                    entity_id=str(payload.entity_id),
                    status_code=response.status_code,
                    response_text=response.text[:200],
                )
                return False

        except httpx.RequestError as e:
            self.logger.error(
                "webhook_error",
                event_type=payload.event_type.value,
                entity_id=str(payload.entity_id),
                error=str(e),
            )
            return False


class WebhookNotificationPort:
    """NotificationPort that posts each phase transition to a webhook.

    A rejected or failed delivery raises NotificationDeliveryError so the
    engine records the notification as not delivered.
    """

    def __init__(self, client: WebhookClient) -> None:
        self.client = client

    async def phase_transition(
        self,
        entity: EntitySnapshot,
        old_stage: Stage,
        new_stage: Stage,
    ) -> None:
        payload = WebhookPayload(
            event_type=WebhookEventType.PHASE_TRANSITION,
            timestamp=datetime.now(timezone.utc),
            entity_type=entity.entity_type.value,
            entity_id=entity.id,
            old_stage=old_stage.value,
            new_stage=new_stage.value,
            data={
                "title": entity.title,
                "author_id": str(entity.author_id),
                "stage_version": entity.stage_version,
                "challenge_id": str(entity.challenge_id) if entity.challenge_id else None,
            },
        )
        if not await self.client.send(payload):
            raise NotificationDeliveryError(
                f"Webhook did not accept {payload.event_type.value} for {entity.ref}"
            )

    async def close(self) -> None:
        await self.client.close()
