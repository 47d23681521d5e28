"""Webhook event payload model."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from trailhook.audit.models import AuditEvent

TEST_EVENT_TYPE = "webhook.test"


@dataclass
class WebhookEvent:
    """Represents an event body to be delivered to webhooks."""

    event_type: str
    data: dict[str, Any]
    event_id: uuid.UUID = field(default_factory=uuid.uuid4)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_payload(self) -> dict[str, Any]:
        """Convert to JSON-serializable payload."""
        return {
            "event": self.event_type,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }

    def serialize(self) -> str:
        """Serialize once; the result is frozen on the delivery row and signed as-is."""
        return json.dumps(self.to_payload(), separators=(",", ":"), default=str)

    @classmethod
    def from_audit_event(cls, event: AuditEvent) -> WebhookEvent:
        """Build the subscriber-facing body of an audit event."""
        created_at = event.created_at.isoformat()
        return cls(
            event_type=event.event_type,
            event_id=event.id,
            timestamp=event.created_at,
            data={
                "id": str(event.id),
                "orgId": str(event.org_id),
                "actorId": event.actor_id,
                "action": event.action,
                "resourceType": event.resource_type,
                "resourceId": event.resource_id,
                "metadata": event.details,
                "createdAt": created_at,
            },
        )

    @classmethod
    def test_event(cls, webhook_id: uuid.UUID) -> WebhookEvent:
        """Sample event sent by the "test webhook" action."""
        return cls(
            event_type=TEST_EVENT_TYPE,
            data={
                "message": "This is a test webhook payload",
                "webhookId": str(webhook_id),
                "test": True,
            },
        )
