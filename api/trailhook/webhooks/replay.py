"""Operator-initiated redelivery of a recorded webhook delivery."""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from trailhook.audit.service import AuditLogger
from trailhook.webhooks.exceptions import DeliveryNotFoundError, WebhookNotFoundError
from trailhook.webhooks.models import Webhook, WebhookDelivery

logger = logging.getLogger(__name__)

REPLAY_ACTION = "replayed"
REPLAY_RESOURCE_TYPE = "webhook"


class ReplayController:
    """Creates fresh deliveries that resend an earlier delivery's payload."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def replay(
        self,
        org_id: uuid.UUID,
        delivery_id: uuid.UUID,
        actor_id: str | None = None,
    ) -> WebhookDelivery:
        """
        Schedule a new delivery with the same payload as ``delivery_id``.

        The new row targets the webhook's current URL and is signed with its
        current secret; the original row is left untouched. A
        ``webhook.replayed`` audit event is stored in the same transaction.

        Raises:
            DeliveryNotFoundError: Unknown delivery or another org's delivery
            WebhookNotFoundError: The webhook was deleted
        """
        original = await self.db.scalar(
            select(WebhookDelivery).where(
                WebhookDelivery.id == delivery_id,
                WebhookDelivery.org_id == org_id,
            )
        )
        if original is None:
            raise DeliveryNotFoundError(f"Delivery not found: {delivery_id}")

        webhook = await self.db.get(Webhook, original.webhook_id)
        if webhook is None or webhook.is_deleted:
            raise WebhookNotFoundError(f"Webhook not found: {original.webhook_id}")

        replay = WebhookDelivery(
            id=uuid.uuid4(),
            org_id=original.org_id,
            webhook_id=webhook.id,
            event_id=original.event_id,
            event_type=original.event_type,
            endpoint=webhook.url,
            payload=original.payload,
            replay_of=original.id,
        )
        self.db.add(replay)
        self.db.add(
            AuditLogger.build(
                org_id,
                REPLAY_ACTION,
                REPLAY_RESOURCE_TYPE,
                str(webhook.id),
                actor_id=actor_id,
                details={
                    "deliveryId": str(replay.id),
                    "replayOf": str(original.id),
                    "eventId": str(original.event_id),
                },
            )
        )
        await self.db.commit()

        logger.info("Replaying delivery %s as %s", original.id, replay.id)
        return replay
