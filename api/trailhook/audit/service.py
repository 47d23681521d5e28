"""Audit event recording and the feed read by the webhook scheduler."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from trailhook.audit.models import AuditEvent
from trailhook.webhooks.emitter import WebhookEmitter

logger = logging.getLogger(__name__)


class AuditLogger:
    """Writes audit events."""

    @staticmethod
    def build(
        org_id: uuid.UUID,
        action: str,
        resource_type: str,
        resource_id: str,
        actor_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Create an unsaved event; callers add it inside their own transaction."""
        return AuditEvent(
            org_id=org_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            actor_id=actor_id,
            details=details,
        )

    @staticmethod
    async def record(
        db: AsyncSession,
        org_id: uuid.UUID,
        action: str,
        resource_type: str,
        resource_id: str,
        actor_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Store an audit event and wake the webhook scheduler."""
        event = AuditLogger.build(
            org_id,
            action,
            resource_type,
            resource_id,
            actor_id=actor_id,
            details=details,
        )
        db.add(event)
        await db.commit()

        await WebhookEmitter.notify(event.id)
        return event


@dataclass(frozen=True)
class FeedPosition:
    """Position in the audit feed: events are ordered by (created_at, id)."""

    created_at: datetime
    event_id: uuid.UUID


class AuditEventFeed:
    """Read side of the append-only audit event store."""

    @staticmethod
    async def fetch_after(
        db: AsyncSession,
        position: FeedPosition | None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Events strictly after ``position`` in feed order, oldest first."""
        query = select(AuditEvent).order_by(AuditEvent.created_at, AuditEvent.id)
        if position is not None:
            query = query.where(
                or_(
                    AuditEvent.created_at > position.created_at,
                    and_(
                        AuditEvent.created_at == position.created_at,
                        AuditEvent.id > position.event_id,
                    ),
                )
            )
        result = await db.execute(query.limit(limit))
        return list(result.scalars().all())
