"""Delivery ledger: read-only queries over webhook deliveries."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from trailhook.webhooks.exceptions import DeliveryNotFoundError, WebhookConfigError
from trailhook.webhooks.models import DUE_STATUSES, DeliveryStatus, Webhook, WebhookDelivery

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


@dataclass
class DeliveryFilters:
    """Filters for listing deliveries. All are optional and combined with AND."""

    webhook_id: uuid.UUID | None = None
    status: str | None = None
    event_type: str | None = None
    endpoint: str | None = None
    min_latency: int | None = None
    max_latency: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int = DEFAULT_PAGE_SIZE
    offset: int = 0

    def __post_init__(self) -> None:
        if not 1 <= self.limit <= MAX_PAGE_SIZE:
            raise WebhookConfigError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if self.offset < 0:
            raise WebhookConfigError("offset must not be negative")
        if self.status is not None and self.status not in {s.value for s in DeliveryStatus}:
            raise WebhookConfigError(f"Unknown delivery status: {self.status}")


@dataclass
class DeliveryRow:
    """A delivery together with its webhook's name."""

    delivery: WebhookDelivery
    webhook_name: str | None


@dataclass
class DeliveryStats:
    counts: dict[str, int]
    active_webhooks: int
    oldest_due_age_seconds: float | None


class DeliveryLedger:
    """Lists and inspects deliveries of an organization."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_deliveries(
        self,
        org_id: uuid.UUID,
        filters: DeliveryFilters | None = None,
    ) -> tuple[list[DeliveryRow], int]:
        """
        List deliveries matching ``filters``, newest first.

        Ordering is ``created_at DESC, id DESC`` so pages are stable.

        Returns:
            The requested page and the total number of matching rows
        """
        filters = filters or DeliveryFilters()
        conditions = [WebhookDelivery.org_id == org_id]

        if filters.webhook_id is not None:
            conditions.append(WebhookDelivery.webhook_id == filters.webhook_id)
        if filters.status is not None:
            conditions.append(WebhookDelivery.status == filters.status)
        if filters.event_type is not None:
            conditions.append(
                func.lower(WebhookDelivery.event_type).contains(filters.event_type.lower(), autoescape=True)
            )
        if filters.endpoint:
            conditions.append(
                func.lower(WebhookDelivery.endpoint).contains(filters.endpoint.lower(), autoescape=True)
            )
        if filters.min_latency is not None:
            conditions.append(WebhookDelivery.latency_ms >= filters.min_latency)
        if filters.max_latency is not None:
            conditions.append(WebhookDelivery.latency_ms <= filters.max_latency)
        if filters.start_date is not None:
            conditions.append(WebhookDelivery.created_at >= filters.start_date)
        if filters.end_date is not None:
            conditions.append(WebhookDelivery.created_at <= filters.end_date)

        total = await self.db.scalar(
            select(func.count()).select_from(WebhookDelivery).where(*conditions)
        )

        result = await self.db.execute(
            select(WebhookDelivery, Webhook.name)
            .outerjoin(Webhook, Webhook.id == WebhookDelivery.webhook_id)
            .where(*conditions)
            .order_by(desc(WebhookDelivery.created_at), desc(WebhookDelivery.id))
            .limit(filters.limit)
            .offset(filters.offset)
        )
        rows = [DeliveryRow(delivery=d, webhook_name=name) for d, name in result.all()]
        return rows, total or 0

    async def get_delivery(self, org_id: uuid.UUID, delivery_id: uuid.UUID) -> DeliveryRow:
        result = await self.db.execute(
            select(WebhookDelivery, Webhook.name)
            .outerjoin(Webhook, Webhook.id == WebhookDelivery.webhook_id)
            .where(WebhookDelivery.id == delivery_id, WebhookDelivery.org_id == org_id)
        )
        row = result.first()
        if row is None:
            raise DeliveryNotFoundError(f"Delivery not found: {delivery_id}")
        return DeliveryRow(delivery=row[0], webhook_name=row[1])

    async def stats(
        self,
        org_id: uuid.UUID | None = None,
        now: datetime | None = None,
    ) -> DeliveryStats:
        """Delivery counts per status, across all orgs when ``org_id`` is None."""
        now = now or datetime.now(UTC)
        query = select(WebhookDelivery.status, func.count()).group_by(WebhookDelivery.status)
        webhooks = select(func.count()).select_from(Webhook).where(
            Webhook.active.is_(True), Webhook.deleted_at.is_(None)
        )
        oldest = select(func.min(WebhookDelivery.created_at)).where(
            WebhookDelivery.status.in_(DUE_STATUSES),
            or_(WebhookDelivery.next_retry_at.is_(None), WebhookDelivery.next_retry_at <= now),
        )
        if org_id is not None:
            query = query.where(WebhookDelivery.org_id == org_id)
            webhooks = webhooks.where(Webhook.org_id == org_id)
            oldest = oldest.where(WebhookDelivery.org_id == org_id)

        counts = {status.value: 0 for status in DeliveryStatus}
        for status, count in (await self.db.execute(query)).all():
            counts[status] = count

        oldest_due = await self.db.scalar(oldest)
        age = None
        if oldest_due is not None:
            if oldest_due.tzinfo is None:
                oldest_due = oldest_due.replace(tzinfo=UTC)
            age = max((now - oldest_due).total_seconds(), 0.0)

        return DeliveryStats(
            counts=counts,
            active_webhooks=await self.db.scalar(webhooks) or 0,
            oldest_due_age_seconds=age,
        )
