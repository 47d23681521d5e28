"""Webhook SQLAlchemy models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from trailhook.db.base import Base, UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(UTC)


class DeliveryStatus(str, Enum):
    """Webhook delivery status."""

    PENDING = "pending"
    RETRYING = "retrying"
    SUCCESS = "success"
    FAILED = "failed"


# Statuses a dispatcher worker may claim
DUE_STATUSES = (DeliveryStatus.PENDING.value, DeliveryStatus.RETRYING.value)
TERMINAL_STATUSES = (DeliveryStatus.SUCCESS.value, DeliveryStatus.FAILED.value)


class Webhook(Base):
    """Webhook subscription owned by an organization."""

    __tablename__ = "webhooks"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    url: Mapped[str] = mapped_column(
        String(2048),
        nullable=False,
    )
    event_types: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )
    active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )
    # Tombstone: deliveries keep referencing deleted webhooks
    deleted_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def subscribes_to(self, event_type: str) -> bool:
        """Check if this webhook subscribes to the given event type."""
        return event_type in (self.event_types or [])


class WebhookSecret(Base):
    """Signing secret of a webhook.

    Secrets are append-only per webhook. A delivery is signed with the newest
    secret whose ``active_from`` is not later than the delivery's creation.
    """

    __tablename__ = "webhook_secrets"
    __table_args__ = (Index("ix_webhook_secrets_lookup", "webhook_id", "active_from"),)

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    webhook_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("webhooks.id"),
        nullable=False,
    )
    secret: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    active_from: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
    )


class WebhookDelivery(Base):
    """One transmission of one event to one webhook, across its retries."""

    __tablename__ = "webhook_deliveries"
    __table_args__ = (
        # Fan-out idempotency; replays share (webhook_id, event_id) with their original
        Index(
            "uq_webhook_deliveries_webhook_event",
            "webhook_id",
            "event_id",
            unique=True,
            postgresql_where=text("replay_of IS NULL"),
            sqlite_where=text("replay_of IS NULL"),
        ),
        Index("ix_webhook_deliveries_due", "status", "next_retry_at"),
        Index("ix_webhook_deliveries_org_created", "org_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
    )
    webhook_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("webhooks.id"),
        nullable=False,
        index=True,
    )
    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
        index=True,
    )
    event_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
    )
    endpoint: Mapped[str] = mapped_column(
        String(2048),
        nullable=False,
    )
    payload: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    replay_of: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("webhook_deliveries.id"),
        nullable=True,
    )

    # Delivery status
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DeliveryStatus.PENDING.value,
    )
    status_code: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    response: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    # Timing
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    latency_ms: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
    )
    attempted_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
    )
    next_retry_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
    )

    # Lease held by the dispatcher worker currently sending this delivery
    claimed_by: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )
    claim_expires_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
    )
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class SchedulerCursor(Base):
    """High-water mark of the scheduler over the audit event feed."""

    __tablename__ = "webhook_scheduler_cursors"

    name: Mapped[str] = mapped_column(
        String(50),
        primary_key=True,
    )
    last_created_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
    )
    last_event_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        nullable=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )
