"""Audit event model (append-only)."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from trailhook.db.base import Base, UTCDateTime


class AuditEvent(Base):
    """One immutable activity record for an organization.

    The webhook engine only reads these rows; the one exception is the
    ``webhook.replayed`` event written when an operator replays a delivery.
    """

    __tablename__ = "audit_events"
    __table_args__ = (Index("ix_audit_events_feed", "created_at", "id"),)

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
    actor_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    action: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    resource_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    resource_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    # "metadata" is reserved on declarative classes
    details: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    @property
    def event_type(self) -> str:
        """Event type as seen by webhook subscribers, e.g. ``user.login``."""
        return f"{self.resource_type}.{self.action}"
