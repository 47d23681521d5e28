"""Delivery scheduler: fans audit events out into pending deliveries."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trailhook.audit.models import AuditEvent
from trailhook.audit.service import AuditEventFeed, FeedPosition
from trailhook.valkey import get_valkey
from trailhook.webhooks.config import WebhookConfigLoader, WebhookSettings
from trailhook.webhooks.emitter import WEBHOOK_QUEUE_KEY
from trailhook.webhooks.event import WebhookEvent
from trailhook.webhooks.models import SchedulerCursor, Webhook, WebhookDelivery

logger = logging.getLogger(__name__)

# Events the engine itself emits; fanning them out would feed back into itself
SUPPRESSED_EVENT_TYPES = frozenset({"webhook.replayed"})

CURSOR_NAME = "audit_events"


class DeliveryScheduler:
    """Turns audit events into one pending delivery per subscribed webhook."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: WebhookSettings | None = None,
    ):
        self._session_factory = session_factory
        self.settings = settings or WebhookConfigLoader.get_settings()
        self._running = False
        self._task: asyncio.Task | None = None

    async def fan_out(self, db: AsyncSession, event: AuditEvent) -> list[WebhookDelivery]:
        """
        Add a pending delivery for every webhook that should receive ``event``.

        Rows are flushed but not committed. Pairs of (webhook, event) that
        already have a delivery are skipped.

        Args:
            db: Session owning the transaction
            event: Committed audit event

        Returns:
            The newly created deliveries
        """
        if event.event_type in SUPPRESSED_EVENT_TYPES:
            logger.debug("Event %s (%s) is not fanned out", event.id, event.event_type)
            return []

        body = WebhookEvent.from_audit_event(event)
        return await self._fan_out(db, event.org_id, event.created_at, body)

    async def _fan_out(
        self,
        db: AsyncSession,
        org_id: uuid.UUID,
        created_at: datetime,
        body: WebhookEvent,
    ) -> list[WebhookDelivery]:
        # Webhooks only receive events recorded after they were created
        result = await db.execute(
            select(Webhook).where(
                Webhook.org_id == org_id,
                Webhook.active.is_(True),
                Webhook.deleted_at.is_(None),
                Webhook.created_at <= created_at,
            )
        )
        webhooks = [w for w in result.scalars().all() if w.subscribes_to(body.event_type)]
        if not webhooks:
            return []

        result = await db.execute(
            select(WebhookDelivery.webhook_id).where(
                WebhookDelivery.event_id == body.event_id,
                WebhookDelivery.replay_of.is_(None),
                WebhookDelivery.webhook_id.in_([w.id for w in webhooks]),
            )
        )
        already_scheduled = set(result.scalars().all())

        payload = body.serialize()
        created = []
        for webhook in webhooks:
            if webhook.id in already_scheduled:
                continue
            delivery = WebhookDelivery(
                org_id=org_id,
                webhook_id=webhook.id,
                event_id=body.event_id,
                event_type=body.event_type,
                endpoint=webhook.url,
                payload=payload,
            )
            db.add(delivery)
            created.append(delivery)

        if created:
            await db.flush()
            logger.info(
                "Scheduled %d deliveries for event %s (%s)",
                len(created),
                body.event_id,
                body.event_type,
            )
        return created

    async def schedule(self, event: AuditEvent) -> list[WebhookDelivery]:
        """Fan out a single event in its own transaction."""
        async with self._session_factory() as db:
            return await self._commit_fan_out(db, _FeedItem.of(event), advance_cursor=False)

    async def sweep(self) -> int:
        """
        Fan out every audit event recorded after the scheduler cursor.

        Each event is processed in its own transaction together with the cursor
        advance, so a failure never moves the cursor past an unprocessed event.

        Event timestamps are assigned before commit, so an event can become
        visible behind the cursor. Every sweep therefore starts
        ``feed_lookback_seconds`` behind the cursor; fan-out skips pairs that
        already have a delivery.

        Returns:
            Number of deliveries created
        """
        total = 0
        async with self._session_factory() as db:
            cursor = await self._load_cursor(db)
        position = _lookback(_position(cursor), self.settings.feed_lookback_seconds)

        while True:
            async with self._session_factory() as db:
                events = await AuditEventFeed.fetch_after(
                    db,
                    position,
                    limit=self.settings.batch_size,
                )
                # Snapshot before any rollback expires the loaded rows
                items = [_FeedItem.of(event) for event in events]
                for item in items:
                    created = await self._commit_fan_out(db, item)
                    total += len(created)

            if items:
                position = FeedPosition(created_at=items[-1].created_at, event_id=items[-1].event_id)
            if len(items) < self.settings.batch_size:
                return total

    async def _commit_fan_out(
        self,
        db: AsyncSession,
        item: _FeedItem,
        advance_cursor: bool = True,
    ) -> list[WebhookDelivery]:
        for attempt in range(2):
            try:
                created = []
                if item.body is not None:
                    created = await self._fan_out(db, item.org_id, item.created_at, item.body)
                if advance_cursor:
                    await self._advance_cursor(db, item.created_at, item.event_id)
                await db.commit()
                return created
            except IntegrityError:
                await db.rollback()
                if attempt:
                    raise
                # Another scheduler inserted the same pair; re-evaluate
                logger.warning("Concurrent fan-out of event %s, retrying", item.event_id)
        return []

    async def _load_cursor(self, db: AsyncSession) -> SchedulerCursor | None:
        return await db.get(SchedulerCursor, CURSOR_NAME, populate_existing=True)

    async def _advance_cursor(
        self,
        db: AsyncSession,
        created_at: datetime,
        event_id: uuid.UUID,
    ) -> None:
        cursor = await self._load_cursor(db)
        if cursor is None:
            db.add(
                SchedulerCursor(
                    name=CURSOR_NAME,
                    last_created_at=created_at,
                    last_event_id=event_id,
                )
            )
            return

        # Never move backwards if another scheduler got further
        current = _position(cursor)
        if current is not None and (current.created_at, current.event_id) >= (created_at, event_id):
            return
        cursor.last_created_at = created_at
        cursor.last_event_id = event_id

    async def start(self) -> None:
        """Start the sweep loop."""
        if self._running:
            logger.warning("DeliveryScheduler is already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._process_loop())
        logger.info("DeliveryScheduler started")

    async def stop(self) -> None:
        """Stop the sweep loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("DeliveryScheduler stopped")

    async def _process_loop(self) -> None:
        """Sweep, then wait for a wake-up or the poll interval."""
        while self._running:
            try:
                await self.sweep()
                await self._wait_for_events()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in delivery scheduler loop: %s", e)
                await asyncio.sleep(1)  # Back off on error

    async def _wait_for_events(self) -> None:
        timeout = self.settings.poll_interval_seconds
        try:
            client = await get_valkey()
            result = await client.blpop(WEBHOOK_QUEUE_KEY, timeout=timeout)
            if result:
                # One sweep covers every pending wake-up
                await client.delete(WEBHOOK_QUEUE_KEY)
        except Exception as e:
            logger.warning("Valkey unavailable, polling instead: %s", e)
            await asyncio.sleep(timeout)


@dataclass(frozen=True)
class _FeedItem:
    org_id: uuid.UUID
    created_at: datetime
    event_id: uuid.UUID
    body: WebhookEvent | None

    @classmethod
    def of(cls, event: AuditEvent) -> _FeedItem:
        suppressed = event.event_type in SUPPRESSED_EVENT_TYPES
        return cls(
            org_id=event.org_id,
            created_at=event.created_at,
            event_id=event.id,
            body=None if suppressed else WebhookEvent.from_audit_event(event),
        )


def _position(cursor: SchedulerCursor | None) -> FeedPosition | None:
    if cursor is None or cursor.last_created_at is None or cursor.last_event_id is None:
        return None
    return FeedPosition(created_at=cursor.last_created_at, event_id=cursor.last_event_id)


def _lookback(position: FeedPosition | None, seconds: float) -> FeedPosition | None:
    if position is None or seconds <= 0:
        return position
    return FeedPosition(
        created_at=position.created_at - timedelta(seconds=seconds),
        event_id=uuid.UUID(int=0),
    )
