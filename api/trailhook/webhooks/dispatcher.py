"""Webhook delivery dispatcher: claims due deliveries and sends them."""

from __future__ import annotations

import asyncio
import logging
import os
import random
import socket
import time
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import httpx
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trailhook.webhooks.config import WebhookConfigLoader, WebhookSettings
from trailhook.webhooks.models import DUE_STATUSES, DeliveryStatus, Webhook, WebhookDelivery
from trailhook.webhooks.registry import secret_for
from trailhook.webhooks.retry import RetryPlanner, classify_error
from trailhook.webhooks.signer import WebhookSigner

logger = logging.getLogger(__name__)

# Stored response bodies are truncated to this many characters
RESPONSE_PREVIEW_LIMIT = 1000

WEBHOOK_DELETED_ERROR = "webhook deleted"


@dataclass
class DeliveryResult:
    """Result of a webhook delivery attempt."""

    success: bool
    status_code: int | None = None
    response: str | None = None
    error: str | None = None
    latency_ms: int | None = None
    # False when the delivery was failed without sending anything
    attempted: bool = True
    terminal: bool = False


@dataclass(frozen=True)
class Claim:
    """A delivery leased to one worker, with the version it was claimed at."""

    delivery_id: uuid.UUID
    webhook_id: uuid.UUID
    event_type: str
    endpoint: str
    payload: str
    attempts: int
    created_at: datetime
    worker_id: str
    version: int


def _is_due(now: datetime):
    """Conditions under which a delivery may be claimed."""
    return (
        WebhookDelivery.status.in_(DUE_STATUSES),
        or_(WebhookDelivery.next_retry_at.is_(None), WebhookDelivery.next_retry_at <= now),
        or_(WebhookDelivery.claim_expires_at.is_(None), WebhookDelivery.claim_expires_at <= now),
    )


class DeliveryDispatcher:
    """Pool of workers that send due deliveries, one attempt per claim."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: WebhookSettings | None = None,
        client: httpx.AsyncClient | None = None,
        rng: random.Random | None = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            session_factory: Async session factory for database operations
            settings: Engine settings; loaded from config/webhooks.yaml when omitted
            client: Shared HTTP client; created on first use when omitted
            rng: Random source for retry jitter
        """
        self._session_factory = session_factory
        self.settings = settings or WebhookConfigLoader.get_settings()
        self.policy = self.settings.retry_policy()
        self.planner = RetryPlanner(self.policy, rng)
        self._client = client
        self._owns_client = client is None
        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._instance = f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:6]}"

    def worker_id(self, index: int = 0) -> str:
        return f"{self._instance}-{index}"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.policy.timeout_seconds)
            self._owns_client = True
        return self._client

    async def start(self) -> None:
        """Start the worker pool."""
        if self._running:
            logger.warning("DeliveryDispatcher is already running")
            return

        self._running = True
        self._get_client()
        self._tasks = [
            asyncio.create_task(self._process_loop(self.worker_id(i)))
            for i in range(self.settings.worker_concurrency)
        ]
        logger.info("DeliveryDispatcher started with %d workers", len(self._tasks))

    async def stop(self) -> None:
        """Stop the worker pool and close the HTTP client if we opened it."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("DeliveryDispatcher stopped")

    async def _process_loop(self, worker_id: str) -> None:
        """Main loop of one worker."""
        while self._running:
            try:
                delivery_id = await self.dispatch_once(worker_id)
                if delivery_id is None:
                    await asyncio.sleep(self.settings.poll_interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in webhook dispatcher worker %s: %s", worker_id, e)
                await asyncio.sleep(1)  # Back off on error

    async def claim_next(self, worker_id: str, now: datetime | None = None) -> Claim | None:
        """
        Lease the oldest due delivery to ``worker_id``.

        The lease is taken with a compare-and-swap on ``version``: of any number
        of workers racing for the same row exactly one update matches.

        Returns:
            The claim, or None when nothing is due
        """
        now = now or datetime.now(UTC)
        lease_until = now + timedelta(seconds=self.policy.lease_seconds)

        async with self._session_factory() as db:
            result = await db.execute(
                select(WebhookDelivery.id, WebhookDelivery.version)
                .where(*_is_due(now))
                .order_by(WebhookDelivery.created_at, WebhookDelivery.id)
                .limit(self.settings.batch_size)
            )
            candidates = result.all()

            for delivery_id, version in candidates:
                claimed = await db.execute(
                    update(WebhookDelivery)
                    .where(
                        WebhookDelivery.id == delivery_id,
                        WebhookDelivery.version == version,
                        *_is_due(now),
                    )
                    .values(
                        claimed_by=worker_id,
                        claim_expires_at=lease_until,
                        version=version + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
                if claimed.rowcount != 1:
                    logger.debug("Delivery %s was claimed by another worker", delivery_id)
                    continue

                delivery = await db.get(WebhookDelivery, delivery_id, populate_existing=True)
                logger.info("Worker %s claimed delivery %s", worker_id, delivery_id)
                return Claim(
                    delivery_id=delivery.id,
                    webhook_id=delivery.webhook_id,
                    event_type=delivery.event_type,
                    endpoint=delivery.endpoint,
                    payload=delivery.payload,
                    attempts=delivery.attempts,
                    created_at=delivery.created_at,
                    worker_id=worker_id,
                    version=delivery.version,
                )
        return None

    async def dispatch_once(self, worker_id: str | None = None) -> uuid.UUID | None:
        """
        Claim one due delivery, attempt it once and record the outcome.

        Returns:
            ID of the processed delivery, or None when nothing was due
        """
        claim = await self.claim_next(worker_id or self.worker_id())
        if claim is None:
            return None

        async with self._session_factory() as db:
            webhook = await db.get(Webhook, claim.webhook_id)
            deleted = webhook is None or webhook.is_deleted
            secret = None if deleted else await secret_for(db, claim.webhook_id, claim.created_at)

        if deleted:
            result = DeliveryResult(
                success=False,
                error=WEBHOOK_DELETED_ERROR,
                attempted=False,
                terminal=True,
            )
        elif secret is None:
            result = DeliveryResult(
                success=False,
                error="no signing secret",
                attempted=False,
                terminal=True,
            )
        else:
            result = await self.send(claim, secret)

        await self.record(claim, result)
        return claim.delivery_id

    async def send(self, claim: Claim, secret: str) -> DeliveryResult:
        """POST the frozen payload once, bounded by the delivery timeout."""
        timeout = self.policy.timeout_seconds
        headers = WebhookSigner.get_headers(
            claim.payload,
            secret,
            delivery_id=str(claim.delivery_id),
            event_type=claim.event_type,
            webhook_id=str(claim.webhook_id),
            attempt=claim.attempts + 1,
        )

        start_time = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._get_client().post(
                    claim.endpoint,
                    content=claim.payload.encode("utf-8"),
                    headers=headers,
                    timeout=timeout,
                ),
                timeout=timeout,
            )
        except (TimeoutError, httpx.HTTPError, httpx.InvalidURL) as e:
            return DeliveryResult(
                success=False,
                error=classify_error(e),
                latency_ms=int((time.monotonic() - start_time) * 1000),
            )
        except Exception as e:
            # Any other failure still counts as an attempt
            logger.exception("Unexpected error delivering %s", claim.delivery_id)
            return DeliveryResult(
                success=False,
                error=classify_error(e),
                latency_ms=int((time.monotonic() - start_time) * 1000),
            )

        latency_ms = int((time.monotonic() - start_time) * 1000)
        body = response.text[:RESPONSE_PREVIEW_LIMIT] if response.text else None

        if 200 <= response.status_code < 300:
            return DeliveryResult(
                success=True,
                status_code=response.status_code,
                response=body,
                latency_ms=latency_ms,
            )
        return DeliveryResult(
            success=False,
            status_code=response.status_code,
            response=body,
            error=classify_error(status_code=response.status_code),
            latency_ms=latency_ms,
        )

    async def record(self, claim: Claim, result: DeliveryResult, now: datetime | None = None) -> bool:
        """
        Write the outcome of an attempt and release the lease.

        The write only applies while this worker still holds the claim at the
        claimed version and the row is not terminal.

        Returns:
            False when the lease was lost and the outcome discarded
        """
        now = now or datetime.now(UTC)
        attempts = claim.attempts + 1 if result.attempted else claim.attempts
        values: dict[str, object] = {
            "attempts": attempts,
            "status_code": result.status_code,
            "response": result.response,
            "error": result.error,
            "latency_ms": result.latency_ms,
            "claimed_by": None,
            "claim_expires_at": None,
            "version": claim.version + 1,
        }
        if result.attempted:
            values["attempted_at"] = now

        if result.success:
            values.update(
                status=DeliveryStatus.SUCCESS.value,
                completed_at=now,
                next_retry_at=None,
            )
        elif result.terminal:
            values.update(
                status=DeliveryStatus.FAILED.value,
                completed_at=now,
                next_retry_at=None,
            )
        else:
            decision = self.planner.plan(attempts, now, result.status_code)
            values.update(
                status=decision.status.value,
                completed_at=decision.completed_at,
                next_retry_at=decision.next_retry_at,
            )

        async with self._session_factory() as db:
            written = await db.execute(
                update(WebhookDelivery)
                .where(
                    WebhookDelivery.id == claim.delivery_id,
                    WebhookDelivery.claimed_by == claim.worker_id,
                    WebhookDelivery.version == claim.version,
                    WebhookDelivery.status.in_(DUE_STATUSES),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        if written.rowcount != 1:
            logger.warning(
                "Worker %s lost the lease on delivery %s; outcome discarded",
                claim.worker_id,
                claim.delivery_id,
            )
            return False

        status = values["status"]
        if status == DeliveryStatus.SUCCESS.value:
            logger.info(
                "Webhook delivered to %s (delivery: %s, latency: %dms)",
                claim.endpoint,
                claim.delivery_id,
                result.latency_ms or 0,
            )
        elif status == DeliveryStatus.RETRYING.value:
            logger.warning(
                "Webhook delivery %s failed (attempt %d): %s; retrying at %s",
                claim.delivery_id,
                attempts,
                result.error,
                values["next_retry_at"],
            )
        else:
            logger.error(
                "Webhook delivery %s failed after %d attempts: %s",
                claim.delivery_id,
                attempts,
                result.error,
            )
        return True
