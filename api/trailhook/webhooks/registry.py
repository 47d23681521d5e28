"""Webhook registry: CRUD for webhook subscriptions."""

from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from urllib.parse import urlparse

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from trailhook.webhooks.event import WebhookEvent
from trailhook.webhooks.exceptions import WebhookConfigError, WebhookNotFoundError
from trailhook.webhooks.models import Webhook, WebhookDelivery, WebhookSecret

logger = logging.getLogger(__name__)

MIN_SECRET_LENGTH = 16
MAX_NAME_LENGTH = 255
MAX_URL_LENGTH = 2048


def generate_secret() -> str:
    """Generate a random signing secret."""
    return secrets.token_hex(32)


def mask_secret(secret: str | None) -> str:
    """Mask secret for responses (show only last 4 characters)."""
    if not secret:
        return ""
    if len(secret) <= 4:
        return "****"
    return f"****{secret[-4:]}"


def validate_url(url: str) -> str:
    """Require an absolute http(s) URL with a host."""
    if not isinstance(url, str) or not url.strip():
        raise WebhookConfigError("Webhook URL is required")
    url = url.strip()
    if len(url) > MAX_URL_LENGTH:
        raise WebhookConfigError(f"Webhook URL exceeds {MAX_URL_LENGTH} characters")

    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise WebhookConfigError(f"Webhook URL must use http or https: {url}")
    if not parsed.hostname:
        raise WebhookConfigError(f"Webhook URL must include a host: {url}")
    try:
        parsed.port
    except ValueError as e:
        raise WebhookConfigError(f"Webhook URL has an invalid port: {url}") from e
    return url


def validate_name(name: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise WebhookConfigError("Webhook name is required")
    if len(name) > MAX_NAME_LENGTH:
        raise WebhookConfigError(f"Webhook name exceeds {MAX_NAME_LENGTH} characters")
    return name.strip()


def validate_event_types(event_types: list[str]) -> list[str]:
    """Event types are matched exactly; an empty list would match nothing."""
    if not event_types:
        raise WebhookConfigError("Webhook must subscribe to at least one event type")
    cleaned: list[str] = []
    for event_type in event_types:
        if not isinstance(event_type, str) or not event_type.strip():
            raise WebhookConfigError("Event types must be non-empty strings")
        if event_type.strip() not in cleaned:
            cleaned.append(event_type.strip())
    return cleaned


def validate_secret(secret: str) -> str:
    if not isinstance(secret, str) or len(secret) < MIN_SECRET_LENGTH:
        raise WebhookConfigError(f"Webhook secret must be at least {MIN_SECRET_LENGTH} characters")
    return secret


@dataclass
class CreatedWebhook:
    """A webhook together with its plaintext secret (shown once)."""

    webhook: Webhook
    secret: str


class WebhookRegistry:
    """Stores webhook subscriptions per organization."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        org_id: uuid.UUID,
        name: str,
        url: str,
        event_types: list[str],
        secret: str | None = None,
    ) -> CreatedWebhook:
        """Validate and create a webhook. A secret is generated when none is given."""
        webhook = Webhook(
            org_id=org_id,
            name=validate_name(name),
            url=validate_url(url),
            event_types=validate_event_types(event_types),
            active=True,
        )
        plaintext = validate_secret(secret) if secret is not None else generate_secret()

        self.db.add(webhook)
        await self.db.flush()
        self.db.add(
            WebhookSecret(
                webhook_id=webhook.id,
                secret=plaintext,
                active_from=webhook.created_at,
            )
        )
        await self.db.commit()

        logger.info("Created webhook %s for org %s", webhook.id, org_id)
        return CreatedWebhook(webhook=webhook, secret=plaintext)

    async def list_webhooks(self, org_id: uuid.UUID) -> list[Webhook]:
        """List live webhooks of an organization, newest first."""
        result = await self.db.execute(
            select(Webhook)
            .where(Webhook.org_id == org_id, Webhook.deleted_at.is_(None))
            .order_by(desc(Webhook.created_at))
        )
        return list(result.scalars().all())

    async def get_webhook(self, org_id: uuid.UUID, webhook_id: uuid.UUID) -> Webhook:
        result = await self.db.execute(
            select(Webhook).where(
                Webhook.id == webhook_id,
                Webhook.org_id == org_id,
                Webhook.deleted_at.is_(None),
            )
        )
        webhook = result.scalar_one_or_none()
        if webhook is None:
            raise WebhookNotFoundError(f"Webhook not found: {webhook_id}")
        return webhook

    async def update(
        self,
        org_id: uuid.UUID,
        webhook_id: uuid.UUID,
        *,
        name: str | None = None,
        url: str | None = None,
        event_types: list[str] | None = None,
        active: bool | None = None,
        secret: str | None = None,
    ) -> Webhook:
        """Update mutable fields. Setting ``secret`` is an explicit rotation.

        All values are validated before anything is written. Deliveries that
        are already scheduled keep the URL frozen at their creation.
        """
        webhook = await self.get_webhook(org_id, webhook_id)

        changes: dict[str, object] = {}
        if name is not None:
            changes["name"] = validate_name(name)
        if url is not None:
            changes["url"] = validate_url(url)
        if event_types is not None:
            changes["event_types"] = validate_event_types(event_types)
        if active is not None:
            changes["active"] = bool(active)
        new_secret = validate_secret(secret) if secret is not None else None

        for key, value in changes.items():
            setattr(webhook, key, value)
        if new_secret is not None:
            self._add_secret(webhook, new_secret)
        webhook.updated_at = datetime.now(UTC)
        await self.db.commit()

        logger.info("Updated webhook %s (%s)", webhook.id, ", ".join(sorted(changes)) or "secret")
        return webhook

    async def disable(self, org_id: uuid.UUID, webhook_id: uuid.UUID) -> Webhook:
        """Stop matching new events. Deliveries already scheduled still run."""
        return await self.update(org_id, webhook_id, active=False)

    async def delete(self, org_id: uuid.UUID, webhook_id: uuid.UUID) -> None:
        """Tombstone the webhook; its delivery ledger is kept."""
        webhook = await self.get_webhook(org_id, webhook_id)
        now = datetime.now(UTC)
        webhook.active = False
        webhook.deleted_at = now
        webhook.updated_at = now
        await self.db.commit()
        logger.info("Deleted webhook %s (tombstoned)", webhook.id)

    async def rotate_secret(
        self,
        org_id: uuid.UUID,
        webhook_id: uuid.UUID,
        secret: str | None = None,
    ) -> CreatedWebhook:
        """Add a new signing secret effective now. Returns it in plaintext once."""
        webhook = await self.get_webhook(org_id, webhook_id)
        plaintext = validate_secret(secret) if secret is not None else generate_secret()
        self._add_secret(webhook, plaintext)
        webhook.updated_at = datetime.now(UTC)
        await self.db.commit()
        logger.info("Rotated secret of webhook %s", webhook.id)
        return CreatedWebhook(webhook=webhook, secret=plaintext)

    async def current_secret(self, webhook_id: uuid.UUID) -> str | None:
        """Newest secret of a webhook."""
        return await secret_for(self.db, webhook_id, datetime.now(UTC))

    async def send_test(self, org_id: uuid.UUID, webhook_id: uuid.UUID) -> WebhookDelivery:
        """Enqueue a ``webhook.test`` delivery; the dispatcher sends it like any other."""
        webhook = await self.get_webhook(org_id, webhook_id)
        if not webhook.active:
            raise WebhookConfigError("Webhook is not active")

        event = WebhookEvent.test_event(webhook.id)
        delivery = WebhookDelivery(
            org_id=webhook.org_id,
            webhook_id=webhook.id,
            event_id=event.event_id,
            event_type=event.event_type,
            endpoint=webhook.url,
            payload=event.serialize(),
        )
        self.db.add(delivery)
        await self.db.commit()
        logger.info("Queued test delivery %s for webhook %s", delivery.id, webhook.id)
        return delivery

    def _add_secret(self, webhook: Webhook, secret: str) -> None:
        self.db.add(
            WebhookSecret(
                webhook_id=webhook.id,
                secret=secret,
                active_from=datetime.now(UTC),
            )
        )


async def secret_for(
    db: AsyncSession,
    webhook_id: uuid.UUID,
    as_of: datetime,
) -> str | None:
    """Secret in effect for a delivery created at ``as_of``.

    Falls back to the oldest secret when none was active yet, which only
    happens for rows created in the same instant as the webhook.
    """
    result = await db.execute(
        select(WebhookSecret.secret)
        .where(WebhookSecret.webhook_id == webhook_id, WebhookSecret.active_from <= as_of)
        .order_by(desc(WebhookSecret.active_from), desc(WebhookSecret.created_at))
        .limit(1)
    )
    secret = result.scalar_one_or_none()
    if secret is not None:
        return secret

    result = await db.execute(
        select(WebhookSecret.secret)
        .where(WebhookSecret.webhook_id == webhook_id)
        .order_by(WebhookSecret.active_from)
        .limit(1)
    )
    return result.scalar_one_or_none()
