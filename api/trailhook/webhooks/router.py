"""Webhook operator API router."""

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from trailhook.config import get_settings
from trailhook.db.session import get_db
from trailhook.rate_limit import get_rate_limit_string, limiter
from trailhook.webhooks.exceptions import (
    DeliveryNotFoundError,
    WebhookConfigError,
    WebhookNotFoundError,
)
from trailhook.webhooks.ledger import DeliveryFilters, DeliveryLedger, DeliveryRow
from trailhook.webhooks.registry import WebhookRegistry
from trailhook.webhooks.replay import ReplayController
from trailhook.webhooks.schemas import (
    ReplayResponse,
    WebhookCreate,
    WebhookDeliveryDetailResponse,
    WebhookDeliveryListResponse,
    WebhookDeliveryResponse,
    WebhookResponse,
    WebhookTestResponse,
    WebhookUpdate,
)

settings = get_settings()

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def get_org_id(x_org_id: str = Header(..., alias="X-Org-ID")) -> uuid.UUID:
    """Organization of the caller, supplied by the authentication layer."""
    try:
        return uuid.UUID(x_org_id)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid X-Org-ID header",
        ) from e


def _not_found(e: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


def _invalid(e: Exception) -> HTTPException:
    return HTTPException(status_code=422, detail=str(e))


def _delivery_response(row: DeliveryRow) -> WebhookDeliveryResponse:
    d = row.delivery
    return WebhookDeliveryResponse(
        id=d.id,
        webhook_id=d.webhook_id,
        webhook_name=row.webhook_name,
        event_id=d.event_id,
        event_type=d.event_type,
        endpoint=d.endpoint,
        status=d.status,
        status_code=d.status_code,
        error=d.error,
        attempts=d.attempts,
        latency_ms=d.latency_ms,
        replay_of=d.replay_of,
        created_at=d.created_at,
        attempted_at=d.attempted_at,
        completed_at=d.completed_at,
        next_retry_at=d.next_retry_at,
    )


# Delivery routes are declared first so /deliveries is not taken for a webhook ID


@router.get("/deliveries", response_model=WebhookDeliveryListResponse)
async def list_deliveries(
    webhook_id: uuid.UUID | None = Query(None, description="Filter by webhook ID"),
    delivery_status: str | None = Query(None, alias="status", description="Filter by status"),
    event_type: str | None = Query(None, description="Filter by event type"),
    endpoint: str | None = Query(None, description="Case-insensitive URL substring"),
    min_latency: int | None = Query(None, ge=0, description="Minimum latency (ms)"),
    max_latency: int | None = Query(None, ge=0, description="Maximum latency (ms)"),
    start_date: datetime | None = Query(None, description="Created at or after"),
    end_date: datetime | None = Query(None, description="Created at or before"),
    limit: int = Query(50, ge=1, le=100, description="Maximum results"),
    offset: int = Query(0, ge=0, description="Results to skip"),
    org_id: uuid.UUID = Depends(get_org_id),
    db: AsyncSession = Depends(get_db),
):
    """List deliveries, newest first.

    Returns delivery history with status, latency, and error details.
    """
    try:
        filters = DeliveryFilters(
            webhook_id=webhook_id,
            status=delivery_status,
            event_type=event_type,
            endpoint=endpoint,
            min_latency=min_latency,
            max_latency=max_latency,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
            offset=offset,
        )
    except WebhookConfigError as e:
        raise _invalid(e) from e

    rows, total = await DeliveryLedger(db).list_deliveries(org_id, filters)
    return WebhookDeliveryListResponse(
        items=[_delivery_response(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/deliveries/{delivery_id}", response_model=WebhookDeliveryDetailResponse)
async def get_delivery(
    delivery_id: uuid.UUID,
    org_id: uuid.UUID = Depends(get_org_id),
    db: AsyncSession = Depends(get_db),
):
    """Get one delivery including its payload and response body."""
    try:
        row = await DeliveryLedger(db).get_delivery(org_id, delivery_id)
    except DeliveryNotFoundError as e:
        raise _not_found(e) from e

    return WebhookDeliveryDetailResponse(
        **_delivery_response(row).model_dump(),
        payload=row.delivery.payload,
        response=row.delivery.response,
    )


@router.post(
    "/deliveries/{delivery_id}/replay",
    response_model=ReplayResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
@limiter.limit(settings.REPLAY_RATE_LIMIT)
async def replay_delivery(
    request: Request,
    delivery_id: uuid.UUID,
    org_id: uuid.UUID = Depends(get_org_id),
    x_actor_id: str | None = Header(None, alias="X-Actor-ID"),
    db: AsyncSession = Depends(get_db),
):
    """Send a delivery's payload again as a new delivery.

    The original delivery is left unchanged.
    """
    try:
        replay = await ReplayController(db).replay(org_id, delivery_id, actor_id=x_actor_id)
    except (DeliveryNotFoundError, WebhookNotFoundError) as e:
        raise _not_found(e) from e

    return ReplayResponse(delivery_id=replay.id, replay_of=delivery_id)


@router.post("", response_model=WebhookResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(get_rate_limit_string())
async def create_webhook(
    request: Request,
    body: WebhookCreate,
    org_id: uuid.UUID = Depends(get_org_id),
    db: AsyncSession = Depends(get_db),
):
    """Create a webhook.

    The signing secret is returned in full only in this response.
    """
    try:
        created = await WebhookRegistry(db).create(
            org_id,
            body.name,
            body.url,
            body.event_types,
            secret=body.secret,
        )
    except WebhookConfigError as e:
        raise _invalid(e) from e

    return WebhookResponse.build(created.webhook, created.secret, reveal=True)


@router.get("", response_model=list[WebhookResponse])
async def list_webhooks(
    org_id: uuid.UUID = Depends(get_org_id),
    db: AsyncSession = Depends(get_db),
):
    """List webhooks of the organization, newest first (secrets are masked)."""
    registry = WebhookRegistry(db)
    webhooks = await registry.list_webhooks(org_id)
    return [
        WebhookResponse.build(webhook, await registry.current_secret(webhook.id))
        for webhook in webhooks
    ]


@router.get("/{webhook_id}", response_model=WebhookResponse)
async def get_webhook(
    webhook_id: uuid.UUID,
    org_id: uuid.UUID = Depends(get_org_id),
    db: AsyncSession = Depends(get_db),
):
    registry = WebhookRegistry(db)
    try:
        webhook = await registry.get_webhook(org_id, webhook_id)
    except WebhookNotFoundError as e:
        raise _not_found(e) from e

    return WebhookResponse.build(webhook, await registry.current_secret(webhook.id))


@router.patch("/{webhook_id}", response_model=WebhookResponse)
@limiter.limit(get_rate_limit_string())
async def update_webhook(
    request: Request,
    webhook_id: uuid.UUID,
    body: WebhookUpdate,
    org_id: uuid.UUID = Depends(get_org_id),
    db: AsyncSession = Depends(get_db),
):
    """Update a webhook. Deliveries already scheduled keep their URL."""
    registry = WebhookRegistry(db)
    try:
        webhook = await registry.update(
            org_id,
            webhook_id,
            name=body.name,
            url=body.url,
            event_types=body.event_types,
            active=body.active,
            secret=body.secret,
        )
    except WebhookNotFoundError as e:
        raise _not_found(e) from e
    except WebhookConfigError as e:
        raise _invalid(e) from e

    return WebhookResponse.build(webhook, await registry.current_secret(webhook.id))


@router.patch("/{webhook_id}/disable", response_model=WebhookResponse)
@limiter.limit(get_rate_limit_string())
async def disable_webhook(
    request: Request,
    webhook_id: uuid.UUID,
    org_id: uuid.UUID = Depends(get_org_id),
    db: AsyncSession = Depends(get_db),
):
    """Stop matching new events. Scheduled deliveries are still sent."""
    registry = WebhookRegistry(db)
    try:
        webhook = await registry.disable(org_id, webhook_id)
    except WebhookNotFoundError as e:
        raise _not_found(e) from e

    return WebhookResponse.build(webhook, await registry.current_secret(webhook.id))


@router.delete("/{webhook_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(get_rate_limit_string())
async def delete_webhook(
    request: Request,
    webhook_id: uuid.UUID,
    org_id: uuid.UUID = Depends(get_org_id),
    db: AsyncSession = Depends(get_db),
):
    """Delete a webhook. Its delivery history is kept."""
    try:
        await WebhookRegistry(db).delete(org_id, webhook_id)
    except WebhookNotFoundError as e:
        raise _not_found(e) from e


@router.post("/{webhook_id}/rotate-secret", response_model=WebhookResponse)
@limiter.limit(get_rate_limit_string())
async def rotate_secret(
    request: Request,
    webhook_id: uuid.UUID,
    org_id: uuid.UUID = Depends(get_org_id),
    db: AsyncSession = Depends(get_db),
):
    """Generate a new signing secret, returned in full only in this response.

    Deliveries created before the rotation keep using the previous secret.
    """
    try:
        rotated = await WebhookRegistry(db).rotate_secret(org_id, webhook_id)
    except WebhookNotFoundError as e:
        raise _not_found(e) from e

    return WebhookResponse.build(rotated.webhook, rotated.secret, reveal=True)


@router.post(
    "/{webhook_id}/test",
    response_model=WebhookTestResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
@limiter.limit(get_rate_limit_string())
async def send_test_webhook(
    request: Request,
    webhook_id: uuid.UUID,
    org_id: uuid.UUID = Depends(get_org_id),
    db: AsyncSession = Depends(get_db),
):
    """Queue a webhook.test delivery through the normal dispatcher."""
    try:
        delivery = await WebhookRegistry(db).send_test(org_id, webhook_id)
    except WebhookNotFoundError as e:
        raise _not_found(e) from e
    except WebhookConfigError as e:
        raise _invalid(e) from e

    return WebhookTestResponse(delivery_id=delivery.id)
