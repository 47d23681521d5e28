"""Webhook Pydantic schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from trailhook.webhooks.models import Webhook
from trailhook.webhooks.registry import mask_secret


class WebhookCreate(BaseModel):
    """Request body for creating a webhook."""

    name: str = Field(..., min_length=1, max_length=255, description="Display name")
    url: str = Field(..., description="Target URL (http or https)")
    event_types: list[str] = Field(..., min_length=1, description="Subscribed event types")
    secret: str | None = Field(None, description="Signing secret; generated when omitted")


class WebhookUpdate(BaseModel):
    """Request body for updating a webhook. Omitted fields are unchanged."""

    name: str | None = Field(None, min_length=1, max_length=255)
    url: str | None = None
    event_types: list[str] | None = Field(None, min_length=1)
    active: bool | None = None
    secret: str | None = Field(None, description="Setting a secret rotates it")


class WebhookResponse(BaseModel):
    """Webhook subscription response (secret masked)."""

    id: UUID = Field(..., description="Webhook ID")
    name: str = Field(..., description="Display name")
    url: str = Field(..., description="Target URL")
    event_types: list[str] = Field(..., description="Subscribed event types")
    active: bool = Field(..., description="Whether new events are matched")
    secret: str = Field(..., description="Signing secret, masked unless just created")
    created_at: datetime = Field(..., description="When webhook was created")
    updated_at: datetime = Field(..., description="When webhook was last changed")

    @classmethod
    def build(cls, webhook: Webhook, secret: str | None, reveal: bool = False) -> "WebhookResponse":
        return cls(
            id=webhook.id,
            name=webhook.name,
            url=webhook.url,
            event_types=list(webhook.event_types or []),
            active=webhook.active,
            secret=(secret or "") if reveal else mask_secret(secret),
            created_at=webhook.created_at,
            updated_at=webhook.updated_at,
        )


class WebhookDeliveryResponse(BaseModel):
    """Webhook delivery ledger entry response."""

    id: UUID = Field(..., description="Delivery ID, sent as X-Webhook-Delivery-ID")
    webhook_id: UUID = Field(..., description="Target webhook ID")
    webhook_name: str | None = Field(None, description="Target webhook name")
    event_id: UUID = Field(..., description="Audit event ID")
    event_type: str = Field(..., description="Event type (e.g., user.login)")
    endpoint: str = Field(..., description="Target URL at delivery time")
    status: str = Field(..., description="pending, retrying, success or failed")
    status_code: int | None = Field(None, description="HTTP response status code")
    error: str | None = Field(None, description="Error of the last attempt")
    attempts: int = Field(..., description="Number of delivery attempts")
    latency_ms: int | None = Field(None, description="Latency of the last attempt")
    replay_of: UUID | None = Field(None, description="Delivery this row replays")
    created_at: datetime = Field(..., description="When delivery was created")
    attempted_at: datetime | None = Field(None, description="When it was last attempted")
    completed_at: datetime | None = Field(None, description="When delivery completed")
    next_retry_at: datetime | None = Field(None, description="When the next attempt is due")


class WebhookDeliveryDetailResponse(WebhookDeliveryResponse):
    """Single delivery including payload and response body."""

    payload: str = Field(..., description="Exact body sent to the endpoint")
    response: str | None = Field(None, description="Response body (truncated)")


class WebhookDeliveryListResponse(BaseModel):
    items: list[WebhookDeliveryResponse]
    total: int = Field(..., description="Number of deliveries matching the filters")
    limit: int
    offset: int


class WebhookTestResponse(BaseModel):
    delivery_id: UUID = Field(..., description="ID of the queued test delivery")


class ReplayResponse(BaseModel):
    """Response for a delivery replay."""

    model_config = ConfigDict(populate_by_name=True)

    delivery_id: UUID = Field(..., alias="deliveryId", description="New delivery ID")
    replay_of: UUID = Field(..., alias="replayOf", description="Replayed delivery ID")
