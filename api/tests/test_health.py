"""Health check tests."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_root(client: AsyncClient):
    """Test root endpoint."""
    response = await client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "Trailhook"
    assert "version" in data


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    """Test health check endpoint."""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_openapi_schema(client: AsyncClient):
    """Test OpenAPI schema is available."""
    response = await client.get("/openapi.json")
    assert response.status_code == 200
    schema = response.json()
    assert schema["info"]["title"] == "Trailhook"
    assert "/api/v1/webhooks/deliveries/{delivery_id}/replay" in schema["paths"]
    description = schema["info"]["description"]
    assert "Deduplicate on `data.id`" in description
    assert "Retries of a delivery share its `X-Webhook-Delivery-ID`" in description
    assert "new `X-Webhook-Delivery-ID` and the same body" in description


@pytest.mark.asyncio
async def test_metrics_reports_delivery_counts(client: AsyncClient):
    """Test Prometheus metrics on an empty database."""
    response = await client.get("/metrics")
    assert response.status_code == 200
    body = response.text
    assert 'trailhook_webhook_deliveries{status="pending"} 0' in body
    assert 'trailhook_webhook_deliveries{status="failed"} 0' in body
    assert "trailhook_webhooks_active 0" in body
