"""Prometheus metrics endpoint."""

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from trailhook.db.session import get_db
from trailhook.webhooks.ledger import DeliveryLedger

router = APIRouter(tags=["metrics"])


@router.get("/metrics", response_class=PlainTextResponse)
async def metrics(db: AsyncSession = Depends(get_db)):
    """Prometheus-compatible metrics endpoint."""

    metrics_output = []
    stats = await DeliveryLedger(db).stats()

    # Deliveries by status
    for status, count in sorted(stats.counts.items()):
        metrics_output.append(f'trailhook_webhook_deliveries{{status="{status}"}} {count}')

    metrics_output.append(f"trailhook_webhooks_active {stats.active_webhooks}")

    # Age of the oldest delivery still waiting to be sent
    oldest = stats.oldest_due_age_seconds or 0
    metrics_output.append(f"trailhook_webhook_oldest_due_seconds {oldest:.3f}")

    return "\n".join(metrics_output) + "\n"
