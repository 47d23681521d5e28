"""Trailhook - Main application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from trailhook.config import get_settings
from trailhook.db.session import async_session_factory
from trailhook.metrics import router as metrics_router
from trailhook.rate_limit import limiter
from trailhook.valkey import close_valkey
from trailhook.webhooks.config import WebhookConfigLoader
from trailhook.webhooks.dispatcher import DeliveryDispatcher
from trailhook.webhooks.router import router as webhooks_router
from trailhook.webhooks.scheduler import DeliveryScheduler

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    scheduler = None
    dispatcher = None
    if settings.WEBHOOK_WORKERS_ENABLED and not settings.TESTING:
        webhook_settings = WebhookConfigLoader.load()
        scheduler = DeliveryScheduler(async_session_factory, webhook_settings)
        dispatcher = DeliveryDispatcher(async_session_factory, webhook_settings)
        await scheduler.start()
        await dispatcher.start()
    else:
        logger.info("Webhook workers disabled")

    yield

    # Cleanup on shutdown
    if scheduler is not None:
        await scheduler.stop()
    if dispatcher is not None:
        await dispatcher.stop()
    await close_valkey()


app = FastAPI(
    title="Trailhook",
    description="""
## Webhook Delivery API

Trailhook turns audit-trail events into signed HTTP notifications to
customer-owned endpoints.

### Features

- **Subscriptions** - Per-organization webhooks matched on exact event types
- **Signed Deliveries** - `X-Webhook-Signature: sha256=<hmac>` over the raw body
- **Retries** - Exponential backoff with jitter, bounded attempts
- **Delivery Log** - Filterable history of every attempt outcome
- **Replay** - Resend any recorded delivery as a new delivery

### Verifying Deliveries

1. Read the raw request body
2. Compute HMAC-SHA256 of the body with the webhook secret
3. Compare with `X-Webhook-Signature` in constant time
4. Deduplicate on `data.id`, the audit event id

Retries of a delivery share its `X-Webhook-Delivery-ID`. A replay is sent as a
new delivery with a new `X-Webhook-Delivery-ID` and the same body, so
deduplicating on the delivery id treats a replay as a new send.

All routes require the `X-Org-ID` header set by the authentication layer.
    """,
    version="1.0.0",
    lifespan=lifespan,
)

# Rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes - all under /api/v1
API_PREFIX = "/api/v1"
app.include_router(webhooks_router, prefix=API_PREFIX)

# Metrics at root level (for Prometheus scraping)
app.include_router(metrics_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Trailhook",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}
