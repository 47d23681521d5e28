"""Wakes the delivery scheduler when new audit events are committed."""

from __future__ import annotations

import logging
import os
import uuid

from trailhook.valkey import get_valkey

logger = logging.getLogger(__name__)

# Queue key for scheduler wake-ups
WEBHOOK_QUEUE_KEY = "webhook:events"


def _is_testing() -> bool:
    """Check if running in test environment."""
    return os.environ.get("TESTING") == "1"


class WebhookEmitter:
    """Pushes event IDs to Valkey so the scheduler sweeps without waiting a full poll.

    The audit event table is the source of truth; a lost notification only
    delays fan-out until the next poll.
    """

    @staticmethod
    async def notify(event_id: uuid.UUID) -> bool:
        """
        Signal that an audit event was committed.

        Args:
            event_id: The committed audit event's ID

        Returns:
            True if the wake-up was queued
        """
        if _is_testing():
            logger.debug("Skipping scheduler wake-up in test environment")
            return False

        try:
            client = await get_valkey()
            await client.rpush(WEBHOOK_QUEUE_KEY, str(event_id))
        except Exception as e:
            logger.warning("Failed to queue scheduler wake-up for %s: %s", event_id, e)
            return False

        logger.debug("Queued scheduler wake-up for event %s", event_id)
        return True
