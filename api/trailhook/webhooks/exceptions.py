"""Webhook engine exceptions."""


class WebhookError(Exception):
    """Base class for webhook engine errors."""


class WebhookConfigError(WebhookError, ValueError):
    """Invalid webhook configuration (URL, secret, name or event types).

    Raised before anything is persisted, so a misconfigured webhook never
    reaches the dispatcher.
    """


class WebhookNotFoundError(WebhookError):
    """Webhook does not exist, belongs to another org, or was deleted."""


class DeliveryNotFoundError(WebhookError):
    """Delivery does not exist or belongs to another org."""
