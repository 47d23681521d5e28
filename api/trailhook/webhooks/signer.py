"""Webhook payload signer using HMAC-SHA256."""

import hashlib
import hmac


class WebhookSigner:
    """Signs webhook payloads for verification by receivers."""

    SIGNATURE_PREFIX = "sha256="

    @staticmethod
    def sign(payload: str | bytes, secret: str) -> str:
        """
        Generate HMAC-SHA256 signature over the raw payload bytes.

        Args:
            payload: The serialized JSON payload, exactly as sent
            secret: The webhook's signing secret

        Returns:
            Signature in the form "sha256=<hex digest>"
        """
        body = payload.encode("utf-8") if isinstance(payload, str) else payload
        signature = hmac.new(
            secret.encode("utf-8"),
            body,
            hashlib.sha256,
        ).hexdigest()

        return f"{WebhookSigner.SIGNATURE_PREFIX}{signature}"

    @staticmethod
    def verify(payload: str | bytes, secret: str, signature: str) -> bool:
        """
        Verify a webhook signature.

        Args:
            payload: The raw request body
            secret: The shared secret key
            signature: The value of the X-Webhook-Signature header

        Returns:
            True if signature is valid, False otherwise
        """
        expected_signature = WebhookSigner.sign(payload, secret)
        return hmac.compare_digest(expected_signature, signature)

    @staticmethod
    def get_headers(
        payload: str,
        secret: str,
        *,
        delivery_id: str,
        event_type: str,
        webhook_id: str,
        attempt: int,
    ) -> dict[str, str]:
        """
        Generate all webhook HTTP headers including signature.

        Args:
            payload: The JSON payload string
            secret: The signing secret in effect for this delivery
            delivery_id: Delivery ID, which receivers use to deduplicate retries
            event_type: The event type (e.g., "user.login")
            webhook_id: The webhook subscription ID
            attempt: 1-based attempt number of this send

        Returns:
            Dictionary of HTTP headers
        """
        return {
            "Content-Type": "application/json",
            "X-Webhook-Signature": WebhookSigner.sign(payload, secret),
            "X-Webhook-Delivery-ID": delivery_id,
            "X-Webhook-Event": event_type,
            "X-Webhook-ID": webhook_id,
            "X-Webhook-Attempt": str(attempt),
        }
