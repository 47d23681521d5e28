"""Property-based tests for WebhookSigner."""

import hashlib
import hmac
import json
import uuid

from hypothesis import given, settings
from hypothesis import strategies as st

from trailhook.webhooks.signer import WebhookSigner

# Strategies for generating test data
payloads = st.builds(
    lambda event_id, event_type, resource_id: json.dumps(
        {
            "event": event_type,
            "timestamp": "2026-01-15T10:30:00+00:00",
            "data": {"id": str(event_id), "resourceId": str(resource_id)},
        },
        separators=(",", ":"),
    ),
    event_id=st.uuids(),
    event_type=st.sampled_from(
        [
            "user.login",
            "user.created",
            "document.deleted",
            "api_key.rotated",
        ]
    ),
    resource_id=st.uuids(),
)

secrets = st.text(min_size=16, max_size=64, alphabet="abcdefghijklmnopqrstuvwxyz0123456789")


class TestWebhookSigner:
    """Tests for webhook signature generation and verification."""

    @settings(max_examples=100)
    @given(payload=payloads, secret=secrets)
    def test_signature_is_hmac_of_raw_payload(self, payload: str, secret: str):
        """
        The X-Webhook-Signature value SHALL equal "sha256=" followed by the hex
        HMAC-SHA256 of the exact body bytes, and SHALL verify with the same secret.
        """
        signature = WebhookSigner.sign(payload, secret)

        expected = hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()
        assert signature == f"sha256={expected}"
        assert WebhookSigner.verify(payload, secret, signature) is True

    @settings(max_examples=50)
    @given(payload=payloads, secret=secrets)
    def test_bytes_and_text_payloads_sign_identically(self, payload: str, secret: str):
        assert WebhookSigner.sign(payload, secret) == WebhookSigner.sign(payload.encode(), secret)

    @settings(max_examples=50)
    @given(payload=payloads, secret=secrets)
    def test_signature_changes_with_different_payload(self, payload: str, secret: str):
        """
        Signatures should be different for different payloads.
        """
        assert WebhookSigner.sign(payload, secret) != WebhookSigner.sign(payload + " ", secret)

    @settings(max_examples=50)
    @given(payload=payloads, secret=secrets)
    def test_verification_fails_with_wrong_secret(self, payload: str, secret: str):
        """
        Verification should fail when using wrong secret.
        """
        signature = WebhookSigner.sign(payload, secret)
        assert WebhookSigner.verify(payload, secret + "wrong", signature) is False

    def test_get_headers_includes_all_required_headers(self):
        """
        Test that get_headers returns all required HTTP headers.
        """
        payload = json.dumps({"event": "user.login", "data": {}})
        delivery_id = str(uuid.uuid4())
        webhook_id = str(uuid.uuid4())

        headers = WebhookSigner.get_headers(
            payload,
            "test-secret-0123456789",
            delivery_id=delivery_id,
            event_type="user.login",
            webhook_id=webhook_id,
            attempt=2,
        )

        assert headers["Content-Type"] == "application/json"
        assert headers["X-Webhook-Signature"] == WebhookSigner.sign(
            payload, "test-secret-0123456789"
        )
        assert headers["X-Webhook-Delivery-ID"] == delivery_id
        assert headers["X-Webhook-Event"] == "user.login"
        assert headers["X-Webhook-ID"] == webhook_id
        assert headers["X-Webhook-Attempt"] == "2"
