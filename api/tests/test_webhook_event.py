"""Tests for WebhookEvent payloads."""

import json
import uuid
from datetime import UTC, datetime

from hypothesis import given, settings
from hypothesis import strategies as st

from trailhook.audit.models import AuditEvent
from trailhook.webhooks.event import TEST_EVENT_TYPE, WebhookEvent

resource_types = st.sampled_from(["user", "document", "api_key", "project"])
actions = st.sampled_from(["login", "created", "deleted", "exported"])


def make_audit_event(resource_type: str = "user", action: str = "login") -> AuditEvent:
    return AuditEvent(
        id=uuid.uuid4(),
        org_id=uuid.uuid4(),
        actor_id="actor-1",
        action=action,
        resource_type=resource_type,
        resource_id="res-1",
        details={"ip": "203.0.113.7"},
        created_at=datetime(2026, 3, 1, 12, 0, tzinfo=UTC),
    )


class TestWebhookEventFromAuditEvent:
    """Tests for building subscriber payloads from audit events."""

    @settings(max_examples=50)
    @given(resource_type=resource_types, action=actions)
    def test_event_type_is_resource_type_dot_action(self, resource_type: str, action: str):
        event = WebhookEvent.from_audit_event(make_audit_event(resource_type, action))
        assert event.event_type == f"{resource_type}.{action}"

    def test_payload_carries_audit_fields(self):
        audit_event = make_audit_event()
        body = json.loads(WebhookEvent.from_audit_event(audit_event).serialize())

        assert body["event"] == "user.login"
        assert body["timestamp"] == "2026-03-01T12:00:00+00:00"
        assert body["data"] == {
            "id": str(audit_event.id),
            "orgId": str(audit_event.org_id),
            "actorId": "actor-1",
            "action": "login",
            "resourceType": "user",
            "resourceId": "res-1",
            "metadata": {"ip": "203.0.113.7"},
            "createdAt": "2026-03-01T12:00:00+00:00",
        }

    def test_event_id_is_audit_event_id(self):
        audit_event = make_audit_event()
        assert WebhookEvent.from_audit_event(audit_event).event_id == audit_event.id

    def test_serialize_is_deterministic(self):
        event = WebhookEvent.from_audit_event(make_audit_event())
        assert event.serialize() == event.serialize()


class TestTestEvent:
    def test_test_event_references_webhook(self):
        webhook_id = uuid.uuid4()
        event = WebhookEvent.test_event(webhook_id)

        assert event.event_type == TEST_EVENT_TYPE
        assert event.data["webhookId"] == str(webhook_id)
        assert event.data["test"] is True
