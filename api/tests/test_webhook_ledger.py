"""Tests for DeliveryLedger."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio

from trailhook.webhooks.exceptions import DeliveryNotFoundError, WebhookConfigError
from trailhook.webhooks.ledger import DeliveryFilters, DeliveryLedger
from trailhook.webhooks.models import DeliveryStatus, WebhookDelivery

BASE_TIME = datetime(2026, 4, 1, 9, 0, tzinfo=UTC)


async def add_delivery(db, org_id, webhook, minutes: int, **fields) -> WebhookDelivery:
    delivery = WebhookDelivery(
        org_id=org_id,
        webhook_id=webhook.id,
        event_id=uuid.uuid4(),
        event_type=fields.pop("event_type", "user.login"),
        endpoint=fields.pop("endpoint", webhook.url),
        payload="{}",
        created_at=BASE_TIME + timedelta(minutes=minutes),
        **fields,
    )
    db.add(delivery)
    await db.commit()
    return delivery


@pytest_asyncio.fixture
async def deliveries(db_session, org_id, webhook):
    return [
        await add_delivery(db_session, org_id, webhook, 0, status="success", latency_ms=40),
        await add_delivery(db_session, org_id, webhook, 1, status="failed", latency_ms=900),
        await add_delivery(
            db_session,
            org_id,
            webhook,
            2,
            status="retrying",
            latency_ms=300,
            event_type="user.logout",
        ),
        await add_delivery(
            db_session,
            org_id,
            webhook,
            3,
            status="pending",
            endpoint="https://Other.Example.com/Path",
        ),
    ]


class TestListDeliveries:
    """Tests for filtering and paging the delivery log."""

    @pytest.mark.asyncio
    async def test_newest_first_with_total(self, db_session, org_id, deliveries):
        rows, total = await DeliveryLedger(db_session).list_deliveries(org_id)

        assert total == 4
        assert [r.delivery.id for r in rows] == [d.id for d in reversed(deliveries)]
        assert rows[0].webhook_name == "Primary"

    @pytest.mark.asyncio
    async def test_filter_by_status(self, db_session, org_id, deliveries):
        rows, total = await DeliveryLedger(db_session).list_deliveries(
            org_id, DeliveryFilters(status="failed")
        )
        assert total == 1
        assert rows[0].delivery.id == deliveries[1].id

    @pytest.mark.asyncio
    async def test_event_type_is_case_insensitive_substring(self, db_session, org_id, deliveries):
        rows, total = await DeliveryLedger(db_session).list_deliveries(
            org_id, DeliveryFilters(event_type="user.log")
        )
        assert total == 4

        rows, total = await DeliveryLedger(db_session).list_deliveries(
            org_id, DeliveryFilters(event_type="LOGOUT")
        )
        assert [r.delivery.id for r in rows] == [deliveries[2].id]

    @pytest.mark.asyncio
    async def test_endpoint_is_case_insensitive_substring(self, db_session, org_id, deliveries):
        rows, total = await DeliveryLedger(db_session).list_deliveries(
            org_id, DeliveryFilters(endpoint="other.example")
        )
        assert total == 1
        assert rows[0].delivery.id == deliveries[3].id

    @pytest.mark.asyncio
    async def test_latency_range(self, db_session, org_id, deliveries):
        rows, total = await DeliveryLedger(db_session).list_deliveries(
            org_id, DeliveryFilters(min_latency=100, max_latency=500)
        )
        assert [r.delivery.id for r in rows] == [deliveries[2].id]

    @pytest.mark.asyncio
    async def test_date_range(self, db_session, org_id, deliveries):
        rows, total = await DeliveryLedger(db_session).list_deliveries(
            org_id,
            DeliveryFilters(
                start_date=BASE_TIME + timedelta(minutes=1),
                end_date=BASE_TIME + timedelta(minutes=2),
            ),
        )
        assert total == 2
        assert {r.delivery.id for r in rows} == {deliveries[1].id, deliveries[2].id}

    @pytest.mark.asyncio
    async def test_filter_by_webhook(self, db_session, org_id, deliveries):
        rows, total = await DeliveryLedger(db_session).list_deliveries(
            org_id, DeliveryFilters(webhook_id=uuid.uuid4())
        )
        assert (rows, total) == ([], 0)

    @pytest.mark.asyncio
    async def test_pagination_is_stable(self, db_session, org_id, deliveries):
        ledger = DeliveryLedger(db_session)
        first, total = await ledger.list_deliveries(org_id, DeliveryFilters(limit=3))
        second, _ = await ledger.list_deliveries(org_id, DeliveryFilters(limit=3, offset=3))

        assert total == 4
        assert len(first) == 3
        assert len(second) == 1
        seen = [r.delivery.id for r in first + second]
        assert len(set(seen)) == 4

    @pytest.mark.asyncio
    async def test_other_orgs_see_nothing(self, db_session, deliveries):
        rows, total = await DeliveryLedger(db_session).list_deliveries(uuid.uuid4())
        assert (rows, total) == ([], 0)

    @pytest.mark.parametrize(
        "kwargs",
        [{"limit": 0}, {"limit": 101}, {"offset": -1}, {"status": "exploded"}],
    )
    def test_invalid_filters_are_rejected(self, kwargs: dict):
        with pytest.raises(WebhookConfigError):
            DeliveryFilters(**kwargs)


class TestGetDelivery:
    @pytest.mark.asyncio
    async def test_get_returns_detail(self, db_session, org_id, deliveries):
        row = await DeliveryLedger(db_session).get_delivery(org_id, deliveries[0].id)
        assert row.delivery.payload == "{}"
        assert row.webhook_name == "Primary"

    @pytest.mark.asyncio
    async def test_get_is_scoped_to_org(self, db_session, deliveries):
        with pytest.raises(DeliveryNotFoundError):
            await DeliveryLedger(db_session).get_delivery(uuid.uuid4(), deliveries[0].id)


class TestStats:
    @pytest.mark.asyncio
    async def test_counts_per_status(self, db_session, org_id, deliveries):
        stats = await DeliveryLedger(db_session).stats(org_id)

        assert stats.counts == {
            DeliveryStatus.PENDING.value: 1,
            DeliveryStatus.RETRYING.value: 1,
            DeliveryStatus.SUCCESS.value: 1,
            DeliveryStatus.FAILED.value: 1,
        }
        assert stats.active_webhooks == 1
        assert stats.oldest_due_age_seconds > 0

    @pytest.mark.asyncio
    async def test_oldest_due_ignores_retries_scheduled_later(
        self, db_session, org_id, webhook, deliveries
    ):
        now = BASE_TIME + timedelta(hours=1)
        await add_delivery(
            db_session,
            org_id,
            webhook,
            -30,
            status="retrying",
            next_retry_at=now + timedelta(minutes=5),
        )

        stats = await DeliveryLedger(db_session).stats(org_id, now=now)

        # Oldest due row is the retrying delivery at minute 2
        assert stats.oldest_due_age_seconds == pytest.approx(58 * 60)
        assert stats.counts[DeliveryStatus.RETRYING.value] == 2
