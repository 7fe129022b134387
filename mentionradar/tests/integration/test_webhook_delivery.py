"""
Integration tests for webhook fan-out, delivery attempts and retries
"""
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from mentionradar.core.clock import ensure_utc
from mentionradar.core.http_client import HTTPClient, HTTPClientConfig
from mentionradar.core.webhook_security import verify_signature
from mentionradar.db.models import WebhookDelivery
from mentionradar.services.webhook_delivery_service import (
    WebhookDeliveryService,
    WebhookDeliveryStatus,
    compute_transition,
    retry_delay,
    serialize_delivery,
)

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


class MutableClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


class RecordingTransport:
    """httpx handler that answers with a queue of status codes"""

    def __init__(self, *statuses):
        self.statuses = list(statuses) or [200]
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(status, Exception):
            raise status
        return httpx.Response(status, text="ok" if status < 400 else "upstream exploded")


def _service(db, handler, clock=None):
    client = HTTPClient(HTTPClientConfig(timeout=5), transport=httpx.MockTransport(handler))
    return WebhookDeliveryService(db, http_client=client, clock=clock or MutableClock())


def _delivery(db, webhook, **kwargs):
    values = {
        "event_type": "new_results",
        "payload": {"event_type": "new_results", "data": {"count": 1}, "timestamp": NOW.isoformat()},
        "status": "pending",
        "attempt_count": 0,
        "max_attempts": 5,
    }
    values.update(kwargs)
    delivery = WebhookDelivery(webhook_id=webhook.id, **values)
    db.add(delivery)
    db.commit()
    return delivery


class TestTransitions:

    def test_retry_ladder(self):
        assert [retry_delay(n) for n in range(1, 7)] == [
            timedelta(minutes=1),
            timedelta(minutes=5),
            timedelta(minutes=15),
            timedelta(minutes=60),
            timedelta(minutes=240),
            timedelta(minutes=240),
        ]

    def test_success(self):
        transition = compute_transition(2, 5, True, NOW)
        assert transition.status == WebhookDeliveryStatus.SUCCESS
        assert transition.attempt_count == 3
        assert transition.completed_at == NOW
        assert transition.next_retry_at is None

    def test_failure_schedules_retry(self):
        transition = compute_transition(0, 5, False, NOW)
        assert transition.status == WebhookDeliveryStatus.RETRYING
        assert transition.next_retry_at == NOW + timedelta(minutes=1)

    def test_last_failure_is_terminal(self):
        transition = compute_transition(4, 5, False, NOW)
        assert transition.status == WebhookDeliveryStatus.FAILED
        assert transition.attempt_count == 5
        assert transition.next_retry_at is None

    def test_attempts_never_exceed_max(self):
        assert compute_transition(9, 5, False, NOW).attempt_count == 5


class TestFanOut:

    def test_tenant_without_webhook_feature(self, test_db, make_tenant, make_webhook):
        tenant = make_tenant("pro")
        make_webhook(tenant)

        outcome = WebhookDeliveryService(test_db).send_webhook_event(tenant.id, "new_results", {"count": 1})

        assert outcome == {"success": False, "reason": "not_eligible", "delivery_ids": []}
        assert test_db.query(WebhookDelivery).count() == 0

    def test_no_subscribed_webhooks(self, test_db, make_tenant, make_webhook):
        tenant = make_tenant("enterprise")
        make_webhook(tenant, events=["monitor_paused"])

        outcome = WebhookDeliveryService(test_db).send_webhook_event(tenant.id, "new_results", {})

        assert outcome["reason"] == "no_webhooks"

    def test_one_delivery_per_subscribed_active_webhook(self, test_db, make_tenant, make_webhook):
        tenant = make_tenant("enterprise")
        wildcard = make_webhook(tenant)
        explicit = make_webhook(tenant, events=["new_results"])
        make_webhook(tenant, events=["new_results"], is_active=False)
        make_webhook(make_tenant("enterprise"))
        service = WebhookDeliveryService(test_db, clock=MutableClock())

        outcome = service.send_webhook_event(tenant.id, "new_results", {"count": 2})

        assert outcome["success"]
        deliveries = test_db.query(WebhookDelivery).all()
        assert sorted(d.id for d in deliveries) == sorted(outcome["delivery_ids"])
        assert {d.webhook_id for d in deliveries} == {wildcard.id, explicit.id}
        assert all(d.status == "pending" and d.attempt_count == 0 and d.max_attempts == 5 for d in deliveries)
        assert deliveries[0].payload == {
            "event_type": "new_results",
            "data": {"count": 2},
            "timestamp": NOW.isoformat(),
        }

    def test_test_event_ignores_subscriptions(self, test_db, make_tenant, make_webhook):
        tenant = make_tenant("enterprise")
        webhook = make_webhook(tenant, events=["monitor_paused"])

        outcome = WebhookDeliveryService(test_db).send_test_event(tenant.id, webhook)

        delivery = test_db.get(WebhookDelivery, outcome["delivery_ids"][0])
        assert delivery.event_type == "test"
        assert delivery.payload["data"]["webhook_id"] == webhook.id


class TestDeliver:

    @pytest.mark.asyncio
    async def test_success_is_signed_and_recorded(self, test_db, make_tenant, make_webhook):
        webhook = make_webhook(make_tenant("enterprise"), secret="whsec")
        delivery = _delivery(test_db, webhook)
        transport = RecordingTransport(200)

        outcome = await _service(test_db, transport).deliver(delivery.id)

        assert outcome["success"]
        assert outcome["status"] == "success"
        assert outcome["status_code"] == 200
        request = transport.requests[0]
        assert request.headers["X-Webhook-Event"] == "new_results"
        assert request.headers["X-Webhook-Delivery-Id"] == delivery.id
        assert verify_signature(request.content, request.headers["X-Webhook-Signature"], "whsec")
        assert json.loads(request.content) == {"event": "new_results", "timestamp": NOW.isoformat(), "data": {"count": 1}}

        test_db.expire_all()
        stored = test_db.get(WebhookDelivery, delivery.id)
        assert stored.status == "success"
        assert stored.attempt_count == 1
        assert stored.completed_at is not None

    @pytest.mark.asyncio
    async def test_server_error_schedules_retry_in_a_minute(self, test_db, make_tenant, make_webhook):
        delivery = _delivery(test_db, make_webhook(make_tenant("enterprise")))

        outcome = await _service(test_db, RecordingTransport(500)).deliver(delivery.id)

        assert not outcome["success"]
        assert outcome["status"] == "retrying"
        assert outcome["attempt_count"] == 1
        test_db.expire_all()
        stored = test_db.get(WebhookDelivery, delivery.id)
        assert stored.status_code == 500
        assert stored.error_message.startswith("HTTP 500")
        assert ensure_utc(stored.next_retry_at) == NOW + timedelta(minutes=1)

    @pytest.mark.asyncio
    async def test_transport_error_counts_as_failure(self, test_db, make_tenant, make_webhook):
        delivery = _delivery(test_db, make_webhook(make_tenant("enterprise")))
        transport = RecordingTransport(httpx.ConnectError("connection refused"))

        outcome = await _service(test_db, transport).deliver(delivery.id)

        assert outcome["status"] == "retrying"
        assert outcome["status_code"] is None
        test_db.expire_all()
        assert "ConnectError" in test_db.get(WebhookDelivery, delivery.id).error_message

    @pytest.mark.asyncio
    async def test_five_failures_end_in_failed(self, test_db, make_tenant, make_webhook):
        delivery = _delivery(test_db, make_webhook(make_tenant("enterprise")))
        clock = MutableClock()
        transport = RecordingTransport(503)
        service = _service(test_db, transport, clock)

        statuses = []
        for _ in range(5):
            outcome = await service.deliver(delivery.id)
            statuses.append(outcome["status"])
            clock.now += timedelta(hours=5)

        assert statuses == ["retrying"] * 4 + ["failed"]
        test_db.expire_all()
        stored = test_db.get(WebhookDelivery, delivery.id)
        assert stored.attempt_count == 5
        assert stored.next_retry_at is None

        again = await service.deliver(delivery.id)
        assert again["reason"] == "already_failed"
        assert len(transport.requests) == 5

    @pytest.mark.asyncio
    async def test_retry_then_success(self, test_db, make_tenant, make_webhook):
        delivery = _delivery(test_db, make_webhook(make_tenant("enterprise")))
        clock = MutableClock()
        service = _service(test_db, RecordingTransport(502, 200), clock)

        await service.deliver(delivery.id)
        clock.now += timedelta(minutes=2)
        outcome = await service.deliver(delivery.id)

        assert outcome["status"] == "success"
        assert outcome["attempt_count"] == 2

    @pytest.mark.asyncio
    async def test_delivered_rows_are_not_resent(self, test_db, make_tenant, make_webhook):
        delivery = _delivery(test_db, make_webhook(make_tenant("enterprise")), status="success", attempt_count=1)
        transport = RecordingTransport(200)

        outcome = await _service(test_db, transport).deliver(delivery.id)

        assert outcome["reason"] == "already_delivered"
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_exhausted_row_fails_without_request(self, test_db, make_tenant, make_webhook):
        delivery = _delivery(test_db, make_webhook(make_tenant("enterprise")), status="retrying", attempt_count=5)
        transport = RecordingTransport(200)

        outcome = await _service(test_db, transport).deliver(delivery.id)

        assert outcome["reason"] == "max_attempts"
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_retry_before_its_rung_is_not_sent(self, test_db, make_tenant, make_webhook):
        delivery = _delivery(test_db, make_webhook(make_tenant("enterprise")))
        transport = RecordingTransport(500)
        service = _service(test_db, transport)

        first = await service.deliver(delivery.id)
        second = await service.deliver(delivery.id)

        assert first["status"] == "retrying"
        assert second["reason"] == "not_due"
        assert len(transport.requests) == 1
        test_db.expire_all()
        assert test_db.get(WebhookDelivery, delivery.id).attempt_count == 1

    @pytest.mark.asyncio
    async def test_claimed_row_is_not_attempted_twice(self, test_db, make_tenant, make_webhook):
        delivery = _delivery(test_db, make_webhook(make_tenant("enterprise")))
        transport = RecordingTransport(200)
        service = _service(test_db, transport)

        assert service.claim_attempt(delivery, NOW) is True
        assert service.claim_attempt(delivery, NOW) is False

        outcome = await service.deliver(delivery.id)

        assert outcome["reason"] == "not_due"
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_lapsed_claim_is_swept_and_retried(self, test_db, make_tenant, make_webhook):
        delivery = _delivery(test_db, make_webhook(make_tenant("enterprise")))
        clock = MutableClock()
        service = _service(test_db, RecordingTransport(200), clock)
        service.claim_attempt(delivery, NOW)

        assert service.get_due_retries(now=NOW) == []
        clock.now = NOW + timedelta(minutes=5)
        assert service.get_due_retries(now=clock.now) == [delivery.id]

        outcome = await service.deliver(delivery.id)
        assert outcome["status"] == "success"
        assert outcome["attempt_count"] == 1

    @pytest.mark.asyncio
    async def test_missing_delivery(self, test_db):
        assert (await _service(test_db, RecordingTransport()).deliver("nope"))["reason"] == "not_found"

    @pytest.mark.asyncio
    async def test_slack_targets_get_rich_payload(self, test_db, make_tenant, make_webhook):
        webhook = make_webhook(make_tenant("enterprise"), url="https://hooks.slack.com/services/T/B/X")
        payload = {
            "event_type": "new_results",
            "data": {
                "monitor_name": "Acme",
                "results": [{"platform": "reddit", "source_url": "https://r/1", "title": "Need acme"}],
            },
            "timestamp": NOW.isoformat(),
        }
        delivery = _delivery(test_db, webhook, payload=payload)
        transport = RecordingTransport(200)

        await _service(test_db, transport).deliver(delivery.id)

        body = json.loads(transport.requests[0].content)
        assert body["text"] == "1 new mention for Acme"


class TestSweeps:

    def test_due_retries(self, test_db, make_tenant, make_webhook):
        webhook = make_webhook(make_tenant("enterprise"))
        due = _delivery(test_db, webhook, status="retrying", attempt_count=1, next_retry_at=NOW - timedelta(minutes=1))
        _delivery(test_db, webhook, status="retrying", attempt_count=1, next_retry_at=NOW + timedelta(minutes=4))
        _delivery(test_db, webhook, status="success", attempt_count=1)
        _delivery(test_db, webhook, status="failed", attempt_count=5)

        assert WebhookDeliveryService(test_db).get_due_retries(now=NOW) == [due.id]

    def test_cleanup_ignores_status(self, test_db, make_tenant, make_webhook):
        webhook = make_webhook(make_tenant("enterprise"))
        _delivery(test_db, webhook, status="success", created_at=NOW - timedelta(days=31))
        _delivery(test_db, webhook, status="retrying", created_at=NOW - timedelta(days=45))
        recent = _delivery(test_db, webhook, status="failed", created_at=NOW - timedelta(days=2))

        deleted = WebhookDeliveryService(test_db).cleanup_old_deliveries(retention_days=30, now=NOW)

        assert deleted == 2
        assert [d.id for d in test_db.query(WebhookDelivery).all()] == [recent.id]

    def test_list_deliveries_is_tenant_scoped(self, test_db, make_tenant, make_webhook):
        tenant = make_tenant("enterprise")
        mine = _delivery(test_db, make_webhook(tenant))
        _delivery(test_db, make_webhook(make_tenant("enterprise")))

        deliveries = WebhookDeliveryService(test_db).list_deliveries(tenant.id)

        assert [d.id for d in deliveries] == [mine.id]
        assert serialize_delivery(deliveries[0])["status"] == "pending"
