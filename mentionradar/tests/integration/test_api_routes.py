"""
Integration tests for the HTTP surface
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from mentionradar.api import monitors, webhooks
from mentionradar.core.app_factory import AppConfig, create_app
from mentionradar.db.database import get_db
from mentionradar.db.models import WebhookDelivery
from mentionradar.services.manual_scan_service import ManualScanService

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def scan_enqueuer():
    return Mock()


@pytest.fixture
def queued_deliveries():
    return []


@pytest.fixture
def client(test_db, scan_enqueuer, queued_deliveries):
    app = create_app(AppConfig(environment="test", configure_logging=False))

    def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[monitors.manual_scan_service] = lambda: ManualScanService(
        test_db, scan_enqueuer, clock=lambda: NOW
    )
    app.dependency_overrides[webhooks.delivery_enqueuer] = lambda: queued_deliveries.append

    with TestClient(app) as test_client:
        yield test_client


def _headers(tenant):
    return {"X-Tenant-ID": tenant.id}


class TestTenantHeader:

    def test_missing_header_is_unauthorized(self, client):
        response = client.post("/api/v1/monitors/m1/scan")
        assert response.status_code == 401
        assert "X-Tenant-ID" in response.json()["detail"]

    def test_blank_header_is_unauthorized(self, client):
        response = client.get("/api/v1/webhooks/deliveries", headers={"X-Tenant-ID": "  "})
        assert response.status_code == 401


class TestManualScanRoute:

    def test_accepted(self, client, make_tenant, make_monitor, scan_enqueuer):
        tenant = make_tenant("pro")
        monitor = make_monitor(tenant)

        response = client.post(f"/api/v1/monitors/{monitor.id}/scan", headers=_headers(tenant))

        assert response.status_code == 202
        assert response.json()["status"] == "accepted"
        scan_enqueuer.enqueue.assert_called_once_with(monitor.id)

    def test_cooldown_sets_retry_after(self, client, make_tenant, make_monitor):
        tenant = make_tenant("pro")
        monitor = make_monitor(tenant, last_manual_scan_at=NOW - timedelta(hours=1))

        response = client.post(f"/api/v1/monitors/{monitor.id}/scan", headers=_headers(tenant))

        assert response.status_code == 429
        assert response.headers["Retry-After"] == str(3 * 3600)
        body = response.json()
        assert body["status"] == "rejected_cooldown"
        assert body["cooldown_remaining"] == "3h 0m"

    def test_in_progress(self, client, make_tenant, make_monitor):
        tenant = make_tenant("pro")
        monitor = make_monitor(tenant, is_scan_in_progress=True, scan_started_at=NOW)

        response = client.post(f"/api/v1/monitors/{monitor.id}/scan", headers=_headers(tenant))

        assert response.status_code == 409

    def test_other_tenant_gets_not_found(self, client, make_tenant, make_monitor):
        monitor = make_monitor(make_tenant("pro"))

        response = client.post(f"/api/v1/monitors/{monitor.id}/scan", headers=_headers(make_tenant("pro")))

        assert response.status_code == 404


class TestQueryHelpers:

    def test_validate_explains_query(self, client):
        response = client.post(
            "/api/v1/monitors/query/validate",
            json={"query": '"project management" -jira subreddit:saas'},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["valid"] is True
        assert body["required"] == ['"project management"']
        assert body["excluded"] == ["jira"]
        assert body["filters"] == {"subreddit": ["saas"]}
        assert "Must NOT contain: jira" in body["explanation"]

    def test_validate_reports_unmatched_quote(self, client):
        response = client.post("/api/v1/monitors/query/validate", json={"query": '"acme pricing'})

        body = response.json()
        assert body["valid"] is False
        assert body["error"] == "Unmatched quote"

    def test_keyword_limit_for_free_tier(self, client, make_tenant):
        tenant = make_tenant("free")

        response = client.post(
            "/api/v1/monitors/keywords/check",
            json={"keywords": ["acme", "acme pricing", "acme alternative", "acme review"]},
            headers=_headers(tenant),
        )

        body = response.json()
        assert response.status_code == 200
        assert body["allowed"] is False
        assert (body["current"], body["limit"], body["tier"]) == (4, 3, "free")

    def test_keyword_limit_within_plan(self, client, make_tenant):
        tenant = make_tenant("pro")

        response = client.post(
            "/api/v1/monitors/keywords/check", json={"keywords": ["acme", " "]}, headers=_headers(tenant)
        )

        body = response.json()
        assert body["allowed"] is True
        assert body["message"] == "9 keywords remaining"


class TestWebhookRoutes:

    def test_test_event_is_queued(self, client, test_db, make_tenant, make_webhook, queued_deliveries):
        tenant = make_tenant("enterprise")
        webhook = make_webhook(tenant, events=["new_results"])

        response = client.post(f"/api/v1/webhooks/{webhook.id}/test", headers=_headers(tenant))

        assert response.status_code == 202
        delivery_ids = response.json()["delivery_ids"]
        assert queued_deliveries == delivery_ids
        delivery = test_db.get(WebhookDelivery, delivery_ids[0])
        assert delivery.event_type == "test"

    def test_test_event_requires_eligible_plan(self, client, make_tenant, make_webhook, queued_deliveries):
        tenant = make_tenant("pro")
        webhook = make_webhook(tenant)

        response = client.post(f"/api/v1/webhooks/{webhook.id}/test", headers=_headers(tenant))

        assert response.status_code == 403
        assert response.json()["reason"] == "not_eligible"
        assert queued_deliveries == []

    def test_test_event_for_other_tenant(self, client, make_tenant, make_webhook):
        webhook = make_webhook(make_tenant("enterprise"))

        response = client.post(f"/api/v1/webhooks/{webhook.id}/test", headers=_headers(make_tenant("enterprise")))

        assert response.status_code == 404

    def test_list_deliveries_is_tenant_scoped(self, client, make_tenant, make_webhook):
        tenant = make_tenant("enterprise")
        webhook = make_webhook(tenant)
        other = make_tenant("enterprise")
        make_webhook(other)

        client.post(f"/api/v1/webhooks/{webhook.id}/test", headers=_headers(tenant))
        response = client.get("/api/v1/webhooks/deliveries", headers=_headers(tenant))
        other_response = client.get("/api/v1/webhooks/deliveries", headers=_headers(other))

        assert response.json()["count"] == 1
        assert response.json()["deliveries"][0]["webhook_id"] == webhook.id
        assert other_response.json()["count"] == 0


class TestHealthEndpoints:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["environment"] == "test"
        assert body["routers"] == ["/api/v1/monitors", "/api/v1/webhooks"]

    def test_metrics_exposes_prometheus_text(self, client, make_tenant):
        client.post("/api/v1/monitors/missing/scan", headers=_headers(make_tenant()))

        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "manual_scans_total" in response.text
