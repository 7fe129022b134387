"""
Webhook Delivery Service

Pushes tenant events to tenant-owned endpoints:
- Only tenants whose plan includes webhooks are eligible; others get an
  explicit "not_eligible" outcome
- One delivery row per subscribed webhook, retried on a fixed ladder
  (1, 5, 15, 60, 240 minutes) up to max_attempts
- Bodies are signed with HMAC-SHA256 using the webhook's secret
- Delivery rows are purged after the retention window regardless of status
- Each attempt first leases its row through a conditional UPDATE of
  next_retry_at, so overlapping sweeps never POST the same attempt twice

Status transitions: pending -> success | retrying, retrying -> success |
retrying | failed. Terminal rows are never re-sent.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import httpx
from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from mentionradar.core.clock import utc_now, ensure_utc
from mentionradar.core.config import get_settings
from mentionradar.core.exceptions import WebhookDeliveryError
from mentionradar.core.http_client import HTTPClient, HTTPClientConfig
from mentionradar.core.monitoring import get_metrics
from mentionradar.core.webhook_security import (
    DELIVERY_ID_HEADER,
    EVENT_HEADER,
    SIGNATURE_HEADER,
    signature_header_value,
)
from mentionradar.db.models import Webhook, WebhookDelivery
from mentionradar.services import plan_service
from mentionradar.services.webhook_formatters import detect_webhook_type, format_payload

logger = logging.getLogger(__name__)

RETRY_DELAYS_MINUTES = [1, 5, 15, 60, 240]
MAX_ERROR_MESSAGE_CHARS = 500
TEST_EVENT = "test"


class WebhookDeliveryStatus(str, Enum):
    """Webhook delivery status tracking"""
    PENDING = "pending"
    SUCCESS = "success"
    RETRYING = "retrying"
    FAILED = "failed"


@dataclass
class DeliveryTransition:
    status: WebhookDeliveryStatus
    attempt_count: int
    next_retry_at: Optional[datetime]
    completed_at: Optional[datetime]


def retry_delay(attempt_count: int) -> timedelta:
    """Backoff after the given (1-based) failed attempt, capped at the last rung"""
    index = min(max(attempt_count, 1) - 1, len(RETRY_DELAYS_MINUTES) - 1)
    return timedelta(minutes=RETRY_DELAYS_MINUTES[index])


def compute_transition(attempt_count: int, max_attempts: int, succeeded: bool, now: datetime) -> DeliveryTransition:
    """
    State after one attempt.

    attempt_count is the number of attempts made before this one.
    """
    attempts = min(attempt_count + 1, max_attempts)
    if succeeded:
        return DeliveryTransition(WebhookDeliveryStatus.SUCCESS, attempts, None, now)
    if attempts >= max_attempts:
        return DeliveryTransition(WebhookDeliveryStatus.FAILED, attempts, None, now)
    return DeliveryTransition(WebhookDeliveryStatus.RETRYING, attempts, now + retry_delay(attempts), None)


def _webhook_subscribes(webhook: Webhook, event_type: str) -> bool:
    events = webhook.events or []
    return event_type in events or "*" in events


class WebhookDeliveryService:
    def __init__(
        self,
        db: Session,
        http_client: Optional[HTTPClient] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.settings = get_settings()
        self.http_client = http_client or HTTPClient(HTTPClientConfig(timeout=self.settings.webhook_timeout_seconds))
        self.clock = clock
        self.metrics = get_metrics()

    # ------------------------------------------------------------------
    # Event fan-out
    # ------------------------------------------------------------------

    def is_eligible(self, tenant_id: str) -> bool:
        tier = plan_service.PlanService(self.db).get_tenant_tier(tenant_id)
        return plan_service.can_use_webhooks(tier)

    def send_webhook_event(self, tenant_id: str, event_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create one pending delivery per subscribed webhook"""
        if not self.is_eligible(tenant_id):
            logger.info(f"Tenant {tenant_id} is not eligible for webhooks, dropping {event_type}")
            return {"success": False, "reason": "not_eligible", "delivery_ids": []}

        webhooks = (
            self.db.query(Webhook)
            .filter(Webhook.tenant_id == tenant_id, Webhook.is_active.is_(True))
            .all()
        )
        subscribed = [w for w in webhooks if _webhook_subscribes(w, event_type)]
        if not subscribed:
            logger.info(f"No active webhooks subscribed to {event_type} for tenant {tenant_id}")
            return {"success": True, "reason": "no_webhooks", "delivery_ids": []}

        delivery_ids = self._create_deliveries(subscribed, event_type, data)
        logger.info(f"Created {len(delivery_ids)} webhook deliveries for {event_type}", extra={"tenant_id": tenant_id})
        return {"success": True, "delivery_ids": delivery_ids}

    def send_test_event(self, tenant_id: str, webhook: Webhook) -> Dict[str, Any]:
        """Queue a test delivery to one webhook regardless of its subscriptions"""
        if not self.is_eligible(tenant_id):
            return {"success": False, "reason": "not_eligible", "delivery_ids": []}
        data = {"message": "Test event from MentionRadar", "webhook_id": webhook.id, "webhook_name": webhook.name}
        return {"success": True, "delivery_ids": self._create_deliveries([webhook], TEST_EVENT, data)}

    def _create_deliveries(self, webhooks: List[Webhook], event_type: str, data: Dict[str, Any]) -> List[str]:
        payload = {"event_type": event_type, "data": data, "timestamp": self.clock().isoformat()}
        deliveries = [
            WebhookDelivery(
                webhook_id=webhook.id,
                event_type=event_type,
                payload=payload,
                status=WebhookDeliveryStatus.PENDING.value,
                attempt_count=0,
                max_attempts=self.settings.webhook_max_attempts,
            )
            for webhook in webhooks
        ]
        self.db.add_all(deliveries)
        self.db.flush()
        delivery_ids = [d.id for d in deliveries]
        self.db.commit()
        return delivery_ids

    # ------------------------------------------------------------------
    # Delivery attempts
    # ------------------------------------------------------------------

    def build_request(self, delivery: WebhookDelivery, webhook: Webhook) -> Dict[str, Any]:
        """Body bytes and headers for one attempt"""
        formatted = format_payload(webhook.url, delivery.event_type, delivery.payload or {})
        body = json.dumps(formatted, separators=(",", ":"), default=str).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            EVENT_HEADER: delivery.event_type,
            DELIVERY_ID_HEADER: delivery.id,
        }
        if webhook.secret:
            headers[SIGNATURE_HEADER] = signature_header_value(body, webhook.secret)
        return {"body": body, "headers": headers}

    async def _attempt(self, url: str, request: Dict[str, Any]) -> int:
        """
        POST one signed body.

        Raises:
            WebhookDeliveryError: transport failure or a non-2xx response
        """
        try:
            response = await self.http_client.post(url, content=request["body"], headers=request["headers"])
        except httpx.HTTPError as e:
            raise WebhookDeliveryError(f"{type(e).__name__}: {e}"[:MAX_ERROR_MESSAGE_CHARS]) from e
        if not 200 <= response.status_code < 300:
            raise WebhookDeliveryError(
                f"HTTP {response.status_code}: {response.text[:MAX_ERROR_MESSAGE_CHARS]}",
                status_code=response.status_code,
            )
        return response.status_code

    def claim_attempt(self, delivery: WebhookDelivery, now: datetime) -> bool:
        """
        Lease the row for one attempt by pushing next_retry_at past the
        request timeout. Only one caller can move a due row, so overlapping
        sweeps or a redelivered task never POST the same attempt twice.
        """
        lease_until = now + timedelta(seconds=self.settings.webhook_timeout_seconds * 2)
        result = self.db.execute(
            update(WebhookDelivery)
            .where(
                WebhookDelivery.id == delivery.id,
                WebhookDelivery.status == delivery.status,
                WebhookDelivery.attempt_count == delivery.attempt_count,
                or_(WebhookDelivery.next_retry_at.is_(None), WebhookDelivery.next_retry_at <= now),
            )
            .values(next_retry_at=lease_until)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    async def deliver(self, delivery_id: str) -> Dict[str, Any]:
        """Make one delivery attempt and record the resulting state"""
        delivery = self.db.get(WebhookDelivery, delivery_id)
        if delivery is None:
            logger.error(f"Webhook delivery {delivery_id} not found")
            return {"success": False, "reason": "not_found"}

        if delivery.status == WebhookDeliveryStatus.SUCCESS.value:
            return {"success": True, "reason": "already_delivered", "status": delivery.status}
        if delivery.status == WebhookDeliveryStatus.FAILED.value:
            return {"success": False, "reason": "already_failed", "status": delivery.status}

        now = self.clock()
        next_retry_at = ensure_utc(delivery.next_retry_at)
        if next_retry_at is not None and next_retry_at > now:
            return {"success": False, "reason": "not_due", "status": delivery.status}

        if delivery.attempt_count >= delivery.max_attempts:
            delivery.status = WebhookDeliveryStatus.FAILED.value
            delivery.completed_at = now
            delivery.next_retry_at = None
            self.db.commit()
            return {"success": False, "reason": "max_attempts", "status": delivery.status}

        if not self.claim_attempt(delivery, now):
            logger.info(f"Webhook delivery {delivery_id} is already being attempted elsewhere")
            return {"success": False, "reason": "not_due", "status": delivery.status}

        webhook = delivery.webhook
        request = self.build_request(delivery, webhook)
        target = detect_webhook_type(webhook.url)

        error_message = None
        try:
            status_code = await self._attempt(webhook.url, request)
            succeeded = True
        except WebhookDeliveryError as e:
            succeeded = False
            status_code = e.status_code
            error_message = str(e)

        transition = compute_transition(delivery.attempt_count, delivery.max_attempts, succeeded, self.clock())
        delivery.status = transition.status.value
        delivery.attempt_count = transition.attempt_count
        delivery.next_retry_at = transition.next_retry_at
        delivery.completed_at = transition.completed_at
        delivery.status_code = status_code
        delivery.error_message = error_message
        self.db.commit()

        self.metrics.webhook_deliveries_total.labels(status=delivery.status, target=target).inc()
        if succeeded:
            logger.info(f"Webhook delivery {delivery_id} succeeded with {status_code}")
        elif transition.status == WebhookDeliveryStatus.FAILED:
            logger.error(f"Webhook delivery {delivery_id} failed permanently after {delivery.attempt_count} attempts: {error_message}")
        else:
            logger.warning(
                f"Webhook delivery {delivery_id} attempt {delivery.attempt_count} failed, "
                f"retrying at {transition.next_retry_at.isoformat()}: {error_message}"
            )

        return {
            "success": succeeded,
            "status": delivery.status,
            "status_code": status_code,
            "attempt_count": delivery.attempt_count,
            "next_retry_at": transition.next_retry_at.isoformat() if transition.next_retry_at else None,
        }

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    def get_due_retries(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> List[str]:
        """Retrying rows past next_retry_at, plus pending rows whose first attempt lease lapsed"""
        now = now or self.clock()
        limit = limit or self.settings.webhook_retry_batch_size
        rows = (
            self.db.query(WebhookDelivery.id)
            .filter(
                WebhookDelivery.status.in_([WebhookDeliveryStatus.RETRYING.value, WebhookDeliveryStatus.PENDING.value]),
                WebhookDelivery.next_retry_at <= now,
            )
            .order_by(WebhookDelivery.next_retry_at)
            .limit(limit)
            .all()
        )
        return [delivery_id for (delivery_id,) in rows]

    def cleanup_old_deliveries(self, retention_days: Optional[int] = None, now: Optional[datetime] = None) -> int:
        retention_days = retention_days or self.settings.webhook_delivery_retention_days
        cutoff = (now or self.clock()) - timedelta(days=retention_days)
        deleted = (
            self.db.query(WebhookDelivery)
            .filter(WebhookDelivery.created_at < cutoff)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        logger.info(f"Purged {deleted} webhook deliveries older than {retention_days} days")
        return deleted

    def list_deliveries(self, tenant_id: str, webhook_id: Optional[str] = None, limit: int = 50) -> List[WebhookDelivery]:
        query = (
            self.db.query(WebhookDelivery)
            .join(Webhook, Webhook.id == WebhookDelivery.webhook_id)
            .filter(Webhook.tenant_id == tenant_id)
        )
        if webhook_id:
            query = query.filter(WebhookDelivery.webhook_id == webhook_id)
        return query.order_by(WebhookDelivery.created_at.desc()).limit(limit).all()


def serialize_delivery(delivery: WebhookDelivery) -> Dict[str, Any]:
    def iso(value):
        value = ensure_utc(value)
        return value.isoformat() if value else None

    return {
        "id": delivery.id,
        "webhook_id": delivery.webhook_id,
        "event_type": delivery.event_type,
        "status": delivery.status,
        "attempt_count": delivery.attempt_count,
        "max_attempts": delivery.max_attempts,
        "status_code": delivery.status_code,
        "error_message": delivery.error_message,
        "next_retry_at": iso(delivery.next_retry_at),
        "completed_at": iso(delivery.completed_at),
        "created_at": iso(delivery.created_at),
    }
