"""
Celery tasks for outbound webhook delivery

The delivery rows are the retry queue: failed attempts are rescheduled
through next_retry_at and picked up by the per-minute sweep, so these
tasks never use Celery's own retries.
"""
import asyncio
import logging
from typing import Any, Dict, List

from mentionradar.core.http_client import http_client_context
from mentionradar.core.config import get_settings
from mentionradar.core.monitoring import get_metrics
from mentionradar.services.webhook_delivery_service import WebhookDeliveryService
from mentionradar.tasks.celery_app import celery_app
from mentionradar.tasks.db_session_manager import get_celery_db_session

logger = logging.getLogger(__name__)


async def _deliver_all(db, delivery_ids: List[str]) -> List[Dict[str, Any]]:
    results = []
    async with http_client_context(timeout=get_settings().webhook_timeout_seconds) as client:
        service = WebhookDeliveryService(db, http_client=client)
        for delivery_id in delivery_ids:
            results.append(await service.deliver(delivery_id))
    return results


@celery_app.task(name='mentionradar.tasks.webhook_tasks.send_webhook_event')
def send_webhook_event(tenant_id: str, event_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Create deliveries for an event and queue the first attempt of each"""
    with get_celery_db_session() as db:
        outcome = WebhookDeliveryService(db).send_webhook_event(tenant_id, event_type, data)

    for delivery_id in outcome.get("delivery_ids", []):
        process_webhook_delivery.apply_async(args=(delivery_id,), queue="webhooks")
    return outcome


@celery_app.task(name='mentionradar.tasks.webhook_tasks.process_webhook_delivery')
def process_webhook_delivery(delivery_id: str) -> Dict[str, Any]:
    with get_celery_db_session() as db:
        return asyncio.run(_deliver_all(db, [delivery_id]))[0]


@celery_app.task(name='mentionradar.tasks.webhook_tasks.retry_failed_webhooks')
def retry_failed_webhooks() -> Dict[str, Any]:
    """Attempt every retrying delivery whose next_retry_at has passed"""
    with get_celery_db_session() as db:
        due = WebhookDeliveryService(db).get_due_retries()
        get_metrics().webhook_retry_backlog.set(len(due))
        if not due:
            return {"retried": 0}
        results = asyncio.run(_deliver_all(db, due))

    succeeded = sum(1 for r in results if r.get("success"))
    logger.info(f"Webhook retry sweep: {len(due)} attempted, {succeeded} succeeded")
    return {"retried": len(due), "succeeded": succeeded}


@celery_app.task(name='mentionradar.tasks.webhook_tasks.cleanup_old_deliveries')
def cleanup_old_deliveries() -> Dict[str, Any]:
    with get_celery_db_session() as db:
        deleted = WebhookDeliveryService(db).cleanup_old_deliveries()
    return {"deleted": deleted}
