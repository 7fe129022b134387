"""
Webhook API Endpoints

Delivery history for a tenant's webhooks and a test event that exercises
the full signed delivery path.
"""
import logging
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from mentionradar.api.deps import get_tenant_id
from mentionradar.db.database import get_db
from mentionradar.db.models import Webhook
from mentionradar.services.webhook_delivery_service import WebhookDeliveryService, serialize_delivery

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])

PROCESS_DELIVERY_TASK = "mentionradar.tasks.webhook_tasks.process_webhook_delivery"


def delivery_enqueuer() -> Callable[[str], None]:
    from mentionradar.tasks.celery_app import celery_app

    def enqueue(delivery_id: str) -> None:
        celery_app.send_task(PROCESS_DELIVERY_TASK, args=[delivery_id], queue="webhooks")

    return enqueue


@router.get("/deliveries")
async def list_deliveries(
    webhook_id: Optional[str] = Query(None, description="Filter by webhook"),
    limit: int = Query(50, ge=1, le=200),
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    deliveries = WebhookDeliveryService(db).list_deliveries(tenant_id, webhook_id=webhook_id, limit=limit)
    return {"deliveries": [serialize_delivery(d) for d in deliveries], "count": len(deliveries)}


@router.post("/{webhook_id}/test")
async def send_test_event(
    webhook_id: str,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    enqueue: Callable[[str], None] = Depends(delivery_enqueuer),
) -> JSONResponse:
    webhook = db.get(Webhook, webhook_id)
    if webhook is None or webhook.tenant_id != tenant_id:
        raise HTTPException(status_code=404, detail="Webhook not found")

    outcome = WebhookDeliveryService(db).send_test_event(tenant_id, webhook)
    if not outcome["success"]:
        return JSONResponse(status_code=403, content=outcome)

    for delivery_id in outcome["delivery_ids"]:
        enqueue(delivery_id)
    logger.info(f"Queued test event for webhook {webhook_id}", extra={"tenant_id": tenant_id})
    return JSONResponse(status_code=202, content=outcome)
