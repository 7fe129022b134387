"""
Enrichment worker tasks

Consume the content/analyze and content/analyze-batch events. Model
failures are retried by Celery with backoff; the write-back is skipped
for results that were already analyzed, so a retry never double-bills.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from mentionradar.core.cache import TTLCache
from mentionradar.core.exceptions import TransientUpstreamError
from mentionradar.services.ai_client import OpenAIEnrichmentClient
from mentionradar.services.enrichment_service import CeleryWebhookNotifier, EnrichmentService
from mentionradar.services.plan_service import TIER_CACHE_TTL_SECONDS
from mentionradar.tasks.celery_app import celery_app
from mentionradar.tasks.db_session_manager import get_celery_db_session

logger = logging.getLogger(__name__)

# Tier lookups for this worker process; a plan change is picked up within the TTL
_tier_cache: TTLCache[str] = TTLCache(TIER_CACHE_TTL_SECONDS)


def _service(db) -> EnrichmentService:
    return EnrichmentService(
        db,
        OpenAIEnrichmentClient(),
        notifier=CeleryWebhookNotifier(celery_app),
        tier_cache=_tier_cache,
    )


@celery_app.task(
    bind=True,
    name='mentionradar.tasks.analysis_tasks.analyze_content',
    autoretry_for=(TransientUpstreamError,),
    retry_backoff=True,
    retry_jitter=True,
    max_retries=2,
    acks_late=True,
)
def analyze_content(self, result_id: str, tenant_id: str) -> Dict[str, Any]:
    with get_celery_db_session() as db:
        return asyncio.run(_service(db).analyze_result(result_id, tenant_id))


@celery_app.task(
    bind=True,
    name='mentionradar.tasks.analysis_tasks.analyze_content_batch',
    autoretry_for=(TransientUpstreamError,),
    retry_backoff=True,
    retry_jitter=True,
    max_retries=2,
    acks_late=True,
)
def analyze_content_batch(
    self,
    monitor_id: str,
    tenant_id: str,
    platform: str,
    result_ids: List[str],
    total_count: Optional[int] = None,
) -> Dict[str, Any]:
    logger.info(
        f"Batch analysis of {len(result_ids)} results",
        extra={"monitor_id": monitor_id, "tenant_id": tenant_id, "platform": platform},
    )
    with get_celery_db_session() as db:
        return asyncio.run(_service(db).analyze_batch(monitor_id, tenant_id, platform, result_ids, total_count))
