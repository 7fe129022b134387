"""
Enrichment Service

Consumes the analysis events emitted after persist:
- content/analyze: one model call for one result, then a lead score
- content/analyze-batch: one model call for a representative sample,
  written back to every result in the batch and to the monitor

Tenants without unlimited AI analysis get a model call only for their
first-ever result; every other result is scored without enrichment.
Completed work announces a "new_results" event to the tenant's webhooks.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol

from sqlalchemy.orm import Session

from mentionradar.core.cache import TTLCache
from mentionradar.core.clock import utc_now, ensure_utc
from mentionradar.core.config import get_settings
from mentionradar.db.models import Monitor, Result
from mentionradar.services import plan_service
from mentionradar.services.ai_client import EnrichmentClient
from mentionradar.services.lead_scoring import calculate_lead_score, lead_score_input_from_result
from mentionradar.services.sampling import SampleItem, adaptive_sample_size, select_representative_sample
from mentionradar.services.usage_tracking_service import UsageTrackingService

logger = logging.getLogger(__name__)

NEW_RESULTS_EVENT = "new_results"
SEND_WEBHOOK_TASK = "mentionradar.tasks.webhook_tasks.send_webhook_event"


class WebhookNotifier(Protocol):
    def notify(self, tenant_id: str, event_type: str, data: Dict[str, Any]) -> None:
        ...


class CeleryWebhookNotifier:
    """Hands webhook fan-out to the webhooks queue"""

    def __init__(self, app=None):
        if app is None:
            from mentionradar.tasks.celery_app import celery_app
            app = celery_app
        self.app = app

    def notify(self, tenant_id: str, event_type: str, data: Dict[str, Any]) -> None:
        self.app.send_task(
            SEND_WEBHOOK_TASK,
            kwargs={"tenant_id": tenant_id, "event_type": event_type, "data": data},
            queue="webhooks",
        )


def serialize_result(result: Result) -> Dict[str, Any]:
    posted_at = ensure_utc(result.posted_at)
    return {
        "id": result.id,
        "platform": result.platform,
        "source_url": result.source_url,
        "title": result.title,
        "content": result.content,
        "author": result.author,
        "posted_at": posted_at.isoformat() if posted_at else None,
        "sentiment": result.sentiment,
        "conversation_category": result.conversation_category,
        "ai_summary": result.ai_summary,
        "lead_score": result.lead_score,
    }


def _engagement_of(result: Result) -> Optional[float]:
    if result.engagement is not None:
        return result.engagement
    metadata = result.platform_metadata or {}
    return metadata.get("upvotes") or metadata.get("score")


class EnrichmentService:
    def __init__(
        self,
        db: Session,
        client: EnrichmentClient,
        notifier: Optional[WebhookNotifier] = None,
        clock: Callable[[], datetime] = utc_now,
        shuffle: Optional[Callable[[list], None]] = None,
        tier_cache: Optional[TTLCache[str]] = None,
    ):
        self.db = db
        self.client = client
        self.notifier = notifier
        self.clock = clock
        self.shuffle = shuffle
        self.plans = plan_service.PlanService(db, tier_cache=tier_cache)
        self.usage = UsageTrackingService(db)

    # ------------------------------------------------------------------
    # Single result
    # ------------------------------------------------------------------

    def is_first_result(self, tenant_id: str, result_id: str) -> bool:
        """True when result_id is the oldest result across the tenant's monitors"""
        first = (
            self.db.query(Result.id)
            .join(Monitor, Monitor.id == Result.monitor_id)
            .filter(Monitor.tenant_id == tenant_id)
            .order_by(Result.created_at, Result.id)
            .first()
        )
        return first is not None and first[0] == result_id

    def eligible_for_ai(self, tier: str, tenant_id: str, result_id: str) -> bool:
        if plan_service.has_unlimited_ai_analysis(tier):
            return True
        return self.is_first_result(tenant_id, result_id)

    async def analyze_result(self, result_id: str, tenant_id: str) -> Dict[str, Any]:
        result = self.db.get(Result, result_id)
        if result is None:
            logger.warning(f"Result {result_id} not found for enrichment", extra={"tenant_id": tenant_id})
            return {"status": "not_found", "result_id": result_id}
        if result.analyzed_at is not None:
            return {"status": "already_analyzed", "result_id": result_id}

        now = self.clock()
        tier = self.plans.get_tenant_tier(tenant_id)
        enriched = self.eligible_for_ai(tier, tenant_id, result_id)

        if enriched:
            analysis = await self.client.analyze(f"{result.title}\n\n{result.content or ''}")
            result.sentiment = analysis.sentiment
            result.sentiment_score = analysis.sentiment_score
            result.conversation_category = analysis.category
            result.ai_summary = analysis.summary
            result.ai_analysis = {"tier": "individual", "model": analysis.model, "analyzed_at": now.isoformat()}
            self.usage.increment_ai_calls(tenant_id, 1, now)

        score = calculate_lead_score(lead_score_input_from_result(result), now)
        result.lead_score = score.total
        result.lead_score_factors = score.factors()
        result.analyzed_at = now
        self.db.commit()

        logger.info(
            f"Result {result_id} {'enriched' if enriched else 'scored without enrichment'}, lead score {score.total}",
            extra={"tenant_id": tenant_id, "monitor_id": result.monitor_id},
        )
        self._notify(tenant_id, result.monitor, [result])
        return {"status": "analyzed" if enriched else "scored", "result_id": result_id, "lead_score": score.total}

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def analyze_batch(
        self,
        monitor_id: str,
        tenant_id: str,
        platform: str,
        result_ids: List[str],
        total_count: Optional[int] = None,
    ) -> Dict[str, Any]:
        results = self.db.query(Result).filter(Result.id.in_(list(result_ids))).all()
        if not results:
            logger.warning(f"No results found for batch analysis of monitor {monitor_id}")
            return {"status": "no_results", "monitor_id": monitor_id}

        total_count = total_count or len(results)
        now = self.clock()
        tier = self.plans.get_tenant_tier(tenant_id)
        monitor = self.db.get(Monitor, monitor_id)

        summary = None
        sample_size = 0
        if plan_service.has_unlimited_ai_analysis(tier):
            items = [
                SampleItem(
                    id=r.id,
                    content=r.content or "",
                    title=r.title,
                    engagement=_engagement_of(r),
                    rating=(r.platform_metadata or {}).get("rating"),
                    created_at=ensure_utc(r.posted_at or r.created_at),
                )
                for r in results
            ]
            sample = select_representative_sample(items, adaptive_sample_size(total_count), self.shuffle)
            sample_size = len(sample)
            summary = await self.client.summarize_batch(
                platform,
                total_count,
                [
                    {
                        "title": item.title,
                        "content": item.content,
                        "engagement": item.engagement,
                        "rating": item.rating,
                        "date": item.created_at.isoformat() if item.created_at else None,
                    }
                    for item in sample
                ],
            )
            if monitor is not None:
                monitor.batch_analysis = summary.raw
                monitor.last_batch_analyzed_at = now
            self.usage.increment_ai_calls(tenant_id, 1, now)

        for result in results:
            if summary is not None:
                result.batch_analyzed = True
                result.sentiment = summary.result_sentiment
                result.sentiment_score = summary.sentiment_score
                result.ai_analysis = {
                    "tier": "batch",
                    "batch_analyzed": True,
                    "monitor_id": monitor_id,
                    "overall_sentiment": summary.overall_sentiment,
                    "sentiment_score": summary.sentiment_score,
                    "analyzed_at": now.isoformat(),
                }
            score = calculate_lead_score(lead_score_input_from_result(result), now)
            result.lead_score = score.total
            result.lead_score_factors = score.factors()
            result.analyzed_at = now
        self.db.commit()

        logger.info(
            f"Batch of {len(results)} results on {platform} "
            f"{'summarized from ' + str(sample_size) + ' samples' if summary else 'scored without enrichment'}",
            extra={"tenant_id": tenant_id, "monitor_id": monitor_id, "platform": platform},
        )
        self._notify(tenant_id, monitor, results)
        return {
            "status": "analyzed" if summary else "scored",
            "monitor_id": monitor_id,
            "total_count": total_count,
            "sample_size": sample_size,
            "overall_sentiment": summary.overall_sentiment if summary else None,
        }

    def _notify(self, tenant_id: str, monitor: Optional[Monitor], results: List[Result]) -> None:
        if self.notifier is None or monitor is None:
            return
        dashboard = get_settings().dashboard_base_url.rstrip("/")
        self.notifier.notify(
            tenant_id,
            NEW_RESULTS_EVENT,
            {
                "monitor_id": monitor.id,
                "monitor_name": monitor.name,
                "count": len(results),
                "results": [serialize_result(r) for r in results],
                "dashboard_url": f"{dashboard}/dashboard/monitors/{monitor.id}",
            },
        )
