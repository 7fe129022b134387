"""
Analysis Dispatcher

Chooses between per-result enrichment and a single batched enrichment
request after a monitor's new results have been persisted. At or below the
batch threshold every result gets its own event; above it one batch event
carries every id so the worker can summarize a sample instead.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from mentionradar.core.config import get_settings
from mentionradar.core.monitoring import get_metrics

logger = logging.getLogger(__name__)

ANALYZE_EVENT = "content/analyze"
ANALYZE_BATCH_EVENT = "content/analyze-batch"

EVENT_TASKS = {
    ANALYZE_EVENT: "mentionradar.tasks.analysis_tasks.analyze_content",
    ANALYZE_BATCH_EVENT: "mentionradar.tasks.analysis_tasks.analyze_content_batch",
}


@dataclass
class AnalysisEvent:
    name: str
    data: Dict[str, Any]


class EventPublisher(Protocol):
    def publish(self, events: List[AnalysisEvent]) -> None:
        ...


class CeleryEventPublisher:
    """Publishes analysis events as Celery tasks on the analysis queue"""

    def __init__(self, app=None):
        if app is None:
            from mentionradar.tasks.celery_app import celery_app
            app = celery_app
        self.app = app

    def publish(self, events: List[AnalysisEvent]) -> None:
        for event in events:
            self.app.send_task(EVENT_TASKS[event.name], kwargs=event.data, queue="analysis")


class AnalysisDispatcher:
    def __init__(self, publisher: EventPublisher, batch_threshold: Optional[int] = None):
        self.publisher = publisher
        self.batch_threshold = batch_threshold if batch_threshold is not None else get_settings().analysis_batch_threshold

    def plan(self, monitor_id: str, tenant_id: str, platform: str, result_ids: List[str]) -> List[AnalysisEvent]:
        """Events to emit for the given new results, without emitting them"""
        if not result_ids:
            return []
        if len(result_ids) <= self.batch_threshold:
            return [
                AnalysisEvent(ANALYZE_EVENT, {"result_id": result_id, "tenant_id": tenant_id})
                for result_id in result_ids
            ]
        return [
            AnalysisEvent(
                ANALYZE_BATCH_EVENT,
                {
                    "monitor_id": monitor_id,
                    "tenant_id": tenant_id,
                    "platform": platform,
                    "result_ids": list(result_ids),
                    "total_count": len(result_ids),
                },
            )
        ]

    def dispatch(self, monitor_id: str, tenant_id: str, platform: str, result_ids: List[str]) -> List[AnalysisEvent]:
        events = self.plan(monitor_id, tenant_id, platform, result_ids)
        if not events:
            return events

        self.publisher.publish(events)
        mode = "batch" if events[0].name == ANALYZE_BATCH_EVENT else "individual"
        get_metrics().analysis_events_total.labels(mode=mode).inc(len(events))
        logger.info(
            f"Dispatched {len(events)} {mode} analysis event(s) for {len(result_ids)} new results",
            extra={"monitor_id": monitor_id, "tenant_id": tenant_id, "platform": platform},
        )
        return events
