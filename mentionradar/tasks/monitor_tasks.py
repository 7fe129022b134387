"""
Scan tasks

scan_platform runs one platform's ingestion cycle. The cycle id is the
Celery task id, which survives redelivery and retries, so a cycle that
died mid-way resumes from its recorded stages instead of starting over.
"""
import asyncio
import logging
from typing import Any, Dict

from mentionradar.core.config import get_settings
from mentionradar.core.http_client import http_client_context
from mentionradar.core.stage_runner import RedisStageStore, StageRunner
from mentionradar.services.analysis_dispatcher import AnalysisDispatcher, CeleryEventPublisher
from mentionradar.services.connectors.registry import build_default_registry
from mentionradar.services.ingestion_service import IngestionService
from mentionradar.services import scan_state
from mentionradar.tasks.celery_app import celery_app
from mentionradar.tasks.db_session_manager import get_celery_db_session

logger = logging.getLogger(__name__)


def _stage_runner(cycle_id: str) -> StageRunner:
    settings = get_settings()
    return StageRunner(RedisStageStore.from_settings(), cycle_id, ttl_seconds=settings.stage_result_ttl_seconds)


async def _run_cycle(db, platform: str, cycle_id: str) -> Dict[str, Any]:
    async with http_client_context() as client:
        service = IngestionService(
            db=db,
            connectors=build_default_registry(),
            dispatcher=AnalysisDispatcher(CeleryEventPublisher(celery_app)),
            stage_runner=_stage_runner(cycle_id),
            http_client=client,
        )
        report = await service.run_platform_cycle(platform)
    return report.to_dict()


async def _run_manual(db, monitor_id: str, cycle_id: str):
    async with http_client_context() as client:
        service = IngestionService(
            db=db,
            connectors=build_default_registry(),
            dispatcher=AnalysisDispatcher(CeleryEventPublisher(celery_app)),
            stage_runner=_stage_runner(cycle_id),
            http_client=client,
        )
        return await service.run_manual_scan(monitor_id)


@celery_app.task(
    bind=True,
    name='mentionradar.tasks.monitor_tasks.scan_platform',
    acks_late=True,
    reject_on_worker_lost=True,
)
def scan_platform(self, platform: str) -> Dict[str, Any]:
    """Run one scan cycle for every due monitor on a platform"""
    cycle_id = f"{platform}:{self.request.id}"
    logger.info(f"Scan cycle {cycle_id} starting", extra={"platform": platform, "cycle_id": cycle_id})
    with get_celery_db_session() as db:
        return asyncio.run(_run_cycle(db, platform, cycle_id))


@celery_app.task(
    bind=True,
    name='mentionradar.tasks.monitor_tasks.run_manual_scan',
    acks_late=True,
    reject_on_worker_lost=True,
)
def run_manual_scan(self, monitor_id: str) -> Dict[str, Any]:
    """Scan one monitor on all its platforms; the flag was claimed by the request"""
    cycle_id = f"manual:{monitor_id}:{self.request.id}"
    with get_celery_db_session() as db:
        outcomes = asyncio.run(_run_manual(db, monitor_id, cycle_id))
    return {
        "monitor_id": monitor_id,
        "cycle_id": cycle_id,
        "platforms": {o.platform: o.status for o in outcomes},
        "inserted": sum(o.inserted for o in outcomes),
    }


@celery_app.task(name='mentionradar.tasks.monitor_tasks.reset_stuck_scans')
def reset_stuck_scans() -> Dict[str, Any]:
    minutes = get_settings().stuck_scan_minutes
    with get_celery_db_session() as db:
        count = scan_state.reset_stuck_scans(db, minutes)
    return {"reset": count, "older_than_minutes": minutes}
