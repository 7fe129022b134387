"""
Manual Scan Trigger

Lets a tenant scan one monitor now instead of waiting for the next cycle.
The in-progress flag is claimed with the same conditional update the
automatic cycle uses, so a manual scan never overlaps an automatic one.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Protocol

from sqlalchemy.orm import Session

from mentionradar.core.clock import utc_now
from mentionradar.core.monitoring import get_metrics
from mentionradar.db.models import Monitor
from mentionradar.services import plan_service
from mentionradar.services.scan_state import claim_scan, release_scan

logger = logging.getLogger(__name__)

ACCEPTED = "accepted"
REJECTED_IN_PROGRESS = "rejected_in_progress"
REJECTED_COOLDOWN = "rejected_cooldown"
REJECTED_INACTIVE = "rejected_inactive"
NOT_FOUND = "not_found"

HTTP_STATUS = {
    ACCEPTED: 202,
    REJECTED_IN_PROGRESS: 409,
    REJECTED_COOLDOWN: 429,
    REJECTED_INACTIVE: 400,
    NOT_FOUND: 404,
}

MANUAL_SCAN_TASK = "mentionradar.tasks.monitor_tasks.run_manual_scan"


@dataclass
class ManualScanOutcome:
    status: str
    message: str
    monitor_id: str
    cooldown_remaining: Optional[timedelta] = None
    next_scan_at: Optional[datetime] = None

    @property
    def http_status(self) -> int:
        return HTTP_STATUS[self.status]

    @property
    def accepted(self) -> bool:
        return self.status == ACCEPTED

    def to_dict(self) -> Dict[str, Any]:
        data = {"status": self.status, "message": self.message, "monitor_id": self.monitor_id}
        if self.cooldown_remaining is not None:
            data["cooldown_remaining_seconds"] = int(self.cooldown_remaining.total_seconds())
            data["cooldown_remaining"] = plan_service.format_cooldown(self.cooldown_remaining)
        if self.next_scan_at is not None:
            data["next_scan_at"] = self.next_scan_at.isoformat()
        return data


class ScanEnqueuer(Protocol):
    def enqueue(self, monitor_id: str) -> None:
        ...


class CeleryScanEnqueuer:
    def __init__(self, app=None):
        if app is None:
            from mentionradar.tasks.celery_app import celery_app
            app = celery_app
        self.app = app

    def enqueue(self, monitor_id: str) -> None:
        self.app.send_task(MANUAL_SCAN_TASK, kwargs={"monitor_id": monitor_id}, queue="scans")


class ManualScanService:
    def __init__(self, db: Session, enqueuer: ScanEnqueuer, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.enqueuer = enqueuer
        self.clock = clock

    def request_manual_scan(self, tenant_id: str, monitor_id: str) -> ManualScanOutcome:
        outcome = self._request(tenant_id, monitor_id)
        get_metrics().manual_scans_total.labels(outcome=outcome.status).inc()
        logger.info(
            f"Manual scan request for monitor {monitor_id}: {outcome.status}",
            extra={"tenant_id": tenant_id, "monitor_id": monitor_id},
        )
        return outcome

    def _request(self, tenant_id: str, monitor_id: str) -> ManualScanOutcome:
        monitor = self.db.get(Monitor, monitor_id)
        # Another tenant's monitor is reported as missing
        if monitor is None or monitor.tenant_id != tenant_id:
            return ManualScanOutcome(NOT_FOUND, "Monitor not found", monitor_id)

        if not monitor.is_active:
            return ManualScanOutcome(REJECTED_INACTIVE, "Monitor is paused", monitor_id)

        if monitor.is_scan_in_progress:
            return ManualScanOutcome(REJECTED_IN_PROGRESS, "A scan is already in progress", monitor_id)

        now = self.clock()
        tier = plan_service.PlanService(self.db).get_tenant_tier(tenant_id)
        check = plan_service.can_trigger_manual_scan(tier, monitor.last_manual_scan_at, now)
        if not check.can_scan:
            return ManualScanOutcome(
                REJECTED_COOLDOWN,
                check.reason,
                monitor_id,
                cooldown_remaining=check.cooldown_remaining,
                next_scan_at=check.next_scan_at,
            )

        if not claim_scan(self.db, monitor_id, now, manual=True):
            return ManualScanOutcome(REJECTED_IN_PROGRESS, "A scan is already in progress", monitor_id)

        try:
            self.enqueuer.enqueue(monitor_id)
        except Exception:
            logger.exception(f"Failed to enqueue manual scan for monitor {monitor_id}")
            release_scan(self.db, monitor_id)
            raise

        return ManualScanOutcome(ACCEPTED, "Scan started", monitor_id)


def get_manual_scan_service(db: Session) -> ManualScanService:
    return ManualScanService(db, CeleryScanEnqueuer())
