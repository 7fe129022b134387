"""
Usage Tracking Service
Per-tenant monthly counters for persisted results and AI calls
"""

import logging
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.orm import Session

from mentionradar.core.clock import utc_now
from mentionradar.db.models import UsageRecord

logger = logging.getLogger(__name__)


def billing_period(now: Optional[datetime] = None) -> str:
    return (now or utc_now()).strftime("%Y-%m")


class UsageTrackingService:
    """
    Counters are only mutated by the owning tenant's own persist or
    enrichment step. Increments are added to the caller's transaction and
    not committed here, so they land together with the rows they count.
    """

    def __init__(self, db: Session):
        self.db = db

    def _get_or_create(self, tenant_id: str, period: str) -> UsageRecord:
        # Sessions do not autoflush, so look at pending rows first
        for pending in self.db.new:
            if isinstance(pending, UsageRecord) and pending.tenant_id == tenant_id and pending.billing_period == period:
                return pending

        record = (
            self.db.query(UsageRecord)
            .filter(UsageRecord.tenant_id == tenant_id, UsageRecord.billing_period == period)
            .first()
        )
        if record is None:
            record = UsageRecord(tenant_id=tenant_id, billing_period=period, results_count=0, ai_calls_count=0)
            self.db.add(record)
        return record

    def increment_results_count(self, tenant_id: str, count: int, now: Optional[datetime] = None) -> None:
        if count <= 0:
            return
        record = self._get_or_create(tenant_id, billing_period(now))
        record.results_count = (record.results_count or 0) + count
        logger.debug(f"Usage: tenant={tenant_id} results +{count}")

    def increment_ai_calls(self, tenant_id: str, count: int = 1, now: Optional[datetime] = None) -> None:
        if count <= 0:
            return
        record = self._get_or_create(tenant_id, billing_period(now))
        record.ai_calls_count = (record.ai_calls_count or 0) + count
        logger.debug(f"Usage: tenant={tenant_id} ai_calls +{count}")

    def get_usage(self, tenant_id: str, period: Optional[str] = None) -> Dict[str, int]:
        period = period or billing_period()
        record = (
            self.db.query(UsageRecord)
            .filter(UsageRecord.tenant_id == tenant_id, UsageRecord.billing_period == period)
            .first()
        )
        return {
            "period": period,
            "results_count": record.results_count if record else 0,
            "ai_calls_count": record.ai_calls_count if record else 0,
        }
